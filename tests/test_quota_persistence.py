import json
from datetime import datetime, timezone

import pytest

from fitcoach.demo_quota.lock_reason import from_storage, to_storage, user_facing_message
from fitcoach.demo_quota.persistence import (
    InMemoryDemoAttemptRepository,
    JsonDemoAttemptRepository,
    decision_from_dict,
    decision_to_dict,
)
from fitcoach.demo_quota.state_machine import EvaluationDecision, LockReason, RemoteSnapshot

TS = datetime(2026, 3, 4, 5, 6, 7, tzinfo=timezone.utc)


@pytest.mark.parametrize("reason, stored", [
    (LockReason.quota_exhausted(), "quota"),
    (LockReason.evaluation_timeout(), "timeout"),
    (LockReason.server_sync(), "server"),
    (LockReason.evaluation_denied("Try later"), "deny: Try later"),
    (LockReason.evaluation_denied(), "deny: "),
])
def test_lock_reason_storage_encoding(reason, stored):
    assert to_storage(reason) == stored
    assert from_storage(stored) == reason


def test_unknown_storage_values_decode_to_none():
    assert from_storage(None) is None
    assert from_storage("banana") is None
    assert from_storage("deny:no-space") is None


def test_user_facing_messages():
    assert user_facing_message(LockReason.quota_exhausted()).startswith("You’ve used both free demos")
    assert user_facing_message(LockReason.evaluation_denied("Custom")) == "Custom"
    assert user_facing_message(LockReason.evaluation_denied()) == "We can’t offer another free demo right now."
    assert "timed out" in user_facing_message(LockReason.evaluation_timeout())
    assert "sync" in user_facing_message(LockReason.server_sync())


def test_decision_dict_encoding():
    assert decision_to_dict(EvaluationDecision.deny(None, TS)) == {"type": "deny", "ts": TS.timestamp(), "message": ""}
    assert decision_from_dict({"type": "deny", "ts": TS.timestamp(), "message": ""}) == EvaluationDecision.deny(None, TS)
    assert decision_from_dict(decision_to_dict(EvaluationDecision.timeout(TS))) == EvaluationDecision.timeout(TS)
    assert decision_from_dict({"type": "maybe", "ts": 1}) is None
    assert decision_from_dict({"type": "allow"}) is None
    assert decision_from_dict("allow") is None


@pytest.fixture(params=["json", "memory"])
def repo(request, tmp_path):
    if request.param == "json":
        return JsonDemoAttemptRepository(tmp_path / "quota.json", prefix="test.quota")
    return InMemoryDemoAttemptRepository()


def test_empty_repository_loads_empty_snapshot(repo):
    assert repo.load_snapshot() == RemoteSnapshot.empty()


def test_fields_are_persisted(repo):
    repo.set_attempts_used(1)
    repo.set_active_attempt(2)
    repo.persist_evaluation_decision(EvaluationDecision.allow_second_attempt(TS))
    repo.persist_server_lock_reason(LockReason.evaluation_denied("no"))

    snap = repo.load_snapshot()
    assert snap.attempts_used == 1
    assert snap.active_attempt_index == 2
    assert snap.last_decision == EvaluationDecision.allow_second_attempt(TS)
    assert snap.server_lock_reason == LockReason.evaluation_denied("no")

    repo.set_active_attempt(None)
    repo.persist_server_lock_reason(None)
    snap = repo.load_snapshot()
    assert snap.active_attempt_index is None
    assert snap.server_lock_reason is None


def test_replace_drops_sync_time_and_missing_fields(repo):
    repo.persist_evaluation_decision(EvaluationDecision.timeout(TS))
    repo.replace(RemoteSnapshot(attempts_used=2, server_lock_reason=LockReason.server_sync(), last_sync_at=TS))

    snap = repo.load_snapshot()
    assert snap == RemoteSnapshot(attempts_used=2, server_lock_reason=LockReason.server_sync())


def test_reset(repo):
    repo.set_attempts_used(2)
    repo.reset()
    assert repo.load_snapshot() == RemoteSnapshot.empty()


def test_json_layout_and_survives_reopen(tmp_path):
    path = tmp_path / "quota.json"
    repo = JsonDemoAttemptRepository(path, prefix="demo.quota")
    repo.set_attempts_used(1)
    repo.persist_server_lock_reason(LockReason.quota_exhausted())

    data = json.loads(path.read_text(encoding="utf-8"))
    assert data == {"demo.quota.attempts": 1, "demo.quota.serverLockReason": "quota"}

    reopened = JsonDemoAttemptRepository(path, prefix="demo.quota")
    assert reopened.load_snapshot().attempts_used == 1


def test_prefixes_are_isolated(tmp_path):
    path = tmp_path / "quota.json"
    JsonDemoAttemptRepository(path, prefix="a").set_attempts_used(2)
    assert JsonDemoAttemptRepository(path, prefix="b").load_snapshot().attempts_used == 0


def test_garbage_values_are_ignored(tmp_path):
    path = tmp_path / "quota.json"
    path.write_text(json.dumps({"demo.quota.attempts": "two", "demo.quota.active": "x"}), encoding="utf-8")
    snap = JsonDemoAttemptRepository(path).load_snapshot()
    assert snap.attempts_used == 0
    assert snap.active_attempt_index is None
