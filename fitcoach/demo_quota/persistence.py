# fitcoach/demo_quota/persistence.py
from __future__ import annotations

import dataclasses
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Protocol

from fitcoach.common import config as C
from fitcoach.common.io_utils import JsonKeyValueStore
from fitcoach.demo_quota.lock_reason import from_storage, to_storage
from fitcoach.demo_quota.state_machine import (
    DecisionKind,
    EvaluationDecision,
    LockReason,
    RemoteSnapshot,
)


class DemoAttemptPersisting(Protocol):
    def load_snapshot(self) -> RemoteSnapshot: ...
    def set_attempts_used(self, count: int) -> None: ...
    def set_active_attempt(self, index: Optional[int]) -> None: ...
    def persist_evaluation_decision(self, decision: EvaluationDecision) -> None: ...
    def persist_server_lock_reason(self, reason: Optional[LockReason]) -> None: ...
    def replace(self, snapshot: RemoteSnapshot) -> None: ...
    def reset(self) -> None: ...


def decision_to_dict(decision: EvaluationDecision) -> dict:
    data = {"type": decision.kind.value, "ts": decision.timestamp.timestamp()}
    if decision.kind == DecisionKind.DENY:
        data["message"] = decision.message or ""
    return data


def decision_from_dict(data) -> Optional[EvaluationDecision]:
    if not isinstance(data, dict):
        return None
    ts = data.get("ts")
    if not isinstance(ts, (int, float)):
        return None
    when = datetime.fromtimestamp(ts, tz=timezone.utc)
    kind = data.get("type")
    if kind == "allow":
        return EvaluationDecision.allow_second_attempt(when)
    if kind == "deny":
        return EvaluationDecision.deny(data.get("message") or None, when)
    if kind == "timeout":
        return EvaluationDecision.timeout(when)
    return None


class JsonDemoAttemptRepository:
    """Quota bookkeeping in a JSON key-value file, keys namespaced by `prefix`."""

    def __init__(self, path: Path = C.DEMO_QUOTA_STORE, prefix: str = "demo.quota"):
        self._store = JsonKeyValueStore(path)
        self._attempts_key = f"{prefix}.attempts"
        self._active_key = f"{prefix}.active"
        self._decision_key = f"{prefix}.decision"
        self._lock_reason_key = f"{prefix}.serverLockReason"

    def load_snapshot(self) -> RemoteSnapshot:
        attempts = self._store.get(self._attempts_key, 0)
        active = self._store.get(self._active_key)
        return RemoteSnapshot(
            attempts_used=attempts if isinstance(attempts, int) else 0,
            active_attempt_index=active if isinstance(active, int) else None,
            last_decision=decision_from_dict(self._store.get(self._decision_key)),
            server_lock_reason=from_storage(self._store.get(self._lock_reason_key)),
        )

    def set_attempts_used(self, count: int) -> None:
        self._store.set(self._attempts_key, int(count))

    def set_active_attempt(self, index: Optional[int]) -> None:
        if index is None:
            self._store.remove(self._active_key)
        else:
            self._store.set(self._active_key, int(index))

    def persist_evaluation_decision(self, decision: EvaluationDecision) -> None:
        self._store.set(self._decision_key, decision_to_dict(decision))

    def persist_server_lock_reason(self, reason: Optional[LockReason]) -> None:
        if reason is None:
            self._store.remove(self._lock_reason_key)
        else:
            self._store.set(self._lock_reason_key, to_storage(reason))

    def replace(self, snapshot: RemoteSnapshot) -> None:
        self.set_attempts_used(snapshot.attempts_used)
        self.set_active_attempt(snapshot.active_attempt_index)
        if snapshot.last_decision is not None:
            self.persist_evaluation_decision(snapshot.last_decision)
        else:
            self._store.remove(self._decision_key)
        self.persist_server_lock_reason(snapshot.server_lock_reason)

    def reset(self) -> None:
        for key in (self._attempts_key, self._active_key, self._decision_key, self._lock_reason_key):
            self._store.remove(key)


class InMemoryDemoAttemptRepository:
    """Volatile repository for tests and the disabled/offline wiring."""

    def __init__(self, snapshot: Optional[RemoteSnapshot] = None):
        self._snapshot = snapshot or RemoteSnapshot.empty()

    def load_snapshot(self) -> RemoteSnapshot:
        return self._snapshot

    def _update(self, **changes):
        self._snapshot = dataclasses.replace(self._snapshot, **changes)

    def set_attempts_used(self, count: int) -> None:
        self._update(attempts_used=count)

    def set_active_attempt(self, index: Optional[int]) -> None:
        self._update(active_attempt_index=index)

    def persist_evaluation_decision(self, decision: EvaluationDecision) -> None:
        self._update(last_decision=decision)

    def persist_server_lock_reason(self, reason: Optional[LockReason]) -> None:
        self._update(server_lock_reason=reason)

    def replace(self, snapshot: RemoteSnapshot) -> None:
        self._snapshot = RemoteSnapshot(
            attempts_used=snapshot.attempts_used,
            active_attempt_index=snapshot.active_attempt_index,
            last_decision=snapshot.last_decision,
            server_lock_reason=snapshot.server_lock_reason,
        )

    def reset(self) -> None:
        self._snapshot = RemoteSnapshot.empty()
