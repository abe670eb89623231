import asyncio
import json
import uuid
from datetime import datetime, timezone

import pytest
import requests

from fitcoach.demo_quota.errors import (
    EvaluationNetworkError,
    EvaluationTimeoutError,
    IdentityNetworkUnavailableError,
    InvalidEvaluationResponseError,
    SessionLoggingError,
    SnapshotSyncError,
)
from fitcoach.demo_quota.remote import (
    RATE_LIMITED_MESSAGE,
    AttemptMetadata,
    EvaluateSessionService,
    RemoteDeviceIdentityMirror,
    RemoteSessionLogger,
    RemoteSnapshotSync,
    SessionStage,
    SnapshotPayload,
)
from fitcoach.demo_quota.state_machine import EvaluationDecision, LockReason, RemoteSnapshot

TS = datetime(2026, 5, 6, 7, 8, 9, tzinfo=timezone.utc)


class FakeResponse:
    def __init__(self, status_code=200, body=None):
        self.status_code = status_code
        self._body = body
        self.content = b"" if body is None else json.dumps(body).encode("utf-8")

    def json(self):
        if self._body is None:
            raise ValueError("no body")
        return self._body


class FakeSession:
    def __init__(self, response=None, error=None):
        self.response = response or FakeResponse(200, {})
        self.error = error
        self.requests = []

    def request(self, method, url, json=None, headers=None, timeout=None):
        self.requests.append({"method": method, "url": url, "json": json, "headers": headers, "timeout": timeout})
        if self.error is not None:
            raise self.error
        return self.response


def completed(**overrides):
    body = {"correlation_id": "c-1", "state": "COMPLETED", "fallback_used": False,
            "response": {"summary": "Great form.", "guidance": [], "tokens_used": 12}}
    body.update(overrides)
    return body


# ---------------- session logger ----------------

def test_session_log_payload(device_id):
    session = FakeSession(FakeResponse(201))
    client = RemoteSessionLogger("https://api.test/log", "anon", session=session)
    meta = AttemptMetadata(reason="demo_cta", repetition_count=4, tempo_samples=[1.1, 1.3])

    asyncio.run(client.log_attempt(device_id, 1, SessionStage.START, meta))

    sent = session.requests[0]
    assert sent["method"] == "POST"
    assert sent["url"] == "https://api.test/log"
    assert sent["headers"]["Authorization"] == "Bearer anon"
    assert sent["headers"]["Content-Type"] == "application/json"
    assert sent["json"] == {
        "device_id": str(device_id).upper(),
        "attempt_index": 1,
        "stage": "start",
        "metadata": {"reason": "demo_cta", "repetition_count": 4, "tempo_samples": [1.1, 1.3]},
    }


@pytest.mark.parametrize("session", [
    FakeSession(FakeResponse(500)),
    FakeSession(error=requests.ConnectionError("down")),
])
def test_session_log_failures(session, device_id):
    client = RemoteSessionLogger("https://api.test/log", "anon", session=session)
    with pytest.raises(SessionLoggingError):
        asyncio.run(client.log_attempt(device_id, 2, SessionStage.COMPLETION))


# ---------------- evaluation ----------------

def evaluate(session, device_id, context=None):
    service = EvaluateSessionService("https://api.test/eval", "anon", timeout=3.0, session=session)
    return asyncio.run(service.evaluate(device_id, 1, context))


def test_evaluation_request_shape(device_id):
    session = FakeSession(FakeResponse(200, completed()))
    evaluate(session, device_id, AttemptMetadata(repetition_count=5))

    sent = session.requests[0]
    assert sent["timeout"] == 3.0
    body = sent["json"]
    assert body["device_id"] == str(device_id).upper()
    assert body["attempt_index"] == 1
    assert body["payload_version"] == "v1"
    assert body["input"]["prompt"]
    assert body["input"]["context"] == {"repetition_count": 5}
    assert body["metadata"] == {"source": "fitcoach"}


def test_completed_evaluation_allows(device_id):
    result = evaluate(FakeSession(FakeResponse(200, completed())), device_id)
    assert result.allow_another_demo
    assert result.message is None


@pytest.mark.parametrize("body, message", [
    (completed(state="BLOCKED", response={"summary": "Limit reached"}), "Limit reached"),
    (completed(fallback_used=True, response=None), None),
    (completed(moderation={"flagged": True, "categories": ["abuse"]}), "Great form."),
    (completed(allow_another_demo=False, message="Subscribe to continue"), "Subscribe to continue"),
])
def test_denied_evaluations(body, message, device_id):
    result = evaluate(FakeSession(FakeResponse(200, body)), device_id)
    assert not result.allow_another_demo
    assert result.message == message


def test_explicit_verdict_wins(device_id):
    result = evaluate(FakeSession(FakeResponse(409, completed(state="RATE_LIMITED", allow_another_demo=True))),
                      device_id)
    assert result.allow_another_demo


def test_rate_limited_denies(device_id):
    result = evaluate(FakeSession(FakeResponse(429)), device_id)
    assert not result.allow_another_demo
    assert result.message == RATE_LIMITED_MESSAGE


@pytest.mark.parametrize("session, error", [
    (FakeSession(error=requests.Timeout("slow")), EvaluationTimeoutError),
    (FakeSession(error=requests.ConnectionError("down")), EvaluationNetworkError),
    (FakeSession(FakeResponse(500, {})), InvalidEvaluationResponseError),
    (FakeSession(FakeResponse(200)), InvalidEvaluationResponseError),
    (FakeSession(FakeResponse(200, {"state": "COMPLETED"})), InvalidEvaluationResponseError),
])
def test_evaluation_errors(session, error, device_id):
    with pytest.raises(error):
        evaluate(session, device_id)


# ---------------- snapshot sync ----------------

SERVER_SNAPSHOT = {
    "attempts_used": 1,
    "active_attempt_index": None,
    "last_decision": {"type": "deny", "message": "No", "ts": "2026-05-06T07:08:09Z"},
    "server_lock_reason": "deny: No",
    "last_sync_at": "2026-05-06T07:08:09Z",
}


def fetch(session, device_id):
    sync = RemoteSnapshotSync("https://api.test/fetch", "https://api.test/mirror", "anon", session=session)
    return asyncio.run(sync.fetch_snapshot(device_id))


def test_fetch_snapshot_decodes(device_id):
    session = FakeSession(FakeResponse(200, SERVER_SNAPSHOT))
    snap = fetch(session, device_id)

    assert session.requests[0]["json"] == {"device_id": str(device_id).upper()}
    assert snap == RemoteSnapshot(
        attempts_used=1,
        last_decision=EvaluationDecision.deny("No", TS),
        server_lock_reason=LockReason.evaluation_denied("No"),
        last_sync_at=TS,
    )


@pytest.mark.parametrize("response", [FakeResponse(204), FakeResponse(404, {}), FakeResponse(200)])
def test_fetch_snapshot_missing(response, device_id):
    assert fetch(FakeSession(response), device_id) is None


@pytest.mark.parametrize("session", [
    FakeSession(FakeResponse(500, {})),
    FakeSession(FakeResponse(200, {"attempts_used": -1})),
    FakeSession(error=requests.ConnectionError("down")),
])
def test_fetch_snapshot_errors(session, device_id):
    with pytest.raises(SnapshotSyncError):
        fetch(session, device_id)


def test_mirror_snapshot_payload(device_id):
    session = FakeSession(FakeResponse(200))
    sync = RemoteSnapshotSync("https://api.test/fetch", "https://api.test/mirror", "anon", session=session)
    snapshot = RemoteSnapshot(attempts_used=2, server_lock_reason=LockReason.server_sync(), last_sync_at=TS)

    asyncio.run(sync.mirror(snapshot, device_id))

    sent = session.requests[0]
    assert sent["url"] == "https://api.test/mirror"
    assert sent["json"]["device_id"] == str(device_id).upper()
    assert sent["json"]["snapshot"]["attempts_used"] == 2
    assert sent["json"]["snapshot"]["server_lock_reason"] == "server"
    assert "active_attempt_index" not in sent["json"]["snapshot"]


def test_snapshot_payload_stamps_sync_time():
    payload = SnapshotPayload.from_snapshot(RemoteSnapshot(attempts_used=1), now=TS)
    assert payload.last_sync_at == TS
    assert payload.to_snapshot() == RemoteSnapshot(attempts_used=1, last_sync_at=TS)


def test_mirror_snapshot_rejected(device_id):
    sync = RemoteSnapshotSync("f", "m", "anon", session=FakeSession(FakeResponse(403)))
    with pytest.raises(SnapshotSyncError):
        asyncio.run(sync.mirror(RemoteSnapshot.empty(), device_id))


# ---------------- identity mirror ----------------

def identity_mirror(session):
    return RemoteDeviceIdentityMirror("https://api.test/id", "https://api.test/id/mirror", "anon", session=session)


def test_fetch_device_id(device_id):
    session = FakeSession(FakeResponse(200, {"device_id": str(device_id).upper()}))
    assert asyncio.run(identity_mirror(session).fetch_device_id()) == device_id
    assert session.requests[0]["method"] == "GET"
    assert session.requests[0]["json"] is None


@pytest.mark.parametrize("response", [
    FakeResponse(204),
    FakeResponse(404, {}),
    FakeResponse(200, {"device_id": "garbage"}),
    FakeResponse(200, {"other": 1}),
])
def test_fetch_device_id_missing_or_malformed(response):
    assert asyncio.run(identity_mirror(FakeSession(response)).fetch_device_id()) is None


def test_fetch_device_id_server_error():
    with pytest.raises(IdentityNetworkUnavailableError):
        asyncio.run(identity_mirror(FakeSession(FakeResponse(503, {}))).fetch_device_id())


def test_mirror_device_id(device_id):
    session = FakeSession(FakeResponse(204))
    asyncio.run(identity_mirror(session).mirror(device_id))
    assert session.requests[0]["json"] == {"device_id": str(device_id).upper()}

    failing = identity_mirror(FakeSession(error=requests.ConnectionError("down")))
    with pytest.raises(IdentityNetworkUnavailableError):
        asyncio.run(failing.mirror(uuid.uuid4()))
