# fitcoach/demo_quota/remote.py
"""
HTTP collaborators of the quota coordinator.

All requests are JSON with a bearer anon key. Blocking `requests` calls are
pushed to a worker thread so the event loop keeps running.
"""
from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

import requests
from pydantic import BaseModel, Field, ValidationError

from fitcoach.common import config as C
from fitcoach.demo_quota.errors import (
    EvaluationNetworkError,
    EvaluationTimeoutError,
    IdentityNetworkUnavailableError,
    InvalidEvaluationResponseError,
    SessionLoggingError,
    SnapshotSyncError,
)
from fitcoach.demo_quota.lock_reason import from_storage, to_storage
from fitcoach.demo_quota.state_machine import (
    DecisionKind,
    EvaluationDecision,
    RemoteSnapshot,
)

logger = logging.getLogger(__name__)

PAYLOAD_VERSION = "v1"


class SessionStage(str, Enum):
    START = "start"
    COMPLETION = "completion"


# ==================== PAYLOADS ====================

class AttemptMetadata(BaseModel):
    """Structured metadata attached to attempt logging and evaluation requests."""
    reason: Optional[str] = None
    cta_label: Optional[str] = None
    timestamp: Optional[datetime] = None
    attempt_index: Optional[int] = None
    duration_seconds: Optional[float] = None
    repetition_count: Optional[int] = None
    tempo_samples: Optional[List[float]] = None
    coaching_corrections: Optional[Dict[str, int]] = None
    generated_at: Optional[datetime] = None

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)


class DevicePayload(BaseModel):
    device_id: str


class DecisionPayload(BaseModel):
    type: str
    message: Optional[str] = None
    ts: datetime


class SnapshotPayload(BaseModel):
    attempts_used: int = Field(0, ge=0)
    active_attempt_index: Optional[int] = None
    last_decision: Optional[DecisionPayload] = None
    server_lock_reason: Optional[str] = None
    last_sync_at: Optional[datetime] = None

    @classmethod
    def from_snapshot(cls, snapshot: RemoteSnapshot, now: Optional[datetime] = None) -> "SnapshotPayload":
        d = snapshot.last_decision
        decision = None
        if d is not None:
            decision = DecisionPayload(type=d.kind.value, message=d.denial_message, ts=d.timestamp)
        return cls(
            attempts_used=snapshot.attempts_used,
            active_attempt_index=snapshot.active_attempt_index,
            last_decision=decision,
            server_lock_reason=to_storage(snapshot.server_lock_reason) if snapshot.server_lock_reason else None,
            last_sync_at=snapshot.last_sync_at or now or datetime.now(timezone.utc),
        )

    def to_snapshot(self) -> RemoteSnapshot:
        decision = None
        if self.last_decision is not None:
            p = self.last_decision
            if p.type == DecisionKind.ALLOW.value:
                decision = EvaluationDecision.allow_second_attempt(p.ts)
            elif p.type == DecisionKind.DENY.value:
                decision = EvaluationDecision.deny(p.message, p.ts)
            elif p.type == DecisionKind.TIMEOUT.value:
                decision = EvaluationDecision.timeout(p.ts)
        return RemoteSnapshot(
            attempts_used=self.attempts_used,
            active_attempt_index=self.active_attempt_index,
            last_decision=decision,
            server_lock_reason=from_storage(self.server_lock_reason),
            last_sync_at=self.last_sync_at,
        )


class MirrorPayload(BaseModel):
    device_id: str
    snapshot: SnapshotPayload


class SessionLogPayload(BaseModel):
    device_id: str
    attempt_index: int
    stage: SessionStage
    metadata: Dict[str, Any] = Field(default_factory=dict)


class EvaluateInput(BaseModel):
    prompt: str = Field(..., min_length=1)
    context: Optional[Dict[str, Any]] = None


class EvaluateSessionRequest(BaseModel):
    device_id: str
    attempt_index: int = Field(..., ge=0)
    payload_version: str = PAYLOAD_VERSION
    input: EvaluateInput
    metadata: Optional[Dict[str, Any]] = None


class RateLimitSnapshot(BaseModel):
    allowed: bool
    attempt_count: int
    window_start: str
    limit: int
    window_seconds: int


class LLMResponse(BaseModel):
    summary: str = ""
    guidance: List[str] = Field(default_factory=list)
    tokens_used: int = 0


class Moderation(BaseModel):
    flagged: bool = False
    categories: List[str] = Field(default_factory=list)


class EvaluateSessionResponse(BaseModel):
    correlation_id: str
    state: str
    session_id: Optional[str] = None
    attempt_id: Optional[str] = None
    payload_version: Optional[str] = None
    fallback_used: bool = False
    reason: Optional[str] = None
    response: Optional[LLMResponse] = None
    moderation: Optional[Moderation] = None
    rate_limit: Optional[RateLimitSnapshot] = None
    # explicit verdict, when the endpoint provides one
    allow_another_demo: Optional[bool] = None
    message: Optional[str] = None

    def allows_another_demo(self) -> bool:
        if self.allow_another_demo is not None:
            return self.allow_another_demo
        flagged = self.moderation is not None and self.moderation.flagged
        return self.state == "COMPLETED" and not self.fallback_used and not flagged

    def denial_message(self) -> Optional[str]:
        if self.message:
            return self.message
        if self.response is not None and self.response.summary:
            return self.response.summary
        return None


@dataclass(frozen=True)
class EvaluationResult:
    allow_another_demo: bool
    message: Optional[str]
    timestamp: datetime


RATE_LIMITED_MESSAGE = "Too many demo requests from this device. Please try again later."


# ==================== CLIENTS ====================

class _JsonHttpClient:
    def __init__(self, anon_key: str, timeout: float = C.HTTP_TIMEOUT_S,
                 session: Optional[requests.Session] = None):
        self._anon_key = anon_key
        self._timeout = timeout
        self._session = session or requests.Session()

    def _headers(self) -> Dict[str, str]:
        return {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self._anon_key}",
        }

    async def _request(self, method: str, url: str, body: Optional[BaseModel] = None) -> requests.Response:
        payload = body.model_dump(mode="json", exclude_none=True) if body is not None else None
        return await asyncio.to_thread(
            self._session.request, method, url,
            json=payload, headers=self._headers(), timeout=self._timeout,
        )


class RemoteSessionLogger(_JsonHttpClient):
    def __init__(self, endpoint: str, anon_key: str, **kwargs):
        super().__init__(anon_key, **kwargs)
        self.endpoint = endpoint

    async def log_attempt(self, device_id: uuid.UUID, attempt_index: int,
                          stage: SessionStage, metadata: Optional[AttemptMetadata] = None) -> None:
        body = SessionLogPayload(
            device_id=str(device_id).upper(),
            attempt_index=attempt_index,
            stage=stage,
            metadata=metadata.to_wire() if metadata else {},
        )
        try:
            resp = await self._request("POST", self.endpoint, body)
        except requests.RequestException as e:
            raise SessionLoggingError(f"network failure: {e}") from e
        if not 200 <= resp.status_code < 300:
            raise SessionLoggingError(f"unexpected status {resp.status_code}")


class EvaluateSessionService(_JsonHttpClient):

    def __init__(self, endpoint: str, anon_key: str, timeout: float = C.EVALUATION_TIMEOUT_S, **kwargs):
        super().__init__(anon_key, timeout=timeout, **kwargs)
        self.endpoint = endpoint

    async def evaluate(self, device_id: uuid.UUID, attempt_index: int,
                       context: Optional[AttemptMetadata] = None) -> EvaluationResult:
        wire_context = context.to_wire() if context else None
        body = EvaluateSessionRequest(
            device_id=str(device_id).upper(),
            attempt_index=attempt_index,
            input=EvaluateInput(
                prompt=f"Review free demo attempt {attempt_index} and decide whether another free demo is allowed.",
                context=wire_context,
            ),
            metadata={"source": "fitcoach"},
        )
        try:
            resp = await self._request("POST", self.endpoint, body)
        except requests.Timeout as e:
            raise EvaluationTimeoutError(str(e)) from e
        except requests.RequestException as e:
            raise EvaluationNetworkError(str(e)) from e

        now = datetime.now(timezone.utc)
        if resp.status_code == 429:
            return EvaluationResult(False, RATE_LIMITED_MESSAGE, now)
        if resp.status_code not in (200, 409):
            raise InvalidEvaluationResponseError(f"unexpected status {resp.status_code}")
        try:
            parsed = EvaluateSessionResponse.model_validate(resp.json())
        except (ValueError, ValidationError) as e:
            raise InvalidEvaluationResponseError(str(e)) from e

        allow = parsed.allows_another_demo()
        logger.debug("Evaluation %s for attempt %d: state=%s allow=%s",
                     parsed.correlation_id, attempt_index, parsed.state, allow)
        return EvaluationResult(allow, None if allow else parsed.denial_message(), now)


class RemoteSnapshotSync(_JsonHttpClient):
    def __init__(self, fetch_endpoint: str, mirror_endpoint: str, anon_key: str, **kwargs):
        super().__init__(anon_key, **kwargs)
        self.fetch_endpoint = fetch_endpoint
        self.mirror_endpoint = mirror_endpoint

    async def fetch_snapshot(self, device_id: uuid.UUID) -> Optional[RemoteSnapshot]:
        try:
            resp = await self._request("POST", self.fetch_endpoint, DevicePayload(device_id=str(device_id).upper()))
        except requests.RequestException as e:
            raise SnapshotSyncError(f"network failure: {e}") from e
        if resp.status_code in (204, 404):
            return None
        if resp.status_code != 200:
            raise SnapshotSyncError(f"unexpected status {resp.status_code}")
        if not resp.content:
            return None
        try:
            return SnapshotPayload.model_validate(resp.json()).to_snapshot()
        except (ValueError, ValidationError) as e:
            raise SnapshotSyncError(f"invalid snapshot: {e}") from e

    async def mirror(self, snapshot: RemoteSnapshot, device_id: uuid.UUID) -> None:
        body = MirrorPayload(device_id=str(device_id).upper(), snapshot=SnapshotPayload.from_snapshot(snapshot))
        try:
            resp = await self._request("POST", self.mirror_endpoint, body)
        except requests.RequestException as e:
            raise SnapshotSyncError(f"network failure: {e}") from e
        if not 200 <= resp.status_code < 300:
            raise SnapshotSyncError(f"unexpected status {resp.status_code}")


class RemoteDeviceIdentityMirror(_JsonHttpClient):
    def __init__(self, fetch_endpoint: str, mirror_endpoint: str, anon_key: str, **kwargs):
        super().__init__(anon_key, **kwargs)
        self.fetch_endpoint = fetch_endpoint
        self.mirror_endpoint = mirror_endpoint

    async def fetch_device_id(self) -> Optional[uuid.UUID]:
        try:
            resp = await self._request("GET", self.fetch_endpoint)
        except requests.RequestException as e:
            raise IdentityNetworkUnavailableError(str(e)) from e
        if resp.status_code in (204, 404):
            return None
        if resp.status_code != 200:
            raise IdentityNetworkUnavailableError(f"unexpected status {resp.status_code}")
        try:
            payload = DevicePayload.model_validate(resp.json())
            return uuid.UUID(payload.device_id)
        except (ValueError, ValidationError) as e:
            logger.warning("Ignoring malformed mirrored device id: %s", e)
            return None

    async def mirror(self, device_id: uuid.UUID) -> None:
        try:
            resp = await self._request("POST", self.mirror_endpoint, DevicePayload(device_id=str(device_id).upper()))
        except requests.RequestException as e:
            raise IdentityNetworkUnavailableError(str(e)) from e
        if not 200 <= resp.status_code < 300:
            raise IdentityNetworkUnavailableError(f"unexpected status {resp.status_code}")
