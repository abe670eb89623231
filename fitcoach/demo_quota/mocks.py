# fitcoach/demo_quota/mocks.py
"""Offline stand-ins for the remote collaborators, used by the mock wiring."""
from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Optional

from fitcoach.demo_quota.remote import AttemptMetadata, EvaluationResult, SessionStage
from fitcoach.demo_quota.state_machine import RemoteSnapshot

logger = logging.getLogger(__name__)


class ConsoleSessionLogger:
    async def log_attempt(self, device_id: uuid.UUID, attempt_index: int,
                          stage: SessionStage, metadata: Optional[AttemptMetadata] = None) -> None:
        logger.info("[demo] device=%s attempt=%d stage=%s metadata=%s",
                    device_id, attempt_index, stage.value,
                    metadata.to_wire() if metadata else {})


class MockEvaluationService:
    """Grants the second attempt after the first one; denies anything later."""

    async def evaluate(self, device_id: uuid.UUID, attempt_index: int,
                       context: Optional[AttemptMetadata] = None) -> EvaluationResult:
        now = datetime.now(timezone.utc)
        if attempt_index == 1:
            return EvaluationResult(True, None, now)
        return EvaluationResult(False, None, now)


class NoopDeviceIdentityMirror:
    async def fetch_device_id(self) -> Optional[uuid.UUID]:
        return None

    async def mirror(self, device_id: uuid.UUID) -> None:
        return None


class MockSnapshotSync:
    async def fetch_snapshot(self, device_id: uuid.UUID) -> Optional[RemoteSnapshot]:
        return None

    async def mirror(self, snapshot: RemoteSnapshot, device_id: uuid.UUID) -> None:
        logger.debug("[demo] mirror skipped for %s: %s", device_id, snapshot)
