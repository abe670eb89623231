# fitcoach/demo_quota/coordinator.py
"""
Runs the quota reducer against persistence, logging, evaluation and sync.

Every mutation goes through `apply` behind one asyncio.Lock:

    1. remember the current state
    2. reduce, publish the new state right away
    3. run the side effects in order (logging retried, evaluation detached)
    4. on an effect failure: publish the remembered state, fail closed, re-raise
    5. mirror the persisted snapshot when anything was written (best-effort)

Failing closed means "no free attempts left": attempts_used is forced to at
least MAX_DEMO_ATTEMPTS, the active attempt is cleared and the state becomes
locked(server_sync).
"""
from __future__ import annotations

import asyncio
import dataclasses
import logging
import uuid
from datetime import datetime, timezone
from typing import Callable, Optional, Protocol, Set

from fitcoach.common import config as C
from fitcoach.common.broadcast import StateBroadcaster, Subscription
from fitcoach.demo_quota.errors import DeviceIdentityUnavailableError, LoggingFailedError
from fitcoach.demo_quota.persistence import DemoAttemptPersisting
from fitcoach.demo_quota.remote import AttemptMetadata, EvaluationResult, SessionStage
from fitcoach.demo_quota.state_machine import (
    DemoQuotaStateMachine,
    EvaluationDecision,
    LockReason,
    QuotaEvent,
    QuotaState,
    RemoteSnapshot,
    SideEffect,
    SideEffectKind,
)

logger = logging.getLogger(__name__)


class SessionLogging(Protocol):
    async def log_attempt(self, device_id: uuid.UUID, attempt_index: int,
                          stage: SessionStage, metadata: Optional[AttemptMetadata] = None) -> None: ...


class EvaluationServicing(Protocol):
    async def evaluate(self, device_id: uuid.UUID, attempt_index: int,
                       context: Optional[AttemptMetadata] = None) -> EvaluationResult: ...


class DeviceIdentityProviding(Protocol):
    async def device_id(self) -> uuid.UUID: ...


class SnapshotSyncing(Protocol):
    async def fetch_snapshot(self, device_id: uuid.UUID) -> Optional[RemoteSnapshot]: ...
    async def mirror(self, snapshot: RemoteSnapshot, device_id: uuid.UUID) -> None: ...


class DemoQuotaCoordinating(Protocol):
    @property
    def state(self) -> QuotaState: ...
    def observe_states(self) -> Subscription[QuotaState]: ...
    async def prepare_for_demo_start(self) -> QuotaState: ...
    async def mark_attempt_started(self, metadata: Optional[AttemptMetadata] = None) -> QuotaState: ...
    async def mark_attempt_completed(self, metadata: Optional[AttemptMetadata] = None) -> QuotaState: ...
    async def reset_from_server(self, snapshot: RemoteSnapshot) -> QuotaState: ...


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


_PERSISTING_EFFECTS = {
    SideEffectKind.SET_ACTIVE_ATTEMPT,
    SideEffectKind.SET_ATTEMPTS_USED,
    SideEffectKind.PERSIST_EVALUATION_DECISION,
    SideEffectKind.REPLACE_SNAPSHOT,
}


class DemoQuotaCoordinator:
    def __init__(
        self,
        persistence: DemoAttemptPersisting,
        session_logger: SessionLogging,
        evaluation_service: EvaluationServicing,
        identity_provider: DeviceIdentityProviding,
        snapshot_sync: Optional[SnapshotSyncing] = None,
        state_machine: Optional[DemoQuotaStateMachine] = None,
        clock: Callable[[], datetime] = _utcnow,
        logging_attempts: int = C.LOGGING_ATTEMPTS,
    ):
        self._persistence = persistence
        self._session_logger = session_logger
        self._evaluation = evaluation_service
        self._identity = identity_provider
        self._sync = snapshot_sync
        self._machine = state_machine or DemoQuotaStateMachine()
        self._clock = clock
        self._logging_attempts = max(1, logging_attempts)

        self._state = self._machine.state_from(persistence.load_snapshot())
        self._states = StateBroadcaster(self._state)
        self._lock = asyncio.Lock()
        self._device_id: Optional[uuid.UUID] = None
        self._evaluations: Set[asyncio.Task] = set()

    # ---------- observation ----------
    @property
    def state(self) -> QuotaState:
        return self._state

    def observe_states(self) -> Subscription[QuotaState]:
        return self._states.subscribe()

    # ---------- public intents ----------
    async def prepare_for_demo_start(self) -> QuotaState:
        async with self._lock:
            try:
                device_id = await self._resolve_device_id()
                snapshot = await self._sync.fetch_snapshot(device_id) if self._sync else None
                if snapshot is not None:
                    await self._apply_locked(QuotaEvent.reset_from_server(snapshot), None)
                else:
                    self._states.publish(self._state)
            except Exception as e:
                logger.warning("Demo start preparation failed, locking quota: %s", e)
                await self._fail_closed()
            return self._state

    async def mark_attempt_started(self, metadata: Optional[AttemptMetadata] = None) -> QuotaState:
        """No-op unless an attempt may start; raises after failing closed when logging fails."""
        if not self._state.can_start_attempt:
            return self._state
        return await self.apply(QuotaEvent.start_attempt(), metadata)

    async def mark_attempt_completed(self, metadata: Optional[AttemptMetadata] = None) -> QuotaState:
        if not self._state.has_active_attempt:
            return self._state
        try:
            return await self.apply(QuotaEvent.attempt_completed(), metadata)
        except Exception as e:
            logger.warning("Completing attempt failed: %s", e)
            return self._state

    async def reset_from_server(self, snapshot: RemoteSnapshot) -> QuotaState:
        try:
            return await self.apply(QuotaEvent.reset_from_server(snapshot))
        except Exception as e:
            logger.warning("Reset from server failed: %s", e)
            return self._state

    async def apply(self, event: QuotaEvent, metadata: Optional[AttemptMetadata] = None) -> QuotaState:
        async with self._lock:
            return await self._apply_locked(event, metadata)

    async def wait_for_evaluations(self) -> None:
        """Waits until every detached evaluation has re-entered `apply`."""
        while self._evaluations:
            await asyncio.gather(*list(self._evaluations), return_exceptions=True)

    async def close(self) -> None:
        for task in list(self._evaluations):
            task.cancel()
        await asyncio.gather(*list(self._evaluations), return_exceptions=True)
        self._states.close()

    # ---------- internals (lock held) ----------
    async def _apply_locked(self, event: QuotaEvent, metadata: Optional[AttemptMetadata]) -> QuotaState:
        previous = self._state
        result = self._machine.reduce(previous, event)
        self._set_state(result.state)
        if result.state != previous:
            logger.debug("Quota %r --%s--> %r", previous, event.kind.value, result.state)

        dirty = False
        try:
            for effect in result.side_effects:
                await self._execute(effect, metadata)
                dirty = dirty or effect.kind in _PERSISTING_EFFECTS
        except Exception:
            self._set_state(previous)
            await self._fail_closed()
            raise

        if dirty:
            await self._mirror()
        return self._state

    async def _execute(self, effect: SideEffect, metadata: Optional[AttemptMetadata]) -> None:
        kind = effect.kind
        if kind == SideEffectKind.LOG_ATTEMPT_START:
            await self._log_attempt(effect.index, SessionStage.START, metadata)
        elif kind == SideEffectKind.LOG_ATTEMPT_COMPLETION:
            await self._log_attempt(effect.index, SessionStage.COMPLETION, metadata)
        elif kind == SideEffectKind.SET_ACTIVE_ATTEMPT:
            self._persistence.set_active_attempt(effect.index)
        elif kind == SideEffectKind.SET_ATTEMPTS_USED:
            self._persistence.set_attempts_used(effect.index)
        elif kind == SideEffectKind.REQUEST_EVALUATION:
            task = asyncio.create_task(self._run_evaluation(effect.index, metadata))
            self._evaluations.add(task)
            task.add_done_callback(self._evaluations.discard)
        elif kind == SideEffectKind.PERSIST_EVALUATION_DECISION:
            self._persistence.persist_evaluation_decision(effect.decision)
            self._persistence.persist_server_lock_reason(effect.decision.lock_reason)
        elif kind == SideEffectKind.REPLACE_SNAPSHOT:
            self._persistence.replace(effect.snapshot)

    async def _log_attempt(self, attempt_index: int, stage: SessionStage,
                           metadata: Optional[AttemptMetadata]) -> None:
        device_id = await self._resolve_device_id()
        last_error: Optional[Exception] = None
        for n in range(1, self._logging_attempts + 1):
            try:
                await self._session_logger.log_attempt(device_id, attempt_index, stage, metadata)
                return
            except Exception as e:
                last_error = e
                logger.warning("Logging attempt %d %s failed (%d/%d): %s",
                               attempt_index, stage.value, n, self._logging_attempts, e)
        raise LoggingFailedError(f"attempt {attempt_index} {stage.value}") from last_error

    async def _run_evaluation(self, attempt_index: int, context: Optional[AttemptMetadata]) -> None:
        try:
            device_id = await self._resolve_device_id()
            result = await self._evaluation.evaluate(device_id, attempt_index, context)
        except Exception as e:
            logger.warning("Evaluation of attempt %d failed, treating as timeout: %s", attempt_index, e)
            event = QuotaEvent.evaluation_timeout(EvaluationDecision.timeout(self._clock()))
        else:
            if result.allow_another_demo:
                event = QuotaEvent.evaluation_allow(EvaluationDecision.allow_second_attempt(result.timestamp))
            else:
                event = QuotaEvent.evaluation_deny(EvaluationDecision.deny(result.message, result.timestamp))

        try:
            await self.apply(event, context)
        except Exception as e:
            # apply already failed closed
            logger.warning("Applying evaluation outcome failed: %s", e)

    async def _fail_closed(self) -> None:
        try:
            current = self._persistence.load_snapshot()
            self._persistence.set_attempts_used(max(current.attempts_used, C.MAX_DEMO_ATTEMPTS))
            self._persistence.set_active_attempt(None)
            self._persistence.persist_server_lock_reason(LockReason.server_sync())
        except Exception as e:
            logger.error("Could not persist fail-closed lock: %s", e)
        self._set_state(QuotaState.locked(LockReason.server_sync()))
        logger.warning("Demo quota failed closed")
        await self._mirror()

    async def _mirror(self) -> None:
        if self._sync is None:
            return
        try:
            device_id = await self._resolve_device_id()
            snapshot = dataclasses.replace(self._persistence.load_snapshot(), last_sync_at=self._clock())
            await self._sync.mirror(snapshot, device_id)
        except Exception as e:
            logger.warning("Snapshot mirror failed: %s", e)

    async def _resolve_device_id(self) -> uuid.UUID:
        if self._device_id is None:
            try:
                self._device_id = await self._identity.device_id()
            except Exception as e:
                raise DeviceIdentityUnavailableError(str(e)) from e
        return self._device_id

    def _set_state(self, state: QuotaState) -> None:
        self._state = state
        self._states.publish(state)


class DisabledDemoQuotaCoordinator:
    """Quota that never locks. Starting reports the first attempt, everything else stays fresh."""

    def __init__(self):
        self._states = StateBroadcaster(QuotaState.fresh())
        self._states.close()

    @property
    def state(self) -> QuotaState:
        return QuotaState.fresh()

    def observe_states(self) -> Subscription[QuotaState]:
        return self._states.subscribe()

    async def prepare_for_demo_start(self) -> QuotaState:
        return QuotaState.fresh()

    async def mark_attempt_started(self, metadata: Optional[AttemptMetadata] = None) -> QuotaState:
        return QuotaState.first_attempt_active()

    async def mark_attempt_completed(self, metadata: Optional[AttemptMetadata] = None) -> QuotaState:
        return QuotaState.fresh()

    async def reset_from_server(self, snapshot: RemoteSnapshot) -> QuotaState:
        return QuotaState.fresh()
