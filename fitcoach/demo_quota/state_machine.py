# fitcoach/demo_quota/state_machine.py
"""
Reducer for the two-attempt free demo quota.

    fresh -> first_attempt_active -> gate_pending -> second_attempt_eligible
          -> second_attempt_active -> locked(quota_exhausted)

gate_pending can also lock on a denied or timed-out evaluation. `locked`
is only left through reset_from_server. The reducer does no I/O: it
returns the next state plus the side effects the coordinator must run in
order.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional, Tuple

from fitcoach.common import config as C


class LockReasonKind(str, Enum):
    QUOTA_EXHAUSTED = "quota_exhausted"
    EVALUATION_DENIED = "evaluation_denied"
    EVALUATION_TIMEOUT = "evaluation_timeout"
    SERVER_SYNC = "server_sync"


@dataclass(frozen=True)
class LockReason:
    kind: LockReasonKind
    message: Optional[str] = None  # only for evaluation_denied

    @classmethod
    def quota_exhausted(cls) -> "LockReason":
        return cls(LockReasonKind.QUOTA_EXHAUSTED)

    @classmethod
    def evaluation_denied(cls, message: Optional[str] = None) -> "LockReason":
        return cls(LockReasonKind.EVALUATION_DENIED, message)

    @classmethod
    def evaluation_timeout(cls) -> "LockReason":
        return cls(LockReasonKind.EVALUATION_TIMEOUT)

    @classmethod
    def server_sync(cls) -> "LockReason":
        return cls(LockReasonKind.SERVER_SYNC)


class DecisionKind(str, Enum):
    ALLOW = "allow"
    DENY = "deny"
    TIMEOUT = "timeout"


@dataclass(frozen=True)
class EvaluationDecision:
    kind: DecisionKind
    timestamp: datetime
    message: Optional[str] = None

    @classmethod
    def allow_second_attempt(cls, timestamp: datetime) -> "EvaluationDecision":
        return cls(DecisionKind.ALLOW, timestamp)

    @classmethod
    def deny(cls, message: Optional[str], timestamp: datetime) -> "EvaluationDecision":
        return cls(DecisionKind.DENY, timestamp, message)

    @classmethod
    def timeout(cls, timestamp: datetime) -> "EvaluationDecision":
        return cls(DecisionKind.TIMEOUT, timestamp)

    @property
    def allows_second_attempt(self) -> bool:
        return self.kind == DecisionKind.ALLOW

    @property
    def lock_reason(self) -> Optional[LockReason]:
        if self.kind == DecisionKind.DENY:
            return LockReason.evaluation_denied(self.message)
        if self.kind == DecisionKind.TIMEOUT:
            return LockReason.evaluation_timeout()
        return None

    @property
    def denial_message(self) -> Optional[str]:
        return self.message if self.kind == DecisionKind.DENY else None


@dataclass(frozen=True)
class RemoteSnapshot:
    attempts_used: int = 0
    active_attempt_index: Optional[int] = None
    last_decision: Optional[EvaluationDecision] = None
    server_lock_reason: Optional[LockReason] = None
    last_sync_at: Optional[datetime] = None

    @classmethod
    def empty(cls) -> "RemoteSnapshot":
        return cls()


class QuotaStateKind(str, Enum):
    FRESH = "fresh"
    FIRST_ATTEMPT_ACTIVE = "first_attempt_active"
    GATE_PENDING = "gate_pending"
    SECOND_ATTEMPT_ELIGIBLE = "second_attempt_eligible"
    SECOND_ATTEMPT_ACTIVE = "second_attempt_active"
    LOCKED = "locked"


@dataclass(frozen=True)
class QuotaState:
    kind: QuotaStateKind
    reason: Optional[LockReason] = None

    @classmethod
    def fresh(cls) -> "QuotaState":
        return cls(QuotaStateKind.FRESH)

    @classmethod
    def first_attempt_active(cls) -> "QuotaState":
        return cls(QuotaStateKind.FIRST_ATTEMPT_ACTIVE)

    @classmethod
    def gate_pending(cls) -> "QuotaState":
        return cls(QuotaStateKind.GATE_PENDING)

    @classmethod
    def second_attempt_eligible(cls) -> "QuotaState":
        return cls(QuotaStateKind.SECOND_ATTEMPT_ELIGIBLE)

    @classmethod
    def second_attempt_active(cls) -> "QuotaState":
        return cls(QuotaStateKind.SECOND_ATTEMPT_ACTIVE)

    @classmethod
    def locked(cls, reason: LockReason) -> "QuotaState":
        return cls(QuotaStateKind.LOCKED, reason)

    @property
    def is_locked(self) -> bool:
        return self.kind == QuotaStateKind.LOCKED

    @property
    def has_active_attempt(self) -> bool:
        return self.kind in (QuotaStateKind.FIRST_ATTEMPT_ACTIVE, QuotaStateKind.SECOND_ATTEMPT_ACTIVE)

    @property
    def can_start_attempt(self) -> bool:
        return self.kind in (QuotaStateKind.FRESH, QuotaStateKind.SECOND_ATTEMPT_ELIGIBLE)

    def __repr__(self) -> str:
        if self.reason is None:
            return self.kind.value
        return f"locked({self.reason.kind.value})"


class QuotaEventKind(str, Enum):
    START_ATTEMPT = "start_attempt"
    ATTEMPT_COMPLETED = "attempt_completed"
    EVALUATION_ALLOW = "evaluation_allow"
    EVALUATION_DENY = "evaluation_deny"
    EVALUATION_TIMEOUT = "evaluation_timeout"
    RESET_FROM_SERVER = "reset_from_server"


@dataclass(frozen=True)
class QuotaEvent:
    kind: QuotaEventKind
    decision: Optional[EvaluationDecision] = None
    snapshot: Optional[RemoteSnapshot] = None

    @classmethod
    def start_attempt(cls) -> "QuotaEvent":
        return cls(QuotaEventKind.START_ATTEMPT)

    @classmethod
    def attempt_completed(cls) -> "QuotaEvent":
        return cls(QuotaEventKind.ATTEMPT_COMPLETED)

    @classmethod
    def evaluation_allow(cls, decision: EvaluationDecision) -> "QuotaEvent":
        return cls(QuotaEventKind.EVALUATION_ALLOW, decision=decision)

    @classmethod
    def evaluation_deny(cls, decision: EvaluationDecision) -> "QuotaEvent":
        return cls(QuotaEventKind.EVALUATION_DENY, decision=decision)

    @classmethod
    def evaluation_timeout(cls, decision: EvaluationDecision) -> "QuotaEvent":
        return cls(QuotaEventKind.EVALUATION_TIMEOUT, decision=decision)

    @classmethod
    def reset_from_server(cls, snapshot: RemoteSnapshot) -> "QuotaEvent":
        return cls(QuotaEventKind.RESET_FROM_SERVER, snapshot=snapshot)


class SideEffectKind(str, Enum):
    LOG_ATTEMPT_START = "log_attempt_start"
    LOG_ATTEMPT_COMPLETION = "log_attempt_completion"
    SET_ACTIVE_ATTEMPT = "set_active_attempt"
    SET_ATTEMPTS_USED = "set_attempts_used"
    REQUEST_EVALUATION = "request_evaluation"
    PERSIST_EVALUATION_DECISION = "persist_evaluation_decision"
    REPLACE_SNAPSHOT = "replace_snapshot"


@dataclass(frozen=True)
class SideEffect:
    kind: SideEffectKind
    index: Optional[int] = None  # attempt index, or the used count for set_attempts_used
    decision: Optional[EvaluationDecision] = None
    snapshot: Optional[RemoteSnapshot] = None

    @classmethod
    def log_attempt_start(cls, index: int):
        return cls(SideEffectKind.LOG_ATTEMPT_START, index=index)

    @classmethod
    def log_attempt_completion(cls, index: int):
        return cls(SideEffectKind.LOG_ATTEMPT_COMPLETION, index=index)

    @classmethod
    def set_active_attempt(cls, index: Optional[int]):
        return cls(SideEffectKind.SET_ACTIVE_ATTEMPT, index=index)

    @classmethod
    def set_attempts_used(cls, count: int):
        return cls(SideEffectKind.SET_ATTEMPTS_USED, index=count)

    @classmethod
    def request_evaluation(cls, attempt_index: int):
        return cls(SideEffectKind.REQUEST_EVALUATION, index=attempt_index)

    @classmethod
    def persist_evaluation_decision(cls, decision: EvaluationDecision):
        return cls(SideEffectKind.PERSIST_EVALUATION_DECISION, decision=decision)

    @classmethod
    def replace_snapshot(cls, snapshot: RemoteSnapshot):
        return cls(SideEffectKind.REPLACE_SNAPSHOT, snapshot=snapshot)


@dataclass(frozen=True)
class ReduceResult:
    state: QuotaState
    side_effects: Tuple[SideEffect, ...] = ()


class DemoQuotaStateMachine:

    def reduce(self, state: QuotaState, event: QuotaEvent) -> ReduceResult:
        S, E = QuotaStateKind, QuotaEventKind
        s, e = state.kind, event.kind

        if s == S.FRESH and e == E.START_ATTEMPT:
            return ReduceResult(QuotaState.first_attempt_active(), (
                SideEffect.log_attempt_start(1),
                SideEffect.set_active_attempt(1),
            ))

        if s == S.FIRST_ATTEMPT_ACTIVE and e == E.ATTEMPT_COMPLETED:
            return ReduceResult(QuotaState.gate_pending(), (
                SideEffect.log_attempt_completion(1),
                SideEffect.set_active_attempt(None),
                SideEffect.set_attempts_used(1),
                SideEffect.request_evaluation(1),
            ))

        if s == S.GATE_PENDING and event.decision is not None:
            if e == E.EVALUATION_ALLOW:
                nxt = QuotaState.second_attempt_eligible()
            elif e == E.EVALUATION_DENY:
                nxt = QuotaState.locked(LockReason.evaluation_denied(event.decision.denial_message))
            elif e == E.EVALUATION_TIMEOUT:
                nxt = QuotaState.locked(LockReason.evaluation_timeout())
            else:
                nxt = None
            if nxt is not None:
                return ReduceResult(nxt, (SideEffect.persist_evaluation_decision(event.decision),))

        if s == S.SECOND_ATTEMPT_ELIGIBLE and e == E.START_ATTEMPT:
            return ReduceResult(QuotaState.second_attempt_active(), (
                SideEffect.log_attempt_start(2),
                SideEffect.set_active_attempt(2),
            ))

        if s == S.SECOND_ATTEMPT_ACTIVE and e == E.ATTEMPT_COMPLETED:
            return ReduceResult(QuotaState.locked(LockReason.quota_exhausted()), (
                SideEffect.log_attempt_completion(2),
                SideEffect.set_active_attempt(None),
                SideEffect.set_attempts_used(C.MAX_DEMO_ATTEMPTS),
            ))

        if e == E.RESET_FROM_SERVER and event.snapshot is not None:
            return ReduceResult(self.state_from(event.snapshot),
                                (SideEffect.replace_snapshot(event.snapshot),))

        return ReduceResult(state)

    def state_from(self, snapshot: RemoteSnapshot) -> QuotaState:
        """Rehydrates state from a persisted or served snapshot. Idempotent."""
        if snapshot.active_attempt_index is not None:
            if snapshot.active_attempt_index == 2:
                return QuotaState.second_attempt_active()
            return QuotaState.first_attempt_active()

        if snapshot.attempts_used >= C.MAX_DEMO_ATTEMPTS:
            return QuotaState.locked(snapshot.server_lock_reason or LockReason.quota_exhausted())

        if snapshot.attempts_used == 1:
            decision = snapshot.last_decision
            if decision is None:
                return QuotaState.gate_pending()
            if decision.allows_second_attempt:
                return QuotaState.second_attempt_eligible()
            return QuotaState.locked(decision.lock_reason or LockReason.server_sync())

        return QuotaState.fresh()


def snapshot_for(state: QuotaState, timestamp: datetime) -> RemoteSnapshot:
    """A snapshot that rehydrates to `state`; decisions are stamped with `timestamp`."""
    k = state.kind
    if k == QuotaStateKind.FIRST_ATTEMPT_ACTIVE:
        return RemoteSnapshot(attempts_used=0, active_attempt_index=1)
    if k == QuotaStateKind.SECOND_ATTEMPT_ACTIVE:
        return RemoteSnapshot(attempts_used=1, active_attempt_index=2,
                              last_decision=EvaluationDecision.allow_second_attempt(timestamp))
    if k == QuotaStateKind.GATE_PENDING:
        return RemoteSnapshot(attempts_used=1)
    if k == QuotaStateKind.SECOND_ATTEMPT_ELIGIBLE:
        return RemoteSnapshot(attempts_used=1,
                              last_decision=EvaluationDecision.allow_second_attempt(timestamp))
    if k == QuotaStateKind.LOCKED:
        return RemoteSnapshot(attempts_used=C.MAX_DEMO_ATTEMPTS, server_lock_reason=state.reason)
    return RemoteSnapshot.empty()
