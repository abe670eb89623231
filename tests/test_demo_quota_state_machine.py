from datetime import datetime, timezone

import pytest

from fitcoach.demo_quota.state_machine import (
    DemoQuotaStateMachine,
    EvaluationDecision,
    LockReason,
    QuotaEvent,
    QuotaEventKind,
    QuotaState,
    RemoteSnapshot,
    SideEffect,
    snapshot_for,
)

TS = datetime(2026, 2, 1, 9, 30, tzinfo=timezone.utc)

ALLOW = EvaluationDecision.allow_second_attempt(TS)
DENY = EvaluationDecision.deny("Not this time", TS)
TIMEOUT = EvaluationDecision.timeout(TS)

ALL_STATES = [
    QuotaState.fresh(),
    QuotaState.first_attempt_active(),
    QuotaState.gate_pending(),
    QuotaState.second_attempt_eligible(),
    QuotaState.second_attempt_active(),
    QuotaState.locked(LockReason.quota_exhausted()),
    QuotaState.locked(LockReason.evaluation_denied("nope")),
    QuotaState.locked(LockReason.evaluation_timeout()),
    QuotaState.locked(LockReason.server_sync()),
]

ALL_EVENTS = [
    QuotaEvent.start_attempt(),
    QuotaEvent.attempt_completed(),
    QuotaEvent.evaluation_allow(ALLOW),
    QuotaEvent.evaluation_deny(DENY),
    QuotaEvent.evaluation_timeout(TIMEOUT),
    QuotaEvent.reset_from_server(RemoteSnapshot.empty()),
]


@pytest.fixture
def machine():
    return DemoQuotaStateMachine()


def test_first_attempt_start(machine):
    result = machine.reduce(QuotaState.fresh(), QuotaEvent.start_attempt())
    assert result.state == QuotaState.first_attempt_active()
    assert result.side_effects == (SideEffect.log_attempt_start(1), SideEffect.set_active_attempt(1))


def test_first_attempt_completion_requests_evaluation(machine):
    result = machine.reduce(QuotaState.first_attempt_active(), QuotaEvent.attempt_completed())
    assert result.state == QuotaState.gate_pending()
    assert result.side_effects == (
        SideEffect.log_attempt_completion(1),
        SideEffect.set_active_attempt(None),
        SideEffect.set_attempts_used(1),
        SideEffect.request_evaluation(1),
    )


@pytest.mark.parametrize("event, expected", [
    (QuotaEvent.evaluation_allow(ALLOW), QuotaState.second_attempt_eligible()),
    (QuotaEvent.evaluation_deny(DENY), QuotaState.locked(LockReason.evaluation_denied("Not this time"))),
    (QuotaEvent.evaluation_timeout(TIMEOUT), QuotaState.locked(LockReason.evaluation_timeout())),
])
def test_gate_decisions(machine, event, expected):
    result = machine.reduce(QuotaState.gate_pending(), event)
    assert result.state == expected
    assert result.side_effects == (SideEffect.persist_evaluation_decision(event.decision),)


def test_second_attempt_cycle(machine):
    started = machine.reduce(QuotaState.second_attempt_eligible(), QuotaEvent.start_attempt())
    assert started.state == QuotaState.second_attempt_active()
    assert started.side_effects == (SideEffect.log_attempt_start(2), SideEffect.set_active_attempt(2))

    done = machine.reduce(started.state, QuotaEvent.attempt_completed())
    assert done.state == QuotaState.locked(LockReason.quota_exhausted())
    assert done.side_effects == (
        SideEffect.log_attempt_completion(2),
        SideEffect.set_active_attempt(None),
        SideEffect.set_attempts_used(2),
    )


def test_locked_only_leaves_via_server_reset(machine):
    locked = QuotaState.locked(LockReason.quota_exhausted())
    for event in ALL_EVENTS[:-1]:
        assert machine.reduce(locked, event).state == locked

    reset = machine.reduce(locked, QuotaEvent.reset_from_server(RemoteSnapshot.empty()))
    assert reset.state == QuotaState.fresh()
    assert reset.side_effects == (SideEffect.replace_snapshot(RemoteSnapshot.empty()),)


@pytest.mark.parametrize("state", ALL_STATES, ids=repr)
@pytest.mark.parametrize("event", ALL_EVENTS, ids=lambda e: e.kind.value)
def test_reducer_is_total(machine, state, event):
    result = machine.reduce(state, event)
    assert isinstance(result.state, QuotaState)
    if not result.side_effects:
        assert result.state == state


def test_unhandled_pairs_have_no_side_effects(machine):
    assert machine.reduce(QuotaState.fresh(), QuotaEvent.attempt_completed()).side_effects == ()
    assert machine.reduce(QuotaState.first_attempt_active(), QuotaEvent.start_attempt()).side_effects == ()
    assert machine.reduce(QuotaState.second_attempt_eligible(),
                          QuotaEvent.evaluation_deny(DENY)).side_effects == ()


def test_event_without_decision_is_ignored(machine):
    event = QuotaEvent(QuotaEventKind.EVALUATION_ALLOW)
    assert machine.reduce(QuotaState.gate_pending(), event).state == QuotaState.gate_pending()


@pytest.mark.parametrize("state", ALL_STATES, ids=repr)
def test_state_from_snapshot_round_trips(machine, state):
    snapshot = snapshot_for(state, TS)
    restored = machine.state_from(snapshot)
    assert restored == state
    assert machine.state_from(snapshot_for(restored, TS)) == restored


@pytest.mark.parametrize("snapshot, expected", [
    (RemoteSnapshot(attempts_used=3), QuotaState.locked(LockReason.quota_exhausted())),
    (RemoteSnapshot(attempts_used=1, last_decision=DENY),
     QuotaState.locked(LockReason.evaluation_denied("Not this time"))),
    (RemoteSnapshot(attempts_used=1, last_decision=TIMEOUT), QuotaState.locked(LockReason.evaluation_timeout())),
    (RemoteSnapshot(attempts_used=2, server_lock_reason=LockReason.server_sync()),
     QuotaState.locked(LockReason.server_sync())),
    (RemoteSnapshot(attempts_used=1, active_attempt_index=2), QuotaState.second_attempt_active()),
    (RemoteSnapshot(attempts_used=0, active_attempt_index=1), QuotaState.first_attempt_active()),
])
def test_state_from_snapshot(machine, snapshot, expected):
    assert machine.state_from(snapshot) == expected


def test_state_helpers():
    assert QuotaState.fresh().can_start_attempt
    assert QuotaState.second_attempt_eligible().can_start_attempt
    assert not QuotaState.gate_pending().can_start_attempt
    assert QuotaState.second_attempt_active().has_active_attempt
    assert QuotaState.locked(LockReason.server_sync()).is_locked
    assert repr(QuotaState.locked(LockReason.server_sync())) == "locked(server_sync)"
    assert repr(QuotaState.gate_pending()) == "gate_pending"


def test_decision_lock_reasons():
    assert ALLOW.lock_reason is None
    assert DENY.lock_reason == LockReason.evaluation_denied("Not this time")
    assert TIMEOUT.lock_reason == LockReason.evaluation_timeout()
    assert DENY.denial_message == "Not this time"
    assert TIMEOUT.denial_message is None
