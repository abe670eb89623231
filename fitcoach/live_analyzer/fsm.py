# fitcoach/live_analyzer/fsm.py
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from fitcoach.live_analyzer.pose_types import (
    PosePhase,
    SessionError,
    SessionInterruption,
)
from fitcoach.live_analyzer.session_summary import SummaryContext


class SessionStateKind(str, Enum):
    IDLE = "idle"
    PERMISSIONS_PENDING = "permissions_pending"
    CONFIGURING_SESSION = "configuring_session"
    RUNNING = "running"
    BACKGROUND_SUSPENDED = "background_suspended"
    INTERRUPTED = "interrupted"
    ENDING_ERROR = "ending_error"
    SUMMARY = "summary"


@dataclass(frozen=True)
class SessionState:
    kind: SessionStateKind
    phase: Optional[PosePhase] = None
    interruption: Optional[SessionInterruption] = None
    error: Optional[SessionError] = None
    summary: Optional[SummaryContext] = None

    @classmethod
    def idle(cls):
        return cls(SessionStateKind.IDLE)

    @classmethod
    def permissions_pending(cls):
        return cls(SessionStateKind.PERMISSIONS_PENDING)

    @classmethod
    def configuring_session(cls):
        return cls(SessionStateKind.CONFIGURING_SESSION)

    @classmethod
    def running(cls, phase: PosePhase):
        return cls(SessionStateKind.RUNNING, phase=phase)

    @classmethod
    def background_suspended(cls, previous_phase: Optional[PosePhase]):
        return cls(SessionStateKind.BACKGROUND_SUSPENDED, phase=previous_phase)

    @classmethod
    def interrupted(cls, reason: SessionInterruption, previous_phase: Optional[PosePhase]):
        return cls(SessionStateKind.INTERRUPTED, phase=previous_phase, interruption=reason)

    @classmethod
    def ending_error(cls, error: SessionError):
        return cls(SessionStateKind.ENDING_ERROR, error=error)

    @classmethod
    def summary_ready(cls, context: SummaryContext):
        return cls(SessionStateKind.SUMMARY, summary=context)


class SessionEventKind(str, Enum):
    REQUEST_PERMISSIONS = "request_permissions"
    PERMISSIONS_GRANTED = "permissions_granted"
    PERMISSIONS_DENIED = "permissions_denied"
    CONFIGURATION_STARTED = "configuration_started"
    CONFIGURATION_SUCCEEDED = "configuration_succeeded"
    CONFIGURATION_FAILED = "configuration_failed"
    POSE_PHASE_CHANGED = "pose_phase_changed"
    ENTERED_BACKGROUND = "entered_background"
    RESUMED_FOREGROUND = "resumed_foreground"
    INTERRUPTION_BEGAN = "interruption_began"
    INTERRUPTION_ENDED = "interruption_ended"
    FATAL_ERROR = "fatal_error"
    SESSION_ENDED = "session_ended"
    SUMMARY_READY = "summary_ready"


@dataclass(frozen=True)
class SessionEvent:
    kind: SessionEventKind
    phase: Optional[PosePhase] = None
    interruption: Optional[SessionInterruption] = None
    error: Optional[SessionError] = None
    summary: Optional[SummaryContext] = None

    @classmethod
    def request_permissions(cls):
        return cls(SessionEventKind.REQUEST_PERMISSIONS)

    @classmethod
    def permissions_granted(cls):
        return cls(SessionEventKind.PERMISSIONS_GRANTED)

    @classmethod
    def permissions_denied(cls):
        return cls(SessionEventKind.PERMISSIONS_DENIED)

    @classmethod
    def configuration_started(cls):
        return cls(SessionEventKind.CONFIGURATION_STARTED)

    @classmethod
    def configuration_succeeded(cls, initial_phase: Optional[PosePhase] = None):
        return cls(SessionEventKind.CONFIGURATION_SUCCEEDED, phase=initial_phase or PosePhase.idle())

    @classmethod
    def configuration_failed(cls, error: SessionError):
        return cls(SessionEventKind.CONFIGURATION_FAILED, error=error)

    @classmethod
    def pose_phase_changed(cls, phase: PosePhase):
        return cls(SessionEventKind.POSE_PHASE_CHANGED, phase=phase)

    @classmethod
    def entered_background(cls):
        return cls(SessionEventKind.ENTERED_BACKGROUND)

    @classmethod
    def resumed_foreground(cls):
        return cls(SessionEventKind.RESUMED_FOREGROUND)

    @classmethod
    def interruption_began(cls, reason: SessionInterruption):
        return cls(SessionEventKind.INTERRUPTION_BEGAN, interruption=reason)

    @classmethod
    def interruption_ended(cls):
        return cls(SessionEventKind.INTERRUPTION_ENDED)

    @classmethod
    def fatal_error(cls, error: SessionError):
        return cls(SessionEventKind.FATAL_ERROR, error=error)

    @classmethod
    def session_ended(cls):
        return cls(SessionEventKind.SESSION_ENDED)

    @classmethod
    def summary_ready(cls, context: SummaryContext):
        return cls(SessionEventKind.SUMMARY_READY, summary=context)


class SquatSessionStateMachine:
    """
    Session lifecycle around the live rep counter:
      idle -> permissions_pending -> configuring_session -> running(phase)
    Resuming from background or an interruption always goes back through
    configuring_session. fatal_error wins from any state.
    """

    def initial_state(self) -> SessionState:
        return SessionState.idle()

    def transition(self, state: SessionState, event: SessionEvent) -> SessionState:
        S, E = SessionStateKind, SessionEventKind
        s, e = state.kind, event.kind

        if e == E.FATAL_ERROR:
            return SessionState.ending_error(event.error)
        if e == E.SESSION_ENDED:
            return SessionState.idle()

        if s == S.IDLE and e == E.REQUEST_PERMISSIONS:
            return SessionState.permissions_pending()
        if s == S.PERMISSIONS_PENDING:
            if e == E.PERMISSIONS_GRANTED:
                return SessionState.configuring_session()
            if e == E.PERMISSIONS_DENIED:
                return SessionState.ending_error(SessionError.permissions_denied())
        if s == S.CONFIGURING_SESSION:
            if e == E.CONFIGURATION_STARTED:
                return state
            if e == E.CONFIGURATION_SUCCEEDED:
                return SessionState.running(event.phase)
            if e == E.CONFIGURATION_FAILED:
                return SessionState.ending_error(event.error)
        if s == S.RUNNING:
            if e == E.POSE_PHASE_CHANGED:
                return SessionState.running(event.phase)
            if e == E.SUMMARY_READY:
                return SessionState.summary_ready(event.summary)
            if e == E.ENTERED_BACKGROUND:
                return SessionState.background_suspended(state.phase)
            if e == E.INTERRUPTION_BEGAN:
                return SessionState.interrupted(event.interruption, state.phase)
            if e == E.CONFIGURATION_FAILED:
                return SessionState.ending_error(event.error)
        if s == S.BACKGROUND_SUSPENDED and e == E.RESUMED_FOREGROUND:
            return SessionState.configuring_session()
        if s == S.INTERRUPTED and e == E.INTERRUPTION_ENDED:
            return SessionState.configuring_session()
        if s == S.IDLE and e == E.CONFIGURATION_FAILED:
            return SessionState.ending_error(event.error)

        # reconfiguration can be kicked off from anywhere
        if e == E.CONFIGURATION_STARTED:
            return SessionState.configuring_session()

        if s == S.RUNNING and e == E.PERMISSIONS_DENIED:
            return SessionState.ending_error(SessionError.permissions_denied())
        if s == S.IDLE and e in (E.CONFIGURATION_SUCCEEDED, E.POSE_PHASE_CHANGED):
            return SessionState.running(event.phase)

        return state
