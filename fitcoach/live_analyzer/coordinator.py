# fitcoach/live_analyzer/coordinator.py
from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Optional, Protocol

from fitcoach.live_analyzer.fsm import SessionEvent, SessionState, SquatSessionStateMachine
from fitcoach.live_analyzer.pose_types import (
    PhaseKind,
    PoseFrame,
    PosePhase,
    SessionError,
    SessionInterruption,
)
from fitcoach.live_analyzer.rep_counter import RepCounter, RepCounterSnapshot, RepResult
from fitcoach.live_analyzer.session_summary import SummaryContext
from fitcoach.live_analyzer.tts import CoachingSpeech

logger = logging.getLogger(__name__)


class SessionOutput(Protocol):
    def on_state(self, coordinator: "SquatSessionCoordinator", state: SessionState) -> None: ...
    def on_result(self, coordinator: "SquatSessionCoordinator", result: RepResult) -> None: ...
    def on_error(self, coordinator: "SquatSessionCoordinator", error: SessionError) -> None: ...


class OverlayOutput(Protocol):
    def on_overlay(self, coordinator: "SquatSessionCoordinator",
                   frame: Optional[PoseFrame], phase: PosePhase) -> None: ...


class CameraSession(Protocol):
    delegate: Any

    def request_permissions(self, completion: Callable[[bool], None]) -> None: ...
    def start_session(self) -> None: ...
    def stop_session(self) -> None: ...


class PosePipeline(Protocol):
    delegate: Any

    def process(self, image, timestamp: float) -> None: ...
    def cancel(self) -> None: ...
    def resume(self) -> None: ...


class SquatSessionCoordinator:
    """
    Drives camera, pose pipeline, rep counter and speech through the
    session state machine.

    Camera callbacks arrive on the capture thread; every entry point takes
    the same lock so the counter and state are only touched by one thread
    at a time. Teardown closes the frame gate under the lock, then joins the
    capture thread without holding it. start() and stop() must not race
    each other.
    """

    def __init__(self,
                 camera: CameraSession,
                 pose_pipeline: PosePipeline,
                 speech: CoachingSpeech,
                 rep_counter: Optional[RepCounter] = None):
        self.output: Optional[SessionOutput] = None
        self.overlay_output: Optional[OverlayOutput] = None

        self._machine = SquatSessionStateMachine()
        self._state = self._machine.initial_state()
        self._camera = camera
        self._pipeline = pose_pipeline
        self._speech = speech
        self._counter = rep_counter or RepCounter()
        self._lock = threading.RLock()
        self._accepting_frames = False

        self._camera.delegate = self
        self._pipeline.delegate = self

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def repetition_count(self) -> int:
        return self._counter.repetition_count

    # ---------- public API ----------
    def start(self):
        with self._lock:
            self._counter.reset()
            self._apply(SessionEvent.request_permissions())
        self._camera.request_permissions(self._on_permissions)

    def stop(self):
        self._stop_capture()
        with self._lock:
            self._speech.stop()
            self._counter.reset()
            self._apply(SessionEvent.session_ended())

    def capture_summary_snapshot(self) -> RepCounterSnapshot:
        self._stop_capture()
        with self._lock:
            self._speech.stop()
            snapshot = self._counter.snapshot()
            self._counter.reset()
            return snapshot

    def present_summary(self, context: SummaryContext):
        with self._lock:
            self._apply(SessionEvent.summary_ready(context))

    def handle_lifecycle_pause(self):
        """App left the foreground. The rep count survives; only capture is torn down."""
        self._stop_capture()
        with self._lock:
            self._apply(SessionEvent.entered_background())

    def handle_lifecycle_resume(self):
        with self._lock:
            self._apply(SessionEvent.resumed_foreground())
            self._configure_and_start()

    def close(self):
        self.stop()
        close = getattr(self._speech, "close", None)
        if close is not None:
            close()

    # ---------- camera delegate ----------
    def camera_did_output(self, camera, image, timestamp: float):
        self._pipeline.process(image, timestamp)

    def camera_did_encounter(self, camera, error: SessionError):
        with self._lock:
            self._apply(SessionEvent.fatal_error(error))
        self._emit_error(error)

    def camera_did_lose_permissions(self, camera):
        with self._lock:
            self._apply(SessionEvent.permissions_denied())
        self._emit_error(SessionError.permissions_denied())

    def camera_was_interrupted(self, camera, reason: SessionInterruption):
        with self._lock:
            self._accepting_frames = False
            self._pipeline.cancel()
            self._apply(SessionEvent.interruption_began(reason))

    def camera_interruption_ended(self, camera):
        with self._lock:
            self._apply(SessionEvent.interruption_ended())
            self._configure_and_start()

    # ---------- pose pipeline delegate ----------
    def pose_did_detect(self, pipeline, frame: PoseFrame):
        with self._lock:
            if not self._accepting_frames:
                return
            result = self._counter.process(frame)
            # never draw a skeleton the counter does not trust
            overlay_frame = None if result.phase.kind == PhaseKind.PAUSED_LOW_CONFIDENCE else frame
            self._publish(result, overlay_frame)

    def pose_did_lose_tracking(self, pipeline):
        with self._lock:
            if not self._accepting_frames:
                return
            result = self._counter.suspend_for_tracking_loss()
            self._publish(result, None)

    def pose_did_fail(self, pipeline, error: Exception):
        err = SessionError.capture_failed(str(error))
        with self._lock:
            self._apply(SessionEvent.fatal_error(err))
        self._emit_error(err)
        logger.error("Pose pipeline failed: %s", error)

    # ---------- internals ----------
    def _on_permissions(self, granted: bool):
        with self._lock:
            if granted:
                self._apply(SessionEvent.permissions_granted())
                self._configure_and_start()
                return
            self._apply(SessionEvent.permissions_denied())
        self._emit_error(SessionError.permissions_denied())

    def _configure_and_start(self):
        self._apply(SessionEvent.configuration_started())
        self._accepting_frames = True
        self._pipeline.resume()
        self._camera.start_session()
        self._apply(SessionEvent.configuration_succeeded())

    def _stop_capture(self):
        # frames already waiting on the lock see the closed gate and return
        with self._lock:
            self._accepting_frames = False
            self._pipeline.cancel()
        self._camera.stop_session()

    def _publish(self, result: RepResult, overlay_frame: Optional[PoseFrame]):
        if self.overlay_output is not None:
            self.overlay_output.on_overlay(self, overlay_frame, result.phase)
        self._apply(SessionEvent.pose_phase_changed(result.phase))
        if self.output is not None:
            self.output.on_result(self, result)
        if result.cue is not None:
            self._speech.enqueue(result.cue)
            logger.debug("Played cue %r", result.cue)

    def _apply(self, event: SessionEvent):
        self._state = self._machine.transition(self._state, event)
        logger.debug("Transitioned to %s via %s", self._state.kind.value, event.kind.value)
        if self.output is not None:
            self.output.on_state(self, self._state)

    def _emit_error(self, error: SessionError):
        if self.output is not None:
            self.output.on_error(self, error)
