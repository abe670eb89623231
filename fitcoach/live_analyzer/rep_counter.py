# fitcoach/live_analyzer/rep_counter.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple

from fitcoach.common import config as C
from fitcoach.common.geometry import clamp
from fitcoach.common.smoothing import EMA
from fitcoach.live_analyzer.pose_types import (
    CoachingCue,
    CorrectionReason,
    PhaseKind,
    PoseFrame,
    PosePhase,
)


@dataclass(frozen=True)
class RepCounterConfig:
    """
    Thresholds are in units of normalized depth: hip drop below the knee
    divided by the knee-to-ankle distance. Times are in seconds.
    """
    descent_threshold: float = C.DESCENT_THRESHOLD
    release_threshold: float = C.RELEASE_THRESHOLD
    min_dwell_time: float = C.MIN_DWELL_TIME_S
    min_confidence: float = C.MIN_CONFIDENCE
    smoothing_alpha: float = C.SMOOTHING_ALPHA
    rep_completion_hold: float = C.REP_COMPLETION_HOLD_S
    invalid_motion_grace: float = C.INVALID_MOTION_GRACE_S
    sample_reset_interval: float = C.SAMPLE_RESET_INTERVAL_S


@dataclass(frozen=True)
class RepResult:
    phase: PosePhase
    repetition_count: int
    cue: Optional[CoachingCue]
    confidence: float


@dataclass(frozen=True)
class RepCounterSnapshot:
    repetition_count: int = 0
    tempo_samples: Tuple[float, ...] = ()
    correction_counts: Dict[CorrectionReason, int] = field(default_factory=dict)


class RepCounter:
    """
    Turns a stream of PoseFrames into phases, a rep count and coaching cues.

    Phase transitions compare the raw normalized depth against the thresholds;
    the EMA-smoothed depth only drives the reported progress.
    """

    def __init__(self, config: Optional[RepCounterConfig] = None):
        self.config = config or RepCounterConfig()
        self._ema = EMA(alpha=self.config.smoothing_alpha, initial=0.0)
        self.reset()

    def reset(self):
        self._phase = PosePhase.idle()
        self._rep_count = 0
        self._ema.reset()
        self._dwell_start: Optional[float] = None
        self._bottom_reached = False
        self._low_confidence_active = False
        self._last_rep_completion: Optional[float] = None
        self._last_sample: Optional[float] = None
        self._tempo_samples: list[float] = []
        self._corrections: Dict[CorrectionReason, int] = {}

    @property
    def repetition_count(self) -> int:
        return self._rep_count

    @property
    def phase(self) -> PosePhase:
        return self._phase

    def snapshot(self) -> RepCounterSnapshot:
        return RepCounterSnapshot(
            repetition_count=self._rep_count,
            tempo_samples=tuple(self._tempo_samples),
            correction_counts=dict(self._corrections),
        )

    def suspend_for_tracking_loss(self) -> RepResult:
        """
        Pose lost entirely. Always reports a low-confidence cue, even when
        already paused, but only the first frame of an episode is counted.
        """
        cue = self._emit_low_confidence_cue_if_needed()
        if cue is None:
            cue = CoachingCue.correction(CorrectionReason.LOW_CONFIDENCE)
        return self._result(self._phase, cue, 0.0)

    def process(self, frame: PoseFrame) -> RepResult:
        cfg = self.config
        cue: Optional[CoachingCue] = None
        t = frame.timestamp

        # stale session (e.g. app was backgrounded): drop the baseline, keep the count
        if self._last_sample is not None and t - self._last_sample > cfg.sample_reset_interval:
            self._ema.reset()
            self._dwell_start = None
            self._bottom_reached = False
        self._last_sample = t

        hip, knee, ankle = frame.hip_midpoint, frame.knee_midpoint, frame.ankle_midpoint
        if hip is None or knee is None or ankle is None:
            cue = self._emit_low_confidence_cue_if_needed()
            return self._result(PosePhase.paused_low_confidence(), cue, 0.0)

        confidence = clamp(frame.average_lower_body_confidence)
        if confidence < cfg.min_confidence:
            cue = self._emit_low_confidence_cue_if_needed()
            return self._result(PosePhase.paused_low_confidence(), cue, confidence)

        if self._low_confidence_active:
            # never resume mid-rep from an uncertain baseline
            self._low_confidence_active = False
            self._phase = PosePhase.idle()
            self._reset_descending_state()

        hip_depth = max(hip[1] - knee[1], 0.0)
        baseline = max(ankle[1] - knee[1], 0.01)
        depth = hip_depth / baseline

        smoothed = self._ema.update(depth)
        progress = self._progress(smoothed)

        kind = self._phase.kind
        if kind == PhaseKind.IDLE:
            self._reset_descending_state()
            if depth >= cfg.descent_threshold:
                self._dwell_start = t
                self._phase = PosePhase.descending(progress)
            else:
                self._phase = PosePhase.idle()

        elif kind == PhaseKind.DESCENDING:
            if depth >= cfg.descent_threshold:
                self._phase = PosePhase.descending(progress)
                if self._dwell_start is None:
                    self._dwell_start = t
                if t - self._dwell_start >= cfg.min_dwell_time:
                    self._bottom_reached = True
            elif self._bottom_reached:
                cue = self._advance_ascending(depth, t, progress)
            elif self._dwell_start is not None and t - self._dwell_start >= cfg.invalid_motion_grace:
                cue = CoachingCue.correction(CorrectionReason.INSUFFICIENT_DEPTH)
                self._count(cue)
                self._phase = PosePhase.idle()
                self._reset_descending_state()
            else:
                # too brief to be worth a correction
                self._phase = PosePhase.idle()
                self._reset_descending_state()

        elif kind == PhaseKind.ASCENDING:
            cue = self._advance_ascending(depth, t, progress)

        elif kind == PhaseKind.REP_COMPLETED:
            held_since = self._last_rep_completion
            if held_since is not None and t - held_since >= cfg.rep_completion_hold:
                self._phase = PosePhase.idle()
            else:
                self._phase = PosePhase.rep_completed(
                    self._rep_count, held_since if held_since is not None else t
                )

        elif kind == PhaseKind.PAUSED_LOW_CONFIDENCE:
            self._phase = PosePhase.idle()
            self._reset_descending_state()
            if depth >= cfg.descent_threshold:
                self._phase = PosePhase.descending(progress)
                self._dwell_start = t

        return self._result(self._phase, cue, confidence)

    # ------------------------------------------------------------------ helpers

    def _emit_low_confidence_cue_if_needed(self) -> Optional[CoachingCue]:
        if self._low_confidence_active:
            return None
        self._low_confidence_active = True
        self._reset_descending_state()
        self._phase = PosePhase.paused_low_confidence()
        cue = CoachingCue.correction(CorrectionReason.LOW_CONFIDENCE)
        self._count(cue)
        return cue

    def _advance_ascending(self, depth: float, t: float, progress: float) -> Optional[CoachingCue]:
        if depth <= self.config.release_threshold:
            self._rep_count += 1
            if self._dwell_start is not None:
                self._tempo_samples.append(t - self._dwell_start)
            self._phase = PosePhase.rep_completed(self._rep_count, t)
            self._last_rep_completion = t
            self._reset_descending_state()
            return CoachingCue.positive()
        self._phase = PosePhase.ascending(progress)
        return None

    def _reset_descending_state(self):
        self._dwell_start = None
        self._bottom_reached = False

    def _progress(self, depth: float) -> float:
        rng = max(self.config.descent_threshold - self.config.release_threshold, 0.001)
        return clamp((depth - self.config.release_threshold) / rng)

    def _count(self, cue: CoachingCue):
        if cue.reason is not None:
            self._corrections[cue.reason] = self._corrections.get(cue.reason, 0) + 1

    def _result(self, phase: PosePhase, cue: Optional[CoachingCue], confidence: float) -> RepResult:
        return RepResult(phase=phase, repetition_count=self._rep_count, cue=cue, confidence=confidence)
