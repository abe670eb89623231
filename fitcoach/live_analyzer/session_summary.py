# fitcoach/live_analyzer/session_summary.py
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Dict, Optional, Tuple

from fitcoach.live_analyzer.pose_types import CorrectionReason
from fitcoach.live_analyzer.rep_counter import RepCounterSnapshot


class TempoInsight(str, Enum):
    INSUFFICIENT_DATA = "insufficient_data"
    STEADY = "steady"
    NEEDS_CONTROL = "needs_control"
    EXPLOSIVE = "explosive"

    @property
    def title(self) -> str:
        return _TEMPO_TEXT[self][0]

    @property
    def subtitle(self) -> str:
        return _TEMPO_TEXT[self][1]


_TEMPO_TEXT = {
    TempoInsight.INSUFFICIENT_DATA: (
        "Need more reps",
        "Complete at least one full rep to see tempo insights.",
    ),
    TempoInsight.STEADY: (
        "Steady Tempo",
        "You maintained a consistent pace – keep stacking controlled reps.",
    ),
    TempoInsight.NEEDS_CONTROL: (
        "Slow It Down",
        "Pace felt rushed. Focus on a smoother descent and hold at the bottom.",
    ),
    TempoInsight.EXPLOSIVE: (
        "Explosive Power",
        "Powerful intent detected. Maintain control on the way down.",
    ),
}

_NOTE_MESSAGES = {
    CorrectionReason.INSUFFICIENT_DEPTH: "Hit depth: squeeze your hips below your knees to lock the rep.",
    CorrectionReason.INSTABILITY: "Stabilize: plant your feet and control the ascent.",
    CorrectionReason.LOW_CONFIDENCE: "Keep your body centered in frame for accurate tracking.",
}


@dataclass(frozen=True)
class CoachingNote:
    reason: CorrectionReason
    count: int

    @property
    def id(self) -> str:
        return self.reason.value

    @property
    def message(self) -> str:
        return _NOTE_MESSAGES[self.reason]


@dataclass(frozen=True)
class SessionSummary:
    attempt_index: int
    total_reps: int
    tempo_insight: TempoInsight
    average_tempo_seconds: Optional[float]
    coaching_notes: Tuple[CoachingNote, ...]
    duration: float
    generated_at: datetime


class SummaryCTAKind(str, Enum):
    AWAITING_DECISION = "awaiting_decision"
    SECOND_ATTEMPT_ELIGIBLE = "second_attempt_eligible"
    LOCKED = "locked"
    PRO_UNLOCKED = "pro_unlocked"


_CTA_TITLES = {
    SummaryCTAKind.AWAITING_DECISION: "Checking eligibility…",
    SummaryCTAKind.SECOND_ATTEMPT_ELIGIBLE: "One more go",
    SummaryCTAKind.LOCKED: "Continue to Paywall",
    SummaryCTAKind.PRO_UNLOCKED: "Start Coaching",
}


@dataclass(frozen=True)
class SummaryCTAState:
    kind: SummaryCTAKind
    message: Optional[str] = None

    @classmethod
    def awaiting_decision(cls) -> "SummaryCTAState":
        return cls(SummaryCTAKind.AWAITING_DECISION)

    @classmethod
    def second_attempt_eligible(cls) -> "SummaryCTAState":
        return cls(SummaryCTAKind.SECOND_ATTEMPT_ELIGIBLE)

    @classmethod
    def locked(cls, message: str) -> "SummaryCTAState":
        return cls(SummaryCTAKind.LOCKED, message)

    @classmethod
    def pro_unlocked(cls) -> "SummaryCTAState":
        return cls(SummaryCTAKind.PRO_UNLOCKED)

    @property
    def primary_button_title(self) -> str:
        return _CTA_TITLES[self.kind]


@dataclass(frozen=True)
class SummaryContext:
    summary: SessionSummary
    cta_state: SummaryCTAState


@dataclass(frozen=True)
class SessionSummaryInput:
    attempt_index: int
    snapshot: RepCounterSnapshot
    duration: float
    generated_at: datetime


def _average(samples) -> Optional[float]:
    if not samples:
        return None
    return sum(samples) / len(samples)


def tempo_insight(samples) -> Tuple[TempoInsight, Optional[float]]:
    avg = _average(samples)
    if avg is None:
        return TempoInsight.INSUFFICIENT_DATA, None
    if avg < 1.0:
        return TempoInsight.EXPLOSIVE, avg
    if avg < 2.0:
        return TempoInsight.STEADY, avg
    return TempoInsight.NEEDS_CONTROL, avg


def coaching_notes(counts: Dict[CorrectionReason, int]) -> Tuple[CoachingNote, ...]:
    notes = [CoachingNote(reason, n) for reason, n in counts.items() if n > 0]
    notes.sort(key=lambda note: note.count, reverse=True)
    return tuple(notes)


def make_session_summary(inp: SessionSummaryInput) -> SessionSummary:
    insight, avg = tempo_insight(inp.snapshot.tempo_samples)
    return SessionSummary(
        attempt_index=inp.attempt_index,
        total_reps=inp.snapshot.repetition_count,
        tempo_insight=insight,
        average_tempo_seconds=avg,
        coaching_notes=coaching_notes(inp.snapshot.correction_counts),
        duration=inp.duration,
        generated_at=inp.generated_at,
    )
