# fitcoach/live_analyzer/pose_types.py
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Mapping, Optional

from fitcoach.common.geometry import Point, midpoint


class PoseJoint(str, Enum):
    LEFT_HIP = "left_hip"
    RIGHT_HIP = "right_hip"
    LEFT_KNEE = "left_knee"
    RIGHT_KNEE = "right_knee"
    LEFT_ANKLE = "left_ankle"
    RIGHT_ANKLE = "right_ankle"
    LEFT_SHOULDER = "left_shoulder"
    RIGHT_SHOULDER = "right_shoulder"


LOWER_BODY_JOINTS = (
    PoseJoint.LEFT_HIP, PoseJoint.RIGHT_HIP,
    PoseJoint.LEFT_KNEE, PoseJoint.RIGHT_KNEE,
    PoseJoint.LEFT_ANKLE, PoseJoint.RIGHT_ANKLE,
)


@dataclass(frozen=True)
class PosePoint:
    position: Point
    confidence: float


@dataclass(frozen=True)
class PoseFrame:
    """One detected body: normalized [0,1] image coordinates, y grows downward."""
    timestamp: float
    landmarks: Mapping[PoseJoint, PosePoint] = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, "landmarks", MappingProxyType(dict(self.landmarks)))

    def __eq__(self, other):
        if not isinstance(other, PoseFrame):
            return NotImplemented
        return self.timestamp == other.timestamp and dict(self.landmarks) == dict(other.landmarks)

    def __hash__(self):
        return hash((self.timestamp, tuple(sorted(self.landmarks.items(), key=lambda kv: kv[0].value))))

    def point(self, joint: PoseJoint) -> Optional[PosePoint]:
        return self.landmarks.get(joint)

    def _position(self, joint: PoseJoint) -> Optional[Point]:
        p = self.landmarks.get(joint)
        return p.position if p is not None else None

    def midpoint(self, first: PoseJoint, second: PoseJoint) -> Optional[Point]:
        return midpoint(self._position(first), self._position(second))

    @property
    def hip_midpoint(self) -> Optional[Point]:
        return self.midpoint(PoseJoint.LEFT_HIP, PoseJoint.RIGHT_HIP)

    @property
    def knee_midpoint(self) -> Optional[Point]:
        return self.midpoint(PoseJoint.LEFT_KNEE, PoseJoint.RIGHT_KNEE)

    @property
    def ankle_midpoint(self) -> Optional[Point]:
        return self.midpoint(PoseJoint.LEFT_ANKLE, PoseJoint.RIGHT_ANKLE)

    @property
    def average_lower_body_confidence(self) -> float:
        confidences = [self.landmarks[j].confidence for j in LOWER_BODY_JOINTS if j in self.landmarks]
        if not confidences:
            return 0.0
        return sum(confidences) / len(confidences)


class PhaseKind(str, Enum):
    IDLE = "idle"
    DESCENDING = "descending"
    ASCENDING = "ascending"
    REP_COMPLETED = "rep_completed"
    PAUSED_LOW_CONFIDENCE = "paused_low_confidence"


@dataclass(frozen=True)
class PosePhase:
    kind: PhaseKind
    progress: float = 0.0
    repetition_count: int = 0
    timestamp: Optional[float] = None

    @classmethod
    def idle(cls) -> "PosePhase":
        return cls(PhaseKind.IDLE)

    @classmethod
    def descending(cls, progress: float) -> "PosePhase":
        return cls(PhaseKind.DESCENDING, progress=progress)

    @classmethod
    def ascending(cls, progress: float) -> "PosePhase":
        return cls(PhaseKind.ASCENDING, progress=progress)

    @classmethod
    def rep_completed(cls, repetition_count: int, timestamp: float) -> "PosePhase":
        return cls(PhaseKind.REP_COMPLETED, repetition_count=repetition_count, timestamp=timestamp)

    @classmethod
    def paused_low_confidence(cls) -> "PosePhase":
        return cls(PhaseKind.PAUSED_LOW_CONFIDENCE)

    def __repr__(self) -> str:
        if self.kind in (PhaseKind.DESCENDING, PhaseKind.ASCENDING):
            return f"{self.kind.value}({self.progress:.2f})"
        if self.kind == PhaseKind.REP_COMPLETED:
            return f"{self.kind.value}({self.repetition_count}, t={self.timestamp})"
        return self.kind.value


class CorrectionReason(str, Enum):
    INSUFFICIENT_DEPTH = "insufficient_depth"
    INSTABILITY = "instability"
    LOW_CONFIDENCE = "low_confidence"


@dataclass(frozen=True)
class CoachingCue:
    """`reason is None` means positive feedback for a scored rep."""
    reason: Optional[CorrectionReason] = None

    @classmethod
    def positive(cls) -> "CoachingCue":
        return cls()

    @classmethod
    def correction(cls, reason: CorrectionReason) -> "CoachingCue":
        return cls(reason)

    @property
    def is_positive(self) -> bool:
        return self.reason is None

    def __repr__(self) -> str:
        return "positive" if self.reason is None else f"correction({self.reason.value})"


class InterruptionKind(str, Enum):
    AUDIO_SESSION = "audio_session"
    CAPTURE_RUNTIME = "capture_runtime"
    APPLICATION_BACKGROUNDED = "application_backgrounded"
    OTHER = "other"


@dataclass(frozen=True)
class SessionInterruption:
    kind: InterruptionKind
    detail: Optional[str] = None


class SessionErrorKind(str, Enum):
    CAMERA_UNAVAILABLE = "camera_unavailable"
    PERMISSIONS_DENIED = "permissions_denied"
    CONFIGURATION_FAILED = "configuration_failed"
    CAPTURE_FAILED = "capture_failed"


@dataclass(frozen=True)
class SessionError:
    kind: SessionErrorKind
    detail: Optional[str] = None

    @classmethod
    def camera_unavailable(cls) -> "SessionError":
        return cls(SessionErrorKind.CAMERA_UNAVAILABLE)

    @classmethod
    def permissions_denied(cls) -> "SessionError":
        return cls(SessionErrorKind.PERMISSIONS_DENIED)

    @classmethod
    def configuration_failed(cls, detail: str) -> "SessionError":
        return cls(SessionErrorKind.CONFIGURATION_FAILED, detail)

    @classmethod
    def capture_failed(cls, detail: str) -> "SessionError":
        return cls(SessionErrorKind.CAPTURE_FAILED, detail)
