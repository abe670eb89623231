# fitcoach/common/overlays.py
from __future__ import annotations

from typing import Optional

import cv2
import numpy as np

from fitcoach.live_analyzer.pose_types import PhaseKind, PoseFrame, PoseJoint, PosePhase

_LIMBS = (
    (PoseJoint.LEFT_SHOULDER, PoseJoint.RIGHT_SHOULDER),
    (PoseJoint.LEFT_SHOULDER, PoseJoint.LEFT_HIP),
    (PoseJoint.RIGHT_SHOULDER, PoseJoint.RIGHT_HIP),
    (PoseJoint.LEFT_HIP, PoseJoint.RIGHT_HIP),
    (PoseJoint.LEFT_HIP, PoseJoint.LEFT_KNEE),
    (PoseJoint.RIGHT_HIP, PoseJoint.RIGHT_KNEE),
    (PoseJoint.LEFT_KNEE, PoseJoint.LEFT_ANKLE),
    (PoseJoint.RIGHT_KNEE, PoseJoint.RIGHT_ANKLE),
)

# BGR
_PHASE_COLORS = {
    PhaseKind.IDLE: (200, 200, 200),
    PhaseKind.DESCENDING: (0, 200, 255),
    PhaseKind.ASCENDING: (255, 220, 0),
    PhaseKind.REP_COMPLETED: (0, 255, 120),
    PhaseKind.PAUSED_LOW_CONFIDENCE: (0, 0, 255),
}


def _px(pt, w: int, h: int):
    return int(pt[0] * w), int(pt[1] * h)


def draw_pose_overlay(image: np.ndarray, frame: Optional[PoseFrame], phase: PosePhase) -> np.ndarray:
    """
    Draws joints and limbs of a trusted frame. A `None` frame means the
    counter paused for low confidence: the image is returned untouched.
    """
    out = image.copy()
    if frame is None:
        return out
    h, w = out.shape[:2]
    color = _PHASE_COLORS.get(phase.kind, (255, 255, 255))

    for a, b in _LIMBS:
        pa, pb = frame.point(a), frame.point(b)
        if pa is None or pb is None:
            continue
        cv2.line(out, _px(pa.position, w, h), _px(pb.position, w, h), color, 3, cv2.LINE_AA)

    for joint, p in frame.landmarks.items():
        cv2.circle(out, _px(p.position, w, h), 6, color, -1, cv2.LINE_AA)
    return out


def draw_basic_hud(image: np.ndarray, reps: int, phase: PosePhase, fps: Optional[float] = None) -> np.ndarray:
    out = image.copy()
    h, w = out.shape[:2]
    cv2.rectangle(out, (10, 10), (w - 10, 50), (0, 0, 0), -1)
    line = f"Reps {reps} | Phase {phase!r}"
    if fps is not None:
        line = f"FPS {fps:.1f} | " + line
    cv2.putText(out, line, (20, 40), cv2.FONT_HERSHEY_SIMPLEX, 0.8, (0, 255, 180), 2, cv2.LINE_AA)
    return out
