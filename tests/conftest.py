import uuid
from typing import Dict, Optional

import pytest

from fitcoach.live_analyzer.pose_types import LOWER_BODY_JOINTS, PoseFrame, PoseJoint, PosePoint

KNEE_Y = 0.6
ANKLE_Y = 0.9


def make_frame(t: float, depth: float = 0.0, confidence: float = 0.9,
               joints=LOWER_BODY_JOINTS) -> PoseFrame:
    """
    Symmetric lower body whose normalized depth is `depth`:
    hip sits `depth * (ankle - knee)` below the knee (0 = standing).
    """
    hip_y = KNEE_Y + depth * (ANKLE_Y - KNEE_Y) if depth > 0 else 0.4
    ys: Dict[PoseJoint, float] = {
        PoseJoint.LEFT_HIP: hip_y, PoseJoint.RIGHT_HIP: hip_y,
        PoseJoint.LEFT_KNEE: KNEE_Y, PoseJoint.RIGHT_KNEE: KNEE_Y,
        PoseJoint.LEFT_ANKLE: ANKLE_Y, PoseJoint.RIGHT_ANKLE: ANKLE_Y,
        PoseJoint.LEFT_SHOULDER: 0.2, PoseJoint.RIGHT_SHOULDER: 0.2,
    }
    xs = {j: (0.45 if j.value.startswith("left") else 0.55) for j in ys}
    return PoseFrame(
        timestamp=t,
        landmarks={j: PosePoint((xs[j], ys[j]), confidence) for j in joints},
    )


# one clean rep: descend at 0.1, bottom held past min dwell, release at 0.55
REP_DEPTHS = [(0.0, 0.0), (0.1, 0.3), (0.2, 0.3), (0.35, 0.3), (0.45, 0.08), (0.55, 0.0)]


@pytest.fixture
def frame():
    return make_frame


@pytest.fixture
def rep_frames():
    return [make_frame(t, d) for t, d in REP_DEPTHS]


@pytest.fixture
def device_id() -> uuid.UUID:
    return uuid.UUID("6f1c7c1e-2a8b-4f61-9d7e-0c6a1d2b3e4f")


class StaticIdentity:
    def __init__(self, value: Optional[uuid.UUID] = None, error: Optional[Exception] = None):
        self.value = value or uuid.uuid4()
        self.error = error
        self.calls = 0

    async def device_id(self) -> uuid.UUID:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.value


@pytest.fixture
def identity(device_id):
    return StaticIdentity(device_id)
