from types import SimpleNamespace

import numpy as np
import pytest

pytest.importorskip("mediapipe")
cv2 = pytest.importorskip("cv2")

from fitcoach.live_analyzer.pose_types import PoseJoint  # noqa: E402
from fitcoach.runtime.services.pose_service import PoseDetectionPipeline, landmarks_to_frame  # noqa: E402


def landmark_list(visibility=0.9):
    return [SimpleNamespace(x=i / 40, y=i / 40, visibility=visibility) for i in range(33)]


class FakePose:
    def __init__(self, landmarks=None, error=None):
        self.landmarks = landmarks
        self.error = error
        self.closed = False

    def process(self, rgb):
        if self.error is not None:
            raise self.error
        if self.landmarks is None:
            return SimpleNamespace(pose_landmarks=None)
        return SimpleNamespace(pose_landmarks=SimpleNamespace(landmark=self.landmarks))

    def close(self):
        self.closed = True


class Delegate:
    def __init__(self):
        self.events = []

    def pose_did_detect(self, pipeline, frame):
        self.events.append(("detect", frame))

    def pose_did_lose_tracking(self, pipeline):
        self.events.append(("lost", None))

    def pose_did_fail(self, pipeline, error):
        self.events.append(("fail", error))


IMAGE = np.zeros((4, 4, 3), dtype=np.uint8)


def test_landmarks_to_frame_maps_lower_body_and_shoulders():
    frame = landmarks_to_frame(landmark_list(), 2.5)
    assert frame.timestamp == 2.5
    assert set(frame.landmarks) == set(PoseJoint)
    assert frame.point(PoseJoint.LEFT_HIP).position == pytest.approx((23 / 40, 23 / 40))


def test_invisible_landmarks_yield_no_frame():
    assert landmarks_to_frame(landmark_list(visibility=0.0), 0.0) is None


@pytest.mark.parametrize("pose, kind", [
    (FakePose(landmark_list()), "detect"),
    (FakePose(None), "lost"),
    (FakePose(error=RuntimeError("graph failed")), "fail"),
])
def test_pipeline_reports_to_delegate(pose, kind):
    pipeline = PoseDetectionPipeline(pose=pose)
    delegate = Delegate()
    pipeline.delegate = delegate
    pipeline.process(IMAGE, 1.0)
    assert [k for k, _ in delegate.events] == [kind]


def test_cancelled_pipeline_drops_frames():
    pose = FakePose(landmark_list())
    with PoseDetectionPipeline(pose=pose) as pipeline:
        delegate = Delegate()
        pipeline.delegate = delegate
        pipeline.cancel()
        pipeline.process(IMAGE, 1.0)
        assert delegate.events == []
        pipeline.resume()
        pipeline.process(IMAGE, 2.0)
        assert len(delegate.events) == 1
    assert pose.closed
