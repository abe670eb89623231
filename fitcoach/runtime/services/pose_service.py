# fitcoach/runtime/services/pose_service.py
from __future__ import annotations

import logging
import threading
from typing import Dict, Optional

import cv2
import mediapipe as mp

from fitcoach.live_analyzer.pose_types import PoseFrame, PoseJoint, PosePoint

logger = logging.getLogger(__name__)

_INDEX_TO_JOINT: Dict[int, PoseJoint] = {
    11: PoseJoint.LEFT_SHOULDER, 12: PoseJoint.RIGHT_SHOULDER,
    23: PoseJoint.LEFT_HIP,      24: PoseJoint.RIGHT_HIP,
    25: PoseJoint.LEFT_KNEE,     26: PoseJoint.RIGHT_KNEE,
    27: PoseJoint.LEFT_ANKLE,    28: PoseJoint.RIGHT_ANKLE,
}


def landmarks_to_frame(landmarks, timestamp: float) -> Optional[PoseFrame]:
    """MediaPipe landmark list -> PoseFrame; visibility is used as confidence."""
    mapped: Dict[PoseJoint, PosePoint] = {}
    for idx, joint in _INDEX_TO_JOINT.items():
        p = landmarks[idx]
        conf = float(p.visibility)
        if conf <= 0:
            continue
        mapped[joint] = PosePoint(position=(float(p.x), float(p.y)), confidence=conf)
    if not mapped:
        return None
    return PoseFrame(timestamp=timestamp, landmarks=mapped)


class PoseDetectionPipeline:
    """
    Runs MediaPipe Pose on BGR frames.

    Delegate callbacks:
      pose_did_detect(pipeline, PoseFrame)
      pose_did_lose_tracking(pipeline)
      pose_did_fail(pipeline, exc)
    Frames that arrive while a previous one is still being processed, or
    while the pipeline is cancelled, are dropped.
    """

    def __init__(self, model_complexity: int = 1,
                 min_detection_confidence: float = 0.5,
                 min_tracking_confidence: float = 0.5,
                 pose=None):
        self.delegate = None
        if pose is None:
            pose = mp.solutions.pose.Pose(
                static_image_mode=False,
                model_complexity=model_complexity,
                enable_segmentation=False,
                min_detection_confidence=min_detection_confidence,
                min_tracking_confidence=min_tracking_confidence,
            )
        self._pose = pose
        self._busy = threading.Lock()
        self._cancelled = False

    def process(self, image_bgr, timestamp: float) -> None:
        if self._cancelled:
            return
        if not self._busy.acquire(blocking=False):
            return
        try:
            try:
                rgb = cv2.cvtColor(image_bgr, cv2.COLOR_BGR2RGB)
                res = self._pose.process(rgb)
            except (cv2.error, RuntimeError, ValueError) as e:
                if self.delegate is not None:
                    self.delegate.pose_did_fail(self, e)
                return
            frame = None
            if res is not None and res.pose_landmarks:
                frame = landmarks_to_frame(res.pose_landmarks.landmark, timestamp)
            if self.delegate is None:
                return
            if frame is None:
                self.delegate.pose_did_lose_tracking(self)
            else:
                self.delegate.pose_did_detect(self, frame)
        finally:
            self._busy.release()

    def cancel(self) -> None:
        self._cancelled = True

    def resume(self) -> None:
        self._cancelled = False

    def close(self):
        if self._pose is not None:
            self._pose.close()
            self._pose = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
