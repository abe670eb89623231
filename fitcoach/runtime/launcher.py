# fitcoach/runtime/launcher.py
"""
Live squat coaching from a webcam (or a video file).

Usage:
  python -m fitcoach.runtime.launcher
  python -m fitcoach.runtime.launcher --source clip.mp4 --no-speech
Press p to pause or resume capture (the rep count is kept), q to end the set;
a session summary is printed on exit.
"""
from __future__ import annotations

import argparse
import logging
import threading
import time
from datetime import datetime
from typing import Optional, Union

import cv2

from fitcoach.common.logging_utils import setup_logging
from fitcoach.common.overlays import draw_basic_hud, draw_pose_overlay
from fitcoach.live_analyzer.coordinator import SquatSessionCoordinator
from fitcoach.live_analyzer.pose_types import CoachingCue, PoseFrame, PosePhase
from fitcoach.live_analyzer.rep_counter import RepCounter, RepCounterConfig
from fitcoach.live_analyzer.session_summary import (
    SessionSummaryInput,
    SummaryContext,
    SummaryCTAState,
    make_session_summary,
)
from fitcoach.live_analyzer.tts import CoachingSpeechManager, SpeechConfig
from fitcoach.runtime.services.pose_service import PoseDetectionPipeline
from fitcoach.runtime.services.video_source import CameraConfig, CameraSessionManager

logger = logging.getLogger(__name__)


class _SilentSpeech:
    def enqueue(self, cue: CoachingCue) -> None:
        logger.info("Cue: %r", cue)

    def stop(self) -> None:
        pass


class _PreviewTap:
    """Sits between camera and coordinator to keep the latest image for display."""

    def __init__(self, coordinator: SquatSessionCoordinator):
        self._coordinator = coordinator
        self._lock = threading.Lock()
        self.image = None

    def camera_did_output(self, camera, image, timestamp: float):
        with self._lock:
            self.image = image
        self._coordinator.camera_did_output(camera, image, timestamp)

    def latest(self):
        with self._lock:
            return self.image

    def __getattr__(self, name):
        return getattr(self._coordinator, name)


class _OverlayState:
    def __init__(self):
        self.frame: Optional[PoseFrame] = None
        self.phase: PosePhase = PosePhase.idle()

    def on_overlay(self, coordinator, frame, phase):
        self.frame = frame
        self.phase = phase


def build_coordinator(camera: CameraSessionManager,
                      speech: bool = True,
                      rep_config: Optional[RepCounterConfig] = None) -> SquatSessionCoordinator:
    pipeline = PoseDetectionPipeline()
    speech_manager = CoachingSpeechManager(SpeechConfig()) if speech else _SilentSpeech()
    return SquatSessionCoordinator(
        camera=camera,
        pose_pipeline=pipeline,
        speech=speech_manager,
        rep_counter=RepCounter(rep_config),
    )


def parse_args():
    p = argparse.ArgumentParser(description="Live squat rep counting and coaching",
                                formatter_class=argparse.ArgumentDefaultsHelpFormatter)
    p.add_argument("--source", type=str, default="0", help="Camera index or video path")
    p.add_argument("--no-speech", action="store_true", help="Log cues instead of speaking them")
    p.add_argument("--verbose", action="store_true")
    return p.parse_args()


def main():
    args = parse_args()
    setup_logging(logging.DEBUG if args.verbose else logging.INFO)
    source: Union[int, str] = int(args.source) if args.source.isdigit() else args.source

    camera = CameraSessionManager(CameraConfig(source=source, flip=isinstance(source, int)))
    coordinator = build_coordinator(camera, speech=not args.no_speech)
    tap = _PreviewTap(coordinator)
    camera.delegate = tap
    overlay = _OverlayState()
    coordinator.overlay_output = overlay

    started = time.monotonic()
    paused = False
    coordinator.start()
    try:
        while True:
            image = tap.latest()
            if image is not None:
                view = draw_pose_overlay(image, overlay.frame, overlay.phase)
                view = draw_basic_hud(view, coordinator.repetition_count, overlay.phase)
                cv2.imshow("fitcoach", view)
            key = cv2.waitKey(15) & 0xFF
            if key == ord("q"):
                break
            if key == ord("p"):
                if paused:
                    coordinator.handle_lifecycle_resume()
                else:
                    coordinator.handle_lifecycle_pause()
                paused = not paused
    finally:
        snapshot = coordinator.capture_summary_snapshot()
        summary = make_session_summary(SessionSummaryInput(
            attempt_index=1,
            snapshot=snapshot,
            duration=time.monotonic() - started,
            generated_at=datetime.now(),
        ))
        coordinator.present_summary(SummaryContext(summary, SummaryCTAState.pro_unlocked()))
        coordinator.close()
        cv2.destroyAllWindows()

    print(f"Reps: {summary.total_reps}")
    print(f"{summary.tempo_insight.title}: {summary.tempo_insight.subtitle}")
    for note in summary.coaching_notes:
        print(f"  x{note.count} {note.message}")


if __name__ == "__main__":
    main()
