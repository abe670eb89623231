# fitcoach/runtime/services/video_source.py
from __future__ import annotations

import logging
import sys
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional, Union

import cv2

from fitcoach.common import config as C
from fitcoach.live_analyzer.pose_types import SessionError

logger = logging.getLogger(__name__)


@dataclass
class CameraConfig:
    source: Union[int, str] = C.CAMERA_INDEX
    target_fps: int = C.FPS_TARGET
    flip: bool = True  # mirror the selfie view


def open_capture(source: Union[int, str]) -> cv2.VideoCapture:
    if isinstance(source, int):
        if sys.platform.startswith("win"):
            # CAP_DSHOW avoids the slow default backend on Windows
            return cv2.VideoCapture(source, cv2.CAP_DSHOW)
        if sys.platform == "darwin":
            return cv2.VideoCapture(source, cv2.CAP_AVFOUNDATION)
    return cv2.VideoCapture(source)


class CameraSessionManager:
    """
    OpenCV capture on a background thread.

    Delegate callbacks (all called from the capture thread):
      camera_did_output(manager, image_bgr, timestamp)
      camera_did_encounter(manager, SessionError)
      camera_did_lose_permissions(manager)
    """

    def __init__(self, config: Optional[CameraConfig] = None,
                 capture_factory: Callable[[Union[int, str]], Any] = open_capture,
                 clock: Callable[[], float] = time.monotonic):
        self.cfg = config or CameraConfig()
        self.delegate = None
        self._capture_factory = capture_factory
        self._clock = clock
        self._cap = None
        self._running = False
        self._thread: Optional[threading.Thread] = None
        self._lock = threading.Lock()

    def request_permissions(self, completion: Callable[[bool], None]) -> None:
        """There is no OS prompt on desktop: access is granted when the device opens."""
        with self._lock:
            if self._cap is None:
                self._cap = self._capture_factory(self.cfg.source)
            granted = bool(self._cap is not None and self._cap.isOpened())
            if not granted:
                self._release()
        completion(granted)
        if not granted and self.delegate is not None:
            self.delegate.camera_did_lose_permissions(self)

    def start_session(self) -> None:
        with self._lock:
            if self._running:
                return
            if self._cap is None or not self._cap.isOpened():
                self._cap = self._capture_factory(self.cfg.source)
            if not self._cap.isOpened():
                self._release()
                opened = False
            else:
                opened = True
                self._running = True
                self._thread = threading.Thread(target=self._loop, daemon=True, name="CameraCapture")
                self._thread.start()
        if not opened:
            logger.error("Failed to open camera source %r", self.cfg.source)
            if self.delegate is not None:
                self.delegate.camera_did_encounter(self, SessionError.camera_unavailable())

    def stop_session(self) -> None:
        with self._lock:
            self._running = False
            thread = self._thread
            self._thread = None
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=2.0)
        with self._lock:
            self._release()

    @property
    def is_running(self) -> bool:
        return self._running

    def _release(self):
        if self._cap is not None:
            self._cap.release()
            self._cap = None

    def _loop(self):
        interval = 1.0 / float(max(1, int(self.cfg.target_fps)))
        while self._running:
            cap = self._cap
            if cap is None:
                break
            ok, frame = cap.read()
            if not ok:
                self._running = False
                logger.warning("Camera stream ended")
                if self.delegate is not None:
                    self.delegate.camera_did_encounter(self, SessionError.capture_failed("Stream ended"))
                break
            if self.cfg.flip:
                frame = cv2.flip(frame, 1)
            if self.delegate is not None:
                self.delegate.camera_did_output(self, frame, self._clock())
            time.sleep(interval)
