"""
Spoken coaching cues on a background pyttsx3 worker.

- enqueue(cue) is non-blocking and drops cues while a phrase is playing
  or the cooldown since the last phrase has not elapsed
- stop() cuts the current phrase and drops anything pending
- close() ends the worker thread
"""
from __future__ import annotations

import logging
import queue
import random
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, Optional, Protocol, Tuple

import pyttsx3

from fitcoach.common import config as C
from fitcoach.live_analyzer.pose_types import CoachingCue, CorrectionReason

logger = logging.getLogger(__name__)


class CoachingSpeech(Protocol):
    def enqueue(self, cue: CoachingCue) -> None: ...
    def stop(self) -> None: ...


class CoachingSpeechThrottle:
    """Allows one phrase at a time and a quiet gap of `cooldown` seconds after each."""

    def __init__(self, cooldown: float):
        self.cooldown = cooldown
        self.is_speaking = False
        self.last_finished_at: Optional[float] = None

    def can_play(self, t: float) -> bool:
        if self.is_speaking:
            return False
        if self.last_finished_at is None:
            return True
        return t - self.last_finished_at >= self.cooldown

    def mark_started(self):
        self.is_speaking = True

    def mark_finished(self, t: float):
        self.is_speaking = False
        self.last_finished_at = t


@dataclass
class SpeechConfig:
    cooldown: float = C.SPEECH_COOLDOWN_S
    positive_phrases: Tuple[str, ...] = ("Great depth!", "Nice squat!", "Strong rep!")
    correction_phrases: Dict[CorrectionReason, str] = field(default_factory=lambda: {
        CorrectionReason.INSUFFICIENT_DEPTH: "Drop your hips lower.",
        CorrectionReason.INSTABILITY: "Keep a steady pace.",
        CorrectionReason.LOW_CONFIDENCE: "Step back into view.",
    })
    rate: int = C.SPEECH_RATE_WPM
    volume: float = 1.0
    voice_substring: Optional[str] = None  # e.g. "English" or "Zira"


def phrase_for(cue: CoachingCue, cfg: SpeechConfig) -> str:
    if cue.is_positive:
        return random.choice(cfg.positive_phrases) if cfg.positive_phrases else "Great job!"
    return cfg.correction_phrases.get(cue.reason, "Adjust your form.")


class CoachingSpeechManager:
    """
    Usage:
        speech = CoachingSpeechManager()
        speech.enqueue(CoachingCue.positive())
        speech.close()
    """

    def __init__(self,
                 config: Optional[SpeechConfig] = None,
                 engine_factory: Callable[[], object] = pyttsx3.init,
                 clock: Callable[[], float] = time.monotonic):
        self.cfg = config or SpeechConfig()
        self._throttle = CoachingSpeechThrottle(self.cfg.cooldown)
        self._engine_factory = engine_factory
        self._clock = clock
        self._engine = None
        self._q: queue.Queue[str] = queue.Queue(maxsize=4)
        self._lock = threading.Lock()
        self._alive = True
        self._thread = threading.Thread(target=self._loop, daemon=True, name="CoachingSpeech")
        self._thread.start()

    def enqueue(self, cue: CoachingCue) -> None:
        with self._lock:
            if not self._alive or not self._throttle.can_play(self._clock()):
                return
            self._throttle.mark_started()
        text = phrase_for(cue, self.cfg)
        try:
            self._q.put_nowait(text)
        except queue.Full:
            logger.warning("Speech queue full, dropping %r", text)
            self._finished()

    def stop(self) -> None:
        self._drain()
        engine = self._engine
        if engine is not None:
            try:
                engine.stop()
            except RuntimeError as e:
                logger.warning("Failed to stop speech engine: %s", e)
        with self._lock:
            if self._throttle.is_speaking:
                self._throttle.mark_finished(self._clock())

    def close(self) -> None:
        self._alive = False
        self.stop()
        if self._thread.is_alive():
            self._thread.join(timeout=2.0)

    @property
    def is_speaking(self) -> bool:
        return self._throttle.is_speaking

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

    # ---------------- worker ----------------
    def _drain(self):
        try:
            while True:
                self._q.get_nowait()
        except queue.Empty:
            pass

    def _finished(self):
        with self._lock:
            self._throttle.mark_finished(self._clock())

    def _ensure_engine(self):
        # pyttsx3 engines must be driven from the thread that created them
        if self._engine is None:
            engine = self._engine_factory()
            engine.setProperty("rate", self.cfg.rate)
            engine.setProperty("volume", float(self.cfg.volume))
            if self.cfg.voice_substring:
                self._select_voice(engine, self.cfg.voice_substring)
            self._engine = engine
        return self._engine

    def _select_voice(self, engine, voice_substring: str):
        wanted = voice_substring.lower()
        for v in engine.getProperty("voices") or []:
            name = getattr(v, "name", "")
            langs = " ".join(str(l) for l in (getattr(v, "languages", None) or []))
            if wanted in f"{name} {langs}".lower():
                engine.setProperty("voice", v.id)
                logger.info("Using voice: %s", name)
                return
        logger.warning("Voice containing %r not found", voice_substring)

    def _loop(self):
        while self._alive:
            try:
                text = self._q.get(timeout=0.2)
            except queue.Empty:
                continue
            try:
                engine = self._ensure_engine()
                engine.say(text)
                engine.runAndWait()
            except (RuntimeError, OSError) as e:
                logger.warning("Speech error: %s", e)
            finally:
                self._finished()
