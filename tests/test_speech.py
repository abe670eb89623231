import time

from fitcoach.live_analyzer.pose_types import CoachingCue, CorrectionReason
from fitcoach.live_analyzer.tts import (
    CoachingSpeechManager,
    CoachingSpeechThrottle,
    SpeechConfig,
    phrase_for,
)


class FakeEngine:
    def __init__(self):
        self.said = []
        self.props = {}
        self.stopped = 0

    def setProperty(self, name, value):
        self.props[name] = value

    def getProperty(self, name):
        return self.props.get(name)

    def say(self, text):
        self.said.append(text)

    def runAndWait(self):
        pass

    def stop(self):
        self.stopped += 1


class Clock:
    def __init__(self, t=0.0):
        self.t = t

    def __call__(self):
        return self.t


def wait_until(predicate, timeout=2.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return False


def test_throttle_blocks_while_speaking_and_during_cooldown():
    throttle = CoachingSpeechThrottle(cooldown=3.0)
    assert throttle.can_play(0.0)

    throttle.mark_started()
    assert not throttle.can_play(0.5)

    throttle.mark_finished(1.0)
    assert not throttle.can_play(3.9)
    assert throttle.can_play(4.0)


def test_phrases():
    cfg = SpeechConfig()
    assert phrase_for(CoachingCue.positive(), cfg) in cfg.positive_phrases
    assert phrase_for(CoachingCue.correction(CorrectionReason.INSUFFICIENT_DEPTH), cfg) == "Drop your hips lower."
    assert phrase_for(CoachingCue.correction(CorrectionReason.INSTABILITY), cfg) == "Keep a steady pace."
    assert phrase_for(CoachingCue.correction(CorrectionReason.LOW_CONFIDENCE), cfg) == "Step back into view."


def test_phrase_fallbacks():
    cfg = SpeechConfig(positive_phrases=(), correction_phrases={})
    assert phrase_for(CoachingCue.positive(), cfg) == "Great job!"
    assert phrase_for(CoachingCue.correction(CorrectionReason.INSTABILITY), cfg) == "Adjust your form."


def test_manager_speaks_and_respects_cooldown():
    engine = FakeEngine()
    clock = Clock()
    with CoachingSpeechManager(SpeechConfig(cooldown=3.0), engine_factory=lambda: engine, clock=clock) as speech:
        speech.enqueue(CoachingCue.correction(CorrectionReason.LOW_CONFIDENCE))
        assert wait_until(lambda: engine.said and not speech.is_speaking)
        assert engine.said == ["Step back into view."]
        assert engine.props["rate"] == SpeechConfig().rate

        # still inside the cooldown window
        speech.enqueue(CoachingCue.positive())
        time.sleep(0.05)
        assert len(engine.said) == 1

        clock.t = 10.0
        speech.enqueue(CoachingCue.correction(CorrectionReason.INSUFFICIENT_DEPTH))
        assert wait_until(lambda: len(engine.said) == 2)
        assert engine.said[-1] == "Drop your hips lower."


def test_stop_releases_throttle():
    engine = FakeEngine()
    speech = CoachingSpeechManager(SpeechConfig(cooldown=0.0), engine_factory=lambda: engine, clock=Clock())
    try:
        speech.enqueue(CoachingCue.positive())
        speech.stop()
        assert not speech.is_speaking
    finally:
        speech.close()
