# fitcoach/app_flow/onboarding.py
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Protocol, Tuple

from fitcoach.common import config as C
from fitcoach.common.io_utils import JsonKeyValueStore


@dataclass(frozen=True)
class OnboardingSlide:
    id: int
    title: str
    subtitle: str
    symbol_name: str

    @property
    def accessibility_label(self) -> str:
        return f"{self.title} illustration"


DEFAULT_SLIDES: Tuple[OnboardingSlide, ...] = (
    OnboardingSlide(0, "Celebrate Every Win",
                    "FitCoach spotlights progress with encouraging nudges to keep the momentum going.",
                    "sparkles"),
    OnboardingSlide(1, "Set Bold Goals",
                    "Plan big moves with focused missions, milestones, and transparent accountability.",
                    "target"),
    OnboardingSlide(2, "Rally Your Crew",
                    "Invite teammates, share updates, and stay aligned with collaborative rituals.",
                    "person.3.fill"),
)


class OnboardingCompletionRepository(Protocol):
    @property
    def has_completed_onboarding(self) -> bool: ...
    def mark_completed(self) -> None: ...


class JsonOnboardingCompletionRepository:
    def __init__(self, path: Path = C.ONBOARDING_STORE, key: str = "onboarding.completed"):
        self._store = JsonKeyValueStore(path)
        self._key = key

    @property
    def has_completed_onboarding(self) -> bool:
        return bool(self._store.get(self._key, False))

    def mark_completed(self) -> None:
        self._store.set(self._key, True)

    def reset(self) -> None:
        self._store.remove(self._key)
