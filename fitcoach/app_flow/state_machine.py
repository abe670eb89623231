# fitcoach/app_flow/state_machine.py
"""
Top-level navigation:

    splash -> onboarding(0..n-1) -> demo_cta <-> demo_stub -> session_summary
                                       ^                            |
                                       +------- paywall <-----------+
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class AppFlowStateKind(str, Enum):
    SPLASH = "splash"
    ONBOARDING = "onboarding"
    DEMO_CTA = "demo_cta"
    DEMO_STUB = "demo_stub"
    SESSION_SUMMARY = "session_summary"
    PAYWALL = "paywall"


@dataclass(frozen=True)
class AppFlowState:
    kind: AppFlowStateKind
    index: Optional[int] = None  # onboarding slide

    @classmethod
    def splash(cls) -> "AppFlowState":
        return cls(AppFlowStateKind.SPLASH)

    @classmethod
    def onboarding(cls, index: int) -> "AppFlowState":
        return cls(AppFlowStateKind.ONBOARDING, index)

    @classmethod
    def demo_cta(cls) -> "AppFlowState":
        return cls(AppFlowStateKind.DEMO_CTA)

    @classmethod
    def demo_stub(cls) -> "AppFlowState":
        return cls(AppFlowStateKind.DEMO_STUB)

    @classmethod
    def session_summary(cls) -> "AppFlowState":
        return cls(AppFlowStateKind.SESSION_SUMMARY)

    @classmethod
    def paywall(cls) -> "AppFlowState":
        return cls(AppFlowStateKind.PAYWALL)


class AppFlowEventKind(str, Enum):
    SPLASH_FINISHED = "splash_finished"
    SLIDE_ADVANCE = "slide_advance"
    ONBOARDING_COMPLETED = "onboarding_completed"
    START_DEMO = "start_demo"
    FINISH_DEMO = "finish_demo"
    SHOW_SUMMARY = "show_summary"
    SHOW_PAYWALL = "show_paywall"
    DISMISS_PAYWALL = "dismiss_paywall"


@dataclass(frozen=True)
class AppFlowEvent:
    kind: AppFlowEventKind
    to: Optional[int] = None  # slide_advance target

    @classmethod
    def splash_finished(cls) -> "AppFlowEvent":
        return cls(AppFlowEventKind.SPLASH_FINISHED)

    @classmethod
    def slide_advance(cls, to: int) -> "AppFlowEvent":
        return cls(AppFlowEventKind.SLIDE_ADVANCE, to)

    @classmethod
    def onboarding_completed(cls) -> "AppFlowEvent":
        return cls(AppFlowEventKind.ONBOARDING_COMPLETED)

    @classmethod
    def start_demo(cls) -> "AppFlowEvent":
        return cls(AppFlowEventKind.START_DEMO)

    @classmethod
    def finish_demo(cls) -> "AppFlowEvent":
        return cls(AppFlowEventKind.FINISH_DEMO)

    @classmethod
    def show_summary(cls) -> "AppFlowEvent":
        return cls(AppFlowEventKind.SHOW_SUMMARY)

    @classmethod
    def show_paywall(cls) -> "AppFlowEvent":
        return cls(AppFlowEventKind.SHOW_PAYWALL)

    @classmethod
    def dismiss_paywall(cls) -> "AppFlowEvent":
        return cls(AppFlowEventKind.DISMISS_PAYWALL)


class AppFlowStateMachine:
    def __init__(self, slide_count: int = 3, skip_onboarding_after_splash: bool = False):
        self.has_slides = slide_count > 0
        self.skip_onboarding_after_splash = skip_onboarding_after_splash
        self.first_slide = 0
        self.last_slide = max(slide_count - 1, 0)

    def initial_state(self) -> AppFlowState:
        return AppFlowState.splash()

    def transition(self, state: AppFlowState, event: AppFlowEvent) -> AppFlowState:
        S, E = AppFlowStateKind, AppFlowEventKind
        s, e = state.kind, event.kind

        if s == S.SPLASH and e == E.SPLASH_FINISHED:
            if not self.has_slides or self.skip_onboarding_after_splash:
                return AppFlowState.demo_cta()
            return AppFlowState.onboarding(self.first_slide)

        if s == S.ONBOARDING and e == E.SLIDE_ADVANCE and event.to is not None:
            target = event.to
            if self.first_slide <= target <= self.last_slide and abs(target - state.index) <= 1:
                return AppFlowState.onboarding(target)
            return state

        if s == S.ONBOARDING and e == E.ONBOARDING_COMPLETED:
            return AppFlowState.demo_cta() if state.index == self.last_slide else state

        if e == E.START_DEMO and s in (S.DEMO_CTA, S.SESSION_SUMMARY):
            return AppFlowState.demo_stub()

        if s == S.DEMO_STUB and e == E.FINISH_DEMO:
            return AppFlowState.demo_cta()

        if s == S.DEMO_STUB and e == E.SHOW_SUMMARY:
            return AppFlowState.session_summary()

        if e == E.SHOW_PAYWALL and s in (S.DEMO_CTA, S.DEMO_STUB, S.SESSION_SUMMARY):
            return AppFlowState.paywall()

        if s == S.PAYWALL and e == E.DISMISS_PAYWALL:
            return AppFlowState.demo_cta()

        return state
