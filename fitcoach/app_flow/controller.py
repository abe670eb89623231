# fitcoach/app_flow/controller.py
"""
Headless orchestration of the app flow: navigation state, the free-demo quota
and the entitlement service. Front ends read the properties and call the
intent methods; nothing here draws anything.
"""
from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import List, Optional, Sequence

from fitcoach.app_flow.onboarding import DEFAULT_SLIDES, OnboardingCompletionRepository, OnboardingSlide
from fitcoach.app_flow.state_machine import (
    AppFlowEvent,
    AppFlowState,
    AppFlowStateKind,
    AppFlowStateMachine,
)
from fitcoach.common import config as C
from fitcoach.demo_quota.coordinator import DemoQuotaCoordinating
from fitcoach.demo_quota.lock_reason import user_facing_message
from fitcoach.demo_quota.remote import AttemptMetadata
from fitcoach.demo_quota.state_machine import LockReason, QuotaState, QuotaStateKind
from fitcoach.live_analyzer.session_summary import (
    SessionSummaryInput,
    SummaryContext,
    SummaryCTAState,
    make_session_summary,
)
from fitcoach.subscriptions.service import EntitlementServicing

logger = logging.getLogger(__name__)

CHECKING_ELIGIBILITY = "Checking eligibility…"
ONE_MORE_GO = "One more go"
START_FREE_DEMO = "Start Free Demo"
START_COACHING = "Start Coaching"
PRO_STATUS = "Unlimited coaching unlocked."


def summary_metadata(inp: SessionSummaryInput) -> AttemptMetadata:
    return AttemptMetadata(
        attempt_index=inp.attempt_index,
        duration_seconds=inp.duration,
        repetition_count=inp.snapshot.repetition_count,
        tempo_samples=list(inp.snapshot.tempo_samples),
        coaching_corrections={reason.value: n for reason, n in inp.snapshot.correction_counts.items()},
        generated_at=inp.generated_at,
    )


class AppFlowController:
    def __init__(
        self,
        repository: OnboardingCompletionRepository,
        quota: DemoQuotaCoordinating,
        entitlements: Optional[EntitlementServicing] = None,
        slides: Sequence[OnboardingSlide] = DEFAULT_SLIDES,
        state_machine: Optional[AppFlowStateMachine] = None,
    ):
        self.slides = tuple(slides)
        self._repository = repository
        self._quota = quota
        self._entitlements = entitlements
        self._machine = state_machine or AppFlowStateMachine(
            slide_count=len(self.slides),
            skip_onboarding_after_splash=repository.has_completed_onboarding,
        )
        self.state: AppFlowState = self._machine.initial_state()
        self.quota_state: QuotaState = quota.state
        self.summary: Optional[SummaryContext] = None
        self._current_attempt_index = 1
        self._tasks: List[asyncio.Task] = []

    # ---------- lifecycle ----------
    async def start(self) -> None:
        """Reconciles the quota with the server, then follows quota and entitlement updates."""
        self.quota_state = await self._quota.prepare_for_demo_start()
        self._tasks.append(asyncio.create_task(self._observe_quota()))
        if self._entitlements is not None:
            self._tasks.append(asyncio.create_task(self._observe_entitlements()))

    async def close(self) -> None:
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()

    # ---------- derived view state ----------
    @property
    def is_pro(self) -> bool:
        return self._entitlements is not None and self._entitlements.is_pro

    @property
    def active_attempt_index(self) -> int:
        return self._current_attempt_index

    @property
    def demo_button_title(self) -> str:
        if self.is_pro:
            return START_COACHING
        if self.quota_state.kind == QuotaStateKind.GATE_PENDING:
            return CHECKING_ELIGIBILITY
        if self.quota_state.kind == QuotaStateKind.SECOND_ATTEMPT_ELIGIBLE:
            return ONE_MORE_GO
        return START_FREE_DEMO

    @property
    def is_demo_button_disabled(self) -> bool:
        if self.is_pro:
            return False
        return self.quota_state.is_locked or self.quota_state.kind == QuotaStateKind.GATE_PENDING

    @property
    def demo_status_message(self) -> Optional[str]:
        if self.is_pro:
            return PRO_STATUS
        if self.quota_state.kind == QuotaStateKind.GATE_PENDING:
            return CHECKING_ELIGIBILITY
        if self.quota_state.is_locked:
            return user_facing_message(self.quota_state.reason)
        return None

    @property
    def onboarding_index(self) -> int:
        return self.state.index if self.state.kind == AppFlowStateKind.ONBOARDING else 0

    # ---------- intents ----------
    def handle_splash_finished(self) -> None:
        self._apply(AppFlowEvent.splash_finished())

    def set_onboarding_index(self, index: int) -> None:
        self._apply(AppFlowEvent.slide_advance(index))

    def complete_onboarding(self) -> None:
        if self.state.kind != AppFlowStateKind.ONBOARDING or not self.slides:
            return
        if self.state.index != len(self.slides) - 1:
            return
        self._repository.mark_completed()
        self._apply(AppFlowEvent.onboarding_completed())

    async def start_demo(self, reason: str = "cta_tap") -> bool:
        """Returns False when the quota refused or failed to start an attempt."""
        if self.is_demo_button_disabled:
            return False
        self.summary = None
        if self.is_pro:
            self._apply(AppFlowEvent.start_demo())
            return True

        metadata = AttemptMetadata(reason=reason, cta_label=self.demo_button_title, timestamp=_now())
        try:
            new_state = await self._quota.mark_attempt_started(metadata)
        except Exception as e:
            logger.warning("Demo start rejected: %s", e)
            self.quota_state = self._quota.state
            return False

        self.quota_state = new_state
        if new_state.kind == QuotaStateKind.FIRST_ATTEMPT_ACTIVE:
            self._current_attempt_index = 1
        elif new_state.kind == QuotaStateKind.SECOND_ATTEMPT_ACTIVE:
            self._current_attempt_index = 2
        self._apply(AppFlowEvent.start_demo())
        return True

    async def finish_demo(self, reason: str = "user_exit") -> None:
        if not self.is_pro:
            metadata = AttemptMetadata(reason=reason, timestamp=_now())
            self.quota_state = await self._quota.mark_attempt_completed(metadata)
        self._apply(AppFlowEvent.finish_demo())

    async def complete_attempt(self, inp: SessionSummaryInput) -> SummaryContext:
        if not self.is_pro:
            self.quota_state = await self._quota.mark_attempt_completed(summary_metadata(inp))
        summary = make_session_summary(inp)
        self._current_attempt_index = min(summary.attempt_index + 1, C.MAX_DEMO_ATTEMPTS)
        context = SummaryContext(summary, self.summary_cta_state(self.quota_state, summary.attempt_index))
        self.present_summary(context)
        return context

    def present_summary(self, context: SummaryContext) -> None:
        cta = self.summary_cta_state(self.quota_state, context.summary.attempt_index)
        self.summary = SummaryContext(context.summary, cta)
        self._apply(AppFlowEvent.show_summary())

    async def start_second_attempt_from_summary(self) -> bool:
        if self.summary is None:
            logger.info("Ignoring One More Go tap because the summary is no longer active")
            return False
        self.summary = None
        return await self.start_demo(reason="summary_one_more_go")

    def continue_to_paywall(self) -> None:
        if self.state.kind == AppFlowStateKind.PAYWALL:
            logger.info("Ignoring duplicate paywall request while already presenting")
            return
        attempt_index = self.summary.summary.attempt_index if self.summary else self._current_attempt_index
        self.summary = None
        self._apply(AppFlowEvent.show_paywall())
        self._current_attempt_index = min(attempt_index + 1, C.MAX_DEMO_ATTEMPTS)

    def dismiss_paywall(self) -> None:
        self._apply(AppFlowEvent.dismiss_paywall())

    # ---------- summary CTA ----------
    def summary_cta_state(self, quota_state: QuotaState, attempt_index: int) -> SummaryCTAState:
        if self.is_pro:
            return SummaryCTAState.pro_unlocked()

        exhausted = user_facing_message(LockReason.quota_exhausted())
        kind = quota_state.kind
        if kind == QuotaStateKind.GATE_PENDING:
            if attempt_index > 1:
                _log_mismatch("gate pending after second attempt", attempt_index, quota_state)
            return SummaryCTAState.awaiting_decision()
        if kind == QuotaStateKind.SECOND_ATTEMPT_ELIGIBLE:
            if attempt_index != 1:
                _log_mismatch("second attempt eligible after attempt 2", attempt_index, quota_state)
                return SummaryCTAState.locked(exhausted)
            return SummaryCTAState.second_attempt_eligible()
        if kind == QuotaStateKind.LOCKED:
            return SummaryCTAState.locked(user_facing_message(quota_state.reason))

        if attempt_index >= C.MAX_DEMO_ATTEMPTS:
            _log_mismatch("forcing lock after the last attempt", attempt_index, quota_state)
            return SummaryCTAState.locked(exhausted)
        _log_mismatch("unexpected quota state for attempt 1", attempt_index, quota_state)
        return SummaryCTAState.awaiting_decision()

    # ---------- internals ----------
    def _apply(self, event: AppFlowEvent) -> None:
        nxt = self._machine.transition(self.state, event)
        if nxt != self.state:
            logger.debug("App flow %s --%s--> %s", self.state.kind.value, event.kind.value, nxt.kind.value)
            self.state = nxt

    def _refresh_summary_cta(self) -> None:
        if self.summary is None:
            return
        cta = self.summary_cta_state(self.quota_state, self.summary.summary.attempt_index)
        self.summary = SummaryContext(self.summary.summary, cta)

    async def _observe_quota(self) -> None:
        async with self._quota.observe_states() as states:
            async for state in states:
                self.quota_state = state
                self._refresh_summary_cta()

    async def _observe_entitlements(self) -> None:
        async with self._entitlements.observe_states() as states:
            async for _ in states:
                self._refresh_summary_cta()


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _log_mismatch(message: str, attempt_index: int, quota_state: QuotaState) -> None:
    logger.error("Summary CTA mismatch: %s [attempt=%d state=%r]", message, attempt_index, quota_state)
