# fitcoach/subscriptions/paywall.py
from __future__ import annotations

import asyncio
from typing import Optional, Tuple

from fitcoach.subscriptions.models import EntitlementState, EntitlementStateKind
from fitcoach.subscriptions.service import EntitlementServicing

DEFAULT_TITLE = "FitCoach Pro"
SUCCESS_MESSAGE = "You're all set! Unlimited coaching unlocked."
FEATURE_BULLETS: Tuple[str, ...] = (
    "Unlimited AI-powered squat coaching",
    "Personalized cues every rep",
    "Session history & insights",
)


class PaywallPresenter:
    """Paywall texts and button availability derived from the entitlement state."""

    def __init__(self, service: EntitlementServicing, feature_bullets: Tuple[str, ...] = FEATURE_BULLETS):
        self._service = service
        self.feature_bullets = feature_bullets
        self.state: EntitlementState = service.state
        self._task: Optional[asyncio.Task] = None

    def start(self) -> None:
        """Follows the service's state stream until `close()`."""
        if self._task is None:
            self._task = asyncio.create_task(self._observe())

    async def _observe(self) -> None:
        async with self._service.observe_states() as states:
            async for state in states:
                self.state = state

    async def close(self) -> None:
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    async def subscribe(self) -> None:
        await self._service.purchase()

    async def restore(self) -> None:
        await self._service.restore()

    async def retry_load(self) -> None:
        await self._service.load()

    @property
    def title_text(self) -> str:
        product = self.state.paywall_product
        return product.display_name if product else DEFAULT_TITLE

    @property
    def price_text(self) -> str:
        product = self.state.paywall_product
        return product.price_per_period_description if product else "--"

    @property
    def is_processing(self) -> bool:
        return self.state.is_processing

    @property
    def error_message(self) -> Optional[str]:
        return self.state.message if self.state.kind == EntitlementStateKind.ERROR else None

    @property
    def success_message(self) -> Optional[str]:
        return SUCCESS_MESSAGE if self.state.is_subscribed else None

    @property
    def is_subscribe_disabled(self) -> bool:
        return self.state.paywall_product is None or self.is_processing or self.state.is_subscribed

    @property
    def is_restore_disabled(self) -> bool:
        return self.is_processing or self.state.is_subscribed
