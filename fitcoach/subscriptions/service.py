# fitcoach/subscriptions/service.py
"""
Entitlement service: drives the entitlement state machine from a store
backend and keeps a cached "pro" flag.

`is_pro` is sticky: `cached_is_pro or state.is_subscribed`. The cache is
written whenever an entitlement is verified and cleared only on revocation or
when a refresh / restore finds no entitlement, so a revocation the service
never observes leaves `is_pro` set until the next successful refresh.
"""
from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Optional, Protocol, Sequence, Tuple

from fitcoach.common.broadcast import StateBroadcaster, Subscription
from fitcoach.subscriptions.models import EntitlementState, PaywallProduct, SubscriptionInfo
from fitcoach.subscriptions.snapshot_store import (
    EntitlementSnapshot,
    EntitlementSnapshotPersisting,
    InMemoryEntitlementSnapshotStore,
)
from fitcoach.subscriptions.state_machine import EntitlementEvent, EntitlementStateMachine
from fitcoach.subscriptions.store import (
    PurchaseOutcomeKind,
    StoreBackend,
    StoreError,
    StoreProduct,
    StoreTransaction,
    VerificationResult,
)

logger = logging.getLogger(__name__)

DEFAULT_FEATURES: Tuple[str, ...] = (
    "Unlimited AI coaching sessions",
    "Personalized squat insights",
    "Real-time voice cues",
)
FALLBACK_DISPLAY_NAME = "FitCoach Pro"
FALLBACK_PRICE = "$19.99"
FALLBACK_PERIOD = "month"


class EntitlementServicing(Protocol):
    @property
    def state(self) -> EntitlementState: ...
    @property
    def is_pro(self) -> bool: ...
    def observe_states(self) -> Subscription[EntitlementState]: ...
    async def load(self) -> None: ...
    async def purchase(self) -> None: ...
    async def restore(self) -> None: ...


class EntitlementService:
    def __init__(
        self,
        backend: StoreBackend,
        product_ids: Sequence[str],
        snapshot_store: Optional[EntitlementSnapshotPersisting] = None,
        state_machine: Optional[EntitlementStateMachine] = None,
    ):
        self._backend = backend
        self._product_ids = tuple(product_ids)
        self._snapshots = snapshot_store or InMemoryEntitlementSnapshotStore()
        self._machine = state_machine or EntitlementStateMachine()
        self._current_product: Optional[StoreProduct] = None
        self._updates_task: Optional[asyncio.Task] = None

        snapshot = self._snapshots.load()
        self._cached_is_pro = bool(snapshot and snapshot.is_pro)
        self._state = EntitlementState.loading()
        self._is_pro = self._cached_is_pro
        self._states = StateBroadcaster(self._state)

    @property
    def state(self) -> EntitlementState:
        return self._state

    @property
    def is_pro(self) -> bool:
        return self._is_pro

    def observe_states(self) -> Subscription[EntitlementState]:
        return self._states.subscribe()

    # ---------- intents ----------
    async def load(self) -> None:
        await self._load_products_if_needed()
        await self._refresh_current_entitlements()
        self._start_transaction_listener()

    async def purchase(self) -> None:
        product = self._current_product
        if product is None:
            self._apply(EntitlementEvent.error("Product unavailable."))
            return
        self._apply(EntitlementEvent.purchase_started())
        try:
            outcome = await self._backend.purchase(product)
        except StoreError as e:
            self._apply(EntitlementEvent.purchase_failed(str(e)))
            return

        if outcome.kind == PurchaseOutcomeKind.SUCCESS and outcome.verification is not None:
            try:
                await self.handle_transaction(outcome.verification, finish=True)
            except StoreError as e:
                self._apply(EntitlementEvent.purchase_failed(str(e)))
        elif outcome.kind == PurchaseOutcomeKind.USER_CANCELLED:
            self._apply(EntitlementEvent.purchase_cancelled())
        elif outcome.kind == PurchaseOutcomeKind.PENDING:
            self._apply(EntitlementEvent.purchase_failed("Purchase pending. Check with your store account."))
        else:
            self._apply(EntitlementEvent.purchase_failed("Unknown purchase result."))

    async def restore(self) -> None:
        if self._current_product is None:
            await self._load_products_if_needed()
        self._apply(EntitlementEvent.restore_started())
        restored = False
        try:
            async for result in self._backend.current_entitlements():
                matched = await self.handle_transaction(result, finish=False)
                restored = restored or matched
        except StoreError as e:
            self._apply(EntitlementEvent.restore_failed(str(e)))
            return
        if not restored:
            self._clear_snapshot()
            self._apply(EntitlementEvent.restore_failed("No active subscription found."))

    async def handle_transaction(self, result: VerificationResult, finish: bool = False) -> bool:
        """Returns True when the transaction belongs to one of our products."""
        if not result.verified:
            logger.error("Unverified transaction %s: %s", result.transaction.id, result.error)
            return False
        tx = result.transaction
        if tx.product_id not in self._product_ids:
            return False

        info = SubscriptionInfo(
            product=self._current_paywall_product() or self._fallback_product(tx),
            transaction_id=tx.id,
            expiration_date=tx.expiration_date,
        )
        self._apply(EntitlementEvent.entitlement_verified(info))
        self._persist_snapshot(info)
        if finish:
            await self._backend.finish(tx)
        if tx.revocation_date is not None:
            logger.info("Entitlement %s revoked", tx.product_id)
            self._apply(EntitlementEvent.revoked())
            self._clear_snapshot()
            self._refresh_is_pro()
        return True

    async def retry(self) -> None:
        self._apply(EntitlementEvent.retry())
        await self.load()

    async def close(self) -> None:
        if self._updates_task is not None:
            self._updates_task.cancel()
            try:
                await self._updates_task
            except asyncio.CancelledError:
                pass
            self._updates_task = None
        self._states.close()

    # ---------- helpers ----------
    async def _load_products_if_needed(self) -> None:
        if self._current_product is not None:
            return
        try:
            products = await self._backend.fetch_products(self._product_ids)
        except StoreError as e:
            logger.error("Failed to load products: %s", e)
            self._apply(EntitlementEvent.error("Unable to reach the store. Try again."))
            return
        if not products:
            self._apply(EntitlementEvent.error("No products configured."))
            return
        self._current_product = products[0]
        self._apply(EntitlementEvent.products_loaded(self._make_paywall_product(products[0])))

    async def _refresh_current_entitlements(self) -> None:
        found = False
        try:
            async for result in self._backend.current_entitlements():
                matched = await self.handle_transaction(result, finish=False)
                found = found or matched
        except StoreError as e:
            logger.error("Failed to refresh current entitlements: %s", e)
            return
        if not found:
            self._clear_snapshot()
            self._refresh_is_pro()

    def _start_transaction_listener(self) -> None:
        if self._updates_task is not None:
            return
        self._updates_task = asyncio.create_task(self._listen_for_updates())

    async def _listen_for_updates(self) -> None:
        async for result in self._backend.updates():
            try:
                await self.handle_transaction(result, finish=True)
            except StoreError as e:
                logger.error("Transaction listener failed: %s", e)

    @staticmethod
    def _make_paywall_product(product: StoreProduct) -> PaywallProduct:
        period = product.period.description if product.period else FALLBACK_PERIOD
        return PaywallProduct(product.id, product.display_name, product.display_price, period, DEFAULT_FEATURES)

    def _fallback_product(self, tx: StoreTransaction) -> PaywallProduct:
        known = self._state.paywall_product
        return PaywallProduct(
            id=tx.product_id,
            display_name=FALLBACK_DISPLAY_NAME,
            display_price=known.display_price if known else FALLBACK_PRICE,
            period_description=known.period_description if known else FALLBACK_PERIOD,
            features=DEFAULT_FEATURES,
        )

    def _current_paywall_product(self) -> Optional[PaywallProduct]:
        if self._state.paywall_product is not None:
            return self._state.paywall_product
        if self._current_product is not None:
            return self._make_paywall_product(self._current_product)
        return None

    def _persist_snapshot(self, info: SubscriptionInfo) -> None:
        self._snapshots.save(EntitlementSnapshot(
            is_pro=True, product_id=info.product.id, last_updated=datetime.now(timezone.utc)))
        self._cached_is_pro = True
        self._refresh_is_pro()

    def _clear_snapshot(self) -> None:
        self._snapshots.clear()
        self._cached_is_pro = False

    def _apply(self, event: EntitlementEvent) -> None:
        nxt = self._machine.transition(self._state, event)
        if nxt != self._state:
            logger.debug("Entitlement %s --%s--> %s", self._state.kind.value, event.kind.value, nxt.kind.value)
        self._state = nxt
        self._refresh_is_pro()
        self._states.publish(nxt)

    def _refresh_is_pro(self) -> None:
        self._is_pro = self._cached_is_pro or self._state.is_subscribed
