# fitcoach/subscriptions/store.py
"""
Store backend seam of the entitlement service.

A backend lists products, runs purchases and streams verified (or
unverified) transactions. `InMemoryStoreBackend` is the offline
implementation for offline runs and tests.
"""
from __future__ import annotations

import asyncio
import itertools
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from enum import Enum
from typing import AsyncIterator, Dict, List, Optional, Protocol, Sequence


class StoreError(Exception):
    pass


class PeriodUnit(str, Enum):
    DAY = "day"
    WEEK = "week"
    MONTH = "month"
    YEAR = "year"


@dataclass(frozen=True)
class SubscriptionPeriod:
    unit: PeriodUnit = PeriodUnit.MONTH
    value: int = 1

    @property
    def description(self) -> str:
        if self.unit == PeriodUnit.DAY:
            return "week" if self.value == 7 else "day"
        word = self.unit.value
        return word if self.value == 1 else word + "s"


@dataclass(frozen=True)
class StoreProduct:
    id: str
    display_name: str
    display_price: str
    period: Optional[SubscriptionPeriod] = None


@dataclass(frozen=True)
class StoreTransaction:
    id: int
    product_id: str
    expiration_date: Optional[datetime] = None
    revocation_date: Optional[datetime] = None


@dataclass(frozen=True)
class VerificationResult:
    transaction: StoreTransaction
    verified: bool = True
    error: Optional[str] = None


class PurchaseOutcomeKind(str, Enum):
    SUCCESS = "success"
    USER_CANCELLED = "user_cancelled"
    PENDING = "pending"


@dataclass(frozen=True)
class PurchaseOutcome:
    kind: PurchaseOutcomeKind
    verification: Optional[VerificationResult] = None


class StoreBackend(Protocol):
    async def fetch_products(self, product_ids: Sequence[str]) -> List[StoreProduct]: ...
    async def purchase(self, product: StoreProduct) -> PurchaseOutcome: ...
    def current_entitlements(self) -> AsyncIterator[VerificationResult]: ...
    def updates(self) -> AsyncIterator[VerificationResult]: ...
    async def finish(self, transaction: StoreTransaction) -> None: ...


class InMemoryStoreBackend:
    """
    Products and entitlements held in memory. `next_outcome` forces the
    result of the next purchase; `push_update` feeds the transaction stream.
    """

    def __init__(self, products: Sequence[StoreProduct] = (), fail_products: bool = False):
        self.products = list(products)
        self.fail_products = fail_products
        self.next_outcome: Optional[PurchaseOutcomeKind] = None
        self.finished: List[int] = []
        self._entitlements: Dict[str, StoreTransaction] = {}
        self._ids = itertools.count(1)
        self._updates: asyncio.Queue = asyncio.Queue()

    async def fetch_products(self, product_ids: Sequence[str]) -> List[StoreProduct]:
        if self.fail_products:
            raise StoreError("store unreachable")
        return [p for p in self.products if p.id in product_ids]

    async def purchase(self, product: StoreProduct) -> PurchaseOutcome:
        outcome, self.next_outcome = self.next_outcome or PurchaseOutcomeKind.SUCCESS, None
        if outcome != PurchaseOutcomeKind.SUCCESS:
            return PurchaseOutcome(outcome)
        tx = StoreTransaction(id=next(self._ids), product_id=product.id)
        self._entitlements[product.id] = tx
        return PurchaseOutcome(outcome, VerificationResult(tx))

    def grant(self, product_id: str) -> StoreTransaction:
        tx = StoreTransaction(id=next(self._ids), product_id=product_id)
        self._entitlements[product_id] = tx
        return tx

    def revoke(self, product_id: str) -> Optional[StoreTransaction]:
        tx = self._entitlements.pop(product_id, None)
        if tx is None:
            return None
        return replace(tx, revocation_date=datetime.now(timezone.utc))

    def push_update(self, result: VerificationResult) -> None:
        self._updates.put_nowait(result)

    async def current_entitlements(self) -> AsyncIterator[VerificationResult]:
        for tx in list(self._entitlements.values()):
            yield VerificationResult(tx)

    async def updates(self) -> AsyncIterator[VerificationResult]:
        while True:
            yield await self._updates.get()

    async def finish(self, transaction: StoreTransaction) -> None:
        self.finished.append(transaction.id)
