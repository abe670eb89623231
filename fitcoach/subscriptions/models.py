# fitcoach/subscriptions/models.py
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional, Tuple


@dataclass(frozen=True)
class PaywallProduct:
    id: str
    display_name: str
    display_price: str
    period_description: str
    features: Tuple[str, ...] = field(default_factory=tuple)

    @property
    def price_per_period_description(self) -> str:
        return f"{self.display_price} / {self.period_description}"


@dataclass(frozen=True)
class SubscriptionInfo:
    product: PaywallProduct
    transaction_id: int
    expiration_date: Optional[datetime] = None


class EntitlementStateKind(str, Enum):
    LOADING = "loading"
    READY = "ready"
    PURCHASING = "purchasing"
    RESTORING = "restoring"
    SUBSCRIBED = "subscribed"
    ERROR = "error"


@dataclass(frozen=True)
class EntitlementState:
    kind: EntitlementStateKind
    product: Optional[PaywallProduct] = None  # ready / purchasing / restoring / error
    info: Optional[SubscriptionInfo] = None  # subscribed
    message: Optional[str] = None  # error

    @classmethod
    def loading(cls) -> "EntitlementState":
        return cls(EntitlementStateKind.LOADING)

    @classmethod
    def ready(cls, product: PaywallProduct) -> "EntitlementState":
        return cls(EntitlementStateKind.READY, product=product)

    @classmethod
    def purchasing(cls, product: PaywallProduct) -> "EntitlementState":
        return cls(EntitlementStateKind.PURCHASING, product=product)

    @classmethod
    def restoring(cls, product: PaywallProduct) -> "EntitlementState":
        return cls(EntitlementStateKind.RESTORING, product=product)

    @classmethod
    def subscribed(cls, info: SubscriptionInfo) -> "EntitlementState":
        return cls(EntitlementStateKind.SUBSCRIBED, info=info)

    @classmethod
    def error(cls, message: str, product: Optional[PaywallProduct] = None) -> "EntitlementState":
        return cls(EntitlementStateKind.ERROR, product=product, message=message)

    @property
    def paywall_product(self) -> Optional[PaywallProduct]:
        if self.kind == EntitlementStateKind.SUBSCRIBED:
            return self.info.product if self.info else None
        return self.product

    @property
    def is_subscribed(self) -> bool:
        return self.kind == EntitlementStateKind.SUBSCRIBED

    @property
    def is_processing(self) -> bool:
        return self.kind in (
            EntitlementStateKind.LOADING,
            EntitlementStateKind.PURCHASING,
            EntitlementStateKind.RESTORING,
        )
