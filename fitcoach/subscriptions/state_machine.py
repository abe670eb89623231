# fitcoach/subscriptions/state_machine.py
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from fitcoach.subscriptions.models import (
    EntitlementState,
    EntitlementStateKind,
    PaywallProduct,
    SubscriptionInfo,
)


class EntitlementEventKind(str, Enum):
    PRODUCTS_LOADED = "products_loaded"
    ENTITLEMENT_VERIFIED = "entitlement_verified"
    PURCHASE_STARTED = "purchase_started"
    PURCHASE_FAILED = "purchase_failed"
    PURCHASE_CANCELLED = "purchase_cancelled"
    RESTORE_STARTED = "restore_started"
    RESTORE_FAILED = "restore_failed"
    REVOKED = "revoked"
    ERROR = "error"
    RETRY = "retry"


@dataclass(frozen=True)
class EntitlementEvent:
    kind: EntitlementEventKind
    product: Optional[PaywallProduct] = None
    info: Optional[SubscriptionInfo] = None
    message: Optional[str] = None

    @classmethod
    def products_loaded(cls, product: PaywallProduct) -> "EntitlementEvent":
        return cls(EntitlementEventKind.PRODUCTS_LOADED, product=product)

    @classmethod
    def entitlement_verified(cls, info: SubscriptionInfo) -> "EntitlementEvent":
        return cls(EntitlementEventKind.ENTITLEMENT_VERIFIED, info=info)

    @classmethod
    def purchase_started(cls) -> "EntitlementEvent":
        return cls(EntitlementEventKind.PURCHASE_STARTED)

    @classmethod
    def purchase_failed(cls, message: str) -> "EntitlementEvent":
        return cls(EntitlementEventKind.PURCHASE_FAILED, message=message)

    @classmethod
    def purchase_cancelled(cls) -> "EntitlementEvent":
        return cls(EntitlementEventKind.PURCHASE_CANCELLED)

    @classmethod
    def restore_started(cls) -> "EntitlementEvent":
        return cls(EntitlementEventKind.RESTORE_STARTED)

    @classmethod
    def restore_failed(cls, message: str) -> "EntitlementEvent":
        return cls(EntitlementEventKind.RESTORE_FAILED, message=message)

    @classmethod
    def revoked(cls) -> "EntitlementEvent":
        return cls(EntitlementEventKind.REVOKED)

    @classmethod
    def error(cls, message: str) -> "EntitlementEvent":
        return cls(EntitlementEventKind.ERROR, message=message)

    @classmethod
    def retry(cls) -> "EntitlementEvent":
        return cls(EntitlementEventKind.RETRY)


class EntitlementStateMachine:
    """Pure transition table for the paywall / subscription lifecycle."""

    def transition(self, state: EntitlementState, event: EntitlementEvent) -> EntitlementState:
        S, E = EntitlementStateKind, EntitlementEventKind
        s, e = state.kind, event.kind

        # entitlement_verified wins from every state except subscribed itself
        if e == E.ENTITLEMENT_VERIFIED and event.info is not None and s != S.SUBSCRIBED:
            return EntitlementState.subscribed(event.info)

        if s == S.LOADING:
            if e == E.PRODUCTS_LOADED and event.product is not None:
                return EntitlementState.ready(event.product)
            if e == E.ERROR:
                return EntitlementState.error(event.message or "", None)

        elif s == S.READY:
            if e == E.PRODUCTS_LOADED and event.product is not None:
                return EntitlementState.ready(event.product)
            if e == E.PURCHASE_STARTED:
                return EntitlementState.purchasing(state.product)
            if e == E.RESTORE_STARTED:
                return EntitlementState.restoring(state.product)
            if e == E.ERROR:
                return EntitlementState.error(event.message or "", state.product)

        elif s == S.PURCHASING:
            if e == E.PURCHASE_FAILED:
                return EntitlementState.error(event.message or "", state.product)
            if e == E.PURCHASE_CANCELLED:
                return EntitlementState.ready(state.product)

        elif s == S.RESTORING:
            if e == E.RESTORE_FAILED:
                return EntitlementState.error(event.message or "", state.product)

        elif s == S.SUBSCRIBED:
            if e == E.REVOKED and state.info is not None:
                return EntitlementState.ready(state.info.product)

        elif s == S.ERROR:
            if e == E.RETRY:
                if state.product is not None:
                    return EntitlementState.ready(state.product)
                return EntitlementState.loading()
            if e == E.PRODUCTS_LOADED and event.product is not None:
                return EntitlementState.ready(event.product)
            # a second error keeps the first message on screen

        return state
