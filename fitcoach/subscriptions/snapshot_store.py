# fitcoach/subscriptions/snapshot_store.py
from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path
from typing import Optional, Protocol

from pydantic import BaseModel, ValidationError

from fitcoach.common import config as C
from fitcoach.common.io_utils import JsonKeyValueStore

logger = logging.getLogger(__name__)


class EntitlementSnapshot(BaseModel):
    is_pro: bool
    product_id: Optional[str] = None
    last_updated: datetime


class EntitlementSnapshotPersisting(Protocol):
    def load(self) -> Optional[EntitlementSnapshot]: ...
    def save(self, snapshot: EntitlementSnapshot) -> None: ...
    def clear(self) -> None: ...


class JsonEntitlementSnapshotStore:
    def __init__(self, path: Path = C.ENTITLEMENT_STORE, key: str = "fitcoach.entitlements.snapshot"):
        self._store = JsonKeyValueStore(path)
        self._key = key

    def load(self) -> Optional[EntitlementSnapshot]:
        raw = self._store.get(self._key)
        if raw is None:
            return None
        try:
            return EntitlementSnapshot.model_validate(raw)
        except ValidationError as e:
            logger.warning("Discarding unreadable entitlement snapshot: %s", e)
            return None

    def save(self, snapshot: EntitlementSnapshot) -> None:
        self._store.set(self._key, snapshot.model_dump(mode="json"))

    def clear(self) -> None:
        self._store.remove(self._key)


class InMemoryEntitlementSnapshotStore:
    def __init__(self, snapshot: Optional[EntitlementSnapshot] = None):
        self.snapshot = snapshot

    def load(self) -> Optional[EntitlementSnapshot]:
        return self.snapshot

    def save(self, snapshot: EntitlementSnapshot) -> None:
        self.snapshot = snapshot

    def clear(self) -> None:
        self.snapshot = None
