# fitcoach/demo_quota/identity.py
from __future__ import annotations

import json
import logging
import uuid
from pathlib import Path
from typing import Optional, Protocol

from fitcoach.common import config as C
from fitcoach.common.io_utils import read_json, write_json
from fitcoach.demo_quota.errors import KeychainUnavailableError, UnableToGenerateIdentityError

logger = logging.getLogger(__name__)


class SecureIdentityStorage(Protocol):
    def read_uuid(self) -> Optional[uuid.UUID]: ...
    def store(self, value: uuid.UUID) -> None: ...


class DeviceIdentityMirroring(Protocol):
    async def fetch_device_id(self) -> Optional[uuid.UUID]: ...
    async def mirror(self, device_id: uuid.UUID) -> None: ...


class FileDeviceIdentityStorage:
    """
    Device id kept in a JSON file readable only by the owner (0600).
    `service` namespaces ids so mock and live wiring never share one.
    """

    def __init__(self, path: Path = C.DEVICE_IDENTITY_STORE, service: str = "fitcoach.deviceid"):
        self.path = Path(path)
        self.service = service

    def read_uuid(self) -> Optional[uuid.UUID]:
        try:
            data = read_json(self.path, default={})
        except (OSError, json.JSONDecodeError) as e:
            raise KeychainUnavailableError(str(e)) from e
        raw = data.get(self.service) if isinstance(data, dict) else None
        if raw is None:
            return None
        try:
            return uuid.UUID(str(raw))
        except ValueError as e:
            raise UnableToGenerateIdentityError(f"Stored device id is not a UUID: {raw!r}") from e

    def store(self, value: uuid.UUID) -> None:
        try:
            data = read_json(self.path, default={})
            if not isinstance(data, dict):
                data = {}
            data[self.service] = str(value)
            write_json(data, self.path, mode=0o600)
        except (OSError, json.JSONDecodeError) as e:
            raise KeychainUnavailableError(str(e)) from e


class DeviceIdentityProvider:
    """
    Local storage first, then the server mirror, then a freshly generated id
    that is stored locally and pushed to the mirror.
    """

    def __init__(self, storage: SecureIdentityStorage, server_mirror: DeviceIdentityMirroring):
        self._storage = storage
        self._mirror = server_mirror

    async def device_id(self) -> uuid.UUID:
        existing = self._storage.read_uuid()
        if existing is not None:
            return existing

        mirrored = await self._mirror.fetch_device_id()
        if mirrored is not None:
            self._storage.store(mirrored)
            logger.info("Restored device id from server mirror")
            return mirrored

        generated = uuid.uuid4()
        self._storage.store(generated)
        await self._mirror.mirror(generated)
        logger.info("Generated new device id")
        return generated
