# fitcoach/demo_quota/factory.py
from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

from fitcoach.common import config as C
from fitcoach.demo_quota.configuration import DemoQuotaConfiguration, DemoQuotaMode
from fitcoach.demo_quota.coordinator import DemoQuotaCoordinator
from fitcoach.demo_quota.identity import DeviceIdentityProvider, FileDeviceIdentityStorage
from fitcoach.demo_quota.mocks import (
    ConsoleSessionLogger,
    MockEvaluationService,
    MockSnapshotSync,
    NoopDeviceIdentityMirror,
)
from fitcoach.demo_quota.persistence import JsonDemoAttemptRepository
from fitcoach.demo_quota.remote import (
    EvaluateSessionService,
    RemoteDeviceIdentityMirror,
    RemoteSessionLogger,
    RemoteSnapshotSync,
)

logger = logging.getLogger(__name__)

MOCK_STORE_PREFIX = "demo.quota.mock"
MOCK_IDENTITY_SERVICE = "fitcoach.deviceid.mock"


def make_demo_quota_coordinator(
    config: Optional[DemoQuotaConfiguration] = None,
    quota_store: Path = C.DEMO_QUOTA_STORE,
    identity_store: Path = C.DEVICE_IDENTITY_STORE,
) -> DemoQuotaCoordinator:
    """Mock wiring keeps its own store keys and device id so it never touches live data."""
    config = config or DemoQuotaConfiguration.load()

    if config.mode == DemoQuotaMode.REMOTE and config.remote is not None:
        ep = config.remote
        logger.info("Demo quota: remote wiring")
        mirror = RemoteDeviceIdentityMirror(ep.identity_fetch_url, ep.identity_mirror_url, ep.anon_key)
        return DemoQuotaCoordinator(
            persistence=JsonDemoAttemptRepository(quota_store),
            session_logger=RemoteSessionLogger(ep.session_logger_url, ep.anon_key),
            evaluation_service=EvaluateSessionService(ep.evaluate_session_url, ep.anon_key,
                                                      timeout=C.EVALUATION_TIMEOUT_S),
            identity_provider=DeviceIdentityProvider(FileDeviceIdentityStorage(identity_store), mirror),
            snapshot_sync=RemoteSnapshotSync(ep.snapshot_fetch_url, ep.snapshot_mirror_url, ep.anon_key),
        )

    logger.info("Demo quota: mock wiring")
    return DemoQuotaCoordinator(
        persistence=JsonDemoAttemptRepository(quota_store, prefix=MOCK_STORE_PREFIX),
        session_logger=ConsoleSessionLogger(),
        evaluation_service=MockEvaluationService(),
        identity_provider=DeviceIdentityProvider(
            FileDeviceIdentityStorage(identity_store, service=MOCK_IDENTITY_SERVICE),
            NoopDeviceIdentityMirror(),
        ),
        snapshot_sync=MockSnapshotSync(),
    )
