# fitcoach/demo_quota/configuration.py
from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from enum import Enum
from typing import Mapping, Optional

logger = logging.getLogger(__name__)

ENV_MODE = "DEMO_QUOTA_MODE"
ENV_SESSION_LOGGER_URL = "DEMO_QUOTA_SESSION_LOGGER_URL"
ENV_EVALUATE_SESSION_URL = "DEMO_QUOTA_EVALUATE_SESSION_URL"
ENV_SNAPSHOT_FETCH_URL = "DEMO_QUOTA_SNAPSHOT_FETCH_URL"
ENV_SNAPSHOT_MIRROR_URL = "DEMO_QUOTA_SNAPSHOT_MIRROR_URL"
ENV_IDENTITY_FETCH_URL = "DEMO_QUOTA_IDENTITY_FETCH_URL"
ENV_IDENTITY_MIRROR_URL = "DEMO_QUOTA_IDENTITY_MIRROR_URL"
ENV_ANON_KEY = "DEMO_QUOTA_ANON_KEY"


class DemoQuotaMode(str, Enum):
    MOCK = "mock"
    REMOTE = "remote"


@dataclass(frozen=True)
class RemoteEndpoints:
    session_logger_url: str
    evaluate_session_url: str
    snapshot_fetch_url: str
    snapshot_mirror_url: str
    identity_fetch_url: str
    identity_mirror_url: str
    anon_key: str


@dataclass(frozen=True)
class DemoQuotaConfiguration:
    mode: DemoQuotaMode = DemoQuotaMode.MOCK
    remote: Optional[RemoteEndpoints] = None

    @classmethod
    def mock(cls) -> "DemoQuotaConfiguration":
        return cls()

    @classmethod
    def load(cls, environ: Optional[Mapping[str, str]] = None) -> "DemoQuotaConfiguration":
        """
        Reads the mode and endpoints from the environment (`.env` is already
        loaded by fitcoach.common.config). Remote mode with an incomplete set of
        endpoints falls back to mock.
        """
        env = os.environ if environ is None else environ
        mode = (env.get(ENV_MODE) or DemoQuotaMode.MOCK.value).strip().lower()
        if mode != DemoQuotaMode.REMOTE.value:
            if mode != DemoQuotaMode.MOCK.value:
                logger.warning("Unknown %s=%r, using mock", ENV_MODE, mode)
            return cls.mock()

        values = {}
        for field_name, key in (
            ("session_logger_url", ENV_SESSION_LOGGER_URL),
            ("evaluate_session_url", ENV_EVALUATE_SESSION_URL),
            ("snapshot_fetch_url", ENV_SNAPSHOT_FETCH_URL),
            ("snapshot_mirror_url", ENV_SNAPSHOT_MIRROR_URL),
            ("identity_fetch_url", ENV_IDENTITY_FETCH_URL),
            ("identity_mirror_url", ENV_IDENTITY_MIRROR_URL),
            ("anon_key", ENV_ANON_KEY),
        ):
            value = (env.get(key) or "").strip()
            if not value:
                logger.warning("%s is not set, demo quota falls back to mock", key)
                return cls.mock()
            values[field_name] = value

        return cls(DemoQuotaMode.REMOTE, RemoteEndpoints(**values))
