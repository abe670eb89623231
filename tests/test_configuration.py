import logging

import pytest

from fitcoach.demo_quota.configuration import (
    ENV_ANON_KEY,
    ENV_EVALUATE_SESSION_URL,
    ENV_IDENTITY_FETCH_URL,
    ENV_IDENTITY_MIRROR_URL,
    ENV_MODE,
    ENV_SESSION_LOGGER_URL,
    ENV_SNAPSHOT_FETCH_URL,
    ENV_SNAPSHOT_MIRROR_URL,
    DemoQuotaConfiguration,
    DemoQuotaMode,
)


@pytest.fixture
def remote_env():
    return {
        ENV_MODE: " Remote ",
        ENV_SESSION_LOGGER_URL: "https://api.test/log",
        ENV_EVALUATE_SESSION_URL: "https://api.test/eval",
        ENV_SNAPSHOT_FETCH_URL: "https://api.test/snapshot",
        ENV_SNAPSHOT_MIRROR_URL: "https://api.test/snapshot/mirror",
        ENV_IDENTITY_FETCH_URL: "https://api.test/id",
        ENV_IDENTITY_MIRROR_URL: "https://api.test/id/mirror",
        ENV_ANON_KEY: "anon-key",
    }


def test_defaults_to_mock():
    assert DemoQuotaConfiguration.load({}) == DemoQuotaConfiguration.mock()
    assert DemoQuotaConfiguration.mock().mode == DemoQuotaMode.MOCK


def test_remote_mode(remote_env):
    config = DemoQuotaConfiguration.load(remote_env)
    assert config.mode == DemoQuotaMode.REMOTE
    assert config.remote.evaluate_session_url == "https://api.test/eval"
    assert config.remote.anon_key == "anon-key"


@pytest.mark.parametrize("missing", [ENV_ANON_KEY, ENV_SNAPSHOT_MIRROR_URL])
def test_incomplete_remote_falls_back_to_mock(remote_env, missing, caplog):
    remote_env[missing] = "  "
    with caplog.at_level(logging.WARNING):
        config = DemoQuotaConfiguration.load(remote_env)
    assert config == DemoQuotaConfiguration.mock()
    assert missing in caplog.text


def test_unknown_mode_warns(caplog):
    with caplog.at_level(logging.WARNING):
        config = DemoQuotaConfiguration.load({ENV_MODE: "staging"})
    assert config.mode == DemoQuotaMode.MOCK
    assert "staging" in caplog.text


def test_reads_process_environment(monkeypatch):
    monkeypatch.setenv(ENV_MODE, "mock")
    assert DemoQuotaConfiguration.load().mode == DemoQuotaMode.MOCK
