"""
Tests for monitor configuration.
"""

import pytest

from core.exceptions import InvalidConfigError
from fidelity_monitor.config import (
    DEFAULT_MONITOR_URL,
    MonitorConfig,
    NotificationConfig,
    ReconnectConfig,
    RefreshConfig,
)
from fidelity_monitor.models import FidelityThresholds


ENV_KEYS = [
    "FIDELITY_MONITOR_URL",
    "FIDELITY_RECONNECT_BASE_SECONDS",
    "FIDELITY_RECONNECT_MAX_SECONDS",
    "FIDELITY_MAX_RECONNECT_ATTEMPTS",
    "FIDELITY_REFRESH_INTERVAL",
    "FIDELITY_AUTO_REFRESH",
    "FIDELITY_API_HOST",
    "FIDELITY_API_PORT",
    "TELEGRAM_BOT_TOKEN",
    "TELEGRAM_CHAT_ID",
]


@pytest.fixture
def clean_env(monkeypatch):
    for key in ENV_KEYS:
        monkeypatch.delenv(key, raising=False)
    monkeypatch.setattr("fidelity_monitor.config.load_dotenv", lambda: None)
    return monkeypatch


class TestValidate:
    """Tests for MonitorConfig.validate()."""

    def test_defaults_valid(self):
        config = MonitorConfig(url="wss://governance.test/ws")
        assert config.validate() is config

    def test_defaults(self):
        config = MonitorConfig(url="ws://x")

        assert config.reconnect.base_delay_seconds == 1.0
        assert config.reconnect.max_delay_seconds == 30.0
        assert config.reconnect.max_attempts == 5
        assert config.refresh.interval_seconds == 30.0
        assert config.history_capacity == 100
        assert config.ledger_capacity == 20

    @pytest.mark.parametrize("url", ["", "ftp://governance.test"])
    def test_bad_url(self, url):
        with pytest.raises(InvalidConfigError):
            MonitorConfig(url=url).validate()

    def test_bad_thresholds(self):
        config = MonitorConfig(url="ws://x", thresholds=FidelityThresholds(green=0.5, amber=0.7))
        with pytest.raises(InvalidConfigError):
            config.validate()

    def test_non_positive_refresh(self):
        config = MonitorConfig(url="ws://x", refresh=RefreshConfig(interval_seconds=0))
        with pytest.raises(InvalidConfigError):
            config.validate()

    def test_ceiling_below_base(self):
        config = MonitorConfig(
            url="ws://x",
            reconnect=ReconnectConfig(base_delay_seconds=10, max_delay_seconds=5),
        )
        with pytest.raises(InvalidConfigError):
            config.validate()

    def test_negative_attempts(self):
        config = MonitorConfig(url="ws://x", reconnect=ReconnectConfig(max_attempts=-1))
        with pytest.raises(InvalidConfigError):
            config.validate()

    def test_small_capacity(self):
        with pytest.raises(InvalidConfigError):
            MonitorConfig(url="ws://x", history_capacity=0).validate()

    def test_error_carries_key(self):
        with pytest.raises(InvalidConfigError) as exc_info:
            MonitorConfig(url="ws://x", trend_window=1).validate()
        assert exc_info.value.context["config_key"] == "trend_window"

    def test_telegram_enabled(self):
        assert not NotificationConfig().telegram_enabled
        assert NotificationConfig(telegram_bot_token="t", telegram_chat_ids=["1"]).telegram_enabled


class TestFromEnv:
    """Tests for MonitorConfig.from_env()."""

    def test_default_url(self, clean_env):
        config = MonitorConfig.from_env()
        assert config.url == DEFAULT_MONITOR_URL

    def test_url_argument_wins(self, clean_env):
        clean_env.setenv("FIDELITY_MONITOR_URL", "ws://env/ws")

        assert MonitorConfig.from_env().url == "ws://env/ws"
        assert MonitorConfig.from_env(url="ws://arg/ws").url == "ws://arg/ws"

    def test_reads_sections(self, clean_env):
        clean_env.setenv("FIDELITY_MAX_RECONNECT_ATTEMPTS", "3")
        clean_env.setenv("FIDELITY_RECONNECT_MAX_SECONDS", "10")
        clean_env.setenv("FIDELITY_REFRESH_INTERVAL", "15")
        clean_env.setenv("FIDELITY_AUTO_REFRESH", "false")
        clean_env.setenv("FIDELITY_API_PORT", "9090")
        clean_env.setenv("TELEGRAM_BOT_TOKEN", "token")
        clean_env.setenv("TELEGRAM_CHAT_ID", "1, 2,,")

        config = MonitorConfig.from_env()

        assert config.reconnect.max_attempts == 3
        assert config.reconnect.max_delay_seconds == 10.0
        assert config.refresh.interval_seconds == 15.0
        assert config.refresh.auto_refresh is False
        assert config.api.port == 9090
        assert config.notifications.telegram_chat_ids == ["1", "2"]
        assert config.notifications.telegram_enabled

    def test_bad_number(self, clean_env):
        clean_env.setenv("FIDELITY_REFRESH_INTERVAL", "soon")

        with pytest.raises(InvalidConfigError):
            MonitorConfig.from_env()

    def test_invalid_value_rejected(self, clean_env):
        clean_env.setenv("FIDELITY_REFRESH_INTERVAL", "-5")

        with pytest.raises(InvalidConfigError):
            MonitorConfig.from_env()
