"""
Fidelity Monitor - Configuration.

============================================================
PURPOSE
============================================================
All configuration for the fidelity monitor.

CRITICAL CONSTRAINTS:
- Bounded retries only (no reconnect-forever loops)
- Bounded memory (fixed history and ledger capacities)
- Endpoint address is injected, never hardcoded in the core

============================================================
ENVIRONMENT
============================================================
FIDELITY_MONITOR_URL              WebSocket endpoint
FIDELITY_RECONNECT_BASE_SECONDS   Backoff base delay
FIDELITY_RECONNECT_MAX_SECONDS    Backoff ceiling
FIDELITY_MAX_RECONNECT_ATTEMPTS   Automatic attempt ceiling
FIDELITY_REFRESH_INTERVAL         Snapshot refresh interval
FIDELITY_AUTO_REFRESH             "true"/"false"
FIDELITY_API_HOST / _PORT         Read-only HTTP API bind
TELEGRAM_BOT_TOKEN                Notification bot token
TELEGRAM_CHAT_ID                  Comma-separated chat ids

============================================================
"""

import logging
import os
from dataclasses import dataclass, field
from typing import List, Optional

from dotenv import load_dotenv

from core.exceptions import InvalidConfigError

from .models import (
    FidelityThresholds,
    ViolationSeverity,
    HISTORY_CAPACITY,
    LEDGER_CAPACITY,
    TREND_WINDOW,
)


logger = logging.getLogger(__name__)


DEFAULT_MONITOR_URL = "ws://localhost:8004/api/v1/ws/fidelity-monitor"


# ============================================================
# RECONNECT CONFIGURATION
# ============================================================

@dataclass
class ReconnectConfig:
    """
    Reconnection policy.

    SAFETY: Bounded attempts with exponential backoff.
    """

    enabled: bool = True
    """Whether to reconnect automatically at all."""

    base_delay_seconds: float = 1.0
    """Delay before the first automatic attempt."""

    max_delay_seconds: float = 30.0
    """Maximum delay between attempts."""

    max_attempts: int = 5
    """Automatic attempts before giving up (explicit connect() resets)."""

    def validate(self) -> None:
        if self.base_delay_seconds < 0:
            raise InvalidConfigError("reconnect.base_delay_seconds", self.base_delay_seconds, "must be >= 0")
        if self.max_delay_seconds < self.base_delay_seconds:
            raise InvalidConfigError("reconnect.max_delay_seconds", self.max_delay_seconds, "must be >= base delay")
        if self.max_attempts < 0:
            raise InvalidConfigError("reconnect.max_attempts", self.max_attempts, "must be >= 0")


# ============================================================
# REFRESH CONFIGURATION
# ============================================================

@dataclass
class RefreshConfig:
    """Polling refresh alongside push updates."""

    auto_refresh: bool = True
    """Start the refresh scheduler with the monitor."""

    interval_seconds: float = 30.0
    """Seconds between snapshot requests."""

    def validate(self) -> None:
        if self.interval_seconds <= 0:
            raise InvalidConfigError("refresh.interval_seconds", self.interval_seconds, "must be positive")


# ============================================================
# NOTIFICATION CONFIGURATION
# ============================================================

@dataclass
class NotificationConfig:
    """Escalation notification pipeline."""

    min_severity: ViolationSeverity = ViolationSeverity.LOW
    """Alerts below this severity are not notified."""

    dedup_window_seconds: float = 300.0
    """Identical alerts within this window are suppressed."""

    telegram_bot_token: str = ""
    telegram_chat_ids: List[str] = field(default_factory=list)

    max_per_minute: int = 20
    max_per_hour: int = 100

    @property
    def telegram_enabled(self) -> bool:
        return bool(self.telegram_bot_token and self.telegram_chat_ids)

    def validate(self) -> None:
        if self.dedup_window_seconds < 0:
            raise InvalidConfigError("notifications.dedup_window_seconds", self.dedup_window_seconds, "must be >= 0")
        if self.max_per_minute < 1 or self.max_per_hour < 1:
            raise InvalidConfigError("notifications.rate_limit", self.max_per_minute, "limits must be positive")


# ============================================================
# API CONFIGURATION
# ============================================================

@dataclass
class ApiConfig:
    """Read-only HTTP API."""

    enabled: bool = False
    host: str = "0.0.0.0"
    port: int = 8080
    prefix: str = "/api/fidelity"


# ============================================================
# MONITOR CONFIGURATION
# ============================================================

@dataclass
class MonitorConfig:
    """Top-level configuration for FidelityMonitor."""

    url: str
    """Monitoring endpoint (ws:// or wss://)."""

    reconnect: ReconnectConfig = field(default_factory=ReconnectConfig)
    refresh: RefreshConfig = field(default_factory=RefreshConfig)
    notifications: NotificationConfig = field(default_factory=NotificationConfig)
    api: ApiConfig = field(default_factory=ApiConfig)
    thresholds: FidelityThresholds = field(default_factory=FidelityThresholds)

    history_capacity: int = HISTORY_CAPACITY
    ledger_capacity: int = LEDGER_CAPACITY
    trend_window: int = TREND_WINDOW

    heartbeat_seconds: Optional[float] = 20.0
    """aiohttp WebSocket heartbeat; None disables it."""

    def validate(self) -> "MonitorConfig":
        """Validate all sections. Returns self for chaining."""
        if not self.url:
            raise InvalidConfigError("url", self.url, "monitoring endpoint is required")
        if not self.url.startswith(("ws://", "wss://", "http://", "https://")):
            raise InvalidConfigError("url", self.url, "must be a ws:// or wss:// URL")

        t = self.thresholds
        if not (0.0 <= t.amber <= t.green <= 1.0):
            raise InvalidConfigError("thresholds", f"{t.amber}/{t.green}", "need 0 <= amber <= green <= 1")

        if self.history_capacity < 1:
            raise InvalidConfigError("history_capacity", self.history_capacity, "must be >= 1")
        if self.ledger_capacity < 1:
            raise InvalidConfigError("ledger_capacity", self.ledger_capacity, "must be >= 1")
        if self.trend_window < 2:
            raise InvalidConfigError("trend_window", self.trend_window, "must be >= 2")

        self.reconnect.validate()
        self.refresh.validate()
        self.notifications.validate()
        return self

    @classmethod
    def from_env(cls, url: Optional[str] = None) -> "MonitorConfig":
        """
        Create config from environment variables (and a .env file).

        Args:
            url: Overrides FIDELITY_MONITOR_URL when given
        """
        load_dotenv()

        resolved_url = url or os.getenv("FIDELITY_MONITOR_URL")
        if not resolved_url:
            resolved_url = DEFAULT_MONITOR_URL
            logger.warning(f"FIDELITY_MONITOR_URL not set, using default: {resolved_url}")

        chat_ids = [
            c.strip()
            for c in os.getenv("TELEGRAM_CHAT_ID", "").split(",")
            if c.strip()
        ]

        config = cls(
            url=resolved_url,
            reconnect=ReconnectConfig(
                base_delay_seconds=_env_float("FIDELITY_RECONNECT_BASE_SECONDS", 1.0),
                max_delay_seconds=_env_float("FIDELITY_RECONNECT_MAX_SECONDS", 30.0),
                max_attempts=_env_int("FIDELITY_MAX_RECONNECT_ATTEMPTS", 5),
            ),
            refresh=RefreshConfig(
                auto_refresh=_env_bool("FIDELITY_AUTO_REFRESH", True),
                interval_seconds=_env_float("FIDELITY_REFRESH_INTERVAL", 30.0),
            ),
            notifications=NotificationConfig(
                telegram_bot_token=os.getenv("TELEGRAM_BOT_TOKEN", ""),
                telegram_chat_ids=chat_ids,
            ),
            api=ApiConfig(
                host=os.getenv("FIDELITY_API_HOST", "0.0.0.0"),
                port=_env_int("FIDELITY_API_PORT", 8080),
            ),
        )
        return config.validate()


# ============================================================
# ENV HELPERS
# ============================================================

def _env_float(key: str, default: float) -> float:
    raw = os.getenv(key)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise InvalidConfigError(key, raw, "expected a number")


def _env_int(key: str, default: int) -> int:
    raw = os.getenv(key)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise InvalidConfigError(key, raw, "expected an integer")


def _env_bool(key: str, default: bool) -> bool:
    raw = os.getenv(key)
    if raw is None or raw == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")
