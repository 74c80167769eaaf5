"""
Notifications Package.

Notification handlers for violation alerts and escalations.
"""

from .dispatcher import (
    NotificationDispatcher,
    SEVERITY_ORDER,
    DEFAULT_DEDUP_WINDOW_SECONDS,
)
from .telegram import (
    TelegramFormatter,
    TelegramRateLimiter,
    TelegramNotifier,
)


__all__ = [
    "NotificationDispatcher",
    "SEVERITY_ORDER",
    "DEFAULT_DEDUP_WINDOW_SECONDS",
    "TelegramFormatter",
    "TelegramRateLimiter",
    "TelegramNotifier",
]
