"""
Notification Dispatcher.

============================================================
PURPOSE
============================================================
Escalates recorded violations and escalation notices to the
registered notification handlers.

PRINCIPLES:
- Notification-only, never feeds back into monitor state
- Severity floor for violation alerts
- Duplicate suppression inside a fixed window
- A failing handler never blocks the others

============================================================
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from core.clock import ClockProtocol, ClockFactory

from ..models import ViolationAlert, ViolationSeverity, EscalationNotice


logger = logging.getLogger(__name__)


AlertHandler = Callable[[ViolationAlert], Awaitable[Any]]
EscalationHandler = Callable[[EscalationNotice], Awaitable[Any]]


SEVERITY_ORDER = {
    ViolationSeverity.LOW: 0,
    ViolationSeverity.MEDIUM: 1,
    ViolationSeverity.HIGH: 2,
    ViolationSeverity.CRITICAL: 3,
}

DEFAULT_DEDUP_WINDOW_SECONDS = 300.0


class NotificationDispatcher:
    """
    Fans alerts and escalations out to async handlers.

    Usage:
        dispatcher = NotificationDispatcher(min_severity=ViolationSeverity.HIGH)
        dispatcher.add_notifier(TelegramNotifier.from_config(config.notifications))
        await dispatcher.notify_alert(alert)
    """

    def __init__(
        self,
        min_severity: ViolationSeverity = ViolationSeverity.LOW,
        dedup_window_seconds: float = DEFAULT_DEDUP_WINDOW_SECONDS,
        alert_handlers: Optional[List[AlertHandler]] = None,
        escalation_handlers: Optional[List[EscalationHandler]] = None,
        clock: Optional[ClockProtocol] = None,
    ):
        self._min_severity = min_severity
        self._dedup_window = timedelta(seconds=dedup_window_seconds)
        self._alert_handlers: List[AlertHandler] = list(alert_handlers or [])
        self._escalation_handlers: List[EscalationHandler] = list(escalation_handlers or [])
        self._clock = clock or ClockFactory.get_clock()

        self._last_sent: Dict[Tuple[str, ...], datetime] = {}

        self._dispatched = 0
        self._suppressed = 0
        self._filtered = 0
        self._handler_errors = 0

    # --------------------------------------------------------
    # REGISTRATION
    # --------------------------------------------------------

    def add_alert_handler(self, handler: AlertHandler) -> None:
        self._alert_handlers.append(handler)

    def add_escalation_handler(self, handler: EscalationHandler) -> None:
        self._escalation_handlers.append(handler)

    def add_notifier(self, notifier: Any) -> None:
        """Register an object exposing send_alert() and send_escalation()."""
        self._alert_handlers.append(notifier.send_alert)
        self._escalation_handlers.append(notifier.send_escalation)

    @property
    def handler_count(self) -> int:
        return len(self._alert_handlers) + len(self._escalation_handlers)

    # --------------------------------------------------------
    # DISPATCH
    # --------------------------------------------------------

    async def notify_alert(self, alert: ViolationAlert) -> bool:
        """
        Dispatch a violation alert.

        Returns False when filtered by severity or suppressed as a
        duplicate.
        """
        if SEVERITY_ORDER[alert.severity] < SEVERITY_ORDER[self._min_severity]:
            self._filtered += 1
            logger.debug(f"Alert {alert.id} below notification severity floor")
            return False

        key = ("alert", alert.violation_type, alert.severity.value)
        if self._is_duplicate(key):
            self._suppressed += 1
            logger.debug(f"Suppressed duplicate alert notification: {alert.violation_type}")
            return False

        await self._dispatch(self._alert_handlers, alert)
        return True

    async def notify_escalation(self, notice: EscalationNotice) -> bool:
        """Dispatch an escalation notice. Returns False when suppressed."""
        key = ("escalation", notice.escalation_level.value, notice.violation_id)
        if self._is_duplicate(key):
            self._suppressed += 1
            logger.debug(f"Suppressed duplicate escalation notification: {notice.id}")
            return False

        await self._dispatch(self._escalation_handlers, notice)
        return True

    def _is_duplicate(self, key: Tuple[str, ...]) -> bool:
        """Check and record the key. Prunes stale keys as it goes."""
        now = self._clock.now()
        cutoff = now - self._dedup_window

        self._last_sent = {k: t for k, t in self._last_sent.items() if t > cutoff}

        if key in self._last_sent:
            return True

        self._last_sent[key] = now
        return False

    async def _dispatch(self, handlers: List[Callable[[Any], Awaitable[Any]]], item: Any) -> None:
        """Dispatch to notification handlers."""
        self._dispatched += 1
        for handler in handlers:
            try:
                await handler(item)
            except Exception as e:
                self._handler_errors += 1
                logger.error(f"Notification handler error: {e}")

    def stats(self) -> Dict[str, Any]:
        return {
            "handlers": self.handler_count,
            "min_severity": self._min_severity.value,
            "dispatched": self._dispatched,
            "suppressed": self._suppressed,
            "filtered": self._filtered,
            "handler_errors": self._handler_errors,
        }
