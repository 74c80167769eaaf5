"""
Fidelity Monitor - Event Router.

============================================================
PURPOSE
============================================================
Classifies each inbound event by type and applies it to the
component that owns the affected state.

    connection_established   -> snapshot request
    fidelity_update          -> store (+ per-workflow score)
    fidelity_status          -> store (+ reported violation count)
    performance_metrics      -> store (+ latest metrics)
    alert / violation_alert  -> ledger, level escalation, notify
    escalation_notification  -> ledger, level escalation, notify
    *subscription_confirmed  -> subscription manager
    error                    -> log
    anything else            -> log and ignore

A ProtocolError drops only the offending event.

Notifications run as tracked background tasks. dispatch() never
waits on a notification handler.

============================================================
"""

import asyncio
import logging
from datetime import datetime
from typing import Any, Awaitable, Callable, Coroutine, Dict, Optional, Set

from core.clock import ClockProtocol, ClockFactory, ensure_utc, from_iso8601
from core.exceptions import ProtocolError, UnknownEventError, MalformedEventError

from .events import (
    EventType,
    InboundEvent,
    ViolationAlertSchema,
    EscalationSchema,
    parse_payload,
)
from .fidelity_store import FidelityStateStore
from .ledger import AlertLedger
from .models import AlertLevel, ViolationSeverity
from .notifications import NotificationDispatcher
from .subscriptions import SubscriptionManager


logger = logging.getLogger(__name__)


# Level an alert of a given severity raises the monitor to
SEVERITY_ESCALATION = {
    ViolationSeverity.CRITICAL: AlertLevel.RED,
    ViolationSeverity.HIGH: AlertLevel.AMBER,
}


class EventRouter:
    """
    Single entry point for inbound events.

    Not re-entrant: the monitor serializes calls to dispatch().
    """

    def __init__(
        self,
        store: FidelityStateStore,
        ledger: AlertLedger,
        subscriptions: SubscriptionManager,
        request_snapshot: Callable[[], Awaitable[None]],
        notifier: Optional[NotificationDispatcher] = None,
        clock: Optional[ClockProtocol] = None,
    ):
        self._store = store
        self._ledger = ledger
        self._subscriptions = subscriptions
        self._request_snapshot = request_snapshot
        self._notifier = notifier
        self._clock = clock or ClockFactory.get_clock()

        self._handlers: Dict[str, Callable[[InboundEvent], Awaitable[None]]] = {
            EventType.CONNECTION_ESTABLISHED.value: self._on_connection_established,
            EventType.FIDELITY_UPDATE.value: self._on_fidelity_update,
            EventType.FIDELITY_STATUS.value: self._on_fidelity_status,
            EventType.PERFORMANCE_METRICS.value: self._on_performance_metrics,
            EventType.ALERT.value: self._on_violation_alert,
            EventType.VIOLATION_ALERT.value: self._on_violation_alert,
            EventType.ESCALATION_NOTIFICATION.value: self._on_escalation,
            EventType.SUBSCRIPTION_CONFIRMED.value: self._on_subscription_confirmed,
            EventType.UNSUBSCRIPTION_CONFIRMED.value: self._on_unsubscription_confirmed,
            EventType.ERROR.value: self._on_error,
        }

        self._processed: Dict[str, int] = {}
        self._dropped = 0
        self._ignored = 0

        self._notification_tasks: Set["asyncio.Task[Any]"] = set()

    # --------------------------------------------------------
    # DISPATCH
    # --------------------------------------------------------

    async def dispatch(self, event: InboundEvent) -> None:
        """Apply one event. Never raises for protocol faults."""
        try:
            handler = self._handlers.get(event.type)
            if handler is None:
                raise UnknownEventError(event.type)
            await handler(event)

        except UnknownEventError as e:
            self._ignored += 1
            logger.warning(f"Ignoring event: {e.message}")
            return

        except ProtocolError as e:
            self._dropped += 1
            logger.warning(f"Dropped {event.type} event: {e.to_log_format()}")
            return

        self._processed[event.type] = self._processed.get(event.type, 0) + 1

    def stats(self) -> Dict[str, Any]:
        return {
            "processed": dict(self._processed),
            "dropped": self._dropped,
            "ignored": self._ignored,
            "pending_notifications": len(self._notification_tasks),
        }

    # --------------------------------------------------------
    # NOTIFICATIONS
    # --------------------------------------------------------

    def _notify(self, coro: Coroutine[Any, Any, Any]) -> None:
        task = asyncio.create_task(coro)
        self._notification_tasks.add(task)
        task.add_done_callback(self._on_notification_done)

    def _on_notification_done(self, task: "asyncio.Task[Any]") -> None:
        self._notification_tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(f"Notification failed: {error}")

    async def flush_notifications(self) -> None:
        """Wait for every in-flight notification to finish."""
        if self._notification_tasks:
            await asyncio.gather(*list(self._notification_tasks), return_exceptions=True)

    async def cancel_notifications(self) -> None:
        """Cancel in-flight notifications and wait for them to unwind."""
        tasks = list(self._notification_tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.info(f"Cancelled {len(tasks)} pending notification(s)")

    # --------------------------------------------------------
    # HANDLERS
    # --------------------------------------------------------

    async def _on_connection_established(self, event: InboundEvent) -> None:
        logger.info(f"Fidelity monitor connection established: {event.get('session_id')}")
        await self._request_snapshot()

    async def _on_fidelity_update(self, event: InboundEvent) -> None:
        fidelity = event.get("fidelity_score")
        if not isinstance(fidelity, dict):
            raise MalformedEventError(
                "fidelity_score must be an object",
                event_type=event.type,
            )

        timestamp = self._event_time(event)

        score = fidelity.get("overall_score")
        if score is None:
            logger.debug("fidelity_update without overall_score")
        else:
            score = self._store.record(score, timestamp).score

        workflow_id = event.get("workflow_id")
        if workflow_id:
            self._store.record_workflow_score(
                str(workflow_id),
                score,
                timestamp,
                compliance_level=fidelity.get("compliance_level"),
                details=fidelity,
            )

    async def _on_fidelity_status(self, event: InboundEvent) -> None:
        reported = event.get("violation_count")
        if reported is not None:
            try:
                reported = int(reported)
            except (TypeError, ValueError):
                raise MalformedEventError(
                    f"violation_count is not an integer: {reported!r}",
                    event_type=event.type,
                )

        score = event.get("current_fidelity_score")
        if score is not None:
            self._store.record(score, self._clock.now())

        if reported is not None:
            self._ledger.record_reported_violations(reported)

    async def _on_performance_metrics(self, event: InboundEvent) -> None:
        metrics = event.get("metrics")
        if not isinstance(metrics, dict):
            raise MalformedEventError("metrics must be an object", event_type=event.type)

        now = self._clock.now()

        overall = metrics.get("overall")
        rate = overall.get("overall_success_rate") if isinstance(overall, dict) else None
        if rate is not None:
            self._store.record(rate, now)

        self._store.record_metrics(metrics, now)

    async def _on_violation_alert(self, event: InboundEvent) -> None:
        schema = parse_payload(ViolationAlertSchema, event.get("alert"), event.type)
        alert = schema.to_domain(self._clock.now())

        self._ledger.record_alert(alert)

        level = SEVERITY_ESCALATION.get(alert.severity)
        if level is not None:
            self._store.escalate(level)

        if self._notifier is not None:
            self._notify(self._notifier.notify_alert(alert))

    async def _on_escalation(self, event: InboundEvent) -> None:
        schema = parse_payload(EscalationSchema, event.get("escalation"), event.type)
        notice = schema.to_domain(self._clock.now())

        self._ledger.record_escalation(notice)

        if notice.is_emergency:
            self._store.escalate(AlertLevel.RED)

        if self._notifier is not None:
            self._notify(self._notifier.notify_escalation(notice))

    async def _on_subscription_confirmed(self, event: InboundEvent) -> None:
        self._subscriptions.handle_confirmed(self._workflow_id(event))

    async def _on_unsubscription_confirmed(self, event: InboundEvent) -> None:
        self._subscriptions.handle_unsubscribed(self._workflow_id(event))

    async def _on_error(self, event: InboundEvent) -> None:
        logger.error(f"Backend error: {event.get('message', '<no message>')}")

    # --------------------------------------------------------
    # HELPERS
    # --------------------------------------------------------

    def _event_time(self, event: InboundEvent) -> datetime:
        """Event's own timestamp, falling back to arrival time."""
        raw = event.get("timestamp")
        if raw is None:
            return self._clock.now()
        if isinstance(raw, datetime):
            return ensure_utc(raw)
        if isinstance(raw, str):
            try:
                return from_iso8601(raw)
            except ValueError:
                pass
        raise MalformedEventError(f"Unparseable timestamp: {raw!r}", event_type=event.type)

    @staticmethod
    def _workflow_id(event: InboundEvent) -> str:
        workflow_id = event.get("workflow_id")
        if workflow_id is None or workflow_id == "":
            raise MalformedEventError("workflow_id is required", event_type=event.type)
        return str(workflow_id)
