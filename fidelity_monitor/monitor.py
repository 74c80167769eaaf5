"""
Fidelity Monitor.

============================================================
PURPOSE
============================================================
Wires the transport channel, event router, state store,
ledger, subscription manager, refresh scheduler and the
notification pipeline into one object with an explicit
lifecycle.

============================================================
CONCURRENCY
============================================================
Single event loop. Inbound dispatch and refresh ticks are the
only state-touching entry points and both run under one
asyncio.Lock, so events are applied strictly in arrival order.
Everything else is a read accessor.

============================================================
USAGE
============================================================
```python
monitor = FidelityMonitor(MonitorConfig.from_env())
await monitor.start()
await monitor.subscribe("workflow-42")
print(monitor.current().level)
await monitor.stop()
```

============================================================
"""

import asyncio
import logging
from datetime import timedelta
from typing import Any, Awaitable, Callable, Dict, FrozenSet, List, Optional

from core.clock import ClockProtocol, ClockFactory

from .config import MonitorConfig
from .events import InboundEvent, snapshot_commands
from .fidelity_store import FidelityStateStore
from .ledger import AlertLedger
from .models import (
    ConnectionState,
    ConnectionStatus,
    EscalationNotice,
    FidelitySample,
    FidelitySnapshot,
    ViolationAlert,
)
from .notifications import NotificationDispatcher, TelegramNotifier
from .router import EventRouter
from .scheduler import RefreshScheduler
from .subscriptions import SubscriptionManager
from .transport import TransportChannel, Connector


logger = logging.getLogger(__name__)


Sleep = Callable[[float], Awaitable[None]]

OVERVIEW_AVERAGE_WINDOW = timedelta(minutes=5)
OVERVIEW_RECENT_ITEMS = 5


class FidelityMonitor:
    """
    Real-time constitutional fidelity monitor.

    Args:
        config: Validated monitor configuration
        connector: WebSocket connector override (tests)
        sleep: Backoff sleep override (tests)
        clock: Clock for arrival timestamps
        notifier: Notification dispatcher (default: built from config)
        refresh_sleep: Refresh timer override (default: same as sleep)
    """

    def __init__(
        self,
        config: MonitorConfig,
        connector: Optional[Connector] = None,
        sleep: Optional[Sleep] = None,
        clock: Optional[ClockProtocol] = None,
        notifier: Optional[NotificationDispatcher] = None,
        refresh_sleep: Optional[Sleep] = None,
    ):
        self._config = config.validate()
        self._clock = clock or ClockFactory.get_clock()

        self._lock = asyncio.Lock()
        self._started = False

        self._channel = TransportChannel(
            config.url,
            reconnect=config.reconnect,
            connector=connector,
            sleep=sleep,
            heartbeat_seconds=config.heartbeat_seconds,
        )

        self._store = FidelityStateStore(
            capacity=config.history_capacity,
            thresholds=config.thresholds,
            trend_window=config.trend_window,
            clock=self._clock,
        )
        self._ledger = AlertLedger(capacity=config.ledger_capacity)
        self._subscriptions = SubscriptionManager(self._channel)

        self._telegram: Optional[TelegramNotifier] = None
        if notifier is None:
            notifier = NotificationDispatcher(
                min_severity=config.notifications.min_severity,
                dedup_window_seconds=config.notifications.dedup_window_seconds,
                clock=self._clock,
            )
            if config.notifications.telegram_enabled:
                self._telegram = TelegramNotifier.from_config(config.notifications)
                notifier.add_notifier(self._telegram)
        self._notifier = notifier

        self._router = EventRouter(
            store=self._store,
            ledger=self._ledger,
            subscriptions=self._subscriptions,
            request_snapshot=self._send_snapshot,
            notifier=self._notifier,
            clock=self._clock,
        )
        self._scheduler = RefreshScheduler(
            self._channel,
            request_snapshot=self._refresh_tick,
            sleep=refresh_sleep or sleep,
        )

        self._channel.on_event(self._on_event)
        self._channel.on_state_change(self._subscriptions.on_connection_status)

    @property
    def config(self) -> MonitorConfig:
        return self._config

    @property
    def is_running(self) -> bool:
        return self._started

    # --------------------------------------------------------
    # LIFECYCLE
    # --------------------------------------------------------

    async def start(self) -> None:
        """Connect and, if configured, start the refresh scheduler."""
        if self._started:
            return

        self._started = True
        logger.info(f"Starting fidelity monitor: {self._config.url}")

        await self._channel.connect()

        if self._config.refresh.auto_refresh:
            await self._scheduler.start(self._config.refresh.interval_seconds)

    async def stop(self) -> None:
        """Stop the scheduler, close the connection and cancel pending notifications. Safe from any state."""
        await self._scheduler.stop()
        await self._channel.close()
        await self._router.cancel_notifications()

        if self._telegram is not None:
            await self._telegram.close()

        if self._started:
            logger.info("Fidelity monitor stopped")
        self._started = False

    async def reconnect(self) -> ConnectionStatus:
        """
        Manual reconnect.

        Starts a fresh reconnect budget, including after automatic
        reconnection gave up.
        """
        logger.info("Manual reconnect requested")
        await self._channel.connect()
        return self._channel.status

    # --------------------------------------------------------
    # COMMANDS
    # --------------------------------------------------------

    async def subscribe(self, workflow_id: str) -> bool:
        return await self._subscriptions.subscribe(workflow_id)

    async def unsubscribe(self, workflow_id: str) -> bool:
        return await self._subscriptions.unsubscribe(workflow_id)

    async def request_snapshot(self) -> bool:
        """Ask for metrics and status. Returns False if any command was dropped."""
        results = [await self._channel.send(command) for command in snapshot_commands()]
        return all(results)

    async def start_refresh(self, interval_seconds: Optional[float] = None) -> None:
        await self._scheduler.start(interval_seconds or self._config.refresh.interval_seconds)

    async def stop_refresh(self) -> None:
        await self._scheduler.stop()

    # --------------------------------------------------------
    # SERIALIZED ENTRY POINTS
    # --------------------------------------------------------

    async def _on_event(self, event: InboundEvent) -> None:
        async with self._lock:
            await self._router.dispatch(event)

    async def _refresh_tick(self) -> None:
        async with self._lock:
            await self._send_snapshot()

    async def _send_snapshot(self) -> None:
        await self.request_snapshot()

    # --------------------------------------------------------
    # READ ACCESSORS
    # --------------------------------------------------------

    def current(self) -> FidelitySnapshot:
        return self._store.current()

    def history(self) -> List[FidelitySample]:
        return self._store.history()

    def average(self, window: timedelta) -> Optional[float]:
        return self._store.average(window)

    def recent_alerts(self, n: int = 20) -> List[ViolationAlert]:
        return self._ledger.recent_alerts(n)

    def recent_escalations(self, n: int = 20) -> List[EscalationNotice]:
        return self._ledger.recent_escalations(n)

    def violation_count(self) -> int:
        return self._ledger.violation_count()

    def reported_violation_count(self) -> Optional[int]:
        return self._ledger.reported_violation_count()

    def confirmed_set(self) -> FrozenSet[str]:
        return self._subscriptions.confirmed_set()

    def subscriptions(self) -> Dict[str, Any]:
        return self._subscriptions.to_dict()

    def connection_state(self) -> ConnectionState:
        return self._channel.state

    def connection_status(self) -> ConnectionStatus:
        return self._channel.status

    def overview(self) -> Dict[str, Any]:
        """Everything a dashboard needs, as a plain dict."""
        return {
            "fidelity": self._store.current().to_dict(),
            "average_5m": self._store.average(OVERVIEW_AVERAGE_WINDOW),
            "violation_count": self._ledger.violation_count(),
            "reported_violation_count": self._ledger.reported_violation_count(),
            "recent_alerts": [a.to_dict() for a in self._ledger.recent_alerts(OVERVIEW_RECENT_ITEMS)],
            "recent_escalations": [
                e.to_dict() for e in self._ledger.recent_escalations(OVERVIEW_RECENT_ITEMS)
            ],
            "workflow_scores": {
                wf: {
                    "score": ws.score,
                    "compliance_level": ws.compliance_level,
                    "timestamp": ws.timestamp.isoformat(),
                    "details": ws.details,
                }
                for wf, ws in self._store.workflow_scores().items()
            },
            "metrics": self._store.latest_metrics(),
            "subscriptions": self._subscriptions.to_dict(),
            "connection": self._channel.status.to_dict(),
            "refresh": self._scheduler.stats(),
        }

    def stats(self) -> Dict[str, Any]:
        return {
            "transport": self._channel.stats(),
            "router": self._router.stats(),
            "ledger": self._ledger.stats(),
            "notifications": self._notifier.stats(),
            "refresh": self._scheduler.stats(),
            "telegram": self._telegram.stats() if self._telegram is not None else None,
        }
