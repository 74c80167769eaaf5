"""
Refresh Scheduler.

Periodic snapshot requests alongside push updates. A tick
while the transport is not connected is skipped, not queued.
Exactly one timer is active at a time.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional

from core.exceptions import InvalidConfigError

from .transport import TransportChannel


logger = logging.getLogger(__name__)


class RefreshScheduler:
    """
    Runs as a background task.

    Args:
        channel: Transport used to check connectivity
        request_snapshot: Coroutine that sends the snapshot commands
        sleep: Timer primitive (default: asyncio.sleep)
    """

    def __init__(
        self,
        channel: TransportChannel,
        request_snapshot: Callable[[], Awaitable[None]],
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ):
        self._channel = channel
        self._request_snapshot = request_snapshot
        self._sleep = sleep or asyncio.sleep

        self._interval: Optional[float] = None
        self._task: Optional[asyncio.Task] = None

        self._ticks = 0
        self._skipped = 0

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def interval(self) -> Optional[float]:
        return self._interval

    async def start(self, interval_seconds: float) -> None:
        """Start (or restart) the timer. Any previous timer is cancelled first."""
        if interval_seconds <= 0:
            raise InvalidConfigError("refresh.interval_seconds", interval_seconds, "must be positive")

        await self._cancel()

        self._interval = interval_seconds
        self._task = asyncio.create_task(self._run(interval_seconds))
        logger.info(f"Refresh scheduler started (every {interval_seconds:.1f}s)")

    async def stop(self) -> None:
        """Stop the timer. Safe when not running."""
        was_running = self.is_running
        await self._cancel()
        if was_running:
            logger.info("Refresh scheduler stopped")

    async def _cancel(self) -> None:
        if self._task is None:
            return
        task, self._task = self._task, None
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _run(self, interval: float) -> None:
        """Main run loop."""
        while True:
            await self._sleep(interval)
            await self._tick()

    async def _tick(self) -> None:
        if not self._channel.is_connected:
            self._skipped += 1
            logger.debug("Refresh tick skipped: transport not connected")
            return

        try:
            await self._request_snapshot()
            self._ticks += 1
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Refresh request error: {e}")

    def stats(self) -> dict:
        return {
            "running": self.is_running,
            "interval_seconds": self._interval,
            "ticks": self._ticks,
            "skipped": self._skipped,
        }
