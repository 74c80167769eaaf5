"""
Shared fixtures for the fidelity monitor tests.

In-memory WebSocket, connector and timers so reconnect backoff
and refresh ticks are deterministic.
"""

import asyncio
import json
from datetime import datetime, timezone
from types import SimpleNamespace
from typing import Any, List

import aiohttp
import pytest

from core.clock import MockClock


_END = object()


# ============================================================
# FAKE TRANSPORT
# ============================================================

class FakeWebSocket:
    """Duck-typed stand-in for aiohttp.ClientWebSocketResponse."""

    def __init__(self):
        self.sent: List[dict] = []
        self.closed = False
        self._queue: asyncio.Queue = asyncio.Queue()

    def push(self, message: Any) -> None:
        """Queue an inbound text frame (dicts are JSON-encoded)."""
        data = message if isinstance(message, str) else json.dumps(message)
        self._queue.put_nowait(SimpleNamespace(type=aiohttp.WSMsgType.TEXT, data=data))

    def push_close(self, code: int = 1006) -> None:
        self._queue.put_nowait(SimpleNamespace(type=aiohttp.WSMsgType.CLOSE, data=code))

    def drop(self) -> None:
        """End the stream as if the peer vanished."""
        self._queue.put_nowait(_END)

    def __aiter__(self):
        return self

    async def __anext__(self):
        item = await self._queue.get()
        if item is _END:
            raise StopAsyncIteration
        return item

    async def send_json(self, data: dict) -> None:
        if self.closed:
            raise ConnectionResetError("socket closed")
        self.sent.append(data)

    async def close(self) -> None:
        self.closed = True
        self._queue.put_nowait(_END)

    def sent_types(self) -> List[str]:
        return [m["type"] for m in self.sent]


class FakeConnector:
    """Connector that fails a configurable number of times (-1: forever)."""

    def __init__(self, failures: int = 0):
        self.failures = failures
        self.calls = 0
        self.urls: List[str] = []
        self.sockets: List[FakeWebSocket] = []

    async def __call__(self, url: str) -> FakeWebSocket:
        self.calls += 1
        self.urls.append(url)
        if self.failures < 0 or self.failures > 0:
            if self.failures > 0:
                self.failures -= 1
            raise ConnectionRefusedError("connection refused")
        ws = FakeWebSocket()
        self.sockets.append(ws)
        return ws

    @property
    def latest(self) -> FakeWebSocket:
        return self.sockets[-1]


class RecordingSleep:
    """Backoff sleep that records delays and returns at once."""

    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        await asyncio.sleep(0)


class ManualTicker:
    """Sleep replacement that only returns when advance() is called."""

    def __init__(self):
        self.requested: List[float] = []
        self._waiters: List[asyncio.Event] = []

    async def __call__(self, delay: float) -> None:
        self.requested.append(delay)
        event = asyncio.Event()
        self._waiters.append(event)
        await event.wait()

    @property
    def waiting(self) -> int:
        return len(self._waiters)

    async def advance(self) -> None:
        """Release every pending sleep, then let woken tasks run."""
        await settle()
        waiters, self._waiters = self._waiters, []
        for event in waiters:
            event.set()
        await settle()


async def settle(rounds: int = 20) -> None:
    """Yield to the loop so queued callbacks and frames are processed."""
    for _ in range(rounds):
        await asyncio.sleep(0)


async def drain_reconnects(channel) -> None:
    """Await pending reconnect attempts until none is scheduled."""
    while channel._reconnect_task is not None and not channel._reconnect_task.done():
        await channel._reconnect_task
    await settle()


# ============================================================
# FIXTURES
# ============================================================

@pytest.fixture
def fake_connector():
    return FakeConnector()


@pytest.fixture
def failing_connector():
    return FakeConnector(failures=-1)


@pytest.fixture
def connector_factory():
    return FakeConnector


@pytest.fixture
def recording_sleep():
    return RecordingSleep()


@pytest.fixture
def ticker():
    return ManualTicker()


@pytest.fixture
def mock_clock():
    return MockClock(datetime(2025, 1, 15, 12, 0, 0, tzinfo=timezone.utc))


@pytest.fixture
def settle_loop():
    return settle


@pytest.fixture
def drain():
    return drain_reconnects
