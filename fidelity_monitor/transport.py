"""
Fidelity Monitor - Transport Channel.

============================================================
PURPOSE
============================================================
Owns ONE persistent WebSocket connection to the monitoring
endpoint.

FEATURES:
- Explicit lifecycle (connect / close), no module singleton
- Automatic reconnection with bounded exponential backoff
- Terminal "exhausted" status instead of retrying forever
- Inbound frames decoded into typed events
- Outbound commands dropped (not queued) while disconnected

============================================================
USAGE
============================================================
```python
channel = TransportChannel("ws://host/api/v1/ws/fidelity-monitor")
channel.on_event(router.dispatch)
channel.on_state_change(subscriptions.on_connection_status)
await channel.connect()
await channel.send(subscribe_command("wf-1"))
await channel.close()
```

============================================================
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

import aiohttp

from core.exceptions import MonitorException, TransportError, ReconnectExhausted

from .config import ReconnectConfig
from .events import InboundEvent, OutboundCommand
from .models import ConnectionState, ConnectionStatus


logger = logging.getLogger(__name__)


Connector = Callable[[str], Awaitable[Any]]
EventHandler = Callable[[InboundEvent], Awaitable[None]]
StateHandler = Callable[[ConnectionStatus], Awaitable[None]]
Sleep = Callable[[float], Awaitable[None]]


def backoff_delay(attempt: int, base_seconds: float, max_seconds: float) -> float:
    """Delay before reconnect attempt number `attempt` (0-based)."""
    return min(base_seconds * (2 ** attempt), max_seconds)


# ============================================================
# TRANSPORT CHANNEL
# ============================================================

class TransportChannel:
    """
    Persistent duplex connection with bounded reconnection.

    All transport faults are absorbed here and surfaced only
    as ConnectionStatus changes.
    """

    def __init__(
        self,
        url: str,
        reconnect: Optional[ReconnectConfig] = None,
        connector: Optional[Connector] = None,
        sleep: Optional[Sleep] = None,
        heartbeat_seconds: Optional[float] = 20.0,
    ):
        """
        Initialize transport channel.

        Args:
            url: WebSocket URL
            reconnect: Reconnection policy
            connector: Coroutine returning an open WebSocket (default: aiohttp)
            sleep: Backoff sleep (default: asyncio.sleep)
            heartbeat_seconds: aiohttp heartbeat for the default connector
        """
        self._url = url
        self._reconnect = reconnect or ReconnectConfig()
        self._connector = connector or self._aiohttp_connect
        self._sleep = sleep or asyncio.sleep
        self._heartbeat = heartbeat_seconds

        # Connection state
        self._state = ConnectionState.DISCONNECTED
        self._session: Optional[aiohttp.ClientSession] = None
        self._ws: Any = None
        self._closed = False

        # Reconnection
        self._reconnect_attempts = 0
        self._exhausted = False
        self._last_error: Optional[MonitorException] = None
        self._reconnect_task: Optional[asyncio.Task] = None

        # Message handling
        self._receive_task: Optional[asyncio.Task] = None

        # Callbacks
        self._event_handlers: List[EventHandler] = []
        self._state_handlers: List[StateHandler] = []

        # Counters
        self._connect_count = 0
        self._messages_received = 0
        self._messages_dropped = 0
        self._commands_sent = 0
        self._commands_dropped = 0

    # --------------------------------------------------------
    # PROPERTIES
    # --------------------------------------------------------

    @property
    def url(self) -> str:
        return self._url

    @property
    def state(self) -> ConnectionState:
        """Current connection state."""
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state == ConnectionState.CONNECTED and self._ws is not None

    @property
    def status(self) -> ConnectionStatus:
        """Snapshot of state, attempt counter and terminal flag."""
        return ConnectionStatus(
            state=self._state,
            reconnect_attempt=self._reconnect_attempts,
            max_reconnect_attempts=self._reconnect.max_attempts,
            exhausted=self._exhausted,
            last_error=self._last_error.message if self._last_error else None,
        )

    @property
    def reconnect_pending(self) -> bool:
        return self._reconnect_task is not None and not self._reconnect_task.done()

    def stats(self) -> Dict[str, Any]:
        return {
            "connect_count": self._connect_count,
            "messages_received": self._messages_received,
            "messages_dropped": self._messages_dropped,
            "commands_sent": self._commands_sent,
            "commands_dropped": self._commands_dropped,
        }

    def raise_for_status(self) -> None:
        """
        Raise if automatic reconnection has given up.

        Raises:
            ReconnectExhausted: If the attempt ceiling was reached
        """
        if self._exhausted:
            raise ReconnectExhausted(self._reconnect_attempts, url=self._url)

    # --------------------------------------------------------
    # CALLBACK REGISTRATION
    # --------------------------------------------------------

    def on_event(self, handler: EventHandler) -> None:
        """Register a handler for every decoded inbound event."""
        self._event_handlers.append(handler)

    def on_state_change(self, handler: StateHandler) -> None:
        """Register a handler for connection status changes."""
        self._state_handlers.append(handler)

    # --------------------------------------------------------
    # CONNECTION
    # --------------------------------------------------------

    async def connect(self) -> None:
        """
        Establish the connection.

        An explicit call always starts a fresh reconnect budget,
        including after the channel reported exhaustion. Failures
        are not raised; they show up in `status`.
        """
        if self._state in (ConnectionState.CONNECTED, ConnectionState.CONNECTING):
            return

        self._closed = False
        await self._cancel_task(self._reconnect_task)
        self._reconnect_task = None
        self._reconnect_attempts = 0
        self._exhausted = False

        await self._open()

    async def close(self) -> None:
        """
        Close the connection.

        Safe from any state. No reconnect or event callback fires
        after this returns.
        """
        self._closed = True

        await self._cancel_task(self._reconnect_task)
        self._reconnect_task = None

        await self._cancel_task(self._receive_task)
        self._receive_task = None

        ws, self._ws = self._ws, None
        if ws is not None:
            await self._close_socket(ws)

        if self._session is not None:
            await self._session.close()
            self._session = None

        self._reconnect_attempts = 0
        self._exhausted = False
        await self._set_state(ConnectionState.DISCONNECTED)
        logger.info(f"WebSocket closed: {self._url}")

    async def _open(self) -> None:
        """Single connection attempt."""
        await self._set_state(ConnectionState.CONNECTING)

        try:
            ws = await self._connector(self._url)
        except Exception as e:
            self._last_error = TransportError(f"Connection failed: {e}", url=self._url, cause=e)
            logger.error(f"WebSocket connection failed: {e}")
            await self._handle_connection_loss(ConnectionState.ERROR)
            return

        if self._closed:
            # close() ran while the connector was pending
            await self._close_socket(ws)
            return

        self._ws = ws
        self._reconnect_attempts = 0
        self._last_error = None
        self._connect_count += 1

        logger.info(f"WebSocket connected: {self._url}")

        self._receive_task = asyncio.create_task(self._receive_loop(ws))
        await self._set_state(ConnectionState.CONNECTED)

    async def _handle_connection_loss(self, state: ConnectionState) -> None:
        """Schedule the next attempt, or give up, then publish the status."""
        self._ws = None

        if self._closed:
            return

        if self._reconnect.enabled:
            if self._reconnect_attempts >= self._reconnect.max_attempts:
                self._exhausted = True
                self._last_error = ReconnectExhausted(self._reconnect_attempts, url=self._url)
                state = ConnectionState.ERROR
                logger.error(
                    f"Max reconnection attempts reached ({self._reconnect.max_attempts}), "
                    f"call connect() to retry"
                )
            else:
                delay = backoff_delay(
                    self._reconnect_attempts,
                    self._reconnect.base_delay_seconds,
                    self._reconnect.max_delay_seconds,
                )
                self._reconnect_attempts += 1
                logger.info(
                    f"Reconnecting in {delay:.2f}s "
                    f"(attempt {self._reconnect_attempts} of {self._reconnect.max_attempts})"
                )
                self._reconnect_task = asyncio.create_task(self._reconnect_after(delay))

        await self._set_state(state, force=True)

    async def _reconnect_after(self, delay: float) -> None:
        await self._sleep(delay)
        if self._closed:
            return
        await self._open()

    async def _aiohttp_connect(self, url: str) -> aiohttp.ClientWebSocketResponse:
        """Default connector."""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
        return await self._session.ws_connect(url, heartbeat=self._heartbeat)

    async def _close_socket(self, ws: Any) -> None:
        try:
            if not ws.closed:
                await ws.close()
        except Exception as e:
            logger.warning(f"Error closing WebSocket: {e}")

    async def _cancel_task(self, task: Optional[asyncio.Task]) -> None:
        if task is None or task.done() or task is asyncio.current_task():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _set_state(self, state: ConnectionState, force: bool = False) -> None:
        previous = self._state
        self._state = state

        if previous == state and not force:
            return
        if previous != state:
            logger.info(f"Connection state: {previous.value} -> {state.value}")

        status = self.status
        for handler in list(self._state_handlers):
            try:
                await handler(status)
            except Exception as e:
                logger.error(f"Connection state handler error: {e}")

    # --------------------------------------------------------
    # MESSAGE HANDLING
    # --------------------------------------------------------

    async def _receive_loop(self, ws: Any) -> None:
        """Main receive loop for one connection."""
        try:
            async for msg in ws:
                if msg.type in (aiohttp.WSMsgType.TEXT, aiohttp.WSMsgType.BINARY):
                    await self._handle_message(msg.data)

                elif msg.type == aiohttp.WSMsgType.ERROR:
                    logger.error(f"WebSocket error: {msg.data}")
                    break

                elif msg.type in (
                    aiohttp.WSMsgType.CLOSE,
                    aiohttp.WSMsgType.CLOSING,
                    aiohttp.WSMsgType.CLOSED,
                ):
                    logger.warning(f"WebSocket closed by peer: {msg.data}")
                    break

        except Exception as e:
            self._last_error = TransportError(f"Receive failed: {e}", url=self._url, cause=e)
            logger.error(f"Error in receive loop: {e}")

        if self._closed:
            return

        logger.warning(f"WebSocket connection lost: {self._url}")
        await self._close_socket(ws)
        await self._handle_connection_loss(ConnectionState.DISCONNECTED)

    async def _handle_message(self, data: Union[str, bytes]) -> None:
        """Decode one frame and hand it to every event handler."""
        self._messages_received += 1

        try:
            event = InboundEvent.from_message(data)
        except TransportError as e:
            self._messages_dropped += 1
            logger.warning(f"Dropping inbound frame: {e.message}")
            return

        for handler in list(self._event_handlers):
            try:
                await handler(event)
            except Exception as e:
                logger.error(f"Event handler error for {event.type}: {e}")

    # --------------------------------------------------------
    # SENDING
    # --------------------------------------------------------

    async def send(self, command: Union[OutboundCommand, Dict[str, Any]]) -> bool:
        """
        Send a command.

        Fire-and-forget. While not connected the command is dropped
        (not queued) and False is returned.
        """
        message = command.to_message() if isinstance(command, OutboundCommand) else dict(command)

        if not self.is_connected:
            self._commands_dropped += 1
            logger.debug(f"Dropping {message.get('type')} command: not connected")
            return False

        try:
            await self._ws.send_json(message)
        except Exception as e:
            self._commands_dropped += 1
            logger.error(f"Failed to send {message.get('type')} command: {e}")
            return False

        self._commands_sent += 1
        return True
