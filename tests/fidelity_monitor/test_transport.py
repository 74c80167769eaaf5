"""
Tests for the Transport Channel.

============================================================
TEST PRINCIPLES:
- Backoff schedule is exact and bounded
- Exhaustion is a terminal status, cleared only by connect()
- Nothing is queued while disconnected
- close() leaves no timers or callbacks behind
============================================================
"""

import asyncio

import pytest

from core.exceptions import ReconnectExhausted
from fidelity_monitor.config import ReconnectConfig
from fidelity_monitor.events import subscribe_command
from fidelity_monitor.models import ConnectionState
from fidelity_monitor.transport import TransportChannel, backoff_delay


URL = "ws://monitor.test/api/v1/ws/fidelity-monitor"


def make_channel(connector, sleep, **kwargs) -> TransportChannel:
    return TransportChannel(URL, connector=connector, sleep=sleep, **kwargs)


def record_states(channel: TransportChannel) -> list:
    states = []

    async def on_state(status):
        states.append(status.state)

    channel.on_state_change(on_state)
    return states


# ============================================================
# BACKOFF FUNCTION
# ============================================================

class TestBackoffDelay:
    """Tests for backoff_delay()."""

    def test_doubles_from_base(self):
        assert [backoff_delay(n, 1.0, 30.0) for n in range(5)] == [1, 2, 4, 8, 16]

    def test_capped_at_max(self):
        assert backoff_delay(5, 1.0, 30.0) == 30.0
        assert backoff_delay(10, 1.0, 30.0) == 30.0

    def test_custom_base(self):
        assert backoff_delay(2, 0.5, 30.0) == 2.0


# ============================================================
# CONNECT / CLOSE
# ============================================================

class TestLifecycle:
    """Tests for connect() and close()."""

    @pytest.mark.asyncio
    async def test_connect_success(self, fake_connector, recording_sleep):
        channel = make_channel(fake_connector, recording_sleep)
        states = record_states(channel)

        await channel.connect()

        assert channel.state == ConnectionState.CONNECTED
        assert channel.is_connected
        assert states == [ConnectionState.CONNECTING, ConnectionState.CONNECTED]
        assert fake_connector.urls == [URL]

        await channel.close()

        assert channel.state == ConnectionState.DISCONNECTED
        assert states[-1] == ConnectionState.DISCONNECTED
        assert fake_connector.latest.closed

    @pytest.mark.asyncio
    async def test_connect_twice_is_noop(self, fake_connector, recording_sleep):
        channel = make_channel(fake_connector, recording_sleep)

        await channel.connect()
        await channel.connect()

        assert fake_connector.calls == 1
        await channel.close()

    @pytest.mark.asyncio
    async def test_close_when_never_connected(self, fake_connector, recording_sleep):
        channel = make_channel(fake_connector, recording_sleep)

        await channel.close()

        assert channel.state == ConnectionState.DISCONNECTED
        assert fake_connector.calls == 0

    @pytest.mark.asyncio
    async def test_close_mid_connect(self, fake_connector, recording_sleep, settle_loop):
        gate = asyncio.Event()

        async def slow_connector(url):
            await gate.wait()
            return await fake_connector(url)

        channel = make_channel(slow_connector, recording_sleep)
        connecting = asyncio.create_task(channel.connect())
        await settle_loop()
        assert channel.state == ConnectionState.CONNECTING

        await channel.close()
        gate.set()
        await connecting

        assert channel.state == ConnectionState.DISCONNECTED
        assert fake_connector.latest.closed
        assert not channel.reconnect_pending


# ============================================================
# RECONNECTION
# ============================================================

class TestReconnect:
    """Tests for bounded exponential backoff."""

    @pytest.mark.asyncio
    async def test_exhausts_after_max_attempts(self, failing_connector, recording_sleep, drain):
        channel = make_channel(failing_connector, recording_sleep)

        await channel.connect()
        await drain(channel)

        assert recording_sleep.delays == [1, 2, 4, 8, 16]
        assert failing_connector.calls == 6

        status = channel.status
        assert status.exhausted is True
        assert status.state == ConnectionState.ERROR
        assert "gave up" in status.describe()
        assert "Reconnection abandoned" in status.last_error
        assert not channel.reconnect_pending

        with pytest.raises(ReconnectExhausted) as exc_info:
            channel.raise_for_status()
        assert exc_info.value.attempts == 5

    @pytest.mark.asyncio
    async def test_delay_capped(self, failing_connector, recording_sleep, drain):
        channel = make_channel(
            failing_connector,
            recording_sleep,
            reconnect=ReconnectConfig(base_delay_seconds=1.0, max_delay_seconds=5.0, max_attempts=5),
        )

        await channel.connect()
        await drain(channel)

        assert recording_sleep.delays == [1, 2, 4, 5, 5]

    @pytest.mark.asyncio
    async def test_explicit_connect_resets_budget(self, failing_connector, recording_sleep, drain):
        channel = make_channel(failing_connector, recording_sleep)

        await channel.connect()
        await drain(channel)
        assert channel.status.exhausted

        await channel.connect()
        await drain(channel)

        assert failing_connector.calls == 12
        assert recording_sleep.delays == [1, 2, 4, 8, 16] * 2

    @pytest.mark.asyncio
    async def test_connect_after_exhaustion_recovers(self, failing_connector, recording_sleep, drain):
        channel = make_channel(failing_connector, recording_sleep)

        await channel.connect()
        await drain(channel)

        failing_connector.failures = 0
        await channel.connect()

        status = channel.status
        assert status.state == ConnectionState.CONNECTED
        assert status.exhausted is False
        assert status.reconnect_attempt == 0
        channel.raise_for_status()

        await channel.close()

    @pytest.mark.asyncio
    async def test_success_resets_attempt_counter(self, connector_factory, recording_sleep, drain):
        connector = connector_factory(failures=2)
        channel = make_channel(connector, recording_sleep)

        await channel.connect()
        await drain(channel)

        assert recording_sleep.delays == [1, 2]
        assert connector.calls == 3
        assert channel.state == ConnectionState.CONNECTED
        assert channel.status.reconnect_attempt == 0

        await channel.close()

    @pytest.mark.asyncio
    async def test_remote_drop_reconnects(self, fake_connector, recording_sleep, settle_loop, drain):
        channel = make_channel(fake_connector, recording_sleep)
        states = record_states(channel)

        await channel.connect()
        fake_connector.latest.drop()
        await settle_loop()
        await drain(channel)

        assert ConnectionState.DISCONNECTED in states
        assert fake_connector.calls == 2
        assert recording_sleep.delays == [1]
        assert channel.state == ConnectionState.CONNECTED

        await channel.close()

    @pytest.mark.asyncio
    async def test_close_frame_reconnects(self, fake_connector, recording_sleep, settle_loop, drain):
        channel = make_channel(fake_connector, recording_sleep)

        await channel.connect()
        fake_connector.latest.push_close()
        await settle_loop()
        await drain(channel)

        assert fake_connector.calls == 2
        assert channel.state == ConnectionState.CONNECTED

        await channel.close()

    @pytest.mark.asyncio
    async def test_status_during_backoff(self, failing_connector, ticker, settle_loop):
        channel = make_channel(failing_connector, ticker)

        await channel.connect()
        await settle_loop()

        status = channel.status
        assert status.state == ConnectionState.ERROR
        assert status.reconnect_attempt == 1
        assert status.describe() == "error (attempt 1 of 5)"
        assert channel.reconnect_pending

        await channel.close()

    @pytest.mark.asyncio
    async def test_close_mid_backoff(self, failing_connector, ticker, settle_loop):
        channel = make_channel(failing_connector, ticker)
        states = record_states(channel)

        await channel.connect()
        await settle_loop()
        assert ticker.waiting == 1

        await channel.close()
        after_close = len(states)

        await ticker.advance()

        assert failing_connector.calls == 1
        assert not channel.reconnect_pending
        assert channel.state == ConnectionState.DISCONNECTED
        assert len(states) == after_close

    @pytest.mark.asyncio
    async def test_reconnect_disabled(self, failing_connector, recording_sleep):
        channel = make_channel(
            failing_connector,
            recording_sleep,
            reconnect=ReconnectConfig(enabled=False),
        )

        await channel.connect()

        assert channel.state == ConnectionState.ERROR
        assert not channel.reconnect_pending
        assert failing_connector.calls == 1
        assert recording_sleep.delays == []


# ============================================================
# MESSAGES
# ============================================================

class TestMessages:
    """Tests for inbound decoding and outbound sends."""

    @pytest.mark.asyncio
    async def test_inbound_events_decoded(self, fake_connector, recording_sleep, settle_loop):
        channel = make_channel(fake_connector, recording_sleep)
        events = []

        async def on_event(event):
            events.append(event)

        channel.on_event(on_event)
        await channel.connect()

        ws = fake_connector.latest
        ws.push({"type": "fidelity_update", "fidelity_score": {"overall_score": 0.9}})
        ws.push("not json")
        ws.push([1, 2, 3])
        ws.push({"no_type": True})
        await settle_loop()

        assert [e.type for e in events] == ["fidelity_update"]
        assert events[0].get("fidelity_score") == {"overall_score": 0.9}
        assert channel.stats()["messages_dropped"] == 3
        assert channel.is_connected

        await channel.close()

    @pytest.mark.asyncio
    async def test_failing_handler_is_isolated(self, fake_connector, recording_sleep, settle_loop):
        channel = make_channel(fake_connector, recording_sleep)
        received = []

        async def broken(event):
            raise RuntimeError("boom")

        async def healthy(event):
            received.append(event.type)

        channel.on_event(broken)
        channel.on_event(healthy)
        await channel.connect()

        fake_connector.latest.push({"type": "error", "message": "a"})
        fake_connector.latest.push({"type": "error", "message": "b"})
        await settle_loop()

        assert received == ["error", "error"]
        await channel.close()

    @pytest.mark.asyncio
    async def test_failing_state_listener_is_isolated(self, fake_connector, recording_sleep):
        channel = make_channel(fake_connector, recording_sleep)

        async def broken(status):
            raise RuntimeError("boom")

        channel.on_state_change(broken)
        await channel.connect()

        assert channel.state == ConnectionState.CONNECTED
        await channel.close()

    @pytest.mark.asyncio
    async def test_send_dropped_while_disconnected(self, fake_connector, recording_sleep):
        channel = make_channel(fake_connector, recording_sleep)

        assert await channel.send(subscribe_command("wf-1")) is False

        await channel.connect()
        ws = fake_connector.latest
        assert ws.sent == []

        assert await channel.send(subscribe_command("wf-1")) is True
        assert ws.sent == [{"type": "subscribe_workflow", "workflow_id": "wf-1"}]

        stats = channel.stats()
        assert stats["commands_dropped"] == 1
        assert stats["commands_sent"] == 1

        await channel.close()

    @pytest.mark.asyncio
    async def test_send_after_close_dropped(self, fake_connector, recording_sleep):
        channel = make_channel(fake_connector, recording_sleep)
        await channel.connect()
        await channel.close()

        assert await channel.send({"type": "get_fidelity_status"}) is False
