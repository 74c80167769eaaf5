"""
Tests for the monitor clock.
"""

from datetime import datetime, timedelta, timezone

import pytest

from core.clock import ClockFactory, MockClock, SystemClock, ensure_utc, from_iso8601, now_utc


T0 = datetime(2025, 1, 15, 12, 0, 0, tzinfo=timezone.utc)


class TestMockClock:
    """Tests for MockClock."""

    def test_stands_still(self):
        clock = MockClock(T0)
        assert clock.now() == clock.now() == T0

    def test_advance(self):
        clock = MockClock(T0)
        clock.advance(30, minutes=1)
        assert clock.now() == T0 + timedelta(seconds=90)

    def test_no_backwards_advance(self):
        clock = MockClock(T0)
        with pytest.raises(ValueError):
            clock.advance(-1)

    def test_naive_start_is_utc(self):
        clock = MockClock(datetime(2025, 1, 15))
        assert clock.now().tzinfo == timezone.utc


class TestClockFactory:
    """Tests for the process-wide clock."""

    def test_swap_and_reset(self):
        ClockFactory.set_clock(MockClock(T0))
        try:
            assert now_utc() == T0
        finally:
            ClockFactory.reset()

        assert isinstance(ClockFactory.get_clock(), SystemClock)


class TestTimestampHelpers:
    """Tests for ensure_utc() / from_iso8601()."""

    def test_converts_offset(self):
        eastern = timezone(timedelta(hours=-5))
        assert ensure_utc(datetime(2025, 1, 15, 7, tzinfo=eastern)) == T0

    @pytest.mark.parametrize("raw", [
        "2025-01-15T12:00:00Z",
        "2025-01-15T12:00:00+00:00",
        "2025-01-15T14:00:00+02:00",
        "2025-01-15T12:00:00",
    ])
    def test_parse(self, raw):
        assert from_iso8601(raw) == T0

    def test_parse_rejects_junk(self):
        with pytest.raises(ValueError):
            from_iso8601("yesterday")
