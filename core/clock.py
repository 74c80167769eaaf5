"""
Core Module - Monitor Clock.

============================================================
RESPONSIBILITY
============================================================
Single source of "now" for the fidelity monitor.

- Stamps samples and alerts that arrive without a timestamp
- Anchors windowed averages, dedup windows and rate limits
- Swappable for a manual clock in tests

============================================================
RULES
============================================================
- Every datetime handed out is timezone-aware UTC
- Backend timestamps are normalised through ensure_utc()
- The manual clock never moves unless told to

============================================================
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Optional


# ============================================================
# CLOCK PROTOCOL
# ============================================================

class ClockProtocol(ABC):
    """Anything that can answer "what time is it" in UTC."""

    @abstractmethod
    def now(self) -> datetime:
        pass


class SystemClock(ClockProtocol):
    """Wall-clock time."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class MockClock(ClockProtocol):
    """
    Manually driven clock.

    Usage:
        clock = MockClock(datetime(2025, 1, 15, tzinfo=timezone.utc))
        store = FidelityStateStore(clock=clock)
        clock.advance(minutes=6)
    """

    def __init__(self, initial_time: Optional[datetime] = None):
        self._time = ensure_utc(initial_time) if initial_time else datetime.now(timezone.utc)

    def now(self) -> datetime:
        return self._time

    def set_time(self, new_time: datetime) -> None:
        self._time = ensure_utc(new_time)

    def advance(self, seconds: float = 0, **kwargs) -> None:
        """Move forward by seconds plus any timedelta keywords (minutes=, hours=)."""
        step = timedelta(seconds=seconds, **kwargs)
        if step < timedelta(0):
            raise ValueError("MockClock cannot move backwards, use set_time()")
        self._time = self._time + step


# ============================================================
# CLOCK FACTORY
# ============================================================

class ClockFactory:
    """Process-wide default clock."""

    _instance: Optional[ClockProtocol] = None

    @classmethod
    def get_clock(cls) -> ClockProtocol:
        if cls._instance is None:
            cls._instance = SystemClock()
        return cls._instance

    @classmethod
    def set_clock(cls, clock: ClockProtocol) -> None:
        cls._instance = clock

    @classmethod
    def reset(cls) -> None:
        cls._instance = None


# ============================================================
# TIMESTAMP HELPERS
# ============================================================

def ensure_utc(dt: datetime) -> datetime:
    """Naive datetimes are taken as UTC; aware ones are converted."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def from_iso8601(iso_string: str) -> datetime:
    """
    Parse a backend timestamp.

    Accepts the "Z" suffix, which fromisoformat() rejects before 3.11.

    Raises:
        ValueError: If the string is not ISO 8601
    """
    if iso_string.endswith("Z"):
        iso_string = iso_string[:-1] + "+00:00"
    return ensure_utc(datetime.fromisoformat(iso_string))


def now_utc() -> datetime:
    """Current time from the process-wide clock."""
    return ClockFactory.get_clock().now()


__all__ = [
    "ClockProtocol",
    "SystemClock",
    "MockClock",
    "ClockFactory",
    "ensure_utc",
    "from_iso8601",
    "now_utc",
]
