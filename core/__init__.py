"""
Core Module Package.

This package contains the core infrastructure components
that the monitor depends on.

Components:
- clock: Unified time abstraction
- exceptions: Custom exception hierarchy
"""

from .clock import ClockProtocol, SystemClock, MockClock, ClockFactory, now_utc
from .exceptions import (
    Severity,
    MonitorException,
    ConfigurationError,
    InvalidConfigError,
    TransportError,
    ReconnectExhausted,
    ProtocolError,
    UnknownEventError,
    MalformedEventError,
    InvalidSampleError,
)


__all__ = [
    "ClockProtocol",
    "SystemClock",
    "MockClock",
    "ClockFactory",
    "now_utc",
    "Severity",
    "MonitorException",
    "ConfigurationError",
    "InvalidConfigError",
    "TransportError",
    "ReconnectExhausted",
    "ProtocolError",
    "UnknownEventError",
    "MalformedEventError",
    "InvalidSampleError",
]
