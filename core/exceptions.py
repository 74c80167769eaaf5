"""
Core Module - Exceptions.

============================================================
RESPONSIBILITY
============================================================
Defines all custom exceptions for the fidelity monitor.

- Provides clear exception hierarchy
- Enables specific error handling per fault class
- Carries context for debugging and structured logging

============================================================
EXCEPTION HIERARCHY
============================================================
MonitorException (base)
├── ConfigurationError
│   └── InvalidConfigError
├── TransportError
│   └── ReconnectExhausted
└── ProtocolError
    ├── UnknownEventError
    ├── MalformedEventError
    └── InvalidSampleError

============================================================
PROPAGATION
============================================================
- TransportError is absorbed by the transport channel
  (backoff + reconnect), never raised across components.
- ProtocolError drops the single offending event.
- ReconnectExhausted is a terminal STATUS. It is only raised
  when a caller explicitly asks for it.

============================================================
"""

from enum import Enum
from datetime import datetime, timezone
from typing import Any, Dict, Optional


# ============================================================
# SEVERITY LEVELS
# ============================================================

class Severity(Enum):
    """Exception severity levels for logging."""

    LOW = "low"
    """Minor issue, informational."""

    MEDIUM = "medium"
    """Moderate issue, requires attention."""

    HIGH = "high"
    """Serious issue, operator-visible."""

    CRITICAL = "critical"
    """Requires manual intervention."""


# ============================================================
# BASE EXCEPTION
# ============================================================

class MonitorException(Exception):
    """
    Base exception for all fidelity monitor errors.

    All exceptions carry:
    - severity: for log level selection
    - context: for debugging
    - recoverable: whether the subsystem heals on its own
    - timestamp: when the error occurred
    """

    default_severity: Severity = Severity.MEDIUM
    default_recoverable: bool = True

    def __init__(
        self,
        message: str,
        severity: Optional[Severity] = None,
        context: Optional[Dict[str, Any]] = None,
        recoverable: Optional[bool] = None,
        cause: Optional[Exception] = None,
    ):
        super().__init__(message)

        self.message = message
        self.severity = severity or self.default_severity
        self.context = context or {}
        self.recoverable = recoverable if recoverable is not None else self.default_recoverable
        self.cause = cause
        self.timestamp = datetime.now(timezone.utc)

        if cause:
            self.context["cause_type"] = type(cause).__name__
            self.context["cause_message"] = str(cause)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize exception for logging/API output."""
        return {
            "type": type(self).__name__,
            "message": self.message,
            "severity": self.severity.value,
            "recoverable": self.recoverable,
            "context": self.context,
            "timestamp": self.timestamp.isoformat(),
            "cause": str(self.cause) if self.cause else None,
        }

    def to_log_format(self) -> str:
        """Format exception for structured logging."""
        ctx_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
        line = (
            f"[{self.severity.value.upper()}] {type(self).__name__}: {self.message}"
            f" | recoverable={self.recoverable}"
        )
        if ctx_str:
            line += f" | {ctx_str}"
        return line


# ============================================================
# CONFIGURATION ERRORS
# ============================================================

class ConfigurationError(MonitorException):
    """Error in configuration."""

    default_severity = Severity.HIGH
    default_recoverable = False

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        actual_value: Optional[Any] = None,
        **kwargs,
    ):
        context = kwargs.pop("context", {})

        if config_key:
            context["config_key"] = config_key
        if actual_value is not None:
            context["actual_value"] = str(actual_value)[:100]

        super().__init__(message, context=context, **kwargs)


class InvalidConfigError(ConfigurationError):
    """Configuration value is invalid."""

    def __init__(self, key: str, value: Any, reason: str):
        super().__init__(
            message=f"Invalid configuration for {key}: {reason}",
            config_key=key,
            actual_value=value,
            context={"reason": reason},
        )


# ============================================================
# TRANSPORT ERRORS
# ============================================================

class TransportError(MonitorException):
    """Connection refused, abnormal close or undecodable frame."""

    default_severity = Severity.MEDIUM
    default_recoverable = True

    def __init__(
        self,
        message: str,
        url: Optional[str] = None,
        **kwargs,
    ):
        context = kwargs.pop("context", {})

        if url:
            context["url"] = url

        super().__init__(message, context=context, **kwargs)


class ReconnectExhausted(TransportError):
    """Automatic reconnection gave up; an explicit connect() is required."""

    default_severity = Severity.HIGH
    default_recoverable = False

    def __init__(self, attempts: int, url: Optional[str] = None):
        super().__init__(
            message=f"Reconnection abandoned after {attempts} attempts",
            url=url,
            context={"attempts": attempts},
        )
        self.attempts = attempts


# ============================================================
# PROTOCOL ERRORS
# ============================================================

class ProtocolError(MonitorException):
    """An inbound event could not be applied. Only that event is dropped."""

    default_severity = Severity.LOW
    default_recoverable = True

    def __init__(
        self,
        message: str,
        event_type: Optional[str] = None,
        **kwargs,
    ):
        context = kwargs.pop("context", {})

        if event_type:
            context["event_type"] = event_type

        super().__init__(message, context=context, **kwargs)
        self.event_type = event_type


class UnknownEventError(ProtocolError):
    """Event type is not part of the known protocol."""

    def __init__(self, event_type: str):
        super().__init__(
            message=f"Unknown event type: {event_type}",
            event_type=event_type,
        )


class MalformedEventError(ProtocolError):
    """Event payload is missing fields or has the wrong shape."""

    default_severity = Severity.MEDIUM


class InvalidSampleError(ProtocolError):
    """Fidelity sample score is missing, non-numeric or out of range."""

    def __init__(self, reason: str, score: Optional[float] = None):
        context = {"reason": reason}
        if score is not None:
            context["score"] = score
        super().__init__(
            message=f"Invalid fidelity sample: {reason}",
            context=context,
        )


__all__ = [
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
