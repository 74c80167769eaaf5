"""
╔══════════════════════════════════════════════════════════════════════════════╗
║                      CONSTITUTIONAL FIDELITY MONITOR                         ║
║                                                                              ║
║  Domain types for the real-time compliance monitoring core.                  ║
║  Everything here is created from inbound events and is append-only.          ║
║                                                                              ║
╚══════════════════════════════════════════════════════════════════════════════╝

============================================================
LIFECYCLES
============================================================

- FidelitySample, ViolationAlert, EscalationNotice are
  immutable once recorded.
- AlertLevel is derived, never stored as truth.
- ConnectionState belongs to the transport channel.
- Nothing is deleted individually. Eviction is FIFO by
  capacity only.

============================================================
"""

from enum import Enum
from datetime import datetime
from typing import Any, Dict, Optional, Tuple
from dataclasses import dataclass, field


# ============================================================
# ALERT LEVEL
# ============================================================

class AlertLevel(Enum):
    """
    Three-tier classification of the latest fidelity score.

    Ordered: GREEN < AMBER < RED.
    """

    GREEN = "green"
    AMBER = "amber"
    RED = "red"

    @property
    def rank(self) -> int:
        return _LEVEL_RANK[self]

    @classmethod
    def highest(cls, *levels: "AlertLevel") -> "AlertLevel":
        """Most severe of the given levels."""
        return max(levels, key=lambda level: level.rank)


_LEVEL_RANK = {
    AlertLevel.GREEN: 0,
    AlertLevel.AMBER: 1,
    AlertLevel.RED: 2,
}


class Trend(Enum):
    """Short-window direction of the fidelity score."""

    UP = "up"
    DOWN = "down"
    NONE = "none"


# ============================================================
# THRESHOLDS
# ============================================================

GREEN_THRESHOLD = 0.85
AMBER_THRESHOLD = 0.70

HISTORY_CAPACITY = 100
LEDGER_CAPACITY = 20

TREND_WINDOW = 5
TREND_EPSILON = 0.01


@dataclass(frozen=True)
class FidelityThresholds:
    """Score cut-offs for the alert levels (inclusive lower bounds)."""

    green: float = GREEN_THRESHOLD
    amber: float = AMBER_THRESHOLD


def classify_score(
    score: float,
    thresholds: FidelityThresholds = FidelityThresholds(),
) -> AlertLevel:
    """Pure mapping from a fidelity score to an alert level."""
    if score >= thresholds.green:
        return AlertLevel.GREEN
    if score >= thresholds.amber:
        return AlertLevel.AMBER
    return AlertLevel.RED


# ============================================================
# FIDELITY
# ============================================================

@dataclass(frozen=True)
class FidelitySample:
    """One recorded fidelity score.

    `reported_at` keeps the source timestamp when it was older than
    the newest sample and `timestamp` was clamped forward.
    """

    score: float
    timestamp: datetime
    reported_at: Optional[datetime] = None


@dataclass(frozen=True)
class FidelitySnapshot:
    """What current() returns to the presentation layer."""

    score: Optional[float]
    level: AlertLevel
    trend: Trend
    sample_count: int
    updated_at: Optional[datetime] = None
    level_overridden: bool = False

    def to_dict(self) -> dict:
        return {
            "score": self.score,
            "level": self.level.value,
            "trend": self.trend.value,
            "sample_count": self.sample_count,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
            "level_overridden": self.level_overridden,
        }


@dataclass(frozen=True)
class WorkflowScore:
    """Latest fidelity payload reported for a single workflow."""

    workflow_id: str
    score: Optional[float]
    timestamp: datetime
    compliance_level: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)


# ============================================================
# VIOLATIONS
# ============================================================

class ViolationSeverity(Enum):
    """Backend-assigned violation severity."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class EscalationLevel(Enum):
    """Responder tier a violation was routed to."""

    POLICY_MANAGER = "policy_manager"
    CONSTITUTIONAL_COUNCIL = "constitutional_council"
    EMERGENCY_RESPONSE = "emergency_response"


@dataclass(frozen=True)
class ViolationAlert:
    """A violation alert, received verbatim from the backend."""

    id: str
    severity: ViolationSeverity
    violation_type: str
    description: str
    timestamp: datetime
    fidelity_score: Optional[float] = None
    distance_score: Optional[float] = None
    recommended_actions: Tuple[str, ...] = field(default_factory=tuple)
    escalated: bool = False
    workflow_id: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "severity": self.severity.value,
            "violation_type": self.violation_type,
            "description": self.description,
            "fidelity_score": self.fidelity_score,
            "distance_score": self.distance_score,
            "recommended_actions": list(self.recommended_actions),
            "escalated": self.escalated,
            "workflow_id": self.workflow_id,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass(frozen=True)
class EscalationNotice:
    """A violation routed to a higher-authority responder."""

    id: str
    escalation_level: EscalationLevel
    violation_id: str
    response_time_target_minutes: int
    timestamp: datetime
    assigned_to: Optional[str] = None
    notification_sent: bool = False

    @property
    def is_emergency(self) -> bool:
        return self.escalation_level == EscalationLevel.EMERGENCY_RESPONSE

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "escalation_level": self.escalation_level.value,
            "violation_id": self.violation_id,
            "assigned_to": self.assigned_to,
            "response_time_target_minutes": self.response_time_target_minutes,
            "notification_sent": self.notification_sent,
            "timestamp": self.timestamp.isoformat(),
        }


# ============================================================
# CONNECTION
# ============================================================

class ConnectionState(Enum):
    """Transport connection states."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    ERROR = "error"


@dataclass(frozen=True)
class ConnectionStatus:
    """
    Observable connection status.

    exhausted=True is the terminal state: automatic
    reconnection stopped and connect() must be called.
    """

    state: ConnectionState
    reconnect_attempt: int = 0
    max_reconnect_attempts: int = 0
    exhausted: bool = False
    last_error: Optional[str] = None

    @property
    def is_connected(self) -> bool:
        return self.state == ConnectionState.CONNECTED

    def describe(self) -> str:
        """Human-readable status line, e.g. 'disconnected (attempt 2 of 5)'."""
        if self.exhausted:
            return (
                f"{self.state.value} (reconnect gave up after "
                f"{self.max_reconnect_attempts} attempts)"
            )
        if self.state != ConnectionState.CONNECTED and self.reconnect_attempt > 0:
            return (
                f"{self.state.value} (attempt {self.reconnect_attempt} "
                f"of {self.max_reconnect_attempts})"
            )
        return self.state.value

    def to_dict(self) -> dict:
        return {
            "state": self.state.value,
            "reconnect_attempt": self.reconnect_attempt,
            "max_reconnect_attempts": self.max_reconnect_attempts,
            "exhausted": self.exhausted,
            "last_error": self.last_error,
            "description": self.describe(),
        }
