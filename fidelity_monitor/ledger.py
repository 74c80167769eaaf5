"""
Alert & Escalation Ledger.

============================================================
PURPOSE
============================================================
Retains violation alerts and escalation notices for display.

PRINCIPLES:
- Two independent bounded ledgers, newest first
- Eviction is FIFO by capacity only
- violation_count() is CUMULATIVE for the session: it counts
  every recorded alert and never decreases, even when the
  alert itself has been evicted
- Display mapping is a pure lookup table, no business logic

============================================================
"""

import logging
from collections import deque
from dataclasses import dataclass
from itertools import islice
from typing import Any, Deque, Dict, List, Optional

from .models import (
    AlertLevel,
    ViolationAlert,
    ViolationSeverity,
    EscalationNotice,
    EscalationLevel,
    LEDGER_CAPACITY,
)


logger = logging.getLogger(__name__)


# ============================================================
# DISPLAY TABLES
# ============================================================

@dataclass(frozen=True)
class DisplayStyle:
    """Presentation hints. Higher priority sorts first."""

    color: str
    priority: int
    icon: str


SEVERITY_DISPLAY: Dict[ViolationSeverity, DisplayStyle] = {
    ViolationSeverity.CRITICAL: DisplayStyle(color="red", priority=4, icon="🚨"),
    ViolationSeverity.HIGH: DisplayStyle(color="orange", priority=3, icon="⚠️"),
    ViolationSeverity.MEDIUM: DisplayStyle(color="yellow", priority=2, icon="⚡"),
    ViolationSeverity.LOW: DisplayStyle(color="blue", priority=1, icon="ℹ️"),
}

ESCALATION_DISPLAY: Dict[EscalationLevel, DisplayStyle] = {
    EscalationLevel.EMERGENCY_RESPONSE: DisplayStyle(color="red", priority=3, icon="🚨"),
    EscalationLevel.CONSTITUTIONAL_COUNCIL: DisplayStyle(color="orange", priority=2, icon="🏛"),
    EscalationLevel.POLICY_MANAGER: DisplayStyle(color="yellow", priority=1, icon="📋"),
}

ALERT_LEVEL_DISPLAY: Dict[AlertLevel, DisplayStyle] = {
    AlertLevel.RED: DisplayStyle(color="red", priority=3, icon="🔴"),
    AlertLevel.AMBER: DisplayStyle(color="amber", priority=2, icon="🟡"),
    AlertLevel.GREEN: DisplayStyle(color="green", priority=1, icon="🟢"),
}

_UNKNOWN_STYLE = DisplayStyle(color="gray", priority=0, icon="📢")


def severity_style(severity: ViolationSeverity) -> DisplayStyle:
    return SEVERITY_DISPLAY.get(severity, _UNKNOWN_STYLE)


def escalation_style(level: EscalationLevel) -> DisplayStyle:
    return ESCALATION_DISPLAY.get(level, _UNKNOWN_STYLE)


def alert_level_style(level: AlertLevel) -> DisplayStyle:
    return ALERT_LEVEL_DISPLAY.get(level, _UNKNOWN_STYLE)


# ============================================================
# LEDGER
# ============================================================

class AlertLedger:
    """
    Bounded, newest-first ledgers of alerts and escalations.

    READ-ONLY to everything except the event router.
    """

    def __init__(self, capacity: int = LEDGER_CAPACITY):
        """Initialize ledger."""
        self._alerts: Deque[ViolationAlert] = deque(maxlen=capacity)
        self._escalations: Deque[EscalationNotice] = deque(maxlen=capacity)

        self._violation_count = 0
        self._escalation_count = 0
        self._reported_violation_count: Optional[int] = None

        self._by_severity: Dict[ViolationSeverity, int] = {s: 0 for s in ViolationSeverity}

    @property
    def capacity(self) -> int:
        return self._alerts.maxlen

    # --------------------------------------------------------
    # MUTATION
    # --------------------------------------------------------

    def record_alert(self, alert: ViolationAlert) -> None:
        """Insert at the front and bump the cumulative counter."""
        if len(self._alerts) == self._alerts.maxlen:
            evicted = self._alerts[-1]
            logger.debug(f"Evicting alert {evicted.id} from ledger")

        self._alerts.appendleft(alert)
        self._violation_count += 1
        self._by_severity[alert.severity] += 1

        logger.info(
            f"Violation recorded: {alert.violation_type} "
            f"[{alert.severity.value}] ({alert.id})"
        )

    def record_escalation(self, notice: EscalationNotice) -> None:
        """Insert at the front of the escalation ledger."""
        self._escalations.appendleft(notice)
        self._escalation_count += 1

        logger.info(
            f"Escalation recorded: {notice.escalation_level.value} "
            f"for violation {notice.violation_id} ({notice.id})"
        )

    def record_reported_violations(self, count: int) -> None:
        """
        Store the backend-reported violation total.

        Kept apart from violation_count(); the two are never merged.
        """
        self._reported_violation_count = int(count)

    # --------------------------------------------------------
    # READ ACCESSORS
    # --------------------------------------------------------

    def recent_alerts(self, n: int = LEDGER_CAPACITY) -> List[ViolationAlert]:
        """At most n alerts, most recent first."""
        if n <= 0:
            return []
        return list(islice(self._alerts, n))

    def recent_escalations(self, n: int = LEDGER_CAPACITY) -> List[EscalationNotice]:
        """At most n escalations, most recent first."""
        if n <= 0:
            return []
        return list(islice(self._escalations, n))

    def violation_count(self) -> int:
        """Cumulative alerts recorded this session."""
        return self._violation_count

    def escalation_count(self) -> int:
        return self._escalation_count

    def reported_violation_count(self) -> Optional[int]:
        """Latest backend-pushed total, or None if never reported."""
        return self._reported_violation_count

    def get_by_severity(self, severity: ViolationSeverity) -> List[ViolationAlert]:
        return [a for a in self._alerts if a.severity == severity]

    def stats(self) -> Dict[str, Any]:
        """Ledger statistics."""
        return {
            "retained_alerts": len(self._alerts),
            "retained_escalations": len(self._escalations),
            "violation_count": self._violation_count,
            "escalation_count": self._escalation_count,
            "reported_violation_count": self._reported_violation_count,
            "by_severity": {
                severity.value: count
                for severity, count in self._by_severity.items()
            },
        }
