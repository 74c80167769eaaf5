"""
Tests for the Alert & Escalation Ledger.
"""

from datetime import datetime, timedelta, timezone

import pytest

from fidelity_monitor.ledger import (
    AlertLedger,
    SEVERITY_DISPLAY,
    ESCALATION_DISPLAY,
    ALERT_LEVEL_DISPLAY,
    severity_style,
)
from fidelity_monitor.models import (
    AlertLevel,
    ViolationAlert,
    ViolationSeverity,
    EscalationNotice,
    EscalationLevel,
)


T0 = datetime(2025, 1, 15, 12, 0, 0, tzinfo=timezone.utc)


def make_alert(i: int, severity: ViolationSeverity = ViolationSeverity.MEDIUM) -> ViolationAlert:
    return ViolationAlert(
        id=f"alert-{i}",
        severity=severity,
        violation_type="principle_drift",
        description=f"Violation {i}",
        timestamp=T0 + timedelta(seconds=i),
    )


def make_escalation(i: int) -> EscalationNotice:
    return EscalationNotice(
        id=f"esc-{i}",
        escalation_level=EscalationLevel.POLICY_MANAGER,
        violation_id=f"alert-{i}",
        response_time_target_minutes=30,
        timestamp=T0 + timedelta(seconds=i),
    )


@pytest.fixture
def ledger():
    return AlertLedger()


class TestAlertLedger:
    """Tests for the violation alert ledger."""

    def test_newest_first(self, ledger):
        for i in range(3):
            ledger.record_alert(make_alert(i))

        assert [a.id for a in ledger.recent_alerts(3)] == ["alert-2", "alert-1", "alert-0"]

    def test_prefix_read(self, ledger):
        for i in range(5):
            ledger.record_alert(make_alert(i))

        assert [a.id for a in ledger.recent_alerts(2)] == ["alert-4", "alert-3"]

    def test_capacity_twenty(self, ledger):
        for i in range(25):
            ledger.record_alert(make_alert(i))

        alerts = ledger.recent_alerts(100)
        assert len(alerts) == 20
        assert alerts[0].id == "alert-24"
        assert alerts[-1].id == "alert-5"

    def test_non_positive_n(self, ledger):
        ledger.record_alert(make_alert(0))
        assert ledger.recent_alerts(0) == []
        assert ledger.recent_alerts(-3) == []

    def test_violation_count_is_cumulative(self, ledger):
        for i in range(25):
            ledger.record_alert(make_alert(i))

        # Evicted alerts still count
        assert ledger.violation_count() == 25

    def test_violation_count_never_decreases(self, ledger):
        counts = []
        for i in range(30):
            ledger.record_alert(make_alert(i))
            counts.append(ledger.violation_count())

        assert counts == sorted(counts)
        assert counts[-1] == 30

    def test_reported_count_is_independent(self, ledger):
        ledger.record_alert(make_alert(0))
        ledger.record_reported_violations(42)

        assert ledger.violation_count() == 1
        assert ledger.reported_violation_count() == 42

    def test_reported_count_defaults_to_none(self, ledger):
        assert ledger.reported_violation_count() is None

    def test_get_by_severity(self, ledger):
        ledger.record_alert(make_alert(0, ViolationSeverity.LOW))
        ledger.record_alert(make_alert(1, ViolationSeverity.CRITICAL))

        critical = ledger.get_by_severity(ViolationSeverity.CRITICAL)
        assert [a.id for a in critical] == ["alert-1"]


class TestEscalationLedger:
    """Tests for the escalation ledger."""

    def test_independent_of_alerts(self, ledger):
        for i in range(25):
            ledger.record_escalation(make_escalation(i))

        assert len(ledger.recent_escalations(100)) == 20
        assert ledger.recent_alerts() == []
        assert ledger.violation_count() == 0

    def test_newest_first(self, ledger):
        ledger.record_escalation(make_escalation(0))
        ledger.record_escalation(make_escalation(1))

        assert ledger.recent_escalations(1)[0].id == "esc-1"


class TestStats:
    """Tests for ledger statistics."""

    def test_stats(self, ledger):
        ledger.record_alert(make_alert(0, ViolationSeverity.HIGH))
        ledger.record_escalation(make_escalation(0))
        ledger.record_reported_violations(7)

        stats = ledger.stats()

        assert stats["retained_alerts"] == 1
        assert stats["retained_escalations"] == 1
        assert stats["violation_count"] == 1
        assert stats["reported_violation_count"] == 7
        assert stats["by_severity"]["high"] == 1
        assert stats["by_severity"]["low"] == 0


class TestDisplayTables:
    """Tests for the severity display lookup."""

    def test_every_severity_has_a_style(self):
        assert set(SEVERITY_DISPLAY) == set(ViolationSeverity)
        assert set(ESCALATION_DISPLAY) == set(EscalationLevel)
        assert set(ALERT_LEVEL_DISPLAY) == set(AlertLevel)

    def test_priority_ordering(self):
        priorities = [
            severity_style(s).priority
            for s in (
                ViolationSeverity.LOW,
                ViolationSeverity.MEDIUM,
                ViolationSeverity.HIGH,
                ViolationSeverity.CRITICAL,
            )
        ]
        assert priorities == sorted(priorities)

    def test_critical_is_red(self):
        style = SEVERITY_DISPLAY[ViolationSeverity.CRITICAL]
        assert style.color == "red"
        assert style.icon == "🚨"
