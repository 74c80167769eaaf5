"""
Fidelity State Store.

============================================================
PURPOSE
============================================================
Holds the current fidelity score, a bounded trailing history
and the derived alert level.

- History is time-ordered and never exceeds its capacity
  (oldest sample evicted first).
- The alert level is recomputed from the latest score on
  every record. An escalation may raise it until the next
  record.
- Averages are computed on demand from retained history.

============================================================
"""

import logging
from collections import deque
from datetime import datetime, timedelta
from typing import Any, Deque, Dict, List, Optional

from core.clock import ClockProtocol, ClockFactory, ensure_utc
from core.exceptions import InvalidSampleError

from .models import (
    AlertLevel,
    Trend,
    FidelitySample,
    FidelitySnapshot,
    FidelityThresholds,
    WorkflowScore,
    classify_score,
    HISTORY_CAPACITY,
    TREND_WINDOW,
    TREND_EPSILON,
)


logger = logging.getLogger(__name__)


def compute_trend(samples: List[FidelitySample], window: int = TREND_WINDOW) -> Trend:
    """Direction over the last `window` samples; NONE below two samples."""
    if len(samples) < 2:
        return Trend.NONE

    recent = samples[-window:]
    delta = recent[-1].score - recent[0].score

    if delta > TREND_EPSILON:
        return Trend.UP
    if delta < -TREND_EPSILON:
        return Trend.DOWN
    return Trend.NONE


class FidelityStateStore:
    """
    Owner of fidelity history and alert level.

    Only the event router mutates this store. Everyone else
    uses the read accessors.
    """

    def __init__(
        self,
        capacity: int = HISTORY_CAPACITY,
        thresholds: Optional[FidelityThresholds] = None,
        trend_window: int = TREND_WINDOW,
        clock: Optional[ClockProtocol] = None,
    ):
        self._history: Deque[FidelitySample] = deque(maxlen=capacity)
        self._thresholds = thresholds or FidelityThresholds()
        self._trend_window = trend_window
        self._clock = clock or ClockFactory.get_clock()

        self._level = AlertLevel.GREEN
        self._override: Optional[AlertLevel] = None

        self._workflow_scores: Dict[str, WorkflowScore] = {}
        self._metrics: Dict[str, Any] = {}
        self._metrics_at: Optional[datetime] = None

    @property
    def capacity(self) -> int:
        return self._history.maxlen

    # --------------------------------------------------------
    # MUTATION
    # --------------------------------------------------------

    def record(self, score: float, timestamp: Optional[datetime] = None) -> FidelitySample:
        """
        Append a sample and recompute the alert level.

        A timestamp older than the newest sample is clamped to the
        newest timestamp; the original is kept as `reported_at`.

        Raises:
            InvalidSampleError: Score missing, non-numeric or outside [0, 1]
        """
        if score is None or isinstance(score, bool):
            raise InvalidSampleError("score must be a number")
        try:
            score = float(score)
        except (TypeError, ValueError):
            raise InvalidSampleError(f"score is not numeric: {score!r}")
        if not 0.0 <= score <= 1.0:
            raise InvalidSampleError("score outside [0, 1]", score=score)

        timestamp = ensure_utc(timestamp) if timestamp else self._clock.now()
        reported_at = None
        if self._history and timestamp < self._history[-1].timestamp:
            newest = self._history[-1].timestamp
            logger.debug(
                f"Clamping sample at {timestamp.isoformat()} to newest sample at {newest.isoformat()}"
            )
            reported_at, timestamp = timestamp, newest

        sample = FidelitySample(score=score, timestamp=timestamp, reported_at=reported_at)
        self._history.append(sample)

        previous = self.level
        self._override = None
        self._level = classify_score(score, self._thresholds)

        if self._level != previous:
            logger.info(f"Alert level {previous.value} -> {self._level.value} (score={score:.3f})")

        return sample

    def escalate(self, level: AlertLevel) -> AlertLevel:
        """
        Raise the effective level to at least `level`.

        Lasts until the next record(). Never lowers the level.
        """
        previous = self.level
        effective = AlertLevel.highest(previous, level)
        if effective != self._level:
            self._override = effective
        if effective != previous:
            logger.warning(f"Alert level escalated {previous.value} -> {effective.value}")
        return effective

    def record_workflow_score(
        self,
        workflow_id: str,
        score: Optional[float],
        timestamp: datetime,
        compliance_level: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> WorkflowScore:
        """Replace the latest entry for a workflow. `score` may be None."""
        entry = WorkflowScore(
            workflow_id=workflow_id,
            score=score,
            timestamp=timestamp,
            compliance_level=compliance_level,
            details=dict(details or {}),
        )
        self._workflow_scores[workflow_id] = entry
        return entry

    def record_metrics(self, metrics: Dict[str, Any], timestamp: Optional[datetime] = None) -> None:
        self._metrics = dict(metrics)
        self._metrics_at = timestamp or self._clock.now()

    # --------------------------------------------------------
    # READ ACCESSORS
    # --------------------------------------------------------

    @property
    def level(self) -> AlertLevel:
        return self._override or self._level

    def current(self) -> FidelitySnapshot:
        """Latest score, effective level and trend."""
        samples = list(self._history)
        latest = samples[-1] if samples else None

        return FidelitySnapshot(
            score=latest.score if latest else None,
            level=self.level,
            trend=compute_trend(samples, self._trend_window),
            sample_count=len(samples),
            updated_at=latest.timestamp if latest else None,
            level_overridden=self._override is not None,
        )

    def history(self) -> List[FidelitySample]:
        """Retained samples, oldest first."""
        return list(self._history)

    def average(
        self,
        window: timedelta,
        now: Optional[datetime] = None,
    ) -> Optional[float]:
        """Mean score of samples newer than now - window, or None."""
        cutoff = (ensure_utc(now) if now else self._clock.now()) - window
        scores = [s.score for s in self._history if s.timestamp >= cutoff]
        if not scores:
            return None
        return sum(scores) / len(scores)

    def workflow_scores(self) -> Dict[str, WorkflowScore]:
        return dict(self._workflow_scores)

    def latest_metrics(self) -> Dict[str, Any]:
        return dict(self._metrics)

    @property
    def metrics_updated_at(self) -> Optional[datetime]:
        return self._metrics_at
