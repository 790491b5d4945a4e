"""Baseline trend analysis over a window of wearable readings.

The baseline is taken from the *first* ``baseline_days`` samples of the
window (the patient's discharge-era normal) and held fixed; the latest
sample is scored against it.

Status classification is metric-specific. Elevated resting heart rate is
bad while falling HRV and sleep are bad, so each metric carries its own
rule in ``STATUS_RULES`` instead of a shared "higher is worse" test.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import datetime, timezone

from cardiowatch.domains.triage.domain_logic import stats
from cardiowatch.domains.triage.domain_logic.models import (
    AlertSeverity,
    AlertSource,
    Baseline,
    Metric,
    MetricAlert,
    TrendDirection,
    TrendResult,
    TrendStatus,
    WearableReading,
)

logger = logging.getLogger(__name__)

BASELINE_DAYS = 7

# Percent-change bands
STABLE_BAND_PCT = 5.0
HR_AMBER_THRESHOLD = 10.0
HR_RED_THRESHOLD = 15.0
HRV_AMBER_THRESHOLD = -15.0
HRV_RED_THRESHOLD = -25.0

Predicate = Callable[[float, float], bool]  # (percent_change, z_score) -> bool


@dataclass(frozen=True)
class StatusRule:
    """Status bands for one metric, checked critical -> concerning -> improving."""

    critical: Predicate | None = None
    concerning: Predicate | None = None
    improving: Predicate | None = None
    description: str = ""

    def classify(self, percent_change: float, z_score: float) -> TrendStatus:
        if self.critical is not None and self.critical(percent_change, z_score):
            return TrendStatus.CRITICAL
        if self.concerning is not None and self.concerning(percent_change, z_score):
            return TrendStatus.CONCERNING
        if self.improving is not None and self.improving(percent_change, z_score):
            return TrendStatus.IMPROVING
        return TrendStatus.NORMAL


STATUS_RULES: dict[Metric, StatusRule] = {
    Metric.RESTING_HEART_RATE: StatusRule(
        critical=lambda pc, z: pc >= HR_RED_THRESHOLD,
        concerning=lambda pc, z: pc >= HR_AMBER_THRESHOLD,
        improving=lambda pc, z: pc < -5,
        description="higher is worse",
    ),
    Metric.HEART_RATE_VARIABILITY: StatusRule(
        critical=lambda pc, z: pc <= HRV_RED_THRESHOLD,
        concerning=lambda pc, z: pc <= HRV_AMBER_THRESHOLD,
        improving=lambda pc, z: pc > 10,
        description="lower is worse",
    ),
    Metric.SLEEP_DURATION: StatusRule(
        critical=lambda pc, z: abs(z) > 2 and pc < 0,
        concerning=lambda pc, z: abs(z) > 1.5 and pc < 0,
        improving=lambda pc, z: pc > 10,
        description="lower is worse, scored on z-score",
    ),
    Metric.STEPS: StatusRule(
        concerning=lambda pc, z: pc < -50,
        improving=lambda pc, z: pc > 20,
        description="large drops are concerning",
    ),
}

# Metrics trended by analyze_all. Blood oxygen is threshold-checked only.
TRENDED_METRICS: tuple[Metric, ...] = tuple(STATUS_RULES)

# Any metric without its own rule falls back to symmetric z-score bands.
DEFAULT_STATUS_RULE = StatusRule(
    critical=lambda pc, z: abs(z) > 2,
    concerning=lambda pc, z: abs(z) > 1.5,
    description="generic z-score bands",
)


def classify_status(metric: Metric, percent_change: float, z_score: float) -> TrendStatus:
    """Classify a deviation using the rule registered for ``metric``."""
    rule = STATUS_RULES.get(metric, DEFAULT_STATUS_RULE)
    return rule.classify(percent_change, z_score)


def classify_direction(percent_change: float) -> TrendDirection:
    if abs(percent_change) > STABLE_BAND_PCT:
        return TrendDirection.INCREASING if percent_change > 0 else TrendDirection.DECREASING
    return TrendDirection.STABLE


class TrendAnalyzer:
    """Compares the latest reading of each metric against a fixed baseline.

    Usage::

        analyzer = TrendAnalyzer(baseline_days=7)
        result = analyzer.analyze(readings, Metric.RESTING_HEART_RATE)
        if result is not None and result.status is TrendStatus.CRITICAL:
            ...
    """

    def __init__(self, baseline_days: int = BASELINE_DAYS) -> None:
        if baseline_days < 1:
            raise ValueError("baseline_days must be at least 1")
        self._baseline_days = baseline_days

    @property
    def baseline_days(self) -> int:
        return self._baseline_days

    def analyze(
        self,
        series: Sequence[WearableReading],
        metric: Metric,
        baseline_days: int | None = None,
    ) -> TrendResult | None:
        """Score the latest value of ``metric`` against its baseline.

        Args:
            series: Readings ordered oldest first.
            metric: Metric to analyze.
            baseline_days: Override for the analyzer's baseline window.

        Returns:
            The trend, or None when fewer than ``baseline_days + 1``
            non-missing samples exist for the metric.
        """
        days = self._baseline_days if baseline_days is None else baseline_days
        if days < 1:
            raise ValueError("baseline_days must be at least 1")

        samples = [
            (reading.timestamp, value)
            for reading in series
            if (value := reading.value_for(metric)) is not None
        ]
        if len(samples) < days + 1:
            logger.debug(
                "Insufficient history for %s: %d samples, need %d",
                metric.value, len(samples), days + 1,
            )
            return None

        baseline_values = [v for _, v in samples[:days]]
        current_date, current = samples[-1]

        baseline_mean = stats.mean(baseline_values)
        baseline_std = stats.standard_deviation(baseline_values)
        delta = current - baseline_mean
        pct = stats.percent_change(current, baseline_mean)
        z = stats.z_score(current, baseline_mean, baseline_std)

        return TrendResult(
            metric=metric,
            current_value=current,
            current_date=current_date,
            baseline=Baseline(
                mean=baseline_mean,
                median=stats.median(baseline_values),
                std_dev=baseline_std,
                min=min(baseline_values),
                max=max(baseline_values),
                sample_count=len(baseline_values),
                start_date=samples[0][0],
                end_date=samples[days - 1][0],
            ),
            delta_from_baseline=delta,
            percent_change=pct,
            z_score=z,
            direction=classify_direction(pct),
            status=classify_status(metric, pct, z),
        )

    def analyze_all(
        self,
        series: Sequence[WearableReading],
        baseline_days: int | None = None,
        metrics: Sequence[Metric] | None = None,
    ) -> list[TrendResult]:
        """Analyze each trended metric that has enough history.

        ``metrics`` defaults to ``TRENDED_METRICS``; other metrics fall back
        to symmetric z-score bands and are only scored when asked for.
        """
        results = []
        for metric in metrics or TRENDED_METRICS:
            result = self.analyze(series, metric, baseline_days)
            if result is not None:
                results.append(result)
        return results


def trend_alert(result: TrendResult, detected_at: datetime | None = None) -> MetricAlert | None:
    """Turn a concerning or critical trend into a candidate alert."""
    if result.status is TrendStatus.CRITICAL:
        severity = AlertSeverity.CRITICAL
    elif result.status is TrendStatus.CONCERNING:
        severity = AlertSeverity.WARNING
    else:
        return None

    movement = "up" if result.percent_change > 0 else "down"
    message = (
        f"{result.metric.display_name} {movement} {abs(result.percent_change):.1f}% "
        f"from baseline ({result.current_value:g} vs {result.baseline.mean:.1f})"
    )
    return MetricAlert(
        metric=result.metric,
        severity=severity,
        message=message,
        threshold_value=round(result.baseline.mean, 4),
        actual_value=result.current_value,
        detected_at=detected_at or datetime.now(timezone.utc),
        source=AlertSource.TREND,
    )
