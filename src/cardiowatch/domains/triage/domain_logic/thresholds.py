"""Static clinical threshold checks on a single wearable reading.

Threshold alerts are independent of history: one reading can raise an
alert even before a baseline exists. For each metric the critical bands
are checked before the warning bands and at most one alert is emitted, so
a critical reading never also produces a warning for the same metric.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any

from cardiowatch.domains.triage.domain_logic.models import (
    AlertSeverity,
    AlertSource,
    Metric,
    MetricAlert,
    WearableReading,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ThresholdBand:
    """Four-band threshold set. Every bound is optional and inclusive."""

    critical_low: float | None = None
    low: float | None = None
    high: float | None = None
    critical_high: float | None = None

    def __post_init__(self) -> None:
        if self.critical_low is not None and self.low is not None and self.critical_low > self.low:
            raise ValueError(f"critical_low {self.critical_low} exceeds low {self.low}")
        if self.high is not None and self.critical_high is not None and self.high > self.critical_high:
            raise ValueError(f"high {self.high} exceeds critical_high {self.critical_high}")

    def bounds(self) -> list[float]:
        return [
            b for b in (self.critical_low, self.low, self.high, self.critical_high)
            if b is not None
        ]

    def to_dict(self) -> dict[str, float | None]:
        return {
            "critical_low": self.critical_low,
            "low": self.low,
            "high": self.high,
            "critical_high": self.critical_high,
        }


@dataclass(frozen=True)
class ClinicalThresholds:
    """Per-metric threshold bands applied to a patient's readings."""

    resting_heart_rate: ThresholdBand = field(
        default_factory=lambda: ThresholdBand(critical_low=40, low=50, high=100, critical_high=120)
    )
    heart_rate_variability: ThresholdBand = field(
        default_factory=lambda: ThresholdBand(critical_low=10, low=20)
    )
    blood_oxygen: ThresholdBand = field(
        default_factory=lambda: ThresholdBand(critical_low=90, low=94)
    )
    sleep_duration: ThresholdBand = field(
        default_factory=lambda: ThresholdBand(critical_low=3, low=5)
    )

    def __post_init__(self) -> None:
        for bound in self.blood_oxygen.bounds():
            if not 80 < bound < 100:
                raise ValueError(f"Blood oxygen threshold {bound} must lie between 80 and 100")
        for bound in self.sleep_duration.bounds():
            if bound <= 0:
                raise ValueError(f"Sleep threshold {bound} must be greater than 0")

    def band_for(self, metric: Metric) -> ThresholdBand | None:
        return getattr(self, metric.value, None)

    @classmethod
    def from_dict(cls, data: dict[str, Any], base: ClinicalThresholds | None = None) -> ClinicalThresholds:
        """Apply a partial override on top of ``base`` (defaults when omitted).

        Example::

            ClinicalThresholds.from_dict({"resting_heart_rate": {"high": 95}})

        Raises:
            ValueError: For unknown metrics, unknown band names or
                thresholds that break the sanity bounds.
        """
        base = base or cls()
        changes: dict[str, ThresholdBand] = {}
        for metric_name, band_data in data.items():
            current = getattr(base, metric_name, None)
            if not isinstance(current, ThresholdBand):
                raise ValueError(f"Unknown threshold metric: {metric_name!r}")
            if not isinstance(band_data, dict):
                raise ValueError(f"Thresholds for {metric_name!r} must be a mapping")
            unknown = set(band_data) - set(current.to_dict())
            if unknown:
                raise ValueError(f"Unknown threshold bands for {metric_name!r}: {sorted(unknown)}")
            changes[metric_name] = replace(current, **{
                name: None if bound is None else float(bound)
                for name, bound in band_data.items()
            })
        return replace(base, **changes)

    def to_dict(self) -> dict[str, dict[str, float | None]]:
        return {
            "resting_heart_rate": self.resting_heart_rate.to_dict(),
            "heart_rate_variability": self.heart_rate_variability.to_dict(),
            "blood_oxygen": self.blood_oxygen.to_dict(),
            "sleep_duration": self.sleep_duration.to_dict(),
        }


DEFAULT_CARDIAC_THRESHOLDS = ClinicalThresholds()


class ThresholdRegistry:
    """Patient-scoped threshold overrides set by clinicians.

    Lookups fall back to ``DEFAULT_CARDIAC_THRESHOLDS`` for patients
    without an override.
    """

    def __init__(self, defaults: ClinicalThresholds = DEFAULT_CARDIAC_THRESHOLDS) -> None:
        self._defaults = defaults
        self._overrides: dict[str, ClinicalThresholds] = {}
        self._lock = threading.Lock()

    def get(self, patient_id: str) -> ClinicalThresholds:
        with self._lock:
            return self._overrides.get(patient_id, self._defaults)

    def set(self, patient_id: str, thresholds: ClinicalThresholds) -> None:
        with self._lock:
            self._overrides[patient_id] = thresholds
        logger.info("Custom thresholds set for patient %s", patient_id)

    def clear(self, patient_id: str) -> bool:
        """Drop a patient's override. Returns True if one existed."""
        with self._lock:
            return self._overrides.pop(patient_id, None) is not None

    def has_override(self, patient_id: str) -> bool:
        with self._lock:
            return patient_id in self._overrides


# Unit suffix and number format per metric for alert messages.
_UNITS = {
    Metric.RESTING_HEART_RATE: ("{:g} bpm", "resting heart rate"),
    Metric.HEART_RATE_VARIABILITY: ("{:g} ms", "HRV"),
    Metric.BLOOD_OXYGEN: ("{:g}%", "blood oxygen"),
    Metric.SLEEP_DURATION: ("{:.1f} hours", "sleep"),
}

# Band check order: criticals first so they supersede warnings.
_BAND_ORDER = (
    ("critical_high", AlertSeverity.CRITICAL, "Critical high"),
    ("critical_low", AlertSeverity.CRITICAL, "Critical low"),
    ("high", AlertSeverity.WARNING, "Elevated"),
    ("low", AlertSeverity.WARNING, "Low"),
)


def _evaluate_band(value: float, band: ThresholdBand) -> tuple[str, AlertSeverity, str, float] | None:
    for name, severity, label in _BAND_ORDER:
        bound = getattr(band, name)
        if bound is None:
            continue
        crossed = value >= bound if name.endswith("high") else value <= bound
        if crossed:
            return name, severity, label, bound
    return None


def check_thresholds(
    reading: WearableReading,
    thresholds: ClinicalThresholds = DEFAULT_CARDIAC_THRESHOLDS,
    detected_at: datetime | None = None,
) -> list[MetricAlert]:
    """Evaluate one reading against static clinical bands.

    Metrics missing from the reading are skipped.

    Returns:
        At most one alert per metric, critical superseding warning.
    """
    detected_at = detected_at or datetime.now(timezone.utc)
    alerts: list[MetricAlert] = []

    for metric, (value_fmt, noun) in _UNITS.items():
        value = reading.value_for(metric)
        band = thresholds.band_for(metric)
        if value is None or band is None:
            continue

        hit = _evaluate_band(value, band)
        if hit is None:
            continue

        _, severity, label, bound = hit
        alerts.append(MetricAlert(
            metric=metric,
            severity=severity,
            message=f"{label} {noun}: {value_fmt.format(value)}",
            threshold_value=bound,
            actual_value=value,
            detected_at=detected_at,
            source=AlertSource.THRESHOLD,
        ))

    return alerts
