"""Triage domain models: readings, trends, candidate alerts and lifecycle alerts."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------

class Metric(str, Enum):
    """Wearable metrics the engine knows how to score."""

    RESTING_HEART_RATE = "resting_heart_rate"
    HEART_RATE_VARIABILITY = "heart_rate_variability"
    SLEEP_DURATION = "sleep_duration"
    STEPS = "steps"
    BLOOD_OXYGEN = "blood_oxygen"

    @property
    def display_name(self) -> str:
        return _METRIC_DISPLAY[self]


_METRIC_DISPLAY = {
    Metric.RESTING_HEART_RATE: "Resting heart rate",
    Metric.HEART_RATE_VARIABILITY: "Heart rate variability",
    Metric.SLEEP_DURATION: "Sleep duration",
    Metric.STEPS: "Steps",
    Metric.BLOOD_OXYGEN: "Blood oxygen",
}


class TrendDirection(str, Enum):
    INCREASING = "increasing"
    DECREASING = "decreasing"
    STABLE = "stable"


class TrendStatus(str, Enum):
    NORMAL = "normal"
    IMPROVING = "improving"
    CONCERNING = "concerning"
    CRITICAL = "critical"


class AlertSeverity(str, Enum):
    WARNING = "warning"
    CRITICAL = "critical"


class AlertSource(str, Enum):
    """Which evaluator produced a metric alert."""

    THRESHOLD = "threshold"
    TREND = "trend"


class TriageLevel(str, Enum):
    """Patient urgency. Lower ``priority`` means more urgent."""

    RED = "red"
    AMBER = "amber"
    GREEN = "green"

    @property
    def priority(self) -> int:
        return _TRIAGE_PRIORITY[self]


_TRIAGE_PRIORITY = {
    TriageLevel.RED: 1,
    TriageLevel.AMBER: 2,
    TriageLevel.GREEN: 3,
}


def most_urgent(levels) -> TriageLevel:
    """Return the most urgent level in ``levels``; green for an empty iterable."""
    return min(levels, key=lambda level: level.priority, default=TriageLevel.GREEN)


class FlowType(str, Enum):
    """Conversation flows of the daily check-in."""

    NORMAL = "normal"
    CONCERN = "concern"
    URGENT = "urgent"
    REFILL = "refill"
    CALL = "call"
    COMPLAINT = "complaint"
    SIDE_EFFECT = "sideEffect"
    APPOINTMENT = "appointment"
    AMBULANCE = "ambulance"


# ---------------------------------------------------------------------------
# Wearable input
# ---------------------------------------------------------------------------

def _num(val: Any) -> float | None:
    """Convert to float, returning None for missing, non-numeric or NaN values."""
    if val is None or isinstance(val, bool):
        return None
    try:
        result = float(val)
    except (TypeError, ValueError):
        return None
    if math.isnan(result) or math.isinf(result):
        return None
    return result


def parse_date(value: Any) -> date:
    """Parse a date, datetime or ISO 8601 string into a ``date``.

    Raises:
        ValueError: If the value cannot be interpreted as a date.
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str) and len(value) >= 10:
        return date.fromisoformat(value[:10])
    raise ValueError(f"Unparseable reading date: {value!r}")


# Payload keys accepted for each reading field (snake_case first, then the
# camelCase names used by the ingestion service).
_READING_KEYS: dict[str, tuple[str, ...]] = {
    "resting_heart_rate": ("resting_heart_rate", "restingHeartRate", "restingHR"),
    "hrv": ("hrv", "heart_rate_variability", "heartRateVariability"),
    "sleep_hours": ("sleep_hours", "sleepHours", "sleep_duration", "sleepDuration"),
    "steps": ("steps",),
    "blood_oxygen": ("blood_oxygen", "bloodOxygen", "spo2"),
}


@dataclass(frozen=True)
class WearableReading:
    """One day of wearable data for a patient. Missing metrics are ``None``."""

    timestamp: date
    resting_heart_rate: float | None = None
    hrv: float | None = None
    sleep_hours: float | None = None
    steps: float | None = None
    blood_oxygen: float | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> WearableReading:
        """Build a reading from an ingestion payload.

        Malformed metric values are dropped (set to None) rather than
        failing the reading.
        """
        raw_date = data.get("timestamp", data.get("date"))
        values: dict[str, float | None] = {}
        for attr, keys in _READING_KEYS.items():
            raw = next((data[k] for k in keys if k in data), None)
            if isinstance(raw, dict):
                raw = raw.get("value")
            values[attr] = _num(raw)
        return cls(timestamp=parse_date(raw_date), **values)

    def value_for(self, metric: Metric) -> float | None:
        """Return the value recorded for ``metric``, or None if missing."""
        return _num(getattr(self, _METRIC_FIELD[metric]))

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "resting_heart_rate": self.resting_heart_rate,
            "hrv": self.hrv,
            "sleep_hours": self.sleep_hours,
            "steps": self.steps,
            "blood_oxygen": self.blood_oxygen,
        }


_METRIC_FIELD = {
    Metric.RESTING_HEART_RATE: "resting_heart_rate",
    Metric.HEART_RATE_VARIABILITY: "hrv",
    Metric.SLEEP_DURATION: "sleep_hours",
    Metric.STEPS: "steps",
    Metric.BLOOD_OXYGEN: "blood_oxygen",
}


# ---------------------------------------------------------------------------
# Trend analysis results
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Baseline:
    """Summary of the first days of a reading window."""

    mean: float
    median: float
    std_dev: float
    min: float
    max: float
    sample_count: int
    start_date: date
    end_date: date

    def to_dict(self) -> dict[str, Any]:
        return {
            "mean": round(self.mean, 4),
            "median": round(self.median, 4),
            "std_dev": round(self.std_dev, 4),
            "min": self.min,
            "max": self.max,
            "sample_count": self.sample_count,
            "start_date": self.start_date.isoformat(),
            "end_date": self.end_date.isoformat(),
        }


@dataclass(frozen=True)
class TrendResult:
    """Latest value of a metric compared against its baseline."""

    metric: Metric
    current_value: float
    current_date: date
    baseline: Baseline
    delta_from_baseline: float
    percent_change: float
    z_score: float
    direction: TrendDirection
    status: TrendStatus

    def to_dict(self) -> dict[str, Any]:
        return {
            "metric": self.metric.value,
            "current_value": self.current_value,
            "current_date": self.current_date.isoformat(),
            "baseline": self.baseline.to_dict(),
            "delta_from_baseline": round(self.delta_from_baseline, 4),
            "percent_change": round(self.percent_change, 2),
            "z_score": round(self.z_score, 4),
            "direction": self.direction.value,
            "status": self.status.value,
        }


# ---------------------------------------------------------------------------
# Candidate alerts
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class MetricAlert:
    """A metric reading or trend that crossed a clinical bar."""

    metric: Metric
    severity: AlertSeverity
    message: str
    threshold_value: float
    actual_value: float
    detected_at: datetime
    source: AlertSource = AlertSource.THRESHOLD

    @property
    def cause_key(self) -> str:
        return f"metric:{self.metric.value}"

    @property
    def triage_level(self) -> TriageLevel:
        if self.severity is AlertSeverity.CRITICAL:
            return TriageLevel.RED
        return TriageLevel.AMBER

    def to_dict(self) -> dict[str, Any]:
        return {
            "metric": self.metric.value,
            "severity": self.severity.value,
            "message": self.message,
            "threshold_value": self.threshold_value,
            "actual_value": self.actual_value,
            "detected_at": self.detected_at.isoformat(),
            "source": self.source.value,
        }


@dataclass(frozen=True)
class FlowEscalation:
    """Triage signal raised by a check-in answer."""

    cause: str  # OptionId value, e.g. 'chest_pain'
    level: TriageLevel
    flow_type: FlowType
    headline: str
    description: str
    detected_at: datetime

    @property
    def cause_key(self) -> str:
        return f"symptom:{self.cause}"

    @property
    def triage_level(self) -> TriageLevel:
        return self.level

    def to_dict(self) -> dict[str, Any]:
        return {
            "cause": self.cause,
            "level": self.level.value,
            "flow_type": self.flow_type.value,
            "headline": self.headline,
            "description": self.description,
            "detected_at": self.detected_at.isoformat(),
        }


# ---------------------------------------------------------------------------
# Lifecycle alert
# ---------------------------------------------------------------------------

@dataclass
class Alert:
    """A clinical alert with identity and resolution state.

    Alerts are never deleted: resolution is a flag so history stays
    available for audit.
    """

    id: str
    patient_id: str
    type: TriageLevel  # RED or AMBER
    headline: str
    description: str
    created_at: datetime
    cause_key: str
    last_observed_at: datetime
    occurrences: int = 1
    actual_value: float | None = None
    threshold_value: float | None = None
    resolved: bool = False
    resolved_at: datetime | None = None
    resolved_by: str | None = None
    resolution_notes: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "patient_id": self.patient_id,
            "type": self.type.value,
            "headline": self.headline,
            "description": self.description,
            "created_at": self.created_at.isoformat(),
            "cause_key": self.cause_key,
            "last_observed_at": self.last_observed_at.isoformat(),
            "occurrences": self.occurrences,
            "actual_value": self.actual_value,
            "threshold_value": self.threshold_value,
            "resolved": self.resolved,
            "resolved_at": self.resolved_at.isoformat() if self.resolved_at else None,
            "resolved_by": self.resolved_by,
            "resolution_notes": self.resolution_notes,
        }


@dataclass(frozen=True)
class TriageStats:
    red: int = 0
    amber: int = 0
    green: int = 0
    total: int = 0

    def to_dict(self) -> dict[str, int]:
        return {"red": self.red, "amber": self.amber, "green": self.green, "total": self.total}


@dataclass(frozen=True)
class AlertStats:
    total: int = 0
    unresolved: int = 0
    red: int = 0
    amber: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "total": self.total,
            "unresolved": self.unresolved,
            "red": self.red,
            "amber": self.amber,
        }


# ---------------------------------------------------------------------------
# Conversation state
# ---------------------------------------------------------------------------

@dataclass
class ChatMessage:
    role: str  # 'patient' | 'agent'
    content: str
    timestamp: datetime
    options: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "role": self.role,
            "content": self.content,
            "timestamp": self.timestamp.isoformat(),
            "options": list(self.options),
        }


@dataclass
class FlowState:
    """Position of one patient's check-in conversation.

    Owned by a single conversation; callers serialize updates per patient.
    """

    patient_id: str
    flow_type: FlowType = FlowType.NORMAL
    step_index: int = 0
    message_history: list[ChatMessage] = field(default_factory=list)
    wellbeing_score: int | None = None
    sync_issue_reported: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "patient_id": self.patient_id,
            "flow_type": self.flow_type.value,
            "step_index": self.step_index,
            "wellbeing_score": self.wellbeing_score,
            "sync_issue_reported": self.sync_issue_reported,
            "message_count": len(self.message_history),
        }
