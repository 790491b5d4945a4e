"""Alert lifecycle manager: identity, deduplication and resolution of alerts.

Candidates (``MetricAlert`` from the wearable evaluators, ``FlowEscalation``
from the check-in) are keyed by ``(patient_id, cause_key)``. While an alert
for a key is unresolved, further candidates for the same key update it in
place instead of stacking duplicates. Once resolved, the next candidate
opens a fresh alert.

Alerts are never deleted. A patient's triage level is always computed from
the current unresolved alerts, never stored.
"""

from __future__ import annotations

import logging
import threading
import uuid
from collections.abc import Callable, Iterable
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Union

from cardiowatch.domains.triage.domain_logic.models import (
    Alert,
    AlertStats,
    FlowEscalation,
    MetricAlert,
    TriageLevel,
    TriageStats,
    most_urgent,
)

if TYPE_CHECKING:
    from cardiowatch.core.audit.logger import AuditLogger

logger = logging.getLogger(__name__)

Candidate = Union[MetricAlert, FlowEscalation]


class AlertNotFoundError(Exception):
    """Raised when an alert id is not known to the manager."""


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _headline(candidate: Candidate) -> str:
    if isinstance(candidate, MetricAlert):
        return candidate.message
    return candidate.headline


def _description(candidate: Candidate) -> str:
    if isinstance(candidate, MetricAlert):
        return (
            f"{candidate.source.value.capitalize()} alert on "
            f"{candidate.metric.display_name.lower()}: {candidate.message} "
            f"(threshold {candidate.threshold_value:g})"
        )
    return candidate.description


class AlertLifecycleManager:
    """In-memory store of clinical alerts with lifecycle rules.

    All mutations run under one re-entrant lock so two concurrent ingests
    for the same cause can never both create an alert.

    Usage::

        manager = AlertLifecycleManager(audit_logger=audit)
        alert = manager.ingest("pt-001", metric_alert)
        manager.resolve(alert.id, resolved_by="Dr. X", notes="Reviewed")
        manager.triage_level("pt-001")  # TriageLevel.GREEN
    """

    def __init__(
        self,
        audit_logger: AuditLogger | None = None,
        *,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._audit = audit_logger
        self._clock = clock
        self._lock = threading.RLock()
        self._alerts: dict[str, Alert] = {}  # insertion order = creation order
        self._active: dict[tuple[str, str], str] = {}  # (patient_id, cause_key) -> alert id

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def ingest(self, patient_id: str, candidate: Candidate) -> Alert:
        """Create or update the alert for ``candidate``'s cause.

        An update refreshes the headline, description, observed values and
        timestamp, bumps ``occurrences`` and escalates amber to red. The
        type is never downgraded while the alert stays open.

        Returns:
            The created or updated alert.
        """
        level = candidate.triage_level
        if level is TriageLevel.GREEN:
            raise ValueError("Green candidates do not produce alerts")

        actual = getattr(candidate, "actual_value", None)
        threshold = getattr(candidate, "threshold_value", None)
        key = (patient_id, candidate.cause_key)

        with self._lock:
            existing_id = self._active.get(key)
            if existing_id is not None:
                alert = self._alerts[existing_id]
                previous_type = alert.type
                alert.headline = _headline(candidate)
                alert.description = _description(candidate)
                alert.last_observed_at = candidate.detected_at
                alert.actual_value = actual
                alert.threshold_value = threshold
                alert.occurrences += 1
                if level.priority < alert.type.priority:
                    alert.type = level
                logger.info(
                    "Alert %s updated (%s, occurrence %d)",
                    alert.id, alert.cause_key, alert.occurrences,
                )
                self._audit_event("alert_updated", alert, {
                    "occurrences": alert.occurrences,
                    "escalated": alert.type is not previous_type,
                })
                return alert

            alert = Alert(
                id=str(uuid.uuid4()),
                patient_id=patient_id,
                type=level,
                headline=_headline(candidate),
                description=_description(candidate),
                created_at=self._clock(),
                cause_key=candidate.cause_key,
                last_observed_at=candidate.detected_at,
                actual_value=actual,
                threshold_value=threshold,
            )
            self._alerts[alert.id] = alert
            self._active[key] = alert.id
            logger.info(
                "Alert %s created: %s %s", alert.id, alert.type.value, alert.cause_key
            )
            self._audit_event("alert_created", alert)
            return alert

    def resolve(self, alert_id: str, resolved_by: str, notes: str = "") -> Alert:
        """Mark an alert resolved. Resolving a resolved alert is a no-op.

        Raises:
            AlertNotFoundError: If ``alert_id`` is unknown.
        """
        with self._lock:
            alert = self._require(alert_id)
            if alert.resolved:
                return alert

            alert.resolved = True
            alert.resolved_at = self._clock()
            alert.resolved_by = resolved_by
            alert.resolution_notes = notes or None

            key = (alert.patient_id, alert.cause_key)
            if self._active.get(key) == alert.id:
                del self._active[key]

            logger.info("Alert %s resolved by %s", alert.id, resolved_by)
            self._audit_event("alert_resolved", alert)
            return alert

    def unresolve(self, alert_id: str) -> Alert:
        """Reopen a resolved alert. Reopening an open alert is a no-op.

        If a newer alert already holds the same cause, the newer one keeps
        receiving updates; the reopened alert still counts toward triage.

        Raises:
            AlertNotFoundError: If ``alert_id`` is unknown.
        """
        with self._lock:
            alert = self._require(alert_id)
            if not alert.resolved:
                return alert

            alert.resolved = False
            alert.resolved_at = None
            alert.resolved_by = None
            alert.resolution_notes = None
            self._active.setdefault((alert.patient_id, alert.cause_key), alert.id)

            logger.info("Alert %s reopened", alert.id)
            self._audit_event("alert_unresolved", alert)
            return alert

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get(self, alert_id: str) -> Alert:
        with self._lock:
            return self._require(alert_id)

    def alerts(self, patient_id: str | None = None, *, include_resolved: bool = False) -> list[Alert]:
        """Alerts newest first, optionally limited to one patient."""
        with self._lock:
            selected = [
                a for a in self._alerts.values()
                if (patient_id is None or a.patient_id == patient_id)
                and (include_resolved or not a.resolved)
            ]
        selected.reverse()
        return selected

    def active_alerts(self, patient_id: str | None = None) -> list[Alert]:
        return self.alerts(patient_id)

    def resolved_alerts(self, patient_id: str | None = None) -> list[Alert]:
        return [a for a in self.alerts(patient_id, include_resolved=True) if a.resolved]

    def triage_level(self, patient_id: str) -> TriageLevel:
        """Most urgent type among the patient's unresolved alerts, else green."""
        return most_urgent(a.type for a in self.active_alerts(patient_id))

    def stats(self, patient_ids: Iterable[str]) -> TriageStats:
        """Count patients per triage level."""
        counts = {level: 0 for level in TriageLevel}
        total = 0
        for patient_id in dict.fromkeys(patient_ids):
            counts[self.triage_level(patient_id)] += 1
            total += 1
        return TriageStats(
            red=counts[TriageLevel.RED],
            amber=counts[TriageLevel.AMBER],
            green=counts[TriageLevel.GREEN],
            total=total,
        )

    def alert_stats(self) -> AlertStats:
        """Totals across every patient: all alerts, unresolved, and open red/amber."""
        with self._lock:
            alerts = list(self._alerts.values())
        open_alerts = [a for a in alerts if not a.resolved]
        return AlertStats(
            total=len(alerts),
            unresolved=len(open_alerts),
            red=sum(1 for a in open_alerts if a.type is TriageLevel.RED),
            amber=sum(1 for a in open_alerts if a.type is TriageLevel.AMBER),
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _require(self, alert_id: str) -> Alert:
        alert = self._alerts.get(alert_id)
        if alert is None:
            raise AlertNotFoundError(f"Alert not found: {alert_id}")
        return alert

    def _audit_event(self, action: str, alert: Alert, metadata: dict | None = None) -> None:
        if self._audit is None:
            return
        self._audit.log_alert_event(
            action,
            patient_id=alert.patient_id,
            alert_id=alert.id,
            alert_type=alert.type.value,
            metadata={"cause_key": alert.cause_key, **(metadata or {})},
        )
