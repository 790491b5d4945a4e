"""Triage service: composes the evaluators, check-in engine and alert store.

One ``TriageService`` instance is built per server (see
``cardiowatch.core.server.app``); there are no module-level singletons.
"""

from __future__ import annotations

import logging
import threading
import weakref
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from cardiowatch.domains.triage.domain_logic.alert_lifecycle import AlertLifecycleManager
from cardiowatch.domains.triage.domain_logic.checkin_flow import CheckInFlowEngine, FlowTurn
from cardiowatch.domains.triage.domain_logic.guidance import Guidance, recommend, wellbeing_level
from cardiowatch.domains.triage.domain_logic.models import (
    Alert,
    FlowState,
    MetricAlert,
    TriageLevel,
    TriageStats,
    TrendResult,
    WearableReading,
)
from cardiowatch.domains.triage.domain_logic.thresholds import ThresholdRegistry, check_thresholds
from cardiowatch.domains.triage.domain_logic.trend_analyzer import TrendAnalyzer, trend_alert

logger = logging.getLogger(__name__)


@dataclass
class Evaluation:
    """Result of evaluating a window of wearable readings for one patient."""

    patient_id: str
    trends: list[TrendResult] = field(default_factory=list)
    candidates: list[MetricAlert] = field(default_factory=list)
    alerts: list[Alert] = field(default_factory=list)
    triage_level: TriageLevel = TriageLevel.GREEN
    guidance: Guidance | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "patient_id": self.patient_id,
            "trends": [t.to_dict() for t in self.trends],
            "candidates": [c.to_dict() for c in self.candidates],
            "alerts": [a.to_dict() for a in self.alerts],
            "triage_level": self.triage_level.value,
            "guidance": self.guidance.to_dict() if self.guidance else None,
        }


def _coerce_readings(readings: Iterable[WearableReading | dict[str, Any]]) -> list[WearableReading]:
    parsed = [
        r if isinstance(r, WearableReading) else WearableReading.from_dict(r)
        for r in readings
    ]
    # Stable sort keeps same-day readings in submission order.
    parsed.sort(key=lambda r: r.timestamp)
    return parsed


class TriageService:
    """Single entry point for wearable evaluation, check-ins and alerts.

    Usage::

        service = TriageService(
            analyzer=TrendAnalyzer(7),
            engine=CheckInFlowEngine.from_file(),
            alerts=AlertLifecycleManager(audit_logger=audit),
        )
        evaluation = service.evaluate_readings("pt-001", readings)
    """

    def __init__(
        self,
        *,
        analyzer: TrendAnalyzer,
        engine: CheckInFlowEngine,
        alerts: AlertLifecycleManager,
        thresholds: ThresholdRegistry | None = None,
    ) -> None:
        self.analyzer = analyzer
        self.engine = engine
        self.alerts = alerts
        self.thresholds = thresholds or ThresholdRegistry()

        # One open check-in per patient; bounded by the monitored cohort.
        self._sessions: dict[str, FlowState] = {}
        # Held weakly: an entry lives only while some call holds the lock.
        self._session_locks: weakref.WeakValueDictionary[str, threading.Lock] = (
            weakref.WeakValueDictionary()
        )
        self._sessions_guard = threading.Lock()

    # ------------------------------------------------------------------
    # Wearable readings
    # ------------------------------------------------------------------

    def evaluate_readings(
        self,
        patient_id: str,
        readings: Sequence[WearableReading | dict[str, Any]],
        baseline_days: int | None = None,
    ) -> Evaluation:
        """Run trend and threshold evaluation and ingest every candidate.

        Trends use the whole window; thresholds apply to the latest
        reading only.

        Raises:
            ValueError: If a reading has no parseable date or
                ``baseline_days`` is below 1.
        """
        series = _coerce_readings(readings)
        evaluation = Evaluation(patient_id=patient_id)
        if not series:
            evaluation.triage_level = self.alerts.triage_level(patient_id)
            evaluation.guidance = recommend(evaluation.triage_level)
            return evaluation

        now = datetime.now(timezone.utc)
        evaluation.trends = self.analyzer.analyze_all(series, baseline_days)
        for result in evaluation.trends:
            candidate = trend_alert(result, detected_at=now)
            if candidate is not None:
                evaluation.candidates.append(candidate)

        evaluation.candidates.extend(
            check_thresholds(series[-1], self.thresholds.get(patient_id), detected_at=now)
        )

        seen: set[str] = set()
        for candidate in evaluation.candidates:
            alert = self.alerts.ingest(patient_id, candidate)
            if alert.id not in seen:
                seen.add(alert.id)
                evaluation.alerts.append(alert)

        evaluation.triage_level = self.alerts.triage_level(patient_id)
        evaluation.guidance = recommend(evaluation.triage_level)
        logger.info(
            "Evaluated %d readings for patient %s: %d trends, %d candidates, triage %s",
            len(series), patient_id, len(evaluation.trends),
            len(evaluation.candidates), evaluation.triage_level.value,
        )
        return evaluation

    def check_reading(
        self, patient_id: str, reading: WearableReading | dict[str, Any]
    ) -> list[MetricAlert]:
        """Threshold-check a single reading without touching the alert store."""
        if not isinstance(reading, WearableReading):
            reading = WearableReading.from_dict(reading)
        return check_thresholds(reading, self.thresholds.get(patient_id))

    # ------------------------------------------------------------------
    # Check-in sessions
    # ------------------------------------------------------------------

    def start_checkin(self, patient_id: str) -> FlowTurn:
        """Open (or restart) the patient's check-in at the greeting."""
        with self._session_lock(patient_id):
            turn = self.engine.start(patient_id)
            self._sessions[patient_id] = turn.state
            return turn

    def checkin_reply(self, patient_id: str, text: str) -> FlowTurn:
        """Apply a patient reply; a reply without an open session starts one first."""
        with self._session_lock(patient_id):
            state = self._sessions.get(patient_id)
            if state is None:
                state = self.engine.start(patient_id).state
                self._sessions[patient_id] = state
            turn = self.engine.reply(state, text)
            if turn.escalation is not None:
                self.alerts.ingest(patient_id, turn.escalation)
            return turn

    def reset_checkin(self, patient_id: str) -> FlowTurn:
        with self._session_lock(patient_id):
            state = self._sessions.get(patient_id)
            if state is None:
                turn = self.engine.start(patient_id)
            else:
                turn = self.engine.reset(state)
            self._sessions[patient_id] = turn.state
            return turn

    def checkin_state(self, patient_id: str) -> FlowState | None:
        with self._session_lock(patient_id):
            return self._sessions.get(patient_id)

    # ------------------------------------------------------------------
    # Summaries
    # ------------------------------------------------------------------

    def patient_summary(self, patient_id: str) -> dict[str, Any]:
        """Current triage, open alerts, guidance and check-in position."""
        level = self.alerts.triage_level(patient_id)
        state = self.checkin_state(patient_id)
        wellbeing = None
        if state is not None and state.wellbeing_score is not None:
            wellbeing = {
                "score": state.wellbeing_score,
                "level": wellbeing_level(state.wellbeing_score).value,
            }
        return {
            "patient_id": patient_id,
            "triage_level": level.value,
            "active_alerts": [a.to_dict() for a in self.alerts.active_alerts(patient_id)],
            "guidance": recommend(level).to_dict(),
            "checkin": state.to_dict() if state is not None else None,
            "wellbeing": wellbeing,
        }

    def fleet_stats(self, patient_ids: Iterable[str]) -> TriageStats:
        return self.alerts.stats(patient_ids)

    def _session_lock(self, patient_id: str) -> threading.Lock:
        with self._sessions_guard:
            lock = self._session_locks.get(patient_id)
            if lock is None:
                lock = self._session_locks[patient_id] = threading.Lock()
            return lock
