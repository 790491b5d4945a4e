"""MCP tools for wearable triage, daily check-ins and alert management.

Every tool returns a JSON string. Expected failures (unknown alert ids,
malformed readings, invalid threshold overrides, broken flow state) come
back as ``{"status": "error", ...}`` payloads; every invocation is written
to the audit trail with its patient id hashed.
"""

from __future__ import annotations

import json
import logging
import time
from typing import TYPE_CHECKING, Any

from fastmcp import Context, FastMCP

from cardiowatch.domains.triage.domain_logic.alert_lifecycle import AlertNotFoundError
from cardiowatch.domains.triage.domain_logic.checkin_flow import FlowStateError, FlowTurn
from cardiowatch.domains.triage.domain_logic.guidance import recommend
from cardiowatch.domains.triage.domain_logic.thresholds import ClinicalThresholds

if TYPE_CHECKING:
    from cardiowatch.core.audit.logger import AuditLogger
    from cardiowatch.domains.triage.domain_logic.triage_service import TriageService

logger = logging.getLogger(__name__)


def _error(exc: Exception, **extra: Any) -> str:
    return json.dumps({
        "status": "error",
        "error_type": type(exc).__name__,
        "message": str(exc),
        **extra,
    })


def _turn_payload(turn: FlowTurn) -> dict[str, Any]:
    return {"status": "ok", **turn.to_dict()}


def register_triage_tools(
    mcp: FastMCP,
    service: TriageService,
    audit_logger: AuditLogger | None = None,
) -> None:
    """Register triage tools on the MCP server."""

    def _audit(
        tool_name: str,
        tool_input: Any,
        start_time: float,
        *,
        patient_id: str | None = None,
        alert_id: str | None = None,
        exc: Exception | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        if audit_logger is None:
            return
        audit_logger.log_tool_call(
            tool_name=tool_name,
            tool_input=tool_input,
            patient_id=patient_id,
            alert_id=alert_id,
            duration_ms=(time.monotonic() - start_time) * 1000,
            status="failure" if exc is not None else "success",
            error_type=type(exc).__name__ if exc is not None else None,
            metadata=metadata,
        )

    # ------------------------------------------------------------------
    # Wearable evaluation
    # ------------------------------------------------------------------

    @mcp.tool
    async def evaluate_wearable_readings(
        ctx: Context,
        patient_id: str,
        readings: list[dict[str, Any]],
        baseline_days: int | None = None,
    ) -> str:
        """Evaluate a window of daily wearable readings for one patient.

        Scores the latest value of each metric against the baseline formed
        by the first ``baseline_days`` readings, checks the latest reading
        against the patient's clinical thresholds, and raises or updates
        alerts for anything concerning.

        Args:
            patient_id: Patient identifier.
            readings: Daily readings, e.g. ``{"date": "2026-01-08",
                "resting_heart_rate": 72, "hrv": 38, "sleep_hours": 7.1,
                "steps": 5400, "blood_oxygen": 97}``.
            baseline_days: Baseline window length (default from settings).
        """
        start_time = time.monotonic()
        tool_input = {"patient_id": patient_id, "readings": readings, "baseline_days": baseline_days}
        try:
            evaluation = service.evaluate_readings(patient_id, readings, baseline_days)
        except ValueError as exc:
            _audit("evaluate_wearable_readings", tool_input, start_time,
                   patient_id=patient_id, exc=exc)
            return _error(exc, patient_id=patient_id)

        _audit(
            "evaluate_wearable_readings", tool_input, start_time,
            patient_id=patient_id,
            metadata={
                "reading_count": len(readings),
                "candidate_count": len(evaluation.candidates),
                "triage_level": evaluation.triage_level.value,
            },
        )
        return json.dumps({"status": "ok", **evaluation.to_dict()}, indent=2)

    @mcp.tool
    async def check_reading_thresholds(
        ctx: Context,
        patient_id: str,
        reading: dict[str, Any],
    ) -> str:
        """Check a single reading against the patient's clinical thresholds.

        Does not raise alerts; use ``evaluate_wearable_readings`` for that.

        Args:
            patient_id: Patient identifier (selects any custom thresholds).
            reading: One daily reading.
        """
        start_time = time.monotonic()
        try:
            alerts = service.check_reading(patient_id, reading)
        except ValueError as exc:
            _audit("check_reading_thresholds", reading, start_time, patient_id=patient_id, exc=exc)
            return _error(exc, patient_id=patient_id)

        _audit("check_reading_thresholds", reading, start_time, patient_id=patient_id,
               metadata={"alert_count": len(alerts)})
        return json.dumps({
            "status": "ok",
            "patient_id": patient_id,
            "alerts": [a.to_dict() for a in alerts],
        })

    @mcp.tool
    async def set_patient_thresholds(
        ctx: Context,
        patient_id: str,
        thresholds: dict[str, dict[str, float | None]] | None = None,
        reset: bool = False,
    ) -> str:
        """Override clinical thresholds for one patient.

        Overrides are partial and layered on the defaults, e.g.
        ``{"resting_heart_rate": {"high": 95}}``.

        Args:
            patient_id: Patient identifier.
            thresholds: Per-metric band overrides.
            reset: Drop any override and return to the defaults.
        """
        start_time = time.monotonic()
        registry = service.thresholds
        if reset:
            cleared = registry.clear(patient_id)
            _audit("set_patient_thresholds", {"reset": True}, start_time, patient_id=patient_id)
            return json.dumps({
                "status": "reset",
                "patient_id": patient_id,
                "override_removed": cleared,
                "thresholds": registry.get(patient_id).to_dict(),
            })

        try:
            updated = ClinicalThresholds.from_dict(thresholds or {}, base=registry.get(patient_id))
        except (TypeError, ValueError) as exc:
            _audit("set_patient_thresholds", thresholds, start_time, patient_id=patient_id, exc=exc)
            return _error(exc, patient_id=patient_id)

        registry.set(patient_id, updated)
        _audit("set_patient_thresholds", thresholds, start_time, patient_id=patient_id)
        return json.dumps({
            "status": "saved",
            "patient_id": patient_id,
            "thresholds": updated.to_dict(),
        })

    @mcp.tool
    async def get_patient_thresholds(ctx: Context, patient_id: str) -> str:
        """Return the thresholds in effect for a patient."""
        start_time = time.monotonic()
        registry = service.thresholds
        _audit("get_patient_thresholds", {"patient_id": patient_id}, start_time, patient_id=patient_id)
        return json.dumps({
            "status": "ok",
            "patient_id": patient_id,
            "custom": registry.has_override(patient_id),
            "thresholds": registry.get(patient_id).to_dict(),
        })

    # ------------------------------------------------------------------
    # Check-in conversation
    # ------------------------------------------------------------------

    @mcp.tool
    async def start_checkin(ctx: Context, patient_id: str) -> str:
        """Start (or restart) a patient's daily check-in conversation."""
        start_time = time.monotonic()
        turn = service.start_checkin(patient_id)
        _audit("start_checkin", {"patient_id": patient_id}, start_time, patient_id=patient_id)
        return json.dumps(_turn_payload(turn), indent=2)

    @mcp.tool
    async def checkin_reply(ctx: Context, patient_id: str, message: str) -> str:
        """Send the patient's reply to the current check-in step.

        A reply that matches an offered option (by label or id) selects it;
        anything else is recorded as free text and the step is repeated.

        Args:
            patient_id: Patient identifier.
            message: Option label/id or free text.
        """
        start_time = time.monotonic()
        tool_input = {"patient_id": patient_id, "message": message}
        try:
            turn = service.checkin_reply(patient_id, message)
        except (ValueError, FlowStateError) as exc:
            _audit("checkin_reply", tool_input, start_time, patient_id=patient_id, exc=exc)
            return _error(exc, patient_id=patient_id)

        payload = _turn_payload(turn)
        payload["triage_level"] = service.alerts.triage_level(patient_id).value
        _audit(
            "checkin_reply", tool_input, start_time, patient_id=patient_id,
            metadata={
                "flow_type": turn.state.flow_type.value,
                "step_index": turn.state.step_index,
                "escalated": turn.escalation is not None,
            },
        )
        return json.dumps(payload, indent=2)

    @mcp.tool
    async def reset_checkin(ctx: Context, patient_id: str) -> str:
        """Reset a patient's check-in to the greeting, clearing its history."""
        start_time = time.monotonic()
        turn = service.reset_checkin(patient_id)
        _audit("reset_checkin", {"patient_id": patient_id}, start_time, patient_id=patient_id)
        return json.dumps(_turn_payload(turn), indent=2)

    # ------------------------------------------------------------------
    # Alerts & triage
    # ------------------------------------------------------------------

    @mcp.tool
    async def list_patient_alerts(
        ctx: Context,
        patient_id: str,
        include_resolved: bool = False,
    ) -> str:
        """List a patient's alerts, newest first.

        Args:
            patient_id: Patient identifier.
            include_resolved: Include resolved alerts in the listing.
        """
        start_time = time.monotonic()
        alerts = service.alerts.alerts(patient_id, include_resolved=include_resolved)
        _audit("list_patient_alerts", {"patient_id": patient_id}, start_time, patient_id=patient_id)
        return json.dumps({
            "status": "ok",
            "patient_id": patient_id,
            "count": len(alerts),
            "alerts": [a.to_dict() for a in alerts],
        }, indent=2)

    @mcp.tool
    async def resolve_alert(
        ctx: Context,
        alert_id: str,
        resolved_by: str,
        notes: str = "",
    ) -> str:
        """Mark an alert resolved. Resolving twice is harmless.

        Args:
            alert_id: Alert UUID.
            resolved_by: Clinician resolving the alert.
            notes: Optional resolution notes.
        """
        start_time = time.monotonic()
        try:
            alert = service.alerts.resolve(alert_id, resolved_by, notes)
        except AlertNotFoundError as exc:
            _audit("resolve_alert", {"alert_id": alert_id}, start_time, alert_id=alert_id, exc=exc)
            return _error(exc, alert_id=alert_id)

        level = service.alerts.triage_level(alert.patient_id)
        _audit("resolve_alert", {"alert_id": alert_id}, start_time,
               patient_id=alert.patient_id, alert_id=alert_id)
        return json.dumps({
            "status": "resolved",
            "alert": alert.to_dict(),
            "patient_triage_level": level.value,
        })

    @mcp.tool
    async def unresolve_alert(ctx: Context, alert_id: str) -> str:
        """Reopen a resolved alert. Reopening an open alert is harmless."""
        start_time = time.monotonic()
        try:
            alert = service.alerts.unresolve(alert_id)
        except AlertNotFoundError as exc:
            _audit("unresolve_alert", {"alert_id": alert_id}, start_time, alert_id=alert_id, exc=exc)
            return _error(exc, alert_id=alert_id)

        level = service.alerts.triage_level(alert.patient_id)
        _audit("unresolve_alert", {"alert_id": alert_id}, start_time,
               patient_id=alert.patient_id, alert_id=alert_id)
        return json.dumps({
            "status": "reopened",
            "alert": alert.to_dict(),
            "patient_triage_level": level.value,
        })

    @mcp.tool
    async def patient_triage(ctx: Context, patient_id: str) -> str:
        """Current triage level, open alerts and next-step guidance for a patient."""
        start_time = time.monotonic()
        summary = service.patient_summary(patient_id)
        _audit("patient_triage", {"patient_id": patient_id}, start_time, patient_id=patient_id)
        return json.dumps({"status": "ok", **summary}, indent=2)

    @mcp.tool
    async def triage_stats(ctx: Context, patient_ids: list[str]) -> str:
        """Count patients per triage level (red / amber / green).

        Args:
            patient_ids: The patient cohort to summarize.
        """
        start_time = time.monotonic()
        stats = service.fleet_stats(patient_ids)
        _audit("triage_stats", {"patient_ids": patient_ids}, start_time,
               metadata={"patient_count": stats.total})
        return json.dumps({"status": "ok", **stats.to_dict()})

    @mcp.tool
    async def alert_stats(ctx: Context) -> str:
        """Totals across all alerts: overall, unresolved, open red and amber."""
        start_time = time.monotonic()
        stats = service.alerts.alert_stats()
        _audit("alert_stats", None, start_time)
        return json.dumps({"status": "ok", **stats.to_dict()})

    @mcp.tool
    async def triage_guidance(ctx: Context, level: str) -> str:
        """Return the fixed clinician guidance for a triage level (red, amber, green)."""
        try:
            guidance = recommend(level)
        except ValueError as exc:
            return _error(exc)
        return json.dumps({"status": "ok", **guidance.to_dict()})
