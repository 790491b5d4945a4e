"""Audit logger: PHI-free trail of alert lifecycle events and tool calls.

Every alert creation, update, resolution and reopening is recorded, as is
every MCP tool invocation. No raw patient data enters the log:

* ``tool_input_hash``: SHA-256 of canonical JSON of the tool input.
* ``patient_hash``: SHA-256 of the patient id.
* ``alert_id`` / ``alert_type``: opaque identifiers and red/amber only.
"""

from __future__ import annotations

import hashlib
import json
import logging
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from cardiowatch.core.storage.database import TriageDatabase

logger = logging.getLogger(__name__)


ALERT_ACTIONS = frozenset({
    "alert_created",
    "alert_updated",
    "alert_resolved",
    "alert_unresolved",
})


# ---------------------------------------------------------------------------
# Hashing
# ---------------------------------------------------------------------------

def _hash_input(data: Any) -> str:
    """SHA-256 hash of canonical JSON; no PHI stored in audit logs.

    Args:
        data: Value to hash. Must be JSON-serializable.

    Returns:
        Hex-encoded SHA-256 digest, or empty string on failure.
    """
    try:
        canonical = json.dumps(data, sort_keys=True, separators=(",", ":"))
        return hashlib.sha256(canonical.encode()).hexdigest()
    except (TypeError, ValueError):
        return ""


def hash_patient_id(patient_id: str) -> str:
    return hashlib.sha256(patient_id.encode()).hexdigest()


# ---------------------------------------------------------------------------
# AuditEvent dataclass
# ---------------------------------------------------------------------------

@dataclass
class AuditEvent:
    """A single audit log entry."""

    action: str                          # 'tool_invocation' | 'alert_created' | ...
    tool_name: str = ""
    tool_input_hash: str = ""
    patient_hash: str | None = None
    alert_id: str | None = None
    alert_type: str | None = None        # 'red' | 'amber'
    duration_ms: float | None = None
    status: str = "success"              # 'success' | 'failure'
    error_type: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


# ---------------------------------------------------------------------------
# AuditLogger
# ---------------------------------------------------------------------------

class AuditLogger:
    """Records audit events to the ``audit_log`` SQLite table.

    Writes are serialized with a lock and committed immediately so no audit
    entry is lost on crash. A failed write is logged and never raised to
    the caller.

    Usage::

        audit = AuditLogger(triage_db)
        audit.log_alert_event("alert_created", patient_id="pt-001",
                              alert_id=alert.id, alert_type="red")
    """

    def __init__(self, database: TriageDatabase) -> None:
        self._db = database
        self._lock = threading.Lock()

    # ---------------------------------------------------------------
    # Write
    # ---------------------------------------------------------------

    def log_event(self, event: AuditEvent) -> str:
        """Insert an audit event and return its UUID.

        Returns:
            The generated event ID, or an empty string if the write failed.
        """
        event_id = str(uuid.uuid4())
        now = datetime.now(timezone.utc).isoformat()

        metadata_json = (
            json.dumps(event.metadata, separators=(",", ":"), default=str)
            if event.metadata
            else None
        )

        try:
            with self._lock:
                conn = self._db.connection
                conn.execute(
                    """INSERT INTO audit_log
                       (id, timestamp, action, tool_name, tool_input_hash,
                        patient_hash, alert_id, alert_type,
                        duration_ms, status, error_type, metadata_json)
                       VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                    (
                        event_id,
                        now,
                        event.action,
                        event.tool_name or None,
                        event.tool_input_hash or None,
                        event.patient_hash,
                        event.alert_id,
                        event.alert_type,
                        event.duration_ms,
                        event.status,
                        event.error_type,
                        metadata_json,
                    ),
                )
                conn.commit()
        except Exception:
            logger.exception("Failed to write audit event %s, event lost", event.action)
            return ""

        return event_id

    def log_alert_event(
        self,
        action: str,
        *,
        patient_id: str,
        alert_id: str,
        alert_type: str,
        metadata: dict[str, Any] | None = None,
    ) -> str:
        """Log an alert lifecycle transition.

        Args:
            action: One of ``ALERT_ACTIONS``.
            patient_id: Patient the alert belongs to (stored hashed).
            alert_id: Alert UUID.
            alert_type: 'red' or 'amber'.
            metadata: Additional non-PHI context (cause key, occurrences).

        Raises:
            ValueError: For an action outside ``ALERT_ACTIONS``.
        """
        if action not in ALERT_ACTIONS:
            raise ValueError(f"Unknown alert audit action: {action!r}")
        return self.log_event(AuditEvent(
            action=action,
            patient_hash=hash_patient_id(patient_id),
            alert_id=alert_id,
            alert_type=alert_type,
            metadata=metadata or {},
        ))

    def log_tool_call(
        self,
        tool_name: str,
        tool_input: Any = None,
        *,
        patient_id: str | None = None,
        alert_id: str | None = None,
        duration_ms: float | None = None,
        status: str = "success",
        error_type: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> str:
        """Convenience wrapper for logging a tool invocation.

        Args:
            tool_name: Name of the MCP tool.
            tool_input: Tool input data (hashed, never stored raw).
            patient_id: Patient the call concerned (stored hashed).
            alert_id: Alert the call concerned, if any.
            duration_ms: Tool execution duration in milliseconds.
            status: 'success' or 'failure'.
            error_type: Exception class name on failure.
            metadata: Additional non-PHI metadata.

        Returns:
            The generated event ID.
        """
        return self.log_event(AuditEvent(
            action="tool_invocation",
            tool_name=tool_name,
            tool_input_hash=_hash_input(tool_input) if tool_input else "",
            patient_hash=hash_patient_id(patient_id) if patient_id else None,
            alert_id=alert_id,
            duration_ms=duration_ms,
            status=status,
            error_type=error_type,
            metadata=metadata or {},
        ))

    # ---------------------------------------------------------------
    # Read
    # ---------------------------------------------------------------

    def get_events(
        self,
        *,
        action: str | None = None,
        tool_name: str | None = None,
        alert_id: str | None = None,
        since: str | None = None,
        limit: int = 50,
    ) -> list[dict[str, Any]]:
        """Query audit events with optional filters.

        Args:
            action: Filter by action type.
            tool_name: Filter by tool name.
            alert_id: Filter by alert.
            since: ISO 8601 timestamp lower bound.
            limit: Maximum events to return.

        Returns:
            List of event dicts, newest first.
        """
        conditions: list[str] = []
        params: list[Any] = []

        if action:
            conditions.append("action = ?")
            params.append(action)
        if tool_name:
            conditions.append("tool_name = ?")
            params.append(tool_name)
        if alert_id:
            conditions.append("alert_id = ?")
            params.append(alert_id)
        if since:
            conditions.append("timestamp >= ?")
            params.append(since)

        where = (" WHERE " + " AND ".join(conditions)) if conditions else ""
        query = f"SELECT * FROM audit_log{where} ORDER BY timestamp DESC, rowid DESC LIMIT ?"
        params.append(limit)

        with self._lock:
            rows = self._db.connection.execute(query, params).fetchall()
        return [dict(row) for row in rows]

    def count_events(self, *, action: str | None = None, since: str | None = None) -> int:
        """Count audit events, optionally by action and since a timestamp."""
        conditions: list[str] = []
        params: list[Any] = []
        if action:
            conditions.append("action = ?")
            params.append(action)
        if since:
            conditions.append("timestamp >= ?")
            params.append(since)
        where = (" WHERE " + " AND ".join(conditions)) if conditions else ""
        with self._lock:
            row = self._db.connection.execute(
                f"SELECT COUNT(*) FROM audit_log{where}", params
            ).fetchone()
        return row[0]
