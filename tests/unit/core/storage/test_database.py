"""Tests for TriageDatabase: connection lifecycle and schema."""

from __future__ import annotations

import pytest

from cardiowatch.core.storage.database import SCHEMA_VERSION, DatabaseError, TriageDatabase


class TestLifecycle:
    def test_connection_before_initialize_raises(self):
        db = TriageDatabase(":memory:")
        with pytest.raises(DatabaseError):
            _ = db.connection

    def test_initialize_is_idempotent(self, triage_db):
        conn = triage_db.connection
        triage_db.initialize()
        assert triage_db.connection is conn

    def test_close(self):
        db = TriageDatabase(":memory:")
        db.initialize()
        db.close()
        with pytest.raises(DatabaseError):
            _ = db.connection

    def test_context_manager(self):
        with TriageDatabase(":memory:") as db:
            assert db.get_schema_version() == SCHEMA_VERSION
        with pytest.raises(DatabaseError):
            _ = db.connection

    def test_file_database_creates_parent(self, tmp_path):
        path = tmp_path / "nested" / "audit.db"
        with TriageDatabase(str(path)) as db:
            assert db.get_schema_version() == SCHEMA_VERSION
        assert path.exists()

    def test_reopen_keeps_single_version_row(self, tmp_path):
        path = str(tmp_path / "audit.db")
        with TriageDatabase(path):
            pass
        with TriageDatabase(path) as db:
            rows = db.connection.execute("SELECT COUNT(*) FROM schema_version").fetchone()
            assert rows[0] == 1


class TestSchema:
    def test_audit_log_columns(self, triage_db):
        columns = {
            row["name"] for row in triage_db.connection.execute("PRAGMA table_info(audit_log)")
        }
        assert {
            "id", "timestamp", "action", "tool_name", "tool_input_hash",
            "patient_hash", "alert_id", "alert_type", "duration_ms",
            "status", "error_type", "metadata_json",
        } <= columns
