"""Shared test fixtures for CardioWatch triage tests."""

from __future__ import annotations

import sys
from datetime import date, datetime, timedelta, timezone
from pathlib import Path

import pytest

# ---------------------------------------------------------------------------
# Test hermeticity
# ---------------------------------------------------------------------------

@pytest.fixture(autouse=True)
def _force_hermetic_test_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("AUDIT_DB_PATH", ":memory:")
    monkeypatch.setenv("BASELINE_DAYS", "7")
    monkeypatch.setenv("CLINICIAN_NAME", "Dr. X")
    monkeypatch.setenv("FLOW_DEFINITIONS_PATH", "")

# Allow running tests without `pip install -e .` by making `src/` importable.
_PROJECT_ROOT = Path(__file__).resolve().parent.parent
_SRC_DIR = _PROJECT_ROOT / "src"
if str(_SRC_DIR) not in sys.path:
    sys.path.insert(0, str(_SRC_DIR))

from cardiowatch.domains.triage.domain_logic.models import WearableReading  # noqa: E402

FIXED_NOW = datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)


def make_series(
    metric_field: str,
    values: list[float | None],
    start: date = date(2026, 2, 1),
    **fixed: float,
) -> list[WearableReading]:
    """Build consecutive daily readings with ``metric_field`` taking ``values``.

    Other fields are held at ``fixed`` values (None when not given).
    """
    return [
        WearableReading(timestamp=start + timedelta(days=i), **{metric_field: v, **fixed})
        for i, v in enumerate(values)
    ]


# ---------------------------------------------------------------------------
# In-memory storage fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def triage_db():
    """Create an in-memory TriageDatabase for testing."""
    from cardiowatch.core.storage.database import TriageDatabase

    db = TriageDatabase(":memory:")
    db.initialize()
    yield db
    db.close()


@pytest.fixture
def audit_logger(triage_db):
    """Create an AuditLogger backed by in-memory SQLite."""
    from cardiowatch.core.audit.logger import AuditLogger

    return AuditLogger(triage_db)


# ---------------------------------------------------------------------------
# Domain fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def flow_definitions():
    """The packaged check-in flow definitions."""
    from cardiowatch.domains.triage.domain_logic.flow_loader import load_flow_file

    return load_flow_file(clinician_name="Dr. Patel")


@pytest.fixture
def flow_engine(flow_definitions):
    from cardiowatch.domains.triage.domain_logic.checkin_flow import CheckInFlowEngine

    return CheckInFlowEngine(flow_definitions, clock=lambda: FIXED_NOW)


@pytest.fixture
def alert_manager(audit_logger):
    from cardiowatch.domains.triage.domain_logic.alert_lifecycle import AlertLifecycleManager

    return AlertLifecycleManager(audit_logger=audit_logger, clock=lambda: FIXED_NOW)


@pytest.fixture
def triage_service(flow_engine, alert_manager):
    from cardiowatch.domains.triage.domain_logic.thresholds import ThresholdRegistry
    from cardiowatch.domains.triage.domain_logic.trend_analyzer import TrendAnalyzer
    from cardiowatch.domains.triage.domain_logic.triage_service import TriageService

    return TriageService(
        analyzer=TrendAnalyzer(7),
        engine=flow_engine,
        alerts=alert_manager,
        thresholds=ThresholdRegistry(),
    )
