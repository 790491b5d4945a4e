"""CardioWatch Triage MCP Server: application factory.

This module provides:
- create_app() for testability (integration tests create fresh server instances)
- Module-level `mcp` variable for FastMCP discovery
"""

from __future__ import annotations

import logging

from fastmcp import FastMCP

from cardiowatch.core.audit.logger import AuditLogger
from cardiowatch.core.config.settings import get_settings
from cardiowatch.core.storage.database import TriageDatabase
from cardiowatch.domains.triage.domain_logic.alert_lifecycle import AlertLifecycleManager
from cardiowatch.domains.triage.domain_logic.checkin_flow import CheckInFlowEngine
from cardiowatch.domains.triage.domain_logic.flow_loader import DEFAULT_FLOW_FILE, load_flow_file
from cardiowatch.domains.triage.domain_logic.thresholds import ThresholdRegistry
from cardiowatch.domains.triage.domain_logic.trend_analyzer import TrendAnalyzer
from cardiowatch.domains.triage.domain_logic.triage_service import TriageService
from cardiowatch.domains.triage.tools.triage_tools import register_triage_tools

logger = logging.getLogger(__name__)

SERVER_NAME = "CardioWatch Triage"
SERVER_VERSION = "0.1.0"


def create_app(
    *,
    database_override: TriageDatabase | None = None,
    service_override: TriageService | None = None,
) -> FastMCP:
    """Create and configure the CardioWatch triage MCP server.

    This is the main application factory. It:
    1. Creates the FastMCP server instance
    2. Opens the audit database and logger
    3. Loads the check-in flow definitions
    4. Builds the triage service (trend analyzer, thresholds, alerts)
    5. Registers all tools
    """
    settings = get_settings()

    # --- Server instance ---
    server = FastMCP(
        SERVER_NAME,
        instructions=(
            "Post-discharge cardiac monitoring. Evaluates wearable readings "
            "against patient baselines and clinical thresholds, runs the daily "
            "patient check-in conversation, and manages red/amber clinical "
            "alerts and green/amber/red patient triage."
        ),
    )

    # --- Audit trail ---
    if database_override is not None:
        database = database_override
    else:
        database = TriageDatabase(settings.audit_db_path)
    database.initialize()
    audit_logger = AuditLogger(database)
    logger.info("Audit trail initialized: %s", settings.audit_db_path)

    # --- Triage service ---
    if service_override is not None:
        service = service_override
    else:
        flow_path = settings.flow_definitions_path or DEFAULT_FLOW_FILE
        definitions = load_flow_file(flow_path, clinician_name=settings.clinician_name)
        service = TriageService(
            analyzer=TrendAnalyzer(settings.baseline_days),
            engine=CheckInFlowEngine(definitions),
            alerts=AlertLifecycleManager(audit_logger=audit_logger),
            thresholds=ThresholdRegistry(),
        )

    # --- Register tools ---
    @server.tool
    def health_check() -> dict:
        """Check server health and return basic status information."""
        definitions = service.engine.definitions
        return {
            "status": "ok",
            "server": SERVER_NAME,
            "version": SERVER_VERSION,
            "baseline_days": service.analyzer.baseline_days,
            "flow_definitions_version": definitions.version,
            "flows_loaded": len(definitions.flows),
            "audit_events": audit_logger.count_events(),
        }

    register_triage_tools(server, service, audit_logger)
    logger.info("Triage tools registered")

    return server


# Module-level instance for FastMCP discovery ("...app.py:mcp").
# Lazy: only created when this module is loaded directly (not when tests import create_app).
def __getattr__(name: str):
    if name == "mcp":
        global mcp  # noqa: PLW0603
        mcp = create_app()
        return mcp
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
