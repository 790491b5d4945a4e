"""Application settings loaded from environment variables."""

from __future__ import annotations

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """CardioWatch triage server configuration."""

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}

    # Server
    # Default to loopback so a patient-data MCP server is never exposed to
    # the LAN/WAN by accident. Opt into `0.0.0.0` explicitly.
    cardiowatch_host: str = "127.0.0.1"
    cardiowatch_port: int = 8001
    cardiowatch_log_level: str = "info"
    # Refuse non-loopback binds unless this is set (there is no auth layer).
    cardiowatch_allow_insecure_bind: bool = False

    # Audit trail (":memory:" keeps it in-process)
    audit_db_path: str = "~/.cardiowatch/audit.db"

    # Triage
    baseline_days: int = 7
    clinician_name: str = "Dr. X"
    # Empty means the packaged flows/checkin.yaml
    flow_definitions_path: str = ""


def get_settings() -> Settings:
    """Create and return a Settings instance."""
    return Settings()
