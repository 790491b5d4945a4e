"""CardioWatch server entry point: ``python -m cardiowatch.core.server.main``."""

from __future__ import annotations

import logging
from ipaddress import ip_address

from cardiowatch.core.config.settings import get_settings
from cardiowatch.core.server.app import create_app


def _is_loopback_host(host: str) -> bool:
    if host in {"localhost"}:
        return True
    try:
        return ip_address(host).is_loopback
    except ValueError:
        return False


def run() -> None:
    """Start the CardioWatch MCP server with Streamable HTTP transport."""
    settings = get_settings()
    logging.basicConfig(
        level=getattr(logging, settings.cardiowatch_log_level.upper(), logging.INFO)
    )

    logger = logging.getLogger(__name__)
    if not settings.cardiowatch_allow_insecure_bind and not _is_loopback_host(settings.cardiowatch_host):
        raise RuntimeError(
            "Refusing to bind CardioWatch server to a non-loopback host without an auth layer. "
            "Set CARDIOWATCH_ALLOW_INSECURE_BIND=true to override (unsafe)."
        )
    logger.info(
        "Starting CardioWatch triage server on %s:%d",
        settings.cardiowatch_host,
        settings.cardiowatch_port,
    )

    mcp = create_app()
    mcp.run(
        transport="streamable-http",
        host=settings.cardiowatch_host,
        port=settings.cardiowatch_port,
    )


if __name__ == "__main__":
    run()
