"""Command line entry point for the weather server."""

import logging
import sys

import click

from weather_mcp.server.app import WeatherServer
from weather_mcp.settings import Settings
from weather_mcp.utilities.logging import configure_logging

logger = logging.getLogger(__name__)


@click.command()
@click.option(
    "--transport",
    type=click.Choice(["stdio", "streamable-http"]),
    default="streamable-http",
    help="Transport to serve the protocol on",
)
@click.option("--host", default=None, help="Host to bind for HTTP (default from WEATHER_MCP_HOST)")
@click.option("--port", type=int, default=None, help="Port to listen on for HTTP (default from WEATHER_MCP_PORT)")
@click.option(
    "--log-level",
    default=None,
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"], case_sensitive=False),
    help="Logging level",
)
@click.option(
    "--session-idle-timeout",
    type=float,
    default=None,
    help="Close sessions idle for this many seconds (default: never)",
)
def main(
    transport: str,
    host: str | None,
    port: int | None,
    log_level: str | None,
    session_idle_timeout: float | None,
) -> int:
    overrides = {
        "host": host,
        "port": port,
        "log_level": log_level.upper() if log_level else None,
        "session_idle_timeout": session_idle_timeout,
    }
    settings = Settings(**{key: value for key, value in overrides.items() if value is not None})
    configure_logging(settings.log_level)

    server = WeatherServer(settings)
    try:
        server.run(transport)  # type: ignore[arg-type]
    except KeyboardInterrupt:
        logger.info("Weather server stopped")
    except Exception:
        logger.exception("Fatal server error")
        sys.exit(1)
    return 0
