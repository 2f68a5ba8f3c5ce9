"""Server settings."""

from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Weather server settings.

    All settings can be configured via environment variables with the prefix
    WEATHER_MCP_. For example, WEATHER_MCP_PORT=8080 will set port=8080.
    """

    model_config = SettingsConfigDict(
        env_prefix="WEATHER_MCP_",
        env_file=".env",
        extra="ignore",
    )

    # Server settings
    debug: bool = False
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    server_name: str = "weather"
    server_version: str = "1.0.0"
    instructions: str | None = None

    # HTTP settings
    host: str = "127.0.0.1"
    port: int = 3000
    streamable_http_path: str = "/mcp"
    health_path: str = "/health"

    session_idle_timeout: float | None = None
    """Seconds of inactivity after which a session is closed. None disables expiry."""

    # National Weather Service settings
    nws_base_url: str = "https://api.weather.gov"
    nws_user_agent: str = "basic-mcp-weather-server/1.0.0"
    nws_timeout: float = 30.0
    max_alerts: int = 20
    max_forecast_periods: int = 8
