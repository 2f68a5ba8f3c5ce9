"""Client for the National Weather Service API."""

from typing import Any

import httpx

from weather_mcp.exceptions import DataFetchError
from weather_mcp.utilities.logging import get_logger

logger = get_logger(__name__)

NWS_API_BASE = "https://api.weather.gov"
USER_AGENT = "basic-mcp-weather-server/1.0.0"


def create_nws_http_client(
    base_url: str = NWS_API_BASE,
    user_agent: str = USER_AGENT,
    timeout: float = 30.0,
    **kwargs: Any,
) -> httpx.AsyncClient:
    """Create an httpx AsyncClient configured for the NWS API.

    Redirects are followed and every request carries the User-Agent NWS
    requires. Any keyword argument accepted by httpx.AsyncClient overrides the
    defaults, e.g. ``transport`` for tests.

    The returned client must be closed (or used as a context manager).
    """
    default_kwargs: dict[str, Any] = {
        "base_url": base_url,
        "follow_redirects": True,
        "timeout": httpx.Timeout(timeout),
        "headers": {"User-Agent": user_agent, "Accept": "application/geo+json"},
    }
    default_kwargs.update(kwargs)
    return httpx.AsyncClient(**default_kwargs)


def format_coordinate(value: float) -> str:
    """Render a coordinate the way NWS point URLs expect: 37.0 becomes 37."""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


class NWSClient:
    """Fetches alerts and forecasts. Every failure surfaces as DataFetchError."""

    def __init__(self, http_client: httpx.AsyncClient):
        self.http_client = http_client

    async def get_json(self, url: str) -> dict[str, Any]:
        try:
            response = await self.http_client.get(url)
        except httpx.HTTPError as e:
            raise DataFetchError(f"NWS request failed for {url}: {e!r}") from e

        if not response.is_success:
            raise DataFetchError(f"NWS request failed with status {response.status_code} for {url}")
        try:
            data = response.json()
        except ValueError as e:
            raise DataFetchError(f"NWS returned a non-JSON body for {url}") from e
        if not isinstance(data, dict):
            raise DataFetchError(f"NWS returned an unexpected payload for {url}")
        return data

    async def get_active_alerts(self, state: str) -> list[dict[str, Any]]:
        """Active alerts for an already normalized state code."""
        data = await self.get_json(f"/alerts/active/area/{state}")
        return data.get("features") or []

    async def get_forecast_periods(self, latitude: float, longitude: float) -> list[dict[str, Any]]:
        points = await self.get_json(f"/points/{format_coordinate(latitude)},{format_coordinate(longitude)}")
        forecast_url = (points.get("properties") or {}).get("forecast")
        if not forecast_url:
            raise DataFetchError("NWS points response missing forecast URL.")

        forecast = await self.get_json(forecast_url)
        return (forecast.get("properties") or {}).get("periods") or []
