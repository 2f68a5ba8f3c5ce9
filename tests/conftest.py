from typing import Any

import httpx
import pytest

from weather_mcp.server.registry import OperationRegistry
from weather_mcp.weather import NWSClient, build_registry, create_nws_http_client

FORECAST_URL = "https://api.weather.gov/gridpoints/LOX/150,48/forecast"


@pytest.fixture
def anyio_backend():
    return "asyncio"


def make_alert(event: str, **extra: Any) -> dict[str, Any]:
    properties = {
        "event": event,
        "areaDesc": "Los Angeles County",
        "severity": "Moderate",
        "headline": f"{event} issued",
        "description": f"{event} in effect.",
    }
    properties.update(extra)
    return {"properties": properties}


def make_period(name: str, temperature: int = 72) -> dict[str, Any]:
    return {
        "name": name,
        "temperature": temperature,
        "temperatureUnit": "F",
        "windSpeed": "10 mph",
        "windDirection": "W",
        "shortForecast": "Sunny",
        "detailedForecast": f"{name}: sunny, with a high near {temperature}.",
    }


class FakeNWS:
    """Stands in for api.weather.gov behind an httpx.MockTransport."""

    def __init__(self):
        self.requests: list[httpx.Request] = []
        self.alerts: dict[str, list[dict[str, Any]]] = {"CA": [make_alert("Heat Advisory")]}
        self.periods: list[dict[str, Any]] = [make_period("Tonight", 58), make_period("Friday", 75)]
        self.forecast_url: str | None = FORECAST_URL
        self.status_code = 200

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.status_code != 200:
            return httpx.Response(self.status_code, text="upstream exploded: secret detail")

        path = request.url.path
        if path.startswith("/alerts/active/area/"):
            state = path.rsplit("/", 1)[-1]
            return httpx.Response(200, json={"features": self.alerts.get(state, [])})
        if path.startswith("/points/"):
            return httpx.Response(200, json={"properties": {"forecast": self.forecast_url}})
        if str(request.url) == FORECAST_URL:
            return httpx.Response(200, json={"properties": {"periods": self.periods}})
        return httpx.Response(404, json={"detail": "not found"})


@pytest.fixture
def fake_nws() -> FakeNWS:
    return FakeNWS()


@pytest.fixture
def http_client(fake_nws: FakeNWS) -> httpx.AsyncClient:
    return create_nws_http_client(transport=httpx.MockTransport(fake_nws.handler))


@pytest.fixture
def registry(http_client: httpx.AsyncClient) -> OperationRegistry:
    return build_registry(NWSClient(http_client))
