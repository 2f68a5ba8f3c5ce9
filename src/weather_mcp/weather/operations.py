"""The ``get_alerts`` and ``get_forecast`` operations."""

from typing import Any

from weather_mcp.server.registry import NumberField, Operation, OperationRegistry, StringField, text_result
from weather_mcp.types import CallToolResult
from weather_mcp.weather.formatting import format_alerts, format_forecast
from weather_mcp.weather.nws import NWSClient

ALERTS_FAILURE = "Failed to fetch weather alerts from NWS API."
FORECAST_FAILURE = "Failed to fetch weather forecast from NWS API."


def build_operations(nws: NWSClient, max_alerts: int = 20, max_forecast_periods: int = 8) -> list[Operation]:
    async def get_alerts(params: dict[str, Any]) -> CallToolResult:
        state = params["state"].upper()
        features = await nws.get_active_alerts(state)
        if not features:
            return text_result(f"No active weather alerts found for state {state}.")
        return text_result(format_alerts(features, limit=max_alerts))

    async def get_forecast(params: dict[str, Any]) -> CallToolResult:
        periods = await nws.get_forecast_periods(params["latitude"], params["longitude"])
        if not periods:
            return text_result("No forecast periods were returned for this location.")
        return text_result(format_forecast(periods, limit=max_forecast_periods))

    return [
        Operation(
            name="get_alerts",
            description="Get active weather alerts for a US state by two-letter code (for example: CA, NY, TX).",
            fields=(StringField("state", description="Two-letter US state code.", length=2),),
            fn=get_alerts,
            failure_message=ALERTS_FAILURE,
        ),
        Operation(
            name="get_forecast",
            description="Get a weather forecast for a latitude/longitude location in the US.",
            fields=(
                NumberField("latitude", description="Latitude in decimal degrees.", minimum=-90, maximum=90),
                NumberField("longitude", description="Longitude in decimal degrees.", minimum=-180, maximum=180),
            ),
            fn=get_forecast,
            failure_message=FORECAST_FAILURE,
        ),
    ]


def build_registry(nws: NWSClient, max_alerts: int = 20, max_forecast_periods: int = 8) -> OperationRegistry:
    return OperationRegistry(build_operations(nws, max_alerts=max_alerts, max_forecast_periods=max_forecast_periods))
