"""Plain-text rendering of NWS alerts and forecast periods."""

from typing import Any

SEPARATOR = "\n\n---\n\n"


def _value(value: Any, default: str) -> str:
    return default if value is None else str(value)


def format_alert(feature: dict[str, Any]) -> str:
    props = feature.get("properties") or {}
    parts = [
        f"Event: {_value(props.get('event'), 'Unknown')}",
        f"Area: {_value(props.get('areaDesc'), 'Unknown')}",
        f"Severity: {_value(props.get('severity'), 'Unknown')}",
        f"Headline: {_value(props.get('headline'), 'No headline')}",
        f"Description: {_value(props.get('description'), 'No description')}",
    ]
    if props.get("instruction"):
        parts.append(f"Instruction: {props['instruction']}")
    return "\n".join(parts)


def format_alerts(features: list[dict[str, Any]], limit: int = 20) -> str:
    return SEPARATOR.join(f"Alert {idx}\n{format_alert(feature)}" for idx, feature in enumerate(features[:limit], 1))


def format_period(period: dict[str, Any]) -> str:
    lines = [
        f"{_value(period.get('name'), 'Unknown period')}: {_value(period.get('shortForecast'), 'No summary')}",
        f"Temp: {_value(period.get('temperature'), '?')} {_value(period.get('temperatureUnit'), '')}".strip(),
        f"Wind: {_value(period.get('windSpeed'), '?')} {_value(period.get('windDirection'), '')}".strip(),
        f"Details: {_value(period.get('detailedForecast'), 'No detailed forecast')}",
    ]
    return "\n".join(lines)


def format_forecast(periods: list[dict[str, Any]], limit: int = 8) -> str:
    return SEPARATOR.join(format_period(period) for period in periods[:limit])
