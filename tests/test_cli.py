import pytest
from click.testing import CliRunner

from weather_mcp import cli
from weather_mcp.server.app import WeatherServer


@pytest.fixture
def runs(monkeypatch: pytest.MonkeyPatch) -> list[tuple[WeatherServer, str]]:
    calls: list[tuple[WeatherServer, str]] = []

    def fake_run(self: WeatherServer, transport: str = "streamable-http") -> None:
        calls.append((self, transport))

    monkeypatch.setattr(WeatherServer, "run", fake_run)
    monkeypatch.setattr(cli, "configure_logging", lambda level: None)
    return calls


def test_help():
    result = CliRunner().invoke(cli.main, ["--help"])

    assert result.exit_code == 0
    assert "--transport" in result.output
    assert "--session-idle-timeout" in result.output


def test_options_override_settings(runs):
    result = CliRunner().invoke(
        cli.main,
        ["--transport", "stdio", "--port", "8123", "--log-level", "debug", "--session-idle-timeout", "60"],
    )

    assert result.exit_code == 0
    server, transport = runs[0]
    assert transport == "stdio"
    assert server.settings.port == 8123
    assert server.settings.log_level == "DEBUG"
    assert server.settings.session_idle_timeout == 60


def test_environment_settings(runs, monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("WEATHER_MCP_PORT", "9001")
    monkeypatch.setenv("WEATHER_MCP_MAX_ALERTS", "5")

    result = CliRunner().invoke(cli.main, [])

    assert result.exit_code == 0
    server, transport = runs[0]
    assert transport == "streamable-http"
    assert server.settings.port == 9001
    assert server.settings.max_alerts == 5


def test_fatal_error_exits_nonzero(monkeypatch: pytest.MonkeyPatch):
    def broken_run(self: WeatherServer, transport: str = "streamable-http") -> None:
        raise OSError("address in use")

    monkeypatch.setattr(WeatherServer, "run", broken_run)
    monkeypatch.setattr(cli, "configure_logging", lambda level: None)

    result = CliRunner().invoke(cli.main, [])

    assert result.exit_code == 1
