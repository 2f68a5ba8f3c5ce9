"""Weather server: wires the operations, session manager and transports together."""

from __future__ import annotations as _annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Literal

import anyio
import httpx
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Route
from starlette.types import Receive, Scope, Send

from weather_mcp.server.engine import ProtocolEngine
from weather_mcp.server.session_manager import StreamableHTTPSessionManager
from weather_mcp.server.stdio import stdio_server
from weather_mcp.settings import Settings
from weather_mcp.utilities.logging import get_logger
from weather_mcp.weather import NWSClient, build_registry, create_nws_http_client

logger = get_logger(__name__)

Transport = Literal["stdio", "streamable-http"]


class WeatherServer:
    """The weather server.

    Args:
        settings: Server settings; read from the environment when omitted
        http_client: Client used for NWS requests. Closed when the server stops.
    """

    def __init__(self, settings: Settings | None = None, http_client: httpx.AsyncClient | None = None):
        self.settings = settings or Settings()
        self.http_client = http_client or create_nws_http_client(
            base_url=self.settings.nws_base_url,
            user_agent=self.settings.nws_user_agent,
            timeout=self.settings.nws_timeout,
        )
        self.registry = build_registry(
            NWSClient(self.http_client),
            max_alerts=self.settings.max_alerts,
            max_forecast_periods=self.settings.max_forecast_periods,
        )
        self._session_manager: StreamableHTTPSessionManager | None = None

    @property
    def session_manager(self) -> StreamableHTTPSessionManager:
        """Get the StreamableHTTP session manager.

        Raises:
            RuntimeError: If called before streamable_http_app() has been called.
        """
        if self._session_manager is None:
            raise RuntimeError(
                "Session manager can only be accessed after calling streamable_http_app(). "
                "The session manager is created lazily to avoid unnecessary initialization."
            )
        return self._session_manager

    def create_engine(self) -> ProtocolEngine:
        return ProtocolEngine(
            self.registry,
            name=self.settings.server_name,
            version=self.settings.server_version,
            instructions=self.settings.instructions,
        )

    def run(self, transport: Transport = "streamable-http") -> None:
        """Run the weather server. This is a synchronous function."""
        match transport:
            case "stdio":
                anyio.run(self.run_stdio_async)
            case "streamable-http":
                anyio.run(self.run_streamable_http_async)
            case _:
                raise ValueError(f"Unknown transport: {transport}")

    async def run_stdio_async(self) -> None:
        """Run the server using stdio transport."""
        async with self.http_client:
            logger.info("Weather server running on stdio transport")
            await stdio_server(self.create_engine())

    async def run_streamable_http_async(self) -> None:
        """Run the server using StreamableHTTP transport."""
        import uvicorn

        config = uvicorn.Config(
            self.streamable_http_app(),
            host=self.settings.host,
            port=self.settings.port,
            log_level=self.settings.log_level.lower(),
        )
        server = uvicorn.Server(config)
        await server.serve()

    def streamable_http_app(self) -> Starlette:
        """Return an instance of the StreamableHTTP server app."""
        if self._session_manager is None:
            self._session_manager = StreamableHTTPSessionManager(
                registry=self.registry,
                server_name=self.settings.server_name,
                server_version=self.settings.server_version,
                instructions=self.settings.instructions,
                session_idle_timeout=self.settings.session_idle_timeout,
            )

        routes = [
            Route(self.settings.streamable_http_path, endpoint=StreamableHTTPASGIApp(self._session_manager)),
            Route(self.settings.health_path, endpoint=health, methods=["GET"]),
        ]
        return Starlette(debug=self.settings.debug, routes=routes, lifespan=self._lifespan)

    @asynccontextmanager
    async def _lifespan(self, app: Starlette) -> AsyncIterator[None]:
        async with self.http_client, self.session_manager.run():
            logger.info(
                "Weather server listening on %s:%s%s",
                self.settings.host,
                self.settings.port,
                self.settings.streamable_http_path,
            )
            yield


async def health(request: Request) -> JSONResponse:
    return JSONResponse({"status": "ok"})


class StreamableHTTPASGIApp:
    """
    ASGI application for Streamable HTTP server transport.
    """

    def __init__(self, session_manager: StreamableHTTPSessionManager):
        self.session_manager = session_manager

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        await self.session_manager.handle_request(scope, receive, send)
