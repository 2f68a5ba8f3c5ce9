"""StreamableHTTP Session Manager for the weather server."""

from __future__ import annotations

import contextlib
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from http import HTTPStatus
from uuid import uuid4

import anyio
from anyio.abc import TaskGroup, TaskStatus
from starlette.requests import Request
from starlette.responses import Response
from starlette.types import Message, Receive, Scope, Send

from weather_mcp.exceptions import McpError, MissingSessionId, SessionNotFound
from weather_mcp.server.engine import ProtocolEngine, is_initialize_request
from weather_mcp.server.registry import OperationRegistry
from weather_mcp.server.streamable_http import (
    MCP_SESSION_ID_HEADER,
    StreamableHTTPTransport,
    error_response,
    read_message,
)
from weather_mcp.types import INTERNAL_ERROR, ErrorData, JSONRPCError, JSONRPCMessage, JSONRPCRequest
from weather_mcp.utilities.logging import get_logger

logger = get_logger(__name__)


@dataclass
class Session:
    """One client conversation: an engine and the transport bound to it."""

    session_id: str
    engine: ProtocolEngine
    transport: StreamableHTTPTransport
    created_at: float = field(default_factory=anyio.current_time)
    last_activity: float = field(default_factory=anyio.current_time)
    in_flight: int = 0

    def touch(self) -> None:
        self.last_activity = anyio.current_time()


@dataclass
class RouteResult:
    session: Session
    response: JSONRPCMessage | None


class StreamableHTTPSessionManager:
    """
    Manages the sessions of the weather server.

    The manager owns the session registry and is the only code that mutates
    it. It handles:

    1. Creating a session (engine + transport) on the first initialize request
    2. Routing later requests to their session by the mcp-session-id header
    3. Closing sessions on DELETE, on transport closure and, optionally,
       after a period of inactivity

    All request handling runs on one event loop. Registry reads and writes are
    single synchronous steps between await points, so the registry needs no
    lock. A new session is inserted before its handshake is awaited, which
    makes it visible to every request that arrives afterwards. Two racing
    initialize requests always produce two distinct sessions.

    Important: Only one StreamableHTTPSessionManager instance should be created
    per application. The instance cannot be reused after its run() context has
    completed. If you need to restart the manager, create a new instance.

    Args:
        registry: The operations every session can dispatch to
        server_name: Name reported in the initialize handshake
        server_version: Version reported in the initialize handshake
        instructions: Optional instructions reported in the initialize handshake
        session_idle_timeout: Seconds after which a session with no activity is
                              closed. None (the default) disables expiry, in which
                              case sessions only end on DELETE or transport closure.
    """

    def __init__(
        self,
        registry: OperationRegistry,
        server_name: str = "weather",
        server_version: str = "1.0.0",
        instructions: str | None = None,
        session_idle_timeout: float | None = None,
    ):
        if session_idle_timeout is not None and session_idle_timeout <= 0:
            raise ValueError("session_idle_timeout must be a positive number of seconds")

        self.registry = registry
        self.server_name = server_name
        self.server_version = server_version
        self.instructions = instructions
        self.session_idle_timeout = session_idle_timeout

        self._server_instances: dict[str, Session] = {}

        # The task group will be set during lifespan
        self._task_group: TaskGroup | None = None
        self._run_lock = anyio.Lock()
        self._has_started = False

    @contextlib.asynccontextmanager
    async def run(self) -> AsyncIterator[None]:
        """
        Run the session manager with proper lifecycle management.

        Important: This method can only be called once per instance.

        Use this in the lifespan context manager of your Starlette app:

        @contextlib.asynccontextmanager
        async def lifespan(app: Starlette) -> AsyncIterator[None]:
            async with session_manager.run():
                yield
        """
        async with self._run_lock:
            if self._has_started:
                raise RuntimeError(
                    "StreamableHTTPSessionManager .run() can only be called "
                    "once per instance. Create a new instance if you need to run again."
                )
            self._has_started = True

        async with anyio.create_task_group() as tg:
            self._task_group = tg
            if self.session_idle_timeout is not None:
                await tg.start(self._idle_session_reaper)
            logger.info("StreamableHTTP session manager started")
            try:
                yield
            finally:
                logger.info("StreamableHTTP session manager shutting down")
                tg.cancel_scope.cancel()
                self._task_group = None
                for session_id in list(self._server_instances):
                    self.close_session(session_id)

    @property
    def session_ids(self) -> list[str]:
        return list(self._server_instances)

    def get_session(self, session_id: str) -> Session:
        session = self._server_instances.get(session_id)
        if session is None:
            raise SessionNotFound(session_id)
        return session

    def _create_session(self) -> Session:
        session_id = uuid4().hex
        while session_id in self._server_instances:
            session_id = uuid4().hex

        engine = ProtocolEngine(
            self.registry,
            name=self.server_name,
            version=self.server_version,
            instructions=self.instructions,
        )
        transport = StreamableHTTPTransport(mcp_session_id=session_id)
        transport.on_close(self.close_session)

        session = Session(session_id=session_id, engine=engine, transport=transport)
        self._server_instances[session_id] = session
        logger.info("Created new session with ID: %s", session_id)
        return session

    async def route_request(self, session_id: str | None, message: JSONRPCMessage) -> RouteResult:
        """Route ``message`` to the session named by ``session_id``.

        With no session id, an initialize request creates a new session and
        completes its handshake; anything else is rejected.

        Raises:
            SessionNotFound: if ``session_id`` does not name a live session
            MissingSessionId: if no id was given for a non-initialize message
        """
        if session_id is not None:
            session = self.get_session(session_id)
            logger.debug("Routing %s to session %s", _describe(message), session_id)
            return RouteResult(session, await self._dispatch(session, message))

        if not is_initialize_request(message):
            raise MissingSessionId()

        session = self._create_session()
        response = await self._dispatch(session, message)
        if isinstance(response, JSONRPCError):
            logger.info("Handshake failed for session %s: %s", session.session_id, response.error.message)
            self.close_session(session.session_id)
        return RouteResult(session, response)

    async def _dispatch(self, session: Session, message: JSONRPCMessage) -> JSONRPCMessage | None:
        # The session reference stays usable even if it is closed meanwhile
        session.in_flight += 1
        session.touch()
        try:
            return await session.engine.handle_message(message)
        finally:
            session.in_flight -= 1
            session.touch()

    def close_session(self, session_id: str) -> bool:
        """Close and forget a session.

        Removal is visible to every later lookup as soon as this returns.
        Requests that already hold the session may finish; the closed engine
        rejects anything new they send.

        Returns:
            True if the session existed
        """
        session = self._server_instances.pop(session_id, None)
        if session is None:
            return False
        session.engine.close()
        session.transport.terminate()
        logger.info("Closed session %s", session_id)
        return True

    def close_idle_sessions(self) -> list[str]:
        """Close every session idle for longer than ``session_idle_timeout``."""
        if self.session_idle_timeout is None:
            return []
        now = anyio.current_time()
        expired = [
            session_id
            for session_id, session in self._server_instances.items()
            if session.in_flight == 0 and now - session.last_activity >= self.session_idle_timeout
        ]
        for session_id in expired:
            logger.info("Session %s idle for more than %ss, closing", session_id, self.session_idle_timeout)
            self.close_session(session_id)
        return expired

    async def _idle_session_reaper(self, *, task_status: TaskStatus[None] = anyio.TASK_STATUS_IGNORED) -> None:
        assert self.session_idle_timeout is not None
        interval = self.session_idle_timeout / 2
        task_status.started()
        while True:
            await anyio.sleep(interval)
            self.close_idle_sessions()

    async def handle_request(
        self,
        scope: Scope,
        receive: Receive,
        send: Send,
    ) -> None:
        """
        Process an ASGI request on the protocol endpoint.

        Args:
            scope: ASGI scope
            receive: ASGI receive function
            send: ASGI send function
        """
        if self._task_group is None:
            raise RuntimeError("Task group is not initialized. Make sure to use run().")

        response_started = False

        async def tracking_send(message: Message) -> None:
            nonlocal response_started
            if message["type"] == "http.response.start":
                response_started = True
            await send(message)

        request = Request(scope, receive)
        session_id = request.headers.get(MCP_SESSION_ID_HEADER)
        try:
            if request.method == "POST":
                await self._handle_post(request, session_id, scope, receive, tracking_send)
            elif request.method == "GET":
                await self._handle_get(session_id, scope, receive, tracking_send)
            elif request.method == "DELETE":
                await self._handle_delete(session_id, scope, receive, tracking_send)
            else:
                response = Response(
                    "Method Not Allowed",
                    status_code=HTTPStatus.METHOD_NOT_ALLOWED,
                    headers={"Allow": "GET, POST, DELETE"},
                )
                await response(scope, receive, tracking_send)
        except McpError as err:
            logger.debug("Rejected %s request: %s", request.method, err.error.message)
            await error_response(err.error, err.status_code)(scope, receive, tracking_send)
        except Exception:
            logger.exception("Unhandled error processing %s request", request.method)
            if response_started:
                return
            response = error_response(
                ErrorData(code=INTERNAL_ERROR, message="Internal Server Error"),
                HTTPStatus.INTERNAL_SERVER_ERROR,
            )
            await response(scope, receive, tracking_send)

    async def _handle_post(
        self,
        request: Request,
        session_id: str | None,
        scope: Scope,
        receive: Receive,
        send: Send,
    ) -> None:
        message = await read_message(request)
        request_id = message.id if isinstance(message, JSONRPCRequest) else None
        try:
            result = await self.route_request(session_id, message)
        except McpError as err:
            await error_response(err.error, err.status_code, request_id)(scope, receive, send)
            return
        await result.session.transport.send(result.response, scope, receive, send)

    async def _handle_get(self, session_id: str | None, scope: Scope, receive: Receive, send: Send) -> None:
        if session_id is None:
            raise MissingSessionId()
        session = self.get_session(session_id)
        session.touch()
        await session.transport.poll(scope, receive, send)

    async def _handle_delete(self, session_id: str | None, scope: Scope, receive: Receive, send: Send) -> None:
        if session_id is None:
            raise MissingSessionId()
        if not self.close_session(session_id):
            raise SessionNotFound(session_id)
        await Response(status_code=HTTPStatus.OK)(scope, receive, send)


def _describe(message: JSONRPCMessage) -> str:
    method = getattr(message, "method", None)
    return repr(method) if method is not None else type(message).__name__
