"""
Protocol Engine

One engine is created per session. It tracks the session's handshake state,
answers the protocol-level methods itself and hands operation invocations to
the shared OperationRegistry.

States:

    UNINITIALIZED -> INITIALIZING -> READY -> CLOSED

Only READY dispatches operations. ``ping`` is answered in every state but
CLOSED, and CLOSED rejects everything.
"""

from __future__ import annotations as _annotations

from enum import Enum
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from weather_mcp.exceptions import McpError
from weather_mcp.server.registry import OperationRegistry
from weather_mcp.types import (
    INTERNAL_ERROR,
    INVALID_PARAMS,
    INVALID_REQUEST,
    LATEST_PROTOCOL_VERSION,
    METHOD_NOT_FOUND,
    SERVER_NOT_INITIALIZED,
    SESSION_CLOSED,
    SUPPORTED_PROTOCOL_VERSIONS,
    CallToolRequestParams,
    ErrorData,
    Implementation,
    InitializeRequestParams,
    InitializeResult,
    JSONRPCError,
    JSONRPCMessage,
    JSONRPCNotification,
    JSONRPCRequest,
    JSONRPCResponse,
    ListToolsResult,
    ServerCapabilities,
    ToolsCapability,
)
from weather_mcp.utilities.logging import get_logger

logger = get_logger(__name__)

INITIALIZE_METHOD = "initialize"
INITIALIZED_NOTIFICATION = "notifications/initialized"


class EngineState(Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    READY = "ready"
    CLOSED = "closed"


def is_initialize_request(message: JSONRPCMessage) -> bool:
    return isinstance(message, JSONRPCRequest) and message.method == INITIALIZE_METHOD


class ProtocolEngine:
    """Validates and dispatches the protocol messages of a single session."""

    def __init__(
        self,
        registry: OperationRegistry,
        name: str = "weather",
        version: str = "1.0.0",
        instructions: str | None = None,
    ):
        self.registry = registry
        self.server_info = Implementation(name=name, version=version)
        self.instructions = instructions
        self.state = EngineState.UNINITIALIZED
        self.client_info: Implementation | None = None
        self.client_capabilities: dict[str, Any] = {}
        self.protocol_version: str | None = None

    @property
    def is_closed(self) -> bool:
        return self.state is EngineState.CLOSED

    async def handle_message(self, message: JSONRPCMessage) -> JSONRPCResponse | JSONRPCError | None:
        """Handle one inbound message.

        Returns the response envelope for a request, or None for a notification
        (and for any response or error sent by the client, which are ignored).
        The response always carries the request's id.
        """
        if isinstance(message, JSONRPCNotification):
            self._handle_notification(message)
            return None
        if not isinstance(message, JSONRPCRequest):
            logger.debug("Ignoring client %s for id %r", type(message).__name__, message.id)
            return None

        try:
            result = await self._handle_request(message)
        except McpError as err:
            return JSONRPCError(id=message.id, error=err.error)
        except Exception:
            logger.exception("Unexpected error handling %r", message.method)
            return JSONRPCError(id=message.id, error=ErrorData(code=INTERNAL_ERROR, message="Internal error"))
        return JSONRPCResponse(id=message.id, result=result)

    async def _handle_request(self, request: JSONRPCRequest) -> dict[str, Any]:
        if self.state is EngineState.CLOSED:
            raise McpError(ErrorData(code=SESSION_CLOSED, message="Session closed"))

        if request.method == INITIALIZE_METHOD:
            return self._initialize(request.params)
        if request.method == "ping":
            return {}

        if self.state is not EngineState.READY:
            raise McpError(ErrorData(code=SERVER_NOT_INITIALIZED, message="Session not ready: initialize first"))

        if request.method == "tools/list":
            tools = [operation.to_tool() for operation in self.registry]
            return ListToolsResult(tools=tools).model_dump(exclude_none=True)
        if request.method == "tools/call":
            params = _parse_params(CallToolRequestParams, request.params)
            result = await self.registry.dispatch(params.name, params.arguments)
            return result.model_dump(exclude_none=True)
        if request.method in self.registry:
            result = await self.registry.dispatch(request.method, request.params)
            return result.model_dump(exclude_none=True)

        raise McpError(ErrorData(code=METHOD_NOT_FOUND, message=f"Method not found: {request.method}"))

    def _initialize(self, raw_params: Any) -> dict[str, Any]:
        if self.state is not EngineState.UNINITIALIZED:
            raise McpError(ErrorData(code=INVALID_REQUEST, message="Session already initialized"))

        params = _parse_params(InitializeRequestParams, raw_params)
        self.state = EngineState.INITIALIZING
        requested = str(params.protocolVersion)
        self.protocol_version = requested if requested in SUPPORTED_PROTOCOL_VERSIONS else LATEST_PROTOCOL_VERSION
        self.client_info = params.clientInfo
        self.client_capabilities = params.capabilities

        result = InitializeResult(
            protocolVersion=self.protocol_version,
            capabilities=ServerCapabilities(tools=ToolsCapability(listChanged=False)),
            serverInfo=self.server_info,
            instructions=self.instructions,
        )
        self.state = EngineState.READY
        logger.debug("Handshake complete, protocol version %s", self.protocol_version)
        return result.model_dump(exclude_none=True)

    def _handle_notification(self, notification: JSONRPCNotification) -> None:
        if notification.method == INITIALIZED_NOTIFICATION:
            logger.debug("Client confirmed initialization")
        else:
            logger.debug("Ignoring notification %r", notification.method)

    def close(self) -> None:
        """Release the engine. Safe to call more than once, and before initialization."""
        if self.state is EngineState.CLOSED:
            return
        self.state = EngineState.CLOSED
        self.client_capabilities = {}


def _parse_params(model: type[Any], raw_params: Any) -> Any:
    try:
        return model.model_validate(raw_params if raw_params is not None else {})
    except PydanticValidationError as e:
        raise McpError(
            ErrorData(
                code=INVALID_PARAMS,
                message="Invalid params",
                data=[{"field": ".".join(str(p) for p in err["loc"]), "message": err["msg"]} for err in e.errors()],
            )
        ) from e
