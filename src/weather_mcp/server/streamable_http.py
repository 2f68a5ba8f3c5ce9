"""
Streamable HTTP Transport Module

Every client message arrives as its own HTTP POST carrying one JSON-RPC
envelope, and the response envelope is written back as the HTTP response body.
A session is identified by the ``mcp-session-id`` header, which the server
hands out on the initialization response.

GET on an existing session is a poll with no content (server-initiated
streaming is not offered), and DELETE terminates the session.
"""

from __future__ import annotations as _annotations

import json
from collections.abc import Callable
from http import HTTPStatus
from typing import Any

from pydantic import ValidationError as PydanticValidationError
from starlette.requests import Request
from starlette.responses import Response
from starlette.types import Receive, Scope, Send

from weather_mcp.exceptions import MalformedMessage
from weather_mcp.types import (
    INVALID_REQUEST,
    ErrorData,
    JSONRPCError,
    JSONRPCMessage,
    JSONRPCNotification,
    JSONRPCRequest,
    JSONRPCResponse,
)
from weather_mcp.utilities.logging import get_logger

logger = get_logger(__name__)

MCP_SESSION_ID_HEADER = "mcp-session-id"
CONTENT_TYPE_JSON = "application/json"


def parse_message(body: bytes | str) -> JSONRPCMessage:
    """Parse one JSON-RPC envelope from raw bytes.

    Raises:
        MalformedMessage: if the body is not JSON (PARSE_ERROR) or is not a
            single well-formed envelope (INVALID_REQUEST)
    """
    try:
        data = json.loads(body)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise MalformedMessage(f"Parse error: {e}") from e

    if isinstance(data, list):
        raise MalformedMessage("Invalid Request: batch requests are not supported", code=INVALID_REQUEST)
    if not isinstance(data, dict):
        raise MalformedMessage("Invalid Request: expected a JSON object", code=INVALID_REQUEST)

    if "method" in data:
        model: type[Any] = JSONRPCRequest if "id" in data else JSONRPCNotification
    elif "result" in data:
        model = JSONRPCResponse
    elif "error" in data:
        model = JSONRPCError
    else:
        raise MalformedMessage("Invalid Request: missing method", code=INVALID_REQUEST)

    try:
        return model.model_validate(data)
    except PydanticValidationError as e:
        raise MalformedMessage(
            "Invalid Request: malformed envelope",
            code=INVALID_REQUEST,
            data=[{"field": ".".join(str(p) for p in err["loc"]), "message": err["msg"]} for err in e.errors()],
        ) from e


class UnsupportedMediaType(MalformedMessage):
    status_code = HTTPStatus.UNSUPPORTED_MEDIA_TYPE

    def __init__(self):
        super().__init__("Unsupported Media Type: Content-Type must be application/json", code=INVALID_REQUEST)


async def read_message(request: Request) -> JSONRPCMessage:
    """Read and parse the envelope carried by an HTTP request."""
    content_type = request.headers.get("content-type", "")
    if CONTENT_TYPE_JSON not in content_type.lower():
        raise UnsupportedMediaType()
    body = await request.body()
    return parse_message(body)


def serialize_message(message: JSONRPCMessage) -> bytes:
    data = message.model_dump(mode="json", by_alias=True, exclude_none=True)
    if isinstance(message, JSONRPCError):
        # a null id is meaningful on errors for unparseable requests
        data["id"] = message.id
    return json.dumps(data).encode()


def error_response(
    error: ErrorData,
    status_code: int,
    request_id: Any | None = None,
    headers: dict[str, str] | None = None,
) -> Response:
    """Build an HTTP response whose body is a JSON-RPC error envelope."""
    envelope = JSONRPCError(id=request_id, error=error)
    return Response(
        serialize_message(envelope),
        status_code=status_code,
        media_type=CONTENT_TYPE_JSON,
        headers=headers,
    )


class StreamableHTTPTransport:
    """
    Per-session transport bound to one ProtocolEngine.

    The transport writes response envelopes for its session and signals
    closure to whoever subscribed through ``on_close``. It holds no streams,
    so terminating it is a synchronous step.
    """

    def __init__(self, mcp_session_id: str):
        self.mcp_session_id = mcp_session_id
        self._terminated = False
        self._close_callbacks: list[Callable[[str], None]] = []

    @property
    def is_terminated(self) -> bool:
        return self._terminated

    def on_close(self, callback: Callable[[str], None]) -> None:
        """Register a callback invoked with the session id when the transport closes."""
        self._close_callbacks.append(callback)

    def terminate(self) -> None:
        """Mark the transport closed and notify subscribers once."""
        if self._terminated:
            return
        self._terminated = True
        callbacks, self._close_callbacks = self._close_callbacks, []
        for callback in callbacks:
            try:
                callback(self.mcp_session_id)
            except Exception:
                logger.exception("Close callback failed for session %s", self.mcp_session_id)
        logger.debug("Transport for session %s terminated", self.mcp_session_id)

    def _headers(self) -> dict[str, str]:
        if self._terminated:
            return {}
        return {MCP_SESSION_ID_HEADER: self.mcp_session_id}

    async def send(
        self,
        message: JSONRPCMessage | None,
        scope: Scope,
        receive: Receive,
        send: Send,
    ) -> None:
        """Write ``message`` as the HTTP response.

        A None message (the request was a notification) is acknowledged with
        202 Accepted and no body.
        """
        if message is None:
            response = Response(status_code=HTTPStatus.ACCEPTED, headers=self._headers())
        else:
            response = Response(
                serialize_message(message),
                status_code=HTTPStatus.OK,
                media_type=CONTENT_TYPE_JSON,
                headers=self._headers(),
            )
        await response(scope, receive, send)

    async def poll(self, scope: Scope, receive: Receive, send: Send) -> None:
        """Answer a GET on this session. Nothing is ever pending."""
        response = Response(status_code=HTTPStatus.NO_CONTENT, headers=self._headers())
        await response(scope, receive, send)
