"""Errors raised by the weather server."""

from http import HTTPStatus
from typing import Any

from weather_mcp.types import (
    INVALID_PARAMS,
    INVALID_REQUEST,
    PARSE_ERROR,
    SESSION_NOT_FOUND,
    ErrorData,
)


class McpError(Exception):
    """Exception carrying a protocol error that is reported to the client.

    Attributes:
        error: The ErrorData sent back in the JSON-RPC error envelope
        status_code: HTTP status used when the error escapes the protocol
                     engine and has to be answered at the transport level
    """

    error: ErrorData
    status_code: int = HTTPStatus.BAD_REQUEST

    def __init__(self, error: ErrorData):
        super().__init__(error.message)
        self.error = error


class ValidationError(McpError):
    """Operation parameters failed their field constraints.

    ``errors`` maps each offending field to a short description of the failure.
    """

    def __init__(self, errors: dict[str, str]):
        self.errors = dict(errors)
        fields = ", ".join(sorted(self.errors))
        super().__init__(
            ErrorData(
                code=INVALID_PARAMS,
                message=f"Invalid params: {fields}",
                data=[{"field": name, "message": msg} for name, msg in sorted(self.errors.items())],
            )
        )


class MalformedMessage(McpError):
    """The request body is not a parseable JSON-RPC envelope."""

    def __init__(self, message: str, code: int = PARSE_ERROR, data: Any | None = None):
        super().__init__(ErrorData(code=code, message=message, data=data))


class MissingSessionId(McpError):
    """A non-initialization request arrived without a session id."""

    def __init__(self):
        super().__init__(ErrorData(code=INVALID_REQUEST, message="Bad Request: Missing session ID"))


class SessionNotFound(McpError):
    """The supplied session id does not resolve to a live session."""

    status_code = HTTPStatus.NOT_FOUND

    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(ErrorData(code=SESSION_NOT_FOUND, message="Session not found"))


class DataFetchError(Exception):
    """An upstream data source failed or returned no usable data."""


class DuplicateOperationError(ValueError):
    """An operation was registered twice under the same name."""
