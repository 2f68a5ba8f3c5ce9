"""Wire types for the JSON-RPC protocol spoken by the weather server."""

from typing import Annotated, Any, Final, Literal, TypeAlias

from pydantic import BaseModel, ConfigDict, Field

LATEST_PROTOCOL_VERSION: Final = "2025-06-18"
SUPPORTED_PROTOCOL_VERSIONS: Final = ("2024-11-05", "2025-03-26", LATEST_PROTOCOL_VERSION)

RequestId: TypeAlias = Annotated[int, Field(strict=True)] | str

# Standard JSON-RPC error codes
PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603

# Server-defined error codes
CONNECTION_CLOSED = -32000
SESSION_NOT_FOUND = -32001
SERVER_NOT_INITIALIZED = -32002
SESSION_CLOSED = -32003


class ErrorData(BaseModel):
    """Error information for JSON-RPC error responses."""

    code: int
    """The error type that occurred."""

    message: str
    """A short description of the error."""

    data: Any | None = None
    """Additional information about the error, e.g. the offending fields."""

    model_config = ConfigDict(extra="allow")


class JSONRPCRequest(BaseModel):
    """A request that expects a response."""

    jsonrpc: Literal["2.0"] = "2.0"
    id: RequestId
    method: str
    params: Any | None = None

    model_config = ConfigDict(extra="allow")


class JSONRPCNotification(BaseModel):
    """A notification which does not expect a response."""

    jsonrpc: Literal["2.0"] = "2.0"
    method: str
    params: Any | None = None

    model_config = ConfigDict(extra="allow")


class JSONRPCResponse(BaseModel):
    """A successful (non-error) response to a request."""

    jsonrpc: Literal["2.0"] = "2.0"
    id: RequestId
    result: dict[str, Any]

    model_config = ConfigDict(extra="allow")


class JSONRPCError(BaseModel):
    """A response to a request that indicates an error occurred.

    ``id`` is None only when the request could not be parsed far enough to
    recover its correlation id.
    """

    jsonrpc: Literal["2.0"] = "2.0"
    id: RequestId | None
    error: ErrorData

    model_config = ConfigDict(extra="allow")


JSONRPCMessage: TypeAlias = JSONRPCRequest | JSONRPCNotification | JSONRPCResponse | JSONRPCError


class Implementation(BaseModel):
    """Describes the name and version of an MCP implementation."""

    name: str
    version: str

    model_config = ConfigDict(extra="allow")


class ToolsCapability(BaseModel):
    listChanged: bool = False

    model_config = ConfigDict(extra="allow")


class ServerCapabilities(BaseModel):
    tools: ToolsCapability | None = None

    model_config = ConfigDict(extra="allow")


class InitializeRequestParams(BaseModel):
    protocolVersion: str | int
    capabilities: dict[str, Any] = Field(default_factory=dict)
    clientInfo: Implementation | None = None

    model_config = ConfigDict(extra="allow")


class InitializeResult(BaseModel):
    """After receiving an initialize request, the server sends this response."""

    protocolVersion: str
    capabilities: ServerCapabilities
    serverInfo: Implementation
    instructions: str | None = None


class TextContent(BaseModel):
    """Text content for a message."""

    type: Literal["text"] = "text"
    text: str

    model_config = ConfigDict(extra="allow")


class CallToolResult(BaseModel):
    """The server's response to an operation invocation."""

    content: list[TextContent]
    isError: bool = False


class Tool(BaseModel):
    """Definition for an operation the client can call."""

    name: str
    description: str | None = None
    inputSchema: dict[str, Any]


class ListToolsResult(BaseModel):
    tools: list[Tool]


class CallToolRequestParams(BaseModel):
    name: str
    arguments: dict[str, Any] | None = None

    model_config = ConfigDict(extra="allow")
