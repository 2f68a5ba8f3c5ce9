from .exceptions import (
    DataFetchError,
    DuplicateOperationError,
    MalformedMessage,
    McpError,
    MissingSessionId,
    SessionNotFound,
    ValidationError,
)
from .server.app import WeatherServer
from .settings import Settings

__all__ = [
    "DataFetchError",
    "DuplicateOperationError",
    "MalformedMessage",
    "McpError",
    "MissingSessionId",
    "SessionNotFound",
    "Settings",
    "ValidationError",
    "WeatherServer",
]
