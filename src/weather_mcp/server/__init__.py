from .engine import EngineState, ProtocolEngine
from .registry import NumberField, Operation, OperationRegistry, StringField
from .session_manager import StreamableHTTPSessionManager

__all__ = [
    "EngineState",
    "NumberField",
    "Operation",
    "OperationRegistry",
    "ProtocolEngine",
    "StreamableHTTPSessionManager",
    "StringField",
]
