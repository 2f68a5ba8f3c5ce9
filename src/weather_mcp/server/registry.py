"""Operation registry.

Operations are declared with explicit field-constraint descriptors rather than
a schema library. The descriptors validate incoming params and also render the
JSON Schema advertised through ``tools/list``.
"""

from __future__ import annotations as _annotations

import math
from collections.abc import Awaitable, Callable, Iterator, Mapping
from dataclasses import dataclass
from typing import Any

from weather_mcp.exceptions import DataFetchError, DuplicateOperationError, McpError, ValidationError
from weather_mcp.types import INVALID_PARAMS, CallToolResult, ErrorData, TextContent, Tool
from weather_mcp.utilities.logging import get_logger

logger = get_logger(__name__)

OperationFn = Callable[[dict[str, Any]], Awaitable[CallToolResult]]


class _Missing:
    def __repr__(self) -> str:
        return "<missing>"


MISSING = _Missing()


@dataclass(frozen=True)
class Field:
    """Base class for a named parameter and its constraints."""

    name: str
    description: str | None = None
    required: bool = True

    def check(self, value: Any) -> tuple[Any, str | None]:
        """Return the accepted value, or an error message."""
        raise NotImplementedError

    def json_schema(self) -> dict[str, Any]:
        raise NotImplementedError

    def _describe(self, schema: dict[str, Any]) -> dict[str, Any]:
        if self.description is not None:
            schema["description"] = self.description
        return schema


@dataclass(frozen=True)
class StringField(Field):
    length: int | None = None
    min_length: int | None = None
    max_length: int | None = None

    def check(self, value: Any) -> tuple[Any, str | None]:
        if not isinstance(value, str):
            return value, "expected a string"
        if self.length is not None and len(value) != self.length:
            return value, f"expected exactly {self.length} characters"
        if self.min_length is not None and len(value) < self.min_length:
            return value, f"expected at least {self.min_length} characters"
        if self.max_length is not None and len(value) > self.max_length:
            return value, f"expected at most {self.max_length} characters"
        return value, None

    def json_schema(self) -> dict[str, Any]:
        schema: dict[str, Any] = {"type": "string"}
        if self.length is not None:
            schema["minLength"] = schema["maxLength"] = self.length
        if self.min_length is not None:
            schema["minLength"] = self.min_length
        if self.max_length is not None:
            schema["maxLength"] = self.max_length
        return self._describe(schema)


@dataclass(frozen=True)
class NumberField(Field):
    minimum: float | None = None
    maximum: float | None = None

    def check(self, value: Any) -> tuple[Any, str | None]:
        # bool is an int subclass but never a valid number here
        if isinstance(value, bool) or not isinstance(value, int | float):
            return value, "expected a number"
        if isinstance(value, float) and not math.isfinite(value):
            return value, "expected a finite number"
        if self.minimum is not None and value < self.minimum:
            return value, f"expected a number >= {self.minimum}"
        if self.maximum is not None and value > self.maximum:
            return value, f"expected a number <= {self.maximum}"
        return value, None

    def json_schema(self) -> dict[str, Any]:
        schema: dict[str, Any] = {"type": "number"}
        if self.minimum is not None:
            schema["minimum"] = self.minimum
        if self.maximum is not None:
            schema["maximum"] = self.maximum
        return self._describe(schema)


def validate_params(fields: tuple[Field, ...], raw_params: Any) -> dict[str, Any]:
    """Validate ``raw_params`` against ``fields``.

    Unknown keys are dropped. Every failing field is collected before raising,
    so the resulting ValidationError lists all of them at once.

    Raises:
        ValidationError: if any field fails its constraints
    """
    if raw_params is None:
        raw_params = {}
    if not isinstance(raw_params, Mapping):
        raise ValidationError({"params": "expected an object"})

    validated: dict[str, Any] = {}
    errors: dict[str, str] = {}
    for field in fields:
        value = raw_params.get(field.name, MISSING)
        if value is MISSING:
            if field.required:
                errors[field.name] = "field required"
            continue
        value, error = field.check(value)
        if error is not None:
            errors[field.name] = error
        else:
            validated[field.name] = value

    if errors:
        raise ValidationError(errors)
    return validated


@dataclass(frozen=True)
class Operation:
    """An invocable operation: name, description, parameter fields and executor.

    ``failure_message`` is the text returned to the client when the executor
    raises; upstream error details are only logged.
    """

    name: str
    description: str
    fields: tuple[Field, ...]
    fn: OperationFn
    failure_message: str | None = None

    def input_schema(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {field.name: field.json_schema() for field in self.fields},
            "required": [field.name for field in self.fields if field.required],
        }

    def to_tool(self) -> Tool:
        return Tool(name=self.name, description=self.description, inputSchema=self.input_schema())


def error_result(text: str) -> CallToolResult:
    return CallToolResult(content=[TextContent(text=text)], isError=True)


def text_result(text: str) -> CallToolResult:
    return CallToolResult(content=[TextContent(text=text)])


class OperationRegistry:
    """Holds the set of invocable operations.

    The registry is populated at startup and only read afterwards, so it is
    shared by every session without synchronization.
    """

    def __init__(self, operations: list[Operation] | None = None):
        self._operations: dict[str, Operation] = {}
        for operation in operations or []:
            self.register(operation)

    def register(self, operation: Operation) -> None:
        if operation.name in self._operations:
            raise DuplicateOperationError(f"Operation already registered: {operation.name}")
        self._operations[operation.name] = operation
        logger.debug("Registered operation %r", operation.name)

    def get(self, name: str) -> Operation | None:
        return self._operations.get(name)

    def list_operations(self) -> list[Operation]:
        return list(self._operations.values())

    def __contains__(self, name: object) -> bool:
        return name in self._operations

    def __iter__(self) -> Iterator[Operation]:
        return iter(self._operations.values())

    def __len__(self) -> int:
        return len(self._operations)

    async def dispatch(self, name: str, raw_params: Any) -> CallToolResult:
        """Validate ``raw_params`` and run the named operation.

        Raises:
            McpError: if no operation is registered under ``name``
            ValidationError: if the params fail the operation's constraints

        Failures inside the operation itself never propagate; they are
        returned as an error-flagged result with a generic message.
        """
        operation = self._operations.get(name)
        if operation is None:
            raise McpError(ErrorData(code=INVALID_PARAMS, message=f"Unknown tool: {name}"))

        params = validate_params(operation.fields, raw_params)
        try:
            return await operation.fn(params)
        except DataFetchError as e:
            logger.error("%s failed: %s", name, e)
        except Exception:
            logger.exception("%s raised an unexpected error", name)
        return error_result(operation.failure_message or f"Failed to execute {name}.")
