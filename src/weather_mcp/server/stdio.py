"""Stdio Server Transport Module

Serves a single implicit session over the current process' stdin/stdout:
one JSON-RPC envelope per line in, one response envelope per line out.

Example:
    ```python
    async def run_server():
        engine = ProtocolEngine(registry)
        await stdio_server(engine)

    anyio.run(run_server)
    ```
"""

import sys
from io import TextIOWrapper
from typing import BinaryIO

import anyio

from weather_mcp.exceptions import MalformedMessage
from weather_mcp.server.engine import ProtocolEngine
from weather_mcp.server.streamable_http import parse_message, serialize_message
from weather_mcp.types import JSONRPCError
from weather_mcp.utilities.logging import get_logger

logger = get_logger(__name__)


class _NonClosingTextIOWrapper(TextIOWrapper):
    """Text wrapper that never closes the underlying binary stream.

    The process' real stdin/stdout handles must stay open after the server
    stops reading from them.
    """

    def close(self) -> None:
        if self.closed:
            return
        if self.writable():
            self.flush()


def _wrap_process_stdio(binary_stream: BinaryIO) -> anyio.AsyncFile[str]:
    return anyio.wrap_file(_NonClosingTextIOWrapper(binary_stream, encoding="utf-8"))


async def stdio_server(
    engine: ProtocolEngine,
    stdin: anyio.AsyncFile[str] | None = None,
    stdout: anyio.AsyncFile[str] | None = None,
) -> None:
    """Answer messages from ``stdin`` with ``engine`` until end of input.

    Unparseable lines are answered with an error envelope and the loop carries
    on. The engine is closed when input ends.
    """
    if not stdin:
        stdin = _wrap_process_stdio(sys.stdin.buffer)
    if not stdout:
        stdout = _wrap_process_stdio(sys.stdout.buffer)

    try:
        async for line in stdin:
            if not line.strip():
                continue
            try:
                message = parse_message(line)
            except MalformedMessage as err:
                logger.debug("Malformed stdio message: %s", err.error.message)
                response = JSONRPCError(id=None, error=err.error)
            else:
                response = await engine.handle_message(message)

            if response is not None:
                await stdout.write(serialize_message(response).decode() + "\n")
                await stdout.flush()
    finally:
        engine.close()
        logger.debug("Stdio input closed")
