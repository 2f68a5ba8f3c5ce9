"""Tests for StreamableHTTPSessionManager."""

import json
from collections.abc import Callable, Coroutine
from typing import Any

import anyio
import pytest
from starlette.types import Message, Receive, Scope

from weather_mcp.exceptions import MissingSessionId, SessionNotFound
from weather_mcp.server.engine import EngineState
from weather_mcp.server.registry import Operation, OperationRegistry, text_result
from weather_mcp.server.session_manager import StreamableHTTPSessionManager
from weather_mcp.server.streamable_http import MCP_SESSION_ID_HEADER
from weather_mcp.types import (
    INTERNAL_ERROR,
    INVALID_REQUEST,
    PARSE_ERROR,
    SESSION_CLOSED,
    SESSION_NOT_FOUND,
    CallToolResult,
    JSONRPCError,
    JSONRPCNotification,
    JSONRPCRequest,
    JSONRPCResponse,
)

INIT_PARAMS = {
    "protocolVersion": "2025-03-26",
    "capabilities": {},
    "clientInfo": {"name": "test-client", "version": "1.0"},
}


def init_request(id: int | str = "init-1") -> JSONRPCRequest:
    return JSONRPCRequest(id=id, method="initialize", params=INIT_PARAMS)


@pytest.fixture
async def running_manager(registry: OperationRegistry):
    manager = StreamableHTTPSessionManager(registry=registry)
    async with manager.run():
        yield manager


@pytest.mark.anyio
async def test_run_can_only_be_called_once(registry: OperationRegistry):
    manager = StreamableHTTPSessionManager(registry=registry)

    async with manager.run():
        pass

    with pytest.raises(RuntimeError) as excinfo:
        async with manager.run():
            pass

    assert "StreamableHTTPSessionManager .run() can only be called once per instance" in str(excinfo.value)


@pytest.mark.anyio
async def test_handle_request_without_run_raises_error(registry: OperationRegistry):
    manager = StreamableHTTPSessionManager(registry=registry)

    with pytest.raises(RuntimeError) as excinfo:
        await manager.handle_request(_make_scope(), _make_receive(b""), _make_send([]))

    assert "Task group is not initialized. Make sure to use run()." in str(excinfo.value)


def test_idle_timeout_must_be_positive(registry: OperationRegistry):
    with pytest.raises(ValueError):
        StreamableHTTPSessionManager(registry=registry, session_idle_timeout=0)


@pytest.mark.anyio
async def test_initialize_creates_session(registry: OperationRegistry):
    manager = StreamableHTTPSessionManager(registry=registry)

    result = await manager.route_request(None, init_request())

    assert isinstance(result.response, JSONRPCResponse)
    assert result.response.id == "init-1"
    session_id = result.session.session_id
    assert manager.session_ids == [session_id]
    assert manager.get_session(session_id) is result.session
    assert result.session.engine.state is EngineState.READY
    assert result.session.transport.mcp_session_id == session_id


@pytest.mark.anyio
async def test_request_without_session_id_must_be_initialize(registry: OperationRegistry):
    manager = StreamableHTTPSessionManager(registry=registry)

    with pytest.raises(MissingSessionId):
        await manager.route_request(None, JSONRPCRequest(id=1, method="get_alerts", params={"state": "CA"}))
    with pytest.raises(MissingSessionId):
        await manager.route_request(None, JSONRPCNotification(method="notifications/initialized"))

    assert manager.session_ids == []


@pytest.mark.anyio
async def test_unknown_session_id(registry: OperationRegistry):
    manager = StreamableHTTPSessionManager(registry=registry)

    with pytest.raises(SessionNotFound):
        await manager.route_request("does-not-exist", JSONRPCRequest(id=1, method="ping"))

    assert manager.session_ids == []


@pytest.mark.anyio
async def test_route_to_existing_session_normalizes_state(registry: OperationRegistry, fake_nws):
    manager = StreamableHTTPSessionManager(registry=registry)
    session_id = (await manager.route_request(None, init_request())).session.session_id

    result = await manager.route_request(
        session_id, JSONRPCRequest(id=2, method="get_alerts", params={"state": "ca"})
    )

    assert isinstance(result.response, JSONRPCResponse)
    assert result.response.id == 2
    assert [r.url.path for r in fake_nws.requests] == ["/alerts/active/area/CA"]


@pytest.mark.anyio
async def test_failed_handshake_leaves_no_session(registry: OperationRegistry):
    manager = StreamableHTTPSessionManager(registry=registry)

    result = await manager.route_request(None, JSONRPCRequest(id=1, method="initialize", params={}))

    assert isinstance(result.response, JSONRPCError)
    assert manager.session_ids == []
    assert result.session.transport.is_terminated


@pytest.mark.anyio
async def test_concurrent_initialization_creates_distinct_sessions(registry: OperationRegistry):
    manager = StreamableHTTPSessionManager(registry=registry)
    session_ids: list[str] = []

    async def initialize(n: int) -> None:
        result = await manager.route_request(None, init_request(id=n))
        assert isinstance(result.response, JSONRPCResponse)
        assert result.response.id == n
        session_ids.append(result.session.session_id)

    async with anyio.create_task_group() as tg:
        for n in range(25):
            tg.start_soon(initialize, n)

    assert len(session_ids) == 25
    assert len(set(session_ids)) == 25
    assert sorted(manager.session_ids) == sorted(session_ids)

    for session_id in session_ids:
        result = await manager.route_request(session_id, JSONRPCRequest(id=session_id, method="ping"))
        assert isinstance(result.response, JSONRPCResponse)
        assert result.response.id == session_id


@pytest.mark.anyio
async def test_close_session_then_lookup_fails(registry: OperationRegistry):
    manager = StreamableHTTPSessionManager(registry=registry)
    session = (await manager.route_request(None, init_request())).session

    assert manager.close_session(session.session_id) is True
    assert manager.close_session(session.session_id) is False

    assert session.engine.state is EngineState.CLOSED
    assert session.transport.is_terminated
    with pytest.raises(SessionNotFound):
        await manager.route_request(session.session_id, JSONRPCRequest(id=1, method="ping"))


@pytest.mark.anyio
async def test_transport_closure_removes_session(registry: OperationRegistry):
    manager = StreamableHTTPSessionManager(registry=registry)
    session = (await manager.route_request(None, init_request())).session

    session.transport.terminate()

    assert manager.session_ids == []
    assert session.engine.is_closed


@pytest.mark.anyio
async def test_close_during_in_flight_request_lets_it_finish():
    started = anyio.Event()
    release = anyio.Event()

    async def slow(params: dict[str, Any]) -> CallToolResult:
        started.set()
        await release.wait()
        return text_result("done")

    registry = OperationRegistry([Operation(name="slow", description="", fields=(), fn=slow)])
    manager = StreamableHTTPSessionManager(registry=registry)
    session_id = (await manager.route_request(None, init_request())).session.session_id
    responses: list[Any] = []

    async def call() -> None:
        result = await manager.route_request(session_id, JSONRPCRequest(id="slow-1", method="slow"))
        responses.append(result.response)

    async with anyio.create_task_group() as tg:
        tg.start_soon(call)
        await started.wait()

        manager.close_session(session_id)
        with pytest.raises(SessionNotFound):
            await manager.route_request(session_id, JSONRPCRequest(id=2, method="ping"))

        release.set()

    assert len(responses) == 1
    assert isinstance(responses[0], JSONRPCResponse)
    assert responses[0].id == "slow-1"
    assert responses[0].result["content"][0]["text"] == "done"


@pytest.mark.anyio
async def test_message_on_closed_engine_held_by_reference(registry: OperationRegistry):
    manager = StreamableHTTPSessionManager(registry=registry)
    session = (await manager.route_request(None, init_request())).session
    manager.close_session(session.session_id)

    response = await session.engine.handle_message(JSONRPCRequest(id=4, method="ping"))

    assert isinstance(response, JSONRPCError)
    assert response.error.code == SESSION_CLOSED


@pytest.mark.anyio
async def test_run_exit_closes_all_sessions(registry: OperationRegistry):
    manager = StreamableHTTPSessionManager(registry=registry)

    async with manager.run():
        sessions = [(await manager.route_request(None, init_request(id=n))).session for n in range(3)]
        assert len(manager.session_ids) == 3

    assert manager.session_ids == []
    assert all(session.engine.is_closed for session in sessions)


# ASGI-level behaviour


def _make_scope(method: str = "POST", session_id: str | None = None, content_type: str = "application/json") -> Scope:
    headers = [(b"content-type", content_type.encode())]
    if session_id is not None:
        headers.append((MCP_SESSION_ID_HEADER.encode(), session_id.encode()))
    return {"type": "http", "method": method, "path": "/mcp", "headers": headers}


def _make_receive(body: bytes) -> Receive:
    async def receive() -> Message:
        return {"type": "http.request", "body": body, "more_body": False}

    return receive


def _make_send(sent: list[Message]) -> Callable[[Message], Coroutine[Any, Any, None]]:
    async def send(message: Message) -> None:
        sent.append(message)

    return send


def _status(sent: list[Message]) -> int:
    return next(msg["status"] for msg in sent if msg["type"] == "http.response.start")


def _session_header(sent: list[Message]) -> str | None:
    for msg in sent:
        if msg["type"] == "http.response.start":
            for name, value in msg.get("headers", []):
                if name.decode().lower() == MCP_SESSION_ID_HEADER:
                    return value.decode()
    return None


def _body(sent: list[Message]) -> Any:
    body = b"".join(msg.get("body", b"") for msg in sent if msg["type"] == "http.response.body")
    return json.loads(body) if body else None


async def _post(manager: StreamableHTTPSessionManager, payload: Any, session_id: str | None = None) -> list[Message]:
    sent: list[Message] = []
    body = payload if isinstance(payload, bytes) else json.dumps(payload).encode()
    await manager.handle_request(_make_scope("POST", session_id), _make_receive(body), _make_send(sent))
    return sent


async def _initialize(manager: StreamableHTTPSessionManager) -> str:
    sent = await _post(manager, {"jsonrpc": "2.0", "id": "init-1", "method": "initialize", "params": INIT_PARAMS})
    session_id = _session_header(sent)
    assert session_id is not None, "Session ID not found in response headers"
    return session_id


@pytest.mark.anyio
async def test_post_initialize_returns_session_header(running_manager: StreamableHTTPSessionManager):
    sent = await _post(
        running_manager, {"jsonrpc": "2.0", "id": "init-1", "method": "initialize", "params": INIT_PARAMS}
    )

    assert _status(sent) == 200
    session_id = _session_header(sent)
    assert session_id in running_manager.session_ids
    assert _body(sent)["id"] == "init-1"
    assert _body(sent)["result"]["serverInfo"]["name"] == "weather"


@pytest.mark.anyio
async def test_post_with_session_dispatches(running_manager: StreamableHTTPSessionManager, fake_nws):
    session_id = await _initialize(running_manager)

    sent = await _post(running_manager, {"id": 2, "method": "get_alerts", "params": {"state": "ca"}}, session_id)

    assert _status(sent) == 200
    assert _session_header(sent) == session_id
    assert _body(sent)["id"] == 2
    assert "Heat Advisory" in _body(sent)["result"]["content"][0]["text"]
    assert [r.url.path for r in fake_nws.requests] == ["/alerts/active/area/CA"]


@pytest.mark.anyio
async def test_post_notification_is_accepted(running_manager: StreamableHTTPSessionManager):
    session_id = await _initialize(running_manager)

    sent = await _post(running_manager, {"jsonrpc": "2.0", "method": "notifications/initialized"}, session_id)

    assert _status(sent) == 202
    assert _body(sent) is None


@pytest.mark.anyio
async def test_post_without_session_id(running_manager: StreamableHTTPSessionManager):
    sent = await _post(running_manager, {"jsonrpc": "2.0", "id": 9, "method": "get_alerts", "params": {"state": "CA"}})

    assert _status(sent) == 400
    assert _body(sent)["id"] == 9
    assert _body(sent)["error"]["code"] == INVALID_REQUEST
    assert running_manager.session_ids == []


@pytest.mark.anyio
async def test_post_with_unknown_session_id(running_manager: StreamableHTTPSessionManager):
    sent = await _post(running_manager, {"jsonrpc": "2.0", "id": 9, "method": "get_alerts"}, "bogus")

    assert _status(sent) == 404
    assert _body(sent)["id"] == 9
    assert _body(sent)["error"]["code"] == SESSION_NOT_FOUND
    assert running_manager.session_ids == []


@pytest.mark.anyio
async def test_post_malformed_body(running_manager: StreamableHTTPSessionManager):
    session_id = await _initialize(running_manager)

    sent = await _post(running_manager, b"{oops", session_id)

    assert _status(sent) == 400
    assert _body(sent) == {"jsonrpc": "2.0", "id": None, "error": _body(sent)["error"]}
    assert _body(sent)["error"]["code"] == PARSE_ERROR

    # The session stays usable
    sent = await _post(running_manager, {"jsonrpc": "2.0", "id": 3, "method": "ping"}, session_id)
    assert _status(sent) == 200
    assert _body(sent) == {"jsonrpc": "2.0", "id": 3, "result": {}}


@pytest.mark.anyio
async def test_post_wrong_content_type(running_manager: StreamableHTTPSessionManager):
    sent: list[Message] = []
    scope = _make_scope("POST", content_type="text/plain")

    await running_manager.handle_request(scope, _make_receive(b'{"id": 1, "method": "ping"}'), _make_send(sent))

    assert _status(sent) == 415


@pytest.mark.anyio
async def test_get_without_session_id(running_manager: StreamableHTTPSessionManager):
    sent: list[Message] = []

    await running_manager.handle_request(_make_scope("GET"), _make_receive(b""), _make_send(sent))

    assert _status(sent) == 400
    assert running_manager.session_ids == []


@pytest.mark.anyio
async def test_get_existing_session_is_no_content(running_manager: StreamableHTTPSessionManager):
    session_id = await _initialize(running_manager)
    sent: list[Message] = []

    await running_manager.handle_request(_make_scope("GET", session_id), _make_receive(b""), _make_send(sent))

    assert _status(sent) == 204
    assert _session_header(sent) == session_id


@pytest.mark.anyio
async def test_get_unknown_session(running_manager: StreamableHTTPSessionManager):
    sent: list[Message] = []

    await running_manager.handle_request(_make_scope("GET", "bogus"), _make_receive(b""), _make_send(sent))

    assert _status(sent) == 404


@pytest.mark.anyio
async def test_delete_closes_session(running_manager: StreamableHTTPSessionManager):
    session_id = await _initialize(running_manager)
    sent: list[Message] = []

    await running_manager.handle_request(_make_scope("DELETE", session_id), _make_receive(b""), _make_send(sent))

    assert _status(sent) == 200
    assert running_manager.session_ids == []

    sent = await _post(running_manager, {"jsonrpc": "2.0", "id": 1, "method": "ping"}, session_id)
    assert _status(sent) == 404

    sent = []
    await running_manager.handle_request(_make_scope("DELETE", session_id), _make_receive(b""), _make_send(sent))
    assert _status(sent) == 404


@pytest.mark.anyio
async def test_unsupported_method(running_manager: StreamableHTTPSessionManager):
    sent: list[Message] = []

    await running_manager.handle_request(_make_scope("PUT"), _make_receive(b""), _make_send(sent))

    assert _status(sent) == 405


@pytest.mark.anyio
async def test_internal_fault_is_generic_500(
    running_manager: StreamableHTTPSessionManager, monkeypatch: pytest.MonkeyPatch
):
    async def explode(session_id: str | None, message: Any):
        raise RuntimeError("secret internals")

    monkeypatch.setattr(running_manager, "route_request", explode)

    sent = await _post(running_manager, {"jsonrpc": "2.0", "id": 1, "method": "initialize", "params": INIT_PARAMS})

    assert _status(sent) == 500
    assert _body(sent)["error"]["code"] == INTERNAL_ERROR
    assert "secret" not in json.dumps(_body(sent))
