"""
Unit tests for ChatSocketClient

Uses an in-memory socket in place of a real websocket connection:
- Connect retry and the connection_error event after the final attempt
- Incoming frames dispatched by event name
- Outgoing frames shaped per the chat protocol
- disconnected emitted on server close, not on a local disconnect()
- reconnect after a server-side close
"""

import asyncio
import json

import pytest
from tenacity import wait_none

from avatar_chat.client.transport import ChatSocketClient, TransportError
from avatar_chat.config.settings import ClientSettings


class FakeSocket:
    """Async-iterable socket fed from a queue; None ends the stream"""

    def __init__(self):
        self.incoming: asyncio.Queue = asyncio.Queue()
        self.sent = []
        self.closed = False

    def push(self, event: str, data=None):
        self.incoming.put_nowait(json.dumps({"event": event, "data": data}))

    def __aiter__(self):
        return self

    async def __anext__(self):
        frame = await self.incoming.get()
        if frame is None:
            raise StopAsyncIteration
        return frame

    async def send(self, frame: str):
        self.sent.append(json.loads(frame))

    async def close(self):
        self.closed = True
        self.incoming.put_nowait(None)


class FakeConnector:
    """Connection factory that fails a given number of times first"""

    def __init__(self, failures: int = 0):
        self.failures = failures
        self.calls = []
        self.sockets = []

    @property
    def socket(self) -> FakeSocket:
        return self.sockets[-1]

    async def __call__(self, url, **kwargs):
        self.calls.append((url, kwargs))
        if len(self.calls) <= self.failures:
            raise ConnectionRefusedError("connection refused")
        self.sockets.append(FakeSocket())
        return self.socket


def _client(connector: FakeConnector, attempts: int = 3, auto_reconnect: bool = True) -> ChatSocketClient:
    settings = ClientSettings(reconnect_attempts=attempts, max_message_bytes=4096)
    return ChatSocketClient(
        url="ws://test/ws/chat",
        settings=settings,
        connect=connector,
        retry_wait=wait_none(),
        auto_reconnect=auto_reconnect,
    )


async def _drain():
    for _ in range(20):
        await asyncio.sleep(0)


# ============================================================
# Connection Tests
# ============================================================


@pytest.mark.unit
@pytest.mark.asyncio
async def test_connect_emits_connected():
    # ARRANGE
    connector = FakeConnector()
    client = _client(connector)
    events = []
    client.on("connected", events.append)

    # ACT
    ok = await client.connect()

    # ASSERT
    assert ok is True
    assert client.is_connected is True
    assert events == [{"url": "ws://test/ws/chat"}]
    assert connector.calls[0][1]["max_size"] == 4096

    await client.disconnect()


@pytest.mark.unit
@pytest.mark.asyncio
async def test_connect_retries_then_succeeds():
    connector = FakeConnector(failures=2)
    client = _client(connector, attempts=3)

    assert await client.connect() is True
    assert len(connector.calls) == 3

    await client.disconnect()


@pytest.mark.unit
@pytest.mark.asyncio
async def test_connect_failure_emits_connection_error():
    """Test exhausting retries emits one connection_error and returns False"""
    connector = FakeConnector(failures=5)
    client = _client(connector, attempts=2)
    errors = []
    client.on("error", errors.append)

    ok = await client.connect()

    assert ok is False
    assert len(connector.calls) == 2
    assert len(errors) == 1
    assert errors[0]["type"] == "connection_error"
    assert errors[0]["kind"] == "connection_error"
    assert errors[0]["message"].startswith("Connection failed")
    assert client.is_connected is False


# ============================================================
# Receive Tests
# ============================================================


@pytest.mark.unit
@pytest.mark.asyncio
async def test_incoming_events_dispatched_by_name():
    connector = FakeConnector()
    client = _client(connector)
    responses = []
    client.on("ai_response", responses.append)
    await client.connect()

    connector.socket.push("ai_response", {"text": "Hello!"})
    connector.socket.incoming.put_nowait("garbage frame")
    connector.socket.push("ai_response", {"text": "Still here"})
    await _drain()

    assert responses == [{"text": "Hello!"}, {"text": "Still here"}]

    await client.disconnect()


@pytest.mark.unit
@pytest.mark.asyncio
async def test_server_close_emits_disconnected():
    connector = FakeConnector()
    client = _client(connector, auto_reconnect=False)
    disconnected = []
    client.on("disconnected", disconnected.append)
    await client.connect()

    connector.socket.incoming.put_nowait(None)
    await _drain()

    assert len(disconnected) == 1
    assert client.is_connected is False


@pytest.mark.unit
@pytest.mark.asyncio
async def test_local_disconnect_is_silent_and_idempotent():
    """Test disconnect() emits nothing, closes the socket and may repeat"""
    connector = FakeConnector()
    client = _client(connector)
    disconnected = []
    client.on("disconnected", disconnected.append)
    await client.connect()

    await client.disconnect()
    await client.disconnect()

    assert disconnected == []
    assert connector.socket.closed is True
    assert client.bus.listener_count("disconnected") == 0


@pytest.mark.unit
@pytest.mark.asyncio
async def test_server_close_reconnects():
    """Test a server-side close is followed by a fresh connection"""
    # ARRANGE
    connector = FakeConnector()
    client = _client(connector)
    events = []
    client.on("connected", lambda data: events.append("connected"))
    client.on("disconnected", lambda data: events.append("disconnected"))
    await client.connect()
    first_socket = connector.socket

    # ACT
    first_socket.incoming.put_nowait(None)
    await _drain()

    # ASSERT
    assert events == ["connected", "disconnected", "connected"]
    assert len(connector.calls) == 2
    assert client.is_connected is True
    assert connector.socket is not first_socket

    await client.send_text_message("after restart")
    assert connector.socket.sent == [{"event": "text_message", "data": {"text": "after restart"}}]

    await client.disconnect()


@pytest.mark.unit
@pytest.mark.asyncio
async def test_failed_reconnect_emits_connection_error():
    connector = FakeConnector()
    client = _client(connector, attempts=2)
    errors = []
    client.on("error", errors.append)
    await client.connect()
    connector.failures = 10

    connector.socket.incoming.put_nowait(None)
    await _drain()

    assert len(errors) == 1
    assert errors[0]["type"] == "connection_error"
    assert client.is_connected is False

    await client.disconnect()


# ============================================================
# Send Tests
# ============================================================


@pytest.mark.unit
@pytest.mark.asyncio
async def test_send_frames():
    connector = FakeConnector()
    client = _client(connector)
    await client.connect()

    await client.send_audio_message(b"RIFF", format="wav")
    await client.send_text_message("Hello")
    await client.clear_context()

    assert connector.socket.sent == [
        {"event": "audio_message", "data": {"audio": "UklGRg==", "format": "wav"}},
        {"event": "text_message", "data": {"text": "Hello"}},
        {"event": "clear_context", "data": None},
    ]

    await client.disconnect()


@pytest.mark.unit
@pytest.mark.asyncio
async def test_send_without_connection_raises():
    client = _client(FakeConnector())

    with pytest.raises(TransportError, match="Not connected"):
        await client.send_text_message("Hello")
