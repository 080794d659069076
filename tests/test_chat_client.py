"""Tests for the ChatClient facade and state persistence."""

import asyncio
import json

import pytest

from chat_client.chat_client import ChatClient, ChatRequestError
from chat_client.events import EventEmitter
from chat_client.storage import StateStorage
from models.wire_messages import (
    CompletePayload,
    ConnectedPayload,
    ErrorPayload,
    ReadyPayload,
    TokenUsagePayload,
    to_frame,
)


class StubConnection(EventEmitter):
    """Connection double that records outbound messages as wire dicts."""

    def __init__(self, connected=True):
        super().__init__()
        self.connected = connected
        self.sent = []
        self.session_id = None
        self.connect_calls = 0
        self.disconnect_calls = 0

    @property
    def is_connected(self):
        return self.connected

    async def connect(self):
        self.connect_calls += 1

    async def disconnect(self):
        self.disconnect_calls += 1

    async def send(self, message):
        if not self.connected:
            return False
        self.sent.append(json.loads(to_frame(message)))
        return True


def make_client(connection=None, **kwargs):
    connection = connection or StubConnection()
    client = ChatClient("ws://test/ws", connection=connection, **kwargs)
    return client, connection


@pytest.mark.asyncio
class TestEventRouting:
    """Test server events flowing into conversation state."""

    async def test_stream_then_complete(self):
        client, conn = make_client()
        received = []
        client.on("message", received.append)
        await client.send_message("Hi")

        conn.emit("stream", "Hel", "m1")
        conn.emit("stream", "lo", "m1")
        assert client.state.messages[-1].content == "Hello"
        assert client.state.messages[-1].is_streaming

        payload = CompletePayload(
            message_id="m1",
            content="Hello!",
            token_usage=TokenUsagePayload(prompt=1, completion=2, total=3),
            follow_up_questions=["More?"],
        )
        conn.emit("complete", payload)

        assert [m.role for m in client.state.messages] == ["user", "assistant"]
        assert client.state.messages[-1].content == "Hello!"
        assert client.state.current_follow_up_questions == ["More?"]
        assert client.state.token_usage == {"prompt": 1, "completion": 2, "total": 3}
        assert received == [payload]

    async def test_status_and_flags(self):
        client, conn = make_client()
        conn.emit("status_change", "connected")
        conn.emit("ready", ReadyPayload())
        conn.emit("server_status", "typing", None)
        assert client.state.is_connected and client.state.is_ready
        assert client.state.server_status == "typing"

        conn.emit("status_change", "disconnected")
        assert not client.state.is_connected and not client.state.is_ready

    async def test_server_error_is_reemitted(self):
        client, conn = make_client()
        errors = []
        client.on("error", errors.append)
        conn.emit("server_error", ErrorPayload(code="RATE_LIMIT", message="slow down"))
        assert isinstance(errors[0], ChatRequestError)
        assert errors[0].code == "RATE_LIMIT"

    async def test_error_ends_streaming_turn_and_next_stream_starts_fresh(self):
        client, conn = make_client()
        conn.emit("stream", "partial", "m1")
        conn.emit("server_error", ErrorPayload(code="STREAM_ABORTED", message="aborted", message_id="m1", retryable=False))

        assert not client.state.is_streaming
        assert client.state.messages[-1].content == "partial"
        assert client.state.messages[-1].is_streaming is False

        conn.emit("stream", "second answer", "m2")
        assert [(m.role, m.content, m.is_streaming) for m in client.state.messages] == [
            ("assistant", "partial", False),
            ("assistant", "second answer", True),
        ]
        assert client.state.generation_id == "m2"

    async def test_stream_for_new_generation_closes_previous_turn(self):
        client, conn = make_client()
        conn.emit("stream", "one", "m1")
        conn.emit("stream", "two", "m2")
        assert [(m.content, m.is_streaming) for m in client.state.messages] == [("one", False), ("two", True)]

    async def test_unrelated_error_keeps_streaming(self):
        client, conn = make_client()
        conn.emit("stream", "x", "m1")
        conn.emit("server_error", ErrorPayload(code="SERVER_ERROR", message="busy", message_id="m2", retryable=False))
        conn.emit("server_error", ErrorPayload(code="RATE_LIMIT", message="slow down"))
        assert client.state.is_streaming
        assert client.state.generation_id == "m1"

    async def test_session_id_comes_from_connection(self):
        client, conn = make_client()
        conn.session_id = "s-9"
        conn.emit("connected", ConnectedPayload(session_id="s-9"))
        assert client.session_id == "s-9"


@pytest.mark.asyncio
class TestActions:
    """Test outbound client actions."""

    async def test_send_message_frame(self):
        client, conn = make_client()
        message_id = await client.send_message("Hi")
        assert conn.sent == [{"type": "message", "payload": {"content": "Hi", "messageId": message_id}}]
        assert client.state.messages[0].id == message_id

    async def test_send_message_clears_follow_ups(self):
        client, _ = make_client()
        client.state.complete_streaming_message("a", None, ["q?"])
        await client.send_message("next")
        assert client.state.current_follow_up_questions is None

    async def test_init_sent_on_open(self):
        client, conn = make_client(client_id="me", metadata={"page": "faq"})
        conn.emit("open")
        await asyncio.sleep(0)
        assert conn.sent == [{"type": "init", "payload": {"clientId": "me", "metadata": {"page": "faq"}}}]

    async def test_no_init_for_provisioned_sessions(self):
        client, conn = make_client(send_init=False)
        conn.emit("open")
        await asyncio.sleep(0)
        assert conn.sent == []

    async def test_load_context_resolves_on_ready(self):
        client, conn = make_client()
        task = asyncio.create_task(client.load_context({"system": "X"}))
        await asyncio.sleep(0)
        assert conn.sent[0]["type"] == "context"
        assert conn.sent[0]["payload"]["data"] == {"system": "X"}

        conn.emit("ready", ReadyPayload(context_id=conn.sent[0]["payload"]["contextId"]))
        result = await task
        assert result.context_id == conn.sent[0]["payload"]["contextId"]
        assert client.state.is_ready

    async def test_request_rejects_on_server_error(self):
        client, conn = make_client()
        task = asyncio.create_task(client.set_instructions("Be brief"))
        await asyncio.sleep(0)
        conn.emit("server_error", ErrorPayload(code="CONTEXT_TOO_LARGE", message="too big", retryable=False))
        with pytest.raises(ChatRequestError) as exc_info:
            await task
        assert exc_info.value.code == "CONTEXT_TOO_LARGE"

    async def test_request_when_disconnected_fails_fast(self):
        client, _ = make_client(StubConnection(connected=False))
        with pytest.raises(ChatRequestError) as exc_info:
            await client.load_file("body", "a.txt")
        assert exc_info.value.code == "CONNECTION_ERROR"

    async def test_request_timeout(self):
        client, _ = make_client(request_timeout=0.01)
        with pytest.raises(ChatRequestError) as exc_info:
            await client.set_metadata({"a": 1}, merge=True)
        assert exc_info.value.code == "TIMEOUT"

    async def test_request_listeners_are_removed(self):
        client, conn = make_client(request_timeout=0.01)
        before = len(conn._listeners["ready"])
        with pytest.raises(ChatRequestError):
            await client.set_instructions("x")
        assert len(conn._listeners["ready"]) == before

    async def test_new_conversation_and_reset(self):
        client, conn = make_client()
        await client.send_message("Hi")
        await client.new_conversation()
        assert client.state.messages == []
        await client.reset()
        assert [frame["type"] for frame in conn.sent] == ["message", "new_conversation", "reset"]

    async def test_abort_sends_generation_id(self):
        client, conn = make_client()
        conn.emit("stream", "x", "m1")
        await client.abort()
        assert conn.sent[-1] == {"type": "abort", "payload": {"messageId": "m1"}}

    async def test_connect_and_disconnect_delegate(self):
        client, conn = make_client()
        await client.connect()
        await client.disconnect()
        assert (conn.connect_calls, conn.disconnect_calls) == (1, 1)


@pytest.mark.asyncio
class TestPersistence:
    """Test saving and restoring through StateStorage."""

    async def test_save_load_clear_roundtrip(self, tmp_path):
        storage = StateStorage(tmp_path, namespace="widget")
        client, _ = make_client(storage=storage)
        await client.send_message("Hi")
        client.state.complete_streaming_message("Hello", {"prompt": 1, "completion": 1, "total": 2})

        saved = await client.save_state()
        assert storage.path.exists()

        other, _ = make_client(storage=storage)
        assert await other.load_persisted_state() is True
        assert [m.content for m in other.state.messages] == ["Hi", "Hello"]
        assert other.state.token_usage == saved["tokenUsage"]

        await other.clear_persisted_state()
        assert not storage.path.exists()
        assert await other.load_persisted_state() is False

    async def test_corrupt_file_loads_nothing(self, tmp_path):
        storage = StateStorage(tmp_path)
        storage.path.write_text("{not json", encoding="utf-8")
        assert await storage.load() is None

    async def test_without_storage(self):
        client, _ = make_client()
        saved = await client.save_state()
        assert saved["messages"] == []
        assert await client.load_persisted_state() is False
