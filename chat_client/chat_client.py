"""High-level chat client binding a ChatConnection to a ConversationState."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Optional, Set, Union

from chat_client.connection import ChatConnection
from chat_client.conversation_state import ConversationState
from chat_client.events import EventEmitter
from chat_client.ids import generate_id
from chat_client.storage import StateStorage
from models import wire_messages as wire

logger = logging.getLogger(__name__)


class ChatRequestError(Exception):
    """A request the server answered with an error frame, or never answered."""

    def __init__(self, message: str, code: Optional[str] = None) -> None:
        super().__init__(message)
        self.code = code


class ChatClient(EventEmitter):
    """Route server events into conversation state and expose chat actions.

    Events: message(complete_payload), error(exc)
    """

    def __init__(
        self,
        url: str,
        *,
        client_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        send_init: bool = True,
        request_timeout: float = 30.0,
        connection: Optional[ChatConnection] = None,
        state: Optional[ConversationState] = None,
        storage: Optional[StateStorage] = None,
        **connection_options: Any,
    ) -> None:
        super().__init__()
        self.connection = connection or ChatConnection(url, **connection_options)
        self.state = state or ConversationState()
        self.storage = storage
        self.client_id = client_id
        self.metadata = metadata
        self.send_init = send_init
        self.request_timeout = request_timeout
        self._tasks: Set[asyncio.Task] = set()
        self._bind()

    def _bind(self) -> None:
        conn = self.connection
        conn.on("status_change", lambda status: self.state.set_connected(status == "connected"))
        conn.on("open", self._on_open)
        conn.on("connected", lambda payload: self.state.set_connected(True))
        conn.on("ready", lambda payload: self.state.set_ready(True))
        conn.on("server_status", lambda status, message: self.state.set_server_status(status))
        conn.on("stream", self._on_stream)
        conn.on("complete", self._on_complete)
        conn.on("server_error", self._on_server_error)
        conn.on("error", lambda exc: self.emit("error", exc))

    def _on_open(self) -> None:
        if not self.send_init:
            return
        # Re-sent on every reconnect so the server rebinds the same client id.
        init = wire.InitMessage(payload=wire.InitPayload(client_id=self.client_id, metadata=self.metadata))
        task = asyncio.create_task(self.connection.send(init))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _on_stream(self, chunk: str, message_id: str) -> None:
        state = self.state
        if state.is_streaming and state.generation_id != message_id:
            # A new generation began; the previous turn will get no more text.
            state.end_streaming_message()
        if not state.is_streaming:
            # The assistant turn gets its own id so it never collides with the user turn.
            state.start_assistant_message(generation_id=message_id)
        state.append_to_streaming_message(chunk)

    def _on_complete(self, payload: wire.CompletePayload) -> None:
        if self.state.is_streaming and self.state.generation_id != payload.message_id:
            self.state.end_streaming_message()
        self.state.complete_streaming_message(
            payload.content,
            payload.token_usage.model_dump(),
            payload.follow_up_questions,
        )
        self.emit("message", payload)

    def _on_server_error(self, payload: wire.ErrorPayload) -> None:
        logger.warning("Server error %s: %s", payload.code, payload.message)
        if payload.message_id is not None and payload.message_id == self.state.generation_id:
            self.state.end_streaming_message()
        self.emit("error", ChatRequestError(payload.message, payload.code))

    @property
    def session_id(self) -> Optional[str]:
        return self.connection.session_id

    async def connect(self) -> None:
        await self.connection.connect()

    async def disconnect(self) -> None:
        await self.connection.disconnect()
        for task in list(self._tasks):
            task.cancel()

    async def send_message(self, content: str) -> str:
        """Append the user turn optimistically and send it; never retried."""
        self.state.clear_follow_up_questions()
        message_id = self.state.add_user_message(content)
        await self.connection.send(wire.ChatMessage(payload=wire.ChatPayload(content=content, message_id=message_id)))
        return message_id

    async def _request_ready(self, message: wire.WireModel) -> wire.ReadyPayload:
        future: asyncio.Future = asyncio.get_running_loop().create_future()

        def on_ready(payload: wire.ReadyPayload) -> None:
            if not future.done():
                future.set_result(payload)

        def on_error(payload: wire.ErrorPayload) -> None:
            if not future.done():
                future.set_exception(ChatRequestError(payload.message, payload.code))

        self.connection.on("ready", on_ready)
        self.connection.on("server_error", on_error)
        try:
            if not await self.connection.send(message):
                raise ChatRequestError("WebSocket not connected", "CONNECTION_ERROR")
            return await asyncio.wait_for(future, self.request_timeout)
        except asyncio.TimeoutError:
            raise ChatRequestError(f"No response to {message.type} request", "TIMEOUT") from None
        finally:
            self.connection.off("ready", on_ready)
            self.connection.off("server_error", on_error)

    async def load_context(self, data: Dict[str, Any]) -> wire.ReadyPayload:
        return await self._request_ready(
            wire.ContextMessage(payload=wire.ContextPayload(data=data, context_id=generate_id()))
        )

    async def load_file(self, content: str, filename: Optional[str] = None) -> wire.ReadyPayload:
        """Upload file text as reference material; replaces any previous file."""
        return await self._request_ready(wire.FileMessage(payload=wire.FilePayload(content=content, filename=filename)))

    async def set_metadata(self, data: Union[Dict[str, Any], str], merge: bool = False) -> wire.ReadyPayload:
        return await self._request_ready(wire.MetadataMessage(payload=wire.MetadataPayload(data=data, merge=merge)))

    async def set_instructions(self, instructions: str) -> wire.ReadyPayload:
        return await self._request_ready(wire.InstructionsMessage(payload=wire.InstructionsPayload(content=instructions)))

    async def abort(self) -> None:
        await self.connection.send(wire.AbortMessage(payload=wire.AbortPayload(message_id=self.state.generation_id)))

    async def new_conversation(self) -> None:
        self.state.clear_messages()
        await self.connection.send(wire.NewConversationMessage())

    async def reset(self) -> None:
        self.state.reset()
        await self.connection.send(wire.ResetMessage())

    async def save_state(self) -> Dict[str, Any]:
        saved = self.state.save_state()
        if self.storage is not None:
            await self.storage.save(saved)
        return saved

    def load_state(self, saved: Dict[str, Any]) -> None:
        self.state.load_state(saved)

    async def load_persisted_state(self) -> bool:
        if self.storage is None:
            return False
        saved = await self.storage.load()
        if saved is None:
            return False
        self.state.load_state(saved)
        return True

    async def clear_persisted_state(self) -> None:
        if self.storage is not None:
            await self.storage.clear()
