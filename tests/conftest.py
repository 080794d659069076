"""Pytest configuration and fixtures."""

import asyncio
import json
from typing import Any, Dict, List, Optional

import pytest
from starlette.websockets import WebSocketState

from services.realtime.session_store import SessionStore
from services.realtime.text_generator import CompletionResult
from services.realtime.ws_chat import ChatStreamHandler
from services.realtime.ws_session import ChatMessageRouter
from utils.settings import ChatSettings


class FakeWebSocket:
    """Server-side socket stand-in that records every frame sent to it."""

    def __init__(self, fail_send: bool = False):
        self.client_state = WebSocketState.CONNECTED
        self.application_state = WebSocketState.CONNECTED
        self.sent: List[Dict[str, Any]] = []
        self.closed_with: Optional[tuple] = None
        self.fail_send = fail_send

    async def send_text(self, data: str) -> None:
        if self.fail_send:
            raise RuntimeError("send failed")
        self.sent.append(json.loads(data))

    async def close(self, code: int = 1000, reason: Optional[str] = None) -> None:
        self.closed_with = (code, reason)
        self.client_state = WebSocketState.DISCONNECTED
        self.application_state = WebSocketState.DISCONNECTED

    def types(self) -> List[str]:
        return [frame["type"] for frame in self.sent]

    def of_type(self, frame_type: str) -> List[Dict[str, Any]]:
        return [frame for frame in self.sent if frame["type"] == frame_type]

    def statuses(self) -> List[str]:
        return [frame["payload"]["status"] for frame in self.of_type("status")]


class FakeTextGenerator:
    """Scripted text generator.

    Streams `chunks`, optionally waits on `release` (when `hold` is set), then
    completes or reports `error`.
    """

    def __init__(
        self,
        chunks=("Hello", " world"),
        *,
        content: Optional[str] = None,
        prompt_tokens: int = 10,
        completion_tokens: int = 5,
        error: Optional[Exception] = None,
        hold: bool = False,
    ):
        self.chunks = list(chunks)
        self.content = content
        self.prompt_tokens = prompt_tokens
        self.completion_tokens = completion_tokens
        self.error = error
        self.hold = hold
        self.release = asyncio.Event()
        self.calls: List[Dict[str, Any]] = []

    async def stream_completion(self, *, system_prompt, messages, handle, on_chunk, on_complete, on_error):
        self.calls.append({"system_prompt": system_prompt, "messages": list(messages), "handle": handle})
        try:
            for chunk in self.chunks:
                handle.raise_if_cancelled()
                await on_chunk(chunk)
            if self.hold:
                await self.release.wait()
            handle.raise_if_cancelled()
            if self.error is not None:
                raise self.error
        except Exception as exc:
            await on_error(exc)
            return
        await on_complete(
            CompletionResult(
                content=self.content if self.content is not None else "".join(self.chunks),
                prompt_tokens=self.prompt_tokens,
                completion_tokens=self.completion_tokens,
                total_tokens=self.prompt_tokens + self.completion_tokens,
                model="fake-model",
            )
        )


@pytest.fixture
def settings():
    """Settings with follow-up questions off so chunks are streamed."""
    return ChatSettings(follow_up_questions_enabled=False)


@pytest.fixture
def store():
    return SessionStore()


@pytest.fixture
def generator():
    return FakeTextGenerator()


@pytest.fixture
def chat_handler(store, generator, settings):
    return ChatStreamHandler(store, generator, settings)


@pytest.fixture
def chat_router(store, chat_handler, settings):
    return ChatMessageRouter(store, chat_handler, settings)


@pytest.fixture
def websocket():
    return FakeWebSocket()


@pytest.fixture
def drain(chat_handler):
    """Return a coroutine function that waits for scheduled generations to finish."""

    async def _drain():
        while chat_handler._tasks:
            await asyncio.gather(*list(chat_handler._tasks), return_exceptions=True)

    return _drain


@pytest.fixture
def make_websocket():
    return FakeWebSocket


@pytest.fixture
def make_generator():
    return FakeTextGenerator
