"""Local conversation state kept consistent with server-pushed streaming events."""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from chat_client.events import EventEmitter
from chat_client.ids import generate_id

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class ChatMessage:
    id: str
    role: str
    content: str
    timestamp: datetime = field(default_factory=_now)
    is_streaming: bool = False
    follow_up_questions: Optional[List[str]] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "id": self.id,
            "role": self.role,
            "content": self.content,
            "timestamp": self.timestamp.isoformat(),
        }
        if self.is_streaming:
            data["isStreaming"] = True
        if self.follow_up_questions is not None:
            data["followUpQuestions"] = list(self.follow_up_questions)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ChatMessage":
        raw_ts = data.get("timestamp")
        try:
            timestamp = datetime.fromisoformat(raw_ts) if isinstance(raw_ts, str) else _now()
        except ValueError:
            timestamp = _now()
        questions = data.get("followUpQuestions")
        return cls(
            id=str(data.get("id") or generate_id()),
            role=str(data.get("role", "assistant")),
            content=str(data.get("content", "")),
            timestamp=timestamp,
            is_streaming=False,
            follow_up_questions=list(questions) if isinstance(questions, list) else None,
        )


def _empty_usage() -> Dict[str, int]:
    return {"prompt": 0, "completion": 0, "total": 0}


class ConversationState(EventEmitter):
    """Messages, token usage and connection flags for one chat view.

    Streaming text is only ever appended; completion replaces the text of the
    streaming message wholesale and clears its streaming flag.

    Events: message_added(message), message_updated(message), state_change(snapshot)
    """

    def __init__(self) -> None:
        super().__init__()
        self._init_state()

    def _init_state(self) -> None:
        self.messages: List[ChatMessage] = []
        self.token_usage: Dict[str, int] = _empty_usage()
        self.is_connected = False
        self.is_ready = False
        self.server_status = "idle"
        self.current_follow_up_questions: Optional[List[str]] = None
        self._streaming_message_id: Optional[str] = None
        self._generation_id: Optional[str] = None

    def get_state(self) -> Dict[str, Any]:
        return {
            "messages": list(self.messages),
            "tokenUsage": dict(self.token_usage),
            "isConnected": self.is_connected,
            "isReady": self.is_ready,
            "serverStatus": self.server_status,
            "currentFollowUpQuestions": self.current_follow_up_questions,
        }

    def _changed(self) -> None:
        self.emit("state_change", self.get_state())

    @property
    def is_streaming(self) -> bool:
        return self._streaming_message_id is not None

    @property
    def streaming_message_id(self) -> Optional[str]:
        return self._streaming_message_id

    @property
    def generation_id(self) -> Optional[str]:
        """Server message id of the generation feeding the streaming turn."""
        return self._generation_id

    def _find(self, message_id: Optional[str]) -> Optional[ChatMessage]:
        if message_id is None:
            return None
        for message in self.messages:
            if message.id == message_id:
                return message
        return None

    def set_connected(self, connected: bool) -> None:
        self.is_connected = connected
        if not connected:
            self.is_ready = False
        self._changed()

    def set_ready(self, ready: bool) -> None:
        self.is_ready = ready
        self._changed()

    def set_server_status(self, status: str) -> None:
        self.server_status = status
        self._changed()

    def _append(self, message: ChatMessage) -> ChatMessage:
        self.messages.append(message)
        self.emit("message_added", message)
        self._changed()
        return message

    def add_user_message(self, content: str) -> str:
        """Optimistically append the user's turn; returns its id."""
        message = self._append(ChatMessage(id=generate_id(), role="user", content=content))
        return message.id

    def start_assistant_message(self, message_id: Optional[str] = None, generation_id: Optional[str] = None) -> str:
        """Open an empty streaming assistant turn under a fresh id.

        ``generation_id`` is the server-side message id the turn answers.
        """
        message = ChatMessage(id=message_id or generate_id(), role="assistant", content="", is_streaming=True)
        self._streaming_message_id = message.id
        self._generation_id = generation_id
        self._append(message)
        return message.id

    def end_streaming_message(self) -> None:
        """Stop streaming into the current turn, keeping whatever text arrived."""
        if self._streaming_message_id is None:
            return
        message = self._find(self._streaming_message_id)
        self._streaming_message_id = None
        self._generation_id = None
        if message is not None:
            message.is_streaming = False
            self.emit("message_updated", message)
        self._changed()

    def append_to_streaming_message(self, chunk: str) -> None:
        message = self._find(self._streaming_message_id)
        if message is None:
            return
        message.content += chunk
        self.emit("message_updated", message)
        self._changed()

    def complete_streaming_message(
        self,
        content: str,
        token_usage: Optional[Dict[str, int]] = None,
        follow_up_questions: Optional[List[str]] = None,
    ) -> None:
        # No increments arrive while follow-up questions are enabled server-side.
        if self._streaming_message_id is None:
            self.start_assistant_message()

        message = self._find(self._streaming_message_id)
        if message is not None:
            message.content = content
            message.is_streaming = False
            message.follow_up_questions = follow_up_questions
            self.emit("message_updated", message)

        usage = token_usage or {}
        for key in ("prompt", "completion", "total"):
            self.token_usage[key] += int(usage.get(key, 0) or 0)

        self.current_follow_up_questions = follow_up_questions
        self._streaming_message_id = None
        self._generation_id = None
        self._changed()

    def add_response(self, content: str) -> None:
        self._append(ChatMessage(id=generate_id(), role="assistant", content=content))

    def add_system_message(self, content: str) -> None:
        self._append(ChatMessage(id=generate_id(), role="system", content=content))

    def clear_follow_up_questions(self) -> None:
        self.current_follow_up_questions = None
        self._changed()

    def clear_messages(self) -> None:
        self.messages = []
        self.token_usage = _empty_usage()
        self._streaming_message_id = None
        self._generation_id = None
        self._changed()

    def reset(self) -> None:
        # Connection flags describe the socket, not the conversation.
        connected, ready = self.is_connected, self.is_ready
        self._init_state()
        self.is_connected, self.is_ready = connected, ready
        self._changed()

    def save_state(self) -> Dict[str, Any]:
        """Snapshot as a JSON-ready ``{messages, tokenUsage, timestamp}`` dict."""
        return {
            "messages": [message.to_dict() for message in self.messages],
            "tokenUsage": dict(self.token_usage),
            "timestamp": _now().isoformat(),
        }

    def load_state(self, saved: Dict[str, Any]) -> None:
        self.messages = [ChatMessage.from_dict(item) for item in saved.get("messages") or [] if isinstance(item, dict)]
        usage = saved.get("tokenUsage") or {}
        self.token_usage = {key: int(usage.get(key, 0) or 0) for key in ("prompt", "completion", "total")}
        self._streaming_message_id = None
        self._generation_id = None
        logger.debug("Loaded %d messages from saved state", len(self.messages))
        self._changed()

    def export(self) -> Dict[str, Any]:
        return {
            "messages": copy.deepcopy(self.messages),
            "tokenUsage": dict(self.token_usage),
        }
