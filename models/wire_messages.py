"""Typed JSON frames exchanged over the chat websocket.

Every frame is an object of the form ``{"type": ..., "payload": {...}}``.
Field names are snake_case in Python and camelCase on the wire.
"""

from __future__ import annotations

from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic.alias_generators import to_camel

ErrorCode = Literal[
	"CONNECTION_ERROR",
	"AUTH_FAILED",
	"RATE_LIMIT",
	"CONTEXT_TOO_LARGE",
	"MESSAGE_TOO_LONG",
	"STREAM_ABORTED",
	"SERVER_ERROR",
	"TIMEOUT",
]
ServerStatus = Literal["idle", "typing", "processing"]

SERVER_VERSION = "1.0.0"


class WireModel(BaseModel):
	"""Immutable base for every protocol model."""

	model_config = ConfigDict(frozen=True, populate_by_name=True, alias_generator=to_camel)


# Client -> server payloads


class InitPayload(WireModel):
	client_id: Optional[str] = None
	metadata: Optional[Dict[str, Any]] = None


class ContextPayload(WireModel):
	data: Dict[str, Any]
	context_id: Optional[str] = None


class ChatPayload(WireModel):
	# Optional so the router can report missing fields with its own error text.
	content: Optional[str] = None
	message_id: Optional[str] = None
	conversation_id: Optional[str] = None


class AbortPayload(WireModel):
	message_id: Optional[str] = None


class FilePayload(WireModel):
	content: str
	filename: Optional[str] = None


class MetadataPayload(WireModel):
	data: Union[Dict[str, Any], str]
	merge: bool = False


class InstructionsPayload(WireModel):
	content: str


class EmptyPayload(WireModel):
	pass


CLIENT_PAYLOADS: Dict[str, type] = {
	"init": InitPayload,
	"context": ContextPayload,
	"message": ChatPayload,
	"ping": EmptyPayload,
	"abort": AbortPayload,
	"new_conversation": EmptyPayload,
	"reset": EmptyPayload,
	"file": FilePayload,
	"metadata": MetadataPayload,
	"instructions": InstructionsPayload,
}


class InitMessage(WireModel):
	type: Literal["init"] = "init"
	payload: InitPayload = Field(default_factory=InitPayload)


class ContextMessage(WireModel):
	type: Literal["context"] = "context"
	payload: ContextPayload


class ChatMessage(WireModel):
	type: Literal["message"] = "message"
	payload: ChatPayload


class PingMessage(WireModel):
	type: Literal["ping"] = "ping"


class AbortMessage(WireModel):
	type: Literal["abort"] = "abort"
	payload: AbortPayload = Field(default_factory=AbortPayload)


class NewConversationMessage(WireModel):
	type: Literal["new_conversation"] = "new_conversation"


class ResetMessage(WireModel):
	type: Literal["reset"] = "reset"


class FileMessage(WireModel):
	type: Literal["file"] = "file"
	payload: FilePayload


class MetadataMessage(WireModel):
	type: Literal["metadata"] = "metadata"
	payload: MetadataPayload


class InstructionsMessage(WireModel):
	type: Literal["instructions"] = "instructions"
	payload: InstructionsPayload


# Server -> client payloads


class TokenUsagePayload(WireModel):
	prompt: int = 0
	completion: int = 0
	total: int = 0


class ConnectedPayload(WireModel):
	session_id: str
	server_version: Optional[str] = None


class ReadyPayload(WireModel):
	context_id: Optional[str] = None


class StatusPayload(WireModel):
	status: ServerStatus
	message: Optional[str] = None


class StreamPayload(WireModel):
	chunk: str
	message_id: str


class CompletePayload(WireModel):
	message_id: str
	content: str
	token_usage: TokenUsagePayload
	metadata: Optional[Dict[str, Any]] = None
	follow_up_questions: Optional[List[str]] = None


class ErrorPayload(WireModel):
	code: ErrorCode
	message: str
	message_id: Optional[str] = None
	retryable: bool = True


class ConnectedMessage(WireModel):
	type: Literal["connected"] = "connected"
	payload: ConnectedPayload


class ReadyMessage(WireModel):
	type: Literal["ready"] = "ready"
	payload: ReadyPayload = Field(default_factory=ReadyPayload)


class StatusMessage(WireModel):
	type: Literal["status"] = "status"
	payload: StatusPayload


class StreamMessage(WireModel):
	type: Literal["stream"] = "stream"
	payload: StreamPayload


class CompleteMessage(WireModel):
	type: Literal["complete"] = "complete"
	payload: CompletePayload


class ErrorMessage(WireModel):
	type: Literal["error"] = "error"
	payload: ErrorPayload


class PongMessage(WireModel):
	type: Literal["pong"] = "pong"


ServerMessage = Annotated[
	Union[
		ConnectedMessage,
		ReadyMessage,
		StatusMessage,
		StreamMessage,
		CompleteMessage,
		ErrorMessage,
		PongMessage,
	],
	Field(discriminator="type"),
]

SERVER_MESSAGE_ADAPTER: TypeAdapter = TypeAdapter(ServerMessage)


def to_frame(message: WireModel) -> str:
	"""Serialize a protocol model to its JSON wire form."""
	return message.model_dump_json(by_alias=True, exclude_none=True)


def parse_server_message(data: Any) -> WireModel:
	"""Validate a decoded server frame; raises pydantic.ValidationError."""
	return SERVER_MESSAGE_ADAPTER.validate_python(data)
