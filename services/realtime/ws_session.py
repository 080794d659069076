"""Dispatch realtime websocket events to the appropriate handlers."""
from __future__ import annotations

import json
import logging
from typing import Any, Dict, Optional

from pydantic import ValidationError

from models.session_models import Session
from models.wire_messages import (
	CLIENT_PAYLOADS,
	SERVER_VERSION,
	ConnectedMessage,
	ConnectedPayload,
	ErrorCode,
	PongMessage,
	ReadyMessage,
	ReadyPayload,
)
from services.realtime.session_store import SessionStore
from services.realtime.transport import error_message, send_frame, status_message
from services.realtime.ws_chat import ChatStreamHandler
from utils.settings import ChatSettings

logger = logging.getLogger(__name__)

NO_SESSION_MESSAGE = "Session not initialized. Send init message first."


class ChatMessageRouter:
	"""Route inbound protocol messages for the sessions of one process."""

	def __init__(self, store: SessionStore, chat_handler: ChatStreamHandler, settings: ChatSettings) -> None:
		self.store = store
		self.chat_handler = chat_handler
		self.settings = settings
		self._handlers = {
			"init": self._init,
			"context": self._context,
			"message": self._message,
			"ping": self._ping,
			"abort": self._abort,
			"new_conversation": self._new_conversation,
			"reset": self._reset,
			"file": self._file,
			"metadata": self._metadata,
			"instructions": self._instructions,
		}
		self._requires_session = set(self._handlers) - {"init", "ping"}

	async def handle_raw(self, websocket: Any, raw: str) -> None:
		"""Decode one text frame and dispatch it."""
		try:
			frame = json.loads(raw)
		except (TypeError, ValueError):
			await self._send_error(websocket, "SERVER_ERROR", "Invalid JSON message")
			return
		if not isinstance(frame, dict):
			await self._send_error(websocket, "SERVER_ERROR", "Message must be a JSON object")
			return
		await self.handle(websocket, frame)

	async def handle(self, websocket: Any, frame: Dict[str, Any]) -> None:
		"""Process a single inbound message; nothing raised here escapes to the socket loop."""
		message_type = frame.get("type")
		handler = self._handlers.get(message_type) if isinstance(message_type, str) else None
		if handler is None:
			await self._send_error(websocket, "SERVER_ERROR", f"Unknown message type: {message_type}", retryable=False)
			return

		session = self.store.get_by_socket(websocket)
		if session is None and message_type in self._requires_session:
			await self._send_error(websocket, "CONNECTION_ERROR", NO_SESSION_MESSAGE, retryable=False)
			return

		raw_payload = frame.get("payload")
		try:
			payload = CLIENT_PAYLOADS[message_type].model_validate(raw_payload if raw_payload is not None else {})
		except ValidationError as exc:
			detail = "; ".join(
				f"{'.'.join(str(part) for part in error['loc']) or 'payload'}: {error['msg']}" for error in exc.errors()
			)
			await self._send_error(websocket, "SERVER_ERROR", f"Invalid {message_type} payload: {detail}", retryable=False)
			return

		try:
			await handler(websocket, session, payload)
		except Exception:
			logger.exception("Error handling %s message", message_type)
			message_id = getattr(payload, "message_id", None)
			await self._send_error(websocket, "SERVER_ERROR", "Internal server error", message_id)

	async def _init(self, websocket: Any, session: Optional[Session], payload: Any) -> None:
		state = await self.store.create(client_id=payload.client_id, websocket=websocket, metadata=payload.metadata)
		await send_frame(websocket, ConnectedMessage(payload=ConnectedPayload(session_id=state.session_id, server_version=SERVER_VERSION)))
		logger.info("Client initialized: %s", state.session_id)

	async def _context(self, websocket: Any, session: Session, payload: Any) -> None:
		if self._too_large(json.dumps(payload.data, ensure_ascii=False, default=str)):
			await self._send_error(websocket, "CONTEXT_TOO_LARGE", "Context exceeds the maximum allowed size", retryable=False)
			return
		await send_frame(websocket, status_message("processing", "Loading context..."))
		self.store.update_context(session.session_id, payload.data)
		await send_frame(websocket, ReadyMessage(payload=ReadyPayload(context_id=payload.context_id)))
		await send_frame(websocket, status_message("idle"))
		logger.info("Context loaded for session %s (context_id=%s)", session.session_id, payload.context_id)

	async def _file(self, websocket: Any, session: Session, payload: Any) -> None:
		if self._too_large(payload.content):
			await self._send_error(websocket, "CONTEXT_TOO_LARGE", "File content exceeds the maximum allowed size", retryable=False)
			return
		self.store.update_file_content(session.session_id, payload.content, payload.filename)
		await send_frame(websocket, ReadyMessage())
		logger.info("File content loaded for session %s (%s)", session.session_id, payload.filename)

	async def _metadata(self, websocket: Any, session: Session, payload: Any) -> None:
		data = payload.data
		if isinstance(data, str):
			try:
				data = json.loads(data)
			except ValueError:
				data = None
		if not isinstance(data, dict):
			await self._send_error(websocket, "SERVER_ERROR", "Invalid JSON in metadata", retryable=False)
			return
		self.store.update_metadata(session.session_id, data, merge=payload.merge)
		await send_frame(websocket, ReadyMessage())
		logger.info("Metadata loaded for session %s (merge=%s)", session.session_id, payload.merge)

	async def _instructions(self, websocket: Any, session: Session, payload: Any) -> None:
		self.store.update_instructions(session.session_id, payload.content)
		await send_frame(websocket, ReadyMessage())
		logger.info("System instructions updated for session %s", session.session_id)

	async def _message(self, websocket: Any, session: Session, payload: Any) -> None:
		content, message_id = payload.content, payload.message_id
		if not content or not message_id:
			await self._send_error(websocket, "SERVER_ERROR", "Message content and messageId are required", message_id, retryable=False)
			return
		limit = self.settings.max_message_length
		if len(content) > limit:
			await self._send_error(
				websocket,
				"MESSAGE_TOO_LONG",
				f"Message exceeds maximum length of {limit} characters",
				message_id,
				retryable=False,
			)
			return
		if session.is_generating:
			await self._send_error(
				websocket,
				"SERVER_ERROR",
				"Another message is being processed. Wait or abort first.",
				message_id,
				retryable=False,
			)
			return
		await self.chat_handler.start(session, content, message_id)

	async def _ping(self, websocket: Any, session: Optional[Session], payload: Any) -> None:
		await send_frame(websocket, PongMessage())
		if session is not None:
			session.touch()

	async def _abort(self, websocket: Any, session: Session, payload: Any) -> None:
		self.chat_handler.abort(session)
		session.touch()
		logger.debug("Abort requested for session %s (message=%s)", session.session_id, payload.message_id)

	async def _new_conversation(self, websocket: Any, session: Session, payload: Any) -> None:
		self.chat_handler.abort(session)
		self.store.clear_conversation(session.session_id)
		await send_frame(websocket, status_message("idle"))
		logger.info("New conversation started for session %s", session.session_id)

	async def _reset(self, websocket: Any, session: Session, payload: Any) -> None:
		self.chat_handler.abort(session)
		self.store.reset(session.session_id)
		await send_frame(websocket, status_message("idle"))
		logger.info("Session reset: %s", session.session_id)

	def _too_large(self, text: str) -> bool:
		return len(text) > self.settings.max_context_chars

	async def _send_error(
		self,
		websocket: Any,
		code: ErrorCode,
		detail: str,
		message_id: Optional[str] = None,
		retryable: bool = True,
	) -> None:
		await send_frame(websocket, error_message(code, detail, message_id, retryable))
