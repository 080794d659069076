"""Fire-and-forget socket helpers shared by the router and the orchestrator."""

from __future__ import annotations

import logging
from typing import Any, Optional

from starlette.websockets import WebSocketState

from models.wire_messages import (
	ErrorCode,
	ErrorMessage,
	ErrorPayload,
	ServerStatus,
	StatusMessage,
	StatusPayload,
	WireModel,
	to_frame,
)

logger = logging.getLogger(__name__)


def is_open(websocket: Any) -> bool:
	"""Return True while both ends of the socket are still connected."""
	if websocket is None:
		return False
	client_state = getattr(websocket, "client_state", WebSocketState.CONNECTED)
	application_state = getattr(websocket, "application_state", WebSocketState.CONNECTED)
	return client_state == WebSocketState.CONNECTED and application_state == WebSocketState.CONNECTED


async def send_frame(websocket: Any, message: WireModel) -> bool:
	"""Send one protocol message; closed sockets and send failures are logged and dropped."""
	if not is_open(websocket):
		logger.debug("Dropping %s frame for closed socket", getattr(message, "type", "?"))
		return False
	try:
		await websocket.send_text(to_frame(message))
	except Exception as exc:
		logger.warning("WebSocket send failed: %s", exc)
		return False
	return True


async def close_socket(websocket: Any, code: int, reason: str) -> None:
	if not is_open(websocket):
		return
	try:
		await websocket.close(code=code, reason=reason)
	except Exception as exc:
		logger.debug("WebSocket close failed: %s", exc)


def status_message(status: ServerStatus, message: Optional[str] = None) -> StatusMessage:
	return StatusMessage(payload=StatusPayload(status=status, message=message))


def error_message(
	code: ErrorCode,
	message: str,
	message_id: Optional[str] = None,
	retryable: bool = True,
) -> ErrorMessage:
	return ErrorMessage(payload=ErrorPayload(code=code, message=message, message_id=message_id, retryable=retryable))
