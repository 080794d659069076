"""WebSocket endpoints for realtime chat sessions."""

from __future__ import annotations

import logging

from fastapi import APIRouter, WebSocket, status
from starlette.websockets import WebSocketDisconnect

from models.wire_messages import SERVER_VERSION, ConnectedMessage, ConnectedPayload
from services.realtime.session_store import SessionStore
from services.realtime.transport import error_message, send_frame
from services.realtime.ws_session import ChatMessageRouter

logger = logging.getLogger(__name__)


def create_router(ws_path: str = "/ws") -> APIRouter:
	"""Return a router serving `<ws_path>` (init-driven) and `<ws_path>/{session_id}` (provisioned)."""
	router = APIRouter()
	router.add_api_websocket_route(ws_path, chat_socket)
	router.add_api_websocket_route(f"{ws_path}/{{session_id}}", session_socket)
	return router


async def session_socket(websocket: WebSocket, session_id: str) -> None:
	"""Attach a socket to a provisioned session; unknown ids are refused before the upgrade."""
	store: SessionStore = websocket.app.state.session_store
	if not store.exists(session_id):
		logger.info("Rejected websocket for unknown session %s", session_id)
		await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
		return
	await websocket.accept()
	if not await store.attach_socket(session_id, websocket):
		# Swept between the existence check and the upgrade.
		await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
		return
	await send_frame(websocket, ConnectedMessage(payload=ConnectedPayload(session_id=session_id, server_version=SERVER_VERSION)))
	await _serve(websocket)


async def chat_socket(websocket: WebSocket) -> None:
	"""Accept a socket and wait for an `init` message to bind a session."""
	await websocket.accept()
	await _serve(websocket)


async def _serve(websocket: WebSocket) -> None:
	store: SessionStore = websocket.app.state.session_store
	chat_router: ChatMessageRouter = websocket.app.state.chat_router
	close_code = None
	try:
		while True:
			try:
				raw = await websocket.receive_text()
			except WebSocketDisconnect as exc:
				close_code = exc.code
				break
			except KeyError:
				# Binary frame: Starlette delivers it without a "text" field.
				await send_frame(websocket, error_message("SERVER_ERROR", "Invalid websocket frame", retryable=False))
				continue
			except RuntimeError:
				break
			await chat_router.handle_raw(websocket, raw)
	finally:
		session_id = await store.destroy_by_socket(websocket)
		logger.info("WebSocket connection closed (session=%s, code=%s)", session_id, close_code)
