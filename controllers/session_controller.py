"""Session provisioning helpers for the REST surface."""

from __future__ import annotations

import time
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import HTTPException, Request

from services.realtime.session_store import SessionStore
from utils.settings import ChatSettings


def _websocket_url(request: Request, settings: ChatSettings, session_id: str) -> str:
	secure = request.url.scheme == "https" or request.headers.get("x-forwarded-proto") == "https"
	host = request.headers.get("host") or request.url.netloc
	return f"{'wss' if secure else 'ws'}://{host}{settings.ws_path}/{session_id}"


def _require_session(store: SessionStore, session_id: str) -> None:
	if not store.exists(session_id):
		raise HTTPException(status_code=404, detail="Session not found")


async def start_session(request: Request, metadata: Optional[Dict[str, Any]]) -> Dict[str, Any]:
	"""Create a session ahead of the websocket upgrade and return where to connect."""
	store: SessionStore = request.app.state.session_store
	settings: ChatSettings = request.app.state.settings
	state = await store.create(metadata=metadata)
	expires_at = datetime.fromtimestamp(time.time() + settings.session_timeout_seconds, tz=timezone.utc)
	return {
		"sessionId": state.session_id,
		"websocketUrl": _websocket_url(request, settings, state.session_id),
		"expiresAt": expires_at.isoformat(),
	}


async def load_context(request: Request, session_id: str, data: Any) -> Dict[str, Any]:
	"""Pre-load a context object into an existing session."""
	store: SessionStore = request.app.state.session_store
	_require_session(store, session_id)
	if not isinstance(data, dict) or not data:
		raise HTTPException(status_code=400, detail="Context data object required")
	store.update_context(session_id, data)
	return {"success": True}


async def load_instructions(request: Request, session_id: str, content: Any) -> Dict[str, Any]:
	"""Pre-load custom system instructions into an existing session."""
	store: SessionStore = request.app.state.session_store
	_require_session(store, session_id)
	if not isinstance(content, str) or not content:
		raise HTTPException(status_code=400, detail="Instructions content string required")
	store.update_instructions(session_id, content)
	return {"success": True}
