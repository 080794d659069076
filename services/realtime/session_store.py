"""Simple in-memory store for realtime chat sessions."""

from __future__ import annotations

import logging
import time
from typing import Any, Dict, List, Optional
from uuid import uuid4

from models.session_models import ROLES, ConversationTurn, Session, TokenUsage
from services.realtime import transport
from services.realtime.cancellation import CancellationHandle

logger = logging.getLogger(__name__)

REPLACED_CLOSE_CODE = 1000
REPLACED_CLOSE_REASON = "Replaced by new connection"
DESTROYED_CLOSE_CODE = 1001
DESTROYED_CLOSE_REASON = "Session closed"
ACTIVE_WINDOW_SECONDS = 5 * 60


class SessionStore:
	"""Own every live session record for this process.

	All mutation happens on the event loop thread, so the store keeps no
	locks. Mutators on an unknown id are silent no-ops.
	"""

	def __init__(self) -> None:
		self._sessions: Dict[str, Session] = {}

	def __len__(self) -> int:
		return len(self._sessions)

	async def create(
		self,
		client_id: Optional[str] = None,
		websocket: Any = None,
		metadata: Optional[Dict[str, Any]] = None,
	) -> Session:
		"""Create a session, replacing any existing one under the same id."""
		session_id = client_id or uuid4().hex
		bound = self.get_by_socket(websocket)
		if bound is not None and bound.session_id != session_id:
			# One socket, one session: drop the old binding but keep the socket open.
			await self.destroy(bound.session_id, close_socket=False)
		previous = self._sessions.get(session_id)
		if previous is not None:
			# A re-init over the same socket must not close that socket.
			await self.destroy(session_id, close_socket=previous.websocket is not websocket)
		state = Session(session_id=session_id, websocket=websocket, metadata=dict(metadata or {}))
		self._sessions[session_id] = state
		logger.info("Session created: %s", session_id)
		return state

	def get(self, session_id: str) -> Optional[Session]:
		return self._sessions.get(session_id)

	def exists(self, session_id: str) -> bool:
		return session_id in self._sessions

	def get_by_socket(self, websocket: Any) -> Optional[Session]:
		"""Return the session currently bound to this socket, if any."""
		if websocket is None:
			return None
		for state in self._sessions.values():
			if state.websocket is websocket:
				return state
		return None

	async def attach_socket(self, session_id: str, websocket: Any) -> bool:
		"""Bind a socket to an existing session, closing the one it replaces."""
		state = self._sessions.get(session_id)
		if state is None:
			return False
		previous = state.websocket
		if previous is not None and previous is not websocket:
			await transport.close_socket(previous, REPLACED_CLOSE_CODE, REPLACED_CLOSE_REASON)
		state.websocket = websocket
		state.touch()
		logger.info("WebSocket attached to session %s", session_id)
		return True

	def touch(self, session_id: str) -> None:
		state = self._sessions.get(session_id)
		if state is not None:
			state.touch()

	def update_context(self, session_id: str, context: Dict[str, Any]) -> None:
		state = self._sessions.get(session_id)
		if state is not None:
			state.context = context
			state.touch()
			logger.debug("Context updated for session %s", session_id)

	def update_instructions(self, session_id: str, instructions: str) -> None:
		state = self._sessions.get(session_id)
		if state is not None:
			state.system_instructions = instructions
			state.touch()
			logger.debug("System instructions updated for session %s", session_id)

	def update_file_content(self, session_id: str, content: str, filename: Optional[str] = None) -> None:
		state = self._sessions.get(session_id)
		if state is not None:
			state.file_content = content
			state.file_name = filename
			state.touch()
			logger.debug("File content updated for session %s (%s)", session_id, filename)

	def update_metadata(self, session_id: str, data: Dict[str, Any], merge: bool = False) -> None:
		"""Replace the session metadata, or merge keys into it when `merge` is set."""
		state = self._sessions.get(session_id)
		if state is None:
			return
		if merge:
			state.metadata = {**state.metadata, **data}
		else:
			state.metadata = dict(data)
		state.touch()

	def add_message(
		self,
		session_id: str,
		role: str,
		content: str,
		message_id: Optional[str] = None,
	) -> Optional[Session]:
		"""Append a turn to the session conversation."""
		if role not in ROLES:
			raise ValueError(f"Unknown conversation role: {role}")
		state = self._sessions.get(session_id)
		if state is None:
			return None
		state.messages.append(ConversationTurn(role=role, content=content, message_id=message_id))
		state.touch()
		return state

	def add_token_usage(self, session_id: str, prompt: int, completion: int, total: Optional[int] = None) -> None:
		state = self._sessions.get(session_id)
		if state is not None:
			state.token_usage.add(prompt, completion, total)

	def set_active_generation(self, session_id: str, handle: Optional[CancellationHandle]) -> None:
		state = self._sessions.get(session_id)
		if state is not None:
			state.active_generation = handle

	def clear_conversation(self, session_id: str) -> None:
		"""Drop the history but keep context and instructions."""
		state = self._sessions.get(session_id)
		if state is not None:
			state.messages = []
			state.touch()
			logger.debug("Conversation cleared for session %s", session_id)

	def reset(self, session_id: str) -> None:
		"""Drop history, context, file content, instructions and token counters."""
		state = self._sessions.get(session_id)
		if state is None:
			return
		state.context = None
		state.file_content = None
		state.file_name = None
		state.messages = []
		state.token_usage = TokenUsage()
		state.system_instructions = None
		state.touch()
		logger.debug("Session reset: %s", session_id)

	async def destroy(self, session_id: str, close_socket: bool = True) -> None:
		"""Abort any active generation, forget the session, and close its socket."""
		state = self._sessions.get(session_id)
		if state is None:
			return
		if state.active_generation is not None:
			state.active_generation.cancel()
			state.active_generation = None
		del self._sessions[session_id]
		websocket, state.websocket = state.websocket, None
		if close_socket and websocket is not None:
			await transport.close_socket(websocket, DESTROYED_CLOSE_CODE, DESTROYED_CLOSE_REASON)
		logger.info("Session destroyed: %s", session_id)

	async def destroy_by_socket(self, websocket: Any) -> Optional[str]:
		"""Destroy whichever session is bound to a socket that has gone away."""
		state = self.get_by_socket(websocket)
		if state is None:
			return None
		await self.destroy(state.session_id, close_socket=False)
		return state.session_id

	def expired(self, max_age: float, now: Optional[float] = None) -> List[str]:
		now = time.time() if now is None else now
		return [sid for sid, state in self._sessions.items() if now - state.last_activity > max_age]

	async def sweep_expired(self, max_age: float, now: Optional[float] = None) -> int:
		"""Destroy sessions idle for longer than `max_age` seconds and return the count."""
		stale = self.expired(max_age, now)
		for session_id in stale:
			await self.destroy(session_id)
		if stale:
			logger.info("Cleaned up %d stale sessions", len(stale))
		return len(stale)

	def stats(self, now: Optional[float] = None) -> Dict[str, int]:
		now = time.time() if now is None else now
		active = sum(1 for state in self._sessions.values() if now - state.last_activity < ACTIVE_WINDOW_SECONDS)
		return {"total_sessions": len(self._sessions), "active_sessions": active}

	async def shutdown(self) -> None:
		"""Destroy every session."""
		for session_id in list(self._sessions.keys()):
			await self.destroy(session_id)
		logger.info("SessionStore shutdown complete")
