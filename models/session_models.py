"""Session domain models for realtime chat."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, List, Optional

if TYPE_CHECKING:
	from services.realtime.cancellation import CancellationHandle

ROLES = ("user", "assistant", "system")


@dataclass
class ConversationTurn:
	"""One role-tagged entry in a session's conversation history."""

	role: str
	content: str
	message_id: Optional[str] = None
	created_at: float = field(default_factory=lambda: time.time())


@dataclass
class TokenUsage:
	"""Accumulated prompt/completion token counters."""

	prompt: int = 0
	completion: int = 0
	total: int = 0

	def add(self, prompt: int, completion: int, total: Optional[int] = None) -> None:
		"""Add one generation's usage; negative deltas are ignored."""
		prompt = max(int(prompt or 0), 0)
		completion = max(int(completion or 0), 0)
		total = prompt + completion if total is None else max(int(total), 0)
		self.prompt += prompt
		self.completion += completion
		self.total += total

	def as_dict(self) -> Dict[str, int]:
		return {"prompt": self.prompt, "completion": self.completion, "total": self.total}


@dataclass
class Session:
	"""In-memory record binding a socket to context, instructions, and history."""

	session_id: str
	websocket: Any = None
	context: Optional[Dict[str, Any]] = None
	file_content: Optional[str] = None
	file_name: Optional[str] = None
	messages: List[ConversationTurn] = field(default_factory=list)
	token_usage: TokenUsage = field(default_factory=TokenUsage)
	system_instructions: Optional[str] = None
	metadata: Dict[str, Any] = field(default_factory=dict)
	active_generation: Optional["CancellationHandle"] = None
	created_at: float = field(default_factory=lambda: time.time())
	last_activity: float = field(default_factory=lambda: time.time())

	def touch(self, now: Optional[float] = None) -> None:
		self.last_activity = time.time() if now is None else now

	@property
	def is_generating(self) -> bool:
		return self.active_generation is not None
