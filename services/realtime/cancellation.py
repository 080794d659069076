"""Per-generation cancellation handle."""

from __future__ import annotations

import asyncio
from typing import Optional
from uuid import uuid4

ABORTED_MESSAGE = "Request aborted"


class GenerationAborted(Exception):
	"""Raised or reported when a generation observes its cancellation."""

	def __init__(self, message: str = ABORTED_MESSAGE) -> None:
		super().__init__(message)


class CancellationHandle:
	"""Token shared between the orchestrator and the text generator.

	A session holds at most one handle at a time; identity (not the
	cancelled flag) decides whether a callback belongs to the live
	generation.
	"""

	def __init__(self, message_id: Optional[str] = None) -> None:
		self.handle_id = uuid4().hex
		self.message_id = message_id
		self._event = asyncio.Event()
		self.task: Optional[asyncio.Task] = None

	@property
	def cancelled(self) -> bool:
		return self._event.is_set()

	def cancel(self) -> None:
		self._event.set()

	def raise_if_cancelled(self) -> None:
		if self._event.is_set():
			raise GenerationAborted()

	def __repr__(self) -> str:
		return f"CancellationHandle({self.handle_id[:8]}, message_id={self.message_id!r}, cancelled={self.cancelled})"
