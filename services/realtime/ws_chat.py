"""Drive one streaming generation per chat session."""
from __future__ import annotations

import asyncio
import logging
from typing import Optional, Set

from models.session_models import Session
from models.wire_messages import (
	CompleteMessage,
	CompletePayload,
	StreamMessage,
	StreamPayload,
	TokenUsagePayload,
)
from services.realtime.cancellation import CancellationHandle, GenerationAborted
from services.realtime.context_builder import build_system_prompt, question_count, should_generate_questions
from services.realtime.response_parser import parse_response_with_questions
from services.realtime.session_store import SessionStore
from services.realtime.text_generator import CompletionResult, TextGenerator
from services.realtime.transport import error_message, send_frame, status_message
from utils.settings import ChatSettings

logger = logging.getLogger(__name__)


class ChatStreamHandler:
	"""Stream a model answer for a user turn and fold the result back into the session."""

	def __init__(self, store: SessionStore, generator: TextGenerator, settings: ChatSettings) -> None:
		self.store = store
		self.generator = generator
		self.settings = settings
		self._tasks: Set[asyncio.Task] = set()

	async def start(self, session: Session, content: str, message_id: str) -> CancellationHandle:
		"""Claim the session's generation slot and schedule the model call.

		The caller must have checked that no generation is active.
		"""
		handle = CancellationHandle(message_id)
		self.store.set_active_generation(session.session_id, handle)
		turns = len(session.messages)
		try:
			follow_up = should_generate_questions(session, self.settings)
			await send_frame(session.websocket, status_message("typing"))
			self.store.add_message(session.session_id, "user", content, message_id)
			system_prompt = build_system_prompt(session, self.settings)
		except Exception:
			logger.exception("Failed to start generation for session %s", session.session_id)
			# Release the slot and drop the unanswered user turn.
			del session.messages[turns:]
			await self._fail(session, handle, RuntimeError("Failed to start generation"))
			return handle

		task = asyncio.create_task(
			self._run(session, handle, system_prompt, follow_up),
			name=f"generation-{session.session_id}-{message_id}",
		)
		handle.task = task
		self._tasks.add(task)
		task.add_done_callback(self._tasks.discard)
		return handle

	def abort(self, session: Session) -> bool:
		"""Cancel the active generation, if any, and release the slot."""
		handle = session.active_generation
		if handle is None:
			return False
		handle.cancel()
		self.store.set_active_generation(session.session_id, None)
		logger.debug("Stream aborted for session %s", session.session_id)
		return True

	async def shutdown(self) -> None:
		"""Cancel any generation tasks still running."""
		for task in list(self._tasks):
			task.cancel()
		if self._tasks:
			await asyncio.gather(*self._tasks, return_exceptions=True)

	async def _run(self, session: Session, handle: CancellationHandle, system_prompt: str, follow_up: bool) -> None:
		message_id = handle.message_id or ""

		async def on_chunk(chunk: str) -> None:
			# Structured JSON answers are only useful once complete.
			if follow_up or session.active_generation is not handle:
				return
			await send_frame(session.websocket, StreamMessage(payload=StreamPayload(chunk=chunk, message_id=message_id)))

		async def on_complete(result: CompletionResult) -> None:
			await self._complete(session, handle, result, follow_up)

		async def on_error(exc: Exception) -> None:
			await self._fail(session, handle, exc)

		try:
			await self.generator.stream_completion(
				system_prompt=system_prompt,
				messages=list(session.messages),
				handle=handle,
				on_chunk=on_chunk,
				on_complete=on_complete,
				on_error=on_error,
			)
		except asyncio.CancelledError:
			await self._fail(session, handle, GenerationAborted())
			raise
		except Exception as exc:
			logger.exception("Text generator raised outside its error callback")
			await self._fail(session, handle, exc)

	async def _complete(self, session: Session, handle: CancellationHandle, result: CompletionResult, follow_up: bool) -> None:
		if handle.cancelled:
			await self._fail(session, handle, GenerationAborted())
			return
		if session.active_generation is not handle:
			logger.debug("Ignoring stale completion for session %s", session.session_id)
			return
		self.store.set_active_generation(session.session_id, None)

		content = result.content
		questions = []
		if follow_up:
			parsed = parse_response_with_questions(result.content, question_count(session, self.settings))
			content, questions = parsed.content, parsed.questions

		message_id = handle.message_id or ""
		self.store.add_message(session.session_id, "assistant", content, message_id)
		total = result.total_tokens or result.prompt_tokens + result.completion_tokens
		self.store.add_token_usage(session.session_id, result.prompt_tokens, result.completion_tokens, total)

		complete = CompleteMessage(
			payload=CompletePayload(
				message_id=message_id,
				content=content,
				token_usage=TokenUsagePayload(
					prompt=result.prompt_tokens,
					completion=result.completion_tokens,
					total=total,
				),
				metadata={"model": result.model, "finishReason": result.finish_reason},
				follow_up_questions=questions or None,
			)
		)
		await send_frame(session.websocket, complete)
		await send_frame(session.websocket, status_message("idle"))
		logger.info(
			"Chat response completed for session %s (message=%s, tokens=%d)",
			session.session_id,
			message_id,
			total,
		)

	async def _fail(self, session: Session, handle: CancellationHandle, exc: Exception) -> None:
		current: Optional[CancellationHandle] = session.active_generation
		if current is not None and current is not handle:
			logger.debug("Ignoring stale error for session %s: %s", session.session_id, exc)
			return
		if current is handle:
			self.store.set_active_generation(session.session_id, None)

		aborted = isinstance(exc, GenerationAborted) or handle.cancelled
		if aborted:
			error = error_message("STREAM_ABORTED", str(exc) or "Request aborted", handle.message_id, retryable=False)
		else:
			logger.error("Chat stream error for session %s: %s", session.session_id, exc)
			error = error_message("SERVER_ERROR", str(exc) or "Generation failed", handle.message_id, retryable=True)
		await send_frame(session.websocket, error)
		await send_frame(session.websocket, status_message("idle"))
