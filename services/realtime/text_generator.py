"""Streaming text generation built on OpenAI streaming Responses."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Protocol

from openai import AsyncOpenAI

from models.session_models import ConversationTurn
from services.realtime.cancellation import CancellationHandle, GenerationAborted
from services.realtime.response_parser import extract_usage

logger = logging.getLogger(__name__)


@dataclass
class CompletionResult:
	"""Final text and accounting for one finished generation."""

	content: str
	prompt_tokens: int = 0
	completion_tokens: int = 0
	total_tokens: int = 0
	model: str = ""
	finish_reason: str = "completed"


ChunkCallback = Callable[[str], Awaitable[None]]
CompleteCallback = Callable[[CompletionResult], Awaitable[None]]
ErrorCallback = Callable[[Exception], Awaitable[None]]


class TextGenerator(Protocol):
	"""Black-box streaming generator.

	Implementations report exactly one of `on_complete` or `on_error`, and
	report `GenerationAborted` through `on_error` once `handle` is cancelled.
	"""

	async def stream_completion(
		self,
		*,
		system_prompt: str,
		messages: List[ConversationTurn],
		handle: CancellationHandle,
		on_chunk: ChunkCallback,
		on_complete: CompleteCallback,
		on_error: ErrorCallback,
	) -> None: ...


def _conversation_input(messages: Iterable[ConversationTurn]) -> List[Dict[str, str]]:
	# System turns are carried by `instructions`, not the input list.
	return [{"role": turn.role, "content": turn.content} for turn in messages if turn.role != "system"]


class OpenAITextGenerator:
	"""Stream a chat answer from the Responses API, checking cancellation per event."""

	def __init__(self, client: AsyncOpenAI, *, model: str = "gpt-5-mini", max_output_tokens: int = 4096) -> None:
		if client is None:
			raise ValueError("AsyncOpenAI client is required.")
		self.client = client
		self.model = model
		self.max_output_tokens = max_output_tokens

	async def stream_completion(
		self,
		*,
		system_prompt: str,
		messages: List[ConversationTurn],
		handle: CancellationHandle,
		on_chunk: ChunkCallback,
		on_complete: CompleteCallback,
		on_error: ErrorCallback,
	) -> None:
		chunks: List[str] = []
		usage: Dict[str, int] = {"prompt": 0, "completion": 0, "total": 0}
		finish_reason = "completed"
		try:
			handle.raise_if_cancelled()
			stream = await self.client.responses.create(
				model=self.model,
				instructions=system_prompt or None,
				input=_conversation_input(messages),
				max_output_tokens=self.max_output_tokens,
				stream=True,
			)
			async with stream:
				async for event in stream:
					handle.raise_if_cancelled()
					finish_reason = self._consume_event(event, chunks, usage) or finish_reason
					if getattr(event, "type", None) == "response.output_text.delta":
						delta = getattr(event, "delta", "") or ""
						if delta:
							await on_chunk(delta)
		except GenerationAborted as exc:
			await on_error(exc)
			return
		except Exception as exc:
			logger.error("OpenAI streaming error: %s", exc)
			await on_error(exc)
			return

		await on_complete(
			CompletionResult(
				content="".join(chunks),
				prompt_tokens=usage["prompt"],
				completion_tokens=usage["completion"],
				total_tokens=usage["total"],
				model=self.model,
				finish_reason=finish_reason,
			)
		)
		logger.debug(
			"Completion finished (model=%s, prompt=%d, completion=%d, finish=%s)",
			self.model,
			usage["prompt"],
			usage["completion"],
			finish_reason,
		)

	@staticmethod
	def _consume_event(event: Any, chunks: List[str], usage: Dict[str, int]) -> Optional[str]:
		"""Fold one stream event into the running text/usage; returns a finish reason if it carries one."""
		event_type = getattr(event, "type", None)
		if event_type == "response.output_text.delta":
			delta = getattr(event, "delta", "") or ""
			if delta:
				chunks.append(delta)
			return None
		if event_type in ("response.completed", "response.incomplete"):
			response = getattr(event, "response", None)
			usage.update(extract_usage(response))
			details = getattr(response, "incomplete_details", None)
			return getattr(details, "reason", None) or getattr(response, "status", None)
		if event_type in ("response.failed", "error"):
			response = getattr(event, "response", None)
			error = getattr(response, "error", None) or event
			raise RuntimeError(f"Generation failed: {getattr(error, 'message', error)}")
		return None
