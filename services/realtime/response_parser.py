"""Helpers to extract structured data from model output."""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

_FENCED_BLOCK = re.compile(r"```(?:json)?\s*([\s\S]*?)```")


@dataclass
class ParsedResponse:
	"""Display text plus any follow-up questions split out of it."""

	content: str
	questions: List[str] = field(default_factory=list)


def _from_json(text: str, limit: int) -> Optional[ParsedResponse]:
	try:
		parsed = json.loads(text)
	except (TypeError, ValueError):
		return None
	if not isinstance(parsed, dict):
		return None
	response = parsed.get("response")
	questions = parsed.get("questions")
	if not isinstance(response, str) or not isinstance(questions, list):
		return None
	cleaned = [q for q in questions if isinstance(q, str) and q.strip()]
	return ParsedResponse(content=response, questions=cleaned[: max(limit, 0)])


def parse_response_with_questions(raw: str, limit: int = 3) -> ParsedResponse:
	"""Split a `{"response": ..., "questions": [...]}` answer into text and suggestions.

	Tries the whole text as JSON, then the first fenced code block. Anything
	else falls back to the raw text with no suggestions; this never raises.
	"""
	raw = raw or ""
	parsed = _from_json(raw, limit)
	if parsed is not None:
		logger.debug("Parsed structured response with %d questions", len(parsed.questions))
		return parsed

	match = _FENCED_BLOCK.search(raw)
	if match:
		parsed = _from_json(match.group(1).strip(), limit)
		if parsed is not None:
			logger.debug("Extracted structured response from code block")
			return parsed

	logger.debug("Response is not structured JSON, returning as plain content")
	return ParsedResponse(content=raw)


def extract_usage(response: Any) -> Dict[str, int]:
	"""Return prompt/completion/total token counts from a Responses API object."""
	usage = getattr(response, "usage", None)
	prompt = int(getattr(usage, "input_tokens", 0) or 0) if usage else 0
	completion = int(getattr(usage, "output_tokens", 0) or 0) if usage else 0
	total = int(getattr(usage, "total_tokens", 0) or 0) if usage else 0
	return {"prompt": prompt, "completion": completion, "total": total or prompt + completion}
