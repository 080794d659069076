"""Build the model-facing system prompt from session state.

The output is a pure function of the session (and settings): the same
session always yields the same string.
"""

from __future__ import annotations

import json
import logging
import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from models.session_models import Session
from services.realtime.prompts import (
	ADDITIONAL_DATA_HEADER,
	DEFAULT_SYSTEM_INSTRUCTIONS,
	DOCUMENTS_HEADER,
	METADATA_HEADER,
	build_follow_up_instruction,
	document_block,
	file_block,
)
from utils.settings import ChatSettings

logger = logging.getLogger(__name__)

# Metadata keys that steer follow-up generation rather than describe the client.
FOLLOW_UP_DISABLE_KEY = "disableFollowUpQuestions"
FOLLOW_UP_COUNT_KEY = "followUpQuestionsCount"
MIN_FOLLOW_UP_QUESTIONS = 1
MAX_FOLLOW_UP_QUESTIONS = 5


@dataclass
class ContextDocument:
	content: str
	title: Optional[str] = None


@dataclass
class ProcessedContext:
	"""A context object split into its prompt-relevant parts."""

	system_prompt: str = ""
	documents: List[ContextDocument] = field(default_factory=list)
	extra: Dict[str, Any] = field(default_factory=dict)


def _to_json(value: Any) -> str:
	return json.dumps(value, ensure_ascii=False, indent=2, default=str)


def _normalize_document(doc: Any) -> ContextDocument:
	"""Coerce one `documents` entry; objects without string content are serialized whole."""
	if isinstance(doc, str):
		return ContextDocument(content=doc)
	if isinstance(doc, dict):
		title = doc.get("title") if isinstance(doc.get("title"), str) else None
		content = doc.get("content")
		if not isinstance(content, str):
			content = json.dumps(doc, ensure_ascii=False, default=str)
		return ContextDocument(content=content, title=title)
	return ContextDocument(content=str(doc))


def process_context(data: Dict[str, Any]) -> ProcessedContext:
	"""Shape-sniff a free-form context object."""
	result = ProcessedContext()
	if isinstance(data.get("system"), str):
		result.system_prompt = data["system"]
	elif isinstance(data.get("systemPrompt"), str):
		result.system_prompt = data["systemPrompt"]

	documents = data.get("documents")
	if isinstance(documents, list):
		result.documents = [_normalize_document(doc) for doc in documents]

	result.extra = {key: value for key, value in data.items() if key not in ("system", "systemPrompt", "documents")}
	return result


def should_generate_questions(session: Session, settings: ChatSettings) -> bool:
	"""Session metadata can switch follow-ups off; otherwise the global flag decides."""
	if session.metadata.get(FOLLOW_UP_DISABLE_KEY) is True:
		return False
	return settings.follow_up_questions_enabled


def question_count(session: Session, settings: ChatSettings) -> int:
	"""Return the number of follow-up questions to request, clamped to [1, 5]."""
	override = session.metadata.get(FOLLOW_UP_COUNT_KEY)
	if isinstance(override, (int, float)) and not isinstance(override, bool) and math.isfinite(override):
		return max(MIN_FOLLOW_UP_QUESTIONS, min(MAX_FOLLOW_UP_QUESTIONS, int(override)))
	return settings.follow_up_questions_count


def _client_metadata(session: Session) -> Dict[str, Any]:
	return {
		key: value
		for key, value in session.metadata.items()
		if key not in (FOLLOW_UP_DISABLE_KEY, FOLLOW_UP_COUNT_KEY)
	}


def build_system_prompt(session: Session, settings: ChatSettings) -> str:
	"""Assemble instructions, context, file content, metadata and follow-up directions."""
	parts: List[str] = [session.system_instructions or DEFAULT_SYSTEM_INSTRUCTIONS]

	if session.context:
		processed = process_context(session.context)
		if processed.system_prompt and not session.system_instructions:
			parts[0] = processed.system_prompt
		if processed.documents:
			parts.append(DOCUMENTS_HEADER)
			for index, doc in enumerate(processed.documents, start=1):
				parts.append(document_block(index, doc.content, doc.title))
		if processed.extra:
			parts.append(ADDITIONAL_DATA_HEADER + _to_json(processed.extra))

	if session.file_content:
		parts.append(file_block(session.file_content, session.file_name))

	metadata = _client_metadata(session)
	if metadata:
		parts.append(METADATA_HEADER + _to_json(metadata))

	if should_generate_questions(session, settings):
		parts.append("\n\n" + build_follow_up_instruction(question_count(session, settings)))

	prompt = "".join(parts)
	logger.debug(
		"System prompt built for session %s (custom_instructions=%s, context=%s, length=%d)",
		session.session_id,
		bool(session.system_instructions),
		session.context is not None,
		len(prompt),
	)
	return prompt
