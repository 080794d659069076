"""Prompt text used to assemble the model-facing system prompt."""

from __future__ import annotations

DEFAULT_SYSTEM_INSTRUCTIONS = (
	"You are a knowledgeable, careful assistant. "
	"Answer only from the attached reference material and any additional data provided. "
	"If the answer is not in the supplied information, say so clearly."
)

DOCUMENTS_HEADER = "\n\n--- Reference Documents ---\n"
ADDITIONAL_DATA_HEADER = "\n\n--- Additional Data ---\n"
FILE_HEADER = "\n\n--- Reference File ---\n"
METADATA_HEADER = "\n\n--- Session Metadata ---\n"

FOLLOW_UP_INSTRUCTION = """
After your answer, write {count} follow-up questions the user may want to ask next.
Reply with JSON only, in this exact shape:
{{
  "response": "your answer here",
  "questions": ["question 1?", "question 2?", "question 3?"]
}}
Important: return valid JSON only, without code fences or any other text."""


def document_block(index: int, content: str, title: str | None = None) -> str:
	"""Return one numbered reference document entry."""
	if title:
		return f"\n[Document {index}: {title}]\n{content}\n"
	return f"\n[Document {index}]\n{content}\n"


def file_block(content: str, filename: str | None = None) -> str:
	heading = f"[File: {filename}]\n" if filename else ""
	return f"{FILE_HEADER}{heading}{content}"


def build_follow_up_instruction(count: int) -> str:
	"""Return the structured-JSON instruction requesting `count` follow-up questions."""
	return FOLLOW_UP_INSTRUCTION.format(count=count)
