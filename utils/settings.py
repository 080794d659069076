"""Environment-driven configuration for the chat relay."""

import os
from dataclasses import dataclass

from dotenv import load_dotenv


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return int(value)
    except ValueError as exc:
        raise RuntimeError(f"Invalid number for environment variable: {name}") from exc


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return float(value)
    except ValueError as exc:
        raise RuntimeError(f"Invalid float for environment variable: {name}") from exc


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class ChatSettings:
    """Runtime knobs for sessions, generation, and the websocket endpoint."""

    openai_model: str = "gpt-5-mini"
    max_output_tokens: int = 4096
    session_timeout_seconds: float = 3600.0
    sweep_interval_seconds: float = 60.0
    follow_up_questions_enabled: bool = True
    follow_up_questions_count: int = 3
    max_message_length: int = 10_000
    max_context_chars: int = 500_000
    ws_path: str = "/ws"
    cors_origin: str = "*"
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "ChatSettings":
        """
        Build settings from the process environment.

        A `.env` file in the working directory is loaded first if present.
        Raises RuntimeError when a numeric variable cannot be parsed.
        """
        load_dotenv()
        return cls(
            openai_model=os.getenv("OPENAI_MODEL", cls.openai_model),
            max_output_tokens=_env_int("MAX_OUTPUT_TOKENS", cls.max_output_tokens),
            session_timeout_seconds=_env_float("SESSION_TIMEOUT_SECONDS", cls.session_timeout_seconds),
            sweep_interval_seconds=_env_float("SESSION_SWEEP_INTERVAL_SECONDS", cls.sweep_interval_seconds),
            follow_up_questions_enabled=_env_bool("FOLLOW_UP_QUESTIONS_ENABLED", cls.follow_up_questions_enabled),
            follow_up_questions_count=_env_int("FOLLOW_UP_QUESTIONS_COUNT", cls.follow_up_questions_count),
            max_message_length=_env_int("MAX_MESSAGE_LENGTH", cls.max_message_length),
            max_context_chars=_env_int("MAX_CONTEXT_CHARS", cls.max_context_chars),
            ws_path=os.getenv("WS_PATH", cls.ws_path),
            cors_origin=os.getenv("CORS_ORIGIN", cls.cors_origin),
            log_level=os.getenv("LOG_LEVEL", cls.log_level),
        )
