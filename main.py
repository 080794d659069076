import asyncio
import contextlib
import logging
import os
import sys
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from openai import AsyncOpenAI

from routes.realtime_ws import create_router
from routes.session_route import router as session_router
from services.realtime.session_store import SessionStore
from services.realtime.text_generator import OpenAITextGenerator, TextGenerator
from services.realtime.ws_chat import ChatStreamHandler
from services.realtime.ws_session import ChatMessageRouter
from utils.session_cleaner import SessionCleaner
from utils.settings import ChatSettings

logger = logging.getLogger(__name__)


def _build_openai_generator(settings: ChatSettings) -> OpenAITextGenerator:
    openai_api_key = os.getenv("OPENAI_API_KEY")
    if not openai_api_key:
        raise RuntimeError("OPENAI_API_KEY environment variable is not set")

    try:
        openai_client = AsyncOpenAI()
    except Exception as exc:
        raise RuntimeError("Failed to initialize OpenAI Async client") from exc

    return OpenAITextGenerator(
        openai_client,
        model=settings.openai_model,
        max_output_tokens=settings.max_output_tokens,
    )


def create_app(settings: Optional[ChatSettings] = None, generator: Optional[TextGenerator] = None) -> FastAPI:
    """
    Create and configure the FastAPI application instance.

    `generator` replaces the OpenAI-backed text generator (tests inject a fake).
    """
    settings = settings or ChatSettings.from_env()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """
        Lifespan manager to initialize:
          - the in-memory session store and its idle sweep task
          - the text generator (OpenAI async client unless injected)
          - the message router
        and attach them to `app.state`.
        """
        text_generator = generator or _build_openai_generator(settings)
        store = SessionStore()
        chat_handler = ChatStreamHandler(store, text_generator, settings)

        app.state.settings = settings
        app.state.session_store = store
        app.state.chat_handler = chat_handler
        app.state.chat_router = ChatMessageRouter(store, chat_handler, settings)

        cleaner = SessionCleaner(store, settings.session_timeout_seconds)
        sweep_task = asyncio.create_task(cleaner.run_periodic_cleanup(settings.sweep_interval_seconds))
        logger.info("Chat server started (ws_path=%s, model=%s)", settings.ws_path, settings.openai_model)

        try:
            yield
        finally:
            sweep_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await sweep_task
            await chat_handler.shutdown()
            await store.shutdown()

            # Gracefully close the OpenAI client if we created one.
            client = getattr(text_generator, "client", None)
            close = getattr(client, "close", None)
            if generator is None and close is not None:
                try:
                    await close()
                except Exception:
                    logger.debug("Ignoring OpenAI client shutdown error", exc_info=True)
            logger.info("Chat server stopped")

    app = FastAPI(title="Streaming Chat Relay", version="1.0.0", lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[origin.strip() for origin in settings.cors_origin.split(",") if origin.strip()],
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type"],
    )

    @app.get("/health")
    async def health(request: Request):
        """
        Report liveness and session counts.
        """
        store: SessionStore = request.app.state.session_store
        return {
            "status": "ok",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "sessions": store.stats(),
        }

    # Register application routers
    app.include_router(session_router)
    app.include_router(create_router(settings.ws_path))

    return app


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )


def main() -> None:
    """Run the chat server with uvicorn."""
    import uvicorn

    settings = ChatSettings.from_env()
    configure_logging(settings.log_level)
    uvicorn.run(
        create_app(settings),
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "3001")),
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
