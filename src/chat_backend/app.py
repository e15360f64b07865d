"""Application factory for the FastAPI service."""

from __future__ import annotations

import asyncio
import logging
import os
from contextlib import asynccontextmanager
from pathlib import Path

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from . import __version__
from .chat import ChatOrchestrator
from .config import PROJECT_ROOT, get_settings
from .logging_handlers import DateStampedFileHandler, cleanup_old_logs
from .logging_settings import parse_logging_settings
from .routers.chat import router as chat_router

_LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def _configure_logging() -> None:
    """Configure logging from LOG_LEVEL, LOG_DIR and logging_settings.conf."""
    # Load .env first so LOG_LEVEL and LOG_DIR are visible
    load_dotenv()

    log_level_str = os.getenv("LOG_LEVEL", "INFO").upper()
    log_level = getattr(logging, log_level_str, logging.INFO)
    file_settings = parse_logging_settings(PROJECT_ROOT / "logging_settings.conf")
    formatter = logging.Formatter(_LOG_FORMAT, datefmt=_DATE_FORMAT)

    handlers: list[logging.Handler] = []
    log_dir = os.getenv("LOG_DIR")
    if log_dir:
        file_handler = DateStampedFileHandler(log_dir, prefix="app")
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)

    if file_settings.terminal_level is not None:
        console_handler = logging.StreamHandler()
        console_handler.setLevel(file_settings.terminal_level)
        console_handler.setFormatter(formatter)
        handlers.append(console_handler)
    if not handlers:
        handlers.append(logging.NullHandler())

    logging.basicConfig(level=log_level, handlers=handlers, force=True)

    logging.getLogger("chat_backend").setLevel(log_level)
    logging.getLogger("uvicorn").setLevel(log_level)

    # httpx logs full request lines at INFO; keep them for DEBUG runs only
    if log_level > logging.DEBUG:
        logging.getLogger("httpx").setLevel(logging.WARNING)
        logging.getLogger("httpcore").setLevel(logging.WARNING)

    log_dirs: list[str | Path] = []
    if log_dir:
        log_dirs.append(log_dir)
    conversation_dir = get_settings().conversation_log_dir
    if not conversation_dir.is_absolute():
        conversation_dir = PROJECT_ROOT / conversation_dir
    log_dirs.append(conversation_dir)
    cleanup_old_logs(
        log_dirs,
        file_settings.retention_hours,
        logger=logging.getLogger(__name__),
    )


def create_app(orchestrator: ChatOrchestrator | None = None) -> FastAPI:
    # Configure logging first thing
    _configure_logging()

    settings = get_settings()
    orchestrator = orchestrator or ChatOrchestrator(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await orchestrator.initialize()
        try:
            yield
        finally:
            try:
                await asyncio.wait_for(orchestrator.shutdown(), timeout=10.0)
            except asyncio.TimeoutError:
                logging.warning("Orchestrator shutdown timed out after 10s")

    app = FastAPI(
        title="Chat Generation Backend",
        version=__version__,
        description="Multi-provider streaming chat generation pipeline.",
        lifespan=lifespan,
    )
    app.state.chat_orchestrator = orchestrator

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Chat-Id"],
    )

    app.include_router(chat_router)

    @app.get("/health", tags=["health"])
    async def healthcheck() -> dict[str, str]:
        return {"status": "ok", "default_model": settings.default_model}

    return app


__all__ = ["create_app"]
