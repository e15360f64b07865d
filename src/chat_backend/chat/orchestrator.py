"""Chat orchestrator wiring session, model, context and streaming stages."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import replace
from pathlib import Path
from typing import TYPE_CHECKING, AsyncGenerator

import httpx

from ..config import PROJECT_ROOT
from ..logging_settings import parse_logging_settings
from ..providers.http import PooledHttpClient
from ..providers.router import ProviderRouter
from ..providers.types import GenerationParams
from ..repository import ChatRepository
from ..services.access_control import ModelAccessService
from ..services.conversation_logging import ConversationLogWriter
from ..services.tool_config import ToolConfigService
from .context import prepare_context
from .model_resolution import ModelResolver
from .parameters import (
    finalize_system_param,
    merge_generation_params,
    normalize_model_params,
)
from .persistence import PersistenceWriter, PersistStrategy
from .session import SessionPreparer
from .streaming import PreparedTurn, SseEvent, StreamingHandler
from .tools import ToolAssembler

if TYPE_CHECKING:
    from ..config import Settings
    from ..schemas.chat import ChatTurnRequest

logger = logging.getLogger(__name__)


def _resolve_path(path: Path) -> Path:
    return path if path.is_absolute() else PROJECT_ROOT / path


class ChatOrchestrator:
    """High-level coordination for chat turns."""

    def __init__(
        self,
        settings: Settings,
        *,
        repository: ChatRepository | None = None,
        http_client: httpx.AsyncClient | None = None,
        conversation_logger: ConversationLogWriter | None = None,
    ) -> None:
        self._settings = settings
        self._repo = repository or ChatRepository(
            _resolve_path(settings.chat_database_path)
        )

        if conversation_logger is None:
            logging_settings = parse_logging_settings(
                PROJECT_ROOT / "logging_settings.conf"
            )
            conversation_logger = ConversationLogWriter(
                _resolve_path(settings.conversation_log_dir),
                min_level=logging_settings.conversations_level,
            )

        router = ProviderRouter(
            self._repo,
            timeout=settings.request_timeout,
            openrouter_app_url=str(settings.openrouter_app_url)
            if settings.openrouter_app_url
            else None,
            openrouter_app_name=settings.openrouter_app_name,
            http_client=http_client,
        )
        self._sessions = SessionPreparer(self._repo)
        self._resolver = ModelResolver(
            self._repo,
            ModelAccessService(self._repo),
            router,
            default_model=settings.default_model,
        )
        self._tools = ToolAssembler(
            ToolConfigService(
                self._repo,
                web_search_prompt=settings.web_search_system_prompt,
                googlepse_prompt=settings.googlepse_system_prompt,
                image_prompt=settings.image_system_prompt,
            )
        )
        self._streaming = StreamingHandler(
            PersistenceWriter(self._repo),
            conversation_logger=conversation_logger,
        )
        self._init_lock = asyncio.Lock()
        self._ready = asyncio.Event()

    async def initialize(self) -> None:
        """Open the store and seed provider connections once."""

        async with self._init_lock:
            if self._ready.is_set():
                return
            await self._repo.initialize()
            await self._bootstrap_connections()
            self._ready.set()
            connections = await self._repo.load_connections()
            logger.info(
                "Chat orchestrator ready: %d provider connection(s)",
                len(connections.connections),
            )

    async def _bootstrap_connections(self) -> None:
        """Insert env-configured connections for providers that have none yet."""

        settings = self._settings
        existing = await self._repo.load_connections()
        candidates: list[tuple[str, str | None, str | None]] = []
        if settings.openai_api_key is not None:
            candidates.append(
                (
                    "openai",
                    str(settings.openai_base_url),
                    settings.openai_api_key.get_secret_value(),
                )
            )
        if settings.openrouter_api_key is not None:
            candidates.append(
                (
                    "openrouter",
                    str(settings.openrouter_base_url),
                    settings.openrouter_api_key.get_secret_value(),
                )
            )
        if settings.ollama_base_url is not None:
            candidates.append(("ollama", str(settings.ollama_base_url), None))

        for provider, base_url, api_key in candidates:
            if existing.get(provider) is None:
                await self._repo.upsert_connection(provider, base_url, api_key)
                logger.info("Registered %s connection from environment", provider)

    async def shutdown(self) -> None:
        """Clean up held resources."""

        try:
            await asyncio.wait_for(PooledHttpClient.aclose_shared(), timeout=2.0)
        except asyncio.TimeoutError:
            logger.warning("Timed out closing provider HTTP clients")

        try:
            await asyncio.wait_for(self._repo.close(), timeout=2.0)
        except asyncio.TimeoutError:
            logger.warning("Timed out closing repository")

        self._ready.clear()

    async def wait_until_ready(self) -> None:
        await self._ready.wait()

    @property
    def repository(self) -> ChatRepository:
        return self._repo

    async def prepare_turn(
        self, user_id: str, request: ChatTurnRequest
    ) -> PreparedTurn:
        """Run every pre-stream stage; failures here surface before any bytes are sent."""

        session = await self._sessions.prepare(
            user_id,
            chat_id=request.chat_id,
            message=request.message_record(),
            messages=request.message_records(),
        )
        connections = await self._repo.load_connections()
        resolution = await self._resolver.resolve(
            user_id, request.model_id, session.history, connections
        )

        record = resolution.record
        stored = (
            normalize_model_params(record.params, record.meta)
            if record is not None
            else GenerationParams()
        )
        merged = merge_generation_params(request.generation_overrides(), stored)
        if merged.system is None and self._settings.default_system_prompt:
            merged = replace(merged, system=self._settings.default_system_prompt)

        tool_set = await self._tools.assemble(
            enable_web_search=request.enable_web_search,
            enable_image=request.enable_image,
        )
        params = finalize_system_param(merged, session.history, tool_set.guidance)

        budget = self._settings.char_budget(resolution.context_window_tokens)
        context = prepare_context(
            session.history,
            budget,
            max_chars_per_message=self._settings.max_chars_per_message,
            min_tail_messages=self._settings.min_tail_messages,
        )
        strategy = (
            PersistStrategy.REPLACE_LAST
            if context == session.history
            else PersistStrategy.APPEND_FROM_TRIMMED
        )

        logger.info(
            "Prepared turn chat=%s model=%s provider=%s strategy=%s messages=%d/%d",
            session.chat_id,
            resolution.model_name,
            resolution.provider.provider_name,
            strategy.value,
            len(context),
            len(session.history),
        )
        return PreparedTurn(
            user_id=user_id,
            chat_id=session.chat_id,
            canonical_history=session.history,
            context=context,
            params=params,
            tools=tool_set.tools,
            resolution=resolution,
            strategy=strategy,
            chat_created=session.created,
        )

    def stream_turn(self, turn: PreparedTurn) -> AsyncGenerator[SseEvent, None]:
        return self._streaming.stream_turn(turn)


__all__ = ["ChatOrchestrator"]
