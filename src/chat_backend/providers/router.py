"""Route a model reference to the provider that serves it."""

from __future__ import annotations

import logging
from functools import partial
from typing import TYPE_CHECKING

import httpx

from ..errors import ProviderUnavailable
from ..protocols import ModelRegistry
from .ollama import OllamaClient, normalize_ollama_base_url
from .openai_compatible import OpenAICompatibleClient
from .types import (
    SUPPORTED_PROVIDERS,
    ProviderConnections,
    ProviderResolution,
)

if TYPE_CHECKING:
    from ..repository import ModelRecord

logger = logging.getLogger(__name__)

_DEFAULT_BASE_URLS = {
    "openai": "https://api.openai.com/v1",
    "openrouter": "https://openrouter.ai/api/v1",
}


def normalize_provider_name(raw: str | None) -> str | None:
    """Map a stored provider label onto a supported provider."""

    name = (raw or "").lower()
    if not name:
        return None
    if "openrouter" in name:
        return "openrouter"
    if "ollama" in name:
        return "ollama"
    if "compatible" in name:
        return "openai-compatible"
    if "openai" in name:
        return "openai"
    return None


def infer_provider_from_hint(hint: str | None) -> str | None:
    """Guess the provider from a model id, name or URL fragment."""

    text = (hint or "").lower()
    if not text:
        return None
    if "ollama" in text or "11434" in text or "localhost" in text:
        return "ollama"
    if "openrouter" in text:
        return "openrouter"
    if "openai" in text or "/v1" in text:
        return "openai"
    return None


def split_provider_tag(model_ref: str) -> tuple[str | None, str]:
    """Split ``"<provider>:<model>"`` references; other strings are returned bare."""

    prefix, sep, rest = model_ref.partition(":")
    if sep and rest and prefix.lower() in SUPPORTED_PROVIDERS:
        return prefix.lower(), rest
    return None, model_ref


class ProviderRouter:
    """Resolve a model reference against the registry and connection snapshot."""

    def __init__(
        self,
        models: ModelRegistry,
        *,
        timeout: float = 120.0,
        openrouter_app_url: str | None = None,
        openrouter_app_name: str | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._models = models
        self._timeout = timeout
        self._app_url = openrouter_app_url
        self._app_name = openrouter_app_name
        self._http_client = http_client

    async def _find_record(self, model_ref: str) -> ModelRecord | None:
        record = await self._models.find_model_by_provider_id(model_ref)
        if record is not None:
            return record
        return await self._models.find_model_by_ref(model_ref)

    async def resolve(
        self, model_ref: str, connections: ProviderConnections
    ) -> ProviderResolution:
        """Return a provider resolution or raise ``ProviderUnavailable``."""

        model_ref = model_ref.strip()
        if not model_ref:
            raise ProviderUnavailable("No model reference supplied")

        tagged_provider, bare_ref = split_provider_tag(model_ref)
        record = await self._find_record(bare_ref)

        if tagged_provider is not None:
            provider = tagged_provider
        else:
            provider = (
                normalize_provider_name(record.provider if record else None)
                or infer_provider_from_hint(
                    (record.provider_id or record.name) if record else bare_ref
                )
                or "openai"
            )

        provider_model_id = bare_ref
        if record is not None:
            meta_id = record.meta.get("provider_model_id")
            provider_model_id = (
                (meta_id if isinstance(meta_id, str) and meta_id else None)
                or record.provider_id
                or record.name
                or bare_ref
            )

        connection = connections.get(provider)
        if connection is None:
            raise ProviderUnavailable(
                f"No connection configured for provider '{provider}'."
            )
        if provider != "ollama" and not connection.has_api_key:
            raise ProviderUnavailable(
                f"Missing API key for provider '{provider}'."
            )

        if provider == "ollama":
            base_url = normalize_ollama_base_url(connection.base_url)
            factory = partial(
                OllamaClient,
                base_url,
                timeout=self._timeout,
                http_client=self._http_client,
            )
        else:
            base_url = connection.base_url or _DEFAULT_BASE_URLS.get(provider)
            if not base_url:
                raise ProviderUnavailable(
                    f"Missing base URL for provider '{provider}'."
                )
            factory = partial(
                OpenAICompatibleClient,
                base_url,
                connection.api_key,
                provider=provider,
                timeout=self._timeout,
                app_url=self._app_url,
                app_name=self._app_name,
                http_client=self._http_client,
            )

        logger.debug(
            "Routed model %r to %s (%s) as %r [connections v%d]",
            model_ref,
            provider,
            base_url,
            provider_model_id,
            connections.version,
        )
        return ProviderResolution(
            provider_name=provider,
            provider_model_id=provider_model_id,
            base_url=base_url,
            client_factory=factory,
        )


__all__ = [
    "ProviderRouter",
    "infer_provider_from_hint",
    "normalize_provider_name",
    "split_provider_tag",
]
