"""Streaming client for the Ollama chat API."""

from __future__ import annotations

import json
import logging
import uuid
from typing import Any, AsyncIterator, Mapping, Sequence

import httpx
from fastapi import status

from ..errors import ProviderStreamError
from .http import PooledHttpClient
from .openai_compatible import to_openai_messages
from .types import (
    FinishEvent,
    GenerationParams,
    ProviderEvent,
    TextDelta,
    ToolCallEvent,
    ToolDefinition,
)

logger = logging.getLogger(__name__)

DEFAULT_OLLAMA_URL = "http://localhost:11434"


def normalize_ollama_base_url(raw: str | None) -> str:
    """Return the base URL with a single trailing ``/api`` segment."""

    trimmed = (raw or DEFAULT_OLLAMA_URL).strip().rstrip("/")
    if trimmed.endswith("/api"):
        return trimmed
    return f"{trimmed}/api"


def build_options(params: GenerationParams) -> dict[str, Any]:
    """Map generation parameters onto Ollama's ``options`` block."""

    options = {
        "temperature": params.temperature,
        "top_p": params.top_p,
        "top_k": params.top_k,
        "seed": params.seed,
        "presence_penalty": params.presence_penalty,
        "frequency_penalty": params.frequency_penalty,
        "num_predict": params.max_output_tokens,
        "stop": list(params.stop_sequences) if params.stop_sequences else None,
    }
    return {key: value for key, value in options.items() if value is not None}


class OllamaClient(PooledHttpClient):
    """Client streaming NDJSON chat responses from an Ollama server."""

    def __init__(
        self,
        base_url: str | None,
        *,
        timeout: float = 120.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        super().__init__(
            normalize_ollama_base_url(base_url),
            timeout=timeout,
            http_client=http_client,
        )

    def build_payload(
        self,
        model_id: str,
        *,
        messages: Sequence[Mapping[str, Any]],
        params: GenerationParams,
        tools: Mapping[str, ToolDefinition] | None = None,
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "model": model_id,
            "messages": to_openai_messages(messages, params.system),
            "stream": True,
        }
        options = build_options(params)
        if options:
            payload["options"] = options
        if tools:
            payload["tools"] = [tool.to_function_tool() for tool in tools.values()]
        return payload

    async def stream_chat(
        self,
        model_id: str,
        *,
        messages: Sequence[Mapping[str, Any]],
        params: GenerationParams,
        tools: Mapping[str, ToolDefinition] | None = None,
    ) -> AsyncIterator[ProviderEvent]:
        payload = self.build_payload(
            model_id, messages=messages, params=params, tools=tools
        )
        client = await self._get_http_client()
        finished = False
        try:
            async with client.stream(
                "POST", f"{self._base_url}/chat", json=payload
            ) as response:
                if response.status_code >= 400:
                    body = await response.aread()
                    detail = self._extract_error_detail(body, "ollama")
                    logger.warning(
                        "Ollama returned HTTP %s: %s", response.status_code, detail
                    )
                    raise ProviderStreamError(detail, status_code=response.status_code)

                async for line in response.aiter_lines():
                    if not line.strip():
                        continue
                    try:
                        chunk = json.loads(line)
                    except json.JSONDecodeError:
                        logger.debug("Skipping malformed Ollama line: %r", line)
                        continue
                    if chunk.get("error"):
                        raise ProviderStreamError(
                            chunk["error"], status_code=status.HTTP_502_BAD_GATEWAY
                        )

                    message = chunk.get("message") or {}
                    content = message.get("content")
                    if isinstance(content, str) and content:
                        yield TextDelta(content)
                    for call in message.get("tool_calls") or []:
                        function = call.get("function") or {}
                        arguments = function.get("arguments")
                        yield ToolCallEvent(
                            tool_call_id=call.get("id") or f"call_{uuid.uuid4().hex[:12]}",
                            tool_name=function.get("name", ""),
                            arguments=arguments if isinstance(arguments, dict) else {},
                        )

                    if chunk.get("done"):
                        finished = True
                        yield self._finish_event(chunk)
                        break
        except httpx.HTTPError as exc:
            logger.warning("Transport failure talking to Ollama: %s", exc)
            raise ProviderStreamError(
                str(exc), status_code=status.HTTP_502_BAD_GATEWAY
            ) from exc

        if not finished:
            logger.warning("Ollama stream for %s ended without a done chunk", model_id)
            raise ProviderStreamError(
                "Provider stream ended before completion",
                status_code=status.HTTP_502_BAD_GATEWAY,
            )

    @staticmethod
    def _finish_event(chunk: Mapping[str, Any]) -> FinishEvent:
        prompt = chunk.get("prompt_eval_count")
        completion = chunk.get("eval_count")
        total: int | None = None
        if isinstance(prompt, int) or isinstance(completion, int):
            total = (prompt if isinstance(prompt, int) else 0) + (
                completion if isinstance(completion, int) else 0
            )
        return FinishEvent(
            finish_reason=chunk.get("done_reason") or "stop",
            total_tokens=total,
            usage={"prompt_tokens": prompt, "completion_tokens": completion},
        )


__all__ = ["DEFAULT_OLLAMA_URL", "OllamaClient", "build_options", "normalize_ollama_base_url"]
