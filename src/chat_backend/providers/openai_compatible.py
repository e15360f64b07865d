"""Streaming client for OpenAI-compatible chat completion APIs."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, AsyncGenerator, AsyncIterator, Iterable, Mapping, Optional, Sequence

import httpx
from fastapi import status

from ..errors import ProviderStreamError
from .http import PooledHttpClient
from .types import (
    FinishEvent,
    GenerationParams,
    ProviderEvent,
    TextDelta,
    ToolCallEvent,
    ToolDefinition,
    message_text,
)

logger = logging.getLogger(__name__)


@dataclass
class ServerSentEvent:
    """Represents a parsed Server-Sent Event."""

    data: str
    event: str = "message"
    event_id: Optional[str] = None


@dataclass
class _PendingToolCall:
    tool_call_id: str = ""
    name: str = ""
    arguments: str = ""


def to_openai_messages(
    messages: Sequence[Mapping[str, Any]], system: str | None
) -> list[dict[str, Any]]:
    """Flatten UI messages into ``{role, content}`` chat messages."""

    converted: list[dict[str, Any]] = []
    if system:
        converted.append({"role": "system", "content": system})
    for message in messages:
        role = message.get("role")
        if role not in {"system", "user", "assistant"}:
            continue
        converted.append({"role": role, "content": message_text(message)})
    return converted


def to_openai_tool_choice(choice: Any) -> Any:
    """Translate a stored tool-choice policy to the OpenAI wire shape."""

    if isinstance(choice, str):
        return choice if choice in {"auto", "none", "required"} else None
    if isinstance(choice, Mapping):
        name = choice.get("toolName") or choice.get("name")
        if choice.get("type") == "tool" and isinstance(name, str):
            return {"type": "function", "function": {"name": name}}
    return None


class OpenAICompatibleClient(PooledHttpClient):
    """Client streaming ``/chat/completions`` from OpenAI, OpenRouter or compatible hosts."""

    def __init__(
        self,
        base_url: str,
        api_key: str | None,
        *,
        provider: str = "openai",
        timeout: float = 120.0,
        app_url: str | None = None,
        app_name: str | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        super().__init__(base_url, timeout=timeout, http_client=http_client)
        self._api_key = api_key
        self._provider = provider
        self._app_url = app_url
        self._app_name = app_name

    @property
    def provider(self) -> str:
        return self._provider

    @property
    def _headers(self) -> dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "Accept": "text/event-stream",
        }
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        if self._provider == "openrouter":
            if self._app_url:
                headers["HTTP-Referer"] = self._app_url
            if self._app_name:
                headers["X-Title"] = self._app_name
        return headers

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
            "stream_options": {"include_usage": True},
        }
        optional = {
            "temperature": params.temperature,
            "top_p": params.top_p,
            "seed": params.seed,
            "presence_penalty": params.presence_penalty,
            "frequency_penalty": params.frequency_penalty,
            "max_tokens": params.max_output_tokens,
            "stop": list(params.stop_sequences) if params.stop_sequences else None,
        }
        if self._provider == "openrouter":
            optional["top_k"] = params.top_k
        payload.update({key: value for key, value in optional.items() if value is not None})

        if tools:
            payload["tools"] = [tool.to_function_tool() for tool in tools.values()]
            tool_choice = to_openai_tool_choice(params.tool_choice)
            if tool_choice is not None:
                payload["tool_choice"] = tool_choice
        return payload

    async def stream_chat(
        self,
        model_id: str,
        *,
        messages: Sequence[Mapping[str, Any]],
        params: GenerationParams,
        tools: Mapping[str, ToolDefinition] | None = None,
    ) -> AsyncIterator[ProviderEvent]:
        """Yield normalized provider events for one completion."""

        payload = self.build_payload(
            model_id, messages=messages, params=params, tools=tools
        )
        pending: dict[int, _PendingToolCall] = {}
        finish_reason: str | None = None
        usage: dict[str, Any] | None = None
        completed = False

        async for event in self.stream_chat_raw(payload):
            if event.data == "[DONE]":
                completed = True
                break
            try:
                chunk = json.loads(event.data)
            except json.JSONDecodeError:
                logger.debug("Skipping non-JSON chunk from %s", self._provider)
                continue
            if not isinstance(chunk, dict):
                continue
            if chunk.get("error"):
                raise ProviderStreamError(
                    chunk["error"], status_code=status.HTTP_502_BAD_GATEWAY
                )
            if isinstance(chunk.get("usage"), dict):
                usage = chunk["usage"]

            for choice in chunk.get("choices") or []:
                if not isinstance(choice, dict):
                    continue
                delta = choice.get("delta") or {}
                content = delta.get("content")
                if isinstance(content, str) and content:
                    yield TextDelta(content)
                for fragment in delta.get("tool_calls") or []:
                    self._accumulate_tool_call(pending, fragment)
                if choice.get("finish_reason"):
                    finish_reason = choice["finish_reason"]
                    completed = True

        if not completed:
            logger.warning(
                "%s stream for %s ended before completion", self._provider, model_id
            )
            raise ProviderStreamError(
                "Provider stream ended before completion",
                status_code=status.HTTP_502_BAD_GATEWAY,
            )

        for index in sorted(pending):
            call = pending[index]
            yield ToolCallEvent(
                tool_call_id=call.tool_call_id or f"call_{index}",
                tool_name=call.name,
                arguments=self._decode_arguments(call.arguments),
            )

        total_tokens = usage.get("total_tokens") if usage else None
        yield FinishEvent(
            finish_reason=finish_reason,
            total_tokens=total_tokens if isinstance(total_tokens, int) else None,
            usage=usage,
        )

    async def stream_chat_raw(
        self, payload: dict[str, Any]
    ) -> AsyncGenerator[ServerSentEvent, None]:
        """Low-level streaming helper accepting a prebuilt payload."""

        url = f"{self._base_url}/chat/completions"
        client = await self._get_http_client()
        try:
            async with client.stream(
                "POST", url, headers=self._headers, json=payload
            ) as response:
                if response.status_code >= 400:
                    body = await response.aread()
                    detail = self._extract_error_detail(body, self._provider)
                    logger.warning(
                        "%s returned HTTP %s: %s",
                        self._provider,
                        response.status_code,
                        detail,
                    )
                    raise ProviderStreamError(detail, status_code=response.status_code)

                async for event in self._iter_events(response):
                    yield event
        except httpx.HTTPError as exc:
            logger.warning("Transport failure talking to %s: %s", self._provider, exc)
            raise ProviderStreamError(
                str(exc), status_code=status.HTTP_502_BAD_GATEWAY
            ) from exc

    @staticmethod
    def _accumulate_tool_call(
        pending: dict[int, _PendingToolCall], fragment: Any
    ) -> None:
        if not isinstance(fragment, dict):
            return
        index = fragment.get("index", 0)
        call = pending.setdefault(index, _PendingToolCall())
        if fragment.get("id"):
            call.tool_call_id = fragment["id"]
        function = fragment.get("function") or {}
        if function.get("name"):
            call.name += function["name"]
        if function.get("arguments"):
            call.arguments += function["arguments"]

    @staticmethod
    def _decode_arguments(raw: str) -> dict[str, Any]:
        if not raw:
            return {}
        try:
            decoded = json.loads(raw)
        except json.JSONDecodeError:
            return {"raw": raw}
        return decoded if isinstance(decoded, dict) else {"value": decoded}

    async def _iter_events(
        self, response: httpx.Response
    ) -> AsyncGenerator[ServerSentEvent, None]:
        buffer: list[str] = []
        async for line in response.aiter_lines():
            if not line:
                if buffer:
                    yield self._parse_event(buffer)
                    buffer.clear()
                continue
            if line.startswith(":"):
                continue
            buffer.append(line)
        if buffer:
            yield self._parse_event(buffer)

    def _parse_event(self, lines: Iterable[str]) -> ServerSentEvent:
        event_name: Optional[str] = None
        event_id: Optional[str] = None
        data_lines: list[str] = []

        for line in lines:
            field, _, value = line.partition(":")
            value = value.lstrip(" ")
            if field == "event":
                event_name = value or None
            elif field == "data":
                data_lines.append(value)
            elif field == "id":
                event_id = value or None

        return ServerSentEvent(
            data="\n".join(data_lines),
            event=event_name or "message",
            event_id=event_id,
        )


__all__ = [
    "OpenAICompatibleClient",
    "ServerSentEvent",
    "to_openai_messages",
    "to_openai_tool_choice",
]
