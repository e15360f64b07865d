"""Shared types for provider clients and provider routing."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Callable, Mapping, Protocol, Sequence, Union

SUPPORTED_PROVIDERS = ("openai", "openrouter", "ollama", "openai-compatible")


@dataclass(frozen=True)
class ProviderConnection:
    """Base URL and credential for one provider."""

    provider: str
    base_url: str | None = None
    api_key: str | None = None

    @property
    def has_api_key(self) -> bool:
        return bool(self.api_key and self.api_key.strip())


@dataclass(frozen=True)
class ProviderConnections:
    """Immutable, versioned snapshot of all configured provider connections."""

    version: int = 0
    connections: Mapping[str, ProviderConnection] = field(default_factory=dict)

    def get(self, provider: str) -> ProviderConnection | None:
        return self.connections.get(provider)


@dataclass(frozen=True)
class GenerationParams:
    """Concrete generation parameters; ``None`` means the field is omitted."""

    temperature: float | None = None
    top_p: float | None = None
    top_k: int | None = None
    seed: int | None = None
    presence_penalty: float | None = None
    frequency_penalty: float | None = None
    max_output_tokens: int | None = None
    tool_choice: Any = None
    stop_sequences: tuple[str, ...] | None = None
    system: str | None = None

    def as_dict(self) -> dict[str, Any]:
        """Return only the fields that carry a value."""

        values = {
            "temperature": self.temperature,
            "topP": self.top_p,
            "topK": self.top_k,
            "seed": self.seed,
            "presencePenalty": self.presence_penalty,
            "frequencyPenalty": self.frequency_penalty,
            "maxOutputTokens": self.max_output_tokens,
            "toolChoice": self.tool_choice,
            "stopSequences": list(self.stop_sequences)
            if self.stop_sequences is not None
            else None,
            "system": self.system,
        }
        return {key: value for key, value in values.items() if value is not None}


@dataclass(frozen=True)
class ToolDefinition:
    """Provider-neutral description of a callable tool."""

    name: str
    description: str
    parameters: dict[str, Any]
    category: str
    config: Mapping[str, Any] = field(default_factory=dict)

    def to_function_tool(self) -> dict[str, Any]:
        """Render in the ``{"type": "function"}`` shape both wire formats accept."""

        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }


@dataclass(frozen=True)
class TextDelta:
    text: str


@dataclass(frozen=True)
class ToolCallEvent:
    tool_call_id: str
    tool_name: str
    arguments: dict[str, Any]


@dataclass(frozen=True)
class FinishEvent:
    finish_reason: str | None = None
    total_tokens: int | None = None
    usage: dict[str, Any] | None = None


ProviderEvent = Union[TextDelta, ToolCallEvent, FinishEvent]


class ProviderClient(Protocol):
    """Streams a completion for one provider-side model id."""

    def stream_chat(
        self,
        model_id: str,
        *,
        messages: Sequence[Mapping[str, Any]],
        params: GenerationParams,
        tools: Mapping[str, ToolDefinition] | None = None,
    ) -> AsyncIterator[ProviderEvent]: ...


@dataclass(frozen=True)
class ModelHandle:
    """A provider client bound to the model id it will be sent."""

    client: ProviderClient
    model_id: str

    def stream(
        self,
        *,
        messages: Sequence[Mapping[str, Any]],
        params: GenerationParams,
        tools: Mapping[str, ToolDefinition] | None = None,
    ) -> AsyncIterator[ProviderEvent]:
        return self.client.stream_chat(
            self.model_id, messages=messages, params=params, tools=tools
        )


@dataclass(frozen=True)
class ProviderResolution:
    """Outcome of routing a model reference to a provider."""

    provider_name: str
    provider_model_id: str
    base_url: str | None
    client_factory: Callable[[], ProviderClient]

    def get_model_handle(self, provider_model_id: str | None = None) -> ModelHandle:
        return ModelHandle(
            client=self.client_factory(),
            model_id=provider_model_id or self.provider_model_id,
        )


def message_text(message: Mapping[str, Any]) -> str:
    """Concatenate the text parts of a UI message."""

    parts = message.get("parts")
    if not isinstance(parts, list):
        return ""
    return "".join(
        part.get("text", "")
        for part in parts
        if isinstance(part, Mapping)
        and part.get("type") == "text"
        and isinstance(part.get("text"), str)
    )


__all__ = [
    "FinishEvent",
    "GenerationParams",
    "ModelHandle",
    "ProviderClient",
    "ProviderConnection",
    "ProviderConnections",
    "ProviderEvent",
    "ProviderResolution",
    "SUPPORTED_PROVIDERS",
    "TextDelta",
    "ToolCallEvent",
    "ToolDefinition",
    "message_text",
]
