"""Provider clients and model routing."""

from .ollama import OllamaClient
from .openai_compatible import OpenAICompatibleClient
from .router import ProviderRouter
from .types import (
    FinishEvent,
    GenerationParams,
    ModelHandle,
    ProviderConnection,
    ProviderConnections,
    ProviderEvent,
    ProviderResolution,
    TextDelta,
    ToolCallEvent,
    ToolDefinition,
)

__all__ = [
    "FinishEvent",
    "GenerationParams",
    "ModelHandle",
    "OllamaClient",
    "OpenAICompatibleClient",
    "ProviderConnection",
    "ProviderConnections",
    "ProviderEvent",
    "ProviderResolution",
    "ProviderRouter",
    "TextDelta",
    "ToolCallEvent",
    "ToolDefinition",
]
