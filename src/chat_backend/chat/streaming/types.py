"""Type definitions for the chat streaming subsystem."""

from __future__ import annotations

import enum
import json
from dataclasses import dataclass, field
from typing import Any, Mapping

from ...providers.types import GenerationParams, ToolDefinition
from ...repository import Message
from ..model_resolution import ModelResolution
from ..persistence import PersistStrategy

SseEvent = dict[str, str]

DONE_EVENT: SseEvent = {"data": "[DONE]"}


def sse_payload(payload: Mapping[str, Any]) -> SseEvent:
    """Wrap a JSON-serialisable event as a ``data:``-only SSE event."""

    return {"data": json.dumps(payload, ensure_ascii=False)}


def error_event(detail: Any, status_code: int) -> SseEvent:
    text = detail if isinstance(detail, str) else json.dumps(detail, default=str)
    return sse_payload({"type": "error", "errorText": text, "status": status_code})


class TurnState(str, enum.Enum):
    PREPARING = "preparing"
    GENERATING = "generating"
    FINISHING = "finishing"
    DONE = "done"
    FAILED = "failed"


@dataclass(frozen=True)
class PreparedTurn:
    """Everything resolved before the provider is called."""

    user_id: str
    chat_id: str
    canonical_history: list[Message]
    context: list[Message]
    params: GenerationParams
    tools: Mapping[str, ToolDefinition] | None
    resolution: ModelResolution
    strategy: PersistStrategy
    chat_created: bool = False


@dataclass
class AssistantTurn:
    message_id: str
    metadata: dict[str, Any]
    text: list[str] = field(default_factory=list)
    tool_calls: list[dict[str, Any]] = field(default_factory=list)
    finish_reason: str | None = None

    def to_message(self) -> Message:
        parts: list[dict[str, Any]] = []
        content = "".join(self.text)
        if content:
            parts.append({"type": "text", "text": content})
        for call in self.tool_calls:
            parts.append({"type": "tool-call", **call})
        return {
            "id": self.message_id,
            "role": "assistant",
            "parts": parts,
            "metadata": dict(self.metadata),
        }


__all__ = [
    "AssistantTurn",
    "DONE_EVENT",
    "PreparedTurn",
    "SseEvent",
    "TurnState",
    "error_event",
    "sse_payload",
]
