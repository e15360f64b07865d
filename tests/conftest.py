import json
import pathlib
import sys
from typing import Any, AsyncIterator

import pytest

PROJECT_ROOT = pathlib.Path(__file__).resolve().parents[1]
SRC_DIR = PROJECT_ROOT / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from chat_backend.providers.types import (  # noqa: E402
    FinishEvent,
    GenerationParams,
    ProviderEvent,
    TextDelta,
    ToolDefinition,
)


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


def text_message(
    message_id: str,
    role: str,
    text: str,
    metadata: dict[str, Any] | None = None,
) -> dict[str, Any]:
    message: dict[str, Any] = {
        "id": message_id,
        "role": role,
        "parts": [{"type": "text", "text": text}],
    }
    if metadata is not None:
        message["metadata"] = metadata
    return message


def decode_events(events: list[dict[str, str]]) -> list[Any]:
    """Decode ``{"data": ...}`` events, keeping the ``[DONE]`` sentinel as a string."""
    return [
        event["data"] if event["data"] == "[DONE]" else json.loads(event["data"])
        for event in events
    ]


class ScriptedClient:
    """Provider client replaying a fixed list of events and recording calls."""

    def __init__(
        self,
        events: list[ProviderEvent] | None = None,
        *,
        error: Exception | None = None,
    ) -> None:
        self.events = events if events is not None else [
            TextDelta("Hello"),
            TextDelta(" there"),
            FinishEvent(finish_reason="stop", total_tokens=12),
        ]
        self.error = error
        self.calls: list[dict[str, Any]] = []
        self.closed = False

    async def stream_chat(
        self,
        model_id: str,
        *,
        messages: Any,
        params: GenerationParams,
        tools: dict[str, ToolDefinition] | None = None,
    ) -> AsyncIterator[ProviderEvent]:
        self.calls.append(
            {"model_id": model_id, "messages": list(messages), "params": params, "tools": tools}
        )
        try:
            for event in self.events:
                yield event
            if self.error is not None:
                raise self.error
        finally:
            self.closed = True
