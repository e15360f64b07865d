"""Streaming subsystem for chat turns."""

from .handler import StreamingHandler
from .types import AssistantTurn, PreparedTurn, SseEvent, TurnState

__all__ = ["AssistantTurn", "PreparedTurn", "SseEvent", "StreamingHandler", "TurnState"]
