"""Drive one provider stream and persist the finished turn."""

from __future__ import annotations

import asyncio
import logging
from contextlib import aclosing
from typing import AsyncGenerator

from ...errors import PersistenceError, ProviderStreamError
from ...providers.types import FinishEvent, TextDelta, ToolCallEvent
from ...services.conversation_logging import ConversationLogWriter
from ..persistence import PersistenceWriter, PersistStrategy
from .messages import build_finish_metadata, build_start_metadata, new_message_id
from .types import (
    DONE_EVENT,
    AssistantTurn,
    PreparedTurn,
    SseEvent,
    TurnState,
    error_event,
    sse_payload,
)

logger = logging.getLogger(__name__)


class StreamingHandler:
    """Forward provider tokens as events and commit the turn on a clean finish."""

    def __init__(
        self,
        writer: PersistenceWriter,
        *,
        conversation_logger: ConversationLogWriter | None = None,
    ) -> None:
        self._writer = writer
        self._conversation_logger = conversation_logger

    async def stream_turn(
        self, turn: PreparedTurn
    ) -> AsyncGenerator[SseEvent, None]:
        descriptor = turn.resolution.descriptor
        assistant = AssistantTurn(
            message_id=new_message_id(),
            metadata=build_start_metadata(descriptor),
        )
        state = TurnState.GENERATING
        text_id = f"text_{assistant.message_id}"
        text_open = False

        yield sse_payload(
            {
                "type": "start",
                "messageId": assistant.message_id,
                "messageMetadata": assistant.metadata,
            }
        )

        stream = turn.resolution.handle.stream(
            messages=turn.context, params=turn.params, tools=turn.tools
        )
        try:
            async with aclosing(stream) as events:
                async for event in events:
                    if isinstance(event, TextDelta):
                        if not text_open:
                            text_open = True
                            yield sse_payload({"type": "text-start", "id": text_id})
                        assistant.text.append(event.text)
                        yield sse_payload(
                            {"type": "text-delta", "id": text_id, "delta": event.text}
                        )
                    elif isinstance(event, ToolCallEvent):
                        call = {
                            "toolCallId": event.tool_call_id,
                            "toolName": event.tool_name,
                            "input": event.arguments,
                        }
                        assistant.tool_calls.append(call)
                        yield sse_payload({"type": "tool-input-available", **call})
                    elif isinstance(event, FinishEvent):
                        assistant.finish_reason = event.finish_reason
                        assistant.metadata.update(
                            build_finish_metadata(event.total_tokens)
                        )
        except ProviderStreamError as exc:
            state = TurnState.FAILED
            logger.warning(
                "Provider %s failed for chat %s: %s",
                turn.resolution.provider.provider_name,
                turn.chat_id,
                exc.detail,
            )
            yield error_event(exc.detail, exc.status_code)
            yield DONE_EVENT
            return
        except (asyncio.CancelledError, GeneratorExit):
            logger.info(
                "Client disconnected from chat %s during %s; nothing persisted",
                turn.chat_id,
                state.value,
            )
            raise

        if text_open:
            yield sse_payload({"type": "text-end", "id": text_id})

        state = TurnState.FINISHING
        yield sse_payload(
            {
                "type": "finish",
                "finishReason": assistant.finish_reason,
                "messageMetadata": build_finish_metadata(
                    assistant.metadata.get("totalTokens")
                ),
            }
        )

        reply = assistant.to_message()
        if turn.strategy is PersistStrategy.APPEND_FROM_TRIMMED:
            streamed = [*turn.context, reply]
        else:
            streamed = [*turn.canonical_history, reply]

        try:
            saved = await self._writer.persist(
                chat_id=turn.chat_id,
                user_id=turn.user_id,
                strategy=turn.strategy,
                streamed=streamed,
                descriptor=descriptor,
                canonical=turn.canonical_history,
            )
        except PersistenceError as exc:
            state = TurnState.FAILED
            logger.error("Turn for chat %s was streamed but not saved", turn.chat_id)
            yield error_event(exc.detail, exc.status_code)
            yield DONE_EVENT
            return

        if self._conversation_logger is not None:
            try:
                await self._conversation_logger.write(
                    chat_id=turn.chat_id,
                    user_id=turn.user_id,
                    model=descriptor.as_metadata(),
                    strategy=turn.strategy.value,
                    conversation=saved,
                )
            except OSError as exc:
                logger.warning("Could not write conversation log: %s", exc)

        state = TurnState.DONE
        logger.debug("Turn for chat %s reached %s", turn.chat_id, state.value)
        yield DONE_EVENT


__all__ = ["StreamingHandler"]
