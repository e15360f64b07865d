"""Frame chat turn events as a server-sent event stream."""

from __future__ import annotations

import logging
from typing import AsyncIterator, Mapping

from fastapi import status
from sse_starlette.sse import EventSourceResponse

from .chat.streaming.types import DONE_EVENT, SseEvent, error_event
from .errors import ChatPipelineError

logger = logging.getLogger(__name__)

STREAM_HEADERS = {
    "Cache-Control": "no-cache, no-transform",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


async def guarded_events(events: AsyncIterator[SseEvent]) -> AsyncIterator[SseEvent]:
    """Encode failures escaping ``events`` in-band, since headers are already sent."""

    try:
        async for event in events:
            yield event
    except ChatPipelineError as exc:
        logger.warning("Turn failed mid-stream: %s", exc.detail)
        yield error_event(exc.detail, exc.status_code)
        yield DONE_EVENT
    except Exception as exc:  # pragma: no cover - unexpected failure
        logger.exception("Unexpected error while streaming a turn")
        yield error_event(str(exc), status.HTTP_500_INTERNAL_SERVER_ERROR)
        yield DONE_EVENT


def event_stream_response(
    events: AsyncIterator[SseEvent],
    *,
    headers: Mapping[str, str] | None = None,
) -> EventSourceResponse:
    """Return a ``data: <payload>\\n\\n`` framed streaming response."""

    return EventSourceResponse(
        guarded_events(events),
        headers={**STREAM_HEADERS, **(headers or {})},
        sep="\n",
    )


__all__ = ["STREAM_HEADERS", "event_stream_response", "guarded_events"]
