"""Chat turn API routes."""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Request, status
from sse_starlette.sse import EventSourceResponse

from ..chat import ChatOrchestrator
from ..errors import ChatPipelineError
from ..schemas.chat import ChatTurnRequest
from ..transport import event_stream_response

router = APIRouter(prefix="/api", tags=["chat"])


def get_user_id(
    x_user_id: Optional[str] = Header(default=None, alias="X-User-Id"),
) -> str:
    """Return the caller identity forwarded by the auth layer."""

    if x_user_id is None or not x_user_id.strip():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized"
        )
    return x_user_id.strip()


def get_orchestrator(request: Request) -> ChatOrchestrator:
    return request.app.state.chat_orchestrator


@router.post("/v1/chat", response_model=None, status_code=200)
async def chat_turn(
    payload: ChatTurnRequest,
    user_id: str = Depends(get_user_id),
    orchestrator: ChatOrchestrator = Depends(get_orchestrator),
) -> EventSourceResponse:
    """Run one chat turn and stream the assistant reply."""

    try:
        turn = await orchestrator.prepare_turn(user_id, payload)
    except ChatPipelineError as exc:
        raise HTTPException(status_code=exc.status_code, detail=exc.detail) from exc

    return event_stream_response(
        orchestrator.stream_turn(turn),
        headers={"X-Chat-Id": turn.chat_id},
    )


__all__ = ["get_orchestrator", "get_user_id", "router"]
