from __future__ import annotations

import json
from types import SimpleNamespace
from typing import Any, AsyncIterator, Iterator

import pytest
import sse_starlette.sse as sse
from fastapi import FastAPI
from fastapi.testclient import TestClient

from chat_backend.chat.streaming.types import DONE_EVENT, sse_payload
from chat_backend.errors import ChatNotFound, InvalidChatRequest, ProviderStreamError
from chat_backend.routers.chat import router


class FakeOrchestrator:
    def __init__(
        self,
        *,
        events: list[dict[str, str]] | None = None,
        prepare_error: Exception | None = None,
        stream_error: Exception | None = None,
    ) -> None:
        self.events = events if events is not None else [
            sse_payload({"type": "start", "messageId": "msg_1"}),
            sse_payload({"type": "text-delta", "id": "t", "delta": "Hi"}),
            DONE_EVENT,
        ]
        self.prepare_error = prepare_error
        self.stream_error = stream_error
        self.requests: list[tuple[str, Any]] = []
        self.streamed = False

    async def prepare_turn(self, user_id: str, request: Any) -> SimpleNamespace:
        self.requests.append((user_id, request))
        if self.prepare_error is not None:
            raise self.prepare_error
        return SimpleNamespace(chat_id="chat-123")

    async def stream_turn(self, turn: Any) -> AsyncIterator[dict[str, str]]:
        self.streamed = True
        for event in self.events:
            yield event
        if self.stream_error is not None:
            raise self.stream_error


@pytest.fixture(autouse=True)
def reset_sse_app_status() -> Iterator[None]:
    # sse-starlette keeps a process-wide exit event bound to the first loop it sees.
    app_status = getattr(sse, "AppStatus", None)
    if app_status is not None and hasattr(app_status, "should_exit_event"):
        app_status.should_exit_event = None
    yield


def make_client(orchestrator: FakeOrchestrator) -> TestClient:
    app = FastAPI()
    app.state.chat_orchestrator = orchestrator
    app.include_router(router)
    return TestClient(app)


def _data_lines(body: str) -> list[str]:
    frames = [frame for frame in body.replace("\r\n", "\n").split("\n\n") if frame.strip()]
    assert all(frame.startswith("data: ") for frame in frames)
    return [frame[len("data: ") :] for frame in frames]


PAYLOAD = {
    "message": {"id": "u1", "role": "user", "parts": [{"type": "text", "text": "hi"}]},
    "modelId": "m1",
    "topP": 0.5,
    "advanced": {"topK": 20},
}


def test_chat_turn_streams_framed_events() -> None:
    orchestrator = FakeOrchestrator()
    client = make_client(orchestrator)

    response = client.post("/api/v1/chat", json=PAYLOAD, headers={"X-User-Id": "alice"})

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/event-stream")
    assert response.headers["x-chat-id"] == "chat-123"
    assert response.headers["cache-control"] == "no-cache, no-transform"
    assert response.headers["x-accel-buffering"] == "no"

    data = _data_lines(response.text)
    assert json.loads(data[0]) == {"type": "start", "messageId": "msg_1"}
    assert json.loads(data[1])["delta"] == "Hi"
    assert data[-1] == "[DONE]"

    user_id, request = orchestrator.requests[0]
    assert user_id == "alice"
    assert request.model_id == "m1"
    assert request.message_record()["parts"] == [{"type": "text", "text": "hi"}]
    overrides = request.generation_overrides()
    assert overrides.top_p == 0.5
    assert overrides.top_k == 20


def test_missing_user_header_is_unauthorized() -> None:
    orchestrator = FakeOrchestrator()
    client = make_client(orchestrator)

    response = client.post("/api/v1/chat", json=PAYLOAD)

    assert response.status_code == 401
    assert orchestrator.requests == []


def test_pre_stream_errors_use_http_status() -> None:
    orchestrator = FakeOrchestrator(prepare_error=ChatNotFound("Chat c9 not found"))
    client = make_client(orchestrator)

    response = client.post(
        "/api/v1/chat",
        json={**PAYLOAD, "chatId": "c9"},
        headers={"X-User-Id": "alice"},
    )

    assert response.status_code == 404
    assert response.json() == {"detail": "Chat c9 not found"}
    assert orchestrator.streamed is False


def test_invalid_request_is_bad_request() -> None:
    orchestrator = FakeOrchestrator(
        prepare_error=InvalidChatRequest("Messages or message are required")
    )
    client = make_client(orchestrator)

    response = client.post("/api/v1/chat", json={}, headers={"X-User-Id": "alice"})

    assert response.status_code == 400


def test_mid_stream_failures_are_encoded_in_band() -> None:
    orchestrator = FakeOrchestrator(
        events=[sse_payload({"type": "start", "messageId": "msg_1"})],
        stream_error=ProviderStreamError("upstream closed"),
    )
    client = make_client(orchestrator)

    response = client.post("/api/v1/chat", json=PAYLOAD, headers={"X-User-Id": "alice"})

    assert response.status_code == 200
    data = _data_lines(response.text)
    assert json.loads(data[1]) == {
        "type": "error",
        "errorText": "upstream closed",
        "status": 502,
    }
    assert data[-1] == "[DONE]"
