"""Error taxonomy for the chat generation pipeline."""

from __future__ import annotations

from typing import Any

from fastapi import status


class ChatPipelineError(Exception):
    """Base error carrying an HTTP-equivalent status and a detail payload."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, detail: Any, *, status_code: int | None = None):
        super().__init__(str(detail))
        if status_code is not None:
            self.status_code = status_code
        self.detail = detail


class InvalidChatRequest(ChatPipelineError):
    """The request carries neither a message nor a non-empty message array."""

    status_code = status.HTTP_400_BAD_REQUEST


class ChatNotFound(ChatPipelineError):
    """An explicit chat id is absent for the calling user."""

    status_code = status.HTTP_404_NOT_FOUND


class ChatAlreadyExists(ChatPipelineError):
    """A chat with the requested explicit id was inserted concurrently."""

    status_code = status.HTTP_409_CONFLICT


class PermissionDenied(ChatPipelineError):
    """The caller may not read the requested model."""

    status_code = status.HTTP_403_FORBIDDEN


class ProviderUnavailable(ChatPipelineError):
    """No configured provider can serve the resolved model."""

    status_code = status.HTTP_503_SERVICE_UNAVAILABLE


class ProviderStreamError(ChatPipelineError):
    """Transport or API failure raised by a provider while generating."""

    status_code = status.HTTP_502_BAD_GATEWAY


class PersistenceError(ChatPipelineError):
    """Writing the finished turn to the store failed."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR


__all__ = [
    "ChatAlreadyExists",
    "ChatNotFound",
    "ChatPipelineError",
    "InvalidChatRequest",
    "PermissionDenied",
    "PersistenceError",
    "ProviderStreamError",
    "ProviderUnavailable",
]
