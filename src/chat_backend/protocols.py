"""Collaborator interfaces consumed by the chat pipeline."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Protocol

if TYPE_CHECKING:
    from .providers.types import ProviderConnections
    from .repository import Message, ModelRecord


class ChatStore(Protocol):
    async def load_chat(self, chat_id: str, user_id: str) -> list[Message] | None: ...

    async def create_chat(
        self,
        user_id: str,
        seed_message: Message | None = None,
        explicit_id: str | None = None,
    ) -> str: ...

    async def save_chat(
        self, chat_id: str, user_id: str, messages: list[Message]
    ) -> None: ...

    async def chat_exists(self, chat_id: str, user_id: str) -> bool: ...

    async def chat_owner(self, chat_id: str) -> str | None: ...


class ModelRegistry(Protocol):
    async def find_model_by_id(self, model_id: str) -> ModelRecord | None: ...

    async def find_model_by_name(
        self, user_id: str, name: str
    ) -> ModelRecord | None: ...

    async def find_model_by_provider_id(
        self, provider_id: str
    ) -> ModelRecord | None: ...

    async def find_model_by_ref(self, ref: str) -> ModelRecord | None: ...


class PermissionService(Protocol):
    async def can_read_model(self, user_id: str, model_id: str) -> bool: ...


class ConnectionSource(Protocol):
    async def load_connections(self) -> ProviderConnections: ...


class ConfigSource(Protocol):
    async def get_config(self) -> dict[str, Any]: ...


__all__ = [
    "ChatStore",
    "ConfigSource",
    "ConnectionSource",
    "ModelRegistry",
    "PermissionService",
]
