"""Load or create the chat a turn belongs to and assemble its history."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Sequence

from ..errors import ChatAlreadyExists, ChatNotFound, InvalidChatRequest
from ..protocols import ChatStore
from ..repository import Message

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PreparedSession:
    chat_id: str
    history: list[Message]
    created: bool = False


class SessionPreparer:
    """Resolve ``{chat_id, history}`` for an incoming turn."""

    def __init__(self, store: ChatStore) -> None:
        self._store = store

    async def _ensure_not_foreign(self, chat_id: str, user_id: str) -> bool:
        """Return True when the chat exists for the user; raise if another user owns it."""

        if await self._store.chat_exists(chat_id, user_id):
            return True
        owner = await self._store.chat_owner(chat_id)
        if owner is not None:
            logger.info(
                "User %s referenced chat %s owned by another user", user_id, chat_id
            )
            raise ChatNotFound(f"Chat {chat_id} not found")
        return False

    async def _create_with_id(self, user_id: str, chat_id: str) -> bool:
        """Create an empty chat under ``chat_id``; False if the user raced us to it."""

        try:
            await self._store.create_chat(user_id, None, chat_id)
        except ChatAlreadyExists:
            logger.info("Chat %s was created concurrently; re-checking owner", chat_id)
            if not await self._ensure_not_foreign(chat_id, user_id):
                raise ChatNotFound(f"Chat {chat_id} not found") from None
            return False
        return True

    async def prepare(
        self,
        user_id: str,
        *,
        chat_id: str | None = None,
        message: Message | None = None,
        messages: Sequence[Message] | None = None,
    ) -> PreparedSession:
        if message is not None:
            return await self._prepare_single(user_id, chat_id, message)
        if messages:
            return await self._prepare_array(user_id, chat_id, list(messages))
        raise InvalidChatRequest("Messages or message are required")

    async def _prepare_single(
        self, user_id: str, chat_id: str | None, message: Message
    ) -> PreparedSession:
        if not chat_id:
            new_id = await self._store.create_chat(user_id, message)
            return PreparedSession(chat_id=new_id, history=[message], created=True)

        if not await self._ensure_not_foreign(chat_id, user_id):
            if await self._create_with_id(user_id, chat_id):
                return PreparedSession(chat_id=chat_id, history=[message], created=True)

        previous = await self._store.load_chat(chat_id, user_id)
        if previous is None:
            raise ChatNotFound(f"Chat {chat_id} not found")
        return PreparedSession(chat_id=chat_id, history=[*previous, message])

    async def _prepare_array(
        self, user_id: str, chat_id: str | None, messages: list[Message]
    ) -> PreparedSession:
        if not chat_id:
            new_id = await self._store.create_chat(user_id, messages[0])
            return PreparedSession(chat_id=new_id, history=messages, created=True)

        if not await self._ensure_not_foreign(chat_id, user_id):
            if await self._create_with_id(user_id, chat_id):
                return PreparedSession(chat_id=chat_id, history=messages, created=True)
        return PreparedSession(chat_id=chat_id, history=messages)


__all__ = ["PreparedSession", "SessionPreparer"]
