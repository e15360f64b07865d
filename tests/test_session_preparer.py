from __future__ import annotations

from typing import Any

import pytest

from chat_backend.chat.session import SessionPreparer
from chat_backend.errors import ChatAlreadyExists, ChatNotFound, InvalidChatRequest

from conftest import text_message


class FakeStore:
    def __init__(self) -> None:
        self.chats: dict[str, tuple[str, list[dict[str, Any]] | None]] = {}
        self.created: list[tuple[str, dict[str, Any] | None, str | None]] = []
        self._counter = 0

    async def load_chat(self, chat_id: str, user_id: str) -> list[dict[str, Any]] | None:
        entry = self.chats.get(chat_id)
        if entry is None or entry[0] != user_id:
            return None
        return None if entry[1] is None else list(entry[1])

    async def create_chat(
        self,
        user_id: str,
        seed_message: dict[str, Any] | None = None,
        explicit_id: str | None = None,
    ) -> str:
        self._counter += 1
        chat_id = explicit_id or f"chat-{self._counter}"
        self.chats[chat_id] = (user_id, [seed_message] if seed_message else [])
        self.created.append((user_id, seed_message, explicit_id))
        return chat_id

    async def save_chat(self, chat_id: str, user_id: str, messages: list[dict[str, Any]]) -> None:
        self.chats[chat_id] = (user_id, messages)

    async def chat_exists(self, chat_id: str, user_id: str) -> bool:
        entry = self.chats.get(chat_id)
        return entry is not None and entry[0] == user_id

    async def chat_owner(self, chat_id: str) -> str | None:
        entry = self.chats.get(chat_id)
        return None if entry is None else entry[0]


@pytest.fixture
def store() -> FakeStore:
    return FakeStore()


@pytest.mark.anyio
async def test_single_message_without_chat_id_creates_seeded_chat(store: FakeStore) -> None:
    message = text_message("u1", "user", "hi")

    session = await SessionPreparer(store).prepare("alice", message=message)

    assert session.created is True
    assert session.history == [message]
    assert store.created == [("alice", message, None)]
    assert store.chats[session.chat_id] == ("alice", [message])


@pytest.mark.anyio
async def test_single_message_appends_to_existing_chat(store: FakeStore) -> None:
    earlier = [text_message("u0", "user", "a"), text_message("a0", "assistant", "b")]
    store.chats["c1"] = ("alice", earlier)
    message = text_message("u1", "user", "next")

    session = await SessionPreparer(store).prepare("alice", chat_id="c1", message=message)

    assert session.chat_id == "c1"
    assert session.created is False
    assert session.history == [*earlier, message]
    assert store.created == []


@pytest.mark.anyio
async def test_single_message_with_unknown_id_creates_chat_with_that_id(
    store: FakeStore,
) -> None:
    message = text_message("u1", "user", "hi")

    session = await SessionPreparer(store).prepare("alice", chat_id="fresh", message=message)

    assert session.chat_id == "fresh"
    assert session.created is True
    assert session.history == [message]
    assert store.created == [("alice", None, "fresh")]


@pytest.mark.anyio
async def test_chat_owned_by_another_user_is_not_found(store: FakeStore) -> None:
    store.chats["c1"] = ("bob", [text_message("u0", "user", "secret")])
    preparer = SessionPreparer(store)

    with pytest.raises(ChatNotFound):
        await preparer.prepare("alice", chat_id="c1", message=text_message("u1", "user", "hi"))
    with pytest.raises(ChatNotFound):
        await preparer.prepare("alice", chat_id="c1", messages=[text_message("u1", "user", "hi")])

    assert store.created == []
    assert store.chats["c1"][0] == "bob"


@pytest.mark.anyio
async def test_null_load_for_explicit_id_is_not_found(store: FakeStore) -> None:
    store.chats["c1"] = ("alice", None)

    with pytest.raises(ChatNotFound):
        await SessionPreparer(store).prepare(
            "alice", chat_id="c1", message=text_message("u1", "user", "hi")
        )


@pytest.mark.anyio
async def test_empty_stored_chat_is_a_valid_history(store: FakeStore) -> None:
    store.chats["c1"] = ("alice", [])
    message = text_message("u1", "user", "hi")

    session = await SessionPreparer(store).prepare("alice", chat_id="c1", message=message)

    assert session.history == [message]


@pytest.mark.anyio
async def test_message_array_without_id_seeds_with_first_message(store: FakeStore) -> None:
    messages = [text_message("u1", "user", "first"), text_message("a1", "assistant", "reply")]

    session = await SessionPreparer(store).prepare("alice", messages=messages)

    assert session.created is True
    assert session.history == messages
    assert store.created == [("alice", messages[0], None)]


@pytest.mark.anyio
async def test_message_array_is_used_verbatim_for_existing_chat(store: FakeStore) -> None:
    store.chats["c1"] = ("alice", [text_message("old", "user", "stored")])
    messages = [text_message("u1", "user", "client view")]

    session = await SessionPreparer(store).prepare("alice", chat_id="c1", messages=messages)

    assert session.created is False
    assert session.history == messages


@pytest.mark.anyio
async def test_message_array_with_unknown_id_creates_chat(store: FakeStore) -> None:
    messages = [text_message("u1", "user", "first")]

    session = await SessionPreparer(store).prepare("alice", chat_id="new", messages=messages)

    assert session.chat_id == "new"
    assert store.created == [("alice", None, "new")]


@pytest.mark.anyio
@pytest.mark.parametrize("messages", [None, []])
async def test_missing_messages_is_invalid(store: FakeStore, messages: list | None) -> None:
    with pytest.raises(InvalidChatRequest) as excinfo:
        await SessionPreparer(store).prepare("alice", chat_id="c1", messages=messages)

    assert excinfo.value.status_code == 400


class RacingStore(FakeStore):
    """Another turn inserts the explicit id between the existence check and the insert."""

    def __init__(self, racer: str, history: list[dict[str, Any]]) -> None:
        super().__init__()
        self.racer = racer
        self.history = history

    async def create_chat(
        self,
        user_id: str,
        seed_message: dict[str, Any] | None = None,
        explicit_id: str | None = None,
    ) -> str:
        if explicit_id is not None:
            self.chats[explicit_id] = (self.racer, list(self.history))
            raise ChatAlreadyExists(f"Chat {explicit_id} already exists")
        return await super().create_chat(user_id, seed_message, explicit_id)


@pytest.mark.anyio
async def test_concurrent_create_by_other_user_is_not_found() -> None:
    store = RacingStore("bob", [])
    message = text_message("u1", "user", "hi")

    with pytest.raises(ChatNotFound):
        await SessionPreparer(store).prepare("alice", chat_id="fresh", message=message)

    assert store.chats["fresh"] == ("bob", [])


@pytest.mark.anyio
async def test_concurrent_create_by_same_user_loads_history() -> None:
    earlier = [text_message("u0", "user", "first")]
    store = RacingStore("alice", earlier)
    message = text_message("u1", "user", "second")

    session = await SessionPreparer(store).prepare("alice", chat_id="fresh", message=message)

    assert session.created is False
    assert session.history == [*earlier, message]


@pytest.mark.anyio
async def test_concurrent_create_for_message_array_keeps_client_history() -> None:
    store = RacingStore("alice", [])
    messages = [text_message("u0", "user", "a"), text_message("u1", "user", "b")]

    session = await SessionPreparer(store).prepare("alice", chat_id="fresh", messages=messages)

    assert session.created is False
    assert session.history == messages
