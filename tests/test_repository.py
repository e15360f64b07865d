from __future__ import annotations

import json

import pytest

from chat_backend.errors import ChatAlreadyExists, ChatNotFound
from chat_backend.repository import DEFAULT_CHAT_TITLE, ChatRepository, ModelRecord
from chat_backend.services.access_control import ModelAccessService

from conftest import text_message


@pytest.fixture
async def repository(tmp_path):
    repo = ChatRepository(tmp_path / "nested" / "chat.db")
    await repo.initialize()
    try:
        yield repo
    finally:
        await repo.close()


@pytest.mark.anyio
async def test_create_load_and_save_chat(repository):
    seed = text_message("u1", "user", "hello")

    chat_id = await repository.create_chat("alice", seed)

    assert await repository.chat_exists(chat_id, "alice")
    assert not await repository.chat_exists(chat_id, "bob")
    assert await repository.chat_owner(chat_id) == "alice"
    assert await repository.load_chat(chat_id, "alice") == [seed]

    chat = await repository.get_chat(chat_id, "alice")
    assert chat is not None
    assert chat["title"] == DEFAULT_CHAT_TITLE
    assert chat["archived"] is False

    updated = [seed, text_message("a1", "assistant", "hi", {"totalTokens": 3})]
    await repository.save_chat(chat_id, "alice", updated)
    assert await repository.load_chat(chat_id, "alice") == updated


@pytest.mark.anyio
async def test_explicit_id_and_empty_chat(repository):
    chat_id = await repository.create_chat("alice", None, "my-chat")

    assert chat_id == "my-chat"
    assert await repository.load_chat("my-chat", "alice") == []
    assert await repository.load_chat("my-chat", "bob") is None
    assert await repository.load_chat("missing", "alice") is None
    assert await repository.chat_owner("missing") is None


@pytest.mark.anyio
async def test_duplicate_explicit_id_raises_conflict(repository):
    await repository.create_chat("alice", None, "shared-id")

    with pytest.raises(ChatAlreadyExists) as excinfo:
        await repository.create_chat("bob", None, "shared-id")

    assert excinfo.value.status_code == 409
    assert await repository.chat_owner("shared-id") == "alice"
    assert await repository.create_chat("bob", None, "bobs-id") == "bobs-id"


@pytest.mark.anyio
async def test_save_chat_rejects_other_users(repository):
    chat_id = await repository.create_chat("alice")

    with pytest.raises(ChatNotFound):
        await repository.save_chat(chat_id, "bob", [])
    with pytest.raises(ChatNotFound):
        await repository.save_chat("missing", "alice", [])


@pytest.mark.anyio
async def test_invalid_stored_messages_are_filtered(repository):
    chat_id = await repository.create_chat("alice")
    await repository.save_chat(
        chat_id,
        "alice",
        [
            text_message("ok", "user", "fine"),
            {"id": "no-parts", "role": "user"},
            {"role": "user", "parts": []},
            "not a message",
        ],
    )

    messages = await repository.load_chat(chat_id, "alice")

    assert [m["id"] for m in messages] == ["ok"]


@pytest.mark.anyio
async def test_non_list_document_loads_as_empty(repository):
    chat_id = await repository.create_chat("alice")
    connection = repository._connection  # type: ignore[attr-defined]
    await connection.execute(
        "UPDATE chats SET messages = ? WHERE id = ?",
        (json.dumps({"oops": True}), chat_id),
    )
    await connection.commit()

    assert await repository.load_chat(chat_id, "alice") == []


@pytest.mark.anyio
async def test_model_lookups(repository):
    shared = ModelRecord(id="m-shared", name="gpt-4o", user_id="bob", provider="openai")
    own = ModelRecord(
        id="m-own",
        name="gpt-4o",
        user_id="alice",
        provider="openrouter",
        provider_id="openai/gpt-4o",
        params={"topP": 0.7},
        meta={"context_window": 128000},
        access_control={"read": {"user_ids": ["carol"]}},
    )
    await repository.upsert_model(shared)
    await repository.upsert_model(own)

    assert await repository.find_model_by_id("m-own") == own
    assert (await repository.find_model_by_name("alice", "gpt-4o")).id == "m-own"
    assert (await repository.find_model_by_name("bob", "gpt-4o")).id == "m-shared"
    assert await repository.find_model_by_name("carol", "gpt-4o") is None
    assert (await repository.find_model_by_provider_id("openai/gpt-4o")).id == "m-own"
    assert (await repository.find_model_by_ref("m-shared")).id == "m-shared"
    assert await repository.find_model_by_ref("unknown") is None


@pytest.mark.anyio
async def test_connections_snapshot_is_versioned(repository):
    empty = await repository.load_connections()
    assert empty.version == 0
    assert empty.get("openai") is None

    await repository.upsert_connection("openai", "https://api.openai.com/v1", "sk-1")
    await repository.upsert_connection("ollama", "http://localhost:11434", None)
    first = await repository.load_connections()
    await repository.upsert_connection("openai", "https://proxy.local/v1", "sk-2")
    second = await repository.load_connections()

    assert first.version == 2
    assert second.version == 3
    assert first.get("openai").api_key == "sk-1"
    assert second.get("openai").base_url == "https://proxy.local/v1"
    assert second.get("ollama").has_api_key is False


@pytest.mark.anyio
async def test_config_document_roundtrip(repository):
    assert await repository.get_config() == {}

    await repository.set_config({"websearch": {"ENABLED": True}})

    assert await repository.get_config() == {"websearch": {"ENABLED": True}}


@pytest.mark.anyio
async def test_model_read_permissions(repository):
    await repository.upsert_user("root", role="Admin")
    await repository.add_group_member("team", "dave")
    await repository.upsert_model(
        ModelRecord(
            id="m1",
            name="Private",
            user_id="alice",
            access_control={"read": {"user_ids": ["carol"], "group_ids": ["team"]}},
        )
    )
    await repository.upsert_model(ModelRecord(id="m2", name="Closed", user_id="alice"))
    access = ModelAccessService(repository)

    assert await access.can_read_model("alice", "m1")
    assert await access.can_read_model("root", "m1")
    assert await access.can_read_model("carol", "m1")
    assert await access.can_read_model("dave", "m1")
    assert not await access.can_read_model("erin", "m1")
    assert not await access.can_read_model("carol", "m2")
    assert not await access.can_read_model("alice", "unknown")
