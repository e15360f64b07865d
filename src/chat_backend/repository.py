"""SQLite-backed repository for chats, models, permissions and provider config."""

from __future__ import annotations

import json
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import aiosqlite

from .errors import ChatAlreadyExists, ChatNotFound
from .providers.types import ProviderConnection, ProviderConnections

logger = logging.getLogger(__name__)

Message = dict[str, Any]

DEFAULT_CHAT_TITLE = "New Chat"


@dataclass(frozen=True)
class ModelRecord:
    """A registered model and its stored generation defaults."""

    id: str
    name: str
    user_id: str | None = None
    provider: str | None = None
    provider_id: str | None = None
    params: dict[str, Any] = field(default_factory=dict)
    meta: dict[str, Any] = field(default_factory=dict)
    access_control: dict[str, Any] | None = None


def _utcnow() -> str:
    return datetime.now(timezone.utc).isoformat()


def _loads(value: str | None, default: Any) -> Any:
    if value is None:
        return default
    try:
        return json.loads(value)
    except json.JSONDecodeError:
        return default


def _valid_messages(value: Any) -> list[Message]:
    """Keep only structurally valid messages from a stored document."""

    if not isinstance(value, list):
        return []
    return [
        item
        for item in value
        if isinstance(item, dict)
        and isinstance(item.get("id"), str)
        and isinstance(item.get("role"), str)
        and isinstance(item.get("parts"), list)
    ]


def _row_to_model(row: aiosqlite.Row) -> ModelRecord:
    params = _loads(row["params"], {})
    meta = _loads(row["meta"], {})
    access = _loads(row["access_control"], None)
    return ModelRecord(
        id=row["id"],
        name=row["name"],
        user_id=row["user_id"],
        provider=row["provider"],
        provider_id=row["provider_id"],
        params=params if isinstance(params, dict) else {},
        meta=meta if isinstance(meta, dict) else {},
        access_control=access if isinstance(access, dict) else None,
    )


class ChatRepository:
    """Persist chats and expose the registries the chat pipeline reads."""

    def __init__(self, database_path: Path):
        self._path = database_path
        self._connection: aiosqlite.Connection | None = None

    async def initialize(self) -> None:
        """Open the SQLite connection and ensure tables exist."""

        if self._connection is not None:
            return

        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._connection = await aiosqlite.connect(self._path)
        self._connection.row_factory = aiosqlite.Row
        await self._connection.execute("PRAGMA journal_mode=WAL;")
        await self._create_schema()

    async def _create_schema(self) -> None:
        assert self._connection is not None
        await self._connection.executescript(
            """
            CREATE TABLE IF NOT EXISTS users (
                id TEXT PRIMARY KEY,
                role TEXT NOT NULL DEFAULT 'user'
            );

            CREATE TABLE IF NOT EXISTS group_members (
                group_id TEXT NOT NULL,
                user_id TEXT NOT NULL,
                PRIMARY KEY (group_id, user_id)
            );

            CREATE TABLE IF NOT EXISTS chats (
                id TEXT PRIMARY KEY,
                user_id TEXT NOT NULL,
                title TEXT NOT NULL,
                messages TEXT NOT NULL DEFAULT '[]',
                archived INTEGER NOT NULL DEFAULT 0,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS models (
                id TEXT PRIMARY KEY,
                user_id TEXT,
                name TEXT NOT NULL,
                provider TEXT,
                provider_id TEXT,
                params TEXT,
                meta TEXT,
                access_control TEXT,
                updated_at TEXT
            );

            CREATE TABLE IF NOT EXISTS connections (
                provider TEXT PRIMARY KEY,
                base_url TEXT,
                api_key TEXT,
                version INTEGER NOT NULL DEFAULT 1
            );

            CREATE TABLE IF NOT EXISTS config (
                id INTEGER PRIMARY KEY CHECK (id = 1),
                data TEXT NOT NULL DEFAULT '{}'
            );

            CREATE INDEX IF NOT EXISTS idx_chats_user_id ON chats(user_id);
            CREATE INDEX IF NOT EXISTS idx_models_name ON models(name);
            CREATE INDEX IF NOT EXISTS idx_models_provider_id ON models(provider_id);
            """
        )
        await self._connection.commit()
        await self._ensure_column("models", "provider_id", "TEXT")
        await self._ensure_column("models", "access_control", "TEXT")

    async def _ensure_column(self, table: str, column: str, definition: str) -> None:
        """Ensure a column exists on a table, adding it if necessary."""

        assert self._connection is not None
        cursor = await self._connection.execute(f"PRAGMA table_info({table})")
        rows = await cursor.fetchall()
        await cursor.close()
        if column in {row[1] for row in rows}:
            return
        await self._connection.execute(
            f"ALTER TABLE {table} ADD COLUMN {column} {definition}"
        )
        await self._connection.commit()

    async def close(self) -> None:
        if self._connection is not None:
            await self._connection.close()
            self._connection = None

    async def _fetchone(self, query: str, params: tuple[Any, ...]) -> aiosqlite.Row | None:
        assert self._connection is not None
        cursor = await self._connection.execute(query, params)
        row = await cursor.fetchone()
        await cursor.close()
        return row

    async def _fetchall(self, query: str, params: tuple[Any, ...] = ()) -> list[aiosqlite.Row]:
        assert self._connection is not None
        cursor = await self._connection.execute(query, params)
        rows = await cursor.fetchall()
        await cursor.close()
        return list(rows)

    # ------------------------------------------------------------------
    # Chats
    # ------------------------------------------------------------------
    async def load_chat(self, chat_id: str, user_id: str) -> list[Message] | None:
        """Return the stored messages, or ``None`` when the chat is absent."""

        row = await self._fetchone(
            "SELECT messages FROM chats WHERE id = ? AND user_id = ?",
            (chat_id, user_id),
        )
        if row is None:
            return None
        return _valid_messages(_loads(row["messages"], []))

    async def create_chat(
        self,
        user_id: str,
        seed_message: Message | None = None,
        explicit_id: str | None = None,
        *,
        title: str = DEFAULT_CHAT_TITLE,
    ) -> str:
        """Insert a chat and return its identifier."""

        assert self._connection is not None
        chat_id = explicit_id or str(uuid.uuid4())
        messages = [seed_message] if seed_message is not None else []
        now = _utcnow()
        try:
            await self._connection.execute(
                """
                INSERT INTO chats (id, user_id, title, messages, archived, created_at, updated_at)
                VALUES (?, ?, ?, ?, 0, ?, ?)
                """,
                (chat_id, user_id, title, json.dumps(messages), now, now),
            )
        except aiosqlite.IntegrityError as exc:
            await self._connection.rollback()
            raise ChatAlreadyExists(f"Chat {chat_id} already exists") from exc
        await self._connection.commit()
        logger.debug("Created chat %s for user %s", chat_id, user_id)
        return chat_id

    async def save_chat(
        self, chat_id: str, user_id: str, messages: list[Message]
    ) -> None:
        """Overwrite the chat's full message list."""

        assert self._connection is not None
        cursor = await self._connection.execute(
            "UPDATE chats SET messages = ?, updated_at = ? WHERE id = ? AND user_id = ?",
            (json.dumps(messages, ensure_ascii=False), _utcnow(), chat_id, user_id),
        )
        updated = cursor.rowcount
        await cursor.close()
        await self._connection.commit()
        if updated == 0:
            raise ChatNotFound(f"Chat {chat_id} not found")

    async def chat_exists(self, chat_id: str, user_id: str) -> bool:
        row = await self._fetchone(
            "SELECT 1 FROM chats WHERE id = ? AND user_id = ?", (chat_id, user_id)
        )
        return row is not None

    async def chat_owner(self, chat_id: str) -> str | None:
        """Return the owning user id of a chat regardless of caller."""

        row = await self._fetchone("SELECT user_id FROM chats WHERE id = ?", (chat_id,))
        return None if row is None else row["user_id"]

    async def get_chat(self, chat_id: str, user_id: str) -> dict[str, Any] | None:
        row = await self._fetchone(
            "SELECT * FROM chats WHERE id = ? AND user_id = ?", (chat_id, user_id)
        )
        if row is None:
            return None
        return {
            "id": row["id"],
            "user_id": row["user_id"],
            "title": row["title"],
            "messages": _valid_messages(_loads(row["messages"], [])),
            "archived": bool(row["archived"]),
            "created_at": row["created_at"],
            "updated_at": row["updated_at"],
        }

    # ------------------------------------------------------------------
    # Model registry
    # ------------------------------------------------------------------
    async def upsert_model(self, record: ModelRecord) -> None:
        assert self._connection is not None
        await self._connection.execute(
            """
            INSERT INTO models (id, user_id, name, provider, provider_id, params, meta, access_control, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                user_id = excluded.user_id,
                name = excluded.name,
                provider = excluded.provider,
                provider_id = excluded.provider_id,
                params = excluded.params,
                meta = excluded.meta,
                access_control = excluded.access_control,
                updated_at = excluded.updated_at
            """,
            (
                record.id,
                record.user_id,
                record.name,
                record.provider,
                record.provider_id,
                json.dumps(record.params),
                json.dumps(record.meta),
                None
                if record.access_control is None
                else json.dumps(record.access_control),
                _utcnow(),
            ),
        )
        await self._connection.commit()

    async def find_model_by_id(self, model_id: str) -> ModelRecord | None:
        row = await self._fetchone("SELECT * FROM models WHERE id = ?", (model_id,))
        return None if row is None else _row_to_model(row)

    async def find_model_by_name(self, user_id: str, name: str) -> ModelRecord | None:
        """Return the newest model with this name owned by the user."""

        row = await self._fetchone(
            """
            SELECT * FROM models WHERE name = ? AND user_id = ?
            ORDER BY updated_at DESC
            LIMIT 1
            """,
            (name, user_id),
        )
        return None if row is None else _row_to_model(row)

    async def find_model_by_provider_id(self, provider_id: str) -> ModelRecord | None:
        row = await self._fetchone(
            "SELECT * FROM models WHERE provider_id = ? ORDER BY updated_at DESC LIMIT 1",
            (provider_id,),
        )
        return None if row is None else _row_to_model(row)

    async def find_model_by_ref(self, ref: str) -> ModelRecord | None:
        """Look a model up by identifier first, then by name."""

        record = await self.find_model_by_id(ref)
        if record is not None:
            return record
        row = await self._fetchone(
            "SELECT * FROM models WHERE name = ? ORDER BY updated_at DESC LIMIT 1",
            (ref,),
        )
        return None if row is None else _row_to_model(row)

    # ------------------------------------------------------------------
    # Users and groups
    # ------------------------------------------------------------------
    async def upsert_user(self, user_id: str, role: str = "user") -> None:
        assert self._connection is not None
        await self._connection.execute(
            """
            INSERT INTO users (id, role) VALUES (?, ?)
            ON CONFLICT(id) DO UPDATE SET role = excluded.role
            """,
            (user_id, role),
        )
        await self._connection.commit()

    async def get_user_role(self, user_id: str) -> str | None:
        row = await self._fetchone("SELECT role FROM users WHERE id = ?", (user_id,))
        return None if row is None else row["role"]

    async def add_group_member(self, group_id: str, user_id: str) -> None:
        assert self._connection is not None
        await self._connection.execute(
            "INSERT OR IGNORE INTO group_members (group_id, user_id) VALUES (?, ?)",
            (group_id, user_id),
        )
        await self._connection.commit()

    async def get_user_groups(self, user_id: str) -> set[str]:
        rows = await self._fetchall(
            "SELECT group_id FROM group_members WHERE user_id = ?", (user_id,)
        )
        return {row["group_id"] for row in rows}

    # ------------------------------------------------------------------
    # Provider connections
    # ------------------------------------------------------------------
    async def upsert_connection(
        self, provider: str, base_url: str | None, api_key: str | None
    ) -> None:
        """Store a provider connection and bump the snapshot version."""

        assert self._connection is not None
        await self._connection.execute(
            """
            INSERT INTO connections (provider, base_url, api_key, version)
            VALUES (?, ?, ?, (SELECT COALESCE(MAX(version), 0) + 1 FROM connections))
            ON CONFLICT(provider) DO UPDATE SET
                base_url = excluded.base_url,
                api_key = excluded.api_key,
                version = excluded.version
            """,
            (provider, base_url, api_key),
        )
        await self._connection.commit()

    async def load_connections(self) -> ProviderConnections:
        rows = await self._fetchall(
            "SELECT provider, base_url, api_key, version FROM connections"
        )
        version = max((row["version"] for row in rows), default=0)
        return ProviderConnections(
            version=version,
            connections={
                row["provider"]: ProviderConnection(
                    provider=row["provider"],
                    base_url=row["base_url"],
                    api_key=row["api_key"],
                )
                for row in rows
            },
        )

    # ------------------------------------------------------------------
    # Admin configuration document
    # ------------------------------------------------------------------
    async def get_config(self) -> dict[str, Any]:
        row = await self._fetchone("SELECT data FROM config WHERE id = 1", ())
        if row is None:
            return {}
        data = _loads(row["data"], {})
        return data if isinstance(data, dict) else {}

    async def set_config(self, data: dict[str, Any]) -> None:
        assert self._connection is not None
        await self._connection.execute(
            """
            INSERT INTO config (id, data) VALUES (1, ?)
            ON CONFLICT(id) DO UPDATE SET data = excluded.data
            """,
            (json.dumps(data),),
        )
        await self._connection.commit()


__all__ = ["ChatRepository", "DEFAULT_CHAT_TITLE", "Message", "ModelRecord"]
