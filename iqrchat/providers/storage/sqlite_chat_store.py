"""SQLite-backed chat store.

Persists users, personas and chat messages to a local SQLite database at
``data/chat.db``.  Uses ``aiosqlite`` for async I/O.  The persona table is
seeded on first start so a fresh install has a default persona to assign
to new users.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import aiosqlite
import structlog

from iqrchat.interfaces.chat_store import IConversationStore, IProfileStore
from iqrchat.models.chat import PROFILE_FIELDS, ConversationMessage, Persona, UserProfile
from iqrchat.utils.errors import ConfigurationError

logger = structlog.get_logger(logger_name=__name__)

_DEFAULT_DB_PATH = Path("data/chat.db")

DEFAULT_PERSONA_ID = "00000000-0000-0000-0000-000000000001"

_CREATE_TABLES_SQL = [
    """\
CREATE TABLE IF NOT EXISTS personas (
    id          TEXT    PRIMARY KEY,
    name        TEXT    NOT NULL UNIQUE,
    short_desc  TEXT,
    prompt      TEXT
);
""",
    """\
CREATE TABLE IF NOT EXISTS users (
    id          TEXT    PRIMARY KEY,
    persona_id  TEXT    REFERENCES personas(id),
    name        TEXT,
    age         INTEGER,
    occupation  TEXT,
    hobby       TEXT,
    is_deleted  INTEGER NOT NULL DEFAULT 0,
    created_at  TEXT    NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ', 'now')),
    updated_at  TEXT    NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ', 'now'))
);
""",
    """\
CREATE TABLE IF NOT EXISTS chat_messages (
    id          INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id     TEXT    NOT NULL,
    role        TEXT    NOT NULL,
    content     TEXT    NOT NULL,
    tool_name   TEXT,
    created_at  TEXT    NOT NULL
);
""",
]

_CREATE_INDICES_SQL = [
    "CREATE INDEX IF NOT EXISTS idx_messages_user ON chat_messages(user_id, id);",
]

_SEED_PERSONAS: list[tuple[str, str, str, str | None]] = [
    (
        DEFAULT_PERSONA_ID,
        "Default Assistant",
        "A friendly general-purpose assistant",
        None,
    ),
    (
        "00000000-0000-0000-0000-000000000002",
        "Doctor",
        "Explains health topics in plain language",
        "You are a caring doctor. Explain health topics clearly and always "
        "recommend seeing a professional for a diagnosis.",
    ),
    (
        "00000000-0000-0000-0000-000000000003",
        "Chef",
        "Recipes, techniques and kitchen advice",
        "You are an enthusiastic chef who loves sharing recipes and cooking tips.",
    ),
    (
        "00000000-0000-0000-0000-000000000004",
        "Travel Guide",
        "Destinations, itineraries and local tips",
        "You are a well-travelled guide who suggests destinations and practical tips.",
    ),
    (
        "00000000-0000-0000-0000-000000000005",
        "Tutor",
        "Patient explanations of any subject",
        "You are a patient tutor who explains concepts step by step.",
    ),
]

_SEED_PERSONAS_SQL = """\
INSERT INTO personas (id, name, short_desc, prompt)
VALUES (?, ?, ?, ?)
ON CONFLICT(id) DO NOTHING;
"""

_UPSERT_USER_SQL = """\
INSERT INTO users (id, persona_id, is_deleted)
VALUES (?, ?, 0)
ON CONFLICT(id)
DO UPDATE SET persona_id = excluded.persona_id,
              name       = NULL,
              age        = NULL,
              occupation = NULL,
              hobby      = NULL,
              is_deleted = 0,
              updated_at = strftime('%Y-%m-%dT%H:%M:%fZ', 'now');
"""

_USER_COLUMNS = "id, persona_id, name, age, occupation, hobby, is_deleted"
_USER_WRITABLE = (*PROFILE_FIELDS, "persona_id")


def _user_from_row(row: aiosqlite.Row) -> UserProfile:
    data = dict(row)
    data["is_deleted"] = bool(data["is_deleted"])
    return UserProfile(**data)


class SQLiteChatStore(IConversationStore, IProfileStore):
    """SQLite-backed persistence for chat history, users and personas."""

    def __init__(self, db_path: str | Path = _DEFAULT_DB_PATH) -> None:
        self._db_path = Path(db_path)

    async def initialize(self) -> None:
        """Create the tables and indices and seed the persona catalogue."""
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        async with aiosqlite.connect(str(self._db_path)) as db:
            for table_sql in _CREATE_TABLES_SQL:
                await db.execute(table_sql)
            for idx_sql in _CREATE_INDICES_SQL:
                await db.execute(idx_sql)
            await db.executemany(_SEED_PERSONAS_SQL, _SEED_PERSONAS)
            await db.commit()
        logger.info("chat_db_initialized", path=str(self._db_path))

    # ------------------------------------------------------------------
    # IConversationStore
    # ------------------------------------------------------------------

    async def add_message(self, message: ConversationMessage) -> ConversationMessage:
        async with aiosqlite.connect(str(self._db_path)) as db:
            cursor = await db.execute(
                "INSERT INTO chat_messages (user_id, role, content, tool_name, created_at) "
                "VALUES (?, ?, ?, ?, ?)",
                (
                    message.user_id,
                    message.role.value,
                    message.content,
                    message.tool_name,
                    message.created_at.isoformat(),
                ),
            )
            await db.commit()
            row_id = cursor.lastrowid
        return message.model_copy(update={"id": row_id})

    async def recent_messages(self, user_id: str, limit: int = 20) -> list[ConversationMessage]:
        async with aiosqlite.connect(str(self._db_path)) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(
                "SELECT id, user_id, role, content, tool_name, created_at "
                "FROM chat_messages WHERE user_id = ? ORDER BY id DESC LIMIT ?",
                (user_id, limit),
            )
            rows = await cursor.fetchall()
        return [ConversationMessage(**dict(r)) for r in reversed(rows)]

    async def delete_messages(self, user_id: str) -> int:
        async with aiosqlite.connect(str(self._db_path)) as db:
            cursor = await db.execute("DELETE FROM chat_messages WHERE user_id = ?", (user_id,))
            await db.commit()
            deleted = cursor.rowcount
        logger.info("chat_history_deleted", user_id=user_id, count=deleted)
        return deleted

    # ------------------------------------------------------------------
    # IProfileStore
    # ------------------------------------------------------------------

    async def get_user(self, user_id: str) -> UserProfile | None:
        async with aiosqlite.connect(str(self._db_path)) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(
                f"SELECT {_USER_COLUMNS} FROM users WHERE id = ?",
                (user_id,),
            )
            row = await cursor.fetchone()
        return _user_from_row(row) if row else None

    async def create_user(self, user_id: str, persona_id: str) -> UserProfile:
        async with aiosqlite.connect(str(self._db_path)) as db:
            await db.execute(_UPSERT_USER_SQL, (user_id, persona_id))
            await db.commit()
        logger.info("chat_user_created", user_id=user_id, persona_id=persona_id)
        return UserProfile(id=user_id, persona_id=persona_id)

    async def update_user(self, user_id: str, fields: dict[str, Any]) -> UserProfile:
        writable = {k: v for k, v in fields.items() if k in _USER_WRITABLE}
        if writable:
            assignments = ", ".join(f"{column} = ?" for column in writable)
            async with aiosqlite.connect(str(self._db_path)) as db:
                await db.execute(
                    f"UPDATE users SET {assignments}, "
                    "updated_at = strftime('%Y-%m-%dT%H:%M:%fZ', 'now') WHERE id = ?",
                    (*writable.values(), user_id),
                )
                await db.commit()
        user = await self.get_user(user_id)
        if user is None:
            # update_user is only reached for users the orchestrator created.
            return UserProfile(id=user_id, **writable)
        return user

    async def soft_delete_user(self, user_id: str) -> None:
        async with aiosqlite.connect(str(self._db_path)) as db:
            await db.execute(
                "UPDATE users SET name = NULL, age = NULL, occupation = NULL, hobby = NULL, "
                "is_deleted = 1, updated_at = strftime('%Y-%m-%dT%H:%M:%fZ', 'now') "
                "WHERE id = ?",
                (user_id,),
            )
            await db.commit()
        logger.info("chat_user_soft_deleted", user_id=user_id)

    async def list_personas(self) -> list[Persona]:
        async with aiosqlite.connect(str(self._db_path)) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(
                "SELECT id, name, short_desc, prompt FROM personas ORDER BY name"
            )
            rows = await cursor.fetchall()
        return [Persona(**dict(r)) for r in rows]

    async def get_persona(self, persona_id: str) -> Persona | None:
        async with aiosqlite.connect(str(self._db_path)) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(
                "SELECT id, name, short_desc, prompt FROM personas WHERE id = ?",
                (persona_id,),
            )
            row = await cursor.fetchone()
        return Persona(**dict(row)) if row else None

    async def default_persona(self) -> Persona:
        persona = await self.get_persona(DEFAULT_PERSONA_ID)
        if persona is None:
            raise ConfigurationError(
                "Default persona is missing from the persona table",
                provider_name=self.get_provider_name(),
            )
        return persona

    def get_provider_name(self) -> str:
        return "sqlite_chat"
