"""aiosqlite-backed persistence for ingestion state and chat history."""

from iqrchat.providers.storage.sqlite_chat_store import DEFAULT_PERSONA_ID, SQLiteChatStore
from iqrchat.providers.storage.sqlite_ingestion_store import SQLiteIngestionStore

__all__ = ["DEFAULT_PERSONA_ID", "SQLiteChatStore", "SQLiteIngestionStore"]
