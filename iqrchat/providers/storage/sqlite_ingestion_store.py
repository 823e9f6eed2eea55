"""SQLite-backed ingestion store.

Persists products, extracted texts, chunks and the processing log to a
local SQLite database at ``data/ingestion.db``.  Uses ``aiosqlite`` for
async I/O.  Embeddings are stored as JSON arrays; the chunk table's
``UNIQUE(product_id, content_hash)`` constraint backs the upsert.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import aiosqlite
import structlog

from iqrchat.interfaces.ingestion_store import IIngestionStore
from iqrchat.models.chunk import Chunk
from iqrchat.models.product import ExtractedText, ProcessingLogEntry, Product

logger = structlog.get_logger(logger_name=__name__)

_DEFAULT_DB_PATH = Path("data/ingestion.db")

_CREATE_TABLES_SQL = [
    """\
CREATE TABLE IF NOT EXISTS products (
    id              TEXT    PRIMARY KEY,
    business_id     TEXT    NOT NULL,
    name            TEXT    NOT NULL,
    description     TEXT,
    system_prompt   TEXT,
    status          TEXT    NOT NULL,
    source_locator  TEXT,
    metadata        TEXT    NOT NULL DEFAULT '{}',
    is_disabled     INTEGER NOT NULL DEFAULT 0,
    created_at      TEXT    NOT NULL,
    updated_at      TEXT    NOT NULL
);
""",
    """\
CREATE TABLE IF NOT EXISTS extracted_texts (
    id                  INTEGER PRIMARY KEY AUTOINCREMENT,
    product_id          TEXT    NOT NULL,
    raw_text            TEXT    NOT NULL,
    source_locator      TEXT    NOT NULL,
    extraction_method   TEXT    NOT NULL,
    page_count          INTEGER NOT NULL,
    metadata            TEXT    NOT NULL DEFAULT '{}',
    created_at          TEXT    NOT NULL
);
""",
    """\
CREATE TABLE IF NOT EXISTS chunks (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    product_id      TEXT    NOT NULL,
    content         TEXT    NOT NULL,
    content_hash    TEXT    NOT NULL,
    token_start     INTEGER NOT NULL,
    token_end       INTEGER NOT NULL,
    char_start      INTEGER NOT NULL,
    char_end        INTEGER NOT NULL,
    chunk_index     INTEGER NOT NULL,
    total_chunks    INTEGER NOT NULL,
    embedding       TEXT,
    metadata        TEXT    NOT NULL DEFAULT '{}',
    UNIQUE(product_id, content_hash)
);
""",
    """\
CREATE TABLE IF NOT EXISTS processing_logs (
    id          INTEGER PRIMARY KEY AUTOINCREMENT,
    product_id  TEXT    NOT NULL,
    action      TEXT    NOT NULL,
    details     TEXT    NOT NULL DEFAULT '{}',
    timestamp   TEXT    NOT NULL
);
""",
]

_CREATE_INDICES_SQL = [
    "CREATE INDEX IF NOT EXISTS idx_texts_product ON extracted_texts(product_id, id);",
    "CREATE INDEX IF NOT EXISTS idx_chunks_product ON chunks(product_id, chunk_index);",
    "CREATE INDEX IF NOT EXISTS idx_logs_product ON processing_logs(product_id, id);",
]

_INSERT_PRODUCT_SQL = """\
INSERT INTO products (id, business_id, name, description, system_prompt, status,
                      source_locator, metadata, is_disabled, created_at, updated_at)
VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
ON CONFLICT(id) DO NOTHING;
"""

_UPDATE_PRODUCT_SQL = """\
UPDATE products
SET business_id = ?, name = ?, description = ?, system_prompt = ?, status = ?,
    source_locator = ?, metadata = ?, is_disabled = ?, updated_at = ?
WHERE id = ?;
"""

# The embedding column is deliberately absent from the update list: a
# re-chunk must never clear a stored vector.
_UPSERT_CHUNK_SQL = """\
INSERT INTO chunks (product_id, content, content_hash, token_start, token_end,
                    char_start, char_end, chunk_index, total_chunks, metadata)
VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
ON CONFLICT(product_id, content_hash)
DO UPDATE SET token_start  = excluded.token_start,
              token_end    = excluded.token_end,
              char_start   = excluded.char_start,
              char_end     = excluded.char_end,
              chunk_index  = excluded.chunk_index,
              total_chunks = excluded.total_chunks,
              metadata     = excluded.metadata;
"""

_CHUNK_COLUMNS = (
    "id, product_id, content, content_hash, token_start, token_end, "
    "char_start, char_end, chunk_index, total_chunks, embedding, metadata"
)


def _now() -> str:
    return datetime.now(tz=timezone.utc).isoformat()  # noqa: UP017


def _product_from_row(row: aiosqlite.Row) -> Product:
    data = dict(row)
    data["metadata"] = json.loads(data["metadata"] or "{}")
    data["is_disabled"] = bool(data["is_disabled"])
    return Product(**data)


def _chunk_from_row(row: aiosqlite.Row) -> Chunk:
    data = dict(row)
    data["metadata"] = json.loads(data["metadata"] or "{}")
    data["embedding"] = json.loads(data["embedding"]) if data["embedding"] else None
    return Chunk(**data)


class SQLiteIngestionStore(IIngestionStore):
    """SQLite-backed persistence for the ingestion pipeline."""

    def __init__(self, db_path: str | Path = _DEFAULT_DB_PATH) -> None:
        self._db_path = Path(db_path)

    async def initialize(self) -> None:
        """Create the tables and indices if they don't exist."""
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        async with aiosqlite.connect(str(self._db_path)) as db:
            for table_sql in _CREATE_TABLES_SQL:
                await db.execute(table_sql)
            for idx_sql in _CREATE_INDICES_SQL:
                await db.execute(idx_sql)
            await db.commit()
        logger.info("ingestion_db_initialized", path=str(self._db_path))

    # -- Products ------------------------------------------------------

    async def create_product(self, product: Product) -> Product:
        async with aiosqlite.connect(str(self._db_path)) as db:
            await db.execute(
                _INSERT_PRODUCT_SQL,
                (
                    product.id,
                    product.business_id,
                    product.name,
                    product.description,
                    product.system_prompt,
                    product.status.value,
                    product.source_locator,
                    json.dumps(product.metadata),
                    int(product.is_disabled),
                    product.created_at.isoformat(),
                    product.updated_at.isoformat(),
                ),
            )
            await db.commit()
        stored = await self.get_product(product.id)
        return stored or product

    async def get_product(self, product_id: str) -> Product | None:
        async with aiosqlite.connect(str(self._db_path)) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute("SELECT * FROM products WHERE id = ?", (product_id,))
            row = await cursor.fetchone()
        return _product_from_row(row) if row else None

    async def save_product(self, product: Product) -> Product:
        updated_at = _now()
        async with aiosqlite.connect(str(self._db_path)) as db:
            cursor = await db.execute(
                _UPDATE_PRODUCT_SQL,
                (
                    product.business_id,
                    product.name,
                    product.description,
                    product.system_prompt,
                    product.status.value,
                    product.source_locator,
                    json.dumps(product.metadata),
                    int(product.is_disabled),
                    updated_at,
                    product.id,
                ),
            )
            await db.commit()
            if cursor.rowcount == 0:
                # Unknown id: fall through to an insert.
                return await self.create_product(product)
        return product.model_copy(update={"updated_at": datetime.fromisoformat(updated_at)})

    # -- Extracted text ------------------------------------------------

    async def add_extracted_text(self, text: ExtractedText) -> ExtractedText:
        async with aiosqlite.connect(str(self._db_path)) as db:
            cursor = await db.execute(
                "INSERT INTO extracted_texts (product_id, raw_text, source_locator, "
                "extraction_method, page_count, metadata, created_at) "
                "VALUES (?, ?, ?, ?, ?, ?, ?)",
                (
                    text.product_id,
                    text.raw_text,
                    text.source_locator,
                    text.extraction_method,
                    text.page_count,
                    json.dumps(text.metadata),
                    text.created_at.isoformat(),
                ),
            )
            await db.commit()
            row_id = cursor.lastrowid
        return text.model_copy(update={"id": row_id})

    async def latest_extracted_text(self, product_id: str) -> ExtractedText | None:
        async with aiosqlite.connect(str(self._db_path)) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(
                "SELECT * FROM extracted_texts WHERE product_id = ? ORDER BY id DESC LIMIT 1",
                (product_id,),
            )
            row = await cursor.fetchone()
        if row is None:
            return None
        data = dict(row)
        data["metadata"] = json.loads(data["metadata"] or "{}")
        return ExtractedText(**data)

    # -- Chunks --------------------------------------------------------

    async def upsert_chunks(self, chunks: list[Chunk]) -> list[Chunk]:
        if not chunks:
            return []
        product_ids = {chunk.product_id for chunk in chunks}
        async with aiosqlite.connect(str(self._db_path)) as db:
            await db.executemany(
                _UPSERT_CHUNK_SQL,
                [
                    (
                        chunk.product_id,
                        chunk.content,
                        chunk.content_hash,
                        chunk.token_start,
                        chunk.token_end,
                        chunk.char_start,
                        chunk.char_end,
                        chunk.chunk_index,
                        chunk.total_chunks,
                        json.dumps(chunk.metadata),
                    )
                    for chunk in chunks
                ],
            )
            await db.commit()
        logger.debug("chunks_upserted", count=len(chunks), products=sorted(product_ids))

        stored: list[Chunk] = []
        for product_id in sorted(product_ids):
            stored.extend(await self.list_chunks(product_id))
        wanted = {(c.product_id, c.content_hash) for c in chunks}
        return [c for c in stored if (c.product_id, c.content_hash) in wanted]

    async def prune_chunks(self, product_id: str, keep_hashes: set[str]) -> int:
        async with aiosqlite.connect(str(self._db_path)) as db:
            cursor = await db.execute(
                "SELECT id, content_hash FROM chunks WHERE product_id = ?",
                (product_id,),
            )
            rows = await cursor.fetchall()
            stale_ids = [(row[0],) for row in rows if row[1] not in keep_hashes]
            if stale_ids:
                await db.executemany("DELETE FROM chunks WHERE id = ?", stale_ids)
                await db.commit()
        if stale_ids:
            logger.info("stale_chunks_pruned", product_id=product_id, count=len(stale_ids))
        return len(stale_ids)

    async def list_chunks(
        self,
        product_id: str,
        missing_embedding_only: bool = False,
    ) -> list[Chunk]:
        sql = f"SELECT {_CHUNK_COLUMNS} FROM chunks WHERE product_id = ?"
        if missing_embedding_only:
            sql += " AND embedding IS NULL"
        sql += " ORDER BY chunk_index, id"
        async with aiosqlite.connect(str(self._db_path)) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(sql, (product_id,))
            rows = await cursor.fetchall()
        return [_chunk_from_row(r) for r in rows]

    async def set_chunk_embedding(self, chunk_id: int, embedding: list[float]) -> None:
        async with aiosqlite.connect(str(self._db_path)) as db:
            await db.execute(
                "UPDATE chunks SET embedding = ? WHERE id = ?",
                (json.dumps(embedding), chunk_id),
            )
            await db.commit()

    async def count_chunks(self, product_id: str, embedded_only: bool = False) -> int:
        sql = "SELECT COUNT(*) FROM chunks WHERE product_id = ?"
        if embedded_only:
            sql += " AND embedding IS NOT NULL"
        async with aiosqlite.connect(str(self._db_path)) as db:
            cursor = await db.execute(sql, (product_id,))
            row = await cursor.fetchone()
        return int(row[0]) if row else 0

    # -- Processing log ------------------------------------------------

    async def append_log(self, entry: ProcessingLogEntry) -> ProcessingLogEntry:
        async with aiosqlite.connect(str(self._db_path)) as db:
            cursor = await db.execute(
                "INSERT INTO processing_logs (product_id, action, details, timestamp) "
                "VALUES (?, ?, ?, ?)",
                (
                    entry.product_id,
                    entry.action,
                    json.dumps(entry.details, default=str),
                    entry.timestamp.isoformat(),
                ),
            )
            await db.commit()
            row_id = cursor.lastrowid
        return entry.model_copy(update={"id": row_id})

    async def list_logs(self, product_id: str) -> list[ProcessingLogEntry]:
        async with aiosqlite.connect(str(self._db_path)) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(
                "SELECT * FROM processing_logs WHERE product_id = ? ORDER BY id",
                (product_id,),
            )
            rows = await cursor.fetchall()
        entries: list[ProcessingLogEntry] = []
        for row in rows:
            data: dict[str, Any] = dict(row)
            data["details"] = json.loads(data["details"] or "{}")
            entries.append(ProcessingLogEntry(**data))
        return entries

    def get_provider_name(self) -> str:
        return "sqlite_ingestion"
