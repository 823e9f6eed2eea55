"""Unit tests for the SQLite ingestion and chat stores."""

from __future__ import annotations

import pytest

from iqrchat.models.chat import ConversationMessage, MessageRole
from iqrchat.models.chunk import Chunk, ChunkRecord
from iqrchat.models.product import (
    ExtractedText,
    IngestionStatus,
    ProcessingLogEntry,
    Product,
)
from iqrchat.providers.storage.sqlite_chat_store import DEFAULT_PERSONA_ID, SQLiteChatStore
from iqrchat.providers.storage.sqlite_ingestion_store import SQLiteIngestionStore

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _chunk(content: str, index: int, product_id: str = "p1") -> Chunk:
    record = ChunkRecord(
        content=content,
        token_start=index * 10,
        token_end=index * 10 + 10,
        char_start=index * 50,
        char_end=index * 50 + len(content),
    )
    return Chunk.from_record(record, product_id, index, 3)


# ======================================================================
# SQLiteIngestionStore
# ======================================================================


class TestProducts:
    @pytest.mark.asyncio
    async def test_create_and_get(self, ingestion_store: SQLiteIngestionStore) -> None:
        created = await ingestion_store.create_product(
            Product(id="p1", business_id="b1", name="Kettle", metadata={"a": 1})
        )

        fetched = await ingestion_store.get_product("p1")
        assert fetched is not None
        assert fetched.name == "Kettle"
        assert fetched.metadata == {"a": 1}
        assert created.status is IngestionStatus.PENDING_UPLOAD

    @pytest.mark.asyncio
    async def test_get_unknown(self, ingestion_store: SQLiteIngestionStore) -> None:
        assert await ingestion_store.get_product("missing") is None

    @pytest.mark.asyncio
    async def test_save_updates_row(self, ingestion_store: SQLiteIngestionStore) -> None:
        product = await ingestion_store.create_product(
            Product(id="p1", business_id="b1", name="Kettle")
        )
        await ingestion_store.save_product(
            product.model_copy(update={"status": IngestionStatus.UPLOADED, "source_locator": "pdfs/k"})
        )

        fetched = await ingestion_store.get_product("p1")
        assert fetched is not None
        assert fetched.status is IngestionStatus.UPLOADED
        assert fetched.source_locator == "pdfs/k"


class TestExtractedText:
    @pytest.mark.asyncio
    async def test_latest_wins(self, ingestion_store: SQLiteIngestionStore) -> None:
        for body in ("first", "second"):
            await ingestion_store.add_extracted_text(
                ExtractedText(
                    product_id="p1",
                    raw_text=body,
                    source_locator="pdfs/k",
                    extraction_method="pymupdf",
                    page_count=1,
                    metadata={"page_offsets": [0]},
                )
            )

        latest = await ingestion_store.latest_extracted_text("p1")
        assert latest is not None
        assert latest.raw_text == "second"
        assert latest.page_offsets == [0]

    @pytest.mark.asyncio
    async def test_none_when_missing(self, ingestion_store: SQLiteIngestionStore) -> None:
        assert await ingestion_store.latest_extracted_text("p1") is None


class TestChunks:
    @pytest.mark.asyncio
    async def test_upsert_and_list_in_order(self, ingestion_store: SQLiteIngestionStore) -> None:
        stored = await ingestion_store.upsert_chunks([_chunk("bbb", 1), _chunk("aaa", 0)])

        assert [c.chunk_index for c in stored] == [0, 1]
        assert all(c.id is not None for c in stored)
        assert await ingestion_store.count_chunks("p1") == 2

    @pytest.mark.asyncio
    async def test_upsert_keeps_existing_embedding(
        self, ingestion_store: SQLiteIngestionStore
    ) -> None:
        [first] = await ingestion_store.upsert_chunks([_chunk("aaa", 0)])
        await ingestion_store.set_chunk_embedding(first.id, [0.1, 0.2])

        [again] = await ingestion_store.upsert_chunks([_chunk("aaa", 4)])

        assert again.id == first.id
        assert again.chunk_index == 4
        assert again.embedding == [0.1, 0.2]

    @pytest.mark.asyncio
    async def test_prune_removes_unlisted_hashes(
        self, ingestion_store: SQLiteIngestionStore
    ) -> None:
        chunks = [_chunk("aaa", 0), _chunk("bbb", 1), _chunk("ccc", 2)]
        await ingestion_store.upsert_chunks(chunks)

        pruned = await ingestion_store.prune_chunks("p1", {chunks[0].content_hash})

        assert pruned == 2
        remaining = await ingestion_store.list_chunks("p1")
        assert [c.content for c in remaining] == ["aaa"]

    @pytest.mark.asyncio
    async def test_missing_embedding_filter(self, ingestion_store: SQLiteIngestionStore) -> None:
        stored = await ingestion_store.upsert_chunks([_chunk("aaa", 0), _chunk("bbb", 1)])
        await ingestion_store.set_chunk_embedding(stored[0].id, [1.0])

        missing = await ingestion_store.list_chunks("p1", missing_embedding_only=True)

        assert [c.content for c in missing] == ["bbb"]
        assert await ingestion_store.count_chunks("p1", embedded_only=True) == 1

    @pytest.mark.asyncio
    async def test_products_are_isolated(self, ingestion_store: SQLiteIngestionStore) -> None:
        await ingestion_store.upsert_chunks([_chunk("aaa", 0, "p1"), _chunk("aaa", 0, "p2")])

        assert await ingestion_store.count_chunks("p1") == 1
        assert await ingestion_store.count_chunks("p2") == 1


class TestProcessingLog:
    @pytest.mark.asyncio
    async def test_append_and_list(self, ingestion_store: SQLiteIngestionStore) -> None:
        await ingestion_store.append_log(
            ProcessingLogEntry(product_id="p1", action="document_uploaded", details={"size": 3})
        )
        await ingestion_store.append_log(ProcessingLogEntry(product_id="p1", action="text_extracted"))

        logs = await ingestion_store.list_logs("p1")

        assert [entry.action for entry in logs] == ["document_uploaded", "text_extracted"]
        assert logs[0].details == {"size": 3}
        assert logs[0].id is not None


# ======================================================================
# SQLiteChatStore
# ======================================================================


class TestPersonas:
    @pytest.mark.asyncio
    async def test_seeded_and_ordered_by_name(self, chat_store: SQLiteChatStore) -> None:
        names = [p.name for p in await chat_store.list_personas()]
        assert names == ["Chef", "Default Assistant", "Doctor", "Travel Guide", "Tutor"]

    @pytest.mark.asyncio
    async def test_default_persona(self, chat_store: SQLiteChatStore) -> None:
        persona = await chat_store.default_persona()
        assert persona.id == DEFAULT_PERSONA_ID
        assert persona.name == "Default Assistant"

    @pytest.mark.asyncio
    async def test_initialize_is_idempotent(self, chat_store: SQLiteChatStore) -> None:
        await chat_store.initialize()
        assert len(await chat_store.list_personas()) == 5


class TestUsers:
    @pytest.mark.asyncio
    async def test_create_and_update(self, chat_store: SQLiteChatStore) -> None:
        await chat_store.create_user("u1", DEFAULT_PERSONA_ID)

        user = await chat_store.update_user("u1", {"name": "Sam", "age": 30, "bogus": "x"})

        assert user.name == "Sam"
        assert user.age == 30
        assert user.persona_id == DEFAULT_PERSONA_ID

    @pytest.mark.asyncio
    async def test_soft_delete_clears_profile(self, chat_store: SQLiteChatStore) -> None:
        await chat_store.create_user("u1", DEFAULT_PERSONA_ID)
        await chat_store.update_user("u1", {"name": "Sam", "hobby": "chess"})

        await chat_store.soft_delete_user("u1")

        user = await chat_store.get_user("u1")
        assert user is not None
        assert user.is_deleted
        assert user.name is None
        assert user.hobby is None

    @pytest.mark.asyncio
    async def test_create_resets_deleted_user(self, chat_store: SQLiteChatStore) -> None:
        await chat_store.create_user("u1", DEFAULT_PERSONA_ID)
        await chat_store.soft_delete_user("u1")

        await chat_store.create_user("u1", DEFAULT_PERSONA_ID)

        user = await chat_store.get_user("u1")
        assert user is not None
        assert not user.is_deleted

    @pytest.mark.asyncio
    async def test_unknown_user(self, chat_store: SQLiteChatStore) -> None:
        assert await chat_store.get_user("nobody") is None


class TestMessages:
    @pytest.mark.asyncio
    async def test_recent_messages_oldest_first_with_limit(
        self, chat_store: SQLiteChatStore
    ) -> None:
        for i in range(5):
            await chat_store.add_message(
                ConversationMessage(user_id="u1", role=MessageRole.USER, content=f"m{i}")
            )

        recent = await chat_store.recent_messages("u1", limit=3)

        assert [m.content for m in recent] == ["m2", "m3", "m4"]

    @pytest.mark.asyncio
    async def test_tool_name_round_trips(self, chat_store: SQLiteChatStore) -> None:
        await chat_store.add_message(
            ConversationMessage(
                user_id="u1", role=MessageRole.TOOL, content="{}", tool_name="get_personas"
            )
        )

        [message] = await chat_store.recent_messages("u1")

        assert message.role is MessageRole.TOOL
        assert message.tool_name == "get_personas"

    @pytest.mark.asyncio
    async def test_delete_messages(self, chat_store: SQLiteChatStore) -> None:
        await chat_store.add_message(
            ConversationMessage(user_id="u1", role=MessageRole.USER, content="hi")
        )
        await chat_store.add_message(
            ConversationMessage(user_id="u2", role=MessageRole.USER, content="hi")
        )

        assert await chat_store.delete_messages("u1") == 1
        assert await chat_store.recent_messages("u1") == []
        assert len(await chat_store.recent_messages("u2")) == 1


@pytest.mark.parametrize("limit", [1, 20])
@pytest.mark.asyncio
async def test_recent_messages_empty(chat_store: SQLiteChatStore, limit: int) -> None:
    assert await chat_store.recent_messages("nobody", limit=limit) == []
