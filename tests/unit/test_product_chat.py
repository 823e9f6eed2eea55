"""Unit tests for ProductChatService -- chunk retrieval and product-scoped replies."""

from __future__ import annotations

import numpy as np
import pytest

from iqrchat.interfaces.embedding_provider import IEmbeddingProvider
from iqrchat.models.chat import ChatTurn, MessageRole
from iqrchat.models.chunk import Chunk, ChunkRecord
from iqrchat.models.product import Product
from iqrchat.providers.storage.sqlite_chat_store import SQLiteChatStore
from iqrchat.providers.storage.sqlite_ingestion_store import SQLiteIngestionStore
from iqrchat.services.chat.orchestrator import ChatOrchestrator
from iqrchat.services.chat.product_chat import ProductChatService, cosine_scores
from iqrchat.utils.errors import EmbeddingError, PipelineError
from tests.conftest import ScriptedChatProvider, text_stream

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class _FixedEmbedder(IEmbeddingProvider):
    """Returns one fixed query vector, or raises when ``vector`` is None."""

    def __init__(self, vector: list[float] | None) -> None:
        self.vector = vector

    async def embed(self, texts: list[str]) -> list[list[float]]:
        return [await self.embed_single(t) for t in texts]

    async def embed_single(self, text: str) -> list[float]:
        if self.vector is None:
            raise EmbeddingError("offline", provider_name="fixed")
        return self.vector

    def get_dimension(self) -> int:
        return 2

    def get_provider_name(self) -> str:
        return "fixed"

    def is_available(self) -> bool:
        return True


async def _seed(store: SQLiteIngestionStore, vectors: list[list[float] | None]) -> list[Chunk]:
    await store.create_product(
        Product(id="p1", business_id="b1", name="Kettle", description="1.7L kettle")
    )
    chunks = [
        Chunk.from_record(
            ChunkRecord(
                content=f"excerpt {i}",
                token_start=i * 10,
                token_end=i * 10 + 10,
                char_start=i * 20,
                char_end=i * 20 + 9,
            ),
            "p1",
            i,
            len(vectors),
        )
        for i in range(len(vectors))
    ]
    stored = await store.upsert_chunks(chunks)
    for chunk, vector in zip(stored, vectors):
        if vector is not None:
            await store.set_chunk_embedding(chunk.id, vector)
    return await store.list_chunks("p1")


def _service(
    store: SQLiteIngestionStore,
    embedder: IEmbeddingProvider,
    orchestrator: ChatOrchestrator | None = None,
    match_count: int = 5,
) -> ProductChatService:
    return ProductChatService(
        orchestrator=orchestrator,  # type: ignore[arg-type]
        store=store,
        embedder=embedder,
        match_threshold=0.7,
        match_count=match_count,
    )


# ---------------------------------------------------------------------------
# cosine_scores
# ---------------------------------------------------------------------------


class TestCosineScores:
    def test_scores(self) -> None:
        scores = cosine_scores([1.0, 0.0], [[1.0, 0.0], [0.0, 1.0], [-2.0, 0.0]])
        assert np.allclose(scores, [1.0, 0.0, -1.0])

    def test_zero_norm_row_scores_zero(self) -> None:
        scores = cosine_scores([1.0, 0.0], [[0.0, 0.0]])
        assert scores.tolist() == [0.0]


# ---------------------------------------------------------------------------
# relevant_chunks
# ---------------------------------------------------------------------------


class TestRelevantChunks:
    @pytest.mark.asyncio
    async def test_ranked_above_threshold(self, ingestion_store: SQLiteIngestionStore) -> None:
        await _seed(ingestion_store, [[0.0, 1.0], [1.0, 0.0], [0.9, 0.1]])
        service = _service(ingestion_store, _FixedEmbedder([1.0, 0.0]))

        chunks = await service.relevant_chunks("p1", "how do I descale?")

        assert [c.content for c in chunks] == ["excerpt 1", "excerpt 2"]

    @pytest.mark.asyncio
    async def test_match_count_limits(self, ingestion_store: SQLiteIngestionStore) -> None:
        await _seed(ingestion_store, [[1.0, 0.0], [1.0, 0.1], [1.0, 0.2]])
        service = _service(ingestion_store, _FixedEmbedder([1.0, 0.0]), match_count=2)

        chunks = await service.relevant_chunks("p1", "question")

        assert [c.content for c in chunks] == ["excerpt 0", "excerpt 1"]

    @pytest.mark.asyncio
    async def test_no_match_falls_back_to_document_order(
        self, ingestion_store: SQLiteIngestionStore
    ) -> None:
        await _seed(ingestion_store, [[0.0, 1.0], [0.0, 1.0]])
        service = _service(ingestion_store, _FixedEmbedder([1.0, 0.0]))

        chunks = await service.relevant_chunks("p1", "question")

        assert [c.chunk_index for c in chunks] == [0, 1]

    @pytest.mark.asyncio
    async def test_embedding_failure_falls_back(self, ingestion_store: SQLiteIngestionStore) -> None:
        await _seed(ingestion_store, [[1.0, 0.0]])
        service = _service(ingestion_store, _FixedEmbedder(None))

        chunks = await service.relevant_chunks("p1", "question")

        assert [c.content for c in chunks] == ["excerpt 0"]

    @pytest.mark.asyncio
    async def test_unembedded_chunks_use_fallback(
        self, ingestion_store: SQLiteIngestionStore
    ) -> None:
        await _seed(ingestion_store, [None, None])
        service = _service(ingestion_store, _FixedEmbedder([1.0, 0.0]))

        chunks = await service.relevant_chunks("p1", "question")

        assert len(chunks) == 2

    @pytest.mark.asyncio
    async def test_no_chunks(self, ingestion_store: SQLiteIngestionStore) -> None:
        service = _service(ingestion_store, _FixedEmbedder([1.0, 0.0]))
        assert await service.relevant_chunks("p1", "question") == []


# ---------------------------------------------------------------------------
# stream_reply
# ---------------------------------------------------------------------------


class TestStreamReply:
    @pytest.mark.asyncio
    async def test_product_prompt_and_separate_history(
        self,
        ingestion_store: SQLiteIngestionStore,
        chat_store: SQLiteChatStore,
        chat_provider: ScriptedChatProvider,
        orchestrator: ChatOrchestrator,
    ) -> None:
        await _seed(ingestion_store, [[1.0, 0.0]])
        chat_provider.streams.append(text_stream("Descale ", "monthly."))
        service = _service(ingestion_store, _FixedEmbedder([1.0, 0.0]), orchestrator)

        pieces = [
            piece
            async for piece in service.stream_reply(
                "p1", "u1", [ChatTurn(role=MessageRole.USER, content="How often to descale?")]
            )
        ]

        assert "".join(pieces) == "Descale monthly."
        messages, tools = chat_provider.stream_calls[0]
        assert tools is None
        assert "PRODUCT INFORMATION:" in messages[0]["content"]
        assert "excerpt 0" in messages[0]["content"]
        history = await chat_store.recent_messages(ProductChatService.conversation_key("p1", "u1"))
        assert [m.content for m in history] == ["How often to descale?", "Descale monthly."]
        assert await chat_store.recent_messages("u1") == []

    @pytest.mark.asyncio
    async def test_unknown_product(
        self, ingestion_store: SQLiteIngestionStore, orchestrator: ChatOrchestrator
    ) -> None:
        service = _service(ingestion_store, _FixedEmbedder([1.0, 0.0]), orchestrator)

        with pytest.raises(PipelineError, match="Unknown product"):
            async for _ in service.stream_reply(
                "missing", "u1", [ChatTurn(role=MessageRole.USER, content="hi")]
            ):
                pass


def test_conversation_key() -> None:
    assert ProductChatService.conversation_key("p1", "u1") == "product:p1:u1"
