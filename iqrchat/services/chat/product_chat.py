"""Product-scoped chat: answers grounded in one product's document.

The service picks the stored chunks most similar to the user's latest
question (cosine similarity over the stored embeddings), builds a product
system prompt from them and hands the turn to the shared
:class:`ChatOrchestrator` with tools disabled.
"""

from __future__ import annotations

from collections.abc import AsyncIterator, Sequence

import numpy as np
import structlog

from iqrchat.interfaces.embedding_provider import IEmbeddingProvider
from iqrchat.interfaces.ingestion_store import IIngestionStore
from iqrchat.models.chat import ChatTurn, MessageRole
from iqrchat.models.chunk import Chunk
from iqrchat.services.chat.orchestrator import ChatOrchestrator
from iqrchat.services.chat.prompts import build_product_prompt
from iqrchat.utils.errors import EmbeddingError, PipelineError
from iqrchat.utils.logging import get_logger


def cosine_scores(query: Sequence[float], vectors: Sequence[Sequence[float]]) -> np.ndarray:
    """Cosine similarity of *query* against each row of *vectors*.

    Zero-norm rows score 0.0 instead of producing NaN.
    """
    matrix = np.asarray(vectors, dtype=np.float64)
    target = np.asarray(query, dtype=np.float64)
    norms = np.linalg.norm(matrix, axis=1) * np.linalg.norm(target)
    dots = matrix @ target
    return np.divide(dots, norms, out=np.zeros_like(dots), where=norms > 0)


class ProductChatService:
    """Retrieves relevant chunks and streams a product-grounded reply."""

    def __init__(
        self,
        orchestrator: ChatOrchestrator,
        store: IIngestionStore,
        embedder: IEmbeddingProvider,
        match_threshold: float = 0.7,
        match_count: int = 5,
    ) -> None:
        self._orchestrator = orchestrator
        self._store = store
        self._embedder = embedder
        self._threshold = match_threshold
        self._count = match_count
        self._logger: structlog.BoundLogger = get_logger(__name__)

    @staticmethod
    def conversation_key(product_id: str, user_id: str) -> str:
        """History key keeping product threads apart from general chat."""
        return f"product:{product_id}:{user_id}"

    async def relevant_chunks(self, product_id: str, question: str) -> list[Chunk]:
        """Return up to ``match_count`` chunks relevant to *question*.

        Embedded chunks scoring at least ``match_threshold`` come first in
        descending score order.  When nothing qualifies (or the question
        cannot be embedded) the first chunks in document order are used.
        """
        chunks = await self._store.list_chunks(product_id)
        if not chunks:
            return []
        fallback = sorted(chunks, key=lambda c: c.chunk_index)[: self._count]

        embedded = [c for c in chunks if c.embedding]
        if not question.strip() or not embedded:
            return fallback

        try:
            query_vector = await self._embedder.embed_single(question)
        except EmbeddingError as exc:
            self._logger.warning("product_query_embed_failed", product_id=product_id, error=str(exc))
            return fallback

        scores = cosine_scores(query_vector, [c.embedding for c in embedded])
        ranked = sorted(
            (
                (float(score), chunk)
                for score, chunk in zip(scores, embedded)
                if score >= self._threshold
            ),
            key=lambda pair: pair[0],
            reverse=True,
        )
        if not ranked:
            self._logger.info("product_chunks_fallback", product_id=product_id)
            return fallback

        self._logger.info(
            "product_chunks_matched",
            product_id=product_id,
            matched=len(ranked),
            top_score=round(ranked[0][0], 3),
        )
        return [chunk for _, chunk in ranked[: self._count]]

    async def stream_reply(
        self,
        product_id: str,
        user_id: str,
        messages: Sequence[ChatTurn],
    ) -> AsyncIterator[str]:
        """Yield the product-grounded reply.

        Raises
        ------
        PipelineError
            If the product does not exist (before anything is streamed).
        """
        product = await self._store.get_product(product_id)
        if product is None:
            raise PipelineError(f"Unknown product: {product_id}")

        latest = next((m for m in reversed(messages) if m.role is MessageRole.USER), None)
        chunks = await self.relevant_chunks(product_id, latest.content if latest else "")
        prompt = build_product_prompt(product, chunks)

        async for piece in self._orchestrator.stream_reply(
            self.conversation_key(product_id, user_id),
            messages,
            system_prompt=prompt,
            use_tools=False,
        ):
            yield piece
