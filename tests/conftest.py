"""Shared pytest fixtures for the iqrchat test suite."""

from __future__ import annotations

import hashlib
from collections.abc import AsyncIterator
from pathlib import Path
from typing import Any

import fitz
import pytest

from iqrchat.interfaces.chat_completion_provider import CompletionDelta, IChatCompletionProvider
from iqrchat.interfaces.embedding_provider import IEmbeddingProvider
from iqrchat.pipeline.ingestion_pipeline import IngestionPipeline
from iqrchat.pipeline.status_tracker import StatusTracker
from iqrchat.providers.blob.local_blob_store import LocalBlobStore
from iqrchat.providers.ocr.pymupdf_provider import PyMuPDFTextProvider
from iqrchat.providers.storage.sqlite_chat_store import SQLiteChatStore
from iqrchat.providers.storage.sqlite_ingestion_store import SQLiteIngestionStore
from iqrchat.services.chat.orchestrator import ChatOrchestrator
from iqrchat.services.chat.tool_handlers import register_default_tools
from iqrchat.services.chat.tool_registry import ToolDispatchRegistry
from iqrchat.services.ingestion.chunker import TokenChunker
from iqrchat.services.ocr_service import OCRService
from iqrchat.utils.errors import EmbeddingError, LLMError

# ---------------------------------------------------------------------------
# Fake providers
# ---------------------------------------------------------------------------


class MockEmbeddingProvider(IEmbeddingProvider):
    """Deterministic hash-based embeddings; texts in ``fail_on`` raise."""

    def __init__(self, dimension: int = 8, fail_on: set[str] | None = None) -> None:
        self._dimension = dimension
        self.fail_on: set[str] = set(fail_on or ())
        self.calls: list[str] = []

    async def embed(self, texts: list[str]) -> list[list[float]]:
        return [await self.embed_single(text) for text in texts]

    async def embed_single(self, text: str) -> list[float]:
        self.calls.append(text)
        if text in self.fail_on:
            raise EmbeddingError("Scripted embedding failure", provider_name="mock_embedding")
        digest = hashlib.sha256(text.encode("utf-8")).digest()
        return [byte / 255.0 for byte in digest[: self._dimension]]

    def get_dimension(self) -> int:
        return self._dimension

    def get_provider_name(self) -> str:
        return "mock_embedding"

    def is_available(self) -> bool:
        return True


class ScriptedChatProvider(IChatCompletionProvider):
    """Replays scripted streams and completions, recording every request.

    A script item that is an exception is raised at that point of the
    stream, which is how mid-stream provider failures are simulated.
    """

    def __init__(
        self,
        streams: list[list[Any]] | None = None,
        completions: list[Any] | None = None,
    ) -> None:
        self.streams = list(streams or [])
        self.completions = list(completions or [])
        self.stream_calls: list[tuple[list[dict[str, Any]], list[dict[str, Any]] | None]] = []
        self.complete_calls: list[list[dict[str, Any]]] = []

    async def stream(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
    ) -> AsyncIterator[CompletionDelta]:
        self.stream_calls.append((messages, tools))
        script = self.streams.pop(0) if self.streams else [CompletionDelta(finish_reason="stop")]
        for item in script:
            if isinstance(item, Exception):
                raise item
            yield item

    async def complete(
        self,
        messages: list[dict[str, Any]],
        temperature: float = 0.7,
        max_tokens: int = 1000,
    ) -> str:
        self.complete_calls.append(messages)
        if not self.completions:
            raise LLMError("No scripted completion left", provider_name="scripted")
        item = self.completions.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    def get_provider_name(self) -> str:
        return "scripted"

    def is_available(self) -> bool:
        return True


def text_stream(*pieces: str) -> list[CompletionDelta]:
    """Script a plain text response."""
    return [CompletionDelta(content=p) for p in pieces] + [CompletionDelta(finish_reason="stop")]


def tool_stream(name: str, *argument_fragments: str) -> list[CompletionDelta]:
    """Script a single tool call streamed as name + argument fragments."""
    deltas = [CompletionDelta(tool_name=name, tool_arguments="")]
    deltas += [CompletionDelta(tool_arguments=fragment) for fragment in argument_fragments]
    deltas.append(CompletionDelta(finish_reason="tool_calls"))
    return deltas


def build_pdf(pages: list[str]) -> bytes:
    """Build an in-memory PDF with one text page per entry (blank for "")."""
    doc = fitz.open()
    for text in pages:
        page = doc.new_page()
        if text:
            page.insert_textbox(fitz.Rect(36, 36, 559, 806), text, fontsize=8)
    data = doc.tobytes()
    doc.close()
    return data


# ---------------------------------------------------------------------------
# Stores
# ---------------------------------------------------------------------------


@pytest.fixture
async def ingestion_store(tmp_path: Path) -> SQLiteIngestionStore:
    store = SQLiteIngestionStore(db_path=tmp_path / "ingestion.db")
    await store.initialize()
    return store


@pytest.fixture
async def chat_store(tmp_path: Path) -> SQLiteChatStore:
    store = SQLiteChatStore(db_path=tmp_path / "chat.db")
    await store.initialize()
    return store


@pytest.fixture
async def blob_store(tmp_path: Path) -> LocalBlobStore:
    store = LocalBlobStore(root=tmp_path / "blobs", signing_secret="test-secret")
    await store.ensure_targets(["pdfs", "documents"])
    return store


# ---------------------------------------------------------------------------
# Ingestion components
# ---------------------------------------------------------------------------


@pytest.fixture
def mock_embedder() -> MockEmbeddingProvider:
    return MockEmbeddingProvider()


@pytest.fixture
def tracker(ingestion_store: SQLiteIngestionStore) -> StatusTracker:
    return StatusTracker(ingestion_store)


@pytest.fixture
def word_chunker() -> TokenChunker:
    """Chunker on the offline word-level tokenizer (no model download)."""
    return TokenChunker(chunk_size=1000, overlap=200, tokenizer_name="")


@pytest.fixture
def pipeline(
    ingestion_store: SQLiteIngestionStore,
    blob_store: LocalBlobStore,
    word_chunker: TokenChunker,
    mock_embedder: MockEmbeddingProvider,
    tracker: StatusTracker,
) -> IngestionPipeline:
    return IngestionPipeline(
        store=ingestion_store,
        blob_store=blob_store,
        ocr_service=OCRService([PyMuPDFTextProvider()]),
        chunker=word_chunker,
        embedding_provider=mock_embedder,
        tracker=tracker,
        backoff_seconds=0.0,
        embed_timeout=5.0,
    )


@pytest.fixture
def three_page_pdf() -> bytes:
    """Three pages of 600 distinct words each: 1,800 word-level tokens."""
    words = [f"w{i}" for i in range(1800)]
    return build_pdf([" ".join(words[p * 600 : (p + 1) * 600]) for p in range(3)])


# ---------------------------------------------------------------------------
# Chat components
# ---------------------------------------------------------------------------


@pytest.fixture
def chat_provider() -> ScriptedChatProvider:
    return ScriptedChatProvider()


@pytest.fixture
def tool_registry(chat_store: SQLiteChatStore) -> ToolDispatchRegistry:
    registry = ToolDispatchRegistry()
    register_default_tools(registry, profiles=chat_store, conversations=chat_store)
    return registry


@pytest.fixture
def orchestrator(
    chat_provider: ScriptedChatProvider,
    tool_registry: ToolDispatchRegistry,
    chat_store: SQLiteChatStore,
) -> ChatOrchestrator:
    return ChatOrchestrator(
        llm=chat_provider,
        registry=tool_registry,
        conversations=chat_store,
        profiles=chat_store,
    )
