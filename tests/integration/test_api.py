"""Integration tests for FastAPI API endpoints using TestClient."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from pathlib import Path

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from iqrchat.api.routes import router as api_router
from iqrchat.pipeline.ingestion_pipeline import IngestionPipeline
from iqrchat.pipeline.status_tracker import StatusTracker
from iqrchat.providers.blob.local_blob_store import LocalBlobStore
from iqrchat.providers.ocr.pymupdf_provider import PyMuPDFTextProvider
from iqrchat.providers.storage.sqlite_chat_store import SQLiteChatStore
from iqrchat.providers.storage.sqlite_ingestion_store import SQLiteIngestionStore
from iqrchat.services.chat.orchestrator import ChatOrchestrator
from iqrchat.services.chat.product_chat import ProductChatService
from iqrchat.services.chat.prompts import ERROR_MESSAGE
from iqrchat.services.chat.tool_handlers import register_default_tools
from iqrchat.services.chat.tool_registry import ToolDispatchRegistry
from iqrchat.services.ingestion.chunker import TokenChunker
from iqrchat.services.ocr_service import OCRService
from iqrchat.utils.errors import LLMError
from tests.conftest import (
    MockEmbeddingProvider,
    ScriptedChatProvider,
    build_pdf,
    text_stream,
    tool_stream,
)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


@dataclass
class _Harness:
    client: TestClient
    chat_provider: ScriptedChatProvider
    embedder: MockEmbeddingProvider


def _create_test_app(tmp_path: Path) -> tuple[FastAPI, ScriptedChatProvider, MockEmbeddingProvider]:
    """Create a FastAPI app wired to real local stores and scripted model providers."""
    ingestion_store = SQLiteIngestionStore(db_path=tmp_path / "ingestion.db")
    chat_store = SQLiteChatStore(db_path=tmp_path / "chat.db")
    blob_store = LocalBlobStore(root=tmp_path / "blobs", signing_secret="test-secret")

    async def _initialize() -> None:
        await ingestion_store.initialize()
        await chat_store.initialize()
        await blob_store.ensure_targets(["pdfs"])

    asyncio.run(_initialize())

    embedder = MockEmbeddingProvider()
    chat_provider = ScriptedChatProvider()
    tracker = StatusTracker(ingestion_store)
    pipeline = IngestionPipeline(
        store=ingestion_store,
        blob_store=blob_store,
        ocr_service=OCRService([PyMuPDFTextProvider()]),
        chunker=TokenChunker(chunk_size=1000, overlap=200, tokenizer_name=""),
        embedding_provider=embedder,
        tracker=tracker,
        backoff_seconds=0.0,
        embed_timeout=5.0,
    )
    registry = ToolDispatchRegistry()
    register_default_tools(registry, profiles=chat_store, conversations=chat_store)
    orchestrator = ChatOrchestrator(
        llm=chat_provider, registry=registry, conversations=chat_store, profiles=chat_store
    )

    app = FastAPI()
    app.include_router(api_router)
    app.state.pipeline = pipeline
    app.state.status_tracker = tracker
    app.state.ingestion_store = ingestion_store
    app.state.chat_store = chat_store
    app.state.chat_orchestrator = orchestrator
    app.state.product_chat = ProductChatService(
        orchestrator=orchestrator,
        store=ingestion_store,
        embedder=embedder,
        match_threshold=0.7,
        match_count=5,
    )
    app.state.provider_registry = {"llm": True, "embedding": True, "ocr": True}
    return app, chat_provider, embedder


@pytest.fixture
def harness(tmp_path: Path) -> _Harness:
    app, chat_provider, embedder = _create_test_app(tmp_path)
    return _Harness(client=TestClient(app), chat_provider=chat_provider, embedder=embedder)


@pytest.fixture
def manual_pdf() -> bytes:
    words = [f"w{i}" for i in range(1800)]
    return build_pdf([" ".join(words[p * 600 : (p + 1) * 600]) for p in range(3)])


def _pdf_file(data: bytes, filename: str = "manual.pdf") -> dict:
    return {"file": (filename, data, "application/pdf")}


def _create_product(client: TestClient, product_id: str = "p1") -> dict:
    response = client.post(
        "/api/v1/ingestion/products",
        json={"businessId": "b1", "name": "Kettle manual", "productId": product_id},
    )
    assert response.status_code == 201
    return response.json()


def _chat_body(content: str, user_id: str = "u1") -> dict:
    return {"userId": user_id, "messages": [{"role": "user", "content": content}]}


# ---------------------------------------------------------------------------
# Products and status
# ---------------------------------------------------------------------------


class TestProducts:
    def test_create_product(self, harness: _Harness) -> None:
        body = _create_product(harness.client)

        assert body == {
            "productId": "p1",
            "businessId": "b1",
            "name": "Kettle manual",
            "description": None,
            "status": "pending_upload",
        }

    def test_create_product_generates_id(self, harness: _Harness) -> None:
        response = harness.client.post(
            "/api/v1/ingestion/products", json={"business_id": "b1", "name": "Toaster"}
        )

        assert response.status_code == 201
        assert response.json()["productId"]

    def test_create_product_requires_name(self, harness: _Harness) -> None:
        response = harness.client.post("/api/v1/ingestion/products", json={"businessId": "b1"})
        assert response.status_code == 422

    def test_status_of_new_product(self, harness: _Harness) -> None:
        _create_product(harness.client)

        response = harness.client.get("/api/v1/ingestion/status", params={"productId": "p1"})

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "pending_upload"
        assert body["progressPercent"] == 0.0
        assert body["chunkCount"] == 0

    def test_status_unknown_product(self, harness: _Harness) -> None:
        response = harness.client.get("/api/v1/ingestion/status", params={"productId": "nope"})
        assert response.status_code == 404

    def test_status_requires_product_id(self, harness: _Harness) -> None:
        response = harness.client.get("/api/v1/ingestion/status")
        assert response.status_code == 422


# ---------------------------------------------------------------------------
# Full background run
# ---------------------------------------------------------------------------


class TestRun:
    def test_run_completes(self, harness: _Harness, manual_pdf: bytes) -> None:
        _create_product(harness.client)

        response = harness.client.post("/api/v1/ingestion/p1/run", files=_pdf_file(manual_pdf))

        assert response.status_code == 202
        assert response.json()["status"] == "accepted"

        # TestClient runs background tasks before returning.
        status = harness.client.get("/api/v1/ingestion/status", params={"productId": "p1"}).json()
        assert status["status"] == "completed"
        assert status["progressPercent"] == 100.0
        assert status["chunkCount"] == 2
        assert status["metadata"]["page_count"] == 3

    def test_run_rejects_empty_file(self, harness: _Harness) -> None:
        response = harness.client.post("/api/v1/ingestion/p1/run", files=_pdf_file(b""))

        assert response.status_code == 422
        assert response.json()["detail"] == "Uploaded file is empty"


# ---------------------------------------------------------------------------
# Individual stages
# ---------------------------------------------------------------------------


class TestStages:
    def test_stage_by_stage(self, harness: _Harness, manual_pdf: bytes) -> None:
        client = harness.client
        _create_product(client)

        upload = client.post("/api/v1/ingestion/p1/upload", files=_pdf_file(manual_pdf))
        assert upload.status_code == 200
        assert upload.json()["target"] == "pdfs"
        assert upload.json()["sizeBytes"] == len(manual_pdf)

        extract = client.post("/api/v1/ingestion/p1/extract")
        assert extract.status_code == 200
        assert extract.json()["pageCount"] == 3
        assert extract.json()["extractionMethod"] == "pymupdf"

        chunk = client.post("/api/v1/ingestion/p1/chunk", json={"chunkSize": 1000, "overlap": 200})
        assert chunk.status_code == 200
        assert chunk.json()["total"] == 2
        first = chunk.json()["chunks"][0]
        assert (first["tokenStart"], first["tokenEnd"], first["charStart"]) == (0, 1000, 0)

        embed = client.post("/api/v1/ingestion/p1/embed")
        assert embed.status_code == 200
        assert embed.json() == {
            "productId": "p1",
            "processedCount": 2,
            "failedCount": 0,
            "skippedCount": 0,
            "status": "completed",
        }

        listed = client.get("/api/v1/ingestion/p1/chunks")
        assert listed.json()["total"] == 2

        logs = client.get("/api/v1/ingestion/p1/logs").json()
        actions = [entry["action"] for entry in logs["entries"]]
        assert actions[0] == "product_created"
        assert "embedding_completed" in actions

    def test_chunk_without_body_uses_defaults(self, harness: _Harness, manual_pdf: bytes) -> None:
        client = harness.client
        client.post("/api/v1/ingestion/p1/upload", files=_pdf_file(manual_pdf))
        client.post("/api/v1/ingestion/p1/extract")

        response = client.post("/api/v1/ingestion/p1/chunk")

        assert response.status_code == 200
        assert response.json()["total"] == 2

    def test_retry_embeddings(self, harness: _Harness, manual_pdf: bytes) -> None:
        client = harness.client
        client.post("/api/v1/ingestion/p1/run", files=_pdf_file(manual_pdf))

        response = client.post("/api/v1/ingestion/p1/retry-embeddings")

        assert response.status_code == 200
        assert response.json()["skippedCount"] == 2
        assert response.json()["processedCount"] == 0

    def test_upload_rejects_non_pdf(self, harness: _Harness) -> None:
        response = harness.client.post(
            "/api/v1/ingestion/p1/upload", files=_pdf_file(b"just text", "notes.txt")
        )

        assert response.status_code == 422
        assert response.json()["detail"] == "Only PDF documents are accepted (notes.txt)"

    def test_extract_blank_pdf_is_bad_gateway(self, harness: _Harness) -> None:
        harness.client.post("/api/v1/ingestion/p1/upload", files=_pdf_file(build_pdf([""])))

        response = harness.client.post("/api/v1/ingestion/p1/extract")

        assert response.status_code == 502
        assert response.json()["detail"] == "No text extracted from document"

    def test_extract_without_upload(self, harness: _Harness) -> None:
        _create_product(harness.client)

        response = harness.client.post("/api/v1/ingestion/p1/extract")

        assert response.status_code == 422

    def test_embed_without_chunks(self, harness: _Harness) -> None:
        _create_product(harness.client)

        response = harness.client.post("/api/v1/ingestion/p1/embed")

        assert response.status_code == 422

    @pytest.mark.parametrize(
        ("method", "path"),
        [
            ("post", "/api/v1/ingestion/missing/chunk"),
            ("post", "/api/v1/ingestion/missing/embed"),
            ("post", "/api/v1/ingestion/missing/retry-embeddings"),
            ("get", "/api/v1/ingestion/missing/chunks"),
            ("get", "/api/v1/ingestion/missing/logs"),
        ],
    )
    def test_unknown_product_is_404(self, harness: _Harness, method: str, path: str) -> None:
        response = getattr(harness.client, method)(path)
        assert response.status_code == 404


class TestSubmitChunks:
    def test_submit_replaces_chunks(self, harness: _Harness, manual_pdf: bytes) -> None:
        client = harness.client
        client.post("/api/v1/ingestion/p1/upload", files=_pdf_file(manual_pdf))
        client.post("/api/v1/ingestion/p1/extract")

        response = client.post(
            "/api/v1/ingestion/p1/chunks",
            json={
                "chunks": [
                    {
                        "content": "Warranty: two years.",
                        "tokenStart": 0,
                        "tokenEnd": 3,
                        "charStart": 0,
                        "charEnd": 20,
                    }
                ]
            },
        )

        assert response.status_code == 200
        assert response.json()["total"] == 1
        assert response.json()["chunks"][0]["content"] == "Warranty: two years."

    @pytest.mark.parametrize(
        "chunks",
        [
            [],
            [{"content": "x", "tokenStart": 5, "tokenEnd": 5, "charStart": 0, "charEnd": 1}],
            [{"content": "", "tokenStart": 0, "tokenEnd": 1, "charStart": 0, "charEnd": 0}],
        ],
    )
    def test_invalid_records_rejected(self, harness: _Harness, chunks: list) -> None:
        _create_product(harness.client)

        response = harness.client.post("/api/v1/ingestion/p1/chunks", json={"chunks": chunks})

        assert response.status_code == 422


# ---------------------------------------------------------------------------
# Chat
# ---------------------------------------------------------------------------


class TestChat:
    def test_streamed_reply_and_history(self, harness: _Harness) -> None:
        harness.chat_provider.streams.append(text_stream("**Hello** ", "there!"))

        response = harness.client.post("/api/v1/chat", json=_chat_body("Hi"))

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/plain")
        assert response.text == "Hello there!"

        history = harness.client.get("/api/v1/chat/history", params={"userId": "u1"}).json()
        assert history["userId"] == "u1"
        assert [(m["role"], m["content"]) for m in history["messages"]] == [
            ("user", "Hi"),
            ("assistant", "Hello there!"),
        ]
        assert "createdAt" in history["messages"][0]

    def test_tool_call_hidden_from_history(self, harness: _Harness) -> None:
        harness.chat_provider.streams.append(tool_stream("get_personas", "{}"))
        harness.chat_provider.completions.append("I can be a Chef, Doctor, Travel Guide or Tutor.")

        response = harness.client.post("/api/v1/chat", json=_chat_body("What personas are available?"))

        assert response.text == "I can be a Chef, Doctor, Travel Guide or Tutor."
        history = harness.client.get("/api/v1/chat/history", params={"userId": "u1"}).json()
        assert [m["role"] for m in history["messages"]] == ["user", "assistant"]

    def test_provider_failure_streams_apology(self, harness: _Harness) -> None:
        harness.chat_provider.streams.append([LLMError("upstream down")])

        response = harness.client.post("/api/v1/chat", json=_chat_body("Hi"))

        assert response.status_code == 200
        assert response.text == ERROR_MESSAGE

    @pytest.mark.parametrize(
        "body",
        [
            {"userId": "", "messages": [{"role": "user", "content": "Hi"}]},
            {"userId": "u1", "messages": []},
            {"userId": "u1", "messages": [{"role": "wizard", "content": "Hi"}]},
        ],
    )
    def test_invalid_request(self, harness: _Harness, body: dict) -> None:
        response = harness.client.post("/api/v1/chat", json=body)
        assert response.status_code == 422

    def test_personas(self, harness: _Harness) -> None:
        response = harness.client.get("/api/v1/chat/personas")

        assert response.status_code == 200
        names = [p["name"] for p in response.json()["personas"]]
        assert names == ["Chef", "Default Assistant", "Doctor", "Travel Guide", "Tutor"]
        assert "shortDesc" in response.json()["personas"][0]


class TestProductChat:
    def test_reply_grounded_in_product(self, harness: _Harness, manual_pdf: bytes) -> None:
        client = harness.client
        _create_product(client)
        client.post("/api/v1/ingestion/p1/run", files=_pdf_file(manual_pdf))
        harness.chat_provider.streams.append(text_stream("Descale it monthly."))

        response = client.post("/api/v1/products/p1/chat", json=_chat_body("How do I descale?"))

        assert response.status_code == 200
        assert response.text == "Descale it monthly."
        messages, tools = harness.chat_provider.stream_calls[0]
        assert tools is None
        assert 'for the product "Kettle manual"' in messages[0]["content"]
        assert "PRODUCT INFORMATION:" in messages[0]["content"]

        # Product conversations do not leak into the general transcript.
        history = client.get("/api/v1/chat/history", params={"userId": "u1"}).json()
        assert history["messages"] == []

    def test_unknown_product(self, harness: _Harness) -> None:
        response = harness.client.post("/api/v1/products/missing/chat", json=_chat_body("Hi"))
        assert response.status_code == 404


# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------


class TestHealth:
    def test_healthy(self, harness: _Harness) -> None:
        response = harness.client.get("/api/v1/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"
        assert response.json()["version"] == "0.1.0"

    def test_degraded_without_llm(self, harness: _Harness) -> None:
        harness.client.app.state.provider_registry = {"llm": False, "embedding": True, "ocr": True}

        assert harness.client.get("/api/v1/health").json()["status"] == "degraded"
