"""iqrchat FastAPI application entry point.

Wires together all providers, services, and routes via dependency injection.
Loads configuration from ``.env`` and ``config/config.yaml`` and configures
structured logging.  Stores are initialised and storage targets created in
the lifespan handler; the shared httpx client is closed on shutdown.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any

import httpx
import structlog
import uvicorn
from fastapi import FastAPI

from iqrchat.api.middleware import (
    ErrorHandlingMiddleware,
    RequestLoggingMiddleware,
    configure_cors,
)
from iqrchat.api.routes import router as api_router
from iqrchat.config.loader import load_config
from iqrchat.config.settings import Settings
from iqrchat.interfaces.ocr_provider import IOCRProvider
from iqrchat.pipeline.ingestion_pipeline import IngestionPipeline
from iqrchat.pipeline.status_tracker import StatusTracker
from iqrchat.providers.blob.local_blob_store import LocalBlobStore
from iqrchat.providers.embedding.openai_embedding_provider import OpenAIEmbeddingProvider
from iqrchat.providers.llm.openai_chat_provider import OpenAIChatProvider
from iqrchat.providers.ocr.mistral_ocr_provider import MistralOCRProvider
from iqrchat.providers.ocr.pymupdf_provider import PyMuPDFTextProvider
from iqrchat.providers.storage.sqlite_chat_store import SQLiteChatStore
from iqrchat.providers.storage.sqlite_ingestion_store import SQLiteIngestionStore
from iqrchat.services.chat.orchestrator import ChatOrchestrator
from iqrchat.services.chat.product_chat import ProductChatService
from iqrchat.services.chat.tool_handlers import register_default_tools
from iqrchat.services.chat.tool_registry import ToolDispatchRegistry
from iqrchat.services.ingestion.chunker import TokenChunker
from iqrchat.services.ocr_service import OCRService
from iqrchat.utils.logging import configure_logging, get_logger

# ---------------------------------------------------------------------------
# Module-level settings & logging
# ---------------------------------------------------------------------------

settings = Settings()
config = load_config(settings=settings)

configure_logging(
    log_level=settings.log_level,
    json_output=(settings.app_env == "production"),
)
_logger: structlog.BoundLogger = get_logger(__name__)


# ---------------------------------------------------------------------------
# OCR provider selection
# ---------------------------------------------------------------------------


def _build_ocr_providers(
    app_settings: Settings,
    http_client: httpx.AsyncClient,
    priority: list[str],
) -> list[IOCRProvider]:
    """Return OCR providers in configured priority order.

    Mistral is skipped without an API key; the PyMuPDF text layer is
    always available as the last resort.
    """
    available: dict[str, IOCRProvider] = {"pymupdf": PyMuPDFTextProvider()}
    if app_settings.mistral_api_key:
        available["mistral"] = MistralOCRProvider(settings=app_settings, http_client=http_client)

    ordered = [available[name] for name in priority if name in available]
    ordered += [p for name, p in available.items() if name not in priority]
    return ordered


# ---------------------------------------------------------------------------
# Full DI assembly for the FastAPI application
# ---------------------------------------------------------------------------


def _build_all(app_settings: Settings, app_config: dict[str, Any] | None = None) -> dict[str, Any]:
    """Construct every provider and service instance for the application.

    Returns a flat dict of named components to be stored on ``app.state``.
    """
    app_config = app_config or {}
    ingestion_cfg = app_config.get("ingestion", {})
    ocr_cfg = app_config.get("ocr", {})

    # -- Shared resources --
    http_client = httpx.AsyncClient(timeout=app_settings.ocr_timeout_seconds)

    # -- Stores --
    ingestion_store = SQLiteIngestionStore(db_path=app_settings.ingestion_db_path)
    chat_store = SQLiteChatStore(db_path=app_settings.chat_db_path)
    blob_store = LocalBlobStore(
        root=app_settings.storage_root,
        signing_secret=app_settings.storage_signing_secret,
    )

    # -- External providers --
    ocr_providers = _build_ocr_providers(
        app_settings,
        http_client,
        list(ocr_cfg.get("provider_priority", ["mistral", "pymupdf"])),
    )
    ocr_service = OCRService(
        providers=ocr_providers,
        page_separator=ocr_cfg.get("page_separator", "\n\n"),
    )
    embedding_provider = OpenAIEmbeddingProvider(settings=app_settings)
    chat_provider = OpenAIChatProvider(settings=app_settings)

    # -- Ingestion --
    tracker = StatusTracker(
        ingestion_store,
        progress_per_chunk=ingestion_cfg.get("progress_per_chunk", 2),
        progress_cap=ingestion_cfg.get("progress_cap", 24),
    )
    chunker = TokenChunker(
        chunk_size=app_settings.chunk_size,
        overlap=app_settings.chunk_overlap,
        tokenizer_name=app_settings.chunk_tokenizer,
    )
    pipeline = IngestionPipeline(
        store=ingestion_store,
        blob_store=blob_store,
        ocr_service=ocr_service,
        chunker=chunker,
        embedding_provider=embedding_provider,
        tracker=tracker,
        storage_targets=app_settings.storage_targets,
        signed_url_ttl=app_settings.signed_url_ttl_seconds,
        batch_size=app_settings.embed_batch_size,
        max_workers=app_settings.embed_max_workers,
        max_retries=app_settings.embed_max_retries,
        backoff_seconds=app_settings.embed_backoff_seconds,
        embed_timeout=app_settings.embed_timeout_seconds,
    )

    # -- Chat --
    registry = ToolDispatchRegistry()
    register_default_tools(registry, profiles=chat_store, conversations=chat_store)
    orchestrator = ChatOrchestrator(
        llm=chat_provider,
        registry=registry,
        conversations=chat_store,
        profiles=chat_store,
        history_limit=app_settings.chat_history_limit,
    )
    product_chat = ProductChatService(
        orchestrator=orchestrator,
        store=ingestion_store,
        embedder=embedding_provider,
        match_threshold=app_settings.product_match_threshold,
        match_count=app_settings.product_match_count,
    )

    provider_registry: dict[str, Any] = {
        "llm": chat_provider.is_available(),
        "llm_name": chat_provider.get_provider_name(),
        "embedding": embedding_provider.is_available(),
        "ocr": any(p.is_available() for p in ocr_providers),
        "ocr_providers": [p.get_provider_name() for p in ocr_providers],
        "blob_store": blob_store.get_provider_name(),
    }

    return {
        "http_client": http_client,
        "ingestion_store": ingestion_store,
        "chat_store": chat_store,
        "blob_store": blob_store,
        "storage_targets": list(app_settings.storage_targets),
        "status_tracker": tracker,
        "pipeline": pipeline,
        "tool_registry": registry,
        "chat_orchestrator": orchestrator,
        "product_chat": product_chat,
        "provider_registry": provider_registry,
    }


# ---------------------------------------------------------------------------
# Application lifespan (startup / shutdown)
# ---------------------------------------------------------------------------


@asynccontextmanager
async def _lifespan(application: FastAPI):  # noqa: ANN201
    """Initialise all providers and services on startup, clean up on shutdown."""
    components = _build_all(settings, config)

    for key, value in components.items():
        setattr(application.state, key, value)

    # Create tables and storage targets before the first request.
    await components["ingestion_store"].initialize()
    await components["chat_store"].initialize()
    await components["blob_store"].ensure_targets(components["storage_targets"])

    _logger.info(
        "app_startup",
        version="0.1.0",
        environment=settings.app_env,
        providers=components["provider_registry"],
    )

    yield

    # -- Shutdown: close shared httpx client --
    http_client: httpx.AsyncClient = components["http_client"]
    await http_client.aclose()
    _logger.info("app_shutdown", message="HTTP client closed")


# ---------------------------------------------------------------------------
# FastAPI application factory
# ---------------------------------------------------------------------------


def create_app() -> FastAPI:
    """Build and configure the FastAPI application."""
    application = FastAPI(
        title="iqrchat API",
        version="0.1.0",
        description=(
            "Ingest product PDFs into embedded, token-addressed chunks and chat "
            "with a persona-aware assistant that can call profile and persona tools."
        ),
        lifespan=_lifespan,
    )

    # -- Middleware (order matters: last added = first executed) --
    application.add_middleware(ErrorHandlingMiddleware)
    application.add_middleware(RequestLoggingMiddleware)
    configure_cors(application)

    # -- API routes --
    application.include_router(api_router)

    return application


app = create_app()

# ---------------------------------------------------------------------------
# CLI entry point
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    uvicorn.run(
        "iqrchat.main:app",
        host=settings.app_host,
        port=settings.app_port,
        reload=(settings.app_env == "development"),
    )
