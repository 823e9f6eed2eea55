"""FastAPI routes for ingestion, chat and health.

Service dependencies are resolved from ``app.state`` via ``Depends`` using
the ``Annotated`` pattern.

# ─── API ROUTE MAP ────────────────────────────────────────────────────
#
# Endpoint                                       Method    Description
# ─────────────────────────────────────────────────────────────────────
# /api/v1/ingestion/products                     POST      Create a product
# /api/v1/ingestion/status?productId=            GET       Poll status + progress
# /api/v1/ingestion/{pid}/run                    POST      Upload PDF, run all stages (background)
# /api/v1/ingestion/{pid}/upload                 POST      Upload stage only
# /api/v1/ingestion/{pid}/extract                POST      Extract stage only
# /api/v1/ingestion/{pid}/chunk                  POST      Chunk stage only
# /api/v1/ingestion/{pid}/embed                  POST      Embed stage only
# /api/v1/ingestion/{pid}/retry-embeddings       POST      Embed chunks still missing vectors
# /api/v1/ingestion/{pid}/chunks                 GET/POST  Read / submit chunk records
# /api/v1/ingestion/{pid}/logs                   GET       Audit log
# /api/v1/chat                                   POST      Streamed chat reply (text/plain)
# /api/v1/chat/history?userId=                   GET       Visible transcript
# /api/v1/chat/personas                          GET       Persona catalogue
# /api/v1/products/{pid}/chat                    POST      Product-grounded chat reply
# /api/v1/health                                 GET       Health check + provider status
#
# Stage endpoints translate application errors into HTTP errors with
# ``status_code_for``; anything else reaching the middleware becomes a
# JSON ``ErrorResponse``.
# ──────────────────────────────────────────────────────────────────────
"""

from __future__ import annotations

from typing import Annotated, Any

import structlog
from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, Request, UploadFile
from fastapi.responses import StreamingResponse

from iqrchat.api.middleware import status_code_for
from iqrchat.api.schemas import (
    ChatHistoryResponse,
    ChatRequest,
    ChunkListResponse,
    ChunkRequest,
    CreateProductRequest,
    EmbedResponse,
    ErrorResponse,
    ExtractResponse,
    HealthResponse,
    HistoryMessage,
    IngestionStatusResponse,
    LogEntryResponse,
    LogListResponse,
    PersonaListResponse,
    PersonaResponse,
    ProductResponse,
    RunAcceptedResponse,
    SubmitChunksRequest,
    UploadResponse,
)
from iqrchat.interfaces.chat_store import IProfileStore
from iqrchat.interfaces.ingestion_store import IIngestionStore
from iqrchat.models.pipeline import EmbedOutcome
from iqrchat.pipeline.ingestion_pipeline import IngestionPipeline
from iqrchat.pipeline.status_tracker import StatusTracker
from iqrchat.services.chat.orchestrator import ChatOrchestrator
from iqrchat.services.chat.product_chat import ProductChatService
from iqrchat.utils.errors import IQRChatError
from iqrchat.utils.logging import get_logger

_logger: structlog.BoundLogger = get_logger(__name__)

router = APIRouter(prefix="/api/v1")

_MAX_FILE_SIZE = 50 * 1024 * 1024  # 50 MB
_UPLOAD_CHUNK_SIZE = 64 * 1024

_STREAM_MEDIA_TYPE = "text/plain; charset=utf-8"


# ---------------------------------------------------------------------------
# Dependency injection helpers: resolve singletons from app.state
# ---------------------------------------------------------------------------


def _get_pipeline(request: Request) -> IngestionPipeline:
    """Return the ingestion pipeline from application state."""
    return request.app.state.pipeline


def _get_tracker(request: Request) -> StatusTracker:
    return request.app.state.status_tracker


def _get_ingestion_store(request: Request) -> IIngestionStore:
    return request.app.state.ingestion_store


def _get_orchestrator(request: Request) -> ChatOrchestrator:
    return request.app.state.chat_orchestrator


def _get_product_chat(request: Request) -> ProductChatService:
    return request.app.state.product_chat


def _get_profile_store(request: Request) -> IProfileStore:
    return request.app.state.chat_store


PipelineDep = Annotated[IngestionPipeline, Depends(_get_pipeline)]
TrackerDep = Annotated[StatusTracker, Depends(_get_tracker)]
IngestionStoreDep = Annotated[IIngestionStore, Depends(_get_ingestion_store)]
OrchestratorDep = Annotated[ChatOrchestrator, Depends(_get_orchestrator)]
ProductChatDep = Annotated[ProductChatService, Depends(_get_product_chat)]
ProfileStoreDep = Annotated[IProfileStore, Depends(_get_profile_store)]


def _http_error(exc: IQRChatError) -> HTTPException:
    return HTTPException(status_code=status_code_for(exc), detail=exc.message)


async def _read_upload(file: UploadFile) -> bytes:
    """Read an upload in chunks, rejecting oversized files early."""
    chunks: list[bytes] = []
    total_size = 0
    while True:
        chunk = await file.read(_UPLOAD_CHUNK_SIZE)
        if not chunk:
            break
        total_size += len(chunk)
        if total_size > _MAX_FILE_SIZE:
            raise HTTPException(
                status_code=413,
                detail=f"File too large: maximum is {_MAX_FILE_SIZE // (1024 * 1024)} MB",
            )
        chunks.append(chunk)
    if total_size == 0:
        raise HTTPException(status_code=422, detail="Uploaded file is empty")
    return b"".join(chunks)


async def _require_product(store: IIngestionStore, product_id: str) -> None:
    if await store.get_product(product_id) is None:
        raise HTTPException(status_code=404, detail=f"Unknown product: {product_id}")


def _embed_response(product_id: str, outcome: EmbedOutcome, status: str) -> EmbedResponse:
    return EmbedResponse(
        product_id=product_id,
        processed_count=outcome.processed_count,
        failed_count=outcome.failed_count,
        skipped_count=outcome.skipped_count,
        status=status,
    )


# ---------------------------------------------------------------------------
# Ingestion endpoints
# ---------------------------------------------------------------------------


@router.post(
    "/ingestion/products",
    response_model=ProductResponse,
    status_code=201,
    summary="Create a product awaiting its document",
)
async def create_product(body: CreateProductRequest, pipeline: PipelineDep) -> ProductResponse:
    product = await pipeline.create_product(
        business_id=body.business_id,
        name=body.name,
        description=body.description,
        system_prompt=body.system_prompt,
        product_id=body.product_id,
    )
    return ProductResponse(
        product_id=product.id,
        business_id=product.business_id,
        name=product.name,
        description=product.description,
        status=product.status.value,
    )


@router.get(
    "/ingestion/status",
    response_model=IngestionStatusResponse,
    responses={404: {"model": ErrorResponse}},
    summary="Poll a product's ingestion status",
)
async def ingestion_status(
    tracker: TrackerDep,
    product_id: Annotated[str, Query(alias="productId", min_length=1)],
) -> IngestionStatusResponse:
    snapshot = await tracker.get_status(product_id)
    if snapshot is None:
        raise HTTPException(status_code=404, detail=f"Unknown product: {product_id}")
    return IngestionStatusResponse(
        product_id=snapshot.product_id,
        status=snapshot.status.value,
        progress_percent=snapshot.progress_percent,
        chunk_count=snapshot.chunk_count,
        metadata=snapshot.metadata,
    )


@router.post(
    "/ingestion/{product_id}/run",
    response_model=RunAcceptedResponse,
    status_code=202,
    responses={413: {"model": ErrorResponse}},
    summary="Upload a PDF and run every ingestion stage in the background",
)
async def run_ingestion(
    product_id: str,
    file: UploadFile,
    background_tasks: BackgroundTasks,
    pipeline: PipelineDep,
) -> RunAcceptedResponse:
    data = await _read_upload(file)
    background_tasks.add_task(pipeline.run, product_id, data, file.filename or "document.pdf")
    _logger.info("ingestion_run_scheduled", product_id=product_id, size_bytes=len(data))
    return RunAcceptedResponse(
        product_id=product_id,
        message="Ingestion started. Poll the status endpoint for progress.",
    )


@router.post(
    "/ingestion/{product_id}/upload",
    response_model=UploadResponse,
    responses={413: {"model": ErrorResponse}, 422: {"model": ErrorResponse}},
    summary="Store the product's document (upload stage only)",
)
async def upload_document(product_id: str, file: UploadFile, pipeline: PipelineDep) -> UploadResponse:
    data = await _read_upload(file)
    try:
        artifact = await pipeline.upload(product_id, data, file.filename or "document.pdf")
    except IQRChatError as exc:
        raise _http_error(exc) from exc
    return UploadResponse(**artifact.model_dump())


@router.post(
    "/ingestion/{product_id}/extract",
    response_model=ExtractResponse,
    responses={422: {"model": ErrorResponse}, 502: {"model": ErrorResponse}},
    summary="OCR the uploaded document (extract stage only)",
)
async def extract_text(product_id: str, pipeline: PipelineDep) -> ExtractResponse:
    try:
        extracted = await pipeline.extract(product_id)
    except IQRChatError as exc:
        raise _http_error(exc) from exc
    return ExtractResponse(
        product_id=product_id,
        extraction_method=extracted.extraction_method,
        page_count=extracted.page_count,
        text_length=len(extracted.raw_text),
    )


@router.post(
    "/ingestion/{product_id}/chunk",
    response_model=ChunkListResponse,
    responses={404: {"model": ErrorResponse}, 422: {"model": ErrorResponse}},
    summary="Chunk the newest extraction (chunk stage only)",
)
async def chunk_text(
    product_id: str,
    pipeline: PipelineDep,
    store: IngestionStoreDep,
    body: ChunkRequest | None = None,
) -> ChunkListResponse:
    await _require_product(store, product_id)
    options = body or ChunkRequest()
    try:
        chunks = await pipeline.chunk(product_id, options.chunk_size, options.overlap)
    except IQRChatError as exc:
        raise _http_error(exc) from exc
    return ChunkListResponse(
        product_id=product_id,
        chunks=[chunk.to_record() for chunk in chunks],
        total=len(chunks),
    )


@router.post(
    "/ingestion/{product_id}/embed",
    response_model=EmbedResponse,
    responses={404: {"model": ErrorResponse}, 422: {"model": ErrorResponse}},
    summary="Embed chunks still missing a vector (embed stage only)",
)
async def embed_chunks(
    product_id: str,
    pipeline: PipelineDep,
    store: IngestionStoreDep,
) -> EmbedResponse:
    await _require_product(store, product_id)
    try:
        outcome = await pipeline.embed(product_id)
    except IQRChatError as exc:
        raise _http_error(exc) from exc
    product = await store.get_product(product_id)
    return _embed_response(product_id, outcome, product.status.value)


@router.post(
    "/ingestion/{product_id}/retry-embeddings",
    response_model=EmbedResponse,
    responses={404: {"model": ErrorResponse}, 422: {"model": ErrorResponse}},
    summary="Retry chunks whose embedding previously failed",
)
async def retry_embeddings(
    product_id: str,
    pipeline: PipelineDep,
    store: IngestionStoreDep,
) -> EmbedResponse:
    await _require_product(store, product_id)
    try:
        outcome = await pipeline.retry_missing_embeddings(product_id)
    except IQRChatError as exc:
        raise _http_error(exc) from exc
    product = await store.get_product(product_id)
    return _embed_response(product_id, outcome, product.status.value)


@router.get(
    "/ingestion/{product_id}/chunks",
    response_model=ChunkListResponse,
    responses={404: {"model": ErrorResponse}},
    summary="Retrieve a product's chunks as chunk records",
)
async def list_chunks(product_id: str, store: IngestionStoreDep) -> ChunkListResponse:
    await _require_product(store, product_id)
    chunks = await store.list_chunks(product_id)
    return ChunkListResponse(
        product_id=product_id,
        chunks=[chunk.to_record() for chunk in chunks],
        total=len(chunks),
    )


@router.post(
    "/ingestion/{product_id}/chunks",
    response_model=ChunkListResponse,
    responses={404: {"model": ErrorResponse}, 422: {"model": ErrorResponse}},
    summary="Submit externally produced chunk records",
)
async def submit_chunks(
    product_id: str,
    body: SubmitChunksRequest,
    pipeline: PipelineDep,
    store: IngestionStoreDep,
) -> ChunkListResponse:
    await _require_product(store, product_id)
    try:
        chunks = await pipeline.submit_chunks(product_id, body.chunks)
    except IQRChatError as exc:
        raise _http_error(exc) from exc
    return ChunkListResponse(
        product_id=product_id,
        chunks=[chunk.to_record() for chunk in chunks],
        total=len(chunks),
    )


@router.get(
    "/ingestion/{product_id}/logs",
    response_model=LogListResponse,
    responses={404: {"model": ErrorResponse}},
    summary="Audit log of a product's ingestion",
)
async def list_logs(product_id: str, store: IngestionStoreDep) -> LogListResponse:
    await _require_product(store, product_id)
    entries = await store.list_logs(product_id)
    return LogListResponse(
        product_id=product_id,
        entries=[
            LogEntryResponse(action=e.action, details=e.details, timestamp=e.timestamp)
            for e in entries
        ],
    )


# ---------------------------------------------------------------------------
# Chat endpoints
# ---------------------------------------------------------------------------


@router.post("/chat", summary="Stream a chat reply as plain text")
async def chat(body: ChatRequest, orchestrator: OrchestratorDep) -> StreamingResponse:
    return StreamingResponse(
        orchestrator.stream_reply(body.user_id, body.messages),
        media_type=_STREAM_MEDIA_TYPE,
    )


@router.get(
    "/chat/history",
    response_model=ChatHistoryResponse,
    summary="Visible chat transcript for a user",
)
async def chat_history(
    orchestrator: OrchestratorDep,
    user_id: Annotated[str, Query(alias="userId", min_length=1)],
) -> ChatHistoryResponse:
    messages = await orchestrator.visible_history(user_id)
    return ChatHistoryResponse(
        user_id=user_id,
        messages=[
            HistoryMessage(role=m.role.value, content=m.content, created_at=m.created_at)
            for m in messages
        ],
    )


@router.get("/chat/personas", response_model=PersonaListResponse, summary="List personas")
async def list_personas(profiles: ProfileStoreDep) -> PersonaListResponse:
    personas = await profiles.list_personas()
    return PersonaListResponse(
        personas=[PersonaResponse(id=p.id, name=p.name, short_desc=p.short_desc) for p in personas]
    )


@router.post(
    "/products/{product_id}/chat",
    responses={404: {"model": ErrorResponse}},
    summary="Stream a reply grounded in one product's document",
)
async def product_chat(
    product_id: str,
    body: ChatRequest,
    product_chat_service: ProductChatDep,
    store: IngestionStoreDep,
) -> StreamingResponse:
    await _require_product(store, product_id)
    return StreamingResponse(
        product_chat_service.stream_reply(product_id, body.user_id, body.messages),
        media_type=_STREAM_MEDIA_TYPE,
    )


# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------


@router.get("/health", response_model=HealthResponse, summary="Application health check")
async def health_check(request: Request) -> HealthResponse:
    """Return application health, version, and provider availability."""
    providers: dict[str, Any] = dict(getattr(request.app.state, "provider_registry", {}))
    critical_ok = providers.get("llm", False) and providers.get("embedding", False)
    ocr_ok = providers.get("ocr", False)

    if critical_ok and ocr_ok:
        status = "healthy"
    elif ocr_ok:
        # Ingestion can still upload and extract; chat and embed cannot.
        status = "degraded"
    else:
        status = "unhealthy"

    return HealthResponse(status=status, version="0.1.0", providers=providers)
