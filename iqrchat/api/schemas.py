"""Pydantic request/response schemas for the iqrchat API.

Defines the public contract for the ingestion, chat and health endpoints.

# ─── HOW SCHEMAS WORK ─────────────────────────────────────────────────
#
# Field names are snake_case in Python and camelCase on the wire
# (``alias_generator=to_camel``), e.g. ``progress_percent`` is serialized
# as ``progressPercent``.  Requests accept either spelling
# (``populate_by_name=True``); FastAPI serializes responses by alias.
#
# Convention: Request schemas end with "Request", response schemas
# end with "Response".
# ──────────────────────────────────────────────────────────────────────
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from iqrchat.models.chat import ChatTurn
from iqrchat.models.chunk import ChunkRecord


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ErrorResponse(BaseModel):
    """Standard error response body."""

    error: str
    detail: str | None = None


# ---------------------------------------------------------------------------
# Products and ingestion
# ---------------------------------------------------------------------------


class CreateProductRequest(_CamelModel):
    business_id: str = Field(min_length=1)
    name: str = Field(min_length=1)
    description: str | None = None
    system_prompt: str | None = None
    product_id: str | None = None


class ProductResponse(_CamelModel):
    product_id: str
    business_id: str
    name: str
    description: str | None = None
    status: str


class IngestionStatusResponse(_CamelModel):
    """Polled by clients while a product is ingesting."""

    product_id: str
    status: str
    progress_percent: float
    chunk_count: int
    metadata: dict[str, Any] = Field(default_factory=dict)


class RunAcceptedResponse(_CamelModel):
    product_id: str
    status: str = "accepted"
    message: str


class UploadResponse(_CamelModel):
    product_id: str
    target: str
    locator: str
    signed_url: str
    size_bytes: int


class ExtractResponse(_CamelModel):
    product_id: str
    extraction_method: str
    page_count: int
    text_length: int


class ChunkRequest(_CamelModel):
    chunk_size: int | None = Field(default=None, ge=1)
    overlap: int | None = Field(default=None, ge=0)


class ChunkListResponse(_CamelModel):
    product_id: str
    chunks: list[ChunkRecord]
    total: int


class SubmitChunksRequest(_CamelModel):
    chunks: list[ChunkRecord] = Field(min_length=1)


class EmbedResponse(_CamelModel):
    product_id: str
    processed_count: int
    failed_count: int
    skipped_count: int
    status: str


class LogEntryResponse(_CamelModel):
    action: str
    details: dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime


class LogListResponse(_CamelModel):
    product_id: str
    entries: list[LogEntryResponse]


# ---------------------------------------------------------------------------
# Chat
# ---------------------------------------------------------------------------


class ChatRequest(_CamelModel):
    """A chat turn: the client's transcript plus the caller's user id."""

    user_id: str = Field(min_length=1)
    messages: list[ChatTurn] = Field(min_length=1)


class HistoryMessage(_CamelModel):
    role: str
    content: str
    created_at: datetime


class ChatHistoryResponse(_CamelModel):
    user_id: str
    messages: list[HistoryMessage]


class PersonaResponse(_CamelModel):
    id: str
    name: str
    short_desc: str | None = None


class PersonaListResponse(_CamelModel):
    personas: list[PersonaResponse]


# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------


class HealthResponse(BaseModel):
    """Application health check response."""

    status: str
    version: str
    providers: dict[str, Any]
