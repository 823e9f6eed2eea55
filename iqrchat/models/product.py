"""Product lifecycle models for the ingestion pipeline.

Defines the ``IngestionStatus`` state machine, the ``Product`` knowledge
unit, the immutable ``ExtractedText`` record and the append-only
``ProcessingLogEntry``.  All models are frozen pydantic v2 models; status
changes produce new instances via ``model_copy(update={...})`` and are
persisted by the stores in ``iqrchat.providers.storage``.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)  # noqa: UP017


# ---------------------------------------------------------------------------
# IngestionStatus -- the state machine driving a product's document
# ---------------------------------------------------------------------------
class IngestionStatus(str, Enum):  # noqa: UP042 -- StrEnum requires Python 3.11+
    """Lifecycle states of a product's document ingestion.

    Forward order:
        PENDING_UPLOAD -> UPLOADING -> UPLOADED -> PROCESSING -> EXTRACTING
        -> CHUNKING -> EMBEDDING -> COMPLETED

    FAILED is reachable from any non-terminal state.  A terminal product
    (COMPLETED or FAILED) may be re-entered at a stage's entry state when a
    stage is re-invoked, which is how resume and retry work.
    """

    PENDING_UPLOAD = "pending_upload"
    UPLOADING = "uploading"
    UPLOADED = "uploaded"
    PROCESSING = "processing"
    EXTRACTING = "extracting"
    CHUNKING = "chunking"
    EMBEDDING = "embedding"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (IngestionStatus.COMPLETED, IngestionStatus.FAILED)


# Position of each non-failed state in the forward order.
STATUS_ORDER: tuple[IngestionStatus, ...] = (
    IngestionStatus.PENDING_UPLOAD,
    IngestionStatus.UPLOADING,
    IngestionStatus.UPLOADED,
    IngestionStatus.PROCESSING,
    IngestionStatus.EXTRACTING,
    IngestionStatus.CHUNKING,
    IngestionStatus.EMBEDDING,
    IngestionStatus.COMPLETED,
)


def is_valid_transition(current: IngestionStatus, target: IngestionStatus) -> bool:
    """Return ``True`` if moving from *current* to *target* is allowed.

    Rules:
        * any non-terminal state may move to FAILED;
        * forward moves (possibly skipping states) are allowed;
        * a terminal state may re-enter any working state (stage re-run);
        * staying in the same non-terminal state is allowed (progress update);
        * everything else, notably backward moves between working states,
          is rejected.
    """
    if target is IngestionStatus.FAILED:
        return not current.is_terminal or current is IngestionStatus.FAILED
    if current.is_terminal:
        return target is not IngestionStatus.PENDING_UPLOAD
    return STATUS_ORDER.index(target) >= STATUS_ORDER.index(current)


class Product(BaseModel):
    """A document-backed knowledge unit owned by a business.

    Never deleted physically; ``is_disabled`` is the soft-disable switch.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    business_id: str
    name: str
    description: str | None = None
    # Optional per-product override for the chat system prompt.
    system_prompt: str | None = None
    status: IngestionStatus = IngestionStatus.PENDING_UPLOAD
    # Durable blob locator written by the upload stage.
    source_locator: str | None = None
    # Progress, error and stage bookkeeping read by the status endpoint.
    metadata: dict[str, Any] = Field(default_factory=dict)
    is_disabled: bool = False
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)


class ExtractedText(BaseModel):
    """One raw OCR result per successful extraction attempt.

    Immutable after creation; re-extraction inserts a newer row instead of
    updating this one.
    """

    model_config = ConfigDict(frozen=True)

    id: int | None = None
    product_id: str
    raw_text: str
    source_locator: str
    extraction_method: str
    page_count: int = Field(ge=0)
    # Flags: needs_chunking, needs_embedding; page_offsets (char index of
    # the first character of every page).
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=_utcnow)

    @property
    def page_offsets(self) -> list[int]:
        return list(self.metadata.get("page_offsets", []))


class ProcessingLogEntry(BaseModel):
    """Append-only audit record of a pipeline action."""

    model_config = ConfigDict(frozen=True)

    id: int | None = None
    product_id: str
    action: str
    details: dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=_utcnow)
