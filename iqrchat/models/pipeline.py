"""Pipeline stage models for document ingestion.

``IngestionStage`` names the four independently retryable stages; each
stage knows the product status it enters, the status it leaves behind and
its position for progress reporting.  The remaining models are the frozen
results handed back to callers and to the status endpoint.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from iqrchat.models.product import IngestionStatus


class IngestionStage(str, Enum):  # noqa: UP042 -- StrEnum requires Python 3.11+
    """The four stages of the ingestion pipeline, in execution order."""

    UPLOAD = "upload"
    EXTRACT = "extract"
    CHUNK = "chunk"
    EMBED = "embed"

    @property
    def index(self) -> int:
        return list(IngestionStage).index(self)

    @property
    def entry_status(self) -> IngestionStatus:
        """Status written when the stage starts."""
        return _ENTRY_STATUS[self]


_ENTRY_STATUS: dict[IngestionStage, IngestionStatus] = {
    IngestionStage.UPLOAD: IngestionStatus.UPLOADING,
    IngestionStage.EXTRACT: IngestionStatus.EXTRACTING,
    IngestionStage.CHUNK: IngestionStatus.CHUNKING,
    IngestionStage.EMBED: IngestionStatus.EMBEDDING,
}

TOTAL_STAGES = len(IngestionStage)


class UploadArtifact(BaseModel):
    """Result of the upload stage."""

    model_config = ConfigDict(frozen=True)

    product_id: str
    target: str = Field(description="Storage target (bucket) the bytes were written to")
    locator: str = Field(description="Durable blob locator")
    signed_url: str = Field(description="Short-lived URL for read-back")
    size_bytes: int = Field(ge=0)


class EmbedOutcome(BaseModel):
    """Counts reported by the embed stage.

    ``processed_count + failed_count`` equals the number of chunks that
    needed a vector; ``skipped_count`` counts chunks that already had one.
    """

    model_config = ConfigDict(frozen=True)

    processed_count: int = 0
    failed_count: int = 0
    skipped_count: int = 0

    @property
    def attempted(self) -> int:
        return self.processed_count + self.failed_count


class IngestionResult(BaseModel):
    """Final result of an end-to-end pipeline run."""

    model_config = ConfigDict(frozen=True)

    product_id: str
    status: IngestionStatus
    chunk_count: int = 0
    embed: EmbedOutcome | None = None
    # Stages actually executed in this run; resumed runs skip earlier ones.
    stages_run: list[IngestionStage] = Field(default_factory=list)
    error: str | None = None


class StatusSnapshot(BaseModel):
    """Read-only view served to pollers."""

    model_config = ConfigDict(frozen=True)

    product_id: str
    status: IngestionStatus
    progress_percent: float = Field(ge=0.0, le=100.0)
    chunk_count: int = 0
    metadata: dict[str, Any] = Field(default_factory=dict)
