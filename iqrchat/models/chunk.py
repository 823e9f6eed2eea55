"""Chunk models: the stored chunk and its wire-format record.

``ChunkRecord`` is the serialization contract shared with ingestion clients:
``{content, tokenStart, tokenEnd, charStart, charEnd}``.  Python code uses
the snake_case field names; JSON uses the camelCase aliases.

``Chunk`` is the persisted row: a ``ChunkRecord`` plus identity, content
hash, ordering and the (nullable) embedding vector.
"""

from __future__ import annotations

import hashlib
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator


def content_hash(content: str) -> str:
    """Return the SHA-256 hex digest used as the chunk dedupe key."""
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


class ChunkRecord(BaseModel):
    """A token- and character-addressed slice of extracted text."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    content: str = Field(min_length=1)
    token_start: int = Field(alias="tokenStart", ge=0)
    token_end: int = Field(alias="tokenEnd", ge=0)
    char_start: int = Field(alias="charStart", ge=0)
    char_end: int = Field(alias="charEnd", ge=0)

    @model_validator(mode="after")
    def _check_ranges(self) -> ChunkRecord:
        if self.token_start >= self.token_end:
            msg = f"tokenStart ({self.token_start}) must be < tokenEnd ({self.token_end})"
            raise ValueError(msg)
        if self.char_start > self.char_end:
            msg = f"charStart ({self.char_start}) must be <= charEnd ({self.char_end})"
            raise ValueError(msg)
        return self

    @property
    def token_count(self) -> int:
        return self.token_end - self.token_start


class Chunk(BaseModel):
    """A persisted chunk of a product's extracted text."""

    model_config = ConfigDict(frozen=True)

    id: int | None = None
    product_id: str
    content: str
    content_hash: str
    token_start: int
    token_end: int
    char_start: int
    char_end: int
    chunk_index: int = Field(ge=0)
    total_chunks: int = Field(ge=1)
    # ``None`` until the embed stage stores a vector.
    embedding: list[float] | None = None
    # page_start / page_end when page offsets are known.
    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def is_embedded(self) -> bool:
        return self.embedding is not None

    @classmethod
    def from_record(
        cls,
        record: ChunkRecord,
        product_id: str,
        chunk_index: int,
        total_chunks: int,
        metadata: dict[str, Any] | None = None,
    ) -> Chunk:
        """Build an un-embedded chunk from a chunker/wire record."""
        return cls(
            product_id=product_id,
            content=record.content,
            content_hash=content_hash(record.content),
            token_start=record.token_start,
            token_end=record.token_end,
            char_start=record.char_start,
            char_end=record.char_end,
            chunk_index=chunk_index,
            total_chunks=total_chunks,
            metadata=metadata or {},
        )

    def to_record(self) -> ChunkRecord:
        return ChunkRecord(
            content=self.content,
            token_start=self.token_start,
            token_end=self.token_end,
            char_start=self.char_start,
            char_end=self.char_end,
        )
