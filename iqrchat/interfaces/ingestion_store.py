"""Abstract base class for ingestion persistence.

Holds products, extracted texts, chunks and the append-only processing log.
The chunk table is keyed on ``(product_id, content_hash)``: writes are
upserts so concurrent or repeated chunking never creates duplicate rows,
and an upsert never clears a vector that is already stored.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from iqrchat.models.chunk import Chunk
from iqrchat.models.product import ExtractedText, ProcessingLogEntry, Product


# Concrete implementations: SQLiteIngestionStore
# Located in: iqrchat/providers/storage/
class IIngestionStore(ABC):
    """Contract for product, extracted-text, chunk and audit-log persistence."""

    @abstractmethod
    async def initialize(self) -> None:
        """Create tables and indices if they do not exist."""

    # -- Products ------------------------------------------------------

    @abstractmethod
    async def create_product(self, product: Product) -> Product:
        """Insert *product*; returns the stored row.

        Inserting an id that already exists returns the existing row
        unchanged.
        """

    @abstractmethod
    async def get_product(self, product_id: str) -> Product | None:
        """Return the product or ``None``."""

    @abstractmethod
    async def save_product(self, product: Product) -> Product:
        """Persist status, locator, metadata and edits of *product*."""

    # -- Extracted text ------------------------------------------------

    @abstractmethod
    async def add_extracted_text(self, text: ExtractedText) -> ExtractedText:
        """Insert a new extraction; returns it with its id populated."""

    @abstractmethod
    async def latest_extracted_text(self, product_id: str) -> ExtractedText | None:
        """Return the newest extraction for the product, or ``None``."""

    # -- Chunks --------------------------------------------------------

    @abstractmethod
    async def upsert_chunks(self, chunks: list[Chunk]) -> list[Chunk]:
        """Insert or update chunks keyed on ``(product_id, content_hash)``.

        Offsets, ordering and metadata are refreshed; an existing embedding
        is preserved.  Returns the stored rows in ``chunk_index`` order.
        """

    @abstractmethod
    async def prune_chunks(self, product_id: str, keep_hashes: set[str]) -> int:
        """Delete the product's chunks whose hash is not in *keep_hashes*.

        Used after re-chunking a newer extraction so chunks of superseded
        text do not linger.  Returns the number of rows removed.
        """

    @abstractmethod
    async def list_chunks(
        self,
        product_id: str,
        missing_embedding_only: bool = False,
    ) -> list[Chunk]:
        """Return the product's chunks in ``chunk_index`` order."""

    @abstractmethod
    async def set_chunk_embedding(self, chunk_id: int, embedding: list[float]) -> None:
        """Store the vector for one chunk."""

    @abstractmethod
    async def count_chunks(self, product_id: str, embedded_only: bool = False) -> int:
        """Return the number of chunks (optionally only embedded ones)."""

    # -- Processing log ------------------------------------------------

    @abstractmethod
    async def append_log(self, entry: ProcessingLogEntry) -> ProcessingLogEntry:
        """Append an audit entry.  Entries are never updated or deleted."""

    @abstractmethod
    async def list_logs(self, product_id: str) -> list[ProcessingLogEntry]:
        """Return the product's audit entries, oldest first."""
