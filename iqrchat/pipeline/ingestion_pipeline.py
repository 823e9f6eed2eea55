"""Four-stage document ingestion pipeline.

Coordinates the blob store, OCR service, chunker and embedding provider
into the Upload → Extract → Chunk → Embed sequence.  Every status change
goes through the injected :class:`StatusTracker`, which persists it, writes
the audit log and notifies listeners.

ARCHITECTURE NOTE:
    Each stage is an independently callable, independently retryable
    coroutine (upload, extract, chunk, embed).  ``run`` chains them and
    **resumes** from the first stage whose artifact is missing, so a run
    that failed while embedding does not re-upload or re-OCR the document.

    Each stage follows the same pattern:
        1. Enter the stage's status.  A product left in another working
           status by a dead run is first marked ``failed`` (stage and
           reason in the audit log), then the stage is entered.
        2. Do the work inside ``_stage_guard``.
        3. Persist the artifact and log it.
        4. On error: mark the product ``failed`` with the stage name and
           error text, then re-raise to the caller.

    Embedding is the only stage that absorbs errors: a chunk whose
    embedding call exhausts its retries is counted and skipped while the
    rest continue.

    There is no process-wide registry of running ingestions.  Callers that
    run the pipeline in the background hold the task handle themselves; a
    cancelled task marks the active stage ``failed`` with reason
    ``cancelled`` and then lets the cancellation propagate.
"""

from __future__ import annotations

import asyncio
import uuid
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import structlog
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from iqrchat.interfaces.blob_store import IBlobStore
from iqrchat.interfaces.embedding_provider import IEmbeddingProvider
from iqrchat.interfaces.ingestion_store import IIngestionStore
from iqrchat.models.chunk import Chunk, ChunkRecord, content_hash
from iqrchat.models.pipeline import (
    EmbedOutcome,
    IngestionResult,
    IngestionStage,
    UploadArtifact,
)
from iqrchat.models.product import (
    STATUS_ORDER,
    ExtractedText,
    IngestionStatus,
    Product,
    is_valid_transition,
)
from iqrchat.pipeline.status_tracker import StatusTracker
from iqrchat.services.ingestion.chunker import TokenChunker, page_range
from iqrchat.services.ocr_service import OCRService
from iqrchat.utils.concurrency import batched, throttled_gather
from iqrchat.utils.errors import (
    ChunkingError,
    EmbeddingError,
    IQRChatError,
    NoTextExtractedError,
    PipelineError,
    StorageError,
)
from iqrchat.utils.logging import get_logger, log_context

DEFAULT_STORAGE_TARGETS: tuple[str, ...] = ("pdfs", "product-pdfs", "documents", "files")
DEFAULT_SIGNED_URL_TTL = 30 * 60
DOCUMENT_KEY_TEMPLATE = "products/{product_id}/document.pdf"

_PDF_MAGIC = b"%PDF"

# Stage a working status belongs to, for failures found on re-entry.
_STAGE_FOR_STATUS: dict[IngestionStatus, IngestionStage] = {
    IngestionStatus.UPLOADING: IngestionStage.UPLOAD,
    IngestionStatus.UPLOADED: IngestionStage.UPLOAD,
    IngestionStatus.PROCESSING: IngestionStage.EXTRACT,
    IngestionStatus.EXTRACTING: IngestionStage.EXTRACT,
    IngestionStatus.CHUNKING: IngestionStage.CHUNK,
    IngestionStatus.EMBEDDING: IngestionStage.EMBED,
}


class IngestionPipeline:
    """Runs and resumes the ingestion stages for one product at a time.

    All collaborators are injected; nothing is created here.  Retry and
    concurrency knobs default to the values in ``config/config.yaml``.
    """

    def __init__(
        self,
        store: IIngestionStore,
        blob_store: IBlobStore,
        ocr_service: OCRService,
        chunker: TokenChunker,
        embedding_provider: IEmbeddingProvider,
        tracker: StatusTracker,
        storage_targets: tuple[str, ...] | list[str] = DEFAULT_STORAGE_TARGETS,
        signed_url_ttl: int = DEFAULT_SIGNED_URL_TTL,
        batch_size: int = 10,
        max_workers: int = 5,
        max_retries: int = 3,
        backoff_seconds: float = 1.0,
        embed_timeout: float = 30.0,
    ) -> None:
        self._store = store
        self._blob_store = blob_store
        self._ocr_service = ocr_service
        self._chunker = chunker
        self._embedder = embedding_provider
        self._tracker = tracker
        self._storage_targets = tuple(storage_targets)
        self._signed_url_ttl = signed_url_ttl
        self._batch_size = batch_size
        self._max_workers = max_workers
        self._max_retries = max(1, max_retries)
        self._backoff = backoff_seconds
        self._embed_timeout = embed_timeout
        self._logger: structlog.BoundLogger = get_logger(__name__)

    @property
    def tracker(self) -> StatusTracker:
        return self._tracker

    # ------------------------------------------------------------------
    # Products
    # ------------------------------------------------------------------

    async def create_product(
        self,
        business_id: str,
        name: str,
        description: str | None = None,
        system_prompt: str | None = None,
        product_id: str | None = None,
    ) -> Product:
        """Create a product in ``pending_upload``."""
        product = await self._store.create_product(
            Product(
                id=product_id or str(uuid.uuid4()),
                business_id=business_id,
                name=name,
                description=description,
                system_prompt=system_prompt,
            )
        )
        await self._tracker.log(
            product.id, "product_created", {"business_id": business_id, "name": name}
        )
        self._logger.info("product_created", product_id=product.id, business_id=business_id)
        return product

    # ------------------------------------------------------------------
    # Stage 1: Upload
    # ------------------------------------------------------------------

    async def upload(
        self,
        product_id: str,
        data: bytes,
        filename: str = "document.pdf",
    ) -> UploadArtifact:
        """Store the document bytes and record the durable locator.

        Not retried automatically; a failed upload is retried by calling
        this again.  The key is deterministic so a re-upload overwrites the
        previous bytes at the same locator.
        """
        await self._ensure_product(product_id, filename)
        await self._enter(product_id, IngestionStatus.UPLOADING)

        async with self._stage_guard(product_id, IngestionStage.UPLOAD):
            if not data:
                raise StorageError("Uploaded document is empty")
            if not data.startswith(_PDF_MAGIC):
                raise StorageError(f"Only PDF documents are accepted ({filename})")

            available = await self._blob_store.list_targets()
            target = self._choose_target(available)
            if target is None:
                raise StorageError(
                    "No storage target available",
                    provider_name=self._blob_store.get_provider_name(),
                )

            key = DOCUMENT_KEY_TEMPLATE.format(product_id=product_id)
            locator = await self._blob_store.put(target, key, data)
            signed_url = self._blob_store.signed_url(locator, self._signed_url_ttl)

            product = await self._require_product(product_id)
            await self._store.save_product(product.model_copy(update={"source_locator": locator}))
            await self._tracker.transition(
                product_id,
                IngestionStatus.UPLOADED,
                action="document_uploaded",
                details={"target": target, "locator": locator, "size_bytes": len(data)},
                metadata={"filename": filename, "storage_target": target, "size_bytes": len(data)},
            )

        self._logger.info(
            "document_uploaded",
            product_id=product_id,
            target=target,
            size_bytes=len(data),
        )
        return UploadArtifact(
            product_id=product_id,
            target=target,
            locator=locator,
            signed_url=signed_url,
            size_bytes=len(data),
        )

    # ------------------------------------------------------------------
    # Stage 2: Extract
    # ------------------------------------------------------------------

    async def extract(self, product_id: str) -> ExtractedText:
        """OCR the uploaded document and persist one ``ExtractedText`` row."""
        await self._ensure_product(product_id)
        product = await self._require_product(product_id)
        if product.status is not IngestionStatus.EXTRACTING:
            if _before(product.status, IngestionStatus.PROCESSING) or product.status.is_terminal:
                await self._enter(product_id, IngestionStatus.PROCESSING)
            await self._enter(product_id, IngestionStatus.EXTRACTING)

        async with self._stage_guard(product_id, IngestionStage.EXTRACT):
            product = await self._require_product(product_id)
            locator = product.source_locator
            if not locator:
                raise PipelineError(f"No uploaded document for product {product_id}")

            url = self._blob_store.signed_url(locator, self._signed_url_ttl)
            document = await self._blob_store.read_signed_url(url)
            ocr_result = await self._ocr_service.extract(document)
            raw_text, page_offsets = self._ocr_service.join_pages(ocr_result)
            if not raw_text.strip():
                raise NoTextExtractedError(provider_name=ocr_result.provider)

            extracted = await self._store.add_extracted_text(
                ExtractedText(
                    product_id=product_id,
                    raw_text=raw_text,
                    source_locator=locator,
                    extraction_method=ocr_result.provider,
                    page_count=ocr_result.page_count,
                    metadata={
                        "needs_chunking": True,
                        "needs_embedding": True,
                        "page_offsets": page_offsets,
                    },
                )
            )
            await self._tracker.log(
                product_id,
                "text_extracted",
                {
                    "extraction_method": ocr_result.provider,
                    "page_count": ocr_result.page_count,
                    "characters": len(raw_text),
                },
            )
            await self._tracker.update_metadata(
                product_id,
                page_count=ocr_result.page_count,
                extraction_method=ocr_result.provider,
                text_length=len(raw_text),
            )

        self._logger.info(
            "text_extracted",
            product_id=product_id,
            provider=ocr_result.provider,
            page_count=ocr_result.page_count,
            characters=len(raw_text),
        )
        return extracted

    # ------------------------------------------------------------------
    # Stage 3: Chunk
    # ------------------------------------------------------------------

    async def chunk(
        self,
        product_id: str,
        chunk_size: int | None = None,
        overlap: int | None = None,
    ) -> list[Chunk]:
        """Chunk the newest extraction and upsert the chunks without vectors."""
        await self._require_product(product_id)
        await self._enter(product_id, IngestionStatus.CHUNKING)

        async with self._stage_guard(product_id, IngestionStage.CHUNK):
            extracted = await self._store.latest_extracted_text(product_id)
            if extracted is None:
                raise PipelineError(f"No extracted text for product {product_id}")

            records = self._chunker.chunk(extracted.raw_text, chunk_size, overlap)
            if not records:
                raise ChunkingError("Chunker produced no chunks")

            stored, pruned = await self._persist_records(
                product_id, records, extracted.page_offsets
            )
            await self._tracker.log(
                product_id,
                "chunks_created",
                {
                    "chunk_count": len(stored),
                    "chunk_size": chunk_size or self._chunker.chunk_size,
                    "overlap": self._chunker.overlap if overlap is None else overlap,
                    "pruned": pruned,
                },
            )
            await self._tracker.update_metadata(product_id, chunk_count=len(stored))

        self._logger.info("chunks_created", product_id=product_id, chunk_count=len(stored))
        return stored

    async def submit_chunks(self, product_id: str, records: list[ChunkRecord]) -> list[Chunk]:
        """Store externally produced chunk records in place of the chunk stage.

        The product must already hold an extraction; page metadata is
        derived from its page offsets.  Existing vectors survive for chunks
        whose content is unchanged.
        """
        await self._require_product(product_id)
        await self._enter(product_id, IngestionStatus.CHUNKING)

        async with self._stage_guard(product_id, IngestionStage.CHUNK):
            if not records:
                raise ChunkingError("No chunks submitted")
            extracted = await self._store.latest_extracted_text(product_id)
            offsets = extracted.page_offsets if extracted is not None else []

            stored, pruned = await self._persist_records(product_id, records, offsets)
            await self._tracker.log(
                product_id,
                "chunks_submitted",
                {"chunk_count": len(stored), "pruned": pruned},
            )
            await self._tracker.update_metadata(product_id, chunk_count=len(stored))

        self._logger.info("chunks_submitted", product_id=product_id, chunk_count=len(stored))
        return stored

    async def _persist_records(
        self,
        product_id: str,
        records: list[ChunkRecord],
        page_offsets: list[int],
    ) -> tuple[list[Chunk], int]:
        """Dedupe, upsert and prune; returns the stored chunks and the pruned count."""
        # Identical windows share a content hash; only the first is kept.
        unique: list[ChunkRecord] = []
        seen: set[str] = set()
        for record in records:
            digest = content_hash(record.content)
            if digest not in seen:
                seen.add(digest)
                unique.append(record)

        chunks: list[Chunk] = []
        for index, record in enumerate(unique):
            metadata: dict[str, int] = {}
            pages = page_range(record.char_start, record.char_end, page_offsets)
            if pages is not None:
                metadata = {"page_start": pages[0], "page_end": pages[1]}
            chunks.append(Chunk.from_record(record, product_id, index, len(unique), metadata))

        stored = await self._store.upsert_chunks(chunks)
        pruned = await self._store.prune_chunks(product_id, seen)
        return stored, pruned

    # ------------------------------------------------------------------
    # Stage 4: Embed
    # ------------------------------------------------------------------

    async def embed(self, product_id: str) -> EmbedOutcome:
        """Embed every chunk still missing a vector.

        Batches run sequentially; chunks within a batch run concurrently
        under a semaphore.  The product ends ``completed`` unless every
        attempted chunk failed, in which case it ends ``failed``.
        """
        await self._require_product(product_id)
        await self._enter(product_id, IngestionStatus.EMBEDDING)

        async with self._stage_guard(product_id, IngestionStage.EMBED):
            all_chunks = await self._store.list_chunks(product_id)
            if not all_chunks:
                raise PipelineError(f"No chunks to embed for product {product_id}")

            pending = [c for c in all_chunks if not c.is_embedded]
            skipped = len(all_chunks) - len(pending)
            processed = 0
            failed = 0
            semaphore = asyncio.Semaphore(self._max_workers)

            for batch in batched(pending, self._batch_size):
                results = await throttled_gather(
                    [self._embed_chunk(c) for c in batch],
                    semaphore=semaphore,
                )
                for chunk, result in zip(batch, results):
                    if isinstance(result, Exception):
                        failed += 1
                        self._logger.warning(
                            "chunk_embedding_failed",
                            product_id=product_id,
                            chunk_index=chunk.chunk_index,
                            error=str(result),
                        )
                    elif isinstance(result, BaseException):
                        raise result
                    else:
                        processed += 1
                await self._tracker.report_embed_progress(product_id, processed)

            outcome = EmbedOutcome(
                processed_count=processed,
                failed_count=failed,
                skipped_count=skipped,
            )
            counts = {
                "processed_count": processed,
                "failed_count": failed,
                "skipped_count": skipped,
            }

            if failed and processed + skipped == 0:
                await self._tracker.mark_failed(
                    product_id,
                    IngestionStage.EMBED.value,
                    f"All {failed} chunks failed embedding",
                )
                await self._tracker.update_metadata(product_id, **counts)
            else:
                await self._tracker.transition(
                    product_id,
                    IngestionStatus.COMPLETED,
                    action="embedding_completed",
                    details=counts,
                    metadata={**counts, "embedded_count": processed + skipped},
                )

        self._logger.info("embedding_finished", product_id=product_id, **counts)
        return outcome

    async def retry_missing_embeddings(self, product_id: str) -> EmbedOutcome:
        """Re-run the embed stage for chunks whose vector is still missing."""
        await self._require_product(product_id)
        missing = len(await self._store.list_chunks(product_id, missing_embedding_only=True))
        await self._tracker.log(product_id, "retry_missing_embeddings", {"missing": missing})
        return await self.embed(product_id)

    # ------------------------------------------------------------------
    # End-to-end run
    # ------------------------------------------------------------------

    async def run(
        self,
        product_id: str,
        data: bytes | None = None,
        filename: str = "document.pdf",
        chunk_size: int | None = None,
        overlap: int | None = None,
    ) -> IngestionResult:
        """Run every stage, resuming after the last stage with an artifact.

        With *data* the document is (re-)uploaded and every stage runs.
        Without it the run resumes: an existing locator skips upload, an
        existing extraction skips extract, existing chunks skip chunking.
        Stage errors end the run with a ``failed`` result; cancellation
        propagates.
        """
        with log_context(product_id=product_id):
            return await self._run_stages(product_id, data, filename, chunk_size, overlap)

    async def _run_stages(
        self,
        product_id: str,
        data: bytes | None,
        filename: str,
        chunk_size: int | None,
        overlap: int | None,
    ) -> IngestionResult:
        stages_run: list[IngestionStage] = []
        embed_outcome: EmbedOutcome | None = None
        error: str | None = None

        try:
            fresh = data is not None
            if fresh:
                await self.upload(product_id, data, filename)
                stages_run.append(IngestionStage.UPLOAD)
            else:
                product = await self._require_product(product_id)
                if not product.source_locator:
                    raise PipelineError(f"No document uploaded for product {product_id}")

            if fresh or await self._store.latest_extracted_text(product_id) is None:
                await self.extract(product_id)
                stages_run.append(IngestionStage.EXTRACT)
                fresh = True

            if fresh or await self._store.count_chunks(product_id) == 0:
                await self.chunk(product_id, chunk_size, overlap)
                stages_run.append(IngestionStage.CHUNK)

            embed_outcome = await self.embed(product_id)
            stages_run.append(IngestionStage.EMBED)
        except IQRChatError as exc:
            error = str(exc)
            self._logger.error(
                "ingestion_run_failed",
                product_id=product_id,
                stages_run=[s.value for s in stages_run],
                error=error,
            )

        product = await self._store.get_product(product_id)
        status = product.status if product is not None else IngestionStatus.FAILED
        if error is None and status is IngestionStatus.FAILED and product is not None:
            error = product.metadata.get("error")
        return IngestionResult(
            product_id=product_id,
            status=status,
            chunk_count=await self._store.count_chunks(product_id),
            embed=embed_outcome,
            stages_run=stages_run,
            error=error,
        )

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _embed_retry_policy(self) -> AsyncRetrying:
        """Exponential backoff starting at ``backoff_seconds`` and doubling."""
        return AsyncRetrying(
            stop=stop_after_attempt(self._max_retries),
            wait=wait_exponential(multiplier=self._backoff, max=30),
            retry=retry_if_exception_type((EmbeddingError, asyncio.TimeoutError)),
            reraise=True,
        )

    async def _embed_chunk(self, chunk: Chunk) -> None:
        """Embed one chunk under the retry policy and store its vector."""
        async for attempt in self._embed_retry_policy():
            with attempt:
                vector = await asyncio.wait_for(
                    self._embedder.embed_single(chunk.content),
                    timeout=self._embed_timeout,
                )
                if not vector:
                    raise EmbeddingError(
                        "Empty embedding vector",
                        provider_name=self._embedder.get_provider_name(),
                    )
        await self._store.set_chunk_embedding(chunk.id, list(vector))

    @asynccontextmanager
    async def _stage_guard(self, product_id: str, stage: IngestionStage) -> AsyncIterator[None]:
        """Mark the product failed if the stage body raises or is cancelled."""
        try:
            yield
        except asyncio.CancelledError:
            self._logger.warning("stage_cancelled", product_id=product_id, stage=stage.value)
            await self._record_failure(product_id, stage, "cancelled")
            raise
        except Exception as exc:
            self._logger.error(
                "stage_failed",
                product_id=product_id,
                stage=stage.value,
                error=str(exc),
            )
            await self._record_failure(product_id, stage, str(exc))
            raise

    async def _record_failure(self, product_id: str, stage: IngestionStage, reason: str) -> None:
        try:
            await self._tracker.mark_failed(product_id, stage.value, reason)
        except IQRChatError as exc:
            # The original stage error is re-raised by the caller.
            self._logger.error(
                "stage_failure_not_recorded",
                product_id=product_id,
                stage=stage.value,
                error=str(exc),
            )

    async def _enter(self, product_id: str, status: IngestionStatus) -> Product:
        product = await self._require_product(product_id)
        if product.status is status:
            return product
        if not is_valid_transition(product.status, status):
            # A run that died mid-stage leaves a working status behind;
            # record it as failed so the stage can be entered again.
            stale = product.status
            reason = f"Interrupted while {stale.value}; restarting at {status.value}"
            self._logger.warning(
                "stale_stage_recovered",
                product_id=product_id,
                stale_status=stale.value,
                target=status.value,
            )
            await self._tracker.mark_failed(product_id, _STAGE_FOR_STATUS[stale].value, reason)
        return await self._tracker.transition(product_id, status)

    async def _ensure_product(self, product_id: str, name: str | None = None) -> Product:
        """Return the product, creating a minimal one when it does not exist."""
        product = await self._store.get_product(product_id)
        if product is not None:
            return product
        self._logger.info("product_autocreated", product_id=product_id)
        product = await self._store.create_product(
            Product(id=product_id, business_id="", name=name or f"Product {product_id}")
        )
        await self._tracker.log(product_id, "product_created", {"autocreated": True})
        return product

    async def _require_product(self, product_id: str) -> Product:
        product = await self._store.get_product(product_id)
        if product is None:
            raise PipelineError(f"Unknown product: {product_id}")
        return product

    def _choose_target(self, available: list[str]) -> str | None:
        for preferred in self._storage_targets:
            if preferred in available:
                return preferred
        return available[0] if available else None


def _before(status: IngestionStatus, reference: IngestionStatus) -> bool:
    return (
        status in STATUS_ORDER
        and STATUS_ORDER.index(status) < STATUS_ORDER.index(reference)
    )
