"""Durable ingestion status tracking with listener notification.

Every status change of a product goes through :class:`StatusTracker`, which

1. validates the transition against the ``IngestionStatus`` state machine,
2. persists the new status and progress percent on the product row,
3. appends a ``ProcessingLogEntry`` to the audit log,
4. notifies registered listeners with ``(product_id, status, percent)``.

# ─── HOW PROGRESS IS COMPUTED ──────────────────────────────────────────
#
# Progress is driven by real stage completion, never by a timer:
#
#   pending_upload / uploading            ->   0
#   uploaded / processing / extracting    ->  25
#   chunking                              ->  50
#   embedding                             ->  75 + min(processed * 2, 24)
#   completed                             -> 100
#   failed                                -> last recorded percent
#
# Pollers read the persisted snapshot only (get_status); nothing here is
# kept in process memory except the listener callbacks.
# ──────────────────────────────────────────────────────────────────────
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from typing import Any

import structlog

from iqrchat.interfaces.ingestion_store import IIngestionStore
from iqrchat.models.pipeline import StatusSnapshot
from iqrchat.models.product import (
    IngestionStatus,
    ProcessingLogEntry,
    Product,
    is_valid_transition,
)
from iqrchat.utils.errors import PipelineError
from iqrchat.utils.logging import get_logger

DEFAULT_PROGRESS_PER_CHUNK = 2
DEFAULT_PROGRESS_CAP = 24

_BASE_PERCENT: dict[IngestionStatus, float] = {
    IngestionStatus.PENDING_UPLOAD: 0.0,
    IngestionStatus.UPLOADING: 0.0,
    IngestionStatus.UPLOADED: 25.0,
    IngestionStatus.PROCESSING: 25.0,
    IngestionStatus.EXTRACTING: 25.0,
    IngestionStatus.CHUNKING: 50.0,
    IngestionStatus.EMBEDDING: 75.0,
    IngestionStatus.COMPLETED: 100.0,
}


class StatusTracker:
    """Persists product status transitions and broadcasts progress."""

    def __init__(
        self,
        store: IIngestionStore,
        progress_per_chunk: int = DEFAULT_PROGRESS_PER_CHUNK,
        progress_cap: int = DEFAULT_PROGRESS_CAP,
    ) -> None:
        self._store = store
        self._per_chunk = progress_per_chunk
        self._cap = progress_cap
        self._listeners: dict[str, list[Callable]] = {}
        self._logger: structlog.BoundLogger = get_logger(__name__)

    # ------------------------------------------------------------------
    # Progress arithmetic
    # ------------------------------------------------------------------

    def percent_for(
        self,
        status: IngestionStatus,
        processed: int = 0,
        last_percent: float = 0.0,
    ) -> float:
        """Return the progress percent for *status*.

        *processed* only matters while embedding; *last_percent* is what a
        failed product reports.
        """
        if status is IngestionStatus.FAILED:
            return last_percent
        base = _BASE_PERCENT[status]
        if status is IngestionStatus.EMBEDDING:
            return base + min(max(processed, 0) * self._per_chunk, self._cap)
        return base

    # ------------------------------------------------------------------
    # Status transitions
    # ------------------------------------------------------------------

    async def transition(
        self,
        product_id: str,
        target: IngestionStatus,
        action: str | None = None,
        details: dict[str, Any] | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> Product:
        """Move the product to *target*, persist, log and notify.

        Raises
        ------
        PipelineError
            If the product does not exist or the transition is illegal.
        """
        product = await self._require_product(product_id)
        current = product.status
        if not is_valid_transition(current, target):
            raise PipelineError(
                f"Illegal status transition {current.value} -> {target.value} "
                f"for product {product_id}"
            )

        last_percent = float(product.metadata.get("progress_percent", 0.0))
        percent = self.percent_for(target, last_percent=last_percent)
        new_metadata = {**product.metadata, **(metadata or {}), "progress_percent": percent}
        if target is not IngestionStatus.FAILED:
            new_metadata.pop("error", None)
        saved = await self._store.save_product(
            product.model_copy(update={"status": target, "metadata": new_metadata})
        )

        log_details = {"from": current.value, "to": target.value, **(details or {})}
        await self._store.append_log(
            ProcessingLogEntry(
                product_id=product_id,
                action=action or f"status_{target.value}",
                details=log_details,
            )
        )
        self._logger.info(
            "ingestion_status_changed",
            product_id=product_id,
            from_status=current.value,
            to_status=target.value,
            progress=percent,
        )
        await self._notify_listeners(product_id, target, percent)
        return saved

    async def mark_failed(self, product_id: str, stage: str, error: str) -> Product:
        """Record a stage failure: status ``failed``, error in metadata and log."""
        product = await self._require_product(product_id)
        if product.status is IngestionStatus.COMPLETED:
            # A completed product is not demoted by a late failure; the
            # audit log still records it.
            await self.log(product_id, f"{stage}_failed", {"stage": stage, "error": error})
            return product
        return await self.transition(
            product_id,
            IngestionStatus.FAILED,
            action=f"{stage}_failed",
            details={"stage": stage, "error": error},
            metadata={"error": error, "failed_stage": stage},
        )

    async def report_embed_progress(self, product_id: str, processed: int) -> float:
        """Persist the embedding percent for *processed* chunks.

        The stored percent never decreases during one embed run.
        """
        product = await self._require_product(product_id)
        last_percent = float(product.metadata.get("progress_percent", 0.0))
        percent = max(last_percent, self.percent_for(IngestionStatus.EMBEDDING, processed))
        if percent != last_percent:
            await self._store.save_product(
                product.model_copy(
                    update={
                        "metadata": {
                            **product.metadata,
                            "progress_percent": percent,
                            "processed_count": processed,
                        }
                    }
                )
            )
            await self._notify_listeners(product_id, product.status, percent)
        return percent

    async def update_metadata(self, product_id: str, **fields: Any) -> Product:
        """Merge *fields* into the product metadata without a status change."""
        product = await self._require_product(product_id)
        return await self._store.save_product(
            product.model_copy(update={"metadata": {**product.metadata, **fields}})
        )

    async def log(self, product_id: str, action: str, details: dict[str, Any] | None = None) -> None:
        """Append an audit entry that is not a status change."""
        await self._store.append_log(
            ProcessingLogEntry(product_id=product_id, action=action, details=details or {})
        )

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------

    async def get_status(self, product_id: str) -> StatusSnapshot | None:
        """Return the last persisted snapshot, or ``None`` for unknown products."""
        product = await self._store.get_product(product_id)
        if product is None:
            return None
        chunk_count = await self._store.count_chunks(product_id)
        return StatusSnapshot(
            product_id=product_id,
            status=product.status,
            progress_percent=float(product.metadata.get("progress_percent", 0.0)),
            chunk_count=chunk_count,
            metadata=dict(product.metadata),
        )

    # ------------------------------------------------------------------
    # Listeners
    # ------------------------------------------------------------------

    def register_listener(self, product_id: str, callback: Callable) -> None:
        """Register a sync or async ``callback(product_id, status, percent)``."""
        listeners = self._listeners.setdefault(product_id, [])
        if callback not in listeners:
            listeners.append(callback)

    def unregister_listener(self, product_id: str, callback: Callable) -> None:
        listeners = self._listeners.get(product_id, [])
        if callback in listeners:
            listeners.remove(callback)
        if not listeners:
            self._listeners.pop(product_id, None)

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    async def _require_product(self, product_id: str) -> Product:
        product = await self._store.get_product(product_id)
        if product is None:
            raise PipelineError(f"Unknown product: {product_id}")
        return product

    async def _notify_listeners(
        self,
        product_id: str,
        status: IngestionStatus,
        percent: float,
    ) -> None:
        """Invoke the product's listeners; a failing listener is logged and skipped."""
        for callback in list(self._listeners.get(product_id, [])):
            try:
                result = callback(product_id, status, percent)
                if asyncio.iscoroutine(result):
                    await result
            except Exception as exc:
                self._logger.warning(
                    "listener_callback_error",
                    product_id=product_id,
                    error=str(exc),
                    callback=getattr(callback, "__name__", repr(callback)),
                )
