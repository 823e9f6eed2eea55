"""PyMuPDF text-layer provider.

Reads the embedded text layer of a PDF with ``fitz``.  No OCR model is
involved, so scanned documents yield empty pages; it serves as the
offline fallback behind Mistral OCR and as the local development engine.
"""

from __future__ import annotations

import asyncio

import fitz  # PyMuPDF

from iqrchat.interfaces.ocr_provider import IOCRProvider, OCRDocument
from iqrchat.utils.errors import ExtractionError
from iqrchat.utils.logging import get_logger


class PyMuPDFTextProvider(IOCRProvider):
    """Text extraction from the PDF text layer via PyMuPDF."""

    def __init__(self) -> None:
        self._logger = get_logger(__name__)

    async def extract(self, document: bytes) -> OCRDocument:
        try:
            pages = await asyncio.to_thread(self._read_pages, document)
        except (RuntimeError, ValueError) as exc:  # fitz.FileDataError is a RuntimeError
            raise ExtractionError(
                f"Unreadable PDF: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc

        self._logger.info(
            "ocr_extraction_complete",
            provider=self.get_provider_name(),
            page_count=len(pages),
            characters=sum(len(page) for page in pages),
        )
        return OCRDocument(pages=pages, provider=self.get_provider_name())

    def get_provider_name(self) -> str:
        return "pymupdf"

    def is_available(self) -> bool:
        return True

    @staticmethod
    def _read_pages(document: bytes) -> list[str]:
        with fitz.open(stream=document, filetype="pdf") as pdf:
            return [page.get_text("text").strip() for page in pdf]
