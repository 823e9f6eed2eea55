"""Abstract base class for document OCR providers.

OCR turns PDF bytes into per-page text.  Model internals are opaque; only
the input (document bytes) and the output (pages of text) matter to the
pipeline.  The OCR service (iqrchat/services/ocr_service.py) tries providers
in configured priority order.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field


@dataclass(frozen=True)
class OCRDocument:
    """Per-page text returned by an OCR provider."""

    pages: list[str] = field(default_factory=list)
    provider: str = ""

    @property
    def page_count(self) -> int:
        return len(self.pages)

    @property
    def has_text(self) -> bool:
        return any(page.strip() for page in self.pages)


# Concrete implementations: MistralOCRProvider, PyMuPDFTextProvider
# Located in: iqrchat/providers/ocr/
class IOCRProvider(ABC):
    """Contract for services that extract text from PDF documents."""

    @abstractmethod
    async def extract(self, document: bytes) -> OCRDocument:
        """Run OCR on *document* and return its pages.

        Parameters
        ----------
        document:
            Raw PDF bytes.

        Returns
        -------
        OCRDocument
            One text entry per page, in page order.

        Raises
        ------
        iqrchat.utils.errors.ExtractionError
            If the engine fails.
        """

    @abstractmethod
    def get_provider_name(self) -> str:
        """Return a short identifier, e.g. ``"mistral-ocr"``."""

    @abstractmethod
    def is_available(self) -> bool:
        """Return ``True`` if credentials/binaries are present."""
