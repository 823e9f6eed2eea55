"""OCR orchestration service with multi-provider fallback chain.

Manages a priority-ordered list of OCR providers and tries each in turn
until one returns a document containing text.  The default order is
``mistral-ocr`` → ``pymupdf``.

Architecture: Fallback Chain
----------------------------
Unlike a confidence-scored chain, document OCR has a binary quality gate:
either a provider returned text or it did not.  The chain short-circuits on
the first document with text.  A provider that succeeds but returns only
blank pages is remembered so the caller can be told *no text was found*
(:class:`NoTextExtractedError`) rather than *every provider failed*
(:class:`ExtractionError`); the two lead to different remediation.
"""

from __future__ import annotations

from iqrchat.interfaces.ocr_provider import IOCRProvider, OCRDocument
from iqrchat.utils.errors import ExtractionError, NoTextExtractedError
from iqrchat.utils.logging import get_logger

DEFAULT_PAGE_SEPARATOR = "\n\n"


class OCRService:
    """Orchestrates text extraction across multiple OCR providers.

    Providers are tried in the order supplied at construction time.  The
    first document with non-blank text is returned.
    """

    def __init__(
        self,
        providers: list[IOCRProvider],
        page_separator: str = DEFAULT_PAGE_SEPARATOR,
    ) -> None:
        self._providers = providers
        self._page_separator = page_separator
        self._logger = get_logger(__name__)

    @property
    def page_separator(self) -> str:
        return self._page_separator

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def extract(self, document: bytes) -> OCRDocument:
        """Run OCR on *document* using the provider fallback chain.

        Raises
        ------
        NoTextExtractedError
            If at least one provider ran but none produced text.
        ExtractionError
            If every provider is unavailable or raised.
        """
        blank_result: OCRDocument | None = None
        errors: list[str] = []

        for provider in self._providers:
            name = provider.get_provider_name()

            if not provider.is_available():
                self._logger.warning("ocr_provider_unavailable", provider=name)
                continue

            try:
                self._logger.info("ocr_provider_attempting", provider=name)
                result = await provider.extract(document)
            except Exception as exc:
                # Provider failures are non-fatal while other providers remain.
                self._logger.warning("ocr_provider_failed", provider=name, error=str(exc))
                errors.append(f"{name}: {exc}")
                continue

            if result.has_text:
                self._logger.info(
                    "ocr_provider_accepted",
                    provider=name,
                    page_count=result.page_count,
                )
                return result

            self._logger.warning("ocr_provider_no_text", provider=name)
            blank_result = blank_result or result

        if blank_result is not None:
            raise NoTextExtractedError(
                "No text extracted from document",
                provider_name=blank_result.provider,
            )
        detail = "; ".join(errors) if errors else "no provider available"
        raise ExtractionError(f"All OCR providers failed ({detail})")

    def join_pages(self, document: OCRDocument) -> tuple[str, list[int]]:
        """Join page texts with the separator.

        Returns the full text and the character offset at which every page
        starts, which the chunk stage uses to attribute chunks to pages.
        """
        offsets: list[int] = []
        cursor = 0
        for index, page in enumerate(document.pages):
            if index:
                cursor += len(self._page_separator)
            offsets.append(cursor)
            cursor += len(page)
        return self._page_separator.join(document.pages), offsets

    def get_available_providers(self) -> list[str]:
        """Return the names of providers that are currently available."""
        return [p.get_provider_name() for p in self._providers if p.is_available()]
