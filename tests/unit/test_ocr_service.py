"""Unit tests for OCRService -- provider fallback chain and page joining."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest

from iqrchat.interfaces.ocr_provider import IOCRProvider, OCRDocument
from iqrchat.providers.ocr.pymupdf_provider import PyMuPDFTextProvider
from iqrchat.services.ocr_service import OCRService
from iqrchat.utils.errors import ExtractionError, NoTextExtractedError
from tests.conftest import build_pdf

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _mock_provider(
    name: str,
    result: OCRDocument | None = None,
    error: Exception | None = None,
    available: bool = True,
) -> MagicMock:
    provider = MagicMock(spec=IOCRProvider)
    provider.get_provider_name.return_value = name
    provider.is_available.return_value = available
    provider.extract = AsyncMock(return_value=result, side_effect=error)
    return provider


# ---------------------------------------------------------------------------
# Fallback chain
# ---------------------------------------------------------------------------


class TestFallbackChain:
    @pytest.mark.asyncio
    async def test_first_provider_with_text_wins(self) -> None:
        first = _mock_provider("mistral-ocr", OCRDocument(pages=["hello"], provider="mistral-ocr"))
        second = _mock_provider("pymupdf", OCRDocument(pages=["other"], provider="pymupdf"))

        result = await OCRService([first, second]).extract(b"%PDF")

        assert result.provider == "mistral-ocr"
        second.extract.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_failing_provider_falls_through(self) -> None:
        first = _mock_provider("mistral-ocr", error=ExtractionError("down"))
        second = _mock_provider("pymupdf", OCRDocument(pages=["text"], provider="pymupdf"))

        result = await OCRService([first, second]).extract(b"%PDF")

        assert result.provider == "pymupdf"

    @pytest.mark.asyncio
    async def test_unavailable_provider_skipped(self) -> None:
        first = _mock_provider("mistral-ocr", available=False)
        second = _mock_provider("pymupdf", OCRDocument(pages=["text"], provider="pymupdf"))

        await OCRService([first, second]).extract(b"%PDF")

        first.extract.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_blank_pages_raise_no_text(self) -> None:
        blank = _mock_provider("pymupdf", OCRDocument(pages=["", "  "], provider="pymupdf"))

        with pytest.raises(NoTextExtractedError):
            await OCRService([blank]).extract(b"%PDF")

    @pytest.mark.asyncio
    async def test_all_failing_raise_extraction_error(self) -> None:
        first = _mock_provider("mistral-ocr", error=ExtractionError("down"))

        with pytest.raises(ExtractionError, match="All OCR providers failed") as excinfo:
            await OCRService([first]).extract(b"%PDF")
        assert not isinstance(excinfo.value, NoTextExtractedError)

    @pytest.mark.asyncio
    async def test_no_providers(self) -> None:
        with pytest.raises(ExtractionError, match="no provider available"):
            await OCRService([]).extract(b"%PDF")

    def test_available_providers(self) -> None:
        service = OCRService(
            [_mock_provider("mistral-ocr", available=False), _mock_provider("pymupdf")]
        )
        assert service.get_available_providers() == ["pymupdf"]


# ---------------------------------------------------------------------------
# Page joining
# ---------------------------------------------------------------------------


class TestJoinPages:
    def test_offsets_point_at_page_starts(self) -> None:
        service = OCRService([])
        text, offsets = service.join_pages(OCRDocument(pages=["abc", "de", "f"]))

        assert text == "abc\n\nde\n\nf"
        assert offsets == [0, 5, 9]
        assert [text[o] for o in offsets] == ["a", "d", "f"]

    def test_custom_separator(self) -> None:
        service = OCRService([], page_separator="\f")
        text, offsets = service.join_pages(OCRDocument(pages=["ab", "cd"]))

        assert text == "ab\fcd"
        assert offsets == [0, 3]


# ---------------------------------------------------------------------------
# PyMuPDF text layer
# ---------------------------------------------------------------------------


class TestPyMuPDFTextProvider:
    @pytest.mark.asyncio
    async def test_reads_text_per_page(self) -> None:
        result = await PyMuPDFTextProvider().extract(build_pdf(["First page", "", "Third page"]))

        assert result.pages == ["First page", "", "Third page"]
        assert result.provider == "pymupdf"

    @pytest.mark.asyncio
    async def test_unreadable_bytes(self) -> None:
        with pytest.raises(ExtractionError, match="Unreadable PDF"):
            await PyMuPDFTextProvider().extract(b"not a pdf at all")
