"""OCR provider implementations for PDF text extraction.

Two implementations of IOCRProvider, tried in priority order by ocr_service.py:
    1. MistralOCRProvider -- Mistral's document OCR model over HTTPS.  Reads
       scanned pages and returns per-page markdown.  Primary provider.
    2. PyMuPDFTextProvider -- reads the PDF's embedded text layer locally.
       No network and no key, but scanned pages come back empty.
"""

from iqrchat.providers.ocr.mistral_ocr_provider import MistralOCRProvider
from iqrchat.providers.ocr.pymupdf_provider import PyMuPDFTextProvider

__all__ = ["MistralOCRProvider", "PyMuPDFTextProvider"]
