"""Mistral document OCR provider.

Sends the PDF as a base64 ``data:`` URL to Mistral's ``/ocr`` endpoint and
returns the per-page markdown.  HTTP 429 responses raise
:class:`RateLimitError` and are retried with exponential backoff via
tenacity; every other non-2xx response fails the extraction immediately.
"""

from __future__ import annotations

import base64

import httpx
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from iqrchat.config.settings import Settings
from iqrchat.interfaces.ocr_provider import IOCRProvider, OCRDocument
from iqrchat.utils.errors import ExtractionError, RateLimitError
from iqrchat.utils.logging import get_logger

_MAX_RATE_LIMIT_ATTEMPTS = 3


class MistralOCRProvider(IOCRProvider):
    """OCR provider backed by the Mistral OCR API."""

    def __init__(
        self,
        settings: Settings,
        http_client: httpx.AsyncClient | None = None,
        retry_backoff_seconds: float = 2.0,
    ) -> None:
        self._api_key = settings.mistral_api_key
        self._base_url = settings.mistral_base_url.rstrip("/")
        self._model = settings.mistral_ocr_model
        self._timeout = settings.ocr_timeout_seconds
        self._http_client = http_client
        self._retry_backoff = retry_backoff_seconds
        self._logger = get_logger(__name__)

    # ------------------------------------------------------------------
    # IOCRProvider interface
    # ------------------------------------------------------------------

    async def extract(self, document: bytes) -> OCRDocument:
        if not document:
            raise ExtractionError(
                "Empty document supplied to OCR",
                provider_name=self.get_provider_name(),
            )

        payload = {
            "model": self._model,
            "document": {
                "type": "document_url",
                "document_url": "data:application/pdf;base64,"
                + base64.b64encode(document).decode("ascii"),
            },
            "include_image_base64": False,
        }

        retrying = AsyncRetrying(
            stop=stop_after_attempt(_MAX_RATE_LIMIT_ATTEMPTS),
            wait=wait_exponential(multiplier=self._retry_backoff, max=10),
            retry=retry_if_exception_type(RateLimitError),
            reraise=True,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    body = await self._post_ocr(payload)
        except RateLimitError as exc:
            raise ExtractionError(
                f"Mistral OCR rate limited after {_MAX_RATE_LIMIT_ATTEMPTS} attempts",
                provider_name=self.get_provider_name(),
            ) from exc

        raw_pages = body.get("pages") if isinstance(body, dict) else None
        if not isinstance(raw_pages, list):
            raise ExtractionError(
                "Invalid structure in Mistral OCR response",
                provider_name=self.get_provider_name(),
            )

        ordered = sorted(raw_pages, key=lambda page: page.get("index", 0))
        pages = [str(page.get("markdown") or "") for page in ordered]
        self._logger.info(
            "ocr_extraction_complete",
            provider=self.get_provider_name(),
            model=self._model,
            page_count=len(pages),
            characters=sum(len(page) for page in pages),
        )
        return OCRDocument(pages=pages, provider=self.get_provider_name())

    def get_provider_name(self) -> str:
        return "mistral-ocr"

    def is_available(self) -> bool:
        return bool(self._api_key)

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    async def _post_ocr(self, payload: dict) -> dict:
        headers = {
            "Authorization": f"Bearer {self._api_key}",
            "Accept": "application/json",
        }
        url = f"{self._base_url}/ocr"
        try:
            if self._http_client is not None:
                response = await self._http_client.post(
                    url, json=payload, headers=headers, timeout=self._timeout
                )
            else:
                async with httpx.AsyncClient(timeout=self._timeout) as client:
                    response = await client.post(url, json=payload, headers=headers)
        except httpx.TimeoutException as exc:
            raise ExtractionError(
                f"Mistral OCR timed out after {self._timeout:.0f}s",
                provider_name=self.get_provider_name(),
            ) from exc
        except httpx.HTTPError as exc:
            raise ExtractionError(
                f"Mistral OCR request failed: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc

        if response.status_code == 429:
            self._logger.warning(
                "ocr_rate_limited",
                provider=self.get_provider_name(),
                retry_after=response.headers.get("Retry-After"),
            )
            raise RateLimitError(
                "Mistral OCR rate limit exceeded",
                provider_name=self.get_provider_name(),
            )
        if response.is_error:
            raise ExtractionError(
                f"Mistral OCR error: {response.status_code} - {response.text[:500]}",
                provider_name=self.get_provider_name(),
            )
        try:
            return response.json()
        except ValueError as exc:
            raise ExtractionError(
                "Mistral OCR returned a non-JSON body",
                provider_name=self.get_provider_name(),
            ) from exc
