"""Custom exception hierarchy for iqrchat.

All application exceptions inherit from :class:`IQRChatError`, which carries
an optional ``provider_name`` so handlers can tell which external service
(e.g. "openai", "mistral-ocr", "local-blob") caused the failure.

The hierarchy follows the ingestion stages and the chat path:

    IQRChatError  (base)
    +-- StorageError             (upload / read-back through the blob store)
    +-- ExtractionError          (OCR failure)
    |   +-- NoTextExtractedError (OCR succeeded but produced no text)
    +-- ChunkingError            (tokenizer failure / zero chunks)
    +-- EmbeddingError           (per-chunk, absorbed by the embed stage)
    +-- ToolDispatchError        (handler failure, converted to a result)
    +-- ToolArgumentParseError   (unparseable tool-call arguments)
    +-- PipelineError            (illegal status transition, missing artifact)
    +-- ConfigurationError       (startup / missing config)
    +-- LLMError                 (chat completion failure)
    +-- RateLimitError           (provider rate-limit exceeded)

Stage-level errors are fatal for the current attempt and are retried by
re-invoking the stage; ``EmbeddingError`` is counted and skipped; the two
tool errors never reach the user-visible stream.
"""

from __future__ import annotations


class IQRChatError(Exception):
    """Base exception for all iqrchat errors.

    Every subclass carries a human-readable ``message`` and an optional
    ``provider_name``.  ``__str__`` prefixes the provider name in brackets,
    e.g. ``[openai] Rate limit exceeded``.
    """

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        provider_name: str | None = None,
    ) -> None:
        self._message = message
        self._provider_name = provider_name
        super().__init__(self._message)

    @property
    def message(self) -> str:
        return self._message

    @property
    def provider_name(self) -> str | None:
        return self._provider_name

    def __str__(self) -> str:
        if self._provider_name:
            return f"[{self._provider_name}] {self._message}"
        return self._message


# ---------------------------------------------------------------------------
# Ingestion stage errors
# ---------------------------------------------------------------------------

class StorageError(IQRChatError):
    """Raised when writing to or reading from the blob store fails."""

    def __init__(
        self,
        message: str = "Blob storage operation failed",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class ExtractionError(IQRChatError):
    """Raised when OCR text extraction fails."""

    def __init__(
        self,
        message: str = "Text extraction failed",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class NoTextExtractedError(ExtractionError):
    """Raised when extraction completed but returned no usable text.

    An empty document is a failure, never an empty-but-successful result.
    """

    def __init__(
        self,
        message: str = "No text extracted from document",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class ChunkingError(IQRChatError):
    """Raised when the chunker fails or yields zero chunks."""

    def __init__(
        self,
        message: str = "Text chunking failed",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class EmbeddingError(IQRChatError):
    """Raised when an embedding call fails for a single chunk."""

    def __init__(
        self,
        message: str = "Embedding generation failed",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


# ---------------------------------------------------------------------------
# Chat / tool errors
# ---------------------------------------------------------------------------

class ToolDispatchError(IQRChatError):
    """Raised by a tool handler; the registry converts it into a failure result."""

    def __init__(
        self,
        message: str = "Tool dispatch failed",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class ToolArgumentParseError(IQRChatError):
    """Raised when a streamed tool-call argument buffer cannot be parsed."""

    def __init__(
        self,
        message: str = "Tool arguments could not be parsed",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class LLMError(IQRChatError):
    """Raised when a chat completion call fails or returns nothing usable."""

    def __init__(
        self,
        message: str = "LLM API call failed",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class RateLimitError(IQRChatError):
    """Raised when an API rate limit is exceeded.

    The OCR provider retries on this error with exponential backoff.
    """

    def __init__(
        self,
        message: str = "Rate limit exceeded",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


# ---------------------------------------------------------------------------
# Orchestration / configuration errors
# ---------------------------------------------------------------------------

class PipelineError(IQRChatError):
    """Raised on an illegal status transition or a missing prior-stage artifact."""

    def __init__(
        self,
        message: str = "Pipeline orchestration failed",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class ConfigurationError(IQRChatError):
    """Raised when configuration is invalid or missing at startup."""

    def __init__(
        self,
        message: str = "Invalid or missing configuration",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)
