"""Utility modules for iqrchat.

- **errors** -- exception hierarchy rooted at IQRChatError; each ingestion
  stage and the chat path raise their own subclass.
- **concurrency** -- semaphore-bounded gather and batching for the embed
  stage.
- **logging** -- structlog setup with console output in development and
  JSON in production.
- **text_normalizer** -- markdown stripping for the chat stream and fuzzy
  persona-name matching.
"""

from iqrchat.utils.concurrency import batched, throttled_gather
from iqrchat.utils.errors import (
    ChunkingError,
    ConfigurationError,
    EmbeddingError,
    ExtractionError,
    IQRChatError,
    LLMError,
    NoTextExtractedError,
    PipelineError,
    RateLimitError,
    StorageError,
    ToolArgumentParseError,
    ToolDispatchError,
)
from iqrchat.utils.logging import configure_logging, get_logger
from iqrchat.utils.text_normalizer import fuzzy_match, strip_markdown

__all__ = [
    "ChunkingError",
    "ConfigurationError",
    "EmbeddingError",
    "ExtractionError",
    "IQRChatError",
    "LLMError",
    "NoTextExtractedError",
    "PipelineError",
    "RateLimitError",
    "StorageError",
    "ToolArgumentParseError",
    "ToolDispatchError",
    "batched",
    "configure_logging",
    "fuzzy_match",
    "get_logger",
    "strip_markdown",
    "throttled_gather",
]
