"""iqrchat domain models, re-exported for ``from iqrchat.models import ...``.

Submodules by concern:
    - product.py  -- Product, ExtractedText, ProcessingLogEntry, IngestionStatus
    - chunk.py    -- Chunk and its wire record ChunkRecord
    - pipeline.py -- IngestionStage and stage results
    - chat.py     -- conversation, persona, profile and tool-call models
"""

from __future__ import annotations

from iqrchat.models.chat import (
    PROFILE_FIELDS,
    ChatState,
    ChatTurn,
    ConversationMessage,
    MessageRole,
    Persona,
    ToolCallAccumulator,
    ToolResult,
    UserProfile,
)
from iqrchat.models.chunk import Chunk, ChunkRecord, content_hash
from iqrchat.models.pipeline import (
    TOTAL_STAGES,
    EmbedOutcome,
    IngestionResult,
    IngestionStage,
    StatusSnapshot,
    UploadArtifact,
)
from iqrchat.models.product import (
    STATUS_ORDER,
    ExtractedText,
    IngestionStatus,
    ProcessingLogEntry,
    Product,
    is_valid_transition,
)

__all__ = [
    "PROFILE_FIELDS",
    "STATUS_ORDER",
    "TOTAL_STAGES",
    "ChatState",
    "ChatTurn",
    "Chunk",
    "ChunkRecord",
    "ConversationMessage",
    "EmbedOutcome",
    "ExtractedText",
    "IngestionResult",
    "IngestionStage",
    "IngestionStatus",
    "MessageRole",
    "Persona",
    "ProcessingLogEntry",
    "Product",
    "StatusSnapshot",
    "ToolCallAccumulator",
    "ToolResult",
    "UploadArtifact",
    "UserProfile",
    "content_hash",
    "is_valid_transition",
]
