"""Public interface definitions for all external collaborators.

Every external service and store is reached through the abstract base
classes in this package.  Concrete adapters live in ``iqrchat/providers/``
and are wired together in ``iqrchat/main.py``; tests inject fakes instead.

CONCRETE PROVIDER MAP:
    Interface                  ->  Concrete implementations
    ─────────────────────────────────────────────────────────────────────
    IBlobStore                 ->  LocalBlobStore
    IOCRProvider               ->  MistralOCRProvider, PyMuPDFTextProvider
    IEmbeddingProvider         ->  OpenAIEmbeddingProvider
    IChatCompletionProvider    ->  OpenAIChatProvider
    IIngestionStore            ->  SQLiteIngestionStore
    IConversationStore         ->  SQLiteChatStore
    IProfileStore              ->  SQLiteChatStore
"""

from iqrchat.interfaces.blob_store import IBlobStore
from iqrchat.interfaces.chat_completion_provider import CompletionDelta, IChatCompletionProvider
from iqrchat.interfaces.chat_store import IConversationStore, IProfileStore
from iqrchat.interfaces.embedding_provider import IEmbeddingProvider
from iqrchat.interfaces.ingestion_store import IIngestionStore
from iqrchat.interfaces.ocr_provider import IOCRProvider, OCRDocument

__all__ = [
    "CompletionDelta",
    "IBlobStore",
    "IChatCompletionProvider",
    "IConversationStore",
    "IEmbeddingProvider",
    "IIngestionStore",
    "IOCRProvider",
    "IProfileStore",
    "OCRDocument",
]
