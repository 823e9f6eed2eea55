"""Abstract base class for text-embedding service providers.

Implementations may wrap OpenAI ``text-embedding-3-small`` or any
OpenAI-compatible embeddings endpoint.  The embed stage calls
:meth:`IEmbeddingProvider.embed_single` once per chunk under its retry
policy; the product chat embeds the user's question the same way.
"""

from __future__ import annotations

from abc import ABC, abstractmethod


# Concrete implementations: OpenAIEmbeddingProvider
# Located in: iqrchat/providers/embedding/
class IEmbeddingProvider(ABC):
    """Contract for text-embedding services."""

    @abstractmethod
    async def embed(self, texts: list[str]) -> list[list[float]]:
        """Generate embedding vectors for a batch of texts.

        Returns
        -------
        list[list[float]]
            Vectors corresponding positionally to *texts*.

        Raises
        ------
        iqrchat.utils.errors.EmbeddingError
            If the embedding API call fails.
        """

    @abstractmethod
    async def embed_single(self, text: str) -> list[float]:
        """Generate an embedding vector for a single text string."""

    @abstractmethod
    def get_dimension(self) -> int:
        """Return the dimensionality of the vectors (e.g. ``1536``)."""

    @abstractmethod
    def get_provider_name(self) -> str:
        """Return a short identifier, e.g. ``"openai_embedding"``."""

    @abstractmethod
    def is_available(self) -> bool:
        """Return ``True`` if the provider is configured."""
