"""Embedding provider adapters.

OpenAIEmbeddingProvider implements IEmbeddingProvider against the OpenAI
(or an OpenAI-compatible) embeddings endpoint.
"""

from iqrchat.providers.embedding.openai_embedding_provider import OpenAIEmbeddingProvider

__all__ = ["OpenAIEmbeddingProvider"]
