"""
Embedding — provider abstraction plus the cleaning / caching service.

Public surface
--------------
- :class:`EmbeddingProvider` — abstract backend (subclass for new providers).
- :class:`EmbeddingService` — cleaning, batching, caching, timeouts.
- :func:`get_embedding_provider` — settings-driven provider factory.
- :func:`clean_text`, :func:`cosine_similarity` — pure helpers.
"""

from ragdoll.embedding.base import EmbeddingProvider
from ragdoll.embedding.providers import (
    FakeEmbeddingProvider,
    HuggingFaceEmbeddingProvider,
    OpenAIEmbeddingProvider,
    get_embedding_provider,
)
from ragdoll.embedding.service import EmbeddingService, clean_text, cosine_similarity

__all__ = [
    "EmbeddingProvider",
    "EmbeddingService",
    "FakeEmbeddingProvider",
    "HuggingFaceEmbeddingProvider",
    "OpenAIEmbeddingProvider",
    "clean_text",
    "cosine_similarity",
    "get_embedding_provider",
]
