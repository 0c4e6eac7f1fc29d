"""
Retrieval — vector storage, usage-aware ranking, and context assembly.

The search engine talks to the vector store through a narrow interface so
that ingestion and search never need to know which DB backs retrieval.

Public surface
--------------
- :class:`SearchEngine` — main entry point for search and prompt context.
- :class:`VectorStoreBase` — abstract backend (subclass for pgvector, etc.).
- :class:`InMemoryVectorStore` — reference backend.
- :class:`ChromaVectorStore` — persistent Chroma backend.
- :class:`RankingOptions`, :func:`rank_candidates` — pure re-ranking.
- :class:`SearchFilters`, :class:`SearchResult`, :class:`Citation` — data models.
"""

from ragdoll.retrieval.analytics import InMemorySearchLog, JsonlSearchLog, SearchAnalytics, SearchLog, SearchRecord
from ragdoll.retrieval.base import VectorStoreBase
from ragdoll.retrieval.engine import SearchEngine
from ragdoll.retrieval.memory_store import InMemoryVectorStore
from ragdoll.retrieval.models import (
    Citation,
    ContextResponse,
    EmbeddingRecord,
    MetadataFilter,
    SearchFilters,
    SearchResponse,
    SearchResult,
)
from ragdoll.retrieval.ranking import RankingOptions, rank_candidates

__all__ = [
    "ChromaVectorStore",
    "Citation",
    "ContextResponse",
    "EmbeddingRecord",
    "InMemorySearchLog",
    "InMemoryVectorStore",
    "JsonlSearchLog",
    "MetadataFilter",
    "RankingOptions",
    "SearchAnalytics",
    "SearchEngine",
    "SearchFilters",
    "SearchLog",
    "SearchRecord",
    "SearchResponse",
    "SearchResult",
    "VectorStoreBase",
    "rank_candidates",
]


def __getattr__(name: str):  # noqa: ANN001
    """Lazy-import ChromaVectorStore to avoid pulling in chromadb at import time."""
    if name == "ChromaVectorStore":
        from ragdoll.retrieval.chroma_store import ChromaVectorStore

        return ChromaVectorStore
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
