"""Shared pytest configuration and fixtures."""

from __future__ import annotations

import math
import re
import zlib
from collections.abc import Iterator

import pytest

from ragdoll.config import Settings
from ragdoll.embedding.base import EmbeddingProvider
from ragdoll.embedding.service import EmbeddingService
from ragdoll.ingestion.pipeline import DocumentPipeline
from ragdoll.ingestion.repository import InMemoryDocumentRepository
from ragdoll.retrieval.analytics import InMemorySearchLog
from ragdoll.retrieval.engine import SearchEngine
from ragdoll.retrieval.memory_store import InMemoryVectorStore

STUB_DIMENSIONS = 32


def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers."""
    config.addinivalue_line("markers", "integration: marks tests requiring external services")


class StubEmbeddingProvider(EmbeddingProvider):
    """Bag-of-words hashing provider: same text → same vector, shared words → similar vectors."""

    def __init__(self, dimensions: int = STUB_DIMENSIONS, model_name: str = "stub-model") -> None:
        super().__init__(model_name)
        self.size = dimensions
        self.query_calls: list[str] = []
        self.document_calls: list[list[str]] = []

    @property
    def dimensions(self) -> int:
        return self.size

    def vector(self, text: str) -> list[float]:
        values = [0.0] * self.size
        for word in re.findall(r"\w+", text.lower()):
            values[zlib.crc32(word.encode()) % self.size] += 1.0
        norm = math.sqrt(sum(v * v for v in values)) or 1.0
        return [v / norm for v in values]

    def embed_query(self, text: str) -> list[float]:
        self.query_calls.append(text)
        return self.vector(text)

    def embed_documents(self, texts: list[str]) -> list[list[float]]:
        self.document_calls.append(list(texts))
        return [self.vector(t) for t in texts]


@pytest.fixture()
def settings() -> Settings:
    return Settings(
        embedding_provider="fake",
        vector_store_backend="memory",
        embedding_timeout_seconds=5.0,
        chunk_size=200,
        chunk_overlap=20,
        search_similarity_threshold=0.5,
        ingest_batch_size=2,
        ingest_max_workers=2,
    )


@pytest.fixture()
def stub_provider() -> StubEmbeddingProvider:
    return StubEmbeddingProvider()


@pytest.fixture()
def embedding_service(stub_provider: StubEmbeddingProvider, settings: Settings) -> Iterator[EmbeddingService]:
    service = EmbeddingService(stub_provider, settings)
    yield service
    service.close()


@pytest.fixture()
def memory_store() -> InMemoryVectorStore:
    return InMemoryVectorStore("test-collection")


@pytest.fixture()
def repository() -> InMemoryDocumentRepository:
    return InMemoryDocumentRepository()


@pytest.fixture()
def pipeline(
    settings: Settings,
    embedding_service: EmbeddingService,
    memory_store: InMemoryVectorStore,
    repository: InMemoryDocumentRepository,
) -> DocumentPipeline:
    return DocumentPipeline(settings, embedding_service, memory_store, repository)


@pytest.fixture()
def search_log() -> InMemorySearchLog:
    return InMemorySearchLog()


@pytest.fixture()
def engine(
    settings: Settings,
    embedding_service: EmbeddingService,
    memory_store: InMemoryVectorStore,
    search_log: InMemorySearchLog,
) -> SearchEngine:
    return SearchEngine(embedding_service, memory_store, settings, search_log=search_log)
