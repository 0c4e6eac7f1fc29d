"""Unit tests for SearchEngine — scoping, ranking, usage, analytics, context."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import datetime, timezone
from typing import Any

import pytest

from ragdoll.embedding.base import EmbeddingProvider
from ragdoll.embedding.service import EmbeddingService
from ragdoll.exceptions import EmbeddingError, SearchError
from ragdoll.retrieval.analytics import SearchLog, SearchRecord
from ragdoll.retrieval.base import VectorStoreBase
from ragdoll.retrieval.engine import CONTEXT_SEPARATOR, SearchEngine
from ragdoll.retrieval.memory_store import InMemoryVectorStore
from ragdoll.retrieval.models import Candidate, EmbeddingRecord, MetadataFilter, SearchFilters
from ragdoll.retrieval.ranking import RankingOptions

TWO_PARAGRAPHS = "Alpha bravo charlie delta.\n\nEcho foxtrot golf hotel."

# ── Fakes ───────────────────────────────────────────────────────────────


class FakeVectorStore(VectorStoreBase):
    """Returns canned candidates regardless of the query and records calls."""

    def __init__(self, candidates: list[Candidate] | None = None, *, fail_query: bool = False) -> None:
        super().__init__("fake")
        self.candidates = candidates or []
        self.fail_query = fail_query
        self.fail_usage = False
        self.query_calls: list[dict[str, Any]] = []
        self.usage_calls: list[list[str]] = []

    def put_many(self, records: Iterable[EmbeddingRecord]) -> None:
        raise NotImplementedError

    def query(
        self,
        vector: list[float],
        *,
        threshold: float = -1.0,
        limit: int | None = 10,
        filters: list[MetadataFilter] | None = None,
    ) -> list[Candidate]:
        self.query_calls.append({"threshold": threshold, "limit": limit, "filters": filters or []})
        if self.fail_query:
            raise RuntimeError("backend down")
        return list(self.candidates)

    def increment_usage(self, ids: Iterable[str], *, now: datetime | None = None) -> int:
        if self.fail_usage:
            raise RuntimeError("write conflict")
        ids = list(ids)
        self.usage_calls.append(ids)
        return len(ids)

    def delete_by_document(self, document_id: str) -> int:
        return 0

    def count(self, document_id: str | None = None) -> int:
        return len(self.candidates)

    def health_check(self) -> bool:
        return True


class BrokenSearchLog(SearchLog):
    def record(self, entry: SearchRecord) -> None:
        raise OSError("disk full")

    def list(self, since: datetime | None = None) -> list[SearchRecord]:
        return []


class ExplodingProvider(EmbeddingProvider):
    def __init__(self) -> None:
        super().__init__("exploding")

    def embed_query(self, text: str) -> list[float]:
        raise RuntimeError("provider unavailable")

    def embed_documents(self, texts: list[str]) -> list[list[float]]:
        raise RuntimeError("provider unavailable")


def _candidate(embedding_id: str, similarity: float, content: str | None = None) -> Candidate:
    return Candidate(
        embedding_id=embedding_id,
        document_id="doc",
        chunk_index=int(embedding_id.rsplit("_", 1)[-1]),
        content=content or f"content of {embedding_id}",
        similarity=similarity,
        document_location="/docs/guide.md",
    )


@pytest.fixture()
def fake_store() -> FakeVectorStore:
    return FakeVectorStore([_candidate("doc_0", 0.9, "first passage"), _candidate("doc_1", 0.8, "second passage")])


@pytest.fixture()
def fake_engine(embedding_service, fake_store, settings, search_log) -> SearchEngine:
    return SearchEngine(embedding_service, fake_store, settings, search_log=search_log)


# ── Tests ───────────────────────────────────────────────────────────────


class TestSearchScoping:
    def test_blank_query_is_empty_and_skips_provider(self, fake_engine, fake_store, stub_provider) -> None:
        response = fake_engine.search("   ")
        assert response.total_results == 0
        assert response.results == []
        assert stub_provider.query_calls == []
        assert fake_store.query_calls == []

    def test_filters_pin_model_dimensions_and_status(self, fake_engine, fake_store) -> None:
        fake_engine.search("hello", filters=SearchFilters(document_type="pdf"))
        filters = {f.field: f.value for f in fake_store.query_calls[0]["filters"]}
        assert filters == {
            "document_type": "pdf",
            "document_status": "completed",
            "model_name": "stub-model",
            "dimensions": 32,
        }

    def test_explicit_status_filter_is_kept(self, fake_engine, fake_store) -> None:
        fake_engine.search("hello", filters=SearchFilters(document_status="failed"))
        filters = {f.field: f.value for f in fake_store.query_calls[0]["filters"]}
        assert filters["document_status"] == "failed"

    def test_usage_ranking_queries_every_candidate(self, fake_engine, fake_store) -> None:
        fake_engine.search("hello", limit=2)
        assert fake_store.query_calls[0]["limit"] is None

    def test_similarity_only_uses_candidate_pool(self, fake_engine, fake_store, settings) -> None:
        fake_engine.search("hello", limit=2, ranking=RankingOptions(use_usage_ranking=False))
        assert fake_store.query_calls[0]["limit"] == 2 * settings.search_candidate_pool_factor

    def test_heavily_used_chunk_outranks_pool_of_closer_matches(self, embedding_service, settings) -> None:
        def record(index: int, vector: list[float], usage_count: int = 0) -> EmbeddingRecord:
            return EmbeddingRecord(
                id=f"d_{index}",
                document_id="d",
                chunk_index=index,
                content=f"passage {index}",
                vector=vector + [0.0] * 30,
                model_name="stub-model",
                dimensions=32,
                usage_count=usage_count,
                last_used_at=datetime.now(timezone.utc) if usage_count else None,
                document_status="completed",
            )

        store = InMemoryVectorStore()
        store.put_many(
            [record(0, [0.866, 0.5], usage_count=200)]
            + [record(i, [0.866, 0.5]) for i in range(1, 7)]
            + [record(i, [0.943, 0.333]) for i in range(7, 10)]
        )
        engine = SearchEngine(embedding_service, store, settings)

        response = engine.search_by_embedding([1.0] + [0.0] * 31, limit=1, threshold=0.0)
        assert [r.embedding_id for r in response.results] == ["d_0"]
        assert response.results[0].combined_score > 1.5

    def test_threshold_is_enforced_even_if_backend_ignores_it(self, fake_engine) -> None:
        assert fake_engine.search("hello", threshold=0.99).total_results == 0

    def test_default_threshold_from_settings(self, fake_engine, fake_store, settings) -> None:
        fake_engine.search("hello")
        assert fake_store.query_calls[0]["threshold"] == settings.search_similarity_threshold

    def test_other_model_candidates_are_dropped(self, embedding_service, settings) -> None:
        foreign = _candidate("doc_0", 0.95).model_copy(update={"model_name": "other-model"})
        store = FakeVectorStore([foreign, _candidate("doc_1", 0.7)])
        response = SearchEngine(embedding_service, store, settings).search("hello")
        assert [r.embedding_id for r in response.results] == ["doc_1"]


class TestSearchResults:
    def test_results_are_ranked_with_citations(self, fake_engine) -> None:
        response = fake_engine.search("hello", limit=5)
        assert response.query == "hello"
        assert response.total_results == 2
        assert [r.embedding_id for r in response.results] == ["doc_0", "doc_1"]
        assert response.results[0].citation.source == "/docs/guide.md"
        assert response.search_time >= 0

    def test_usage_is_recorded_for_returned_results(self, fake_engine, fake_store) -> None:
        fake_engine.search("hello", limit=1)
        assert fake_store.usage_calls == [["doc_0"]]

    def test_usage_failure_does_not_fail_search(self, fake_engine, fake_store, caplog) -> None:
        fake_store.fail_usage = True
        with caplog.at_level(logging.WARNING, logger="ragdoll.retrieval.engine"):
            response = fake_engine.search("hello")
        assert response.total_results == 2
        assert "Failed to record usage" in caplog.text

    def test_embedding_failure_raises_search_error(self, fake_store, settings) -> None:
        with EmbeddingService(ExplodingProvider(), settings) as service:
            engine = SearchEngine(service, fake_store, settings)
            with pytest.raises(SearchError) as excinfo:
                engine.search("hello")
        assert isinstance(excinfo.value.__cause__, EmbeddingError)

    def test_store_failure_raises_search_error(self, embedding_service, settings) -> None:
        engine = SearchEngine(embedding_service, FakeVectorStore(fail_query=True), settings)
        with pytest.raises(SearchError, match="Vector store query failed"):
            engine.search("hello")

    def test_search_by_embedding(self, fake_engine, fake_store, stub_provider) -> None:
        response = fake_engine.search_by_embedding([0.1] * 32, limit=1)
        assert response.total_results == 1
        assert stub_provider.query_calls == []
        assert fake_store.query_calls[0]["limit"] == 3

    def test_search_by_empty_embedding(self, fake_engine, fake_store) -> None:
        assert fake_engine.search_by_embedding([]).total_results == 0
        assert fake_store.query_calls == []


class TestSearchAnalytics:
    def test_each_search_is_logged(self, fake_engine, search_log) -> None:
        fake_engine.search("first  query")
        fake_engine.search("nothing", threshold=0.99)

        entries = search_log.list()
        assert [e.query for e in entries] == ["first query", "nothing"]
        assert entries[0].result_ids == ["doc_0", "doc_1"]
        assert entries[0].model_name == "stub-model"
        assert entries[0].similarity_max == pytest.approx(0.9)
        assert entries[1].result_count == 0
        assert entries[1].similarity_avg is None

    def test_analytics_switch(self, embedding_service, fake_store, settings, search_log) -> None:
        quiet = settings.model_copy(update={"enable_search_analytics": False})
        SearchEngine(embedding_service, fake_store, quiet, search_log=search_log).search("hello")
        assert search_log.list() == []

    def test_log_failure_does_not_fail_search(self, embedding_service, fake_store, settings, caplog) -> None:
        engine = SearchEngine(embedding_service, fake_store, settings, search_log=BrokenSearchLog())
        with caplog.at_level(logging.WARNING, logger="ragdoll.retrieval.engine"):
            assert engine.search("hello").total_results == 2
        assert "Failed to record search analytics" in caplog.text


class TestContext:
    def test_context_joins_passages(self, fake_engine) -> None:
        context = fake_engine.get_context("hello", limit=2)
        assert context.prompt == "hello"
        assert context.total_chunks == 2
        assert context.combined_context == f"first passage{CONTEXT_SEPARATOR}second passage"
        assert context.context_chunks[0].relevance_score == pytest.approx(0.9)
        assert context.context_chunks[0].source.short_ref() == "[/docs/guide.md§0]"

    def test_context_without_hits(self, fake_engine) -> None:
        context = fake_engine.get_context("hello", threshold=0.99)
        assert context.total_chunks == 0
        assert context.combined_context == ""

    def test_langchain_retriever(self, fake_engine) -> None:
        retriever = fake_engine.as_langchain_retriever(limit=1)
        docs = retriever.invoke("hello")
        assert len(docs) == 1
        assert docs[0].page_content == "first passage"
        assert docs[0].metadata["similarity"] == pytest.approx(0.9)
        assert docs[0].metadata["_citation"]["source"] == "/docs/guide.md"


class TestEndToEnd:
    def test_ingested_chunk_is_found_and_used(self, pipeline, engine, memory_store) -> None:
        pipeline.ingest(content=TWO_PARAGRAPHS, title="notes", chunk_size=30, chunk_overlap=0)

        response = engine.search("alpha bravo charlie delta", limit=1)
        assert response.total_results == 1
        top = response.results[0]
        assert top.content == "Alpha bravo charlie delta."
        assert top.similarity == pytest.approx(1.0)
        assert top.citation.title == "notes"
        assert top.citation.source.startswith("content://")
        assert memory_store.get(top.embedding_id).usage_count == 1

    def test_search_by_embedding_finds_exact_chunk(self, pipeline, engine, memory_store, stub_provider) -> None:
        result = pipeline.ingest(content=TWO_PARAGRAPHS, chunk_size=30, chunk_overlap=0)
        first = memory_store.get(EmbeddingRecord.make_id(result.document_id, 0))

        response = engine.search_by_embedding(first.vector, threshold=0.9)
        assert response.results[0].embedding_id == first.id
        assert response.results[0].similarity == pytest.approx(1.0)

    def test_usage_bias_changes_order_only_when_enabled(self, pipeline, engine, memory_store) -> None:
        result = pipeline.ingest(content="apple banana cherry.\n\napple banana grape.", chunk_size=22, chunk_overlap=0)
        popular = EmbeddingRecord.make_id(result.document_id, 1)
        for _ in range(60):
            memory_store.increment_usage([popular])

        plain = engine.search("apple banana cherry", threshold=0.0, ranking=RankingOptions(use_usage_ranking=False))
        assert plain.results[0].embedding_id == EmbeddingRecord.make_id(result.document_id, 0)

        biased = engine.search("apple banana cherry", threshold=0.0)
        assert biased.results[0].embedding_id == popular
