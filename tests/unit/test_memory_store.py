"""Unit tests for the in-memory vector store and EmbeddingRecord."""

from __future__ import annotations

import threading
from datetime import datetime, timezone

import pytest
from pydantic import ValidationError

from ragdoll.retrieval.memory_store import InMemoryVectorStore
from ragdoll.retrieval.models import EmbeddingRecord, MetadataFilter


def _record(document_id: str, index: int, vector: list[float], **kwargs) -> EmbeddingRecord:
    return EmbeddingRecord(
        id=EmbeddingRecord.make_id(document_id, index),
        document_id=document_id,
        chunk_index=index,
        content=f"{document_id} chunk {index}",
        vector=vector,
        model_name=kwargs.pop("model_name", "m"),
        dimensions=len(vector),
        document_status="completed",
        **kwargs,
    )


@pytest.fixture()
def store() -> InMemoryVectorStore:
    store = InMemoryVectorStore()
    store.put_many(
        [
            _record("doc-a", 0, [1.0, 0.0, 0.0], document_type="markdown"),
            _record("doc-a", 1, [0.9, 0.1, 0.0], document_type="markdown"),
            _record("doc-b", 0, [0.0, 1.0, 0.0], document_type="pdf"),
        ]
    )
    return store


class TestEmbeddingRecord:
    def test_id_format(self) -> None:
        assert EmbeddingRecord.make_id("doc", 3) == "doc_3"

    def test_dimensions_must_match_vector(self) -> None:
        with pytest.raises(ValidationError):
            EmbeddingRecord(
                id="d_0",
                document_id="d",
                chunk_index=0,
                content="x",
                vector=[1.0, 2.0],
                model_name="m",
                dimensions=3,
            )


class TestInMemoryVectorStore:
    def test_query_orders_by_similarity(self, store: InMemoryVectorStore) -> None:
        hits = store.query([1.0, 0.0, 0.0], threshold=0.5, limit=10)
        assert [h.embedding_id for h in hits] == ["doc-a_0", "doc-a_1"]
        assert hits[0].similarity == pytest.approx(1.0)

    def test_query_applies_filters(self, store: InMemoryVectorStore) -> None:
        hits = store.query(
            [1.0, 1.0, 0.0],
            threshold=-1.0,
            limit=10,
            filters=[MetadataFilter.equals("document_type", "pdf")],
        )
        assert [h.embedding_id for h in hits] == ["doc-b_0"]

    def test_query_limit(self, store: InMemoryVectorStore) -> None:
        assert len(store.query([1.0, 1.0, 1.0], limit=1)) == 1
        assert store.query([1.0, 1.0, 1.0], limit=0) == []
        assert len(store.query([1.0, 1.0, 1.0], limit=None)) == 3

    def test_delete_by_document(self, store: InMemoryVectorStore) -> None:
        assert store.delete_by_document("doc-a") == 2
        assert store.count() == 1
        assert store.count("doc-a") == 0
        assert store.delete_by_document("doc-a") == 0

    def test_put_replaces_same_id(self, store: InMemoryVectorStore) -> None:
        store.put(_record("doc-b", 0, [0.0, 0.0, 1.0]))
        assert store.count("doc-b") == 1
        assert store.get("doc-b_0").vector == [0.0, 0.0, 1.0]

    def test_increment_usage(self, store: InMemoryVectorStore) -> None:
        stamp = datetime(2025, 1, 1, tzinfo=timezone.utc)
        assert store.increment_usage(["doc-a_0", "doc-a_0", "missing"], now=stamp) == 1
        record = store.get("doc-a_0")
        assert record.usage_count == 1
        assert record.last_used_at == stamp

    def test_concurrent_increments_are_not_lost(self, store: InMemoryVectorStore) -> None:
        threads_count, per_thread = 8, 50

        def bump() -> None:
            for _ in range(per_thread):
                store.increment_usage(["doc-b_0"])

        threads = [threading.Thread(target=bump) for _ in range(threads_count)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert store.get("doc-b_0").usage_count == threads_count * per_thread

    def test_returned_records_are_copies(self, store: InMemoryVectorStore) -> None:
        record = store.get("doc-a_0")
        record.usage_count = 99
        assert store.get("doc-a_0").usage_count == 0

    def test_health_check(self, store: InMemoryVectorStore) -> None:
        assert store.health_check() is True
