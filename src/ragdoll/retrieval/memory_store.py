"""In-process vector store.

A brute-force cosine scan over a dict of records guarded by one lock.
It is the reference backend for tests and for single-process use with
``vector_store_backend="memory"``.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterable
from datetime import datetime

from ragdoll.embedding.service import cosine_similarity
from ragdoll.retrieval.base import VectorStoreBase
from ragdoll.retrieval.models import Candidate, EmbeddingRecord, MetadataFilter, utcnow

logger = logging.getLogger(__name__)


class InMemoryVectorStore(VectorStoreBase):
    """Thread-safe dict-backed store."""

    def __init__(self, collection_name: str = "ragdoll") -> None:
        super().__init__(collection_name)
        self._records: dict[str, EmbeddingRecord] = {}
        self._lock = threading.RLock()

    def put_many(self, records: Iterable[EmbeddingRecord]) -> None:
        records = list(records)
        with self._lock:
            for record in records:
                self._records[record.id] = record.model_copy(deep=True)
        logger.debug("Stored %d records in %s", len(records), self.collection_name)

    def get(self, record_id: str) -> EmbeddingRecord | None:
        with self._lock:
            record = self._records.get(record_id)
            return record.model_copy(deep=True) if record else None

    def query(
        self,
        vector: list[float],
        *,
        threshold: float = -1.0,
        limit: int | None = 10,
        filters: list[MetadataFilter] | None = None,
    ) -> list[Candidate]:
        if limit is not None and limit <= 0:
            return []
        with self._lock:
            records = list(self._records.values())

        hits: list[Candidate] = []
        for record in records:
            if filters:
                fields = record.filter_fields()
                if not all(f.matches(fields) for f in filters):
                    continue
            similarity = cosine_similarity(vector, record.vector)
            if similarity < threshold:
                continue
            hits.append(Candidate.from_record(record, similarity))

        hits.sort(key=lambda c: c.similarity, reverse=True)
        return hits if limit is None else hits[:limit]

    def increment_usage(self, ids: Iterable[str], *, now: datetime | None = None) -> int:
        now = now or utcnow()
        updated = 0
        with self._lock:
            for record_id in set(ids):
                record = self._records.get(record_id)
                if record is None:
                    continue
                record.usage_count += 1
                record.last_used_at = now
                updated += 1
        return updated

    def delete_by_document(self, document_id: str) -> int:
        with self._lock:
            doomed = [rid for rid, r in self._records.items() if r.document_id == document_id]
            for rid in doomed:
                del self._records[rid]
        if doomed:
            logger.debug("Deleted %d records of document %s", len(doomed), document_id)
        return len(doomed)

    def count(self, document_id: str | None = None) -> int:
        with self._lock:
            if document_id is None:
                return len(self._records)
            return sum(1 for r in self._records.values() if r.document_id == document_id)

    def health_check(self) -> bool:
        return True
