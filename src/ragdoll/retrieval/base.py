"""Abstract base class for vector-store backends.

Adding a new backend (pgvector, Qdrant, Weaviate …) only requires
subclassing :class:`VectorStoreBase` and implementing the abstract
methods.  Ranking, usage scoring and analytics live in the search engine,
so the rest of the retrieval stack is backend-agnostic.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterable
from datetime import datetime

from ragdoll.retrieval.models import Candidate, EmbeddingRecord, MetadataFilter


class VectorStoreBase(ABC):
    """Backend-agnostic vector-store interface.

    Implementations must be safe to call from several ingestion threads
    at once, and :meth:`increment_usage` must not lose updates under
    concurrent searches.

    Parameters
    ----------
    collection_name:
        Logical name of the collection / index / namespace.
    """

    def __init__(self, collection_name: str) -> None:
        self.collection_name = collection_name

    # -- required overrides ---------------------------------------------------

    @abstractmethod
    def put_many(self, records: Iterable[EmbeddingRecord]) -> None:
        """Insert or replace *records* (keyed by ``record.id``)."""
        ...

    @abstractmethod
    def query(
        self,
        vector: list[float],
        *,
        threshold: float = -1.0,
        limit: int | None = 10,
        filters: list[MetadataFilter] | None = None,
    ) -> list[Candidate]:
        """Return up to *limit* candidates with cosine similarity ≥ *threshold*.

        Parameters
        ----------
        vector:
            Dense query vector.
        threshold:
            Minimum cosine similarity, in ``[-1, 1]``.
        limit:
            Maximum number of candidates, most similar first.  ``None``
            returns every candidate at or above *threshold*.
        filters:
            Metadata filters applied before the similarity cut.
        """
        ...

    @abstractmethod
    def increment_usage(self, ids: Iterable[str], *, now: datetime | None = None) -> int:
        """Atomically bump ``usage_count`` and stamp ``last_used_at``.

        Unknown ids are ignored.  Returns the number of records updated.
        """
        ...

    @abstractmethod
    def delete_by_document(self, document_id: str) -> int:
        """Remove every record of *document_id*; returns how many were removed."""
        ...

    @abstractmethod
    def count(self, document_id: str | None = None) -> int:
        ...

    @abstractmethod
    def health_check(self) -> bool:
        """Return ``True`` when the backend is reachable and ready."""
        ...

    # -- optional overrides ---------------------------------------------------

    def put(self, record: EmbeddingRecord) -> None:
        self.put_many([record])

    def get(self, record_id: str) -> EmbeddingRecord | None:
        """Fetch one record by id.  Optional — raises by default."""
        raise NotImplementedError(f"{type(self).__name__} does not support get")
