"""Chroma implementation of the vector-store abstraction."""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterable
from datetime import datetime, timezone
from typing import Any

import chromadb

from ragdoll.config import Settings
from ragdoll.exceptions import VectorStoreError
from ragdoll.retrieval.base import VectorStoreBase
from ragdoll.retrieval.models import Candidate, EmbeddingRecord, MetadataFilter, utcnow

logger = logging.getLogger(__name__)

# Record fields stored as Chroma metadata next to the caller's own keys.
_RESERVED_KEYS = (
    "document_id",
    "chunk_index",
    "model_name",
    "dimensions",
    "token_count",
    "usage_count",
    "last_used_at",
    "document_type",
    "document_status",
    "document_location",
    "document_title",
    "created_at",
)

_UPSERT_BATCH = 500


def _build_chroma_where(filters: list[MetadataFilter]) -> dict[str, Any] | None:
    """Convert a list of :class:`MetadataFilter` to Chroma ``where`` syntax."""
    if not filters:
        return None

    _OP_MAP = {
        "eq": "$eq",
        "ne": "$ne",
        "gt": "$gt",
        "gte": "$gte",
        "lt": "$lt",
        "lte": "$lte",
        "in": "$in",
        "nin": "$nin",
    }

    clauses: list[dict[str, Any]] = []
    for f in filters:
        chroma_op = _OP_MAP.get(f.operator)
        if chroma_op is None:
            raise ValueError(f"Unsupported filter operator: {f.operator!r}")
        clauses.append({f.field: {chroma_op: f.value}})

    if len(clauses) == 1:
        return clauses[0]
    return {"$and": clauses}


def _to_epoch(value: datetime | None) -> float:
    return value.timestamp() if value else 0.0


def _from_epoch(value: Any) -> datetime | None:
    if not value:
        return None
    return datetime.fromtimestamp(float(value), tz=timezone.utc)


def _flatten(value: Any) -> str | int | float | bool:
    if isinstance(value, (str, int, float, bool)):
        return value
    return str(value)


def record_to_metadata(record: EmbeddingRecord) -> dict[str, Any]:
    """Flatten *record* into a Chroma-compatible metadata dict (scalars only, no ``None``)."""
    meta: dict[str, Any] = {
        key: _flatten(value)
        for key, value in record.metadata.items()
        if value is not None and key not in _RESERVED_KEYS
    }
    meta.update(
        {
            "document_id": record.document_id,
            "chunk_index": record.chunk_index,
            "model_name": record.model_name,
            "dimensions": record.dimensions,
            "token_count": record.token_count,
            "usage_count": record.usage_count,
            "last_used_at": _to_epoch(record.last_used_at),
            "created_at": _to_epoch(record.created_at),
        }
    )
    for key in ("document_type", "document_status", "document_location", "document_title"):
        value = getattr(record, key)
        if value is not None:
            meta[key] = value
    return meta


def candidate_from_hit(embedding_id: str, content: str | None, meta: dict[str, Any], similarity: float) -> Candidate:
    return Candidate(
        embedding_id=embedding_id,
        document_id=str(meta.get("document_id", "")),
        chunk_index=meta.get("chunk_index"),
        content=content or "",
        similarity=similarity,
        usage_count=int(meta.get("usage_count", 0)),
        last_used_at=_from_epoch(meta.get("last_used_at")),
        model_name=meta.get("model_name"),
        dimensions=meta.get("dimensions"),
        metadata={k: v for k, v in meta.items() if k not in _RESERVED_KEYS},
        document_type=meta.get("document_type"),
        document_location=meta.get("document_location"),
        document_title=meta.get("document_title"),
    )


class ChromaVectorStore(VectorStoreBase):
    """Chroma-backed vector store.

    The collection uses cosine space, so Chroma distances convert to
    similarity as ``1 - distance``.  Usage counters live in the record
    metadata and are updated by a read-modify-write held under a
    process-local lock, so the collection must have a single writer
    process.  Several processes sharing one Chroma server through
    ``chroma_host`` can lose usage increments.

    Parameters
    ----------
    collection_name:
        Name of the Chroma collection.
    client:
        A ready Chroma client.  When *None*, one is built from *settings*:
        an ``HttpClient`` when ``chroma_host`` is set, otherwise a
        ``PersistentClient`` under ``storage_dir/chroma``.
    settings:
        Engine settings (only consulted when *client* is *None*).
    """

    def __init__(
        self,
        collection_name: str | None = None,
        *,
        client: Any = None,
        settings: Settings | None = None,
    ) -> None:
        settings = settings or Settings()
        super().__init__(collection_name or settings.chroma_collection)
        if client is None:
            if settings.chroma_host:
                client = chromadb.HttpClient(host=settings.chroma_host, port=settings.chroma_port)
                logger.warning(
                    "Usage counters on %s:%d are only atomic within this process; "
                    "run a single writer per collection",
                    settings.chroma_host,
                    settings.chroma_port,
                )
            else:
                path = settings.storage_path / "chroma"
                path.mkdir(parents=True, exist_ok=True)
                client = chromadb.PersistentClient(path=str(path))
        self._client = client
        self._collection = self._client.get_or_create_collection(
            self.collection_name,
            metadata={"hnsw:space": "cosine"},
        )
        self._usage_lock = threading.Lock()

    # -- VectorStoreBase overrides --------------------------------------------

    def put_many(self, records: Iterable[EmbeddingRecord]) -> None:
        records = list(records)
        try:
            for start in range(0, len(records), _UPSERT_BATCH):
                batch = records[start : start + _UPSERT_BATCH]
                self._collection.upsert(
                    ids=[r.id for r in batch],
                    embeddings=[r.vector for r in batch],
                    documents=[r.content for r in batch],
                    metadatas=[record_to_metadata(r) for r in batch],
                )
        except Exception as exc:
            raise VectorStoreError(f"Chroma upsert failed: {exc}", "put_many", {"records": len(records)}) from exc

    def get(self, record_id: str) -> EmbeddingRecord | None:
        result = self._collection.get(ids=[record_id], include=["documents", "metadatas", "embeddings"])
        if not result.get("ids"):
            return None
        meta = result["metadatas"][0] or {}
        vector = [float(x) for x in result["embeddings"][0]]
        return EmbeddingRecord(
            id=record_id,
            document_id=str(meta.get("document_id", "")),
            chunk_index=int(meta.get("chunk_index", 0)),
            content=result["documents"][0] or "",
            vector=vector,
            model_name=str(meta.get("model_name", "")),
            dimensions=len(vector),
            token_count=int(meta.get("token_count", 0)),
            usage_count=int(meta.get("usage_count", 0)),
            last_used_at=_from_epoch(meta.get("last_used_at")),
            metadata={k: v for k, v in meta.items() if k not in _RESERVED_KEYS},
            document_type=meta.get("document_type"),
            document_status=meta.get("document_status"),
            document_location=meta.get("document_location"),
            document_title=meta.get("document_title"),
            created_at=_from_epoch(meta.get("created_at")) or utcnow(),
        )

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
        where = _build_chroma_where(filters) if filters else None
        try:
            total = self._collection.count()
            if total == 0:
                return []
            results = self._collection.query(
                query_embeddings=[vector],
                n_results=total if limit is None else min(limit, total),
                where=where,
                include=["documents", "metadatas", "distances"],
            )
        except Exception as exc:
            raise VectorStoreError(f"Chroma query failed: {exc}", "query") from exc

        hits: list[Candidate] = []
        ids = results.get("ids", [[]])[0]
        docs = results.get("documents", [[]])[0]
        metas = results.get("metadatas", [[]])[0]
        distances = results.get("distances", [[]])[0]

        for embedding_id, content, meta, dist in zip(ids, docs, metas, distances):
            similarity = max(-1.0, min(1.0, 1.0 - float(dist)))
            if similarity < threshold:
                continue
            hits.append(candidate_from_hit(embedding_id, content, meta or {}, similarity))
        return hits

    def increment_usage(self, ids: Iterable[str], *, now: datetime | None = None) -> int:
        ids = list(dict.fromkeys(ids))
        if not ids:
            return 0
        stamp = _to_epoch(now or utcnow())
        with self._usage_lock:
            current = self._collection.get(ids=ids, include=["metadatas"])
            found = current.get("ids", [])
            if not found:
                return 0
            metadatas = []
            for meta in current["metadatas"]:
                meta = dict(meta or {})
                meta["usage_count"] = int(meta.get("usage_count", 0)) + 1
                meta["last_used_at"] = stamp
                metadatas.append(meta)
            self._collection.update(ids=found, metadatas=metadatas)
        return len(found)

    def delete_by_document(self, document_id: str) -> int:
        existing = self._collection.get(where={"document_id": document_id}, include=["metadatas"])
        ids = existing.get("ids", [])
        if ids:
            self._collection.delete(ids=ids)
            logger.debug("Deleted %d records of document %s", len(ids), document_id)
        return len(ids)

    def count(self, document_id: str | None = None) -> int:
        if document_id is None:
            return self._collection.count()
        return len(self._collection.get(where={"document_id": document_id}, include=["metadatas"]).get("ids", []))

    def health_check(self) -> bool:
        try:
            self._client.heartbeat()
            return True
        except Exception:
            logger.warning("Chroma health-check failed", exc_info=True)
            return False
