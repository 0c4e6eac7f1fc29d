"""Domain models for stored embeddings, search candidates, and results."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, Field, model_validator


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MetadataFilter(BaseModel):
    """Declarative metadata filter for vector-store queries.

    Attributes
    ----------
    field:
        The metadata key to filter on (e.g. ``"document_type"``).
    operator:
        Comparison operator — one of ``eq``, ``ne``, ``gt``, ``gte``,
        ``lt``, ``lte``, ``in``, ``nin``.
    value:
        The value (or list of values for ``in`` / ``nin``) to compare against.
    """

    field: str
    operator: str = "eq"
    value: Any = None

    # -- helpers for common filters ------------------------------------------

    @classmethod
    def equals(cls, field: str, value: Any) -> MetadataFilter:
        return cls(field=field, operator="eq", value=value)

    @classmethod
    def not_equals(cls, field: str, value: Any) -> MetadataFilter:
        return cls(field=field, operator="ne", value=value)

    @classmethod
    def one_of(cls, field: str, values: list[Any]) -> MetadataFilter:
        return cls(field=field, operator="in", value=values)

    def matches(self, metadata: dict[str, Any]) -> bool:
        """Evaluate the filter against a flat metadata dict (in-process backends)."""
        actual = metadata.get(self.field)
        op = self.operator
        if op == "eq":
            return actual == self.value
        if op == "ne":
            return actual != self.value
        if op == "in":
            return actual in (self.value or [])
        if op == "nin":
            return actual not in (self.value or [])
        if actual is None:
            return False
        if op == "gt":
            return actual > self.value
        if op == "gte":
            return actual >= self.value
        if op == "lt":
            return actual < self.value
        if op == "lte":
            return actual <= self.value
        raise ValueError(f"Unsupported filter operator: {op!r}")


class SearchFilters(BaseModel):
    """Document-level restrictions applied by the vector store.

    ``model_name`` and ``dimensions`` are filled in by the search engine
    from the query embedding so vectors from different models are never
    compared.
    """

    model_config = {"protected_namespaces": ()}

    document_type: str | None = None
    document_status: str | None = None
    document_id: str | None = None
    model_name: str | None = None
    dimensions: int | None = None

    def to_metadata_filters(self) -> list[MetadataFilter]:
        return [
            MetadataFilter.equals(name, value)
            for name, value in self.model_dump().items()
            if value is not None
        ]


class EmbeddingRecord(BaseModel):
    """A stored chunk together with its vector and usage statistics."""

    model_config = {"protected_namespaces": ()}

    id: str
    document_id: str
    chunk_index: int = Field(ge=0)
    content: str
    vector: list[float]
    model_name: str
    dimensions: int
    token_count: int = 0
    usage_count: int = Field(default=0, ge=0)
    last_used_at: datetime | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    document_type: str | None = None
    document_status: str | None = None
    document_location: str | None = None
    document_title: str | None = None
    created_at: datetime = Field(default_factory=utcnow)

    @model_validator(mode="after")
    def _check_dimensions(self) -> EmbeddingRecord:
        if self.dimensions != len(self.vector):
            raise ValueError(f"dimensions={self.dimensions} does not match vector length {len(self.vector)}")
        return self

    @staticmethod
    def make_id(document_id: str, chunk_index: int) -> str:
        return f"{document_id}_{chunk_index}"

    def filter_fields(self) -> dict[str, Any]:
        """Flat view used to evaluate :class:`MetadataFilter` objects."""
        return {
            **self.metadata,
            "document_id": self.document_id,
            "chunk_index": self.chunk_index,
            "model_name": self.model_name,
            "dimensions": self.dimensions,
            "document_type": self.document_type,
            "document_status": self.document_status,
        }


class Candidate(BaseModel):
    """A vector-store hit before ranking."""

    model_config = {"protected_namespaces": ()}

    embedding_id: str
    document_id: str
    chunk_index: int | None = None
    content: str = ""
    similarity: float
    usage_count: int = 0
    last_used_at: datetime | None = None
    model_name: str | None = None
    dimensions: int | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    document_type: str | None = None
    document_location: str | None = None
    document_title: str | None = None

    @classmethod
    def from_record(cls, record: EmbeddingRecord, similarity: float) -> Candidate:
        return cls(
            embedding_id=record.id,
            document_id=record.document_id,
            chunk_index=record.chunk_index,
            content=record.content,
            similarity=similarity,
            usage_count=record.usage_count,
            last_used_at=record.last_used_at,
            model_name=record.model_name,
            dimensions=record.dimensions,
            metadata=dict(record.metadata),
            document_type=record.document_type,
            document_location=record.document_location,
            document_title=record.document_title,
        )


class Citation(BaseModel):
    """Provenance record linking a result back to its source document.

    Attributes
    ----------
    embedding_id:
        Vector-store id of the chunk.
    document_id:
        Id of the owning document.
    source:
        Human-readable source locator — file path, URL, ``content://`` id.
    title:
        Document title, when known.
    chunk_index:
        Ordinal position of the chunk within the source document.
    document_type:
        Parsed document type (``pdf``, ``markdown`` …).
    metadata:
        Chunk-level metadata.
    retrieved_at:
        UTC timestamp of when the retrieval happened.
    """

    embedding_id: str
    document_id: str
    source: str = "unknown"
    title: str | None = None
    chunk_index: int | None = None
    document_type: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    retrieved_at: datetime = Field(default_factory=utcnow)

    def short_ref(self) -> str:
        """Return a compact ``[source§chunk]`` reference string."""
        chunk = self.chunk_index if self.chunk_index is not None else "?"
        return f"[{self.source}§{chunk}]"


class SearchResult(BaseModel):
    """A ranked passage.

    ``usage_score`` and ``combined_score`` are always present; with usage
    ranking disabled they are ``0.0`` and ``similarity`` respectively.
    """

    content: str
    citation: Citation
    similarity: float
    usage_score: float = 0.0
    combined_score: float
    usage_count: int = 0
    last_used_at: datetime | None = None

    @property
    def embedding_id(self) -> str:
        return self.citation.embedding_id

    def __str__(self) -> str:  # noqa: D105
        return f"{self.citation.short_ref()} ({self.combined_score:.3f}) {self.content[:120]}…"


class SearchResponse(BaseModel):
    """Envelope returned by :meth:`SearchEngine.search`."""

    query: str
    results: list[SearchResult] = Field(default_factory=list)
    total_results: int = 0
    search_time: float = 0.0


class ContextChunk(BaseModel):
    content: str
    source: Citation
    relevance_score: float


class ContextResponse(BaseModel):
    """Passages assembled for inclusion in an LLM prompt."""

    prompt: str
    context_chunks: list[ContextChunk] = Field(default_factory=list)
    total_chunks: int = 0
    combined_context: str = ""
