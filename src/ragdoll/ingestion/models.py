"""Document and chunk models with the processing state machine."""

from __future__ import annotations

import enum
import uuid
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from ragdoll.exceptions import InvalidTransitionError
from ragdoll.retrieval.models import utcnow


class DocumentStatus(str, enum.Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


_TRANSITIONS: dict[DocumentStatus, frozenset[DocumentStatus]] = {
    DocumentStatus.PENDING: frozenset({DocumentStatus.PROCESSING, DocumentStatus.FAILED}),
    DocumentStatus.PROCESSING: frozenset({DocumentStatus.COMPLETED, DocumentStatus.FAILED}),
    DocumentStatus.COMPLETED: frozenset(),
    DocumentStatus.FAILED: frozenset(),
}


def _new_id() -> str:
    return uuid.uuid4().hex


class Document(BaseModel):
    """A source document and its processing bookkeeping.

    Status only moves forward (``pending → processing → completed``, or
    to ``failed``); :meth:`reset` is the single way back to ``pending``.
    """

    id: str = Field(default_factory=_new_id)
    location: str
    title: str | None = None
    content: str = ""
    document_type: str = "text"
    status: DocumentStatus = DocumentStatus.PENDING
    chunk_size: int | None = Field(default=None, gt=0)
    chunk_overlap: int | None = Field(default=None, ge=0)
    metadata: dict[str, Any] = Field(default_factory=dict)
    chunk_count: int = 0
    error_message: str | None = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    processing_started_at: datetime | None = None
    processing_finished_at: datetime | None = None

    def can_transition(self, target: DocumentStatus) -> bool:
        return target in _TRANSITIONS[self.status]

    def transition(self, target: DocumentStatus) -> None:
        if not self.can_transition(target):
            raise InvalidTransitionError(self.status.value, target.value, {"document_id": self.id})
        self.status = target
        self.touch()

    def start_processing(self) -> None:
        self.transition(DocumentStatus.PROCESSING)
        self.processing_started_at = utcnow()
        self.processing_finished_at = None
        self.error_message = None

    def mark_completed(self, chunk_count: int) -> None:
        self.transition(DocumentStatus.COMPLETED)
        self.chunk_count = chunk_count
        self.processing_finished_at = utcnow()

    def mark_failed(self, message: str) -> None:
        self.transition(DocumentStatus.FAILED)
        self.error_message = message
        self.processing_finished_at = utcnow()

    def reset(self) -> None:
        """Return to ``pending`` for reprocessing, from any state."""
        self.status = DocumentStatus.PENDING
        self.chunk_count = 0
        self.error_message = None
        self.processing_started_at = None
        self.processing_finished_at = None
        self.touch()

    def touch(self) -> None:
        self.updated_at = utcnow()

    @property
    def is_completed(self) -> bool:
        return self.status is DocumentStatus.COMPLETED


class Chunk(BaseModel):
    """One piece of a document's text, in document order."""

    model_config = ConfigDict(frozen=True)

    document_id: str
    content: str
    chunk_index: int = Field(ge=0)
    token_count: int = 0
    metadata: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def build(cls, document_id: str, content: str, chunk_index: int, **metadata: Any) -> Chunk:
        return cls(
            document_id=document_id,
            content=content,
            chunk_index=chunk_index,
            token_count=len(content) // 4,
            metadata=metadata,
        )


class ParsedDocument(BaseModel):
    content: str
    metadata: dict[str, Any] = Field(default_factory=dict)
    document_type: str = "text"


class IngestOutcome(str, enum.Enum):
    PROCESSED = "processed"
    SKIPPED = "skipped"
    FAILED = "failed"


class IngestResult(BaseModel):
    location: str
    outcome: IngestOutcome
    document: Document | None = None
    embeddings_created: int = 0
    error: str | None = None

    @property
    def document_id(self) -> str | None:
        return self.document.id if self.document else None


class BatchResult(BaseModel):
    """Summary of a multi-document run."""

    results: list[IngestResult] = Field(default_factory=list)
    not_attempted: list[str] = Field(default_factory=list)
    cancelled: bool = False

    def _count(self, outcome: IngestOutcome) -> int:
        return sum(1 for r in self.results if r.outcome is outcome)

    @property
    def processed(self) -> int:
        return self._count(IngestOutcome.PROCESSED)

    @property
    def skipped(self) -> int:
        return self._count(IngestOutcome.SKIPPED)

    @property
    def failed(self) -> int:
        return self._count(IngestOutcome.FAILED)

    @property
    def failures(self) -> list[IngestResult]:
        return [r for r in self.results if r.outcome is IngestOutcome.FAILED]

    def summary(self) -> dict[str, Any]:
        return {
            "processed": self.processed,
            "skipped": self.skipped,
            "failed": self.failed,
            "not_attempted": len(self.not_attempted),
            "cancelled": self.cancelled,
            "errors": [{"location": r.location, "error": r.error} for r in self.failures],
        }
