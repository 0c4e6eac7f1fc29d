"""Document persistence — in-memory and single-JSON-file repositories."""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from abc import ABC, abstractmethod
from collections import Counter
from pathlib import Path

from ragdoll.exceptions import DocumentError, DocumentNotFoundError
from ragdoll.ingestion.models import Document, DocumentStatus

logger = logging.getLogger(__name__)


class DocumentRepository(ABC):
    """Stores :class:`Document` rows; ``location`` is unique.

    Implementations hand out copies, so callers mutate their own object
    and persist it with :meth:`save`.
    """

    @abstractmethod
    def add(self, document: Document) -> Document:
        """Insert *document*; raises :class:`DocumentError` on a duplicate location."""
        ...

    @abstractmethod
    def save(self, document: Document) -> Document:
        """Insert or replace *document* by id."""
        ...

    @abstractmethod
    def get(self, document_id: str) -> Document | None:
        ...

    @abstractmethod
    def get_by_location(self, location: str) -> Document | None:
        ...

    @abstractmethod
    def list(self, status: DocumentStatus | None = None) -> list[Document]:
        ...

    @abstractmethod
    def delete(self, document_id: str) -> bool:
        ...

    def require(self, document_id: str) -> Document:
        document = self.get(document_id)
        if document is None:
            raise DocumentNotFoundError(document_id)
        return document

    def count_by_status(self) -> dict[str, int]:
        counts = Counter(d.status.value for d in self.list())
        return {status.value: counts.get(status.value, 0) for status in DocumentStatus}


class InMemoryDocumentRepository(DocumentRepository):
    def __init__(self) -> None:
        self._documents: dict[str, Document] = {}
        self._lock = threading.RLock()

    def add(self, document: Document) -> Document:
        with self._lock:
            if self._find_location(document.location) is not None:
                raise DocumentError(f"Document already exists at {document.location}", {"location": document.location})
            self._documents[document.id] = document.model_copy(deep=True)
            self._after_write()
        return document

    def save(self, document: Document) -> Document:
        with self._lock:
            existing = self._find_location(document.location)
            if existing is not None and existing.id != document.id:
                raise DocumentError(f"Document already exists at {document.location}", {"location": document.location})
            self._documents[document.id] = document.model_copy(deep=True)
            self._after_write()
        return document

    def get(self, document_id: str) -> Document | None:
        with self._lock:
            document = self._documents.get(document_id)
            return document.model_copy(deep=True) if document else None

    def get_by_location(self, location: str) -> Document | None:
        with self._lock:
            document = self._find_location(location)
            return document.model_copy(deep=True) if document else None

    def list(self, status: DocumentStatus | None = None) -> list[Document]:
        with self._lock:
            documents = [d.model_copy(deep=True) for d in self._documents.values()]
        if status is not None:
            documents = [d for d in documents if d.status is status]
        return sorted(documents, key=lambda d: d.created_at)

    def delete(self, document_id: str) -> bool:
        with self._lock:
            removed = self._documents.pop(document_id, None) is not None
            if removed:
                self._after_write()
        return removed

    def _find_location(self, location: str) -> Document | None:
        return next((d for d in self._documents.values() if d.location == location), None)

    def _after_write(self) -> None:
        """Hook for persistent subclasses; called with the lock held."""


class JsonDocumentRepository(InMemoryDocumentRepository):
    """In-memory repository mirrored to ``path`` after every write.

    The file is replaced atomically (write to a temp file, then
    ``os.replace``), so a crash never leaves it half-written.  Every write
    rewrites all documents including their ``content``, which raw-content
    documents need for reprocessing; an ingest of N documents therefore
    writes O(N²) bytes.  Use it for small corpora.
    """

    def __init__(self, path: str | Path) -> None:
        super().__init__()
        self.path = Path(path)
        self._load()

    def _load(self) -> None:
        if not self.path.exists():
            return
        try:
            payload = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            raise DocumentError(f"Cannot read document store {self.path}: {exc}", {"path": str(self.path)}) from exc
        for item in payload.get("documents", []):
            document = Document.model_validate(item)
            self._documents[document.id] = document
        logger.info("Loaded %d documents from %s", len(self._documents), self.path)

    def _after_write(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        payload = {"documents": [d.model_dump(mode="json") for d in self._documents.values()]}
        fd, tmp = tempfile.mkstemp(dir=self.path.parent, prefix=".documents-", suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(payload, fh, indent=2)
            os.replace(tmp, self.path)
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise
