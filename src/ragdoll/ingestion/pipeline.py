"""Document pipeline — parse → chunk → embed → store, with bookkeeping.

A document is processed as one unit: every chunk is embedded before
anything is written, the document's previous embeddings are purged, and
the new set is written in one ``put_many``.  A failure anywhere leaves
the document ``failed`` with no embeddings at all, never a partial set.

Usage::

    pipeline = DocumentPipeline(settings, embedding_service, store, repository)
    result   = pipeline.ingest("docs/guide.md")
    batch    = pipeline.ingest_directory("docs/", recursive=True)
"""

from __future__ import annotations

import logging
import threading
import uuid
import weakref
from collections.abc import Callable, Iterable, Sequence
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, TypeVar

from ragdoll.config import Settings
from ragdoll.embedding.service import EmbeddingService
from ragdoll.exceptions import DocumentNotFoundError, EmbeddingError, UnsupportedFormatError, VectorStoreError
from ragdoll.ingestion.chunker import TextChunker, chunk_by_structure, chunk_code
from ragdoll.ingestion.detector import is_embeddable
from ragdoll.ingestion.models import (
    BatchResult,
    Chunk,
    Document,
    DocumentStatus,
    IngestOutcome,
    IngestResult,
    ParsedDocument,
)
from ragdoll.ingestion.notifications import NotificationSink, ProgressEvent, deliver
from ragdoll.ingestion.parser import DefaultDocumentParser, DocumentParser, read_text_file
from ragdoll.ingestion.repository import DocumentRepository
from ragdoll.retrieval.base import VectorStoreBase
from ragdoll.retrieval.models import EmbeddingRecord

logger = logging.getLogger(__name__)

T = TypeVar("T")

CONTENT_SCHEME = "content://"


class DocumentPipeline:
    """Orchestrates document processing against the injected collaborators.

    Parameters
    ----------
    settings:
        Chunking defaults plus batch size and worker count for bulk runs.
    embedding_service:
        Produces one vector per chunk.
    store:
        Receives the :class:`EmbeddingRecord` set of each document.
    repository:
        Persists :class:`Document` rows.
    parser:
        Extracts text from files (defaults to :class:`DefaultDocumentParser`).
    notifier:
        Optional progress sink; delivery failures never fail processing.
    """

    def __init__(
        self,
        settings: Settings,
        embedding_service: EmbeddingService,
        store: VectorStoreBase,
        repository: DocumentRepository,
        *,
        parser: DocumentParser | None = None,
        notifier: NotificationSink | None = None,
    ) -> None:
        self.settings = settings
        self.embedding_service = embedding_service
        self.store = store
        self.repository = repository
        self.parser = parser or DefaultDocumentParser()
        self.notifier = notifier
        # Entries vanish once no thread holds or waits on the lock.
        self._locks: weakref.WeakValueDictionary[str, threading.RLock] = weakref.WeakValueDictionary()
        self._locks_guard = threading.Lock()

    # -- single document ------------------------------------------------------

    def ingest(
        self,
        location: str | Path | None = None,
        *,
        content: str | None = None,
        title: str | None = None,
        document_type: str | None = None,
        metadata: dict[str, Any] | None = None,
        chunk_size: int | None = None,
        chunk_overlap: int | None = None,
        force: bool = False,
    ) -> IngestResult:
        """Ingest a file (by *location*) or raw *content*.

        Returns a ``processed`` or ``skipped`` :class:`IngestResult`.  A
        file whose completed document is at least as new as the file is
        skipped unless *force* is set.

        Raises
        ------
        ParseError, EmbeddingError, VectorStoreError
            After the document has been marked ``failed``.
        """
        if location is None and content is None:
            raise ValueError("Either location or content is required")

        if content is not None:
            key = str(location) if location is not None else f"{CONTENT_SCHEME}{uuid.uuid4().hex}"
        else:
            key = str(Path(location).expanduser().resolve())

        with self._lock_for(key):
            existing = self.repository.get_by_location(key)
            if existing is not None and content is None and not force and self._is_up_to_date(existing, key):
                logger.info("Skipping %s: already processed and unchanged", key)
                self._notify(existing, "ingest", "skipped")
                return IngestResult(location=key, outcome=IngestOutcome.SKIPPED, document=existing)

            if existing is not None:
                self.store.delete_by_document(existing.id)
                document = existing
                document.reset()
            else:
                document = Document(location=key)
            if title is not None:
                document.title = title
            if metadata:
                document.metadata.update(metadata)
            if chunk_size is not None:
                document.chunk_size = chunk_size
            if chunk_overlap is not None:
                document.chunk_overlap = chunk_overlap
            self.repository.save(document)
            self._notify(document, "ingest", DocumentStatus.PENDING.value)

            try:
                if content is not None:
                    parsed = ParsedDocument(content=content, document_type=document_type or "text")
                else:
                    parsed = self._parse(key)
                self._apply_parsed(document, parsed, document_type)
                self.repository.save(document)
                created = self._process(document)
            except Exception as exc:
                self._fail(document, exc)
                raise

        return IngestResult(
            location=key,
            outcome=IngestOutcome.PROCESSED,
            document=document,
            embeddings_created=created,
        )

    def reprocess(
        self,
        document_id: str,
        *,
        content: str | None = None,
        chunk_size: int | None = None,
        chunk_overlap: int | None = None,
    ) -> IngestResult:
        """Drop every embedding of *document_id* and process it again.

        File-backed documents are re-read from disk when the file still
        exists; *content* replaces the stored text explicitly.
        """
        document = self.repository.require(document_id)
        with self._lock_for(document.location):
            document = self.repository.require(document_id)
            removed = self.store.delete_by_document(document.id)
            logger.info("Reprocessing %s: removed %d embeddings", document.location, removed)
            document.reset()
            if chunk_size is not None:
                document.chunk_size = chunk_size
            if chunk_overlap is not None:
                document.chunk_overlap = chunk_overlap
            self.repository.save(document)

            try:
                if content is not None:
                    document.content = content
                elif self._is_file_location(document.location) and Path(document.location).is_file():
                    self._apply_parsed(document, self._parse(document.location), None)
                self.repository.save(document)
                created = self._process(document)
            except Exception as exc:
                self._fail(document, exc)
                raise

        return IngestResult(
            location=document.location,
            outcome=IngestOutcome.PROCESSED,
            document=document,
            embeddings_created=created,
        )

    def delete_document(self, document_id: str) -> int:
        """Delete a document and its embeddings; returns the embeddings removed."""
        document = self.repository.get(document_id)
        if document is None:
            raise DocumentNotFoundError(document_id)
        with self._lock_for(document.location):
            removed = self.store.delete_by_document(document_id)
            self.repository.delete(document_id)
        logger.info("Deleted document %s (%d embeddings)", document.location, removed)
        return removed

    # -- batches --------------------------------------------------------------

    def ingest_many(
        self,
        locations: Iterable[str | Path],
        *,
        force: bool = False,
        remove_after: bool = False,
        cancel_event: threading.Event | None = None,
    ) -> BatchResult:
        """Ingest files in batches of ``ingest_batch_size``.

        Each batch runs on its own thread pool, shut down before the next
        batch starts.  Per-file errors become ``failed`` results.  With
        *remove_after*, every file of a batch is deleted once the batch
        finishes (for uploaded temp files), whether it succeeded or not.
        """
        items = [str(Path(loc).expanduser().resolve()) for loc in locations]

        def work(location: str) -> IngestResult:
            return self.ingest(location, force=force)

        cleanup = self._remove_files if remove_after else None
        return self._run_batches(items, work, describe=lambda loc: loc, cancel_event=cancel_event, cleanup=cleanup)

    def ingest_directory(
        self,
        path: str | Path,
        *,
        recursive: bool = False,
        force: bool = False,
        cancel_event: threading.Event | None = None,
    ) -> BatchResult:
        """Ingest every embeddable file under *path*."""
        root = Path(path).expanduser()
        if not root.is_dir():
            raise NotADirectoryError(str(root))
        candidates = root.rglob("*") if recursive else root.glob("*")
        files = sorted(p for p in candidates if p.is_file() and is_embeddable(p))
        logger.info("Found %d embeddable files under %s", len(files), root)
        return self.ingest_many(files, force=force, cancel_event=cancel_event)

    def reprocess_documents(
        self,
        status: DocumentStatus | None = None,
        *,
        cancel_event: threading.Event | None = None,
    ) -> BatchResult:
        """Reprocess every document (optionally only those in *status*)."""
        documents = self.repository.list(status=status)

        def work(document: Document) -> IngestResult:
            return self.reprocess(document.id)

        return self._run_batches(documents, work, describe=lambda d: d.location, cancel_event=cancel_event)

    # -- internals ------------------------------------------------------------

    def _process(self, document: Document) -> int:
        document.start_processing()
        self.repository.save(document)

        chunks = self._chunk(document)
        self._notify(document, "processing", DocumentStatus.PROCESSING.value, total=len(chunks))
        if not chunks:
            logger.warning("%s has no text to embed", document.location)

        vectors = self.embedding_service.generate_embeddings_batch([c.content for c in chunks]) if chunks else []
        if len(vectors) != len(chunks):
            raise EmbeddingError(
                "Embedding count does not match chunk count",
                {"document_id": document.id, "chunks": len(chunks), "vectors": len(vectors)},
            )
        self._notify(document, "embedding", DocumentStatus.PROCESSING.value, processed=len(vectors), total=len(chunks))

        records = [self._to_record(document, chunk, vector) for chunk, vector in zip(chunks, vectors)]
        self.store.delete_by_document(document.id)
        if records:
            try:
                self.store.put_many(records)
            except Exception as exc:
                self.store.delete_by_document(document.id)
                if isinstance(exc, VectorStoreError):
                    raise
                raise VectorStoreError(
                    f"Failed to store embeddings: {exc}", "put_many", {"document_id": document.id}
                ) from exc

        document.mark_completed(len(records))
        self.repository.save(document)
        self._notify(document, "completed", DocumentStatus.COMPLETED.value, processed=len(records), total=len(records))
        logger.info("Processed %s: %d chunks", document.location, len(records))
        return len(records)

    def _chunk(self, document: Document) -> list[Chunk]:
        if document.chunk_size is None:
            document.chunk_size = self.settings.chunk_size
        if document.chunk_overlap is None:
            document.chunk_overlap = self.settings.chunk_overlap

        if document.document_type == "code":
            strategy, pieces = "code", chunk_code(document.content, document.chunk_size)
        elif self.settings.chunk_strategy == "structure":
            strategy, pieces = "structure", chunk_by_structure(document.content, document.chunk_size)
        else:
            chunker = TextChunker(document.chunk_size, document.chunk_overlap)
            strategy, pieces = "window", chunker.chunk(document.content)

        pieces = [p for p in pieces if p.strip()]
        return [Chunk.build(document.id, text, index, chunk_strategy=strategy) for index, text in enumerate(pieces)]

    def _to_record(self, document: Document, chunk: Chunk, vector: list[float]) -> EmbeddingRecord:
        return EmbeddingRecord(
            id=EmbeddingRecord.make_id(document.id, chunk.chunk_index),
            document_id=document.id,
            chunk_index=chunk.chunk_index,
            content=chunk.content,
            vector=vector,
            model_name=self.embedding_service.model_name,
            dimensions=len(vector),
            token_count=chunk.token_count,
            metadata=dict(chunk.metadata),
            document_type=document.document_type,
            document_status=DocumentStatus.COMPLETED.value,
            document_location=document.location,
            document_title=document.title,
        )

    def _parse(self, location: str) -> ParsedDocument:
        try:
            return self.parser.parse(location)
        except UnsupportedFormatError:
            logger.info("No parser for %s; reading it as plain text", location)
            text, encoding = read_text_file(location)
            return ParsedDocument(content=text, metadata={"encoding": encoding}, document_type="text")

    def _apply_parsed(self, document: Document, parsed: ParsedDocument, document_type: str | None) -> None:
        document.content = parsed.content
        document.document_type = document_type or parsed.document_type
        document.metadata = {**parsed.metadata, **document.metadata}
        if document.title is None:
            title = parsed.metadata.get("title")
            if not title and self._is_file_location(document.location):
                title = Path(document.location).stem
            document.title = title or None

    def _fail(self, document: Document, exc: BaseException) -> None:
        logger.error("Failed to process %s: %s", document.location, exc)
        try:
            self.store.delete_by_document(document.id)
        except Exception:
            logger.warning("Could not purge embeddings of failed document %s", document.id, exc_info=True)
        if document.can_transition(DocumentStatus.FAILED):
            document.mark_failed(str(exc))
        else:
            document.error_message = str(exc)
            document.processing_finished_at = datetime.now(timezone.utc)
        try:
            self.repository.save(document)
        except Exception:
            logger.warning("Could not record failure of %s", document.location, exc_info=True)
        self._notify(document, "failed", DocumentStatus.FAILED.value, message=str(exc))

    def _is_up_to_date(self, document: Document, location: str) -> bool:
        if not document.is_completed:
            return False
        path = Path(location)
        if not path.is_file():
            return False
        modified = datetime.fromtimestamp(path.stat().st_mtime, tz=timezone.utc)
        return document.updated_at >= modified

    @staticmethod
    def _is_file_location(location: str) -> bool:
        return not location.startswith(CONTENT_SCHEME)

    def _lock_for(self, location: str) -> threading.RLock:
        with self._locks_guard:
            lock = self._locks.get(location)
            if lock is None:
                lock = self._locks[location] = threading.RLock()
            return lock

    def _run_batches(
        self,
        items: Sequence[T],
        work: Callable[[T], IngestResult],
        *,
        describe: Callable[[T], str],
        cancel_event: threading.Event | None = None,
        cleanup: Callable[[Sequence[T]], None] | None = None,
    ) -> BatchResult:
        result = BatchResult()
        batch_size = self.settings.ingest_batch_size
        total = len(items)

        def run_one(item: T) -> IngestResult | None:
            if cancel_event is not None and cancel_event.is_set():
                return None
            try:
                return work(item)
            except Exception as exc:
                logger.warning("Batch item %s failed: %s", describe(item), exc)
                location = describe(item)
                return IngestResult(
                    location=location,
                    outcome=IngestOutcome.FAILED,
                    document=self.repository.get_by_location(location),
                    error=str(exc),
                )

        for start in range(0, total, batch_size):
            batch = items[start : start + batch_size]
            if cancel_event is not None and cancel_event.is_set():
                result.cancelled = True
                result.not_attempted.extend(describe(item) for item in items[start:])
                break
            try:
                with ThreadPoolExecutor(
                    max_workers=min(self.settings.ingest_max_workers, len(batch)),
                    thread_name_prefix="ingest",
                ) as pool:
                    outcomes = list(pool.map(run_one, batch))
            finally:
                if cleanup is not None:
                    cleanup(batch)

            for item, outcome in zip(batch, outcomes):
                if outcome is None:
                    result.cancelled = True
                    result.not_attempted.append(describe(item))
                else:
                    result.results.append(outcome)
            done = min(start + batch_size, total)
            deliver(
                self.notifier,
                ProgressEvent(location="batch", phase="batch", processed=done, total=total, status="running"),
            )
            logger.info("Batch progress: %d / %d", done, total)

        return result

    @staticmethod
    def _remove_files(locations: Sequence[str]) -> None:
        for location in locations:
            try:
                Path(location).unlink(missing_ok=True)
            except OSError:
                logger.warning("Could not remove %s", location, exc_info=True)

    def _notify(
        self,
        document: Document,
        phase: str,
        status: str,
        *,
        processed: int = 0,
        total: int = 0,
        message: str | None = None,
    ) -> None:
        deliver(
            self.notifier,
            ProgressEvent(
                document_id=document.id,
                location=document.location,
                phase=phase,
                processed=processed,
                total=total,
                status=status,
                message=message,
            ),
        )
