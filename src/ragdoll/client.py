"""High-level client wiring settings, storage, pipeline and search together.

Usage::

    from ragdoll.client import RagdollClient

    with RagdollClient() as client:
        client.add_document("docs/guide.md")
        for r in client.search("usage ranking").results:
            print(r.citation.short_ref(), r.content[:80])
"""

from __future__ import annotations

import logging
import threading
from dataclasses import replace
from pathlib import Path
from typing import Any

from langchain_core.prompts import PromptTemplate

from ragdoll.config import Settings
from ragdoll.embedding.base import EmbeddingProvider
from ragdoll.embedding.providers import get_embedding_provider
from ragdoll.embedding.service import EmbeddingService
from ragdoll.ingestion.models import BatchResult, Document, DocumentStatus, IngestResult
from ragdoll.ingestion.notifications import NotificationSink
from ragdoll.ingestion.parser import DocumentParser
from ragdoll.ingestion.pipeline import DocumentPipeline
from ragdoll.ingestion.repository import DocumentRepository, InMemoryDocumentRepository, JsonDocumentRepository
from ragdoll.retrieval.analytics import InMemorySearchLog, JsonlSearchLog, SearchAnalytics, SearchLog
from ragdoll.retrieval.base import VectorStoreBase
from ragdoll.retrieval.engine import SearchEngine
from ragdoll.retrieval.memory_store import InMemoryVectorStore
from ragdoll.retrieval.models import ContextResponse, SearchFilters, SearchResponse
from ragdoll.retrieval.ranking import RankingOptions

logger = logging.getLogger(__name__)

ENHANCED_PROMPT = PromptTemplate.from_template(
    """\
You are an AI assistant. Use the following context to help answer the user's question. \
If the context doesn't contain relevant information, say so.

Context:
{context}

Question: {prompt}

Answer:
"""
)


class RagdollClient:
    """One-stop facade over ingestion and search.

    Every collaborator can be injected; missing ones are built from
    *settings*.  ``vector_store_backend="memory"`` keeps everything in
    process, ``"chroma"`` persists vectors in Chroma and documents and
    search logs as JSON under ``storage_dir``.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        provider: EmbeddingProvider | None = None,
        vector_store: VectorStoreBase | None = None,
        repository: DocumentRepository | None = None,
        search_log: SearchLog | None = None,
        parser: DocumentParser | None = None,
        notifier: NotificationSink | None = None,
    ) -> None:
        self.settings = settings or Settings()
        persistent = self.settings.vector_store_backend == "chroma"

        if vector_store is None:
            if persistent:
                from ragdoll.retrieval.chroma_store import ChromaVectorStore

                vector_store = ChromaVectorStore(settings=self.settings)
            else:
                vector_store = InMemoryVectorStore(self.settings.chroma_collection)
        if repository is None:
            repository = (
                JsonDocumentRepository(self.settings.storage_path / "documents.json")
                if persistent
                else InMemoryDocumentRepository()
            )
        if search_log is None:
            search_log = (
                JsonlSearchLog(self.settings.storage_path / "searches.jsonl") if persistent else InMemorySearchLog()
            )

        self.embedding_service = EmbeddingService(provider or get_embedding_provider(self.settings), self.settings)
        self.vector_store = vector_store
        self.repository = repository
        self.search_log = search_log
        self.pipeline = DocumentPipeline(
            self.settings,
            self.embedding_service,
            vector_store,
            repository,
            parser=parser,
            notifier=notifier,
        )
        self.engine = SearchEngine(self.embedding_service, vector_store, self.settings, search_log=search_log)

    # -- documents ------------------------------------------------------------

    def add_document(
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
        return self.pipeline.ingest(
            location,
            content=content,
            title=title,
            document_type=document_type,
            metadata=metadata,
            chunk_size=chunk_size,
            chunk_overlap=chunk_overlap,
            force=force,
        )

    def add_text(self, content: str, *, title: str, **kwargs: Any) -> IngestResult:
        return self.add_document(content=content, title=title, document_type="text", **kwargs)

    def add_directory(
        self,
        path: str | Path,
        *,
        recursive: bool = False,
        force: bool = False,
        cancel_event: threading.Event | None = None,
    ) -> BatchResult:
        return self.pipeline.ingest_directory(path, recursive=recursive, force=force, cancel_event=cancel_event)

    def get_document(self, document_id: str) -> Document:
        return self.repository.require(document_id)

    def list_documents(self, status: DocumentStatus | None = None) -> list[Document]:
        return self.repository.list(status=status)

    def delete_document(self, document_id: str) -> int:
        return self.pipeline.delete_document(document_id)

    def reprocess_document(self, document_id: str, **kwargs: Any) -> IngestResult:
        return self.pipeline.reprocess(document_id, **kwargs)

    def reprocess_documents(self, status: DocumentStatus | None = None) -> BatchResult:
        return self.pipeline.reprocess_documents(status)

    # -- search ---------------------------------------------------------------

    def search(
        self,
        query: str,
        *,
        limit: int | None = None,
        threshold: float | None = None,
        document_type: str | None = None,
        use_usage_ranking: bool | None = None,
    ) -> SearchResponse:
        ranking = None
        if use_usage_ranking is not None:
            ranking = replace(RankingOptions.from_settings(self.settings), use_usage_ranking=use_usage_ranking)
        filters = SearchFilters(document_type=document_type) if document_type else None
        return self.engine.search(query, limit=limit, threshold=threshold, filters=filters, ranking=ranking)

    def get_context(self, prompt: str, *, limit: int | None = None, threshold: float | None = None) -> ContextResponse:
        return self.engine.get_context(prompt, limit=limit, threshold=threshold)

    def enhance_prompt(self, prompt: str, *, context_limit: int = 5, threshold: float | None = None) -> dict[str, Any]:
        """Wrap *prompt* with retrieved context, or return it unchanged when nothing matches."""
        context = self.get_context(prompt, limit=context_limit, threshold=threshold)
        if not context.context_chunks:
            return {"enhanced_prompt": prompt, "original_prompt": prompt, "context_sources": [], "context_count": 0}
        return {
            "enhanced_prompt": ENHANCED_PROMPT.format(context=context.combined_context, prompt=prompt),
            "original_prompt": prompt,
            "context_sources": [c.source for c in context.context_chunks],
            "context_count": context.total_chunks,
        }

    # -- stats ----------------------------------------------------------------

    def search_analytics(self, days: int = 30) -> dict[str, Any]:
        return SearchAnalytics(self.search_log).summary(days)

    def document_stats(self) -> dict[str, Any]:
        documents = self.repository.list()
        total_documents = len(documents)
        total_embeddings = self.vector_store.count()
        by_type: dict[str, int] = {}
        for document in documents:
            by_type[document.document_type] = by_type.get(document.document_type, 0) + 1
        content_size = sum(len(d.content) for d in documents)
        return {
            "total_documents": total_documents,
            "total_embeddings": total_embeddings,
            "average_embeddings_per_document": (
                round(total_embeddings / total_documents, 2) if total_documents else 0
            ),
            "documents_by_status": self.repository.count_by_status(),
            "documents_by_type": by_type,
            "storage_stats": {
                "total_content_size": content_size,
                "average_document_size": round(content_size / total_documents) if total_documents else None,
            },
        }

    def healthy(self) -> bool:
        return self.vector_store.health_check()

    # -- lifecycle ------------------------------------------------------------

    def close(self) -> None:
        self.embedding_service.close()

    def __enter__(self) -> RagdollClient:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()
