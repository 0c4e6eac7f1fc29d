"""Semantic search engine — embed, filter, rank, record usage.

This module is the **primary public interface** for retrieval.  It is
backend-agnostic: any :class:`~ragdoll.retrieval.base.VectorStoreBase`
works.

Usage::

    from ragdoll.retrieval.engine import SearchEngine

    engine   = SearchEngine(embedding_service, store, settings)
    response = engine.search("How does usage ranking work?", limit=5)
    for r in response.results:
        print(r.citation.short_ref(), r.content[:80])
"""

from __future__ import annotations

import logging
import time
from collections.abc import Sequence
from datetime import datetime
from typing import Any, Callable

from ragdoll.config import Settings
from ragdoll.embedding.service import EmbeddingService
from ragdoll.exceptions import EmbeddingError, SearchError
from ragdoll.retrieval.analytics import SearchLog, SearchRecord
from ragdoll.retrieval.base import VectorStoreBase
from ragdoll.retrieval.models import (
    ContextChunk,
    ContextResponse,
    SearchFilters,
    SearchResponse,
    SearchResult,
    utcnow,
)
from ragdoll.retrieval.ranking import RankingOptions, rank_candidates

logger = logging.getLogger(__name__)

CONTEXT_SEPARATOR = "\n\n---\n\n"


class SearchEngine:
    """Usage-aware semantic search over any :class:`VectorStoreBase`.

    Parameters
    ----------
    embedding_service:
        Turns queries into vectors; its model name scopes every search.
    store:
        A concrete vector-store backend.
    settings:
        Supplies the default threshold, limit, candidate pool factor,
        ranking weights and the analytics switch.
    search_log:
        Where :class:`SearchRecord` entries go.  ``None`` disables analytics.
    clock:
        Returns the current UTC time; injectable for tests.
    """

    def __init__(
        self,
        embedding_service: EmbeddingService,
        store: VectorStoreBase,
        settings: Settings | None = None,
        *,
        search_log: SearchLog | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.settings = settings or Settings()
        self.embedding_service = embedding_service
        self._store = store
        self.search_log = search_log
        self._clock = clock

    # -- public API -----------------------------------------------------------

    def search(
        self,
        query: str,
        *,
        limit: int | None = None,
        threshold: float | None = None,
        filters: SearchFilters | None = None,
        ranking: RankingOptions | None = None,
    ) -> SearchResponse:
        """Run a semantic search and return ranked results with citations.

        Parameters
        ----------
        query:
            Natural-language query string.  A blank query returns an empty
            response without touching the provider.
        limit:
            Maximum results (defaults to ``settings.max_search_results``).
        threshold:
            Minimum cosine similarity (defaults to
            ``settings.search_similarity_threshold``).
        filters:
            Document-level restrictions; only completed documents are
            searched unless ``document_status`` says otherwise.
        ranking:
            Overrides the ranking weights from settings.

        Raises
        ------
        SearchError
            When the query cannot be embedded or the store lookup fails.
        """
        started = time.perf_counter()
        if not query or not query.strip():
            return SearchResponse(query=query or "")

        try:
            vector = self.embedding_service.generate_embedding(query)
        except EmbeddingError as exc:
            raise SearchError(f"Failed to embed query: {exc.message}", {"query": query[:200]}) from exc
        if vector is None:
            return SearchResponse(query=query)

        return self._search(query, vector, limit, threshold, filters, ranking, started)

    def search_by_embedding(
        self,
        vector: Sequence[float],
        *,
        limit: int | None = None,
        threshold: float | None = None,
        filters: SearchFilters | None = None,
        ranking: RankingOptions | None = None,
    ) -> SearchResponse:
        """Same as :meth:`search` but accepts a pre-computed embedding."""
        started = time.perf_counter()
        if not vector:
            return SearchResponse(query="")
        return self._search("", list(vector), limit, threshold, filters, ranking, started)

    def get_context(
        self,
        prompt: str,
        *,
        limit: int | None = None,
        threshold: float | None = None,
        filters: SearchFilters | None = None,
    ) -> ContextResponse:
        """Search for *prompt* and assemble the hits into one context string."""
        response = self.search(prompt, limit=limit, threshold=threshold, filters=filters)
        chunks = [
            ContextChunk(content=r.content, source=r.citation, relevance_score=r.combined_score)
            for r in response.results
        ]
        return ContextResponse(
            prompt=prompt,
            context_chunks=chunks,
            total_chunks=len(chunks),
            combined_context=CONTEXT_SEPARATOR.join(c.content for c in chunks),
        )

    def as_langchain_retriever(self, limit: int = 5, **kwargs: Any) -> Any:
        """Return a LangChain ``BaseRetriever`` backed by this engine."""
        from ragdoll.retrieval.lc_retriever import RagdollRetriever

        return RagdollRetriever(engine=self, limit=limit, **kwargs)

    # -- internals ------------------------------------------------------------

    def _search(
        self,
        query: str,
        vector: list[float],
        limit: int | None,
        threshold: float | None,
        filters: SearchFilters | None,
        ranking: RankingOptions | None,
        started: float,
    ) -> SearchResponse:
        limit = self.settings.max_search_results if limit is None else limit
        threshold = self.settings.search_similarity_threshold if threshold is None else threshold
        ranking = ranking or RankingOptions.from_settings(self.settings)
        model_name = self.embedding_service.model_name
        dimensions = len(vector)

        scoped = (filters or SearchFilters()).model_copy(
            update={"model_name": model_name, "dimensions": dimensions}
        )
        if scoped.document_status is None:
            scoped.document_status = "completed"

        # Usage ranking ranks every candidate above the threshold; only the
        # similarity-only path is capped to a pool.
        pool = None if ranking.use_usage_ranking else limit * self.settings.search_candidate_pool_factor
        try:
            candidates = self._store.query(
                vector,
                threshold=threshold,
                limit=pool,
                filters=scoped.to_metadata_filters(),
            )
        except Exception as exc:
            raise SearchError(f"Vector store query failed: {exc}", {"collection": self._store.collection_name}) from exc

        now = self._clock()
        results = rank_candidates(
            candidates,
            threshold=threshold,
            limit=limit,
            options=ranking,
            now=now,
            model_name=model_name,
            dimensions=dimensions,
        )
        self._record_usage(results, now)

        elapsed = time.perf_counter() - started
        response = SearchResponse(query=query, results=results, total_results=len(results), search_time=elapsed)
        self._log_search(response, filters, model_name)
        logger.info("search %r → %d results in %.3fs", query[:80], len(results), elapsed)
        return response

    def _record_usage(self, results: list[SearchResult], now: datetime) -> None:
        if not results:
            return
        try:
            self._store.increment_usage([r.embedding_id for r in results], now=now)
        except Exception:
            logger.warning("Failed to record usage for %d results", len(results), exc_info=True)

    def _log_search(self, response: SearchResponse, filters: SearchFilters | None, model_name: str) -> None:
        if self.search_log is None or not self.settings.enable_search_analytics:
            return
        similarities = [r.similarity for r in response.results]
        try:
            self.search_log.record(
                SearchRecord(
                    query=response.query,
                    result_count=response.total_results,
                    search_time=response.search_time,
                    model_name=model_name,
                    filters=filters.model_dump(exclude_none=True) if filters else {},
                    result_ids=[r.embedding_id for r in response.results],
                    similarity_min=min(similarities) if similarities else None,
                    similarity_max=max(similarities) if similarities else None,
                    similarity_avg=sum(similarities) / len(similarities) if similarities else None,
                )
            )
        except Exception:
            logger.warning("Failed to record search analytics", exc_info=True)
