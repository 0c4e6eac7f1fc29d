"""LangChain retriever adapter over :class:`~ragdoll.retrieval.engine.SearchEngine`.

LangChain is only imported here, so the rest of the retrieval package
does not depend on its retriever abstractions.
"""

from __future__ import annotations

from typing import Any

from langchain_core.callbacks import CallbackManagerForRetrieverRun
from langchain_core.documents import Document
from langchain_core.retrievers import BaseRetriever
from pydantic import ConfigDict

from ragdoll.retrieval.models import SearchFilters


class RagdollRetriever(BaseRetriever):
    """Satisfies LangChain's retriever protocol; every hit carries its citation."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    engine: Any
    limit: int = 5
    threshold: float | None = None
    filters: SearchFilters | None = None

    def _get_relevant_documents(
        self,
        query: str,
        *,
        run_manager: CallbackManagerForRetrieverRun,
    ) -> list[Document]:
        response = self.engine.search(query, limit=self.limit, threshold=self.threshold, filters=self.filters)
        return [
            Document(
                page_content=r.content,
                metadata={
                    **r.citation.metadata,
                    "similarity": r.similarity,
                    "combined_score": r.combined_score,
                    "_citation": r.citation.model_dump(mode="json"),
                },
            )
            for r in response.results
        ]
