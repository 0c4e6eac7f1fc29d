"""Usage-biased re-ranking of similarity candidates.

Pure functions: no I/O, no clock reads (``now`` is always passed in), so
the ranking can be unit-tested exactly.

The usage score rewards chunks that earlier searches returned::

    frequency = min(ln(usage_count + 1) / ln(100), 1)
    recency   = exp(-seconds_since_last_use / 30 days)
    usage     = frequency_weight * frequency + recency_weight * recency

and ``combined = similarity_weight * similarity + usage``.  A chunk that
was never used scores ``0``.
"""

from __future__ import annotations

import math
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime

from ragdoll.config import Settings
from ragdoll.retrieval.models import Candidate, Citation, SearchResult

FREQUENCY_SATURATION = 100
RECENCY_DECAY_SECONDS = 30 * 24 * 3600


@dataclass(frozen=True)
class RankingOptions:
    use_usage_ranking: bool = True
    similarity_weight: float = 1.0
    frequency_weight: float = 0.7
    recency_weight: float = 0.3

    @classmethod
    def from_settings(cls, settings: Settings) -> RankingOptions:
        return cls(
            use_usage_ranking=settings.usage_ranking_enabled,
            similarity_weight=settings.usage_similarity_weight,
            frequency_weight=settings.usage_frequency_weight,
            recency_weight=settings.usage_recency_weight,
        )


def usage_score(
    usage_count: int,
    last_used_at: datetime | None,
    *,
    now: datetime,
    frequency_weight: float = 0.7,
    recency_weight: float = 0.3,
) -> float:
    if usage_count <= 0 or last_used_at is None:
        return 0.0
    frequency = min(math.log(usage_count + 1) / math.log(FREQUENCY_SATURATION), 1.0)
    elapsed = max((now - last_used_at).total_seconds(), 0.0)
    recency = math.exp(-elapsed / RECENCY_DECAY_SECONDS)
    return frequency_weight * frequency + recency_weight * recency


def combined_score(similarity: float, usage: float, *, similarity_weight: float = 1.0) -> float:
    return similarity_weight * similarity + usage


def _to_result(candidate: Candidate, usage: float, combined: float) -> SearchResult:
    citation = Citation(
        embedding_id=candidate.embedding_id,
        document_id=candidate.document_id,
        source=candidate.document_location or "unknown",
        title=candidate.document_title,
        chunk_index=candidate.chunk_index,
        document_type=candidate.document_type,
        metadata=candidate.metadata,
    )
    return SearchResult(
        content=candidate.content,
        citation=citation,
        similarity=candidate.similarity,
        usage_score=usage,
        combined_score=combined,
        usage_count=candidate.usage_count,
        last_used_at=candidate.last_used_at,
    )


def rank_candidates(
    candidates: Iterable[Candidate],
    *,
    threshold: float,
    limit: int,
    options: RankingOptions,
    now: datetime,
    model_name: str | None = None,
    dimensions: int | None = None,
) -> list[SearchResult]:
    """Filter, score and order *candidates*.

    Parameters
    ----------
    candidates:
        Raw hits from a vector store, in any order.
    threshold:
        Candidates with ``similarity < threshold`` are dropped before scoring.
    limit:
        Maximum number of results returned.
    options:
        Weights and the usage-ranking switch.  With usage ranking off every
        result gets ``usage_score=0`` and ``combined_score=similarity``.
    now:
        Reference time for the recency term.
    model_name, dimensions:
        When given, candidates produced by another model or with another
        vector size are dropped.

    Returns
    -------
    list[SearchResult]
        Ordered by ``combined_score`` descending, ties broken by
        ``similarity`` descending.
    """
    if limit <= 0:
        return []

    scored: list[SearchResult] = []
    for candidate in candidates:
        if candidate.similarity < threshold:
            continue
        if model_name is not None and candidate.model_name not in (None, model_name):
            continue
        if dimensions is not None and candidate.dimensions not in (None, dimensions):
            continue

        if options.use_usage_ranking:
            usage = usage_score(
                candidate.usage_count,
                candidate.last_used_at,
                now=now,
                frequency_weight=options.frequency_weight,
                recency_weight=options.recency_weight,
            )
            combined = combined_score(candidate.similarity, usage, similarity_weight=options.similarity_weight)
        else:
            usage, combined = 0.0, candidate.similarity
        scored.append(_to_result(candidate, usage, combined))

    scored.sort(key=lambda r: (-r.combined_score, -r.similarity))
    return scored[:limit]
