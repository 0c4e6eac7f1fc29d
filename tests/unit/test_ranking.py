"""Unit tests for usage-biased ranking."""

from __future__ import annotations

import math
from datetime import datetime, timedelta, timezone

import pytest

from ragdoll.config import Settings
from ragdoll.retrieval.models import Candidate
from ragdoll.retrieval.ranking import RankingOptions, rank_candidates, usage_score

NOW = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)


def _candidate(
    embedding_id: str,
    similarity: float,
    *,
    usage_count: int = 0,
    last_used_at: datetime | None = None,
    model_name: str = "m",
    dimensions: int = 3,
) -> Candidate:
    return Candidate(
        embedding_id=embedding_id,
        document_id="doc",
        chunk_index=0,
        content=f"content {embedding_id}",
        similarity=similarity,
        usage_count=usage_count,
        last_used_at=last_used_at,
        model_name=model_name,
        dimensions=dimensions,
        document_location="/tmp/doc.md",
    )


class TestUsageScore:
    def test_never_used_scores_zero(self) -> None:
        assert usage_score(0, NOW, now=NOW) == 0.0
        assert usage_score(5, None, now=NOW) == 0.0

    def test_formula(self) -> None:
        score = usage_score(9, NOW - timedelta(days=30), now=NOW, frequency_weight=0.7, recency_weight=0.3)
        expected = 0.7 * math.log(10) / math.log(100) + 0.3 * math.exp(-1)
        assert score == pytest.approx(expected)

    def test_frequency_saturates(self) -> None:
        assert usage_score(10_000, NOW, now=NOW, frequency_weight=1.0, recency_weight=0.0) == pytest.approx(1.0)

    def test_monotonic_in_count(self) -> None:
        assert usage_score(20, NOW, now=NOW) > usage_score(2, NOW, now=NOW)

    def test_monotonic_in_recency(self) -> None:
        recent = usage_score(3, NOW - timedelta(hours=1), now=NOW)
        stale = usage_score(3, NOW - timedelta(days=90), now=NOW)
        assert recent > stale


class TestRankCandidates:
    def test_drops_below_threshold(self) -> None:
        results = rank_candidates(
            [_candidate("a", 0.9), _candidate("b", 0.6)],
            threshold=0.7,
            limit=10,
            options=RankingOptions(),
            now=NOW,
        )
        assert [r.embedding_id for r in results] == ["a"]

    def test_limit(self) -> None:
        candidates = [_candidate(str(i), 0.9 - i / 100) for i in range(5)]
        results = rank_candidates(candidates, threshold=0.0, limit=2, options=RankingOptions(), now=NOW)
        assert [r.embedding_id for r in results] == ["0", "1"]

    def test_usage_promotes_slightly_less_similar_chunk(self) -> None:
        candidates = [
            _candidate("fresh", 0.85),
            _candidate("popular", 0.80, usage_count=50, last_used_at=NOW - timedelta(hours=1)),
        ]
        ranked = rank_candidates(candidates, threshold=0.5, limit=2, options=RankingOptions(), now=NOW)
        assert [r.embedding_id for r in ranked] == ["popular", "fresh"]
        assert ranked[0].usage_score > 0
        assert ranked[0].combined_score == pytest.approx(ranked[0].similarity + ranked[0].usage_score)

    def test_disabled_ranking_uses_similarity_only(self) -> None:
        candidates = [
            _candidate("fresh", 0.85),
            _candidate("popular", 0.80, usage_count=50, last_used_at=NOW),
        ]
        ranked = rank_candidates(
            candidates,
            threshold=0.5,
            limit=2,
            options=RankingOptions(use_usage_ranking=False),
            now=NOW,
        )
        assert [r.embedding_id for r in ranked] == ["fresh", "popular"]
        assert all(r.usage_score == 0.0 for r in ranked)
        assert all(r.combined_score == r.similarity for r in ranked)

    def test_ties_broken_by_similarity(self) -> None:
        options = RankingOptions(frequency_weight=0.25, recency_weight=0.0)
        candidates = [
            _candidate("boosted", 0.5, usage_count=99, last_used_at=NOW),
            _candidate("plain", 0.75),
        ]
        ranked = rank_candidates(candidates, threshold=0.0, limit=2, options=options, now=NOW)
        assert ranked[0].combined_score == ranked[1].combined_score
        assert [r.embedding_id for r in ranked] == ["plain", "boosted"]

    def test_drops_other_models_and_dimensions(self) -> None:
        candidates = [
            _candidate("ok", 0.9),
            _candidate("other-model", 0.95, model_name="other"),
            _candidate("other-dims", 0.95, dimensions=5),
        ]
        ranked = rank_candidates(
            candidates,
            threshold=0.0,
            limit=10,
            options=RankingOptions(),
            now=NOW,
            model_name="m",
            dimensions=3,
        )
        assert [r.embedding_id for r in ranked] == ["ok"]

    def test_citation_carries_source(self) -> None:
        [result] = rank_candidates([_candidate("a", 0.9)], threshold=0.0, limit=1, options=RankingOptions(), now=NOW)
        assert result.citation.source == "/tmp/doc.md"
        assert result.citation.short_ref() == "[/tmp/doc.md§0]"

    def test_options_from_settings(self) -> None:
        options = RankingOptions.from_settings(Settings(usage_ranking_enabled=False, usage_frequency_weight=0.5))
        assert options.use_usage_ranking is False
        assert options.frequency_weight == 0.5
