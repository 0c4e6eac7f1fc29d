"""Unit tests for search analytics."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

import pytest

from ragdoll.retrieval.analytics import (
    MAX_QUERY_CHARS,
    InMemorySearchLog,
    JsonlSearchLog,
    SearchAnalytics,
    SearchRecord,
    summarize_searches,
)

NOW = datetime(2025, 6, 1, tzinfo=timezone.utc)


@pytest.fixture()
def records() -> list[SearchRecord]:
    return [
        SearchRecord(query="usage ranking", result_count=5, search_time=0.9, model_name="m", created_at=NOW),
        SearchRecord(query="usage   ranking", result_count=3, search_time=2.1, model_name="m", created_at=NOW),
        SearchRecord(query="chunking", result_count=0, search_time=1.5, model_name="m", created_at=NOW),
    ]


class TestSearchRecord:
    def test_query_is_normalised(self) -> None:
        assert SearchRecord(query="  a \n\t b ").query == "a b"
        assert len(SearchRecord(query="x" * (MAX_QUERY_CHARS + 5)).query) == MAX_QUERY_CHARS

    @pytest.mark.parametrize(
        ("seconds", "category"),
        [(None, "unknown"), (0.3, "fast"), (0.7, "normal"), (1.5, "slow"), (3.0, "very_slow")],
    )
    def test_performance_category(self, seconds, category) -> None:
        assert SearchRecord(query="q", search_time=seconds).performance_category == category

    def test_success_and_slowness(self) -> None:
        record = SearchRecord(query="q", result_count=0, search_time=2.5)
        assert not record.successful
        assert record.is_slow()
        assert not record.is_slow(threshold=3.0)


class TestSummarize:
    def test_aggregates(self, records) -> None:
        summary = summarize_searches(records)

        assert summary["total_searches"] == 3
        assert summary["unique_queries"] == 2
        assert summary["average_results"] == 2.67
        assert summary["average_search_time"] == 1.5
        assert summary["success_rate"] == 66.67
        assert summary["most_common_queries"] == [
            {"query": "usage ranking", "count": 2},
            {"query": "chunking", "count": 1},
        ]
        assert summary["search_types"] == {"semantic": 3}
        assert summary["models_used"] == {"m": 3}

    def test_performance_stats(self, records) -> None:
        stats = summarize_searches(records)["performance_stats"]
        assert stats["fastest"] == 0.9
        assert stats["slowest"] == 2.1
        assert stats["median"] == 1.5
        assert stats["percentile_95"] == 2.1
        assert stats["slow_search_count"] == 1

    def test_even_count_median(self) -> None:
        times = [0.1, 0.2, 0.3, 0.4]
        stats = summarize_searches([SearchRecord(query="q", search_time=t) for t in times])["performance_stats"]
        assert stats["median"] == pytest.approx(0.25)

    def test_empty(self) -> None:
        summary = summarize_searches([])
        assert summary["total_searches"] == 0
        assert summary["success_rate"] == 0
        assert summary["performance_stats"] == {}


class TestSearchLogs:
    def test_window(self, records) -> None:
        log = InMemorySearchLog()
        for record in records:
            log.record(record)
        log.record(SearchRecord(query="old", created_at=NOW - timedelta(days=10)))

        assert SearchAnalytics(log).summary(days=7, now=NOW)["total_searches"] == 3
        assert SearchAnalytics(log).summary(days=30, now=NOW)["total_searches"] == 4

    def test_jsonl_round_trip(self, records, tmp_path, caplog) -> None:
        path = tmp_path / "logs" / "searches.jsonl"
        log = JsonlSearchLog(path)
        for record in records:
            log.record(record)
        with path.open("a", encoding="utf-8") as fh:
            fh.write("not json\n")

        with caplog.at_level(logging.WARNING, logger="ragdoll.retrieval.analytics"):
            reloaded = JsonlSearchLog(path).list()

        assert reloaded == records
        assert "Skipping malformed search record" in caplog.text

    def test_jsonl_missing_file(self, tmp_path) -> None:
        assert JsonlSearchLog(tmp_path / "none.jsonl").list() == []
