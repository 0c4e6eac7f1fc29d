"""Search analytics — one write-once record per search, plus summaries.

The search engine writes a :class:`SearchRecord` after each search when
``Settings.enable_search_analytics`` is on.  Failures to write are logged
by the engine and never fail the search itself.
"""

from __future__ import annotations

import json
import logging
import re
import threading
from abc import ABC, abstractmethod
from collections import Counter
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, field_validator

from ragdoll.retrieval.models import utcnow

logger = logging.getLogger(__name__)

MAX_QUERY_CHARS = 10_000
SLOW_SEARCH_SECONDS = 2.0

_WHITESPACE = re.compile(r"\s+")


def normalize_query(query: str) -> str:
    """Collapse whitespace runs and truncate to :data:`MAX_QUERY_CHARS`."""
    return _WHITESPACE.sub(" ", query.strip())[:MAX_QUERY_CHARS]


class SearchRecord(BaseModel):
    query: str
    result_count: int = Field(default=0, ge=0)
    search_time: float | None = None
    model_name: str | None = None
    search_type: str = "semantic"
    filters: dict[str, Any] = Field(default_factory=dict)
    result_ids: list[str] = Field(default_factory=list)
    similarity_min: float | None = None
    similarity_max: float | None = None
    similarity_avg: float | None = None
    created_at: datetime = Field(default_factory=utcnow)

    model_config = {"frozen": True, "protected_namespaces": ()}

    @field_validator("query")
    @classmethod
    def _normalize(cls, value: str) -> str:
        return normalize_query(value)

    @property
    def successful(self) -> bool:
        return self.result_count > 0

    def is_slow(self, threshold: float = SLOW_SEARCH_SECONDS) -> bool:
        return self.search_time is not None and self.search_time > threshold

    @property
    def performance_category(self) -> str:
        if self.search_time is None:
            return "unknown"
        if self.search_time <= 0.5:
            return "fast"
        if self.search_time <= 1.0:
            return "normal"
        if self.search_time <= 2.0:
            return "slow"
        return "very_slow"


class SearchLog(ABC):
    """Append-only store of :class:`SearchRecord` objects."""

    @abstractmethod
    def record(self, entry: SearchRecord) -> None:
        ...

    @abstractmethod
    def list(self, since: datetime | None = None) -> list[SearchRecord]:
        ...


class InMemorySearchLog(SearchLog):
    def __init__(self) -> None:
        self._entries: list[SearchRecord] = []
        self._lock = threading.Lock()

    def record(self, entry: SearchRecord) -> None:
        with self._lock:
            self._entries.append(entry)

    def list(self, since: datetime | None = None) -> list[SearchRecord]:
        with self._lock:
            entries = list(self._entries)
        if since is None:
            return entries
        return [e for e in entries if e.created_at >= since]


class JsonlSearchLog(SearchLog):
    """One JSON object per line in ``path``; appends are serialised by a lock."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._lock = threading.Lock()

    def record(self, entry: SearchRecord) -> None:
        with self._lock:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with self.path.open("a", encoding="utf-8") as fh:
                fh.write(entry.model_dump_json() + "\n")

    def list(self, since: datetime | None = None) -> list[SearchRecord]:
        if not self.path.exists():
            return []
        entries: list[SearchRecord] = []
        with self._lock, self.path.open(encoding="utf-8") as fh:
            for lineno, line in enumerate(fh, start=1):
                if not line.strip():
                    continue
                try:
                    entry = SearchRecord.model_validate(json.loads(line))
                except ValueError:
                    logger.warning("Skipping malformed search record at %s:%d", self.path, lineno)
                    continue
                if since is None or entry.created_at >= since:
                    entries.append(entry)
        return entries


def _median(values: list[float]) -> float:
    n = len(values)
    if n == 0:
        return 0.0
    mid = n // 2
    if n % 2:
        return values[mid]
    return (values[mid - 1] + values[mid]) / 2.0


def _percentile(values: list[float], percentile: float) -> float:
    if not values:
        return 0.0
    index = round(percentile / 100.0 * (len(values) - 1))
    return values[index]


def summarize_searches(records: list[SearchRecord], *, top_queries: int = 10) -> dict[str, Any]:
    """Aggregate *records* into a JSON-friendly analytics dict.

    Returns
    -------
    dict
        ``total_searches``, ``unique_queries``, ``average_results``,
        ``average_search_time``, ``success_rate`` (percent),
        ``most_common_queries``, ``search_types``, ``models_used`` and
        ``performance_stats``.
    """
    total = len(records)
    timed = sorted(r.search_time for r in records if r.search_time is not None)
    queries = Counter(r.query for r in records)

    performance: dict[str, Any] = {}
    if timed:
        performance = {
            "fastest": timed[0],
            "slowest": timed[-1],
            "median": _median(timed),
            "percentile_95": _percentile(timed, 95),
            "slow_search_count": sum(1 for r in records if r.is_slow()),
        }

    return {
        "total_searches": total,
        "unique_queries": len(queries),
        "average_results": round(sum(r.result_count for r in records) / total, 2) if total else 0,
        "average_search_time": round(sum(timed) / len(timed), 3) if timed else 0,
        "success_rate": round(sum(1 for r in records if r.successful) / total * 100, 2) if total else 0,
        "most_common_queries": [{"query": q, "count": c} for q, c in queries.most_common(top_queries)],
        "search_types": dict(Counter(r.search_type for r in records)),
        "models_used": dict(Counter(r.model_name for r in records if r.model_name)),
        "performance_stats": performance,
    }


class SearchAnalytics:
    """Query a :class:`SearchLog` over a trailing window of days."""

    def __init__(self, log: SearchLog) -> None:
        self.log = log

    def summary(self, days: int = 30, *, now: datetime | None = None) -> dict[str, Any]:
        since = (now or utcnow()) - timedelta(days=days)
        return summarize_searches(self.log.list(since=since))
