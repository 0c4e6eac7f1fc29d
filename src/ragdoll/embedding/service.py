"""Embedding service — cleaning, truncation, batching, caching, timeouts.

Sits between the ingestion / search layers and an
:class:`~ragdoll.embedding.base.EmbeddingProvider`.  Blank input and
degenerate vectors are *defined fallbacks* (``None`` / ``0.0``), while
provider failures are always surfaced as
:class:`~ragdoll.exceptions.EmbeddingError`.

Usage::

    from ragdoll.embedding import EmbeddingService, get_embedding_provider

    service = EmbeddingService(get_embedding_provider(settings), settings)
    vector  = service.generate_embedding("How does usage ranking work?")
"""

from __future__ import annotations

import logging
import math
import re
import threading
from collections import OrderedDict
from collections.abc import Sequence
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import Any, Callable, TypeVar

from ragdoll.config import Settings
from ragdoll.embedding.base import EmbeddingProvider
from ragdoll.exceptions import EmbeddingError

logger = logging.getLogger(__name__)

T = TypeVar("T")

_NEWLINE_RUN = re.compile(r"\s*\n\s*")
_SPACE_RUN = re.compile(r"[^\S\n]+")


def clean_text(text: str | None, max_chars: int = 8000) -> str:
    """Normalise whitespace and truncate *text* for an embedding model.

    Tabs become spaces, runs of newlines (and the whitespace around them)
    collapse to a single ``"\\n"``, other whitespace runs collapse to one
    space, and the result is truncated to *max_chars* characters.  Python
    strings index by code point, so truncation never splits a character.
    """
    if not text:
        return ""
    cleaned = text.replace("\t", " ")
    cleaned = _NEWLINE_RUN.sub("\n", cleaned)
    cleaned = _SPACE_RUN.sub(" ", cleaned).strip()
    if len(cleaned) > max_chars:
        cleaned = cleaned[:max_chars].rstrip()
    return cleaned


def cosine_similarity(a: Sequence[float] | None, b: Sequence[float] | None) -> float:
    """Cosine similarity of two vectors, in ``[-1, 1]``.

    Returns ``0.0`` when either vector is missing or empty, when their
    lengths differ, or when either has zero magnitude.
    """
    if not a or not b or len(a) != len(b):
        return 0.0

    dot = math.fsum(x * y for x, y in zip(a, b))
    norm_a = math.sqrt(math.fsum(x * x for x in a))
    norm_b = math.sqrt(math.fsum(y * y for y in b))
    if norm_a == 0.0 or norm_b == 0.0:
        return 0.0

    return max(-1.0, min(1.0, dot / (norm_a * norm_b)))


class EmbeddingService:
    """Clean, batch, cache, and time-bound calls to an embedding provider.

    Parameters
    ----------
    provider:
        Concrete embedding backend.
    settings:
        Supplies ``max_embedding_input_chars``, ``embedding_batch_size``,
        ``embedding_cache_size`` and ``embedding_timeout_seconds``.
    """

    def __init__(self, provider: EmbeddingProvider, settings: Settings | None = None) -> None:
        settings = settings or Settings()
        self.provider = provider
        self.max_chars = settings.max_embedding_input_chars
        self.batch_size = settings.embedding_batch_size
        self.timeout = settings.embedding_timeout_seconds
        self._cache_size = settings.embedding_cache_size
        self._cache: OrderedDict[tuple[str, str], list[float]] = OrderedDict()
        self._cache_lock = threading.Lock()
        self._workers = settings.ingest_max_workers + 1
        self._executor = self._new_executor()
        self._executor_lock = threading.Lock()

    @property
    def model_name(self) -> str:
        return self.provider.model_name

    # -- public API -----------------------------------------------------------

    def clean_text(self, text: str | None) -> str:
        return clean_text(text, self.max_chars)

    def generate_embedding(self, text: str | None) -> list[float] | None:
        """Return the vector for *text*, or ``None`` when *text* is blank.

        Raises
        ------
        EmbeddingError
            On provider failure, timeout, or an empty/invalid vector.
        """
        cleaned = self.clean_text(text)
        if not cleaned:
            return None

        cached = self._cache_get(cleaned)
        if cached is not None:
            return cached

        vector = self._call(self.provider.embed_query, cleaned, what="embedding")
        self._validate(vector)
        self._cache_put(cleaned, vector)
        return list(vector)

    def generate_embeddings_batch(self, texts: Sequence[str | None]) -> list[list[float]]:
        """Embed many texts, skipping blank ones.

        The result holds one vector per **non-blank** input, in input
        order.  Texts are sent to the provider in sub-batches of
        ``embedding_batch_size``; cached texts are not re-sent.
        """
        cleaned = [c for c in (self.clean_text(t) for t in texts) if c]
        if not cleaned:
            return []

        vectors: list[list[float] | None] = [self._cache_get(c) for c in cleaned]
        missing = [i for i, v in enumerate(vectors) if v is None]

        for start in range(0, len(missing), self.batch_size):
            indexes = missing[start : start + self.batch_size]
            batch = [cleaned[i] for i in indexes]
            result = self._call(self.provider.embed_documents, batch, what="embeddings")
            if not isinstance(result, list) or len(result) != len(batch):
                raise EmbeddingError(
                    "Invalid response from embedding provider",
                    {"expected": len(batch), "received": len(result) if isinstance(result, list) else None},
                )
            for index, vector in zip(indexes, result):
                self._validate(vector)
                vectors[index] = list(vector)
                self._cache_put(cleaned[index], vectors[index])
            logger.debug("embedded %d / %d texts", start + len(batch), len(missing))

        return [v for v in vectors if v is not None]

    @staticmethod
    def cosine_similarity(a: Sequence[float] | None, b: Sequence[float] | None) -> float:
        return cosine_similarity(a, b)

    def clear_cache(self) -> None:
        with self._cache_lock:
            self._cache.clear()

    def close(self) -> None:
        """Release the worker threads used to bound provider calls."""
        self._executor.shutdown(wait=False, cancel_futures=True)

    def __enter__(self) -> EmbeddingService:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    # -- internals ------------------------------------------------------------

    def _new_executor(self) -> ThreadPoolExecutor:
        return ThreadPoolExecutor(max_workers=self._workers, thread_name_prefix="embedding")

    def _replace_executor(self) -> None:
        # The hung call keeps its thread; new calls go to a fresh pool.
        with self._executor_lock:
            stale, self._executor = self._executor, self._new_executor()
        stale.shutdown(wait=False)
        logger.warning("Embedding call to %s is still running after timeout; replaced worker pool", self.model_name)

    def _call(self, fn: Callable[[T], Any], arg: T, *, what: str) -> Any:
        with self._executor_lock:
            future = self._executor.submit(fn, arg)
        try:
            return future.result(timeout=self.timeout)
        except FutureTimeoutError:
            if not future.cancel():
                self._replace_executor()
            raise EmbeddingError(
                f"Timed out generating {what} after {self.timeout:.1f}s",
                {"model": self.model_name},
            ) from None
        except EmbeddingError:
            raise
        except Exception as exc:
            raise EmbeddingError(
                f"Failed to generate {what}: {exc}",
                {"model": self.model_name, "error_type": type(exc).__name__},
            ) from exc

    def _validate(self, vector: Any) -> None:
        if not isinstance(vector, (list, tuple)) or not vector:
            raise EmbeddingError("Invalid response format from embedding provider", {"model": self.model_name})
        if not all(isinstance(x, (int, float)) for x in vector):
            raise EmbeddingError("Embedding contains non-numeric values", {"model": self.model_name})

    def _cache_get(self, cleaned: str) -> list[float] | None:
        if not self._cache_size:
            return None
        with self._cache_lock:
            vector = self._cache.get((self.model_name, cleaned))
            if vector is None:
                return None
            self._cache.move_to_end((self.model_name, cleaned))
            return list(vector)

    def _cache_put(self, cleaned: str, vector: Sequence[float]) -> None:
        if not self._cache_size:
            return
        with self._cache_lock:
            self._cache[(self.model_name, cleaned)] = list(vector)
            self._cache.move_to_end((self.model_name, cleaned))
            while len(self._cache) > self._cache_size:
                self._cache.popitem(last=False)
