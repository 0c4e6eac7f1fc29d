"""Concrete embedding backends and the settings-driven factory.

Supports three modes, chosen once via ``Settings.embedding_provider``:

1. **huggingface** (default): a local sentence-transformers model loaded
   through ``langchain-huggingface``.
2. **openai**: OpenAI cloud, or any OpenAI-compatible server when
   ``openai_base_url`` is set.
3. **fake**: deterministic hash-based vectors from ``langchain-core``;
   no network, no model download.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Callable

from ragdoll.config import Settings
from ragdoll.embedding.base import EmbeddingProvider

if TYPE_CHECKING:
    from langchain_core.embeddings import Embeddings

logger = logging.getLogger(__name__)

DEFAULT_FAKE_DIMENSIONS = 384


class LangChainEmbeddingProvider(EmbeddingProvider):
    """Adapter around any LangChain :class:`Embeddings` implementation.

    The wrapped client is created lazily on first use so that building a
    provider never downloads a model or opens a connection.
    """

    def __init__(self, model_name: str, factory: Callable[[], Embeddings]) -> None:
        super().__init__(model_name)
        self._factory = factory
        self._client: Embeddings | None = None

    @property
    def client(self) -> Embeddings:
        if self._client is None:
            self._client = self._factory()
        return self._client

    def embed_query(self, text: str) -> list[float]:
        return list(self.client.embed_query(text))

    def embed_documents(self, texts: list[str]) -> list[list[float]]:
        return [list(vector) for vector in self.client.embed_documents(texts)]


class HuggingFaceEmbeddingProvider(LangChainEmbeddingProvider):
    """Local sentence-transformers model producing L2-normalised vectors."""

    def __init__(self, model_name: str, *, device: str | None = None) -> None:
        def build() -> Embeddings:
            from langchain_huggingface import HuggingFaceEmbeddings

            model_kwargs = {"device": device} if device else {}
            return HuggingFaceEmbeddings(
                model_name=model_name,
                model_kwargs=model_kwargs,
                encode_kwargs={"normalize_embeddings": True},
            )

        super().__init__(model_name, build)


class OpenAIEmbeddingProvider(LangChainEmbeddingProvider):
    """OpenAI (or OpenAI-compatible) embeddings endpoint."""

    def __init__(
        self,
        model_name: str,
        *,
        api_key: str = "",
        base_url: str = "",
        dimensions: int | None = None,
        timeout: float | None = None,
    ) -> None:
        self._dimensions = dimensions

        def build() -> Embeddings:
            from langchain_openai import OpenAIEmbeddings

            kwargs: dict = {"model": model_name, "max_retries": 2}
            if base_url:
                logger.info("Using OpenAI-compatible embeddings endpoint: %s", base_url)
                kwargs["base_url"] = base_url
                # Local servers don't need a real key; the client requires a non-empty value.
                kwargs["api_key"] = api_key or "EMPTY"
            elif api_key:
                kwargs["api_key"] = api_key
            if dimensions:
                kwargs["dimensions"] = dimensions
            if timeout:
                kwargs["timeout"] = timeout
            return OpenAIEmbeddings(**kwargs)

        super().__init__(model_name, build)

    @property
    def dimensions(self) -> int | None:
        return self._dimensions


class FakeEmbeddingProvider(LangChainEmbeddingProvider):
    """Deterministic vectors derived from a hash of the text."""

    def __init__(self, size: int = DEFAULT_FAKE_DIMENSIONS, model_name: str | None = None) -> None:
        self._size = size

        def build() -> Embeddings:
            from langchain_core.embeddings import DeterministicFakeEmbedding

            return DeterministicFakeEmbedding(size=size)

        super().__init__(model_name or f"fake-{size}", build)

    @property
    def dimensions(self) -> int | None:
        return self._size


def _build_huggingface(settings: Settings) -> EmbeddingProvider:
    return HuggingFaceEmbeddingProvider(settings.embedding_model)


def _build_openai(settings: Settings) -> EmbeddingProvider:
    return OpenAIEmbeddingProvider(
        settings.embedding_model,
        api_key=settings.openai_api_key,
        base_url=settings.openai_base_url,
        dimensions=settings.embedding_dimensions,
        timeout=settings.embedding_timeout_seconds,
    )


def _build_fake(settings: Settings) -> EmbeddingProvider:
    return FakeEmbeddingProvider(settings.embedding_dimensions or DEFAULT_FAKE_DIMENSIONS)


PROVIDER_REGISTRY: dict[str, Callable[[Settings], EmbeddingProvider]] = {
    "huggingface": _build_huggingface,
    "openai": _build_openai,
    "fake": _build_fake,
}
"""Mapping of ``Settings.embedding_provider`` value → provider builder."""


def get_embedding_provider(settings: Settings | None = None) -> EmbeddingProvider:
    """Return the provider selected by ``settings.embedding_provider``."""
    settings = settings or Settings()
    try:
        builder = PROVIDER_REGISTRY[settings.embedding_provider]
    except KeyError:
        raise ValueError(f"Unsupported embedding provider: {settings.embedding_provider!r}") from None
    provider = builder(settings)
    logger.info("Embedding provider: %r", provider)
    return provider
