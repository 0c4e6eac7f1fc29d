"""Abstract base class for embedding backends.

Adding a new backend (Cohere, Ollama, Bedrock …) only requires
subclassing :class:`EmbeddingProvider` and implementing the two abstract
methods.  Cleaning, batching, caching, and timeouts are handled once in
:class:`~ragdoll.embedding.service.EmbeddingService`.
"""

from __future__ import annotations

from abc import ABC, abstractmethod


class EmbeddingProvider(ABC):
    """Backend-agnostic text → vector interface.

    Parameters
    ----------
    model_name:
        Identifier stored alongside every vector so that vectors from
        different models are never compared.
    """

    def __init__(self, model_name: str) -> None:
        self.model_name = model_name

    # -- required overrides ---------------------------------------------------

    @abstractmethod
    def embed_query(self, text: str) -> list[float]:
        """Return the vector for a single piece of text."""
        ...

    @abstractmethod
    def embed_documents(self, texts: list[str]) -> list[list[float]]:
        """Return one vector per input text, in input order."""
        ...

    # -- optional overrides ---------------------------------------------------

    @property
    def dimensions(self) -> int | None:
        """Output dimension when known up front, else ``None``."""
        return None

    def __repr__(self) -> str:
        return f"{type(self).__name__}(model_name={self.model_name!r})"
