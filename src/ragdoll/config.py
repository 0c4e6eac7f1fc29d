"""Shared configuration loaded from environment / ``.env`` file.

There is no module-level ``settings`` instance: every component takes a
:class:`Settings` object in its constructor.
"""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Engine-wide settings, populated from ``RAGDOLL_*`` env vars or ``.env``."""

    # Embedding
    embedding_provider: Literal["huggingface", "openai", "fake"] = Field(
        default="huggingface",
        description="Backend used to turn text into vectors.",
    )
    embedding_model: str = "sentence-transformers/all-MiniLM-L6-v2"
    embedding_dimensions: int | None = Field(
        default=None,
        gt=0,
        description=(
            "Requested output dimension. Only honoured by providers that can "
            "shorten vectors (OpenAI text-embedding-3-*) and by the fake provider."
        ),
    )
    openai_api_key: str = Field(default="", description="OpenAI API key (or dummy value for a local server)")
    openai_base_url: str = Field(
        default="",
        description=(
            "Base URL for an OpenAI-compatible embeddings API. Leave empty to "
            "use OpenAI cloud."
        ),
    )
    embedding_timeout_seconds: float = Field(default=30.0, gt=0)
    embedding_batch_size: int = Field(default=64, gt=0)
    embedding_cache_size: int = Field(default=1024, ge=0, description="0 disables the cache")
    max_embedding_input_chars: int = Field(default=8000, gt=0)

    # Chunking
    chunk_size: int = Field(default=1000, gt=0)
    chunk_overlap: int = Field(default=200, ge=0)
    chunk_strategy: Literal["window", "structure"] = "window"

    # Search
    search_similarity_threshold: float = Field(default=0.7, ge=-1.0, le=1.0)
    max_search_results: int = Field(default=10, gt=0)
    search_candidate_pool_factor: int = Field(
        default=3,
        ge=1,
        description="Candidates fetched per requested result when usage ranking is off.",
    )
    usage_ranking_enabled: bool = True
    usage_similarity_weight: float = 1.0
    usage_frequency_weight: float = 0.7
    usage_recency_weight: float = 0.3
    enable_search_analytics: bool = True

    # Ingestion
    ingest_batch_size: int = Field(default=10, gt=0)
    ingest_max_workers: int = Field(default=4, gt=0)

    # Storage
    vector_store_backend: Literal["memory", "chroma"] = "chroma"
    chroma_host: str = Field(
        default="",
        description="Chroma server host. Empty uses an embedded persistent client under storage_dir.",
    )
    chroma_port: int = 8000
    chroma_collection: str = "ragdoll"
    storage_dir: str = "~/.ragdoll"

    # Logging
    log_level: str = "INFO"

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "env_prefix": "RAGDOLL_"}

    @property
    def storage_path(self) -> Path:
        """``storage_dir`` with ``~`` expanded."""
        return Path(self.storage_dir).expanduser()
