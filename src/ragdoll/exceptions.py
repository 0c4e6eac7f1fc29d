"""Exception hierarchy for the retrieval engine.

Every error carries a human-readable ``message`` plus an optional
``details`` dict with structured context for the caller to report.
"""

from __future__ import annotations

from typing import Any


class RagdollError(Exception):
    """Base class for all engine errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        self.message = message
        self.details = dict(details or {})
        super().__init__(message)

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


class DocumentError(RagdollError):
    """Raised for document bookkeeping failures."""


class DocumentNotFoundError(DocumentError):
    """Raised when a document id does not resolve."""

    def __init__(self, document_id: str, details: dict[str, Any] | None = None) -> None:
        details = dict(details or {})
        details["document_id"] = document_id
        super().__init__(f"Document not found: {document_id}", details)


class InvalidTransitionError(DocumentError):
    """Raised when a document status change is not allowed."""

    def __init__(self, current: str, target: str, details: dict[str, Any] | None = None) -> None:
        details = dict(details or {})
        details.update({"from": current, "to": target})
        super().__init__(f"Cannot move document from {current!r} to {target!r}", details)


class ParseError(RagdollError):
    """Raised when a source file cannot be turned into text."""


class UnsupportedFormatError(ParseError):
    """Raised by parsers that do not understand a file type."""


class EmbeddingError(RagdollError):
    """Raised when the embedding provider fails (network, timeout, bad payload)."""


class SearchError(RagdollError):
    """Raised when query embedding or the vector-store lookup fails."""


class VectorStoreError(RagdollError):
    """Raised by vector-store backends for storage-level failures."""

    def __init__(
        self,
        message: str,
        operation: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        details = dict(details or {})
        if operation:
            details["operation"] = operation
        super().__init__(message, details)
