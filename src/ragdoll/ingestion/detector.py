"""Map file extensions to document types and decide what is worth embedding."""

from __future__ import annotations

import logging
from pathlib import Path

logger = logging.getLogger(__name__)

MAX_EMBEDDABLE_BYTES = 100 * 1024 * 1024
_SNIFF_BYTES = 1024

SUPPORTED_TYPES: dict[str, str] = {
    ".txt": "text",
    ".md": "markdown",
    ".markdown": "markdown",
    ".pdf": "pdf",
    ".docx": "docx",
    ".doc": "doc",
    ".html": "html",
    ".htm": "html",
    ".json": "json",
    ".xml": "xml",
    ".csv": "csv",
    ".rtf": "rtf",
    ".odt": "odt",
    ".py": "code",
    ".js": "code",
    ".ts": "code",
    ".rb": "code",
    ".java": "code",
    ".go": "code",
    ".rs": "code",
    ".c": "code",
    ".h": "code",
    ".cpp": "code",
}

PARSEABLE_TYPES = frozenset({"text", "markdown", "pdf", "docx", "html", "json", "xml", "csv", "code"})
_TEXTUAL_TYPES = frozenset({"text", "markdown", "html", "json", "xml", "csv", "code"})

DESCRIPTIONS: dict[str, str] = {
    "text": "Plain Text",
    "markdown": "Markdown Document",
    "pdf": "PDF Document",
    "docx": "Microsoft Word Document",
    "doc": "Microsoft Word Document (Legacy)",
    "html": "HTML Document",
    "json": "JSON Data",
    "xml": "XML Document",
    "csv": "CSV Data",
    "rtf": "Rich Text Format",
    "odt": "OpenDocument Text",
    "code": "Source Code",
}


def detect_document_type(path: str | Path) -> str:
    return SUPPORTED_TYPES.get(Path(path).suffix.lower(), "unknown")


def is_supported(path: str | Path) -> bool:
    return Path(path).suffix.lower() in SUPPORTED_TYPES


def is_parseable(path: str | Path) -> bool:
    return detect_document_type(path) in PARSEABLE_TYPES


def describe(path: str | Path) -> str:
    return DESCRIPTIONS.get(detect_document_type(path), "Unknown Document Type")


def is_embeddable(path: str | Path) -> bool:
    """Whether *path* is a parseable, non-empty file of reasonable size.

    Textual types are also sniffed: the first kilobyte must decode as
    UTF-8 and contain no NUL bytes.
    """
    path = Path(path)
    if not is_parseable(path) or not path.is_file():
        return False

    size = path.stat().st_size
    if size == 0 or size > MAX_EMBEDDABLE_BYTES:
        return False

    if detect_document_type(path) in _TEXTUAL_TYPES:
        try:
            with path.open("rb") as fh:
                sample = fh.read(_SNIFF_BYTES)
        except OSError:
            logger.debug("Cannot read %s for sniffing", path, exc_info=True)
            return False
        if b"\x00" in sample:
            return False
        try:
            # A multi-byte character may straddle the sniff boundary.
            sample.decode("utf-8")
        except UnicodeDecodeError as exc:
            if exc.start < len(sample) - 3:
                return False
    return True
