"""Document parsers — turn a file on disk into plain text plus metadata.

PDF and DOCX go through the LangChain community loaders; HTML through
BeautifulSoup; everything textual is read directly.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

from ragdoll.exceptions import ParseError, UnsupportedFormatError
from ragdoll.ingestion.detector import detect_document_type
from ragdoll.ingestion.models import ParsedDocument

logger = logging.getLogger(__name__)

_PDF_INFO_KEYS = ("title", "author", "subject", "creator", "producer", "creationdate", "moddate")


def read_text_file(path: str | Path) -> tuple[str, str]:
    """Read *path* as UTF-8, falling back to Latin-1.  Returns ``(text, encoding)``."""
    path = Path(path)
    try:
        return path.read_text(encoding="utf-8"), "utf-8"
    except UnicodeDecodeError:
        logger.debug("%s is not valid UTF-8; reading as ISO-8859-1", path)
        return path.read_text(encoding="latin-1"), "iso-8859-1"


class DocumentParser(ABC):
    """``path -> ParsedDocument`` extraction interface."""

    @abstractmethod
    def parse(self, path: str | Path) -> ParsedDocument:
        """Extract text from *path*.

        Raises
        ------
        UnsupportedFormatError
            When this parser does not understand the file type.
        ParseError
            When the file is understood but cannot be read.
        """
        ...


class DefaultDocumentParser(DocumentParser):
    """Parser covering PDF, DOCX, HTML and the plain-text family."""

    def parse(self, path: str | Path) -> ParsedDocument:
        path = Path(path)
        if not path.is_file():
            raise ParseError(f"File not found: {path}", {"path": str(path)})

        document_type = detect_document_type(path)
        handler = {
            "pdf": self._parse_pdf,
            "docx": self._parse_docx,
            "html": self._parse_html,
        }.get(document_type)

        if handler is None and document_type in {"doc", "rtf", "odt"}:
            raise UnsupportedFormatError(
                f"No extractor for {document_type} files",
                {"path": str(path), "document_type": document_type},
            )

        try:
            if handler is not None:
                return handler(path)
            return self._parse_text(path, document_type)
        except ParseError:
            raise
        except Exception as exc:
            raise ParseError(f"Failed to parse {path}: {exc}", {"path": str(path)}) from exc

    # -- per-format handlers --------------------------------------------------

    def _parse_pdf(self, path: Path) -> ParsedDocument:
        from langchain_community.document_loaders import PyPDFLoader

        pages = PyPDFLoader(str(path)).load()
        parts: list[str] = []
        for index, page in enumerate(pages):
            text = page.page_content.strip()
            if not text:
                continue
            if parts:
                parts.append(f"\n\n--- Page {index + 1} ---\n\n")
            parts.append(text)

        metadata: dict[str, Any] = {"page_count": len(pages)}
        if pages:
            info = pages[0].metadata
            metadata.update({key: info[key] for key in _PDF_INFO_KEYS if info.get(key)})
        return ParsedDocument(content="".join(parts).strip(), metadata=metadata, document_type="pdf")

    def _parse_docx(self, path: Path) -> ParsedDocument:
        from langchain_community.document_loaders import Docx2txtLoader

        docs = Docx2txtLoader(str(path)).load()
        content = "\n\n".join(d.page_content.strip() for d in docs if d.page_content.strip())
        return ParsedDocument(
            content=content,
            metadata={"file_size": path.stat().st_size},
            document_type="docx",
        )

    def _parse_html(self, path: Path) -> ParsedDocument:
        from bs4 import BeautifulSoup

        raw, encoding = read_text_file(path)
        soup = BeautifulSoup(raw, "html.parser")
        for tag in soup(["script", "style"]):
            tag.decompose()
        title = soup.title.get_text(strip=True) if soup.title else None
        content = " ".join(soup.get_text(separator=" ").split())

        metadata: dict[str, Any] = {"file_size": path.stat().st_size, "original_format": "html", "encoding": encoding}
        if title:
            metadata["title"] = title
        return ParsedDocument(content=content, metadata=metadata, document_type="html")

    def _parse_text(self, path: Path, document_type: str) -> ParsedDocument:
        content, encoding = read_text_file(path)
        return ParsedDocument(
            content=content,
            metadata={"file_size": path.stat().st_size, "encoding": encoding},
            document_type=document_type if document_type != "unknown" else "text",
        )
