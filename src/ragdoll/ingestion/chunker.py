"""Text chunking strategies.

The default strategy is a sliding character window that looks for a
content-aware break point inside every window before cutting:

1. a paragraph break (``"\\n\\n"``) past :data:`SENTENCE_BREAK_FRACTION`
   of the window,
2. the rightmost sentence end past the same fraction,
3. the last whitespace past :data:`WORD_BREAK_FRACTION` of the window,
4. a hard cut at ``chunk_size``.

Consecutive chunks overlap by up to ``chunk_overlap`` characters, and
never by more than half of the previous chunk.  The overlap start is nudged forward to a word boundary so chunks never begin
mid-word, and the window start always moves strictly forward.
"""

from __future__ import annotations

import logging
import re

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 1000
DEFAULT_CHUNK_OVERLAP = 200

SENTENCE_BREAK_FRACTION = 0.5
WORD_BREAK_FRACTION = 0.3

_SENTENCE_ENDINGS = (
    re.compile(r"[.!?][^\S\n]*\n"),
    re.compile(r"[.!?](?=\s+[A-Z])"),
    re.compile(r"[.!?]$", re.MULTILINE),
)
_WHITESPACE = re.compile(r"\s")
_SENTENCE_SPLIT = re.compile(r"(?<=[.!?])\s+")
_PARAGRAPH_SPLIT = re.compile(r"\n\s*\n")
_CODE_BLOCK_START = re.compile(r"^\s*(def|class|function|const|let|var)\s")


class TextChunker:
    """Split text into overlapping chunks at content-aware boundaries.

    Parameters
    ----------
    chunk_size:
        Maximum number of characters per chunk.  Must be positive.
    chunk_overlap:
        Characters shared between consecutive chunks.  Values ``>=
        chunk_size`` are clamped to ``chunk_size - 1`` and negative values
        to ``0``; neither is an error.
    """

    def __init__(
        self,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        chunk_overlap: int = DEFAULT_CHUNK_OVERLAP,
    ) -> None:
        if chunk_size <= 0:
            raise ValueError(f"chunk_size must be positive, got {chunk_size}")
        if chunk_overlap >= chunk_size:
            logger.debug(
                "chunk_overlap=%d >= chunk_size=%d, clamping to %d",
                chunk_overlap,
                chunk_size,
                chunk_size - 1,
            )
        self.chunk_size = chunk_size
        self.chunk_overlap = min(max(chunk_overlap, 0), chunk_size - 1)

    def chunk(self, text: str | None) -> list[str]:
        """Return the ordered, non-empty chunks of *text*."""
        text = text or ""
        if not text:
            return []
        if len(text) <= self.chunk_size:
            return [text]

        chunks: list[str] = []
        start = 0
        length = len(text)

        while start < length:
            end = start + self.chunk_size
            if end >= length:
                tail = text[start:].strip()
                if tail:
                    chunks.append(tail)
                break

            break_at = start + self._find_break(text[start:end])
            piece = text[start:break_at].strip()
            if piece:
                chunks.append(piece)

            start = self._next_start(text, start, break_at)

        return chunks

    # -- internals ------------------------------------------------------------

    def _find_break(self, window: str) -> int:
        """Return the offset inside *window* after which to cut."""
        sentence_floor = self.chunk_size * SENTENCE_BREAK_FRACTION

        paragraph = window.rfind("\n\n")
        if paragraph != -1 and paragraph > sentence_floor:
            return paragraph + 2

        sentence_ends = [
            match.end()
            for pattern in _SENTENCE_ENDINGS
            for match in pattern.finditer(window)
            if match.end() > sentence_floor
        ]
        if sentence_ends:
            return max(sentence_ends)

        word = _last_whitespace(window)
        if word != -1 and word > self.chunk_size * WORD_BREAK_FRACTION:
            return word + 1

        return self.chunk_size

    def _next_start(self, text: str, start: int, break_at: int) -> int:
        # Overlap is capped at half of the emitted piece, so the stride is at
        # least half a piece even when chunk_overlap approaches chunk_size.
        overlap = min(self.chunk_overlap, (break_at - start) // 2)
        candidate = max(break_at - overlap, 0)
        # Don't start the overlap in the middle of a word.
        if 0 < candidate < break_at and not text[candidate - 1].isspace():
            match = _WHITESPACE.search(text, candidate, break_at)
            if match is not None:
                candidate = match.start()
        return max(candidate, start + 1)


def _last_whitespace(window: str) -> int:
    for index in range(len(window) - 1, -1, -1):
        if window[index].isspace():
            return index
    return -1


def chunk_text(
    text: str | None,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    chunk_overlap: int = DEFAULT_CHUNK_OVERLAP,
) -> list[str]:
    """Convenience wrapper around :meth:`TextChunker.chunk`."""
    return TextChunker(chunk_size, chunk_overlap).chunk(text)


def chunk_by_structure(text: str | None, max_chunk_size: int = DEFAULT_CHUNK_SIZE) -> list[str]:
    """Pack whole paragraphs into chunks of at most *max_chunk_size*.

    Paragraphs that are too large on their own are split into sentences,
    and sentences that are still too large are split into words.  No
    overlap is added.
    """
    chunks: list[str] = []
    current = ""

    def flush() -> None:
        nonlocal current
        if current.strip():
            chunks.append(current.strip())
        current = ""

    def append(piece: str, joiner: str) -> None:
        nonlocal current
        if current and len(current) + len(joiner) + len(piece) > max_chunk_size:
            flush()
        current = f"{current}{joiner}{piece}" if current else piece

    for paragraph in _PARAGRAPH_SPLIT.split(text or ""):
        paragraph = paragraph.strip()
        if not paragraph:
            continue
        if len(paragraph) <= max_chunk_size:
            append(paragraph, "\n\n")
            continue
        for sentence in _SENTENCE_SPLIT.split(paragraph):
            sentence = sentence.strip()
            if not sentence:
                continue
            if len(sentence) <= max_chunk_size:
                append(sentence, " ")
                continue
            for word in sentence.split():
                append(word, " ")

    flush()
    return chunks


def chunk_code(text: str | None, max_chunk_size: int = DEFAULT_CHUNK_SIZE) -> list[str]:
    """Pack logical code blocks (functions, classes, top-level statements).

    A new block starts on a ``def``/``class``/``function``/``const``/
    ``let``/``var`` line, or on a non-blank line indented no deeper than
    the line that opened the current block.  Blocks are joined with
    newlines until adding the next one would exceed *max_chunk_size*.
    """
    chunks: list[str] = []
    current = ""
    block: list[str] = []
    block_indent: int | None = None

    def pack(lines: list[str]) -> None:
        nonlocal current
        if not lines:
            return
        block_text = "\n".join(lines)
        if current and len(current) + 1 + len(block_text) > max_chunk_size:
            chunks.append(current.strip())
            current = ""
        current = f"{current}\n{block_text}" if current else block_text

    for line in (text or "").split("\n"):
        indent = len(line) - len(line.lstrip())
        opens_block = bool(_CODE_BLOCK_START.match(line)) or (
            block_indent is not None and indent <= block_indent and line.strip() != ""
        )
        if opens_block:
            pack(block)
            block = [line]
            block_indent = indent
        else:
            block.append(line)

    pack(block)
    if current.strip():
        chunks.append(current.strip())
    return [chunk for chunk in chunks if chunk]
