"""Chunking utilities."""

from __future__ import annotations

import math
import re
from dataclasses import dataclass, field
from typing import Any, Iterator, Sequence

DEFAULT_SEPARATORS: tuple[str, ...] = (
    "\n\n\n",  # section
    "\n\n",  # paragraph
    "\n",  # line
    ". ",  # sentence
    " ",  # word
)

_LIST_LINE_RE = re.compile(r"^[*#]", re.MULTILINE)


@dataclass(slots=True)
class Segment:
    start: int
    end: int

    @property
    def length(self) -> int:
        return self.end - self.start


@dataclass(slots=True)
class TextChunk:
    text: str
    index: int
    start_char: int
    end_char: int
    metadata: dict[str, Any] = field(default_factory=dict)


def split_text(
    text: str,
    chunk_size: int = 500,
    chunk_overlap: int = 100,
    separators: Sequence[str] = DEFAULT_SEPARATORS,
) -> list[TextChunk]:
    """Split ``text`` into overlapping chunks of at most ``chunk_size`` characters.

    Boundaries are searched in ``separators`` priority order. A piece with no
    separator left to split on is kept whole even if it is longer than
    ``chunk_size``. Every chunk is ``text[start_char:end_char]``.
    """
    if chunk_size <= 0:
        raise ValueError("chunk_size must be positive")
    if chunk_overlap < 0:
        raise ValueError("chunk_overlap must not be negative")
    if chunk_overlap >= chunk_size:
        raise ValueError("chunk_overlap must be smaller than chunk_size")
    if not text.strip():
        return []

    units = list(_split_span(text, Segment(0, len(text)), chunk_size, tuple(separators)))

    chunks: list[TextChunk] = []
    current: list[Segment] = []
    current_length = 0

    for unit in units:
        if current and current_length + unit.length > chunk_size:
            _append_chunk(text, current, chunks)
            current = _apply_overlap(current, chunk_overlap, chunk_size - unit.length)
            current_length = sum(seg.length for seg in current)
        current.append(unit)
        current_length += unit.length

    if current:
        _append_chunk(text, current, chunks)

    return chunks


def _split_span(text: str, span: Segment, chunk_size: int, separators: tuple[str, ...]) -> Iterator[Segment]:
    if span.length <= chunk_size:
        yield span
        return
    for position, separator in enumerate(separators):
        if text.find(separator, span.start, span.end) == -1:
            continue
        remaining = separators[position + 1 :]
        for piece in _split_on(text, span, separator):
            yield from _split_span(text, piece, chunk_size, remaining)
        return
    # No separator available: accepted overflow.
    yield span


def _split_on(text: str, span: Segment, separator: str) -> Iterator[Segment]:
    """Yield contiguous pieces of ``span``, keeping each separator on its left piece."""
    cursor = span.start
    while cursor < span.end:
        found = text.find(separator, cursor, span.end)
        if found == -1:
            yield Segment(cursor, span.end)
            return
        end = found + len(separator)
        yield Segment(cursor, end)
        cursor = end


def _apply_overlap(segments: Sequence[Segment], overlap: int, room: int) -> list[Segment]:
    """Trailing segments of the emitted window that seed the next one."""
    if not segments or overlap <= 0:
        return []
    budget = min(overlap, room)
    retained: list[Segment] = []
    total = 0
    for segment in reversed(segments):
        if total + segment.length > budget:
            break
        retained.append(segment)
        total += segment.length
    return list(reversed(retained))


def _append_chunk(text: str, segments: Sequence[Segment], chunks: list[TextChunk]) -> None:
    start = segments[0].start
    end = segments[-1].end
    while start < end and text[start].isspace():
        start += 1
    while end > start and text[end - 1].isspace():
        end -= 1
    if start >= end:
        return
    chunks.append(TextChunk(text=text[start:end], index=len(chunks), start_char=start, end_char=end))


def chunk_document(
    text: str,
    title: str,
    chunk_size: int = 500,
    chunk_overlap: int = 100,
    enabled: bool = True,
) -> list[TextChunk]:
    """Chunk a document and attach per-chunk metadata.

    When splitting is disabled the whole document becomes a single chunk.
    """
    if not enabled:
        chunks = [TextChunk(text=text, index=0, start_char=0, end_char=len(text))]
    else:
        chunks = split_text(text, chunk_size=chunk_size, chunk_overlap=chunk_overlap)
    for chunk in chunks:
        chunk.metadata = {
            "title": title,
            "chunk_size": len(chunk.text),
            "has_table": "|" in chunk.text,
            "has_list": bool(_LIST_LINE_RE.search(chunk.text)),
            "start_char": chunk.start_char,
            "end_char": chunk.end_char,
        }
    return chunks


def estimate_chunk_count(content_length: int, chunk_size: int = 500, chunk_overlap: int = 100) -> int:
    """Rough number of chunks a document of ``content_length`` characters yields."""
    if content_length <= chunk_size:
        return 1
    effective = chunk_size - chunk_overlap
    return math.ceil((content_length - chunk_size) / effective) + 1


__all__ = ["DEFAULT_SEPARATORS", "TextChunk", "split_text", "chunk_document", "estimate_chunk_count"]
