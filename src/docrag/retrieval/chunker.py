"""
Character-based document chunking.

Splits extracted text into overlapping windows bounded by a character
budget. Where a window would end mid-text, the cut is moved back to the
nearest space, newline or period inside the last tenth of the window so
chunks tend to end on a word or sentence boundary.
"""

from collections.abc import Iterable, Sequence
from dataclasses import dataclass

from docrag.config import DEFAULT_CHUNK_OVERLAP, DEFAULT_CHUNK_SIZE

BREAK_CHARACTERS = frozenset(" \n.")


@dataclass(frozen=True)
class Chunk:
    """A bounded piece of document text with its position."""

    content: str
    """The text content of the chunk."""

    page_number: int = 1
    """1-based page, slide or sheet number (1 for non-paged formats)."""

    chunk_id: int = 1
    """1-based index of the chunk within its page."""


def resolve_chunking(chunk_size: int | None, chunk_overlap: int | None) -> tuple[int, int]:
    """
    Apply the chunking defaults.

    When either value is unset or zero, both fall back to the defaults
    (1000 / 500 characters).
    """
    if not chunk_size or not chunk_overlap:
        return DEFAULT_CHUNK_SIZE, DEFAULT_CHUNK_OVERLAP
    return chunk_size, chunk_overlap


def chunk_content(content: str, max_chars: int, overlap_chars: int) -> list[str]:
    """
    Split text into overlapping chunks of at most ``max_chars`` characters.

    Args:
        content: Text to split
        max_chars: Window width in characters
        overlap_chars: Characters repeated between consecutive windows

    Returns:
        Trimmed, non-empty chunk strings in document order. Empty when
        ``max_chars <= 0`` or the content is blank.
    """
    if max_chars <= 0:
        return []
    if overlap_chars < 0:
        overlap_chars = 0
    if overlap_chars >= max_chars:
        overlap_chars = max_chars // 2

    content = content.strip()
    if not content:
        return []

    content_len = len(content)
    if content_len <= max_chars:
        return [content]

    chunks: list[str] = []
    step = max_chars - overlap_chars
    start = 0
    while start < content_len:
        end = min(start + max_chars, content_len)
        if end < content_len:
            end = _find_clean_break(content, start, end, max_chars)

        chunk = content[start:end].strip()
        if chunk:
            chunks.append(chunk)

        start += step

    return chunks


def _find_clean_break(content: str, start: int, end: int, max_chars: int) -> int:
    """
    Move a window's right edge back to a word or sentence boundary.

    Only the last ``max_chars // 10`` characters of the window are searched,
    and the window's first character is never used as a break.

    Returns:
        The adjusted end offset (exclusive), or ``end`` if no boundary exists
    """
    lookback = min(max_chars // 10, end - start)
    lowest = max(end - lookback, start + 1)
    for i in range(end - 1, lowest - 1, -1):
        if content[i] in BREAK_CHARACTERS:
            return i + 1
    return end


def get_chunks(
    content: str,
    page_number: int,
    chunk_size: int,
    chunk_overlap: int,
) -> list[Chunk]:
    """
    Chunk one page of text into Chunk records.

    Args:
        content: Page text
        page_number: 1-based page number stamped on every chunk
        chunk_size: Maximum chunk size in characters
        chunk_overlap: Overlap between chunks in characters

    Returns:
        Chunks with 1-based chunk ids
    """
    return [
        Chunk(content=text, page_number=page_number, chunk_id=i)
        for i, text in enumerate(chunk_content(content, chunk_size, chunk_overlap), start=1)
    ]


def chunk_pages(
    pages: Iterable[tuple[str, int]],
    chunk_size: int,
    chunk_overlap: int,
) -> list[Chunk]:
    """Chunk a sequence of ``(text, page_number)`` units, page by page."""
    chunks: list[Chunk] = []
    for text, page_number in pages:
        chunks.extend(get_chunks(text, page_number, chunk_size, chunk_overlap))
    return chunks


def merge_chunks(chunks: Sequence[str], overlap_chars: int) -> str:
    """
    Reassemble consecutive chunks into one text.

    Each chunk is joined to the text so far after dropping the longest
    prefix (at most ``overlap_chars`` long) that the text already ends with.
    Chunks that share nothing are joined with a single space.
    """
    if not chunks:
        return ""

    merged = chunks[0]
    for chunk in chunks[1:]:
        limit = min(len(merged), len(chunk), max(overlap_chars, 0))
        shared = 0
        for size in range(limit, 0, -1):
            if merged.endswith(chunk[:size]):
                shared = size
                break
        if shared:
            merged += chunk[shared:]
        else:
            merged += " " + chunk
    return merged
