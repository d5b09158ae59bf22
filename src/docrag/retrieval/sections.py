"""
Structured section parser for speaker/chapter formatted texts.

Parses documents laid out like the Bhagavad Gita translation:

    CHAPTER I
    Entitled "Arjun-Vishad"
    Or "The Book of the Distress of Arjuna"
    Dhritirashtra:
    Ranged thus for battle on the sacred plain ...
    Sanjaya:
    When he beheld the host of Pandavas ...
    [FN#1] ...

Each speaker's passage becomes a Section labelled with its chapter, title,
expanded title and speaker, then split into chunks. Titles frequently
appear after the first passage of a chapter, so when one is read it is
backfilled onto the chapter's earlier sections that have none yet.

Parsing is a fold over lines: `process_line` is a pure function from
(state, line) to (new state, flushed section). `SectionParser` drives it,
chunks every flushed section and optionally enriches each chunk.
"""

import dataclasses
import logging
import re
from collections.abc import Iterable
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Optional, Protocol

from docrag.errors import DocumentReadError
from docrag.retrieval.chunker import chunk_content, resolve_chunking

if TYPE_CHECKING:
    from docrag.retrieval.context import ContextAugmenter

logger = logging.getLogger(__name__)


SPEAKERS = ("Dhritirashtra", "Sanjaya", "Krishna", "Arjuna")

FOOTNOTE_PATTERN = re.compile(r"^\[FN#\d+\]")
CHAPTER_PATTERN = re.compile(r"^CHAPTER (.+)$")
TITLE_PATTERN = re.compile(r"^Entitled (.+)$")
EXPANDED_TITLE_PATTERN = re.compile(r"^Or (.+)$")
SPEAKER_PATTERN = re.compile(rf"^({'|'.join(SPEAKERS)})[.:]\s*")


@dataclass(frozen=True)
class Section:
    """A chunk of one speaker's passage with its chapter labels."""

    chapter: str = ""
    title: str = ""
    expanded_title: str = ""
    speaker: str = ""
    content: str = ""
    chunk_id: int = 0
    """1-based chunk index within the passage (0 before chunking)."""
    passage: int = 0
    """1-based ordinal of the passage in the document (0 when built by hand)."""

    def metadata(self) -> dict[str, str]:
        """String metadata stored alongside the chunk in the vector store."""
        return {
            "chapter": self.chapter,
            "title": self.title,
            "expanded_title": self.expanded_title,
            "speaker": self.speaker,
            "chunk_id": str(self.chunk_id),
            "passage": str(self.passage),
        }

    def document_id(self) -> str:
        """Store id unique per record, e.g. ``"I-Sanjaya-2-1"`` for passage 2, chunk 1."""
        return f"{self.chapter}-{self.speaker}-{self.passage}-{self.chunk_id}"


@dataclass(frozen=True)
class ParserState:
    """Parse state after some prefix of the input lines."""

    chapter: str = ""
    title: str = ""
    expanded_title: str = ""
    current_speaker: str = ""
    current_content: str = ""
    passage_count: int = 0
    """Passages flushed so far."""
    sections: tuple[Section, ...] = ()
    """Chunked records emitted so far, in document order."""
    finished: bool = False
    """Set once a footnote marker is read; later lines are ignored."""


class LineKind(Enum):
    FOOTNOTE = "footnote"
    CHAPTER = "chapter"
    TITLE = "title"
    EXPANDED_TITLE = "expanded_title"
    SPEAKER = "speaker"
    TEXT = "text"


# Evaluated in order; the first match wins
_CLASSIFIERS = (
    (LineKind.FOOTNOTE, FOOTNOTE_PATTERN),
    (LineKind.CHAPTER, CHAPTER_PATTERN),
    (LineKind.TITLE, TITLE_PATTERN),
    (LineKind.EXPANDED_TITLE, EXPANDED_TITLE_PATTERN),
    (LineKind.SPEAKER, SPEAKER_PATTERN),
)


def classify_line(line: str) -> tuple[LineKind, Optional[re.Match[str]]]:
    """Classify a trimmed, non-empty line."""
    for kind, pattern in _CLASSIFIERS:
        match = pattern.match(line)
        if match:
            return kind, match
    return LineKind.TEXT, None


def pending_section(state: ParserState) -> Optional[Section]:
    """The section the current speaker accumulation would flush to, if any."""
    content = state.current_content.strip()
    if not state.current_speaker or not content:
        return None
    return Section(
        chapter=state.chapter,
        title=state.title,
        expanded_title=state.expanded_title,
        speaker=state.current_speaker,
        content=content,
        passage=state.passage_count + 1,
    )


def _counted(state: ParserState, flushed: Optional[Section]) -> int:
    return state.passage_count if flushed is None else state.passage_count + 1


def backfill(
    sections: tuple[Section, ...],
    chapter: str,
    field_name: str,
    value: str,
) -> tuple[Section, ...]:
    """Set ``field_name`` on the chapter's sections where it is still empty."""
    if not value:
        return sections
    return tuple(
        dataclasses.replace(section, **{field_name: value})
        if section.chapter == chapter and not getattr(section, field_name)
        else section
        for section in sections
    )


def process_line(state: ParserState, line: str) -> tuple[ParserState, Optional[Section]]:
    """
    Advance the parse by one trimmed, non-empty line.

    Args:
        state: State before the line
        line: The line to classify

    Returns:
        The new state, and the section flushed by this line (not yet
        chunked or added to ``state.sections``) if the line closed one
    """
    if state.finished:
        return state, None

    kind, match = classify_line(line)

    if kind is LineKind.FOOTNOTE:
        return dataclasses.replace(state, finished=True), None

    if kind is LineKind.CHAPTER:
        flushed = pending_section(state)
        return (
            dataclasses.replace(
                state,
                chapter=match.group(1),
                title="",
                expanded_title="",
                current_content="",
                passage_count=_counted(state, flushed),
            ),
            flushed,
        )

    if kind is LineKind.TITLE:
        title = match.group(1).replace('"', "")
        return (
            dataclasses.replace(
                state,
                title=title,
                sections=backfill(state.sections, state.chapter, "title", title),
            ),
            None,
        )

    if kind is LineKind.EXPANDED_TITLE:
        expanded_title = match.group(1).replace('"', "")
        return (
            dataclasses.replace(
                state,
                expanded_title=expanded_title,
                sections=backfill(state.sections, state.chapter, "expanded_title", expanded_title),
            ),
            None,
        )

    if kind is LineKind.SPEAKER:
        flushed = pending_section(state)
        # Text after "Krishna:" on the same line opens the passage
        remainder = line[match.end():].strip()
        return (
            dataclasses.replace(
                state,
                current_speaker=match.group(1),
                current_content=remainder,
                passage_count=_counted(state, flushed),
            ),
            flushed,
        )

    if not state.current_speaker:
        return state, None
    if state.current_content:
        return dataclasses.replace(state, current_content=f"{state.current_content}\n{line}"), None
    return dataclasses.replace(state, current_content=line), None


def finish(state: ParserState) -> tuple[ParserState, Optional[Section]]:
    """End of input: flush the last passage and mark the parse finished."""
    flushed = pending_section(state)
    state = dataclasses.replace(state, finished=True, passage_count=_counted(state, flushed))
    return state, flushed


class ParseObserver(Protocol):
    """Optional hooks for watching a parse."""

    def on_section(self, section: Section) -> None:
        """Called once per chunked record as it is emitted."""
        ...

    def on_backfill(self, chapter: str, field_name: str, value: str) -> None:
        """Called when a chapter title is read and backfilled onto its records."""
        ...


class LoggingObserver:
    """ParseObserver that reports through the module logger."""

    def on_section(self, section: Section) -> None:
        logger.debug(
            f"Chunk {section.chunk_id} for chapter {section.chapter}, "
            f"speaker {section.speaker} ({len(section.content)} chars)"
        )

    def on_backfill(self, chapter: str, field_name: str, value: str) -> None:
        logger.info(f"Chapter {chapter}: {field_name} = {value!r}")


class SectionParser:
    """
    Parse speaker/chapter formatted text into chunked Sections.

    Example:
        >>> parser = SectionParser(chunk_size=1000, chunk_overlap=500)
        >>> sections = parser.parse_file(Path("data/raw/gita.txt"))
        >>> sections[0].chapter, sections[0].speaker
        ('I', 'Dhritirashtra')
    """

    def __init__(
        self,
        chunk_size: int | None = None,
        chunk_overlap: int | None = None,
        augmenter: Optional["ContextAugmenter"] = None,
        observer: Optional[ParseObserver] = None,
    ) -> None:
        """
        Args:
            chunk_size: Maximum chunk size in characters (unset/0 uses 1000)
            chunk_overlap: Chunk overlap in characters (unset/0 uses 500)
            augmenter: Prefixes every chunk with a generated context
            observer: Receives parse events; nothing is reported without one
        """
        self.chunk_size, self.chunk_overlap = resolve_chunking(chunk_size, chunk_overlap)
        self.augmenter = augmenter
        self.observer = observer

    def parse_file(self, path: str | Path) -> list[Section]:
        """
        Parse a UTF-8 text file.

        Raises:
            DocumentReadError: If the file cannot be read
            ContextGenerationError: If chunk enrichment fails
        """
        path = Path(path)
        try:
            text = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise DocumentReadError(path, str(e)) from e
        return self.parse_text(text)

    def parse_text(self, text: str) -> list[Section]:
        """Parse an in-memory document."""
        return self.parse_lines(text.splitlines())

    def parse_lines(self, lines: Iterable[str]) -> list[Section]:
        """
        Parse lines in order.

        Blank lines are skipped; parsing stops at the first footnote marker.

        Returns:
            Chunked sections in document order, with titles backfilled
        """
        state = ParserState()
        for raw_line in lines:
            line = raw_line.strip()
            if not line:
                continue

            previous = state
            state, flushed = process_line(state, line)
            if flushed is not None:
                state = self._emit(state, flushed)
            self._report_metadata(previous, state)

            if state.finished:
                break

        state, flushed = finish(state)
        if flushed is not None:
            state = self._emit(state, flushed)

        return list(state.sections)

    def split(self, section: Section) -> list[Section]:
        """Chunk one passage, enriching each chunk when an augmenter is set."""
        records: list[Section] = []
        chunks = chunk_content(section.content, self.chunk_size, self.chunk_overlap)
        for chunk_id, chunk in enumerate(chunks, start=1):
            if self.augmenter is not None:
                chunk = self.augmenter.situate(section.content, chunk)
            record = dataclasses.replace(section, content=chunk, chunk_id=chunk_id)
            if self.observer is not None:
                self.observer.on_section(record)
            records.append(record)
        return records

    def _emit(self, state: ParserState, section: Section) -> ParserState:
        return dataclasses.replace(state, sections=state.sections + tuple(self.split(section)))

    def _report_metadata(self, previous: ParserState, state: ParserState) -> None:
        if self.observer is None:
            return
        if state.title and state.title != previous.title:
            self.observer.on_backfill(state.chapter, "title", state.title)
        if state.expanded_title and state.expanded_title != previous.expanded_title:
            self.observer.on_backfill(state.chapter, "expanded_title", state.expanded_title)
