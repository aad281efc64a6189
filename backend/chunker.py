"""
Text chunking module for Jarvis search.

Splits a note into heading and code-fence delimited segments, then splits each
segment into size-bounded sub-blocks that carry their heading path and their
position in the note body.
"""

import hashlib
import re
from dataclasses import dataclass
from enum import Enum
from itertools import accumulate
from typing import Iterator, List, Tuple

from config import DEFAULT_MAX_BLOCK_SIZE
from models import MAX_HEADING_LEVEL, UNKNOWN_OFFSET, Chunk

FENCE = "```"

_HEADING_RE = re.compile(r"^(#+)\s(.*)")
_SENTENCE_RE = re.compile(r"[^.!?\n]+[.!?\n]+")
_WHITESPACE_RE = re.compile(r"\s+")


class SegmentKind(str, Enum):
    PROSE = "prose"
    HEADING = "heading"
    CODE = "code"


class ScanState(str, Enum):
    PROSE = "prose"
    IN_CODE_FENCE = "in_code_fence"


@dataclass(frozen=True)
class Segment:
    kind: SegmentKind
    text: str


@dataclass(frozen=True)
class HeadingState:
    """Heading context after a segment has been read."""

    level: int
    title: str
    path: Tuple[str, ...]

    @classmethod
    def initial(cls, note_title: str) -> "HeadingState":
        return cls(0, note_title, (note_title,) + ("",) * MAX_HEADING_LEVEL)

    @property
    def prefix(self) -> str:
        return "/".join(self.path[: self.level + 1])


def content_hash(text: str) -> str:
    """Digest of a note's raw body, used to invalidate its blocks."""
    return hashlib.md5(text.encode("utf-8")).hexdigest()


def normalize_newlines(text: str) -> str:
    return text.replace("\r\n", "\n").replace("\r", "\n")


def word_count(unit: str) -> int:
    return len(_WHITESPACE_RE.split(unit))


def _is_closing_fence(line: str) -> bool:
    return line.endswith(FENCE)


def split_segments(text: str) -> List[Segment]:
    """
    Split normalized text into prose, heading and fenced code segments.

    Segments are exact substrings of ``text`` in source order. The newlines
    around a heading or a fence belong to the neighbouring prose segments.
    A fence that is never closed is read as prose. A heading is `#` marks,
    whitespace and a title on one line, so a bare `#` line is prose.
    """
    lines: List[Tuple[int, str]] = []
    offset = 0
    for line in text.split("\n"):
        lines.append((offset, line))
        offset += len(line) + 1

    segments: List[Segment] = []
    prose_start = 0

    def emit(kind: SegmentKind, start: int, end: int) -> None:
        nonlocal prose_start
        if start > prose_start:
            segments.append(Segment(SegmentKind.PROSE, text[prose_start:start]))
        segments.append(Segment(kind, text[start:end]))
        prose_start = end

    state = ScanState.PROSE
    fence_line = 0
    i = 0
    while i < len(lines) or state is ScanState.IN_CODE_FENCE:
        if i == len(lines):
            # unclosed fence: rescan from the line after the opening marker
            state = ScanState.PROSE
            i = fence_line + 1
            continue

        start, line = lines[i]
        if state is ScanState.PROSE:
            if line.startswith(FENCE):
                if len(line) >= 2 * len(FENCE) and _is_closing_fence(line):
                    emit(SegmentKind.CODE, start, start + len(line))
                else:
                    state = ScanState.IN_CODE_FENCE
                    fence_line = i
            elif _HEADING_RE.match(line):
                emit(SegmentKind.HEADING, start, start + len(line))
        elif _is_closing_fence(line):
            emit(SegmentKind.CODE, lines[fence_line][0], start + len(line))
            state = ScanState.PROSE
        i += 1

    if prose_start < len(text):
        segments.append(Segment(SegmentKind.PROSE, text[prose_start:]))
    return segments


def code_block_title(segment: str) -> str:
    """Title of a fenced block: `"<lang> code block"`, or `"code block"` for a bare fence."""
    info = segment.split("\n", 1)[0][len(FENCE):].strip().strip("`").strip()
    return f"{info} code block" if info else "code block"


def advance(state: HeadingState, segment: Segment) -> HeadingState:
    """Return the heading context in effect for ``segment``."""
    level, title = state.level, state.title
    if segment.kind is SegmentKind.CODE:
        title = code_block_title(segment.text)
    elif segment.kind is SegmentKind.HEADING:
        match = _HEADING_RE.match(segment.text)
        level = min(len(match.group(1)), MAX_HEADING_LEVEL)
        title = match.group(2)
    path = state.path[:level] + (title,) + state.path[level + 1 :]
    return HeadingState(level, title, path)


def heading_states(segments: List[Segment], note_title: str) -> Iterator[HeadingState]:
    """Fold ``advance`` over the segments, yielding one state per segment."""
    states = accumulate(segments, advance, initial=HeadingState.initial(note_title))
    next(states)
    return states


def _accumulate_units(units, max_size: float) -> List[str]:
    blocks: List[str] = []
    current = ""
    size = 0
    for unit in units:
        cost = word_count(unit)
        if size + cost <= max_size:
            current += unit
            size += cost
        else:
            if current:
                blocks.append(current)
            current = unit
            size = cost
    if current:
        blocks.append(current)
    return blocks


def split_code_by_lines(segment: str, max_size: float) -> List[str]:
    return _accumulate_units((line + "\n" for line in segment.split("\n")), max_size)


def split_text_by_sentences(segment: str, max_size: float) -> List[str]:
    return _accumulate_units(_SENTENCE_RE.findall(segment), max_size)


def locate(text: str, segment: str, sub: str) -> Tuple[int, int]:
    """
    Resolve the line number and body offset of a sub-block.

    Returns:
        (line, body_offset); body_offset is UNKNOWN_OFFSET when the segment
        cannot be found in the text.
    """
    segment_start = text.find(segment)
    if segment_start < 0:
        return 0, UNKNOWN_OFFSET
    body_offset = segment_start + max(0, segment.find(sub))
    line = text.count("\n", 0, body_offset) + 1
    if not sub.startswith(FENCE):
        # heading lines are not part of the block they introduce
        line -= 2
    return line, body_offset


class Chunker:
    """Splits notes into heading-aware blocks ready for embedding."""

    def __init__(self, max_block_size: float = DEFAULT_MAX_BLOCK_SIZE):
        """
        Initialize the chunker.

        Args:
            max_block_size: Maximum block size in whitespace-delimited words
        """
        self.max_block_size = max_block_size

    def split(self, segment: Segment) -> List[str]:
        if segment.kind is SegmentKind.CODE:
            return split_code_by_lines(segment.text, self.max_block_size)
        return split_text_by_sentences(segment.text, self.max_block_size)

    def chunk(self, note_id: str, title: str, body: str) -> List[Chunk]:
        """
        Split a note into blocks.

        Args:
            note_id: Identifier of the owning note
            title: Note title, the root of every heading path
            body: Raw note body

        Returns:
            Chunks in source order, all sharing the hash of ``body``
        """
        digest = content_hash(body)
        text = normalize_newlines(body)
        segments = split_segments(text)

        chunks: List[Chunk] = []
        for segment, state in zip(segments, heading_states(segments, title)):
            for sub in self.split(segment):
                line, body_offset = locate(text, segment.text, sub)
                chunks.append(
                    Chunk(
                        note_id=note_id,
                        content_hash=digest,
                        line=line,
                        body_offset=body_offset,
                        length=len(sub),
                        heading_level=state.level,
                        title=state.title,
                        text=sub,
                        path=state.path[: state.level + 1],
                        embed_text=f"{state.prefix}:{sub}",
                    )
                )
        return chunks
