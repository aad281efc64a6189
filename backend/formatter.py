"""Render ranked search results as a bounded excerpt or as note links."""

import logging
import re
from typing import Iterable, List, Sequence

from chunker import normalize_newlines
from models import Block, NoteResult
from storage import NoteSource

logger = logging.getLogger(__name__)


def flatten_results(results: Iterable[NoteResult]) -> List[Block]:
    """Blocks of ranked results, in rank order."""
    return [block for result in results for block in result.blocks]


def extract_text(blocks: Sequence[Block], max_length: int, notes: NoteSource) -> str:
    """
    Concatenate the source text of ranked blocks, each under a decoration line.

    Stops at the first block that does not fit in ``max_length``. Blocks with
    an unknown position or a missing note are skipped and do not use up the
    budget.
    """
    text = ""
    for i, block in enumerate(blocks):
        if block.body_offset < 0:
            logger.warning(
                "extract_text: skipped %s : %s / %s", block.note_id, block.line, block.title
            )
            continue

        try:
            note = notes.get_note(block.note_id)
        except FileNotFoundError:
            logger.warning("extract_text: note %s not found, skipped %s", block.note_id, block.title)
            continue
        body = normalize_newlines(note.body)
        block_text = body[block.body_offset : block.body_offset + block.length]

        decoration = f"# note {i + 1}:\n{note.title}"
        if block.title != note.title:
            decoration += f"/{block.title}"
        entry = f"{decoration}\n{block_text}"
        if len(text) + len(entry) > max_length:
            break
        text += entry
    return text


def get_slug(title: str) -> str:
    slug = title.lower()
    slug = re.sub(r"\s+", "-", slug)
    slug = re.sub(r"[^a-z0-9-]+", "", slug)
    slug = re.sub(r"-+", "-", slug)
    return slug.strip("-")


def extract_links(blocks: Sequence[Block]) -> str:
    """Comma-separated `[n](:/note_id#anchor)` links, one per block."""
    links = []
    for i, block in enumerate(blocks):
        if block.heading_level > 0:
            links.append(f"[{i + 1}](:/{block.note_id}#{get_slug(block.title)})")
        else:
            links.append(f"[{i + 1}](:/{block.note_id})")
    return ", ".join(links)
