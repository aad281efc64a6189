"""Shared backend models for Jarvis search."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

import numpy as np
from pydantic import BaseModel, ConfigDict, Field, field_validator

UNKNOWN_OFFSET = -1
MAX_HEADING_LEVEL = 6


class AggregationMode(str, Enum):
    MAX = "max"
    AVG = "avg"


class Note(BaseModel):
    """A note as handed to the core by the host application."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    title: str = ""
    body: str = ""
    is_conflict: bool = False
    tags: List[str] = Field(default_factory=list)

    @field_validator("id")
    @classmethod
    def _non_empty_id(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("note id must not be empty")
        return value


@dataclass(frozen=True)
class Chunk:
    """A sub-block produced by the chunker, before it is embedded."""

    note_id: str
    content_hash: str
    line: int
    body_offset: int
    length: int
    heading_level: int
    title: str
    text: str
    path: Tuple[str, ...]
    embed_text: str


@dataclass(eq=False)
class Block:
    """Unit of retrieval: one embedded fragment of a note.

    Compared by identity; the embedding is a numpy array.
    """

    note_id: str
    content_hash: str
    line: int
    body_offset: int
    length: int
    heading_level: int
    title: str
    embedding: np.ndarray
    similarity: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "note_id": self.note_id,
            "content_hash": self.content_hash,
            "line": self.line,
            "body_offset": self.body_offset,
            "length": self.length,
            "heading_level": self.heading_level,
            "title": self.title,
            "embedding": [float(x) for x in self.embedding],
        }

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "Block":
        return cls(
            note_id=raw["note_id"],
            content_hash=raw["content_hash"],
            line=int(raw.get("line", 0)),
            body_offset=int(raw.get("body_offset", UNKNOWN_OFFSET)),
            length=int(raw.get("length", 0)),
            heading_level=min(max(int(raw.get("heading_level", 0)), 0), MAX_HEADING_LEVEL),
            title=raw.get("title", ""),
            embedding=np.asarray(raw["embedding"], dtype=np.float32),
        )


@dataclass
class NoteResult:
    """Query-time aggregate of the matching blocks of one note.

    The ungrouped search result is a single NoteResult with no note identity.
    """

    note_id: Optional[str]
    note_title: Optional[str]
    blocks: List[Block] = field(default_factory=list)
    aggregate_similarity: Optional[float] = None


# API payloads

class BlockPayload(BaseModel):
    note_id: str
    line: int
    body_offset: int
    length: int
    heading_level: int
    title: str
    similarity: float


class NoteResultPayload(BaseModel):
    note_id: Optional[str] = None
    note_title: Optional[str] = None
    aggregate_similarity: Optional[float] = None
    blocks: List[BlockPayload] = Field(default_factory=list)


class SearchResponsePayload(BaseModel):
    results: List[NoteResultPayload] = Field(default_factory=list)
    links: str = ""
    excerpt: str = ""


# Request payloads

class SearchRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    text: str
    note_id: Optional[str] = Field(default=None, alias="note_id")
    grouped: bool = True


class UpdateNoteRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    note_id: str = Field(alias="note_id")
    title: str = ""
    body: str = ""
    tags: List[str] = Field(default_factory=list)
    is_conflict: bool = False


class DeleteNoteRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    note_id: str = Field(alias="note_id")


def to_payload(result: NoteResult) -> NoteResultPayload:
    return NoteResultPayload(
        note_id=result.note_id,
        note_title=result.note_title,
        aggregate_similarity=result.aggregate_similarity,
        blocks=[
            BlockPayload(
                note_id=block.note_id,
                line=block.line,
                body_offset=block.body_offset,
                length=block.length,
                heading_level=block.heading_level,
                title=block.title,
                similarity=float(block.similarity),
            )
            for block in result.blocks
        ],
    )
