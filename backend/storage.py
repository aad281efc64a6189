"""Filesystem-backed note source for the search core."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Dict, List, Optional, Protocol

from models import Note

logger = logging.getLogger(__name__)


class NoteSource(Protocol):
    def get_note(self, note_id: str) -> Note: ...

    def get_tags(self, note_id: str) -> List[str]: ...

    def list_notes(self) -> List[Note]: ...


class NoteStorage:
    """Local JSON storage, one file per note."""

    def __init__(self, root: Optional[Path] = None):
        self.notes_dir = Path(root) if root else Path("storage") / "notes"

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def get_note(self, note_id: str) -> Note:
        path = self._note_path(note_id)
        if not path.exists():
            raise FileNotFoundError(f"Note not found: {note_id}")
        return self._read_note(path, self._normalize_id(note_id))

    def get_tags(self, note_id: str) -> List[str]:
        return list(self.get_note(note_id).tags)

    def list_notes(self) -> List[Note]:
        return list(self._load_all_notes().values())

    def save_note(self, note: Note) -> Note:
        normalized = self._normalize_id(note.id)
        record = note.model_copy(update={"id": normalized, "title": note.title or self._title_from_id(normalized)})
        self._write_note(record)
        return record

    def delete_note(self, note_id: str) -> bool:
        path = self._note_path(note_id)
        if not path.exists():
            return False
        path.unlink()
        return True

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _normalize_id(self, raw_id: str) -> str:
        return raw_id.strip().strip("/")

    def _safe_stem(self, note_id: str) -> str:
        return self._normalize_id(note_id).replace("/", "__")

    def _title_from_id(self, note_id: str) -> str:
        leaf = self._normalize_id(note_id).rsplit("/", 1)[-1]
        return leaf.replace("_", " ").strip() or "Untitled"

    def _note_path(self, note_id: str) -> Path:
        return self.notes_dir / f"{self._safe_stem(note_id)}.json"

    def _load_all_notes(self) -> Dict[str, Note]:
        notes: Dict[str, Note] = {}
        if not self.notes_dir.exists():
            return notes
        for path in sorted(self.notes_dir.glob("*.json")):
            try:
                note = self._read_note(path, path.stem.replace("__", "/"))
            except (OSError, ValueError) as exc:
                logger.warning("Skipping unreadable note file %s: %s", path, exc)
                continue
            notes[note.id] = note
        return notes

    def _read_note(self, path: Path, note_id: str) -> Note:
        with open(path, "r", encoding="utf-8") as handle:
            raw = json.load(handle)

        record_id = self._normalize_id(raw.get("id") or note_id)
        return Note(
            id=record_id,
            title=raw.get("title") or self._title_from_id(record_id),
            body=raw.get("body", ""),
            is_conflict=bool(raw.get("is_conflict", False)),
            tags=list(raw.get("tags", [])),
        )

    def _write_note(self, note: Note):
        path = self._note_path(note.id)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w", encoding="utf-8") as handle:
            json.dump(note.model_dump(), handle, indent=2)
