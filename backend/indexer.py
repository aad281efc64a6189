"""
Indexer module for Jarvis search.

Persists embedded note blocks, one slice per note, in a JSON document.
"""

import json
import logging
import os
import tempfile
import threading
from typing import Dict, Iterable, List, Protocol

from models import Block

logger = logging.getLogger(__name__)


class BlockPersistence(Protocol):
    def delete_blocks(self, note_id: str) -> None: ...

    def insert_blocks(self, blocks: Iterable[Block]) -> None: ...

    def all_blocks(self) -> List[Block]: ...

    def blocks_for_note(self, note_id: str) -> List[Block]: ...


class BlockStore:
    """Stores block embeddings grouped by note id.

    Writes replace a note's whole slice, so readers never see a mix of old
    and new blocks for one note.
    """

    def __init__(self, metadata_path: str = "storage/blocks.json"):
        """
        Initialize the block store.

        Args:
            metadata_path: Path to the JSON file holding all blocks
        """
        self.metadata_path = metadata_path
        self._lock = threading.RLock()
        self.notes: Dict[str, List[Block]] = {}

        self._load_metadata()

    def _load_metadata(self):
        """Load blocks from the JSON file."""
        if not os.path.exists(self.metadata_path):
            logger.info("No existing block store at %s, starting fresh", self.metadata_path)
            return
        try:
            with open(self.metadata_path, "r", encoding="utf-8") as f:
                raw = json.load(f)
        except (OSError, ValueError) as e:
            logger.warning("Failed to load block store %s: %s", self.metadata_path, e)
            return

        self.notes = {
            note_id: [Block.from_dict(item) for item in items] for note_id, items in raw.items()
        }
        logger.info("Loaded blocks for %d notes", len(self.notes))

    def _save_metadata(self):
        """Write all blocks to disk, replacing the previous file atomically."""
        payload = {
            note_id: [block.to_dict() for block in blocks] for note_id, blocks in self.notes.items()
        }
        directory = os.path.dirname(self.metadata_path) or "."
        os.makedirs(directory, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=directory, suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(payload, f)
            os.replace(tmp_path, self.metadata_path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise

    def insert_blocks(self, blocks: Iterable[Block]):
        """Replace the stored blocks of every note present in ``blocks``."""
        grouped: Dict[str, List[Block]] = {}
        for block in blocks:
            grouped.setdefault(block.note_id, []).append(block)
        if not grouped:
            return

        with self._lock:
            self.notes.update(grouped)
            self._save_metadata()
        logger.debug("Stored blocks for notes: %s", ", ".join(grouped))

    def delete_blocks(self, note_id: str):
        """Remove all blocks of a note."""
        with self._lock:
            if self.notes.pop(note_id, None) is not None:
                self._save_metadata()

    def all_blocks(self) -> List[Block]:
        with self._lock:
            return [block for blocks in self.notes.values() for block in blocks]

    def blocks_for_note(self, note_id: str) -> List[Block]:
        with self._lock:
            return list(self.notes.get(note_id, []))

    def note_ids(self) -> List[str]:
        with self._lock:
            return list(self.notes)

    def clear(self):
        """Remove every stored block."""
        with self._lock:
            self.notes = {}
            self._save_metadata()
