"""
Embedding cache and update engine.

Recomputes a note's blocks only when the hash of its body changed, and
persists each note's blocks as one unit.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Dict, Iterable, List, Optional, Sequence

from chunker import Chunker, content_hash
from config import Settings, settings as default_settings
from embedder import EmbeddingProvider, ProviderUnavailableError, embed_normalized
from indexer import BlockPersistence
from models import Block, Note
from storage import NoteSource

logger = logging.getLogger(__name__)


class EmbeddingUpdater:
    """Keeps persisted note blocks in sync with note contents.

    Concurrent updates of the same note id are serialized; an update that had
    to wait reuses the blocks persisted by the one before it when the body is
    the same.
    """

    def __init__(
        self,
        provider: Optional[EmbeddingProvider],
        store: BlockPersistence,
        notes: Optional[NoteSource] = None,
        settings: Optional[Settings] = None,
        chunker: Optional[Chunker] = None,
    ):
        self.provider = provider
        self.store = store
        self.notes = notes
        self.settings = settings or default_settings
        self.chunker = chunker or Chunker(self.settings.max_block_size)
        self._note_locks: Dict[str, asyncio.Lock] = {}
        self._lock_users: Dict[str, int] = {}

    def _require_provider(self):
        if self.provider is None:
            raise ProviderUnavailableError("No embedding provider is loaded")

    @contextlib.asynccontextmanager
    async def _note_lock(self, note_id: str):
        """Hold the note's lock; yields whether another update held it first."""
        lock = self._note_locks.setdefault(note_id, asyncio.Lock())
        self._lock_users[note_id] = self._lock_users.get(note_id, 0) + 1
        contended = lock.locked()
        try:
            async with lock:
                yield contended
        finally:
            self._lock_users[note_id] -= 1
            if not self._lock_users[note_id]:
                del self._lock_users[note_id]
                del self._note_locks[note_id]

    async def calc_note_embeddings(self, note: Note) -> List[Block]:
        """Chunk a note and embed every chunk, keeping source order."""
        self._require_provider()
        chunks = self.chunker.chunk(note.id, note.title, note.body)
        vectors = await asyncio.gather(
            *(embed_normalized(self.provider, chunk.embed_text) for chunk in chunks)
        )
        return [
            Block(
                note_id=chunk.note_id,
                content_hash=chunk.content_hash,
                line=chunk.line,
                body_offset=chunk.body_offset,
                length=chunk.length,
                heading_level=chunk.heading_level,
                title=chunk.title,
                embedding=vector,
            )
            for chunk, vector in zip(chunks, vectors)
        ]

    async def _is_excluded(self, note: Note) -> bool:
        tags = note.tags
        if not tags and self.notes is not None:
            try:
                tags = await asyncio.to_thread(self.notes.get_tags, note.id)
            except FileNotFoundError:
                tags = []
        return self.settings.exclude_tag in tags

    async def update_note(self, note: Note, existing_blocks: Sequence[Block]) -> List[Block]:
        """
        Bring one note's blocks up to date.

        Args:
            note: The note in its current state
            existing_blocks: Previously computed blocks (of any notes)

        Returns:
            The note's blocks: cached ones when the body is unchanged, freshly
            computed ones otherwise, or an empty list for conflict copies and
            excluded notes.
        """
        self._require_provider()
        if note.is_conflict:
            return []

        async with self._note_lock(note.id) as waited:
            if await self._is_excluded(note):
                logger.info("Excluding note %s from search", note.id)
                await asyncio.to_thread(self.store.delete_blocks, note.id)
                return []

            digest = content_hash(note.body)
            cached = [block for block in existing_blocks if block.note_id == note.id]
            if any(block.content_hash == digest for block in cached):
                logger.debug("Note %s unchanged, reusing %d blocks", note.id, len(cached))
                return cached

            if waited:
                stored = await asyncio.to_thread(self.store.blocks_for_note, note.id)
                if any(block.content_hash == digest for block in stored):
                    logger.debug("Note %s was just indexed, reusing %d blocks", note.id, len(stored))
                    return stored

            blocks = await self.calc_note_embeddings(note)
            if blocks:
                await asyncio.to_thread(self.store.insert_blocks, blocks)
            else:
                await asyncio.to_thread(self.store.delete_blocks, note.id)
            logger.info("Computed %d blocks for note %s", len(blocks), note.id)
            return list(blocks)

    async def update_embeddings(
        self, existing_blocks: Sequence[Block], notes: Iterable[Note]
    ) -> List[Block]:
        """
        Update every note concurrently and merge the results.

        All updates run to completion before the first failure, if any, is
        raised.
        """
        self._require_provider()
        notes = list(notes)
        results = await asyncio.gather(
            *(self.update_note(note, existing_blocks) for note in notes),
            return_exceptions=True,
        )

        merged: List[Block] = []
        errors: List[BaseException] = []
        for note, result in zip(notes, results):
            if isinstance(result, BaseException):
                logger.error("Updating note %s failed: %s", note.id, result)
                errors.append(result)
                continue
            merged.extend(result)
        if errors:
            raise errors[0]
        return merged
