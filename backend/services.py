"""Service layer for coordinating note storage, embeddings and search."""

from __future__ import annotations

import asyncio
import logging
import os
from typing import List, Optional

from chunker import Chunker
from config import Settings, settings as default_settings
from embedder import Embedder, EmbeddingProvider
from embeddings import EmbeddingUpdater
from formatter import extract_links, extract_text, flatten_results
from indexer import BlockStore
from models import Note, SearchRequest, SearchResponsePayload, UpdateNoteRequest, to_payload
from search import SimilaritySearch
from storage import NoteStorage

logger = logging.getLogger(__name__)


class NoteService:
    """Keeps the block index in step with stored notes and answers queries."""

    def __init__(
        self,
        storage: NoteStorage | None = None,
        store: BlockStore | None = None,
        embedder: EmbeddingProvider | None = None,
        settings: Settings | None = None,
    ):
        self.settings = settings or default_settings
        self.storage = storage or NoteStorage(os.path.join(self.settings.storage_dir, "notes"))
        self.store = store or BlockStore(os.path.join(self.settings.storage_dir, "blocks.json"))
        self.embedder = embedder or Embedder(self.settings.embed_model)

        chunker = Chunker(self.settings.max_block_size)
        self.updater = EmbeddingUpdater(
            self.embedder, self.store, notes=self.storage, settings=self.settings, chunker=chunker
        )
        self.search_engine = SimilaritySearch(self.embedder, notes=self.storage, chunker=chunker)

    async def save_note(self, request: UpdateNoteRequest) -> int:
        """Store a note and refresh its blocks. Returns the number of blocks."""
        note = Note(
            id=request.note_id,
            title=request.title,
            body=request.body,
            tags=request.tags,
            is_conflict=request.is_conflict,
        )
        note = await asyncio.to_thread(self.storage.save_note, note)
        blocks = await self.updater.update_note(note, self.store.blocks_for_note(note.id))
        return len(blocks)

    async def delete_note(self, note_id: str) -> bool:
        deleted = await asyncio.to_thread(self.storage.delete_note, note_id)
        await asyncio.to_thread(self.store.delete_blocks, note_id)
        return deleted

    async def rebuild_index(self) -> int:
        """Update the blocks of every stored note and drop blocks of removed notes."""
        notes = await asyncio.to_thread(self.storage.list_notes)
        blocks = await self.updater.update_embeddings(self.store.all_blocks(), notes)

        known = {note.id for note in notes}
        for note_id in self.store.note_ids():
            if note_id not in known:
                logger.info("Dropping blocks of removed note %s", note_id)
                await asyncio.to_thread(self.store.delete_blocks, note_id)
        return len(blocks)

    async def search(self, request: SearchRequest, max_length: Optional[int] = None) -> SearchResponsePayload:
        results = await self.search_engine.find_nearest(
            self.store.all_blocks(),
            request.note_id,
            request.text,
            self.settings,
            grouped=request.grouped,
        )
        blocks = flatten_results(results)
        budget = self.settings.notes_context_length if max_length is None else max_length
        excerpt = await asyncio.to_thread(extract_text, blocks, budget, self.storage)
        return SearchResponsePayload(
            results=[to_payload(result) for result in results],
            links=extract_links(blocks),
            excerpt=excerpt,
        )

    def indexed_notes(self) -> List[str]:
        return self.store.note_ids()
