"""Similarity search over embedded note blocks."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import replace
from operator import attrgetter
from typing import Dict, List, Optional, Sequence

import numpy as np

from chunker import Chunker
from config import Settings
from embedder import EmbeddingProvider, ProviderUnavailableError, embed_normalized, mean_embedding
from models import AggregationMode, Block, NoteResult
from storage import NoteSource

logger = logging.getLogger(__name__)

QUERY_NOTE_ID = "query"
QUERY_TITLE = "query"

_by_similarity = attrgetter("similarity")


def aggregate_similarity(blocks: Sequence[Block], mode: AggregationMode) -> float:
    """Collapse a note's block similarities into one ranking score."""
    if mode is AggregationMode.MAX:
        return max(block.similarity for block in blocks)
    return sum(block.similarity for block in blocks) / len(blocks)


def score_blocks(
    blocks: Sequence[Block], query_vector: np.ndarray, exclude_note_id: Optional[str] = None
) -> List[Block]:
    """Return copies of the candidate blocks carrying their similarity to the query."""
    candidates = [block for block in blocks if block.note_id != exclude_note_id]
    if not candidates:
        return []
    matrix = np.stack([np.asarray(block.embedding, dtype=np.float64) for block in candidates])
    scores = matrix @ np.asarray(query_vector, dtype=np.float64)
    return [replace(block, similarity=float(score)) for block, score in zip(candidates, scores)]


class SimilaritySearch:
    """Embeds a query like a note and ranks stored blocks against it."""

    def __init__(
        self,
        provider: Optional[EmbeddingProvider],
        notes: Optional[NoteSource] = None,
        chunker: Optional[Chunker] = None,
    ):
        self.provider = provider
        self.notes = notes
        self.chunker = chunker or Chunker()

    async def query_embeddings(self, query_text: str) -> List[np.ndarray]:
        if self.provider is None:
            raise ProviderUnavailableError("No embedding provider is loaded")
        chunks = self.chunker.chunk(QUERY_NOTE_ID, QUERY_TITLE, query_text)
        return list(
            await asyncio.gather(
                *(embed_normalized(self.provider, chunk.embed_text) for chunk in chunks)
            )
        )

    async def find_nearest(
        self,
        all_blocks: Sequence[Block],
        exclude_note_id: Optional[str],
        query_text: str,
        settings: Settings,
        grouped: bool = True,
    ) -> List[NoteResult]:
        """
        Find the blocks nearest to a query.

        Args:
            all_blocks: Candidate blocks; they are not modified
            exclude_note_id: Note whose blocks are never returned
            query_text: Free text, chunked and embedded like a note
            settings: Similarity threshold, hit limit and aggregation mode
            grouped: Group hits per note instead of returning a flat list

        Returns:
            Ranked NoteResults; a single result without note identity when
            ``grouped`` is false; an empty list when the query has no blocks.
        """
        vectors = await self.query_embeddings(query_text)
        if not vectors:
            return []
        query_vector = mean_embedding(vectors)

        nearest = [
            block
            for block in score_blocks(all_blocks, query_vector, exclude_note_id)
            if block.similarity >= settings.notes_min_similarity
        ]

        if not grouped:
            ranked = sorted(nearest, key=_by_similarity, reverse=True)
            return [NoteResult(None, None, ranked[: settings.notes_max_hits], None)]

        groups: Dict[str, List[Block]] = {}
        for block in nearest:
            groups.setdefault(block.note_id, []).append(block)

        mode = AggregationMode(settings.notes_agg_similarity)
        results = []
        for note_id, blocks in groups.items():
            ranked = sorted(blocks, key=_by_similarity, reverse=True)
            results.append(NoteResult(note_id, None, ranked, aggregate_similarity(ranked, mode)))
        results.sort(key=attrgetter("aggregate_similarity"), reverse=True)
        results = results[: settings.notes_max_hits]

        titles = await asyncio.gather(*(self._note_title(result.note_id) for result in results))
        for result, title in zip(results, titles):
            result.note_title = title
        return results

    async def _note_title(self, note_id: str) -> Optional[str]:
        if self.notes is None:
            return None
        try:
            note = await asyncio.to_thread(self.notes.get_note, note_id)
        except FileNotFoundError:
            logger.warning("Blocks found for missing note %s", note_id)
            return note_id
        return note.title
