"""
Unit tests for the similarity search engine.
"""

import asyncio
import math
import os
import sys

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "../../backend"))

from chunker import Chunker
from config import Settings
from embedder import ProviderUnavailableError
from fakes import FakeNotes, FixedEmbedder, make_block, unit
from models import AggregationMode, Note
from search import SimilaritySearch, aggregate_similarity


def _at(similarity: float):
    """Unit vector whose similarity to (1, 0, 0) is ``similarity``."""
    return unit(similarity, math.sqrt(1.0 - similarity**2), 0.0)


class KeywordEmbedder:
    def embed(self, text):
        return [1.0, 0.0] if "alpha" in text else [0.0, 1.0]


class TestFindNearest:
    """Test suite for SimilaritySearch.find_nearest."""

    def setup_method(self):
        self.embedder = FixedEmbedder([1.0, 0.0, 0.0])
        self.notes = FakeNotes(
            Note(id="a", title="Note A", body=""),
            Note(id="b", title="Note B", body=""),
            Note(id="c", title="Note C", body=""),
        )
        self.search = SimilaritySearch(self.embedder, notes=self.notes)
        self.a1 = make_block("a", _at(1.0), title="a1")
        self.a2 = make_block("a", _at(0.8), title="a2")
        self.b1 = make_block("b", _at(0.6), title="b1")
        self.c1 = make_block("c", _at(0.0), title="c1")
        self.blocks = [self.b1, self.a2, self.c1, self.a1]

    def _find(self, blocks=None, exclude=None, query="what is this?", grouped=True, **overrides):
        values = {"notes_min_similarity": 0.5, "notes_max_hits": 10}
        values.update(overrides)
        settings = Settings(**values)
        return asyncio.run(
            self.search.find_nearest(
                self.blocks if blocks is None else blocks, exclude, query, settings, grouped
            )
        )

    def test_nothing_above_threshold(self):
        results = self._find(blocks=[self.a2, self.b1, self.c1], notes_min_similarity=0.9)

        assert results == []

    def test_ungrouped_results(self):
        results = self._find(grouped=False)

        assert len(results) == 1
        assert results[0].note_id is None
        assert results[0].note_title is None
        assert results[0].aggregate_similarity is None
        assert [block.title for block in results[0].blocks] == ["a1", "a2", "b1"]
        assert results[0].blocks[0].similarity == pytest.approx(1.0, abs=1e-5)

    def test_ungrouped_truncation(self):
        results = self._find(grouped=False, notes_max_hits=2)

        assert [block.title for block in results[0].blocks] == ["a1", "a2"]

    def test_grouped_results(self):
        results = self._find()

        assert [result.note_id for result in results] == ["a", "b"]
        assert [result.note_title for result in results] == ["Note A", "Note B"]
        assert [block.title for block in results[0].blocks] == ["a1", "a2"]
        assert results[0].aggregate_similarity == pytest.approx(1.0, abs=1e-5)
        assert results[1].aggregate_similarity == pytest.approx(0.6, abs=1e-5)

    def test_grouped_results_are_sorted(self):
        results = self._find(notes_min_similarity=0.0)

        aggregates = [result.aggregate_similarity for result in results]
        assert aggregates == sorted(aggregates, reverse=True)
        for result in results:
            sims = [block.similarity for block in result.blocks]
            assert sims == sorted(sims, reverse=True)

    def test_aggregation_mode_changes_ranking(self):
        blocks = [
            make_block("a", _at(0.95), title="a-high"),
            make_block("a", _at(0.55), title="a-low"),
            make_block("b", _at(0.9), title="b"),
        ]

        by_max = self._find(blocks=blocks, notes_agg_similarity="max")
        by_avg = self._find(blocks=blocks, notes_agg_similarity="avg")

        assert [result.note_id for result in by_max] == ["a", "b"]
        assert [result.note_id for result in by_avg] == ["b", "a"]
        assert by_avg[1].aggregate_similarity == pytest.approx(0.75, abs=1e-5)

    def test_group_truncation(self):
        results = self._find(notes_min_similarity=0.0, notes_max_hits=2)

        assert [result.note_id for result in results] == ["a", "b"]

    def test_excluded_note(self):
        results = self._find(exclude="a")

        assert [result.note_id for result in results] == ["b"]

    def test_candidate_blocks_are_not_modified(self):
        self._find()

        assert all(block.similarity == 0.0 for block in self.blocks)

    def test_ties_keep_input_order(self):
        x = make_block("x", _at(1.0), title="x")
        y = make_block("y", _at(1.0), title="y")

        forward = self._find(blocks=[x, y], grouped=False)
        backward = self._find(blocks=[y, x], grouped=False)
        grouped = self._find(blocks=[y, x])

        assert [block.title for block in forward[0].blocks] == ["x", "y"]
        assert [block.title for block in backward[0].blocks] == ["y", "x"]
        assert [result.note_id for result in grouped] == ["y", "x"]

    def test_query_without_blocks(self):
        results = self._find(query="no terminator")

        assert results == []
        assert self.embedder.calls == []

    def test_query_is_embedded_with_query_prefix(self):
        self._find(query="what is this?")

        assert self.embedder.calls == ["query:what is this?"]

    def test_query_vector_is_mean_of_query_blocks(self):
        search = SimilaritySearch(KeywordEmbedder(), chunker=Chunker(max_block_size=1))
        block = make_block("a", unit(1.0, 0.0), title="a")

        results = asyncio.run(
            search.find_nearest([block], None, "alpha. beta.", Settings(notes_min_similarity=0.0), False)
        )

        assert results[0].blocks[0].similarity == pytest.approx(0.5, abs=1e-6)

    def test_missing_note_title_falls_back_to_id(self):
        results = self._find(blocks=[make_block("gone", _at(1.0))])

        assert results[0].note_title == "gone"

    def test_missing_provider_refuses_query(self):
        search = SimilaritySearch(None)

        with pytest.raises(ProviderUnavailableError):
            asyncio.run(search.find_nearest(self.blocks, None, "query.", Settings(), True))

    def test_no_candidates(self):
        assert self._find(blocks=[]) == []
        assert self._find(blocks=[], grouped=False)[0].blocks == []


class TestAggregateSimilarity:
    def test_max_and_avg(self):
        blocks = [make_block("a", [1.0]), make_block("a", [1.0])]
        blocks[0].similarity = 0.9
        blocks[1].similarity = 0.5

        assert aggregate_similarity(blocks, AggregationMode.MAX) == 0.9
        assert aggregate_similarity(blocks, AggregationMode.AVG) == pytest.approx(0.7)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
