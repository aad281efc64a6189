"""
Unit tests for the result formatter.
"""

import os
import sys

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "../../backend"))

from chunker import Chunker
from fakes import FakeNotes, make_block
from formatter import extract_links, extract_text, flatten_results, get_slug
from models import UNKNOWN_OFFSET, Note, NoteResult

BODY = "# Intro\nHello world.\n# Outro\nGoodbye now.\n"


class TestExtractText:
    """Test suite for extract_text."""

    def setup_method(self):
        self.notes = FakeNotes(
            Note(id="n1", title="First", body=BODY),
            Note(id="n2", title="Second", body="Plain note text.\n"),
        )
        self.hello = make_block("n1", [1.0], title="Intro", heading_level=1, body_offset=8, length=13)
        self.goodbye = make_block("n1", [1.0], title="Outro", heading_level=1, body_offset=29, length=13)
        self.plain = make_block("n2", [1.0], title="Second", body_offset=0, length=17)

    def test_single_block(self):
        text = extract_text([self.hello], 1000, self.notes)

        assert text == "# note 1:\nFirst/Intro\nHello world.\n"

    def test_block_title_equal_to_note_title(self):
        text = extract_text([self.plain], 1000, self.notes)

        assert text == "# note 1:\nSecond\nPlain note text.\n"

    def test_budget_smaller_than_first_block(self):
        assert extract_text([self.hello, self.plain], 5, self.notes) == ""

    def test_total_stays_within_budget(self):
        first = "# note 1:\nFirst/Intro\nHello world.\n"

        assert extract_text([self.hello], len(first), self.notes) == first
        assert extract_text([self.hello], len(first) - 1, self.notes) == ""

    def test_overflow_stops_processing(self):
        first = extract_text([self.hello], 1000, self.notes)
        big = make_block("n1", [1.0], title="Intro", heading_level=1, body_offset=0, length=len(BODY))
        tiny = make_block("n1", [1.0], title="First", body_offset=8, length=1)

        text = extract_text([self.hello, big, tiny], len(first) + 30, self.notes)

        assert text == first

    def test_unknown_offset_is_skipped(self):
        lost = make_block("n1", [1.0], title="Intro", body_offset=UNKNOWN_OFFSET, length=500)

        text = extract_text([lost, self.goodbye], 1000, self.notes)

        assert text == "# note 2:\nFirst/Outro\nGoodbye now.\n"

    def test_blocks_from_chunker_round_trip(self):
        body = "# Intro\r\nHello world.\r\n"
        notes = FakeNotes(Note(id="n1", title="First", body=body))
        chunk = Chunker().chunk("n1", "First", body)[0]
        block = make_block(
            "n1", [1.0], title=chunk.title, heading_level=1, body_offset=chunk.body_offset, length=chunk.length
        )

        assert extract_text([block], 1000, notes) == "# note 1:\nFirst/Intro\nHello world.\n"

    def test_missing_note_is_skipped(self):
        gone = make_block("gone", [1.0], title="Lost", length=3)

        text = extract_text([gone, self.goodbye], 1000, self.notes)

        assert text == "# note 2:\nFirst/Outro\nGoodbye now.\n"


class TestExtractLinks:
    def test_links(self):
        blocks = [
            make_block("n1", [1.0], title="My Heading!", heading_level=2),
            make_block("n2", [1.0], title="Second"),
        ]

        assert extract_links(blocks) == "[1](:/n1#my-heading), [2](:/n2)"

    def test_no_blocks(self):
        assert extract_links([]) == ""

    @pytest.mark.parametrize(
        "title,slug",
        [
            ("Hello World", "hello-world"),
            ("  Hello   World  ", "hello-world"),
            ("C++ & Rust -- tips", "c-rust-tips"),
            ("Über café", "ber-caf"),
            ("---", ""),
        ],
    )
    def test_get_slug(self, title, slug):
        assert get_slug(title) == slug


def test_flatten_results_keeps_rank_order():
    a1, a2, b1 = (make_block(note_id, [1.0], title=title) for note_id, title in [("a", "1"), ("a", "2"), ("b", "3")])
    results = [NoteResult("a", "A", [a1, a2], 0.9), NoteResult("b", "B", [b1], 0.5)]

    assert flatten_results(results) == [a1, a2, b1]


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
