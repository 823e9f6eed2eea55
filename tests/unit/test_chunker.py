"""Unit tests for the TokenChunker -- overlapping token windows with exact offsets."""

from __future__ import annotations

from unittest.mock import patch

import pytest

from iqrchat.services.ingestion.chunker import (
    MIN_CHUNK_SIZE,
    TokenChunker,
    clamp_window,
    page_range,
)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _words(count: int) -> str:
    return " ".join(f"w{i}" for i in range(count))


def _make_chunker(chunk_size: int = 1000, overlap: int = 200) -> TokenChunker:
    """Build a chunker on the offline word-level tokenizer."""
    return TokenChunker(chunk_size=chunk_size, overlap=overlap, tokenizer_name="")


# ---------------------------------------------------------------------------
# Window arithmetic
# ---------------------------------------------------------------------------


class TestWindows:
    def test_2400_tokens_produce_three_windows(self) -> None:
        chunks = _make_chunker().chunk(_words(2400))

        assert [(c.token_start, c.token_end) for c in chunks] == [
            (0, 1000),
            (800, 1800),
            (1600, 2400),
        ]

    def test_1800_tokens_produce_two_windows(self) -> None:
        chunks = _make_chunker().chunk(_words(1800))

        assert [(c.token_start, c.token_end) for c in chunks] == [(0, 1000), (800, 1800)]

    def test_adjacent_windows_share_overlap_tokens(self) -> None:
        chunks = _make_chunker(chunk_size=300, overlap=60).chunk(_words(1000))

        for previous, current in zip(chunks, chunks[1:]):
            assert current.token_start == previous.token_end - 60
        assert chunks[-1].token_end == 1000

    def test_short_text_yields_single_chunk(self) -> None:
        chunks = _make_chunker().chunk("just five words in here")

        assert len(chunks) == 1
        assert chunks[0].token_start == 0
        assert chunks[0].token_end == 5
        assert chunks[0].content == "just five words in here"

    def test_per_call_window_overrides_constructor(self) -> None:
        chunker = _make_chunker()
        chunks = chunker.chunk(_words(400), chunk_size=200, overlap=0)

        assert [(c.token_start, c.token_end) for c in chunks] == [(0, 200), (200, 400)]
        assert chunker.chunk_size == 1000

    def test_same_input_gives_same_chunks(self) -> None:
        text = _words(2400)

        chunker = _make_chunker()
        first = chunker.chunk(text)

        assert chunker.chunk(text) == first
        assert _make_chunker().chunk(text) == first


# ---------------------------------------------------------------------------
# Offsets
# ---------------------------------------------------------------------------


class TestOffsets:
    def test_char_offsets_slice_back_to_content(self) -> None:
        text = _words(1500)
        for chunk in _make_chunker(chunk_size=400, overlap=100).chunk(text):
            assert text[chunk.char_start : chunk.char_end] == chunk.content

    def test_content_excludes_leading_and_trailing_whitespace(self) -> None:
        chunks = _make_chunker().chunk("   padded words here   \n")

        assert chunks[0].content == "padded words here"
        assert chunks[0].char_start == 3

    def test_repeated_passage_points_at_first_occurrence(self) -> None:
        # 200 identical words split into two identical 100-token windows.
        text = " ".join(["echo"] * 200)
        chunks = _make_chunker(chunk_size=100, overlap=0).chunk(text)

        assert len(chunks) == 2
        assert chunks[0].content == chunks[1].content
        assert chunks[1].token_start == 100
        assert chunks[1].char_start == 0

    def test_punctuation_counts_as_tokens(self) -> None:
        assert _make_chunker().count_tokens("hello, world!") == 4


# ---------------------------------------------------------------------------
# Clamping and edge cases
# ---------------------------------------------------------------------------


class TestClamping:
    @pytest.mark.parametrize(
        ("size", "overlap", "expected"),
        [
            (10, 0, (MIN_CHUNK_SIZE, 0)),
            (1000, -5, (1000, 0)),
            (100, 500, (100, 50)),
            (1000, 200, (1000, 200)),
        ],
    )
    def test_clamp_window(self, size: int, overlap: int, expected: tuple[int, int]) -> None:
        assert clamp_window(size, overlap) == expected

    def test_constructor_clamps(self) -> None:
        chunker = _make_chunker(chunk_size=20, overlap=90)

        assert chunker.chunk_size == 100
        assert chunker.overlap == 50

    @pytest.mark.parametrize("text", ["", "   ", "\n\n\t"])
    def test_blank_text_yields_no_chunks(self, text: str) -> None:
        assert _make_chunker().chunk(text) == []

    def test_tokenizer_failure_yields_no_chunks(self) -> None:
        chunker = _make_chunker()
        with patch.object(TokenChunker, "_token_offsets", side_effect=RuntimeError("boom")):
            assert chunker.chunk("some text") == []


# ---------------------------------------------------------------------------
# page_range
# ---------------------------------------------------------------------------


class TestPageRange:
    OFFSETS = [0, 100, 200]

    def test_within_first_page(self) -> None:
        assert page_range(0, 50, self.OFFSETS) == (1, 1)

    def test_spanning_two_pages(self) -> None:
        assert page_range(90, 150, self.OFFSETS) == (1, 2)

    def test_ending_exactly_at_page_boundary(self) -> None:
        assert page_range(100, 200, self.OFFSETS) == (2, 2)

    def test_last_page(self) -> None:
        assert page_range(250, 260, self.OFFSETS) == (3, 3)

    def test_unknown_offsets(self) -> None:
        assert page_range(0, 10, []) is None
