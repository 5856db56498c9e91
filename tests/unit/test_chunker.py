"""Unit tests for the TextChunker: boundary-aware overlapping text chunking."""

from __future__ import annotations

import pytest

from knowledge_engine.services.ingestion.chunker import TextChunker, approximate_token_count

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

_SAMPLE = (
    "The archive opened in 1998 with a small reading room. Visitors could "
    "request boxes a day in advance.\n\n"
    "Dr. Alvarez catalogued the first donations. Her index cards are still "
    "used today, e.g. for the photography collection.\n\n"
    "In 2010 the archive moved to the old post office. The move took three "
    "months and no items were lost.\n\n"
    "Today the reading room seats forty people. Digitized material is "
    "available online for registered researchers."
)

_SHORT_SENTENCES = "One two. Three four. Five six. Seven eight. Nine ten. Eleven twelve."


def _make_chunker(chunk_size: int = 40, overlap_ratio: float = 0.15) -> TextChunker:
    """Build a TextChunker with a predictable configuration."""
    return TextChunker(chunk_size=chunk_size, overlap_ratio=overlap_ratio)


# ---------------------------------------------------------------------------
# Tests
# ---------------------------------------------------------------------------


class TestBasicChunking:
    """Chunk counts, positions and sizes."""

    def test_short_text_is_one_chunk(self) -> None:
        chunks = _make_chunker(chunk_size=4000).chunk(_SAMPLE)

        assert len(chunks) == 1
        assert chunks[0].text == _SAMPLE
        assert chunks[0].position == 0
        assert (chunks[0].start, chunks[0].end) == (0, len(_SAMPLE))

    def test_multiple_chunks_with_contiguous_positions(self) -> None:
        chunks = _make_chunker().chunk(_SAMPLE)

        assert len(chunks) > 1
        assert [c.position for c in chunks] == list(range(len(chunks)))

    def test_chunk_count_decreases_with_larger_size(self) -> None:
        small = _make_chunker(chunk_size=20).chunk(_SAMPLE)
        large = _make_chunker(chunk_size=80).chunk(_SAMPLE)

        assert len(small) > len(large)

    def test_no_chunk_exceeds_budget(self) -> None:
        chunker = _make_chunker(chunk_size=25)
        for chunk in chunker.chunk(_SAMPLE):
            assert chunk.token_count <= 25
            assert chunk.token_count == approximate_token_count(chunk.text)

    @pytest.mark.parametrize("text", ["", "   ", "\n\n\t\n"])
    def test_empty_input_returns_no_chunks(self, text: str) -> None:
        assert _make_chunker().chunk(text) == []


class TestSubstringInvariant:
    """Every chunk is an exact slice of the input."""

    @pytest.mark.parametrize("chunk_size", [5, 12, 25, 40, 4000])
    def test_chunks_are_slices_of_input(self, chunk_size: int) -> None:
        for chunk in _make_chunker(chunk_size=chunk_size).chunk(_SAMPLE):
            assert _SAMPLE[chunk.start : chunk.end] == chunk.text
            assert chunk.text in _SAMPLE
            assert chunk.text == chunk.text.strip()

    def test_chunking_is_deterministic(self) -> None:
        chunker = _make_chunker(chunk_size=20)
        assert chunker.chunk(_SAMPLE) == chunker.chunk(_SAMPLE)

    def test_chunks_cover_all_paragraph_text(self) -> None:
        chunks = _make_chunker(chunk_size=30).chunk(_SAMPLE)
        covered = set()
        for chunk in chunks:
            covered.update(range(chunk.start, chunk.end))

        for index, char in enumerate(_SAMPLE):
            if not char.isspace():
                assert index in covered


class TestBoundaries:
    """Chunks prefer paragraph and sentence boundaries."""

    def test_paragraphs_kept_whole_when_they_fit(self) -> None:
        paragraphs = _SAMPLE.split("\n\n")
        chunks = _make_chunker(chunk_size=45, overlap_ratio=0.0).chunk(_SAMPLE)

        assert [c.text for c in chunks] == paragraphs

    def test_long_paragraph_split_at_sentences(self) -> None:
        chunks = _make_chunker(chunk_size=20, overlap_ratio=0.0).chunk(_SAMPLE)

        assert len(chunks) >= 8
        for chunk in chunks:
            assert chunk.text.endswith(".")

    def test_abbreviation_does_not_end_sentence(self) -> None:
        text = "Dr. Alvarez met Mr. Chen at noon. They discussed the index."
        chunks = _make_chunker(chunk_size=9, overlap_ratio=0.0).chunk(text)

        assert chunks[0].text.startswith("Dr. Alvarez")
        assert all(not c.text.endswith("Dr.") and not c.text.endswith("Mr.") for c in chunks)

    def test_unbreakable_run_is_hard_cut(self) -> None:
        blob = "x" * 400
        chunks = _make_chunker(chunk_size=25, overlap_ratio=0.0).chunk(blob)

        assert len(chunks) > 1
        assert "".join(c.text for c in chunks) == blob
        assert all(c.token_count <= 25 for c in chunks)


class TestOverlap:
    """Adjacent chunks share tail text up to the overlap budget."""

    def test_adjacent_chunks_overlap(self) -> None:
        chunks = _make_chunker(chunk_size=8, overlap_ratio=0.4).chunk(_SHORT_SENTENCES)

        assert len(chunks) > 1
        assert any(nxt.start < prev.end for prev, nxt in zip(chunks, chunks[1:]))

    def test_zero_overlap_has_disjoint_chunks(self) -> None:
        chunks = _make_chunker(chunk_size=30, overlap_ratio=0.0).chunk(_SAMPLE)

        for prev, nxt in zip(chunks, chunks[1:]):
            assert nxt.start >= prev.end

    def test_every_chunk_adds_new_text(self) -> None:
        chunks = _make_chunker(chunk_size=8, overlap_ratio=0.45).chunk(_SHORT_SENTENCES)

        for prev, nxt in zip(chunks, chunks[1:]):
            assert nxt.end > prev.end

    def test_overlap_tokens_property(self) -> None:
        assert _make_chunker(chunk_size=4000, overlap_ratio=0.15).overlap_tokens == 600


class TestConfiguration:
    """Constructor validation and custom token counters."""

    @pytest.mark.parametrize("chunk_size", [0, -5])
    def test_rejects_non_positive_chunk_size(self, chunk_size: int) -> None:
        with pytest.raises(ValueError, match="chunk_size"):
            TextChunker(chunk_size=chunk_size)

    @pytest.mark.parametrize("ratio", [-0.1, 0.5, 0.9])
    def test_rejects_bad_overlap_ratio(self, ratio: float) -> None:
        with pytest.raises(ValueError, match="overlap_ratio"):
            TextChunker(overlap_ratio=ratio)

    def test_custom_token_counter(self) -> None:
        def count_words(text: str) -> int:
            return len(text.split())

        chunker = TextChunker(chunk_size=10, overlap_ratio=0.0, token_counter=count_words)

        chunks = chunker.chunk(_SAMPLE)

        assert all(len(c.text.split()) <= 10 for c in chunks)
        assert all(c.token_count == len(c.text.split()) for c in chunks)
