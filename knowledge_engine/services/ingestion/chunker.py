"""Text chunking with overlapping windows and natural boundary preservation.

Splits normalized document text into :class:`~knowledge_engine.models.knowledge.TextChunk`
objects sized for the embedding model's input limit (default budget 4000
tokens, 15% overlap).

The chunking strategy has three design goals:

1. **Boundary-preserving** -- chunk boundaries prefer paragraph breaks
   (double newlines), then sentence ends, then whitespace.  A hard
   character cut only happens for a single "word" longer than the whole
   budget (base64 blobs, minified code).

2. **Overlapping windows** -- consecutive chunks share up to
   ``chunk_size * overlap_ratio`` tokens taken from the tail of the previous
   chunk, so a concept spanning a boundary is captured whole in at least one
   chunk.

3. **Substring-exact** -- the chunker works on character spans of the input
   rather than re-joining pieces, so every chunk's text is a substring of the
   normalized document text and chunking the same text twice yields the same
   sequence.
"""

from __future__ import annotations

import re
from typing import Callable

import structlog

from knowledge_engine.models.knowledge import TextChunk

logger = structlog.get_logger(logger_name=__name__)

# A span is a half-open [start, end) range of character offsets.
_Span = tuple[int, int]

_PARAGRAPH_BREAK_RE = re.compile(r"\n\s*\n")
_SENTENCE_END_RE = re.compile(r"[.!?](?:\s|$)")
_WORD_RE = re.compile(r"\S+")

_CHARS_PER_TOKEN = 4

# Common abbreviations that should NOT trigger a sentence split.
# "Dr. Smith" should remain one sentence, not split at the period.
_ABBREVIATIONS = frozenset(
    {
        "Dr",
        "Mr",
        "Mrs",
        "Ms",
        "Prof",
        "Jr",
        "Sr",
        "St",
        "No",
        "Fig",
        "vs",
        "etc",
        "approx",
        "e.g",
        "i.e",
        "inc",
        "ltd",
        "co",
    }
)


def approximate_token_count(text: str) -> int:
    """Approximate token count: ~4 characters per token."""
    return len(text) // _CHARS_PER_TOKEN


class TextChunker:
    """Splits text into overlapping chunks preserving natural boundaries.

    The algorithm works in two phases:

    1. Break the text into *units*: whole paragraphs when they fit the
       budget, otherwise that paragraph's sentences, otherwise a sentence's
       words, otherwise fixed-size character pieces.
    2. Greedily pack consecutive units into a chunk until the next unit
       would exceed the budget, then flush and seed the next chunk with
       tail units of the previous one (up to the overlap budget).

    Parameters
    ----------
    chunk_size:
        Maximum token count per chunk (default 4000).
    overlap_ratio:
        Fraction of ``chunk_size`` carried over between adjacent chunks;
        must be in ``[0, 0.5)`` (default 0.15).
    token_counter:
        Function returning the token count of a string.  Defaults to the
        ``len // 4`` heuristic.
    """

    def __init__(
        self,
        chunk_size: int = 4000,
        overlap_ratio: float = 0.15,
        token_counter: Callable[[str], int] | None = None,
    ) -> None:
        if chunk_size < 1:
            raise ValueError(f"chunk_size must be >= 1, got {chunk_size}")
        if not 0.0 <= overlap_ratio < 0.5:
            raise ValueError(f"overlap_ratio must be in [0, 0.5), got {overlap_ratio}")
        self._chunk_size = chunk_size
        self._overlap = int(chunk_size * overlap_ratio)
        self._count_tokens = token_counter or approximate_token_count

    @property
    def chunk_size(self) -> int:
        return self._chunk_size

    @property
    def overlap_tokens(self) -> int:
        return self._overlap

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def chunk(self, text: str) -> list[TextChunk]:
        """Split *text* into overlapping chunks.

        Parameters
        ----------
        text:
            Normalized document text.

        Returns
        -------
        list[TextChunk]
            Chunks with contiguous positions ``0..N-1``.  Empty or
            whitespace-only input returns an empty list.
        """
        if not text or not text.strip():
            return []

        units = self._split_units(text)
        spans = self._accumulate(text, units)

        chunks = [
            TextChunk(
                text=text[start:end],
                position=position,
                start=start,
                end=end,
                token_count=self._count_tokens(text[start:end]),
            )
            for position, (start, end) in enumerate(spans)
        ]
        logger.debug(
            "chunking_complete",
            num_chunks=len(chunks),
            chunk_size=self._chunk_size,
            overlap_tokens=self._overlap,
            avg_tokens=sum(c.token_count for c in chunks) // len(chunks) if chunks else 0,
        )
        return chunks

    # ------------------------------------------------------------------
    # Unit splitting
    # ------------------------------------------------------------------

    def _split_units(self, text: str) -> list[_Span]:
        """Return packing units in document order, coarsest that fit the budget."""
        units: list[_Span] = []
        for para in self._split_paragraphs(text):
            if self._fits(text, para):
                units.append(para)
                continue
            for sentence in self._split_sentences(text, para):
                if self._fits(text, sentence):
                    units.append(sentence)
                    continue
                for word in self._split_words(text, sentence):
                    if self._fits(text, word):
                        units.append(word)
                    else:
                        units.extend(self._hard_cut(text, word))
        return units

    @staticmethod
    def _split_paragraphs(text: str) -> list[_Span]:
        """Split *text* on blank lines, discarding empty paragraphs."""
        spans: list[_Span] = []
        last = 0
        for match in _PARAGRAPH_BREAK_RE.finditer(text):
            span = _strip_span(text, last, match.start())
            if span is not None:
                spans.append(span)
            last = match.end()
        span = _strip_span(text, last, len(text))
        if span is not None:
            spans.append(span)
        return spans

    @staticmethod
    def _split_sentences(text: str, span: _Span) -> list[_Span]:
        """Split *span* at sentence boundaries while respecting abbreviations.

        Periods after known abbreviations are masked with ``\\x00`` (same
        length, so offsets stay aligned) before searching for ``.``/``!``/``?``
        followed by whitespace or end of text.
        """
        start, end = span
        masked = text[start:end]
        for abbr in _ABBREVIATIONS:
            masked = re.sub(rf"\b{re.escape(abbr)}\.", f"{abbr}\x00", masked)

        sentences: list[_Span] = []
        last = 0
        for match in _SENTENCE_END_RE.finditer(masked):
            sentence = _strip_span(text, start + last, start + match.end())
            if sentence is not None:
                sentences.append(sentence)
            last = match.end()

        # Trailing text that didn't end with punctuation.
        remainder = _strip_span(text, start + last, end)
        if remainder is not None:
            sentences.append(remainder)
        return sentences or [span]

    @staticmethod
    def _split_words(text: str, span: _Span) -> list[_Span]:
        start, end = span
        return [(start + m.start(), start + m.end()) for m in _WORD_RE.finditer(text[start:end])]

    def _hard_cut(self, text: str, span: _Span) -> list[_Span]:
        """Cut an unbreakable run into pieces that each fit the budget."""
        start, end = span
        pieces: list[_Span] = []
        while start < end:
            length = min(self._chunk_size * _CHARS_PER_TOKEN, end - start)
            while length > 1 and self._count_tokens(text[start : start + length]) > self._chunk_size:
                length = length * 3 // 4
            pieces.append((start, start + length))
            start += length
        return pieces

    # ------------------------------------------------------------------
    # Chunk accumulation
    # ------------------------------------------------------------------

    def _accumulate(self, text: str, units: list[_Span]) -> list[_Span]:
        """Greedily pack *units* into chunk spans with tail overlap.

        Every emitted chunk contains at least one unit not already emitted
        in the previous chunk, so the loop always makes progress.
        """
        chunks: list[_Span] = []
        current: list[_Span] = []
        has_new = False

        for unit in units:
            if current and not self._fits(text, (current[0][0], unit[1])):
                if has_new:
                    chunks.append((current[0][0], current[-1][1]))
                current = self._build_overlap(text, current)
                has_new = False
                # Drop overlap from the front until the new unit fits.
                while current and not self._fits(text, (current[0][0], unit[1])):
                    current.pop(0)
            current.append(unit)
            has_new = True

        if current and has_new:
            chunks.append((current[0][0], current[-1][1]))
        return chunks

    def _build_overlap(self, text: str, parts: list[_Span]) -> list[_Span]:
        """Return tail units of *parts* whose combined span is within the overlap budget."""
        if self._overlap <= 0:
            return []
        overlap: list[_Span] = []
        for unit in reversed(parts):
            candidate_start = unit[0]
            if self._count_tokens(text[candidate_start : parts[-1][1]]) > self._overlap:
                break
            overlap.insert(0, unit)
        return overlap

    def _fits(self, text: str, span: _Span) -> bool:
        return self._count_tokens(text[span[0] : span[1]]) <= self._chunk_size


def _strip_span(text: str, start: int, end: int) -> _Span | None:
    """Shrink ``[start, end)`` past surrounding whitespace; ``None`` if empty."""
    while start < end and text[start].isspace():
        start += 1
    while end > start and text[end - 1].isspace():
        end -= 1
    if start >= end:
        return None
    return start, end
