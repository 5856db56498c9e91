"""Text normalization applied to extracted content before chunking.

Extractors return text in whatever shape the source format produced:
Windows line endings, trailing spaces, form feeds between PDF pages, long
runs of blank lines.  :func:`normalize_text` brings all of it to one
canonical form so chunking is deterministic and chunk text is always a
substring of the stored document text.
"""

import re
import unicodedata

_TRAILING_WS_RE = re.compile(r"[ \t]+\n")
_BLANK_RUN_RE = re.compile(r"\n{3,}")
_INLINE_WS_RE = re.compile(r"[ \t\f\v]+")


def normalize_text(text: str) -> str:
    """Return a canonical form of *text* for chunking and storage.

    - Unicode NFC composition (so "e" + combining accent equals "é").
    - ``\\r\\n`` / ``\\r`` -> ``\\n``; form feeds become paragraph breaks.
    - NUL bytes dropped.
    - Runs of spaces/tabs collapsed to one space; trailing spaces removed.
    - Three or more consecutive newlines collapsed to a paragraph break.
    - Leading/trailing whitespace stripped.

    Args:
        text: Raw extracted text.

    Returns:
        Normalized text; empty string for whitespace-only input.
    """
    if not text:
        return ""

    normalized = unicodedata.normalize("NFC", text)
    normalized = normalized.replace("\r\n", "\n").replace("\r", "\n")
    normalized = normalized.replace("\f", "\n\n").replace("\x00", "")
    normalized = _INLINE_WS_RE.sub(" ", normalized)
    normalized = _TRAILING_WS_RE.sub("\n", normalized)
    normalized = _BLANK_RUN_RE.sub("\n\n", normalized)
    return normalized.strip()
