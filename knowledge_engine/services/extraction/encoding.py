"""Helpers for content-type and base64 handling shared by the extractors."""

from __future__ import annotations

import base64
import binascii
import re

from knowledge_engine.utils.errors import EmptyOrInvalidContentError

# Base64 alphabet, optionally wrapped onto lines.  Spaces or tabs inside the
# payload mean prose, not base64.
_BASE64_RE = re.compile(r"^[A-Za-z0-9+/]+(?:\r?\n[A-Za-z0-9+/]+)*={0,2}$")

# Shorter payloads are too ambiguous to treat as base64 ("abcd" is both
# a word and valid base64).
_MIN_BASE64_SNIFF_LENGTH = 16


def normalize_content_type(content_type: str) -> str:
    """Lower-case *content_type* and drop parameters such as ``charset``."""
    return content_type.split(";", 1)[0].strip().lower()


def decode_base64(content: str) -> bytes:
    """Decode a base64 payload, tolerating embedded whitespace and data URIs.

    Raises
    ------
    EmptyOrInvalidContentError
        If *content* is empty or not valid base64.
    """
    payload = content.strip()
    if payload.startswith("data:") and "," in payload:
        payload = payload.split(",", 1)[1]
    payload = "".join(payload.split())
    if not payload:
        raise EmptyOrInvalidContentError("Base64 payload is empty")
    try:
        return base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise EmptyOrInvalidContentError(f"Content is not valid base64: {exc}") from exc


def looks_like_base64(content: str) -> bool:
    """Heuristic: is *content* plausibly a base64 payload rather than prose?"""
    stripped = "".join(content.split())
    if len(stripped) < _MIN_BASE64_SNIFF_LENGTH or len(stripped) % 4 != 0:
        return False
    return bool(_BASE64_RE.match(content.strip()))


def decode_text_bytes(data: bytes) -> str | None:
    """Return *data* as UTF-8 text, or ``None`` if it looks binary."""
    if b"\x00" in data:
        return None
    try:
        return data.decode("utf-8")
    except UnicodeDecodeError:
        return None


def is_probably_text(content: str) -> bool:
    """Return ``False`` when *content* carries NULs or is dominated by control chars."""
    if "\x00" in content:
        return False
    sample = content[:4096]
    if not sample:
        return True
    control = sum(1 for ch in sample if ord(ch) < 32 and ch not in "\n\r\t\f\v")
    return control / len(sample) < 0.05
