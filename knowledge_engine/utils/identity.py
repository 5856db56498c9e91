"""Deterministic document identities.

Identities are name-based UUIDs (``uuid5``) over the owning agent and a
source key, so the same source ingested twice by the same agent always maps
to the same document id, while two agents ingesting the same source get
distinct ids.

Source keys:
    - Client-supplied ids: ``client:<id>``, so two agents may reuse the
      same client id without colliding.
    - URL sources: the normalized URL (see :func:`normalize_url`).
    - Inline sources without a client id: ``sha256`` of the raw content.

Fragment ids are derived from the document id and position, so chunking
the same document twice yields the same fragment ids.
"""

from __future__ import annotations

import hashlib
import uuid
from urllib.parse import urlsplit, urlunsplit

# Fixed namespace so identities are stable across processes and releases.
_KNOWLEDGE_NAMESPACE = uuid.UUID("6f2d9b1e-8c4a-5e7f-9a3b-1d0c2e4f6a8b")


def derive_document_id(agent_id: str, source_key: str) -> str:
    """Return the stable document id for *source_key* owned by *agent_id*."""
    return str(uuid.uuid5(_KNOWLEDGE_NAMESPACE, f"{agent_id}:{source_key}"))


def derive_client_document_id(agent_id: str, client_document_id: str) -> str:
    """Return the stored id for a client-supplied document id owned by *agent_id*."""
    return derive_document_id(agent_id, f"client:{client_document_id}")


def content_hash(content: str) -> str:
    """Return the hex sha256 digest of *content*."""
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


def normalize_url(url: str) -> str:
    """Strip the query string and fragment from *url*.

    Signed storage URLs (S3 presigned links) and tracking parameters change
    on every request; dropping them makes repeated uploads of the same file
    collapse to one identity.  Scheme and host are lower-cased.

    >>> normalize_url("https://Example.com/doc.pdf?utm=1#top")
    'https://example.com/doc.pdf'
    """
    parts = urlsplit(url.strip())
    return urlunsplit((parts.scheme.lower(), parts.netloc.lower(), parts.path, "", ""))


def derive_url_document_id(agent_id: str, url: str) -> str:
    """Return the stable document id for the normalized form of *url*."""
    return derive_document_id(agent_id, normalize_url(url))


def derive_fragment_id(document_id: str, position: int) -> str:
    """Return the stable id of the fragment at *position* within *document_id*."""
    return str(uuid.uuid5(_KNOWLEDGE_NAMESPACE, f"{document_id}#{position}"))
