"""Knowledge base data models.

Defines Pydantic v2 models for the two persisted entities (documents and
their fragments), the ingestion request/response shapes, search results,
and aggregate analytics.  Persisted entities use frozen config so a model
read from the store cannot be mutated behind the repository's back.

Overview:
    1. INGESTION: a document arrives as text or base64 with a MIME type
       (:class:`AddKnowledgeOptions`).
    2. CHUNKING: its normalized text is split into overlapping fragments.
    3. EMBEDDING: each fragment gets a fixed-dimension vector.
    4. STORAGE: one :class:`Document` row plus N :class:`KnowledgeFragment`
       rows are committed together.
    5. RETRIEVAL: a query embedding is compared against stored fragments and
       the nearest ones come back as :class:`FragmentSearchResult`.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


# ---------------------------------------------------------------------------
# Scoping shared by every document and fragment.
# ---------------------------------------------------------------------------
class KnowledgeScope(BaseModel):
    """The agent/world/room/entity tuple every operation is scoped to.

    Cross-agent leakage is a correctness violation: all lookups filter on
    ``agent_id`` at minimum.
    """

    model_config = ConfigDict(frozen=True)

    agent_id: str = Field(description="Owning agent identifier.")
    world_id: str | None = Field(default=None, description="World the content belongs to.")
    room_id: str | None = Field(default=None, description="Room the content belongs to.")
    entity_id: str | None = Field(default=None, description="Entity that supplied the content.")


# ---------------------------------------------------------------------------
# Document: one ingested unit of content.
# ---------------------------------------------------------------------------
class Document(BaseModel):
    """One ingested source unit (a file or a URL's content) scoped to an agent."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(description="Client-supplied or source-derived identifier.")
    agent_id: str
    world_id: str | None = None
    room_id: str | None = None
    entity_id: str | None = None
    original_filename: str
    content_type: str = Field(description="MIME type of the original content.")
    content: str = Field(description="Normalized text, or original base64 for binary sources.")
    file_size: int = Field(default=0, ge=0, description="Size of the original content in bytes.")
    title: str | None = None
    source_url: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime
    updated_at: datetime


# ---------------------------------------------------------------------------
# KnowledgeFragment: one chunk of a document plus its embedding.
# ---------------------------------------------------------------------------
class KnowledgeFragment(BaseModel):
    """A chunk of a document's text with its embedding vector.

    ``position`` is zero-based and contiguous within a document; it defines
    reconstruction order.  Scoping ids are copied from the owning document
    at creation time.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    document_id: str
    agent_id: str
    world_id: str | None = None
    room_id: str | None = None
    entity_id: str | None = None
    content: str
    embedding: list[float] = Field(default_factory=list)
    position: int = Field(ge=0)
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime


# ---------------------------------------------------------------------------
# Ingestion request / response.
# ---------------------------------------------------------------------------
class AddKnowledgeOptions(BaseModel):
    """Input for :meth:`KnowledgeEngine.add_knowledge`.

    ``content`` is base64 for binary files (PDF, DOCX, ...) and plain text
    for text formats.  When ``client_document_id`` is omitted the identity
    is derived from the agent and a hash of the content.
    """

    model_config = ConfigDict(frozen=True)

    agent_id: str
    world_id: str | None = None
    room_id: str | None = None
    entity_id: str | None = None
    client_document_id: str | None = None
    content_type: str
    original_filename: str
    content: str
    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def scope(self) -> KnowledgeScope:
        return KnowledgeScope(
            agent_id=self.agent_id,
            world_id=self.world_id,
            room_id=self.room_id,
            entity_id=self.entity_id,
        )


class AddKnowledgeResult(BaseModel):
    """Outcome of an ingestion: the document identity and its fragment count."""

    model_config = ConfigDict(frozen=True)

    document_id: str
    fragment_count: int = Field(ge=0)
    already_existed: bool = Field(
        default=False,
        description="True when the call short-circuited on an existing document.",
    )


# ---------------------------------------------------------------------------
# Search.
# ---------------------------------------------------------------------------
DEFAULT_SEARCH_THRESHOLD = 0.5
DEFAULT_SEARCH_LIMIT = 20
MAX_SEARCH_LIMIT = 100


class SearchOptions(BaseModel):
    """Options for :meth:`KnowledgeEngine.search`.

    ``threshold`` and ``limit`` are accepted as-is here and clamped by the
    engine (threshold into [0, 1], limit into [1, 100]) rather than rejected.
    """

    model_config = ConfigDict(frozen=True)

    agent_id: str
    threshold: float = DEFAULT_SEARCH_THRESHOLD
    limit: int = DEFAULT_SEARCH_LIMIT
    room_id: str | None = None
    world_id: str | None = None
    entity_id: str | None = None
    content_types: list[str] | None = None
    created_after: datetime | None = None


class FragmentSearchFilters(BaseModel):
    """Repository-level search filters; all present filters are ANDed."""

    model_config = ConfigDict(frozen=True)

    agent_id: str
    room_id: str | None = None
    world_id: str | None = None
    entity_id: str | None = None
    content_types: list[str] | None = None
    created_after: datetime | None = None
    limit: int = DEFAULT_SEARCH_LIMIT
    threshold: float = DEFAULT_SEARCH_THRESHOLD


class ScoredFragment(BaseModel):
    """A fragment returned by the repository with its similarity score."""

    model_config = ConfigDict(frozen=True)

    fragment: KnowledgeFragment
    similarity: float = Field(description="1 - cosine distance to the query vector.")


class FragmentSearchResult(BaseModel):
    """A search hit as exposed to callers of the engine."""

    model_config = ConfigDict(frozen=True)

    fragment_id: str
    document_id: str
    content: str
    similarity: float
    position: int = 0
    metadata: dict[str, Any] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Analytics / bulk loading.
# ---------------------------------------------------------------------------
class DocumentStats(BaseModel):
    """Aggregate document statistics for one agent, computed by the store."""

    model_config = ConfigDict(frozen=True)

    total_documents: int = Field(default=0, ge=0)
    total_fragments: int = Field(default=0, ge=0)
    storage_size: int = Field(default=0, ge=0, description="Sum of document file sizes in bytes.")
    content_types: dict[str, int] = Field(default_factory=dict)


class QueryStats(BaseModel):
    """In-process search statistics."""

    model_config = ConfigDict(frozen=True)

    total_queries: int = Field(default=0, ge=0)
    average_response_time_ms: float = Field(default=0.0, ge=0.0)


class KnowledgeAnalytics(BaseModel):
    """Snapshot of an agent's knowledge base plus query statistics."""

    model_config = ConfigDict(frozen=True)

    total_documents: int = 0
    total_fragments: int = 0
    storage_size: int = 0
    content_types: dict[str, int] = Field(default_factory=dict)
    query_stats: QueryStats = Field(default_factory=QueryStats)


class LoadError(BaseModel):
    """One file that failed during a bulk load."""

    model_config = ConfigDict(frozen=True)

    filename: str
    error: str


class LoadResult(BaseModel):
    """Summary of :func:`load_docs_from_path`."""

    model_config = ConfigDict(frozen=True)

    successful: int = 0
    failed: int = 0
    errors: list[LoadError] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Chunking.
# ---------------------------------------------------------------------------
class TextChunk(BaseModel):
    """One chunk produced by the chunker, before embedding.

    ``start``/``end`` are character offsets into the normalized document
    text, so ``text == document_text[start:end]`` always holds.
    """

    model_config = ConfigDict(frozen=True)

    text: str
    position: int = Field(ge=0)
    start: int = Field(ge=0)
    end: int = Field(ge=0)
    token_count: int = Field(ge=0)
