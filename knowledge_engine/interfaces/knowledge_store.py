"""Abstract base classes for document and fragment persistence.

The engine consumes persistence through three contracts:

- :class:`IDocumentRepository` -- CRUD over :class:`Document` rows.
- :class:`IFragmentRepository` -- CRUD over :class:`KnowledgeFragment` rows
  plus vector similarity search.
- :class:`IKnowledgeStore` -- owns both repositories and provides
  :meth:`IKnowledgeStore.transaction`, the unit of work the engine uses to
  commit a document together with its fragments (and to cascade-delete
  them) atomically.

Any repository call made while a transaction is open in the same task joins
that transaction.  Leaving the ``async with`` block with an exception,
including ``asyncio.CancelledError``, rolls everything back.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from contextlib import AbstractAsyncContextManager

from knowledge_engine.models.knowledge import (
    Document,
    DocumentStats,
    FragmentSearchFilters,
    KnowledgeFragment,
    ScoredFragment,
)


class IDocumentRepository(ABC):
    """Contract for document persistence."""

    @abstractmethod
    async def create(self, document: Document) -> Document:
        """Insert *document* and return it as stored."""

    @abstractmethod
    async def find_by_id(self, document_id: str) -> Document | None:
        """Return the document with *document_id*, or ``None``."""

    @abstractmethod
    async def find_by_agent(
        self, agent_id: str, limit: int = 100, offset: int = 0
    ) -> list[Document]:
        """Return *agent_id*'s documents, newest first."""

    @abstractmethod
    async def exists(self, document_id: str, agent_id: str) -> bool:
        """Return ``True`` if *agent_id* owns a document with *document_id*."""

    @abstractmethod
    async def delete(self, document_id: str) -> bool:
        """Delete the document row; return ``True`` if a row was removed."""

    @abstractmethod
    async def get_stats(self, agent_id: str) -> DocumentStats:
        """Return aggregate counts and sizes for *agent_id*."""


class IFragmentRepository(ABC):
    """Contract for fragment persistence and similarity search."""

    @abstractmethod
    async def create(self, fragment: KnowledgeFragment) -> KnowledgeFragment:
        """Insert a single fragment."""

    @abstractmethod
    async def create_batch(
        self, fragments: list[KnowledgeFragment]
    ) -> list[KnowledgeFragment]:
        """Insert all *fragments* atomically.

        An empty input returns an empty list without touching the database.
        """

    @abstractmethod
    async def find_by_id(self, fragment_id: str) -> KnowledgeFragment | None:
        """Return the fragment with *fragment_id*, or ``None``."""

    @abstractmethod
    async def find_by_document(self, document_id: str) -> list[KnowledgeFragment]:
        """Return a document's fragments ordered by ``position`` ascending."""

    @abstractmethod
    async def search_by_embedding(
        self, embedding: list[float], filters: FragmentSearchFilters
    ) -> list[ScoredFragment]:
        """Return fragments nearest to *embedding*.

        Similarity is ``1 - cosine_distance``; ``filters.threshold`` is an
        inclusive lower bound.  Results are ordered by similarity
        descending, then ``created_at`` ascending, then fragment id, and
        truncated to ``filters.limit``.  All present filters are ANDed.
        """

    @abstractmethod
    async def update_embedding(
        self, fragment_id: str, embedding: list[float]
    ) -> KnowledgeFragment | None:
        """Replace a fragment's embedding; ``None`` if it does not exist."""

    @abstractmethod
    async def delete(self, fragment_id: str) -> bool:
        """Delete one fragment; return ``True`` if a row was removed."""

    @abstractmethod
    async def delete_by_document(self, document_id: str) -> int:
        """Delete every fragment of *document_id*; return how many were removed."""

    @abstractmethod
    async def count_by_document(self, document_id: str) -> int:
        """Return the number of fragments stored for *document_id*."""


# Concrete implementation: SQLiteKnowledgeStore
# Located in: knowledge_engine/providers/storage/
class IKnowledgeStore(ABC):
    """Transactional owner of the document and fragment repositories."""

    @property
    @abstractmethod
    def documents(self) -> IDocumentRepository:
        """The document repository."""

    @property
    @abstractmethod
    def fragments(self) -> IFragmentRepository:
        """The fragment repository."""

    @abstractmethod
    def transaction(self) -> AbstractAsyncContextManager[None]:
        """Return an async context manager spanning one unit of work."""

    @abstractmethod
    async def initialize(self) -> None:
        """Open connections and create the schema if needed."""

    @abstractmethod
    async def close(self) -> None:
        """Release connections."""

    @abstractmethod
    def get_provider_name(self) -> str:
        """Return a short identifier for logging."""
