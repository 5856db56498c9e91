"""Orchestrator for knowledge ingestion and retrieval.

Pipeline stages for ingestion: **extract -> normalize -> chunk -> (enrich)
-> embed -> store**.  Retrieval: **embed query -> vector search -> attach
document titles**.

The :class:`KnowledgeEngine` coordinates its collaborators without any of
them knowing about each other:

    1. ExtractorRegistry -- MIME type -> plain text
    2. TextChunker -- overlapping, boundary-aware chunks
    3. ContextualEnricher -- optional per-chunk context prefix
    4. EmbeddingClient -- rate-limited, retrying embeddings
    5. IKnowledgeStore -- document + fragments committed as one unit

Deduplication and at-most-one-processing:

- A document's identity is derived from the agent and a source key: the
  client-supplied id, the content hash (inline) or the normalized URL (URL
  sources).  Agents therefore never share an identity, even when they
  reuse a client id; the client id is kept in ``metadata["client_document_id"]``.
- If a document with that identity already exists the call short-circuits
  and returns the stored identity and fragment count.
- Per identity, at most one ingestion runs at a time.  The engine keeps a
  mapping of ``(agent_id, identity)`` -> ``asyncio.Task``; a second
  caller for the same identity either waits for that task and returns its
  result (``"wait"``, the default) or fails with
  :class:`AlreadyProcessingError` (``"reject"``).

State per identity: ``Unseen -> Processing -> {Stored, Failed}``.  ``Stored``
short-circuits every later request; ``Failed`` persists nothing, so a
later request simply starts over.
"""

from __future__ import annotations

import asyncio
import base64
import csv
import io
import json
import mimetypes
import time
from datetime import datetime, timezone
from pathlib import PurePosixPath
from typing import Any, Awaitable, Callable, Literal
from urllib.parse import urlsplit

import structlog

from knowledge_engine.interfaces.knowledge_store import IKnowledgeStore
from knowledge_engine.interfaces.url_fetcher import IUrlFetcher
from knowledge_engine.models.knowledge import (
    MAX_SEARCH_LIMIT,
    AddKnowledgeOptions,
    AddKnowledgeResult,
    Document,
    FragmentSearchFilters,
    FragmentSearchResult,
    KnowledgeAnalytics,
    KnowledgeFragment,
    KnowledgeScope,
    QueryStats,
    SearchOptions,
)
from knowledge_engine.models.sources import InlineDataSource, UrlSource
from knowledge_engine.services.embedding_client import EmbeddingClient
from knowledge_engine.services.extraction.encoding import (
    decode_base64,
    decode_text_bytes,
    normalize_content_type,
)
from knowledge_engine.services.extraction.registry import ExtractorRegistry
from knowledge_engine.services.ingestion.chunker import TextChunker
from knowledge_engine.services.ingestion.contextual_enricher import ContextualEnricher
from knowledge_engine.utils.errors import (
    AlreadyProcessingError,
    ConfigurationError,
    NotFoundError,
)
from knowledge_engine.utils.identity import (
    content_hash,
    derive_client_document_id,
    derive_document_id,
    derive_fragment_id,
    derive_url_document_id,
    normalize_url,
)
from knowledge_engine.utils.text_normalizer import normalize_text

logger = structlog.get_logger(logger_name=__name__)

DuplicatePolicy = Literal["wait", "reject"]

_UNKNOWN_DOCUMENT_TITLE = "Unknown document"
_MAX_LIST_LIMIT = 1000
_EXPORT_PAGE_SIZE = 100

# Content types inferred from the URL when a server answers with
# application/octet-stream.
_EXTENSION_CONTENT_TYPES: dict[str, str] = {
    ".pdf": "application/pdf",
    ".txt": "text/plain",
    ".md": "text/markdown",
    ".markdown": "text/markdown",
    ".doc": "application/msword",
    ".docx": "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    ".html": "text/html",
    ".htm": "text/html",
    ".json": "application/json",
    ".xml": "application/xml",
    ".csv": "text/csv",
    ".rtf": "application/rtf",
}


def clamp_threshold(threshold: float) -> float:
    """Clamp a similarity threshold into ``[0, 1]``."""
    return min(max(float(threshold), 0.0), 1.0)


def clamp_limit(limit: int) -> int:
    """Clamp a result limit into ``[1, MAX_SEARCH_LIMIT]``."""
    return min(max(int(limit), 1), MAX_SEARCH_LIMIT)


def infer_content_type_from_url(url: str) -> str | None:
    """Guess a MIME type from the URL's path extension."""
    suffix = PurePosixPath(urlsplit(url).path).suffix.lower()
    if not suffix:
        return None
    return _EXTENSION_CONTENT_TYPES.get(suffix) or mimetypes.types_map.get(suffix)


class KnowledgeEngine:
    """Ingests documents and answers similarity queries for agents.

    Parameters
    ----------
    store:
        Document and fragment persistence with transactions.
    embedding_client:
        Rate-limited embedding front end shared with every other caller of
        the same provider.
    extractors:
        MIME-type dispatch to text extractors.
    chunker:
        Splits normalized text into fragments.
    enricher:
        Optional contextual enricher; ``None`` disables contextual mode.
    url_fetcher:
        Required only for URL ingestion.
    duplicate_policy:
        ``"wait"`` (default) or ``"reject"`` for concurrent ingestion of an
        identity that is already in flight.
    clock:
        Returns the current UTC time; injectable for tests.
    """

    def __init__(
        self,
        store: IKnowledgeStore,
        embedding_client: EmbeddingClient,
        extractors: ExtractorRegistry,
        chunker: TextChunker,
        enricher: ContextualEnricher | None = None,
        url_fetcher: IUrlFetcher | None = None,
        duplicate_policy: DuplicatePolicy = "wait",
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        if duplicate_policy not in ("wait", "reject"):
            raise ValueError(f"duplicate_policy must be 'wait' or 'reject', got {duplicate_policy!r}")
        self._store = store
        self._embedding = embedding_client
        self._extractors = extractors
        self._chunker = chunker
        self._enricher = enricher
        self._url_fetcher = url_fetcher
        self._duplicate_policy = duplicate_policy
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._in_flight: dict[tuple[str, str], asyncio.Task[AddKnowledgeResult]] = {}
        self._query_count = 0
        self._query_time_ms = 0.0

    @property
    def contextual_enabled(self) -> bool:
        return self._enricher is not None

    async def initialize(self) -> None:
        """Open the store and create its schema if needed."""
        await self._store.initialize()
        logger.info(
            "knowledge_engine_initialized",
            store=self._store.get_provider_name(),
            embedding_provider=self._embedding.provider_name,
            contextual=self.contextual_enabled,
        )

    async def close(self) -> None:
        """Wait for in-flight ingestions, then release the store and fetcher."""
        pending = [task for task in self._in_flight.values() if not task.done()]
        if pending:
            await asyncio.wait(pending)
        await self._store.close()
        if self._url_fetcher is not None:
            await self._url_fetcher.close()

    # ------------------------------------------------------------------
    # Ingestion
    # ------------------------------------------------------------------

    async def add_knowledge(self, options: AddKnowledgeOptions) -> AddKnowledgeResult:
        """Ingest one inline document.

        Returns
        -------
        AddKnowledgeResult
            The document identity and its fragment count.  When the
            identity already exists nothing is written and
            ``already_existed`` is ``True``.

        Raises
        ------
        UnsupportedContentTypeError
            No extractor matches and the content is not text.
        EmptyOrInvalidContentError
            The payload could not be decoded or parsed.
        EmbeddingFailedError
            Embedding failed after retries; nothing was persisted.
        PersistenceError
            The store rejected the write; nothing was persisted.
        AlreadyProcessingError
            Under the ``"reject"`` policy, when the identity is in flight.
        """
        if options.client_document_id:
            document_id = derive_client_document_id(options.agent_id, options.client_document_id)
        else:
            document_id = derive_document_id(options.agent_id, content_hash(options.content))
        return await self._run_exclusive(
            options.agent_id, document_id, lambda: self._ingest(document_id, options)
        )

    async def add_knowledge_from_url(
        self,
        url: str,
        scope: KnowledgeScope,
        metadata: dict[str, Any] | None = None,
    ) -> AddKnowledgeResult:
        """Fetch *url* and ingest its content.

        The identity is derived from the agent and the normalized URL (query
        string and fragment stripped), and is checked before fetching, so a
        repeated upload of the same file does not download it again.
        """
        if self._url_fetcher is None:
            raise ConfigurationError("URL ingestion requires a URL fetcher")
        normalized = normalize_url(url)
        document_id = derive_url_document_id(scope.agent_id, url)
        return await self._run_exclusive(
            scope.agent_id,
            document_id,
            lambda: self._ingest_url(document_id, url, normalized, scope, metadata or {}),
        )

    async def ingest_source(
        self, source: UrlSource | InlineDataSource, scope: KnowledgeScope
    ) -> AddKnowledgeResult:
        """Ingest a tagged source, dispatching on its kind."""
        if isinstance(source, UrlSource):
            return await self.add_knowledge_from_url(source.url, scope, source.metadata)
        return await self.add_knowledge(
            AddKnowledgeOptions(
                agent_id=scope.agent_id,
                world_id=scope.world_id,
                room_id=scope.room_id,
                entity_id=scope.entity_id,
                client_document_id=source.client_document_id,
                content_type=source.content_type,
                original_filename=source.original_filename,
                content=source.content,
                metadata=source.metadata,
            )
        )

    async def _run_exclusive(
        self,
        agent_id: str,
        document_id: str,
        factory: Callable[[], Awaitable[AddKnowledgeResult]],
    ) -> AddKnowledgeResult:
        """Run *factory* as the single in-flight ingestion of *document_id* for *agent_id*.

        The first caller owns the task: cancelling it cancels the ingestion.
        Later callers wait without owning it, so their own cancellation
        leaves the ingestion running.  If the owner's task is cancelled, a
        waiter takes over and starts the ingestion again.
        """
        key = (agent_id, document_id)
        while True:
            task = self._in_flight.get(key)
            if task is None or task.done():
                task = asyncio.create_task(factory(), name=f"ingest:{agent_id}:{document_id}")
                self._in_flight[key] = task
                task.add_done_callback(lambda t: self._release(key, t))
                return await task

            if self._duplicate_policy == "reject":
                raise AlreadyProcessingError(f"Document {document_id} is already being processed")

            logger.info("ingestion_in_flight_waiting", document_id=document_id)
            await asyncio.wait({task})
            if task.cancelled():
                logger.info("ingestion_owner_cancelled_retrying", document_id=document_id)
                continue
            result = task.result()
            return result.model_copy(update={"already_existed": True})

    def _release(self, key: tuple[str, str], task: asyncio.Task[AddKnowledgeResult]) -> None:
        if self._in_flight.get(key) is task:
            del self._in_flight[key]

    async def _ingest_url(
        self,
        document_id: str,
        url: str,
        normalized_url: str,
        scope: KnowledgeScope,
        metadata: dict[str, Any],
    ) -> AddKnowledgeResult:
        existing = await self._existing_result(document_id, scope.agent_id)
        if existing is not None:
            return existing

        assert self._url_fetcher is not None
        fetched = await self._url_fetcher.fetch(url)
        content_type = normalize_content_type(fetched.content_type)
        if not content_type or content_type == "application/octet-stream":
            content_type = infer_content_type_from_url(normalized_url) or "application/octet-stream"

        if self._extractors.is_binary(content_type):
            content = _b64encode(fetched.data)
        else:
            text = decode_text_bytes(fetched.data)
            # Undecodable bytes go through as base64 and are rejected by extraction.
            content = text if text is not None else _b64encode(fetched.data)

        filename = PurePosixPath(urlsplit(normalized_url).path).name or urlsplit(normalized_url).netloc
        options = AddKnowledgeOptions(
            agent_id=scope.agent_id,
            world_id=scope.world_id,
            room_id=scope.room_id,
            entity_id=scope.entity_id,
            content_type=content_type,
            original_filename=filename,
            content=content,
            metadata={**metadata, "url": normalized_url, "source": "url"},
        )
        return await self._ingest(document_id, options, source_url=normalized_url)

    async def _ingest(
        self,
        document_id: str,
        options: AddKnowledgeOptions,
        source_url: str | None = None,
    ) -> AddKnowledgeResult:
        with structlog.contextvars.bound_contextvars(
            document_id=document_id, agent_id=options.agent_id
        ):
            existing = await self._existing_result(document_id, options.agent_id)
            if existing is not None:
                return existing

            started = time.perf_counter()
            extracted = await self._extractors.extract(options.content, options.content_type)
            text = normalize_text(extracted.text)
            chunks = self._chunker.chunk(text)

            contexts: dict[int, str] = {}
            errors: dict[int, str] = {}
            if self._enricher is not None and chunks:
                enriched = await self._enricher.enrich(text, chunks)
                embed_inputs = [e.text for e in enriched]
                contexts = {e.position: e.context for e in enriched if e.context is not None}
                errors = {e.position: e.error for e in enriched if e.error is not None}
            else:
                embed_inputs = [c.text for c in chunks]

            vectors = await self._embedding.embed(embed_inputs)

            now = self._clock()
            title = str(options.metadata.get("title") or options.original_filename)
            document = Document(
                id=document_id,
                agent_id=options.agent_id,
                world_id=options.world_id,
                room_id=options.room_id,
                entity_id=options.entity_id,
                original_filename=options.original_filename,
                content_type=normalize_content_type(options.content_type),
                content=options.content if extracted.is_binary else text,
                file_size=_payload_size(options.content, extracted.is_binary),
                title=title,
                source_url=source_url or options.metadata.get("url"),
                metadata=_document_metadata(options, extracted.extractor),
                created_at=now,
                updated_at=now,
            )
            fragments = [
                KnowledgeFragment(
                    id=derive_fragment_id(document_id, chunk.position),
                    document_id=document_id,
                    agent_id=options.agent_id,
                    world_id=options.world_id,
                    room_id=options.room_id,
                    entity_id=options.entity_id,
                    content=chunk.text,
                    embedding=vector,
                    position=chunk.position,
                    metadata=_fragment_metadata(
                        document, contexts.get(chunk.position), errors.get(chunk.position)
                    ),
                    created_at=now,
                )
                for chunk, vector in zip(chunks, vectors)
            ]

            async with self._store.transaction():
                await self._store.documents.create(document)
                await self._store.fragments.create_batch(fragments)

            logger.info(
                "document_ingested",
                content_type=document.content_type,
                fragment_count=len(fragments),
                enrichment_failures=len(errors),
                elapsed_ms=round((time.perf_counter() - started) * 1000, 1),
            )
            return AddKnowledgeResult(document_id=document_id, fragment_count=len(fragments))

    async def _existing_result(self, document_id: str, agent_id: str) -> AddKnowledgeResult | None:
        if not await self._store.documents.exists(document_id, agent_id):
            return None
        count = await self._store.fragments.count_by_document(document_id)
        logger.info("document_already_exists", document_id=document_id, fragment_count=count)
        return AddKnowledgeResult(document_id=document_id, fragment_count=count, already_existed=True)

    # ------------------------------------------------------------------
    # Retrieval
    # ------------------------------------------------------------------

    async def search(self, query: str, options: SearchOptions) -> list[FragmentSearchResult]:
        """Return the fragments most similar to *query* for ``options.agent_id``.

        ``threshold`` is clamped into [0, 1] and ``limit`` into [1, 100].
        Results are ordered by similarity descending, then fragment
        creation time, then fragment id.  No match (or a blank query)
        yields an empty list.
        """
        started = time.perf_counter()
        try:
            if not query.strip():
                return []

            vector = await self._embedding.embed_query(query)
            scored = await self._store.fragments.search_by_embedding(
                vector,
                FragmentSearchFilters(
                    agent_id=options.agent_id,
                    room_id=options.room_id,
                    world_id=options.world_id,
                    entity_id=options.entity_id,
                    content_types=options.content_types,
                    created_after=options.created_after,
                    threshold=clamp_threshold(options.threshold),
                    limit=clamp_limit(options.limit),
                ),
            )

            documents: dict[str, Document | None] = {}
            results: list[FragmentSearchResult] = []
            for hit in scored:
                fragment = hit.fragment
                if fragment.document_id not in documents:
                    documents[fragment.document_id] = await self._store.documents.find_by_id(
                        fragment.document_id
                    )
                parent = documents[fragment.document_id]
                results.append(
                    FragmentSearchResult(
                        fragment_id=fragment.id,
                        document_id=fragment.document_id,
                        content=fragment.content,
                        similarity=hit.similarity,
                        position=fragment.position,
                        metadata={
                            **fragment.metadata,
                            "document_title": (
                                (parent.title or parent.original_filename)
                                if parent is not None
                                else _UNKNOWN_DOCUMENT_TITLE
                            ),
                            "original_filename": parent.original_filename if parent else None,
                        },
                    )
                )
            logger.info("knowledge_search", agent_id=options.agent_id, results=len(results))
            return results
        finally:
            self._query_count += 1
            self._query_time_ms += (time.perf_counter() - started) * 1000

    # ------------------------------------------------------------------
    # Documents
    # ------------------------------------------------------------------

    async def get_document(self, document_id: str) -> Document:
        """Return a document or raise :class:`NotFoundError`."""
        document = await self._store.documents.find_by_id(document_id)
        if document is None:
            raise NotFoundError(f"Document {document_id} not found")
        return document

    async def list_documents(self, agent_id: str, limit: int = 100, offset: int = 0) -> list[Document]:
        """Return *agent_id*'s documents, newest first."""
        return await self._store.documents.find_by_agent(
            agent_id, limit=min(max(limit, 1), _MAX_LIST_LIMIT), offset=max(offset, 0)
        )

    async def get_fragments_for_document(self, document_id: str) -> list[KnowledgeFragment]:
        """Return a document's fragments ordered by position (empty if unknown)."""
        return await self._store.fragments.find_by_document(document_id)

    async def delete_document(self, document_id: str) -> bool:
        """Delete a document and all its fragments in one transaction.

        Deleting an unknown id is a successful no-op; the return value says
        whether a document was actually removed.
        """
        async with self._store.transaction():
            fragment_count = await self._store.fragments.delete_by_document(document_id)
            deleted = await self._store.documents.delete(document_id)
        logger.info(
            "document_deleted" if deleted else "document_delete_noop",
            document_id=document_id,
            fragments_deleted=fragment_count,
        )
        return deleted

    async def reembed_document(self, document_id: str) -> int:
        """Regenerate embeddings for every fragment of a document.

        Used when migrating to a different embedding model.  The fragment
        text is embedded the same way it was at ingestion (context prefix
        included when one was generated).  Returns the number of fragments
        updated.
        """
        await self.get_document(document_id)
        fragments = await self._store.fragments.find_by_document(document_id)
        if not fragments:
            return 0

        texts = [
            f"{f.metadata['context']}\n\n{f.content}" if f.metadata.get("context") else f.content
            for f in fragments
        ]
        vectors = await self._embedding.embed(texts)
        async with self._store.transaction():
            for fragment, vector in zip(fragments, vectors):
                await self._store.fragments.update_embedding(fragment.id, vector)
        logger.info("document_reembedded", document_id=document_id, fragment_count=len(fragments))
        return len(fragments)

    # ------------------------------------------------------------------
    # Analytics / export
    # ------------------------------------------------------------------

    @property
    def query_stats(self) -> QueryStats:
        average = self._query_time_ms / self._query_count if self._query_count else 0.0
        return QueryStats(total_queries=self._query_count, average_response_time_ms=average)

    async def get_analytics(self, agent_id: str) -> KnowledgeAnalytics:
        """Return document/fragment totals for *agent_id* plus query statistics."""
        stats = await self._store.documents.get_stats(agent_id)
        return KnowledgeAnalytics(
            total_documents=stats.total_documents,
            total_fragments=stats.total_fragments,
            storage_size=stats.storage_size,
            content_types=stats.content_types,
            query_stats=self.query_stats,
        )

    async def export_knowledge(
        self,
        agent_id: str,
        format: str = "json",
        include_metadata: bool = True,
        include_fragments: bool = False,
    ) -> str:
        """Export *agent_id*'s documents as ``json``, ``csv`` or ``markdown``."""
        if format not in ("json", "csv", "markdown"):
            raise ValueError(f"Unsupported export format: {format!r}")

        documents: list[Document] = []
        offset = 0
        while True:
            page = await self._store.documents.find_by_agent(
                agent_id, limit=_EXPORT_PAGE_SIZE, offset=offset
            )
            documents.extend(page)
            if len(page) < _EXPORT_PAGE_SIZE:
                break
            offset += _EXPORT_PAGE_SIZE

        fragments: dict[str, list[KnowledgeFragment]] = {}
        if include_fragments:
            for doc in documents:
                fragments[doc.id] = await self._store.fragments.find_by_document(doc.id)

        if format == "json":
            return _export_json(documents, fragments, include_metadata, include_fragments)
        if format == "csv":
            return _export_csv(documents, include_metadata)
        return _export_markdown(documents, fragments, include_metadata, include_fragments)


# ----------------------------------------------------------------------
# Helpers
# ----------------------------------------------------------------------


def _b64encode(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def _payload_size(content: str, is_binary: bool) -> int:
    if is_binary:
        return len(decode_base64(content))
    return len(content.encode("utf-8"))


def _document_metadata(options: AddKnowledgeOptions, extractor: str) -> dict[str, Any]:
    metadata = {**options.metadata, "extractor": extractor}
    if options.client_document_id:
        metadata["client_document_id"] = options.client_document_id
    return metadata


def _fragment_metadata(document: Document, context: str | None, error: str | None) -> dict[str, Any]:
    metadata: dict[str, Any] = {
        "document_title": document.title,
        "original_filename": document.original_filename,
        "content_type": document.content_type,
    }
    if context is not None:
        metadata["context"] = context
    if error is not None:
        metadata["enrichment_error"] = error
    return metadata


def _document_summary(doc: Document, include_metadata: bool) -> dict[str, Any]:
    summary: dict[str, Any] = {
        "id": doc.id,
        "title": doc.title,
        "original_filename": doc.original_filename,
        "content_type": doc.content_type,
        "file_size": doc.file_size,
        "source_url": doc.source_url,
        "created_at": doc.created_at.isoformat(),
    }
    if include_metadata:
        summary["metadata"] = doc.metadata
    return summary


def _export_json(
    documents: list[Document],
    fragments: dict[str, list[KnowledgeFragment]],
    include_metadata: bool,
    include_fragments: bool,
) -> str:
    payload = []
    for doc in documents:
        entry = _document_summary(doc, include_metadata)
        if include_fragments:
            entry["fragments"] = [
                {"id": f.id, "position": f.position, "content": f.content}
                for f in fragments.get(doc.id, [])
            ]
        payload.append(entry)
    return json.dumps({"documents": payload}, indent=2, default=str)


def _export_csv(documents: list[Document], include_metadata: bool) -> str:
    columns = ["id", "title", "original_filename", "content_type", "file_size", "source_url", "created_at"]
    if include_metadata:
        columns.append("metadata")
    buffer = io.StringIO()
    writer = csv.DictWriter(buffer, fieldnames=columns, lineterminator="\n")
    writer.writeheader()
    for doc in documents:
        row = _document_summary(doc, include_metadata)
        if include_metadata:
            row["metadata"] = json.dumps(row["metadata"], default=str)
        writer.writerow(row)
    return buffer.getvalue()


def _export_markdown(
    documents: list[Document],
    fragments: dict[str, list[KnowledgeFragment]],
    include_metadata: bool,
    include_fragments: bool,
) -> str:
    lines = ["# Knowledge Export", "", f"Documents: {len(documents)}", ""]
    for doc in documents:
        lines.append(f"## {doc.title or doc.original_filename}")
        lines.append("")
        lines.append(f"- **ID**: {doc.id}")
        lines.append(f"- **Type**: {doc.content_type}")
        lines.append(f"- **Size**: {doc.file_size} bytes")
        lines.append(f"- **Created**: {doc.created_at.isoformat()}")
        if doc.source_url:
            lines.append(f"- **Source**: {doc.source_url}")
        if include_metadata and doc.metadata:
            for key, value in sorted(doc.metadata.items()):
                lines.append(f"- **{key}**: {value}")
        lines.append("")
        if include_fragments:
            for frag in fragments.get(doc.id, []):
                lines.append(f"### Fragment {frag.position}")
                lines.append("")
                lines.append(frag.content)
                lines.append("")
    return "\n".join(lines).rstrip() + "\n"
