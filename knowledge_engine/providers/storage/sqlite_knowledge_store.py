"""SQLite-backed knowledge store.

Persists documents and fragments to a local SQLite database using
``aiosqlite`` for async I/O, and answers similarity queries by computing
cosine similarity with numpy over the candidate rows selected by the
scoping filters.

Transactions
------------
The store holds a single connection in autocommit mode and manages
``BEGIN IMMEDIATE`` / ``COMMIT`` / ``ROLLBACK`` itself.  An ``asyncio.Lock``
serializes units of work; a ``ContextVar`` marks the task that currently
owns the open transaction so repository calls made inside
``async with store.transaction():`` join it instead of deadlocking.  Reads
from other tasks wait for the lock too, so an uncommitted document or
fragment is never visible outside its own unit of work.

Schema
------
``fragments.document_id`` references ``documents.id`` with
``ON DELETE CASCADE`` (deferred, so a document and its fragments may be
inserted in either order within one transaction).  Embeddings are stored
as JSON arrays next to their dimension, which is used both to enforce a
constant dimension per agent and to skip incomparable rows at search time.
"""

from __future__ import annotations

import asyncio
import json
from contextlib import asynccontextmanager, contextmanager
from contextvars import ContextVar
from datetime import datetime
from pathlib import Path
from typing import Any, AsyncIterator, Iterator

import aiosqlite
import numpy as np
import structlog

from knowledge_engine.interfaces.knowledge_store import (
    IDocumentRepository,
    IFragmentRepository,
    IKnowledgeStore,
)
from knowledge_engine.models.knowledge import (
    Document,
    DocumentStats,
    FragmentSearchFilters,
    KnowledgeFragment,
    ScoredFragment,
)
from knowledge_engine.utils.errors import PersistenceError

logger = structlog.get_logger(logger_name=__name__)

_DEFAULT_DB_PATH = Path("data/knowledge.db")

# Rounding slack so an identical vector still meets threshold 1.0.
_SIMILARITY_EPSILON = 1e-9

_CREATE_TABLES_SQL = [
    """\
CREATE TABLE IF NOT EXISTS documents (
    id                 TEXT    PRIMARY KEY,
    agent_id           TEXT    NOT NULL,
    world_id           TEXT,
    room_id            TEXT,
    entity_id          TEXT,
    original_filename  TEXT    NOT NULL,
    content_type       TEXT    NOT NULL,
    content            TEXT    NOT NULL,
    file_size          INTEGER NOT NULL DEFAULT 0,
    title              TEXT,
    source_url         TEXT,
    metadata           TEXT    NOT NULL DEFAULT '{}',
    created_at         TEXT    NOT NULL,
    updated_at         TEXT    NOT NULL
);
""",
    """\
CREATE TABLE IF NOT EXISTS fragments (
    id             TEXT    PRIMARY KEY,
    document_id    TEXT    NOT NULL
                   REFERENCES documents(id) ON DELETE CASCADE
                   DEFERRABLE INITIALLY DEFERRED,
    agent_id       TEXT    NOT NULL,
    world_id       TEXT,
    room_id        TEXT,
    entity_id      TEXT,
    content        TEXT    NOT NULL,
    embedding      TEXT    NOT NULL,
    embedding_dim  INTEGER NOT NULL,
    position       INTEGER NOT NULL,
    metadata       TEXT    NOT NULL DEFAULT '{}',
    created_at     TEXT    NOT NULL,
    UNIQUE(document_id, position)
);
""",
]

_CREATE_INDICES_SQL = [
    "CREATE INDEX IF NOT EXISTS idx_documents_agent ON documents(agent_id, created_at);",
    "CREATE INDEX IF NOT EXISTS idx_fragments_document ON fragments(document_id, position);",
    "CREATE INDEX IF NOT EXISTS idx_fragments_agent ON fragments(agent_id, embedding_dim);",
]

_DOCUMENT_COLUMNS = (
    "id, agent_id, world_id, room_id, entity_id, original_filename, content_type, "
    "content, file_size, title, source_url, metadata, created_at, updated_at"
)
_FRAGMENT_COLUMNS = (
    "id, document_id, agent_id, world_id, room_id, entity_id, content, embedding, "
    "embedding_dim, position, metadata, created_at"
)

_INSERT_DOCUMENT_SQL = f"INSERT INTO documents ({_DOCUMENT_COLUMNS}) VALUES ({', '.join('?' * 14)})"
_INSERT_FRAGMENT_SQL = f"INSERT INTO fragments ({_FRAGMENT_COLUMNS}) VALUES ({', '.join('?' * 12)})"


def _ts(value: datetime) -> str:
    return value.isoformat(timespec="microseconds")


def _document_params(doc: Document) -> tuple[Any, ...]:
    return (
        doc.id,
        doc.agent_id,
        doc.world_id,
        doc.room_id,
        doc.entity_id,
        doc.original_filename,
        doc.content_type,
        doc.content,
        doc.file_size,
        doc.title,
        doc.source_url,
        json.dumps(doc.metadata, default=str),
        _ts(doc.created_at),
        _ts(doc.updated_at),
    )


def _fragment_params(frag: KnowledgeFragment) -> tuple[Any, ...]:
    return (
        frag.id,
        frag.document_id,
        frag.agent_id,
        frag.world_id,
        frag.room_id,
        frag.entity_id,
        frag.content,
        json.dumps(frag.embedding),
        len(frag.embedding),
        frag.position,
        json.dumps(frag.metadata, default=str),
        _ts(frag.created_at),
    )


def _row_to_document(row: aiosqlite.Row) -> Document:
    data = dict(row)
    data["metadata"] = json.loads(data["metadata"] or "{}")
    return Document(**data)


def _row_to_fragment(row: aiosqlite.Row) -> KnowledgeFragment:
    data = dict(row)
    data.pop("embedding_dim", None)
    data["embedding"] = json.loads(data["embedding"])
    data["metadata"] = json.loads(data["metadata"] or "{}")
    return KnowledgeFragment(**data)


class SQLiteKnowledgeStore(IKnowledgeStore):
    """SQLite persistence for documents and fragments."""

    def __init__(self, db_path: str | Path = _DEFAULT_DB_PATH) -> None:
        self._db_path = Path(db_path) if str(db_path) != ":memory:" else None
        self._db_target = str(db_path)
        self._conn: aiosqlite.Connection | None = None
        self._lock = asyncio.Lock()
        self._in_transaction: ContextVar[bool] = ContextVar(
            f"knowledge_store_tx_{id(self)}", default=False
        )
        self._documents = SQLiteDocumentRepository(self)
        self._fragments = SQLiteFragmentRepository(self)

    # ------------------------------------------------------------------
    # IKnowledgeStore implementation
    # ------------------------------------------------------------------

    @property
    def documents(self) -> SQLiteDocumentRepository:
        return self._documents

    @property
    def fragments(self) -> SQLiteFragmentRepository:
        return self._fragments

    async def initialize(self) -> None:
        """Open the connection and create tables and indices if they don't exist."""
        if self._conn is not None:
            return
        if self._db_path is not None:
            self._db_path.parent.mkdir(parents=True, exist_ok=True)
        try:
            conn = await aiosqlite.connect(self._db_target, isolation_level=None)
            conn.row_factory = aiosqlite.Row
            await conn.execute("PRAGMA foreign_keys = ON;")
            await conn.execute("PRAGMA journal_mode = WAL;")
            for sql in _CREATE_TABLES_SQL:
                await conn.execute(sql)
            for sql in _CREATE_INDICES_SQL:
                await conn.execute(sql)
        except aiosqlite.Error as exc:
            raise PersistenceError(
                message=f"Failed to open knowledge store at {self._db_target}: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc
        self._conn = conn
        logger.info("knowledge_store_initialized", path=self._db_target)

    async def close(self) -> None:
        if self._conn is not None:
            await self._conn.close()
            self._conn = None

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[None]:
        """One unit of work; nested calls from the same task join the outer one."""
        if self._in_transaction.get():
            yield
            return

        conn = self._connection()
        async with self._lock:
            token = self._in_transaction.set(True)
            try:
                with self.translate_errors("begin"):
                    await conn.execute("BEGIN IMMEDIATE;")
                try:
                    yield
                    with self.translate_errors("commit"):
                        await conn.commit()
                except BaseException:
                    await self._rollback(conn)
                    raise
            finally:
                self._in_transaction.reset(token)

    def get_provider_name(self) -> str:
        return "sqlite"

    # ------------------------------------------------------------------
    # Internals shared with the repositories
    # ------------------------------------------------------------------

    @asynccontextmanager
    async def read(self) -> AsyncIterator[aiosqlite.Connection]:
        """Yield the connection for a read, waiting out other tasks' transactions."""
        conn = self._connection()
        if self._in_transaction.get():
            yield conn
            return
        async with self._lock:
            yield conn

    @asynccontextmanager
    async def write(self) -> AsyncIterator[aiosqlite.Connection]:
        """Yield the connection inside a transaction (joined or new)."""
        async with self.transaction():
            yield self._connection()

    @contextmanager
    def translate_errors(self, operation: str) -> Iterator[None]:
        try:
            yield
        except aiosqlite.Error as exc:
            raise PersistenceError(
                message=f"SQLite {operation} failed: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc

    async def _rollback(self, conn: aiosqlite.Connection) -> None:
        try:
            await conn.rollback()
        except aiosqlite.Error as exc:
            # The original exception is re-raised by the caller.
            logger.error("knowledge_store_rollback_failed", error=str(exc))

    def _connection(self) -> aiosqlite.Connection:
        if self._conn is None:
            raise PersistenceError(
                message="Knowledge store is not initialized",
                provider_name=self.get_provider_name(),
            )
        return self._conn


class SQLiteDocumentRepository(IDocumentRepository):
    """Document rows in the ``documents`` table."""

    def __init__(self, store: SQLiteKnowledgeStore) -> None:
        self._store = store

    async def create(self, document: Document) -> Document:
        async with self._store.write() as conn:
            with self._store.translate_errors("document insert"):
                await conn.execute(_INSERT_DOCUMENT_SQL, _document_params(document))
        logger.debug("document_created", document_id=document.id, agent_id=document.agent_id)
        return document

    async def find_by_id(self, document_id: str) -> Document | None:
        async with self._store.read() as conn:
            with self._store.translate_errors("document lookup"):
                cursor = await conn.execute(
                    f"SELECT {_DOCUMENT_COLUMNS} FROM documents WHERE id = ?",
                    (document_id,),
                )
                row = await cursor.fetchone()
        return _row_to_document(row) if row is not None else None

    async def find_by_agent(
        self, agent_id: str, limit: int = 100, offset: int = 0
    ) -> list[Document]:
        async with self._store.read() as conn:
            with self._store.translate_errors("document listing"):
                cursor = await conn.execute(
                    f"SELECT {_DOCUMENT_COLUMNS} FROM documents WHERE agent_id = ? "
                    "ORDER BY created_at DESC, id ASC LIMIT ? OFFSET ?",
                    (agent_id, max(limit, 0), max(offset, 0)),
                )
                rows = await cursor.fetchall()
        return [_row_to_document(r) for r in rows]

    async def exists(self, document_id: str, agent_id: str) -> bool:
        async with self._store.read() as conn:
            with self._store.translate_errors("document existence check"):
                cursor = await conn.execute(
                    "SELECT 1 FROM documents WHERE id = ? AND agent_id = ?",
                    (document_id, agent_id),
                )
                row = await cursor.fetchone()
        return row is not None

    async def delete(self, document_id: str) -> bool:
        async with self._store.write() as conn:
            with self._store.translate_errors("document delete"):
                cursor = await conn.execute("DELETE FROM documents WHERE id = ?", (document_id,))
        return cursor.rowcount > 0

    async def get_stats(self, agent_id: str) -> DocumentStats:
        async with self._store.read() as conn:
            with self._store.translate_errors("document stats"):
                cursor = await conn.execute(
                    "SELECT content_type, COUNT(*) AS n, COALESCE(SUM(file_size), 0) AS size "
                    "FROM documents WHERE agent_id = ? GROUP BY content_type",
                    (agent_id,),
                )
                type_rows = await cursor.fetchall()
                cursor = await conn.execute(
                    "SELECT COUNT(*) FROM fragments WHERE agent_id = ?",
                    (agent_id,),
                )
                fragment_row = await cursor.fetchone()

        content_types = {r["content_type"]: r["n"] for r in type_rows}
        return DocumentStats(
            total_documents=sum(content_types.values()),
            total_fragments=fragment_row[0] if fragment_row else 0,
            storage_size=sum(r["size"] for r in type_rows),
            content_types=content_types,
        )


class SQLiteFragmentRepository(IFragmentRepository):
    """Fragment rows in the ``fragments`` table plus numpy similarity search."""

    def __init__(self, store: SQLiteKnowledgeStore) -> None:
        self._store = store

    async def create(self, fragment: KnowledgeFragment) -> KnowledgeFragment:
        created = await self.create_batch([fragment])
        return created[0]

    async def create_batch(
        self, fragments: list[KnowledgeFragment]
    ) -> list[KnowledgeFragment]:
        if not fragments:
            return []

        dims = {len(f.embedding) for f in fragments if f.embedding}
        if len(dims) > 1:
            raise PersistenceError(
                message=f"Mixed embedding dimensions in one batch: {sorted(dims)}",
                provider_name=self._store.get_provider_name(),
            )

        async with self._store.write() as conn:
            for agent_id in {f.agent_id for f in fragments}:
                if dims:
                    await self._check_dimension(conn, agent_id, next(iter(dims)))
            with self._store.translate_errors("fragment insert"):
                await conn.executemany(
                    _INSERT_FRAGMENT_SQL, [_fragment_params(f) for f in fragments]
                )
        logger.debug("fragments_created", count=len(fragments))
        return list(fragments)

    async def find_by_id(self, fragment_id: str) -> KnowledgeFragment | None:
        async with self._store.read() as conn:
            with self._store.translate_errors("fragment lookup"):
                cursor = await conn.execute(
                    f"SELECT {_FRAGMENT_COLUMNS} FROM fragments WHERE id = ?",
                    (fragment_id,),
                )
                row = await cursor.fetchone()
        return _row_to_fragment(row) if row is not None else None

    async def find_by_document(self, document_id: str) -> list[KnowledgeFragment]:
        async with self._store.read() as conn:
            with self._store.translate_errors("fragment listing"):
                cursor = await conn.execute(
                    f"SELECT {_FRAGMENT_COLUMNS} FROM fragments WHERE document_id = ? "
                    "ORDER BY position ASC",
                    (document_id,),
                )
                rows = await cursor.fetchall()
        return [_row_to_fragment(r) for r in rows]

    async def search_by_embedding(
        self, embedding: list[float], filters: FragmentSearchFilters
    ) -> list[ScoredFragment]:
        if not embedding or filters.limit < 1:
            return []

        clauses = ["f.agent_id = ?", "f.embedding_dim = ?"]
        params: list[Any] = [filters.agent_id, len(embedding)]
        for column in ("room_id", "world_id", "entity_id"):
            value = getattr(filters, column)
            if value is not None:
                clauses.append(f"f.{column} = ?")
                params.append(value)
        if filters.created_after is not None:
            clauses.append("f.created_at >= ?")
            params.append(_ts(filters.created_after))

        join = ""
        if filters.content_types:
            join = "JOIN documents d ON d.id = f.document_id"
            clauses.append(f"d.content_type IN ({', '.join('?' * len(filters.content_types))})")
            params.extend(filters.content_types)

        sql = (
            f"SELECT {', '.join('f.' + c.strip() for c in _FRAGMENT_COLUMNS.split(','))} "
            f"FROM fragments f {join} WHERE {' AND '.join(clauses)}"
        )
        async with self._store.read() as conn:
            with self._store.translate_errors("fragment search"):
                cursor = await conn.execute(sql, params)
                rows = await cursor.fetchall()
        if not rows:
            return []

        fragments = [_row_to_fragment(r) for r in rows]
        similarities = _cosine_similarities(embedding, [f.embedding for f in fragments])

        scored = [
            ScoredFragment(fragment=frag, similarity=min(float(sim), 1.0))
            for frag, sim in zip(fragments, similarities)
            if sim >= filters.threshold - _SIMILARITY_EPSILON
        ]
        scored.sort(key=lambda s: (-s.similarity, s.fragment.created_at, s.fragment.id))
        return scored[: filters.limit]

    async def update_embedding(
        self, fragment_id: str, embedding: list[float]
    ) -> KnowledgeFragment | None:
        async with self._store.write() as conn:
            existing = await self.find_by_id(fragment_id)
            if existing is None:
                return None
            if embedding:
                await self._check_dimension(
                    conn, existing.agent_id, len(embedding), exclude_fragment_id=fragment_id
                )
            with self._store.translate_errors("embedding update"):
                await conn.execute(
                    "UPDATE fragments SET embedding = ?, embedding_dim = ? WHERE id = ?",
                    (json.dumps(embedding), len(embedding), fragment_id),
                )
        return existing.model_copy(update={"embedding": list(embedding)})

    async def delete(self, fragment_id: str) -> bool:
        async with self._store.write() as conn:
            with self._store.translate_errors("fragment delete"):
                cursor = await conn.execute("DELETE FROM fragments WHERE id = ?", (fragment_id,))
        return cursor.rowcount > 0

    async def delete_by_document(self, document_id: str) -> int:
        async with self._store.write() as conn:
            with self._store.translate_errors("fragment delete"):
                cursor = await conn.execute(
                    "DELETE FROM fragments WHERE document_id = ?", (document_id,)
                )
        return max(cursor.rowcount, 0)

    async def count_by_document(self, document_id: str) -> int:
        async with self._store.read() as conn:
            with self._store.translate_errors("fragment count"):
                cursor = await conn.execute(
                    "SELECT COUNT(*) FROM fragments WHERE document_id = ?", (document_id,)
                )
                row = await cursor.fetchone()
        return row[0] if row and row[0] is not None else 0

    async def _check_dimension(
        self,
        conn: aiosqlite.Connection,
        agent_id: str,
        dimension: int,
        exclude_fragment_id: str | None = None,
    ) -> None:
        """Reject embeddings whose dimension differs from the agent's existing ones."""
        with self._store.translate_errors("dimension check"):
            cursor = await conn.execute(
                "SELECT embedding_dim FROM fragments "
                "WHERE agent_id = ? AND embedding_dim > 0 AND id != ? LIMIT 1",
                (agent_id, exclude_fragment_id or ""),
            )
            row = await cursor.fetchone()
        if row is not None and row[0] != dimension:
            raise PersistenceError(
                message=(
                    f"Embedding dimension {dimension} does not match agent {agent_id}'s "
                    f"existing dimension {row[0]}"
                ),
                provider_name=self._store.get_provider_name(),
            )


def _cosine_similarities(query: list[float], vectors: list[list[float]]) -> np.ndarray:
    """Return ``1 - cosine_distance`` between *query* and each row of *vectors*.

    Zero vectors have similarity 0 to everything.
    """
    matrix = np.asarray(vectors, dtype=np.float64)
    q = np.asarray(query, dtype=np.float64)
    norms = np.linalg.norm(matrix, axis=1) * np.linalg.norm(q)
    dots = matrix @ q
    with np.errstate(divide="ignore", invalid="ignore"):
        sims = np.where(norms > 0, dots / norms, 0.0)
    return np.clip(sims, -1.0, 1.0)
