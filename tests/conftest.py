"""Shared pytest fixtures for the knowledge engine test suite."""

from __future__ import annotations

import math
import re
import zlib
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, AsyncIterator

import pytest

from knowledge_engine.interfaces.embedding_provider import IEmbeddingProvider
from knowledge_engine.interfaces.llm_provider import ILLMProvider
from knowledge_engine.interfaces.url_fetcher import FetchedContent, IUrlFetcher
from knowledge_engine.models.knowledge import Document, KnowledgeFragment
from knowledge_engine.models.providers import ProviderRateLimits
from knowledge_engine.providers.storage.sqlite_knowledge_store import SQLiteKnowledgeStore
from knowledge_engine.services.embedding_client import EmbeddingClient
from knowledge_engine.services.extraction.registry import ExtractorRegistry
from knowledge_engine.services.ingestion.chunker import TextChunker
from knowledge_engine.services.ingestion.contextual_enricher import ContextualEnricher
from knowledge_engine.services.knowledge_engine import KnowledgeEngine
from knowledge_engine.utils.rate_limiter import ProviderRateLimiter
from knowledge_engine.utils.retry import RetryPolicy

_WORD_RE = re.compile(r"\w+")

EMBEDDING_DIM = 32


# ---------------------------------------------------------------------------
# Test doubles
# ---------------------------------------------------------------------------


def bag_of_words_vector(text: str, dimension: int = EMBEDDING_DIM) -> list[float]:
    """Deterministic unit vector: hashed word counts plus a constant bias slot."""
    vector = [0.0] * dimension
    vector[0] = 1.0
    for word in _WORD_RE.findall(text.lower()):
        vector[1 + zlib.crc32(word.encode("utf-8")) % (dimension - 1)] += 1.0
    norm = math.sqrt(sum(v * v for v in vector))
    return [v / norm for v in vector]


class FakeEmbeddingProvider(IEmbeddingProvider):
    """In-memory embedding provider that records calls and can fail on demand.

    ``failures`` is a list of exceptions raised, in order, by the first
    ``len(failures)`` calls to :meth:`embed`.
    """

    def __init__(self, dimension: int = EMBEDDING_DIM, failures: list[Exception] | None = None) -> None:
        self.dimension = dimension
        self.failures = list(failures or [])
        self.calls: list[list[str]] = []

    async def embed(self, texts: list[str]) -> list[list[float]]:
        self.calls.append(list(texts))
        if self.failures:
            raise self.failures.pop(0)
        return [bag_of_words_vector(t, self.dimension) for t in texts]

    async def embed_single(self, text: str) -> list[float]:
        return (await self.embed([text]))[0]

    def get_dimension(self) -> int:
        return self.dimension

    def get_provider_name(self) -> str:
        return "fake_embedding"

    def is_available(self) -> bool:
        return True


class FakeLLMProvider(ILLMProvider):
    """Returns a fixed context string and records prompts."""

    def __init__(self, reply: str = "This excerpt is from the test handbook.") -> None:
        self.reply = reply
        self.calls: list[dict[str, Any]] = []

    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        temperature: float = 0.3,
        max_tokens: int = 4096,
        cache_document: str | None = None,
    ) -> str:
        self.calls.append(
            {
                "system_prompt": system_prompt,
                "user_prompt": user_prompt,
                "cache_document": cache_document,
            }
        )
        return self.reply

    def get_provider_name(self) -> str:
        return "fake_llm"

    def is_available(self) -> bool:
        return True


class FakeUrlFetcher(IUrlFetcher):
    """Serves canned responses keyed by the exact requested URL."""

    def __init__(self, responses: dict[str, FetchedContent] | None = None) -> None:
        self.responses = dict(responses or {})
        self.requested: list[str] = []
        self.closed = False

    async def fetch(self, url: str) -> FetchedContent:
        self.requested.append(url)
        return self.responses[url]

    async def close(self) -> None:
        self.closed = True

    def get_provider_name(self) -> str:
        return "fake_fetch"


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def project_root() -> Path:
    """Return the project root directory."""
    return Path(__file__).parent.parent


@pytest.fixture
def no_wait_retry() -> RetryPolicy:
    """Three attempts without real backoff delays."""
    return RetryPolicy(max_attempts=3, base_delay=0.0)


@pytest.fixture
def rate_limits() -> ProviderRateLimits:
    return ProviderRateLimits(provider="fake", max_concurrent_requests=4, requests_per_minute=10_000)


@pytest.fixture
def limiter(rate_limits: ProviderRateLimits) -> ProviderRateLimiter:
    return ProviderRateLimiter(rate_limits)


@pytest.fixture
def embedding_provider() -> FakeEmbeddingProvider:
    return FakeEmbeddingProvider()


@pytest.fixture
def embedding_client(
    embedding_provider: FakeEmbeddingProvider,
    limiter: ProviderRateLimiter,
    no_wait_retry: RetryPolicy,
) -> EmbeddingClient:
    return EmbeddingClient(provider=embedding_provider, limiter=limiter, retry_policy=no_wait_retry)


@pytest.fixture
def url_fetcher() -> FakeUrlFetcher:
    return FakeUrlFetcher()


@pytest.fixture
async def store(tmp_path: Path) -> AsyncIterator[SQLiteKnowledgeStore]:
    """Initialized SQLite store in a temp directory."""
    knowledge_store = SQLiteKnowledgeStore(db_path=tmp_path / "knowledge.db")
    await knowledge_store.initialize()
    yield knowledge_store
    await knowledge_store.close()


@pytest.fixture
def make_engine(
    store: SQLiteKnowledgeStore,
    embedding_client: EmbeddingClient,
    url_fetcher: FakeUrlFetcher,
):
    """Factory for engines sharing the test store, embedding client and fetcher."""

    def _make(
        chunk_size: int = 4000,
        overlap_ratio: float = 0.15,
        enricher: ContextualEnricher | None = None,
        duplicate_policy: str = "wait",
        client: EmbeddingClient | None = None,
    ) -> KnowledgeEngine:
        return KnowledgeEngine(
            store=store,
            embedding_client=client or embedding_client,
            extractors=ExtractorRegistry.with_defaults(),
            chunker=TextChunker(chunk_size=chunk_size, overlap_ratio=overlap_ratio),
            enricher=enricher,
            url_fetcher=url_fetcher,
            duplicate_policy=duplicate_policy,
        )

    return _make


@pytest.fixture
def engine(make_engine) -> KnowledgeEngine:
    return make_engine()


@pytest.fixture
def sample_markdown() -> str:
    """Three-paragraph markdown document."""
    return (
        "# Employee Handbook\n\n"
        "Our office opens at nine in the morning. Staff should badge in at the "
        "front desk and collect visitor passes for guests.\n\n"
        "Refunds for travel are processed within ten business days. Submit "
        "receipts through the expenses portal before the end of the month.\n\n"
        "Security incidents must be reported to the on-call engineer "
        "immediately. Do not share credentials over chat."
    )


@pytest.fixture
def now() -> datetime:
    return datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def make_document(document_id: str = "doc-1", agent_id: str = "agent-1", **overrides: Any) -> Document:
    """Build a Document with sensible test defaults."""
    created = overrides.pop("created_at", datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc))
    data: dict[str, Any] = {
        "id": document_id,
        "agent_id": agent_id,
        "original_filename": "handbook.md",
        "content_type": "text/markdown",
        "content": "hello world",
        "file_size": 11,
        "title": "Handbook",
        "created_at": created,
        "updated_at": created,
    }
    data.update(overrides)
    return Document(**data)


def make_fragment(
    fragment_id: str,
    document_id: str = "doc-1",
    position: int = 0,
    agent_id: str = "agent-1",
    embedding: list[float] | None = None,
    **overrides: Any,
) -> KnowledgeFragment:
    """Build a KnowledgeFragment with sensible test defaults."""
    data: dict[str, Any] = {
        "id": fragment_id,
        "document_id": document_id,
        "agent_id": agent_id,
        "content": f"fragment {position}",
        "embedding": embedding if embedding is not None else [1.0, 0.0, 0.0],
        "position": position,
        "created_at": datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc),
    }
    data.update(overrides)
    return KnowledgeFragment(**data)


@pytest.fixture
def document_factory():
    return make_document


@pytest.fixture
def fragment_factory():
    return make_fragment


@pytest.fixture
def embedding_provider_factory():
    """The fake provider class, for tests that need failures or a different dimension."""
    return FakeEmbeddingProvider


@pytest.fixture
def fake_llm() -> FakeLLMProvider:
    return FakeLLMProvider()


@pytest.fixture
def fetched_content_factory():
    return FetchedContent
