"""Unit tests for EmbeddingClient: batching, retries and response validation."""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from knowledge_engine.services.embedding_client import EmbeddingClient
from knowledge_engine.utils.errors import (
    EmbeddingFailedError,
    KnowledgeEngineError,
    ProviderUnavailableError,
    RateLimitError,
)


@pytest.fixture
def make_client(limiter, no_wait_retry):
    def _make(provider, batch_size: int = 64) -> EmbeddingClient:
        return EmbeddingClient(
            provider=provider, limiter=limiter, retry_policy=no_wait_retry, batch_size=batch_size
        )

    return _make


class TestEmbed:
    @pytest.mark.asyncio
    async def test_empty_input_makes_no_call(self, embedding_provider, make_client) -> None:
        client = make_client(embedding_provider)

        assert await client.embed([]) == []
        assert embedding_provider.calls == []

    @pytest.mark.asyncio
    async def test_batches_and_preserves_order(self, embedding_provider, make_client) -> None:
        client = make_client(embedding_provider, batch_size=2)
        texts = [f"text number {i}" for i in range(5)]

        vectors = await client.embed(texts)

        assert sorted(len(call) for call in embedding_provider.calls) == [1, 2, 2]
        expected = await embedding_provider.embed(texts)
        assert vectors == expected

    @pytest.mark.asyncio
    async def test_embed_query(self, embedding_provider, make_client) -> None:
        client = make_client(embedding_provider)

        vector = await client.embed_query("where is the office")

        assert len(vector) == embedding_provider.get_dimension()
        assert embedding_provider.calls == [["where is the office"]]

    def test_exposes_provider_details(self, embedding_provider, make_client) -> None:
        client = make_client(embedding_provider)
        assert client.provider_name == "fake_embedding"
        assert client.dimension == 32

    def test_rejects_zero_batch_size(self, embedding_provider, limiter) -> None:
        with pytest.raises(ValueError, match="batch_size"):
            EmbeddingClient(provider=embedding_provider, limiter=limiter, batch_size=0)


class TestRetries:
    @pytest.mark.asyncio
    async def test_retries_transient_failures(self, embedding_provider_factory, make_client) -> None:
        provider = embedding_provider_factory(
            failures=[RateLimitError(), ProviderUnavailableError()]
        )
        client = make_client(provider)

        vectors = await client.embed(["hello"])

        assert len(vectors) == 1
        assert len(provider.calls) == 3

    @pytest.mark.asyncio
    async def test_exhausted_retries_raise_embedding_failed(
        self, embedding_provider_factory, make_client
    ) -> None:
        provider = embedding_provider_factory(failures=[RateLimitError("slow")] * 3)
        client = make_client(provider)

        with pytest.raises(EmbeddingFailedError) as exc_info:
            await client.embed(["hello"])

        assert "3 attempts" in exc_info.value.message
        assert exc_info.value.provider_name == "fake_embedding"
        assert isinstance(exc_info.value.__cause__, RateLimitError)

    @pytest.mark.asyncio
    async def test_permanent_error_wrapped_without_retry(
        self, embedding_provider_factory, make_client
    ) -> None:
        provider = embedding_provider_factory(failures=[KnowledgeEngineError("invalid key")])
        client = make_client(provider)

        with pytest.raises(EmbeddingFailedError, match="invalid key"):
            await client.embed(["hello"])

        assert len(provider.calls) == 1


class TestValidation:
    @pytest.mark.asyncio
    async def test_wrong_vector_count(self, embedding_provider, make_client) -> None:
        embedding_provider.embed = AsyncMock(return_value=[[0.0] * 32])
        client = make_client(embedding_provider)

        with pytest.raises(EmbeddingFailedError, match="returned 1 vectors for 2 texts"):
            await client.embed(["a", "b"])

    @pytest.mark.asyncio
    async def test_wrong_dimension(self, embedding_provider, make_client) -> None:
        embedding_provider.embed = AsyncMock(return_value=[[0.0] * 8])
        client = make_client(embedding_provider)

        with pytest.raises(EmbeddingFailedError, match="expected dimension 32, got 8"):
            await client.embed(["a"])
