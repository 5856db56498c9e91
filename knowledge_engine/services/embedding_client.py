"""Rate-limited, retrying front end for the configured embedding provider.

:class:`EmbeddingClient` is the only path from the engine to an
:class:`IEmbeddingProvider`.  It

- splits inputs into batches of ``batch_size`` texts,
- runs at most ``max_concurrent_requests`` batches at once,
- reserves each call against the provider's shared
  :class:`~knowledge_engine.utils.rate_limiter.ProviderRateLimiter`
  (requests and estimated tokens per minute),
- retries rate-limit responses and timeouts with bounded exponential
  backoff, and
- converts anything that still fails into :class:`EmbeddingFailedError`.

Query-time embeddings (:meth:`EmbeddingClient.embed_query`) go through the
same limiter as ingestion batches, so both draw from one budget.
"""

from __future__ import annotations

import asyncio

import structlog

from knowledge_engine.interfaces.embedding_provider import IEmbeddingProvider
from knowledge_engine.utils.concurrency import throttled_gather
from knowledge_engine.utils.errors import EmbeddingFailedError, KnowledgeEngineError
from knowledge_engine.utils.rate_limiter import (
    ProviderRateLimiter,
    estimate_tokens,
    limited_call,
)
from knowledge_engine.utils.retry import RETRYABLE_EXCEPTIONS, RetryPolicy, retry_async

logger = structlog.get_logger(logger_name=__name__)

_DEFAULT_BATCH_SIZE = 64


class EmbeddingClient:
    """Batches, rate-limits and retries calls to an embedding provider.

    Parameters
    ----------
    provider:
        The embedding backend.
    limiter:
        The process-wide limiter for *provider*'s service.
    retry_policy:
        Backoff parameters for transient failures.
    batch_size:
        Maximum texts per provider call.
    """

    def __init__(
        self,
        provider: IEmbeddingProvider,
        limiter: ProviderRateLimiter,
        retry_policy: RetryPolicy | None = None,
        batch_size: int = _DEFAULT_BATCH_SIZE,
    ) -> None:
        if batch_size < 1:
            raise ValueError(f"batch_size must be >= 1, got {batch_size}")
        self._provider = provider
        self._limiter = limiter
        self._retry_policy = retry_policy or RetryPolicy()
        self._batch_size = batch_size
        # Separate semaphore for batch fan-out; the limiter's own semaphore
        # bounds the provider calls themselves.
        self._fanout = asyncio.Semaphore(limiter.limits.max_concurrent_requests)

    @property
    def dimension(self) -> int:
        return self._provider.get_dimension()

    @property
    def provider_name(self) -> str:
        return self._provider.get_provider_name()

    async def embed(self, texts: list[str]) -> list[list[float]]:
        """Embed *texts*, returning vectors in the same order.

        An empty input returns ``[]`` without calling the provider.

        Raises
        ------
        EmbeddingFailedError
            If any batch still fails after retries, or the provider
            returns a malformed response.  Remaining batches are cancelled.
        """
        if not texts:
            return []

        batches = [texts[i : i + self._batch_size] for i in range(0, len(texts), self._batch_size)]
        results = await throttled_gather(
            [self._embed_batch(batch, index) for index, batch in enumerate(batches)],
            self._fanout,
        )

        vectors: list[list[float]] = []
        for batch_vectors in results:
            vectors.extend(batch_vectors)  # type: ignore[arg-type]
        logger.info(
            "embeddings_generated",
            provider=self.provider_name,
            texts=len(texts),
            batches=len(batches),
        )
        return vectors

    async def embed_query(self, text: str) -> list[float]:
        """Embed a single search query through the shared limiter."""
        vectors = await self._embed_batch([text], batch_index=0)
        return vectors[0]

    async def _embed_batch(self, batch: list[str], batch_index: int) -> list[list[float]]:
        tokens = estimate_tokens(batch)

        async def _call() -> list[list[float]]:
            async with limited_call(self._limiter, tokens):
                return await self._provider.embed(batch)

        try:
            vectors = await retry_async(
                _call,
                self._retry_policy,
                operation_name=f"embed:{self.provider_name}",
            )
        except RETRYABLE_EXCEPTIONS as exc:
            raise EmbeddingFailedError(
                message=(
                    f"Embedding batch {batch_index} failed after "
                    f"{self._retry_policy.max_attempts} attempts: {exc}"
                ),
                provider_name=self.provider_name,
            ) from exc
        except KnowledgeEngineError as exc:
            if isinstance(exc, EmbeddingFailedError):
                raise
            raise EmbeddingFailedError(
                message=f"Embedding batch {batch_index} failed: {exc.message}",
                provider_name=self.provider_name,
            ) from exc

        self._validate(batch, vectors, batch_index)
        return vectors

    def _validate(self, batch: list[str], vectors: list[list[float]], batch_index: int) -> None:
        if len(vectors) != len(batch):
            raise EmbeddingFailedError(
                message=(
                    f"Embedding batch {batch_index}: provider returned {len(vectors)} "
                    f"vectors for {len(batch)} texts"
                ),
                provider_name=self.provider_name,
            )
        expected = self.dimension
        for vector in vectors:
            if len(vector) != expected:
                raise EmbeddingFailedError(
                    message=(
                        f"Embedding batch {batch_index}: expected dimension {expected}, "
                        f"got {len(vector)}"
                    ),
                    provider_name=self.provider_name,
                )
