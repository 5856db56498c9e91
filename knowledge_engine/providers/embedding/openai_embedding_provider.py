"""Embedding adapters for APIs that speak the OpenAI embeddings protocol.

:class:`OpenAICompatibleEmbedder` holds the request loop shared by every
such backend: oversized inputs are split at the backend's per-call limit,
responses are re-ordered by ``index``, and SDK exceptions are mapped onto
the engine's hierarchy so :class:`EmbeddingClient` can tell retryable
failures (rate limits, timeouts, 5xx) from permanent ones (bad key,
invalid input).  The SDK's own retries are disabled; EmbeddingClient owns
retry and rate-limit policy.

:class:`OpenAIEmbeddingProvider` targets OpenAI itself or a compatible host
(TogetherAI, Fireworks) set through ``openai_base_url``.
"""

from __future__ import annotations

import openai
import structlog

from knowledge_engine.config.settings import Settings
from knowledge_engine.interfaces.embedding_provider import IEmbeddingProvider
from knowledge_engine.utils.errors import (
    ConfigurationError,
    KnowledgeEngineError,
    ProviderUnavailableError,
    RateLimitError,
)

logger = structlog.get_logger(logger_name=__name__)

_DEFAULT_MODEL = "text-embedding-3-small"
_DEFAULT_DIMENSION = 1536

# Models that accept a ``dimensions`` request parameter.
_SHORTENABLE_PREFIX = "text-embedding-3-"

# Output width of models we know; other models need EMBEDDING_DIMENSION
# unless they are 1536-wide.
_MODEL_DIMENSIONS: dict[str, int] = {
    "text-embedding-3-small": 1536,
    "text-embedding-3-large": 3072,
    "text-embedding-ada-002": 1536,
    "BAAI/bge-base-en-v1.5": 768,
    "BAAI/bge-large-en-v1.5": 1024,
}


def translate_openai_error(exc: openai.APIError, provider_name: str) -> KnowledgeEngineError:
    """Map an ``openai`` SDK exception onto the engine's error hierarchy."""
    if isinstance(exc, openai.RateLimitError):
        return RateLimitError(message=f"Rate limited: {exc}", provider_name=provider_name)
    # APITimeoutError subclasses APIConnectionError.
    if isinstance(exc, (openai.APIConnectionError, openai.InternalServerError)):
        return ProviderUnavailableError(
            message=f"Provider unavailable: {exc}", provider_name=provider_name
        )
    return KnowledgeEngineError(message=f"API error: {exc}", provider_name=provider_name)


class OpenAICompatibleEmbedder(IEmbeddingProvider):
    """Shared request loop for OpenAI-protocol embedding backends.

    Subclasses supply the client, model, vector width, provider name and
    the largest batch one request may carry.  ``client`` is ``None`` when
    the backend has no credentials; :meth:`embed` then raises
    :class:`ConfigurationError`.  ``request_dimensions`` is sent as the
    ``dimensions`` parameter for models that can shorten their output.
    """

    def __init__(
        self,
        client: openai.AsyncOpenAI | None,
        model: str,
        dimension: int,
        provider_name: str,
        max_inputs_per_request: int,
        request_dimensions: int | None = None,
    ) -> None:
        self._client = client
        self._model = model
        self._dimension = dimension
        self._provider_name = provider_name
        self._max_inputs = max_inputs_per_request
        self._request_kwargs: dict = {"model": model}
        if request_dimensions:
            self._request_kwargs["dimensions"] = request_dimensions

    async def embed(self, texts: list[str]) -> list[list[float]]:
        if not texts:
            return []
        if self._client is None:
            raise ConfigurationError(
                message="No API key configured for embeddings", provider_name=self._provider_name
            )

        vectors: list[list[float]] = []
        for start in range(0, len(texts), self._max_inputs):
            batch = texts[start : start + self._max_inputs]
            try:
                response = await self._client.embeddings.create(
                    input=batch, **self._request_kwargs
                )
            except openai.APIError as exc:
                raise translate_openai_error(exc, self._provider_name) from exc
            vectors.extend(item.embedding for item in sorted(response.data, key=lambda d: d.index))
            logger.debug(
                "embedding_request_complete",
                provider=self._provider_name,
                model=self._model,
                inputs=len(batch),
                tokens=response.usage.total_tokens if response.usage else None,
            )
        return vectors

    async def embed_single(self, text: str) -> list[float]:
        (vector,) = await self.embed([text])
        return vector

    def get_dimension(self) -> int:
        return self._dimension

    def get_provider_name(self) -> str:
        return self._provider_name


class OpenAIEmbeddingProvider(OpenAICompatibleEmbedder):
    """OpenAI (or compatible host) embeddings; ``text-embedding-3-small`` by default.

    The vector width comes from ``EMBEDDING_DIMENSION`` when set, otherwise
    from the table of known models.  For the ``text-embedding-3`` family a
    configured width is also requested from the API, which truncates the
    vectors server-side.
    """

    def __init__(self, settings: Settings) -> None:
        self._api_key = settings.openai_api_key
        model = settings.openai_embedding_model or _DEFAULT_MODEL
        configured = settings.embedding_dimension or None

        client = None
        if self._api_key:
            client_kwargs: dict = {
                "api_key": self._api_key,
                "timeout": openai.Timeout(30.0, connect=5.0),
                "max_retries": 0,
            }
            if settings.openai_base_url:
                client_kwargs["base_url"] = settings.openai_base_url
            client = openai.AsyncOpenAI(**client_kwargs)

        super().__init__(
            client=client,
            model=model,
            dimension=configured or _MODEL_DIMENSIONS.get(model, _DEFAULT_DIMENSION),
            provider_name=(
                "openai-compatible_embedding" if settings.openai_base_url else "openai_embedding"
            ),
            max_inputs_per_request=2048,
            request_dimensions=configured if model.startswith(_SHORTENABLE_PREFIX) else None,
        )

    def is_available(self) -> bool:
        """Return ``True`` if an API key is configured."""
        return bool(self._api_key)
