"""Knowledge engine composition root.

Wires together providers, rate limiters, the store and the engine.  Loads
configuration from ``.env`` and ``config/config.yaml``; nothing below this
module reads the environment.

Provider selection mirrors the configured keys:

- Embeddings: OpenAI / OpenAI-compatible (if ``OPENAI_API_KEY`` is set) ->
  Nomic via Ollama.
- Text generation (contextual mode only): Anthropic -> OpenAI -> Ollama.

``EMBEDDING_PROVIDER`` / ``TEXT_PROVIDER`` force a specific choice.

One :class:`ProviderRateLimiter` is built per upstream service and shared
by every component that talks to it, so an OpenAI key used for both
embeddings and contextual enrichment draws from a single budget.
"""

from __future__ import annotations

from typing import Any

import structlog

from knowledge_engine.config.loader import (
    get_embedding_dimension,
    get_rate_limits,
    get_retry_policy,
    load_config,
)
from knowledge_engine.config.settings import Settings
from knowledge_engine.interfaces.embedding_provider import IEmbeddingProvider
from knowledge_engine.interfaces.llm_provider import ILLMProvider
from knowledge_engine.models.knowledge import LoadResult
from knowledge_engine.models.providers import ProviderRateLimits
from knowledge_engine.providers.embedding.nomic_embedding_provider import NomicEmbeddingProvider
from knowledge_engine.providers.embedding.openai_embedding_provider import OpenAIEmbeddingProvider
from knowledge_engine.providers.fetch.httpx_url_fetcher import HttpxUrlFetcher
from knowledge_engine.providers.llm.anthropic_provider import AnthropicLLMProvider
from knowledge_engine.providers.llm.ollama_provider import OllamaLLMProvider
from knowledge_engine.providers.llm.openai_provider import OpenAILLMProvider
from knowledge_engine.providers.storage.sqlite_knowledge_store import SQLiteKnowledgeStore
from knowledge_engine.services.docs_loader import load_docs_from_path
from knowledge_engine.services.embedding_client import EmbeddingClient
from knowledge_engine.services.extraction.registry import ExtractorRegistry
from knowledge_engine.services.ingestion.chunker import TextChunker
from knowledge_engine.services.ingestion.contextual_enricher import ContextualEnricher
from knowledge_engine.services.knowledge_engine import KnowledgeEngine
from knowledge_engine.utils.errors import ConfigurationError
from knowledge_engine.utils.rate_limiter import ProviderRateLimiter

logger = structlog.get_logger(logger_name=__name__)

# Provider name -> rate-limit bucket.  Providers served by the same upstream
# account share a bucket.
_RATE_LIMIT_BUCKETS: dict[str, str] = {
    "openai_embedding": "openai",
    "openai-compatible_embedding": "openai",
    "openai": "openai",
    "openai-compatible": "openai",
    "anthropic": "anthropic",
    "nomic_embedding": "ollama",
    "ollama": "ollama",
}


# ---------------------------------------------------------------------------
# Provider selection
# ---------------------------------------------------------------------------


def _build_embedding_provider(app_settings: Settings) -> IEmbeddingProvider:
    """Select the embedding provider.

    Priority: forced ``EMBEDDING_PROVIDER`` -> OpenAI (if API key set) ->
    Nomic/Ollama.
    """
    forced = app_settings.embedding_provider.lower()
    if forced == "openai" or (not forced and app_settings.openai_api_key):
        provider: IEmbeddingProvider = OpenAIEmbeddingProvider(settings=app_settings)
        if provider.is_available():
            return provider
        if forced:
            raise ConfigurationError("EMBEDDING_PROVIDER=openai requires OPENAI_API_KEY")
    elif forced and forced != "ollama":
        raise ConfigurationError(f"Unknown embedding provider: {forced!r}")

    provider = NomicEmbeddingProvider(settings=app_settings)
    if not provider.is_available():
        raise ConfigurationError(
            "No embedding provider available. Set OPENAI_API_KEY or OLLAMA_BASE_URL."
        )
    return provider


def _build_llm_provider(app_settings: Settings) -> ILLMProvider:
    """Select the text-generation provider for contextual enrichment.

    Priority: forced ``TEXT_PROVIDER`` -> Anthropic -> OpenAI -> Ollama.
    """
    forced = app_settings.text_provider.lower()
    if forced:
        builders = {
            "anthropic": AnthropicLLMProvider,
            "openai": OpenAILLMProvider,
            "ollama": OllamaLLMProvider,
        }
        if forced not in builders:
            raise ConfigurationError(f"Unknown text provider: {forced!r}")
        provider = builders[forced](settings=app_settings)
        if not provider.is_available():
            raise ConfigurationError(f"TEXT_PROVIDER={forced} is not configured")
        return provider

    if app_settings.anthropic_api_key:
        return AnthropicLLMProvider(settings=app_settings)
    if app_settings.openai_api_key:
        return OpenAILLMProvider(settings=app_settings)
    return OllamaLLMProvider(settings=app_settings)


def _limiter_for(
    provider_name: str,
    limits: dict[str, ProviderRateLimits],
    limiters: dict[str, ProviderRateLimiter],
) -> ProviderRateLimiter:
    """Return the shared limiter for *provider_name*'s bucket, creating it once."""
    bucket = _RATE_LIMIT_BUCKETS.get(provider_name, provider_name)
    if bucket not in limiters:
        bucket_limits = limits.get(bucket) or ProviderRateLimits(provider=bucket)
        limiters[bucket] = ProviderRateLimiter(bucket_limits)
    return limiters[bucket]


# ---------------------------------------------------------------------------
# Assembly
# ---------------------------------------------------------------------------


def build_engine(
    app_settings: Settings | None = None,
    app_config: dict[str, Any] | None = None,
) -> KnowledgeEngine:
    """Construct a :class:`KnowledgeEngine` with every dependency injected.

    The returned engine is not yet initialized; call
    :meth:`KnowledgeEngine.initialize` (or use :func:`create_engine`).

    Parameters
    ----------
    app_settings:
        Environment-based settings.  Read from the environment if omitted.
    app_config:
        Resolved YAML configuration.  Loaded with :func:`load_config` if
        omitted.

    Raises
    ------
    ConfigurationError
        If no embedding provider can be built or the config is invalid.
    """
    s = app_settings or Settings()
    config = app_config if app_config is not None else load_config(settings=s)

    rate_limits = get_rate_limits(config)
    retry_policy = get_retry_policy(config)
    # EMBEDDING_DIMENSION wins over the YAML value, also for a caller-supplied config.
    dimension = s.embedding_dimension or get_embedding_dimension(config)
    if dimension != s.embedding_dimension:
        s = s.model_copy(update={"embedding_dimension": dimension})
    limiters: dict[str, ProviderRateLimiter] = {}

    embedding_provider = _build_embedding_provider(s)
    embedding_client = EmbeddingClient(
        provider=embedding_provider,
        limiter=_limiter_for(embedding_provider.get_provider_name(), rate_limits, limiters),
        retry_policy=retry_policy,
        batch_size=s.embedding_batch_size,
    )

    enricher: ContextualEnricher | None = None
    text_provider_name: str | None = None
    if s.ctx_knowledge_enabled:
        llm = _build_llm_provider(s)
        text_provider_name = llm.get_provider_name()
        enricher = ContextualEnricher(
            llm=llm,
            limiter=_limiter_for(llm.get_provider_name(), rate_limits, limiters),
            retry_policy=retry_policy,
        )

    engine = KnowledgeEngine(
        store=SQLiteKnowledgeStore(db_path=s.database_path),
        embedding_client=embedding_client,
        extractors=ExtractorRegistry.with_defaults(),
        chunker=TextChunker(
            chunk_size=s.chunk_token_budget,
            overlap_ratio=s.chunk_overlap_ratio,
        ),
        enricher=enricher,
        url_fetcher=HttpxUrlFetcher(),
        duplicate_policy=s.duplicate_ingestion_policy,
    )
    logger.info(
        "knowledge_engine_built",
        embedding_provider=embedding_client.provider_name,
        text_provider=text_provider_name,
        rate_limit_buckets=sorted(limiters),
        database_path=s.database_path,
    )
    return engine


async def create_engine(
    app_settings: Settings | None = None,
    app_config: dict[str, Any] | None = None,
    agent_id: str | None = None,
) -> KnowledgeEngine:
    """Build and initialize an engine, loading the docs folder if configured.

    When ``LOAD_DOCS_ON_STARTUP`` is true and *agent_id* is given, every
    supported file under ``KNOWLEDGE_PATH`` is ingested before returning.
    """
    s = app_settings or Settings()
    engine = build_engine(s, app_config)
    await engine.initialize()
    if s.load_docs_on_startup and agent_id:
        result: LoadResult = await load_docs_from_path(engine, agent_id, s.knowledge_path)
        logger.info(
            "startup_docs_loaded",
            successful=result.successful,
            failed=result.failed,
        )
    return engine
