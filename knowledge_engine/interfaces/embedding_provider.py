"""Abstract base class for text-embedding service providers.

Defines the contract for generating embedding vectors from text.
Implementations may wrap OpenAI ``text-embedding-3-small``, Nomic
``nomic-embed-text`` (local via Ollama), or any other embedding backend.
Providers are plain adapters: rate limiting and retries live in
:class:`~knowledge_engine.services.embedding_client.EmbeddingClient`, which
wraps whichever provider is configured.
"""

from __future__ import annotations

from abc import ABC, abstractmethod


# Concrete implementations:
#   OpenAIEmbeddingProvider - text-embedding-3-small (requires API key)
#   NomicEmbeddingProvider  - nomic-embed-text via Ollama (local)
# Located in: knowledge_engine/providers/embedding/
class IEmbeddingProvider(ABC):
    """Contract for text-embedding services used by the knowledge engine."""

    @abstractmethod
    async def embed(self, texts: list[str]) -> list[list[float]]:
        """Generate embedding vectors for a batch of texts.

        Parameters
        ----------
        texts:
            One or more text strings to embed.

        Returns
        -------
        list[list[float]]
            Embedding vectors corresponding positionally to *texts*.  Each
            inner list has length equal to :meth:`get_dimension`.

        Raises
        ------
        knowledge_engine.utils.errors.RateLimitError
            If the provider rejected the call with a rate-limit response.
        knowledge_engine.utils.errors.ProviderUnavailableError
            If the provider timed out or could not be reached.
        knowledge_engine.utils.errors.KnowledgeEngineError
            For any other (non-retryable) API failure.
        """

    @abstractmethod
    async def embed_single(self, text: str) -> list[float]:
        """Generate an embedding vector for a single text string.

        Convenience wrapper around :meth:`embed` for the query-time case.
        """

    @abstractmethod
    def get_dimension(self) -> int:
        """Return the dimensionality of the embedding vectors.

        This value must remain constant for the lifetime of the provider
        instance.  Example values: ``1536`` (OpenAI
        ``text-embedding-3-small``), ``768`` (Nomic ``nomic-embed-text``).
        """

    @abstractmethod
    def get_provider_name(self) -> str:
        """Return a human-readable identifier for this embedding provider."""

    @abstractmethod
    def is_available(self) -> bool:
        """Return ``True`` if the provider is configured.

        Implementations should verify that credentials (if any) are present
        without generating an actual embedding.
        """
