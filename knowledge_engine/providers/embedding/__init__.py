"""Embedding provider adapters."""

from knowledge_engine.providers.embedding.nomic_embedding_provider import NomicEmbeddingProvider
from knowledge_engine.providers.embedding.openai_embedding_provider import OpenAIEmbeddingProvider

__all__ = ["NomicEmbeddingProvider", "OpenAIEmbeddingProvider"]
