"""Ingestion helpers: chunking and contextual enrichment."""

from knowledge_engine.services.ingestion.chunker import TextChunker
from knowledge_engine.services.ingestion.contextual_enricher import ContextualEnricher, EnrichedChunk

__all__ = ["ContextualEnricher", "EnrichedChunk", "TextChunker"]
