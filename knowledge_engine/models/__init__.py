"""Pydantic data models for the knowledge engine."""

from knowledge_engine.models.knowledge import (
    AddKnowledgeOptions,
    AddKnowledgeResult,
    Document,
    DocumentStats,
    FragmentSearchFilters,
    FragmentSearchResult,
    KnowledgeAnalytics,
    KnowledgeFragment,
    KnowledgeScope,
    LoadError,
    LoadResult,
    QueryStats,
    ScoredFragment,
    SearchOptions,
    TextChunk,
)
from knowledge_engine.models.providers import ProviderRateLimits
from knowledge_engine.models.sources import InlineDataSource, KnowledgeSource, UrlSource

__all__ = [
    "AddKnowledgeOptions",
    "AddKnowledgeResult",
    "Document",
    "DocumentStats",
    "FragmentSearchFilters",
    "FragmentSearchResult",
    "InlineDataSource",
    "KnowledgeAnalytics",
    "KnowledgeFragment",
    "KnowledgeScope",
    "KnowledgeSource",
    "LoadError",
    "LoadResult",
    "ProviderRateLimits",
    "QueryStats",
    "ScoredFragment",
    "SearchOptions",
    "TextChunk",
    "UrlSource",
]
