"""Persistence adapters."""

from knowledge_engine.providers.storage.sqlite_knowledge_store import SQLiteKnowledgeStore

__all__ = ["SQLiteKnowledgeStore"]
