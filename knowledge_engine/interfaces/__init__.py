"""Public interface definitions for the engine's external collaborators.

The engine never talks to an SDK directly: every model provider, URL
fetcher, content extractor and persistence backend is reached through one
of the abstract base classes below.  Concrete adapters live in
``knowledge_engine/providers/`` (and ``services/extraction/`` for the
extractors) and are wired together in ``knowledge_engine/main.py``.

CONCRETE PROVIDER MAP:
    Interface              ->  Concrete implementations
    -----------------------------------------------------------------
    IEmbeddingProvider     ->  OpenAIEmbeddingProvider, NomicEmbeddingProvider
    ILLMProvider           ->  AnthropicLLMProvider, OpenAILLMProvider
    IUrlFetcher            ->  HttpxUrlFetcher
    IContentExtractor      ->  PdfExtractor, DocxExtractor, HtmlExtractor,
                               RtfExtractor, PlainTextExtractor
    IKnowledgeStore        ->  SQLiteKnowledgeStore
"""

from knowledge_engine.interfaces.content_extractor import IContentExtractor
from knowledge_engine.interfaces.embedding_provider import IEmbeddingProvider
from knowledge_engine.interfaces.knowledge_store import (
    IDocumentRepository,
    IFragmentRepository,
    IKnowledgeStore,
)
from knowledge_engine.interfaces.llm_provider import ILLMProvider
from knowledge_engine.interfaces.url_fetcher import FetchedContent, IUrlFetcher

__all__ = [
    "FetchedContent",
    "IContentExtractor",
    "IDocumentRepository",
    "IEmbeddingProvider",
    "IFragmentRepository",
    "IKnowledgeStore",
    "ILLMProvider",
    "IUrlFetcher",
]
