"""Content extraction: MIME-type dispatch to per-format text extractors."""

from knowledge_engine.services.extraction.extractors import (
    DocxExtractor,
    HtmlExtractor,
    PdfExtractor,
    PlainTextExtractor,
    RtfExtractor,
)
from knowledge_engine.services.extraction.registry import ExtractedContent, ExtractorRegistry

__all__ = [
    "DocxExtractor",
    "ExtractedContent",
    "ExtractorRegistry",
    "HtmlExtractor",
    "PdfExtractor",
    "PlainTextExtractor",
    "RtfExtractor",
]
