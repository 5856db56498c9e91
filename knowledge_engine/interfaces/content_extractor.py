"""Abstract base class for content extractors.

An extractor turns the raw payload of one family of MIME types (base64 for
binary formats, plain text otherwise) into plain text.  Extractors are
registered with :class:`~knowledge_engine.services.extraction.registry.ExtractorRegistry`,
which picks one per request by content type.
"""

from __future__ import annotations

from abc import ABC, abstractmethod


# Concrete implementations: PdfExtractor, DocxExtractor, HtmlExtractor,
# RtfExtractor, PlainTextExtractor
# Located in: knowledge_engine/services/extraction/
class IContentExtractor(ABC):
    """Contract for converting one family of formats to plain text."""

    @abstractmethod
    def supports(self, content_type: str) -> bool:
        """Return ``True`` if this extractor handles *content_type*.

        *content_type* is already lower-cased and stripped of parameters
        (``"text/html; charset=utf-8"`` arrives as ``"text/html"``).
        """

    @abstractmethod
    async def extract_text(self, content: str, content_type: str) -> str:
        """Return the plain text contained in *content*.

        Parameters
        ----------
        content:
            Base64 payload for binary formats, the text itself otherwise.
        content_type:
            Normalized MIME type.

        Raises
        ------
        knowledge_engine.utils.errors.EmptyOrInvalidContentError
            If the payload cannot be decoded or parsed.
        """

    @property
    @abstractmethod
    def is_binary(self) -> bool:
        """``True`` when the payload for this format is base64 encoded."""

    @abstractmethod
    def get_extractor_name(self) -> str:
        """Return a short identifier for logging, e.g. ``"pdf"``."""
