"""Content-type dispatch over the registered extractors.

:meth:`ExtractorRegistry.extract` picks the first extractor whose
``supports()`` accepts the (normalized) MIME type.  When none does, the
payload is inspected instead of rejected outright:

- base64 that decodes to UTF-8 text -> that text
- base64 that decodes to binary data -> :class:`UnsupportedContentTypeError`,
  unless the payload is letters only (a word that happens to be valid base64)
- anything else that reads as text   -> used as plain text
- otherwise                          -> :class:`UnsupportedContentTypeError`
"""

from __future__ import annotations

import structlog
from pydantic import BaseModel, ConfigDict

from knowledge_engine.interfaces.content_extractor import IContentExtractor
from knowledge_engine.services.extraction.encoding import (
    decode_base64,
    decode_text_bytes,
    is_probably_text,
    looks_like_base64,
    normalize_content_type,
)
from knowledge_engine.services.extraction.extractors import (
    DocxExtractor,
    HtmlExtractor,
    PdfExtractor,
    PlainTextExtractor,
    RtfExtractor,
)
from knowledge_engine.utils.errors import EmptyOrInvalidContentError, UnsupportedContentTypeError

logger = structlog.get_logger(logger_name=__name__)


class ExtractedContent(BaseModel):
    """Result of extraction: the plain text and how the payload was encoded."""

    model_config = ConfigDict(frozen=True)

    text: str
    is_binary: bool
    extractor: str


class ExtractorRegistry:
    """Ordered collection of extractors with a plain-text fallback.

    Order matters: specific extractors (HTML, RTF) are registered before the
    catch-all ``text/*`` extractor.
    """

    def __init__(self, extractors: list[IContentExtractor] | None = None) -> None:
        self._extractors: list[IContentExtractor] = list(extractors or [])

    @classmethod
    def with_defaults(cls) -> "ExtractorRegistry":
        """Registry with PDF, DOCX, HTML, RTF and plain-text extractors."""
        return cls(
            [
                PdfExtractor(),
                DocxExtractor(),
                HtmlExtractor(),
                RtfExtractor(),
                PlainTextExtractor(),
            ]
        )

    def register(self, extractor: IContentExtractor) -> None:
        """Add *extractor* ahead of the existing ones."""
        self._extractors.insert(0, extractor)

    def find(self, content_type: str) -> IContentExtractor | None:
        normalized = normalize_content_type(content_type)
        for extractor in self._extractors:
            if extractor.supports(normalized):
                return extractor
        return None

    def is_binary(self, content_type: str) -> bool:
        """Return ``True`` if payloads of *content_type* are base64 encoded."""
        extractor = self.find(content_type)
        return extractor.is_binary if extractor is not None else False

    async def extract(self, content: str, content_type: str) -> ExtractedContent:
        """Extract plain text from *content*.

        Raises
        ------
        UnsupportedContentTypeError
            No extractor matches and the content is not text.
        EmptyOrInvalidContentError
            The matching extractor could not decode or parse the payload.
        """
        normalized = normalize_content_type(content_type)
        extractor = self.find(normalized)
        if extractor is not None:
            text = await extractor.extract_text(content, normalized)
            return ExtractedContent(
                text=text,
                is_binary=extractor.is_binary,
                extractor=extractor.get_extractor_name(),
            )
        return self._fallback(content, normalized)

    @staticmethod
    def _fallback(content: str, content_type: str) -> ExtractedContent:
        if looks_like_base64(content):
            try:
                data = decode_base64(content)
            except EmptyOrInvalidContentError:
                data = None
            text = decode_text_bytes(data) if data is not None else None
            if text is not None:
                logger.info("extraction_fallback_base64_text", content_type=content_type)
                return ExtractedContent(text=text, is_binary=False, extractor="base64-text")
            # A letters-only run that decodes to binary is a word, not a payload.
            if data is not None and not content.strip().isalpha():
                raise UnsupportedContentTypeError(
                    f"Unsupported content type {content_type!r} for binary content"
                )

        if is_probably_text(content):
            logger.info("extraction_fallback_plain_text", content_type=content_type)
            return ExtractedContent(text=content, is_binary=False, extractor="fallback-text")

        raise UnsupportedContentTypeError(f"Unsupported content type {content_type!r}")
