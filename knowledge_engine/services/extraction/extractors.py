"""Concrete content extractors, one per family of formats.

Each extractor implements :class:`IContentExtractor`.  Binary formats (PDF,
DOCX) receive base64 and parse the decoded bytes in a worker thread so a
large document does not block the event loop.

Libraries:
    - PDF  -> PyMuPDF (``fitz``), page by page
    - DOCX -> python-docx, paragraph text
    - HTML -> trafilatura main-content extraction
    - RTF  -> striprtf
    - text, markdown, code and structured data -> passed through
"""

from __future__ import annotations

import asyncio
import io

import docx
import fitz  # PyMuPDF -- the "fitz" import name is a PyMuPDF convention
import structlog
import trafilatura
from striprtf.striprtf import rtf_to_text

from knowledge_engine.interfaces.content_extractor import IContentExtractor
from knowledge_engine.services.extraction.encoding import decode_base64
from knowledge_engine.utils.errors import EmptyOrInvalidContentError

logger = structlog.get_logger(logger_name=__name__)


class PdfExtractor(IContentExtractor):
    """PDF -> text via PyMuPDF; pages are separated by blank lines."""

    def supports(self, content_type: str) -> bool:
        return content_type == "application/pdf"

    @property
    def is_binary(self) -> bool:
        return True

    async def extract_text(self, content: str, content_type: str) -> str:
        data = decode_base64(content)
        return await asyncio.to_thread(self._extract_pages, data)

    @staticmethod
    def _extract_pages(data: bytes) -> str:
        try:
            doc = fitz.open(stream=data, filetype="pdf")
        except (fitz.FileDataError, RuntimeError, ValueError) as exc:
            raise EmptyOrInvalidContentError(f"Unreadable PDF: {exc}") from exc

        pages: list[str] = []
        try:
            for page in doc:
                text = page.get_text("text").strip()
                if text:
                    pages.append(text)
        finally:
            doc.close()

        if not pages:
            logger.warning("pdf_no_text_extracted", size=len(data))
        return "\n\n".join(pages)

    def get_extractor_name(self) -> str:
        return "pdf"


class DocxExtractor(IContentExtractor):
    """DOCX -> text via python-docx; one paragraph per block."""

    _CONTENT_TYPE = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"

    def supports(self, content_type: str) -> bool:
        return content_type == self._CONTENT_TYPE

    @property
    def is_binary(self) -> bool:
        return True

    async def extract_text(self, content: str, content_type: str) -> str:
        data = decode_base64(content)
        return await asyncio.to_thread(self._extract_paragraphs, data)

    @staticmethod
    def _extract_paragraphs(data: bytes) -> str:
        try:
            document = docx.Document(io.BytesIO(data))
        except Exception as exc:  # noqa: BLE001 - python-docx raises zipfile/lxml/KeyError variants
            raise EmptyOrInvalidContentError(f"Unreadable DOCX: {exc}") from exc
        return "\n\n".join(p.text for p in document.paragraphs if p.text.strip())

    def get_extractor_name(self) -> str:
        return "docx"


class HtmlExtractor(IContentExtractor):
    """HTML -> main text via trafilatura, stripping navigation and boilerplate."""

    def supports(self, content_type: str) -> bool:
        return content_type in ("text/html", "application/xhtml+xml")

    @property
    def is_binary(self) -> bool:
        return False

    async def extract_text(self, content: str, content_type: str) -> str:
        return await asyncio.to_thread(self._extract, content)

    @staticmethod
    def _extract(html: str) -> str:
        text = trafilatura.extract(html, include_comments=False, include_tables=True)
        if not text:
            # Short pages often have no "main content"; keep all visible text.
            logger.debug("trafilatura_extraction_empty", length=len(html))
            text = trafilatura.html2txt(html)
        return text or ""

    def get_extractor_name(self) -> str:
        return "html"


class RtfExtractor(IContentExtractor):
    """RTF -> text via striprtf."""

    def supports(self, content_type: str) -> bool:
        return content_type in ("application/rtf", "text/rtf")

    @property
    def is_binary(self) -> bool:
        return False

    async def extract_text(self, content: str, content_type: str) -> str:
        return rtf_to_text(content, errors="ignore")

    def get_extractor_name(self) -> str:
        return "rtf"


class PlainTextExtractor(IContentExtractor):
    """Text-like formats (plain text, markdown, code, JSON, XML, CSV) pass through."""

    _APPLICATION_TEXT_TYPES = frozenset(
        {
            "application/json",
            "application/xml",
            "application/javascript",
            "application/typescript",
            "application/x-javascript",
            "application/x-typescript",
            "application/x-python",
            "application/x-python-code",
            "application/x-sh",
            "application/x-yaml",
            "application/yaml",
            "application/toml",
            "application/sql",
            "application/graphql",
            "application/ld+json",
            "application/x-ndjson",
        }
    )

    def supports(self, content_type: str) -> bool:
        if content_type.startswith("text/"):
            return True
        if content_type.endswith(("+json", "+xml")):
            return True
        return content_type in self._APPLICATION_TEXT_TYPES

    @property
    def is_binary(self) -> bool:
        return False

    async def extract_text(self, content: str, content_type: str) -> str:
        return content

    def get_extractor_name(self) -> str:
        return "text"
