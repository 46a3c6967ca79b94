"""Content extraction for supported upload formats."""

from __future__ import annotations

import io

import fitz
from docx import Document as DocxDocument

from ragdesk.core.errors import EmptyContent, ExtractionFailed, UnsupportedMediaType
from ragdesk.core.logging import get_logger
from ragdesk.ingest.types import ExtractedText
from ragdesk.utils.text import sanitize

logger = get_logger(__name__)

PDF = "application/pdf"
DOCX = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
TEXT_MEDIA_TYPES: frozenset[str] = frozenset({"text/plain", "text/markdown", "text/csv", "application/json"})
SUPPORTED_MEDIA_TYPES: frozenset[str] = TEXT_MEDIA_TYPES | {PDF, DOCX}

_PAGE_SEPARATOR = "\n\n"


class BaseExtractor:
    """Common extractor interface."""

    media_types: tuple[str, ...] = ()

    def extract(self, data: bytes, media_type: str) -> ExtractedText:  # pragma: no cover - interface
        raise NotImplementedError


class PlainTextExtractor(BaseExtractor):
    media_types = tuple(sorted(TEXT_MEDIA_TYPES))

    def extract(self, data: bytes, media_type: str) -> ExtractedText:
        text = data.decode("utf-8-sig", errors="replace")
        return ExtractedText(text=sanitize(text), media_type=media_type)


class PDFExtractor(BaseExtractor):
    media_types = (PDF,)

    def extract(self, data: bytes, media_type: str) -> ExtractedText:
        header = data[:4]
        if header != b"%PDF":
            raise ExtractionFailed(f"Invalid PDF format: expected PDF header, got {header!r}")
        try:
            with fitz.open(stream=data, filetype="pdf") as doc:
                if doc.needs_pass:
                    raise ExtractionFailed("PDF is password protected")
                pages = [page.get_text("text", sort=True) for page in doc]
        except ExtractionFailed:
            raise
        except Exception as exc:
            raise ExtractionFailed(f"Failed to parse PDF: {exc}") from exc

        parts: list[str] = []
        offsets: list[int] = []
        length = 0
        for raw_page in pages:
            page_text = sanitize(raw_page)
            if page_text and parts:
                length += len(_PAGE_SEPARATOR)
            offsets.append(length)
            if page_text:
                parts.append(page_text)
                length += len(page_text)
        return ExtractedText(text=_PAGE_SEPARATOR.join(parts), media_type=media_type, page_offsets=offsets)


class DocxExtractor(BaseExtractor):
    media_types = (DOCX,)

    def extract(self, data: bytes, media_type: str) -> ExtractedText:
        try:
            document = DocxDocument(io.BytesIO(data))
        except Exception as exc:
            raise ExtractionFailed(f"Failed to parse Word document: {exc}") from exc
        paragraphs = [para.text for para in document.paragraphs if para.text.strip()]
        return ExtractedText(text=sanitize("\n\n".join(paragraphs)), media_type=media_type)


class ExtractorRegistry:
    """Select an extractor by declared media type."""

    def __init__(self) -> None:
        self._extractors: list[BaseExtractor] = [PlainTextExtractor(), PDFExtractor(), DocxExtractor()]

    def for_media_type(self, media_type: str) -> BaseExtractor | None:
        for extractor in self._extractors:
            if media_type in extractor.media_types:
                return extractor
        return None

    def extract(self, data: bytes, media_type: str) -> ExtractedText:
        extractor = self.for_media_type(media_type)
        if extractor is None:
            raise UnsupportedMediaType(media_type)
        extracted = extractor.extract(data, media_type)
        if not extracted.text.strip():
            raise EmptyContent("No text content could be extracted from the document")
        logger.debug("Extracted %s characters from %s payload", len(extracted.text), media_type)
        return extracted


_REGISTRY = ExtractorRegistry()


def extract(data: bytes, media_type: str) -> ExtractedText:
    """Turn raw bytes of a declared media type into sanitized text."""
    return _REGISTRY.extract(data, media_type)


__all__ = [
    "PDF",
    "DOCX",
    "TEXT_MEDIA_TYPES",
    "SUPPORTED_MEDIA_TYPES",
    "ExtractorRegistry",
    "extract",
]
