"""Text extraction for documents and articles.

Turns an uploaded file (bytes + media type) or an article's HTML body into
page-numbered text for the chunker.  Extraction never fails an ingestion
run: unsupported types, missing bytes and unreadable PDFs all degrade to a
single placeholder page describing the file.

PDF pages are an approximation.  PyMuPDF supplies the page count and text;
the joined text is then divided evenly by character count, so a "page" in a
citation is the n-th equal slice of the document rather than a layout page.
"""

from __future__ import annotations

import math
import re

import fitz  # PyMuPDF
import structlog

from kbrag.models.rag import ExtractedText, PageText
from kbrag.utils.errors import ExtractionError

logger = structlog.get_logger(logger_name=__name__)

PDF_MIME_TYPE = "application/pdf"
TEXT_MIME_TYPES = frozenset({"text/plain", "text/markdown", "text/csv"})
EMPTY_ARTICLE_TEXT = "Empty article."

_HTML_TAG = re.compile(r"<[^>]*>?")
_WHITESPACE = re.compile(r"\s+")


def placeholder_text(file_name: str, mime_type: str, file_size: int) -> str:
    """Single-page stand-in for files whose content cannot be read."""
    return (
        f"Document: {file_name} ({mime_type}, {file_size} bytes). "
        "Content extraction not available for this file type."
    )


def strip_html(html: str) -> str:
    """Remove markup and collapse whitespace."""
    text = _HTML_TAG.sub(" ", html or "")
    return _WHITESPACE.sub(" ", text).strip()


def split_into_pages(text: str, page_count: int) -> list[PageText]:
    """Divide *text* evenly into *page_count* character slices.

    Empty slices are skipped, so page numbers may have gaps at the end of a
    short document but always match the slice position.
    """
    if page_count <= 1:
        return [PageText(page_number=1, text=text.strip())]

    size = math.ceil(len(text) / page_count)
    pages: list[PageText] = []
    for i in range(page_count):
        page_text = text[i * size : (i + 1) * size].strip()
        if page_text:
            pages.append(PageText(page_number=i + 1, text=page_text))
    return pages


class TextExtractor:
    """Extracts page text from uploaded documents and article bodies."""

    def extract(
        self,
        data: bytes | None,
        mime_type: str,
        file_name: str,
        file_size: int = 0,
    ) -> ExtractedText:
        """Return page-numbered text for a document.

        Parameters
        ----------
        data:
            Raw file bytes, or ``None`` when the file could not be fetched.
        mime_type:
            Declared media type of the upload.
        file_name:
            Original file name, used in the placeholder text.
        file_size:
            Declared size in bytes, used in the placeholder text.
        """
        if data is not None:
            if mime_type == PDF_MIME_TYPE:
                try:
                    return self._extract_pdf(data)
                except Exception as exc:  # noqa: BLE001
                    logger.warning("pdf_extraction_failed", file_name=file_name, error=str(exc))
            elif mime_type in TEXT_MIME_TYPES:
                text = data.decode("utf-8", errors="replace")
                return ExtractedText(full_text=text, pages=[PageText(page_number=1, text=text)], page_count=1)

        logger.info("extraction_placeholder", file_name=file_name, mime_type=mime_type)
        text = placeholder_text(file_name, mime_type, file_size or (len(data) if data else 0))
        return ExtractedText(full_text=text, pages=[PageText(page_number=1, text=text)], page_count=1)

    def extract_article(self, title: str, body: str) -> ExtractedText:
        """Return the article as one page: its title, a blank line, then plain text."""
        text = strip_html(body) or EMPTY_ARTICLE_TEXT
        page = f"{title}\n\n{text}"
        return ExtractedText(full_text=page, pages=[PageText(page_number=1, text=page)], page_count=1)

    @staticmethod
    def _extract_pdf(data: bytes) -> ExtractedText:
        with fitz.open(stream=data, filetype="pdf") as doc:
            page_count = doc.page_count
            if page_count == 0:
                raise ExtractionError(message="PDF has no pages")
            full_text = "\n\n".join(page.get_text() for page in doc)

        pages = split_into_pages(full_text, page_count)
        logger.debug("pdf_extracted", page_count=page_count, chars=len(full_text))
        return ExtractedText(full_text=full_text, pages=pages, page_count=page_count)
