"""Paragraph-aware chunking with a character-based token estimate.

Splits page text into :class:`~kbrag.models.rag.TextChunk` objects sized for
embedding models (~400 tokens each with ~50 tokens of overlap).

Two goals drive the algorithm:

1. **Paragraph-preserving** -- boundaries fall between paragraphs, never
   mid-sentence, which keeps embeddings coherent.
2. **Overlapping windows** -- each new chunk starts with the tail of the
   previous one, so a concept spanning a boundary is retrievable from at
   least one side.

Token counts are estimated as ``ceil(len / 3.5)``, a fair average for mixed
Indonesian/English text.  A paragraph that alone exceeds the budget is still
emitted as its own (oversized) chunk rather than dropped.  The overlap
shrinks, or is left out, when it would push the next chunk over budget.
"""

from __future__ import annotations

import math
import re

import structlog

from kbrag.models.rag import PageText, TextChunk

logger = structlog.get_logger(logger_name=__name__)

CHARS_PER_TOKEN = 3.5
MIN_PARAGRAPH_CHARS = 20
PARAGRAPH_SEPARATOR = "\n\n"

# Blank-line runs, or a single newline right after a sentence end (". ").
_PARAGRAPH_SPLIT = re.compile(r"\n{2,}|(?<=\.\s)\n")


def estimate_tokens(text: str) -> int:
    """Approximate token count: one token per 3.5 characters, rounded up."""
    return math.ceil(len(text) / CHARS_PER_TOKEN)


class Chunker:
    """Accumulates paragraphs into token-budgeted, overlapping chunks.

    Parameters
    ----------
    max_tokens:
        Estimated token budget per chunk (default 400).
    overlap_tokens:
        Estimated tokens carried over from the end of the previous chunk
        (default 50).
    """

    def __init__(self, max_tokens: int = 400, overlap_tokens: int = 50) -> None:
        self._max_tokens = max_tokens
        self._overlap_chars = round(overlap_tokens * CHARS_PER_TOKEN)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def chunk(self, pages: list[PageText]) -> list[TextChunk]:
        """Split *pages* into ordered chunks.

        Returns an empty list when no paragraph longer than 20 characters
        exists.  Identical input always yields identical boundaries.
        """
        chunks: list[TextChunk] = []
        current = ""
        page_start = 1
        page_end = 1

        for page in pages:
            for para in self.split_paragraphs(page.text):
                if not current:
                    page_start = page.page_number
                combined = f"{current}{PARAGRAPH_SEPARATOR}{para}" if current else para

                if estimate_tokens(combined) > self._max_tokens and current:
                    chunks.append(self._make_chunk(len(chunks), current, page_start, page_end))
                    tail = self._tail(current, room=self._room_before(para))
                    current = f"{tail}{PARAGRAPH_SEPARATOR}{para}" if tail else para
                    page_start = page.page_number
                else:
                    current = combined
                page_end = page.page_number

        if len(current.strip()) > MIN_PARAGRAPH_CHARS:
            chunks.append(self._make_chunk(len(chunks), current, page_start, page_end))

        logger.debug(
            "chunking_complete",
            num_chunks=len(chunks),
            total_tokens=sum(c.token_count for c in chunks),
        )
        return chunks

    @staticmethod
    def split_paragraphs(text: str) -> list[str]:
        """Split *text* into trimmed paragraphs longer than 20 characters."""
        parts = (p.strip() for p in _PARAGRAPH_SPLIT.split(text))
        return [p for p in parts if len(p) > MIN_PARAGRAPH_CHARS]

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _room_before(self, para: str) -> int:
        """Characters of overlap that still fit in front of *para* within budget."""
        budget_chars = math.floor(self._max_tokens * CHARS_PER_TOKEN)
        return budget_chars - len(PARAGRAPH_SEPARATOR) - len(para)

    def _tail(self, text: str, room: int) -> str:
        size = min(self._overlap_chars, room)
        if size <= 0:
            return ""
        if len(text) <= size:
            return text
        return text[-size:]

    @staticmethod
    def _make_chunk(index: int, content: str, page_start: int, page_end: int) -> TextChunk:
        return TextChunk(
            chunk_index=index,
            content=content,
            token_count=estimate_tokens(content),
            page_start=page_start,
            page_end=page_end,
        )
