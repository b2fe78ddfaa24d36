"""Prompts and tolerant parsing for AI document metadata.

Models are asked for bare JSON but routinely wrap it in markdown fences or
surround it with prose.  :func:`parse_document_metadata` tolerates both and
falls back to a record synthesized from the file name and raw text instead of
raising.
"""

from __future__ import annotations

import json
import re
from typing import Any

import structlog

from kbrag.models.provider import DocumentMetadata

logger = structlog.get_logger(logger_name=__name__)

_ALLOWED_LANGUAGES = frozenset({"id", "en", "mixed"})
_ALLOWED_DOC_TYPES = frozenset({"sop", "policy", "guide", "report", "regulation", "other"})
_MAX_TITLE = 80
_MAX_TAGS = 5

METADATA_SYSTEM_PROMPT = (
    "You analyze organizational documents. Respond with a JSON object containing: "
    '"title" (concise, at most 80 characters), '
    '"summary" (2-3 sentences), '
    '"tags" (exactly 5 short keywords), '
    '"language" (one of "id", "en", "mixed"), '
    '"docType" (one of "sop", "policy", "guide", "report", "regulation", "other").'
)

METADATA_INLINE_PROMPT = """Analyze this document and return ONLY valid JSON (no markdown fences):
{
  "title": "concise title, max 80 characters",
  "summary": "2-3 sentence summary",
  "tags": ["tag1", "tag2", "tag3", "tag4", "tag5"],
  "language": "id | en | mixed",
  "docType": "sop | policy | guide | report | regulation | other"
}"""


def fallback_metadata(file_name: str, text: str | None = None) -> DocumentMetadata:
    """Minimal metadata derived from the file name and the start of the text."""
    stem = re.sub(r"\.[^.]+$", "", file_name)
    title = re.sub(r"[-_]", " ", stem).strip() or file_name or "Untitled document"
    summary = (text or "")[:200] or "Document summary not available"
    return DocumentMetadata(
        title=title[:_MAX_TITLE],
        summary=summary,
        tags=["document"],
        language="id",
        doc_type="other",
    )


def extract_json_object(response: str) -> dict[str, Any] | None:
    """Pull a JSON object out of a model response, or ``None``.

    Handles bare JSON, markdown-fenced JSON and JSON embedded in prose.
    """
    cleaned = response.strip()
    if not cleaned:
        return None

    fence_match = re.search(r"```(?:json)?\s*\n?(.*?)```", cleaned, re.DOTALL)
    if fence_match:
        cleaned = fence_match.group(1).strip()
    else:
        brace_start = cleaned.find("{")
        brace_end = cleaned.rfind("}")
        if brace_start != -1 and brace_end > brace_start:
            cleaned = cleaned[brace_start : brace_end + 1]

    try:
        data = json.loads(cleaned)
    except (json.JSONDecodeError, ValueError):
        return None
    return data if isinstance(data, dict) else None


def parse_document_metadata(
    response: str,
    file_name: str,
    text: str | None = None,
) -> DocumentMetadata:
    """Parse a metadata response, falling back to :func:`fallback_metadata`."""
    data = extract_json_object(response)
    if data is None:
        logger.warning("metadata_parse_failed", file_name=file_name, response_preview=response[:200])
        return fallback_metadata(file_name, text)

    fallback = fallback_metadata(file_name, text)
    title = str(data.get("title") or "").strip() or fallback.title
    summary = str(data.get("summary") or "").strip() or fallback.summary

    raw_tags = data.get("tags")
    tags = [str(t).strip() for t in raw_tags if str(t).strip()] if isinstance(raw_tags, list) else []

    language = str(data.get("language") or "").lower()
    doc_type = str(data.get("docType") or data.get("doc_type") or "").lower()

    return DocumentMetadata(
        title=title[:_MAX_TITLE],
        summary=summary,
        tags=tags[:_MAX_TAGS] or fallback.tags,
        language=language if language in _ALLOWED_LANGUAGES else fallback.language,
        doc_type=doc_type if doc_type in _ALLOWED_DOC_TYPES else fallback.doc_type,
    )
