"""Unit tests for metadata response parsing and its fallback."""

from __future__ import annotations

import json

from kbrag.providers.model.metadata import (
    extract_json_object,
    fallback_metadata,
    parse_document_metadata,
)

_VALID = {
    "title": "Annual Leave Policy",
    "summary": "Explains leave entitlement. Covers approvals.",
    "tags": ["leave", "hr", "policy", "approval", "benefits"],
    "language": "en",
    "docType": "policy",
}


class TestExtractJsonObject:
    def test_bare_json(self) -> None:
        assert extract_json_object(json.dumps(_VALID)) == _VALID

    def test_fenced_json(self) -> None:
        response = f"```json\n{json.dumps(_VALID)}\n```"
        assert extract_json_object(response) == _VALID

    def test_json_inside_prose(self) -> None:
        response = f"Sure! Here is the metadata: {json.dumps(_VALID)} Let me know."
        assert extract_json_object(response) == _VALID

    def test_garbage(self) -> None:
        assert extract_json_object("I cannot help with that.") is None
        assert extract_json_object("") is None

    def test_non_object_json(self) -> None:
        assert extract_json_object("[1, 2, 3]") is None


class TestParseDocumentMetadata:
    def test_valid_response(self) -> None:
        metadata = parse_document_metadata(json.dumps(_VALID), "leave.pdf")

        assert metadata.title == "Annual Leave Policy"
        assert metadata.tags == _VALID["tags"]
        assert metadata.language == "en"
        assert metadata.doc_type == "policy"

    def test_unparseable_response_falls_back(self) -> None:
        metadata = parse_document_metadata("no json here", "annual_leave-policy.pdf", "Body text")

        assert metadata.title == "annual leave policy"
        assert metadata.summary == "Body text"
        assert metadata.tags == ["document"]
        assert metadata.language == "id"
        assert metadata.doc_type == "other"

    def test_invalid_enums_use_defaults(self) -> None:
        response = json.dumps({**_VALID, "language": "fr", "docType": "memo"})
        metadata = parse_document_metadata(response, "x.pdf")

        assert metadata.language == "id"
        assert metadata.doc_type == "other"

    def test_title_and_tags_are_truncated(self) -> None:
        response = json.dumps({**_VALID, "title": "T" * 120, "tags": [f"t{i}" for i in range(9)]})
        metadata = parse_document_metadata(response, "x.pdf")

        assert len(metadata.title) == 80
        assert metadata.tags == ["t0", "t1", "t2", "t3", "t4"]

    def test_missing_fields_are_filled(self) -> None:
        metadata = parse_document_metadata('{"summary": "Only a summary."}', "sop_onboarding.pdf")

        assert metadata.title == "sop onboarding"
        assert metadata.summary == "Only a summary."
        assert metadata.tags == ["document"]


def test_fallback_summary_is_first_200_chars() -> None:
    metadata = fallback_metadata("report.pdf", "x" * 500)
    assert metadata.summary == "x" * 200
    assert fallback_metadata("report.pdf").summary == "Document summary not available"
