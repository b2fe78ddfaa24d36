"""Unit tests for identity, provider and retrieval models."""

from __future__ import annotations

import pytest

from kbrag.models.artifact import ArtifactKind, ArtifactStatus, ProcessingStatus
from kbrag.models.identity import AccessScope, CallerIdentity, Role, is_division_scoped
from kbrag.models.provider import ProviderConfig, ProviderKind
from kbrag.models.rag import Citation, RetrievedChunk
from tests.conftest import make_document


class TestDivisionScoping:
    def test_staff_always_scoped(self) -> None:
        assert is_division_scoped(Role.STAFF, cross_division_enabled=True)

    def test_supervisor_depends_on_org_flag(self) -> None:
        assert is_division_scoped(Role.SUPERVISOR, cross_division_enabled=False)
        assert not is_division_scoped(Role.SUPERVISOR, cross_division_enabled=True)

    @pytest.mark.parametrize("role", [Role.MAINTAINER, Role.SUPER_ADMIN, Role.GROUP_ADMIN])
    def test_admins_see_whole_org(self, role: Role) -> None:
        assert not is_division_scoped(role, cross_division_enabled=False)

    def test_scope_for_caller(self) -> None:
        caller = CallerIdentity(user_id="u", organization_id="org-1", division_id="div-a")
        scope = AccessScope.for_caller(caller, cross_division_enabled=False)

        assert scope == AccessScope(organization_id="org-1", division_id="div-a", division_scoped=True)


class TestProviderConfig:
    def test_defaults_to_managed(self) -> None:
        assert ProviderConfig().provider == ProviderKind.MANAGED

    def test_unknown_provider_coerced_to_managed(self) -> None:
        assert ProviderConfig(provider="quantum").provider == ProviderKind.MANAGED

    def test_known_provider(self) -> None:
        assert ProviderConfig(provider="self_hosted").provider == ProviderKind.SELF_HOSTED


def _chunk(**overrides: object) -> RetrievedChunk:
    fields: dict[str, object] = {
        "chunk_id": "c1",
        "artifact_id": "doc-1",
        "artifact_kind": ArtifactKind.DOCUMENT,
        "title": "Leave Policy",
        "content": "x" * 300,
        "chunk_index": 2,
        "page_start": 3,
        "page_end": 3,
        "similarity": 0.9,
    }
    fields.update(overrides)
    return RetrievedChunk(**fields)


class TestRetrievedChunk:
    def test_single_page_locator(self) -> None:
        assert _chunk().locator == "p. 3"

    def test_page_range_locator(self) -> None:
        assert _chunk(page_end=5).locator == "p. 3-5"

    def test_article_locator_is_one_based_section(self) -> None:
        assert _chunk(artifact_kind=ArtifactKind.ARTICLE).locator == "section 3"

    def test_citation_excerpt(self) -> None:
        citation = Citation.from_chunk(_chunk())
        assert len(citation.excerpt) == 150
        assert citation.page_start == 3


def test_status_view_and_display_title() -> None:
    doc = make_document(status=ProcessingStatus.FAILED, processing_error="boom")
    status = ArtifactStatus.from_artifact(doc)

    assert status.status == ProcessingStatus.FAILED
    assert status.error == "boom"
    assert not status.processed
    assert doc.display_title == "Leave Policy"
    assert make_document(ai_title="AI Title").display_title == "AI Title"
