"""Artifact models: documents and articles subject to ingestion.

An *artifact* is anything that is extracted, chunked and embedded: an
uploaded Document (PDF, text, ...) or a published Article (HTML body).
Both share one processing lifecycle:

    unprocessed → processing → completed | failed

``failed`` and ``completed`` artifacts can be re-triggered, which re-enters
``processing`` and replaces all chunks wholesale.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class ArtifactKind(str, Enum):  # noqa: UP042
    """Which kind of artifact a record (and its chunks) belongs to."""

    DOCUMENT = "document"
    ARTICLE = "article"


class ProcessingStatus(str, Enum):  # noqa: UP042
    """States of the ingestion state machine."""

    UNPROCESSED = "unprocessed"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


def utc_now_iso() -> str:
    """ISO-8601 UTC timestamp used for progress log entries."""
    return datetime.now(timezone.utc).isoformat()


class ProgressEntry(BaseModel):
    """One line of an artifact's append-only processing log."""

    model_config = ConfigDict(frozen=True)

    time: str = Field(default_factory=utc_now_iso, description="ISO-8601 UTC timestamp.")
    message: str = Field(description="Human-readable description of the step.")
    progress: int = Field(ge=0, le=100, description="Overall progress, 0-100.")


class Artifact(BaseModel):
    """A document or article record as seen by the RAG core.

    The CRUD layer owns these records; the core only reads them and updates
    processing fields (status, log, error, processed flag, embedding model
    and version, and AI metadata for documents).
    """

    model_config = ConfigDict(frozen=True)

    id: str
    kind: ArtifactKind
    organization_id: str
    division_id: str | None = Field(
        default=None, description="Owning division; None means organization-wide."
    )
    division_name: str | None = None
    title: str = Field(default="", description="Article title or document display name.")

    # --- Document fields ---
    file_name: str = ""
    file_path: str = Field(default="", description="Path of the uploaded file inside the upload dir.")
    mime_type: str = ""
    file_size: int = 0
    ai_title: str | None = None
    ai_summary: str | None = None
    ai_tags: list[str] = Field(default_factory=list)

    # --- Article fields ---
    body: str = Field(default="", description="Article HTML body.")
    author_id: str | None = None

    # --- Processing state ---
    status: ProcessingStatus = ProcessingStatus.UNPROCESSED
    progress_log: list[ProgressEntry] = Field(default_factory=list)
    processing_error: str | None = None
    is_processed: bool = False
    embedding_model: str | None = None
    embedding_version: int = 0

    @property
    def display_title(self) -> str:
        """Title used in citations and search results."""
        return self.ai_title or self.title or self.file_name or self.id


class ArtifactStatus(BaseModel):
    """Polling view of an artifact's processing state."""

    model_config = ConfigDict(frozen=True)

    artifact_id: str
    kind: ArtifactKind
    status: ProcessingStatus
    progress_log: list[ProgressEntry] = Field(default_factory=list)
    processed: bool = False
    error: str | None = None

    @classmethod
    def from_artifact(cls, artifact: Artifact) -> ArtifactStatus:
        return cls(
            artifact_id=artifact.id,
            kind=artifact.kind,
            status=artifact.status,
            progress_log=artifact.progress_log,
            processed=artifact.is_processed,
            error=artifact.processing_error,
        )
