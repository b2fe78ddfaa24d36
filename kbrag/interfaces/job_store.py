"""Abstract base class for the durable ingestion job table."""

from __future__ import annotations

from abc import ABC, abstractmethod

from kbrag.models.rag import IngestionJob


class IJobStore(ABC):
    """Contract for persisting ingestion jobs with at-least-once semantics."""

    @abstractmethod
    async def initialize(self) -> None:
        """Create the job table if it does not exist."""

    @abstractmethod
    async def enqueue(self, artifact_id: str) -> IngestionJob:
        """Create a pending job, or return the artifact's existing pending job."""

    @abstractmethod
    async def claim_next(self) -> IngestionJob | None:
        """Atomically move the oldest pending job to ``running`` and return it."""

    @abstractmethod
    async def complete(self, job_id: str) -> None:
        """Mark a running job ``done``."""

    @abstractmethod
    async def fail(self, job_id: str, error: str, max_attempts: int) -> IngestionJob:
        """Record a failed attempt.

        The job returns to ``pending`` while ``attempts < max_attempts``,
        otherwise it becomes ``failed``.
        """

    @abstractmethod
    async def reset_stale(self) -> int:
        """Return ``running`` jobs to ``pending`` (crash recovery); return the count."""

    @abstractmethod
    async def get_job(self, job_id: str) -> IngestionJob | None:
        """Return the job, or ``None`` if unknown."""
