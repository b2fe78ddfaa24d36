"""Integration tests for the durable ingestion job queue."""

from __future__ import annotations

import asyncio
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

from kbrag.models.artifact import ProcessingStatus
from kbrag.models.rag import IngestionOutcome, JobStatus
from kbrag.providers.storage.local_file_storage import LocalFileStorage
from kbrag.providers.store.sqlite_artifact_store import SQLiteArtifactStore
from kbrag.providers.store.sqlite_job_store import SQLiteJobStore
from kbrag.services.ingestion.ingestion_service import IngestionService
from kbrag.services.ingestion.job_queue import IngestionJobQueue
from kbrag.utils.errors import LLMError
from tests.conftest import MockModelProvider, StaticProviderFactory, make_document

DOC_TEXT = "Visitors must sign in at reception and wear a badge at all times on site."


@pytest.fixture
def upload_dir(tmp_path: Path) -> Path:
    root = tmp_path / "uploads"
    root.mkdir()
    (root / "doc-1.txt").write_text(DOC_TEXT, encoding="utf-8")
    return root


def _queue(
    store: SQLiteArtifactStore,
    job_store: SQLiteJobStore,
    upload_dir: Path,
    provider: MockModelProvider,
    max_attempts: int = 3,
) -> IngestionJobQueue:
    service = IngestionService(store, StaticProviderFactory(provider), LocalFileStorage(upload_dir))
    return IngestionJobQueue(job_store, service, max_attempts=max_attempts, poll_interval=0.05)


class TestJobStore:
    @pytest.mark.asyncio
    async def test_pending_jobs_coalesce(self, job_store: SQLiteJobStore) -> None:
        first = await job_store.enqueue("doc-1")
        second = await job_store.enqueue("doc-1")
        other = await job_store.enqueue("doc-2")

        assert first.id == second.id
        assert other.id != first.id

    @pytest.mark.asyncio
    async def test_claim_is_fifo_and_counts_attempts(self, job_store: SQLiteJobStore) -> None:
        first = await job_store.enqueue("doc-1")
        await job_store.enqueue("doc-2")

        claimed = await job_store.claim_next()

        assert claimed is not None
        assert claimed.id == first.id
        assert claimed.status == JobStatus.RUNNING
        assert claimed.attempts == 1

    @pytest.mark.asyncio
    async def test_running_job_does_not_block_new_enqueue(self, job_store: SQLiteJobStore) -> None:
        first = await job_store.enqueue("doc-1")
        await job_store.claim_next()

        again = await job_store.enqueue("doc-1")

        assert again.id != first.id

    @pytest.mark.asyncio
    async def test_reset_stale(self, job_store: SQLiteJobStore) -> None:
        job = await job_store.enqueue("doc-1")
        await job_store.claim_next()

        assert await job_store.reset_stale() == 1
        recovered = await job_store.get_job(job.id)
        assert recovered.status == JobStatus.PENDING
        assert recovered.attempts == 1

    @pytest.mark.asyncio
    async def test_empty_queue(self, job_store: SQLiteJobStore) -> None:
        assert await job_store.claim_next() is None


class TestIngestionJobQueue:
    @pytest.mark.asyncio
    async def test_drain_processes_job(
        self,
        store: SQLiteArtifactStore,
        job_store: SQLiteJobStore,
        upload_dir: Path,
        mock_provider: MockModelProvider,
    ) -> None:
        await store.save_artifact(make_document())
        queue = _queue(store, job_store, upload_dir, mock_provider)
        job = await queue.trigger("doc-1")
        await queue.trigger("doc-1")

        assert await queue.drain() == 1

        assert (await job_store.get_job(job.id)).status == JobStatus.DONE
        artifact = await store.get_artifact("doc-1")
        assert artifact.status == ProcessingStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_failed_run_is_retried_until_max_attempts(
        self, store: SQLiteArtifactStore, job_store: SQLiteJobStore, upload_dir: Path
    ) -> None:
        await store.save_artifact(make_document())
        provider = MockModelProvider(embedding_error=LLMError("quota exhausted for today"))
        queue = _queue(store, job_store, upload_dir, provider, max_attempts=2)
        job = await queue.trigger("doc-1")

        assert await queue.drain() == 2

        final = await job_store.get_job(job.id)
        assert final.status == JobStatus.FAILED
        assert final.attempts == 2
        assert final.last_error == "quota exhausted for today"
        assert (await store.get_artifact("doc-1")).status == ProcessingStatus.FAILED

    @pytest.mark.asyncio
    async def test_failed_outcome_without_message_records_default_error(self, job_store: SQLiteJobStore) -> None:
        service = MagicMock()
        service.process = AsyncMock(
            return_value=IngestionOutcome(artifact_id="doc-1", status=ProcessingStatus.FAILED)
        )
        queue = IngestionJobQueue(job_store, service, max_attempts=1)
        job = await queue.trigger("doc-1")

        finished = await queue.run_once()

        assert finished.id == job.id
        assert finished.status == JobStatus.FAILED
        assert finished.last_error == "Ingestion failed"

    @pytest.mark.asyncio
    async def test_unknown_artifact_fails_job(
        self,
        store: SQLiteArtifactStore,
        job_store: SQLiteJobStore,
        upload_dir: Path,
        mock_provider: MockModelProvider,
    ) -> None:
        queue = _queue(store, job_store, upload_dir, mock_provider, max_attempts=1)
        job = await queue.trigger("ghost")

        await queue.drain()

        final = await job_store.get_job(job.id)
        assert final.status == JobStatus.FAILED
        assert "ghost" in (final.last_error or "")

    @pytest.mark.asyncio
    async def test_workers_pick_up_triggered_jobs(
        self,
        store: SQLiteArtifactStore,
        job_store: SQLiteJobStore,
        upload_dir: Path,
        mock_provider: MockModelProvider,
    ) -> None:
        await store.save_artifact(make_document())
        queue = _queue(store, job_store, upload_dir, mock_provider)
        await queue.start()
        assert queue.running
        try:
            job = await queue.trigger("doc-1")
            for _ in range(200):
                current = await job_store.get_job(job.id)
                if current.status == JobStatus.DONE:
                    break
                await asyncio.sleep(0.05)
        finally:
            await queue.stop()

        assert current.status == JobStatus.DONE
        assert not queue.running

    @pytest.mark.asyncio
    async def test_start_requeues_stale_jobs(
        self,
        store: SQLiteArtifactStore,
        job_store: SQLiteJobStore,
        upload_dir: Path,
        mock_provider: MockModelProvider,
    ) -> None:
        await store.save_artifact(make_document())
        job = await job_store.enqueue("doc-1")
        await job_store.claim_next()
        queue = _queue(store, job_store, upload_dir, mock_provider)

        await queue.start()
        try:
            for _ in range(200):
                current = await job_store.get_job(job.id)
                if current.status == JobStatus.DONE:
                    break
                await asyncio.sleep(0.05)
        finally:
            await queue.stop()

        assert current.status == JobStatus.DONE
        assert current.attempts == 2
