"""Durable background queue for ingestion runs.

# ─── DESIGN ────────────────────────────────────────────────────────────
#
# IngestionJobQueue decouples pipeline lifetime from the HTTP request that
# triggered it:
#   - trigger() writes a durable job row and returns at once
#   - N worker tasks claim jobs atomically and run IngestionService.process
#   - a failed run goes back to pending until max_attempts is reached
#   - on start, jobs left 'running' by a dead process are re-queued
#
# Workers sleep on an asyncio.Event that trigger() sets, with a poll
# interval as the fallback for jobs written by another process (the CLI).
# ──────────────────────────────────────────────────────────────────────
"""

from __future__ import annotations

import asyncio
import contextlib

import structlog

from kbrag.interfaces.job_store import IJobStore
from kbrag.models.artifact import ProcessingStatus
from kbrag.models.rag import IngestionJob
from kbrag.services.ingestion.ingestion_service import IngestionService
from kbrag.utils.errors import IngestionError

logger = structlog.get_logger(logger_name=__name__)


class IngestionJobQueue:
    """Runs ingestion jobs from a durable store on background worker tasks.

    Parameters
    ----------
    job_store:
        Durable job table.
    ingestion_service:
        The shared pipeline runner.
    worker_count:
        Worker tasks started by :meth:`start`.
    max_attempts:
        Runs per job before it is marked ``failed``.
    poll_interval:
        Seconds an idle worker waits before checking the table again.
    """

    def __init__(
        self,
        job_store: IJobStore,
        ingestion_service: IngestionService,
        worker_count: int = 1,
        max_attempts: int = 3,
        poll_interval: float = 2.0,
    ) -> None:
        self._job_store = job_store
        self._ingestion_service = ingestion_service
        self._worker_count = max(1, worker_count)
        self._max_attempts = max(1, max_attempts)
        self._poll_interval = poll_interval
        self._wakeup = asyncio.Event()
        self._stopping = asyncio.Event()
        self._workers: list[asyncio.Task[None]] = []

    @property
    def running(self) -> bool:
        return bool(self._workers)

    # ─── Producer side ─────────────────────────────────────────────────

    async def trigger(self, artifact_id: str) -> IngestionJob:
        """Enqueue (or coalesce) an ingestion job and wake a worker."""
        job = await self._job_store.enqueue(artifact_id)
        self._wakeup.set()
        return job

    # ─── Worker lifecycle ──────────────────────────────────────────────

    async def start(self) -> None:
        """Recover stale jobs and start the worker tasks."""
        if self._workers:
            return
        await self._job_store.reset_stale()
        self._stopping.clear()
        self._workers = [
            asyncio.create_task(self._worker(i), name=f"ingestion-worker-{i}")
            for i in range(self._worker_count)
        ]
        logger.info("ingestion_workers_started", count=self._worker_count)

    async def stop(self) -> None:
        """Cancel the workers and wait for them to exit.

        A job interrupted here stays ``running`` and is re-queued by the
        next :meth:`start`.
        """
        if not self._workers:
            return
        self._stopping.set()
        self._wakeup.set()
        for task in self._workers:
            task.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers = []
        logger.info("ingestion_workers_stopped")

    async def run_once(self) -> IngestionJob | None:
        """Claim and run one pending job; return it, or ``None`` if the queue is empty."""
        job = await self._job_store.claim_next()
        if job is None:
            return None

        log = logger.bind(job_id=job.id, artifact_id=job.artifact_id, attempt=job.attempts)
        log.info("job_claimed")
        try:
            outcome = await self._ingestion_service.process(job.artifact_id)
            if outcome.status == ProcessingStatus.FAILED:
                raise IngestionError(message=outcome.error or "Ingestion failed")
        except Exception as exc:  # noqa: BLE001
            return await self._job_store.fail(job.id, str(exc), self._max_attempts)

        await self._job_store.complete(job.id)
        log.info("job_completed", chunks=outcome.chunk_count)
        return await self._job_store.get_job(job.id)

    async def drain(self) -> int:
        """Run jobs until none are pending; return how many runs happened."""
        runs = 0
        while await self.run_once() is not None:
            runs += 1
        return runs

    # ─── Internals ─────────────────────────────────────────────────────

    async def _worker(self, index: int) -> None:
        while not self._stopping.is_set():
            self._wakeup.clear()
            try:
                job = await self.run_once()
            except asyncio.CancelledError:
                raise
            except Exception as exc:  # noqa: BLE001
                logger.error("ingestion_worker_error", worker=index, error=str(exc))
                job = None

            if job is None:
                with contextlib.suppress(asyncio.TimeoutError):
                    await asyncio.wait_for(self._wakeup.wait(), timeout=self._poll_interval)
