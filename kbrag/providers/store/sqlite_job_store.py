"""SQLite-backed durable ingestion job table.

Jobs survive restarts: a job left ``running`` by a crashed worker is put
back to ``pending`` by :meth:`SQLiteJobStore.reset_stale` when the queue
starts, which gives at-least-once processing.  Enqueueing an artifact that
already has a pending job returns that job instead of creating another.
"""

from __future__ import annotations

import uuid
from pathlib import Path

import aiosqlite
import structlog

from kbrag.interfaces.job_store import IJobStore
from kbrag.models.rag import IngestionJob, JobStatus

logger = structlog.get_logger(logger_name=__name__)

_CREATE_TABLE_SQL = """
CREATE TABLE IF NOT EXISTS ingestion_jobs (
    id           TEXT PRIMARY KEY,
    artifact_id  TEXT NOT NULL,
    status       TEXT NOT NULL DEFAULT 'pending',
    attempts     INTEGER NOT NULL DEFAULT 0,
    last_error   TEXT,
    created_at   TEXT NOT NULL DEFAULT (strftime('%Y-%m-%d %H:%M:%f', 'now')),
    updated_at   TEXT NOT NULL DEFAULT (strftime('%Y-%m-%d %H:%M:%f', 'now'))
)
"""

_CREATE_INDEX_SQL = (
    "CREATE INDEX IF NOT EXISTS idx_jobs_status ON ingestion_jobs (status, created_at)"
)

_SELECT_COLUMNS = "id, artifact_id, status, attempts, last_error"

# Claim in one statement so two workers can never take the same job.
_CLAIM_SQL = f"""
UPDATE ingestion_jobs
SET status = 'running',
    attempts = attempts + 1,
    updated_at = strftime('%Y-%m-%d %H:%M:%f', 'now')
WHERE id = (
    SELECT id FROM ingestion_jobs
    WHERE status = 'pending'
    ORDER BY created_at, rowid
    LIMIT 1
)
RETURNING {_SELECT_COLUMNS}
"""


def _row_to_job(row: aiosqlite.Row) -> IngestionJob:
    return IngestionJob(
        id=row["id"],
        artifact_id=row["artifact_id"],
        status=JobStatus(row["status"]),
        attempts=row["attempts"],
        last_error=row["last_error"],
    )


class SQLiteJobStore(IJobStore):
    """Ingestion jobs in a SQLite table, usually the artifact store's file."""

    def __init__(self, db_path: str | Path) -> None:
        self._db_path = Path(db_path)

    async def initialize(self) -> None:
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        async with aiosqlite.connect(str(self._db_path)) as db:
            await db.execute(_CREATE_TABLE_SQL)
            await db.execute(_CREATE_INDEX_SQL)
            await db.commit()
        logger.info("job_store_initialized", path=str(self._db_path))

    async def enqueue(self, artifact_id: str) -> IngestionJob:
        async with aiosqlite.connect(str(self._db_path)) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(
                f"SELECT {_SELECT_COLUMNS} FROM ingestion_jobs "
                "WHERE artifact_id = ? AND status = 'pending' LIMIT 1",
                (artifact_id,),
            )
            existing = await cursor.fetchone()
            if existing is not None:
                logger.info("job_coalesced", artifact_id=artifact_id, job_id=existing["id"])
                return _row_to_job(existing)

            job_id = str(uuid.uuid4())
            await db.execute(
                "INSERT INTO ingestion_jobs (id, artifact_id) VALUES (?, ?)",
                (job_id, artifact_id),
            )
            await db.commit()

        logger.info("job_enqueued", artifact_id=artifact_id, job_id=job_id)
        return IngestionJob(id=job_id, artifact_id=artifact_id)

    async def claim_next(self) -> IngestionJob | None:
        async with aiosqlite.connect(str(self._db_path)) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(_CLAIM_SQL)
            rows = await cursor.fetchall()
            await db.commit()
        return _row_to_job(rows[0]) if rows else None

    async def complete(self, job_id: str) -> None:
        async with aiosqlite.connect(str(self._db_path)) as db:
            await db.execute(
                "UPDATE ingestion_jobs SET status = 'done', last_error = NULL, "
                "updated_at = strftime('%Y-%m-%d %H:%M:%f', 'now') WHERE id = ?",
                (job_id,),
            )
            await db.commit()

    async def fail(self, job_id: str, error: str, max_attempts: int) -> IngestionJob:
        async with aiosqlite.connect(str(self._db_path)) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(
                "UPDATE ingestion_jobs "
                "SET status = CASE WHEN attempts < ? THEN 'pending' ELSE 'failed' END, "
                "    last_error = ?, "
                "    updated_at = strftime('%Y-%m-%d %H:%M:%f', 'now') "
                f"WHERE id = ? RETURNING {_SELECT_COLUMNS}",
                (max_attempts, error, job_id),
            )
            rows = await cursor.fetchall()
            await db.commit()

        job = _row_to_job(rows[0])
        logger.warning(
            "job_attempt_failed",
            job_id=job_id,
            artifact_id=job.artifact_id,
            attempts=job.attempts,
            status=job.status.value,
            error=error,
        )
        return job

    async def reset_stale(self) -> int:
        async with aiosqlite.connect(str(self._db_path)) as db:
            cursor = await db.execute(
                "UPDATE ingestion_jobs SET status = 'pending', "
                "updated_at = strftime('%Y-%m-%d %H:%M:%f', 'now') WHERE status = 'running'"
            )
            await db.commit()
            count = cursor.rowcount
        if count:
            logger.info("stale_jobs_reset", count=count)
        return count

    async def get_job(self, job_id: str) -> IngestionJob | None:
        async with aiosqlite.connect(str(self._db_path)) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(
                f"SELECT {_SELECT_COLUMNS} FROM ingestion_jobs WHERE id = ?", (job_id,)
            )
            row = await cursor.fetchone()
        return _row_to_job(row) if row else None
