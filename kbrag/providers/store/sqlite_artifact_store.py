"""SQLite-backed artifact, chunk and knowledge-graph store.

Uses aiosqlite for async access.  Every method opens its own short-lived
connection against the database file, so one store instance can be shared
by the API, the ingestion workers and the CLI.

Schema:
    organizations       -- provider config + cross-division flag
    divisions           -- division display names
    artifacts           -- documents and articles with processing state
    chunks              -- chunk text, page range and embedding (JSON)
    graph_entities      -- article knowledge-graph nodes
    graph_relationships -- article knowledge-graph edges
    usage_logs          -- best-effort AI usage audit trail

The progress log is a JSON array column appended with ``json_insert`` in a
single ``UPDATE`` so concurrent writers never lose entries.
"""

from __future__ import annotations

import json
import uuid
from pathlib import Path
from typing import Any

import aiosqlite
import structlog

from kbrag.interfaces.artifact_store import IArtifactStore
from kbrag.models.artifact import (
    Artifact,
    ArtifactKind,
    ProcessingStatus,
    ProgressEntry,
)
from kbrag.models.identity import AccessScope, Organization
from kbrag.models.provider import DocumentMetadata, ProviderConfig
from kbrag.models.rag import (
    ChunkCandidate,
    GraphEntity,
    GraphRelationship,
    SearchResult,
    SearchSource,
    TextChunk,
    UsageEntry,
)
from kbrag.providers.store.scoping import SqlFragment, kind_predicate, scope_predicate

logger = structlog.get_logger(logger_name=__name__)

_LEXICAL_BASE_SCORE = 0.5
_EXCERPT_LENGTH = 200

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_CREATE_TABLES_SQL = (
    """
    CREATE TABLE IF NOT EXISTS organizations (
        id                      TEXT PRIMARY KEY,
        name                    TEXT NOT NULL DEFAULT '',
        cross_division_enabled  INTEGER NOT NULL DEFAULT 0,
        provider_config         TEXT NOT NULL DEFAULT '{}'
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS divisions (
        id               TEXT PRIMARY KEY,
        organization_id  TEXT NOT NULL,
        name             TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS artifacts (
        id                 TEXT PRIMARY KEY,
        kind               TEXT NOT NULL,
        organization_id    TEXT NOT NULL,
        division_id        TEXT,
        title              TEXT NOT NULL DEFAULT '',
        file_name          TEXT NOT NULL DEFAULT '',
        file_path          TEXT NOT NULL DEFAULT '',
        mime_type          TEXT NOT NULL DEFAULT '',
        file_size          INTEGER NOT NULL DEFAULT 0,
        body               TEXT NOT NULL DEFAULT '',
        author_id          TEXT,
        ai_title           TEXT,
        ai_summary         TEXT,
        ai_tags            TEXT NOT NULL DEFAULT '[]',
        status             TEXT NOT NULL DEFAULT 'unprocessed',
        processing_log     TEXT NOT NULL DEFAULT '[]',
        processing_error   TEXT,
        is_processed       INTEGER NOT NULL DEFAULT 0,
        embedding_model    TEXT,
        embedding_version  INTEGER NOT NULL DEFAULT 0,
        created_at         TEXT NOT NULL DEFAULT (datetime('now')),
        updated_at         TEXT NOT NULL DEFAULT (datetime('now'))
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS chunks (
        id                 TEXT PRIMARY KEY,
        artifact_id        TEXT NOT NULL,
        chunk_index        INTEGER NOT NULL,
        content            TEXT NOT NULL,
        token_count        INTEGER NOT NULL DEFAULT 0,
        page_start         INTEGER NOT NULL DEFAULT 1,
        page_end           INTEGER NOT NULL DEFAULT 1,
        embedding          TEXT,
        embedding_version  INTEGER NOT NULL DEFAULT 0,
        created_at         TEXT NOT NULL DEFAULT (datetime('now'))
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS graph_entities (
        id           TEXT PRIMARY KEY,
        artifact_id  TEXT NOT NULL,
        name         TEXT NOT NULL,
        type         TEXT NOT NULL DEFAULT 'CONCEPT',
        description  TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS graph_relationships (
        id                TEXT PRIMARY KEY,
        artifact_id       TEXT NOT NULL,
        source_entity_id  TEXT NOT NULL,
        target_entity_id  TEXT NOT NULL,
        relationship      TEXT NOT NULL DEFAULT 'RELATED_TO',
        description       TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS usage_logs (
        id               INTEGER PRIMARY KEY AUTOINCREMENT,
        organization_id  TEXT NOT NULL,
        user_id          TEXT,
        action_type      TEXT NOT NULL,
        tokens_used      INTEGER NOT NULL DEFAULT 0,
        model_used       TEXT NOT NULL DEFAULT '',
        created_at       TEXT NOT NULL DEFAULT (datetime('now'))
    )
    """,
)

_CREATE_INDICES_SQL = (
    "CREATE INDEX IF NOT EXISTS idx_artifacts_org ON artifacts (organization_id, is_processed)",
    "CREATE INDEX IF NOT EXISTS idx_artifacts_division ON artifacts (division_id)",
    "CREATE UNIQUE INDEX IF NOT EXISTS idx_chunks_artifact ON chunks (artifact_id, chunk_index)",
    "CREATE INDEX IF NOT EXISTS idx_entities_artifact ON graph_entities (artifact_id)",
    "CREATE INDEX IF NOT EXISTS idx_relationships_artifact ON graph_relationships (artifact_id)",
)

# ---------------------------------------------------------------------------
# Statements
# ---------------------------------------------------------------------------

_UPSERT_ORGANIZATION_SQL = """
INSERT INTO organizations (id, name, cross_division_enabled, provider_config)
VALUES (?, ?, ?, ?)
ON CONFLICT(id) DO UPDATE SET
    name = excluded.name,
    cross_division_enabled = excluded.cross_division_enabled,
    provider_config = excluded.provider_config
"""

_UPSERT_DIVISION_SQL = """
INSERT INTO divisions (id, organization_id, name) VALUES (?, ?, ?)
ON CONFLICT(id) DO UPDATE SET organization_id = excluded.organization_id, name = excluded.name
"""

_UPSERT_ARTIFACT_SQL = """
INSERT INTO artifacts (
    id, kind, organization_id, division_id, title, file_name, file_path,
    mime_type, file_size, body, author_id, ai_title, ai_summary, ai_tags,
    status, processing_log, processing_error, is_processed, embedding_model,
    embedding_version
) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
ON CONFLICT(id) DO UPDATE SET
    kind = excluded.kind,
    organization_id = excluded.organization_id,
    division_id = excluded.division_id,
    title = excluded.title,
    file_name = excluded.file_name,
    file_path = excluded.file_path,
    mime_type = excluded.mime_type,
    file_size = excluded.file_size,
    body = excluded.body,
    author_id = excluded.author_id,
    updated_at = datetime('now')
"""

_SELECT_ARTIFACT_SQL = """
SELECT a.*, d.name AS division_name
FROM artifacts a
LEFT JOIN divisions d ON d.id = a.division_id
WHERE a.id = ?
"""

_APPEND_PROGRESS_SQL = """
UPDATE artifacts
SET processing_log = json_insert(COALESCE(processing_log, '[]'), '$[#]', json(?)),
    status = ?,
    updated_at = datetime('now')
WHERE id = ?
"""

_MARK_COMPLETED_SQL = """
UPDATE artifacts
SET processing_log = json_insert(COALESCE(processing_log, '[]'), '$[#]', json(?)),
    status = 'completed',
    is_processed = 1,
    processing_error = NULL,
    embedding_version = embedding_version + 1,
    updated_at = datetime('now')
WHERE id = ?
"""

_MARK_FAILED_SQL = """
UPDATE artifacts
SET processing_log = json_insert(COALESCE(processing_log, '[]'), '$[#]', json(?)),
    status = 'failed',
    is_processed = 0,
    processing_error = ?,
    updated_at = datetime('now')
WHERE id = ?
"""

_INSERT_CHUNK_SQL = """
INSERT INTO chunks (
    id, artifact_id, chunk_index, content, token_count, page_start, page_end,
    embedding, embedding_version
) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
"""

_SELECT_CANDIDATES_SQL = """
SELECT c.id AS chunk_id, c.artifact_id, c.chunk_index, c.content,
       c.page_start, c.page_end, c.embedding,
       a.kind, a.title, a.ai_title, a.file_name, d.name AS division_name
FROM chunks c
JOIN artifacts a ON a.id = c.artifact_id
LEFT JOIN divisions d ON d.id = a.division_id
WHERE c.embedding IS NOT NULL AND {where}
ORDER BY c.artifact_id, c.chunk_index
"""

_LEXICAL_SEARCH_SQL = """
SELECT a.id, a.kind, a.title, a.ai_title, a.file_name, a.ai_summary,
       d.name AS division_name,
       (SELECT c.content FROM chunks c
        WHERE c.artifact_id = a.id AND LOWER(c.content) LIKE ? ESCAPE '\\'
        ORDER BY c.chunk_index LIMIT 1) AS matched_content
FROM artifacts a
LEFT JOIN divisions d ON d.id = a.division_id
WHERE {where}
  AND (
      LOWER(a.title) LIKE ? ESCAPE '\\'
      OR LOWER(COALESCE(a.ai_title, '')) LIKE ? ESCAPE '\\'
      OR LOWER(COALESCE(a.ai_summary, '')) LIKE ? ESCAPE '\\'
      OR LOWER(a.file_name) LIKE ? ESCAPE '\\'
      OR EXISTS (
          SELECT 1 FROM chunks c
          WHERE c.artifact_id = a.id AND LOWER(c.content) LIKE ? ESCAPE '\\'
      )
  )
ORDER BY a.created_at DESC
LIMIT ?
"""


def _like_pattern(query: str) -> str:
    """Lower-cased ``%query%`` with LIKE wildcards escaped."""
    escaped = query.lower().replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


def _display_title(row: aiosqlite.Row) -> str:
    return row["ai_title"] or row["title"] or row["file_name"] or ""


class SQLiteArtifactStore(IArtifactStore):
    """Artifact persistence in a local SQLite database.

    Parameters
    ----------
    db_path:
        Path to the database file.  Parent directories are created on
        :meth:`initialize`.
    """

    def __init__(self, db_path: str | Path) -> None:
        self._db_path = Path(db_path)

    async def initialize(self) -> None:
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        async with aiosqlite.connect(str(self._db_path)) as db:
            await db.execute("PRAGMA journal_mode=WAL")
            for table_sql in _CREATE_TABLES_SQL:
                await db.execute(table_sql)
            for idx_sql in _CREATE_INDICES_SQL:
                await db.execute(idx_sql)
            await db.commit()
        logger.info("artifact_store_initialized", path=str(self._db_path))

    # ------------------------------------------------------------------
    # Collaborator records
    # ------------------------------------------------------------------

    async def save_organization(self, organization: Organization) -> None:
        async with aiosqlite.connect(str(self._db_path)) as db:
            await db.execute(
                _UPSERT_ORGANIZATION_SQL,
                (
                    organization.id,
                    organization.name,
                    int(organization.cross_division_enabled),
                    organization.provider_config.model_dump_json(),
                ),
            )
            await db.commit()

    async def get_organization(self, organization_id: str) -> Organization | None:
        async with aiosqlite.connect(str(self._db_path)) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(
                "SELECT id, name, cross_division_enabled, provider_config "
                "FROM organizations WHERE id = ?",
                (organization_id,),
            )
            row = await cursor.fetchone()
        if row is None:
            return None
        return Organization(
            id=row["id"],
            name=row["name"],
            cross_division_enabled=bool(row["cross_division_enabled"]),
            provider_config=ProviderConfig.model_validate_json(row["provider_config"] or "{}"),
        )

    async def save_division(self, division_id: str, organization_id: str, name: str) -> None:
        async with aiosqlite.connect(str(self._db_path)) as db:
            await db.execute(_UPSERT_DIVISION_SQL, (division_id, organization_id, name))
            await db.commit()

    async def save_artifact(self, artifact: Artifact) -> None:
        """Insert a new artifact, or update the CRUD-owned fields of an existing one.

        Processing fields of an existing row are left alone; only the
        pipeline changes them.
        """
        log_json = json.dumps([entry.model_dump() for entry in artifact.progress_log])
        async with aiosqlite.connect(str(self._db_path)) as db:
            await db.execute(
                _UPSERT_ARTIFACT_SQL,
                (
                    artifact.id,
                    artifact.kind.value,
                    artifact.organization_id,
                    artifact.division_id,
                    artifact.title,
                    artifact.file_name,
                    artifact.file_path,
                    artifact.mime_type,
                    artifact.file_size,
                    artifact.body,
                    artifact.author_id,
                    artifact.ai_title,
                    artifact.ai_summary,
                    json.dumps(artifact.ai_tags),
                    artifact.status.value,
                    log_json,
                    artifact.processing_error,
                    int(artifact.is_processed),
                    artifact.embedding_model,
                    artifact.embedding_version,
                ),
            )
            await db.commit()

    async def get_artifact(self, artifact_id: str) -> Artifact | None:
        async with aiosqlite.connect(str(self._db_path)) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(_SELECT_ARTIFACT_SQL, (artifact_id,))
            row = await cursor.fetchone()
        if row is None:
            return None
        return self._row_to_artifact(row)

    # ------------------------------------------------------------------
    # Processing state
    # ------------------------------------------------------------------

    async def append_progress(
        self,
        artifact_id: str,
        entry: ProgressEntry,
        status: ProcessingStatus = ProcessingStatus.PROCESSING,
    ) -> None:
        async with aiosqlite.connect(str(self._db_path)) as db:
            await db.execute(
                _APPEND_PROGRESS_SQL,
                (entry.model_dump_json(), status.value, artifact_id),
            )
            await db.commit()
        logger.debug("progress_appended", artifact_id=artifact_id, progress=entry.progress, message=entry.message)

    async def set_embedding_model(self, artifact_id: str, model: str) -> None:
        async with aiosqlite.connect(str(self._db_path)) as db:
            await db.execute(
                "UPDATE artifacts SET embedding_model = ?, updated_at = datetime('now') WHERE id = ?",
                (model, artifact_id),
            )
            await db.commit()

    async def update_document_metadata(self, artifact_id: str, metadata: DocumentMetadata) -> None:
        async with aiosqlite.connect(str(self._db_path)) as db:
            await db.execute(
                "UPDATE artifacts SET ai_title = ?, ai_summary = ?, ai_tags = ?, "
                "updated_at = datetime('now') WHERE id = ?",
                (metadata.title, metadata.summary, json.dumps(metadata.tags), artifact_id),
            )
            await db.commit()

    async def mark_completed(self, artifact_id: str, entry: ProgressEntry) -> None:
        async with aiosqlite.connect(str(self._db_path)) as db:
            await db.execute(_MARK_COMPLETED_SQL, (entry.model_dump_json(), artifact_id))
            await db.commit()

    async def mark_failed(self, artifact_id: str, error: str, entry: ProgressEntry) -> None:
        async with aiosqlite.connect(str(self._db_path)) as db:
            await db.execute(_MARK_FAILED_SQL, (entry.model_dump_json(), error, artifact_id))
            await db.commit()

    # ------------------------------------------------------------------
    # Chunks
    # ------------------------------------------------------------------

    async def delete_chunks(self, artifact_id: str) -> int:
        async with aiosqlite.connect(str(self._db_path)) as db:
            cursor = await db.execute("DELETE FROM chunks WHERE artifact_id = ?", (artifact_id,))
            await db.commit()
            return cursor.rowcount

    async def insert_chunk(
        self,
        artifact_id: str,
        chunk: TextChunk,
        embedding: list[float],
        embedding_version: int,
    ) -> str:
        chunk_id = str(uuid.uuid4())
        async with aiosqlite.connect(str(self._db_path)) as db:
            await db.execute(
                _INSERT_CHUNK_SQL,
                (
                    chunk_id,
                    artifact_id,
                    chunk.chunk_index,
                    chunk.content,
                    chunk.token_count,
                    chunk.page_start,
                    chunk.page_end,
                    json.dumps(embedding),
                    embedding_version,
                ),
            )
            await db.commit()
        return chunk_id

    async def count_chunks(self, artifact_id: str) -> int:
        async with aiosqlite.connect(str(self._db_path)) as db:
            cursor = await db.execute("SELECT COUNT(*) FROM chunks WHERE artifact_id = ?", (artifact_id,))
            row = await cursor.fetchone()
        return int(row[0]) if row else 0

    async def fetch_chunk_candidates(
        self,
        scope: AccessScope | None,
        kinds: tuple[ArtifactKind, ...],
        artifact_id: str | None = None,
    ) -> list[ChunkCandidate]:
        if scope is None and artifact_id is None:
            raise ValueError("Unscoped chunk retrieval requires an artifact_id")

        where = kind_predicate(kinds)
        if scope is not None:
            where = scope_predicate(scope) & where
        if artifact_id is not None:
            where = where & SqlFragment("a.id = ?", [artifact_id])

        async with aiosqlite.connect(str(self._db_path)) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(_SELECT_CANDIDATES_SQL.format(where=where.sql), where.params)
            rows = await cursor.fetchall()

        return [
            ChunkCandidate(
                chunk_id=row["chunk_id"],
                artifact_id=row["artifact_id"],
                artifact_kind=ArtifactKind(row["kind"]),
                title=_display_title(row),
                content=row["content"],
                chunk_index=row["chunk_index"],
                page_start=row["page_start"],
                page_end=row["page_end"],
                division_name=row["division_name"],
                embedding=json.loads(row["embedding"]),
            )
            for row in rows
        ]

    async def lexical_search(
        self,
        scope: AccessScope,
        query: str,
        limit: int = 10,
    ) -> list[SearchResult]:
        if not query.strip():
            return []
        pattern = _like_pattern(query)
        where = scope_predicate(scope) & kind_predicate((ArtifactKind.DOCUMENT, ArtifactKind.ARTICLE))
        params: list[Any] = [pattern, *where.params, pattern, pattern, pattern, pattern, pattern, limit]

        async with aiosqlite.connect(str(self._db_path)) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(_LEXICAL_SEARCH_SQL.format(where=where.sql), params)
            rows = await cursor.fetchall()

        results: list[SearchResult] = []
        for row in rows:
            excerpt = row["ai_summary"] or row["matched_content"] or ""
            results.append(
                SearchResult(
                    id=row["id"],
                    kind=ArtifactKind(row["kind"]),
                    title=_display_title(row),
                    excerpt=excerpt[:_EXCERPT_LENGTH],
                    score=_LEXICAL_BASE_SCORE,
                    source=SearchSource.FULLTEXT,
                    division_name=row["division_name"],
                )
            )
        return results

    # ------------------------------------------------------------------
    # Knowledge graph
    # ------------------------------------------------------------------

    async def delete_graph(self, artifact_id: str) -> None:
        async with aiosqlite.connect(str(self._db_path)) as db:
            await db.execute("DELETE FROM graph_relationships WHERE artifact_id = ?", (artifact_id,))
            await db.execute("DELETE FROM graph_entities WHERE artifact_id = ?", (artifact_id,))
            await db.commit()

    async def insert_entity(self, artifact_id: str, entity: GraphEntity) -> str:
        entity_id = entity.id or str(uuid.uuid4())
        async with aiosqlite.connect(str(self._db_path)) as db:
            await db.execute(
                "INSERT INTO graph_entities (id, artifact_id, name, type, description) VALUES (?, ?, ?, ?, ?)",
                (entity_id, artifact_id, entity.name, entity.type, entity.description),
            )
            await db.commit()
        return entity_id

    async def insert_relationship(
        self,
        artifact_id: str,
        source_entity_id: str,
        target_entity_id: str,
        relationship: str,
        description: str | None = None,
    ) -> str:
        relationship_id = str(uuid.uuid4())
        async with aiosqlite.connect(str(self._db_path)) as db:
            await db.execute(
                "INSERT INTO graph_relationships "
                "(id, artifact_id, source_entity_id, target_entity_id, relationship, description) "
                "VALUES (?, ?, ?, ?, ?, ?)",
                (relationship_id, artifact_id, source_entity_id, target_entity_id, relationship, description),
            )
            await db.commit()
        return relationship_id

    async def get_graph(
        self,
        artifact_id: str,
        entity_limit: int = 15,
        relationship_limit: int = 30,
    ) -> tuple[list[GraphEntity], list[GraphRelationship]]:
        async with aiosqlite.connect(str(self._db_path)) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(
                "SELECT id, name, type, description FROM graph_entities "
                "WHERE artifact_id = ? ORDER BY rowid LIMIT ?",
                (artifact_id, entity_limit),
            )
            entity_rows = await cursor.fetchall()
            cursor = await db.execute(
                "SELECT s.name AS source_name, t.name AS target_name, r.relationship, r.description "
                "FROM graph_relationships r "
                "JOIN graph_entities s ON s.id = r.source_entity_id "
                "JOIN graph_entities t ON t.id = r.target_entity_id "
                "WHERE r.artifact_id = ? ORDER BY r.rowid LIMIT ?",
                (artifact_id, relationship_limit),
            )
            relationship_rows = await cursor.fetchall()

        entities = [
            GraphEntity(id=r["id"], name=r["name"], type=r["type"], description=r["description"])
            for r in entity_rows
        ]
        relationships = [
            GraphRelationship(
                source_name=r["source_name"],
                target_name=r["target_name"],
                relationship=r["relationship"],
                description=r["description"],
            )
            for r in relationship_rows
        ]
        return entities, relationships

    # ------------------------------------------------------------------
    # Usage
    # ------------------------------------------------------------------

    async def record_usage(self, entry: UsageEntry) -> None:
        async with aiosqlite.connect(str(self._db_path)) as db:
            await db.execute(
                "INSERT INTO usage_logs (organization_id, user_id, action_type, tokens_used, model_used) "
                "VALUES (?, ?, ?, ?, ?)",
                (entry.organization_id, entry.user_id, entry.action.value, entry.tokens_used, entry.model),
            )
            await db.commit()

    async def list_usage(self, organization_id: str) -> list[dict[str, Any]]:
        """Return the organization's usage entries, oldest first."""
        async with aiosqlite.connect(str(self._db_path)) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(
                "SELECT organization_id, user_id, action_type, tokens_used, model_used, created_at "
                "FROM usage_logs WHERE organization_id = ? ORDER BY id",
                (organization_id,),
            )
            rows = await cursor.fetchall()
        return [dict(r) for r in rows]

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @staticmethod
    def _row_to_artifact(row: aiosqlite.Row) -> Artifact:
        return Artifact(
            id=row["id"],
            kind=ArtifactKind(row["kind"]),
            organization_id=row["organization_id"],
            division_id=row["division_id"],
            division_name=row["division_name"],
            title=row["title"],
            file_name=row["file_name"],
            file_path=row["file_path"],
            mime_type=row["mime_type"],
            file_size=row["file_size"],
            ai_title=row["ai_title"],
            ai_summary=row["ai_summary"],
            ai_tags=json.loads(row["ai_tags"] or "[]"),
            body=row["body"],
            author_id=row["author_id"],
            status=ProcessingStatus(row["status"]),
            progress_log=[ProgressEntry(**e) for e in json.loads(row["processing_log"] or "[]")],
            processing_error=row["processing_error"],
            is_processed=bool(row["is_processed"]),
            embedding_model=row["embedding_model"],
            embedding_version=row["embedding_version"],
        )
