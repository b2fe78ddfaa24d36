"""Orchestrator for the artifact ingestion pipeline.

Pipeline stages: **extract -> (metadata) -> chunk -> embed -> store -> (graph)**.

The :class:`IngestionService` coordinates its collaborators (file storage,
extractor, chunker, model provider, store, graph extractor) without any of
them knowing about each other.  Documents and articles share one flow:

    1. TextExtractor      -- file bytes or HTML body -> page text
    2. ModelProviderFactory -- the organization's current backend
    3. IModelProvider     -- AI title/summary/tags (documents only)
    4. Chunker            -- ~400-token paragraph windows
    5. IModelProvider     -- one embedding per chunk, 4 in flight
    6. IArtifactStore     -- chunks replace the previous generation wholesale
    7. GraphExtractor     -- entities/relationships (articles, best-effort)

Each step appends to the artifact's durable progress log.  Any failure
before completion moves the artifact to ``failed`` with the error message
recorded verbatim; the run can be re-triggered at any time.

Runs for the same artifact are serialized by a per-artifact lock.
"""

from __future__ import annotations

import math

import structlog

from kbrag.interfaces.artifact_store import IArtifactStore
from kbrag.interfaces.file_storage import IFileStorage
from kbrag.interfaces.model_provider import IModelProvider
from kbrag.models.artifact import Artifact, ArtifactKind, ProcessingStatus, ProgressEntry
from kbrag.models.rag import ExtractedText, IngestionOutcome, TextChunk, UsageAction, UsageEntry
from kbrag.providers.model.factory import ModelProviderFactory
from kbrag.services.ingestion.chunker import Chunker
from kbrag.services.ingestion.extractor import EMPTY_ARTICLE_TEXT, TextExtractor, strip_html
from kbrag.services.ingestion.graph_extractor import GraphExtractor
from kbrag.utils.concurrency import KeyedLocks, throttled_gather
from kbrag.utils.errors import ArtifactNotFoundError, KnowledgeBaseError

logger = structlog.get_logger(logger_name=__name__)

MSG_START = "Starting processing..."
MSG_EXTRACT = "Extracting text..."
MSG_METADATA = "Generating title, summary and tags with AI..."
MSG_CHUNK = "Splitting text into indexed sections..."
MSG_FINALIZE = "Finalizing and saving results..."
MSG_GRAPH = "Extracting knowledge-graph entities and relationships..."
MSG_DONE = "Processing complete!"


def _error_message(exc: BaseException) -> str:
    if isinstance(exc, KnowledgeBaseError):
        return exc.message
    return str(exc) or "Unknown processing error"


class ProgressRecorder:
    """Appends progress entries for one artifact."""

    def __init__(self, store: IArtifactStore, artifact_id: str) -> None:
        self._store = store
        self._artifact_id = artifact_id

    async def log(self, message: str, progress: int) -> None:
        await self._store.append_progress(
            self._artifact_id,
            ProgressEntry(message=message, progress=progress),
            ProcessingStatus.PROCESSING,
        )


class IngestionService:
    """Runs the ingestion pipeline for one artifact at a time per artifact id.

    Parameters
    ----------
    store:
        Artifact, chunk and graph persistence.
    provider_factory:
        Resolves the organization's model provider on every run.
    file_storage:
        Source of uploaded document bytes.
    extractor:
        Turns bytes or HTML into page text.
    chunker:
        Splits page text into chunks.
    graph_extractor:
        Article knowledge-graph extraction; ``None`` disables the step.
    embedding_concurrency:
        Embedding requests in flight per run.
    metadata_max_chars:
        Characters of extracted text sent for document metadata.
    """

    def __init__(
        self,
        store: IArtifactStore,
        provider_factory: ModelProviderFactory,
        file_storage: IFileStorage,
        extractor: TextExtractor | None = None,
        chunker: Chunker | None = None,
        graph_extractor: GraphExtractor | None = None,
        embedding_concurrency: int = 4,
        metadata_max_chars: int = 30000,
    ) -> None:
        self._store = store
        self._provider_factory = provider_factory
        self._file_storage = file_storage
        self._extractor = extractor or TextExtractor()
        self._chunker = chunker or Chunker()
        self._graph_extractor = graph_extractor
        self._embedding_concurrency = embedding_concurrency
        self._metadata_max_chars = metadata_max_chars
        self._locks = KeyedLocks()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def is_running(self, artifact_id: str) -> bool:
        """Return ``True`` while a run for *artifact_id* holds the lock."""
        return self._locks.is_locked(artifact_id)

    async def process(self, artifact_id: str) -> IngestionOutcome:
        """Run the full pipeline for *artifact_id*.

        Pipeline failures are recorded on the artifact and returned as a
        ``failed`` outcome rather than raised.

        Raises
        ------
        ArtifactNotFoundError
            If no artifact with this id exists.
        """
        async with self._locks.hold(artifact_id):
            artifact = await self._store.get_artifact(artifact_id)
            if artifact is None:
                raise ArtifactNotFoundError(message=f"Artifact {artifact_id} not found")
            return await self._run(artifact)

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    async def _run(self, artifact: Artifact) -> IngestionOutcome:
        progress = ProgressRecorder(self._store, artifact.id)
        logger.info("ingestion_started", artifact_id=artifact.id, kind=artifact.kind.value)
        try:
            await progress.log(MSG_START, 5)
        except Exception as exc:  # noqa: BLE001
            logger.warning("progress_log_failed", artifact_id=artifact.id, error=str(exc))

        entity_count = relationship_count = 0
        try:
            await progress.log(MSG_EXTRACT, 15)
            extracted = await self._extract(artifact)

            provider = await self._provider_factory.for_organization(artifact.organization_id)

            if artifact.kind == ArtifactKind.DOCUMENT:
                await progress.log(MSG_METADATA, 30)
                metadata = await provider.generate_document_metadata(
                    artifact.file_name,
                    text=extracted.full_text[: self._metadata_max_chars],
                )
                await self._store.update_document_metadata(artifact.id, metadata)

            await self._store.set_embedding_model(artifact.id, provider.embedding_model)

            await progress.log(MSG_CHUNK, 40)
            chunks = self._chunker.chunk(extracted.pages)
            logger.info("chunks_created", artifact_id=artifact.id, count=len(chunks))

            removed = await self._store.delete_chunks(artifact.id)
            if artifact.kind == ArtifactKind.ARTICLE:
                await self._store.delete_graph(artifact.id)
            if removed:
                logger.info("previous_chunks_removed", artifact_id=artifact.id, count=removed)

            await self._embed_and_store(provider, artifact, chunks, progress)

            await progress.log(MSG_FINALIZE, 90)

            if artifact.kind == ArtifactKind.ARTICLE and self._graph_extractor is not None:
                await progress.log(MSG_GRAPH, 95)
                entity_count, relationship_count = await self._extract_graph(provider, artifact)

            # The fallback wrapper may have switched embedding models mid-run.
            await self._store.set_embedding_model(artifact.id, provider.embedding_model)
            await self._store.mark_completed(artifact.id, ProgressEntry(message=MSG_DONE, progress=100))
        except Exception as exc:  # noqa: BLE001
            return await self._fail(artifact, exc)

        await self._record_usage(artifact, provider, chunks)
        logger.info(
            "ingestion_completed",
            artifact_id=artifact.id,
            chunks=len(chunks),
            provider=provider.provider_name,
            embedding_model=provider.embedding_model,
        )
        return IngestionOutcome(
            artifact_id=artifact.id,
            status=ProcessingStatus.COMPLETED,
            chunk_count=len(chunks),
            entity_count=entity_count,
            relationship_count=relationship_count,
            embedding_model=provider.embedding_model,
        )

    async def _extract(self, artifact: Artifact) -> ExtractedText:
        if artifact.kind == ArtifactKind.ARTICLE:
            return self._extractor.extract_article(artifact.title, artifact.body)

        data = await self._file_storage.read(artifact.file_path)
        extracted = self._extractor.extract(
            data, artifact.mime_type, artifact.file_name, artifact.file_size
        )
        logger.info(
            "text_extracted",
            artifact_id=artifact.id,
            pages=extracted.page_count,
            chars=len(extracted.full_text),
        )
        return extracted

    async def _embed_and_store(
        self,
        provider: IModelProvider,
        artifact: Artifact,
        chunks: list[TextChunk],
        progress: ProgressRecorder,
    ) -> None:
        total = len(chunks)
        next_version = artifact.embedding_version + 1
        processed = 0

        async def _one(chunk: TextChunk) -> None:
            nonlocal processed
            if processed == 0 or processed == total - 1 or processed % 3 == 0:
                await progress.log(
                    f"Generating embeddings (part {processed + 1}/{total})...",
                    40 + math.floor(processed / total * 40),
                )
            embedding = await provider.generate_embedding(chunk.content)
            await self._store.insert_chunk(artifact.id, chunk, embedding, next_version)
            processed += 1

        await throttled_gather([_one(c) for c in chunks], limit=self._embedding_concurrency)

    async def _extract_graph(
        self,
        provider: IModelProvider,
        artifact: Artifact,
    ) -> tuple[int, int]:
        text = strip_html(artifact.body) or EMPTY_ARTICLE_TEXT
        try:
            return await self._graph_extractor.extract(provider, artifact.id, text)
        except Exception as exc:  # noqa: BLE001
            logger.error("graph_extraction_failed", artifact_id=artifact.id, error=str(exc))
            return 0, 0

    async def _fail(self, artifact: Artifact, exc: BaseException) -> IngestionOutcome:
        message = _error_message(exc)
        logger.error(
            "ingestion_failed",
            artifact_id=artifact.id,
            error=message,
            error_type=type(exc).__name__,
        )
        await self._store.mark_failed(
            artifact.id,
            message,
            ProgressEntry(message=f"Error: {message}", progress=0),
        )
        return IngestionOutcome(
            artifact_id=artifact.id,
            status=ProcessingStatus.FAILED,
            error=message,
        )

    async def _record_usage(
        self,
        artifact: Artifact,
        provider: IModelProvider,
        chunks: list[TextChunk],
    ) -> None:
        entry = UsageEntry(
            organization_id=artifact.organization_id,
            user_id=artifact.author_id,
            action=UsageAction.AUTO_TAG,
            tokens_used=sum(c.token_count for c in chunks) * 2,
            model=provider.embedding_model,
        )
        try:
            await self._store.record_usage(entry)
        except Exception as exc:  # noqa: BLE001
            logger.warning("usage_log_failed", artifact_id=artifact.id, error=str(exc))
