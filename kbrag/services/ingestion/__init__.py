"""Ingestion pipeline: extraction, chunking, embedding, graph, job queue."""

from kbrag.services.ingestion.chunker import Chunker, estimate_tokens
from kbrag.services.ingestion.extractor import TextExtractor, strip_html
from kbrag.services.ingestion.graph_extractor import GraphExtractor
from kbrag.services.ingestion.ingestion_service import IngestionService
from kbrag.services.ingestion.job_queue import IngestionJobQueue

__all__ = [
    "Chunker",
    "GraphExtractor",
    "IngestionJobQueue",
    "IngestionService",
    "TextExtractor",
    "estimate_tokens",
    "strip_html",
]
