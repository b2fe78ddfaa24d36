"""SQLite persistence for artifacts, chunks, graphs, usage and jobs."""

from kbrag.providers.store.scoping import SqlFragment, kind_predicate, scope_predicate
from kbrag.providers.store.sqlite_artifact_store import SQLiteArtifactStore
from kbrag.providers.store.sqlite_job_store import SQLiteJobStore

__all__ = [
    "SQLiteArtifactStore",
    "SQLiteJobStore",
    "SqlFragment",
    "kind_predicate",
    "scope_predicate",
]
