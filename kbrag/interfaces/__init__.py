"""Abstract interfaces (ABCs) for every swappable backend."""

from kbrag.interfaces.artifact_store import IArtifactStore
from kbrag.interfaces.file_storage import IFileStorage
from kbrag.interfaces.job_store import IJobStore
from kbrag.interfaces.model_provider import ChunkCallback, IModelProvider

__all__ = [
    "ChunkCallback",
    "IArtifactStore",
    "IFileStorage",
    "IJobStore",
    "IModelProvider",
]
