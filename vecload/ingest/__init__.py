from .buffer import BatchBuffer, BufferedPoint
from .destination import QdrantDestination
from .documents import Document, Embedded, EmbeddingOutcome, NotEmbedded, load_documents
from .errors import FatalStartupError, StoreError
from .pipeline import Pipeline
from .processing import IngestConfig
from .progress import ProgressTracker
from .readiness import ReadinessStatus, await_ready
from .worker import Worker

__all__ = [
    "BatchBuffer",
    "BufferedPoint",
    "Document",
    "Embedded",
    "EmbeddingOutcome",
    "FatalStartupError",
    "IngestConfig",
    "NotEmbedded",
    "Pipeline",
    "ProgressTracker",
    "QdrantDestination",
    "ReadinessStatus",
    "StoreError",
    "Worker",
    "await_ready",
    "load_documents",
]
