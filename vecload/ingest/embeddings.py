import time
from abc import ABC, abstractmethod
from collections.abc import Sequence

import structlog

from .documents import Document, EmbeddingOutcome
from .readiness import ReadinessStatus

logger = structlog.get_logger()


def narrow_to_float32(values: Sequence[float]) -> list[float]:
    """
    Narrows double precision components to single precision.

    The result holds Python floats whose values are exactly representable as
    float32, which is the element width the vector store expects.
    """
    # Note: deferred import to avoid import overhead
    import numpy as np

    return np.asarray(values, dtype=np.float32).tolist()


class Embedder(ABC):
    """
    Abstract base class for an Embedder.

    An embedder turns one document into an EmbeddingOutcome. Failures never
    raise: they are reported as NotEmbedded so one document can't abort a run.
    """

    @abstractmethod
    async def embed(self, document: Document) -> EmbeddingOutcome:
        """
        Embeds a single document.

        Args:
            document (Document): The document to embed.

        Returns:
            EmbeddingOutcome: Embedded with the vector attached, or
            NotEmbedded with an empty vector.
        """

    @abstractmethod
    async def health_check(self) -> ReadinessStatus:
        """
        Asks the inference service whether it is ready to embed.

        Raises:
            FatalStartupError: If the service can't be reached at all.
        """

    async def setup(self) -> None:  # noqa: B027 empty on purpose
        """
        Setup the embedder
        """

    async def close(self) -> None:  # noqa: B027 empty on purpose
        """
        Release resources held by the embedder
        """


class EmbeddingStats:
    """
    Tracks embedding request statistics for one embedder.

    Attributes:
        total_request_time (float): The total time spent on embedding requests.
        total_requests (int): The number of requests made.
        failed_requests (int): The number of requests that produced no vector.
        wall_start (float): The time at which tracking started.
    """

    def __init__(self) -> None:
        self.total_request_time = 0.0
        self.total_requests = 0
        self.failed_requests = 0
        self.wall_start = time.perf_counter()

    def add_request_time(self, duration: float, succeeded: bool) -> None:
        self.total_request_time += duration
        self.total_requests += 1
        if not succeeded:
            self.failed_requests += 1

    def documents_per_second(self) -> float:
        return (
            self.total_requests / self.total_request_time
            if self.total_request_time > 0
            else 0
        )

    async def print_stats(self) -> None:
        await logger.adebug(
            "Embedding stats",
            total_request_time=self.total_request_time,
            wall_time=time.perf_counter() - self.wall_start,
            total_requests=self.total_requests,
            failed_requests=self.failed_requests,
            documents_per_second=self.documents_per_second(),
        )
