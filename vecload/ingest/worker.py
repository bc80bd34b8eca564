import asyncio
import traceback
from collections.abc import Sequence

import structlog

from .buffer import BatchBuffer
from .destination import QdrantDestination
from .documents import Document
from .embedders import LlamaCpp
from .embeddings import Embedder
from .errors import FatalStartupError
from .pipeline import Pipeline
from .processing import IngestConfig
from .progress import ProgressTracker
from .readiness import Sleep, await_ready

logger = structlog.get_logger()


class Worker:
    """
    Runs one ingest: waits for the inference service, prepares the
    collection, then pushes every document through the pipeline.

    Nothing is embedded before the inference service reports ready and the
    collection exists. `run` never raises; it returns the exception that
    stopped it, or None.
    """

    def __init__(
        self,
        config: IngestConfig,
        embedder: Embedder | None = None,
        destination: QdrantDestination | None = None,
        sleep: Sleep = asyncio.sleep,
    ):
        self.config = config
        self.embedder = embedder or LlamaCpp(
            base_url=config.inference.base_url,
            request_timeout=config.inference.request_timeout,
            health_timeout=config.inference.health_timeout,
        )
        self.destination = destination or QdrantDestination(config.store)
        self.sleep = sleep
        self.progress = ProgressTracker(log_every=config.processing.log_every)
        self.shutdown_requested = asyncio.Event()

    def request_graceful_shutdown(self) -> None:
        """
        Stop embedding new documents. Outcomes already produced are still
        stored, including the final partial batch. While still waiting for
        the inference service, the wait is abandoned and `run` returns a
        FatalStartupError.
        """
        self.shutdown_requested.set()

    async def _start(self) -> None:
        readiness = self.config.readiness
        await self.embedder.setup()
        await await_ready(
            self.embedder.health_check,
            initial_backoff=readiness.initial_backoff,
            increment=readiness.increment,
            max_attempts=readiness.max_attempts,
            max_wait=readiness.max_wait,
            sleep=self.sleep,
            stop=self.shutdown_requested,
        )
        await self.destination.setup()

    async def run(self, documents: Sequence[Document]) -> Exception | None:
        logger.debug("starting ingest worker", documents=len(documents))
        self.progress.total = len(documents)
        try:
            await self._start()
            pipeline = Pipeline(
                self.embedder,
                BatchBuffer(self.destination, self.config.processing.batch_size),
                progress=self.progress,
                queue_size=self.config.processing.queue_size,
                should_continue_processing_hook=lambda: (
                    not self.shutdown_requested.is_set()
                ),
            )
            await pipeline.run(documents)
        except FatalStartupError as e:
            logger.error("unable to start ingest", error=str(e))
            return e
        except Exception as e:
            for exception_line in traceback.format_exception(e):
                for line in exception_line.rstrip().split("\n"):
                    logger.debug(line)
            logger.error(f"unexpected error: {str(e)}")
            return e
        finally:
            await self.embedder.close()
            await self.destination.close()

        self.progress.log_summary()
        return None
