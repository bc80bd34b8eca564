import asyncio
from collections.abc import Awaitable, Callable, Iterable

import structlog

from .buffer import BatchBuffer, BufferedPoint
from .channel import PipelineChannel
from .documents import Document, EmbeddingOutcome, NotEmbedded
from .embeddings import Embedder
from .errors import StoreError
from .progress import ProgressTracker

logger = structlog.get_logger()


class ConsumerStoppedError(Exception):
    """Raised when the storage stage exits before the channel was closed."""


class Pipeline:
    """
    Embeds documents and stores the vectors in two concurrent stages.

    The producer runs on the caller's task: it embeds documents one at a time,
    in order, and sends every outcome into a channel. The consumer runs as a
    separate task that owns the batch buffer: it routes embedded documents
    into the buffer, counts every outcome and flushes the remainder once the
    channel is closed.

    Embedding and store failures are counted and logged; they never stop
    the pipeline.

    Attributes:
        embedder (Embedder): Produces one EmbeddingOutcome per document.
        buffer (BatchBuffer): Batches points on their way to the store.
        progress (ProgressTracker): Counters updated by the consumer.
        queue_size (int): Channel capacity, 0 for unbounded.
    """

    def __init__(
        self,
        embedder: Embedder,
        buffer: BatchBuffer,
        progress: ProgressTracker | None = None,
        queue_size: int = 0,
        should_continue_processing_hook: None | Callable[[], bool] = None,
    ):
        self.embedder = embedder
        self.buffer = buffer
        self.progress = progress or ProgressTracker()
        self.queue_size = queue_size
        self._should_continue_processing_hook = should_continue_processing_hook or (
            lambda: True
        )

    async def run(self, documents: Iterable[Document]) -> ProgressTracker:
        """
        Runs both stages until every document went through the store stage.

        Returns:
            ProgressTracker: The final counters.

        Raises:
            ConsumerStoppedError: If the storage stage died early. Its own
                exception is chained as the cause.
        """
        channel: PipelineChannel[EmbeddingOutcome] = PipelineChannel(self.queue_size)
        consumer = asyncio.create_task(self._consume(channel))
        try:
            await self._produce(documents, channel, consumer)
            await self._wait_for(channel.close(), consumer)
        except BaseException:
            await self._abandon(consumer, channel)
            raise
        await consumer
        return self.progress

    async def _abandon(
        self,
        consumer: "asyncio.Task[None]",
        channel: PipelineChannel[EmbeddingOutcome],
    ) -> None:
        """Stops the consumer and reports what never reached the store."""
        consumer.cancel()
        # waits without raising, the consumer may have died with an error
        await asyncio.wait({consumer})
        buffered = len(self.buffer)
        queued = channel.qsize()
        if buffered or queued:
            await logger.awarning(
                "discarding documents that were not stored",
                buffered=buffered,
                queued=queued,
                **self.progress.as_dict(),
            )

    async def _produce(
        self,
        documents: Iterable[Document],
        channel: PipelineChannel[EmbeddingOutcome],
        consumer: "asyncio.Task[None]",
    ) -> None:
        for document in documents:
            if not self._should_continue_processing_hook():
                await logger.ainfo(
                    "stopping before all documents were embedded",
                    embedded_so_far=self.progress.seen,
                )
                return
            outcome = await self.embedder.embed(document)
            await self._wait_for(channel.send(outcome), consumer)

    async def _wait_for(
        self, operation: Awaitable[None], consumer: "asyncio.Task[None]"
    ) -> None:
        """Awaits a channel operation unless the consumer dies first."""
        pending = asyncio.ensure_future(operation)
        done, _ = await asyncio.wait(
            {pending, consumer}, return_when=asyncio.FIRST_COMPLETED
        )
        if pending in done:
            pending.result()
            return
        pending.cancel()
        error = consumer.exception()
        raise ConsumerStoppedError("storage stage stopped unexpectedly") from error

    async def _consume(self, channel: PipelineChannel[EmbeddingOutcome]) -> None:
        async for outcome in channel:
            if isinstance(outcome, NotEmbedded):
                self.progress.record_not_embedded()
                continue
            point = BufferedPoint.from_document(outcome.document)
            self.progress.record_embedded()
            await self._record_flush(self.buffer.push(point))
        await self._record_flush(self.buffer.flush_remainder())

    async def _record_flush(self, flush: Awaitable[int]) -> None:
        try:
            stored = await flush
        except StoreError as e:
            self.progress.record_failed(e.points)
            await logger.aerror("failed to store batch", points=e.points, error=str(e))
            return
        if stored:
            self.progress.record_stored(stored)
            await logger.adebug("stored batch", points=stored, **self.progress.as_dict())
