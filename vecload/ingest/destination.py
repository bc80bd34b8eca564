import time

import structlog
from ddtrace.trace import tracer
from qdrant_client import AsyncQdrantClient, models

from .buffer import BufferedPoint
from .errors import FatalStartupError, StoreError
from .processing import StoreConfig

logger = structlog.get_logger()

SUCCESSFUL_STATUSES = (
    models.UpdateStatus.COMPLETED,
    models.UpdateStatus.ACKNOWLEDGED,
)


class QdrantDestination:
    """
    Writes batches of points into a Qdrant collection.

    Every upsert targets the same collection with the same shard key
    selector and write ordering, so a batch is the unit of failure.

    Attributes:
        config (StoreConfig): The target collection and connection settings.
        client (AsyncQdrantClient): The Qdrant client.
    """

    def __init__(self, config: StoreConfig, client: AsyncQdrantClient | None = None):
        self.config = config
        self.client = client or AsyncQdrantClient(
            url=config.url,
            api_key=config.api_key,
            prefer_grpc=config.prefer_grpc,
            timeout=config.timeout,
        )

    @property
    def _ordering(self) -> models.WriteOrdering | None:
        if self.config.write_ordering is None:
            return None
        return models.WriteOrdering(self.config.write_ordering)

    async def setup(self) -> None:
        """
        Creates the collection if it doesn't exist yet.

        Raises:
            FatalStartupError: If Qdrant can't be reached or refuses to create
                the collection.
        """
        name = self.config.collection_name
        try:
            if await self.client.collection_exists(name):
                await logger.adebug("collection exists", collection=name)
                return
            await self.client.create_collection(
                collection_name=name,
                vectors_config=models.VectorParams(
                    size=self.config.vector_size,
                    distance=models.Distance(self.config.distance),
                ),
            )
        except Exception as e:
            raise FatalStartupError(
                f"unable to prepare collection '{name}' at {self.config.url}: {e}"
            ) from e
        await logger.ainfo(
            "created collection",
            collection=name,
            vector_size=self.config.vector_size,
            distance=self.config.distance,
        )

    @tracer.wrap()
    async def upsert(self, points: list[BufferedPoint]) -> None:
        """
        Upserts the whole batch in one call.

        Raises:
            StoreError: If the call fails or Qdrant reports a status other
                than completed or acknowledged. Nothing is retried.
        """
        start_time = time.perf_counter()
        structs = [
            models.PointStruct(id=point.id, vector=point.vector, payload=point.payload)
            for point in points
        ]
        try:
            result = await self.client.upsert(
                collection_name=self.config.collection_name,
                points=structs,
                wait=True,
                ordering=self._ordering,
                shard_key_selector=self.config.shard_key,
            )
        except Exception as e:
            raise StoreError(
                f"upsert into '{self.config.collection_name}' failed: {e}",
                len(points),
            ) from e

        if result.status not in SUCCESSFUL_STATUSES:
            raise StoreError(
                f"upsert into '{self.config.collection_name}' "
                f"returned status {result.status}",
                len(points),
            )

        duration = time.perf_counter() - start_time
        current_span = tracer.current_span()
        if current_span:
            current_span.set_tag("batch.points.total", len(points))
            current_span.set_metric("store.upsert.time.seconds", duration)
        await logger.adebug(
            "upserted batch",
            collection=self.config.collection_name,
            points=len(points),
            duration=duration,
        )

    async def close(self) -> None:
        await self.client.close()
