import uuid
from dataclasses import dataclass
from typing import Protocol, TypeAlias

from .documents import Document

Scalar: TypeAlias = str | int | float | bool | None


@dataclass
class BufferedPoint:
    """
    A storage-ready point.

    The id is generated client side so that sending the same point twice
    overwrites it instead of creating a duplicate.
    """

    id: str
    vector: list[float]
    payload: dict[str, Scalar]

    @classmethod
    def from_document(cls, document: Document) -> "BufferedPoint":
        return cls(
            id=str(uuid.uuid4()),
            vector=list(document.embeddings),
            payload=document.metadata.model_dump(),
        )


class PointStore(Protocol):
    async def upsert(self, points: list[BufferedPoint]) -> None:
        """Writes the batch in one call, raising StoreError on failure."""
        ...


class BatchBuffer:
    """
    Accumulates points and writes them to the store in batches of `capacity`.

    A full buffer is only flushed when the next point arrives: the full batch
    is detached, the incoming point starts the next batch and then the
    detached batch is written. The incoming point is kept even when that
    write fails. `flush_remainder` must be called once the input is exhausted
    to write the final, partial batch.

    The buffer is not safe for concurrent use; it belongs to one consumer.
    """

    def __init__(self, store: PointStore, capacity: int):
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self.store = store
        self.capacity = capacity
        self.flushes = 0
        self._points: list[BufferedPoint] = []

    def __len__(self) -> int:
        return len(self._points)

    @property
    def points(self) -> tuple[BufferedPoint, ...]:
        return tuple(self._points)

    async def push(self, point: BufferedPoint) -> int:
        """
        Adds a point, flushing the previous full batch first if needed.

        Returns:
            int: The number of points written to the store by this call.

        Raises:
            StoreError: If the flush triggered by this push failed. The point
                passed in is buffered regardless.
        """
        if len(self._points) < self.capacity:
            self._points.append(point)
            return 0

        batch = self._points
        self._points = [point]
        return await self._flush(batch)

    async def flush_remainder(self) -> int:
        """
        Writes whatever is buffered as one final batch.

        Returns:
            int: The number of points written, 0 when the buffer was empty.
        """
        if not self._points:
            return 0
        batch = self._points
        self._points = []
        return await self._flush(batch)

    async def _flush(self, batch: list[BufferedPoint]) -> int:
        self.flushes += 1
        await self.store.upsert(batch)
        return len(batch)
