import asyncio
from typing import Generic, TypeVar

T = TypeVar("T")


class ChannelClosedError(Exception):
    pass


class _Closed:
    pass


_CLOSED = _Closed()


class PipelineChannel(Generic[T]):
    """
    A FIFO channel between one producer and one consumer.

    The producer calls `send` for every item and `close` once it is done. The
    consumer iterates with `async for`, which ends after the last item sent
    before `close`. With a positive `maxsize`, `send` waits while the channel
    is full; `maxsize=0` makes the channel unbounded.
    """

    def __init__(self, maxsize: int = 0):
        self._queue: asyncio.Queue[T | _Closed] = asyncio.Queue(maxsize)
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def qsize(self) -> int:
        return self._queue.qsize()

    async def send(self, item: T) -> None:
        if self._closed:
            raise ChannelClosedError("send on a closed channel")
        await self._queue.put(item)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self._queue.put(_CLOSED)

    def __aiter__(self) -> "PipelineChannel[T]":
        return self

    async def __anext__(self) -> T:
        item = await self._queue.get()
        if isinstance(item, _Closed):
            raise StopAsyncIteration
        return item
