import pytest

from vecload.ingest.buffer import BatchBuffer, BufferedPoint
from vecload.ingest.errors import StoreError


def point(n: int) -> BufferedPoint:
    return BufferedPoint(
        id=f"id-{n}",
        vector=[float(n), 0.0],
        payload={"source": f"doc-{n}", "content_type": "text", "language": "en"},
    )


def ids(points) -> list[str]:
    return [p.id for p in points]


def test_capacity_must_be_positive(store):
    with pytest.raises(ValueError):
        BatchBuffer(store, 0)


async def test_push_below_capacity_does_not_flush(store):
    buffer = BatchBuffer(store, 3)
    for n in range(3):
        assert await buffer.push(point(n)) == 0
    assert len(buffer) == 3
    assert store.calls == 0


async def test_push_past_capacity_flushes_previous_batch(store):
    buffer = BatchBuffer(store, 3)
    for n in range(3):
        await buffer.push(point(n))

    assert await buffer.push(point(3)) == 3

    assert [ids(b) for b in store.batches] == [["id-0", "id-1", "id-2"]]
    assert ids(buffer.points) == ["id-3"]
    assert buffer.flushes == 1


async def test_flush_remainder(store):
    buffer = BatchBuffer(store, 3)
    for n in range(5):
        await buffer.push(point(n))

    assert await buffer.flush_remainder() == 2

    assert [ids(b) for b in store.batches] == [
        ["id-0", "id-1", "id-2"],
        ["id-3", "id-4"],
    ]
    assert len(buffer) == 0
    assert await buffer.flush_remainder() == 0
    assert store.calls == 2


async def test_every_point_written_once(store):
    buffer = BatchBuffer(store, 4)
    for n in range(10):
        await buffer.push(point(n))
    await buffer.flush_remainder()
    assert ids(store.points) == [f"id-{n}" for n in range(10)]
    assert [len(b) for b in store.batches] == [4, 4, 2]


async def test_failed_flush_keeps_incoming_point(store_factory):
    store = store_factory(fail_on_calls={1})
    buffer = BatchBuffer(store, 2)
    await buffer.push(point(0))
    await buffer.push(point(1))

    with pytest.raises(StoreError) as exc_info:
        await buffer.push(point(2))

    assert exc_info.value.points == 2
    assert ids(buffer.points) == ["id-2"]
    assert await buffer.flush_remainder() == 1
    assert ids(store.points) == ["id-2"]


async def test_failed_tail_flush_empties_buffer(store_factory):
    store = store_factory(fail_on_calls={1})
    buffer = BatchBuffer(store, 8)
    await buffer.push(point(0))
    with pytest.raises(StoreError):
        await buffer.flush_remainder()
    assert len(buffer) == 0
