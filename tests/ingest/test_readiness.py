import asyncio

import pytest

from vecload.ingest.errors import FatalStartupError
from vecload.ingest.readiness import (
    ProberState,
    ReadinessProber,
    ReadinessStatus,
    await_ready,
    status_from_text,
)

LOADING = ReadinessStatus.LOADING
READY = ReadinessStatus.READY


def scripted_probe(statuses: list[ReadinessStatus]):
    remaining = list(statuses)

    async def probe() -> ReadinessStatus:
        if len(remaining) > 1:
            return remaining.pop(0)
        return remaining[0]

    return probe


@pytest.mark.parametrize(
    "text,expected",
    [
        ("ok", ReadinessStatus.READY),
        ("loading model", ReadinessStatus.LOADING),
        ("error", ReadinessStatus.ERROR),
        ("starting", ReadinessStatus.UNKNOWN),
        ("", ReadinessStatus.UNKNOWN),
        (None, ReadinessStatus.UNKNOWN),
    ],
)
def test_status_from_text(text: str | None, expected: ReadinessStatus):
    assert status_from_text(text) is expected


async def test_ready_on_first_probe_does_not_sleep(fake_sleep, recorded_sleeps):
    prober = ReadinessProber(scripted_probe([READY]), sleep=fake_sleep)
    await prober.await_ready()
    assert prober.state is ProberState.READY
    assert prober.attempts == 1
    assert recorded_sleeps == []


async def test_backoff_grows_linearly(fake_sleep, recorded_sleeps):
    prober = ReadinessProber(
        scripted_probe([LOADING, LOADING, READY]), sleep=fake_sleep
    )
    await prober.await_ready()
    assert recorded_sleeps == [7.0, 7.5]
    assert prober.attempts == 3
    assert prober.waited == 14.5


async def test_unknown_and_error_keep_polling(fake_sleep, recorded_sleeps):
    await await_ready(
        scripted_probe([ReadinessStatus.UNKNOWN, ReadinessStatus.ERROR, READY]),
        initial_backoff=1.0,
        increment=2.0,
        sleep=fake_sleep,
    )
    assert recorded_sleeps == [1.0, 3.0]


async def test_max_attempts(fake_sleep, recorded_sleeps):
    prober = ReadinessProber(
        scripted_probe([LOADING]), max_attempts=2, sleep=fake_sleep
    )
    with pytest.raises(FatalStartupError, match="after 2 attempts"):
        await prober.await_ready()
    assert prober.state is ProberState.FATAL
    assert prober.attempts == 2
    assert recorded_sleeps == [7.0]


async def test_max_wait(fake_sleep, recorded_sleeps):
    prober = ReadinessProber(scripted_probe([LOADING]), max_wait=10, sleep=fake_sleep)
    with pytest.raises(FatalStartupError, match="loading"):
        await prober.await_ready()
    # a second 7.5s sleep would overshoot the 10s bound
    assert recorded_sleeps == [7.0]
    assert prober.waited == 7.0


async def test_fatal_probe_error_is_propagated(fake_sleep, recorded_sleeps):
    async def probe() -> ReadinessStatus:
        raise FatalStartupError("connection refused")

    prober = ReadinessProber(probe, sleep=fake_sleep)
    with pytest.raises(FatalStartupError, match="connection refused"):
        await prober.await_ready()
    assert prober.state is ProberState.FATAL
    assert recorded_sleeps == []


async def test_unexpected_probe_error_is_fatal(fake_sleep):
    async def probe() -> ReadinessStatus:
        raise RuntimeError("boom")

    with pytest.raises(FatalStartupError, match="boom") as exc_info:
        await await_ready(probe, sleep=fake_sleep)
    assert isinstance(exc_info.value.__cause__, RuntimeError)


@pytest.mark.parametrize(
    "kwargs",
    [
        {"initial_backoff": -1.0},
        {"increment": -0.5},
        {"max_attempts": 0},
    ],
)
def test_invalid_bounds(kwargs: dict[str, float]):
    with pytest.raises(ValueError):
        ReadinessProber(scripted_probe([READY]), **kwargs)  # type: ignore


async def test_stop_set_before_first_probe(fake_sleep):
    calls = []

    async def probe() -> ReadinessStatus:
        calls.append(1)
        return READY

    stop = asyncio.Event()
    stop.set()
    prober = ReadinessProber(probe, sleep=fake_sleep, stop=stop)

    with pytest.raises(FatalStartupError, match="shutdown requested"):
        await prober.await_ready()
    assert calls == []
    assert prober.state is ProberState.FATAL


async def test_stop_cuts_sleep_short():
    stop = asyncio.Event()

    async def sleep_forever(seconds: float) -> None:
        await asyncio.Event().wait()

    prober = ReadinessProber(scripted_probe([LOADING]), sleep=sleep_forever, stop=stop)
    waiting = asyncio.create_task(prober.await_ready())
    await asyncio.sleep(0)
    stop.set()

    with pytest.raises(FatalStartupError, match="shutdown requested"):
        await asyncio.wait_for(waiting, timeout=1)
    assert prober.attempts == 1


async def test_unset_stop_does_not_interfere(fake_sleep, recorded_sleeps):
    await await_ready(
        scripted_probe([LOADING, READY]), sleep=fake_sleep, stop=asyncio.Event()
    )
    assert recorded_sleeps == [7.0]
