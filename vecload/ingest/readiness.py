import asyncio
import enum
from collections.abc import Awaitable, Callable

import structlog

from .errors import FatalStartupError

logger = structlog.get_logger()

DEFAULT_INITIAL_BACKOFF = 7.0
DEFAULT_BACKOFF_INCREMENT = 0.5


class ReadinessStatus(enum.Enum):
    READY = "ok"
    LOADING = "loading model"
    ERROR = "error"
    UNKNOWN = "unknown"


STATUS_BY_TEXT: dict[str, ReadinessStatus] = {
    "ok": ReadinessStatus.READY,
    "loading model": ReadinessStatus.LOADING,
    "error": ReadinessStatus.ERROR,
}


def status_from_text(text: str | None) -> ReadinessStatus:
    if text is None:
        return ReadinessStatus.UNKNOWN
    return STATUS_BY_TEXT.get(text, ReadinessStatus.UNKNOWN)


class ProberState(enum.Enum):
    POLLING = "polling"
    READY = "ready"
    FATAL = "fatal"


Probe = Callable[[], Awaitable[ReadinessStatus]]
Sleep = Callable[[float], Awaitable[object]]


class ReadinessProber:
    """
    Polls a health probe until it reports ready, sleeping a growing backoff
    between attempts.

    The backoff starts at `initial_backoff` seconds and grows linearly by
    `increment` after every sleep. Without `max_attempts` or `max_wait` the
    prober polls forever. Any exception raised by the probe is fatal, and so
    is setting `stop`, which also cuts a sleep short.

    Attributes:
        state (ProberState): POLLING until the probe reports ready (READY) or
            polling is abandoned (FATAL).
        attempts (int): The number of probe calls made.
        waited (float): The cumulative seconds spent sleeping.
    """

    def __init__(
        self,
        probe: Probe,
        initial_backoff: float = DEFAULT_INITIAL_BACKOFF,
        increment: float = DEFAULT_BACKOFF_INCREMENT,
        max_attempts: int | None = None,
        max_wait: float | None = None,
        sleep: Sleep = asyncio.sleep,
        stop: asyncio.Event | None = None,
    ):
        if initial_backoff < 0 or increment < 0:
            raise ValueError("backoff durations can't be negative")
        if max_attempts is not None and max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.probe = probe
        self.initial_backoff = initial_backoff
        self.increment = increment
        self.max_attempts = max_attempts
        self.max_wait = max_wait
        self.sleep = sleep
        self.stop = stop
        self.state = ProberState.POLLING
        self.attempts = 0
        self.waited = 0.0

    async def await_ready(self) -> None:
        self.state = ProberState.POLLING
        backoff = self.initial_backoff
        while True:
            if self._stop_requested():
                raise self._fail(
                    "shutdown requested while waiting for inference service"
                )
            self.attempts += 1
            try:
                status = await self.probe()
            except FatalStartupError:
                self.state = ProberState.FATAL
                raise
            except Exception as e:
                raise self._fail(f"health probe failed: {e}") from e

            if status is ReadinessStatus.READY:
                self.state = ProberState.READY
                await logger.ainfo(
                    "inference service ready",
                    attempts=self.attempts,
                    waited=self.waited,
                )
                return

            if self.max_attempts is not None and self.attempts >= self.max_attempts:
                raise self._fail(
                    f"inference service not ready after {self.attempts} attempts "
                    f"(last status: {status.name.lower()})"
                )
            if self.max_wait is not None and self.waited + backoff > self.max_wait:
                raise self._fail(
                    f"inference service not ready after waiting {self.waited}s "
                    f"(last status: {status.name.lower()})"
                )

            await logger.ainfo(
                "inference service not ready",
                status=status.name.lower(),
                attempt=self.attempts,
                backoff=backoff,
            )
            await self._sleep(backoff)
            self.waited += backoff
            backoff += self.increment

    def _stop_requested(self) -> bool:
        return self.stop is not None and self.stop.is_set()

    async def _sleep(self, seconds: float) -> None:
        """Sleeps for `seconds`, returning early once `stop` is set."""
        if self.stop is None:
            await self.sleep(seconds)
            return
        sleeper = asyncio.ensure_future(self.sleep(seconds))
        stopper = asyncio.ensure_future(self.stop.wait())
        try:
            await asyncio.wait(
                {sleeper, stopper}, return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            sleeper.cancel()
            stopper.cancel()

    def _fail(self, message: str) -> FatalStartupError:
        self.state = ProberState.FATAL
        logger.error(message, attempts=self.attempts)
        return FatalStartupError(message)


async def await_ready(
    probe: Probe,
    initial_backoff: float = DEFAULT_INITIAL_BACKOFF,
    increment: float = DEFAULT_BACKOFF_INCREMENT,
    max_attempts: int | None = None,
    max_wait: float | None = None,
    sleep: Sleep = asyncio.sleep,
    stop: asyncio.Event | None = None,
) -> None:
    """
    Blocks until `probe` reports ReadinessStatus.READY.

    Raises:
        FatalStartupError: If the probe raises, or a configured bound on
            attempts or cumulative wait is exceeded, or `stop` was set.
    """
    prober = ReadinessProber(
        probe,
        initial_backoff=initial_backoff,
        increment=increment,
        max_attempts=max_attempts,
        max_wait=max_wait,
        sleep=sleep,
        stop=stop,
    )
    await prober.await_ready()
