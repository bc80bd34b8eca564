import structlog

logger = structlog.get_logger()


class ProgressTracker:
    """
    Counts documents as they pass through the storage stage.

    Every document increments exactly one of `processed` (embedding failed)
    or `embedded` (accepted into the batch buffer); every buffered point later
    increments exactly one of `stored` or `failed` when its batch is flushed.
    Counters only grow. Only the consumer updates them, so there is no
    locking.

    Attributes:
        total (int | None): The number of documents expected, if known.
        log_every (int): Emit a progress log every this many documents,
            0 to disable.
    """

    def __init__(self, total: int | None = None, log_every: int = 100):
        self.total = total
        self.log_every = log_every
        self.processed = 0
        self.embedded = 0
        self.stored = 0
        self.failed = 0

    @property
    def seen(self) -> int:
        return self.processed + self.embedded

    def record_not_embedded(self) -> None:
        self.processed += 1
        self._maybe_log()

    def record_embedded(self) -> None:
        self.embedded += 1
        self._maybe_log()

    def record_stored(self, count: int) -> None:
        self.stored += count

    def record_failed(self, count: int) -> None:
        self.failed += count

    def as_dict(self) -> dict[str, int | None]:
        return {
            "total": self.total,
            "processed": self.processed,
            "embedded": self.embedded,
            "stored": self.stored,
            "failed": self.failed,
        }

    def _maybe_log(self) -> None:
        if self.log_every and self.seen % self.log_every == 0:
            logger.info("ingest progress", **self.as_dict())

    def log_summary(self) -> None:
        logger.info("ingest finished", **self.as_dict())

    def __repr__(self) -> str:
        fields = ", ".join(f"{k}={v}" for k, v in self.as_dict().items())
        return f"ProgressTracker({fields})"
