import asyncio
import logging
import signal
import sys
from pathlib import Path
from typing import TYPE_CHECKING

import click
import structlog
from dotenv import find_dotenv, load_dotenv
from pytimeparse import parse  # type: ignore

from .__init__ import __version__

if TYPE_CHECKING:
    from .ingest import Document, IngestConfig, Worker

load_dotenv(dotenv_path=find_dotenv(usecwd=True))

structlog.configure(wrapper_class=structlog.make_filtering_bound_logger(logging.INFO))
log = structlog.get_logger()


class TimeDurationParamType(click.ParamType):
    name = "time duration"

    def convert(self, value, param, ctx) -> float:  # type: ignore
        if isinstance(value, int | float):
            val = float(value)
        else:
            parsed: float | None = parse(value)  # type: ignore
            try:
                val = float(parsed if parsed is not None else value)  # type: ignore
            except ValueError:
                self.fail(
                    f"{value!r} is not a valid duration string or number",
                    param,
                    ctx,
                )
        if val < 0:
            self.fail("time duration can't be negative", param, ctx)
        return val


def get_log_level(level: str) -> int:
    level_upper = level.upper()
    # We are targeting python 3.10 that's why we need to use getLevelName which
    # is deprecated, but still there for backwards compatibility.
    level_name = logging.getLevelName(level_upper)  # type: ignore
    if level_upper != "INFO" and isinstance(level_name, int):
        return level_name
    return logging.getLevelName("INFO")  # type: ignore


@click.group()
@click.version_option(version=__version__)
def cli():
    pass


@cli.command(name="ingest")
@click.argument(
    "input_path",
    metavar="INPUT",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
)
@click.option(
    "--inference-url",
    type=click.STRING,
    default="http://127.0.0.1:8080",
    show_default=True,
    envvar="VECLOAD_INFERENCE_URL",
    help="The llama.cpp server to request embeddings from.",
)
@click.option(
    "--qdrant-url",
    type=click.STRING,
    default="http://localhost:6333",
    show_default=True,
    envvar="QDRANT_URL",
    help="The Qdrant instance to write into.",
)
@click.option(
    "--qdrant-api-key",
    type=click.STRING,
    default=None,
    envvar="QDRANT_API_KEY",
    help="API key for Qdrant.",
)
@click.option(
    "--prefer-grpc",
    is_flag=True,
    default=False,
    envvar="VECLOAD_PREFER_GRPC",
    help="Talk to Qdrant over gRPC.",
)
@click.option(
    "-c",
    "--collection",
    type=click.STRING,
    required=True,
    envvar="VECLOAD_COLLECTION",
    help="The collection to upsert points into. Created if missing.",
)
@click.option(
    "--vector-size",
    type=click.IntRange(1),
    required=True,
    envvar="VECLOAD_VECTOR_SIZE",
    help="Embedding dimensionality, used when creating the collection.",
)
@click.option(
    "--distance",
    type=click.Choice(["Cosine", "Euclid", "Dot", "Manhattan"], case_sensitive=False),
    required=True,
    envvar="VECLOAD_DISTANCE",
    help="Distance metric, used when creating the collection.",
)
@click.option(
    "--shard-key",
    type=click.STRING,
    default=None,
    envvar="VECLOAD_SHARD_KEY",
    help="Shard key selector applied to every upsert.",
)
@click.option(
    "--write-ordering",
    type=click.Choice(["weak", "medium", "strong"], case_sensitive=False),
    default=None,
    envvar="VECLOAD_WRITE_ORDERING",
    help="Write ordering applied to every upsert.",
)
@click.option(
    "-b",
    "--batch-size",
    type=click.IntRange(1, 4096),
    default=128,
    show_default=True,
    envvar="VECLOAD_BATCH_SIZE",
    help="Number of points written per upsert.",
)
@click.option(
    "--queue-size",
    type=click.IntRange(0),
    default=1024,
    show_default=True,
    envvar="VECLOAD_QUEUE_SIZE",
    help="Embedded documents allowed to wait for storage, 0 for unbounded.",
)
@click.option(
    "--initial-backoff",
    type=TimeDurationParamType(),
    default="7s",
    show_default=True,
    envvar="VECLOAD_INITIAL_BACKOFF",
    help="Wait after the first not-ready health check.",
)
@click.option(
    "--backoff-increment",
    type=TimeDurationParamType(),
    default="0.5s",
    show_default=True,
    envvar="VECLOAD_BACKOFF_INCREMENT",
    help="Added to the wait after every not-ready health check.",
)
@click.option(
    "--max-attempts",
    type=click.IntRange(1),
    default=None,
    envvar="VECLOAD_MAX_ATTEMPTS",
    help="Give up after this many health checks. Unbounded by default.",
)
@click.option(
    "--max-wait",
    type=TimeDurationParamType(),
    default=None,
    envvar="VECLOAD_MAX_WAIT",
    help="Give up after waiting this long for the inference service.",
)
@click.option(
    "--request-timeout",
    type=TimeDurationParamType(),
    default="30s",
    show_default=True,
    envvar="VECLOAD_REQUEST_TIMEOUT",
    help="Timeout for a single embedding request.",
)
@click.option(
    "--health-timeout",
    type=TimeDurationParamType(),
    default="10s",
    show_default=True,
    envvar="VECLOAD_HEALTH_TIMEOUT",
    help="Timeout for a single health check of the inference service.",
)
@click.option(
    "--store-timeout",
    type=click.IntRange(1),
    default=30,
    show_default=True,
    envvar="VECLOAD_STORE_TIMEOUT",
    help="Timeout in seconds for a single Qdrant request.",
)
@click.option(
    "--log-level",
    type=click.Choice(
        ["DEBUG", "INFO", "WARN", "ERROR", "FATAL", "CRITICAL"], case_sensitive=False
    ),
    default="INFO",
    envvar="VECLOAD_LOG_LEVEL",
)
def ingest(
    input_path: Path,
    inference_url: str,
    qdrant_url: str,
    qdrant_api_key: str | None,
    prefer_grpc: bool,
    collection: str,
    vector_size: int,
    distance: str,
    shard_key: str | None,
    write_ordering: str | None,
    batch_size: int,
    queue_size: int,
    initial_backoff: float,
    backoff_increment: float,
    max_attempts: int | None,
    max_wait: float | None,
    request_timeout: float,
    health_timeout: float,
    store_timeout: int,
    log_level: str,
) -> None:
    """Embed every document in INPUT and upsert the vectors into Qdrant.

    INPUT is a newline-delimited JSON file of documents shaped like
    {"page_content": ..., "metadata": {"source": ..., "content_type": ...,
    "language": ...}}. Lines that don't parse are skipped.
    """
    from pydantic import ValidationError

    from .ingest import IngestConfig, load_documents

    structlog.configure(
        wrapper_class=structlog.make_filtering_bound_logger(get_log_level(log_level))
    )

    try:
        config = IngestConfig.model_validate(
            {
                "inference": {
                    "base_url": inference_url,
                    "request_timeout": request_timeout,
                    "health_timeout": health_timeout,
                },
                "readiness": {
                    "initial_backoff": initial_backoff,
                    "increment": backoff_increment,
                    "max_attempts": max_attempts,
                    "max_wait": max_wait,
                },
                "store": {
                    "url": qdrant_url,
                    "api_key": qdrant_api_key,
                    "prefer_grpc": prefer_grpc,
                    "timeout": store_timeout,
                    "collection_name": collection,
                    "vector_size": vector_size,
                    "distance": distance,
                    "shard_key": shard_key,
                    "write_ordering": write_ordering,
                },
                "processing": {
                    "batch_size": batch_size,
                    "queue_size": queue_size,
                    "log_level": log_level.upper(),
                },
            }
        )
    except ValidationError as e:
        raise click.UsageError(str(e)) from e

    documents = load_documents(input_path)
    log.info("read documents", count=len(documents), path=str(input_path))

    exception, counters = asyncio.run(async_run_ingest(config, documents))
    click.echo(
        f"{counters['processed']} processed (not embedded), "
        f"{counters['embedded']} embedded, "
        f"{counters['stored']} stored, "
        f"{counters['failed']} failed"
    )
    if exception is not None:
        sys.exit(1)


async def async_run_ingest(
    config: "IngestConfig", documents: "list[Document]"
) -> tuple[Exception | None, dict[str, int | None]]:
    from .ingest import Worker

    worker = Worker(config)

    # gracefully handle being asked to shut down
    loop = asyncio.get_running_loop()
    for signum in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(signum, shutdown_handler, worker, signum)

    exception = await worker.run(documents)
    return exception, worker.progress.as_dict()


def shutdown_handler(worker: "Worker", signum: int) -> None:
    signame = signal.Signals(signum).name
    log.info(f"received {signame}, storing pending documents before exiting")
    worker.request_graceful_shutdown()
