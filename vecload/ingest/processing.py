from typing import Annotated, Literal

from annotated_types import Ge, Gt, Le
from pydantic import BaseModel, Field

from .embedders.llama_cpp import DEFAULT_BASE_URL
from .readiness import DEFAULT_BACKOFF_INCREMENT, DEFAULT_INITIAL_BACKOFF

DEFAULT_BATCH_SIZE = 128
DEFAULT_QUEUE_SIZE = 1024
DEFAULT_QDRANT_URL = "http://localhost:6333"

Distance = Literal["Cosine", "Euclid", "Dot", "Manhattan"]
WriteOrdering = Literal["weak", "medium", "strong"]
LogLevel = Literal[
    "CRITICAL",
    "FATAL",
    "ERROR",
    "WARN",
    "WARNING",
    "INFO",
    "DEBUG",
]


class InferenceConfig(BaseModel):
    """
    Where and how to reach the inference service.

    Attributes:
        base_url (str): The llama.cpp server URL.
        request_timeout (float): Seconds allowed for one embedding request.
        health_timeout (float): Seconds allowed for one health probe.
    """

    base_url: str = DEFAULT_BASE_URL
    request_timeout: Annotated[float, Gt(gt=0)] = 30.0
    health_timeout: Annotated[float, Gt(gt=0)] = 10.0


class ReadinessConfig(BaseModel):
    """
    Backoff used while waiting for the inference service.

    Attributes:
        initial_backoff (float): Seconds to sleep after the first not-ready
            probe. Default is 7.
        increment (float): Seconds added to the backoff after every sleep.
            Default is 0.5.
        max_attempts (int | None): Give up after this many probes.
            Unbounded when None.
        max_wait (float | None): Give up once the cumulative sleep would exceed
            this many seconds. Unbounded when None.
    """

    initial_backoff: Annotated[float, Ge(ge=0)] = DEFAULT_INITIAL_BACKOFF
    increment: Annotated[float, Ge(ge=0)] = DEFAULT_BACKOFF_INCREMENT
    max_attempts: Annotated[int, Gt(gt=0)] | None = None
    max_wait: Annotated[float, Ge(ge=0)] | None = None


class StoreConfig(BaseModel):
    """
    The target Qdrant collection.

    The vector size and distance are required: a collection created without
    them can't hold the points this pipeline writes.

    Attributes:
        url (str): The Qdrant URL.
        api_key (str | None): Optional Qdrant API key.
        prefer_grpc (bool): Talk gRPC instead of REST.
        timeout (int | None): Seconds allowed for one Qdrant request.
        collection_name (str): The collection to write into.
        vector_size (int): Dimensionality of the embeddings.
        distance (Distance): The collection's distance metric.
        shard_key (str | None): Shard key selector used for every upsert.
        write_ordering (WriteOrdering | None): Write ordering used for every
            upsert.
    """

    url: str = DEFAULT_QDRANT_URL
    api_key: str | None = Field(default=None, repr=False)
    prefer_grpc: bool = False
    timeout: Annotated[int, Gt(gt=0)] | None = 30
    collection_name: Annotated[str, Field(min_length=1)]
    vector_size: Annotated[int, Gt(gt=0)]
    distance: Distance
    shard_key: str | None = None
    write_ordering: WriteOrdering | None = None


class ProcessingDefault(BaseModel):
    """
    Pipeline sizing and logging.

    Attributes:
        batch_size (Annotated[int, Gt(gt=0), Le(le=4096)]): Points per upsert.
            Default is 128.
        queue_size (Annotated[int, Ge(ge=0)]): Capacity of the channel between
            the embedding and storage stages; 0 means unbounded. Default is 1024.
        log_every (Annotated[int, Ge(ge=0)]): Log progress every this many
            documents; 0 disables periodic progress logs. Default is 100.
        log_level (LogLevel): The log level for logging output.
    """

    batch_size: Annotated[int, Gt(gt=0), Le(le=4096)] = DEFAULT_BATCH_SIZE
    queue_size: Annotated[int, Ge(ge=0)] = DEFAULT_QUEUE_SIZE
    log_every: Annotated[int, Ge(ge=0)] = 100
    log_level: LogLevel = "INFO"


class IngestConfig(BaseModel):
    inference: InferenceConfig = Field(default_factory=InferenceConfig)
    readiness: ReadinessConfig = Field(default_factory=ReadinessConfig)
    store: StoreConfig
    processing: ProcessingDefault = Field(default_factory=ProcessingDefault)
