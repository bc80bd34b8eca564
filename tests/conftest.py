from collections.abc import AsyncGenerator, Callable

import httpx
import pytest
from typing_extensions import override

from vecload.ingest.buffer import BufferedPoint
from vecload.ingest.documents import (
    Document,
    DocumentMetadata,
    Embedded,
    EmbeddingOutcome,
    NotEmbedded,
)
from vecload.ingest.embedders import LlamaCpp
from vecload.ingest.embeddings import Embedder
from vecload.ingest.errors import StoreError
from vecload.ingest.readiness import ReadinessStatus

Handler = Callable[[httpx.Request], httpx.Response]


def make_document(source: str = "a", content: str = "hi") -> Document:
    return Document(
        page_content=content,
        metadata=DocumentMetadata(source=source, content_type="text", language="en"),
    )


class RecordingStore:
    """Stands in for QdrantDestination, keeping every batch it was given."""

    def __init__(self, fail_on_calls: set[int] | None = None):
        self.fail_on_calls = fail_on_calls or set()
        self.batches: list[list[BufferedPoint]] = []
        self.calls = 0
        self.setup_calls = 0
        self.closed = False

    async def setup(self) -> None:
        self.setup_calls += 1

    async def upsert(self, points: list[BufferedPoint]) -> None:
        self.calls += 1
        if self.calls in self.fail_on_calls:
            raise StoreError("upsert rejected", len(points))
        self.batches.append(list(points))

    async def close(self) -> None:
        self.closed = True

    @property
    def points(self) -> list[BufferedPoint]:
        return [point for batch in self.batches for point in batch]


class ScriptedEmbedder(Embedder):
    """Embeds every document to [len(content), 1.0] unless its source fails."""

    def __init__(
        self,
        failing_sources: set[str] | None = None,
        statuses: list[ReadinessStatus] | None = None,
    ):
        self.failing_sources = failing_sources or set()
        self.statuses = statuses or [ReadinessStatus.READY]
        self.embedded: list[str] = []
        self.closed = False

    @override
    async def embed(self, document: Document) -> EmbeddingOutcome:
        self.embedded.append(document.metadata.source)
        if document.metadata.source in self.failing_sources:
            return NotEmbedded(document.with_embeddings([]))
        return Embedded(
            document.with_embeddings([float(len(document.page_content)), 1.0])
        )

    @override
    async def health_check(self) -> ReadinessStatus:
        if len(self.statuses) > 1:
            return self.statuses.pop(0)
        return self.statuses[0]

    @override
    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def documents() -> list[Document]:
    return [make_document(source=f"doc-{i}", content="x" * (i + 1)) for i in range(5)]


@pytest.fixture
def store() -> RecordingStore:
    return RecordingStore()


@pytest.fixture
def store_factory() -> Callable[..., RecordingStore]:
    return RecordingStore


@pytest.fixture
def embedder_factory() -> Callable[..., ScriptedEmbedder]:
    return ScriptedEmbedder


@pytest.fixture
def document_factory() -> Callable[..., Document]:
    return make_document


@pytest.fixture
async def llama_cpp_factory() -> AsyncGenerator[Callable[[Handler], LlamaCpp], None]:
    created: list[LlamaCpp] = []

    def factory(handler: Handler) -> LlamaCpp:
        embedder = LlamaCpp(
            base_url="http://llama.test",
            transport=httpx.MockTransport(handler),
        )
        created.append(embedder)
        return embedder

    yield factory

    for embedder in created:
        await embedder.close()


@pytest.fixture
def recorded_sleeps() -> list[float]:
    return []


@pytest.fixture
def fake_sleep(recorded_sleeps: list[float]) -> Callable[[float], object]:
    async def sleep(seconds: float) -> None:
        recorded_sleeps.append(seconds)

    return sleep
