import time
from typing import Literal

import httpx
from ddtrace.trace import tracer
from pydantic import BaseModel, ConfigDict, Field, PrivateAttr, ValidationError
from typing_extensions import override

from ..documents import Document, Embedded, EmbeddingOutcome, NotEmbedded
from ..embeddings import Embedder, EmbeddingStats, logger, narrow_to_float32
from ..errors import FatalStartupError
from ..readiness import ReadinessStatus, status_from_text

DEFAULT_BASE_URL = "http://127.0.0.1:8080"

JSON_HEADERS = {
    "Accept": "application/json",
    "Content-Type": "application/json",
}


class EmbeddingRequest(BaseModel):
    content: str


class EmbeddingResponse(BaseModel):
    embedding: list[float]


class HealthResponse(BaseModel):
    status: str | None = None


class LlamaCpp(BaseModel, Embedder):
    """
    Embedder that uses a llama.cpp server to embed documents one at a time.

    Attributes:
        implementation (Literal["llama_cpp"]): The literal identifier for this
            implementation.
        base_url (str): Where the llama.cpp server listens.
        request_timeout (float): Seconds allowed for one embedding request.
        health_timeout (float): Seconds allowed for one health probe.
        transport (httpx.AsyncBaseTransport | None): Optional transport for
            the underlying httpx client.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    implementation: Literal["llama_cpp"] = "llama_cpp"
    base_url: str = DEFAULT_BASE_URL
    request_timeout: float = 30.0
    health_timeout: float = 10.0
    transport: httpx.AsyncBaseTransport | None = Field(default=None, exclude=True)

    _client: httpx.AsyncClient | None = PrivateAttr(default=None)
    _stats: EmbeddingStats = PrivateAttr(default_factory=EmbeddingStats)

    @property
    def stats(self) -> EmbeddingStats:
        return self._stats

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers=JSON_HEADERS,
                timeout=self.request_timeout,
                transport=self.transport,
            )
        return self._client

    @override
    async def setup(self) -> None:
        await logger.adebug("using llama.cpp server", base_url=self.base_url)
        _ = self.client

    @override
    async def close(self) -> None:
        await self._stats.print_stats()
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    @override
    async def health_check(self) -> ReadinessStatus:
        """
        Reads the server's /health status.

        The body is decoded whatever the HTTP status code, since llama.cpp
        answers 503 while the model is still loading. A body without a
        recognisable status is UNKNOWN.
        """
        await logger.adebug("performing health check", base_url=self.base_url)
        try:
            response = await self.client.get("/health", timeout=self.health_timeout)
        except httpx.TransportError as e:
            raise FatalStartupError(
                f"unable to reach inference service at {self.base_url}: {e}"
            ) from e

        try:
            body = HealthResponse.model_validate_json(response.content)
        except ValidationError:
            await logger.awarning(
                "unexpected health response",
                status_code=response.status_code,
                body=response.text[:64],
            )
            return ReadinessStatus.UNKNOWN
        status = status_from_text(body.status)
        await logger.adebug("inference service health", status=status.name.lower())
        return status

    @override
    @tracer.wrap()
    async def embed(self, document: Document) -> EmbeddingOutcome:
        """
        Requests an embedding for the document's content.

        Transport errors, timeouts, non-2xx responses, bodies that don't
        match {"embedding": [...]} and empty vectors all yield NotEmbedded
        with an empty vector.

        Args:
            document (Document): The document to embed.

        Returns:
            EmbeddingOutcome: The outcome, carrying a new Document.
        """
        request = EmbeddingRequest(content=document.page_content)
        start_time = time.perf_counter()
        try:
            response = await self.client.post(
                "/embedding",
                content=request.model_dump_json(),
                timeout=self.request_timeout,
            )
            response.raise_for_status()
            body = EmbeddingResponse.model_validate_json(response.content)
        except (httpx.HTTPError, ValidationError) as e:
            self._stats.add_request_time(time.perf_counter() - start_time, False)
            await logger.awarning(
                "embedding request failed",
                source=document.metadata.source,
                error=f"{type(e).__name__}: {e}",
            )
            return NotEmbedded(document.with_embeddings([]))

        request_duration = time.perf_counter() - start_time
        if not body.embedding:
            self._stats.add_request_time(request_duration, False)
            await logger.awarning(
                "inference service returned an empty embedding",
                source=document.metadata.source,
            )
            return NotEmbedded(document.with_embeddings([]))

        self._stats.add_request_time(request_duration, True)
        current_span = tracer.current_span()
        if current_span:
            current_span.set_metric("embedding.request.time.seconds", request_duration)
            current_span.set_tag("embedding.dimensions", len(body.embedding))
        await logger.adebug(
            "embedded document",
            source=document.metadata.source,
            dimensions=len(body.embedding),
            duration=request_duration,
        )
        return Embedded(document.with_embeddings(narrow_to_float32(body.embedding)))
