from collections.abc import Iterator
from dataclasses import dataclass
from pathlib import Path
from typing import ClassVar, TypeAlias

import structlog
from pydantic import BaseModel, Field, ValidationError

logger = structlog.get_logger()


class DocumentMetadata(BaseModel):
    source: str
    content_type: str
    language: str


class Document(BaseModel):
    """
    A text chunk with its metadata and, once embedded, its vector.

    Field names match the newline-delimited JSON input format.

    Attributes:
        page_content (str): The text sent to the inference service.
        metadata (DocumentMetadata): Scalar fields stored as the point payload.
        embeddings (list[float]): The single precision vector, empty until
            the document has been embedded successfully.
    """

    page_content: str
    metadata: DocumentMetadata
    embeddings: list[float] = Field(default_factory=list)

    def with_embeddings(self, embeddings: list[float]) -> "Document":
        return self.model_copy(update={"embeddings": embeddings})


@dataclass(frozen=True)
class Embedded:
    """The inference service returned a usable vector for the document."""

    document: Document
    embedded: ClassVar[bool] = True


@dataclass(frozen=True)
class NotEmbedded:
    """Embedding failed; the document carries an empty vector."""

    document: Document
    embedded: ClassVar[bool] = False


EmbeddingOutcome: TypeAlias = Embedded | NotEmbedded


def parse_document(line: str | bytes) -> Document | None:
    """
    Parses one NDJSON line, returning None for blank or malformed lines.

    Raw bytes that are not valid UTF-8 count as malformed.
    """
    if isinstance(line, bytes):
        try:
            line = line.decode("utf-8")
        except UnicodeDecodeError as e:
            logger.debug("skipping undecodable document", position=e.start)
            return None
    if not line.strip():
        return None
    try:
        return Document.model_validate_json(line)
    except ValidationError as e:
        logger.debug("skipping malformed document", error_count=e.error_count())
        return None


def iter_documents(path: str | Path) -> Iterator[Document]:
    # lines are decoded one at a time so a bad byte only loses its own line
    with open(path, "rb") as f:
        for line in f:
            document = parse_document(line)
            if document is not None:
                yield document


def load_documents(path: str | Path) -> list[Document]:
    """
    Reads every well-formed document from a newline-delimited JSON file.

    Lines that fail to parse are skipped; they never abort the load and are
    not reported as failures since they never enter the pipeline.

    Args:
        path (str | Path): The file to read.

    Returns:
        list[Document]: The documents in file order.
    """
    return list(iter_documents(path))
