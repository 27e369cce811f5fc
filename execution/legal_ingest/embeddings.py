"""
Embedding Client for Legal Document Ingestion

Chunking and vectorization are delegated to an external embedding workflow
reachable over an HTTP webhook. This module marshals the request, enforces a
timeout and validates the response before anything reaches the database.

Architecture:
    EmbeddingClient           -- shared contract + response validation
        WebhookEmbeddingClient    -- HTTP webhook backend (production)
        MockEmbeddingClient       -- deterministic stand-in for development

None of the clients retry. Retry policy belongs to the caller.
"""

import math
import logging
from typing import Optional
from dataclasses import dataclass, field
from numbers import Real

import requests

from .chunker import ChunkConfig, TextChunker
from .config import IngestionConfig, DEFAULT_EMBEDDING_DIMENSIONS
from .errors import (
    InvalidConfigurationError,
    InvalidResponseError,
    ServiceTimeoutError,
    ServiceUnavailableError,
)
from .models import Visibility

logger = logging.getLogger(__name__)

MOCK_MODEL_NAME = "mock-embedding-model"
MOCK_NOTE = "This is a MOCK response. Configure the embeddings webhook in production."


@dataclass
class EmbeddedChunk:
    """One chunk of text returned by the embedding service with its vector."""
    content: str
    embedding: list[float]


@dataclass
class EmbeddingResult:
    """Validated embedding service response."""
    chunks: list[EmbeddedChunk]
    model: str
    note: Optional[str] = None
    is_mock: bool = False

    @property
    def dimensions(self) -> int:
        return len(self.chunks[0].embedding) if self.chunks else 0


@dataclass
class EmbeddingClientConfig:
    """Configuration for embedding clients."""
    webhook_url: Optional[str] = None
    webhook_token: Optional[str] = None
    timeout_seconds: float = 120.0
    dimensions: Optional[int] = DEFAULT_EMBEDDING_DIMENSIONS
    default_model: str = "unknown"
    chunk_config: ChunkConfig = field(default_factory=ChunkConfig)


class EmbeddingClient:
    """
    Base class for embedding backends.

    Subclasses implement ``embed()``; the response validation in
    ``_parse_response`` is shared so every backend honours the same contract:
    a non-empty list of chunks, each with non-empty text and a numeric vector
    of one fixed length.
    """

    is_mock: bool = False

    def __init__(self, config: Optional[EmbeddingClientConfig] = None):
        self.config = config or EmbeddingClientConfig()

    def embed(
        self,
        document_id: str,
        text: str,
        visibility: Visibility = Visibility.PUBLIC,
    ) -> EmbeddingResult:
        """Chunk and embed *text* for *document_id*."""
        raise NotImplementedError("Subclasses must implement embed()")

    def _parse_response(self, payload) -> EmbeddingResult:
        """Validate an untrusted response payload and convert it."""
        if not isinstance(payload, dict):
            raise InvalidResponseError(
                "Embedding service returned an unexpected payload.",
                details=f"expected object, got {type(payload).__name__}",
            )

        raw_chunks = payload.get("chunks")
        if not isinstance(raw_chunks, list) or not raw_chunks:
            raise InvalidResponseError(
                "Embedding service returned no chunks.",
                details=f"chunks={type(raw_chunks).__name__}",
            )

        expected_dims = self.config.dimensions
        chunks = []
        for index, raw in enumerate(raw_chunks):
            if not isinstance(raw, dict):
                raise InvalidResponseError(
                    "Embedding service returned a malformed chunk.",
                    details=f"chunk {index} is {type(raw).__name__}",
                )
            content = raw.get("content")
            if not isinstance(content, str) or not content:
                raise InvalidResponseError(
                    "Embedding service returned a chunk without text.",
                    details=f"chunk {index}",
                )
            vector = raw.get("embedding")
            if not isinstance(vector, list) or not vector:
                raise InvalidResponseError(
                    "Embedding service returned a chunk without a vector.",
                    details=f"chunk {index}",
                )
            if not all(
                isinstance(v, Real) and not isinstance(v, bool) and math.isfinite(v)
                for v in vector
            ):
                raise InvalidResponseError(
                    "Embedding vector contains non-numeric values.",
                    details=f"chunk {index}",
                )
            if expected_dims is None:
                expected_dims = len(vector)
            if len(vector) != expected_dims:
                raise InvalidResponseError(
                    "Embedding vector has the wrong dimension.",
                    details=f"chunk {index}: {len(vector)} != {expected_dims}",
                )
            chunks.append(EmbeddedChunk(content=content, embedding=[float(v) for v in vector]))

        model = payload.get("model")
        if not isinstance(model, str) or not model.strip():
            model = self.config.default_model

        return EmbeddingResult(
            chunks=chunks,
            model=model,
            note=payload.get("note") if isinstance(payload.get("note"), str) else None,
            is_mock=self.is_mock,
        )


class WebhookEmbeddingClient(EmbeddingClient):
    """
    Calls the embedding workflow webhook.

    Request:  {"docId": str, "text": str, "isPublic": bool}
    Response: {"chunks": [{"content": str, "embedding": [float]}], "model": str}
    """

    def __init__(
        self,
        config: Optional[EmbeddingClientConfig] = None,
        session: Optional[requests.Session] = None,
    ):
        super().__init__(config)
        if self.config.timeout_seconds is None or self.config.timeout_seconds <= 0:
            raise InvalidConfigurationError("Embedding webhook timeout must be a positive number")
        self._session = session or requests.Session()

    def embed(
        self,
        document_id: str,
        text: str,
        visibility: Visibility = Visibility.PUBLIC,
    ) -> EmbeddingResult:
        url = self.config.webhook_url
        if not url:
            raise ServiceUnavailableError(
                "Embedding service is not configured.",
                details="N8N_EMBEDDINGS_WEBHOOK_URL is not set",
            )

        headers = {"Content-Type": "application/json"}
        if self.config.webhook_token:
            headers["Authorization"] = f"Bearer {self.config.webhook_token}"

        payload = {
            "docId": document_id,
            "text": text,
            "isPublic": visibility.is_public,
        }

        logger.info(
            f"Calling embeddings webhook for doc {document_id} "
            f"({len(text)} chars, timeout={self.config.timeout_seconds}s)"
        )

        try:
            response = self._session.post(
                url,
                json=payload,
                headers=headers,
                timeout=self.config.timeout_seconds,
            )
        except requests.Timeout as e:
            logger.error(f"Embeddings webhook timed out for doc {document_id}: {e}")
            raise ServiceTimeoutError(
                "Embedding service did not answer in time.",
                details=f"timeout after {self.config.timeout_seconds}s",
            ) from e
        except requests.RequestException as e:
            logger.error(f"Embeddings webhook unreachable for doc {document_id}: {e}")
            raise ServiceUnavailableError(
                "Embedding service is unreachable.",
                details=f"{type(e).__name__}: {e}",
            ) from e

        if not response.ok:
            logger.error(
                f"Embeddings webhook failed for doc {document_id}: "
                f"{response.status_code} {response.text[:200]}"
            )
            raise ServiceUnavailableError(
                "Embedding service returned an error.",
                details=f"status {response.status_code}: {response.text}",
            )

        try:
            data = response.json()
        except ValueError as e:
            logger.error(f"Embeddings webhook returned non-JSON body for doc {document_id}")
            raise InvalidResponseError(
                "Embedding service returned a non-JSON response.",
                details=response.text,
            ) from e

        result = self._parse_response(data)
        logger.info(
            f"Embeddings webhook returned {len(result.chunks)} chunks "
            f"({result.dimensions} dims, model={result.model}) for doc {document_id}"
        )
        return result


class MockEmbeddingClient(EmbeddingClient):
    """
    Development stand-in for the embedding workflow.

    Chunks the text locally and derives a pseudo-vector per chunk from its
    length and position with a fixed sine transform. Deterministic, not
    random, and clearly labelled: never use its vectors for real search.
    """

    is_mock = True

    def __init__(self, config: Optional[EmbeddingClientConfig] = None):
        super().__init__(config)
        self._chunker = TextChunker(self.config.chunk_config)
        self._dimensions = self.config.dimensions or DEFAULT_EMBEDDING_DIMENSIONS

    @staticmethod
    def pseudo_vector(content: str, index: int, dimensions: int) -> list[float]:
        """``sin(seed * (i + 1)) * 0.5`` with ``seed = len(content) + index``."""
        seed = len(content) + index
        return [math.sin(seed * (i + 1)) * 0.5 for i in range(dimensions)]

    def build_payload(self, document_id: str, text: str) -> dict:
        """Produce the same JSON shape the webhook returns."""
        chunks = [
            {"content": content, "embedding": self.pseudo_vector(content, i, self._dimensions)}
            for i, content in enumerate(self._chunker.chunk(text))
        ]
        return {
            "docId": document_id,
            "chunks": chunks,
            "totalChunks": len(chunks),
            "model": MOCK_MODEL_NAME,
            "note": MOCK_NOTE,
        }

    def embed(
        self,
        document_id: str,
        text: str,
        visibility: Visibility = Visibility.PUBLIC,
    ) -> EmbeddingResult:
        logger.warning(f"Using MOCK embeddings for doc {document_id} ({len(text)} chars)")
        return self._parse_response(self.build_payload(document_id, text))

    @property
    def dimensions(self) -> int:
        return self._dimensions


def get_embedding_client(config: Optional[IngestionConfig] = None) -> EmbeddingClient:
    """
    Factory selecting the embedding backend from configuration.

    Args:
        config: Ingestion config; read from the environment when omitted

    Returns:
        WebhookEmbeddingClient or MockEmbeddingClient
    """
    config = config or IngestionConfig.from_env()
    client_config = EmbeddingClientConfig(
        webhook_url=config.embedding_webhook_url,
        webhook_token=config.embedding_webhook_token,
        timeout_seconds=config.embedding_timeout_seconds,
        dimensions=config.embedding_dimensions,
        chunk_config=ChunkConfig(chunk_size=config.chunk_size, overlap=config.chunk_overlap),
    )

    if config.embedding_backend == "mock":
        logger.warning("Embedding backend: MOCK (development only)")
        return MockEmbeddingClient(client_config)
    if config.embedding_backend == "webhook":
        return WebhookEmbeddingClient(client_config)

    raise InvalidConfigurationError(
        f"Unknown embedding backend: {config.embedding_backend!r} (use 'webhook' or 'mock')"
    )
