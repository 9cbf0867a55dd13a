"""Text embedding for the RAG pipeline."""

from __future__ import annotations

import asyncio

import httpx
from pydantic import Field

from ragsupport.common.errors import (
    ConfigurationError,
    ErrorKind,
    ExternalServiceError,
    InvalidInputError,
    external_error,
)
from ragsupport.common.logging import LoggerMixin
from ragsupport.common.models import BaseModel


class EmbeddingConfig(BaseModel):
    """Configuration for text embedding."""

    model: str = Field(default="text-embedding-3-large")
    dimensions: int = Field(default=1536, gt=0, description="Vector dimension for this deployment")
    timeout_seconds: float = Field(default=30.0, gt=0)
    max_retries: int = Field(default=2, ge=0, description="Retries for transient failures")
    retry_delay_seconds: float = Field(default=1.0, ge=0)


class TextEmbedder(LoggerMixin):
    """Client for an OpenAI-compatible embeddings endpoint.

    Failures always propagate. A zero or default vector is never returned in
    place of a real embedding, since a wrong vector silently corrupts every
    later similarity search that touches it.
    """

    def __init__(
        self,
        embedding_endpoint: str | None = None,
        api_key: str | None = None,
        config: EmbeddingConfig | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the embedder.

        Args:
            embedding_endpoint: Embeddings API base URL
            api_key: API key for the embeddings endpoint
            config: Embedding configuration
            client: Pre-built HTTP client
        """
        if not api_key:
            raise ConfigurationError("embedding API key is not configured")

        self.embedding_endpoint = (embedding_endpoint or "https://api.openai.com/v1").rstrip("/")
        self.api_key = api_key
        self.config = config or EmbeddingConfig()

        self._client = client

    async def _get_client(self) -> httpx.AsyncClient:
        """Get HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.config.timeout_seconds),
            )
        return self._client

    async def close(self) -> None:
        """Close HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    @property
    def dimension(self) -> int:
        """Embedding dimension for this deployment."""
        return self.config.dimensions

    async def embed(self, text: str) -> list[float]:
        """Embed a single text.

        Transient failures are retried up to ``max_retries`` times; the call
        is idempotent for a fixed input.

        Args:
            text: Text to embed

        Returns:
            Embedding vector of length ``dimension``

        Raises:
            InvalidInputError: If the text is empty
            ExternalServiceError: If the call fails
        """
        if not text or not text.strip():
            raise InvalidInputError("cannot embed empty text")

        for attempt in range(self.config.max_retries + 1):
            try:
                return await self._call_embedding_api(text)
            except ExternalServiceError as e:
                if not e.retryable or attempt >= self.config.max_retries:
                    self.logger.error(
                        "embedding_failed",
                        attempt=attempt + 1,
                        kind=e.kind.value,
                        error=str(e),
                    )
                    raise
                self.logger.warning(
                    "embedding_attempt_failed",
                    attempt=attempt + 1,
                    error=str(e),
                )
                await asyncio.sleep(self.config.retry_delay_seconds * (attempt + 1))

        raise ExternalServiceError("embeddings", "retries exhausted")

    async def _call_embedding_api(self, text: str) -> list[float]:
        """Call the embeddings API once.

        Args:
            text: Text to embed

        Returns:
            Embedding vector
        """
        client = await self._get_client()

        try:
            response = await client.post(
                f"{self.embedding_endpoint}/embeddings",
                headers={
                    "Authorization": f"Bearer {self.api_key}",
                    "Content-Type": "application/json",
                },
                json={
                    "model": self.config.model,
                    "input": text,
                    "dimensions": self.config.dimensions,
                },
                timeout=self.config.timeout_seconds,
            )
            response.raise_for_status()
            embedding = response.json()["data"][0]["embedding"]
        except Exception as e:
            raise external_error("embeddings", e) from e

        if not isinstance(embedding, list) or len(embedding) != self.config.dimensions:
            size = len(embedding) if isinstance(embedding, list) else None
            raise ExternalServiceError(
                "embeddings",
                f"expected {self.config.dimensions} dimensions, got {size}",
                kind=ErrorKind.PERMANENT,
            )

        return [float(x) for x in embedding]


def cosine_similarity(vec1: list[float], vec2: list[float]) -> float:
    """Calculate cosine similarity between vectors."""
    if len(vec1) != len(vec2):
        return 0.0

    dot_product = sum(a * b for a, b in zip(vec1, vec2))
    norm1 = sum(a * a for a in vec1) ** 0.5
    norm2 = sum(b * b for b in vec2) ** 0.5

    if norm1 == 0 or norm2 == 0:
        return 0.0

    return dot_product / (norm1 * norm2)
