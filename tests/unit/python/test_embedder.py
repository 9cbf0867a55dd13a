"""Unit tests for the embedding client."""

import httpx
import pytest

from ragsupport.common.errors import (
    ConfigurationError,
    ErrorKind,
    ExternalServiceError,
    InvalidInputError,
)
from ragsupport.rag.embedder import TextEmbedder, cosine_similarity

from conftest import DIMENSION, FakeEmbeddingAPI, keyword_vector, make_embedder


class TestTextEmbedder:
    """Tests for TextEmbedder."""

    def test_requires_api_key(self):
        with pytest.raises(ConfigurationError):
            TextEmbedder(api_key=None)

    @pytest.mark.asyncio
    async def test_embed_returns_vector(self, embedder, embedding_api):
        vector = await embedder.embed("job interview tips")

        assert vector == keyword_vector("job interview tips")
        assert len(vector) == DIMENSION
        assert embedding_api.calls == [{
            "model": "text-embedding-3-large",
            "input": "job interview tips",
            "dimensions": DIMENSION,
        }]

    @pytest.mark.asyncio
    async def test_empty_text_rejected_without_call(self, embedder, embedding_api):
        with pytest.raises(InvalidInputError):
            await embedder.embed("   ")
        assert embedding_api.calls == []

    @pytest.mark.asyncio
    async def test_transient_failure_retried(self):
        api = FakeEmbeddingAPI(failures=[503, 429])
        embedder = make_embedder(api, max_retries=2)

        vector = await embedder.embed("grammar")

        assert len(vector) == DIMENSION
        assert len(api.calls) == 3

    @pytest.mark.asyncio
    async def test_timeout_retried_then_raised(self):
        api = FakeEmbeddingAPI(failures=[httpx.ConnectTimeout("timed out")] * 3)
        embedder = make_embedder(api, max_retries=2)

        with pytest.raises(ExternalServiceError) as exc_info:
            await embedder.embed("grammar")

        assert exc_info.value.kind == ErrorKind.TRANSIENT
        assert exc_info.value.retryable
        assert len(api.calls) == 3

    @pytest.mark.asyncio
    async def test_permanent_failure_not_retried(self):
        api = FakeEmbeddingAPI(failures=[400])
        embedder = make_embedder(api, max_retries=2)

        with pytest.raises(ExternalServiceError) as exc_info:
            await embedder.embed("grammar")

        assert exc_info.value.kind == ErrorKind.PERMANENT
        assert exc_info.value.status_code == 400
        assert len(api.calls) == 1

    @pytest.mark.asyncio
    async def test_dimension_mismatch_is_an_error(self):
        api = FakeEmbeddingAPI(vector_fn=lambda text: [0.5] * (DIMENSION - 1))
        embedder = make_embedder(api)

        with pytest.raises(ExternalServiceError) as exc_info:
            await embedder.embed("grammar")

        assert exc_info.value.kind == ErrorKind.PERMANENT
        assert len(api.calls) == 1

    @pytest.mark.asyncio
    async def test_malformed_response_is_permanent(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"unexpected": True})

        embedder = TextEmbedder(
            api_key="test-key",
            client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        )

        with pytest.raises(ExternalServiceError) as exc_info:
            await embedder.embed("grammar")
        assert not exc_info.value.retryable

    @pytest.mark.asyncio
    async def test_sends_bearer_token(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["auth"] = request.headers.get("Authorization")
            seen["url"] = str(request.url)
            return httpx.Response(200, json={"data": [{"embedding": [0.1] * 1536}]})

        embedder = TextEmbedder(
            embedding_endpoint="https://embeddings.example.com/v1/",
            api_key="secret",
            client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        )
        await embedder.embed("hello")

        assert seen["auth"] == "Bearer secret"
        assert seen["url"] == "https://embeddings.example.com/v1/embeddings"


class TestCosineSimilarity:
    """Tests for cosine_similarity."""

    def test_identical_vectors(self):
        assert cosine_similarity([1.0, 2.0], [1.0, 2.0]) == pytest.approx(1.0)

    def test_orthogonal_vectors(self):
        assert cosine_similarity([1.0, 0.0], [0.0, 1.0]) == pytest.approx(0.0)

    def test_zero_or_mismatched(self):
        assert cosine_similarity([0.0, 0.0], [1.0, 1.0]) == 0.0
        assert cosine_similarity([1.0], [1.0, 1.0]) == 0.0
