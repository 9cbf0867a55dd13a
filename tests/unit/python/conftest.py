"""Shared fixtures and fakes for unit tests."""

import json
import re
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

import httpx
import pytest
import redis.asyncio as redis

from ragsupport.cache import InMemoryCacheBackend, ResponseCache
from ragsupport.generation import LLMClient, LLMConfig
from ragsupport.rag import (
    DocumentReranker,
    EmbeddingConfig,
    IndexConfig,
    InMemoryDocumentRepository,
    InMemoryVectorStore,
    KnowledgeRetriever,
    RerankerConfig,
    TextEmbedder,
    VectorIndexer,
)


# Each keyword is one axis of the test embedding space
KEYWORDS = ("interview", "job", "resume", "grammar", "weather", "travel", "food")
DIMENSION = len(KEYWORDS) + 1


def keyword_vector(text: str) -> list[float]:
    """Deterministic embedding counting keyword occurrences."""
    words = re.findall(r"\w+", text.lower())
    vector = [float(sum(1 for w in words if w.startswith(k))) for k in KEYWORDS]
    vector.append(0.1)
    return vector


class FakeClock:
    """Controllable UTC clock."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2025, 1, 1, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: Any) -> None:
        self.now += timedelta(**kwargs)


class FakePipeline:
    """Buffers commands and applies them together on ``execute``."""

    def __init__(self, redis: "FakeRedis", transaction: bool) -> None:
        self.redis = redis
        self.transaction = transaction
        self.commands: list[tuple[str, tuple, dict]] = []

    async def __aenter__(self) -> "FakePipeline":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        self.commands.clear()

    def __getattr__(self, name: str) -> Callable[..., "FakePipeline"]:
        def buffer(*args: Any, **kwargs: Any) -> "FakePipeline":
            self.commands.append((name, args, kwargs))
            return self

        return buffer

    async def execute(self) -> list[Any]:
        self.redis.pipelines.append([name for name, _, _ in self.commands])
        results = []
        for name, args, kwargs in self.commands:
            results.append(await getattr(self.redis, name)(*args, **kwargs))
        self.commands.clear()
        return results


class FakeRedis:
    """In-process stand-in for the subset of redis.asyncio used here.

    A key containing any of ``failing_keys`` raises ``ConnectionError`` on
    writes.
    """

    def __init__(self) -> None:
        self.strings: dict[str, str] = {}
        self.hashes: dict[str, dict[str, str]] = {}
        self.ttls: dict[str, int] = {}
        self.pipelines: list[list[str]] = []
        self.failing_keys: set[str] = set()
        self.closed = False

    def _check_write(self, key: str) -> None:
        if any(fragment in key for fragment in self.failing_keys):
            raise redis.ConnectionError(f"write to {key} failed")

    def pipeline(self, transaction: bool = True) -> FakePipeline:
        return FakePipeline(self, transaction)

    async def set(self, key: str, value: str, nx: bool = False, xx: bool = False) -> bool | None:
        self._check_write(key)
        if nx and key in self.strings:
            return None
        if xx and key not in self.strings:
            return None
        self.strings[key] = str(value)
        return True

    async def get(self, key: str) -> str | None:
        return self.strings.get(key)

    async def delete(self, *keys: str) -> int:
        deleted = 0
        for key in keys:
            self.ttls.pop(key, None)
            if self.strings.pop(key, None) is not None:
                deleted += 1
            if self.hashes.pop(key, None) is not None:
                deleted += 1
        return deleted

    async def ttl(self, key: str) -> int:
        if key not in self.strings and key not in self.hashes:
            return -2
        return self.ttls.get(key, -1)

    async def hset(self, key: str, mapping: dict[str, Any]) -> int:
        self._check_write(key)
        self.hashes.setdefault(key, {}).update({k: str(v) for k, v in mapping.items()})
        return len(mapping)

    async def hgetall(self, key: str) -> dict[str, str]:
        return dict(self.hashes.get(key, {}))

    async def hincrby(self, key: str, field: str, amount: int = 1) -> int:
        fields = self.hashes.setdefault(key, {})
        fields[field] = str(int(fields.get(field, 0)) + amount)
        return int(fields[field])

    async def expire(self, key: str, seconds: int) -> bool:
        self.ttls[key] = seconds
        return True

    async def aclose(self) -> None:
        self.closed = True


class FakeEmbeddingAPI:
    """Mock OpenAI-compatible embeddings endpoint.

    ``failures`` are consumed before successful responses: an int is
    returned as that HTTP status, an exception is raised.
    """

    def __init__(
        self,
        vector_fn: Callable[[str], list[float]] = keyword_vector,
        failures: list[Any] | None = None,
    ) -> None:
        self.vector_fn = vector_fn
        self.failures = list(failures or [])
        self.calls: list[dict[str, Any]] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        self.calls.append(body)
        if self.failures:
            failure = self.failures.pop(0)
            if isinstance(failure, Exception):
                raise failure
            return httpx.Response(failure, json={"error": "failure"})
        return httpx.Response(200, json={"data": [{"embedding": self.vector_fn(body["input"])}]})

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))


class FakeRerankAPI:
    """Mock Cohere-compatible rerank endpoint scoring by a callable.

    ``max_results`` truncates the response below the requested ``top_n``.
    """

    def __init__(
        self,
        score_fn: Callable[[str, str], float] | None = None,
        status_code: int = 200,
        max_results: int | None = None,
    ) -> None:
        self.score_fn = score_fn or (lambda query, doc: 0.5)
        self.status_code = status_code
        self.max_results = max_results
        self.calls: list[dict[str, Any]] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        self.calls.append(body)
        if self.status_code != 200:
            return httpx.Response(self.status_code, json={"message": "failure"})

        scored = [
            {"index": i, "relevance_score": self.score_fn(body["query"], doc)}
            for i, doc in enumerate(body["documents"])
        ]
        scored.sort(key=lambda r: r["relevance_score"], reverse=True)
        limit = body["top_n"] if self.max_results is None else min(body["top_n"], self.max_results)
        return httpx.Response(200, json={"results": scored[:limit]})

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))


class FakeChatAPI:
    """Mock chat completions endpoint replying from a queue.

    A reply may be a string (completion text) or an int (HTTP status).
    The last reply repeats once the queue is exhausted.
    """

    def __init__(self, replies: list[Any] | None = None) -> None:
        self.replies = list(replies or ['{"answer": "ok"}'])
        self.calls: list[dict[str, Any]] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        self.calls.append(body)
        reply = self.replies.pop(0) if len(self.replies) > 1 else self.replies[0]
        if isinstance(reply, int):
            return httpx.Response(reply, json={"error": "failure"})
        return httpx.Response(
            200,
            json={"choices": [{"message": {"role": "assistant", "content": reply}}]},
        )

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))

    @property
    def prompts(self) -> list[str]:
        return [call["messages"][-1]["content"] for call in self.calls]


def make_embedder(api: FakeEmbeddingAPI, max_retries: int = 2) -> TextEmbedder:
    return TextEmbedder(
        api_key="test-key",
        config=EmbeddingConfig(
            dimensions=DIMENSION,
            max_retries=max_retries,
            retry_delay_seconds=0,
        ),
        client=api.client(),
    )


def make_reranker(api: FakeRerankAPI, **config: Any) -> DocumentReranker:
    return DocumentReranker(api_key="test-key", config=RerankerConfig(**config), client=api.client())


def make_llm(api: FakeChatAPI) -> LLMClient:
    return LLMClient(api_key="test-key", config=LLMConfig(), client=api.client())


@pytest.fixture
def clock() -> FakeClock:
    """Controllable clock."""
    return FakeClock()


@pytest.fixture
def fake_redis() -> FakeRedis:
    """In-process Redis fake."""
    return FakeRedis()


@pytest.fixture
def embedding_api() -> FakeEmbeddingAPI:
    """Mock embeddings endpoint."""
    return FakeEmbeddingAPI()


@pytest.fixture
def embedder(embedding_api: FakeEmbeddingAPI) -> TextEmbedder:
    """Embedder backed by the mock endpoint."""
    return make_embedder(embedding_api)


@pytest.fixture
def vector_store() -> InMemoryVectorStore:
    """Empty in-memory vector store."""
    return InMemoryVectorStore(DIMENSION)


@pytest.fixture
def documents() -> InMemoryDocumentRepository:
    """Empty in-memory document repository."""
    return InMemoryDocumentRepository()


@pytest.fixture
def indexer(documents, vector_store, embedder) -> VectorIndexer:
    """Indexer without inter-call delay."""
    return VectorIndexer(
        documents,
        vector_store,
        embedder,
        config=IndexConfig(embed_delay_seconds=0),
    )


@pytest.fixture
def rerank_api() -> FakeRerankAPI:
    """Mock rerank endpoint favouring documents about interviews."""
    return FakeRerankAPI(lambda query, doc: 0.95 if "interview" in doc.lower() else 0.1)


@pytest.fixture
def retriever(embedder, vector_store, rerank_api) -> KnowledgeRetriever:
    """Retriever with reranking."""
    return KnowledgeRetriever(embedder, vector_store, make_reranker(rerank_api))


@pytest.fixture
def chat_api() -> FakeChatAPI:
    """Mock chat completions endpoint."""
    return FakeChatAPI()


@pytest.fixture
def response_cache(clock: FakeClock) -> ResponseCache:
    """In-memory response cache on the fake clock."""
    return ResponseCache(InMemoryCacheBackend(clock=clock), clock=clock)
