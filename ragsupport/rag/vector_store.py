"""Vector storage and server-side similarity search."""

from __future__ import annotations

import uuid
from abc import ABC, abstractmethod
from typing import Any

import httpx
from pydantic import Field

from ragsupport.common.errors import InvalidInputError, external_error
from ragsupport.common.logging import LoggerMixin
from ragsupport.common.models import BaseModel
from ragsupport.rag.chunker import KnowledgeChunk
from ragsupport.rag.embedder import cosine_similarity


class RetrievedChunk(BaseModel):
    """A chunk returned by similarity search."""

    chunk_id: str = Field(description="Chunk ID")
    document_id: str = Field(description="Parent document ID")
    source_title: str = Field(default="", description="Title of the source document")
    content: str = Field(description="Chunk content")
    chunk_index: int = Field(default=0)
    score: float = Field(description="Vector similarity score")
    rerank_score: float | None = Field(default=None, description="Reranker relevance score")
    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def relevance(self) -> float:
        """Best available relevance score."""
        return self.rerank_score if self.rerank_score is not None else self.score


class VectorStore(ABC):
    """Persists chunk vectors and ranks them against a query vector.

    Ranking happens inside the store so it scales independently of the
    result-set size. ``threshold`` and ``count`` are chosen per call site.
    """

    def __init__(self, dimension: int) -> None:
        self.dimension = dimension

    @abstractmethod
    async def insert(self, chunk: KnowledgeChunk, vector: list[float]) -> None:
        """Persist a chunk with its vector."""

    @abstractmethod
    async def search(
        self,
        query_vector: list[float],
        threshold: float,
        count: int,
    ) -> list[RetrievedChunk]:
        """Return up to ``count`` chunks scoring at least ``threshold``, best first.

        An empty list is a valid result.
        """

    @abstractmethod
    async def delete_document(self, document_id: str) -> None:
        """Delete every chunk belonging to a document."""

    async def close(self) -> None:
        """Release resources."""

    def _check_vector(self, vector: list[float]) -> None:
        if len(vector) != self.dimension:
            raise InvalidInputError(
                f"vector dimension {len(vector)} does not match store dimension {self.dimension}"
            )


def _to_retrieved(chunk: KnowledgeChunk, score: float) -> RetrievedChunk:
    return RetrievedChunk(
        chunk_id=chunk.chunk_id,
        document_id=chunk.document_id,
        source_title=chunk.metadata.get("document_title") or "",
        content=chunk.content,
        chunk_index=chunk.chunk_index,
        score=score,
        metadata=dict(chunk.metadata),
    )


class InMemoryVectorStore(VectorStore):
    """Process-local store computing cosine similarity internally."""

    def __init__(self, dimension: int) -> None:
        super().__init__(dimension)
        self._points: dict[str, tuple[KnowledgeChunk, list[float]]] = {}

    async def insert(self, chunk: KnowledgeChunk, vector: list[float]) -> None:
        self._check_vector(vector)
        self._points[chunk.chunk_id] = (chunk.model_copy(deep=True), list(vector))

    async def search(
        self,
        query_vector: list[float],
        threshold: float,
        count: int,
    ) -> list[RetrievedChunk]:
        self._check_vector(query_vector)
        if count <= 0:
            return []

        scored = [
            (cosine_similarity(query_vector, vector), chunk)
            for chunk, vector in self._points.values()
        ]
        scored = [(score, chunk) for score, chunk in scored if score >= threshold]
        scored.sort(key=lambda item: (-item[0], item[1].document_id, item[1].chunk_index))

        return [_to_retrieved(chunk, score) for score, chunk in scored[:count]]

    async def delete_document(self, document_id: str) -> None:
        for chunk_id in [
            cid for cid, (chunk, _) in self._points.items() if chunk.document_id == document_id
        ]:
            del self._points[chunk_id]

    def __len__(self) -> int:
        return len(self._points)


class QdrantVectorStore(VectorStore, LoggerMixin):
    """Qdrant-backed store using the REST API."""

    def __init__(
        self,
        vector_db_endpoint: str | None = None,
        collection_name: str = "knowledge_chunks",
        dimension: int = 1536,
        timeout_seconds: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the store.

        Args:
            vector_db_endpoint: Qdrant endpoint
            collection_name: Collection holding chunk points
            dimension: Vector dimension
            timeout_seconds: Timeout for every call
            client: Pre-built HTTP client
        """
        super().__init__(dimension)
        self.vector_db_endpoint = (vector_db_endpoint or "http://localhost:6333").rstrip("/")
        self.collection_name = collection_name
        self.timeout_seconds = timeout_seconds

        self._client = client

    async def _get_client(self) -> httpx.AsyncClient:
        """Get HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout_seconds),
            )
        return self._client

    async def close(self) -> None:
        """Close HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    @property
    def _collection_url(self) -> str:
        return f"{self.vector_db_endpoint}/collections/{self.collection_name}"

    async def ensure_collection(self) -> None:
        """Create the collection and its document index if missing."""
        client = await self._get_client()

        try:
            response = await client.get(self._collection_url)
            if response.status_code == 200:
                self.logger.info("collection_exists", name=self.collection_name)
                return

            response = await client.put(
                self._collection_url,
                json={
                    "vectors": {
                        "size": self.dimension,
                        "distance": "Cosine",
                    },
                },
            )
            response.raise_for_status()

            response = await client.put(
                f"{self._collection_url}/index",
                params={"wait": "true"},
                json={"field_name": "document_id", "field_schema": "keyword"},
            )
            response.raise_for_status()
        except Exception as e:
            raise external_error("qdrant", e) from e

        self.logger.info("collection_created", name=self.collection_name)

    async def insert(self, chunk: KnowledgeChunk, vector: list[float]) -> None:
        self._check_vector(vector)
        client = await self._get_client()

        point = {
            "id": str(uuid.uuid5(uuid.NAMESPACE_URL, chunk.chunk_id)),
            "vector": vector,
            "payload": {
                "chunk_id": chunk.chunk_id,
                "document_id": chunk.document_id,
                "chunk_index": chunk.chunk_index,
                "content": chunk.content,
                "token_count": chunk.token_count,
                "metadata": chunk.metadata,
            },
        }

        try:
            response = await client.put(
                f"{self._collection_url}/points",
                params={"wait": "true"},
                json={"points": [point]},
            )
            response.raise_for_status()
        except Exception as e:
            raise external_error("qdrant", e) from e

    async def search(
        self,
        query_vector: list[float],
        threshold: float,
        count: int,
    ) -> list[RetrievedChunk]:
        self._check_vector(query_vector)
        if count <= 0:
            return []

        client = await self._get_client()

        try:
            response = await client.post(
                f"{self._collection_url}/points/search",
                json={
                    "vector": query_vector,
                    "limit": count,
                    "score_threshold": threshold,
                    "with_payload": True,
                },
            )
            response.raise_for_status()
            points = response.json().get("result", [])
        except Exception as e:
            raise external_error("qdrant", e) from e

        results = []
        for point in points:
            score = float(point.get("score", 0.0))
            if score < threshold:
                continue
            payload = point.get("payload", {})
            metadata = payload.get("metadata", {})
            results.append(RetrievedChunk(
                chunk_id=payload.get("chunk_id", str(point.get("id"))),
                document_id=payload.get("document_id", ""),
                source_title=metadata.get("document_title") or "",
                content=payload.get("content", ""),
                chunk_index=payload.get("chunk_index", 0),
                score=score,
                metadata=metadata,
            ))

        return results

    async def delete_document(self, document_id: str) -> None:
        client = await self._get_client()

        try:
            response = await client.post(
                f"{self._collection_url}/points/delete",
                params={"wait": "true"},
                json={
                    "filter": {
                        "must": [
                            {"key": "document_id", "match": {"value": document_id}}
                        ]
                    }
                },
            )
            response.raise_for_status()
        except Exception as e:
            raise external_error("qdrant", e) from e

        self.logger.info("document_chunks_deleted", document_id=document_id)
