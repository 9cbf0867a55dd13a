"""Document reranker for the RAG pipeline."""

from __future__ import annotations

import httpx
from pydantic import Field

from ragsupport.common.errors import ConfigurationError, external_error
from ragsupport.common.logging import LoggerMixin
from ragsupport.common.models import BaseModel
from ragsupport.rag.vector_store import RetrievedChunk


class RerankerConfig(BaseModel):
    """Configuration for reranking."""

    model: str = Field(default="rerank-v3.5")
    timeout_seconds: float = Field(default=30.0, gt=0)
    min_relevance: float | None = Field(
        default=None,
        description="Drop reranked candidates scoring below this value",
    )
    fallback_count: int = Field(
        default=3,
        ge=1,
        description="Vector-order candidates kept when min_relevance empties the list",
    )


class DocumentReranker(LoggerMixin):
    """Cross-encoder reranker over a Cohere-compatible rerank API.

    Reranking is an enhancement. Any failure degrades to the original
    vector-similarity order truncated to ``top_n``, and a rerank is never
    retried.
    """

    def __init__(
        self,
        reranker_endpoint: str | None = None,
        api_key: str | None = None,
        config: RerankerConfig | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the reranker.

        Args:
            reranker_endpoint: Reranker API base URL
            api_key: Reranker API key; without one every call falls back
            config: Reranker configuration
            client: Pre-built HTTP client
        """
        self.reranker_endpoint = (reranker_endpoint or "https://api.cohere.ai/v1").rstrip("/")
        self.api_key = api_key
        self.config = config or RerankerConfig()

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

    async def rerank(
        self,
        query: str,
        candidates: list[RetrievedChunk],
        top_n: int,
    ) -> list[RetrievedChunk]:
        """Reorder candidates by relevance to the query.

        Args:
            query: Search query
            candidates: Candidates in vector-similarity order
            top_n: Maximum number of results

        Returns:
            Up to ``top_n`` candidates, reranked when the call succeeds
        """
        if not candidates or top_n <= 0:
            return []

        top_n = min(top_n, len(candidates))

        self.logger.info(
            "reranking_documents",
            query_length=len(query),
            num_documents=len(candidates),
            top_n=top_n,
        )

        try:
            scores = await self._call_reranker(query, [c.content for c in candidates], top_n)
        except Exception as e:
            self.logger.warning("rerank_failed", error=str(e), fallback="vector_order")
            return self._fallback(candidates, top_n)

        if not scores:
            self.logger.warning("rerank_empty", fallback="vector_order")
            return self._fallback(candidates, top_n)

        results = [
            candidates[index].model_copy(update={"rerank_score": score})
            for index, score in scores
        ]

        if len(results) < top_n:
            # Unscored candidates follow in vector order
            scored = {index for index, _ in scores}
            results.extend(
                c.model_copy() for i, c in enumerate(candidates) if i not in scored
            )
            results = results[:top_n]
            self.logger.info("rerank_short", scored=len(scored), top_n=top_n)

        if self.config.min_relevance is not None:
            results = [
                r for r in results
                if r.rerank_score is not None and r.rerank_score >= self.config.min_relevance
            ]
            if not results:
                self.logger.info(
                    "rerank_below_min_relevance",
                    min_relevance=self.config.min_relevance,
                )
                return self._fallback(candidates, min(top_n, self.config.fallback_count))

        return results

    def _fallback(self, candidates: list[RetrievedChunk], count: int) -> list[RetrievedChunk]:
        return [c.model_copy() for c in candidates[:count]]

    async def _call_reranker(
        self,
        query: str,
        documents: list[str],
        top_n: int,
    ) -> list[tuple[int, float]]:
        """Call the rerank API.

        Args:
            query: Search query
            documents: Candidate texts
            top_n: Number of results requested

        Returns:
            ``(index, relevance_score)`` pairs, most relevant first
        """
        if not self.api_key:
            raise ConfigurationError("reranker API key is not configured")

        client = await self._get_client()

        try:
            response = await client.post(
                f"{self.reranker_endpoint}/rerank",
                headers={
                    "Authorization": f"Bearer {self.api_key}",
                    "Content-Type": "application/json",
                },
                json={
                    "model": self.config.model,
                    "query": query,
                    "documents": documents,
                    "top_n": top_n,
                    "return_documents": False,
                },
                timeout=self.config.timeout_seconds,
            )
            response.raise_for_status()

            scores = {}
            for item in response.json()["results"]:
                index = int(item["index"])
                if not 0 <= index < len(documents):
                    raise ValueError(f"rerank index {index} out of range")
                scores.setdefault(index, float(item["relevance_score"]))
        except Exception as e:
            raise external_error("reranker", e) from e

        ranked = sorted(scores.items(), key=lambda x: x[1], reverse=True)
        return ranked[:top_n]
