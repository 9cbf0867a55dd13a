"""Semantic retrieval for the RAG pipeline."""

from __future__ import annotations

from pydantic import Field

from ragsupport.common.errors import InvalidInputError
from ragsupport.common.logging import LoggerMixin
from ragsupport.common.models import BaseModel
from ragsupport.rag.embedder import TextEmbedder
from ragsupport.rag.reranker import DocumentReranker
from ragsupport.rag.vector_store import RetrievedChunk, VectorStore


class RetrieverConfig(BaseModel):
    """Configuration for semantic retrieval."""

    threshold: float = Field(default=0.25, description="Minimum vector similarity")
    count: int = Field(default=30, gt=0, description="Candidate pool size before reranking")
    top_n: int = Field(default=8, gt=0, description="Number of results returned")
    rerank: bool = Field(default=True)
    deduplicate: bool = Field(default=True, description="Keep one chunk per document")


class SearchResponse(BaseModel):
    """Result of a semantic query."""

    query: str = Field(description="Query text")
    results: list[RetrievedChunk] = Field(default_factory=list)
    total_candidates: int = Field(default=0, description="Candidates returned by vector search")
    reranked: bool = Field(default=False, description="Whether the reranker ordered the results")


class KnowledgeRetriever(LoggerMixin):
    """Embeds a query, searches the vector store and reranks the candidates.

    A wide candidate pool is fetched at a low threshold and narrowed by the
    reranker to ``top_n``.
    """

    def __init__(
        self,
        embedder: TextEmbedder,
        vector_store: VectorStore,
        reranker: DocumentReranker | None = None,
        config: RetrieverConfig | None = None,
    ) -> None:
        """Initialize the retriever.

        Args:
            embedder: Query embedder
            vector_store: Vector store holding chunk vectors
            reranker: Optional reranker
            config: Retrieval defaults
        """
        self.embedder = embedder
        self.vector_store = vector_store
        self.reranker = reranker
        self.config = config or RetrieverConfig()

    async def retrieve_candidates(
        self,
        query_text: str,
        threshold: float | None = None,
        count: int | None = None,
    ) -> list[RetrievedChunk]:
        """Embed the query and fetch the vector-ranked candidate pool.

        Embedding and search failures propagate.
        """
        if not query_text or not query_text.strip():
            raise InvalidInputError("query_text is required")

        threshold = self.config.threshold if threshold is None else threshold
        count = self.config.count if count is None else count

        query_vector = await self.embedder.embed(query_text)
        return await self.vector_store.search(query_vector, threshold, count)

    async def rerank_candidates(
        self,
        query_text: str,
        candidates: list[RetrievedChunk],
        top_n: int | None = None,
        rerank: bool = True,
    ) -> list[RetrievedChunk]:
        """Narrow candidates to ``top_n``, reranking when a reranker is available."""
        top_n = self.config.top_n if top_n is None else top_n

        if not candidates:
            return []
        if not rerank or self.reranker is None:
            return candidates[:top_n]

        return await self.reranker.rerank(query_text, candidates, top_n)

    async def search(
        self,
        query_text: str,
        threshold: float | None = None,
        count: int | None = None,
        top_n: int | None = None,
        rerank: bool | None = None,
        deduplicate: bool | None = None,
    ) -> SearchResponse:
        """Run a semantic query.

        Args:
            query_text: Query text
            threshold: Minimum vector similarity
            count: Candidate pool size
            top_n: Number of results to return
            rerank: Whether to rerank the candidate pool
            deduplicate: Keep only the best chunk per document

        Returns:
            Ranked results with candidate count and rerank flag
        """
        rerank = self.config.rerank if rerank is None else rerank
        deduplicate = self.config.deduplicate if deduplicate is None else deduplicate

        candidates = await self.retrieve_candidates(query_text, threshold, count)

        if not candidates:
            self.logger.info("search_no_candidates", query_length=len(query_text))
            return SearchResponse(query=query_text)

        results = await self.rerank_candidates(query_text, candidates, top_n, rerank)
        reranked = any(r.rerank_score is not None for r in results)

        if deduplicate:
            results = deduplicate_by_document(results)

        self.logger.info(
            "search_completed",
            total_candidates=len(candidates),
            results=len(results),
            reranked=reranked,
        )

        return SearchResponse(
            query=query_text,
            results=results,
            total_candidates=len(candidates),
            reranked=reranked,
        )

    async def retrieve_context(
        self,
        query_text: str,
        threshold: float | None = None,
        count: int | None = None,
        top_n: int | None = None,
    ) -> list[RetrievedChunk]:
        """Best-effort retrieval for generation call sites.

        Any failure is logged and yields an empty list so generation can
        proceed without context.
        """
        try:
            response = await self.search(query_text, threshold, count, top_n)
        except Exception as e:
            self.logger.warning("context_retrieval_failed", error=str(e))
            return []
        return response.results


def deduplicate_by_document(results: list[RetrievedChunk]) -> list[RetrievedChunk]:
    """Keep the most relevant chunk of each document.

    Each document keeps the position of its first occurrence.
    """
    best: dict[str, RetrievedChunk] = {}
    for result in results:
        existing = best.get(result.document_id)
        if existing is None or result.relevance > existing.relevance:
            best[result.document_id] = result
    return list(best.values())
