"""Component wiring for the HTTP service."""

from __future__ import annotations

from typing import Any

from pydantic import SecretStr

from ragsupport.batch import BatchConfig, BatchProcessor, BatchTask, DocumentSummaryConfig, DocumentSummaryTask
from ragsupport.cache import (
    CacheBackend,
    InMemoryCacheBackend,
    RedisCacheBackend,
    ResponseCache,
)
from ragsupport.common import Settings, get_logger
from ragsupport.generation import CachedTranslator, GenerationOrchestrator, LLMClient, LLMConfig, RAGPipeline
from ragsupport.rag import (
    ChunkConfig,
    ContextAssembler,
    ContextConfig,
    DocumentRepository,
    DocumentReranker,
    EmbeddingConfig,
    IndexConfig,
    InMemoryDocumentRepository,
    InMemoryVectorStore,
    KnowledgeRetriever,
    QdrantVectorStore,
    RedisDocumentRepository,
    RerankerConfig,
    RetrieverConfig,
    TextChunker,
    TextEmbedder,
    VectorIndexer,
    VectorStore,
)

logger = get_logger(__name__)


def _secret(value: SecretStr | None) -> str | None:
    return value.get_secret_value() if value else None


class ServiceContainer:
    """Holds the components shared by request handlers.

    Built once per application in the lifespan handler and kept on
    ``app.state``; handlers never construct clients themselves.
    """

    def __init__(
        self,
        documents: DocumentRepository,
        vector_store: VectorStore,
        embedder: TextEmbedder,
        llm: LLMClient,
        cache: ResponseCache,
        reranker: DocumentReranker | None = None,
        chunker: TextChunker | None = None,
        assembler: ContextAssembler | None = None,
        retriever_config: RetrieverConfig | None = None,
        index_config: IndexConfig | None = None,
        batch_config: BatchConfig | None = None,
        summary_config: DocumentSummaryConfig | None = None,
    ) -> None:
        self.documents = documents
        self.vector_store = vector_store
        self.embedder = embedder
        self.reranker = reranker
        self.llm = llm
        self.cache = cache

        self.retriever = KnowledgeRetriever(embedder, vector_store, reranker, retriever_config)
        self.indexer = VectorIndexer(documents, vector_store, embedder, chunker, index_config)
        self.orchestrator = GenerationOrchestrator(llm)
        self.pipeline = RAGPipeline(self.retriever, self.orchestrator, cache, assembler)
        self.translator = CachedTranslator(llm, cache)
        self.batch_processor = BatchProcessor(batch_config)
        self.batch_tasks: list[BatchTask] = [
            DocumentSummaryTask(documents, self.orchestrator, summary_config),
        ]

    @classmethod
    async def from_settings(cls, settings: Settings) -> "ServiceContainer":
        """Build and connect every component from settings.

        Raises:
            ConfigurationError: If the embedding API key is missing
        """
        timeout = settings.external_timeout_seconds

        embedder = TextEmbedder(
            embedding_endpoint=settings.embedding_endpoint,
            api_key=_secret(settings.embedding_api_key),
            config=EmbeddingConfig(
                model=settings.embedding_model,
                dimensions=settings.embedding_dimensions,
                timeout_seconds=timeout,
                max_retries=settings.embedding_max_retries,
            ),
        )

        if settings.vector_backend == "qdrant":
            vector_store: VectorStore = QdrantVectorStore(
                vector_db_endpoint=settings.qdrant_url,
                collection_name=settings.qdrant_collection,
                dimension=settings.embedding_dimensions,
                timeout_seconds=timeout,
            )
            await vector_store.ensure_collection()
        else:
            vector_store = InMemoryVectorStore(settings.embedding_dimensions)

        if settings.document_backend == "redis":
            documents: DocumentRepository = RedisDocumentRepository(
                settings.redis_url, prefix=settings.redis_prefix
            )
            await documents.connect()
        else:
            documents = InMemoryDocumentRepository()

        if settings.cache_backend == "redis":
            cache_backend: CacheBackend = RedisCacheBackend(
                settings.redis_url, prefix=settings.redis_prefix
            )
            await cache_backend.connect()
        else:
            cache_backend = InMemoryCacheBackend()

        reranker = DocumentReranker(
            reranker_endpoint=settings.reranker_endpoint,
            api_key=_secret(settings.reranker_api_key),
            config=RerankerConfig(model=settings.reranker_model, timeout_seconds=timeout),
        )
        if reranker.api_key is None:
            logger.warning("reranker_disabled", reason="no API key configured")

        llm = LLMClient(
            llm_endpoint=settings.llm_endpoint,
            api_key=_secret(settings.llm_api_key),
            config=LLMConfig(
                model=settings.llm_model,
                max_tokens=settings.max_tokens,
                temperature=settings.temperature,
                timeout_seconds=timeout,
            ),
        )

        return cls(
            documents=documents,
            vector_store=vector_store,
            embedder=embedder,
            llm=llm,
            cache=ResponseCache(cache_backend),
            reranker=reranker,
            chunker=TextChunker(ChunkConfig(
                max_tokens=settings.chunk_max_tokens,
                overlap_tokens=settings.chunk_overlap_tokens,
                chars_per_token=settings.chars_per_token,
            )),
            assembler=ContextAssembler(ContextConfig(
                max_tokens=settings.context_max_tokens,
                chars_per_token=settings.chars_per_token,
            )),
            retriever_config=RetrieverConfig(
                threshold=settings.search_threshold,
                count=settings.search_count,
                top_n=settings.search_top_n,
            ),
            index_config=IndexConfig(embed_delay_seconds=settings.ingest_embed_delay_seconds),
            batch_config=BatchConfig(
                max_batch_size=settings.batch_max_size,
                time_budget_seconds=settings.batch_time_budget_seconds,
                item_delay_seconds=settings.batch_item_delay_seconds,
            ),
        )

    def health_checks(self) -> dict[str, Any]:
        """Component availability for the health endpoint."""
        return {
            "documents": type(self.documents).__name__,
            "vector_store": type(self.vector_store).__name__,
            "cache": type(self.cache.backend).__name__,
            "reranker": self.reranker is not None and self.reranker.api_key is not None,
            "batch_tasks": sorted(task.name for task in self.batch_tasks),
        }

    async def close(self) -> None:
        """Close every client."""
        await self.cache.close()
        await self.documents.close()
        await self.vector_store.close()
        await self.embedder.close()
        if self.reranker:
            await self.reranker.close()
        await self.llm.close()
