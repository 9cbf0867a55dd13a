"""RAG (Retrieval-Augmented Generation) pipeline for knowledge-grounded generation."""

from .chunker import ChunkConfig, KnowledgeChunk, TextChunker, estimate_tokens
from .context import AssembledContext, ContextAssembler, ContextConfig, build_prompt
from .documents import (
    Document,
    DocumentRepository,
    InMemoryDocumentRepository,
    RedisDocumentRepository,
)
from .embedder import EmbeddingConfig, TextEmbedder
from .indexer import IndexConfig, IndexResult, IngestRequest, IngestResult, VectorIndexer
from .reranker import DocumentReranker, RerankerConfig
from .retriever import KnowledgeRetriever, RetrieverConfig, SearchResponse
from .vector_store import InMemoryVectorStore, QdrantVectorStore, RetrievedChunk, VectorStore

__all__ = [
    "TextChunker",
    "ChunkConfig",
    "KnowledgeChunk",
    "estimate_tokens",
    "ContextAssembler",
    "ContextConfig",
    "AssembledContext",
    "build_prompt",
    "Document",
    "DocumentRepository",
    "InMemoryDocumentRepository",
    "RedisDocumentRepository",
    "TextEmbedder",
    "EmbeddingConfig",
    "VectorIndexer",
    "IndexConfig",
    "IndexResult",
    "IngestRequest",
    "IngestResult",
    "DocumentReranker",
    "RerankerConfig",
    "KnowledgeRetriever",
    "RetrieverConfig",
    "SearchResponse",
    "VectorStore",
    "InMemoryVectorStore",
    "QdrantVectorStore",
    "RetrievedChunk",
]
