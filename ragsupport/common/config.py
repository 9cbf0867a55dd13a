"""Configuration management for the retrieval-and-generation layer."""

from functools import lru_cache
from typing import Literal

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Service identification
    service_name: str = Field(default="ragsupport", description="Service name")
    environment: Literal["development", "staging", "production"] = Field(
        default="development", description="Deployment environment"
    )
    debug: bool = Field(default=False, description="Enable debug mode")

    # Server settings
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8000, description="Server port")

    # Storage backends
    redis_url: str = Field(
        default="redis://localhost:6379/0",
        description="Redis connection URL",
    )
    redis_prefix: str = Field(default="ragsupport:", description="Redis key prefix")
    cache_backend: Literal["redis", "memory"] = Field(
        default="redis", description="Response cache backend"
    )
    document_backend: Literal["redis", "memory"] = Field(
        default="redis", description="Document record backend"
    )
    vector_backend: Literal["qdrant", "memory"] = Field(
        default="qdrant", description="Vector store backend"
    )
    qdrant_url: str = Field(default="http://localhost:6333", description="Qdrant endpoint")
    qdrant_collection: str = Field(
        default="knowledge_chunks", description="Qdrant collection for chunks"
    )

    # Embeddings
    embedding_endpoint: str = Field(
        default="https://api.openai.com/v1",
        description="OpenAI-compatible embeddings endpoint",
    )
    embedding_model: str = Field(
        default="text-embedding-3-large",
        description="Embedding model",
    )
    embedding_dimensions: int = Field(default=1536, description="Embedding dimension")
    embedding_api_key: SecretStr | None = Field(default=None, description="Embedding API key")

    # Reranker
    reranker_endpoint: str = Field(
        default="https://api.cohere.ai/v1",
        description="Cohere-compatible rerank endpoint",
    )
    reranker_model: str = Field(default="rerank-v3.5", description="Rerank model")
    reranker_api_key: SecretStr | None = Field(
        default=None, description="Reranker API key (reranking disabled when unset)"
    )

    # Generative model
    llm_endpoint: str = Field(
        default="https://api.openai.com/v1",
        description="OpenAI-compatible chat completions endpoint",
    )
    llm_model: str = Field(default="gpt-4o-mini", description="Generation model")
    llm_api_key: SecretStr | None = Field(default=None, description="Generation API key")
    max_tokens: int = Field(default=4096, description="Maximum tokens for LLM")
    temperature: float = Field(default=0.2, description="LLM temperature")

    # External call policy
    external_timeout_seconds: float = Field(
        default=30.0, description="Timeout applied to every external call"
    )
    embedding_max_retries: int = Field(
        default=2, description="Retries for transient embedding failures"
    )

    # Chunking / ingestion
    chunk_max_tokens: int = Field(default=1024, description="Chunk token budget")
    chunk_overlap_tokens: int = Field(default=120, description="Chunk overlap in tokens")
    chars_per_token: int = Field(default=4, description="Token estimate divisor")
    ingest_embed_delay_seconds: float = Field(
        default=0.2, description="Delay between chunk embedding calls"
    )

    # Retrieval
    search_threshold: float = Field(default=0.25, description="Default similarity threshold")
    search_count: int = Field(default=30, description="Default candidate count")
    search_top_n: int = Field(default=8, description="Default results after rerank")
    context_max_tokens: int = Field(default=3000, description="Prompt context budget")

    # Batch processing
    batch_time_budget_seconds: float = Field(
        default=25.0, description="Wall-clock budget per batch invocation"
    )
    batch_max_size: int = Field(default=5, description="Hard cap on items per invocation")
    batch_item_delay_seconds: float = Field(
        default=0.35, description="Delay between batch items"
    )

    # Observability
    log_level: str = Field(default="INFO", description="Logging level")
    log_format: Literal["json", "text"] = Field(
        default="json", description="Log output format"
    )


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
