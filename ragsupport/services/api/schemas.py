"""Request and response bodies of the HTTP service."""

from typing import Any

from pydantic import Field

from ragsupport.common.models import BaseModel, BaseRequest


class DocumentIngestRequest(BaseRequest):
    """Request to ingest a document."""

    title: str = Field(min_length=1, description="Unique document title")
    content: str = Field(min_length=1, description="Raw document text")
    source_url: str | None = Field(default=None)
    file_type: str | None = Field(default=None)
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_by: str | None = Field(default=None)


class SearchRequest(BaseRequest):
    """Request for a semantic query."""

    query_text: str = Field(min_length=1, description="Query text")
    threshold: float | None = Field(default=None, description="Minimum vector similarity")
    count: int | None = Field(default=None, gt=0, description="Candidate pool size")
    top_n: int | None = Field(default=None, gt=0, description="Number of results")
    rerank: bool = Field(default=True)
    deduplicate: bool = Field(default=True)


class GenerateRequest(BaseRequest):
    """Request for cached retrieval-augmented generation."""

    query: str = Field(min_length=1)
    instruction: str = Field(min_length=1)
    scope: str = Field(default="rag-generate")
    params: dict[str, Any] = Field(default_factory=dict)
    ttl_seconds: int | None = Field(default=None, gt=0)
    threshold: float | None = Field(default=None)
    count: int | None = Field(default=None, gt=0)
    top_n: int | None = Field(default=None, gt=0)
    use_cache: bool = Field(default=True)
    require_context: bool = Field(default=True)
    cache_unparsed: bool = Field(default=False)
    case_insensitive: bool = Field(default=False)


class TranslateRequest(BaseRequest):
    """Request to translate a text."""

    text: str = Field(default="")
    source_language: str = Field(description="Source language code")
    target_language: str = Field(description="Target language code")


class TranslateResult(BaseModel):
    """Translation result."""

    translation: str
    cached: bool = False


class BatchRunRequest(BaseRequest):
    """Request to run one batch invocation."""

    item_ids: list[str] = Field(default_factory=list)
    batch_size: int = Field(default=5)
    skip_existing: bool = Field(default=True)


class DeleteResult(BaseModel):
    """Document deletion result."""

    document_id: str
    deleted: bool
