"""Document ingestion for the RAG pipeline."""

from __future__ import annotations

import asyncio
import time
import uuid
from enum import Enum
from typing import Any

from pydantic import Field

from ragsupport.common.errors import ConflictError, InvalidInputError
from ragsupport.common.logging import LoggerMixin
from ragsupport.common.models import BaseModel
from ragsupport.rag.chunker import KnowledgeChunk, TextChunker
from ragsupport.rag.documents import Document, DocumentRepository
from ragsupport.rag.embedder import TextEmbedder
from ragsupport.rag.vector_store import VectorStore


class IndexStatus(str, Enum):
    """Index operation status."""

    SUCCESS = "success"
    PARTIAL = "partial"
    FAILED = "failed"


class IndexConfig(BaseModel):
    """Configuration for ingestion."""

    embed_delay_seconds: float = Field(
        default=0.2,
        ge=0,
        description="Pause between sequential embedding calls",
    )


class IngestRequest(BaseModel):
    """A document to ingest."""

    title: str = Field(min_length=1, description="Unique document title")
    content: str = Field(min_length=1, description="Raw document text")
    source_url: str | None = Field(default=None)
    file_type: str = Field(default="text")
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_by: str | None = Field(default=None)


class IngestResult(BaseModel):
    """Result of ingesting one document."""

    document_id: str = Field(description="ID of the created document")
    chunks_created: int = Field(description="Number of chunks indexed")
    title: str = Field(description="Document title")


class IndexResult(BaseModel):
    """Result of ingesting several documents."""

    status: IndexStatus = Field(description="Operation status")
    documents_indexed: int = Field(default=0)
    chunks_indexed: int = Field(default=0)
    results: list[IngestResult] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)
    duration_ms: int = Field(default=0)


class VectorIndexer(LoggerMixin):
    """Turns documents into embedded, searchable chunks.

    Chunks are embedded one at a time with a short pause between calls to
    stay within embedding provider rate limits. Ingestion is all or nothing
    for a document: a failure after the document record is written removes
    the record and any chunks already stored, then re-raises.
    """

    def __init__(
        self,
        documents: DocumentRepository,
        vector_store: VectorStore,
        embedder: TextEmbedder,
        chunker: TextChunker | None = None,
        config: IndexConfig | None = None,
    ) -> None:
        """Initialize the indexer.

        Args:
            documents: Document record repository
            vector_store: Vector store for chunk vectors
            embedder: Text embedder instance
            chunker: Text chunker instance
            config: Index configuration
        """
        self.documents = documents
        self.vector_store = vector_store
        self.embedder = embedder
        self.chunker = chunker or TextChunker()
        self.config = config or IndexConfig()

    async def ingest(self, request: IngestRequest) -> IngestResult:
        """Ingest a document.

        Args:
            request: Document to ingest

        Returns:
            Created document ID and chunk count

        Raises:
            ConflictError: If a document with the same title exists
            InvalidInputError: If the content yields no chunks
            ExternalServiceError: If embedding or storage fails
        """
        existing = await self.documents.get_by_title(request.title)
        if existing is not None:
            raise ConflictError(
                f'Document with title "{request.title}" already exists',
                existing_id=existing.id,
            )

        document = Document(
            id=str(uuid.uuid4()),
            title=request.title,
            content=request.content,
            source_url=request.source_url,
            file_type=request.file_type or "text",
            metadata=request.metadata,
            created_by=request.created_by,
        )

        chunks = self.chunker.chunk_document(document)
        if not chunks:
            raise InvalidInputError("document content produced no chunks")

        await self.documents.create(document)
        self.logger.info("document_created", document_id=document.id, title=document.title)

        try:
            vectors = await self._embed_chunks(chunks)
            for chunk, vector in zip(chunks, vectors):
                await self.vector_store.insert(chunk, vector)
        except Exception as e:
            self.logger.error(
                "ingest_failed",
                document_id=document.id,
                error=str(e),
            )
            await self._rollback(document.id)
            raise

        self.logger.info(
            "document_ingested",
            document_id=document.id,
            title=document.title,
            chunks=len(chunks),
        )

        return IngestResult(
            document_id=document.id,
            chunks_created=len(chunks),
            title=document.title,
        )

    async def ingest_many(self, requests: list[IngestRequest]) -> IndexResult:
        """Ingest several documents one after another.

        Per-document failures are recorded and do not stop the run.

        Args:
            requests: Documents to ingest

        Returns:
            Aggregate result
        """
        start_time = time.time()
        results: list[IngestResult] = []
        errors: list[str] = []

        for request in requests:
            try:
                results.append(await self.ingest(request))
            except Exception as e:
                errors.append(f"{request.title}: {e}")

        if not errors:
            status = IndexStatus.SUCCESS
        elif results:
            status = IndexStatus.PARTIAL
        else:
            status = IndexStatus.FAILED

        duration_ms = int((time.time() - start_time) * 1000)

        self.logger.info(
            "batch_ingest_complete",
            status=status.value,
            documents=len(results),
            errors=len(errors),
            duration_ms=duration_ms,
        )

        return IndexResult(
            status=status,
            documents_indexed=len(results),
            chunks_indexed=sum(r.chunks_created for r in results),
            results=results,
            errors=errors,
            duration_ms=duration_ms,
        )

    async def delete_document(self, document_id: str) -> bool:
        """Delete a document and all of its chunks.

        Args:
            document_id: Document ID

        Returns:
            True if the document existed
        """
        await self.vector_store.delete_document(document_id)
        deleted = await self.documents.delete(document_id)

        self.logger.info("document_deleted", document_id=document_id, existed=deleted)
        return deleted

    async def _embed_chunks(self, chunks: list[KnowledgeChunk]) -> list[list[float]]:
        """Embed chunks sequentially."""
        vectors = []
        for i, chunk in enumerate(chunks):
            if i > 0 and self.config.embed_delay_seconds > 0:
                await asyncio.sleep(self.config.embed_delay_seconds)

            self.logger.debug(
                "embedding_chunk",
                document_id=chunk.document_id,
                chunk=i + 1,
                total=len(chunks),
            )
            vectors.append(await self.embedder.embed(chunk.content))
        return vectors

    async def _rollback(self, document_id: str) -> None:
        """Remove partially ingested state for a document."""
        try:
            await self.vector_store.delete_document(document_id)
        except Exception as e:
            self.logger.error("rollback_chunks_failed", document_id=document_id, error=str(e))

        try:
            await self.documents.delete(document_id)
        except Exception as e:
            self.logger.error("rollback_document_failed", document_id=document_id, error=str(e))

        self.logger.info("ingest_rolled_back", document_id=document_id)
