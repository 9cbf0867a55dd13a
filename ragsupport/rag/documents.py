"""Document records for ingested knowledge."""

from __future__ import annotations

import hashlib
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any

import redis.asyncio as redis
from pydantic import Field

from ragsupport.common.errors import ConflictError, ExternalServiceError, ErrorKind
from ragsupport.common.logging import LoggerMixin
from ragsupport.common.models import BaseModel, utcnow


class Document(BaseModel):
    """A source document owning an ordered set of chunks."""

    id: str = Field(description="Document ID")
    title: str = Field(description="Unique document title")
    content: str = Field(description="Raw document content")
    source_url: str | None = Field(default=None)
    file_type: str = Field(default="text")
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_by: str | None = Field(default=None)
    created_at: datetime = Field(default_factory=utcnow)


class DocumentRepository(ABC):
    """Storage for document records with unique titles."""

    @abstractmethod
    async def create(self, document: Document) -> Document:
        """Insert a document, rejecting a duplicate title with ConflictError."""

    @abstractmethod
    async def get(self, document_id: str) -> Document | None:
        """Fetch a document by ID."""

    @abstractmethod
    async def get_by_title(self, title: str) -> Document | None:
        """Fetch a document by title."""

    @abstractmethod
    async def update(self, document: Document) -> bool:
        """Replace an existing record, keeping its title. Returns False if absent."""

    @abstractmethod
    async def delete(self, document_id: str) -> bool:
        """Delete a document record. Returns True if it existed."""

    async def close(self) -> None:
        """Release resources."""


class InMemoryDocumentRepository(DocumentRepository):
    """Process-local repository for development and tests."""

    def __init__(self) -> None:
        self._documents: dict[str, Document] = {}
        self._titles: dict[str, str] = {}

    async def create(self, document: Document) -> Document:
        existing_id = self._titles.get(document.title)
        if existing_id is not None:
            raise ConflictError(
                f'Document with title "{document.title}" already exists',
                existing_id=existing_id,
            )
        self._titles[document.title] = document.id
        self._documents[document.id] = document.model_copy(deep=True)
        return document

    async def get(self, document_id: str) -> Document | None:
        document = self._documents.get(document_id)
        return document.model_copy(deep=True) if document else None

    async def get_by_title(self, title: str) -> Document | None:
        document_id = self._titles.get(title)
        return await self.get(document_id) if document_id else None

    async def update(self, document: Document) -> bool:
        existing = self._documents.get(document.id)
        if existing is None:
            return False
        self._documents[document.id] = document.model_copy(update={"title": existing.title}, deep=True)
        return True

    async def delete(self, document_id: str) -> bool:
        document = self._documents.pop(document_id, None)
        if document is None:
            return False
        self._titles.pop(document.title, None)
        return True


class RedisDocumentRepository(DocumentRepository, LoggerMixin):
    """Redis-backed repository.

    The title is claimed with ``SET NX`` before the record is written, so
    two concurrent ingestions of the same title cannot both succeed. When
    the record write fails the claim is released again.
    """

    def __init__(
        self,
        redis_url: str | None = None,
        prefix: str = "ragsupport:",
        client: redis.Redis | None = None,
    ) -> None:
        """Initialize the repository.

        Args:
            redis_url: Redis connection URL
            prefix: Key prefix for namespacing
            client: Pre-built Redis client
        """
        self.redis_url = redis_url
        self.prefix = prefix
        self._client = client

    async def connect(self) -> None:
        """Connect to Redis."""
        if self._client is None:
            self._client = redis.from_url(
                self.redis_url,
                encoding="utf-8",
                decode_responses=True,
            )
            self.logger.info("redis_connected", url=self.redis_url)

    async def close(self) -> None:
        """Disconnect from Redis."""
        if self._client:
            await self._client.aclose()
            self._client = None

    def _document_key(self, document_id: str) -> str:
        return f"{self.prefix}document:{document_id}"

    def _title_key(self, title: str) -> str:
        digest = hashlib.sha256(title.encode("utf-8")).hexdigest()
        return f"{self.prefix}document_title:{digest}"

    def _require_client(self) -> redis.Redis:
        if self._client is None:
            raise ExternalServiceError("redis", "repository not connected", kind=ErrorKind.PERMANENT)
        return self._client

    async def create(self, document: Document) -> Document:
        client = self._require_client()
        title_key = self._title_key(document.title)
        try:
            claimed = await client.set(title_key, document.id, nx=True)
            if not claimed:
                existing_id = await client.get(title_key)
                raise ConflictError(
                    f'Document with title "{document.title}" already exists',
                    existing_id=existing_id,
                )
        except redis.RedisError as e:
            raise ExternalServiceError("redis", str(e), kind=ErrorKind.TRANSIENT) from e

        try:
            await client.set(self._document_key(document.id), document.model_dump_json())
        except redis.RedisError as e:
            await self._release_title(title_key, document.id)
            raise ExternalServiceError("redis", str(e), kind=ErrorKind.TRANSIENT) from e

        return document

    async def _release_title(self, title_key: str, document_id: str) -> None:
        """Drop a title claim after a failed record write."""
        try:
            await self._require_client().delete(title_key)
        except redis.RedisError as e:
            self.logger.error(
                "title_release_failed",
                document_id=document_id,
                title_key=title_key,
                error=str(e),
            )
            return
        self.logger.warning("title_claim_released", document_id=document_id)

    async def get(self, document_id: str) -> Document | None:
        client = self._require_client()
        try:
            raw = await client.get(self._document_key(document_id))
        except redis.RedisError as e:
            raise ExternalServiceError("redis", str(e), kind=ErrorKind.TRANSIENT) from e
        return Document.model_validate_json(raw) if raw else None

    async def get_by_title(self, title: str) -> Document | None:
        client = self._require_client()
        try:
            document_id = await client.get(self._title_key(title))
        except redis.RedisError as e:
            raise ExternalServiceError("redis", str(e), kind=ErrorKind.TRANSIENT) from e
        return await self.get(document_id) if document_id else None

    async def update(self, document: Document) -> bool:
        existing = await self.get(document.id)
        if existing is None:
            return False

        client = self._require_client()
        record = document.model_copy(update={"title": existing.title})
        try:
            written = await client.set(self._document_key(document.id), record.model_dump_json(), xx=True)
        except redis.RedisError as e:
            raise ExternalServiceError("redis", str(e), kind=ErrorKind.TRANSIENT) from e
        return bool(written)

    async def delete(self, document_id: str) -> bool:
        document = await self.get(document_id)
        if document is None:
            return False

        client = self._require_client()
        try:
            await client.delete(self._document_key(document_id), self._title_key(document.title))
        except redis.RedisError as e:
            raise ExternalServiceError("redis", str(e), kind=ErrorKind.TRANSIENT) from e

        self.logger.info("document_record_deleted", document_id=document_id)
        return True
