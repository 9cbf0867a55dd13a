"""Storage backends for the response cache."""

from __future__ import annotations

import json
import math
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Callable

import redis.asyncio as redis
from pydantic import Field

from ragsupport.common.errors import ErrorKind, ExternalServiceError
from ragsupport.common.logging import LoggerMixin
from ragsupport.common.models import BaseModel, utcnow


class CacheEntry(BaseModel):
    """A cached pipeline or generation output."""

    cache_key: str = Field(description="Deterministic cache key")
    scope: str = Field(description="Pipeline or endpoint that produced the entry")
    response: Any = Field(description="Opaque JSON-serializable payload")
    request_params: dict[str, Any] = Field(default_factory=dict)
    expires_at: datetime = Field(description="Expiry time (UTC)")
    hit_count: int = Field(default=0, ge=0)
    created_at: datetime = Field(default_factory=utcnow)

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at


class CacheBackend(ABC):
    """Key-value storage for cache entries.

    Entries are removed only by passive expiry; there is no eviction sweep.
    """

    @abstractmethod
    async def read(self, cache_key: str) -> CacheEntry | None:
        """Fetch an entry, or None if absent or expired."""

    @abstractmethod
    async def write(self, entry: CacheEntry, ttl_seconds: float) -> None:
        """Store an entry, fully replacing any entry with the same key."""

    @abstractmethod
    async def increment_hits(self, cache_key: str) -> None:
        """Increment the hit counter of an existing entry."""

    async def close(self) -> None:
        """Release resources."""


class InMemoryCacheBackend(CacheBackend):
    """Process-local backend with lazy expiry on read."""

    def __init__(self, clock: Callable[[], datetime] = utcnow) -> None:
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}

    async def read(self, cache_key: str) -> CacheEntry | None:
        entry = self._entries.get(cache_key)
        if entry is None:
            return None
        if entry.is_expired(self._clock()):
            del self._entries[cache_key]
            return None
        return entry.model_copy(deep=True)

    async def write(self, entry: CacheEntry, ttl_seconds: float) -> None:
        self._entries[entry.cache_key] = entry.model_copy(deep=True)

    async def increment_hits(self, cache_key: str) -> None:
        entry = self._entries.get(cache_key)
        if entry is not None:
            entry.hit_count += 1

    def __len__(self) -> int:
        return len(self._entries)


class RedisCacheBackend(CacheBackend, LoggerMixin):
    """Redis backend storing each entry as a hash.

    The Redis key expires with the entry, so Redis performs the passive
    eviction. ``expires_at`` is still checked on read because key expiry
    has one-second resolution.
    """

    def __init__(
        self,
        redis_url: str | None = None,
        prefix: str = "ragsupport:",
        client: redis.Redis | None = None,
    ) -> None:
        """Initialize the backend.

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

    def _make_key(self, cache_key: str) -> str:
        """Create prefixed key."""
        return f"{self.prefix}cache:{cache_key}"

    def _require_client(self) -> redis.Redis:
        if self._client is None:
            raise ExternalServiceError("redis", "cache backend not connected", kind=ErrorKind.PERMANENT)
        return self._client

    async def read(self, cache_key: str) -> CacheEntry | None:
        client = self._require_client()
        try:
            fields = await client.hgetall(self._make_key(cache_key))
        except redis.RedisError as e:
            raise ExternalServiceError("redis", str(e), kind=ErrorKind.TRANSIENT) from e

        if not fields or "response" not in fields:
            return None

        try:
            return CacheEntry(
                cache_key=cache_key,
                scope=fields["scope"],
                response=json.loads(fields["response"]),
                request_params=json.loads(fields.get("request_params") or "{}"),
                expires_at=datetime.fromisoformat(fields["expires_at"]),
                created_at=datetime.fromisoformat(fields["created_at"]),
                hit_count=int(fields.get("hit_count", 0)),
            )
        except (KeyError, ValueError) as e:
            self.logger.warning("cache_entry_corrupt", cache_key=cache_key, error=str(e))
            return None

    async def write(self, entry: CacheEntry, ttl_seconds: float) -> None:
        client = self._require_client()
        key = self._make_key(entry.cache_key)
        try:
            async with client.pipeline(transaction=True) as pipe:
                pipe.delete(key)
                pipe.hset(
                    key,
                    mapping={
                        "scope": entry.scope,
                        "response": json.dumps(entry.response, ensure_ascii=False, default=str),
                        "request_params": json.dumps(entry.request_params, ensure_ascii=False, default=str),
                        "expires_at": entry.expires_at.isoformat(),
                        "created_at": entry.created_at.isoformat(),
                        "hit_count": 0,
                    },
                )
                pipe.expire(key, max(1, math.ceil(ttl_seconds)))
                await pipe.execute()
        except redis.RedisError as e:
            raise ExternalServiceError("redis", str(e), kind=ErrorKind.TRANSIENT) from e

    async def increment_hits(self, cache_key: str) -> None:
        client = self._require_client()
        key = self._make_key(cache_key)
        try:
            async with client.pipeline(transaction=True) as pipe:
                pipe.hincrby(key, "hit_count", 1)
                pipe.ttl(key)
                _, ttl = await pipe.execute()

            # No TTL means the entry had already expired and HINCRBY
            # recreated a counter-only hash
            if ttl == -1:
                await client.delete(key)
        except redis.RedisError as e:
            raise ExternalServiceError("redis", str(e), kind=ErrorKind.TRANSIENT) from e
