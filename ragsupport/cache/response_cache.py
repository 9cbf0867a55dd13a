"""Content-addressed response cache with expiry and hit accounting."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable

from ragsupport.common.errors import InvalidInputError
from ragsupport.common.logging import LoggerMixin
from ragsupport.common.models import utcnow

from .backends import CacheBackend, CacheEntry


class ResponseCache(LoggerMixin):
    """Read-through cache for expensive pipeline and generation outputs.

    The cache never fails a request: backend read errors are misses and
    write errors are logged. Concurrent misses for the same key may both
    compute and both write; the last write wins.
    """

    def __init__(
        self,
        backend: CacheBackend,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        """Initialize the cache.

        Args:
            backend: Storage backend
            clock: Source of the current UTC time
        """
        self.backend = backend
        self._clock = clock
        self._pending: set[asyncio.Task] = set()

    async def lookup(self, cache_key: str, scope: str) -> CacheEntry | None:
        """Fetch a live entry for the key and scope.

        On a hit the entry's hit counter is incremented in the background;
        this call does not wait for it.

        Args:
            cache_key: Cache key
            scope: Scope the entry must belong to

        Returns:
            Cache entry or None on a miss
        """
        try:
            entry = await self.backend.read(cache_key)
        except Exception as e:
            self.logger.warning("cache_read_failed", cache_key=cache_key, error=str(e))
            return None

        if entry is None or entry.scope != scope or entry.is_expired(self._clock()):
            self.logger.debug("cache_miss", scope=scope, cache_key=cache_key)
            return None

        self.logger.info("cache_hit", scope=scope, cache_key=cache_key, hit_count=entry.hit_count)
        self._schedule_hit(cache_key)
        return entry

    async def get(self, cache_key: str, scope: str) -> Any | None:
        """Fetch a cached payload.

        Args:
            cache_key: Cache key
            scope: Scope the entry must belong to

        Returns:
            Cached payload or None on a miss
        """
        entry = await self.lookup(cache_key, scope)
        return entry.response if entry else None

    async def put(
        self,
        cache_key: str,
        scope: str,
        payload: Any,
        ttl: timedelta | int | float,
        params: dict[str, Any] | None = None,
    ) -> None:
        """Store a payload, overwriting any entry with the same key.

        The hit counter of an overwritten entry starts again from zero.

        Args:
            cache_key: Cache key
            scope: Scope producing the payload
            payload: JSON-serializable payload
            ttl: Time to live, as a timedelta or in seconds
            params: Request parameters kept for debugging
        """
        if payload is None:
            raise InvalidInputError("cannot cache a None payload")

        ttl_seconds = ttl.total_seconds() if isinstance(ttl, timedelta) else float(ttl)
        if ttl_seconds <= 0:
            raise InvalidInputError("cache ttl must be positive")

        now = self._clock()
        entry = CacheEntry(
            cache_key=cache_key,
            scope=scope,
            response=payload,
            request_params=params or {},
            expires_at=now + timedelta(seconds=ttl_seconds),
            hit_count=0,
            created_at=now,
        )

        try:
            await self.backend.write(entry, ttl_seconds)
        except Exception as e:
            self.logger.warning("cache_write_failed", cache_key=cache_key, error=str(e))
            return

        self.logger.info("cache_saved", scope=scope, cache_key=cache_key, ttl_seconds=ttl_seconds)

    async def get_or_compute(
        self,
        cache_key: str,
        scope: str,
        compute: Callable[[], Awaitable[Any]],
        ttl: timedelta | int | float,
        params: dict[str, Any] | None = None,
    ) -> tuple[Any, bool]:
        """Return the cached payload, computing and storing it on a miss.

        Args:
            cache_key: Cache key
            scope: Cache scope
            compute: Coroutine factory producing the payload
            ttl: Time to live for a newly computed payload
            params: Request parameters kept for debugging

        Returns:
            Tuple of payload and whether it came from the cache
        """
        cached = await self.get(cache_key, scope)
        if cached is not None:
            return cached, True

        payload = await compute()
        if payload is not None:
            await self.put(cache_key, scope, payload, ttl, params)
        return payload, False

    def _schedule_hit(self, cache_key: str) -> None:
        task = asyncio.create_task(self._increment_hits(cache_key))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _increment_hits(self, cache_key: str) -> None:
        try:
            await self.backend.increment_hits(cache_key)
        except Exception as e:
            self.logger.warning("cache_hit_increment_failed", cache_key=cache_key, error=str(e))

    async def drain(self) -> None:
        """Wait for outstanding hit-counter updates."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def close(self) -> None:
        """Wait for outstanding updates and close the backend."""
        await self.drain()
        await self.backend.close()
