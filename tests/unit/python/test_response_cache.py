"""Unit tests for the response cache."""

from datetime import datetime, timedelta, timezone

import pytest

from ragsupport.cache.backends import CacheBackend, CacheEntry, InMemoryCacheBackend, RedisCacheBackend
from ragsupport.cache.response_cache import ResponseCache
from ragsupport.common.errors import ExternalServiceError, InvalidInputError


class BrokenBackend(CacheBackend):
    """Backend whose every call fails."""

    async def read(self, cache_key):
        raise ExternalServiceError("redis", "connection refused")

    async def write(self, entry, ttl_seconds):
        raise ExternalServiceError("redis", "connection refused")

    async def increment_hits(self, cache_key):
        raise ExternalServiceError("redis", "connection refused")


class TestResponseCache:
    """Tests for ResponseCache over the in-memory backend."""

    @pytest.mark.asyncio
    async def test_miss_then_hit(self, response_cache):
        assert await response_cache.get("k", "rag-generate") is None

        await response_cache.put("k", "rag-generate", {"answer": "yes"}, timedelta(hours=1))

        assert await response_cache.get("k", "rag-generate") == {"answer": "yes"}

    @pytest.mark.asyncio
    async def test_expiry(self, response_cache, clock):
        await response_cache.put("k", "s", "value", 3600)

        clock.advance(minutes=59)
        assert await response_cache.get("k", "s") == "value"

        clock.advance(minutes=2)
        assert await response_cache.get("k", "s") is None

    @pytest.mark.asyncio
    async def test_scope_mismatch_is_miss(self, response_cache):
        await response_cache.put("k", "auto-translate", "value", 60)

        assert await response_cache.get("k", "rag-generate") is None

    @pytest.mark.asyncio
    async def test_hit_counter_updated_in_background(self, response_cache):
        await response_cache.put("k", "s", "value", 60)

        await response_cache.get("k", "s")
        await response_cache.get("k", "s")
        await response_cache.drain()

        entry = await response_cache.backend.read("k")
        assert entry.hit_count == 2

    @pytest.mark.asyncio
    async def test_overwrite_resets_hits(self, response_cache):
        await response_cache.put("k", "s", "old", 60)
        await response_cache.get("k", "s")
        await response_cache.drain()

        await response_cache.put("k", "s", "new", 60)

        entry = await response_cache.backend.read("k")
        assert entry.response == "new"
        assert entry.hit_count == 0

    @pytest.mark.asyncio
    async def test_records_request_params(self, response_cache, clock):
        await response_cache.put("k", "s", "value", 60, params={"query": "q"})

        entry = await response_cache.lookup("k", "s")
        assert entry.request_params == {"query": "q"}
        assert entry.expires_at == clock() + timedelta(seconds=60)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("payload,ttl", [(None, 60), ("value", 0), ("value", timedelta(0))])
    async def test_invalid_put(self, response_cache, payload, ttl):
        with pytest.raises(InvalidInputError):
            await response_cache.put("k", "s", payload, ttl)

    @pytest.mark.asyncio
    async def test_backend_failures_never_fail_requests(self):
        cache = ResponseCache(BrokenBackend())

        assert await cache.get("k", "s") is None
        await cache.put("k", "s", "value", 60)

    @pytest.mark.asyncio
    async def test_get_or_compute(self, response_cache):
        calls = []

        async def compute():
            calls.append(1)
            return {"answer": "computed"}

        first = await response_cache.get_or_compute("k", "s", compute, 60)
        second = await response_cache.get_or_compute("k", "s", compute, 60)

        assert first == ({"answer": "computed"}, False)
        assert second == ({"answer": "computed"}, True)
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_close_closes_backend(self, clock):
        closed = []

        class ClosingBackend(InMemoryCacheBackend):
            async def close(self):
                closed.append(True)

        cache = ResponseCache(ClosingBackend(clock=clock), clock=clock)
        await cache.close()

        assert closed == [True]


class TestRedisCacheBackend:
    """Tests for ResponseCache over the Redis backend."""

    @pytest.fixture
    def backend(self, fake_redis) -> RedisCacheBackend:
        return RedisCacheBackend(prefix="test:", client=fake_redis)

    @pytest.mark.asyncio
    async def test_round_trip(self, backend, fake_redis, clock):
        cache = ResponseCache(backend, clock=clock)

        await cache.put("k", "rag-generate", {"answer": "한국어"}, timedelta(days=7))

        assert fake_redis.ttls["test:cache:k"] == 7 * 24 * 3600
        assert await cache.get("k", "rag-generate") == {"answer": "한국어"}

    @pytest.mark.asyncio
    async def test_hit_counter(self, backend, fake_redis, clock):
        cache = ResponseCache(backend, clock=clock)
        await cache.put("k", "s", "value", 60)

        await cache.get("k", "s")
        await cache.drain()

        assert fake_redis.hashes["test:cache:k"]["hit_count"] == "1"

    @pytest.mark.asyncio
    async def test_increment_skips_missing_key(self, backend, fake_redis):
        await backend.increment_hits("missing")

        assert "test:cache:missing" not in fake_redis.hashes

    @pytest.mark.asyncio
    async def test_write_sets_fields_and_expiry_in_one_transaction(self, backend, fake_redis, clock):
        cache = ResponseCache(backend, clock=clock)
        fake_redis.hashes["test:cache:k"] = {"stale": "1"}

        await cache.put("k", "s", "value", 60)

        assert fake_redis.pipelines == [["delete", "hset", "expire"]]
        assert "stale" not in fake_redis.hashes["test:cache:k"]
        assert fake_redis.ttls["test:cache:k"] == 60

    @pytest.mark.asyncio
    async def test_increment_after_expiry_leaves_no_counter(self, backend, fake_redis, clock):
        cache = ResponseCache(backend, clock=clock)
        await cache.put("k", "s", "value", 60)
        # Redis expired the key between the read and the increment
        await fake_redis.delete("test:cache:k")

        await backend.increment_hits("k")

        assert "test:cache:k" not in fake_redis.hashes
        assert fake_redis.pipelines[-1] == ["hincrby", "ttl"]

    @pytest.mark.asyncio
    async def test_write_failure_is_transient(self, backend, fake_redis):
        fake_redis.failing_keys.add("cache:")
        entry = CacheEntry(
            cache_key="k",
            scope="s",
            response="value",
            expires_at=datetime(2030, 1, 1, tzinfo=timezone.utc),
        )

        with pytest.raises(ExternalServiceError) as exc_info:
            await backend.write(entry, 60)
        assert exc_info.value.retryable

    @pytest.mark.asyncio
    async def test_hash_without_response_is_miss(self, backend, fake_redis):
        fake_redis.hashes["test:cache:k"] = {"hit_count": "3"}

        assert await backend.read("k") is None

    @pytest.mark.asyncio
    async def test_corrupt_entry_is_miss(self, backend, fake_redis):
        fake_redis.hashes["test:cache:k"] = {"scope": "s", "response": "{not json"}

        assert await backend.read("k") is None

    @pytest.mark.asyncio
    async def test_expired_entry_is_miss(self, backend, clock):
        cache = ResponseCache(backend, clock=clock)
        await cache.put("k", "s", "value", 60)

        clock.advance(seconds=61)

        assert await cache.get("k", "s") is None
