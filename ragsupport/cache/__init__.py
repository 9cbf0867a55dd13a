"""Response cache for pipeline and generation outputs."""

from .backends import CacheBackend, CacheEntry, InMemoryCacheBackend, RedisCacheBackend
from .keys import TTLPolicy, canonical_json, make_cache_key, normalize_payload, normalize_text
from .response_cache import ResponseCache

__all__ = [
    "CacheBackend",
    "CacheEntry",
    "InMemoryCacheBackend",
    "RedisCacheBackend",
    "ResponseCache",
    "TTLPolicy",
    "canonical_json",
    "make_cache_key",
    "normalize_payload",
    "normalize_text",
]
