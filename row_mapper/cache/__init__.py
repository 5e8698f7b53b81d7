"""Row identity keys and second-level caches."""

from __future__ import annotations

from row_mapper.cache.impl import (
    BlockingCache,
    Cache,
    FifoCache,
    LruCache,
    PerpetualCache,
    TransactionalCache,
    TransactionalCacheManager,
    build_cache,
)
from row_mapper.cache.key import NULL_CACHE_KEY, CacheKey

__all__ = [
    "NULL_CACHE_KEY",
    "BlockingCache",
    "Cache",
    "CacheKey",
    "FifoCache",
    "LruCache",
    "PerpetualCache",
    "TransactionalCache",
    "TransactionalCacheManager",
    "build_cache",
]
