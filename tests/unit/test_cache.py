"""Unit tests for CacheKey and the cache implementations."""

from __future__ import annotations

import threading

import pytest

from row_mapper.cache.impl import (
    BlockingCache,
    FifoCache,
    LruCache,
    PerpetualCache,
    TransactionalCache,
    TransactionalCacheManager,
    build_cache,
)
from row_mapper.cache.key import NULL_CACHE_KEY, CacheKey
from row_mapper.core.exceptions import CacheError


class TestCacheKey:
    def test_equal_when_same_components(self) -> None:
        assert CacheKey(["user", 1]) == CacheKey(["user", 1])
        assert hash(CacheKey(["user", 1])) == hash(CacheKey(["user", 1]))

    def test_order_sensitive(self) -> None:
        assert CacheKey([1, 2]) != CacheKey([2, 1])

    def test_count_sensitive(self) -> None:
        assert CacheKey([1, None]) != CacheKey([1])

    def test_update_returns_self(self) -> None:
        key = CacheKey()
        assert key.update("a") is key
        assert key.count == 1

    def test_unhashable_components(self) -> None:
        assert CacheKey([[1, 2], {"a": [3]}]) == CacheKey([[1, 2], {"a": [3]}])

    def test_degenerate(self) -> None:
        assert CacheKey().is_degenerate
        assert CacheKey(["only"]).is_degenerate
        assert not CacheKey(["map", "id"]).is_degenerate

    def test_clone_is_independent(self) -> None:
        key = CacheKey(["a", 1])
        copy = key.clone()
        copy.update(2)
        assert key.count == 2
        assert copy.count == 3
        assert key != copy

    def test_null_key_cannot_be_updated(self) -> None:
        with pytest.raises(TypeError):
            NULL_CACHE_KEY.update(1)
        assert NULL_CACHE_KEY.clone() is NULL_CACHE_KEY

    def test_usable_as_dict_key(self) -> None:
        cache = {CacheKey(["s", 1]): "row"}
        assert cache[CacheKey(["s", 1])] == "row"


class TestEvictingCaches:
    def test_perpetual(self) -> None:
        cache = PerpetualCache("p")
        cache.put("a", 1)
        assert cache.get("a") == 1
        assert cache.remove("a") == 1
        assert cache.get("a") is None

    def test_lru_evicts_least_recently_used(self) -> None:
        cache = LruCache(PerpetualCache("lru"), size=2)
        cache.put("a", 1)
        cache.put("b", 2)
        cache.get("a")
        cache.put("c", 3)
        assert cache.get("b") is None
        assert cache.get("a") == 1
        assert cache.get("c") == 3

    def test_fifo_evicts_oldest(self) -> None:
        cache = FifoCache(PerpetualCache("fifo"), size=2)
        cache.put("a", 1)
        cache.put("b", 2)
        cache.get("a")
        cache.put("c", 3)
        assert cache.get("a") is None
        assert len(cache) == 2

    def test_build_cache(self) -> None:
        cache = build_cache("user", "fifo", 10, blocking=True)
        assert isinstance(cache, BlockingCache)
        assert isinstance(cache.delegate, FifoCache)
        assert cache.id == "user"

    def test_build_perpetual(self) -> None:
        assert isinstance(build_cache("user", "perpetual"), PerpetualCache)

    def test_unknown_eviction(self) -> None:
        with pytest.raises(CacheError, match="weak"):
            build_cache("user", "weak")


class TestBlockingCache:
    def test_miss_blocks_other_readers_until_put(self) -> None:
        cache = BlockingCache(PerpetualCache("b"))
        assert cache.get("k") is None  # this thread now owns "k"
        seen: list[object] = []

        reader = threading.Thread(target=lambda: seen.append(cache.get("k")))
        reader.start()
        reader.join(timeout=0.1)
        assert reader.is_alive()

        cache.put("k", "v")
        reader.join(timeout=2)
        assert seen == ["v"]

    def test_owner_can_reenter(self) -> None:
        cache = BlockingCache(PerpetualCache("b"), timeout=0.1)
        assert cache.get("k") is None
        assert cache.get("k") is None
        cache.put("k", 1)
        assert cache.get("k") == 1

    def test_timeout_raises(self) -> None:
        cache = BlockingCache(PerpetualCache("b"), timeout=0.05)
        cache.get("k")
        errors: list[Exception] = []

        def _read() -> None:
            try:
                cache.get("k")
            except CacheError as e:
                errors.append(e)

        reader = threading.Thread(target=_read)
        reader.start()
        reader.join(timeout=2)
        assert len(errors) == 1

    def test_remove_releases(self) -> None:
        cache = BlockingCache(PerpetualCache("b"), timeout=0.5)
        cache.get("k")
        cache.remove("k")
        results: list[object] = []
        reader = threading.Thread(target=lambda: results.append(cache.get("k")))
        reader.start()
        reader.join(timeout=2)
        assert results == [None]


class TestTransactionalCache:
    def test_put_invisible_until_commit(self) -> None:
        shared = PerpetualCache("t")
        tx = TransactionalCache(shared)
        tx.put("k", "v")
        assert shared.get("k") is None
        tx.commit()
        assert shared.get("k") == "v"

    def test_rollback_discards(self) -> None:
        shared = PerpetualCache("t")
        tx = TransactionalCache(shared)
        tx.put("k", "v")
        tx.rollback()
        tx.commit()
        assert shared.get("k") is None

    def test_clear_hides_entries_and_clears_on_commit(self) -> None:
        shared = PerpetualCache("t")
        shared.put("old", 1)
        tx = TransactionalCache(shared)
        tx.clear()
        assert tx.get("old") is None
        assert shared.get("old") == 1
        tx.commit()
        assert shared.get("old") is None

    def test_manager_commits_every_cache(self) -> None:
        a, b = PerpetualCache("a"), PerpetualCache("b")
        manager = TransactionalCacheManager()
        manager.put(a, "k", 1)
        manager.put(b, "k", 2)
        manager.commit()
        assert (a.get("k"), b.get("k")) == (1, 2)
