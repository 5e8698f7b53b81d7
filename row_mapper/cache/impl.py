"""Second-level cache implementations.

Every cache is a thin decorator around a delegate, ending in a
PerpetualCache (a plain dict). Build namespace caches with ``build_cache``:

    cache = build_cache("user", eviction="lru", size=512, blocking=True)
"""

from __future__ import annotations

import logging
import threading
from collections import OrderedDict, deque
from typing import Any, Protocol, runtime_checkable

from row_mapper.core.exceptions import CacheError

logger = logging.getLogger(__name__)


@runtime_checkable
class Cache(Protocol):
    """Minimal cache protocol shared by all implementations."""

    @property
    def id(self) -> str: ...

    def get(self, key: Any) -> Any: ...

    def put(self, key: Any, value: Any) -> None: ...

    def remove(self, key: Any) -> Any: ...

    def clear(self) -> None: ...

    def __len__(self) -> int: ...


class PerpetualCache:
    """Unbounded dict-backed cache."""

    def __init__(self, cache_id: str) -> None:
        self._id = cache_id
        self._data: dict[Any, Any] = {}

    @property
    def id(self) -> str:
        return self._id

    def get(self, key: Any) -> Any:
        return self._data.get(key)

    def put(self, key: Any, value: Any) -> None:
        self._data[key] = value

    def remove(self, key: Any) -> Any:
        return self._data.pop(key, None)

    def clear(self) -> None:
        self._data.clear()

    def __len__(self) -> int:
        return len(self._data)

    def __contains__(self, key: Any) -> bool:
        return key in self._data


class _Decorator:
    def __init__(self, delegate: Cache) -> None:
        self._delegate = delegate

    @property
    def id(self) -> str:
        return self._delegate.id

    @property
    def delegate(self) -> Cache:
        return self._delegate

    def __len__(self) -> int:
        return len(self._delegate)


class LruCache(_Decorator):
    """Evicts the least recently read or written key."""

    def __init__(self, delegate: Cache, size: int = 1024) -> None:
        super().__init__(delegate)
        self._size = size
        self._order: OrderedDict[Any, None] = OrderedDict()
        self._lock = threading.RLock()

    def get(self, key: Any) -> Any:
        with self._lock:
            if key in self._order:
                self._order.move_to_end(key)
            return self._delegate.get(key)

    def put(self, key: Any, value: Any) -> None:
        with self._lock:
            self._delegate.put(key, value)
            self._order[key] = None
            self._order.move_to_end(key)
            while len(self._order) > self._size:
                eldest, _ = self._order.popitem(last=False)
                self._delegate.remove(eldest)

    def remove(self, key: Any) -> Any:
        with self._lock:
            self._order.pop(key, None)
            return self._delegate.remove(key)

    def clear(self) -> None:
        with self._lock:
            self._order.clear()
            self._delegate.clear()


class FifoCache(_Decorator):
    """Evicts in insertion order."""

    def __init__(self, delegate: Cache, size: int = 1024) -> None:
        super().__init__(delegate)
        self._size = size
        self._keys: deque[Any] = deque()
        self._lock = threading.RLock()

    def get(self, key: Any) -> Any:
        return self._delegate.get(key)

    def put(self, key: Any, value: Any) -> None:
        with self._lock:
            if key not in self._keys:
                self._keys.append(key)
                if len(self._keys) > self._size:
                    self._delegate.remove(self._keys.popleft())
            self._delegate.put(key, value)

    def remove(self, key: Any) -> Any:
        with self._lock:
            if key in self._keys:
                self._keys.remove(key)
            return self._delegate.remove(key)

    def clear(self) -> None:
        with self._lock:
            self._keys.clear()
            self._delegate.clear()


class BlockingCache(_Decorator):
    """Compute-once first access.

    A miss leaves the key locked so concurrent readers of the same key wait
    until the first reader puts (or removes) the value. Waiting longer than
    *timeout* seconds raises CacheError.
    """

    def __init__(self, delegate: Cache, timeout: float | None = None) -> None:
        super().__init__(delegate)
        self._timeout = timeout
        self._locks: dict[Any, threading.Lock] = {}
        self._owners: dict[Any, int] = {}
        self._guard = threading.Lock()

    def _acquire(self, key: Any) -> None:
        me = threading.get_ident()
        with self._guard:
            if self._owners.get(key) == me:
                return
            lock = self._locks.setdefault(key, threading.Lock())
        acquired = lock.acquire(timeout=-1 if self._timeout is None else self._timeout)
        if not acquired:
            raise CacheError(
                f"Timed out after {self._timeout}s waiting for cache key {key!r} "
                f"in cache '{self.id}'"
            )
        with self._guard:
            self._owners[key] = me

    def _release(self, key: Any) -> None:
        with self._guard:
            lock = self._locks.get(key)
            if self._owners.pop(key, None) is None:
                return
        if lock is not None and lock.locked():
            lock.release()

    def get(self, key: Any) -> Any:
        self._acquire(key)
        value = self._delegate.get(key)
        if value is not None:
            self._release(key)
        return value

    def put(self, key: Any, value: Any) -> None:
        try:
            self._delegate.put(key, value)
        finally:
            self._release(key)

    def remove(self, key: Any) -> Any:
        # Only releases the lock; the entry itself stays.
        self._release(key)
        return None

    def clear(self) -> None:
        self._delegate.clear()


class TransactionalCache(_Decorator):
    """Buffers writes until commit so uncommitted results never leak."""

    def __init__(self, delegate: Cache) -> None:
        super().__init__(delegate)
        self._clear_on_commit = False
        self._pending: dict[Any, Any] = {}
        self._missed: set[Any] = set()

    def get(self, key: Any) -> Any:
        value = self._delegate.get(key)
        if value is None:
            self._missed.add(key)
        if self._clear_on_commit:
            return None
        return value

    def put(self, key: Any, value: Any) -> None:
        self._pending[key] = value

    def remove(self, key: Any) -> Any:
        return None

    def clear(self) -> None:
        self._clear_on_commit = True
        self._pending.clear()

    def commit(self) -> None:
        if self._clear_on_commit:
            self._delegate.clear()
        for key, value in self._pending.items():
            self._delegate.put(key, value)
        for key in self._missed:
            if key not in self._pending:
                self._delegate.put(key, None)
        self._reset()

    def rollback(self) -> None:
        for key in self._missed:
            self._delegate.remove(key)
        self._reset()

    def _reset(self) -> None:
        self._clear_on_commit = False
        self._pending.clear()
        self._missed.clear()


class TransactionalCacheManager:
    """One TransactionalCache per namespace cache for the life of a session."""

    def __init__(self) -> None:
        self._caches: dict[int, TransactionalCache] = {}

    def _tx(self, cache: Cache) -> TransactionalCache:
        tx = self._caches.get(id(cache))
        if tx is None:
            tx = TransactionalCache(cache)
            self._caches[id(cache)] = tx
        return tx

    def get(self, cache: Cache, key: Any) -> Any:
        return self._tx(cache).get(key)

    def put(self, cache: Cache, key: Any, value: Any) -> None:
        self._tx(cache).put(key, value)

    def clear(self, cache: Cache) -> None:
        self._tx(cache).clear()

    def commit(self) -> None:
        for tx in self._caches.values():
            tx.commit()

    def rollback(self) -> None:
        for tx in self._caches.values():
            tx.rollback()


_EVICTION = {"lru": LruCache, "fifo": FifoCache}


def build_cache(
    namespace: str,
    eviction: str = "lru",
    size: int = 1024,
    *,
    blocking: bool = False,
    timeout: float | None = None,
) -> Cache:
    """Build a namespace cache from its declared options."""
    cache: Cache = PerpetualCache(namespace)
    eviction = eviction.lower()
    if eviction != "perpetual":
        try:
            cache = _EVICTION[eviction](cache, size)
        except KeyError:
            raise CacheError(
                f"Unknown eviction policy '{eviction}' for cache '{namespace}'"
            ) from None
    if blocking:
        cache = BlockingCache(cache, timeout)
    logger.debug("Built cache %s (eviction=%s, size=%d, blocking=%s)", namespace, eviction, size, blocking)
    return cache
