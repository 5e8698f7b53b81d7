"""Row identity / statement cache key.

A CacheKey is an order-sensitive fold of values. Two keys are equal when they
folded the same number of components and every component compares equal in
order. Keys with fewer than two components are degenerate: they carry no
stable identity and the materializer never deduplicates on them.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any

_MULTIPLIER = 37
_INITIAL_HASH = 17


def _freeze(value: Any) -> Any:
    """Turn unhashable containers into hashable equivalents."""
    if isinstance(value, (list, tuple)):
        return tuple(_freeze(v) for v in value)
    if isinstance(value, (set, frozenset)):
        return frozenset(_freeze(v) for v in value)
    if isinstance(value, Mapping):
        return tuple(sorted(((k, _freeze(v)) for k, v in value.items()), key=repr))
    if isinstance(value, (bytearray, memoryview)):
        return bytes(value)
    try:
        hash(value)
    except TypeError:
        return ("__unhashable__", type(value).__qualname__, repr(value))
    return value


class CacheKey:
    """Mutable fold of components with a cached running hash.

    Keys are mutated only while being built; once used as a dict key they must
    not be updated again.
    """

    __slots__ = ("_checksum", "_components", "_count", "_hash")

    def __init__(self, components: Iterable[Any] = ()) -> None:
        self._hash = _INITIAL_HASH
        self._checksum = 0
        self._count = 0
        self._components: list[Any] = []
        self.update_all(components)

    @property
    def count(self) -> int:
        return self._count

    @property
    def components(self) -> tuple[Any, ...]:
        return tuple(self._components)

    @property
    def is_degenerate(self) -> bool:
        return self._count < 2

    def update(self, value: Any) -> CacheKey:
        frozen = _freeze(value)
        base = 1 if frozen is None else hash(frozen)
        self._count += 1
        self._checksum += base
        self._hash = _MULTIPLIER * self._hash + base * self._count
        self._components.append(frozen)
        return self

    def update_all(self, values: Iterable[Any]) -> CacheKey:
        for value in values:
            self.update(value)
        return self

    def clone(self) -> CacheKey:
        copy = CacheKey()
        copy._hash = self._hash
        copy._checksum = self._checksum
        copy._count = self._count
        copy._components = list(self._components)
        return copy

    def __hash__(self) -> int:
        return self._hash

    def __eq__(self, other: object) -> bool:
        if self is other:
            return True
        if not isinstance(other, CacheKey):
            return NotImplemented
        return (
            self._hash == other._hash
            and self._checksum == other._checksum
            and self._count == other._count
            and self._components == other._components
        )

    def __repr__(self) -> str:
        return f"CacheKey({':'.join(repr(c) for c in self._components)})"


class _NullCacheKey(CacheKey):
    __slots__ = ()

    def update(self, value: Any) -> CacheKey:
        raise TypeError("NULL_CACHE_KEY cannot be updated")

    def clone(self) -> CacheKey:
        return self

    def __repr__(self) -> str:
        return "NULL_CACHE_KEY"


NULL_CACHE_KEY: CacheKey = _NullCacheKey()
