"""Lazy-loading proxies.

A materialized object with lazy nested-query properties is handed out wrapped
in a LazyObject. Reading a pending property runs its loader first; writing it
cancels the load. ``==``, ``hash()`` and ``repr()`` load everything, since
they read every field of the target.

The proxy reports the target's class, so ``isinstance(obj, User)`` holds.
"""

from __future__ import annotations

import uuid
from collections.abc import Mapping
from datetime import date, time
from decimal import Decimal
from enum import Enum
from typing import Any

from row_mapper.mapping.loader import ResultLoaderMap
from row_mapper.reflection import MetaObject, class_info

_SCALARS = (str, bytes, int, float, Decimal, date, time, uuid.UUID, Enum)

_TARGET = "_lazy_target"
_LOADERS = "_lazy_loaders"


class LazyObject:
    __slots__ = (_TARGET, _LOADERS)

    def __init__(self, target: Any, loaders: ResultLoaderMap) -> None:
        object.__setattr__(self, _TARGET, target)
        object.__setattr__(self, _LOADERS, loaders)

    @property  # type: ignore[misc]
    def __class__(self) -> type:
        return type(object.__getattribute__(self, _TARGET))

    def __getattr__(self, name: str) -> Any:
        target = object.__getattribute__(self, _TARGET)
        object.__getattribute__(self, _LOADERS).load(name)
        return getattr(target, name)

    def __setattr__(self, name: str, value: Any) -> None:
        loaders: ResultLoaderMap = object.__getattribute__(self, _LOADERS)
        loaders.remove(name)
        MetaObject(object.__getattribute__(self, _TARGET)).set_value(name, value)

    def _resolved(self) -> Any:
        object.__getattribute__(self, _LOADERS).load_all()
        return object.__getattribute__(self, _TARGET)

    def __eq__(self, other: object) -> bool:
        return self._resolved() == unwrap(other)

    def __hash__(self) -> int:
        return hash(self._resolved())

    def __repr__(self) -> str:
        return repr(self._resolved())


def is_lazy(value: Any) -> bool:
    return type(value) is LazyObject


def unwrap(value: Any) -> Any:
    """The proxied object of a LazyObject; anything else unchanged."""
    if type(value) is LazyObject:
        return object.__getattribute__(value, _TARGET)
    return value


def pending_properties(value: Any) -> list[str]:
    """Names of lazy properties not loaded yet."""
    if type(value) is not LazyObject:
        return []
    return object.__getattribute__(value, _LOADERS).properties


def resolve_all(value: Any) -> Any:
    """Load every pending lazy property reachable from *value*; returns *value*."""
    _resolve(value, set())
    return value


def _resolve(value: Any, seen: set[int]) -> None:
    if value is None or isinstance(value, _SCALARS):
        return
    if id(value) in seen:
        return
    seen.add(id(value))

    if type(value) is LazyObject:
        object.__getattribute__(value, _LOADERS).load_all()
        value = object.__getattribute__(value, _TARGET)
        seen.add(id(value))

    if isinstance(value, Mapping):
        children: Any = value.values()
    elif isinstance(value, (list, tuple, set, frozenset)):
        children = value
    else:
        names = class_info(type(value)).properties
        children = [getattr(value, name, None) for name in names]
    for child in children:
        _resolve(child, seen)
