"""Property-path access over dataclasses, pydantic models, plain objects and mappings.

The engine only talks to host objects through MetaObject:

    meta = MetaObject(order)
    meta.get_value("customer.address.city")
    meta.set_value("lines[0].quantity", 3)

Paths use dots for properties and brackets for sequence indexes or mapping
keys. Reading through a null intermediate yields None; reading a property the
object does not have raises PropertyAccessError.
"""

from __future__ import annotations

import collections.abc as cabc
import dataclasses
import inspect
import re
import types
import typing
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Union

from row_mapper.core.exceptions import PropertyAccessError

_SEGMENT = re.compile(r"\s*([^\[\]\s]+)\s*((?:\[[^\]]*\]\s*)*)")
_INDEX = re.compile(r"\[([^\]]*)\]")

_LIST_ORIGINS = (
    list,
    cabc.MutableSequence,
    cabc.Sequence,
    cabc.Collection,
    cabc.Iterable,
)
_SET_ORIGINS = (set, cabc.MutableSet, cabc.Set)


@lru_cache(maxsize=2048)
def parse_path(path: str) -> tuple[tuple[str, tuple[str, ...]], ...]:
    """Split ``a.b[0].c['k']`` into ``(("a", ()), ("b", ("0",)), ("c", ("k",)))``."""
    parts: list[str] = []
    depth = 0
    start = 0
    for i, ch in enumerate(path):
        if ch == "[":
            depth += 1
        elif ch == "]":
            depth -= 1
        elif ch == "." and depth == 0:
            parts.append(path[start:i])
            start = i + 1
    parts.append(path[start:])

    segments: list[tuple[str, tuple[str, ...]]] = []
    for part in parts:
        match = _SEGMENT.fullmatch(part)
        if match is None:
            raise ValueError(f"Invalid property path '{path}'")
        indexes = tuple(
            raw.strip().strip("'\"") for raw in _INDEX.findall(match.group(2))
        )
        segments.append((match.group(1), indexes))
    return tuple(segments)


def unwrap_optional(annotation: Any) -> Any:
    """Return ``X`` for ``X | None`` / ``Optional[X]``, else the annotation itself."""
    origin = typing.get_origin(annotation)
    if origin is Union or origin is types.UnionType:
        args = [a for a in typing.get_args(annotation) if a is not type(None)]
        if len(args) == 1:
            return args[0]
    return annotation


def _origin(annotation: Any) -> Any:
    annotation = unwrap_optional(annotation)
    return typing.get_origin(annotation) or annotation


def is_collection_type(annotation: Any) -> bool:
    """True for list/set-like annotations a nested result can be appended to."""
    origin = _origin(annotation)
    if origin in (str, bytes, tuple, dict) or not isinstance(origin, type):
        return False
    return origin in _LIST_ORIGINS or origin in _SET_ORIGINS


def element_type(annotation: Any) -> Any:
    """Element annotation of a collection annotation (Any when unparameterized)."""
    args = typing.get_args(unwrap_optional(annotation))
    return args[0] if args else Any


def create_collection(annotation: Any) -> Any:
    origin = _origin(annotation)
    if origin in _SET_ORIGINS:
        return set()
    return []


@dataclass(frozen=True)
class ClassInfo:
    """Introspected view of a mapped class."""

    cls: type
    properties: dict[str, Any]
    read_only: frozenset[str]
    init_parameters: tuple[inspect.Parameter, ...]

    def has_property(self, name: str) -> bool:
        return name in self.properties

    def property_type(self, name: str) -> Any:
        return unwrap_optional(self.properties.get(name, Any))

    def find_property(self, name: str, camel_case: bool = False) -> str | None:
        wanted = _normalize(name, camel_case)
        for prop in self.properties:
            if _normalize(prop, camel_case) == wanted:
                return prop
        return None

    @property
    def default_constructible(self) -> bool:
        return all(
            p.default is not inspect.Parameter.empty
            or p.kind in (inspect.Parameter.VAR_POSITIONAL, inspect.Parameter.VAR_KEYWORD)
            for p in self.init_parameters
        )


def _normalize(name: str, camel_case: bool) -> str:
    name = name.lower()
    return name.replace("_", "") if camel_case else name


def _type_hints(cls: type) -> dict[str, Any]:
    try:
        return typing.get_type_hints(cls)
    except (NameError, TypeError):
        hints: dict[str, Any] = {}
        for klass in reversed(cls.__mro__):
            hints.update(getattr(klass, "__annotations__", {}))
        return hints


def _init_parameters(cls: type) -> tuple[inspect.Parameter, ...]:
    try:
        return tuple(inspect.signature(cls).parameters.values())
    except (TypeError, ValueError):
        return ()


@lru_cache(maxsize=512)
def class_info(cls: type) -> ClassInfo:
    """Build (once per class) the property table used by MetaObject."""
    hints = _type_hints(cls)
    properties: dict[str, Any] = {}
    read_only: set[str] = set()

    model_fields = getattr(cls, "model_fields", None)
    if isinstance(model_fields, dict):
        for name, info in model_fields.items():
            properties[name] = getattr(info, "annotation", Any)
    elif dataclasses.is_dataclass(cls):
        for f in dataclasses.fields(cls):
            properties[f.name] = hints.get(f.name, f.type)

    for name, annotation in hints.items():
        if name.startswith("_") or name in properties:
            continue
        if typing.get_origin(annotation) is typing.ClassVar:
            continue
        properties[name] = annotation

    for name, attr in inspect.getmembers(cls, lambda a: isinstance(a, property)):
        if name.startswith("_"):
            continue
        fget_hints = typing.get_type_hints(attr.fget) if attr.fget is not None else {}
        properties.setdefault(name, fget_hints.get("return", Any))
        if attr.fset is None:
            read_only.add(name)

    for name in getattr(cls, "__slots__", ()):
        if not name.startswith("_"):
            properties.setdefault(name, Any)

    parameters = _init_parameters(cls)
    for param in parameters:
        if param.kind in (inspect.Parameter.VAR_POSITIONAL, inspect.Parameter.VAR_KEYWORD):
            continue
        if param.annotation is not inspect.Parameter.empty:
            properties.setdefault(param.name, hints.get(param.name, param.annotation))
        else:
            properties.setdefault(param.name, Any)

    return ClassInfo(
        cls=cls,
        properties=properties,
        read_only=frozenset(read_only),
        init_parameters=parameters,
    )


def _index(container: Any, key: str, path: str) -> Any:
    if container is None:
        return None
    if isinstance(container, cabc.Mapping):
        if key in container:
            return container[key]
        if key.lstrip("-").isdigit() and int(key) in container:
            return container[int(key)]
        return None
    try:
        return container[int(key)]
    except (ValueError, IndexError, TypeError) as e:
        raise PropertyAccessError(path, container, f"bad index [{key}]") from e


class MetaObject:
    """Uniform get/set access to a host object (the reflection capability)."""

    __slots__ = ("_obj",)

    def __init__(self, obj: Any) -> None:
        self._obj = obj

    @property
    def original(self) -> Any:
        return self._obj

    @property
    def is_mapping(self) -> bool:
        return isinstance(self._obj, cabc.Mapping)

    def _info(self) -> ClassInfo:
        return class_info(self._obj.__class__)

    def _read(self, target: Any, name: str, path: str) -> Any:
        if target is None:
            return None
        if isinstance(target, cabc.Mapping):
            try:
                return target[name]
            except KeyError:
                return None
        try:
            return getattr(target, name)
        except AttributeError as e:
            raise PropertyAccessError(path, target, f"no property named '{name}'") from e

    def get_value(self, path: str) -> Any:
        current = self._obj
        for name, indexes in parse_path(path):
            current = self._read(current, name, path)
            for key in indexes:
                current = _index(current, key, path)
            if current is None:
                return None
        return current

    def set_value(self, path: str, value: Any) -> None:
        segments = parse_path(path)
        target = self._obj
        for name, indexes in segments[:-1]:
            target = self._read(target, name, path)
            for key in indexes:
                target = _index(target, key, path)
            if target is None:
                raise PropertyAccessError(path, self._obj, f"'{name}' is null")
        name, indexes = segments[-1]
        if indexes:
            container = self._read(target, name, path)
            for key in indexes[:-1]:
                container = _index(container, key, path)
            last = indexes[-1]
            if isinstance(container, cabc.MutableMapping):
                container[last] = value
            else:
                container[int(last)] = value
            return
        if isinstance(target, cabc.MutableMapping):
            target[name] = value
            return
        try:
            setattr(target, name, value)
        except dataclasses.FrozenInstanceError:
            object.__setattr__(target, name, value)
        except AttributeError as e:
            raise PropertyAccessError(path, target, str(e)) from e

    def has_setter(self, name: str) -> bool:
        if self.is_mapping:
            return isinstance(self._obj, cabc.MutableMapping)
        info = self._info()
        if name in info.properties:
            return name not in info.read_only
        return name in getattr(self._obj, "__dict__", {})

    def has_getter(self, name: str) -> bool:
        if self.is_mapping:
            return name in self._obj
        return self._info().has_property(name) or hasattr(self._obj, name)

    def setter_type(self, name: str) -> Any:
        if self.is_mapping:
            value = self._obj.get(name)
            return type(value) if value is not None else Any
        return self._info().property_type(name)

    def find_property(self, name: str, camel_case: bool = False) -> str | None:
        if self.is_mapping:
            return name
        return self._info().find_property(name, camel_case)

    def is_collection(self) -> bool:
        return isinstance(self._obj, (list, set))

    def add(self, item: Any) -> None:
        if isinstance(self._obj, set):
            self._obj.add(item)
        else:
            self._obj.append(item)

    def add_all(self, items: cabc.Iterable[Any]) -> None:
        for item in items:
            self.add(item)
