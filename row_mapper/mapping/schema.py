"""Result map data classes.

Frozen dataclasses describing how rows become objects. Built by the
``result_map`` DSL (mapping/builder.py) and consumed by ResultMaterializer
at execution time.
"""

from __future__ import annotations

import inspect
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from row_mapper.core.exceptions import SchemaCompilationError
from row_mapper.reflection import class_info
from row_mapper.types.converters import ValueConverter


class BindingFlag(Enum):
    """Role markers on a FieldBinding."""

    ID = "id"
    CONSTRUCTOR = "constructor"


@dataclass(frozen=True)
class FieldBinding:
    """One column (or nested map / nested query) bound to one property.

    Attributes:
        property: Target property; None for a positional constructor argument.
        column: Source column. Unused for nested result maps.
        python_type: Declared property type; looked up on the target when None.
        store_type: Declared column store type, used for converter selection.
        converter: Explicit converter overriding registry lookup.
        nested_result_map_id: Id of a result map applied to the same row.
        nested_query_id: Id of a statement executed to fill the property.
        not_null_columns: Columns of which at least one must be non-null for
            the nested result map to produce an object.
        column_prefix: Prefix prepended to every column of the nested map.
        flags: ID and/or CONSTRUCTOR.
        composites: ``(property, column)`` pairs passed to a nested query as
            a composite parameter.
        lazy: Lazy-load override for nested queries; None follows Settings.
        name: Keyword name of a constructor argument.
    """

    property: str | None
    column: str | None = None
    python_type: Any = None
    store_type: str | None = None
    converter: ValueConverter | None = None
    nested_result_map_id: str | None = None
    nested_query_id: str | None = None
    not_null_columns: frozenset[str] = frozenset()
    column_prefix: str | None = None
    flags: frozenset[BindingFlag] = frozenset()
    composites: tuple[FieldBinding, ...] = ()
    lazy: bool | None = None
    name: str | None = None

    @property
    def is_id(self) -> bool:
        return BindingFlag.ID in self.flags

    @property
    def is_constructor(self) -> bool:
        return BindingFlag.CONSTRUCTOR in self.flags

    @property
    def is_composite(self) -> bool:
        return bool(self.composites)

    @property
    def is_simple(self) -> bool:
        """A plain column binding (no nested map, no nested query)."""
        return self.nested_result_map_id is None and self.nested_query_id is None


@dataclass(frozen=True)
class Discriminator:
    """Picks a result map per row from the value of one column.

    Case values are compared as strings after conversion, so ``1`` and
    ``"1"`` select the same case. ``default`` is used when no case matches.
    """

    column: str
    cases: dict[str, str]
    python_type: Any = None
    store_type: str | None = None
    converter: ValueConverter | None = None
    default: str | None = None

    def map_id_for(self, value: Any) -> str | None:
        key = "" if value is None else str(value)
        return self.cases.get(key, self.default)


@dataclass(frozen=True)
class ResultMap:
    """Compiled, validated result map.

    The derived fields are computed once at construction:
    ``mapped_columns`` holds upper-cased column names (prefix-free) used to
    split a row into explicitly mapped and auto-mappable columns.
    """

    id: str
    type: Any
    bindings: tuple[FieldBinding, ...] = ()
    discriminator: Discriminator | None = None
    auto_mapping: bool | None = None
    extends: str | None = None

    id_bindings: tuple[FieldBinding, ...] = field(init=False, repr=False, compare=False)
    constructor_bindings: tuple[FieldBinding, ...] = field(init=False, repr=False, compare=False)
    property_bindings: tuple[FieldBinding, ...] = field(init=False, repr=False, compare=False)
    mapped_columns: frozenset[str] = field(init=False, repr=False, compare=False)
    mapped_properties: frozenset[str] = field(init=False, repr=False, compare=False)
    has_nested_result_maps: bool = field(init=False, repr=False, compare=False)
    has_nested_queries: bool = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        ids: list[FieldBinding] = []
        constructor: list[FieldBinding] = []
        properties: list[FieldBinding] = []
        columns: set[str] = set()
        mapped_properties: set[str] = set()
        nested_maps = False
        nested_queries = False

        for binding in self.bindings:
            nested_maps = nested_maps or binding.nested_result_map_id is not None
            nested_queries = nested_queries or binding.nested_query_id is not None
            if binding.column is not None:
                columns.add(binding.column.upper())
            for composite in binding.composites:
                if composite.column is not None:
                    columns.add(composite.column.upper())
            if binding.is_constructor:
                constructor.append(binding)
            else:
                properties.append(binding)
                if binding.property is not None:
                    mapped_properties.add(binding.property)
            if binding.is_id:
                ids.append(binding)

        if not ids:
            ids = list(self.bindings)

        self._validate_constructor(constructor)
        object.__setattr__(self, "id_bindings", tuple(ids))
        object.__setattr__(self, "constructor_bindings", tuple(constructor))
        object.__setattr__(self, "property_bindings", tuple(properties))
        object.__setattr__(self, "mapped_columns", frozenset(columns))
        object.__setattr__(self, "mapped_properties", frozenset(mapped_properties))
        object.__setattr__(self, "has_nested_result_maps", nested_maps)
        object.__setattr__(self, "has_nested_queries", nested_queries)

    def _validate_constructor(self, constructor: list[FieldBinding]) -> None:
        named = [b.name for b in constructor if b.name is not None]
        if not named or not isinstance(self.type, type):
            return
        if len(named) != len(constructor):
            raise SchemaCompilationError(
                f"Result map '{self.id}': constructor arguments must be all named or all positional"
            )
        parameters = {
            p.name
            for p in class_info(self.type).init_parameters
            if p.kind is not inspect.Parameter.VAR_KEYWORD
        }
        accepts_any = any(
            p.kind is inspect.Parameter.VAR_KEYWORD for p in class_info(self.type).init_parameters
        )
        unknown = [name for name in named if name not in parameters]
        if unknown and not accepts_any:
            raise SchemaCompilationError(
                f"Result map '{self.id}': {self.type.__name__} has no constructor "
                f"parameter(s) named {unknown}"
            )

    @property
    def row_key_bindings(self) -> tuple[FieldBinding, ...]:
        """Bindings folded into a row's identity key: ids, else everything."""
        return self.id_bindings

    def merged_with(self, parent: ResultMap) -> ResultMap:
        """Return this map with the bindings it inherits from *parent*.

        Child bindings win over parent bindings for the same property; a child
        declaring constructor arguments replaces the parent's entirely.
        """
        own_properties = {b.property for b in self.bindings if not b.is_constructor}
        declares_constructor = any(b.is_constructor for b in self.bindings)
        inherited = [
            b
            for b in parent.bindings
            if not (b.is_constructor and declares_constructor)
            and not (not b.is_constructor and b.property in own_properties)
        ]
        return ResultMap(
            id=self.id,
            type=self.type,
            bindings=self.bindings + tuple(inherited),
            discriminator=self.discriminator,
            auto_mapping=self.auto_mapping if self.auto_mapping is not None else parent.auto_mapping,
            extends=None,
        )


def prepend_prefix(column: str | None, prefix: str | None) -> str | None:
    if column is None or not prefix:
        return column
    return prefix + column


def parse_composite_columns(columns: str) -> tuple[FieldBinding, ...]:
    """Parse ``{param=column, other=column2}`` into composite bindings."""
    text = columns.strip()
    if not (text.startswith("{") and text.endswith("}")):
        return ()
    composites: list[FieldBinding] = []
    for part in text[1:-1].split(","):
        part = part.strip()
        if not part:
            continue
        name, sep, column = part.partition("=")
        if not sep or not name.strip() or not column.strip():
            raise SchemaCompilationError(f"Malformed composite column '{columns}'")
        composites.append(FieldBinding(property=name.strip(), column=column.strip()))
    return tuple(composites)
