"""Result map DSL builder.

Provides a fluent builder for defining result maps::

    users = (
        result_map(User, "user.detail")
        .id("id", "user_id")
        .result("name", "user_name")
        .collection("orders", result_map(Order).id("id", "order_id"), column_prefix="")
        .association("manager", select="user.by_id", column="manager_id", lazy=True)
    )
    configuration.add_result_map(users)

Nested builders without an explicit id get one derived from their parent
(``user.detail.orders``) and are registered together with it.
"""

from __future__ import annotations

from dataclasses import replace
from typing import Any

from row_mapper.core.exceptions import SchemaCompilationError
from row_mapper.mapping.schema import (
    BindingFlag,
    Discriminator,
    FieldBinding,
    ResultMap,
    parse_composite_columns,
)
from row_mapper.types.converters import ValueConverter


def result_map(
    target: Any,
    map_id: str | None = None,
    *,
    extends: str | None = None,
    auto_mapping: bool | None = None,
) -> ResultMapBuilder:
    """Entry point for the result map DSL.

    Args:
        target: Class every row is materialized into (``dict`` for plain maps).
        map_id: Fully qualified id. Optional for maps nested in another builder.
        extends: Id of a result map whose bindings this one inherits.
        auto_mapping: Per-map override of Settings.auto_mapping_behavior.

    Returns:
        A builder for chaining mapping declarations.
    """
    return ResultMapBuilder(target, map_id, extends=extends, auto_mapping=auto_mapping)


class ResultMapBuilder:
    """Fluent builder for result map definitions."""

    def __init__(
        self,
        target: Any,
        map_id: str | None = None,
        *,
        extends: str | None = None,
        auto_mapping: bool | None = None,
    ) -> None:
        self._target = target
        self.map_id = map_id
        self._extends = extends
        self._auto_mapping = auto_mapping
        self._bindings: list[FieldBinding] = []
        self._nested: list[tuple[str, ResultMapBuilder]] = []
        self._discriminator: Discriminator | None = None
        self._cases: list[tuple[str, ResultMapBuilder]] = []

    @property
    def target(self) -> Any:
        return self._target

    def id(self, property: str, column: str | None = None, **options: Any) -> ResultMapBuilder:
        """Map an identity column; identity columns drive row de-duplication."""
        return self._column(property, column, frozenset({BindingFlag.ID}), options)

    def result(self, property: str, column: str | None = None, **options: Any) -> ResultMapBuilder:
        """Map a single column to a property."""
        return self._column(property, column, frozenset(), options)

    def constructor_arg(
        self,
        column: str | None = None,
        *,
        name: str | None = None,
        id: bool = False,
        result_map: str | ResultMapBuilder | None = None,
        select: str | None = None,
        column_prefix: str | None = None,
        python_type: Any = None,
        store_type: str | None = None,
        converter: ValueConverter | None = None,
    ) -> ResultMapBuilder:
        """Declare a constructor argument, positional or by keyword *name*."""
        flags = {BindingFlag.CONSTRUCTOR}
        if id:
            flags.add(BindingFlag.ID)
        nested_id = self._nested_id(result_map, name or f"arg{len(self._bindings)}")
        self._bindings.append(
            FieldBinding(
                property=name,
                column=None if nested_id else column,
                python_type=python_type,
                store_type=store_type,
                converter=converter,
                nested_result_map_id=nested_id,
                nested_query_id=select,
                column_prefix=column_prefix,
                flags=frozenset(flags),
                composites=parse_composite_columns(column) if column else (),
                lazy=False,
                name=name,
            )
        )
        return self

    def association(
        self,
        property: str,
        result_map: str | ResultMapBuilder | None = None,
        **options: Any,
    ) -> ResultMapBuilder:
        """Map a single related object (nested result map or nested query)."""
        return self._relation(property, result_map, None, options)

    def collection(
        self,
        property: str,
        result_map: str | ResultMapBuilder | None = None,
        **options: Any,
    ) -> ResultMapBuilder:
        """Map a collection of related objects (nested result map or nested query)."""
        return self._relation(property, result_map, list, options)

    def discriminator(
        self,
        column: str,
        cases: dict[Any, str | ResultMapBuilder],
        *,
        default: str | None = None,
        python_type: Any = None,
        store_type: str | None = None,
        converter: ValueConverter | None = None,
    ) -> ResultMapBuilder:
        """Choose a result map per row from the value of *column*.

        Inline case builders inherit from this map unless they say otherwise.
        """
        case_ids: dict[str, str] = {}
        for value, target in cases.items():
            key = str(value)
            if isinstance(target, ResultMapBuilder):
                self._cases.append((key, target))
                case_ids[key] = target.map_id or ""
            else:
                case_ids[key] = target
        self._discriminator = Discriminator(
            column=column,
            cases=case_ids,
            python_type=python_type,
            store_type=store_type,
            converter=converter,
            default=default,
        )
        return self

    def _column(
        self,
        property: str,
        column: str | None,
        flags: frozenset[BindingFlag],
        options: dict[str, Any],
    ) -> ResultMapBuilder:
        unknown = set(options) - {"python_type", "store_type", "converter"}
        if unknown:
            raise SchemaCompilationError(f"Unknown binding option(s) {sorted(unknown)} for '{property}'")
        self._bindings.append(
            FieldBinding(
                property=property,
                column=column or property,
                python_type=options.get("python_type"),
                store_type=options.get("store_type"),
                converter=options.get("converter"),
                flags=flags,
            )
        )
        return self

    def _relation(
        self,
        property: str,
        nested: str | ResultMapBuilder | None,
        container: type | None,
        options: dict[str, Any],
    ) -> ResultMapBuilder:
        allowed = {
            "select",
            "column",
            "lazy",
            "column_prefix",
            "not_null_columns",
            "python_type",
            "id",
        }
        unknown = set(options) - allowed
        if unknown:
            raise SchemaCompilationError(f"Unknown binding option(s) {sorted(unknown)} for '{property}'")
        select = options.get("select")
        column = options.get("column")
        if nested is None and select is None:
            raise SchemaCompilationError(
                f"'{property}' needs a nested result map or a select statement"
            )
        if nested is not None and select is not None:
            raise SchemaCompilationError(
                f"'{property}' cannot have both a nested result map and a select statement"
            )
        if select is not None and column is None:
            raise SchemaCompilationError(f"'{property}' uses select '{select}' but names no column")

        flags = frozenset({BindingFlag.ID}) if options.get("id") else frozenset()
        self._bindings.append(
            FieldBinding(
                property=property,
                column=column if select is not None else None,
                python_type=options.get("python_type", container),
                nested_result_map_id=self._nested_id(nested, property),
                nested_query_id=select,
                not_null_columns=frozenset(options.get("not_null_columns") or ()),
                column_prefix=options.get("column_prefix"),
                flags=flags,
                composites=parse_composite_columns(column) if select and column else (),
                lazy=options.get("lazy"),
            )
        )
        return self

    def _nested_id(self, nested: str | ResultMapBuilder | None, label: str) -> str | None:
        if nested is None or isinstance(nested, str):
            return nested
        self._nested.append((label, nested))
        return nested.map_id or f"<{label}>"

    def build(self) -> ResultMap:
        """Compile this map alone (nested builders are not included)."""
        return self.build_all()[0]

    def build_all(self) -> list[ResultMap]:
        """Compile this map followed by every inline nested and case map."""
        if not self.map_id:
            raise SchemaCompilationError(
                f"Result map for {getattr(self._target, '__name__', self._target)} has no id"
            )

        renamed: dict[str, str] = {}
        children: list[ResultMap] = []
        for label, nested in self._nested:
            if nested.map_id is None:
                nested.map_id = f"{self.map_id}.{label}"
                renamed[f"<{label}>"] = nested.map_id
            children.extend(nested.build_all())

        discriminator = self._discriminator
        if discriminator is not None and self._cases:
            cases = dict(discriminator.cases)
            for value, case in self._cases:
                if case.map_id is None:
                    case.map_id = f"{self.map_id}-case[{value}]"
                if case._extends is None:
                    case._extends = self.map_id
                cases[value] = case.map_id
                children.extend(case.build_all())
            discriminator = Discriminator(
                column=discriminator.column,
                cases=cases,
                python_type=discriminator.python_type,
                store_type=discriminator.store_type,
                converter=discriminator.converter,
                default=discriminator.default,
            )

        bindings = tuple(
            _renamed(binding, renamed) for binding in self._bindings
        )
        root = ResultMap(
            id=self.map_id,
            type=self._target,
            bindings=bindings,
            discriminator=discriminator,
            auto_mapping=self._auto_mapping,
            extends=self._extends,
        )
        return [root, *children]


def _renamed(binding: FieldBinding, renamed: dict[str, str]) -> FieldBinding:
    nested_id = binding.nested_result_map_id
    if nested_id is None or nested_id not in renamed:
        return binding
    return replace(binding, nested_result_map_id=renamed[nested_id])
