"""Result materialization: rows -> objects.

For each row the materializer resolves the discriminated result map, builds
the target object, applies auto-mapped and explicitly bound columns, then
recurses into nested result maps. Rows sharing an identity key collapse into
one object, so a joined ``parent x child`` result yields one parent holding
its children.

Identity keys fold in the result map id plus the id columns (or every plain
column binding when the map declares no ids), and nested keys fold in their
parent's key. A key with fewer than two components is degenerate and never
matches anything, so such rows are never merged.
"""

from __future__ import annotations

import inspect
import logging
import typing
from collections.abc import Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from row_mapper.cache.key import NULL_CACHE_KEY, CacheKey
from row_mapper.core.enums import AutoMappingBehavior
from row_mapper.core.exceptions import (
    NoViableConstructorError,
    PropertyAccessError,
    ResultMappingError,
    UnresolvedDiscriminatorError,
)
from row_mapper.mapping.loader import ResultLoader, ResultLoaderMap
from row_mapper.mapping.proxy import LazyObject, unwrap
from row_mapper.mapping.resultset import ResultCursor, ResultSetWrapper
from row_mapper.mapping.schema import FieldBinding, ResultMap, prepend_prefix
from row_mapper.mapping.statement import DEFAULT_ROW_BOUNDS, MappedStatement, RowBounds
from row_mapper.reflection import (
    MetaObject,
    class_info,
    create_collection,
    is_collection_type,
    unwrap_optional,
)
from row_mapper.types.converters import ValueConverter

if TYPE_CHECKING:
    from row_mapper.core.configuration import Configuration

logger = logging.getLogger(__name__)

AUTOMAP_CONSTRUCTOR_ATTR = "__automap_constructor__"

_DEFERRED = object()
_CONVERSION_ERRORS = (TypeError, ValueError, ArithmeticError, LookupError)


def automap_constructor(func: Any) -> Any:
    """Mark a classmethod or staticmethod factory as the auto-mapping constructor.

    Example::

        @dataclass
        class Point:
            x: int
            y: int

            @automap_constructor
            @classmethod
            def from_row(cls, x: int, y: int) -> Point:
                return cls(x, y)
    """
    target = func.__func__ if isinstance(func, (classmethod, staticmethod)) else func
    setattr(target, AUTOMAP_CONSTRUCTOR_ATTR, True)
    return func


@dataclass(frozen=True)
class _AutoMapping:
    column: str
    property: str
    converter: ValueConverter


@dataclass
class _Created:
    value: Any
    constructor_properties: frozenset[str]
    used_constructor: bool


class ResultMaterializer:
    """Turns the rows of one statement execution into result objects.

    One instance per execution: the identity table and auto-mapping caches
    live only as long as the result set.
    """

    def __init__(
        self,
        executor: Any,
        configuration: Configuration,
        statement: MappedStatement,
        bounds: RowBounds = DEFAULT_ROW_BOUNDS,
    ) -> None:
        self._executor = executor
        self._configuration = configuration
        self._settings = configuration.settings
        self._converters = configuration.converters
        self._statement = statement
        self._bounds = bounds
        self._nested_objects: dict[CacheKey, Any] = {}
        self._ancestors: dict[str, Any] = {}
        self._auto_mappings: dict[str, list[_AutoMapping]] = {}
        self._previous_row_value: Any = None
        self._results: list[Any] = []

    # --- entry points ---

    def handle(self, cursor: ResultCursor) -> list[Any]:
        """Materialize every row of *cursor* within the row bounds."""
        if not self._statement.result_maps:
            return []
        rsw = ResultSetWrapper(cursor, self._converters)
        result_map = self._statement.result_maps[0]
        if self._has_nested_result_maps(result_map):
            self._handle_nested_rows(rsw, result_map)
        else:
            self._handle_simple_rows(rsw, result_map)
        logger.debug("<== %s: %d result(s)", self._statement.id, len(self._results))
        return self._results

    def _has_nested_result_maps(self, result_map: ResultMap) -> bool:
        """True if *result_map* or one of its discriminator cases nests result maps."""
        if result_map.has_nested_result_maps:
            return True
        discriminator = result_map.discriminator
        if discriminator is None:
            return False
        targets = list(discriminator.cases.values())
        if discriminator.default is not None:
            targets.append(discriminator.default)
        return any(
            self._configuration.get_result_map(target).has_nested_result_maps
            for target in targets
            if self._configuration.has_result_map(target)
        )

    def _more_rows(self) -> bool:
        return len(self._results) < self._bounds.limit

    def _skip_rows(self, cursor: ResultCursor) -> None:
        offset = self._bounds.offset
        if not offset:
            return
        if cursor.scrollable:
            cursor.absolute(offset)
            return
        for _ in range(offset):
            if not cursor.advance():
                break

    def _handle_simple_rows(self, rsw: ResultSetWrapper, result_map: ResultMap) -> None:
        self._skip_rows(rsw.cursor)
        while self._more_rows() and rsw.cursor.advance():
            discriminated = self.resolve_discriminated_result_map(rsw, result_map, None)
            self._results.append(self._get_row_value(rsw, discriminated, None))

    def _handle_nested_rows(self, rsw: ResultSetWrapper, result_map: ResultMap) -> None:
        ordered = self._statement.result_ordered
        self._skip_rows(rsw.cursor)
        row_value = self._previous_row_value
        while self._more_rows() and rsw.cursor.advance():
            discriminated = self.resolve_discriminated_result_map(rsw, result_map, None)
            row_key = self._create_row_key(discriminated, rsw, None)
            partial = self._nested_objects.get(row_key) if not row_key.is_degenerate else None
            if ordered:
                # Rows of one parent are contiguous: a new parent closes the previous one.
                if partial is None and row_value is not None:
                    self._nested_objects.clear()
                    self._results.append(row_value)
                row_value = self._get_nested_row_value(rsw, discriminated, row_key, None, partial)
            else:
                row_value = self._get_nested_row_value(rsw, discriminated, row_key, None, partial)
                if partial is None:
                    self._results.append(row_value)
        if ordered and row_value is not None and self._more_rows():
            self._results.append(row_value)
            self._previous_row_value = None
        elif row_value is not None:
            self._previous_row_value = row_value

    # --- discriminators ---

    def resolve_discriminated_result_map(
        self, rsw: ResultSetWrapper, result_map: ResultMap, column_prefix: str | None
    ) -> ResultMap:
        """Follow discriminator cases until a map without one, or a repeat."""
        visited = {result_map.id}
        discriminator = result_map.discriminator
        while discriminator is not None:
            column = prepend_prefix(discriminator.column, column_prefix) or discriminator.column
            converter = discriminator.converter or rsw.converter_for(discriminator.python_type, column)
            try:
                value = converter.from_store(rsw.value(column))
            except _CONVERSION_ERRORS as e:
                raise ResultMappingError(result_map.id, None, column, str(e)) from e
            map_id = discriminator.map_id_for(value)
            if map_id is None or not self._configuration.has_result_map(map_id):
                raise UnresolvedDiscriminatorError(result_map.id, value)
            if map_id in visited:
                break
            visited.add(map_id)
            result_map = self._configuration.get_result_map(map_id)
            discriminator = result_map.discriminator
        return result_map

    # --- row values ---

    def _get_row_value(
        self, rsw: ResultSetWrapper, result_map: ResultMap, column_prefix: str | None
    ) -> Any:
        lazy_loaders = ResultLoaderMap()
        created = self._create_result_object(rsw, result_map, lazy_loaders, column_prefix)
        row_value = created.value
        if row_value is None or self._is_scalar_map(result_map):
            return row_value
        meta = MetaObject(unwrap(row_value))
        skip = created.constructor_properties
        found = created.used_constructor
        if self._should_apply_automatic_mappings(result_map, False):
            found = self._apply_automatic_mappings(rsw, result_map, meta, column_prefix, skip) or found
        found = (
            self._apply_property_mappings(rsw, result_map, meta, lazy_loaders, column_prefix, skip)
            or found
        )
        found = len(lazy_loaders) > 0 or found
        return row_value if found or self._settings.return_instance_for_empty_row else None

    def _get_nested_row_value(
        self,
        rsw: ResultSetWrapper,
        result_map: ResultMap,
        combined_key: CacheKey,
        column_prefix: str | None,
        partial: Any,
    ) -> Any:
        result_map_id = result_map.id
        row_value = partial
        if row_value is not None:
            meta = MetaObject(unwrap(row_value))
            self._ancestors[result_map_id] = row_value
            self._apply_nested_result_mappings(rsw, result_map, meta, column_prefix, combined_key, False)
            self._ancestors.pop(result_map_id, None)
            return row_value

        lazy_loaders = ResultLoaderMap()
        created = self._create_result_object(rsw, result_map, lazy_loaders, column_prefix)
        row_value = created.value
        if row_value is not None and not self._is_scalar_map(result_map):
            meta = MetaObject(unwrap(row_value))
            skip = created.constructor_properties
            found = created.used_constructor
            if self._should_apply_automatic_mappings(result_map, True):
                found = self._apply_automatic_mappings(rsw, result_map, meta, column_prefix, skip) or found
            found = (
                self._apply_property_mappings(rsw, result_map, meta, lazy_loaders, column_prefix, skip)
                or found
            )
            self._ancestors[result_map_id] = row_value
            found = (
                self._apply_nested_result_mappings(
                    rsw, result_map, meta, column_prefix, combined_key, True
                )
                or found
            )
            self._ancestors.pop(result_map_id, None)
            found = len(lazy_loaders) > 0 or found
            if not (found or self._settings.return_instance_for_empty_row):
                row_value = None
        if not combined_key.is_degenerate:
            self._nested_objects[combined_key] = row_value
        return row_value

    # --- nested result maps ---

    def _apply_nested_result_mappings(
        self,
        rsw: ResultSetWrapper,
        result_map: ResultMap,
        meta: MetaObject,
        parent_prefix: str | None,
        parent_key: CacheKey,
        new_object: bool,
    ) -> bool:
        found = False
        for binding in result_map.property_bindings:
            nested_id = binding.nested_result_map_id
            if nested_id is None:
                continue
            column_prefix = _join_prefix(parent_prefix, binding.column_prefix)
            nested_map = self._configuration.get_result_map(nested_id)
            nested_map = self.resolve_discriminated_result_map(rsw, nested_map, column_prefix)

            if binding.column_prefix is None:
                ancestor = self._ancestors.get(nested_map.id)
                if ancestor is not None:
                    # Circular reference back to an object still being built.
                    if new_object:
                        self._link_objects(meta, binding, ancestor)
                    continue

            row_key = self._create_row_key(nested_map, rsw, column_prefix)
            combined_key = _combine_keys(row_key, parent_key)
            row_value = self._nested_objects.get(combined_key) if not combined_key.is_degenerate else None
            known = row_value is not None
            self._instantiate_collection(binding, meta)
            if self._any_not_null_column_has_value(binding, column_prefix, rsw):
                row_value = self._get_nested_row_value(
                    rsw, nested_map, combined_key, column_prefix, row_value
                )
                if row_value is not None and not known:
                    self._link_objects(meta, binding, row_value)
                    found = True
        return found

    def _any_not_null_column_has_value(
        self, binding: FieldBinding, column_prefix: str | None, rsw: ResultSetWrapper
    ) -> bool:
        if binding.not_null_columns:
            return any(
                rsw.value(prepend_prefix(column, column_prefix) or column) is not None
                for column in binding.not_null_columns
            )
        if column_prefix:
            upper = column_prefix.upper()
            return any(column.upper().startswith(upper) for column in rsw.columns)
        return True

    def _instantiate_collection(self, binding: FieldBinding, meta: MetaObject) -> Any:
        """The collection behind *binding*, created on the target if missing."""
        prop = binding.property
        if prop is None:
            return None
        value = meta.get_value(prop) if meta.has_getter(prop) else None
        if value is None:
            declared = _declared_type(binding, meta)
            if not is_collection_type(declared):
                return None
            value = create_collection(declared)
            meta.set_value(prop, value)
            return value
        if isinstance(value, (list, set)):
            return value
        return None

    def _link_objects(self, meta: MetaObject, binding: FieldBinding, row_value: Any) -> None:
        collection = self._instantiate_collection(binding, meta)
        if collection is not None:
            MetaObject(collection).add(row_value)
        elif binding.property is not None:
            meta.set_value(binding.property, row_value)

    # --- identity keys ---

    def _create_row_key(
        self, result_map: ResultMap, rsw: ResultSetWrapper, column_prefix: str | None
    ) -> CacheKey:
        key = CacheKey([result_map.id])
        bindings = [b for b in result_map.row_key_bindings if b.is_simple and b.column]
        if bindings:
            self._row_key_for_mapped(result_map, rsw, key, bindings, column_prefix)
        elif _is_mapping_type(result_map.type):
            for column in rsw.columns:
                key.update(column)
                key.update(rsw.value(column))
        else:
            self._row_key_for_unmapped(result_map, rsw, key, column_prefix)
        if key.is_degenerate:
            return NULL_CACHE_KEY
        return key

    def _row_key_for_mapped(
        self,
        result_map: ResultMap,
        rsw: ResultSetWrapper,
        key: CacheKey,
        bindings: list[FieldBinding],
        column_prefix: str | None,
    ) -> None:
        mapped = rsw.mapped_column_names(result_map, column_prefix)
        for binding in bindings:
            column = prepend_prefix(binding.column, column_prefix) or ""
            if column.upper() not in mapped:
                continue
            value = rsw.value(column)
            if value is not None or self._settings.return_instance_for_empty_row:
                key.update(column)
                key.update(value)

    def _row_key_for_unmapped(
        self,
        result_map: ResultMap,
        rsw: ResultSetWrapper,
        key: CacheKey,
        column_prefix: str | None,
    ) -> None:
        info = class_info(result_map.type)
        camel_case = self._settings.map_underscore_to_camel_case
        for column in rsw.unmapped_column_names(result_map, column_prefix):
            name = _strip_prefix(column, column_prefix)
            if name is None or info.find_property(name, camel_case) is None:
                continue
            value = rsw.value(column)
            if value is not None:
                key.update(column)
                key.update(value)

    # --- object creation ---

    def _is_scalar_map(self, result_map: ResultMap) -> bool:
        target = result_map.type
        return (
            isinstance(target, type)
            and target is not object
            and not _is_mapping_type(target)
            and self._converters.get(target) is not None
        )

    def _create_result_object(
        self,
        rsw: ResultSetWrapper,
        result_map: ResultMap,
        lazy_loaders: ResultLoaderMap,
        column_prefix: str | None,
    ) -> _Created:
        created = self._instantiate(rsw, result_map, column_prefix)
        if created.value is not None and not self._is_scalar_map(result_map):
            if any(self._is_lazy(b) for b in result_map.property_bindings if b.nested_query_id):
                created.value = LazyObject(created.value, lazy_loaders)
        return created

    def _instantiate(
        self, rsw: ResultSetWrapper, result_map: ResultMap, column_prefix: str | None
    ) -> _Created:
        target = result_map.type
        if self._is_scalar_map(result_map):
            return _Created(self._scalar_value(rsw, result_map, column_prefix), frozenset(), False)
        if result_map.constructor_bindings:
            return self._create_parameterized(rsw, result_map, column_prefix)
        if _is_mapping_type(target):
            factory = dict if target in (dict, Mapping) or not isinstance(target, type) else target
            return _Created(factory(), frozenset(), False)
        if not isinstance(target, type):
            raise NoViableConstructorError(repr(target), "result type is not a class")
        info = class_info(target)
        if info.default_constructible:
            return _Created(self._call(result_map, target, (), {}), frozenset(), False)
        if self._should_apply_automatic_mappings(result_map, False):
            created = self._create_by_signature(rsw, result_map, column_prefix)
            if created is not None:
                return created
        raise NoViableConstructorError(
            target.__name__,
            "no default constructor and no constructor matching the result columns "
            f"{rsw.columns}",
        )

    def _scalar_value(
        self, rsw: ResultSetWrapper, result_map: ResultMap, column_prefix: str | None
    ) -> Any:
        if result_map.bindings and result_map.bindings[0].column:
            binding = result_map.bindings[0]
            column = prepend_prefix(binding.column, column_prefix) or binding.column
            converter = binding.converter or rsw.converter_for(result_map.type, column)
        else:
            if not rsw.columns:
                return None
            column = rsw.columns[0]
            converter = rsw.converter_for(result_map.type, column)
        return self._convert(result_map, None, column, converter, rsw.value(column))

    def _create_parameterized(
        self, rsw: ResultSetWrapper, result_map: ResultMap, column_prefix: str | None
    ) -> _Created:
        args: list[Any] = []
        kwargs: dict[str, Any] = {}
        found = False
        for binding in result_map.constructor_bindings:
            if binding.nested_query_id is not None:
                value = self._nested_query_constructor_value(rsw, binding, column_prefix)
            elif binding.nested_result_map_id is not None:
                nested_map = self._configuration.get_result_map(binding.nested_result_map_id)
                value = self._get_row_value(
                    rsw, nested_map, _join_prefix(column_prefix, binding.column_prefix)
                )
            else:
                column = prepend_prefix(binding.column, column_prefix) or ""
                python_type = binding.python_type or self._constructor_parameter_type(
                    result_map, binding.name
                )
                converter = binding.converter or rsw.converter_for(python_type, column)
                value = self._convert(result_map, binding.name, column, converter, rsw.value(column))
            found = found or value is not None
            if binding.name is not None:
                kwargs[binding.name] = value
            else:
                args.append(value)
        value = self._call(result_map, result_map.type, tuple(args), kwargs)
        return _Created(value, frozenset(kwargs), True)

    def _constructor_parameter_type(self, result_map: ResultMap, name: str | None) -> Any:
        if name is None or not isinstance(result_map.type, type):
            return None
        for param in class_info(result_map.type).init_parameters:
            if param.name == name and param.annotation is not inspect.Parameter.empty:
                return unwrap_optional(class_info(result_map.type).properties.get(name, param.annotation))
        return None

    def _create_by_signature(
        self, rsw: ResultSetWrapper, result_map: ResultMap, column_prefix: str | None
    ) -> _Created | None:
        target = result_map.type
        factory = _automap_factory(target)
        if factory is not None:
            parameters = _positional_parameters(inspect.signature(factory).parameters.values())
            created = self._by_name(rsw, result_map, factory, parameters, column_prefix)
            if created is None:
                created = self._by_position(rsw, result_map, factory, parameters, column_prefix)
            if created is None:
                raise NoViableConstructorError(
                    target.__name__,
                    f"@automap_constructor {factory.__name__} does not match columns {rsw.columns}",
                )
            return created

        parameters = _positional_parameters(class_info(target).init_parameters)
        return self._by_name(rsw, result_map, target, parameters, column_prefix) or self._by_position(
            rsw, result_map, target, parameters, column_prefix
        )

    def _by_name(
        self,
        rsw: ResultSetWrapper,
        result_map: ResultMap,
        factory: Any,
        parameters: list[inspect.Parameter],
        column_prefix: str | None,
    ) -> _Created | None:
        camel_case = self._settings.map_underscore_to_camel_case
        explicit = {b.property: b for b in result_map.property_bindings if b.is_simple and b.column}
        columns: dict[str, str] = {}
        for column in rsw.columns:
            name = _strip_prefix(column, column_prefix)
            if name is not None:
                key = name.lower().replace("_", "") if camel_case else name.lower()
                columns.setdefault(key, column)

        kwargs: dict[str, Any] = {}
        for param in parameters:
            binding = explicit.get(param.name)
            if binding is not None:
                column = prepend_prefix(binding.column, column_prefix) or ""
                if not rsw.cursor.has_column(column):
                    column = ""
            else:
                key = param.name.lower().replace("_", "") if camel_case else param.name.lower()
                column = columns.get(key, "")
            if not column:
                if param.default is inspect.Parameter.empty:
                    return None
                continue
            python_type = _parameter_type(param, factory, result_map)
            converter = (binding.converter if binding is not None else None) or rsw.converter_for(
                python_type, column
            )
            kwargs[param.name] = self._convert(result_map, param.name, column, converter, rsw.value(column))
        value = self._call(result_map, factory, (), kwargs)
        return _Created(value, frozenset(kwargs), True)

    def _by_position(
        self,
        rsw: ResultSetWrapper,
        result_map: ResultMap,
        factory: Any,
        parameters: list[inspect.Parameter],
        column_prefix: str | None,
    ) -> _Created | None:
        columns = [c for c in rsw.columns if _strip_prefix(c, column_prefix) is not None]
        required = sum(1 for p in parameters if p.default is inspect.Parameter.empty)
        if not required <= len(columns) <= len(parameters):
            return None
        args: list[Any] = []
        names: list[str] = []
        for param, column in zip(parameters, columns):
            python_type = _parameter_type(param, factory, result_map)
            if python_type is not None and not self._converters.has(python_type):
                return None
            converter = rsw.converter_for(python_type, column)
            args.append(self._convert(result_map, param.name, column, converter, rsw.value(column)))
            names.append(param.name)
        value = self._call(result_map, factory, tuple(args), {})
        return _Created(value, frozenset(names), True)

    def _call(self, result_map: ResultMap, factory: Any, args: tuple[Any, ...], kwargs: dict[str, Any]) -> Any:
        try:
            return factory(*args, **kwargs)
        except (TypeError, ValueError) as e:
            name = getattr(result_map.type, "__name__", repr(result_map.type))
            raise NoViableConstructorError(name, f"{e} (result map '{result_map.id}')") from e

    # --- property mappings ---

    def _should_apply_automatic_mappings(self, result_map: ResultMap, nested: bool) -> bool:
        if result_map.auto_mapping is not None:
            return result_map.auto_mapping
        behavior = self._settings.auto_mapping_behavior
        if nested:
            return behavior is AutoMappingBehavior.FULL
        return behavior is not AutoMappingBehavior.NONE

    def _create_automatic_mappings(
        self,
        rsw: ResultSetWrapper,
        result_map: ResultMap,
        meta: MetaObject,
        column_prefix: str | None,
    ) -> list[_AutoMapping]:
        cache_key = f"{result_map.id}:{column_prefix or ''}"
        mappings = self._auto_mappings.get(cache_key)
        if mappings is not None:
            return mappings
        mappings = []
        camel_case = self._settings.map_underscore_to_camel_case
        for column in rsw.unmapped_column_names(result_map, column_prefix):
            name = _strip_prefix(column, column_prefix)
            if not name:
                continue
            prop = meta.find_property(name, camel_case)
            if prop is None or prop in result_map.mapped_properties or not meta.has_setter(prop):
                continue
            python_type = meta.setter_type(prop)
            converter = self._converters.get(python_type, rsw.cursor.store_type(column))
            if converter is None:
                logger.debug(
                    "No converter for column '%s' -> %s.%s (%r); not auto-mapped",
                    column,
                    getattr(result_map.type, "__name__", result_map.type),
                    prop,
                    python_type,
                )
                continue
            mappings.append(_AutoMapping(column, prop, converter))
        self._auto_mappings[cache_key] = mappings
        return mappings

    def _apply_automatic_mappings(
        self,
        rsw: ResultSetWrapper,
        result_map: ResultMap,
        meta: MetaObject,
        column_prefix: str | None,
        skip: frozenset[str],
    ) -> bool:
        found = False
        for mapping in self._create_automatic_mappings(rsw, result_map, meta, column_prefix):
            if mapping.property in skip:
                found = True
                continue
            value = self._convert(
                result_map, mapping.property, mapping.column, mapping.converter, rsw.value(mapping.column)
            )
            if value is not None:
                found = True
            if value is not None or self._settings.call_setters_on_nulls:
                self._set(meta, result_map, mapping.property, mapping.column, value)
        return found

    def _apply_property_mappings(
        self,
        rsw: ResultSetWrapper,
        result_map: ResultMap,
        meta: MetaObject,
        lazy_loaders: ResultLoaderMap,
        column_prefix: str | None,
        skip: frozenset[str],
    ) -> bool:
        mapped = rsw.mapped_column_names(result_map, column_prefix)
        found = False
        for binding in result_map.property_bindings:
            if binding.nested_result_map_id is not None or binding.property is None:
                continue
            column = prepend_prefix(binding.column, column_prefix)
            if not binding.is_composite and (column is None or column.upper() not in mapped):
                continue
            if binding.property in skip:
                found = True
                continue
            value = self._property_mapping_value(rsw, result_map, meta, binding, lazy_loaders, column_prefix)
            if value is _DEFERRED:
                found = True
                continue
            if value is not None:
                found = True
            if value is not None or self._settings.call_setters_on_nulls:
                self._set(meta, result_map, binding.property, column, value)
        return found

    def _property_mapping_value(
        self,
        rsw: ResultSetWrapper,
        result_map: ResultMap,
        meta: MetaObject,
        binding: FieldBinding,
        lazy_loaders: ResultLoaderMap,
        column_prefix: str | None,
    ) -> Any:
        if binding.nested_query_id is not None:
            return self._nested_query_mapping_value(rsw, meta, binding, lazy_loaders, column_prefix)
        column = prepend_prefix(binding.column, column_prefix) or ""
        python_type = binding.python_type or meta.setter_type(binding.property or "")
        converter = binding.converter or rsw.converter_for(python_type, column)
        return self._convert(result_map, binding.property, column, converter, rsw.value(column))

    def _set(self, meta: MetaObject, result_map: ResultMap, prop: str, column: str | None, value: Any) -> None:
        try:
            meta.set_value(prop, value)
        except PropertyAccessError as e:
            raise ResultMappingError(result_map.id, prop, column, str(e)) from e

    def _convert(
        self,
        result_map: ResultMap,
        prop: str | None,
        column: str,
        converter: ValueConverter,
        raw: Any,
    ) -> Any:
        try:
            return converter.from_store(raw)
        except _CONVERSION_ERRORS as e:
            raise ResultMappingError(result_map.id, prop, column, f"{raw!r}: {e}") from e

    # --- nested queries ---

    def _is_lazy(self, binding: FieldBinding) -> bool:
        if binding.is_constructor:
            return False
        return binding.lazy if binding.lazy is not None else self._settings.lazy_loading_enabled

    def _nested_query_mapping_value(
        self,
        rsw: ResultSetWrapper,
        meta: MetaObject,
        binding: FieldBinding,
        lazy_loaders: ResultLoaderMap,
        column_prefix: str | None,
    ) -> Any:
        nested = self._configuration.get_statement(binding.nested_query_id or "")
        parameter = self._nested_query_parameter(rsw, binding, nested.parameter_type, column_prefix)
        if parameter is None:
            return None
        prop = binding.property or ""
        bound_sql = nested.get_bound_sql(parameter)
        key = self._executor.create_cache_key(nested, parameter, DEFAULT_ROW_BOUNDS, bound_sql)
        target_type = _declared_type(binding, meta)
        if self._executor.is_cached(nested, key):
            self._executor.defer_load(nested, meta, prop, key, target_type)
            return _DEFERRED
        loader = ResultLoader(self._executor, nested, parameter, target_type, key, bound_sql)
        if self._is_lazy(binding):
            lazy_loaders.add_loader(prop, meta, loader)
            return _DEFERRED
        return loader.load_result()

    def _nested_query_constructor_value(
        self, rsw: ResultSetWrapper, binding: FieldBinding, column_prefix: str | None
    ) -> Any:
        nested = self._configuration.get_statement(binding.nested_query_id or "")
        parameter = self._nested_query_parameter(rsw, binding, nested.parameter_type, column_prefix)
        if parameter is None:
            return None
        bound_sql = nested.get_bound_sql(parameter)
        key = self._executor.create_cache_key(nested, parameter, DEFAULT_ROW_BOUNDS, bound_sql)
        loader = ResultLoader(self._executor, nested, parameter, binding.python_type, key, bound_sql)
        return loader.load_result()

    def _nested_query_parameter(
        self,
        rsw: ResultSetWrapper,
        binding: FieldBinding,
        parameter_type: Any,
        column_prefix: str | None,
    ) -> Any:
        if binding.is_composite:
            parameter: dict[str, Any] = {}
            found = False
            for composite in binding.composites:
                column = prepend_prefix(composite.column, column_prefix) or ""
                value = rsw.value(column)
                parameter[composite.property or column] = value
                found = found or value is not None
            return parameter if found else None
        column = prepend_prefix(binding.column, column_prefix) or ""
        converter = rsw.converter_for(parameter_type, column)
        return converter.from_store(rsw.value(column))


def _declared_type(binding: FieldBinding, meta: MetaObject) -> Any:
    """Binding type, refined by the property annotation for collections (set vs list)."""
    declared = meta.setter_type(binding.property) if binding.property else None
    if binding.python_type is None:
        return declared
    if is_collection_type(binding.python_type) and is_collection_type(declared):
        return declared
    return binding.python_type


def _combine_keys(row_key: CacheKey, parent_key: CacheKey) -> CacheKey:
    if row_key.count > 1 and parent_key.count > 1:
        return row_key.clone().update(parent_key)
    return NULL_CACHE_KEY


def _join_prefix(parent: str | None, own: str | None) -> str | None:
    if not parent and not own:
        return None
    return (parent or "") + (own or "")


def _strip_prefix(column: str, prefix: str | None) -> str | None:
    if not prefix:
        return column
    if column.upper().startswith(prefix.upper()):
        return column[len(prefix):]
    return None


def _is_mapping_type(target: Any) -> bool:
    if target is dict or target is Mapping:
        return True
    return isinstance(target, type) and issubclass(target, Mapping)


def _positional_parameters(parameters: Any) -> list[inspect.Parameter]:
    return [
        p
        for p in parameters
        if p.kind in (inspect.Parameter.POSITIONAL_ONLY, inspect.Parameter.POSITIONAL_OR_KEYWORD, inspect.Parameter.KEYWORD_ONLY)
    ]


def _parameter_type(param: inspect.Parameter, factory: Any, result_map: ResultMap) -> Any:
    if isinstance(result_map.type, type) and factory is result_map.type:
        declared = class_info(result_map.type).properties.get(param.name)
        if declared is not None:
            return unwrap_optional(declared)
    annotation = param.annotation
    if isinstance(annotation, str):
        try:
            annotation = typing.get_type_hints(factory).get(param.name, inspect.Parameter.empty)
        except (NameError, TypeError):
            return None
    if annotation is inspect.Parameter.empty:
        return None
    return unwrap_optional(annotation)


def _automap_factory(target: type) -> Any:
    for name, attr in vars(target).items():
        func = attr.__func__ if isinstance(attr, (classmethod, staticmethod)) else attr
        if callable(func) and getattr(func, AUTOMAP_CONSTRUCTOR_ATTR, False):
            return getattr(target, name)
    return None
