"""Parameter markers: parsing ``#{...}``, building placeholder SQL, binding values.

``build_sql`` turns evaluated template text into SQL with one ``?`` per
``#{}`` marker plus the ordered ParameterMapping list. ``bind_parameters``
resolves each mapping against a BoundSql and yields the positional
BoundParameter list handed to the driver.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any

from row_mapper.core.exceptions import ParameterBindingError, PropertyAccessError
from row_mapper.reflection import MetaObject, parse_path
from row_mapper.scripting.tokens import parse_tokens
from row_mapper.types.converters import (
    ConverterRegistry,
    DecimalConverter,
    ValueConverter,
)

logger = logging.getLogger(__name__)

PLACEHOLDER = "?"

_ATTRIBUTE_ALIASES = {
    "javaType": "python_type",
    "pythonType": "python_type",
    "jdbcType": "store_type",
    "storeType": "store_type",
    "typeHandler": "converter",
    "converter": "converter",
    "numericScale": "numeric_scale",
    "mode": "mode",
    "resultMap": "result_map",
}


def parse_parameter_expression(content: str) -> dict[str, str]:
    """Parse marker content such as ``id:INTEGER, numericScale=2``.

    Returns a dict with ``property`` (or ``expression`` for a parenthesized
    form), an optional ``jdbcType`` from the ``:TYPE`` shorthand, and every
    ``name=value`` attribute verbatim.
    """
    result: dict[str, str] = {}
    text = content.strip()
    if text.startswith("("):
        depth = 0
        for i, ch in enumerate(text):
            if ch == "(":
                depth += 1
            elif ch == ")":
                depth -= 1
                if depth == 0:
                    result["expression"] = text[1:i].strip()
                    text = text[i + 1 :]
                    break
        else:
            raise ParameterBindingError(content, "unbalanced parentheses in expression")
    else:
        end = len(text)
        for i, ch in enumerate(text):
            if ch in ":,":
                end = i
                break
        result["property"] = text[:end].strip()
        text = text[end:]

    text = text.strip()
    if text.startswith(":"):
        end = text.find(",")
        store = text[1:] if end == -1 else text[1:end]
        result["jdbcType"] = store.strip()
        text = "" if end == -1 else text[end:]

    for option in text.split(","):
        option = option.strip()
        if not option:
            continue
        name, sep, value = option.partition("=")
        if not sep:
            raise ParameterBindingError(content, f"malformed attribute '{option}'")
        result[name.strip()] = value.strip()
    return result


@dataclass(frozen=True)
class ParameterMapping:
    """Metadata for one ``#{}`` marker."""

    property: str
    python_type: type | None = None
    store_type: str | None = None
    converter: ValueConverter | None = None
    numeric_scale: int | None = None
    mode: str = "IN"
    result_map: str | None = None
    marker: str = ""


def build_parameter_mapping(content: str, converters: ConverterRegistry) -> ParameterMapping:
    parsed = parse_parameter_expression(content)
    if "expression" in parsed:
        raise ParameterBindingError(content, "expression-based parameters are not supported")
    prop = parsed.pop("property")
    if not prop:
        raise ParameterBindingError(content, "empty property name")

    options: dict[str, str] = {}
    for name, value in parsed.items():
        key = _ATTRIBUTE_ALIASES.get(name)
        if key is None:
            raise ParameterBindingError(content, f"unknown attribute '{name}'")
        options[key] = value

    python_type: type | None = None
    if "python_type" in options:
        try:
            python_type = converters.resolve_type(options["python_type"])
        except KeyError as e:
            raise ParameterBindingError(content, str(e)) from e

    scale: int | None = None
    if "numeric_scale" in options:
        try:
            scale = int(options["numeric_scale"])
        except ValueError as e:
            raise ParameterBindingError(content, "numericScale must be an integer") from e

    store_type = options.get("store_type")
    converter: ValueConverter | None = None
    if "converter" in options:
        try:
            converter = converters.by_name(options["converter"])
        except KeyError as e:
            raise ParameterBindingError(content, str(e)) from e
    elif scale is not None and python_type in (None, Decimal):
        python_type = Decimal
        converter = DecimalConverter(scale)
    elif python_type is not None:
        converter = converters.get(python_type, store_type)

    mode = options.get("mode", "IN").upper()
    if mode != "IN":
        raise ParameterBindingError(content, f"parameter mode {mode} is not supported")

    return ParameterMapping(
        property=prop,
        python_type=python_type,
        store_type=store_type,
        converter=converter,
        numeric_scale=scale,
        mode=mode,
        result_map=options.get("result_map"),
        marker=content,
    )


def build_sql(text: str, converters: ConverterRegistry) -> tuple[str, list[ParameterMapping]]:
    """Replace ``#{}`` markers with placeholders, left to right."""
    mappings: list[ParameterMapping] = []

    def _marker(content: str) -> str:
        mappings.append(build_parameter_mapping(content, converters))
        return PLACEHOLDER

    return parse_tokens(text, "#{", "}", _marker), mappings


@dataclass
class BoundSql:
    """Final SQL plus everything needed to bind and cache it."""

    sql: str
    parameter_mappings: list[ParameterMapping]
    parameter_object: Any
    additional_parameters: dict[str, Any] = field(default_factory=dict)

    def has_additional(self, path: str) -> bool:
        return parse_path(path)[0][0] in self.additional_parameters

    def get_additional(self, path: str) -> Any:
        return MetaObject(self.additional_parameters).get_value(path)


@dataclass(frozen=True)
class BoundParameter:
    """One positional value ready for execution."""

    position: int
    name: str
    value: Any
    python_type: type | None
    store_type: str | None
    converter: ValueConverter

    @property
    def store_value(self) -> Any:
        try:
            return self.converter.to_store(self.value, self.store_type)
        except (TypeError, ValueError, ArithmeticError) as e:
            raise ParameterBindingError(self.name, f"cannot convert {self.value!r}: {e}") from e


def is_scalar(value: Any, converters: ConverterRegistry) -> bool:
    """True for values bound as a whole (numbers, strings, dates, enums...)."""
    if value is None or isinstance(value, Mapping):
        return False
    value_type = type(value)
    return value_type is not object and converters.get(value_type) is not None


def resolve_parameter_value(
    bound_sql: BoundSql, mapping: ParameterMapping, converters: ConverterRegistry
) -> Any:
    """Resolution order: loop/bind values, null, a scalar parameter, then a property path."""
    name = mapping.property
    try:
        if bound_sql.has_additional(name):
            return bound_sql.get_additional(name)
        parameter = bound_sql.parameter_object
        if parameter is None:
            return None
        if is_scalar(parameter, converters):
            return parameter
        return MetaObject(parameter).get_value(name)
    except PropertyAccessError as e:
        raise ParameterBindingError(mapping.marker or name, str(e)) from e
    except ValueError as e:
        raise ParameterBindingError(mapping.marker or name, str(e)) from e


def bind_parameters(bound_sql: BoundSql, converters: ConverterRegistry) -> list[BoundParameter]:
    params: list[BoundParameter] = []
    for position, mapping in enumerate(bound_sql.parameter_mappings, start=1):
        value = resolve_parameter_value(bound_sql, mapping, converters)
        converter = mapping.converter or converters.for_value(value, mapping.store_type)
        params.append(
            BoundParameter(
                position=position,
                name=mapping.property,
                value=value,
                python_type=mapping.python_type or (type(value) if value is not None else None),
                store_type=mapping.store_type,
                converter=converter,
            )
        )
    return params
