"""Value converters."""

from __future__ import annotations

from row_mapper.types.converters import (
    BoolConverter,
    ConverterRegistry,
    DecimalConverter,
    EnumConverter,
    EnumOrdinalConverter,
    ObjectConverter,
    UnknownConverter,
    ValueConverter,
)

__all__ = [
    "BoolConverter",
    "ConverterRegistry",
    "DecimalConverter",
    "EnumConverter",
    "EnumOrdinalConverter",
    "ObjectConverter",
    "UnknownConverter",
    "ValueConverter",
]
