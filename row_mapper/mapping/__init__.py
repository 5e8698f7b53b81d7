"""Result mapping: result map schemas and row materialization."""

from __future__ import annotations

from row_mapper.mapping.builder import ResultMapBuilder, result_map
from row_mapper.mapping.materializer import ResultMaterializer, automap_constructor
from row_mapper.mapping.proxy import is_lazy, pending_properties, resolve_all, unwrap
from row_mapper.mapping.resultset import ResultCursor
from row_mapper.mapping.schema import Discriminator, FieldBinding, ResultMap
from row_mapper.mapping.statement import MappedStatement, RowBounds

__all__ = [
    "Discriminator",
    "FieldBinding",
    "MappedStatement",
    "ResultCursor",
    "ResultMap",
    "ResultMapBuilder",
    "ResultMaterializer",
    "RowBounds",
    "automap_constructor",
    "is_lazy",
    "pending_properties",
    "resolve_all",
    "result_map",
    "unwrap",
]
