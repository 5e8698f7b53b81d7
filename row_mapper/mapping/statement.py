"""Mapped statements and row bounds."""

from __future__ import annotations

import sys
from dataclasses import dataclass
from typing import Any

from row_mapper.cache.impl import Cache
from row_mapper.core.enums import ResultSetKind, StatementKind
from row_mapper.mapping.schema import ResultMap
from row_mapper.scripting.binder import BoundSql
from row_mapper.scripting.compiler import SqlSource


@dataclass(frozen=True)
class RowBounds:
    """Offset/limit applied while reading a result set."""

    offset: int = 0
    limit: int = sys.maxsize

    def __post_init__(self) -> None:
        if self.offset < 0 or self.limit < 0:
            raise ValueError("RowBounds offset and limit must be non-negative")


DEFAULT_ROW_BOUNDS = RowBounds()


@dataclass(frozen=True)
class MappedStatement:
    """A registered statement: its SQL source plus execution options."""

    id: str
    sql_source: SqlSource
    kind: StatementKind
    result_maps: tuple[ResultMap, ...] = ()
    parameter_type: Any = None
    fetch_size: int | None = None
    timeout: int | None = None
    use_cache: bool | None = None
    flush_cache: bool | None = None
    result_ordered: bool = False
    result_set_kind: ResultSetKind = ResultSetKind.FORWARD_ONLY
    cache: Cache | None = None

    def __post_init__(self) -> None:
        is_select = self.kind is StatementKind.SELECT
        if self.use_cache is None:
            object.__setattr__(self, "use_cache", is_select)
        if self.flush_cache is None:
            object.__setattr__(self, "flush_cache", not is_select)

    @property
    def namespace(self) -> str:
        return self.id.rsplit(".", 1)[0] if "." in self.id else ""

    @property
    def has_nested_result_maps(self) -> bool:
        return any(rm.has_nested_result_maps for rm in self.result_maps)

    def get_bound_sql(self, parameter: Any) -> BoundSql:
        return self.sql_source.get_bound_sql(parameter)
