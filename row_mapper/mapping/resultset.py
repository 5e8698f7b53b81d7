"""Result cursors.

ResultCursor gives row-by-row access to a DB-API cursor (or to a list of
rows) with case-insensitive column lookup. ResultSetWrapper adds the
per-result-map column bookkeeping the materializer needs.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Mapping, Sequence
from typing import Any

from row_mapper.core.exceptions import ExecutionError
from row_mapper.mapping.schema import ResultMap
from row_mapper.types.converters import ConverterRegistry, ValueConverter

_END = object()


class ResultCursor:
    """Positioned view over result rows.

    Rows may be sequences (tuples, ``sqlite3.Row``) or mappings; values are
    read by column label either way.

    Args:
        columns: Column labels in result order.
        rows: Iterable of rows, consumed lazily unless *scrollable*.
        store_types: Declared store type per column, when the driver reports one.
        scrollable: Materialize all rows so ``absolute()`` can jump.
    """

    def __init__(
        self,
        columns: Sequence[str],
        rows: Iterable[Any],
        store_types: Sequence[str | None] | None = None,
        *,
        scrollable: bool = False,
    ) -> None:
        self.columns = list(columns)
        self.store_types = list(store_types) if store_types is not None else [None] * len(self.columns)
        self._positions: dict[str, int] = {}
        for i, name in enumerate(self.columns):
            self._positions.setdefault(name.upper(), i)
        self.scrollable = scrollable
        self._buffer: list[Any] | None = list(rows) if scrollable else None
        self._rows: Iterator[Any] = iter(self._buffer if self._buffer is not None else rows)
        self._index = -1
        self._current: Any = None

    @classmethod
    def from_dbapi(
        cls,
        cursor: Any,
        *,
        scrollable: bool = False,
        fetch_size: int | None = None,
    ) -> ResultCursor:
        """Wrap an executed DB-API cursor."""
        description = cursor.description or ()
        columns = [desc[0] for desc in description]
        store_types = [desc[1] if isinstance(desc[1], str) else None for desc in description]
        return cls(columns, _fetch(cursor, fetch_size), store_types, scrollable=scrollable)

    @classmethod
    def from_rows(cls, rows: Sequence[Mapping[str, Any]]) -> ResultCursor:
        """Wrap in-memory dict rows (columns are taken from the first row)."""
        columns = list(rows[0].keys()) if rows else []
        return cls(columns, rows, scrollable=True)

    def advance(self) -> bool:
        """Move to the next row; False once the rows are exhausted."""
        row = next(self._rows, _END)
        if row is _END:
            self._current = None
            return False
        self._index += 1
        self._current = row
        return True

    def absolute(self, skip: int) -> bool:
        """Position so the next advance() returns row number *skip* (0-based)."""
        if self._buffer is None:
            raise ExecutionError("absolute() needs a scrollable result set")
        self._rows = iter(self._buffer[skip:])
        self._index = skip - 1
        self._current = None
        return skip < len(self._buffer)

    def has_column(self, label: str) -> bool:
        return label.upper() in self._positions

    def store_type(self, label: str) -> str | None:
        position = self._positions.get(label.upper())
        return None if position is None else self.store_types[position]

    def value(self, label: str) -> Any:
        """Raw value of *label* in the current row; None for unknown columns."""
        position = self._positions.get(label.upper())
        if position is None or self._current is None:
            return None
        row = self._current
        if isinstance(row, Mapping):
            return row[self.columns[position]]
        return row[position]


def _fetch(cursor: Any, fetch_size: int | None) -> Iterator[Any]:
    size = fetch_size or getattr(cursor, "arraysize", None) or 100
    while True:
        rows = cursor.fetchmany(size)
        if not rows:
            return
        yield from rows


class ResultSetWrapper:
    """A ResultCursor plus cached mapped/unmapped column splits per result map."""

    def __init__(self, cursor: ResultCursor, converters: ConverterRegistry) -> None:
        self.cursor = cursor
        self._converters = converters
        self._mapped: dict[str, frozenset[str]] = {}
        self._unmapped: dict[str, list[str]] = {}
        self._converter_cache: dict[tuple[Any, str], ValueConverter] = {}

    @property
    def columns(self) -> list[str]:
        return self.cursor.columns

    def value(self, label: str) -> Any:
        return self.cursor.value(label)

    def converter_for(self, python_type: Any, label: str) -> ValueConverter:
        """Converter for reading *label* into *python_type*."""
        key = (python_type, label.upper())
        converter = self._converter_cache.get(key)
        if converter is None:
            store_type = self.cursor.store_type(label)
            converter = self._converters.get(python_type, store_type) or self._converters.unknown
            self._converter_cache[key] = converter
        return converter

    def _load(self, result_map: ResultMap, prefix: str | None) -> str:
        key = f"{result_map.id}:{prefix or ''}"
        if key not in self._mapped:
            upper_prefix = (prefix or "").upper()
            mapped_columns = {upper_prefix + column for column in result_map.mapped_columns}
            mapped: set[str] = set()
            unmapped: list[str] = []
            for column in self.cursor.columns:
                if column.upper() in mapped_columns:
                    mapped.add(column.upper())
                else:
                    unmapped.append(column)
            self._mapped[key] = frozenset(mapped)
            self._unmapped[key] = unmapped
        return key

    def mapped_column_names(self, result_map: ResultMap, prefix: str | None) -> frozenset[str]:
        """Upper-cased labels of present columns explicitly bound by *result_map*."""
        return self._mapped[self._load(result_map, prefix)]

    def unmapped_column_names(self, result_map: ResultMap, prefix: str | None) -> list[str]:
        """Present columns left for auto-mapping, in result order."""
        return self._unmapped[self._load(result_map, prefix)]
