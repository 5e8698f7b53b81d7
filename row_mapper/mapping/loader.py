"""Nested-query loading: immediate, lazy and deferred.

ResultLoader runs a nested statement and shapes its rows for the target
property. ResultLoaderMap holds the lazy loaders of one materialized object.
DeferredLoad fills a property from the session cache once the query it
depends on (still running further up the stack) has finished.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from row_mapper.core.exceptions import MultipleRowsError
from row_mapper.reflection import MetaObject, create_collection, is_collection_type

if TYPE_CHECKING:
    from row_mapper.cache.key import CacheKey
    from row_mapper.mapping.statement import MappedStatement
    from row_mapper.scripting.binder import BoundSql

logger = logging.getLogger(__name__)


class _ExecutionPlaceholder:
    def __repr__(self) -> str:
        return "EXECUTION_PLACEHOLDER"


# Stored in the session cache while the query for a key is still running.
EXECUTION_PLACEHOLDER = _ExecutionPlaceholder()


def extract_object_from_list(rows: list[Any], target_type: Any, statement_id: str = "") -> Any:
    """Shape a nested query's rows for a property of *target_type*."""
    if target_type is not None and is_collection_type(target_type):
        collection = create_collection(target_type)
        MetaObject(collection).add_all(rows)
        return collection
    if not rows:
        return None
    if len(rows) > 1:
        raise MultipleRowsError(statement_id, len(rows))
    return rows[0]


class ResultLoader:
    """Executes one nested statement on demand.

    A loader called from another thread, or after its executor was closed,
    runs on a fresh executor so the owning session is never shared.
    """

    def __init__(
        self,
        executor: Any,
        statement: MappedStatement,
        parameter: Any,
        target_type: Any,
        cache_key: CacheKey,
        bound_sql: BoundSql,
    ) -> None:
        self._executor = executor
        self.statement = statement
        self.parameter = parameter
        self.target_type = target_type
        self.cache_key = cache_key
        self.bound_sql = bound_sql
        self._creator_thread = threading.get_ident()
        self.result: Any = None

    def load_result(self) -> Any:
        self.result = extract_object_from_list(
            self._select_list(), self.target_type, self.statement.id
        )
        return self.result

    def _select_list(self) -> list[Any]:
        executor = self._executor
        if threading.get_ident() == self._creator_thread and not executor.closed:
            return executor.query(
                self.statement,
                self.parameter,
                bound_sql=self.bound_sql,
                cache_key=self.cache_key,
            )
        logger.debug("Loading '%s' on a new executor", self.statement.id)
        fresh = executor.new_executor()
        try:
            return fresh.query(
                self.statement,
                self.parameter,
                bound_sql=self.bound_sql,
                cache_key=self.cache_key,
            )
        finally:
            fresh.close(False)


@dataclass
class _LoadPair:
    property: str
    meta: MetaObject
    loader: ResultLoader

    def load(self) -> None:
        self.meta.set_value(self.property, self.loader.load_result())


@dataclass
class ResultLoaderMap:
    """Pending lazy loads of one object, keyed by upper-cased property name."""

    _loaders: dict[str, _LoadPair] = field(default_factory=dict)
    _lock: threading.RLock = field(default_factory=threading.RLock)

    def add_loader(self, property: str, meta: MetaObject, loader: ResultLoader) -> None:
        with self._lock:
            self._loaders[property.upper()] = _LoadPair(property, meta, loader)

    def remove(self, property: str) -> None:
        with self._lock:
            self._loaders.pop(property.upper(), None)

    @property
    def properties(self) -> list[str]:
        with self._lock:
            return [pair.property for pair in self._loaders.values()]

    def load(self, property: str) -> bool:
        """Run and drop the loader for *property*; False if none was pending.

        The lock is held for the whole load, so a reader on another thread
        waits for the value instead of seeing the unloaded property.
        """
        with self._lock:
            pair = self._loaders.pop(property.upper(), None)
            if pair is None:
                return False
            logger.debug("Lazy loading '%s' via '%s'", pair.property, pair.loader.statement.id)
            pair.load()
            return True

    def load_all(self) -> None:
        while True:
            with self._lock:
                if not self._loaders:
                    return
                name = next(iter(self._loaders))
            self.load(name)

    def __len__(self) -> int:
        return len(self._loaders)


class DeferredLoad:
    """Fill a property from the session cache after an in-flight query completes."""

    def __init__(
        self,
        meta: MetaObject,
        property: str,
        cache_key: CacheKey,
        local_cache: Any,
        target_type: Any,
        statement_id: str = "",
    ) -> None:
        self.meta = meta
        self.property = property
        self.cache_key = cache_key
        self.local_cache = local_cache
        self.target_type = target_type
        self.statement_id = statement_id

    def can_load(self) -> bool:
        value = self.local_cache.get(self.cache_key)
        return value is not None and value is not EXECUTION_PLACEHOLDER

    def load(self) -> None:
        if not self.can_load():
            logger.debug(
                "Skipping deferred load of '%s': '%s' has no cached result",
                self.property,
                self.statement_id,
            )
            return
        rows = self.local_cache.get(self.cache_key)
        value = extract_object_from_list(rows, self.target_type, self.statement_id)
        self.meta.set_value(self.property, value)
