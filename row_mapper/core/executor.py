"""Statement executors.

Executor runs mapped statements on one connection: binds parameters,
converts placeholders to the driver paramstyle, materializes rows, and keeps
the session-local cache. While a query is running its cache key holds
EXECUTION_PLACEHOLDER; nested queries that hit an in-flight key are deferred
and filled once the outermost query returns.

CachingExecutor adds the namespace (second-level) caches on top, staging
writes in a TransactionalCacheManager until commit.
"""

from __future__ import annotations

import logging
from collections import deque
from typing import Any

from row_mapper.cache.impl import PerpetualCache, TransactionalCacheManager
from row_mapper.cache.key import CacheKey
from row_mapper.core.configuration import Configuration
from row_mapper.core.connection import ConnectionManager
from row_mapper.core.enums import LocalCacheScope, ResultSetKind
from row_mapper.core.exceptions import ExecutionError, ExecutorClosedError, RowMapperError
from row_mapper.core.params import to_paramstyle
from row_mapper.mapping.loader import EXECUTION_PLACEHOLDER, DeferredLoad
from row_mapper.mapping.materializer import ResultMaterializer
from row_mapper.mapping.resultset import ResultCursor
from row_mapper.mapping.statement import DEFAULT_ROW_BOUNDS, MappedStatement, RowBounds
from row_mapper.reflection import MetaObject
from row_mapper.scripting.binder import BoundSql, bind_parameters, resolve_parameter_value

logger = logging.getLogger(__name__)


class Executor:
    """Runs statements on a single pooled connection.

    Args:
        configuration: Finalized configuration.
        connection_manager: Pool the connection is taken from (lazily, on
            first use) and returned to on close().
    """

    def __init__(self, configuration: Configuration, connection_manager: ConnectionManager) -> None:
        self.configuration = configuration
        self._connection_manager = connection_manager
        self._adapter = connection_manager.adapter
        self._connection: Any = None
        self._local_cache = PerpetualCache("LocalCache")
        self._deferred_loads: deque[DeferredLoad] = deque()
        self._query_stack = 0
        self._closed = False
        self.wrapper: Any = self

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def connection(self) -> Any:
        self._check_open()
        if self._connection is None:
            self._connection = self._connection_manager.acquire()
        return self._connection

    def _check_open(self) -> None:
        if self._closed:
            raise ExecutorClosedError()

    def new_executor(self) -> Executor:
        """A fresh executor on its own connection from the same pool."""
        return Executor(self.configuration, self._connection_manager)

    # --- queries ---

    def query(
        self,
        statement: MappedStatement,
        parameter: Any,
        bounds: RowBounds = DEFAULT_ROW_BOUNDS,
        *,
        bound_sql: BoundSql | None = None,
        cache_key: CacheKey | None = None,
    ) -> list[Any]:
        self._check_open()
        if bound_sql is None:
            bound_sql = statement.get_bound_sql(parameter)
        if cache_key is None:
            cache_key = self.create_cache_key(statement, parameter, bounds, bound_sql)

        if self._query_stack == 0 and statement.flush_cache:
            self.clear_local_cache()
        self._query_stack += 1
        try:
            cached = self._local_cache.get(cache_key)
            if cached is not None and cached is not EXECUTION_PLACEHOLDER:
                logger.debug("Session cache hit for %s", statement.id)
                result = cached
            else:
                result = self._query_from_database(statement, parameter, bounds, bound_sql, cache_key)
        except BaseException:
            if self._query_stack == 1:
                # loads queued by a failed query point at results that were never cached
                self._deferred_loads.clear()
            raise
        finally:
            self._query_stack -= 1

        if self._query_stack == 0:
            while self._deferred_loads:
                self._deferred_loads.popleft().load()
            if self.configuration.settings.local_cache_scope is LocalCacheScope.STATEMENT:
                self.clear_local_cache()
        return result

    def _query_from_database(
        self,
        statement: MappedStatement,
        parameter: Any,
        bounds: RowBounds,
        bound_sql: BoundSql,
        cache_key: CacheKey,
    ) -> list[Any]:
        self._local_cache.put(cache_key, EXECUTION_PLACEHOLDER)
        try:
            result = self._do_query(statement, bounds, bound_sql)
        finally:
            self._local_cache.remove(cache_key)
        self._local_cache.put(cache_key, result)
        return result

    def _do_query(
        self, statement: MappedStatement, bounds: RowBounds, bound_sql: BoundSql
    ) -> list[Any]:
        cursor = self._execute(statement, bound_sql)
        try:
            result_cursor = ResultCursor.from_dbapi(
                cursor,
                scrollable=statement.result_set_kind is ResultSetKind.SCROLL,
                fetch_size=statement.fetch_size,
            )
            materializer = ResultMaterializer(self.wrapper, self.configuration, statement, bounds)
            return materializer.handle(result_cursor)
        finally:
            cursor.close()

    def update(self, statement: MappedStatement, parameter: Any) -> int:
        """Run an INSERT/UPDATE/DELETE; returns the affected row count."""
        self._check_open()
        self.clear_local_cache()
        bound_sql = statement.get_bound_sql(parameter)
        cursor = self._execute(statement, bound_sql)
        try:
            count = int(cursor.rowcount)
        finally:
            cursor.close()
        logger.debug("<== %s: %d row(s) affected", statement.id, count)
        return count

    def _execute(self, statement: MappedStatement, bound_sql: BoundSql) -> Any:
        converters = self.configuration.converters
        parameters = [p.store_value for p in bind_parameters(bound_sql, converters)]
        sql = to_paramstyle(bound_sql.sql, self._adapter.paramstyle)
        logger.debug("==>  Preparing [%s]: %s", statement.id, sql)
        logger.debug("==> Parameters: %r", parameters)
        try:
            return self._adapter.execute(
                self.connection,
                sql,
                parameters,
                fetch_size=statement.fetch_size,
                timeout=statement.timeout,
            )
        except RowMapperError:
            raise
        except Exception as e:
            raise ExecutionError(f"Error executing '{statement.id}': {e}") from e

    # --- cache keys and deferred loads ---

    def create_cache_key(
        self,
        statement: MappedStatement,
        parameter: Any,
        bounds: RowBounds,
        bound_sql: BoundSql,
    ) -> CacheKey:
        self._check_open()
        key = CacheKey([statement.id, bounds.offset, bounds.limit, bound_sql.sql])
        converters = self.configuration.converters
        for mapping in bound_sql.parameter_mappings:
            key.update(resolve_parameter_value(bound_sql, mapping, converters))
        return key

    def is_cached(self, statement: MappedStatement, key: CacheKey) -> bool:
        return self._local_cache.get(key) is not None

    def defer_load(
        self,
        statement: MappedStatement,
        meta: MetaObject,
        property: str,
        key: CacheKey,
        target_type: Any,
    ) -> None:
        self._check_open()
        deferred = DeferredLoad(meta, property, key, self._local_cache, target_type, statement.id)
        if deferred.can_load():
            deferred.load()
        else:
            self._deferred_loads.append(deferred)

    def clear_local_cache(self) -> None:
        if not self._closed:
            self._local_cache.clear()

    # --- transaction ---

    def commit(self, required: bool = True) -> None:
        self._check_open()
        self.clear_local_cache()
        if required and self._connection is not None:
            self._connection.commit()

    def rollback(self, required: bool = True) -> None:
        if self._closed:
            return
        try:
            self.clear_local_cache()
        finally:
            if required and self._connection is not None:
                self._connection.rollback()

    def close(self, force_rollback: bool = False) -> None:
        if self._closed:
            return
        try:
            self.rollback(force_rollback)
        finally:
            if self._connection is not None:
                self._connection_manager.release(self._connection)
            self._connection = None
            self._local_cache.clear()
            self._deferred_loads.clear()
            self._closed = True


class CachingExecutor:
    """Executor decorator adding namespace caches."""

    def __init__(self, delegate: Executor) -> None:
        self._delegate = delegate
        self._tcm = TransactionalCacheManager()
        delegate.wrapper = self

    @property
    def configuration(self) -> Configuration:
        return self._delegate.configuration

    @property
    def closed(self) -> bool:
        return self._delegate.closed

    def new_executor(self) -> Executor:
        return self._delegate.new_executor()

    def query(
        self,
        statement: MappedStatement,
        parameter: Any,
        bounds: RowBounds = DEFAULT_ROW_BOUNDS,
        *,
        bound_sql: BoundSql | None = None,
        cache_key: CacheKey | None = None,
    ) -> list[Any]:
        if bound_sql is None:
            bound_sql = statement.get_bound_sql(parameter)
        if cache_key is None:
            cache_key = self.create_cache_key(statement, parameter, bounds, bound_sql)
        cache = statement.cache
        if cache is not None and self.configuration.settings.cache_enabled:
            self._flush_if_required(statement)
            if statement.use_cache:
                cached = self._tcm.get(cache, cache_key)
                if cached is not None:
                    logger.debug("Cache hit in %s for %s", cache.id, statement.id)
                    return cached
                result = self._delegate.query(
                    statement, parameter, bounds, bound_sql=bound_sql, cache_key=cache_key
                )
                self._tcm.put(cache, cache_key, result)
                return result
        return self._delegate.query(
            statement, parameter, bounds, bound_sql=bound_sql, cache_key=cache_key
        )

    def update(self, statement: MappedStatement, parameter: Any) -> int:
        self._flush_if_required(statement)
        return self._delegate.update(statement, parameter)

    def _flush_if_required(self, statement: MappedStatement) -> None:
        if statement.cache is not None and statement.flush_cache:
            self._tcm.clear(statement.cache)

    def create_cache_key(
        self,
        statement: MappedStatement,
        parameter: Any,
        bounds: RowBounds,
        bound_sql: BoundSql,
    ) -> CacheKey:
        return self._delegate.create_cache_key(statement, parameter, bounds, bound_sql)

    def is_cached(self, statement: MappedStatement, key: CacheKey) -> bool:
        return self._delegate.is_cached(statement, key)

    def defer_load(
        self,
        statement: MappedStatement,
        meta: MetaObject,
        property: str,
        key: CacheKey,
        target_type: Any,
    ) -> None:
        self._delegate.defer_load(statement, meta, property, key, target_type)

    def clear_local_cache(self) -> None:
        self._delegate.clear_local_cache()

    def commit(self, required: bool = True) -> None:
        self._delegate.commit(required)
        self._tcm.commit()

    def rollback(self, required: bool = True) -> None:
        try:
            self._delegate.rollback(required)
        finally:
            if required:
                self._tcm.rollback()

    def close(self, force_rollback: bool = False) -> None:
        try:
            if force_rollback:
                self._tcm.rollback()
            else:
                self._tcm.commit()
        finally:
            self._delegate.close(force_rollback)
