"""Sessions: the unit of work statements are executed in.

A Session owns one executor (and so one connection and one session cache).
Reads and writes run in the connection's transaction until commit() or
rollback(); closing a session with uncommitted writes rolls them back.

    factory = SessionFactory.from_config(config, configuration)
    with factory.open_session() as session:
        user = session.select_one("user.by_id", 1)
        session.update("user.rename", {"id": 1, "name": "Ann"})
        session.commit()
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any

from row_mapper.core.configuration import Configuration
from row_mapper.core.connection import ConnectionConfig, ConnectionManager
from row_mapper.core.enums import StatementKind
from row_mapper.core.exceptions import ExecutionError, MultipleRowsError, SessionStateError
from row_mapper.core.executor import CachingExecutor, Executor
from row_mapper.core.params import wrap_parameters
from row_mapper.mapping.proxy import resolve_all
from row_mapper.mapping.statement import DEFAULT_ROW_BOUNDS, RowBounds

logger = logging.getLogger(__name__)


class _TxState(Enum):
    IDLE = "idle"
    ACTIVE = "active"
    COMMITTED = "committed"
    ROLLED_BACK = "rolled_back"
    CLOSED = "closed"


class Session:
    """Executes mapped statements against one executor."""

    def __init__(self, configuration: Configuration, executor: Executor | CachingExecutor) -> None:
        self.configuration = configuration
        self._executor = executor
        self._state = _TxState.IDLE
        self._dirty = False

    def __enter__(self) -> Session:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: Any,
    ) -> None:
        self.close()

    @property
    def state(self) -> str:
        return self._state.value

    # --- reads ---

    def select_one(self, statement_id: str, *args: Any, **kwargs: Any) -> Any:
        """Run a SELECT expected to produce at most one result.

        Returns None if zero rows match.
        Raises MultipleRowsError if more than one result is produced.
        """
        results = self.select_list(statement_id, *args, **kwargs)
        if len(results) > 1:
            raise MultipleRowsError(statement_id, len(results))
        return results[0] if results else None

    def select_list(
        self,
        statement_id: str,
        *args: Any,
        bounds: RowBounds = DEFAULT_ROW_BOUNDS,
        **kwargs: Any,
    ) -> list[Any]:
        """Run a SELECT and return every materialized result."""
        self._check_open("select")
        statement = self.configuration.get_statement(statement_id)
        if statement.kind not in (StatementKind.SELECT, StatementKind.UNKNOWN):
            raise ExecutionError(f"'{statement_id}' is a {statement.kind.value} statement, not a select")
        self._state = _TxState.ACTIVE
        return self._executor.query(statement, wrap_parameters(*args, **kwargs), bounds)

    # --- writes ---

    def insert(self, statement_id: str, *args: Any, **kwargs: Any) -> int:
        return self._write(statement_id, args, kwargs)

    def update(self, statement_id: str, *args: Any, **kwargs: Any) -> int:
        return self._write(statement_id, args, kwargs)

    def delete(self, statement_id: str, *args: Any, **kwargs: Any) -> int:
        return self._write(statement_id, args, kwargs)

    def _write(self, statement_id: str, args: tuple[Any, ...], kwargs: dict[str, Any]) -> int:
        self._check_open("execute")
        statement = self.configuration.get_statement(statement_id)
        self._state = _TxState.ACTIVE
        self._dirty = True
        return self._executor.update(statement, wrap_parameters(*args, **kwargs))

    # --- transaction ---

    def commit(self, force: bool = False) -> None:
        """Commit pending writes (a no-op on the connection when nothing was written)."""
        self._check_open("commit")
        self._executor.commit(self._dirty or force)
        self._dirty = False
        self._state = _TxState.COMMITTED

    def rollback(self, force: bool = False) -> None:
        """Discard pending writes and the session cache."""
        self._check_open("rollback")
        self._executor.rollback(self._dirty or force)
        self._dirty = False
        self._state = _TxState.ROLLED_BACK

    def clear_cache(self) -> None:
        self._check_open("clear the cache of")
        self._executor.clear_local_cache()

    def resolve_all(self, value: Any) -> Any:
        """Load every pending lazy property reachable from *value*."""
        self._check_open("resolve")
        return resolve_all(value)

    def close(self) -> None:
        if self._state is _TxState.CLOSED:
            return
        try:
            self._executor.close(self._dirty)
        finally:
            if self._dirty:
                logger.warning("Session closed with uncommitted writes; rolled back")
            self._dirty = False
            self._state = _TxState.CLOSED

    def _check_open(self, action: str) -> None:
        if self._state is _TxState.CLOSED:
            raise SessionStateError(self._state.value, action)


class SessionFactory:
    """Opens sessions against a finalized Configuration."""

    def __init__(self, configuration: Configuration, connection_manager: ConnectionManager) -> None:
        configuration.finalize()
        self.configuration = configuration
        self._connection_manager = connection_manager

    @classmethod
    def from_config(cls, config: ConnectionConfig, configuration: Configuration) -> SessionFactory:
        """Create a SessionFactory from a ConnectionConfig and Configuration.

        Args:
            config: ConnectionConfig instance
            configuration: Configuration holding the statements to run

        Returns:
            SessionFactory instance
        """
        return cls(configuration, ConnectionManager(config))

    @property
    def connection_manager(self) -> ConnectionManager:
        return self._connection_manager

    def open_session(self) -> Session:
        executor: Executor | CachingExecutor = Executor(self.configuration, self._connection_manager)
        if self.configuration.settings.cache_enabled:
            executor = CachingExecutor(executor)
        return Session(self.configuration, executor)

    def close(self) -> None:
        """Close the connection pool."""
        self._connection_manager.close_pool()
