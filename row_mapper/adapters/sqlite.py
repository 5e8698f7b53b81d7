"""SQLite adapter (sqlite3 stdlib)."""

from __future__ import annotations

import sqlite3
import time
from collections.abc import Sequence
from typing import Any

from row_mapper.core.connection import ConnectionConfig
from row_mapper.core.exceptions import PoolError


class SqliteAdapter:
    """SQLite adapter using stdlib sqlite3."""

    @property
    def paramstyle(self) -> str:
        return "qmark"

    def create_pool(self, config: ConnectionConfig) -> list[sqlite3.Connection]:
        """Create a 'pool' (list of connections) for SQLite."""
        pool: list[sqlite3.Connection] = []
        for _ in range(config.pool_size):
            conn = sqlite3.connect(
                config.database,
                timeout=config.pool_timeout,
                check_same_thread=False,
            )
            conn.execute("PRAGMA journal_mode=WAL")
            pool.append(conn)
        return pool

    def acquire_connection(self, pool: list[sqlite3.Connection]) -> sqlite3.Connection:
        """Acquire a connection from the pool."""
        if not pool:
            raise PoolError("No connections available in pool")
        return pool.pop()

    def release_connection(
        self, connection: sqlite3.Connection, pool: list[sqlite3.Connection]
    ) -> None:
        """Release a connection back to the pool."""
        pool.append(connection)

    def close_pool(self, pool: list[sqlite3.Connection]) -> None:
        """Close all connections in the pool."""
        for conn in pool:
            conn.close()
        pool.clear()

    def execute(
        self,
        connection: sqlite3.Connection,
        sql: str,
        params: Sequence[Any] | None = None,
        *,
        fetch_size: int | None = None,
        timeout: int | None = None,
    ) -> sqlite3.Cursor:
        """Execute SQL and return a cursor.

        SQLite has no statement timeout; with *timeout* a progress handler
        interrupts the statement (and later fetches) once the deadline passes.
        """
        if timeout:
            deadline = time.monotonic() + timeout
            connection.set_progress_handler(lambda: int(time.monotonic() > deadline), 1000)
        else:
            connection.set_progress_handler(None, 0)
        cursor = connection.cursor()
        if fetch_size:
            cursor.arraysize = fetch_size
        cursor.execute(sql, tuple(params or ()))
        return cursor
