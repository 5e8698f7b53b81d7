"""PostgreSQL adapter (psycopg 3)."""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any

from row_mapper.core.connection import ConnectionConfig
from row_mapper.core.exceptions import PoolError


def _build_conninfo(config: ConnectionConfig) -> str:
    """Build a libpq connection string from config fields."""
    parts = [f"dbname={config.database}"]
    if config.host:
        parts.append(f"host={config.host}")
    if config.port:
        parts.append(f"port={config.port}")
    if config.user:
        parts.append(f"user={config.user}")
    if config.password:
        parts.append(f"password={config.password}")
    parts.append(f"connect_timeout={config.pool_timeout}")
    return " ".join(parts)


class PostgresqlAdapter:
    """PostgreSQL adapter using psycopg."""

    @property
    def paramstyle(self) -> str:
        return "format"

    def create_pool(self, config: ConnectionConfig) -> list[Any]:
        """Create a pool (list of connections) for PostgreSQL."""
        import psycopg

        conninfo = _build_conninfo(config)
        return [psycopg.connect(conninfo) for _ in range(config.pool_size)]

    def acquire_connection(self, pool: list[Any]) -> Any:
        """Acquire a connection from the pool."""
        if not pool:
            raise PoolError("No connections available in pool")
        return pool.pop()

    def release_connection(self, connection: Any, pool: list[Any]) -> None:
        """Release a connection back to the pool."""
        pool.append(connection)

    def close_pool(self, pool: list[Any]) -> None:
        """Close all connections in the pool."""
        for conn in pool:
            conn.close()
        pool.clear()

    def execute(
        self,
        connection: Any,
        sql: str,
        params: Sequence[Any] | None = None,
        *,
        fetch_size: int | None = None,
        timeout: int | None = None,
    ) -> Any:
        """Execute SQL and return a cursor."""
        cursor = connection.cursor()
        if fetch_size:
            cursor.arraysize = fetch_size
        if timeout:
            cursor.execute(f"SET LOCAL statement_timeout = {int(timeout) * 1000}")
        cursor.execute(sql, tuple(params or ()))
        return cursor
