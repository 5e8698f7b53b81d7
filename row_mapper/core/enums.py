"""Enumerations shared across the engine."""

from __future__ import annotations

from enum import Enum


class StatementKind(Enum):
    """What a statement does to the store."""

    UNKNOWN = "unknown"
    SELECT = "select"
    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"
    FLUSH = "flush"

    @classmethod
    def from_sql(cls, sql: str) -> StatementKind:
        """Infer the kind from the leading keyword of *sql*."""
        words = sql.split(None, 1)
        if not words:
            return cls.UNKNOWN
        first = words[0].lower()
        if first == "with":
            return cls.SELECT
        try:
            return cls(first)
        except ValueError:
            return cls.UNKNOWN


class AutoMappingBehavior(Enum):
    """How columns without an explicit binding are mapped."""

    NONE = "none"
    PARTIAL = "partial"  # top level only
    FULL = "full"  # also inside nested result maps


class LocalCacheScope(Enum):
    """Lifetime of the per-session statement cache."""

    SESSION = "session"
    STATEMENT = "statement"


class ResultSetKind(Enum):
    """Cursor positioning capability."""

    FORWARD_ONLY = "forward_only"
    SCROLL = "scroll"
