"""Repository layer - DDD repository pattern."""

from __future__ import annotations

from row_mapper.repository.base import Repository, statement

__all__ = [
    "Repository",
    "statement",
]
