"""Database adapters. Backends other than SQLite are imported lazily."""

from row_mapper.adapters.protocol import Adapter

__all__ = ["Adapter"]
