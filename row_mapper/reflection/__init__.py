"""Property access over arbitrary host objects."""

from __future__ import annotations

from row_mapper.reflection.meta import (
    ClassInfo,
    MetaObject,
    class_info,
    create_collection,
    element_type,
    is_collection_type,
    parse_path,
    unwrap_optional,
)

__all__ = [
    "ClassInfo",
    "MetaObject",
    "class_info",
    "create_collection",
    "element_type",
    "is_collection_type",
    "parse_path",
    "unwrap_optional",
]
