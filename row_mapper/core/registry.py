"""SQL Registry - loads statement templates from a directory structure.

Namespace convention:
    sql/user/by_id.sql            -> statement "user.by_id"
    sql/billing/invoice/list.sql  -> statement "billing.invoice.list"
    sql/user/_columns.sql         -> fragment "user._columns" (for <include refid="_columns"/>)

Leading ``-- @key: value`` comment lines set statement options::

    -- @result_map: user.detail
    -- @fetch_size: 500
    SELECT ... FROM users u LEFT JOIN orders o ON ...

Supported keys: kind, result_map, fetch_size, timeout, use_cache,
flush_cache, result_ordered, result_set_kind, cache.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from row_mapper.core.configuration import Configuration
from row_mapper.core.enums import ResultSetKind
from row_mapper.core.exceptions import (
    ConfigurationError,
    DefinitionNotFoundError,
    DuplicateStatementError,
)

logger = logging.getLogger(__name__)

_DIRECTIVE = re.compile(r"^\s*--\s*@(\w+)\s*:\s*(.*?)\s*$")
_BOOL_OPTIONS = frozenset({"use_cache", "flush_cache", "result_ordered"})
_INT_OPTIONS = frozenset({"fetch_size", "timeout"})
_STR_OPTIONS = frozenset({"kind", "result_map", "cache"})


@dataclass(frozen=True)
class SqlFile:
    """One loaded template with its directives."""

    name: str
    path: Path
    template: str
    options: dict[str, Any] = field(default_factory=dict)
    fragment: bool = False


def _parse_bool(name: str, value: str, path: Path) -> bool:
    lowered = value.lower()
    if lowered in ("true", "yes", "1"):
        return True
    if lowered in ("false", "no", "0"):
        return False
    raise ConfigurationError(f"{path}: @{name} must be true or false, got {value!r}")


def _parse_directives(text: str, path: Path) -> tuple[dict[str, Any], str]:
    options: dict[str, Any] = {}
    lines = text.splitlines()
    body_start = 0
    for i, line in enumerate(lines):
        match = _DIRECTIVE.match(line)
        if match is None:
            if line.strip():
                break
            body_start = i + 1
            continue
        name, value = match.group(1), match.group(2)
        if name in _BOOL_OPTIONS:
            options[name] = _parse_bool(name, value, path)
        elif name in _INT_OPTIONS:
            try:
                options[name] = int(value)
            except ValueError:
                raise ConfigurationError(f"{path}: @{name} must be an integer, got {value!r}") from None
        elif name in _STR_OPTIONS:
            options[name] = value
        elif name == "result_set_kind":
            try:
                options[name] = ResultSetKind(value.lower())
            except ValueError:
                raise ConfigurationError(f"{path}: unknown @result_set_kind {value!r}") from None
        else:
            raise ConfigurationError(f"{path}: unknown directive @{name}")
        body_start = i + 1
    return options, "\n".join(lines[body_start:]).strip()


class SQLRegistry:
    """Loads and caches SQL templates from a directory structure.

    The registry is immutable after loading: load once at startup, then
    register the templates into a Configuration with ``load_into()``.

    Args:
        root_dir: Root directory containing SQL files.

    Raises:
        DuplicateStatementError: If two files resolve to the same name.
    """

    def __init__(self, root_dir: Path | str) -> None:
        self._root_dir = Path(root_dir)
        self._files: dict[str, SqlFile] = {}
        self._fragments: dict[str, SqlFile] = {}
        self._load()

    def _load(self) -> None:
        """Recursively load all .sql files from root directory."""
        if not self._root_dir.exists():
            logger.warning("SQL directory %s does not exist", self._root_dir)
            return

        for sql_file in sorted(self._root_dir.rglob("*.sql")):
            relative = sql_file.relative_to(self._root_dir)
            # Build namespace: remove .sql extension, replace path separators with dots
            parts = list(relative.parts)
            parts[-1] = parts[-1].removesuffix(".sql")
            fragment = parts[-1].startswith("_")
            name = ".".join(parts)

            target = self._fragments if fragment else self._files
            if name in target:
                raise DuplicateStatementError(name, str(target[name].path), str(sql_file))

            options, template = _parse_directives(sql_file.read_text(encoding="utf-8"), sql_file)
            if fragment and options:
                raise ConfigurationError(f"{sql_file}: fragments take no directives")
            target[name] = SqlFile(name, sql_file, template, options, fragment)

        logger.debug(
            "Loaded %d statement(s) and %d fragment(s) from %s",
            len(self._files),
            len(self._fragments),
            self._root_dir,
        )

    def load_into(self, configuration: Configuration) -> Configuration:
        """Register every fragment and statement; returns *configuration*."""
        for fragment in self._fragments.values():
            configuration.add_fragment(fragment.name, fragment.template)
        for sql_file in self._files.values():
            configuration.add_statement(sql_file.name, sql_file.template, **sql_file.options)
        return configuration

    def get(self, name: str) -> str:
        """Look up template text by namespace-qualified name.

        Args:
            name: Dot-separated statement name (e.g., "user.by_id").

        Returns:
            The template text of the file, without directive lines.

        Raises:
            DefinitionNotFoundError: If no statement matches the given name.
        """
        try:
            return self._files[name].template
        except KeyError:
            raise DefinitionNotFoundError("Statement", name) from None

    def options(self, name: str) -> dict[str, Any]:
        """Directive options declared by statement *name*."""
        try:
            return dict(self._files[name].options)
        except KeyError:
            raise DefinitionNotFoundError("Statement", name) from None

    def has(self, name: str) -> bool:
        """Check if a statement name is registered."""
        return name in self._files

    @property
    def query_names(self) -> list[str]:
        """List all registered statement names, sorted alphabetically."""
        return sorted(self._files.keys())

    @property
    def fragment_names(self) -> list[str]:
        return sorted(self._fragments.keys())

    def __len__(self) -> int:
        """Number of registered statements."""
        return len(self._files)
