"""Configuration: the registry of statements, result maps, fragments and caches.

Definitions may be registered in any order. A definition that references
something not registered yet (a fragment, a parent result map, a cache) is
queued and retried; ``finalize()`` resolves the queue and fails with the
full dependency chain of whatever is still missing.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from row_mapper.cache.impl import Cache, build_cache
from row_mapper.core.enums import ResultSetKind, StatementKind
from row_mapper.core.exceptions import (
    ConfigurationError,
    DefinitionNotFoundError,
    DuplicateStatementError,
    IncompleteSchemaError,
)
from row_mapper.core.sanitizer import SubstitutionGuard
from row_mapper.core.settings import Settings
from row_mapper.mapping.builder import ResultMapBuilder
from row_mapper.mapping.schema import ResultMap
from row_mapper.mapping.statement import MappedStatement
from row_mapper.scripting.compiler import TemplateCompiler
from row_mapper.types.converters import ConverterRegistry

logger = logging.getLogger(__name__)

INLINE_RESULT_MAP_SUFFIX = "-inline"


@dataclass
class _Pending:
    name: str
    action: Callable[[], None]
    error: IncompleteSchemaError


class Configuration:
    """Holds every definition a SessionFactory executes against.

    Args:
        settings: Behavioral switches; defaults to ``Settings()``.
        converters: Converter registry; a fresh one is created when omitted.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        converters: ConverterRegistry | None = None,
    ) -> None:
        self.settings = settings or Settings()
        self.converters = converters or ConverterRegistry()
        guard = (
            SubstitutionGuard(self.settings.substitution_pattern)
            if self.settings.substitution_pattern
            else None
        )
        self.compiler = TemplateCompiler(
            self.converters,
            fragments=self._fragments_get,
            guard=guard,
            shrink_whitespace=self.settings.shrink_whitespace,
            max_include_depth=self.settings.max_include_depth,
        )
        self._statements: dict[str, MappedStatement] = {}
        self._result_maps: dict[str, ResultMap] = {}
        self._fragments: dict[str, str] = {}
        self._caches: dict[str, Cache] = {}
        self._pending: list[_Pending] = []
        self._finalized = False

    # --- registration ---

    def add_fragment(self, name: str, template: str) -> None:
        """Register a reusable template fragment for ``<include refid>``."""
        self._check_open()
        if name in self._fragments:
            raise DuplicateStatementError(name, "fragment", "fragment")
        self._fragments[name] = template

    def add_cache(
        self,
        namespace: str,
        eviction: str = "lru",
        size: int = 1024,
        *,
        blocking: bool = False,
        timeout: float | None = None,
    ) -> Cache:
        """Create the second-level cache shared by statements of *namespace*."""
        self._check_open()
        if namespace in self._caches:
            raise DuplicateStatementError(namespace, "cache", "cache")
        cache = build_cache(namespace, eviction, size, blocking=blocking, timeout=timeout)
        self._caches[namespace] = cache
        return cache

    def add_result_map(self, result_map: ResultMap | ResultMapBuilder) -> None:
        """Register a result map (a builder registers its nested maps too)."""
        self._check_open()
        maps = result_map.build_all() if isinstance(result_map, ResultMapBuilder) else [result_map]
        for rm in maps:
            self._defer(rm.id, lambda rm=rm: self._register_result_map(rm))

    def add_statement(
        self,
        statement_id: str,
        template: str,
        *,
        kind: StatementKind | str | None = None,
        result_map: str | None = None,
        result_type: Any = None,
        parameter_type: Any = None,
        fetch_size: int | None = None,
        timeout: int | None = None,
        use_cache: bool | None = None,
        flush_cache: bool | None = None,
        result_ordered: bool = False,
        result_set_kind: ResultSetKind = ResultSetKind.FORWARD_ONLY,
        cache: str | None = None,
    ) -> None:
        """Register a statement.

        Args:
            statement_id: Fully qualified id (``namespace.name``).
            template: Statement template text.
            kind: Statement kind; inferred from the leading SQL keyword if omitted.
            result_map: Id of the result map for SELECT rows.
            result_type: Class for SELECT rows when no result map is named;
                columns are auto-mapped. Defaults to ``dict``.
            cache: Namespace of a second-level cache; defaults to the
                statement's own namespace when a cache is registered there.
        """
        self._check_open()
        if statement_id in self._statements:
            raise DuplicateStatementError(statement_id, "statement", "statement")
        self._defer(
            statement_id,
            lambda: self._register_statement(
                statement_id,
                template,
                kind=kind,
                result_map=result_map,
                result_type=result_type,
                parameter_type=parameter_type,
                fetch_size=fetch_size,
                timeout=timeout,
                use_cache=use_cache,
                flush_cache=flush_cache,
                result_ordered=result_ordered,
                result_set_kind=result_set_kind,
                cache=cache,
            ),
        )

    def _defer(self, name: str, action: Callable[[], None]) -> None:
        try:
            action()
        except IncompleteSchemaError as e:
            logger.debug("Deferring '%s': %s is not defined yet", name, e.missing)
            self._pending.append(_Pending(name, action, e))

    def _register_result_map(self, result_map: ResultMap) -> None:
        if result_map.id in self._result_maps:
            raise DuplicateStatementError(result_map.id, "result map", "result map")
        if result_map.extends is not None:
            parent = self._result_maps.get(result_map.extends)
            if parent is None:
                raise IncompleteSchemaError(result_map.id, result_map.extends)
            result_map = result_map.merged_with(parent)
        self._result_maps[result_map.id] = result_map

    def _register_statement(
        self,
        statement_id: str,
        template: str,
        *,
        kind: StatementKind | str | None,
        result_map: str | None,
        result_type: Any,
        cache: str | None,
        **options: Any,
    ) -> None:
        if statement_id in self._statements:
            raise DuplicateStatementError(statement_id, "statement", "statement")
        namespace = statement_id.rsplit(".", 1)[0] if "." in statement_id else None
        sql_source = self.compiler.compile(template, statement_id, namespace)

        if kind is None:
            statement_kind = StatementKind.from_sql(_leading_text(template))
        elif isinstance(kind, StatementKind):
            statement_kind = kind
        else:
            statement_kind = StatementKind(kind.lower())

        result_maps: tuple[ResultMap, ...] = ()
        if result_map is not None:
            found = self._result_maps.get(result_map)
            if found is None and namespace and "." not in result_map:
                found = self._result_maps.get(f"{namespace}.{result_map}")
            if found is None:
                raise IncompleteSchemaError(statement_id, result_map)
            result_maps = (found,)
        elif statement_kind is StatementKind.SELECT:
            result_maps = (
                ResultMap(id=statement_id + INLINE_RESULT_MAP_SUFFIX, type=result_type or dict),
            )

        statement_cache: Cache | None = None
        if cache is not None:
            statement_cache = self._caches.get(cache)
            if statement_cache is None:
                raise IncompleteSchemaError(statement_id, f"cache:{cache}")
        elif namespace is not None:
            statement_cache = self._caches.get(namespace)

        if options.get("fetch_size") is None:
            options["fetch_size"] = self.settings.default_fetch_size
        if options.get("timeout") is None:
            options["timeout"] = self.settings.default_timeout

        self._statements[statement_id] = MappedStatement(
            id=statement_id,
            sql_source=sql_source,
            kind=statement_kind,
            result_maps=result_maps,
            cache=statement_cache,
            **options,
        )

    # --- finalization ---

    def finalize(self) -> None:
        """Retry queued definitions until none progress, then validate references.

        Raises:
            IncompleteSchemaError: Something is still missing; ``chain`` holds
                the full dependency path and ``unresolved`` every failure.
        """
        if self._finalized:
            return
        while self._pending:
            pending, self._pending = self._pending, []
            for item in pending:
                self._defer(item.name, item.action)
            if len(self._pending) == len(pending):
                break

        if self._pending:
            waiting = {item.name: item.error.missing for item in self._pending}
            errors = []
            for item in self._pending:
                chain = [item.name]
                missing = item.error.missing
                while missing in waiting and missing not in chain:
                    chain.append(missing)
                    missing = waiting[missing]
                chain.append(missing)
                errors.append(IncompleteSchemaError(item.name, missing, chain))
            error = errors[0]
            error.unresolved = errors
            for other in errors:
                logger.error("Unresolved definition: %s", other)
            raise error

        self._validate_references()
        self._finalized = True
        logger.info(
            "Configuration finalized: %d statement(s), %d result map(s), %d fragment(s), %d cache(s)",
            len(self._statements),
            len(self._result_maps),
            len(self._fragments),
            len(self._caches),
        )

    def _validate_references(self) -> None:
        for rm in self._result_maps.values():
            for binding in rm.bindings:
                if binding.nested_result_map_id and binding.nested_result_map_id not in self._result_maps:
                    raise IncompleteSchemaError(rm.id, binding.nested_result_map_id)
                if binding.nested_query_id and binding.nested_query_id not in self._statements:
                    raise IncompleteSchemaError(rm.id, binding.nested_query_id)
            if rm.discriminator is not None:
                targets = list(rm.discriminator.cases.values())
                if rm.discriminator.default is not None:
                    targets.append(rm.discriminator.default)
                for target in targets:
                    if target not in self._result_maps:
                        raise IncompleteSchemaError(rm.id, target)

    @property
    def finalized(self) -> bool:
        return self._finalized

    def _check_open(self) -> None:
        if self._finalized:
            raise ConfigurationError("Configuration is finalized; no further definitions allowed")

    # --- lookup ---

    def _fragments_get(self, name: str) -> str | None:
        return self._fragments.get(name)

    def get_statement(self, statement_id: str) -> MappedStatement:
        try:
            return self._statements[statement_id]
        except KeyError:
            raise DefinitionNotFoundError("Statement", statement_id) from None

    def get_result_map(self, result_map_id: str) -> ResultMap:
        try:
            return self._result_maps[result_map_id]
        except KeyError:
            raise DefinitionNotFoundError("Result map", result_map_id) from None

    def get_cache(self, namespace: str) -> Cache:
        try:
            return self._caches[namespace]
        except KeyError:
            raise DefinitionNotFoundError("Cache", namespace) from None

    def has_statement(self, statement_id: str) -> bool:
        return statement_id in self._statements

    def has_result_map(self, result_map_id: str) -> bool:
        return result_map_id in self._result_maps

    def has_fragment(self, name: str) -> bool:
        return name in self._fragments

    @property
    def statement_ids(self) -> list[str]:
        """All registered statement ids, sorted alphabetically."""
        return sorted(self._statements)

    @property
    def caches(self) -> list[Cache]:
        return list(self._caches.values())


def _leading_text(template: str) -> str:
    """Template text up to its first tag, for kind inference."""
    text = template.lstrip()
    while text.startswith("<"):
        end = text.find(">")
        if end == -1:
            break
        text = text[end + 1 :].lstrip()
    return text
