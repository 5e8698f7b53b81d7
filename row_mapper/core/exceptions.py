"""RowMapper exception hierarchy.

All exceptions are RowMapper-specific. Raw driver exceptions are never
exposed to callers; they are chained onto an ExecutionError instead.
"""

from __future__ import annotations

from typing import Any


class RowMapperError(Exception):
    """Base exception for all RowMapper errors."""


# --- Configuration ---


class ConfigurationError(RowMapperError):
    """Base for configuration-time errors."""


class TemplateCompileError(ConfigurationError):
    """Raised when a statement template cannot be compiled."""

    def __init__(self, statement_id: str | None, detail: str) -> None:
        self.statement_id = statement_id
        self.detail = detail
        where = f" '{statement_id}'" if statement_id else ""
        super().__init__(f"Cannot compile statement{where}: {detail}")


class SchemaCompilationError(ConfigurationError):
    """Raised when a result map fails validation during build()."""


class IncompleteSchemaError(ConfigurationError):
    """Raised when a definition references something not defined yet.

    Recoverable while configuration is loading: the registration is queued
    and retried. Fatal once Configuration.finalize() gives up.
    """

    def __init__(self, name: str, missing: str, chain: list[str] | None = None) -> None:
        self.name = name
        self.missing = missing
        self.chain = list(chain or [name, missing])
        self.unresolved: list[IncompleteSchemaError] = [self]
        super().__init__(
            f"'{name}' references undefined '{missing}' (chain: {' -> '.join(self.chain)})"
        )


class DuplicateStatementError(ConfigurationError):
    """Raised when two definitions resolve to the same name."""

    def __init__(self, name: str, first: str, second: str) -> None:
        self.name = name
        super().__init__(f"Duplicate definition '{name}': {first} and {second}")


class DefinitionNotFoundError(ConfigurationError):
    """Raised when a statement, result map or fragment cannot be found."""

    def __init__(self, kind: str, name: str) -> None:
        self.kind = kind
        self.name = name
        super().__init__(f"{kind} not found: '{name}'")


# --- Scripting ---


class ScriptingError(RowMapperError):
    """Base for template evaluation errors."""


class ExpressionError(ScriptingError):
    """Raised for unparsable expressions or wrong result kinds."""

    def __init__(self, expression: str, detail: str) -> None:
        self.expression = expression
        super().__init__(f"Error evaluating expression '{expression}': {detail}")


class InvalidSubstitutionError(ScriptingError):
    """Raised when a ${} substitution fails the configured guard."""

    def __init__(self, value: str, pattern: str) -> None:
        self.value = value
        self.pattern = pattern
        super().__init__(f"Invalid substitution {value!r}: must match {pattern!r}")


# --- Execution ---


class ExecutionError(RowMapperError):
    """Base for statement execution errors."""


class ParameterBindingError(ExecutionError):
    """Raised when a #{} marker cannot be bound."""

    def __init__(self, marker: str, detail: str) -> None:
        self.marker = marker
        super().__init__(f"Cannot bind parameter #{{{marker}}}: {detail}")


class MultipleRowsError(ExecutionError):
    """Raised when a single-result call encounters more than one row."""

    def __init__(self, statement_id: str, row_count: int) -> None:
        self.statement_id = statement_id
        self.row_count = row_count
        super().__init__(
            f"'{statement_id}' returned {row_count} rows (expected 0 or 1)"
        )


class ExecutorClosedError(ExecutionError):
    """Raised when an executor is used after close()."""

    def __init__(self) -> None:
        super().__init__("Executor was closed")


class SessionStateError(ExecutionError):
    """Raised on invalid session / transaction state transitions."""

    def __init__(self, current_state: str, attempted_action: str) -> None:
        self.current_state = current_state
        self.attempted_action = attempted_action
        super().__init__(f"Cannot {attempted_action} session in state '{current_state}'")


# --- Mapping ---


class MappingError(RowMapperError):
    """Base for result materialization errors."""


class NoViableConstructorError(MappingError):
    """Raised when no constructor can build the target type from a row."""

    def __init__(self, target_class: str, detail: str) -> None:
        self.target_class = target_class
        super().__init__(f"Cannot instantiate {target_class}: {detail}")


class ResultMappingError(MappingError):
    """Raised when a column value cannot be converted or assigned."""

    def __init__(
        self,
        result_map_id: str,
        property_name: str | None,
        column: str | None,
        detail: str,
    ) -> None:
        self.result_map_id = result_map_id
        self.property_name = property_name
        self.column = column
        super().__init__(
            f"Error mapping column '{column}' to property '{property_name}' "
            f"in result map '{result_map_id}': {detail}"
        )


class UnresolvedDiscriminatorError(MappingError):
    """Raised when a discriminator value selects no known result map."""

    def __init__(self, result_map_id: str, value: Any) -> None:
        self.result_map_id = result_map_id
        self.value = value
        super().__init__(
            f"Discriminator of result map '{result_map_id}' has no case for value {value!r}"
        )


class PropertyAccessError(MappingError):
    """Raised when a property path cannot be read or written on an object."""

    def __init__(self, path: str, target: Any, detail: str) -> None:
        self.path = path
        self.target_type = type(target).__name__
        super().__init__(f"Cannot access '{path}' on {self.target_type}: {detail}")


# --- Cache ---


class CacheError(RowMapperError):
    """Raised on cache failures (e.g. blocking cache lock timeout)."""


# --- Adapter ---


class AdapterError(RowMapperError):
    """Base for adapter errors."""


class PoolError(AdapterError):
    """Raised on connection pool failures."""
