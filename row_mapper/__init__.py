"""RowMapper - SQL-first statement mapping engine."""

from __future__ import annotations

from row_mapper.cache.key import CacheKey
from row_mapper.core.configuration import Configuration
from row_mapper.core.connection import ConnectionConfig, ConnectionManager
from row_mapper.core.enums import (
    AutoMappingBehavior,
    LocalCacheScope,
    ResultSetKind,
    StatementKind,
)
from row_mapper.core.exceptions import (
    AdapterError,
    CacheError,
    ConfigurationError,
    DefinitionNotFoundError,
    DuplicateStatementError,
    ExecutionError,
    ExecutorClosedError,
    ExpressionError,
    IncompleteSchemaError,
    InvalidSubstitutionError,
    MappingError,
    MultipleRowsError,
    NoViableConstructorError,
    ParameterBindingError,
    PoolError,
    PropertyAccessError,
    ResultMappingError,
    RowMapperError,
    SchemaCompilationError,
    ScriptingError,
    SessionStateError,
    TemplateCompileError,
    UnresolvedDiscriminatorError,
)
from row_mapper.core.registry import SQLRegistry
from row_mapper.core.sanitizer import SubstitutionGuard
from row_mapper.core.session import Session, SessionFactory
from row_mapper.core.settings import Settings
from row_mapper.mapping.builder import ResultMapBuilder, result_map
from row_mapper.mapping.materializer import automap_constructor
from row_mapper.mapping.proxy import resolve_all
from row_mapper.mapping.statement import RowBounds
from row_mapper.repository.base import Repository, statement
from row_mapper.types.converters import ConverterRegistry, ValueConverter

__all__ = [
    # Connection
    "ConnectionConfig",
    "ConnectionManager",
    # Configuration
    "Configuration",
    "Settings",
    "SQLRegistry",
    "SubstitutionGuard",
    # Sessions
    "Session",
    "SessionFactory",
    "RowBounds",
    "CacheKey",
    # Mapping
    "ResultMapBuilder",
    "result_map",
    "automap_constructor",
    "resolve_all",
    "ConverterRegistry",
    "ValueConverter",
    # Repository
    "Repository",
    "statement",
    # Enums
    "AutoMappingBehavior",
    "LocalCacheScope",
    "ResultSetKind",
    "StatementKind",
    # Exceptions
    "RowMapperError",
    "ConfigurationError",
    "TemplateCompileError",
    "SchemaCompilationError",
    "IncompleteSchemaError",
    "DuplicateStatementError",
    "DefinitionNotFoundError",
    "ScriptingError",
    "ExpressionError",
    "InvalidSubstitutionError",
    "ExecutionError",
    "ParameterBindingError",
    "MultipleRowsError",
    "ExecutorClosedError",
    "SessionStateError",
    "MappingError",
    "NoViableConstructorError",
    "ResultMappingError",
    "UnresolvedDiscriminatorError",
    "PropertyAccessError",
    "CacheError",
    "AdapterError",
    "PoolError",
]
