"""Dynamic SQL templates: compilation, expressions and parameter binding."""

from __future__ import annotations

from row_mapper.scripting.binder import BoundParameter, BoundSql, ParameterMapping, bind_parameters
from row_mapper.scripting.compiler import DynamicSqlSource, RawSqlSource, SqlSource, TemplateCompiler
from row_mapper.scripting.expression import ExpressionEvaluator

__all__ = [
    "BoundParameter",
    "BoundSql",
    "DynamicSqlSource",
    "ExpressionEvaluator",
    "ParameterMapping",
    "RawSqlSource",
    "SqlSource",
    "TemplateCompiler",
    "bind_parameters",
]
