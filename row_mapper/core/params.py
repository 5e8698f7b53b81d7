"""Call-argument wrapping and placeholder conversion.

Compiled statements always use ``?`` placeholders. ``to_paramstyle``
converts them to the driver's DB-API paramstyle, leaving string literals
untouched. ``wrap_parameters`` turns the arguments of a call into the single
parameter object the templates are evaluated against.
"""

from __future__ import annotations

import re
from functools import lru_cache
from typing import Any

from row_mapper.core.exceptions import ParameterBindingError

# Matches single-quoted string literals (with '' escapes)
_STRING_LITERAL_PATTERN = re.compile(r"'(?:[^']|'')*'")

GENERIC_NAME_PREFIX = "param"


class ParamMap(dict):
    """Named call arguments; unknown names raise instead of returning None."""

    def __missing__(self, key: str) -> Any:
        raise ParameterBindingError(
            key, f"parameter '{key}' not found. Available parameters are {sorted(self)}"
        )


def _wrap_collection(value: Any) -> Any:
    if isinstance(value, list):
        return ParamMap(collection=value, list=value)
    if isinstance(value, tuple):
        return ParamMap(collection=value, array=value)
    if isinstance(value, (set, frozenset)):
        return ParamMap(collection=value)
    return value


def wrap_parameters(*args: Any, **kwargs: Any) -> Any:
    """Build the parameter object for a call.

    * no arguments -> ``None``
    * one positional argument -> the argument itself (a list is exposed as
      ``list``/``collection``, a tuple as ``array``/``collection``)
    * anything else -> a ParamMap: keyword names, ``arg0..N`` for positional
      arguments, and ``param1..N`` aliases for all of them in order
    """
    if not kwargs:
        if not args:
            return None
        if len(args) == 1:
            return _wrap_collection(args[0])

    params = ParamMap()
    position = 0
    for i, value in enumerate(args):
        params[f"arg{i}"] = value
        position += 1
        params[f"{GENERIC_NAME_PREFIX}{position}"] = value
    for name, value in kwargs.items():
        params[name] = value
        position += 1
        generic = f"{GENERIC_NAME_PREFIX}{position}"
        if generic not in kwargs:
            params[generic] = value
    return params


def to_paramstyle(sql: str, paramstyle: str) -> str:
    """Convert ``?`` placeholders to *paramstyle* ('qmark', 'format', 'numeric')."""
    if paramstyle == "qmark":
        return sql
    return _convert(sql, paramstyle)


@lru_cache(maxsize=256)
def _convert(sql: str, paramstyle: str) -> str:
    counter = 0

    def _replace(segment: str) -> str:
        nonlocal counter
        out: list[str] = []
        for ch in segment:
            if ch == "?":
                counter += 1
                out.append("%s" if paramstyle in ("format", "pyformat") else f":{counter}")
            elif ch == "%" and paramstyle in ("format", "pyformat"):
                out.append("%%")
            else:
                out.append(ch)
        return "".join(out)

    parts: list[str] = []
    last_end = 0
    for match in _STRING_LITERAL_PATTERN.finditer(sql):
        start, end = match.span()
        if start > last_end:
            parts.append(_replace(sql[last_end:start]))
        literal = match.group()
        if paramstyle in ("format", "pyformat"):
            literal = literal.replace("%", "%%")
        parts.append(literal)
        last_end = end
    if last_end < len(sql):
        parts.append(_replace(sql[last_end:]))
    return "".join(parts)
