"""Expression evaluator for ``test``, ``collection``, ``bind`` and ``${}`` expressions.

The language is a small, null-safe subset of Python expressions. Before
parsing, the familiar template spellings are rewritten outside string
literals::

    &&  ->  and          null   ->  None
    ||  ->  or           true   ->  True
    !   ->  not          false  ->  False
    gt gte lt lte eq neq  ->  > >= < <= == !=

Names resolve against a ContextMap: explicit bindings first, then a property
of the parameter object. Attribute and index access through ``None`` yield
``None`` instead of failing.
"""

from __future__ import annotations

import ast
import logging
import operator
import re
from collections.abc import Iterable, Iterator, Mapping
from decimal import Decimal
from typing import Any

from row_mapper.core.exceptions import ExpressionError, PropertyAccessError
from row_mapper.reflection import MetaObject

logger = logging.getLogger(__name__)

_STRING_LITERAL = re.compile(r"'(?:[^'\\]|\\.)*'|\"(?:[^\"\\]|\\.)*\"")
_WORDS = {
    "gt": ">",
    "gte": ">=",
    "lt": "<",
    "lte": "<=",
    "eq": "==",
    "neq": "!=",
    "null": "None",
    "true": "True",
    "false": "False",
}
_WORD_PATTERN = re.compile(r"(?<![\w.])(" + "|".join(_WORDS) + r")(?!\w)")
_BANG = re.compile(r"!(?!=)")

_BIN_OPS = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
    ast.FloorDiv: operator.floordiv,
    ast.Mod: operator.mod,
}
_CMP_OPS = {
    ast.Eq: operator.eq,
    ast.NotEq: operator.ne,
    ast.Lt: operator.lt,
    ast.LtE: operator.le,
    ast.Gt: operator.gt,
    ast.GtE: operator.ge,
    ast.Is: operator.is_,
    ast.IsNot: operator.is_not,
    ast.In: lambda a, b: b is not None and a in b,
    ast.NotIn: lambda a, b: b is None or a not in b,
}
_ALLOWED_NODES = (
    ast.Expression,
    ast.BoolOp,
    ast.And,
    ast.Or,
    ast.UnaryOp,
    ast.Not,
    ast.USub,
    ast.UAdd,
    ast.BinOp,
    ast.Compare,
    ast.Name,
    ast.Load,
    ast.Constant,
    ast.Attribute,
    ast.Subscript,
    ast.Call,
    ast.IfExp,
    ast.List,
    ast.Tuple,
    *_BIN_OPS,
    *_CMP_OPS,
)


def _size(value: Any) -> int:
    return 0 if value is None else len(value)


_HELPERS: dict[str, Any] = {
    "size": _size,
    "length": _size,
    "len": _size,
    "isEmpty": lambda v: v is None or len(v) == 0,
    "trim": lambda v: None if v is None else str(v).strip(),
    "lower": lambda v: None if v is None else str(v).lower(),
    "upper": lambda v: None if v is None else str(v).upper(),
    "startswith": lambda v, p: v is not None and str(v).startswith(p),
    "endswith": lambda v, s: v is not None and str(v).endswith(s),
    "contains": lambda v, x: v is not None and x in v,
    "equals": lambda v, x: v == x,
}


def to_boolean(value: Any) -> bool:
    """Template truthiness: numbers are true when non-zero, None is false, other values are true."""
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float, Decimal)):
        return value != 0
    return value is not None


def preprocess(expression: str) -> str:
    """Rewrite template operator spellings into Python, leaving string literals alone."""
    parts: list[str] = []
    last = 0
    for match in _STRING_LITERAL.finditer(expression):
        parts.append(_rewrite(expression[last : match.start()]))
        parts.append(match.group())
        last = match.end()
    parts.append(_rewrite(expression[last:]))
    return "".join(parts).strip()


def _rewrite(code: str) -> str:
    code = code.replace("&&", " and ").replace("||", " or ")
    code = _BANG.sub(" not ", code)
    return _WORD_PATTERN.sub(lambda m: _WORDS[m.group(1)], code)


class ContextMap(dict):
    """Bindings layered over the parameter object.

    Lookup order: explicit bindings, then (for a scalar parameter) the
    parameter itself under any name, then a property of the parameter.
    """

    def __init__(self, parameter: Any = None, *, scalar: bool = False) -> None:
        super().__init__()
        self._meta = MetaObject(parameter) if parameter is not None else None
        self._scalar = scalar

    def lookup(self, name: str) -> Any:
        if name in self:
            return self[name]
        if self._meta is None:
            return None
        if self._scalar:
            return self._meta.original
        return self._meta.get_value(name)


class _Evaluator(ast.NodeVisitor):
    def __init__(self, context: ContextMap) -> None:
        self.context = context

    def generic_visit(self, node: ast.AST) -> Any:
        raise ExpressionError(ast.dump(node), f"unsupported syntax {type(node).__name__}")

    def visit_Expression(self, node: ast.Expression) -> Any:
        return self.visit(node.body)

    def visit_Constant(self, node: ast.Constant) -> Any:
        return node.value

    def visit_Name(self, node: ast.Name) -> Any:
        return self.context.lookup(node.id)

    def visit_List(self, node: ast.List) -> Any:
        return [self.visit(e) for e in node.elts]

    def visit_Tuple(self, node: ast.Tuple) -> Any:
        return tuple(self.visit(e) for e in node.elts)

    def visit_BoolOp(self, node: ast.BoolOp) -> bool:
        if isinstance(node.op, ast.And):
            return all(to_boolean(self.visit(v)) for v in node.values)
        return any(to_boolean(self.visit(v)) for v in node.values)

    def visit_UnaryOp(self, node: ast.UnaryOp) -> Any:
        operand = self.visit(node.operand)
        if isinstance(node.op, ast.Not):
            return not to_boolean(operand)
        if operand is None:
            return None
        return -operand if isinstance(node.op, ast.USub) else +operand

    def visit_BinOp(self, node: ast.BinOp) -> Any:
        left = self.visit(node.left)
        right = self.visit(node.right)
        if isinstance(node.op, ast.Add) and (isinstance(left, str) or isinstance(right, str)):
            return f"{'' if left is None else left}{'' if right is None else right}"
        return _BIN_OPS[type(node.op)](left, right)

    def visit_Compare(self, node: ast.Compare) -> bool:
        left = self.visit(node.left)
        for op, comparator in zip(node.ops, node.comparators, strict=True):
            right = self.visit(comparator)
            if not _CMP_OPS[type(op)](left, right):
                return False
            left = right
        return True

    def visit_IfExp(self, node: ast.IfExp) -> Any:
        if to_boolean(self.visit(node.test)):
            return self.visit(node.body)
        return self.visit(node.orelse)

    def visit_Attribute(self, node: ast.Attribute) -> Any:
        return _property(self.visit(node.value), node.attr)

    def visit_Subscript(self, node: ast.Subscript) -> Any:
        container = self.visit(node.value)
        key = self.visit(node.slice)
        if container is None:
            return None
        if isinstance(container, Mapping):
            return container.get(key)
        try:
            return container[key]
        except IndexError:
            return None

    def visit_Call(self, node: ast.Call) -> Any:
        args = [self.visit(a) for a in node.args]
        func = node.func
        if isinstance(func, ast.Attribute) and func.attr in _HELPERS:
            return _HELPERS[func.attr](self.visit(func.value), *args)
        if isinstance(func, ast.Name) and func.id in _HELPERS:
            return _HELPERS[func.id](*args)
        name = func.attr if isinstance(func, ast.Attribute) else getattr(func, "id", "?")
        raise ExpressionError(name, f"unknown function '{name}'")


def _property(target: Any, name: str) -> Any:
    if target is None:
        return None
    if isinstance(target, Mapping):
        try:
            return target[name]
        except KeyError:
            return None
    return MetaObject(target).get_value(name)


class ExpressionEvaluator:
    """Evaluates expressions with a compile-once cache of parsed trees.

    The cache is read without locking; two threads compiling the same
    expression concurrently both store an equivalent tree.
    """

    def __init__(self) -> None:
        self._cache: dict[str, ast.Expression] = {}

    def compile(self, expression: str) -> ast.Expression:
        tree = self._cache.get(expression)
        if tree is not None:
            return tree
        source = preprocess(expression)
        if not source:
            raise ExpressionError(expression, "empty expression")
        try:
            tree = ast.parse(source, mode="eval")
        except SyntaxError as e:
            raise ExpressionError(expression, f"syntax error: {e.msg}") from e
        for node in ast.walk(tree):
            if not isinstance(node, _ALLOWED_NODES):
                raise ExpressionError(expression, f"unsupported syntax {type(node).__name__}")
        self._cache[expression] = tree
        logger.debug("Compiled expression %r", expression)
        return tree

    def evaluate_value(self, expression: str, context: ContextMap) -> Any:
        tree = self.compile(expression)
        try:
            return _Evaluator(context).visit(tree)
        except ExpressionError:
            raise
        except PropertyAccessError as e:
            raise ExpressionError(expression, str(e)) from e
        except (TypeError, ValueError, ArithmeticError, AttributeError, KeyError) as e:
            raise ExpressionError(expression, str(e)) from e

    def evaluate_boolean(self, expression: str, context: ContextMap) -> bool:
        return to_boolean(self.evaluate_value(expression, context))

    def evaluate_iterable(
        self, expression: str, context: ContextMap, nullable: bool = False
    ) -> Iterator[Any]:
        """Iterate the value of *expression*; mappings yield ``(key, value)`` pairs."""
        return self.iterate(expression, self.evaluate_value(expression, context), nullable)

    @staticmethod
    def iterate(expression: str, value: Any, nullable: bool = False) -> Iterator[Any]:
        if value is None:
            if nullable:
                return iter(())
            raise ExpressionError(expression, "evaluated to null; a collection is required")
        if isinstance(value, Mapping):
            return iter(list(value.items()))
        if isinstance(value, (str, bytes)) or not isinstance(value, Iterable):
            raise ExpressionError(
                expression, f"value of type {type(value).__name__} is not iterable"
            )
        return iter(value)

    def __len__(self) -> int:
        return len(self._cache)
