"""Compiled statement node tree and its per-call evaluator.

The tree is a closed set of frozen dataclasses built once by the template
compiler. ``apply_node`` walks it against a DynamicContext, appending SQL
fragments and recording bindings. Every node returns True when it applied
(for ConditionalBlock: when its test fired), which ChooseBlock relies on.
"""

from __future__ import annotations

import itertools
import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Union

from row_mapper.core.sanitizer import SubstitutionGuard
from row_mapper.scripting.expression import ContextMap, ExpressionEvaluator
from row_mapper.scripting.tokens import parse_tokens

PARAMETER_OBJECT_KEY = "_parameter"
ITEM_PREFIX = "__frch_"

_NO_SPACE_AFTER = ("(", ",")
_NO_SPACE_BEFORE = (")", ",")
_WHITESPACE = re.compile(r"\s+")


def join_fragments(fragments: list[str]) -> str:
    """Join stripped SQL fragments with single spaces.

    No space is inserted after a fragment ending in ``(`` or ``,`` or before
    one starting with ``)`` or ``,``.
    """
    out: list[str] = []
    for fragment in fragments:
        if out and not (out[-1].endswith(_NO_SPACE_AFTER) or fragment.startswith(_NO_SPACE_BEFORE)):
            out.append(" ")
        out.append(fragment)
    return "".join(out)


# --- Contexts ---


class DynamicContext:
    """Per-call evaluation state: the SQL buffer plus the binding map."""

    def __init__(
        self,
        parameter: Any,
        evaluator: ExpressionEvaluator,
        *,
        scalar: bool = False,
        guard: SubstitutionGuard | None = None,
        shrink_whitespace: bool = False,
    ) -> None:
        self.bindings = ContextMap(parameter, scalar=scalar)
        self.bindings[PARAMETER_OBJECT_KEY] = parameter
        if scalar:
            self.bindings["value"] = parameter
        self.evaluator = evaluator
        self.guard = guard
        self.shrink_whitespace = shrink_whitespace
        self._fragments: list[str] = []
        self._unique = itertools.count()

    def append(self, sql: str) -> None:
        sql = sql.strip()
        if sql:
            self._fragments.append(sql)

    def bind(self, name: str, value: Any) -> None:
        self.bindings[name] = value

    def unique_number(self) -> int:
        return next(self._unique)

    @property
    def sql(self) -> str:
        text = join_fragments(self._fragments)
        if self.shrink_whitespace:
            text = _WHITESPACE.sub(" ", text)
        return text


class _DelegatingContext:
    """Shares bindings and counters with an outer context; overrides append."""

    def __init__(self, delegate: Any) -> None:
        self.delegate = delegate
        self.bindings: ContextMap = delegate.bindings
        self.evaluator: ExpressionEvaluator = delegate.evaluator
        self.guard: SubstitutionGuard | None = delegate.guard

    def append(self, sql: str) -> None:
        self.delegate.append(sql)

    def bind(self, name: str, value: Any) -> None:
        self.delegate.bind(name, value)

    def unique_number(self) -> int:
        return self.delegate.unique_number()


class _TrimContext(_DelegatingContext):
    """Buffers a TrimBlock body, then applies prefix/suffix rules exactly once."""

    def __init__(self, delegate: Any, block: TrimBlock) -> None:
        super().__init__(delegate)
        self.block = block
        self.prefix_applied = False
        self.suffix_applied = False
        self._fragments: list[str] = []

    def append(self, sql: str) -> None:
        sql = sql.strip()
        if sql:
            self._fragments.append(sql)

    def apply_all(self) -> None:
        body = join_fragments(self._fragments).strip()
        if body:
            body = self._apply_prefix(body)
            body = self._apply_suffix(body)
        self.delegate.append(body)

    def _apply_prefix(self, body: str) -> str:
        if self.prefix_applied:
            return body
        self.prefix_applied = True
        upper = body.upper()
        for token in self.block.prefix_overrides:
            if upper.startswith(token):
                body = body[len(token) :].lstrip()
                break
        if self.block.prefix and body:
            body = join_fragments([self.block.prefix, body])
        return body

    def _apply_suffix(self, body: str) -> str:
        if self.suffix_applied:
            return body
        self.suffix_applied = True
        upper = body.upper()
        for token in self.block.suffix_overrides:
            if upper.endswith(token) or upper.endswith(token.strip()):
                cut = len(token) if upper.endswith(token) else len(token.strip())
                body = body[: len(body) - cut].rstrip()
                break
        if self.block.suffix and body:
            body = join_fragments([body, self.block.suffix])
        return body


class _PrefixedContext(_DelegatingContext):
    """Emits *prefix* (the loop separator) before the first non-empty fragment."""

    def __init__(self, delegate: Any, prefix: str) -> None:
        super().__init__(delegate)
        self.prefix = prefix
        self.prefix_applied = False

    def append(self, sql: str) -> None:
        if not self.prefix_applied and sql.strip():
            self.delegate.append(self.prefix)
            self.prefix_applied = True
        self.delegate.append(sql)


def itemize(name: str, number: int) -> str:
    return f"{ITEM_PREFIX}{name}_{number}"


class _ItemContext(_DelegatingContext):
    """Rewrites ``#{item...}``/``#{index...}`` to the per-iteration binding names."""

    def __init__(self, delegate: Any, item: str | None, index: str | None, number: int) -> None:
        super().__init__(delegate)
        self._rewrites: list[tuple[re.Pattern[str], str]] = []
        for name in (item, index):
            if name:
                pattern = re.compile(r"^\s*" + re.escape(name) + r"(?![^.,:\s\[])")
                self._rewrites.append((pattern, itemize(name, number)))

    def _rewrite(self, content: str) -> str:
        for pattern, replacement in self._rewrites:
            content = pattern.sub(replacement, content, count=1)
        return "#{" + content + "}"

    def append(self, sql: str) -> None:
        self.delegate.append(parse_tokens(sql, "#{", "}", self._rewrite))


# --- Nodes ---


@dataclass(frozen=True)
class StaticText:
    text: str


@dataclass(frozen=True)
class VariableText:
    """Text containing ``${}`` substitutions, resolved at evaluation time."""

    text: str


@dataclass(frozen=True)
class ConditionalBlock:
    test: str
    child: Node


@dataclass(frozen=True)
class ChooseBlock:
    whens: tuple[ConditionalBlock, ...]
    otherwise: Node | None = None


@dataclass(frozen=True)
class IterationBlock:
    collection: str
    child: Node
    item: str | None = None
    index: str | None = None
    open: str = ""
    close: str = ""
    separator: str | None = None
    nullable: bool = False


@dataclass(frozen=True)
class TrimBlock:
    child: Node
    prefix: str = ""
    suffix: str = ""
    prefix_overrides: tuple[str, ...] = ()
    suffix_overrides: tuple[str, ...] = ()


@dataclass(frozen=True)
class BindNode:
    name: str
    expression: str


@dataclass(frozen=True)
class CompositeBlock:
    children: tuple[Node, ...] = field(default_factory=tuple)


Node = Union[
    StaticText,
    VariableText,
    ConditionalBlock,
    ChooseBlock,
    IterationBlock,
    TrimBlock,
    BindNode,
    CompositeBlock,
]

_WHERE_OVERRIDES = tuple(
    f"{op}{ws}" for op in ("AND", "OR") for ws in (" ", "\n", "\r", "\t")
)


def parse_overrides(text: str | None) -> tuple[str, ...]:
    """``"AND |OR "`` -> ``("AND ", "OR ")`` (upper-cased, empty entries dropped)."""
    if not text:
        return ()
    return tuple(token.upper() for token in text.split("|") if token)


def where_block(child: Node) -> TrimBlock:
    return TrimBlock(child=child, prefix="WHERE", prefix_overrides=_WHERE_OVERRIDES)


def set_block(child: Node) -> TrimBlock:
    return TrimBlock(child=child, prefix="SET", suffix_overrides=(",",))


def is_dynamic(node: Node) -> bool:
    """True when evaluating *node* can depend on the parameter object."""
    if isinstance(node, StaticText):
        return False
    if isinstance(node, CompositeBlock):
        return any(is_dynamic(c) for c in node.children)
    return True


# --- Evaluation ---


def apply_node(node: Node, context: Any) -> bool:
    """Evaluate *node* against *context*; the single dispatch point for all node kinds."""
    if isinstance(node, StaticText):
        context.append(node.text)
        return True
    if isinstance(node, CompositeBlock):
        for child in node.children:
            apply_node(child, context)
        return True
    if isinstance(node, VariableText):
        context.append(_substitute(node.text, context))
        return True
    if isinstance(node, ConditionalBlock):
        if context.evaluator.evaluate_boolean(node.test, context.bindings):
            apply_node(node.child, context)
            return True
        return False
    if isinstance(node, ChooseBlock):
        for when in node.whens:
            if apply_node(when, context):
                return True
        if node.otherwise is not None:
            apply_node(node.otherwise, context)
            return True
        return False
    if isinstance(node, IterationBlock):
        return _apply_iteration(node, context)
    if isinstance(node, TrimBlock):
        trim = _TrimContext(context, node)
        result = apply_node(node.child, trim)
        trim.apply_all()
        return result
    if isinstance(node, BindNode):
        context.bind(node.name, context.evaluator.evaluate_value(node.expression, context.bindings))
        return True
    raise TypeError(f"Unknown node type: {type(node).__name__}")


def _substitute(text: str, context: Any) -> str:
    def _resolve(expression: str) -> str:
        value = context.evaluator.evaluate_value(expression, context.bindings)
        rendered = "" if value is None else str(value)
        if context.guard is not None:
            context.guard.check(rendered)
        return rendered

    return parse_tokens(text, "${", "}", _resolve)


_EMPTY = object()


def _apply_iteration(node: IterationBlock, context: Any) -> bool:
    evaluator = context.evaluator
    value = evaluator.evaluate_value(node.collection, context.bindings)
    iterator = evaluator.iterate(node.collection, value, node.nullable)
    head = next(iterator, _EMPTY)
    if head is _EMPTY:
        return True

    is_mapping = isinstance(value, Mapping)
    context.append(node.open)
    first = True
    for position, element in enumerate(itertools.chain((head,), iterator)):
        prefix = "" if first or node.separator is None else node.separator
        scoped = _PrefixedContext(context, prefix)
        number = scoped.unique_number()
        if is_mapping:
            key, item = element
        else:
            key, item = position, element
        if node.index:
            scoped.bind(node.index, key)
            scoped.bind(itemize(node.index, number), key)
        if node.item:
            scoped.bind(node.item, item)
            scoped.bind(itemize(node.item, number), item)
        apply_node(node.child, _ItemContext(scoped, node.item, node.index, number))
        if first:
            first = not scoped.prefix_applied
    context.append(node.close)
    if node.item:
        context.bindings.pop(node.item, None)
    if node.index:
        context.bindings.pop(node.index, None)
    return True
