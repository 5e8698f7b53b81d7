"""Template compiler and statement sources.

A template is plain SQL text, optionally with ``${}``/``#{}`` markers and
control tags::

    SELECT * FROM users
    <where>
      <if test="name != null">AND name LIKE #{name}</if>
      <if test="ids">AND id IN <foreach collection="ids" item="i" open="(" separator="," close=")">#{i}</foreach></if>
    </where>

Text without any control tag is taken literally (no XML escaping needed).
Text with tags is parsed as an XML fragment, so a literal ``<`` there must be
written as ``&lt;`` or inside CDATA.

``compile`` returns a RawSqlSource when nothing in the tree depends on the
parameter object (the SQL and its parameter mappings are computed once), or a
DynamicSqlSource that re-evaluates the tree on every call.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from typing import Any, Protocol

from lxml import etree

from row_mapper.core.exceptions import IncompleteSchemaError, TemplateCompileError
from row_mapper.core.sanitizer import SubstitutionGuard
from row_mapper.scripting.binder import BoundSql, ParameterMapping, build_sql, is_scalar
from row_mapper.scripting.expression import ExpressionEvaluator
from row_mapper.scripting.nodes import (
    BindNode,
    ChooseBlock,
    CompositeBlock,
    ConditionalBlock,
    DynamicContext,
    IterationBlock,
    Node,
    StaticText,
    TrimBlock,
    VariableText,
    apply_node,
    is_dynamic,
    parse_overrides,
    set_block,
    where_block,
)
from row_mapper.scripting.tokens import has_token, parse_tokens
from row_mapper.types.converters import ConverterRegistry

logger = logging.getLogger(__name__)

_TAG_PATTERN = re.compile(
    r"<\s*/?\s*(if|where|set|trim|foreach|choose|when|otherwise|bind|include)\b"
)


class SqlSource(Protocol):
    """Produces the BoundSql for one call."""

    is_dynamic: bool

    def get_bound_sql(self, parameter: Any) -> BoundSql: ...


class RawSqlSource:
    """Static statement: SQL text and parameter mappings computed once."""

    is_dynamic = False

    def __init__(self, sql: str, parameter_mappings: list[ParameterMapping]) -> None:
        self.sql = sql
        self.parameter_mappings = tuple(parameter_mappings)

    def get_bound_sql(self, parameter: Any) -> BoundSql:
        return BoundSql(self.sql, list(self.parameter_mappings), parameter, {})


class DynamicSqlSource:
    """Statement whose text depends on the parameter object."""

    is_dynamic = True

    def __init__(
        self,
        root: Node,
        evaluator: ExpressionEvaluator,
        converters: ConverterRegistry,
        guard: SubstitutionGuard | None = None,
        shrink_whitespace: bool = False,
    ) -> None:
        self.root = root
        self._evaluator = evaluator
        self._converters = converters
        self._guard = guard
        self._shrink_whitespace = shrink_whitespace

    def get_bound_sql(self, parameter: Any) -> BoundSql:
        context = DynamicContext(
            parameter,
            self._evaluator,
            scalar=is_scalar(parameter, self._converters),
            guard=self._guard,
            shrink_whitespace=self._shrink_whitespace,
        )
        apply_node(self.root, context)
        sql, mappings = build_sql(context.sql, self._converters)
        return BoundSql(sql, mappings, parameter, dict(context.bindings))


@dataclass(frozen=True)
class _ParseState:
    statement_id: str | None
    namespace: str | None
    depth: int = 0
    properties: dict[str, str] = field(default_factory=dict)


class TemplateCompiler:
    """Compiles template text into a node tree and a statement source.

    Args:
        converters: Converter registry used to build parameter mappings.
        fragments: Lookup for ``<include refid>`` targets; returns the fragment
            template text or None.
        guard: Optional ``${}`` substitution guard.
        shrink_whitespace: Collapse whitespace runs in the final SQL.
        max_include_depth: Maximum nesting of ``<include>`` expansion.
    """

    def __init__(
        self,
        converters: ConverterRegistry | None = None,
        *,
        fragments: Callable[[str], str | None] | None = None,
        guard: SubstitutionGuard | None = None,
        shrink_whitespace: bool = False,
        max_include_depth: int = 16,
        evaluator: ExpressionEvaluator | None = None,
    ) -> None:
        self.converters = converters or ConverterRegistry()
        self.evaluator = evaluator or ExpressionEvaluator()
        self._fragments = fragments or (lambda name: None)
        self._guard = guard
        self._shrink_whitespace = shrink_whitespace
        self._max_include_depth = max_include_depth
        self._parser = etree.XMLParser(remove_comments=True, resolve_entities=False)
        self._handlers: dict[str, Callable[[Any, _ParseState], Node]] = {
            "if": self._if,
            "choose": self._choose,
            "foreach": self._foreach,
            "trim": self._trim,
            "where": self._where,
            "set": self._set,
            "bind": self._bind,
            "include": self._include,
        }

    def compile(
        self,
        template: str,
        statement_id: str | None = None,
        namespace: str | None = None,
    ) -> SqlSource:
        root = self.parse(template, statement_id, namespace)
        if is_dynamic(root):
            logger.debug("Compiled %s as dynamic SQL", statement_id or "<template>")
            return DynamicSqlSource(
                root,
                self.evaluator,
                self.converters,
                self._guard,
                self._shrink_whitespace,
            )
        context = DynamicContext(
            None, self.evaluator, shrink_whitespace=self._shrink_whitespace
        )
        apply_node(root, context)
        sql, mappings = build_sql(context.sql, self.converters)
        logger.debug("Compiled %s as raw SQL", statement_id or "<template>")
        return RawSqlSource(sql, mappings)

    def parse(
        self,
        template: str,
        statement_id: str | None = None,
        namespace: str | None = None,
    ) -> Node:
        """Compile *template* into its node tree."""
        return self._parse(template, _ParseState(statement_id, namespace))

    def _parse(self, text: str, state: _ParseState) -> Node:
        if not _TAG_PATTERN.search(text):
            node = _text_node(text)
            return CompositeBlock((node,) if node is not None else ())
        try:
            root = etree.fromstring(f"<script>{text}</script>", parser=self._parser)
        except etree.XMLSyntaxError as e:
            raise TemplateCompileError(state.statement_id, f"malformed template: {e}") from e
        return self._contents(root, state)

    def _contents(self, element: Any, state: _ParseState) -> CompositeBlock:
        nodes: list[Node] = []
        text = _text_node(element.text)
        if text is not None:
            nodes.append(text)
        for child in element:
            if isinstance(child.tag, str):
                nodes.append(self._tag(child, state))
            tail = _text_node(child.tail)
            if tail is not None:
                nodes.append(tail)
        return CompositeBlock(tuple(nodes))

    def _tag(self, element: Any, state: _ParseState) -> Node:
        name = element.tag
        if name in ("when", "otherwise"):
            raise TemplateCompileError(state.statement_id, f"<{name}> is only allowed inside <choose>")
        handler = self._handlers.get(name)
        if handler is None:
            raise TemplateCompileError(state.statement_id, f"unknown element <{name}>")
        return handler(element, state)

    def _required(self, element: Any, attribute: str, state: _ParseState) -> str:
        value = element.get(attribute)
        if value is None or not value.strip():
            raise TemplateCompileError(
                state.statement_id, f"<{element.tag}> requires the '{attribute}' attribute"
            )
        return value

    def _expression(self, expression: str, state: _ParseState) -> str:
        # Parse now so a broken expression fails at load time.
        self.evaluator.compile(expression)
        return expression

    def _if(self, element: Any, state: _ParseState) -> ConditionalBlock:
        test = self._expression(self._required(element, "test", state), state)
        return ConditionalBlock(test=test, child=self._contents(element, state))

    def _choose(self, element: Any, state: _ParseState) -> Node:
        whens: list[ConditionalBlock] = []
        otherwise: Node | None = None
        for child in element:
            if not isinstance(child.tag, str):
                continue
            if child.tag == "when":
                whens.append(self._if(child, state))
            elif child.tag == "otherwise":
                if otherwise is not None:
                    raise TemplateCompileError(
                        state.statement_id, "<choose> has more than one <otherwise>"
                    )
                otherwise = self._contents(child, state)
            else:
                raise TemplateCompileError(
                    state.statement_id, f"<choose> may only contain <when>/<otherwise>, found <{child.tag}>"
                )
        return ChooseBlock(whens=tuple(whens), otherwise=otherwise)

    def _foreach(self, element: Any, state: _ParseState) -> Node:
        collection = self._expression(self._required(element, "collection", state), state)
        return IterationBlock(
            collection=collection,
            child=self._contents(element, state),
            item=element.get("item"),
            index=element.get("index"),
            open=element.get("open", ""),
            close=element.get("close", ""),
            separator=element.get("separator"),
            nullable=element.get("nullable", "false").lower() == "true",
        )

    def _trim(self, element: Any, state: _ParseState) -> Node:
        return TrimBlock(
            child=self._contents(element, state),
            prefix=element.get("prefix", ""),
            suffix=element.get("suffix", ""),
            prefix_overrides=parse_overrides(element.get("prefixOverrides")),
            suffix_overrides=parse_overrides(element.get("suffixOverrides")),
        )

    def _where(self, element: Any, state: _ParseState) -> Node:
        return where_block(self._contents(element, state))

    def _set(self, element: Any, state: _ParseState) -> Node:
        return set_block(self._contents(element, state))

    def _bind(self, element: Any, state: _ParseState) -> Node:
        name = self._required(element, "name", state)
        value = self._expression(self._required(element, "value", state), state)
        return BindNode(name=name, expression=value)

    def _include(self, element: Any, state: _ParseState) -> Node:
        refid = _substitute_properties(self._required(element, "refid", state), state.properties)
        properties = dict(state.properties)
        for prop in element:
            if not isinstance(prop.tag, str):
                continue
            if prop.tag != "property":
                raise TemplateCompileError(
                    state.statement_id, f"<include> may only contain <property>, found <{prop.tag}>"
                )
            name = self._required(prop, "name", state)
            value = prop.get("value")
            if value is None:
                raise TemplateCompileError(state.statement_id, f"<property name='{name}'> requires 'value'")
            properties[name] = _substitute_properties(value, state.properties)

        full_name = refid if "." in refid or not state.namespace else f"{state.namespace}.{refid}"
        if state.depth + 1 > self._max_include_depth:
            raise TemplateCompileError(
                state.statement_id,
                f"<include> nesting deeper than {self._max_include_depth} at '{full_name}'",
            )
        text = self._fragments(full_name)
        if text is None and full_name != refid:
            text = self._fragments(refid)
        if text is None:
            raise IncompleteSchemaError(state.statement_id or "<template>", full_name)

        namespace = full_name.rsplit(".", 1)[0] if "." in full_name else state.namespace
        nested = replace(state, namespace=namespace, depth=state.depth + 1, properties=properties)
        return self._parse(_substitute_properties(text, properties), nested)


def _text_node(text: str | None) -> Node | None:
    if text is None or not text.strip():
        return None
    if has_token(text, "${", "}"):
        return VariableText(text)
    return StaticText(text)


def _substitute_properties(text: str, properties: dict[str, str]) -> str:
    if not properties or "${" not in text:
        return text
    return parse_tokens(
        text,
        "${",
        "}",
        lambda content: properties.get(content.strip(), "${" + content + "}"),
    )
