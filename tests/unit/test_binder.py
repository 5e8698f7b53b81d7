"""Unit tests for parameter marker parsing and binding."""

from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import date
from decimal import Decimal

import pytest

from row_mapper.core.exceptions import ParameterBindingError
from row_mapper.core.params import wrap_parameters
from row_mapper.scripting.binder import (
    BoundSql,
    bind_parameters,
    build_sql,
    is_scalar,
    parse_parameter_expression,
)
from row_mapper.scripting.compiler import TemplateCompiler
from row_mapper.types.converters import ConverterRegistry, DecimalConverter


class Color(enum.Enum):
    RED = "r"
    BLUE = "b"


@dataclass
class Order:
    id: int
    total: Decimal
    placed: date


class TestParseParameterExpression:
    def test_plain_property(self) -> None:
        assert parse_parameter_expression("id") == {"property": "id"}

    def test_store_type_shorthand(self) -> None:
        assert parse_parameter_expression("id:INTEGER") == {"property": "id", "jdbcType": "INTEGER"}

    def test_attributes(self) -> None:
        parsed = parse_parameter_expression(" total , javaType=decimal, numericScale=2 ")
        assert parsed == {"property": "total", "javaType": "decimal", "numericScale": "2"}

    def test_shorthand_with_attributes(self) -> None:
        parsed = parse_parameter_expression("name:VARCHAR, mode=IN")
        assert parsed == {"property": "name", "jdbcType": "VARCHAR", "mode": "IN"}

    def test_expression_form(self) -> None:
        assert parse_parameter_expression("(a + b)")["expression"] == "a + b"

    def test_malformed_attribute(self) -> None:
        with pytest.raises(ParameterBindingError, match="malformed"):
            parse_parameter_expression("id, javaType")


class TestBuildSql:
    def setup_method(self) -> None:
        self.converters = ConverterRegistry()

    def test_placeholders_left_to_right(self) -> None:
        sql, mappings = build_sql("a = #{a} AND b = #{b} OR a = #{a}", self.converters)
        assert sql == "a = ? AND b = ? OR a = ?"
        assert [m.property for m in mappings] == ["a", "b", "a"]

    def test_escaped_marker_is_literal(self) -> None:
        sql, mappings = build_sql(r"SELECT '\#{x}' , #{y}", self.converters)
        assert sql == "SELECT '#{x}' , ?"
        assert [m.property for m in mappings] == ["y"]

    def test_python_type_selects_converter(self) -> None:
        _, mappings = build_sql("#{n, pythonType=int}", self.converters)
        assert mappings[0].python_type is int
        assert mappings[0].converter is self.converters.get(int)

    def test_numeric_scale_uses_decimal(self) -> None:
        _, mappings = build_sql("#{total, numericScale=2}", self.converters)
        assert isinstance(mappings[0].converter, DecimalConverter)
        assert mappings[0].converter.scale == 2

    def test_unknown_attribute(self) -> None:
        with pytest.raises(ParameterBindingError, match="unknown attribute"):
            build_sql("#{id, flavor=x}", self.converters)

    def test_unknown_type_alias(self) -> None:
        with pytest.raises(ParameterBindingError, match="Unknown type alias"):
            build_sql("#{id, javaType=Widget}", self.converters)

    def test_expression_markers_rejected(self) -> None:
        with pytest.raises(ParameterBindingError, match="expression"):
            build_sql("#{(a + b)}", self.converters)

    def test_out_mode_rejected(self) -> None:
        with pytest.raises(ParameterBindingError, match="OUT"):
            build_sql("#{result, mode=OUT}", self.converters)

    def test_out_only_type_name_rejected(self) -> None:
        with pytest.raises(ParameterBindingError, match="unknown attribute 'jdbcTypeName'"):
            build_sql("#{result, jdbcTypeName=ADDRESS_T}", self.converters)


class TestBindParameters:
    def setup_method(self) -> None:
        self.converters = ConverterRegistry()

    def _bound(self, text: str, parameter, additional=None) -> BoundSql:
        sql, mappings = build_sql(text, self.converters)
        return BoundSql(sql, mappings, parameter, dict(additional or {}))

    def test_order_matches_placeholders(self) -> None:
        bound = self._bound("#{b} #{a} #{b}", {"a": 1, "b": 2})
        params = bind_parameters(bound, self.converters)
        assert [p.value for p in params] == [2, 1, 2]
        assert [p.position for p in params] == [1, 2, 3]

    def test_object_properties(self) -> None:
        order = Order(7, Decimal("10.50"), date(2024, 1, 2))
        bound = self._bound("#{id} #{total} #{placed}", order)
        values = [p.store_value for p in bind_parameters(bound, self.converters)]
        assert values == [7, Decimal("10.50"), date(2024, 1, 2)]

    def test_scalar_parameter_under_any_name(self) -> None:
        bound = self._bound("#{whatever}", 42)
        assert bind_parameters(bound, self.converters)[0].value == 42

    def test_null_parameter(self) -> None:
        bound = self._bound("#{id}", None)
        param = bind_parameters(bound, self.converters)[0]
        assert param.value is None
        assert param.store_value is None

    def test_additional_bindings_first(self) -> None:
        bound = self._bound("#{name}", {"name": "param"}, {"name": "bound"})
        assert bind_parameters(bound, self.converters)[0].value == "bound"

    def test_nested_path(self) -> None:
        bound = self._bound("#{order.id}", {"order": Order(3, Decimal(1), date.today())})
        assert bind_parameters(bound, self.converters)[0].value == 3

    def test_enum_stored_by_value(self) -> None:
        bound = self._bound("#{color}", {"color": Color.BLUE})
        assert bind_parameters(bound, self.converters)[0].store_value == "b"

    def test_store_type_drives_conversion(self) -> None:
        bound = self._bound("#{flag:INTEGER}", {"flag": True})
        assert bind_parameters(bound, self.converters)[0].store_value == 1

    def test_numeric_scale_quantizes(self) -> None:
        bound = self._bound("#{total, numericScale=2}", {"total": Decimal("1.005")})
        assert bind_parameters(bound, self.converters)[0].store_value == Decimal("1.00")

    def test_unresolvable_path_names_marker(self) -> None:
        bound = self._bound("#{customer.nickname}", {"customer": Order(1, Decimal(1), date.today())})
        with pytest.raises(ParameterBindingError) as exc_info:
            bind_parameters(bound, self.converters)
        assert exc_info.value.marker == "customer.nickname"

    def test_unnamed_multi_argument_call(self) -> None:
        bound = self._bound("#{id} #{name}", wrap_parameters(1, "ann"))
        with pytest.raises(ParameterBindingError, match="param1"):
            bind_parameters(bound, self.converters)

    def test_generic_names_for_positional_arguments(self) -> None:
        bound = self._bound("#{param1} #{arg1}", wrap_parameters(1, "ann"))
        assert [p.value for p in bind_parameters(bound, self.converters)] == [1, "ann"]

    def test_conversion_failure(self) -> None:
        bound = self._bound("#{n, pythonType=int}", {"n": "abc"})
        with pytest.raises(ParameterBindingError, match="cannot convert"):
            bind_parameters(bound, self.converters)[0].store_value


class TestIsScalar:
    def test_scalars(self) -> None:
        converters = ConverterRegistry()
        for value in (1, "x", 1.5, Decimal(1), date.today(), True, b"x", Color.RED):
            assert is_scalar(value, converters) is True

    def test_non_scalars(self) -> None:
        converters = ConverterRegistry()
        for value in (None, {"a": 1}, [1], Order(1, Decimal(1), date.today())):
            assert is_scalar(value, converters) is False


class TestBindingThroughLoops:
    def test_loop_values_bound_in_element_order(self) -> None:
        compiler = TemplateCompiler()
        source = compiler.compile(
            'SELECT * FROM t WHERE id IN <foreach collection="list" item="i" open="(" separator="," close=")">#{i}</foreach>'
        )
        bound = source.get_bound_sql(wrap_parameters([5, 6, 7]))
        params = bind_parameters(bound, compiler.converters)
        assert [p.value for p in params] == [5, 6, 7]
        assert bound.sql.count("?") == len(params)
