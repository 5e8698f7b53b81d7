"""Unit tests for parameter wrapping and placeholder conversion."""

from __future__ import annotations

import pytest

from row_mapper.core.exceptions import ParameterBindingError
from row_mapper.core.params import ParamMap, to_paramstyle, wrap_parameters


class TestWrapParameters:
    def test_no_arguments(self) -> None:
        assert wrap_parameters() is None

    def test_single_scalar_passthrough(self) -> None:
        assert wrap_parameters(42) == 42

    def test_single_object_passthrough(self) -> None:
        p = {"id": 1}
        assert wrap_parameters(p) is p

    def test_single_list_exposed_as_list_and_collection(self) -> None:
        ids = [1, 2, 3]
        params = wrap_parameters(ids)
        assert params["list"] is ids
        assert params["collection"] is ids

    def test_single_tuple_exposed_as_array(self) -> None:
        params = wrap_parameters((1, 2))
        assert params["array"] == (1, 2)
        assert params["collection"] == (1, 2)

    def test_keywords_get_generic_aliases(self) -> None:
        params = wrap_parameters(name="ann", active=True)
        assert params["name"] == "ann"
        assert params["active"] is True
        assert params["param1"] == "ann"
        assert params["param2"] is True

    def test_positional_arguments(self) -> None:
        params = wrap_parameters(1, "x")
        assert params["arg0"] == 1
        assert params["arg1"] == "x"
        assert params["param1"] == 1
        assert params["param2"] == "x"

    def test_explicit_generic_name_not_overwritten(self) -> None:
        params = wrap_parameters(a=1, param1=2)
        assert params["param1"] == 2

    def test_unknown_name_raises_with_available_names(self) -> None:
        params = wrap_parameters(1, 2)
        with pytest.raises(ParameterBindingError, match="param1"):
            params["id"]

    def test_param_map_is_a_dict(self) -> None:
        assert isinstance(wrap_parameters(a=1), ParamMap)
        assert isinstance(wrap_parameters(a=1), dict)


class TestToParamstyle:
    def test_qmark_passthrough(self) -> None:
        sql = "SELECT * FROM users WHERE id = ?"
        assert to_paramstyle(sql, "qmark") == sql

    def test_format_conversion(self) -> None:
        sql = "SELECT * FROM users WHERE id = ? AND name = ?"
        expected = "SELECT * FROM users WHERE id = %s AND name = %s"
        assert to_paramstyle(sql, "format") == expected

    def test_numeric_conversion(self) -> None:
        sql = "SELECT * FROM users WHERE id = ? AND name = ?"
        expected = "SELECT * FROM users WHERE id = :1 AND name = :2"
        assert to_paramstyle(sql, "numeric") == expected

    def test_string_literal_exclusion(self) -> None:
        sql = "SELECT * FROM t WHERE col = 'what?' AND id = ?"
        expected = "SELECT * FROM t WHERE col = 'what?' AND id = :1"
        assert to_paramstyle(sql, "numeric") == expected

    def test_percent_escaped_for_format(self) -> None:
        sql = "SELECT * FROM t WHERE name LIKE 'a%' AND id = ?"
        expected = "SELECT * FROM t WHERE name LIKE 'a%%' AND id = %s"
        assert to_paramstyle(sql, "format") == expected

    def test_no_params(self) -> None:
        sql = "SELECT 1"
        assert to_paramstyle(sql, "format") == sql
