"""Unit tests for property-path access."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

import pytest
from pydantic import BaseModel

from row_mapper.core.exceptions import PropertyAccessError
from row_mapper.reflection import (
    MetaObject,
    class_info,
    create_collection,
    element_type,
    is_collection_type,
    parse_path,
    unwrap_optional,
)


@dataclass
class Line:
    sku: str
    quantity: int = 1


@dataclass
class Order:
    id: int = 0
    lines: list[Line] = field(default_factory=list)
    notes: dict[str, str] = field(default_factory=dict)
    customer_name: str | None = None


@dataclass(frozen=True)
class FrozenPoint:
    x: int = 0


class Account(BaseModel):
    id: int
    owner: str = ""


class Plain:
    def __init__(self, name: str = "") -> None:
        self.name = name

    @property
    def display(self) -> str:
        return self.name.title()


class TestParsePath:
    def test_simple(self) -> None:
        assert parse_path("a") == (("a", ()),)

    def test_nested_with_indexes(self) -> None:
        assert parse_path("a.b[0].c['k']") == (("a", ()), ("b", ("0",)), ("c", ("k",)))

    def test_dots_inside_brackets(self) -> None:
        assert parse_path("m['x.y']") == (("m", ("x.y",)),)

    def test_invalid(self) -> None:
        with pytest.raises(ValueError):
            parse_path("a..b")


class TestMetaObject:
    def test_get_nested(self) -> None:
        order = Order(lines=[Line("A", 2)])
        assert MetaObject(order).get_value("lines[0].quantity") == 2

    def test_null_intermediate_is_none(self) -> None:
        assert MetaObject({"order": None}).get_value("order.id") is None

    def test_missing_property_raises(self) -> None:
        with pytest.raises(PropertyAccessError, match="no property"):
            MetaObject(Order()).get_value("total")

    def test_set_nested_index(self) -> None:
        order = Order(lines=[Line("A")])
        MetaObject(order).set_value("lines[0].quantity", 5)
        assert order.lines[0].quantity == 5

    def test_set_mapping_key(self) -> None:
        order = Order()
        MetaObject(order).set_value("notes[gift]", "yes")
        assert order.notes == {"gift": "yes"}

    def test_set_frozen_dataclass(self) -> None:
        point = FrozenPoint()
        MetaObject(point).set_value("x", 3)
        assert point.x == 3

    def test_set_through_null_raises(self) -> None:
        with pytest.raises(PropertyAccessError, match="null"):
            MetaObject({"a": None}).set_value("a.b", 1)

    def test_has_setter(self) -> None:
        assert MetaObject(Plain()).has_setter("name") is True
        assert MetaObject(Plain()).has_setter("display") is False
        assert MetaObject({}).has_setter("anything") is True

    def test_find_property_camel_case(self) -> None:
        meta = MetaObject(Order())
        assert meta.find_property("CUSTOMER_NAME") == "customer_name"
        assert meta.find_property("customerName", camel_case=True) == "customer_name"
        assert meta.find_property("customerName") is None

    def test_pydantic_model_properties(self) -> None:
        info = class_info(Account)
        assert set(info.properties) >= {"id", "owner"}
        assert MetaObject(Account(id=1)).get_value("id") == 1

    def test_collection_helpers(self) -> None:
        items: list[object] = []
        meta = MetaObject(items)
        assert meta.is_collection()
        meta.add_all([1, 2])
        assert items == [1, 2]


class TestTypeHelpers:
    def test_unwrap_optional(self) -> None:
        assert unwrap_optional(Optional[int]) is int
        assert unwrap_optional(int | None) is int
        assert unwrap_optional(str) is str

    def test_collection_types(self) -> None:
        assert is_collection_type(list[Line])
        assert is_collection_type(set[int])
        assert is_collection_type(Optional[list[Line]])
        assert not is_collection_type(str)
        assert not is_collection_type(dict[str, int])
        assert not is_collection_type(Line)

    def test_element_type_and_creation(self) -> None:
        assert element_type(list[Line]) is Line
        assert create_collection(set[int]) == set()
        assert create_collection(list[Line]) == []

    def test_class_info_property_types(self) -> None:
        info = class_info(Order)
        assert info.property_type("customer_name") is str
        assert info.default_constructible
