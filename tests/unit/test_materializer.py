"""Unit tests for ResultMaterializer: rows in, objects out."""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from decimal import Decimal
from types import SimpleNamespace
from typing import Any

import pytest

from row_mapper.cache.key import CacheKey
from row_mapper.core.configuration import Configuration
from row_mapper.core.enums import AutoMappingBehavior
from row_mapper.core.exceptions import (
    MultipleRowsError,
    NoViableConstructorError,
    ResultMappingError,
    UnresolvedDiscriminatorError,
)
from row_mapper.core.settings import Settings
from row_mapper.mapping.builder import result_map
from row_mapper.mapping.loader import ResultLoaderMap
from row_mapper.mapping.materializer import ResultMaterializer, automap_constructor
from row_mapper.mapping.proxy import LazyObject, is_lazy, pending_properties, resolve_all, unwrap
from row_mapper.mapping.resultset import ResultCursor
from row_mapper.mapping.statement import DEFAULT_ROW_BOUNDS, RowBounds
from row_mapper.reflection import MetaObject


@dataclass
class Child:
    id: int = 0
    name: str = ""


@dataclass
class Parent:
    id: int = 0
    name: str = ""
    children: list[Child] = field(default_factory=list)


@dataclass
class Order:
    id: int = 0
    user_id: int = 0


@dataclass
class User:
    id: int = 0
    name: str = ""
    orders: list[Order] = field(default_factory=list)
    manager: User | None = None
    latest: Order | None = None


@dataclass
class Vehicle:
    id: int = 0
    kind: str = ""


@dataclass
class Car(Vehicle):
    doors: int = 0


@dataclass
class Truck(Vehicle):
    payload: float = 0.0


@dataclass(frozen=True)
class Point:
    x: int
    y: int


@dataclass
class Money:
    amount: Decimal
    currency: str

    @automap_constructor
    @classmethod
    def from_row(cls, cents: int, currency: str) -> Money:
        return cls(Decimal(cents) / 100, currency)


@dataclass
class Account:
    account_id: int = 0
    display_name: str = ""


class CannedExecutor:
    """Answers nested queries from rows keyed by (statement id, parameter)."""

    closed = False

    def __init__(self, configuration: Configuration, rows: dict[tuple[str, Any], list[dict[str, Any]]]) -> None:
        self.configuration = configuration
        self.rows = rows
        self.calls: list[tuple[str, Any]] = []

    def create_cache_key(self, statement, parameter, bounds, bound_sql) -> CacheKey:
        return CacheKey([statement.id, parameter])

    def is_cached(self, statement, key) -> bool:
        return False

    def query(self, statement, parameter, bounds=DEFAULT_ROW_BOUNDS, *, bound_sql=None, cache_key=None):
        self.calls.append((statement.id, parameter))
        rows = self.rows.get((statement.id, parameter), [])
        materializer = ResultMaterializer(self, self.configuration, statement, bounds)
        return materializer.handle(ResultCursor.from_rows(rows))


def _materialize(
    configuration: Configuration,
    statement_id: str,
    rows: list[dict[str, Any]],
    bounds: RowBounds = DEFAULT_ROW_BOUNDS,
    executor: Any = None,
) -> list[Any]:
    configuration.finalize()
    statement = configuration.get_statement(statement_id)
    return ResultMaterializer(executor, configuration, statement, bounds).handle(
        ResultCursor.from_rows(rows)
    )


def _parent_configuration(result_ordered: bool = False) -> Configuration:
    configuration = Configuration()
    configuration.add_result_map(
        result_map(Parent, "parent.detail")
        .id("id", "p_id")
        .result("name", "p_name")
        .collection("children", result_map(Child).id("id", "c_id").result("name", "c_name"))
    )
    configuration.add_statement(
        "parent.with_children",
        "SELECT * FROM parent JOIN child",
        result_map="parent.detail",
        result_ordered=result_ordered,
    )
    return configuration


def _family_rows() -> list[dict[str, Any]]:
    return [
        {"p_id": 1, "p_name": "P1", "c_id": 10, "c_name": "C1"},
        {"p_id": 1, "p_name": "P1", "c_id": 11, "c_name": "C2"},
        {"p_id": 1, "p_name": "P1", "c_id": 12, "c_name": "C3"},
        {"p_id": 2, "p_name": "P2", "c_id": 20, "c_name": "C4"},
    ]


class TestSimpleRows:
    def test_dict_rows(self, configuration: Configuration) -> None:
        configuration.add_statement("t.all", "SELECT * FROM t")
        result = _materialize(configuration, "t.all", [{"id": 1, "name": "a"}, {"id": 2, "name": "b"}])
        assert result == [{"id": 1, "name": "a"}, {"id": 2, "name": "b"}]

    def test_null_columns_skipped_by_default(self, configuration: Configuration) -> None:
        configuration.add_statement("t.all", "SELECT * FROM t")
        assert _materialize(configuration, "t.all", [{"id": 1, "name": None}]) == [{"id": 1}]

    def test_call_setters_on_nulls(self) -> None:
        configuration = Configuration(Settings(call_setters_on_nulls=True))
        configuration.add_statement("t.all", "SELECT * FROM t")
        assert _materialize(configuration, "t.all", [{"id": 1, "name": None}]) == [{"id": 1, "name": None}]

    def test_all_null_row_is_none(self, configuration: Configuration) -> None:
        configuration.add_statement("t.all", "SELECT * FROM t", result_type=Child)
        assert _materialize(configuration, "t.all", [{"id": None, "name": None}]) == [None]

    def test_return_instance_for_empty_row(self) -> None:
        configuration = Configuration(Settings(return_instance_for_empty_row=True))
        configuration.add_statement("t.all", "SELECT * FROM t", result_type=Child)
        assert _materialize(configuration, "t.all", [{"id": None, "name": None}]) == [Child()]

    def test_scalar_result(self, configuration: Configuration) -> None:
        configuration.add_statement("t.count", "SELECT COUNT(*) FROM t", result_type=int)
        assert _materialize(configuration, "t.count", [{"n": 5}]) == [5]

    def test_auto_mapping_into_dataclass(self, configuration: Configuration) -> None:
        configuration.add_statement("t.all", "SELECT * FROM t", result_type=Child)
        assert _materialize(configuration, "t.all", [{"ID": 3, "NAME": "x"}]) == [Child(3, "x")]

    def test_camel_case_columns(self) -> None:
        configuration = Configuration(Settings(map_underscore_to_camel_case=True))
        configuration.add_statement("t.all", "SELECT * FROM t", result_type=Account)
        result = _materialize(configuration, "t.all", [{"accountId": 7, "displayName": "Ann"}])
        assert result == [Account(7, "Ann")]

    def test_camel_case_off_leaves_columns_unmapped(self, configuration: Configuration) -> None:
        configuration.add_statement("t.all", "SELECT * FROM t", result_type=Account)
        assert _materialize(configuration, "t.all", [{"accountId": 7}]) == [None]

    def test_auto_mapping_none(self) -> None:
        configuration = Configuration(Settings(auto_mapping_behavior=AutoMappingBehavior.NONE))
        configuration.add_result_map(result_map(Child, "child").result("name", "label"))
        configuration.add_statement("t.all", "SELECT * FROM t", result_map="child")
        assert _materialize(configuration, "t.all", [{"id": 3, "label": "x"}]) == [Child(0, "x")]

    def test_explicit_binding_wins_over_auto_mapping(self, configuration: Configuration) -> None:
        configuration.add_result_map(result_map(Child, "child").result("name", "label"))
        configuration.add_statement("t.all", "SELECT * FROM t", result_map="child")
        assert _materialize(configuration, "t.all", [{"id": 3, "name": "ignored", "label": "x"}]) == [
            Child(3, "x")
        ]

    def test_conversion_failure_names_column(self, configuration: Configuration) -> None:
        configuration.add_statement("t.all", "SELECT * FROM t", result_type=Child)
        with pytest.raises(ResultMappingError) as exc_info:
            _materialize(configuration, "t.all", [{"id": "abc"}])
        assert exc_info.value.column == "id"
        assert exc_info.value.property_name == "id"


class TestRowBounds:
    def _rows(self) -> list[dict[str, Any]]:
        return [{"id": i} for i in range(1, 6)]

    def test_offset_and_limit(self, configuration: Configuration) -> None:
        configuration.add_statement("t.all", "SELECT * FROM t")
        result = _materialize(configuration, "t.all", self._rows(), RowBounds(offset=1, limit=2))
        assert result == [{"id": 2}, {"id": 3}]

    def test_forward_only_cursor_skips_by_advancing(self, configuration: Configuration) -> None:
        configuration.add_statement("t.all", "SELECT * FROM t")
        configuration.finalize()
        statement = configuration.get_statement("t.all")
        cursor = ResultCursor(["id"], iter([(1,), (2,), (3,)]))
        result = ResultMaterializer(None, configuration, statement, RowBounds(offset=2)).handle(cursor)
        assert result == [{"id": 3}]

    def test_offset_past_end(self, configuration: Configuration) -> None:
        configuration.add_statement("t.all", "SELECT * FROM t")
        assert _materialize(configuration, "t.all", self._rows(), RowBounds(offset=10)) == []

    def test_negative_bounds_rejected(self) -> None:
        with pytest.raises(ValueError):
            RowBounds(offset=-1)


class TestNestedResultMaps:
    def test_one_to_many_rows_collapse_into_one_parent(self) -> None:
        rows = _family_rows()[:3]
        result = _materialize(_parent_configuration(), "parent.with_children", rows)
        assert len(result) == 1
        parent = result[0]
        assert parent.name == "P1"
        assert [c.name for c in parent.children] == ["C1", "C2", "C3"]

    def test_parents_in_first_seen_order(self) -> None:
        result = _materialize(_parent_configuration(), "parent.with_children", _family_rows())
        assert [(p.name, len(p.children)) for p in result] == [("P1", 3), ("P2", 1)]

    def test_interleaved_rows_merge(self) -> None:
        rows = _family_rows()
        interleaved = [rows[0], rows[3], rows[1], rows[2]]
        result = _materialize(_parent_configuration(), "parent.with_children", interleaved)
        assert [[c.id for c in p.children] for p in result] == [[10, 11, 12], [20]]

    def test_repeated_child_row_not_duplicated(self) -> None:
        rows = _family_rows()[:2] + [_family_rows()[0]]
        result = _materialize(_parent_configuration(), "parent.with_children", rows)
        assert [c.id for c in result[0].children] == [10, 11]

    def test_result_ordered(self) -> None:
        result = _materialize(_parent_configuration(True), "parent.with_children", _family_rows())
        assert [(p.name, len(p.children)) for p in result] == [("P1", 3), ("P2", 1)]

    def test_result_ordered_limit_counts_complete_parents(self) -> None:
        result = _materialize(
            _parent_configuration(True), "parent.with_children", _family_rows(), RowBounds(limit=1)
        )
        assert len(result) == 1
        assert len(result[0].children) == 3

    def test_parent_without_children(self) -> None:
        rows = [{"p_id": 3, "p_name": "P3", "c_id": None, "c_name": None}]
        configuration = Configuration()
        configuration.add_result_map(
            result_map(Parent, "parent.detail")
            .id("id", "p_id")
            .result("name", "p_name")
            .collection(
                "children",
                result_map(Child).id("id", "c_id").result("name", "c_name"),
                not_null_columns=["c_id"],
            )
        )
        configuration.add_statement("parent.all", "SELECT 1", result_map="parent.detail")
        result = _materialize(configuration, "parent.all", rows)
        assert result[0].children == []

    def test_prefixed_association_all_null(self) -> None:
        configuration = Configuration()
        configuration.add_result_map(result_map(User, "user.base").id("id").result("name"))
        configuration.add_result_map(
            result_map(User, "user.with_manager")
            .id("id")
            .result("name")
            .association("manager", "user.base", column_prefix="m_")
        )
        configuration.add_statement("user.all", "SELECT 1", result_map="user.with_manager")
        rows = [
            {"id": 1, "name": "ann", "m_id": None, "m_name": None},
            {"id": 2, "name": "bob", "m_id": 1, "m_name": "ann"},
        ]
        ann, bob = _materialize(configuration, "user.all", rows)
        assert ann.manager is None
        assert bob.manager == User(1, "ann")


class TestDiscriminator:
    def _configuration(self, default: str | None = None) -> Configuration:
        configuration = Configuration()
        configuration.add_result_map(
            result_map(Vehicle, "vehicle")
            .id("id")
            .result("kind")
            .discriminator(
                "kind",
                {"car": result_map(Car).result("doors"), "truck": "vehicle.truck"},
                default=default,
            )
        )
        configuration.add_result_map(result_map(Truck, "vehicle.truck", extends="vehicle").result("payload"))
        configuration.add_statement("vehicle.all", "SELECT * FROM vehicles", result_map="vehicle")
        return configuration

    def test_case_selects_map(self) -> None:
        rows = [
            {"id": 1, "kind": "car", "doors": 4, "payload": None},
            {"id": 2, "kind": "truck", "doors": None, "payload": 2.5},
        ]
        result = _materialize(self._configuration(), "vehicle.all", rows)
        assert result == [Car(1, "car", 4), Truck(2, "truck", 2.5)]

    def test_unmatched_value_raises(self) -> None:
        with pytest.raises(UnresolvedDiscriminatorError, match="boat") as exc_info:
            _materialize(self._configuration(), "vehicle.all", [{"id": 3, "kind": "boat"}])
        assert exc_info.value.value == "boat"

    def test_default_case(self) -> None:
        result = _materialize(
            self._configuration(default="vehicle.truck"),
            "vehicle.all",
            [{"id": 3, "kind": "boat", "payload": 1.0}],
        )
        assert result == [Truck(3, "boat", 1.0)]

    def test_self_referencing_case_stops(self, configuration: Configuration) -> None:
        configuration.add_result_map(
            result_map(Vehicle, "vehicle").id("id").result("kind").discriminator("kind", {"car": "vehicle"})
        )
        configuration.add_statement("vehicle.all", "SELECT 1", result_map="vehicle")
        assert _materialize(configuration, "vehicle.all", [{"id": 1, "kind": "car"}]) == [Vehicle(1, "car")]


class TestConstructors:
    def test_named_constructor_args(self, configuration: Configuration) -> None:
        configuration.add_result_map(
            result_map(Point, "point").constructor_arg("px", name="x").constructor_arg("py", name="y")
        )
        configuration.add_statement("point.all", "SELECT 1", result_map="point")
        assert _materialize(configuration, "point.all", [{"px": 1, "py": 2}]) == [Point(1, 2)]

    def test_positional_constructor_args(self, configuration: Configuration) -> None:
        configuration.add_result_map(result_map(Point, "point").constructor_arg("py").constructor_arg("px"))
        configuration.add_statement("point.all", "SELECT 1", result_map="point")
        assert _materialize(configuration, "point.all", [{"px": 1, "py": 2}]) == [Point(2, 1)]

    def test_signature_match_by_name(self, configuration: Configuration) -> None:
        configuration.add_statement("point.all", "SELECT 1", result_type=Point)
        assert _materialize(configuration, "point.all", [{"Y": 2, "X": 1}]) == [Point(1, 2)]

    def test_signature_match_by_position(self, configuration: Configuration) -> None:
        configuration.add_statement("point.all", "SELECT 1", result_type=Point)
        assert _materialize(configuration, "point.all", [{"a": 1, "b": 2}]) == [Point(1, 2)]

    def test_automap_constructor(self, configuration: Configuration) -> None:
        configuration.add_statement("money.all", "SELECT 1", result_type=Money)
        result = _materialize(configuration, "money.all", [{"cents": 1250, "currency": "EUR"}])
        assert result == [Money(Decimal("12.5"), "EUR")]

    def test_no_viable_constructor(self, configuration: Configuration) -> None:
        configuration.add_statement("point.all", "SELECT 1", result_type=Point)
        with pytest.raises(NoViableConstructorError, match="Point"):
            _materialize(configuration, "point.all", [{"label": "origin"}])


class TestNestedQueries:
    def _configuration(self, lazy: bool | None = None, settings: Settings | None = None) -> Configuration:
        configuration = Configuration(settings)
        configuration.add_statement("order.by_user", "SELECT * FROM orders WHERE user_id = #{id}", result_type=Order)
        configuration.add_statement("order.latest", "SELECT * FROM orders WHERE user_id = #{id}", result_type=Order)
        options: dict[str, Any] = {} if lazy is None else {"lazy": lazy}
        configuration.add_result_map(
            result_map(User, "user.detail")
            .id("id")
            .result("name")
            .collection("orders", select="order.by_user", column="id", **options)
        )
        configuration.add_result_map(
            result_map(User, "user.latest").id("id").association("latest", select="order.latest", column="id")
        )
        configuration.add_statement("user.all", "SELECT * FROM users", result_map="user.detail")
        configuration.add_statement("user.with_latest", "SELECT * FROM users", result_map="user.latest")
        return configuration

    def _orders(self) -> dict[tuple[str, Any], list[dict[str, Any]]]:
        return {
            ("order.by_user", 1): [{"id": 100, "user_id": 1}, {"id": 101, "user_id": 1}],
            ("order.latest", 1): [{"id": 101, "user_id": 1}],
            ("order.latest", 2): [{"id": 200, "user_id": 2}, {"id": 201, "user_id": 2}],
        }

    def test_eager_nested_select(self) -> None:
        configuration = self._configuration()
        executor = CannedExecutor(configuration, self._orders())
        [user] = _materialize(configuration, "user.all", [{"id": 1, "name": "ann"}], executor=executor)
        assert not is_lazy(user)
        assert [o.id for o in user.orders] == [100, 101]
        assert executor.calls == [("order.by_user", 1)]

    def test_single_valued_nested_select(self) -> None:
        configuration = self._configuration()
        executor = CannedExecutor(configuration, self._orders())
        [user] = _materialize(configuration, "user.with_latest", [{"id": 1}], executor=executor)
        assert user.latest == Order(101, 1)

    def test_single_valued_nested_select_with_many_rows(self) -> None:
        configuration = self._configuration()
        executor = CannedExecutor(configuration, self._orders())
        with pytest.raises(MultipleRowsError):
            _materialize(configuration, "user.with_latest", [{"id": 2}], executor=executor)

    def test_lazy_load_on_first_access(self) -> None:
        configuration = self._configuration(lazy=True)
        executor = CannedExecutor(configuration, self._orders())
        [user] = _materialize(configuration, "user.all", [{"id": 1, "name": "ann"}], executor=executor)
        assert is_lazy(user)
        assert isinstance(user, User)
        assert executor.calls == []
        assert pending_properties(user) == ["orders"]
        assert user.name == "ann"
        assert executor.calls == []

        assert len(user.orders) == 2
        assert len(user.orders) == 2
        assert executor.calls == [("order.by_user", 1)]
        assert pending_properties(user) == []

    def test_lazy_by_settings(self) -> None:
        configuration = self._configuration(settings=Settings(lazy_loading_enabled=True))
        executor = CannedExecutor(configuration, self._orders())
        [user] = _materialize(configuration, "user.all", [{"id": 1, "name": "ann"}], executor=executor)
        assert pending_properties(user) == ["orders"]

    def test_binding_overrides_lazy_setting(self) -> None:
        configuration = self._configuration(lazy=False, settings=Settings(lazy_loading_enabled=True))
        executor = CannedExecutor(configuration, self._orders())
        [user] = _materialize(configuration, "user.all", [{"id": 1, "name": "ann"}], executor=executor)
        assert not is_lazy(user)
        assert executor.calls == [("order.by_user", 1)]

    def test_assignment_cancels_lazy_load(self) -> None:
        configuration = self._configuration(lazy=True)
        executor = CannedExecutor(configuration, self._orders())
        [user] = _materialize(configuration, "user.all", [{"id": 1, "name": "ann"}], executor=executor)
        user.orders = []
        assert user.orders == []
        assert executor.calls == []
        assert unwrap(user).orders == []

    def test_resolve_all(self) -> None:
        configuration = self._configuration(lazy=True)
        executor = CannedExecutor(configuration, self._orders())
        users = _materialize(configuration, "user.all", [{"id": 1, "name": "ann"}], executor=executor)
        resolve_all(users)
        assert executor.calls == [("order.by_user", 1)]
        assert [o.id for o in unwrap(users[0]).orders] == [100, 101]

    def test_equality_loads_everything(self) -> None:
        configuration = self._configuration(lazy=True)
        executor = CannedExecutor(configuration, self._orders())
        [user] = _materialize(configuration, "user.all", [{"id": 1, "name": "ann"}], executor=executor)
        assert user == User(1, "ann", [Order(100, 1), Order(101, 1)])
        assert executor.calls == [("order.by_user", 1)]

    def test_null_key_skips_nested_select(self) -> None:
        configuration = self._configuration()
        executor = CannedExecutor(configuration, self._orders())
        [user] = _materialize(configuration, "user.all", [{"id": None, "name": "ann"}], executor=executor)
        assert user.orders == []
        assert executor.calls == []


class SlowLoader:
    """Stands in for a ResultLoader whose statement takes a while to run."""

    statement = SimpleNamespace(id="order.by_user")

    def __init__(self) -> None:
        self.calls = 0

    def load_result(self) -> list[int]:
        time.sleep(0.3)
        self.calls += 1
        return [1, 2]


@dataclass
class Holder:
    orders: list[int] = field(default_factory=list)


class TestConcurrentLazyLoad:
    def test_second_reader_waits_for_running_load(self) -> None:
        target = Holder()
        loader = SlowLoader()
        loaders = ResultLoaderMap()
        loaders.add_loader("orders", MetaObject(target), loader)  # type: ignore[arg-type]
        proxy = LazyObject(target, loaders)
        seen: list[Any] = [None, None]

        def read(slot: int) -> None:
            seen[slot] = list(proxy.orders)

        first = threading.Thread(target=read, args=(0,))
        second = threading.Thread(target=read, args=(1,))
        first.start()
        time.sleep(0.05)
        second.start()
        first.join()
        second.join()

        assert seen == [[1, 2], [1, 2]]
        assert loader.calls == 1
        assert len(loaders) == 0

    def test_reentrant_load_on_same_thread(self) -> None:
        target = Holder()
        loaders = ResultLoaderMap()

        class NestedLoader(SlowLoader):
            def load_result(self) -> list[int]:
                self.calls += 1
                # reading another property of the same object re-enters the lock
                assert loaders.load("missing") is False
                return [3]

        loader = NestedLoader()
        loaders.add_loader("orders", MetaObject(target), loader)  # type: ignore[arg-type]
        assert LazyObject(target, loaders).orders == [3]
        assert loader.calls == 1
