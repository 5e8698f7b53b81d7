"""Unit tests for Configuration registration, deferral and finalization."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

import pytest

import row_mapper
from row_mapper.cache.impl import Cache
from row_mapper.core import enums
from row_mapper.core.configuration import Configuration
from row_mapper.core.enums import StatementKind
from row_mapper.core.exceptions import (
    ConfigurationError,
    DefinitionNotFoundError,
    DuplicateStatementError,
    IncompleteSchemaError,
)
from row_mapper.core.settings import Settings
from row_mapper.mapping.builder import result_map


@dataclass
class User:
    id: int = 0
    name: str = ""


class TestStatements:
    def test_kind_inferred_from_sql(self, configuration: Configuration) -> None:
        configuration.add_statement("user.all", "SELECT * FROM users")
        configuration.add_statement("user.rename", "update users set name = #{name}")
        configuration.add_statement(
            "user.search", "<where><if test='name != null'>name = #{name}</if></where>"
        )
        assert configuration.get_statement("user.all").kind is StatementKind.SELECT
        assert configuration.get_statement("user.rename").kind is StatementKind.UPDATE
        assert configuration.get_statement("user.search").kind is StatementKind.UNKNOWN

    def test_explicit_kind(self, configuration: Configuration) -> None:
        configuration.add_statement("user.purge", "CALL purge_users()", kind="delete")
        assert configuration.get_statement("user.purge").kind is StatementKind.DELETE

    def test_cache_flags_follow_kind(self, configuration: Configuration) -> None:
        configuration.add_statement("user.all", "SELECT * FROM users")
        configuration.add_statement("user.drop", "DELETE FROM users")
        select = configuration.get_statement("user.all")
        delete = configuration.get_statement("user.drop")
        assert (select.use_cache, select.flush_cache) == (True, False)
        assert (delete.use_cache, delete.flush_cache) == (False, True)

    def test_inline_result_map(self, configuration: Configuration) -> None:
        configuration.add_statement("user.all", "SELECT * FROM users")
        configuration.add_statement("user.typed", "SELECT * FROM users", result_type=User)
        inline = configuration.get_statement("user.all").result_maps[0]
        assert inline.id == "user.all-inline"
        assert inline.type is dict
        assert configuration.get_statement("user.typed").result_maps[0].type is User

    def test_result_map_resolved_in_namespace(self, configuration: Configuration) -> None:
        configuration.add_result_map(result_map(User, "user.base").id("id"))
        configuration.add_statement("user.all", "SELECT * FROM users", result_map="base")
        assert configuration.get_statement("user.all").result_maps[0].id == "user.base"

    def test_namespace(self, configuration: Configuration) -> None:
        configuration.add_statement("billing.invoice.list", "SELECT 1")
        assert configuration.get_statement("billing.invoice.list").namespace == "billing.invoice"

    def test_settings_defaults_applied(self) -> None:
        configuration = Configuration(Settings(default_fetch_size=50, default_timeout=5))
        configuration.add_statement("user.all", "SELECT * FROM users")
        configuration.add_statement("user.some", "SELECT * FROM users", fetch_size=10)
        assert configuration.get_statement("user.all").fetch_size == 50
        assert configuration.get_statement("user.all").timeout == 5
        assert configuration.get_statement("user.some").fetch_size == 10

    def test_duplicate_statement(self, configuration: Configuration) -> None:
        configuration.add_statement("user.all", "SELECT 1")
        with pytest.raises(DuplicateStatementError, match="user.all"):
            configuration.add_statement("user.all", "SELECT 2")

    def test_statement_ids_sorted(self, configuration: Configuration) -> None:
        configuration.add_statement("b.q", "SELECT 1")
        configuration.add_statement("a.q", "SELECT 2")
        assert configuration.statement_ids == ["a.q", "b.q"]

    def test_lookup_missing(self, configuration: Configuration) -> None:
        with pytest.raises(DefinitionNotFoundError, match="Statement not found"):
            configuration.get_statement("nope")
        with pytest.raises(DefinitionNotFoundError, match="Result map not found"):
            configuration.get_result_map("nope")
        with pytest.raises(DefinitionNotFoundError, match="Cache not found"):
            configuration.get_cache("nope")


class TestDeferredRegistration:
    def test_fragment_defined_later(self, configuration: Configuration) -> None:
        configuration.add_statement("user.all", "SELECT <include refid='cols'/> FROM users")
        assert not configuration.has_statement("user.all")
        configuration.add_fragment("user.cols", "id, name")
        configuration.finalize()
        assert configuration.has_statement("user.all")
        bound = configuration.get_statement("user.all").get_bound_sql(None)
        assert bound.sql == "SELECT id, name FROM users"

    def test_parent_result_map_defined_later(self, configuration: Configuration) -> None:
        configuration.add_result_map(result_map(User, "user.vip", extends="user.base").result("name", "vip_name"))
        configuration.add_result_map(result_map(User, "user.base").id("id").result("name"))
        configuration.finalize()
        merged = configuration.get_result_map("user.vip")
        assert {b.property: b.column for b in merged.bindings} == {"id": "id", "name": "vip_name"}

    def test_result_map_defined_after_statement(self, configuration: Configuration) -> None:
        configuration.add_statement("user.all", "SELECT * FROM users", result_map="user.base")
        configuration.add_result_map(result_map(User, "user.base").id("id"))
        configuration.finalize()
        assert configuration.get_statement("user.all").result_maps[0].type is User

    def test_unresolved_chain(self, configuration: Configuration) -> None:
        configuration.add_statement("user.all", "SELECT * FROM users", result_map="user.detail")
        configuration.add_result_map(result_map(User, "user.detail", extends="user.base").id("id"))
        with pytest.raises(IncompleteSchemaError) as exc_info:
            configuration.finalize()
        error = exc_info.value
        assert error.chain == ["user.all", "user.detail", "user.base"]
        assert error.missing == "user.base"
        assert [e.name for e in error.unresolved] == ["user.all", "user.detail"]
        assert not configuration.finalized

    def test_missing_fragment_reported(self, configuration: Configuration) -> None:
        configuration.add_statement("user.all", "SELECT <include refid='cols'/> FROM users")
        with pytest.raises(IncompleteSchemaError) as exc_info:
            configuration.finalize()
        assert exc_info.value.missing == "user.cols"

    def test_deferred_duplicate_detected(self, configuration: Configuration) -> None:
        configuration.add_statement("user.all", "SELECT <include refid='cols'/> FROM users")
        configuration.add_statement("user.all", "SELECT <include refid='cols'/> FROM people")
        configuration.add_fragment("user.cols", "id")
        with pytest.raises(DuplicateStatementError):
            configuration.finalize()

    def test_nested_result_map_reference_validated(self, configuration: Configuration) -> None:
        configuration.add_result_map(result_map(User, "user.detail").collection("orders", "order.base"))
        with pytest.raises(IncompleteSchemaError, match="order.base"):
            configuration.finalize()

    def test_nested_select_reference_validated(self, configuration: Configuration) -> None:
        configuration.add_result_map(
            result_map(User, "user.detail").collection("orders", select="order.by_user", column="id")
        )
        with pytest.raises(IncompleteSchemaError, match="order.by_user"):
            configuration.finalize()

    def test_discriminator_case_validated(self, configuration: Configuration) -> None:
        configuration.add_result_map(result_map(User, "vehicle").discriminator("kind", {"1": "vehicle.car"}))
        with pytest.raises(IncompleteSchemaError, match="vehicle.car"):
            configuration.finalize()


class TestCaches:
    def test_namespace_cache_is_default(self, configuration: Configuration) -> None:
        cache = configuration.add_cache("user", "fifo", 10)
        configuration.add_statement("user.all", "SELECT * FROM users")
        configuration.add_statement("order.all", "SELECT * FROM orders")
        assert configuration.get_statement("user.all").cache is cache
        assert configuration.get_statement("order.all").cache is None
        assert isinstance(configuration.get_cache("user"), Cache)

    def test_explicit_cache_defined_later(self, configuration: Configuration) -> None:
        configuration.add_statement("report.totals", "SELECT 1", cache="shared")
        cache = configuration.add_cache("shared")
        configuration.finalize()
        assert configuration.get_statement("report.totals").cache is cache

    def test_explicit_cache_never_defined(self, configuration: Configuration) -> None:
        configuration.add_statement("report.totals", "SELECT 1", cache="shared")
        with pytest.raises(IncompleteSchemaError, match="cache:shared"):
            configuration.finalize()

    def test_duplicate_cache(self, configuration: Configuration) -> None:
        configuration.add_cache("user")
        with pytest.raises(DuplicateStatementError):
            configuration.add_cache("user")


class TestFinalize:
    def test_read_only_after_finalize(self, configuration: Configuration) -> None:
        configuration.add_statement("user.all", "SELECT 1")
        configuration.finalize()
        assert configuration.finalized
        with pytest.raises(ConfigurationError, match="finalized"):
            configuration.add_statement("user.other", "SELECT 2")
        with pytest.raises(ConfigurationError):
            configuration.add_fragment("user.cols", "id")

    def test_finalize_idempotent(self, configuration: Configuration) -> None:
        configuration.finalize()
        configuration.finalize()
        assert configuration.finalized

    def test_duplicate_fragment(self, configuration: Configuration) -> None:
        configuration.add_fragment("user.cols", "id")
        with pytest.raises(DuplicateStatementError):
            configuration.add_fragment("user.cols", "name")


class TestPackageExports:
    def test_every_export_resolves(self) -> None:
        for name in row_mapper.__all__:
            assert getattr(row_mapper, name) is not None, name

    def test_exported_enums_match_module(self) -> None:
        declared = {
            name
            for name, value in vars(enums).items()
            if isinstance(value, type) and issubclass(value, Enum) and value.__module__ == enums.__name__
        }
        assert declared == {"AutoMappingBehavior", "LocalCacheScope", "ResultSetKind", "StatementKind"}
        assert declared <= set(row_mapper.__all__)
