"""Unit tests for Repository and the @statement decorator."""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass

import pytest

from row_mapper.core.configuration import Configuration
from row_mapper.core.connection import ConnectionConfig
from row_mapper.core.exceptions import ConfigurationError
from row_mapper.core.session import SessionFactory
from row_mapper.mapping.statement import RowBounds
from row_mapper.repository import Repository, statement


@dataclass
class User:
    id: int = 0
    name: str = ""


class UserRepository(Repository):
    namespace = "user"

    @statement()
    def by_id(self, id: int) -> User | None: ...

    @statement("user.search", many=True)
    def search(self, name: str | None = None, min_id: int = 0) -> list[User]: ...

    @statement(many=True)
    def all(self) -> list[User]: ...

    @statement()
    def rename(self, id: int, name: str) -> int: ...


@pytest.fixture
def factory(sqlite_config: ConnectionConfig, configuration: Configuration) -> Iterator[SessionFactory]:
    configuration.add_statement("user.by_id", "SELECT id, name FROM users WHERE id = #{id}", result_type=User)
    configuration.add_statement(
        "user.search",
        "SELECT id, name FROM users <where>"
        "<if test='name != null'>name = #{name}</if>"
        "<if test='min_id gt 0'>AND id >= #{min_id}</if>"
        "</where> ORDER BY id",
        result_type=User,
    )
    configuration.add_statement("user.all", "SELECT id, name FROM users ORDER BY id", result_type=User)
    configuration.add_statement("user.rename", "UPDATE users SET name = #{name} WHERE id = #{id}")
    factory = SessionFactory.from_config(sqlite_config, configuration)
    with factory.connection_manager.get_connection() as conn:
        conn.execute("CREATE TABLE users (id INTEGER PRIMARY KEY, name TEXT)")
        conn.execute("INSERT INTO users VALUES (1, 'Alice'), (2, 'Bob'), (3, 'Cy')")
        conn.commit()
    yield factory
    factory.close()


class TestRepository:
    def test_statement_id_resolution(self, factory: SessionFactory) -> None:
        with UserRepository(factory) as repo:
            assert repo.statement_id("by_id") == "user.by_id"
            assert repo.statement_id("order.by_id") == "order.by_id"

    def test_without_namespace(self, factory: SessionFactory) -> None:
        with Repository(factory) as repo:
            assert repo.statement_id("by_id") == "by_id"

    def test_owns_session_from_factory(self, factory: SessionFactory) -> None:
        repo = UserRepository(factory)
        repo.close()
        assert repo.session.state == "closed"

    def test_borrowed_session_left_open(self, factory: SessionFactory) -> None:
        with factory.open_session() as session:
            repo = UserRepository(session)
            repo.close()
            assert session.state != "closed"


class TestStatementDecorator:
    def test_select_one_with_single_argument(self, factory: SessionFactory) -> None:
        with UserRepository(factory) as repo:
            assert repo.by_id(2) == User(2, "Bob")
            assert repo.by_id(99) is None

    def test_select_many_with_named_arguments(self, factory: SessionFactory) -> None:
        with UserRepository(factory) as repo:
            assert [u.id for u in repo.search(min_id=2)] == [2, 3]
            assert [u.id for u in repo.search("Alice")] == [1]

    def test_select_many_without_arguments(self, factory: SessionFactory) -> None:
        with UserRepository(factory) as repo:
            assert len(repo.all()) == 3

    def test_bounds_passed_through(self, factory: SessionFactory) -> None:
        with UserRepository(factory) as repo:
            assert [u.id for u in repo.all(bounds=RowBounds(offset=1, limit=1))] == [2]

    def test_write_returns_row_count(self, factory: SessionFactory) -> None:
        with UserRepository(factory) as repo:
            assert repo.rename(1, "Alicia") == 1
            assert repo.by_id(1).name == "Alicia"

    def test_bounds_is_reserved(self) -> None:
        with pytest.raises(ConfigurationError, match="reserved"):

            class BadRepository(Repository):
                @statement()
                def page(self, bounds: RowBounds) -> list[User]: ...

    def test_wraps_metadata(self) -> None:
        assert UserRepository.by_id.__name__ == "by_id"
