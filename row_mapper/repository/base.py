"""Repository base classes.

Thin wrappers over Session for DDD-oriented usage. Methods decorated with
``@statement`` are bound to mapped statements by name::

    class UserRepository(Repository):
        namespace = "user"

        @statement()
        def by_id(self, id: int) -> User | None: ...

        @statement("user.search", many=True)
        def search(self, name: str, active: bool) -> list[User]: ...

A method with a single argument passes it as the parameter object; with
several, they are passed by name.
"""

from __future__ import annotations

import functools
import inspect
from collections.abc import Callable
from typing import Any, TypeVar

from row_mapper.core.enums import StatementKind
from row_mapper.core.exceptions import ConfigurationError
from row_mapper.core.session import Session, SessionFactory
from row_mapper.mapping.statement import DEFAULT_ROW_BOUNDS, RowBounds

F = TypeVar("F", bound=Callable[..., Any])


class Repository:
    """Base repository class for DDD-oriented usage.

    Accepts an open Session, or a SessionFactory in which case the
    repository opens (and owns) a session of its own.
    """

    namespace: str = ""

    def __init__(self, session: Session | SessionFactory) -> None:
        if isinstance(session, SessionFactory):
            self.session = session.open_session()
            self._owns_session = True
        else:
            self.session = session
            self._owns_session = False

    def statement_id(self, name: str) -> str:
        if "." in name or not self.namespace:
            return name
        return f"{self.namespace}.{name}"

    def close(self) -> None:
        """Close the session if this repository opened it."""
        if self._owns_session:
            self.session.close()

    def __enter__(self) -> Repository:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()


def statement(statement_id: str | None = None, *, many: bool = False) -> Callable[[F], F]:
    """Bind a Repository method to a mapped statement.

    Args:
        statement_id: Statement name; relative names are resolved against
            the repository's ``namespace``. Defaults to the method name.
        many: For SELECT statements, return every result instead of one.

    The decorated method's body is never run. Writes return the affected
    row count. A ``bounds`` keyword argument is passed through to list
    selects.
    """

    def decorator(func: F) -> F:
        signature = inspect.signature(func)
        names = [name for name in signature.parameters if name != "self"]
        if "bounds" in names:
            raise ConfigurationError(f"{func.__qualname__}: 'bounds' is reserved for RowBounds")

        @functools.wraps(func)
        def wrapper(self: Repository, *args: Any, bounds: RowBounds = DEFAULT_ROW_BOUNDS, **kwargs: Any) -> Any:
            resolved = self.statement_id(statement_id or func.__name__)
            bound = signature.bind(self, *args, **kwargs)
            bound.apply_defaults()
            values = {name: bound.arguments[name] for name in names}

            session = self.session
            kind = session.configuration.get_statement(resolved).kind
            if kind in (StatementKind.SELECT, StatementKind.UNKNOWN):
                if many:
                    if len(values) == 1:
                        return session.select_list(resolved, *values.values(), bounds=bounds)
                    return session.select_list(resolved, bounds=bounds, **values)
                if len(values) == 1:
                    return session.select_one(resolved, *values.values())
                return session.select_one(resolved, **values)
            if len(values) == 1:
                return session.update(resolved, *values.values())
            return session.update(resolved, **values)

        return wrapper  # type: ignore[return-value]

    return decorator
