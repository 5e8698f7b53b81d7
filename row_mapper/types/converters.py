"""Value converters between host values and store (column) values.

A converter handles one Python type. ``to_store`` prepares a bound parameter
for the driver; ``from_store`` turns a raw column value into the declared
Python type. Both pass ``None`` straight through.

The registry resolves a converter for a ``(python_type, store_type)`` pair,
falling back to the Python type alone, then to its base classes, then to the
store type alone. ``UnknownConverter`` defers the decision to the runtime
value and memoizes the choice per value type.
"""

from __future__ import annotations

import enum
import threading
import uuid
from datetime import date, datetime, time
from decimal import Decimal
from typing import Any

_TEXT_STORE_TYPES = frozenset({"CHAR", "VARCHAR", "NVARCHAR", "TEXT", "CLOB", "STRING"})
_INTEGER_STORE_TYPES = frozenset(
    {"INTEGER", "INT", "BIGINT", "SMALLINT", "TINYINT", "BIT", "NUMBER"}
)
_FLOAT_STORE_TYPES = frozenset({"REAL", "FLOAT", "DOUBLE"})


def normalize_store_type(store_type: str | None) -> str | None:
    if store_type is None:
        return None
    name = store_type.strip().upper()
    # VARCHAR(255) -> VARCHAR
    paren = name.find("(")
    if paren != -1:
        name = name[:paren].strip()
    return name or None


class ValueConverter:
    """Base converter: identity in both directions."""

    python_type: type = object

    def to_store(self, value: Any, store_type: str | None = None) -> Any:
        if value is None:
            return None
        return self._to_store(value, normalize_store_type(store_type))

    def from_store(self, value: Any) -> Any:
        if value is None:
            return None
        return self._from_store(value)

    def _to_store(self, value: Any, store_type: str | None) -> Any:
        return value

    def _from_store(self, value: Any) -> Any:
        return value

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"


class ObjectConverter(ValueConverter):
    """Pass-through converter for untyped values."""


class IntConverter(ValueConverter):
    python_type = int

    def _to_store(self, value: Any, store_type: str | None) -> Any:
        if store_type in _TEXT_STORE_TYPES:
            return str(value)
        return int(value)

    def _from_store(self, value: Any) -> int:
        if isinstance(value, bytes):
            value = value.decode()
        return int(value)


class FloatConverter(ValueConverter):
    python_type = float

    def _to_store(self, value: Any, store_type: str | None) -> Any:
        return float(value)

    def _from_store(self, value: Any) -> float:
        return float(value)


class DecimalConverter(ValueConverter):
    """Decimal values, optionally quantized to a fixed numeric scale."""

    python_type = Decimal

    def __init__(self, scale: int | None = None) -> None:
        self.scale = scale

    def _quantize(self, value: Decimal) -> Decimal:
        if self.scale is None:
            return value
        return value.quantize(Decimal(1).scaleb(-self.scale))

    def _to_store(self, value: Any, store_type: str | None) -> Any:
        number = self._quantize(value if isinstance(value, Decimal) else Decimal(str(value)))
        if store_type in _FLOAT_STORE_TYPES:
            return float(number)
        if store_type in _TEXT_STORE_TYPES:
            return str(number)
        return number

    def _from_store(self, value: Any) -> Decimal:
        if isinstance(value, Decimal):
            return self._quantize(value)
        return self._quantize(Decimal(str(value)))

    def __repr__(self) -> str:
        return f"DecimalConverter(scale={self.scale})"


class StrConverter(ValueConverter):
    python_type = str

    def _to_store(self, value: Any, store_type: str | None) -> Any:
        return str(value)

    def _from_store(self, value: Any) -> str:
        if isinstance(value, (bytes, bytearray, memoryview)):
            return bytes(value).decode("utf-8")
        return str(value)


class BoolConverter(ValueConverter):
    python_type = bool

    _TRUE = frozenset({"1", "t", "true", "y", "yes", "on"})
    _FALSE = frozenset({"0", "f", "false", "n", "no", "off", ""})

    def _to_store(self, value: Any, store_type: str | None) -> Any:
        flag = bool(value)
        if store_type in _INTEGER_STORE_TYPES:
            return int(flag)
        if store_type in _TEXT_STORE_TYPES:
            return "true" if flag else "false"
        return flag

    def _from_store(self, value: Any) -> bool:
        if isinstance(value, str):
            text = value.strip().lower()
            if text in self._TRUE:
                return True
            if text in self._FALSE:
                return False
            raise ValueError(f"not a boolean: {value!r}")
        return bool(value)


class BytesConverter(ValueConverter):
    python_type = bytes

    def _to_store(self, value: Any, store_type: str | None) -> Any:
        return bytes(value)

    def _from_store(self, value: Any) -> bytes:
        if isinstance(value, str):
            return value.encode("utf-8")
        return bytes(value)


class DateConverter(ValueConverter):
    python_type = date

    def _to_store(self, value: Any, store_type: str | None) -> Any:
        if store_type in _TEXT_STORE_TYPES:
            return value.isoformat()
        return value

    def _from_store(self, value: Any) -> date:
        if isinstance(value, datetime):
            return value.date()
        if isinstance(value, date):
            return value
        return date.fromisoformat(str(value)[:10])


class DateTimeConverter(ValueConverter):
    python_type = datetime

    def _to_store(self, value: Any, store_type: str | None) -> Any:
        if store_type in _TEXT_STORE_TYPES:
            return value.isoformat(sep=" ")
        return value

    def _from_store(self, value: Any) -> datetime:
        if isinstance(value, datetime):
            return value
        if isinstance(value, date):
            return datetime(value.year, value.month, value.day)
        return datetime.fromisoformat(str(value))


class TimeConverter(ValueConverter):
    python_type = time

    def _to_store(self, value: Any, store_type: str | None) -> Any:
        if store_type in _TEXT_STORE_TYPES:
            return value.isoformat()
        return value

    def _from_store(self, value: Any) -> time:
        if isinstance(value, time):
            return value
        if isinstance(value, datetime):
            return value.time()
        return time.fromisoformat(str(value))


class UUIDConverter(ValueConverter):
    python_type = uuid.UUID

    def _to_store(self, value: Any, store_type: str | None) -> Any:
        if store_type in ("BINARY", "VARBINARY", "BLOB"):
            return value.bytes
        return str(value)

    def _from_store(self, value: Any) -> uuid.UUID:
        if isinstance(value, uuid.UUID):
            return value
        if isinstance(value, (bytes, bytearray)) and len(value) == 16:
            return uuid.UUID(bytes=bytes(value))
        return uuid.UUID(str(value))


class EnumConverter(ValueConverter):
    """Stores an enum member by its value (or by name when values are not scalar)."""

    def __init__(self, enum_type: type[enum.Enum]) -> None:
        self.python_type = enum_type
        self.enum_type = enum_type

    def _to_store(self, value: Any, store_type: str | None) -> Any:
        if not isinstance(value, self.enum_type):
            value = self._from_store(value)
        return value.value

    def _from_store(self, value: Any) -> enum.Enum:
        if isinstance(value, self.enum_type):
            return value
        try:
            return self.enum_type(value)
        except ValueError:
            if isinstance(value, str) and value in self.enum_type.__members__:
                return self.enum_type[value]
            raise

    def __repr__(self) -> str:
        return f"EnumConverter({self.enum_type.__name__})"


class EnumOrdinalConverter(ValueConverter):
    """Stores an enum member by its declaration position."""

    def __init__(self, enum_type: type[enum.Enum]) -> None:
        self.python_type = enum_type
        self.enum_type = enum_type
        self._members = list(enum_type)

    def _to_store(self, value: Any, store_type: str | None) -> Any:
        return self._members.index(value)

    def _from_store(self, value: Any) -> enum.Enum:
        ordinal = int(value)
        try:
            return self._members[ordinal]
        except IndexError:
            raise ValueError(
                f"{ordinal} is not a valid ordinal for {self.enum_type.__name__}"
            ) from None

    def __repr__(self) -> str:
        return f"EnumOrdinalConverter({self.enum_type.__name__})"


class UnknownConverter(ValueConverter):
    """Chooses the real converter from the runtime value on first use."""

    def __init__(self, registry: ConverterRegistry) -> None:
        self._registry = registry
        self._resolved: dict[type, ValueConverter] = {}

    def resolve(self, value: Any) -> ValueConverter:
        value_type = type(value)
        converter = self._resolved.get(value_type)
        if converter is None:
            converter = self._registry.get(value_type) or ObjectConverter()
            self._resolved[value_type] = converter
        return converter

    def _to_store(self, value: Any, store_type: str | None) -> Any:
        return self.resolve(value).to_store(value, store_type)


_TYPE_ALIASES: dict[str, type] = {
    "int": int,
    "integer": int,
    "long": int,
    "short": int,
    "float": float,
    "double": float,
    "decimal": Decimal,
    "bigdecimal": Decimal,
    "str": str,
    "string": str,
    "bool": bool,
    "boolean": bool,
    "bytes": bytes,
    "date": date,
    "datetime": datetime,
    "timestamp": datetime,
    "time": time,
    "uuid": uuid.UUID,
    "object": object,
    "any": object,
}

_STORE_DEFAULTS: dict[str, type] = {
    "INTEGER": int,
    "INT": int,
    "BIGINT": int,
    "SMALLINT": int,
    "TINYINT": int,
    "REAL": float,
    "FLOAT": float,
    "DOUBLE": float,
    "NUMERIC": Decimal,
    "DECIMAL": Decimal,
    "CHAR": str,
    "VARCHAR": str,
    "NVARCHAR": str,
    "TEXT": str,
    "CLOB": str,
    "BOOLEAN": bool,
    "BLOB": bytes,
    "DATE": date,
    "TIMESTAMP": datetime,
    "DATETIME": datetime,
    "TIME": time,
    "UUID": uuid.UUID,
}


class ConverterRegistry:
    """Converter lookup keyed by (python type, store type)."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._converters: dict[type, dict[str | None, ValueConverter]] = {}
        self._named: dict[str, ValueConverter] = {}
        self._aliases: dict[str, type] = dict(_TYPE_ALIASES)
        self.unknown = UnknownConverter(self)
        self._register_defaults()

    def _register_defaults(self) -> None:
        for converter in (
            IntConverter(),
            FloatConverter(),
            DecimalConverter(),
            StrConverter(),
            BoolConverter(),
            BytesConverter(),
            DateTimeConverter(),
            DateConverter(),
            TimeConverter(),
            UUIDConverter(),
            ObjectConverter(),
        ):
            self.register(converter.python_type, converter)
        self.register(bytearray, BytesConverter())
        self.register(memoryview, BytesConverter())

    def register(
        self,
        python_type: type,
        converter: ValueConverter,
        store_type: str | None = None,
        *,
        name: str | None = None,
    ) -> None:
        with self._lock:
            self._converters.setdefault(python_type, {})[
                normalize_store_type(store_type)
            ] = converter
            if name is not None:
                self._named[name] = converter

    def register_alias(self, alias: str, python_type: type) -> None:
        self._aliases[alias.lower()] = python_type

    def resolve_type(self, name: str) -> type:
        """Resolve a marker/type attribute such as ``int`` or ``datetime``."""
        try:
            return self._aliases[name.lower()]
        except KeyError:
            raise KeyError(f"Unknown type alias '{name}'") from None

    def by_name(self, name: str) -> ValueConverter:
        try:
            return self._named[name]
        except KeyError:
            raise KeyError(f"No converter registered under the name '{name}'") from None

    def get(
        self, python_type: Any, store_type: str | None = None
    ) -> ValueConverter | None:
        """Find a converter, or None when nothing handles *python_type*."""
        store_type = normalize_store_type(store_type)
        if python_type is None or python_type is Any or python_type is object:
            default = _STORE_DEFAULTS.get(store_type) if store_type else None
            if default is not None:
                return self.get(default)
            return self._converters[object][None]
        if not isinstance(python_type, type):
            return None
        for klass in python_type.__mro__:
            if klass is object:
                break
            by_store = self._converters.get(klass)
            if by_store is None:
                continue
            if store_type in by_store:
                return by_store[store_type]
            if None in by_store:
                return by_store[None]
        if issubclass(python_type, enum.Enum):
            converter = EnumConverter(python_type)
            self.register(python_type, converter)
            return converter
        return None

    def has(self, python_type: Any, store_type: str | None = None) -> bool:
        return self.get(python_type, store_type) is not None

    def for_value(self, value: Any, store_type: str | None = None) -> ValueConverter:
        if value is None:
            return self.unknown
        return self.get(type(value), store_type) or self.unknown
