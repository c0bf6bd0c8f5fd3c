"""
Value and row model.
Maps host values to engine bindings and engine column values back to rows.
"""

import json
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from enum import IntEnum
from typing import Any, Iterator, List, Optional, Tuple

from yeslite.errors import TypeMismatch


INT64_MIN = -(2 ** 63)
INT64_MAX = 2 ** 63 - 1


class DataType(IntEnum):
    """The five storage classes a column value can have."""
    NULL = 0
    INTEGER = 1
    REAL = 2
    TEXT = 3
    BLOB = 4


def type_of(value: Any) -> DataType:
    """
    Get the storage class of an engine value.

    Raises:
        TypeMismatch: If the value is not one of the five engine types
    """
    if value is None:
        return DataType.NULL
    elif isinstance(value, bool):
        # Bool is a subclass of int, handle it separately
        return DataType.INTEGER
    elif isinstance(value, int):
        return DataType.INTEGER
    elif isinstance(value, float):
        return DataType.REAL
    elif isinstance(value, str):
        return DataType.TEXT
    elif isinstance(value, (bytes, bytearray, memoryview)):
        return DataType.BLOB
    else:
        raise TypeMismatch(f"Unsupported value type: {type(value).__name__}")


def to_engine(value: Any) -> Any:
    """
    Convert a host value into something the engine can bind.

    Booleans become 0/1, byte buffers become bytes and containers are
    bound as their JSON text.

    Raises:
        TypeMismatch: If the value cannot be represented
    """
    if value is None or isinstance(value, (str, float, bytes)):
        return value
    if isinstance(value, bool):
        return 1 if value else 0
    if isinstance(value, int):
        if value < INT64_MIN or value > INT64_MAX:
            raise TypeMismatch(f"Integer {value} does not fit in a signed 64-bit value")
        return value
    if isinstance(value, (bytearray, memoryview)):
        return bytes(value)
    if isinstance(value, (list, tuple, dict)):
        try:
            return json.dumps(value)
        except (TypeError, ValueError) as e:
            raise TypeMismatch(f"Cannot encode {type(value).__name__} as JSON: {e}") from e
    raise TypeMismatch(f"Cannot bind value of type {type(value).__name__}")


@dataclass(frozen=True)
class ColumnInfo:
    """Output column of a prepared statement."""
    name: str
    type: Optional[str] = None

    def to_dict(self) -> dict:
        return {'name': self.name, 'type': self.type}


class Row(Sequence):
    """
    One result row: ordered (column name, value) pairs.

    Positional access and iteration work on values, like a tuple. String
    keys look up the first column with that name; duplicated names (for
    example from a join) stay reachable by position and through items().
    `name in row` tests column names.
    """

    __slots__ = ('_names', '_values')

    def __init__(self, names: Sequence[str], values: Sequence[Any]):
        if len(names) != len(values):
            raise ValueError(f"Row has {len(names)} names but {len(values)} values")
        self._names = tuple(names)
        self._values = tuple(values)

    def __getitem__(self, key):
        if isinstance(key, str):
            try:
                return self._values[self._names.index(key)]
            except ValueError:
                raise KeyError(key) from None
        return self._values[key]

    def __len__(self) -> int:
        return len(self._values)

    def __iter__(self) -> Iterator[Any]:
        return iter(self._values)

    def __contains__(self, name: object) -> bool:
        return name in self._names

    def get(self, name: str, default: Any = None) -> Any:
        try:
            return self[name]
        except KeyError:
            return default

    def keys(self) -> List[str]:
        return list(self._names)

    def values(self) -> List[Any]:
        return list(self._values)

    def items(self) -> List[Tuple[str, Any]]:
        return list(zip(self._names, self._values))

    def as_dict(self) -> dict:
        """Convert to a dict; for duplicated names the last column wins."""
        return dict(zip(self._names, self._values))

    def __eq__(self, other: object) -> bool:
        if isinstance(other, Row):
            return self._names == other._names and self._values == other._values
        if isinstance(other, Mapping):
            return self.as_dict() == dict(other)
        if isinstance(other, (list, tuple)):
            return list(self._values) == list(other)
        return NotImplemented

    __hash__ = None

    def __repr__(self) -> str:
        fields = ", ".join(f"{name}={value!r}" for name, value in self.items())
        return f"Row({fields})"
