"""Typed operator arguments as written in the DSL."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from enum import Enum
from typing import Any, Mapping


class ArgType(Enum):
    STRING = "string"
    BOOLEAN = "boolean"
    INTEGER = "integer"
    DURATION = "duration"


@dataclass(frozen=True)
class ArgValue:
    """One argument: a type and one or more values of it.

    Reading a value of another type, or past the end, gives that type's zero.
    """

    type: ArgType | None = None
    values: tuple = ()

    def _item(self, kind: ArgType, index: int, default: Any) -> Any:
        if self.type is kind and 0 <= index < len(self.values):
            return self.values[index]
        return default

    def _list(self, kind: ArgType) -> list:
        return list(self.values) if self.type is kind else []

    def as_int(self, index: int = 0) -> int:
        return self._item(ArgType.INTEGER, index, 0)

    def as_bool(self, index: int = 0) -> bool:
        return self._item(ArgType.BOOLEAN, index, False)

    def as_str(self, index: int = 0) -> str:
        return self._item(ArgType.STRING, index, "")

    def as_duration(self, index: int = 0) -> timedelta:
        return self._item(ArgType.DURATION, index, timedelta(0))

    def int_list(self) -> list[int]:
        return self._list(ArgType.INTEGER)

    def bool_list(self) -> list[bool]:
        return self._list(ArgType.BOOLEAN)

    def str_list(self) -> list[str]:
        return self._list(ArgType.STRING)

    def duration_list(self) -> list[timedelta]:
        return self._list(ArgType.DURATION)


EMPTY_ARG = ArgValue()


def _kind_of(item: Any) -> ArgType:
    if isinstance(item, bool):
        return ArgType.BOOLEAN
    if isinstance(item, int):
        return ArgType.INTEGER
    if isinstance(item, str):
        return ArgType.STRING
    if isinstance(item, timedelta):
        return ArgType.DURATION
    raise TypeError(f"unsupported argument value {item!r}")


def arg_value(value: Any) -> ArgValue:
    """Build an ArgValue from a scalar or a list of scalars of one type."""
    if isinstance(value, ArgValue):
        return value
    items = tuple(value) if isinstance(value, (list, tuple)) else (value,)
    kinds = {_kind_of(item) for item in items}
    if len(kinds) > 1:
        raise TypeError(f"argument list mixes types: {sorted(k.value for k in kinds)}")
    return ArgValue(kinds.pop() if kinds else None, items)


class Args:
    """The arguments given to one operator call."""

    def __init__(self, values: Mapping[str, ArgValue] | None = None) -> None:
        self._values: dict[str, ArgValue] = dict(values or {})

    @classmethod
    def from_mapping(cls, mapping: Mapping[str, Any] | None) -> Args:
        """Build from plain Python values, converting each with arg_value."""
        return cls({key: arg_value(value) for key, value in (mapping or {}).items()})

    def arg(self, key: str) -> ArgValue:
        return self._values.get(key, EMPTY_ARG)

    def has(self, key: str) -> bool:
        return key in self._values

    def __contains__(self, key: object) -> bool:
        return key in self._values

    def __repr__(self) -> str:
        return f"Args({self._values!r})"