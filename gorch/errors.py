"""Exception types raised by the execution engine."""

from __future__ import annotations

from typing import Any


class GorchError(Exception):
    """Base class of every error raised by the engine."""

    default_message = ""

    def __init__(self, message: str | None = None) -> None:
        super().__init__(self.default_message if message is None else message)

    @property
    def message(self) -> str:
        return str(self.args[0]) if self.args else ""

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, GorchError):
            return NotImplemented
        return type(self) is type(other) and self.args == other.args

    def __hash__(self) -> int:
        return hash((type(self), self.args))


class RegistrationError(GorchError):
    """An instance or operator could not be registered."""

    default_message = "register error: instance invalid"


def _describe(key: Any) -> str:
    if isinstance(key, type):
        return key.__name__
    return str(key)


class InstanceNotFoundError(GorchError, LookupError):
    """No instance is registered under the requested key."""

    def __init__(self, key: Any) -> None:
        self.key = key
        super().__init__(f"mutable error: ins not found, error type: {_describe(key)}")


class NotWrapOperatorError(GorchError):
    """``next`` was called outside a wrap layer."""

    default_message = "not wrap operator"


class NotSwitchOperatorError(GorchError):
    """``switch`` was called outside a SWITCH directive."""

    default_message = "not switch operator"


class PrepareError(GorchError):
    """A processor failed while being prepared."""


class EngineTimeoutError(GorchError):
    """The whole execution exceeded its time budget."""

    default_message = "engine execute timeout"


class OperatorTimeoutError(GorchError):
    """A single operator exceeded its ``timeout`` argument."""

    default_message = "operator execute timeout"


class OperatorPanicError(GorchError):
    """An operator raised an unexpected exception."""

    def __init__(self, operator: str) -> None:
        self.operator = operator
        super().__init__(f"operator {operator} execute panic")


class RoutineError(GorchError):
    """Starting or waiting for a background routine failed."""


class SwitchCaseError(GorchError):
    """A SWITCH directive selected an unknown or duplicate case, or none."""