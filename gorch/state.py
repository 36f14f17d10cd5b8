"""Status codes that operators return to report fatal or informational outcomes."""

from __future__ import annotations

import threading
from typing import Callable

from gorch.errors import GorchError


def _cause_key(cause: BaseException | None) -> object:
    if cause is None:
        return None
    return (type(cause), getattr(cause, "args", str(cause)))


class State(GorchError):
    """An operator status; fatal ones stop the whole execution graph."""

    def __init__(
        self,
        code: int,
        msg: str,
        fatal: bool = False,
        cause: BaseException | None = None,
    ) -> None:
        super().__init__(msg)
        self.code = code
        self.msg = msg
        self.fatal = fatal
        self.cause = cause

    def __str__(self) -> str:
        if self.cause is not None:
            return f"{self.msg}{{{self.cause}}}"
        return self.msg

    def __repr__(self) -> str:
        return f"State(code={self.code!r}, msg={self.msg!r}, fatal={self.fatal!r}, cause={self.cause!r})"

    def _with_cause(self, cause: BaseException | None) -> State:
        return State(self.code, self.msg, self.fatal, cause)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, State):
            return NotImplemented
        return (
            self.code == other.code
            and self.msg == other.msg
            and self.fatal == other.fatal
            and _cause_key(self.cause) == _cause_key(other.cause)
        )

    def __hash__(self) -> int:
        return hash((self.code, self.msg, self.fatal))


class OperatorStates:
    """A named set of status codes; each code may be defined only once."""

    def __init__(self, name: str) -> None:
        self.name = name
        self._states: dict[int, State] = {}
        self._lock = threading.Lock()

    def _new_state(self, code: int, msg: str, fatal: bool) -> State:
        with self._lock:
            if code in self._states:
                raise ValueError(f'"{self.name}" status duplicate code: {code}')
            state = State(code, msg, fatal)
            self._states[code] = state
            return state

    def fatal(self, code: int, msg: str) -> State:
        """Define a status that interrupts the execution graph."""
        return self._new_state(code, msg, True)

    def fatal_cause(self, code: int, msg: str) -> Callable[[BaseException | None], State]:
        """Define a fatal status that wraps an underlying error."""
        base = self._new_state(code, msg, True)
        return base._with_cause

    def info(self, code: int, msg: str) -> State:
        """Define a status that is only recorded."""
        return self._new_state(code, msg, False)

    def info_cause(self, code: int, msg: str) -> Callable[[BaseException | None], State]:
        """Define an informational status that wraps an underlying error."""
        base = self._new_state(code, msg, False)
        return base._with_cause

    def __contains__(self, code: object) -> bool:
        return code in self._states