"""The context each processor and operator receives during an execution."""

from __future__ import annotations

import logging
import threading
from typing import Any, Callable

from gorch.args import ArgValue, Args
from gorch.container import Container
from gorch.errors import NotSwitchOperatorError, NotWrapOperatorError
from gorch.interrupt import Interrupt
from gorch.routine import Routine

_default_logger = logging.getLogger("gorch")


class _WaitGroup:
    """Counts outstanding background work and lets callers wait for it."""

    def __init__(self) -> None:
        self._cond = threading.Condition()
        self._count = 0

    def add(self, delta: int = 1) -> None:
        with self._cond:
            self._count += delta
            if self._count < 0:
                raise ValueError("negative wait group counter")
            if self._count == 0:
                self._cond.notify_all()

    def done(self) -> None:
        self.add(-1)

    def wait(self, timeout: float | None = None) -> bool:
        with self._cond:
            return self._cond.wait_for(lambda: self._count == 0, timeout)


class Context:
    """Execution state handed to operators.

    The container, interrupt, logger and waiter are shared by every clone
    within one execution; arguments and control hooks belong to one call.
    """

    def __init__(
        self,
        container: Container | None = None,
        interrupt: Interrupt | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.container = container if container is not None else Container()
        self.interrupt = interrupt if interrupt is not None else Interrupt()
        self.logger = logger if logger is not None else _default_logger
        self.args = Args()
        self.waiter = _WaitGroup()
        self.serial_skipped = False
        self.next_wrap: Callable[[], Any] | None = None
        self.switch_case: Callable[..., Any] | None = None

    def clone(self) -> Context:
        """A fresh context sharing this execution's state, with no args or hooks."""
        copy = Context(self.container, self.interrupt, self.logger)
        copy.waiter = self.waiter
        return copy

    def next(self) -> Any:
        """Run the next wrap layer; only valid inside a WRAP operator."""
        if self.next_wrap is None:
            raise NotWrapOperatorError()
        return self.next_wrap()

    def switch(self, *cases: str) -> Any:
        """Select the named cases; only valid inside a SWITCH operator."""
        if self.switch_case is None:
            raise NotSwitchOperatorError()
        return self.switch_case(*cases)

    def skip_serial(self) -> None:
        """Skip the rest of the enclosing serial chain."""
        self.serial_skipped = True

    def get_routine(self, name: str) -> Routine:
        return self.container.get_routine(name)

    def arg(self, key: str) -> ArgValue:
        return self.args.arg(key)

    def has(self, key: str) -> bool:
        return self.args.has(key)

    def register(self, value: Any, replace: bool = False, key: Any = None) -> None:
        self.container.register(value, replace, key)

    def mutable(self, key: Any) -> Any:
        return self.container.mutable(key)

    def exit(self, err: BaseException | None = None) -> None:
        self.interrupt.exit(err)

    def exited(self) -> bool:
        return self.interrupt.exited()

    def release(self) -> None:
        """Release the shared container at the end of an execution."""
        self.container.release()