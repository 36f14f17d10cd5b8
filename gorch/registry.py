"""Global registry of operator classes and the thread pool used to run work."""

from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Protocol, runtime_checkable

from gorch.context import Context
from gorch.errors import GorchError, RegistrationError
from gorch.injection import OperatorFields, analyze_operator

_log = logging.getLogger(__name__)


@runtime_checkable
class Operator(Protocol):
    """What an operator class provides; it is built with no arguments."""

    def execute(self, ctx: Context) -> None: ...


class OperatorFactory:
    """Creates and runs instances of one operator class."""

    def __init__(self, cls: type, seq: int) -> None:
        if not callable(getattr(cls, "execute", None)):
            raise TypeError(f"{cls!r} has no execute method")
        number = int(seq)
        if number < 0:
            raise ValueError(f"operator sequence must not be negative: {seq}")
        self.cls = cls
        self.seq = str(number)
        self.fields: OperatorFields = analyze_operator(cls)

    def execute(self, ctx: Context) -> None:
        """Run a new instance: inject fields, execute, then extract fields.

        Fields are extracted even when execution raises; the original error
        is kept and an extraction failure at that point is only logged.
        """
        op = self.cls()
        self.fields.inject(op, ctx.container)
        try:
            op.execute(ctx)
        except BaseException:
            try:
                self.fields.extract(op, ctx.container)
            except GorchError:
                _log.exception("extract after failed execute of %s", self.cls.__qualname__)
            raise
        self.fields.extract(op, ctx.container)

    def __repr__(self) -> str:
        return f"OperatorFactory({self.cls.__qualname__}, seq={self.seq})"


class OperatorRegistry:
    """Operator factories by name; names and sequence numbers are unique."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._by_name: dict[str, OperatorFactory] = {}
        self._by_seq: dict[str, str] = {}

    def register(self, name: str, cls: type, seq: int) -> OperatorFactory:
        factory = OperatorFactory(cls, seq)
        with self._lock:
            if name in self._by_name:
                raise RegistrationError(f'register operator "{name}" error: name conflict')
            if factory.seq in self._by_seq:
                raise RegistrationError(
                    f'register operator "{name}" error: seq conflict {factory.seq}'
                )
            self._by_name[name] = factory
            self._by_seq[factory.seq] = name
        return factory

    def get(self, name: str) -> OperatorFactory | None:
        with self._lock:
            return self._by_name.get(name)

    def clear(self) -> None:
        with self._lock:
            self._by_name.clear()
            self._by_seq.clear()

    def __contains__(self, name: object) -> bool:
        with self._lock:
            return name in self._by_name


class _Runner:
    """Runs background work on a pool, or on fresh daemon threads."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._pool: Any = None

    def use(self, pool: Any) -> None:
        if pool is not None and not callable(getattr(pool, "submit", None)):
            raise TypeError(f"{pool!r} has no submit method")
        with self._lock:
            self._pool = pool

    def run(self, fn: Callable[[], Any]) -> None:
        with self._lock:
            pool = self._pool
        if pool is None:
            threading.Thread(target=fn, daemon=True).start()
        else:
            pool.submit(fn)


_registry = OperatorRegistry()
_runner = _Runner()


def register_operator(name: str, cls: type, seq: int) -> OperatorFactory:
    """Register ``cls`` globally under a unique name and sequence number."""
    return _registry.register(name, cls, seq)


def get_operator_factory(name: str) -> OperatorFactory | None:
    return _registry.get(name)


def clear_operators() -> None:
    _registry.clear()


def set_goroutine_pool(pool: Any) -> None:
    """Run background work on ``pool`` (anything with ``submit``); None restores threads."""
    _runner.use(pool)


def spawn(fn: Callable[[], Any]) -> None:
    """Run ``fn`` in the background."""
    _runner.run(fn)