"""Processors that execute the nodes of an orchestration graph."""

from __future__ import annotations

import inspect
import logging
import threading
import time
import traceback
from abc import ABC, abstractmethod
from datetime import timedelta
from typing import Any, Iterable, Mapping, Sequence

from gorch.args import Args
from gorch.context import Context
from gorch.errors import (
    GorchError,
    OperatorPanicError,
    OperatorTimeoutError,
    PrepareError,
    RoutineError,
    SwitchCaseError,
)
from gorch.registry import OperatorFactory, get_operator_factory, spawn
from gorch.state import State

_log = logging.getLogger(__name__)


def recover_panic(exc: BaseException) -> dict[str, str]:
    """Describe an unexpected exception as log fields: its message and a one-line stack."""
    stack = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
    return {"executePanic": str(exc), "stack": stack.replace("\n", "\\n")}


def _seconds(value: float | timedelta | None) -> float:
    if value is None:
        return 0.0
    if isinstance(value, timedelta):
        return value.total_seconds()
    return float(value)


def _prepare_all(children: Iterable[Processor], label: str) -> None:
    for child in children:
        try:
            child.prepare()
        except GorchError as exc:
            raise PrepareError(f"{exc}\n{label}") from exc


_prepared_classes: set[type] = set()
_prepared_lock = threading.Lock()


def _prepare_class(cls: type) -> None:
    """Run a class-level ``prepare`` hook once per operator class."""
    hook = inspect.getattr_static(cls, "prepare", None)
    if not isinstance(hook, (classmethod, staticmethod)):
        return
    with _prepared_lock:
        if cls in _prepared_classes:
            return
        try:
            cls.prepare()
        except GorchError:
            raise
        except Exception as exc:
            raise PrepareError(f"prepare operator {cls.__qualname__} failed: {exc}") from exc
        _prepared_classes.add(cls)


class Processor(ABC):
    """A node of the graph: prepared once, then executed for each run."""

    def prepare(self) -> None:
        """Resolve everything the node needs before it can run."""

    @abstractmethod
    def execute(self, ctx: Context) -> None:
        """Run the node; failures are raised as GorchError."""


class OperatorCall(Processor):
    """A call of one registered operator with its arguments.

    Operators report failures by raising GorchError (or a State); any other
    exception is treated as a crash and reported as OperatorPanicError.
    """

    def __init__(
        self,
        name: str,
        args: Mapping[str, Any] | Args | None = None,
        *,
        ignore_error: bool = False,
        waits: Sequence[Wait] = (),
    ) -> None:
        self.name = name
        self.args = args if isinstance(args, Args) else Args.from_mapping(args)
        self.ignore_error = ignore_error
        self.waits = tuple(waits)
        self.factory: OperatorFactory | None = None
        self.seq = ""

    def prepare(self) -> None:
        factory = get_operator_factory(self.name)
        if factory is None:
            raise PrepareError(f"operator {self.name} not register")
        self.factory = factory
        self.seq = factory.seq
        _prepare_class(factory.cls)
        for wait in self.waits:
            wait.prepare()

    def execute(self, ctx: Context) -> None:
        if self.factory is None:
            raise PrepareError(f"operator {self.name} not prepared")
        if ctx.exited():
            return None

        call = ctx.clone()
        call.args = self.args
        call.switch_case = ctx.switch_case
        call.next_wrap = ctx.next_wrap
        try:
            try:
                self._run(ctx, call)
            finally:
                ctx.serial_skipped = call.serial_skipped
        except State as state:
            if not state.fatal:
                ctx.logger.info("operator %s returned status %s: %s", self.name, state.code, state)
                return None
            if self.ignore_error:
                ctx.logger.info(
                    "operator execute return fatal error, but ignore: operator=%s error=%s",
                    self.name,
                    state,
                )
                return None
            ctx.exit(state)
            error: GorchError = state
        except GorchError as exc:
            error = exc
        except Exception as exc:
            fields = recover_panic(exc)
            fields["panicOperator"] = self.name
            ctx.logger.error("operator execute panic: %s", fields)
            error = OperatorPanicError(self.name)
            error.__cause__ = exc
        else:
            return None

        if self.ignore_error:
            ctx.logger.warning(
                "operator execute error, ignore: operator=%s error=%s", self.name, error
            )
            return None
        ctx.logger.error("operator execute error: operator=%s error=%s", self.name, error)
        ctx.exit(error)
        raise error

    def _run(self, ctx: Context, call: Context) -> None:
        for wait in self.waits:
            wait.execute(call)
        if ctx.exited():
            return
        limit = self.args.arg("timeout").as_duration()
        if limit > timedelta(0):
            self._run_with_timeout(ctx, call, limit.total_seconds())
        else:
            self.factory.execute(call)

    def _run_with_timeout(self, ctx: Context, call: Context, seconds: float) -> None:
        factory = self.factory
        done = threading.Event()
        wake = threading.Event()
        failures: list[BaseException] = []

        def work() -> None:
            try:
                factory.execute(call)
            except BaseException as exc:
                failures.append(exc)
            finally:
                done.set()
                wake.set()

        notify = wake.set
        spawn(work)
        ctx.interrupt._on_exit(notify)
        try:
            wake.wait(seconds)
        finally:
            ctx.interrupt._off_exit(notify)

        if done.is_set():
            if failures:
                raise failures[0]
            return
        if ctx.exited():
            err = ctx.interrupt.error()
            if err is None:
                return
            if isinstance(err, GorchError):
                raise err
            raise GorchError(str(err)) from err
        raise OperatorTimeoutError()

    def __repr__(self) -> str:
        return f"OperatorCall({self.name!r})"


class Starter(Processor):
    """The entry point of a graph; waits for background routines before returning."""

    def __init__(
        self,
        body: Processor,
        on_finish: Processor | None = None,
        *,
        name: str = "",
        args: Mapping[str, Any] | Args | None = None,
    ) -> None:
        self.name = name
        self.body = body
        self.on_finish = on_finish
        self.args = args if isinstance(args, Args) else Args.from_mapping(args)

    def prepare(self) -> None:
        self.body.prepare()
        if self.on_finish is not None:
            self.on_finish.prepare()

    def execute(self, ctx: Context) -> None:
        run = ctx.clone()
        error: GorchError | None = None
        crash: Exception | None = None
        try:
            try:
                self.body.execute(run)
            except GorchError as exc:
                error = exc
            run.waiter.wait()
        except Exception as exc:
            crash = exc
        finally:
            if self.on_finish is not None:
                try:
                    self.on_finish.execute(run)
                except GorchError as exc:
                    ctx.logger.error("onFinishExecuteError: %s", exc)
        if crash is not None:
            fields = recover_panic(crash)
            fields["panic"] = str(crash)
            ctx.logger.error("engineExecutePanic: %s", fields)
            return None
        if error is not None:
            raise error
        return None


class Serial(Processor):
    """Runs its steps one after another until the execution is interrupted."""

    def __init__(self, steps: Sequence[Processor]) -> None:
        self.steps = tuple(steps)

    def prepare(self) -> None:
        _prepare_all(self.steps, "prepare serial processor error")

    def execute(self, ctx: Context) -> None:
        run = ctx.clone()
        for step in self.steps:
            if ctx.exited():
                break
            try:
                step.execute(run)
            except GorchError:
                pass
            if isinstance(step, Skip) and run.serial_skipped:
                break
        return None


class Skip(Processor):
    """An operator that may cut short the serial chain it belongs to."""

    def __init__(self, operator: OperatorCall) -> None:
        self.operator = operator

    def prepare(self) -> None:
        self.operator.prepare()

    def execute(self, ctx: Context) -> None:
        run = ctx.clone()
        try:
            self.operator.execute(run)
        finally:
            ctx.serial_skipped = run.serial_skipped


class Concurrent(Processor):
    """Runs its branches in parallel and waits for all of them."""

    def __init__(self, branches: Sequence[Processor]) -> None:
        self.branches = tuple(branches)

    def prepare(self) -> None:
        _prepare_all(self.branches, "prepare concurrent processor error")

    def execute(self, ctx: Context) -> None:
        _run_parallel(ctx.clone(), self.branches)
        return None


def _run_parallel(ctx: Context, processors: Iterable[Processor]) -> None:
    finished: list[threading.Event] = []
    for processor in processors:
        event = threading.Event()
        finished.append(event)

        def work(p: Processor = processor, e: threading.Event = event) -> None:
            try:
                p.execute(ctx)
            except GorchError:
                pass
            finally:
                e.set()

        spawn(work)
    for event in finished:
        event.wait()


class Go(Processor):
    """Starts its body as a named background routine."""

    def __init__(self, body: Processor, name: str) -> None:
        self.body = body
        self.name = name

    def prepare(self) -> None:
        self.body.prepare()

    def execute(self, ctx: Context) -> None:
        routine = ctx.get_routine(self.name)
        run = ctx.clone()
        ctx.waiter.add(1)

        def work() -> None:
            started = time.monotonic()
            try:
                try:
                    self.body.execute(run)
                except GorchError:
                    pass
                run.logger.info(
                    "routine_%s cost %.6fs", routine.name, time.monotonic() - started
                )
            finally:
                run.waiter.done()

        try:
            routine.start(work)
        except RoutineError as exc:
            ctx.waiter.done()
            ctx.logger.error("routine execute error: %s", exc)
        return None


class Wait(Processor):
    """Waits for a named routine, counting from now or from its start."""

    def __init__(
        self,
        name: str,
        timeout: float | timedelta = 0,
        total_timeout: float | timedelta = 0,
        *,
        ignore_error: bool = False,
        not_check_start: bool = False,
    ) -> None:
        self.name = name
        self.timeout = _seconds(timeout)
        self.total_timeout = _seconds(total_timeout)
        self.ignore_error = ignore_error
        self.not_check_start = not_check_start

    def prepare(self) -> None:
        return None

    def execute(self, ctx: Context) -> None:
        routine = ctx.container.get_routine(self.name)
        limit, from_start = self.timeout, False
        if self.total_timeout > 0:
            limit, from_start = self.total_timeout, True
        try:
            routine.wait(ctx.interrupt, limit, from_start, self.not_check_start)
        except RoutineError as exc:
            if not self.ignore_error:
                raise
            ctx.logger.warning("wait routine error: routine=%s error=%s", self.name, exc)
        return None


class OnFinish(Processor):
    """Work that runs once the main body of a starter has finished."""

    def __init__(self, body: Processor) -> None:
        self.body = body

    def prepare(self) -> None:
        self.body.prepare()

    def execute(self, ctx: Context) -> None:
        self.body.execute(ctx.clone())


class SwitchCase(Processor):
    """One named branch of a SWITCH directive."""

    def __init__(self, name: str, body: Processor) -> None:
        self.name = name
        self.body = body

    def prepare(self) -> None:
        self.body.prepare()

    def execute(self, ctx: Context) -> None:
        self.body.execute(ctx.clone())


class Switch(Processor):
    """Runs an operator that picks cases through ``ctx.switch``, then runs them."""

    def __init__(self, operator: OperatorCall, cases: Sequence[SwitchCase]) -> None:
        self.operator = operator
        self.cases = tuple(cases)
        self._by_name: dict[str, SwitchCase] = {}

    def prepare(self) -> None:
        self.operator.prepare()
        self._by_name = {}
        for case in self.cases:
            self._by_name[case.name] = case
            try:
                case.prepare()
            except GorchError as exc:
                raise PrepareError(f"{exc}\nprepare switch case processor error") from exc

    def execute(self, ctx: Context) -> None:
        chooser = ctx.clone()
        chosen: list[SwitchCase] = []
        seen: set[str] = set()
        lock = threading.Lock()

        def select(*names: str) -> None:
            with lock:
                for name in names:
                    if name in seen:
                        raise SwitchCaseError(f'duplicate switch case "{name}"')
                    seen.add(name)
                    case = self._by_name.get(name)
                    if case is None:
                        raise SwitchCaseError(f'not found switch case "{name}"')
                    chosen.append(case)

        chooser.switch_case = select
        self.operator.execute(chooser)

        if ctx.exited():
            return None
        if not chosen:
            raise SwitchCaseError(
                f'switch "{self.operator.name}" no matching switch case found'
            )
        if len(chosen) == 1:
            chosen[0].execute(ctx.clone())
            return None
        _run_parallel(ctx.clone(), chosen)
        return None


class Fragment(Processor):
    """A named, reusable piece of graph."""

    def __init__(self, name: str, body: Processor) -> None:
        self.name = name
        self.body = body

    def prepare(self) -> None:
        self.body.prepare()

    def execute(self, ctx: Context) -> None:
        self.body.execute(ctx.clone())


class Unfold(Processor):
    """Expands a fragment in place."""

    def __init__(self, fragment: Fragment) -> None:
        self.fragment = fragment

    def prepare(self) -> None:
        self.fragment.prepare()

    def execute(self, ctx: Context) -> None:
        self.fragment.execute(ctx.clone())


class _WrapLayer:
    def __init__(self, processor: Processor, inner: _WrapLayer | None = None) -> None:
        self.processor = processor
        self.inner = inner

    def execute(self, ctx: Context) -> None:
        run = ctx.clone()
        inner = self.inner
        if inner is not None:
            def proceed() -> None:
                inner.execute(ctx.clone())

            run.next_wrap = proceed
        self.processor.execute(run)


class Wrap(Processor):
    """Wrapper operators around a body; each reaches the next through ``ctx.next``."""

    def __init__(self, wrappers: Sequence[OperatorCall], body: Processor) -> None:
        self.wrappers = tuple(wrappers)
        self.body = body
        self._outer: _WrapLayer | None = None

    def prepare(self) -> None:
        _prepare_all((*self.wrappers, self.body), "prepare wrapLayer processor error")
        layer = _WrapLayer(self.body)
        for wrapper in reversed(self.wrappers):
            layer = _WrapLayer(wrapper, layer)
        self._outer = layer

    def execute(self, ctx: Context) -> None:
        if self._outer is None:
            raise PrepareError("wrap not prepared")
        self._outer.execute(ctx.clone())