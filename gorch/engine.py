"""Entry point of the engine: prepared graphs and their one-shot executors."""

from __future__ import annotations

import threading
import time
from concurrent.futures import CancelledError
from datetime import timedelta
from typing import Any, Mapping

from gorch.context import Context
from gorch.errors import EngineTimeoutError
from gorch.processor import Processor
from gorch.registry import spawn

DEFAULT_TIMEOUT = timedelta(seconds=8)
_CANCEL_POLL = 0.001


def _seconds(value: float | timedelta) -> float:
    if isinstance(value, timedelta):
        return value.total_seconds()
    return float(value)


class Executor:
    """Runs one prepared graph once, with a time budget and optional cancellation."""

    def __init__(
        self,
        ctx: Context,
        processor: Processor,
        timeout: float | timedelta = DEFAULT_TIMEOUT,
    ) -> None:
        self.ctx = ctx
        self.processor = processor
        self.timeout = _seconds(timeout)
        self._used = False

    def inject(self, *args: Any) -> None:
        """Make each value available to operators, keyed by its type."""
        for value in args:
            self.ctx.register(value, True)

    def set_timeout(self, timeout: float | timedelta) -> None:
        """Change the time budget; values that are not positive are ignored."""
        seconds = _seconds(timeout)
        if seconds > 0:
            self.timeout = seconds

    def execute(self, cancel: Any = None) -> None:
        """Run the graph and raise the error that interrupted it, if any.

        ``cancel`` is an optional event-like object; once its ``is_set()``
        is true the execution is interrupted with CancelledError. Running
        longer than the timeout interrupts it with EngineTimeoutError.
        """
        if self._used:
            raise RuntimeError("executor already executed")
        self._used = True

        ctx = self.ctx
        done = threading.Event()
        failures: list[BaseException] = []

        def work() -> None:
            try:
                self.processor.execute(ctx)
            except BaseException as exc:
                failures.append(exc)
            finally:
                done.set()

        started = time.monotonic()
        deadline = started + self.timeout
        try:
            spawn(work)
            while True:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    ctx.exit(EngineTimeoutError())
                    done.wait()
                    break
                step = remaining if cancel is None else min(remaining, _CANCEL_POLL)
                if done.wait(step):
                    ctx.exit(failures[0] if failures else None)
                    break
                if cancel is not None and cancel.is_set():
                    ctx.exit(CancelledError("context canceled"))
                    done.wait()
                    break
            error = ctx.interrupt.error()
        finally:
            ctx.logger.info("total cost %.6fs", time.monotonic() - started)
            ctx.release()
        if error is not None:
            raise error


class Engine:
    """Prepared starter graphs, each run through a fresh Executor."""

    def __init__(self, starters: Mapping[str, Processor]) -> None:
        self._starters: dict[str, Processor] = dict(starters)
        for starter in self._starters.values():
            starter.prepare()

    def start(self, key: str) -> Executor | None:
        """An executor for the starter called ``key``, or None if there is none."""
        starter = self._starters.get(key)
        if starter is None:
            return None
        return Executor(Context(), starter, DEFAULT_TIMEOUT)

    def __contains__(self, key: object) -> bool:
        return key in self._starters