"""Background routines started by GO and awaited by WAIT."""

from __future__ import annotations

import threading
import time
from datetime import timedelta
from typing import Callable

from gorch.errors import RoutineError
from gorch.interrupt import Interrupt


def _seconds(value: float | timedelta | None) -> float:
    if value is None:
        return 0.0
    if isinstance(value, timedelta):
        return value.total_seconds()
    return float(value)


class Routine:
    """A named piece of work that runs once in the background."""

    def __init__(self, name: str) -> None:
        self.name = name
        self.error: RoutineError | None = None
        self._lock = threading.Lock()
        self._done = threading.Event()
        self._started_at: float | None = None
        self._stopped_at: float | None = None
        self._block_cost = 0.0
        self._waiters: list[Callable[[], None]] = []

    def start(self, fn: Callable[[], None]) -> None:
        """Run ``fn`` in a new thread; a routine may be started only once."""
        with self._lock:
            if self._started_at is not None:
                raise RoutineError(f'routine "{self.name}" is started')
            self._started_at = time.monotonic()
        threading.Thread(
            target=self._run, args=(fn,), name=f"routine-{self.name}", daemon=True
        ).start()

    def _run(self, fn: Callable[[], None]) -> None:
        try:
            fn()
        except Exception as exc:
            self.error = RoutineError(f"routine {self.name} execute panic: {exc}")
        finally:
            with self._lock:
                self._stopped_at = time.monotonic()
                self._done.set()
                waiters, self._waiters = self._waiters, []
            for waiter in waiters:
                waiter()

    def _add_block(self, since: float) -> None:
        with self._lock:
            self._block_cost += time.monotonic() - since

    def wait(
        self,
        interrupt: Interrupt,
        timeout: float | timedelta | None = 0,
        from_start: bool = False,
        not_check_start: bool = False,
    ) -> None:
        """Wait for the routine to finish.

        With ``from_start`` the timeout counts from when the routine started.
        A zero timeout only checks without blocking. Raises RoutineError on
        timeout, interruption, or when the routine was never started.
        """
        limit = _seconds(timeout)
        wake = threading.Event()
        notify = wake.set
        with self._lock:
            if self._started_at is None and not not_check_start:
                raise RoutineError(f'routine "{self.name}" not started')
            if self._stopped_at is not None:
                return None
            if from_start and self._started_at is not None:
                elapsed = time.monotonic() - self._started_at
                if elapsed > limit:
                    raise RoutineError(f'routine "{self.name}" execute timeout')
                limit -= elapsed
            self._waiters.append(notify)

        interrupt._on_exit(notify)
        wait_start = time.monotonic()
        try:
            if limit > 0:
                wake.wait(limit)
            if self._done.is_set():
                self._add_block(wait_start)
                return None
            if interrupt.exited():
                raise RoutineError(f'wait routine "{self.name}" interrupted')
            if limit > 0:
                self._add_block(wait_start)
                raise RoutineError(f'wait routine "{self.name}" timeout')
            raise RoutineError(f'wait routine "{self.name}" not finished yet')
        finally:
            interrupt._off_exit(notify)
            with self._lock:
                if notify in self._waiters:
                    self._waiters.remove(notify)

    def block_cost(self) -> timedelta:
        """Total time spent blocked waiting for this routine."""
        with self._lock:
            return timedelta(seconds=self._block_cost)