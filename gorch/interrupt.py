"""One-shot interruption signal shared by everything in a single execution."""

from __future__ import annotations

import threading
from datetime import timedelta
from typing import Callable


def _seconds(value: float | timedelta | None) -> float | None:
    if value is None:
        return None
    if isinstance(value, timedelta):
        return value.total_seconds()
    return float(value)


class Interrupt:
    """Stops an execution; the first ``exit`` wins and later ones are ignored."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._event = threading.Event()
        self._err: BaseException | None = None
        self._listeners: list[Callable[[], None]] = []

    def exit(self, err: BaseException | None = None) -> None:
        """Trigger the interrupt with ``err`` (``None`` for a clean stop)."""
        with self._lock:
            if self._event.is_set():
                return
            self._err = err
            self._event.set()
            listeners, self._listeners = self._listeners, []
        for listener in listeners:
            listener()

    def wait(self, timeout: float | timedelta | None = None) -> BaseException | None:
        """Block until interrupted and return the error it carries.

        Raises TimeoutError if ``timeout`` passes first.
        """
        if not self._event.wait(_seconds(timeout)):
            raise TimeoutError("interrupt not triggered")
        return self._err

    def error(self) -> BaseException | None:
        with self._lock:
            return self._err

    def exited(self) -> bool:
        return self._event.is_set()

    def _on_exit(self, callback: Callable[[], None]) -> None:
        with self._lock:
            if not self._event.is_set():
                self._listeners.append(callback)
                return
        callback()

    def _off_exit(self, callback: Callable[[], None]) -> None:
        with self._lock:
            if callback in self._listeners:
                self._listeners.remove(callback)