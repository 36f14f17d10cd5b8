"""Per-execution store of shared instances and background routines."""

from __future__ import annotations

import logging
import threading
from typing import Any, Protocol, runtime_checkable

from gorch.errors import InstanceNotFoundError, RegistrationError
from gorch.routine import Routine

_log = logging.getLogger(__name__)


@runtime_checkable
class Releasable(Protocol):
    """An instance that wants to be told when its execution is over."""

    def release(self) -> None: ...


def _key_name(key: Any) -> str:
    if isinstance(key, type):
        return key.__name__
    return str(key)


class Container:
    """Instances shared between the operators of one execution, keyed by type.

    The key defaults to the value's type; an explicit key (an abstract base,
    a generic alias such as ``list[int]``, a string) may be given instead.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._instances: dict[Any, Any] = {}
        self._routines: dict[str, Routine] = {}

    def register(self, value: Any, replace: bool = False, key: Any = None) -> None:
        """Store ``value``; raise RegistrationError on a duplicate key unless ``replace``."""
        if key is None:
            if value is None:
                raise RegistrationError()
            key = type(value)
        self.set(key, value, replace)

    def set(self, key: Any, value: Any, replace: bool = False) -> None:
        """Store ``value`` under ``key`` exactly as given."""
        with self._lock:
            if key in self._instances and not replace:
                raise RegistrationError(
                    f"register error: duplicate type, error type: {_key_name(key)}"
                )
            self._instances[key] = value

    def mutable(self, key: Any) -> Any:
        """Return the instance stored under ``key``; raise InstanceNotFoundError if none."""
        if key is None:
            raise RegistrationError()
        with self._lock:
            try:
                return self._instances[key]
            except KeyError:
                raise InstanceNotFoundError(key) from None

    def get(self, key: Any) -> Any:
        """Return the instance stored under ``key``, or None."""
        with self._lock:
            return self._instances.get(key)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._instances

    def get_routine(self, name: str) -> Routine:
        """Return the routine called ``name``, creating it on first use."""
        with self._lock:
            routine = self._routines.get(name)
            if routine is None:
                routine = Routine(name)
                self._routines[name] = routine
            return routine

    def release(self) -> None:
        """Call ``release`` on every releasable instance, then empty the container."""
        with self._lock:
            instances = list(self._instances.values())
            self._instances.clear()
            self._routines.clear()
        for instance in instances:
            if instance is None or not isinstance(instance, Releasable):
                continue
            try:
                instance.release()
            except Exception:
                _log.exception("release of %r failed", instance)