"""Declarative injection of container instances into operator fields."""

from __future__ import annotations

import functools
import types
from dataclasses import dataclass
from typing import Annotated, Any, Union, get_args, get_origin

from gorch.container import Container
from gorch.errors import GorchError, InstanceNotFoundError, RegistrationError

_NONE_TYPE = type(None)


@dataclass(frozen=True)
class Inject:
    """Mark a field to be filled from the container before execution."""

    optional: bool = False
    key: Any = None


@dataclass(frozen=True)
class Extract:
    """Mark a field to be stored into the container after execution."""

    optional: bool = False
    replace: bool = False
    key: Any = None


@dataclass(frozen=True)
class FieldSpec:
    name: str
    key: Any
    optional: bool = False
    replace: bool = False


def _key_name(key: Any) -> str:
    if isinstance(key, type):
        return key.__name__
    return str(key)


def _strip_none(hint: Any) -> Any:
    origin = get_origin(hint)
    if origin is Union or origin is types.UnionType:
        remaining = tuple(arg for arg in get_args(hint) if arg is not _NONE_TYPE)
        if len(remaining) == 1:
            return remaining[0]
        if len(remaining) != len(get_args(hint)):
            return Union[remaining]
    return hint


def _split(hint: Any) -> tuple[Any, tuple]:
    hint = _strip_none(hint)
    if get_origin(hint) is Annotated:
        base, *meta = get_args(hint)
        return _strip_none(base), tuple(meta)
    return hint, ()


def _class_annotations(cls: type) -> dict[str, Any]:
    """Gather the annotations of ``cls`` and its bases, base classes first."""
    hints: dict[str, Any] = {}
    for klass in reversed(cls.__mro__):
        for name, hint in vars(klass).get("__annotations__", {}).items():
            if isinstance(hint, str):
                raise TypeError(
                    f"{cls.__qualname__}.{name}: string annotations are not supported"
                )
            hints[name] = hint
    return hints


@dataclass(frozen=True)
class OperatorFields:
    """The injected and extracted fields of one operator class."""

    cls: type
    injects: tuple[FieldSpec, ...] = ()
    extracts: tuple[FieldSpec, ...] = ()

    @property
    def _name(self) -> str:
        return self.cls.__qualname__

    def inject(self, op: Any, container: Container) -> None:
        """Fill ``op``'s inject fields; raise GorchError if a required one is missing."""
        for spec in self.injects:
            try:
                value = container.mutable(spec.key)
            except InstanceNotFoundError:
                if spec.optional:
                    continue
                raise GorchError(
                    f'"{self._name}" inject error: {_key_name(spec.key)} not found'
                ) from None
            setattr(op, spec.name, value)

    def extract(self, op: Any, container: Container) -> None:
        """Store ``op``'s extract fields; unset required ones are skipped."""
        for spec in self.extracts:
            value = getattr(op, spec.name, None)
            if value is None and not spec.optional:
                continue
            try:
                container.set(spec.key, value, spec.replace)
            except RegistrationError as exc:
                raise GorchError(f'"{self._name}" extract error: {exc}') from exc


@functools.lru_cache(maxsize=None)
def analyze_operator(cls: type) -> OperatorFields:
    """Collect the Inject and Extract markers from ``cls``'s annotations."""
    injects: list[FieldSpec] = []
    extracts: list[FieldSpec] = []
    for name, hint in _class_annotations(cls).items():
        base, meta = _split(hint)
        for marker in meta:
            if isinstance(marker, Inject):
                key = marker.key if marker.key is not None else base
                injects.append(FieldSpec(name, key, marker.optional))
            elif isinstance(marker, Extract):
                key = marker.key if marker.key is not None else base
                extracts.append(FieldSpec(name, key, marker.optional, marker.replace))
    return OperatorFields(cls, tuple(injects), tuple(extracts))