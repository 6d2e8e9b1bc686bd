"""
Promises: identity handles for builder instances.

A Promise wraps one builder object. The cache keys everything on the
builder's identity, never on its contents, so two builders that happen to
compare equal still get separate artifacts.
"""

from __future__ import annotations

import weakref
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

B = TypeVar("B")


@dataclass(frozen=True, order=True)
class NodeId:
    """Opaque identifier of one builder instance."""

    value: int

    def __str__(self) -> str:
        return f"node-{self.value:x}"


def builder_label(builder: Any) -> str:
    """Human-readable name of a builder, used in events and errors."""
    name = getattr(builder, "name", None)
    if isinstance(name, str) and name:
        return name
    return type(builder).__name__


class Promise(Generic[B]):
    """
    Shared handle over a builder instance.

    Copies made with clone() refer to the very same builder, so they share
    one NodeId and therefore one cached artifact per cache.

    The builder must support weak references; the cache uses them to notice
    when a builder has been garbage collected and its id may be reused.
    """

    __slots__ = ("_builder", "_node_id")

    def __init__(self, builder: B):
        if isinstance(builder, Promise):
            raise TypeError("cannot wrap a Promise in another Promise; use clone()")
        try:
            weakref.ref(builder)
        except TypeError:
            raise TypeError(
                f"builder of type {type(builder).__name__} does not support weak references"
            ) from None
        self._builder = builder
        self._node_id = NodeId(id(builder))

    @property
    def builder(self) -> B:
        return self._builder

    @property
    def node_id(self) -> NodeId:
        return self._node_id

    @property
    def label(self) -> str:
        return builder_label(self._builder)

    def clone(self) -> "Promise[B]":
        """Return another handle to the same builder."""
        other = Promise.__new__(Promise)
        other._builder = self._builder
        other._node_id = self._node_id
        return other

    def __copy__(self) -> "Promise[B]":
        return self.clone()

    def __deepcopy__(self, memo: dict) -> "Promise[B]":
        # Copying a promise must never copy its builder.
        return self.clone()

    def __setattr__(self, name: str, value: Any) -> None:
        if hasattr(self, "_node_id"):
            raise AttributeError("Promise is immutable")
        object.__setattr__(self, name, value)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Promise):
            return NotImplemented
        return self._node_id == other._node_id

    def __hash__(self) -> int:
        return hash(self._node_id)

    def __repr__(self) -> str:
        return f"Promise({self.label}, {self._node_id})"
