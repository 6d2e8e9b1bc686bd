"""
Builder protocol.

A builder holds everything needed to construct one artifact, including
promises for the builders it depends on. The cache calls build() with a
Resolver that turns those promises into shared artifacts.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any, Callable, Generic, TypeVar

if TYPE_CHECKING:
    from .cache import Resolver

A = TypeVar("A")


class Builder(ABC, Generic[A]):
    """
    Base class for artifact builders.

    Subclasses keep their dependencies as Promise attributes and resolve them
    inside build(). Builders should not be mutated once wrapped in a Promise:
    the cache only notices changes through explicit invalidation. Mutable
    inputs belong in the dynamic state returned by init_dyn_state(), changed
    through Cache.dyn_state_mut().
    """

    @abstractmethod
    def build(self, resolver: "Resolver") -> A:
        """Construct the artifact, resolving dependencies through `resolver`."""
        raise NotImplementedError

    def init_dyn_state(self) -> Any:
        """Initial dynamic state kept by the cache for this builder."""
        return None

    def __repr__(self) -> str:
        return f"<{type(self).__name__} at {id(self):#x}>"


class FunctionalBuilder(Builder[A]):
    """Builder backed by a plain callable taking the resolver."""

    def __init__(
        self,
        func: Callable[["Resolver"], A],
        name: str | None = None,
        init_state: Callable[[], Any] | None = None,
    ):
        self.func = func
        self.name = name or getattr(func, "__name__", type(self).__name__)
        self.init_state = init_state

    def build(self, resolver: "Resolver") -> A:
        return self.func(resolver)

    def init_dyn_state(self) -> Any:
        return self.init_state() if self.init_state is not None else None

    def __repr__(self) -> str:
        return f"<FunctionalBuilder {self.name} at {id(self):#x}>"


def builder(
    name: str | None = None,
    init_state: Callable[[], Any] | None = None,
) -> Callable[[Callable[["Resolver"], Any]], FunctionalBuilder]:
    """Decorator turning a function into a FunctionalBuilder."""

    def wrap(func: Callable[["Resolver"], Any]) -> FunctionalBuilder:
        return FunctionalBuilder(func, name=name, init_state=init_state)

    return wrap
