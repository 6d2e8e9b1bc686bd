"""
Exception types raised by the artifact cache.

Every error the library raises derives from MemodagError so callers can
catch cache failures without catching unrelated exceptions.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .promise import NodeId


class MemodagError(Exception):
    """Base class for all memodag errors."""


class CycleDetected(MemodagError):
    """
    A node was resolved again while its own build was still running.

    Attributes:
        node: The node that was re-entered
        path: Nodes on the build stack, from the first occurrence of `node`
            up to the resolution that closed the cycle (ends with `node`)
    """

    def __init__(self, node: "NodeId", path: list["NodeId"]):
        self.node = node
        self.path = list(path)
        chain = " -> ".join(str(n) for n in self.path)
        super().__init__(f"dependency cycle detected: {chain}")


class BuildFailed(MemodagError):
    """
    A builder raised while constructing its artifact.

    The original exception is available as `cause` and is also chained as
    `__cause__`.
    """

    def __init__(self, node: "NodeId", label: str, cause: BaseException):
        self.node = node
        self.label = label
        self.cause = cause
        super().__init__(f"build of {label} ({node}) failed: {type(cause).__name__}: {cause}")


class ResolverExpired(MemodagError):
    """A resolver was used after the build it was created for had finished."""


class ConfigError(MemodagError, ValueError):
    """Invalid memodag configuration."""
