"""Pytest configuration and fixtures."""

from __future__ import annotations

from typing import Any

import pytest

from memodag.builder import Builder
from memodag.cache import Cache, Resolver
from memodag.observers import RecordingObserver
from memodag.promise import Promise


class Node(Builder[tuple]):
    """
    Test builder: counts its builds and returns (name, build number, deps).

    `deps` are promises resolved in order on every build.
    """

    def __init__(self, name: str, *deps: Promise[Any], log: list[str] | None = None):
        self.name = name
        self.deps = list(deps)
        self.builds = 0
        self.log = log

    def build(self, resolver: Resolver) -> tuple:
        resolved = [resolver.resolve(d) for d in self.deps]
        self.builds += 1
        if self.log is not None:
            self.log.append(self.name)
        return (self.name, self.builds, resolved)


class Failing(Builder[Any]):
    """Test builder that resolves its deps and then raises."""

    def __init__(self, name: str, *deps: Promise[Any], exc: Exception | None = None):
        self.name = name
        self.deps = list(deps)
        self.exc = exc or RuntimeError(f"{name} exploded")
        self.attempts = 0

    def build(self, resolver: Resolver) -> Any:
        self.attempts += 1
        for d in self.deps:
            resolver.resolve(d)
        raise self.exc


def node(name: str, *deps: Promise[Any], log: list[str] | None = None) -> Promise[Node]:
    return Promise(Node(name, *deps, log=log))


@pytest.fixture
def recorder() -> RecordingObserver:
    return RecordingObserver()


@pytest.fixture
def cache(recorder: RecordingObserver) -> Cache:
    """Cache wired to a recording observer."""
    return Cache(observer=recorder)


@pytest.fixture
def build_log() -> list[str]:
    """Order in which Node builders ran."""
    return []


@pytest.fixture
def chain(build_log: list[str]) -> tuple[Promise[Node], Promise[Node], Promise[Node]]:
    """A depends on B depends on C; returned as (a, b, c)."""
    c = node("C", log=build_log)
    b = node("B", c, log=build_log)
    a = node("A", b, log=build_log)
    return a, b, c
