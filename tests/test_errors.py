"""Tests for cycle detection and build failure handling."""

from __future__ import annotations

import pytest

from memodag.builder import FunctionalBuilder
from memodag.cache import Cache, Resolver
from memodag.errors import BuildFailed, CycleDetected, MemodagError, ResolverExpired
from memodag.events import EventKind
from memodag.promise import Promise

from conftest import Failing, node


# -----------------------------------------------------------------------------
# Cycles
# -----------------------------------------------------------------------------


def test_self_dependency_raises_cycle_detected(cache: Cache) -> None:
    p = Promise(FunctionalBuilder(lambda r: r.resolve(p), name="Selfish"))

    with pytest.raises(CycleDetected) as exc_info:
        cache.get(p)

    assert exc_info.value.node == p.node_id
    assert exc_info.value.path == [p.node_id, p.node_id]
    assert len(cache) == 0
    assert cache._stack == []


def test_two_node_cycle_reports_path(cache: Cache, recorder) -> None:
    holder: dict[str, Promise] = {}
    a = Promise(FunctionalBuilder(lambda r: r.resolve(holder["b"]), name="A"))
    b = Promise(FunctionalBuilder(lambda r: r.resolve(a), name="B"))
    holder["b"] = b

    with pytest.raises(CycleDetected) as exc_info:
        cache.get(a)

    err = exc_info.value
    assert err.path == [a.node_id, b.node_id, a.node_id]
    assert "dependency cycle detected" in str(err)
    assert isinstance(err, MemodagError)

    assert len(cache) == 0
    assert cache._stack == []
    assert recorder.of_kind(EventKind.CYCLE_DETECTED)[0].detail["path"] == [str(n) for n in err.path]
    assert len(recorder.of_kind(EventKind.BUILD_FAILED)) == 2


def test_cache_is_usable_after_cycle(cache: Cache) -> None:
    p = Promise(FunctionalBuilder(lambda r: r.resolve(p), name="Selfish"))
    with pytest.raises(CycleDetected):
        cache.get(p)

    q = node("Fine")
    assert cache.get(q)[0] == "Fine"


# -----------------------------------------------------------------------------
# Build failures
# -----------------------------------------------------------------------------


def test_failing_builder_raises_build_failed(cache: Cache) -> None:
    boom = ValueError("boom")
    p = Promise(Failing("Broken", exc=boom))

    with pytest.raises(BuildFailed) as exc_info:
        cache.get(p)

    err = exc_info.value
    assert err.cause is boom
    assert err.__cause__ is boom
    assert err.node == p.node_id
    assert err.label == "Broken"
    assert "boom" in str(err)
    assert p not in cache
    assert cache.known_builder_count == 0


def test_nested_failure_propagates_unchanged_and_rolls_back_edges(cache: Cache, recorder) -> None:
    leaf = node("Leaf")
    broken = Promise(Failing("Broken", leaf))
    top = node("Top", broken)

    with pytest.raises(BuildFailed) as exc_info:
        cache.get(top)

    # The innermost failure reaches the caller, not a wrapper around it
    assert exc_info.value.node == broken.node_id
    assert isinstance(exc_info.value.cause, RuntimeError)

    assert top not in cache
    assert broken not in cache
    assert leaf in cache
    assert cache.dependents_of(leaf) == frozenset()
    assert cache._stack == []

    failed = [e.node for e in recorder.of_kind(EventKind.BUILD_FAILED)]
    assert failed == [broken.node_id, top.node_id]


def test_failed_build_can_be_retried(cache: Cache) -> None:
    attempts = []

    def flaky(resolver):
        attempts.append(1)
        if len(attempts) == 1:
            raise OSError("transient")
        return "ok"

    p = Promise(FunctionalBuilder(flaky, name="Flaky"))

    with pytest.raises(BuildFailed):
        cache.get(p)
    assert cache.get(p) == "ok"
    assert cache.get(p) == "ok"
    assert len(attempts) == 2


def test_base_exceptions_are_not_wrapped(cache: Cache) -> None:
    p = Promise(Failing("Interrupted", exc=KeyboardInterrupt()))  # type: ignore[arg-type]

    with pytest.raises(KeyboardInterrupt):
        cache.get(p)

    assert p not in cache
    assert cache._stack == []


# -----------------------------------------------------------------------------
# Resolver scope
# -----------------------------------------------------------------------------


def test_resolver_expires_after_build(cache: Cache) -> None:
    stash: list[Resolver] = []

    def keep(resolver):
        stash.append(resolver)
        return 1

    p = Promise(FunctionalBuilder(keep, name="Keeper"))
    cache.get(p)

    resolver = stash[0]
    assert resolver.node == p.node_id
    with pytest.raises(ResolverExpired):
        resolver.resolve(node("Late"))


def test_resolver_reports_dependencies(cache: Cache) -> None:
    x = node("X")
    seen = []

    def build(resolver):
        resolver.resolve(x)
        seen.append(resolver.dependencies)
        return None

    cache.get(Promise(FunctionalBuilder(build)))

    assert seen == [frozenset({x.node_id})]
