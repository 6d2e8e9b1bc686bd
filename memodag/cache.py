"""
The artifact cache and its resolver.

The cache maps node identities to built artifacts and keeps both edge
directions of the dependency graph:

    dependencies: node -> nodes its latest build resolved
    dependents:   node -> nodes whose builds resolved it

Artifacts are built lazily by get(). Invalidating a node removes it together
with everything that transitively depended on it; those nodes are rebuilt on
their next access.

Next to artifacts the cache keeps one dynamic state object per builder,
created by the builder's init_dyn_state(). States survive invalidation and
clear_artifacts(); only purge(), clear_all() and garbage_collection() drop
them.
"""

from __future__ import annotations

import functools
import logging
import threading
import weakref
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, TypeVar

from .errors import BuildFailed, CycleDetected, MemodagError, ResolverExpired
from .events import CacheEvent, EventKind
from .observers import NoopObserver, Observer
from .promise import NodeId, Promise

logger = logging.getLogger(__name__)


@dataclass
class Entry:
    """Cache record of one built node."""

    artifact: Any
    label: str
    dependencies: set[NodeId] = field(default_factory=set)
    dependents: set[NodeId] = field(default_factory=set)


class Resolver:
    """
    Handed to Builder.build(); resolves dependency promises to artifacts.

    Every resolution records a dependency edge from the node being built to
    the resolved node. A resolver is only valid during the build it was
    created for.
    """

    __slots__ = ("_cache", "_promise", "_dependencies")

    def __init__(self, cache: "Cache", promise: Promise[Any]):
        self._cache: Cache | None = cache
        self._promise = promise
        self._dependencies: set[NodeId] = set()

    @property
    def node(self) -> NodeId:
        """The node whose build this resolver serves."""
        return self._promise.node_id

    @property
    def dependencies(self) -> frozenset[NodeId]:
        return frozenset(self._dependencies)

    @property
    def state(self) -> Any:
        """Dynamic state of the builder being built (created on first use)."""
        if self._cache is None:
            raise ResolverExpired(f"resolver for {self.node} used after its build finished")
        return self._cache._ensure_dyn_state(self._promise)

    def resolve(self, promise: Promise[Any]) -> Any:
        """Return the artifact of `promise`, building it first if needed."""
        cache = self._cache
        if cache is None:
            raise ResolverExpired(f"resolver for {self.node} used after its build finished")

        # Inlined hit path: one frame fewer per dependency level
        entry = cache._lookup_entry(promise)
        if entry is not None:
            cache._emit(EventKind.CACHE_HIT, promise.node_id, label=entry.label)
            artifact = entry.artifact
        else:
            artifact = cache._build(promise)

        target = promise.node_id
        if target not in self._dependencies:
            self._dependencies.add(target)
            target_entry = cache._entries.get(target)
            if target_entry is not None:
                target_entry.dependents.add(self.node)
            cache._emit(EventKind.DEPENDENCY_EDGE_RECORDED, self.node, target=target)

        return artifact

    def resolve_all(self, promises: Iterable[Promise[Any]]) -> list[Any]:
        return [self.resolve(p) for p in promises]

    def _expire(self) -> None:
        self._cache = None


class Cache:
    """
    Memoizes builder artifacts by builder identity.

    Not thread-safe; see SyncCache for a locked variant.

    Resolution recurses through the builders: each dependency level costs
    three interpreter frames (the cache, the builder's build() and
    Resolver.resolve()). Chains deeper than roughly a third of
    sys.getrecursionlimit() fail with BuildFailed wrapping RecursionError.

    Args:
        observer: Receives lifecycle events (defaults to a no-op observer)
    """

    def __init__(self, observer: Observer | None = None):
        self._observer: Observer = observer or NoopObserver()
        self._entries: dict[NodeId, Entry] = {}
        self._dyn_states: dict[NodeId, Any] = {}
        # Weak references to builders with an entry, a dyn state or a running
        # build, to detect id reuse
        self._known: dict[NodeId, weakref.ref] = {}
        # Build stack, for cycle detection
        self._stack: list[NodeId] = []

    @property
    def observer(self) -> Observer:
        return self._observer

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    def get(self, promise: Promise[Any]) -> Any:
        """
        Get the artifact of `promise`, building it if it is not cached.

        Raises:
            CycleDetected: The builder (indirectly) resolved itself
            BuildFailed: A builder raised; no entry is left behind
        """
        entry = self._lookup_entry(promise)
        if entry is not None:
            self._emit(EventKind.CACHE_HIT, promise.node_id, label=entry.label)
            return entry.artifact
        return self._build(promise)

    def lookup(self, promise: Promise[Any]) -> Any | None:
        """Return the cached artifact of `promise` or None. Never builds."""
        entry = self._lookup_entry(promise)
        return entry.artifact if entry is not None else None

    def _build(self, promise: Promise[Any]) -> Any:
        node = promise.node_id
        label = promise.label

        if node in self._stack:
            path = self._stack[self._stack.index(node):] + [node]
            self._emit(
                EventKind.CYCLE_DETECTED,
                node,
                label=label,
                detail={"path": [str(n) for n in path]},
            )
            raise CycleDetected(node, path)

        self._register(promise)
        self._stack.append(node)
        resolver = Resolver(self, promise)

        logger.debug("building %s (%s)", label, node)
        self._emit(EventKind.BUILD_STARTED, node, label=label)

        try:
            artifact = promise.builder.build(resolver)
        except BaseException as exc:
            self._abandon(node, label, resolver, exc)
            if isinstance(exc, Exception) and not isinstance(exc, MemodagError):
                raise BuildFailed(node, label, exc) from exc
            raise
        finally:
            resolver._expire()
            self._stack.pop()

        self._entries[node] = Entry(artifact=artifact, label=label, dependencies=set(resolver._dependencies))
        self._known[node] = weakref.ref(promise.builder)

        logger.debug("built %s (%s) with %d dependencies", label, node, len(resolver._dependencies))
        self._emit(
            EventKind.BUILD_COMPLETED,
            node,
            label=label,
            detail={"dependencies": len(resolver._dependencies)},
        )
        return artifact

    def _abandon(self, node: NodeId, label: str, resolver: Resolver, exc: BaseException) -> None:
        """Undo the edges a failed build recorded."""
        for dep in resolver._dependencies:
            dep_entry = self._entries.get(dep)
            if dep_entry is not None:
                dep_entry.dependents.discard(node)
        if node not in self._entries and node not in self._dyn_states:
            self._known.pop(node, None)

        logger.debug("build of %s (%s) failed: %s", label, node, type(exc).__name__)
        self._emit(
            EventKind.BUILD_FAILED,
            node,
            label=label,
            detail={"error": type(exc).__name__},
        )

    # ------------------------------------------------------------------
    # Builder bookkeeping
    # ------------------------------------------------------------------

    def _register(self, promise: Promise[Any]) -> None:
        node = promise.node_id
        ref = self._known.get(node)
        if ref is not None and ref() is promise.builder:
            return
        self._known[node] = weakref.ref(promise.builder)
        self._emit(EventKind.NODE_REGISTERED, node, label=promise.label)

    def _drop_if_stale(self, promise: Promise[Any]) -> None:
        """Forget whatever a collected builder left under this promise's id."""
        node = promise.node_id
        ref = self._known.get(node)
        if ref is None or ref() is promise.builder:
            return

        logger.debug("dropping stale node %s", node)
        self._dyn_states.pop(node, None)
        if node in self._entries:
            self._remove(self._closure(node), cause=node)
        self._known.pop(node, None)

    def _lookup_entry(self, promise: Promise[Any]) -> Entry | None:
        self._drop_if_stale(promise)
        return self._entries.get(promise.node_id)

    @property
    def known_builder_count(self) -> int:
        """Number of builders the cache currently tracks."""
        return len(self._known)

    def garbage_collection(self) -> int:
        """
        Drop every node and dyn state whose builder no longer exists.

        Returns the number of cache entries removed.
        """
        dead = [node for node, ref in self._known.items() if ref() is None]
        if not dead:
            return 0

        closure: list[NodeId] = []
        seen: set[NodeId] = set()
        for node in dead:
            for n in self._closure(node):
                if n not in seen:
                    seen.add(n)
                    closure.append(n)

        for node in dead:
            self._dyn_states.pop(node, None)
        removed = self._remove(closure, cause=None)
        for node in dead:
            self._known.pop(node, None)

        logger.debug("garbage collection dropped %d entries", removed)
        return removed

    # ------------------------------------------------------------------
    # Dynamic state
    # ------------------------------------------------------------------

    def _ensure_dyn_state(self, promise: Promise[Any]) -> Any:
        self._drop_if_stale(promise)
        node = promise.node_id
        if node in self._dyn_states:
            return self._dyn_states[node]

        self._register(promise)
        init = getattr(promise.builder, "init_dyn_state", None)
        state = init() if init is not None else None
        self._dyn_states[node] = state
        return state

    def dyn_state(self, promise: Promise[Any]) -> Any:
        """
        Return the dynamic state of `promise`'s builder, creating it if needed.

        Does not invalidate anything, so the state should only be read.
        """
        return self._ensure_dyn_state(promise)

    def dyn_state_mut(self, promise: Promise[Any]) -> Any:
        """
        Invalidate `promise` and return its builder's dynamic state for changes.

        Everything depending on `promise` is rebuilt on next access and sees
        the modified state.
        """
        self.invalidate(promise)
        return self._ensure_dyn_state(promise)

    def get_dyn_state(self, promise: Promise[Any]) -> Any | None:
        """Return the dynamic state of `promise`'s builder if it exists. Never creates it."""
        self._drop_if_stale(promise)
        return self._dyn_states.get(promise.node_id)

    # ------------------------------------------------------------------
    # Invalidation
    # ------------------------------------------------------------------

    def invalidate(self, promise: Promise[Any]) -> None:
        """Remove the artifact of `promise` and of everything depending on it."""
        node = promise.node_id
        if node not in self._entries:
            return

        removed = self._remove(self._closure(node), cause=node)
        logger.debug("invalidated %s: %d entries removed", node, removed)

    def invalidate_dependents(self, promise: Promise[Any]) -> None:
        """Remove everything depending on `promise`, keeping its own artifact."""
        node = promise.node_id
        if node not in self._entries:
            return

        closure = [n for n in self._closure(node) if n != node]
        removed = self._remove(closure, cause=node)
        logger.debug("invalidated dependents of %s: %d entries removed", node, removed)

    def purge(self, promise: Promise[Any]) -> None:
        """Invalidate `promise`, drop its dynamic state and forget its builder."""
        node = promise.node_id
        label = promise.label
        self._dyn_states.pop(node, None)
        if node in self._entries:
            self._remove(self._closure(node), cause=node)
        self._known.pop(node, None)
        self._emit(EventKind.NODE_PURGED, node, label=label)

    def clear_artifacts(self) -> None:
        """Drop every cached artifact, keeping dynamic states."""
        count = len(self._entries)
        self._entries.clear()
        for node in [n for n in self._known if n not in self._dyn_states and n not in self._stack]:
            del self._known[node]
        logger.debug("cleared artifacts (%d entries)", count)
        self._emit(EventKind.CACHE_CLEARED, detail={"entries": count})

    def clear_all(self) -> None:
        """Drop every cached artifact and every dynamic state."""
        count = len(self._entries)
        states = len(self._dyn_states)
        self._entries.clear()
        self._dyn_states.clear()
        self._known.clear()
        logger.debug("cleared cache (%d entries, %d states)", count, states)
        self._emit(EventKind.CACHE_CLEARED, detail={"entries": count, "states": states})

    def clear(self) -> None:
        """Reset the cache to empty; same as clear_all()."""
        self.clear_all()

    def _closure(self, start: NodeId) -> list[NodeId]:
        """`start` and all its transitive dependents, each listed once."""
        visited = {start}
        order = [start]
        stack = [start]

        while stack:
            current = stack.pop()
            entry = self._entries.get(current)
            if entry is None:
                continue
            for dependent in entry.dependents:
                if dependent not in visited:
                    visited.add(dependent)
                    order.append(dependent)
                    stack.append(dependent)

        return order

    def _remove(self, closure: list[NodeId], *, cause: NodeId | None) -> int:
        removing = set(closure)
        removed = 0

        for node in closure:
            entry = self._entries.pop(node, None)
            if entry is None:
                continue
            removed += 1

            for dep in entry.dependencies:
                if dep in removing:
                    continue
                dep_entry = self._entries.get(dep)
                if dep_entry is not None:
                    dep_entry.dependents.discard(node)

            if node not in self._stack and node not in self._dyn_states:
                self._known.pop(node, None)

            detail = {"cause": str(cause)} if cause is not None and cause != node else {}
            self._emit(EventKind.NODE_INVALIDATED, node, label=entry.label, detail=detail)

        return removed

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def dependencies_of(self, promise: Promise[Any]) -> frozenset[NodeId]:
        entry = self._entries.get(promise.node_id)
        return frozenset(entry.dependencies) if entry is not None else frozenset()

    def dependents_of(self, promise: Promise[Any]) -> frozenset[NodeId]:
        entry = self._entries.get(promise.node_id)
        return frozenset(entry.dependents) if entry is not None else frozenset()

    def __contains__(self, promise: object) -> bool:
        if not isinstance(promise, Promise):
            return False
        return self._lookup_entry(promise) is not None

    def __len__(self) -> int:
        return len(self._entries)

    def __repr__(self) -> str:
        return (
            f"<{type(self).__name__} entries={len(self._entries)} states={len(self._dyn_states)} "
            f"observer={type(self._observer).__name__}>"
        )

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def _emit(
        self,
        kind: EventKind,
        node: NodeId | None = None,
        *,
        target: NodeId | None = None,
        label: str | None = None,
        detail: dict[str, Any] | None = None,
    ) -> None:
        if not self._observer.enabled:
            return
        event = CacheEvent(kind=kind, node=node, target=target, label=label, detail=detail or {})
        try:
            self._observer.on_event(event)
        except Exception:
            logger.warning("observer %r failed on %s", self._observer, kind.value, exc_info=True)


F = TypeVar("F", bound=Callable[..., Any])


def _locked(method: F) -> F:
    @functools.wraps(method)
    def wrapper(self: "SyncCache", *args: Any, **kwargs: Any) -> Any:
        with self._lock:
            return method(self, *args, **kwargs)

    return wrapper  # type: ignore[return-value]


class SyncCache(Cache):
    """
    Cache whose public operations are serialized by a re-entrant lock.

    Builds run while the lock is held, so a builder resolving dependencies
    (or even calling back into this cache) on the same thread never blocks.
    """

    def __init__(self, observer: Observer | None = None):
        super().__init__(observer)
        self._lock = threading.RLock()

    get = _locked(Cache.get)
    lookup = _locked(Cache.lookup)
    dyn_state = _locked(Cache.dyn_state)
    dyn_state_mut = _locked(Cache.dyn_state_mut)
    get_dyn_state = _locked(Cache.get_dyn_state)
    invalidate = _locked(Cache.invalidate)
    invalidate_dependents = _locked(Cache.invalidate_dependents)
    purge = _locked(Cache.purge)
    clear_artifacts = _locked(Cache.clear_artifacts)
    clear_all = _locked(Cache.clear_all)
    clear = _locked(Cache.clear)
    garbage_collection = _locked(Cache.garbage_collection)
    known_builder_count = property(_locked(Cache.known_builder_count.fget))  # type: ignore[arg-type]
    dependencies_of = _locked(Cache.dependencies_of)
    dependents_of = _locked(Cache.dependents_of)
    __contains__ = _locked(Cache.__contains__)
    __len__ = _locked(Cache.__len__)
    __repr__ = _locked(Cache.__repr__)
