"""
Observers receive cache lifecycle events for diagnostics.

A cache holds exactly one observer. Observers never influence resolution:
whatever they do with an event, the cache returns the same artifacts.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Iterable

from rich.console import Console
from rich.text import Text

from .events import CacheEvent, EventKind, event_icon
from .graph import EventGraph

logger = logging.getLogger(__name__)


class Observer:
    """
    Base observer. Subclasses override on_event().

    `enabled` lets the cache skip building event objects entirely when the
    observer would discard them.
    """

    enabled = True

    def on_event(self, event: CacheEvent) -> None:
        pass


class NoopObserver(Observer):
    """Observer that ignores everything (the cache default)."""

    enabled = False


class RecordingObserver(Observer):
    """Keeps every event in memory, mostly useful in tests."""

    def __init__(self) -> None:
        self.events: list[CacheEvent] = []

    def on_event(self, event: CacheEvent) -> None:
        self.events.append(event)

    def kinds(self) -> list[EventKind]:
        return [e.kind for e in self.events]

    def of_kind(self, kind: EventKind) -> list[CacheEvent]:
        return [e for e in self.events if e.kind == kind]

    def clear(self) -> None:
        self.events.clear()


class LoggingObserver(Observer):
    """Forwards events to a stdlib logger."""

    def __init__(self, logger: logging.Logger | None = None, level: int = logging.DEBUG):
        self.logger = logger or logging.getLogger("memodag.events")
        self.level = level

    def on_event(self, event: CacheEvent) -> None:
        if not self.logger.isEnabledFor(self.level):
            return
        if event.target is not None:
            self.logger.log(self.level, "%s %s -> %s", event.kind.value, event.node, event.target)
        else:
            self.logger.log(self.level, "%s %s %s", event.kind.value, event.label or "", event.node or "")


_STYLES = {
    EventKind.BUILD_STARTED: "cyan",
    EventKind.BUILD_COMPLETED: "green",
    EventKind.BUILD_FAILED: "bold red",
    EventKind.CYCLE_DETECTED: "bold red",
    EventKind.CACHE_HIT: "dim",
    EventKind.DEPENDENCY_EDGE_RECORDED: "blue",
    EventKind.NODE_INVALIDATED: "yellow",
    EventKind.NODE_PURGED: "yellow",
    EventKind.CACHE_CLEARED: "magenta",
}


class TextualObserver(Observer):
    """
    Prints one line per event to a rich console.

    Builds are indented by their nesting depth so the output reads as a
    tree of who built what.
    """

    def __init__(self, console: Console | None = None, *, show_hits: bool = True):
        self.console = console or Console(stderr=True)
        self.show_hits = show_hits
        self._depth = 0

    def on_event(self, event: CacheEvent) -> None:
        if event.kind == EventKind.CACHE_HIT and not self.show_hits:
            return

        if event.kind in (EventKind.BUILD_COMPLETED, EventKind.BUILD_FAILED):
            self._depth = max(0, self._depth - 1)

        line = Text("  " * self._depth)
        line.append(f"{event_icon(event.kind)} {event.kind.value:<24} ", style=_STYLES.get(event.kind, ""))
        if event.node is not None:
            line.append(event.label or "?", style="bold")
            line.append(f" {event.node}", style="dim")
        if event.target is not None:
            line.append(f" -> {event.target}")
        if event.detail:
            extras = ", ".join(f"{k}={v}" for k, v in sorted(event.detail.items()))
            line.append(f" {{{extras}}}", style="dim")
        self.console.print(line, highlight=False)

        if event.kind == EventKind.BUILD_STARTED:
            self._depth += 1
        elif event.kind == EventKind.CACHE_CLEARED:
            self._depth = 0


class JsonLinesObserver(Observer):
    """Appends each event as one JSON object per line to an event log."""

    def __init__(self, log_path: Path):
        self.log_path = Path(log_path)

    def on_event(self, event: CacheEvent) -> None:
        self.log_path.parent.mkdir(parents=True, exist_ok=True)
        with self.log_path.open("a", encoding="utf-8") as f:
            f.write(json.dumps(event.to_dict()) + "\n")


class DotObserver(Observer):
    """Tracks the live dependency graph and renders it as Graphviz DOT."""

    def __init__(self, out: Path | None = None, *, title: str = "memodag"):
        self.out = Path(out) if out is not None else None
        self.title = title
        self.graph = EventGraph()

    def on_event(self, event: CacheEvent) -> None:
        self.graph.apply(event)

    def to_dot(self) -> str:
        return self.graph.to_dot(title=self.title)

    def write(self, out: Path | None = None) -> Path:
        """Write the DOT rendering to `out` (or the path given at construction)."""
        target = Path(out) if out is not None else self.out
        if target is None:
            raise ValueError("no output path given")
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(self.to_dot(), encoding="utf-8")
        return target


class ObserverGroup(Observer):
    """Fans every event out to several observers."""

    def __init__(self, observers: Iterable[Observer]):
        self.observers = [o for o in observers if o.enabled]

    @property
    def enabled(self) -> bool:  # type: ignore[override]
        return bool(self.observers)

    def on_event(self, event: CacheEvent) -> None:
        for observer in self.observers:
            try:
                observer.on_event(event)
            except Exception:
                logger.warning("observer %r failed on %s", observer, event.kind.value, exc_info=True)
