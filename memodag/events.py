"""
Lifecycle events emitted by the artifact cache.

This module provides:
- EventKind enumeration of cache lifecycle points
- CacheEvent envelope carrying the affected node(s)
- JSON Lines reading and human-readable formatting of event logs
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any

from .promise import NodeId


class EventKind(str, Enum):
    """Points in the cache lifecycle that observers are told about."""

    NODE_REGISTERED = "node_registered"
    BUILD_STARTED = "build_started"
    BUILD_COMPLETED = "build_completed"
    BUILD_FAILED = "build_failed"
    CACHE_HIT = "cache_hit"
    DEPENDENCY_EDGE_RECORDED = "dependency_edge_recorded"
    CYCLE_DETECTED = "cycle_detected"
    NODE_INVALIDATED = "node_invalidated"
    NODE_PURGED = "node_purged"
    CACHE_CLEARED = "cache_cleared"


@dataclass(frozen=True)
class CacheEvent:
    """A single cache lifecycle event."""

    kind: EventKind
    node: NodeId | None = None
    target: NodeId | None = None  # dependency side of an edge event
    label: str | None = None  # builder label of `node`
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    detail: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        d: dict[str, Any] = {
            "timestamp": self.timestamp,
            "kind": self.kind.value,
        }
        if self.node is not None:
            d["node"] = self.node.value
        if self.target is not None:
            d["target"] = self.target.value
        if self.label:
            d["label"] = self.label
        if self.detail:
            d["detail"] = self.detail
        return d

    @classmethod
    def from_dict(cls, data: dict) -> "CacheEvent":
        """Create from dictionary."""
        node = data.get("node")
        target = data.get("target")
        return cls(
            kind=EventKind(data["kind"]),
            node=NodeId(int(node)) if node is not None else None,
            target=NodeId(int(target)) if target is not None else None,
            label=data.get("label"),
            timestamp=data.get("timestamp", ""),
            detail=data.get("detail", {}),
        )


def read_event_log(
    log_path: Path,
    last_n: int | None = None,
    kinds: list[EventKind] | None = None,
) -> list[CacheEvent]:
    """
    Read events from a JSON Lines event log with optional filtering.

    Args:
        log_path: Path to the event log
        last_n: If specified, return only the last N matching entries
        kinds: Filter to specific event kinds

    Returns:
        List of events, oldest first
    """
    if not log_path.exists():
        return []

    entries = []
    with log_path.open("r", encoding="utf-8") as f:
        for line in f:
            line = line.strip()
            if not line:
                continue
            try:
                event = CacheEvent.from_dict(json.loads(line))
            except (json.JSONDecodeError, KeyError, ValueError, TypeError):
                continue  # Skip malformed lines

            if kinds and event.kind not in kinds:
                continue
            entries.append(event)

    if last_n is not None:
        return entries[-last_n:] if last_n > 0 else []
    return entries


_ICONS = {
    EventKind.NODE_REGISTERED: "*",
    EventKind.BUILD_STARTED: ">",
    EventKind.BUILD_COMPLETED: "+",
    EventKind.BUILD_FAILED: "!",
    EventKind.CACHE_HIT: "=",
    EventKind.DEPENDENCY_EDGE_RECORDED: "~",
    EventKind.CYCLE_DETECTED: "@",
    EventKind.NODE_INVALIDATED: "-",
    EventKind.NODE_PURGED: "x",
    EventKind.CACHE_CLEARED: "#",
}


def event_icon(kind: EventKind) -> str:
    return _ICONS.get(kind, "?")


def format_event(event: CacheEvent) -> str:
    """Format an event for human-readable display (single line)."""
    parts = [event_icon(event.kind), f"[{event.kind.value}]"]

    if event.node is not None:
        who = f"{event.label} ({event.node})" if event.label else str(event.node)
        parts.append(who)

    if event.target is not None:
        parts.append(f"-> {event.target}")

    if event.detail:
        extras = ", ".join(f"{k}={v}" for k, v in sorted(event.detail.items()))
        parts.append(f"{{{extras}}}")

    return " ".join(parts)
