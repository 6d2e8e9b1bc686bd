"""Dependency graph reconstructed from cache events."""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from typing import Iterable

from .events import CacheEvent, EventKind
from .promise import NodeId


@dataclass
class EventGraph:
    """
    The cache's current dependency graph, as seen through its events.

    Feeding every event of a cache (live, or replayed from an event log)
    leaves `nodes` holding the nodes that currently have an artifact and
    `edges` holding the dependency edges of their latest builds.
    """

    nodes: set[NodeId] = field(default_factory=set)
    labels: dict[NodeId, str] = field(default_factory=dict)
    edges: dict[NodeId, set[NodeId]] = field(default_factory=dict)  # dependant -> dependencies
    reverse_edges: dict[NodeId, set[NodeId]] = field(default_factory=dict)  # dependency -> dependants
    builds: Counter = field(default_factory=Counter)
    hits: Counter = field(default_factory=Counter)
    failures: Counter = field(default_factory=Counter)

    @classmethod
    def from_events(cls, events: Iterable[CacheEvent]) -> "EventGraph":
        graph = cls()
        for event in events:
            graph.apply(event)
        return graph

    def apply(self, event: CacheEvent) -> None:
        """Update the graph with one event."""
        kind = event.kind
        node = event.node

        if node is not None and event.label:
            self.labels[node] = event.label

        if kind == EventKind.CACHE_CLEARED:
            self.nodes.clear()
            self.edges.clear()
            self.reverse_edges.clear()
            return

        if node is None:
            return

        if kind == EventKind.BUILD_STARTED:
            # A build replaces whatever the previous one depended on
            self._drop_out_edges(node)
        elif kind == EventKind.DEPENDENCY_EDGE_RECORDED and event.target is not None:
            self.add_edge(node, event.target)
        elif kind == EventKind.BUILD_COMPLETED:
            self.nodes.add(node)
            self.builds[node] += 1
        elif kind == EventKind.BUILD_FAILED:
            self._drop_out_edges(node)
            self.failures[node] += 1
        elif kind == EventKind.CACHE_HIT:
            self.hits[node] += 1
        elif kind in (EventKind.NODE_INVALIDATED, EventKind.NODE_PURGED):
            self.remove_node(node)

    def add_edge(self, src: NodeId, dst: NodeId) -> None:
        self.edges.setdefault(src, set()).add(dst)
        self.reverse_edges.setdefault(dst, set()).add(src)

    def remove_node(self, node: NodeId) -> None:
        self.nodes.discard(node)
        self._drop_out_edges(node)
        for src in self.reverse_edges.pop(node, set()):
            deps = self.edges.get(src)
            if deps is not None:
                deps.discard(node)
                if not deps:
                    del self.edges[src]

    def _drop_out_edges(self, node: NodeId) -> None:
        for dst in self.edges.pop(node, set()):
            srcs = self.reverse_edges.get(dst)
            if srcs is not None:
                srcs.discard(node)
                if not srcs:
                    del self.reverse_edges[dst]

    def out_degree(self, node: NodeId) -> int:
        return len(self.edges.get(node, set()))

    def in_degree(self, node: NodeId) -> int:
        return len(self.reverse_edges.get(node, set()))

    def name(self, node: NodeId) -> str:
        label = self.labels.get(node)
        return f"{label} ({node})" if label else str(node)

    def edge_count(self) -> int:
        return sum(len(v) for v in self.edges.values())

    def all_nodes(self) -> set[NodeId]:
        """Cached nodes plus any node still referenced by an edge."""
        found = set(self.nodes)
        for src, dsts in self.edges.items():
            found.add(src)
            found.update(dsts)
        return found

    def summarize(self, *, title: str, top: int = 25) -> dict:
        rows = []
        for n in sorted(self.all_nodes()):
            rows.append(
                {
                    "node": n.value,
                    "name": self.name(n),
                    "cached": n in self.nodes,
                    "in_degree": self.in_degree(n),
                    "out_degree": self.out_degree(n),
                    "builds": self.builds.get(n, 0),
                    "hits": self.hits.get(n, 0),
                }
            )
        rows.sort(key=lambda r: (r["in_degree"], r["builds"], r["name"]), reverse=True)

        return {
            "title": title,
            "node_count": len(rows),
            "edge_count": self.edge_count(),
            "total_builds": sum(self.builds.values()),
            "total_hits": sum(self.hits.values()),
            "total_failures": sum(self.failures.values()),
            "nodes": rows[: max(0, top)],
        }

    def to_dot(self, *, title: str = "memodag") -> str:
        def esc(s: str) -> str:
            return s.replace("\\", "\\\\").replace('"', '\\"')

        lines = [
            "digraph memodag {",
            f'  label="{esc(title)}";',
            "  labelloc=t;",
            "  rankdir=LR;",
            "  graph [fontname=\"Helvetica\"];",
            "  node [fontname=\"Helvetica\", fontsize=10, style=filled, fillcolor=\"#1b1f2a\", color=\"#3a4154\", fontcolor=\"#e6e6e6\"];",
            "  edge [color=\"#3a4154\", penwidth=0.8];",
        ]

        for node in sorted(self.all_nodes()):
            label = self.labels.get(node, "?")
            builds = self.builds.get(node, 0)
            text = f"{esc(label)}\\n{node}"
            if builds > 1:
                text += f"\\nbuilt {builds}x"
            attrs = {"label": text}
            if node not in self.nodes:
                attrs["fillcolor"] = "#3a3f4b"
                attrs["style"] = "filled,dashed"
            elif builds > 1:
                attrs["fillcolor"] = "#f4a261"
                attrs["fontcolor"] = "#0f1115"
            attr_str = "; ".join(f'{k}="{v if k == "label" else esc(v)}"' for k, v in attrs.items())
            lines.append(f'  "{node}" [{attr_str}];')

        for src, dsts in sorted(self.edges.items()):
            for dst in sorted(dsts):
                lines.append(f'  "{src}" -> "{dst}";')

        lines.append("}")
        return "\n".join(lines) + "\n"
