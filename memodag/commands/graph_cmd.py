"""Graph command - rebuild the dependency graph from an event log."""

from __future__ import annotations

import json
from pathlib import Path

from rich.console import Console
from rich.table import Table

from ..events import read_event_log
from ..graph import EventGraph


def run_graph(
    log_path: Path,
    *,
    fmt: str = "md",
    out: Path | None = None,
    top: int = 25,
    title: str | None = None,
) -> int:
    """Replay an event log and output the resulting dependency graph."""
    console = Console(stderr=True)

    graph = EventGraph.from_events(read_event_log(log_path))
    title = title or f"Dependency graph ({log_path.name})"
    payload = graph.summarize(title=title, top=top)

    if fmt == "rich":
        if out:
            rich_console = Console(record=True)
            _print_rich(payload, console=rich_console)
            out.parent.mkdir(parents=True, exist_ok=True)
            out.write_text(rich_console.export_text(), encoding="utf-8")
            console.print(f"Wrote graph output to {out}", style="green")
        else:
            _print_rich(payload, console=Console())
        return 0

    text: str
    if fmt == "json":
        text = json.dumps(payload, indent=2, sort_keys=True) + "\n"
    elif fmt == "dot":
        text = graph.to_dot(title=title)
    else:
        text = _to_markdown(payload)

    if out:
        out.parent.mkdir(parents=True, exist_ok=True)
        out.write_text(text, encoding="utf-8")
        console.print(f"Wrote graph output to {out}", style="green")
    else:
        print(text, end="" if text.endswith("\n") else "\n")

    return 0


def _print_rich(payload: dict, *, console: Console) -> None:
    console.print(f"[bold]{payload['title']}[/bold]", highlight=False)
    console.print(
        f"Nodes: {payload['node_count']}  Edges: {payload['edge_count']}  "
        f"Builds: {payload['total_builds']}  Hits: {payload['total_hits']}  "
        f"Failures: {payload['total_failures']}"
    )
    console.print()

    t = Table(title="Nodes", show_header=True, header_style="bold")
    t.add_column("Node", style="cyan", no_wrap=True)
    t.add_column("Cached")
    t.add_column("In", justify="right")
    t.add_column("Out", justify="right")
    t.add_column("Builds", justify="right")
    t.add_column("Hits", justify="right")
    for r in payload["nodes"]:
        t.add_row(
            str(r["name"]),
            "yes" if r["cached"] else "[dim]no[/dim]",
            str(r["in_degree"]),
            str(r["out_degree"]),
            str(r["builds"]),
            str(r["hits"]),
        )
    console.print(t)


def _to_markdown(payload: dict) -> str:
    lines: list[str] = []
    lines.append(f"## {payload['title']}")
    lines.append("")
    lines.append(f"- Nodes: {payload['node_count']}")
    lines.append(f"- Edges: {payload['edge_count']}")
    lines.append(f"- Builds: {payload['total_builds']}")
    lines.append(f"- Cache hits: {payload['total_hits']}")
    if payload["total_failures"]:
        lines.append(f"- Failed builds: {payload['total_failures']}")
    lines.append("")

    lines.append("| Node | Cached | In-degree | Out-degree | Builds | Hits |")
    lines.append("|---|:---:|---:|---:|---:|---:|")
    for r in payload["nodes"]:
        cached = "yes" if r["cached"] else "no"
        lines.append(
            f"| `{r['name']}` | {cached} | {r['in_degree']} | {r['out_degree']} | {r['builds']} | {r['hits']} |"
        )

    return "\n".join(lines).rstrip() + "\n"
