"""Events commands - inspect a cache event log."""

from __future__ import annotations

import json
from pathlib import Path

from rich.console import Console
from rich.table import Table

from ..events import EventKind, event_icon, format_event, read_event_log


def _parse_kinds(kinds: list[str] | None, console: Console) -> list[EventKind] | None:
    if not kinds:
        return None
    parsed = []
    for k in kinds:
        try:
            parsed.append(EventKind(k.lower()))
        except ValueError:
            console.print(f"[yellow]Unknown event kind: {k}[/yellow]", highlight=False)
    return parsed


def run_events(
    log_path: Path,
    *,
    last_n: int | None = None,
    event_kinds: list[str] | None = None,
    format: str = "text",
    console: Console | None = None,
) -> int:
    """
    Read and display events from an event log.

    Returns the number of events displayed.
    """
    console = console or Console()

    kind_filter = _parse_kinds(event_kinds, console)
    if event_kinds and not kind_filter:
        return 0

    events = read_event_log(log_path, last_n=last_n, kinds=kind_filter)

    if not events:
        console.print("[dim]No events found.[/dim]")
        return 0

    for event in events:
        if format == "json":
            console.print(json.dumps(event.to_dict()), markup=False, highlight=False, soft_wrap=True)
        else:
            console.print(format_event(event), markup=False, highlight=False)

    return len(events)


def summarize_events(log_path: Path) -> dict:
    """Count events per kind and derive build/hit statistics."""
    events = read_event_log(log_path)

    kind_counts: dict[EventKind, int] = {}
    for event in events:
        kind_counts[event.kind] = kind_counts.get(event.kind, 0) + 1

    builds = kind_counts.get(EventKind.BUILD_COMPLETED, 0)
    hits = kind_counts.get(EventKind.CACHE_HIT, 0)
    lookups = builds + hits

    return {
        "total": len(events),
        "kinds": {k.value: c for k, c in kind_counts.items()},
        "builds": builds,
        "hits": hits,
        "failures": kind_counts.get(EventKind.BUILD_FAILED, 0),
        "hit_ratio": (hits / lookups) if lookups else None,
        "first": events[0].timestamp if events else None,
        "last": events[-1].timestamp if events else None,
    }


def run_events_summary(log_path: Path, *, console: Console | None = None) -> int:
    """
    Display a summary of an event log.

    Returns the total event count.
    """
    console = console or Console()

    summary = summarize_events(log_path)
    if not summary["total"]:
        console.print("[dim]No events logged yet.[/dim]")
        return 0

    table = Table(title="Cache Event Summary")
    table.add_column("Metric", style="bold")
    table.add_column("Value", justify="right")

    table.add_row("Total events", str(summary["total"]))
    table.add_row("", "")

    for kind in EventKind:
        count = summary["kinds"].get(kind.value, 0)
        if count:
            table.add_row(f"  {event_icon(kind)} {kind.value}", str(count))

    table.add_row("", "")
    table.add_row("Builds", str(summary["builds"]))
    table.add_row("Cache hits", str(summary["hits"]))
    if summary["failures"]:
        table.add_row("Failed builds", f"[red]{summary['failures']}[/red]")
    if summary["hit_ratio"] is not None:
        table.add_row("Hit ratio", f"{summary['hit_ratio']:.1%}")

    table.add_row("", "")
    table.add_row("First event", summary["first"][:19].replace("T", " "))
    table.add_row("Last event", summary["last"][:19].replace("T", " "))

    console.print(table)
    return summary["total"]
