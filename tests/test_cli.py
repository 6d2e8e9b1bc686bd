"""Tests for the memodag CLI and its command functions."""

from __future__ import annotations

import io
import json
from pathlib import Path

import pytest
from click.testing import CliRunner
from rich.console import Console

from memodag import __version__
from memodag.cache import Cache
from memodag.cli import cli
from memodag.commands.events_cmd import run_events, run_events_summary, summarize_events
from memodag.commands.graph_cmd import run_graph
from memodag.observers import JsonLinesObserver

from conftest import node


@pytest.fixture
def event_log(tmp_path: Path) -> Path:
    """Event log of a small cache session: build a chain, hit it, invalidate the leaf."""
    log_path = tmp_path / "events.jsonl"
    cache = Cache(observer=JsonLinesObserver(log_path))

    c = node("Leaf")
    b = node("Middle", c)
    a = node("Top", b)
    cache.get(a)
    cache.get(a)
    cache.get(b)
    cache.invalidate(a)
    return log_path


def _console() -> tuple[Console, io.StringIO]:
    out = io.StringIO()
    return Console(file=out, width=200, color_system=None), out


# -----------------------------------------------------------------------------
# Command functions
# -----------------------------------------------------------------------------


def test_run_events_prints_every_event(event_log: Path) -> None:
    console, out = _console()

    count = run_events(event_log, console=console)

    text = out.getvalue()
    assert count == len(text.splitlines())
    assert "[build_completed] Leaf" in text
    assert "[node_invalidated] Top" in text


def test_run_events_filters(event_log: Path) -> None:
    console, out = _console()

    count = run_events(event_log, event_kinds=["CACHE_HIT"], format="json", console=console)

    assert count == 2
    lines = out.getvalue().splitlines()
    assert all(json.loads(line)["kind"] == "cache_hit" for line in lines)

    console, out = _console()
    assert run_events(event_log, last_n=1, console=console) == 1
    assert "node_invalidated" in out.getvalue()


def test_run_events_unknown_kind(event_log: Path) -> None:
    console, out = _console()

    assert run_events(event_log, event_kinds=["bogus"], console=console) == 0
    assert "Unknown event kind: bogus" in out.getvalue()


def test_run_events_missing_log(tmp_path: Path) -> None:
    console, out = _console()

    assert run_events(tmp_path / "none.jsonl", console=console) == 0
    assert "No events found" in out.getvalue()


def test_summarize_events(event_log: Path) -> None:
    summary = summarize_events(event_log)

    assert summary["builds"] == 3
    assert summary["hits"] == 2
    assert summary["failures"] == 0
    assert summary["hit_ratio"] == pytest.approx(2 / 5)
    assert summary["kinds"]["node_invalidated"] == 1


def test_run_events_summary_renders_table(event_log: Path) -> None:
    console, out = _console()

    total = run_events_summary(event_log, console=console)

    assert total == summarize_events(event_log)["total"]
    assert "Cache Event Summary" in out.getvalue()
    assert "40.0%" in out.getvalue()


def test_run_graph_formats(event_log: Path, tmp_path: Path, capsys: pytest.CaptureFixture) -> None:
    assert run_graph(event_log, fmt="json") == 0
    payload = json.loads(capsys.readouterr().out)
    # Top was invalidated, Middle -> Leaf remains
    assert payload["node_count"] == 2
    assert payload["edge_count"] == 1
    assert payload["total_hits"] == 2

    assert run_graph(event_log, fmt="md") == 0
    md = capsys.readouterr().out
    assert md.startswith("## Dependency graph (events.jsonl)")
    assert "| Node | Cached |" in md

    out = tmp_path / "out" / "graph.dot"
    assert run_graph(event_log, fmt="dot", out=out) == 0
    dot = out.read_text(encoding="utf-8")
    assert dot.startswith("digraph memodag {")
    assert "->" in dot


# -----------------------------------------------------------------------------
# CLI
# -----------------------------------------------------------------------------


def test_cli_version() -> None:
    result = CliRunner().invoke(cli, ["--version"])

    assert result.exit_code == 0
    assert __version__ in result.output


def test_cli_events_and_summary(event_log: Path, tmp_path: Path) -> None:
    config = tmp_path / "memodag.toml"
    config.write_text(f'event_log = "{event_log.name}"\n', encoding="utf-8")
    runner = CliRunner()

    result = runner.invoke(cli, ["--config", str(config), "events", "--last", "3"])
    assert result.exit_code == 0, result.output
    assert "node_invalidated" in result.output

    result = runner.invoke(cli, ["--config", str(config), "summary"])
    assert result.exit_code == 0, result.output
    assert "Cache hits" in result.output


def test_cli_events_exit_code_when_empty(tmp_path: Path) -> None:
    config = tmp_path / "memodag.toml"
    config.write_text("", encoding="utf-8")

    result = CliRunner().invoke(cli, ["--config", str(config), "events", str(tmp_path / "empty.jsonl")])

    assert result.exit_code == 1


def test_cli_graph_writes_dot(event_log: Path, tmp_path: Path) -> None:
    config = tmp_path / "memodag.toml"
    config.write_text("", encoding="utf-8")
    out = tmp_path / "g.dot"

    result = CliRunner().invoke(
        cli, ["--config", str(config), "graph", str(event_log), "--format", "dot", "--out", str(out)]
    )

    assert result.exit_code == 0, result.output
    assert out.read_text(encoding="utf-8").startswith("digraph memodag {")


def test_cli_config_json(tmp_path: Path) -> None:
    config = tmp_path / "memodag.toml"
    config.write_text('observer = "jsonl"\nlog_level = "info"\n', encoding="utf-8")

    result = CliRunner().invoke(cli, ["--config", str(config), "config", "--json"])

    assert result.exit_code == 0, result.output
    data = json.loads(result.output)
    assert data["observer"] == "jsonl"
    assert data["log_level"] == "INFO"
    assert data["source"] == str(config.resolve())


def test_cli_reports_bad_config(tmp_path: Path) -> None:
    config = tmp_path / "memodag.toml"
    config.write_text('observer = "carrier-pigeon"\n', encoding="utf-8")

    result = CliRunner().invoke(cli, ["--config", str(config), "config"])

    assert result.exit_code == 1
    assert "observer must be one of" in result.output


def test_cli_missing_config_file(tmp_path: Path) -> None:
    result = CliRunner().invoke(cli, ["--config", str(tmp_path / "nope.toml"), "config"])

    assert result.exit_code == 1
    assert "config file not found" in result.output


def test_run_graph_rich_creates_output_dir(event_log: Path, tmp_path: Path) -> None:
    out = tmp_path / "nested" / "graph.txt"

    assert run_graph(event_log, fmt="rich", out=out) == 0

    text = out.read_text(encoding="utf-8")
    assert "Dependency graph (events.jsonl)" in text
    assert "Middle" in text
