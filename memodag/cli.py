"""CLI entrypoint for memodag."""

import json
import logging
import sys
from pathlib import Path

import click

from . import __version__
from .config import LOG_LEVELS, MemodagConfig, resolve_config
from .errors import MemodagError


def _configure_logging(level: str) -> None:
    from rich.console import Console
    from rich.logging import RichHandler

    handler = RichHandler(console=Console(stderr=True), show_path=False, rich_tracebacks=True)
    pkg_logger = logging.getLogger("memodag")
    pkg_logger.handlers[:] = [handler]
    pkg_logger.setLevel(level)


def _log_path(ctx: click.Context, log: Path | None) -> Path:
    if log is not None:
        return log
    cfg: MemodagConfig = ctx.obj["config"]
    return cfg.event_log


@click.group()
@click.version_option(__version__, prog_name="memodag")
@click.option(
    "--config",
    "config_path",
    type=click.Path(exists=False, dir_okay=False, path_type=Path),
    default=None,
    help="Path to memodag.toml (defaults to the nearest memodag.toml or pyproject [tool.memodag])",
)
@click.option(
    "--log-level",
    type=click.Choice(LOG_LEVELS, case_sensitive=False),
    default=None,
    help="Logging level (overrides the configured log_level)",
)
@click.pass_context
def cli(ctx: click.Context, config_path: Path | None, log_level: str | None) -> None:
    """memodag - Inspect memoizing artifact cache activity.

    Reads the JSON Lines event logs written by a cache with a jsonl observer.
    """
    ctx.ensure_object(dict)
    try:
        cfg = resolve_config(config_path)
    except MemodagError as e:
        raise click.ClickException(str(e)) from e
    except OSError as e:
        raise click.ClickException(f"cannot read config: {e}") from e

    _configure_logging((log_level or cfg.log_level).upper())
    ctx.obj["config"] = cfg


@cli.command()
@click.argument("log", type=click.Path(dir_okay=False, path_type=Path), required=False)
@click.option("--last", "last_n", type=int, default=None, help="Show only the last N events")
@click.option(
    "--kind",
    "event_kinds",
    multiple=True,
    default=None,
    help="Filter by event kind (build_completed, cache_hit, node_invalidated, ...). Repeatable.",
)
@click.option(
    "--format",
    "output_format",
    type=click.Choice(["text", "json"]),
    default="text",
    show_default=True,
    help="Output format",
)
@click.pass_context
def events(
    ctx: click.Context,
    log: Path | None,
    last_n: int | None,
    event_kinds: tuple[str, ...],
    output_format: str,
) -> None:
    """Read and display events from an event log.

    LOG defaults to the configured event_log.

    Examples:

        memodag events --last 10

        memodag events --kind build_failed --format json
    """
    from .commands.events_cmd import run_events

    count = run_events(
        _log_path(ctx, log),
        last_n=last_n,
        event_kinds=list(event_kinds) if event_kinds else None,
        format=output_format,
    )
    sys.exit(0 if count > 0 else 1)


@cli.command()
@click.argument("log", type=click.Path(dir_okay=False, path_type=Path), required=False)
@click.pass_context
def summary(ctx: click.Context, log: Path | None) -> None:
    """Display a summary of logged events."""
    from .commands.events_cmd import run_events_summary

    count = run_events_summary(_log_path(ctx, log))
    sys.exit(0 if count > 0 else 1)


@cli.command()
@click.argument("log", type=click.Path(dir_okay=False, path_type=Path), required=False)
@click.option(
    "--format",
    "fmt",
    type=click.Choice(["rich", "md", "json", "dot"]),
    default="md",
    show_default=True,
    help="Output format",
)
@click.option("--out", type=click.Path(dir_okay=False, path_type=Path), default=None, help="Write output to a file")
@click.option("--top", type=int, default=25, show_default=True, help="How many nodes to list")
@click.pass_context
def graph(ctx: click.Context, log: Path | None, fmt: str, out: Path | None, top: int) -> None:
    """Rebuild the dependency graph recorded in an event log.

    Examples:

        memodag graph --format rich

        memodag graph --format dot --out graph.dot
    """
    from .commands.graph_cmd import run_graph

    try:
        exit_code = run_graph(_log_path(ctx, log), fmt=fmt, out=out, top=top)
    except OSError as e:
        raise click.ClickException(str(e)) from e
    sys.exit(exit_code)


@cli.command("config")
@click.option("--json", "output_json", is_flag=True, help="Output as JSON")
@click.pass_context
def show_config(ctx: click.Context, output_json: bool) -> None:
    """Show the effective configuration."""
    cfg: MemodagConfig = ctx.obj["config"]
    data = cfg.to_dict()

    if output_json:
        click.echo(json.dumps(data, indent=2))
        return

    for key, value in data.items():
        click.echo(f"{key} = {value if value is not None else '(defaults)'}")


if __name__ == "__main__":
    cli()
