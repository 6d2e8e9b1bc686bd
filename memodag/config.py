"""
Configuration loading.

Settings come from `memodag.toml`, or from the `[tool.memodag]` table of a
`pyproject.toml`, found by walking up from the working directory:

    observer = "jsonl"          # none | log | text | jsonl | dot
    event_log = ".memodag/events.jsonl"
    dot_path = ".memodag/graph.dot"
    log_level = "INFO"
    thread_safe = false

The "dot" observer keeps the graph in memory; `cache.observer.write()`
renders it to `dot_path`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .cache import Cache, SyncCache
from .errors import ConfigError
from .observers import (
    DotObserver,
    JsonLinesObserver,
    LoggingObserver,
    NoopObserver,
    Observer,
    TextualObserver,
)

CONFIG_FILENAME = "memodag.toml"
OBSERVER_KINDS = ("none", "log", "text", "jsonl", "dot")
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass
class MemodagConfig:
    observer: str = "none"
    event_log: Path = field(default_factory=lambda: Path(".memodag") / "events.jsonl")
    dot_path: Path = field(default_factory=lambda: Path(".memodag") / "graph.dot")
    log_level: str = "WARNING"
    thread_safe: bool = False
    source: Path | None = None  # file the settings were read from

    def to_dict(self) -> dict[str, Any]:
        return {
            "observer": self.observer,
            "event_log": str(self.event_log),
            "dot_path": str(self.dot_path),
            "log_level": self.log_level,
            "thread_safe": self.thread_safe,
            "source": str(self.source) if self.source else None,
        }


def _coerce_dict(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def parse_config(data: dict[str, Any], base_dir: Path | None = None) -> MemodagConfig:
    """
    Build a config from an already-parsed TOML table.

    Relative paths are resolved against `base_dir` when given.
    """
    unknown = set(data) - {"observer", "event_log", "dot_path", "log_level", "thread_safe"}
    if unknown:
        raise ConfigError(f"unknown config keys: {', '.join(sorted(unknown))}")

    cfg = MemodagConfig()

    observer = str(data.get("observer", cfg.observer)).strip().lower()
    if observer not in OBSERVER_KINDS:
        raise ConfigError(f"observer must be one of: {', '.join(OBSERVER_KINDS)} (got {observer!r})")
    cfg.observer = observer

    log_level = str(data.get("log_level", cfg.log_level)).strip().upper()
    if log_level not in LOG_LEVELS:
        raise ConfigError(f"log_level must be one of: {', '.join(LOG_LEVELS)} (got {log_level!r})")
    cfg.log_level = log_level

    thread_safe = data.get("thread_safe", cfg.thread_safe)
    if not isinstance(thread_safe, bool):
        raise ConfigError("thread_safe must be a boolean")
    cfg.thread_safe = thread_safe

    for key in ("event_log", "dot_path"):
        raw = data.get(key)
        if raw is None:
            continue
        if not isinstance(raw, str) or not raw.strip():
            raise ConfigError(f"{key} must be a non-empty string")
        setattr(cfg, key, Path(raw))

    if base_dir is not None:
        if not cfg.event_log.is_absolute():
            cfg.event_log = base_dir / cfg.event_log
        if not cfg.dot_path.is_absolute():
            cfg.dot_path = base_dir / cfg.dot_path

    return cfg


def load_config(path: Path) -> MemodagConfig:
    """
    Load configuration from a TOML file.

    A `pyproject.toml` is read from its `[tool.memodag]` table; any other file
    is read as a whole.
    """
    import tomllib

    try:
        data = tomllib.loads(path.read_text(encoding="utf-8"))
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"{path}: invalid TOML: {e}") from e

    if path.name == "pyproject.toml":
        data = _coerce_dict(_coerce_dict(data.get("tool")).get("memodag"))

    cfg = parse_config(data, base_dir=path.parent.resolve())
    cfg.source = path.resolve()
    return cfg


def find_config(start: Path) -> Path | None:
    """Find `memodag.toml` (or a pyproject.toml with [tool.memodag]) walking up from `start`."""
    import tomllib

    cur = start.resolve()
    for p in (cur, *cur.parents):
        candidate = p / CONFIG_FILENAME
        if candidate.is_file():
            return candidate
        pyproject = p / "pyproject.toml"
        if pyproject.is_file():
            try:
                data = tomllib.loads(pyproject.read_text(encoding="utf-8"))
            except (OSError, tomllib.TOMLDecodeError):
                continue
            if "memodag" in _coerce_dict(data.get("tool")):
                return pyproject
    return None


def resolve_config(path: Path | None = None, start: Path | None = None) -> MemodagConfig:
    """Load `path`, else the nearest discovered config, else defaults."""
    if path is not None:
        if not path.is_file():
            raise ConfigError(f"config file not found: {path}")
        return load_config(path)

    found = find_config(start or Path.cwd())
    if found is not None:
        return load_config(found)
    return MemodagConfig()


def create_observer(cfg: MemodagConfig) -> Observer:
    """Observer for `cfg.observer`. A DotObserver writes `dot_path` only when write() is called."""
    if cfg.observer == "log":
        return LoggingObserver(level=logging.INFO)
    if cfg.observer == "text":
        return TextualObserver()
    if cfg.observer == "jsonl":
        return JsonLinesObserver(cfg.event_log)
    if cfg.observer == "dot":
        return DotObserver(cfg.dot_path)
    return NoopObserver()


def create_cache(cfg: MemodagConfig | None = None) -> Cache:
    """Create a cache (locked if `thread_safe`) with the configured observer."""
    cfg = cfg or MemodagConfig()
    cls = SyncCache if cfg.thread_safe else Cache
    return cls(observer=create_observer(cfg))
