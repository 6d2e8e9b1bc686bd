"""
memodag: a memoizing artifact cache over a dependency graph of builders.

Builders are wrapped in Promises and resolved through a Cache, which builds
each artifact at most once per builder, records who depends on whom, and
rebuilds dependents lazily after invalidation.
"""

from __future__ import annotations

__version__ = "0.1.0"

from .builder import Builder, FunctionalBuilder, builder
from .cache import Cache, Resolver, SyncCache
from .config import MemodagConfig, create_cache, load_config, resolve_config
from .errors import BuildFailed, ConfigError, CycleDetected, MemodagError, ResolverExpired
from .events import CacheEvent, EventKind, format_event, read_event_log
from .graph import EventGraph
from .observers import (
    DotObserver,
    JsonLinesObserver,
    LoggingObserver,
    NoopObserver,
    Observer,
    ObserverGroup,
    RecordingObserver,
    TextualObserver,
)
from .promise import NodeId, Promise

__all__ = [
    "__version__",
    # Core
    "Builder",
    "Cache",
    "FunctionalBuilder",
    "NodeId",
    "Promise",
    "Resolver",
    "SyncCache",
    "builder",
    # Errors
    "BuildFailed",
    "ConfigError",
    "CycleDetected",
    "MemodagError",
    "ResolverExpired",
    # Events
    "CacheEvent",
    "EventGraph",
    "EventKind",
    "format_event",
    "read_event_log",
    # Observers
    "DotObserver",
    "JsonLinesObserver",
    "LoggingObserver",
    "NoopObserver",
    "Observer",
    "ObserverGroup",
    "RecordingObserver",
    "TextualObserver",
    # Config
    "MemodagConfig",
    "create_cache",
    "load_config",
    "resolve_config",
]
