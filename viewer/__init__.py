"""
Timeline viewer client.

Replays a repository's change history as file-tree snapshots, reading
through a local SQLite cache and the timeline edge service.
"""

from typing import Callable, Optional

from .client_cache import ClientCacheStore
from .config import Config
from .edge_client import EdgeClient, EdgePage
from .file_state import FileEntry, FileStateTracker
from .orchestrator import LoadOrchestrator, LoadState
from .snapshot import (
    FileNode,
    FileTreeSnapshot,
    ParentEdge,
    TimelineSnapshot,
    build_snapshot,
    build_timeline,
)
from .source import LoadProgress, TimelineSource


def create_orchestrator(
    on_snapshot: Optional[Callable[[TimelineSnapshot], None]] = None,
    on_progress: Optional[Callable[[LoadProgress], None]] = None,
) -> LoadOrchestrator:
    """Wire an orchestrator to the configured edge service and client cache."""
    Config.configure_logging()
    source = TimelineSource(
        edge=EdgeClient(Config.TIMELINE_API_URL, timeout=Config.EDGE_TIMEOUT),
        cache=ClientCacheStore(Config.CLIENT_CACHE_PATH, max_size_mb=Config.CLIENT_CACHE_MAX_MB),
        page_size=Config.PAGE_SIZE,
    )
    return LoadOrchestrator(source, on_snapshot=on_snapshot, on_progress=on_progress)


__all__ = [
    # Configuration
    "Config",
    # File state
    "FileEntry",
    "FileStateTracker",
    # Snapshots
    "FileNode",
    "ParentEdge",
    "FileTreeSnapshot",
    "TimelineSnapshot",
    "build_snapshot",
    "build_timeline",
    # Caching and transport
    "ClientCacheStore",
    "EdgeClient",
    "EdgePage",
    "TimelineSource",
    # Orchestration
    "LoadOrchestrator",
    "LoadProgress",
    "LoadState",
    "create_orchestrator",
]
