"""
Repository Timeline Edge Service

Caches GitHub change history (merged pull requests or commits, each with
file diffs) in SQLite and serves it over HTTP for timeline visualization.

Features:
- Round-robin token pool to spread rate-limit consumption
- Direct jump to the oldest commit page, with a fix for empty "last" pages
- Stale caches served immediately while a background refresh runs
- Atomic, idempotent per-cycle writes
"""

from .config import (
    Config,
    GitHubConfig,
    CacheConfig,
    SchedulerConfig,
    ServerConfig,
    LoggingConfig,
)
from .models import (
    ChangeKind,
    ChangeListing,
    ChangeRecord,
    ChangeStatus,
    FileDiff,
    RepoSyncState,
)
from .tokens import TokenRotator
from .github_client import GitHubClient
from .store import TimelineStore
from .sync import TimelineSyncEngine, SyncResult
from .scheduler import RefreshScheduler, JobStatus, create_scheduler
from .service import EdgeCacheService, CacheLookup
from .utils import (
    setup_logging,
    timed_operation,
    make_repo_key,
    split_repo_key,
    TimelineError,
    NotFoundOrPrivate,
    RateLimited,
    UpstreamError,
    StorageUnavailable,
    MalformedResponse,
    InvalidRequest,
    ConfigError,
)

__all__ = [
    # Config
    "Config",
    "GitHubConfig",
    "CacheConfig",
    "SchedulerConfig",
    "ServerConfig",
    "LoggingConfig",
    # Models
    "ChangeKind",
    "ChangeListing",
    "ChangeRecord",
    "ChangeStatus",
    "FileDiff",
    "RepoSyncState",
    # GitHub
    "TokenRotator",
    "GitHubClient",
    # Store
    "TimelineStore",
    # Sync
    "TimelineSyncEngine",
    "SyncResult",
    # Scheduler
    "RefreshScheduler",
    "JobStatus",
    "create_scheduler",
    # Service
    "EdgeCacheService",
    "CacheLookup",
    # Utils
    "setup_logging",
    "timed_operation",
    "make_repo_key",
    "split_repo_key",
    "TimelineError",
    "NotFoundOrPrivate",
    "RateLimited",
    "UpstreamError",
    "StorageUnavailable",
    "MalformedResponse",
    "InvalidRequest",
    "ConfigError",
]
