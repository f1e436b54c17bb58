"""
Edge cache service: serves stored timelines and decides when to sync.

A repository counts as cached once it has sync state, even with zero
records. Cached data is returned immediately; data older than the staleness
threshold also queues a background refresh that the caller never waits on.
Uncached repositories are synced synchronously on first request.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

import httpx
from loguru import logger

from .config import Config
from .models import ChangeKind, ChangeRecord, format_instant, parse_instant, to_epoch_ms
from .scheduler import RefreshScheduler, create_scheduler
from .store import TimelineStore
from .sync import TimelineSyncEngine
from .tokens import TokenRotator
from .utils import make_repo_key


@dataclass
class CacheLookup:
    """Outcome of handle()."""
    repo_key: str
    records: list[ChangeRecord] = field(default_factory=list)
    hit: bool = False
    age_seconds: Optional[float] = None
    total: int = 0
    refresh_queued: bool = False


class EdgeCacheService:
    """Request-level facade over the store, sync engine and refresh pool."""

    def __init__(
        self,
        config: Config,
        store: TimelineStore,
        tokens: TokenRotator,
        engine: Optional[TimelineSyncEngine] = None,
        scheduler: Optional[RefreshScheduler] = None,
    ):
        self.config = config
        self.store = store
        self.tokens = tokens
        self.engine = engine or TimelineSyncEngine(config, store, tokens)
        self.scheduler = scheduler

    @classmethod
    def from_config(
        cls,
        config: Config,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> "EdgeCacheService":
        """Wire up store, token pool, engine and refresh pool from config."""
        store = TimelineStore(config.cache.path)
        tokens = TokenRotator(config.github.tokens)
        engine = TimelineSyncEngine(config, store, tokens, transport=transport)
        scheduler = create_scheduler(config, engine, store) if config.scheduler.enabled else None
        return cls(config, store, tokens, engine=engine, scheduler=scheduler)

    def start(self) -> None:
        if self.scheduler:
            self.scheduler.start()

    def stop(self) -> None:
        if self.scheduler:
            self.scheduler.stop()

    # =========================================================================
    # Request Handlers
    # =========================================================================

    def handle(
        self,
        owner: str,
        repo: str,
        force_refresh: bool = False,
        offset: int = 0,
        limit: Optional[int] = None,
        mode: Optional[ChangeKind] = None,
    ) -> CacheLookup:
        """
        Return stored change records, syncing first when nothing is cached.

        Args:
            owner: Repository owner.
            repo: Repository name.
            force_refresh: Run a synchronous cycle even when cached.
            offset: Records to skip in timeline order.
            limit: Maximum records to return, None for all.
            mode: Change kind to use if this is the first sync.
        """
        repo_key = make_repo_key(owner, repo)
        state = self.store.get_sync_state(repo_key)

        if state is None or force_refresh:
            reason = "forced refresh" if state is not None else "no cache"
            logger.info(f"Fetching {repo_key} from GitHub ({reason})")
            self.engine.sync_repo(owner, repo, mode=mode)
            return CacheLookup(
                repo_key=repo_key,
                records=self.store.get_changes(repo_key, offset, limit),
                hit=False,
                total=self.store.count_changes(repo_key),
            )

        age = (datetime.now(timezone.utc) - state.last_synced_at).total_seconds()
        queued = False
        if age > self.config.cache.staleness_seconds:
            logger.info(f"Cache for {repo_key} is {round(age / 60)} minutes old, queueing refresh")
            queued = self._queue_refresh(repo_key)

        records = self.store.get_changes(repo_key, offset, limit)
        logger.debug(f"Serving {len(records)} cached changes for {repo_key}")
        return CacheLookup(
            repo_key=repo_key,
            records=records,
            hit=True,
            age_seconds=age,
            total=self.store.count_changes(repo_key),
            refresh_queued=queued,
        )

    def metadata(self, owner: str, repo: str) -> dict[str, Any]:
        """Change count and time range, without file diffs."""
        repo_key = make_repo_key(owner, repo)
        if self.store.get_sync_state(repo_key) is not None:
            first, last = self.store.get_change_bounds(repo_key)
            return {
                "changeCount": self.store.count_changes(repo_key),
                "timeRange": {"start": to_epoch_ms(first), "end": to_epoch_ms(last)},
            }

        if ChangeKind(self.config.cache.default_mode) is ChangeKind.PULL_REQUEST:
            listing = self.engine.list_metadata(owner, repo)
            times = [parse_instant(item["merged_at"]) for item in listing.items]
            return {
                "changeCount": len(listing.items),
                "timeRange": {
                    "start": to_epoch_ms(min(times)) if times else None,
                    "end": to_epoch_ms(max(times)) if times else None,
                },
            }

        summary = self.engine.summarize(owner, repo, ChangeKind.COMMIT)
        first = summary["first_item"]
        return {
            "changeCount": summary["estimated_total"],
            "timeRange": {
                "start": to_epoch_ms(parse_instant(first["occurredAt"])) if first and first["occurredAt"] else None,
                "end": None,
            },
        }

    def cache_status(self, owner: str, repo: str) -> dict[str, Any]:
        """Describe what the edge store holds for a repository."""
        repo_key = make_repo_key(owner, repo)
        state = self.store.get_sync_state(repo_key)
        if state is None:
            return {
                "exists": False,
                "cachedCount": 0,
                "ageSeconds": None,
                "lastExternalId": None,
                "defaultBranch": None,
                "firstChange": None,
                "lastChange": None,
            }

        count = self.store.count_changes(repo_key)
        first = self.store.get_changes(repo_key, 0, 1)
        last = self.store.get_changes(repo_key, count - 1, 1) if count else []
        age = (datetime.now(timezone.utc) - state.last_synced_at).total_seconds()
        return {
            "exists": True,
            "cachedCount": count,
            "ageSeconds": round(age),
            "lastExternalId": state.last_external_id,
            "defaultBranch": state.default_branch,
            "firstChange": self._change_marker(first[0]) if first else None,
            "lastChange": self._change_marker(last[0]) if last else None,
        }

    def fetch_more(self, owner: str, repo: str) -> dict[str, Any]:
        """Run one synchronous cycle beyond what is cached and report it."""
        repo_key = make_repo_key(owner, repo)
        result = self.engine.sync_repo(owner, repo)
        total_cached = self.store.count_changes(repo_key)
        total_available = result.total_available
        if total_available is None:
            total_available = total_cached + (1 if result.has_more else 0)
        return {
            "items": [record.to_dict() for record in result.records],
            "fetchedCount": len(result.records),
            "totalCached": total_cached,
            "totalAvailable": total_available,
            "hasMore": result.has_more,
        }

    def summary(self, owner: str, repo: str) -> dict[str, Any]:
        """Coarse upstream size estimate."""
        repo_key = make_repo_key(owner, repo)
        state = self.store.get_sync_state(repo_key)
        mode = state.mode if state else ChangeKind(self.config.cache.default_mode)
        threshold = self.config.cache.summary_threshold

        result = self.engine.summarize(owner, repo, mode)
        return {
            "estimatedTotalItems": result["estimated_total"],
            "hasMoreThanN": result["estimated_total"] > threshold,
            "threshold": threshold,
            "firstMergedItem": result["first_item"],
        }

    def health(self) -> dict[str, Any]:
        return {"status": "ok", "tokens": len(self.tokens)}

    # =========================================================================
    # Internal Methods
    # =========================================================================

    def _queue_refresh(self, repo_key: str) -> bool:
        if self.scheduler is None:
            logger.debug(f"Background refresh disabled, not refreshing {repo_key}")
            return False
        try:
            return self.scheduler.enqueue(repo_key)
        except Exception as e:
            logger.error(f"Failed to queue refresh for {repo_key}: {e}")
            return False

    @staticmethod
    def _change_marker(record: ChangeRecord) -> dict[str, Any]:
        return {"externalId": record.external_id, "occurredAt": format_instant(record.occurred_at)}
