"""
Background refresh pool for stale repository caches.

Uses APScheduler with a bounded thread pool. Request handlers enqueue a
refresh and return without waiting on it.

Features:
- One job id per repository, so repeated triggers collapse
- Bounded worker pool
- Optional periodic sweep of every stale repository
- Graceful shutdown
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from apscheduler.executors.pool import ThreadPoolExecutor
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger
from loguru import logger

from .config import Config
from .store import TimelineStore
from .sync import SyncResult, TimelineSyncEngine
from .utils import split_repo_key


@dataclass
class JobStatus:
    """Status of background refreshes for one repository."""
    repo_key: str
    last_run: Optional[datetime] = None
    last_result: Optional[SyncResult] = None
    last_error: Optional[str] = None
    error_count: int = 0
    is_running: bool = False


class RefreshScheduler:
    """
    Fire-and-forget refresh queue backed by a BackgroundScheduler.

    Failures are logged and recorded in JobStatus; they never reach the
    request that triggered the refresh.
    """

    SWEEP_JOB_ID = "sweep:stale"

    def __init__(self, config: Config, engine: TimelineSyncEngine, store: TimelineStore):
        self.config = config
        self.engine = engine
        self.store = store

        self._scheduler = BackgroundScheduler(
            timezone="UTC",
            executors={"default": ThreadPoolExecutor(config.scheduler.max_workers)},
            job_defaults={
                "max_instances": 1,  # One refresh per repository at a time
                "misfire_grace_time": 60,
                "coalesce": True,
            },
        )
        self._statuses: dict[str, JobStatus] = {}
        self._lock = threading.Lock()
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    def start(self) -> None:
        """Start the worker pool and, if configured, the stale sweep."""
        if self._running:
            logger.warning("Refresh scheduler already running")
            return

        interval = self.config.scheduler.sweep_interval
        if interval > 0:
            self._scheduler.add_job(
                self.sweep_stale,
                trigger=IntervalTrigger(seconds=interval),
                id=self.SWEEP_JOB_ID,
                name="Sweep stale repositories",
                replace_existing=True,
            )
            logger.info(f"Stale sweep scheduled every {interval}s")

        self._scheduler.start()
        self._running = True
        logger.info(f"Refresh scheduler started with {self.config.scheduler.max_workers} workers")

    def stop(self, wait: bool = True) -> None:
        """Stop the scheduler gracefully."""
        if not self._running:
            return
        logger.info("Stopping refresh scheduler")
        self._running = False
        self._scheduler.shutdown(wait=wait)
        logger.info("Refresh scheduler stopped")

    def enqueue(self, repo_key: str) -> bool:
        """
        Queue a background refresh for a repository.

        Returns:
            False if the scheduler is not running or a refresh for this
            repository is already in flight.
        """
        if not self._running:
            logger.warning(f"Refresh scheduler not running, skipping refresh for {repo_key}")
            return False

        with self._lock:
            status = self._statuses.setdefault(repo_key, JobStatus(repo_key=repo_key))
            if status.is_running:
                logger.debug(f"Refresh already running for {repo_key}")
                return False

        self._scheduler.add_job(
            self._run_refresh,
            id=f"refresh:{repo_key}",
            name=f"Refresh {repo_key}",
            args=[repo_key],
            replace_existing=True,
        )
        logger.info(f"Background refresh queued for {repo_key}")
        return True

    def sweep_stale(self) -> int:
        """Queue a refresh for every repository older than the staleness threshold."""
        cutoff = datetime.now(timezone.utc) - timedelta(seconds=self.config.cache.staleness_seconds)
        queued = 0
        for state in self.store.list_stale_repos(cutoff):
            if self.enqueue(state.repo_key):
                queued += 1
        if queued:
            logger.info(f"Stale sweep queued {queued} refresh(es)")
        return queued

    def get_job_statuses(self) -> dict[str, dict[str, Any]]:
        """Status of every repository that has been refreshed in the background."""
        with self._lock:
            return {
                key: {
                    "repo_key": key,
                    "last_run": str(status.last_run) if status.last_run else None,
                    "last_inserted": status.last_result.inserted if status.last_result else None,
                    "last_error": status.last_error,
                    "error_count": status.error_count,
                    "is_running": status.is_running,
                }
                for key, status in self._statuses.items()
            }

    # =========================================================================
    # Internal Methods
    # =========================================================================

    def _run_refresh(self, repo_key: str) -> Optional[SyncResult]:
        with self._lock:
            status = self._statuses.setdefault(repo_key, JobStatus(repo_key=repo_key))
            status.is_running = True

        try:
            owner, repo = split_repo_key(repo_key)
            result = self.engine.sync_repo(owner, repo)
            with self._lock:
                status.last_result = result
                status.last_error = None
            return result
        except Exception as e:
            with self._lock:
                status.error_count += 1
                status.last_error = str(e)
            logger.error(f"Background refresh failed for {repo_key}: {e}")
            return None
        finally:
            with self._lock:
                status.last_run = datetime.now(timezone.utc)
                status.is_running = False


def create_scheduler(
    config: Config,
    engine: TimelineSyncEngine,
    store: TimelineStore,
) -> RefreshScheduler:
    """
    Create a refresh scheduler, validating the pool settings.

    Args:
        config: Service configuration.
        engine: Sync engine used by refresh jobs.
        store: Edge store scanned by the stale sweep.
    """
    if config.scheduler.max_workers < 1:
        raise ValueError("scheduler.max_workers must be at least 1")
    return RefreshScheduler(config, engine, store)
