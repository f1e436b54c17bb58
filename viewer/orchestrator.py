"""
Load orchestration for a repository timeline.

States: idle -> loading_from_cache | loading_incremental -> ready | error

A repository with cached data is loaded in one blocking call. Otherwise
records are streamed page by page, with a snapshot reported per record.
If streaming fails and a cache existed when the load started, the cached
data is loaded instead and the failure becomes a warning.

Switching repositories or unmounting bumps a generation counter; results
from a superseded load are dropped instead of applied.
"""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from enum import Enum
from typing import Any, Callable, Iterator, Optional

from services.timeline.models import ChangeRecord
from services.timeline.utils import RateLimited

from .file_state import FileStateTracker
from .snapshot import TimelineSnapshot, build_snapshot, build_timeline
from .source import LoadProgress, TimelineSource

log = logging.getLogger(__name__)

DEFAULT_ERROR_MESSAGE = "Failed to load repository"


class LoadState(str, Enum):
    IDLE = "idle"
    LOADING_FROM_CACHE = "loading_from_cache"
    LOADING_INCREMENTAL = "loading_incremental"
    READY = "ready"
    ERROR = "error"


def error_message(error: BaseException) -> str:
    return str(error) or DEFAULT_ERROR_MESSAGE


class LoadOrchestrator:
    """Client-side controller choosing between cached and live loading."""

    def __init__(
        self,
        source: TimelineSource,
        on_snapshot: Optional[Callable[[TimelineSnapshot], None]] = None,
        on_progress: Optional[Callable[[LoadProgress], None]] = None,
        on_state: Optional[Callable[[LoadState], None]] = None,
    ):
        self.source = source
        self.on_snapshot = on_snapshot
        self.on_progress = on_progress
        self.on_state = on_state

        self.repo_key: Optional[str] = None
        self._generation = 0
        self._busy: set[str] = set()
        self._lock = threading.Lock()
        self._reset()

    # ---------------------------------------------------------------------------
    # Public API
    # ---------------------------------------------------------------------------

    def mount(self, repo_key: str) -> LoadState:
        """Start loading a repository, superseding any previous load."""
        with self._exclusive(repo_key) as acquired:
            if not acquired:
                return self.state

            gen = self._begin(repo_key)
            self._load_metadata(gen)
            cache_existed = self.source.has_cache(repo_key)
            if not self._current(gen):
                return self.state

            if cache_existed:
                self._load_from_cache(gen)
            else:
                self._load_incremental(gen, force_refresh=False, cache_existed=False)
            return self.state

    def load_commits(self, force_refresh: bool = False) -> LoadState:
        """
        Reload the mounted repository.

        With ``force_refresh`` both cache tiers are bypassed and the edge
        service syncs with GitHub before answering.
        """
        if self.repo_key is None:
            raise RuntimeError("No repository mounted")
        if not force_refresh:
            return self.mount(self.repo_key)

        repo_key = self.repo_key
        with self._exclusive(repo_key) as acquired:
            if not acquired:
                return self.state

            gen = self._begin(repo_key)
            cache_existed = self.source.has_cache(repo_key)
            if self._current(gen):
                self._load_incremental(gen, force_refresh=True, cache_existed=cache_existed)
            return self.state

    def unmount(self) -> None:
        """Drop the current repository; in-flight results will be discarded."""
        with self._lock:
            self._generation += 1
        self.repo_key = None
        self._reset()

    # ---------------------------------------------------------------------------
    # Loading paths
    # ---------------------------------------------------------------------------

    def _load_metadata(self, gen: int) -> None:
        try:
            data = self.source.metadata(self.repo_key)
        except Exception as e:
            log.warning("Metadata for %s unavailable: %s", self.repo_key, e)
            return
        if not self._current(gen):
            return
        self.total = data.get("changeCount")
        time_range = data.get("timeRange") or {}
        if time_range.get("start") is not None:
            self.time_range = (time_range.get("start"), time_range.get("end"))

    def _load_from_cache(self, gen: int) -> None:
        self._set_state(gen, LoadState.LOADING_FROM_CACHE)
        try:
            records = self.source.load_cached(self.repo_key)
        except Exception as e:
            log.error("Cache load failed for %s: %s", self.repo_key, e)
            self._fail(gen, e)
            return
        self._finish_from_records(gen, records, stale_fallback=False)

    def _load_incremental(self, gen: int, force_refresh: bool, cache_existed: bool) -> None:
        self._set_state(gen, LoadState.LOADING_INCREMENTAL)
        tracker = FileStateTracker()

        def on_record(record: ChangeRecord) -> None:
            if not self._current(gen):
                return
            tracker.apply(record.file_diffs)
            snapshot = TimelineSnapshot(
                external_id=record.external_id,
                title=record.title,
                author=record.author,
                timestamp=record.occurred_at,
                tree=build_snapshot(tracker.snapshot()),
            )
            self.snapshots.append(snapshot)
            if self.on_snapshot:
                self.on_snapshot(snapshot)

        def on_progress(progress: LoadProgress) -> None:
            if not self._current(gen):
                return
            self.progress = progress
            if self.on_progress:
                self.on_progress(progress)

        try:
            records = self.source.load_incremental(
                self.repo_key,
                on_record=on_record,
                on_progress=on_progress,
                force_refresh=force_refresh,
            )
        except Exception as e:
            if not self._current(gen):
                return
            log.warning("Incremental load failed for %s: %s", self.repo_key, e)
            if isinstance(e, RateLimited):
                self.rate_limit = {"remaining": e.remaining, "limit": e.limit, "reset": e.reset}
            if not cache_existed:
                self._fail(gen, e)
                return
            self._fall_back_to_cache(gen, e)
            return

        if not self._current(gen):
            return
        self.records = records
        self.from_cache = False
        self._set_state(gen, LoadState.READY)

    def _fall_back_to_cache(self, gen: int, original: Exception) -> None:
        self._set_state(gen, LoadState.LOADING_FROM_CACHE)
        try:
            records = self.source.load_cached(self.repo_key)
        except Exception as fallback_error:
            log.error("Cache fallback failed for %s: %s", self.repo_key, fallback_error)
            self._fail(gen, original)
            return
        self.warning = error_message(original)
        self._finish_from_records(gen, records, stale_fallback=True)

    def _finish_from_records(self, gen: int, records: list[ChangeRecord], stale_fallback: bool) -> None:
        if not self._current(gen):
            return
        self.records = records
        self.snapshots = list(build_timeline(records))
        self.from_cache = True
        self.stale_fallback = stale_fallback
        self.progress = LoadProgress(loaded=len(records), total=len(records), percentage=100.0)
        self._set_state(gen, LoadState.READY)

    # ---------------------------------------------------------------------------
    # State helpers
    # ---------------------------------------------------------------------------

    def _reset(self) -> None:
        self.state = LoadState.IDLE
        self.records: list[ChangeRecord] = []
        self.snapshots: list[TimelineSnapshot] = []
        self.from_cache = False
        self.stale_fallback = False
        self.warning: Optional[str] = None
        self.error: Optional[str] = None
        self.progress: Optional[LoadProgress] = None
        self.time_range: Optional[tuple[Any, Any]] = None
        self.total: Optional[int] = None
        self.rate_limit: Optional[dict[str, Any]] = None

    def _begin(self, repo_key: str) -> int:
        with self._lock:
            self._generation += 1
            gen = self._generation
        self.repo_key = repo_key
        self._reset()
        return gen

    def _current(self, gen: int) -> bool:
        return gen == self._generation

    @contextmanager
    def _exclusive(self, repo_key: str) -> Iterator[bool]:
        """Yield False if a load for ``repo_key`` is already running."""
        with self._lock:
            if repo_key in self._busy:
                log.info("Load already in progress for %s", repo_key)
                acquired = False
            else:
                self._busy.add(repo_key)
                acquired = True
        try:
            yield acquired
        finally:
            if acquired:
                with self._lock:
                    self._busy.discard(repo_key)

    def _set_state(self, gen: int, state: LoadState) -> None:
        if not self._current(gen):
            return
        self.state = state
        if self.on_state:
            self.on_state(state)

    def _fail(self, gen: int, error: Exception) -> None:
        if not self._current(gen):
            return
        self.error = error_message(error)
        self._set_state(gen, LoadState.ERROR)
