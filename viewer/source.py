"""
Two-tier timeline source: the local client cache first, then the edge service.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional

from services.timeline.models import ChangeRecord
from services.timeline.utils import TimelineError

from .client_cache import ClientCacheStore
from .config import Config
from .edge_client import EdgeClient

log = logging.getLogger(__name__)


@dataclass
class LoadProgress:
    loaded: int
    total: Optional[int] = None
    percentage: Optional[float] = None


class TimelineSource:
    """Reads change records through the client cache and the edge service."""

    def __init__(
        self,
        edge: EdgeClient,
        cache: ClientCacheStore,
        page_size: int = Config.PAGE_SIZE,
    ):
        self.edge = edge
        self.cache = cache
        self.page_size = page_size

    def has_cache(self, repo_key: str) -> bool:
        """True if either tier holds data for the repository."""
        if self.cache.cache_info(repo_key)["exists"]:
            return True
        try:
            return bool(self.edge.cache_status(repo_key).get("exists"))
        except TimelineError as e:
            log.warning("Cache status for %s unavailable: %s", repo_key, e)
            return False

    def load_cached(self, repo_key: str) -> list[ChangeRecord]:
        """Blocking load of everything cached, refilling the client tier on a miss."""
        records = self.cache.load(repo_key)
        if records is not None:
            log.info("Loaded %d records for %s from client cache", len(records), repo_key)
            return records

        page = self.edge.get_changes(repo_key)
        log.info(
            "Loaded %d records for %s from edge (%s)",
            len(page.records), repo_key, "HIT" if page.cache_hit else "MISS",
        )
        self.cache.save(repo_key, page.records)
        return page.records

    def load_incremental(
        self,
        repo_key: str,
        on_record: Optional[Callable[[ChangeRecord], None]] = None,
        on_progress: Optional[Callable[[LoadProgress], None]] = None,
        force_refresh: bool = False,
    ) -> list[ChangeRecord]:
        """
        Page through the edge service, reporting each record as it arrives.

        With ``force_refresh`` the first page asks the edge to sync with
        GitHub before answering. The full result replaces the client cache.
        """
        records: list[ChangeRecord] = []
        total: Optional[int] = None
        offset = 0

        while True:
            page = self.edge.get_changes(
                repo_key,
                offset=offset,
                limit=self.page_size,
                refresh=force_refresh and offset == 0,
            )
            if page.total is not None:
                total = page.total

            for record in page.records:
                records.append(record)
                if on_record:
                    on_record(record)

            offset += len(page.records)
            if on_progress:
                percentage = round(len(records) / total * 100, 1) if total else None
                on_progress(LoadProgress(loaded=len(records), total=total, percentage=percentage))

            if not page.has_more or not page.records:
                break

        self.cache.save(repo_key, records)
        return records

    def metadata(self, repo_key: str) -> dict[str, Any]:
        return self.edge.metadata(repo_key)
