"""
Sync cycle engine for repository timelines.

One cycle:
1. Rotate to the next token and open a GitHub client
2. Pull-request mode: list merged PRs after the last seen number, starting
   from the page where the previous cycle stopped
   Commit mode: fetch the oldest commits, then extend the window forward
3. Fetch file diffs per change (failures degrade to an empty list)
4. Persist records and the new sync state in one transaction

Errors from listing or repository lookups propagate to the caller.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

import httpx
from loguru import logger

from .config import Config
from .github_client import GitHubClient
from .models import ChangeKind, ChangeListing, ChangeRecord, RepoSyncState, record_from_github
from .store import TimelineStore
from .tokens import TokenRotator
from .utils import make_repo_key, timed_operation


@dataclass
class SyncResult:
    """Result of one sync cycle."""
    repo_key: str
    mode: ChangeKind
    records: list[ChangeRecord] = field(default_factory=list)
    inserted: int = 0
    has_more: bool = False
    total_available: Optional[int] = None
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    duration_seconds: float = 0.0

    @property
    def message(self) -> str:
        if not self.records:
            return "No new changes"
        return f"Fetched {len(self.records)} changes, {self.inserted} new"


class TimelineSyncEngine:
    """
    Runs sync cycles against GitHub and writes them to the edge store.

    The engine is stateless between cycles; everything it needs to resume
    lives in RepoSyncState.
    """

    def __init__(
        self,
        config: Config,
        store: TimelineStore,
        tokens: TokenRotator,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.config = config
        self.store = store
        self.tokens = tokens
        self._transport = transport

    def open_client(self) -> GitHubClient:
        """Open a GitHub client bound to the next token in the pool."""
        gh = self.config.github
        return GitHubClient(
            token=self.tokens.next(),
            base_url=gh.api_url,
            per_page=gh.per_page,
            max_pages=gh.max_pages,
            timeout=gh.timeout,
            transport=self._transport,
        )

    def sync_repo(self, owner: str, repo: str, mode: Optional[ChangeKind] = None) -> SyncResult:
        """
        Run one sync cycle for a repository.

        Args:
            owner: Repository owner.
            repo: Repository name.
            mode: Change kind for a first sync. Ignored once a repository has
                sync state, which pins its mode.

        Returns:
            SyncResult for the cycle.
        """
        repo_key = make_repo_key(owner, repo)
        state = self.store.get_sync_state(repo_key)
        if state is not None:
            mode = state.mode
        elif mode is None:
            mode = ChangeKind(self.config.cache.default_mode)

        result = SyncResult(repo_key=repo_key, mode=mode)
        start = time.perf_counter()

        with timed_operation(f"Sync {repo_key}"):
            with self.open_client() as client:
                if state is None:
                    info = client.fetch_repo_info(owner, repo)
                    branch = info.get("default_branch") or "main"
                else:
                    branch = state.default_branch

                resume_page = state.resume_page if state else 1
                if mode is ChangeKind.PULL_REQUEST:
                    last_id, resume_page = self._sync_pull_requests(client, owner, repo, state, result)
                else:
                    last_id = self._sync_commits(client, owner, repo, branch, state, result)

            new_state = RepoSyncState(
                repo_key=repo_key,
                last_synced_at=datetime.now(timezone.utc),
                last_external_id=last_id,
                resume_page=resume_page,
                default_branch=branch,
                mode=mode,
            )
            result.inserted = self.store.apply_sync_cycle(new_state, result.records)

        result.duration_seconds = time.perf_counter() - start
        logger.info(f"Sync {repo_key} ({mode.value}): {result.message}, has_more={result.has_more}")
        return result

    def list_metadata(self, owner: str, repo: str) -> ChangeListing:
        """Walk merged pull requests without fetching any file diffs."""
        with self.open_client() as client:
            return client.fetch_change_list(
                owner, repo, max_pages=self.config.github.metadata_max_pages
            )

    def summarize(self, owner: str, repo: str, mode: ChangeKind) -> dict[str, Any]:
        """
        Coarse upstream size estimate and the first change in history.

        Pull-request mode counts closed PRs, which over-estimates merged ones.
        """
        with self.open_client() as client:
            if mode is ChangeKind.PULL_REQUEST:
                estimated = client.count_items(
                    f"/repos/{owner}/{repo}/pulls", {"state": "closed"}
                )
                first_page = client.fetch_change_list(owner, repo, max_pages=1)
                first = first_page.items[0] if first_page.items else None
                first_item = (
                    {"externalId": str(first["number"]), "occurredAt": first["merged_at"]}
                    if first else None
                )
            else:
                branch = client.fetch_repo_info(owner, repo).get("default_branch") or "main"
                estimated = client.count_commits(owner, repo, branch)
                oldest = client.fetch_oldest_changes(owner, repo, branch, 1)
                first_item = (
                    {
                        "externalId": oldest[0]["sha"],
                        "occurredAt": ((oldest[0].get("commit") or {}).get("author") or {}).get("date"),
                    }
                    if oldest else None
                )
        return {"estimated_total": estimated, "first_item": first_item}

    # =========================================================================
    # Internal Methods
    # =========================================================================

    def _sync_pull_requests(
        self,
        client: GitHubClient,
        owner: str,
        repo: str,
        state: Optional[RepoSyncState],
        result: SyncResult,
    ) -> tuple[Optional[str], int]:
        cap = self.config.cache.max_items_per_cycle
        since = state.last_external_id if state else None
        start_page = state.resume_page if state else 1

        listing = client.fetch_change_list(
            owner, repo, since_external_id=since, limit=cap, start_page=start_page
        )
        items = listing.items[:cap]
        result.has_more = len(listing.items) > cap or not listing.complete

        for item in items:
            diffs = client.fetch_file_diffs(owner, repo, str(item["number"]), ChangeKind.PULL_REQUEST)
            result.records.append(
                record_from_github(result.repo_key, item, ChangeKind.PULL_REQUEST, diffs)
            )

        # Resume on the page of the last kept item; its page may hold more.
        resume_page = listing.item_pages[len(items) - 1] if items else listing.next_page

        numbers = [int(r.external_id) for r in result.records]
        if since:
            numbers.append(int(since))
        return (str(max(numbers)) if numbers else None), max(resume_page, start_page)

    def _sync_commits(
        self,
        client: GitHubClient,
        owner: str,
        repo: str,
        branch: str,
        state: Optional[RepoSyncState],
        result: SyncResult,
    ) -> Optional[str]:
        cap = self.config.cache.max_items_per_cycle

        if state is None:
            items = client.fetch_oldest_changes(owner, repo, branch, cap)
            result.has_more = len(items) >= cap
        else:
            cached = self.store.count_changes(result.repo_key)
            items, total = client.fetch_commit_window(owner, repo, branch, cached, cap)
            result.total_available = total
            result.has_more = cached + len(items) < total

        for item in items:
            diffs = client.fetch_file_diffs(owner, repo, item["sha"], ChangeKind.COMMIT)
            result.records.append(record_from_github(result.repo_key, item, ChangeKind.COMMIT, diffs))

        if result.records:
            return result.records[-1].external_id
        return state.last_external_id if state else None
