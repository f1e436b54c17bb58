"""
GitHub API client for repository timeline synchronization.

Uses GitHub REST API with bearer-token authentication. Every non-2xx
response is mapped onto the timeline error taxonomy; there is no generic
retry. The only retry lives in fetch_oldest_changes, which compensates for
GitHub occasionally reporting a "last" page that is empty.

Endpoints:
  - GET /repos/{owner}/{repo} - Repository info (default branch)
  - GET /repos/{owner}/{repo}/pulls?state=closed - Pull request list
  - GET /repos/{owner}/{repo}/pulls/{number}/files - Pull request files
  - GET /repos/{owner}/{repo}/commits?sha={branch} - Commit list (newest first)
  - GET /repos/{owner}/{repo}/commits/{sha} - Commit with files
"""

from __future__ import annotations

import math
from datetime import datetime, timezone
from typing import Any, Optional

import httpx
from loguru import logger

from .models import ChangeKind, ChangeListing, FileDiff
from .utils import NotFoundOrPrivate, RateLimited, UpstreamError


class GitHubClient:
    """
    GitHub REST API client with rate limit tracking.

    One client is bound to one token; callers rotate tokens by opening a
    new client per sync cycle.
    """

    BASE_URL = "https://api.github.com"

    def __init__(
        self,
        token: Optional[str] = None,
        base_url: str = BASE_URL,
        per_page: int = 100,
        max_pages: int = 10,
        timeout: float = 30.0,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        """
        Initialize GitHub client.

        Args:
            token: GitHub token forwarded as a bearer credential.
            base_url: API root, overridable for GitHub Enterprise or tests.
            per_page: Page size for list endpoints (GitHub caps at 100).
            max_pages: Page ceiling for one change-list walk.
            timeout: Per-request timeout in seconds.
            transport: Optional httpx transport (used by tests).
        """
        self.per_page = per_page
        self.max_pages = max_pages

        headers = {
            "Accept": "application/vnd.github.v3+json",
            "User-Agent": "repo-timeline/1.0",
        }
        if token:
            headers["Authorization"] = f"Bearer {token}"
        else:
            logger.warning("Using unauthenticated GitHub API (60 req/hour limit)")

        self._client = httpx.Client(
            base_url=base_url,
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

        self._rate_limit_remaining: Optional[int] = None
        self._rate_limit_limit: Optional[int] = None
        self._rate_limit_reset: Optional[int] = None

    def close(self) -> None:
        """Close the HTTP client."""
        self._client.close()

    def __enter__(self) -> "GitHubClient":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    @property
    def rate_limit(self) -> dict[str, Optional[int]]:
        """Last rate-limit headers observed."""
        return {
            "remaining": self._rate_limit_remaining,
            "limit": self._rate_limit_limit,
            "reset": self._rate_limit_reset,
        }

    # =========================================================================
    # Public API
    # =========================================================================

    def fetch_repo_info(self, owner: str, repo: str) -> dict[str, Any]:
        """
        Fetch repository metadata, including the default branch.

        Raises:
            NotFoundOrPrivate: GitHub answers 404 for both private and missing repos.
        """
        response = self._get(f"/repos/{owner}/{repo}")
        return self._json(response)

    def fetch_change_list(
        self,
        owner: str,
        repo: str,
        since_external_id: Optional[str] = None,
        limit: Optional[int] = None,
        max_pages: Optional[int] = None,
        start_page: int = 1,
    ) -> ChangeListing:
        """
        Walk closed pull requests in creation order and keep merged ones.

        Newly closed pull requests only push items to later pages, so a walk
        may resume from any page at or before the first unseen item.

        Args:
            owner: Repository owner.
            repo: Repository name.
            since_external_id: Discard pull requests numbered at or below this.
            limit: Stop paging once more than this many items are collected.
            max_pages: Override for the page ceiling, counted from start_page.
            start_page: First page to request.

        Returns:
            ChangeListing; ``complete`` is False when paging stopped early.
            ``item_pages`` holds the page of each item and ``next_page`` the
            page to resume from when none of the items are kept.
        """
        ceiling = max_pages or self.max_pages
        since = int(since_external_id) if since_external_id else None
        endpoint = f"/repos/{owner}/{repo}/pulls"
        listing = ChangeListing(next_page=start_page)

        for page in range(start_page, start_page + ceiling):
            response = self._get(endpoint, params={
                "state": "closed",
                "sort": "created",
                "direction": "asc",
                "per_page": self.per_page,
                "page": page,
            })
            batch = self._json(response)
            listing.next_page = page
            if not batch:
                return listing

            for item in batch:
                if not item.get("merged_at"):
                    continue
                if since is not None and item["number"] <= since:
                    continue
                listing.items.append(item)
                listing.item_pages.append(page)

            if len(batch) < self.per_page:
                return listing

            listing.next_page = page + 1
            if limit is not None and len(listing.items) > limit:
                logger.debug(f"Collected {len(listing.items)} merged PRs, stopping at page {page}")
                listing.complete = False
                return listing

        logger.info(f"Hit page ceiling ({ceiling}) listing PRs for {owner}/{repo} from page {start_page}")
        listing.complete = False
        return listing

    def fetch_file_diffs(
        self,
        owner: str,
        repo: str,
        external_id: str,
        kind: ChangeKind = ChangeKind.PULL_REQUEST,
    ) -> list[FileDiff]:
        """
        Fetch file diffs for one change.

        Any failure degrades to an empty list so one bad item never aborts
        a sync cycle.
        """
        try:
            if kind is ChangeKind.PULL_REQUEST:
                response = self._get(
                    f"/repos/{owner}/{repo}/pulls/{external_id}/files",
                    params={"per_page": self.per_page},
                )
                files = self._json(response)
            else:
                response = self._get(f"/repos/{owner}/{repo}/commits/{external_id}")
                files = self._json(response).get("files") or []
            return [FileDiff.from_github(f) for f in files]
        except Exception as e:
            logger.warning(f"Failed to fetch files for {owner}/{repo}@{external_id}: {e}")
            return []

    def count_items(self, endpoint: str, params: Optional[dict[str, Any]] = None) -> int:
        """
        Count list items with a single one-item request.

        With per_page=1 the "last" page number equals the item count. Without
        pagination metadata the page itself holds every item.
        """
        query = dict(params or {})
        query.update({"per_page": 1, "page": 1})
        response = self._get(endpoint, params=query)

        last_page = self._last_page(response)
        if last_page is not None:
            return last_page
        return len(self._json(response))

    def count_commits(self, owner: str, repo: str, branch: str) -> int:
        return self.count_items(f"/repos/{owner}/{repo}/commits", {"sha": branch})

    def fetch_oldest_changes(
        self,
        owner: str,
        repo: str,
        branch: str,
        max_count: int = 100,
    ) -> list[dict[str, Any]]:
        """
        Fetch the oldest commits on a branch, oldest first.

        Jumps straight to the last page named in the Link header instead of
        walking the whole history. When that page comes back empty the true
        last page is recomputed from a one-item probe and fetched once more;
        if it is empty too the repository has no history.

        A response without a Link header (or without a "last" marker) is
        treated as the only page.
        """
        endpoint = f"/repos/{owner}/{repo}/commits"
        first = self._get(endpoint, params=self._commit_params(branch, 1))

        last_page = self._last_page(first)
        if last_page is None:
            logger.debug(f"No pagination metadata for {owner}/{repo}@{branch}, using page 1")
            return list(reversed(self._json(first)))[:max_count]

        logger.debug(f"Last page for {owner}/{repo}@{branch}: {last_page}")
        page = last_page
        commits = self._json(self._get(endpoint, params=self._commit_params(branch, page)))

        if not commits:
            total = self.count_commits(owner, repo, branch)
            actual_page = math.ceil(total / self.per_page)
            logger.warning(
                f"Last page {last_page} is empty for {owner}/{repo}; "
                f"{total} commits puts it at page {actual_page}"
            )
            if actual_page == last_page or actual_page < 1:
                return []

            page = actual_page
            commits = self._json(self._get(endpoint, params=self._commit_params(branch, page)))
            if not commits:
                logger.info(f"Recomputed page {page} is also empty, no history for {owner}/{repo}")
                return []

        collected = list(reversed(commits))
        while len(collected) < max_count and page > 1:
            page -= 1
            newer = self._json(self._get(endpoint, params=self._commit_params(branch, page)))
            collected.extend(reversed(newer))

        return collected[:max_count]

    def fetch_commit_window(
        self,
        owner: str,
        repo: str,
        branch: str,
        skip_oldest: int,
        count: int,
    ) -> tuple[list[dict[str, Any]], int]:
        """
        Fetch the next ``count`` commits after the oldest ``skip_oldest``.

        The commit list is newest first, so chronological position ``i`` sits
        at index ``total - 1 - i``.

        Returns:
            Tuple of (commits oldest first, total commits on the branch).
        """
        total = self.count_commits(owner, repo, branch)
        if count <= 0 or skip_oldest >= total:
            return [], total

        hi = total - 1 - skip_oldest
        lo = max(0, total - skip_oldest - count)
        first_page = lo // self.per_page + 1
        last_page = hi // self.per_page + 1

        endpoint = f"/repos/{owner}/{repo}/commits"
        newest_first: list[dict[str, Any]] = []
        for page in range(first_page, last_page + 1):
            batch = self._json(self._get(endpoint, params=self._commit_params(branch, page)))
            newest_first.extend(batch)

        offset = (first_page - 1) * self.per_page
        window = newest_first[lo - offset:hi - offset + 1]
        return list(reversed(window)), total

    # =========================================================================
    # Internal Methods
    # =========================================================================

    def _commit_params(self, branch: str, page: int) -> dict[str, Any]:
        return {"sha": branch, "per_page": self.per_page, "page": page}

    def _get(self, endpoint: str, params: Optional[dict[str, Any]] = None) -> httpx.Response:
        """
        Issue a GET and map failures onto timeline errors.

        Raises:
            NotFoundOrPrivate: 404.
            RateLimited: 403 or 429.
            UpstreamError: Any other non-2xx status, or a transport failure.
        """
        try:
            response = self._client.get(endpoint, params=params)
        except httpx.HTTPError as e:
            raise UpstreamError(f"GitHub request failed: {e}") from e

        self._update_rate_limit(response)

        if response.status_code == 404:
            raise NotFoundOrPrivate(
                f"Unable to access repository: {self._repo_from_endpoint(endpoint)}. "
                "This repository may be private or doesn't exist."
            )
        if response.status_code in (403, 429):
            raise RateLimited(
                "GitHub API rate limit exceeded",
                remaining=self._rate_limit_remaining,
                limit=self._rate_limit_limit,
                reset=self._rate_limit_reset,
            )
        if not response.is_success:
            raise UpstreamError(
                f"GitHub API error: {response.status_code}",
                status_code=response.status_code,
            )
        return response

    def _json(self, response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError as e:
            raise UpstreamError(
                f"Invalid JSON from GitHub: {e}", status_code=response.status_code
            ) from e

    def _last_page(self, response: httpx.Response) -> Optional[int]:
        """Page number of the rel="last" Link entry, if any."""
        last = response.links.get("last")
        if not last or "url" not in last:
            return None
        page = httpx.URL(last["url"]).params.get("page")
        try:
            return int(page) if page is not None else None
        except ValueError:
            return None

    def _repo_from_endpoint(self, endpoint: str) -> str:
        parts = endpoint.strip("/").split("/")
        if len(parts) >= 3 and parts[0] == "repos":
            return f"{parts[1]}/{parts[2]}"
        return endpoint

    def _update_rate_limit(self, response: httpx.Response) -> None:
        """Update rate limit tracking from response headers."""
        remaining = response.headers.get("X-RateLimit-Remaining")
        limit = response.headers.get("X-RateLimit-Limit")
        reset = response.headers.get("X-RateLimit-Reset")

        if remaining and remaining.isdigit():
            self._rate_limit_remaining = int(remaining)
            if self._rate_limit_remaining < 10:
                logger.warning(f"Rate limit low: {self._rate_limit_remaining}/{limit} requests remaining")
        if limit and limit.isdigit():
            self._rate_limit_limit = int(limit)
        if reset and reset.isdigit():
            self._rate_limit_reset = int(reset)
            if self._rate_limit_remaining is not None and self._rate_limit_remaining < 10:
                reset_time = datetime.fromtimestamp(self._rate_limit_reset, tz=timezone.utc)
                logger.warning(f"Rate limit resets at: {reset_time.strftime('%H:%M:%S')}")
