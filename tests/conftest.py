"""
Shared fixtures: an in-memory GitHub fake served through httpx.MockTransport,
plus config, store and service wiring that points at it.
"""

import math
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

import httpx
import pytest

from services.timeline import (
    ChangeKind,
    ChangeRecord,
    ChangeStatus,
    Config,
    EdgeCacheService,
    FileDiff,
    TimelineStore,
    TimelineSyncEngine,
    TokenRotator,
)

API_URL = "https://api.github.test"
EPOCH = datetime(2024, 1, 1, tzinfo=timezone.utc)


def iso(hours: int) -> str:
    return (EPOCH + timedelta(hours=hours)).isoformat().replace("+00:00", "Z")


def make_pr(number: int, merged: bool = True, login: str = "alice") -> dict[str, Any]:
    """Closed pull request; merge time grows with the number."""
    return {
        "number": number,
        "title": f"PR {number}",
        "user": {"login": login},
        "created_at": iso(number - 1),
        "merged_at": iso(number) if merged else None,
    }


def commit_sha(index: int) -> str:
    return f"{index:040x}"


def make_commit(index: int) -> dict[str, Any]:
    """Commit ``index`` in chronological order (0 is the oldest)."""
    return {
        "sha": commit_sha(index),
        "commit": {
            "message": f"Commit {index}\n\nDetails",
            "author": {"name": "Bob", "date": iso(index)},
        },
        "author": {"login": "bob"},
    }


def make_file(filename: str, status: str = "added", additions: int = 10,
              deletions: int = 0, previous: Optional[str] = None) -> dict[str, Any]:
    data = {"filename": filename, "status": status, "additions": additions, "deletions": deletions}
    if previous:
        data["previous_filename"] = previous
    return data


def make_record(external_id: str, hours: int, diffs=(), repo_key: str = "octo/repo",
                kind: ChangeKind = ChangeKind.PULL_REQUEST) -> ChangeRecord:
    return ChangeRecord(
        repo_key=repo_key,
        external_id=external_id,
        title=f"Change {external_id}",
        author="alice",
        occurred_at=EPOCH + timedelta(hours=hours),
        file_diffs=tuple(diffs),
        kind=kind,
    )


def added(filename: str, additions: int = 10) -> FileDiff:
    return FileDiff(filename=filename, status=ChangeStatus.ADDED, additions=additions)


class FakeGitHub:
    """
    Minimal GitHub REST fake.

    ``pulls`` are in creation order; ``commits`` are newest first, as the
    real commit list is. Link headers follow GitHub's rules: present only
    when there is more than one page.
    """

    def __init__(self):
        self.default_branch = "main"
        self.pulls: list[dict[str, Any]] = []
        self.commits: list[dict[str, Any]] = []
        self.pr_files: dict[int, list[dict[str, Any]]] = {}
        self.commit_files: dict[str, list[dict[str, Any]]] = {}
        self.missing = False
        self.fail_status: dict[str, int] = {}
        self.link_headers = True
        # Reported "last" page for list requests with per_page > 1
        self.phantom_last_page: Optional[int] = None
        self.rate_headers = {
            "X-RateLimit-Remaining": "4999",
            "X-RateLimit-Limit": "5000",
            "X-RateLimit-Reset": "1700000000",
        }
        self.requests: list[httpx.Request] = []

    def add_commits(self, count: int) -> None:
        self.commits = [make_commit(i) for i in reversed(range(count))]

    def paths(self) -> list[str]:
        return [r.url.path for r in self.requests]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path

        if path in self.fail_status:
            return httpx.Response(
                self.fail_status[path], json={"message": "failure"}, headers=self.rate_headers
            )
        if self.missing:
            return httpx.Response(404, json={"message": "Not Found"}, headers=self.rate_headers)

        parts = path.strip("/").split("/")
        if len(parts) == 3:
            return self._json({"default_branch": self.default_branch, "full_name": "/".join(parts[1:])})

        resource = parts[3]
        if resource == "pulls" and len(parts) == 4:
            return self._paged(request, self.pulls)
        if resource == "pulls" and len(parts) == 6:
            return self._json(self.pr_files.get(int(parts[4]), []))
        if resource == "commits" and len(parts) == 4:
            return self._paged(request, self.commits)
        if resource == "commits" and len(parts) == 5:
            return self._json({"sha": parts[4], "files": self.commit_files.get(parts[4], [])})
        return httpx.Response(404, json={"message": "Not Found"})

    def _json(self, data: Any, headers: Optional[dict[str, str]] = None) -> httpx.Response:
        return httpx.Response(200, json=data, headers={**self.rate_headers, **(headers or {})})

    def _paged(self, request: httpx.Request, items: list[dict[str, Any]]) -> httpx.Response:
        per_page = int(request.url.params.get("per_page", 30))
        page = int(request.url.params.get("page", 1))
        start = (page - 1) * per_page
        batch = items[start:start + per_page]

        last = max(1, math.ceil(len(items) / per_page))
        if self.phantom_last_page and per_page > 1:
            last = self.phantom_last_page

        headers = {}
        if self.link_headers and (last > 1 or (self.phantom_last_page and per_page > 1)):
            next_url = request.url.copy_set_param("page", page + 1)
            last_url = request.url.copy_set_param("page", last)
            headers["Link"] = f'<{next_url}>; rel="next", <{last_url}>; rel="last"'
        return self._json(batch, headers)


@pytest.fixture
def fake_github():
    return FakeGitHub()


@pytest.fixture
def transport(fake_github):
    return httpx.MockTransport(fake_github.handler)


@pytest.fixture
def config(tmp_path):
    cfg = Config()
    cfg.github.api_url = API_URL
    cfg.github.tokens = ["t1", "t2"]
    cfg.cache.path = str(tmp_path / "edge.db")
    cfg.scheduler.enabled = False
    cfg.logging.file = None
    return cfg


@pytest.fixture
def store(config):
    return TimelineStore(config.cache.path)


@pytest.fixture
def engine(config, store, transport):
    return TimelineSyncEngine(config, store, TokenRotator(config.github.tokens), transport=transport)


@pytest.fixture
def service(config, store, engine):
    return EdgeCacheService(config, store, engine.tokens, engine=engine)
