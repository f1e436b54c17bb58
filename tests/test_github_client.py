"""
Tests for the GitHub client against an in-memory fake.
"""

import httpx
import pytest

from conftest import API_URL, commit_sha, make_file, make_pr
from services.timeline import (
    ChangeKind,
    ChangeStatus,
    GitHubClient,
    NotFoundOrPrivate,
    RateLimited,
    UpstreamError,
)


@pytest.fixture
def client_factory(transport):
    def build(per_page=100, max_pages=10):
        return GitHubClient(
            token="t1", base_url=API_URL, per_page=per_page, max_pages=max_pages, transport=transport
        )
    return build


class TestErrorMapping:
    """Test HTTP status to exception mapping."""

    def test_repo_info(self, fake_github, client_factory):
        fake_github.default_branch = "develop"
        with client_factory() as client:
            assert client.fetch_repo_info("octo", "repo")["default_branch"] == "develop"

    def test_not_found_is_ambiguous(self, fake_github, client_factory):
        fake_github.missing = True
        with client_factory() as client:
            with pytest.raises(NotFoundOrPrivate) as exc_info:
                client.fetch_repo_info("octo", "gone")
        message = str(exc_info.value)
        assert "octo/gone" in message
        assert "private" in message

    @pytest.mark.parametrize("status", [403, 429])
    def test_rate_limited(self, fake_github, client_factory, status):
        fake_github.rate_headers["X-RateLimit-Remaining"] = "0"
        fake_github.fail_status["/repos/octo/repo"] = status
        with client_factory() as client:
            with pytest.raises(RateLimited) as exc_info:
                client.fetch_repo_info("octo", "repo")
        assert exc_info.value.remaining == 0
        assert exc_info.value.limit == 5000
        assert exc_info.value.reset == 1700000000

    def test_other_status_is_upstream_error(self, fake_github, client_factory):
        fake_github.fail_status["/repos/octo/repo"] = 500
        with client_factory() as client:
            with pytest.raises(UpstreamError) as exc_info:
                client.fetch_repo_info("octo", "repo")
        assert exc_info.value.status_code == 500

    def test_transport_failure_is_upstream_error(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with GitHubClient(token="t", base_url=API_URL, transport=httpx.MockTransport(handler)) as client:
            with pytest.raises(UpstreamError) as exc_info:
                client.fetch_repo_info("octo", "repo")
        assert exc_info.value.status_code is None

    def test_rate_limit_tracked(self, client_factory):
        with client_factory() as client:
            client.fetch_repo_info("octo", "repo")
            assert client.rate_limit == {"remaining": 4999, "limit": 5000, "reset": 1700000000}

    def test_bearer_token_sent(self, fake_github, client_factory):
        with client_factory() as client:
            client.fetch_repo_info("octo", "repo")
        assert fake_github.requests[0].headers["Authorization"] == "Bearer t1"


class TestChangeList:
    """Test merged pull request listing."""

    def test_keeps_only_merged(self, fake_github, client_factory):
        fake_github.pulls = [make_pr(1), make_pr(2, merged=False), make_pr(3)]
        with client_factory() as client:
            listing = client.fetch_change_list("octo", "repo")
        assert [item["number"] for item in listing.items] == [1, 3]
        assert listing.complete

    def test_since_discards_older(self, fake_github, client_factory):
        fake_github.pulls = [make_pr(n, merged=(n != 3)) for n in range(1, 6)]
        with client_factory(per_page=2) as client:
            listing = client.fetch_change_list("octo", "repo", since_external_id="2")
        assert [item["number"] for item in listing.items] == [4, 5]
        assert listing.complete

    def test_stops_on_short_page(self, fake_github, client_factory):
        fake_github.pulls = [make_pr(n) for n in range(1, 6)]
        with client_factory(per_page=2) as client:
            client.fetch_change_list("octo", "repo")
        assert len(fake_github.requests) == 3

    def test_page_ceiling_marks_incomplete(self, fake_github, client_factory):
        fake_github.pulls = [make_pr(n) for n in range(1, 6)]
        with client_factory(per_page=2, max_pages=2) as client:
            listing = client.fetch_change_list("octo", "repo")
        assert [item["number"] for item in listing.items] == [1, 2, 3, 4]
        assert not listing.complete

    def test_limit_stops_early(self, fake_github, client_factory):
        fake_github.pulls = [make_pr(n) for n in range(1, 6)]
        with client_factory(per_page=2) as client:
            listing = client.fetch_change_list("octo", "repo", limit=1)
        assert len(fake_github.requests) == 1
        assert not listing.complete

    def test_start_page_shifts_ceiling(self, fake_github, client_factory):
        fake_github.pulls = [make_pr(n) for n in range(1, 10)]
        with client_factory(per_page=2, max_pages=2) as client:
            listing = client.fetch_change_list("octo", "repo", start_page=3)
        assert [r.url.params["page"] for r in fake_github.requests] == ["3", "4"]
        assert [item["number"] for item in listing.items] == [5, 6, 7, 8]
        assert listing.item_pages == [3, 3, 4, 4]
        assert listing.next_page == 5
        assert not listing.complete

    def test_next_page_on_short_page(self, fake_github, client_factory):
        fake_github.pulls = [make_pr(n) for n in range(1, 6)]
        with client_factory(per_page=2) as client:
            listing = client.fetch_change_list("octo", "repo", since_external_id="5")
        assert listing.items == []
        assert listing.next_page == 3
        assert listing.complete

    def test_request_parameters(self, fake_github, client_factory):
        with client_factory() as client:
            client.fetch_change_list("octo", "repo")
        params = fake_github.requests[0].url.params
        assert params["state"] == "closed"
        assert params["sort"] == "created"
        assert params["direction"] == "asc"


class TestFileDiffs:
    """Test per-change file diff fetching."""

    def test_pull_request_files(self, fake_github, client_factory):
        fake_github.pr_files[7] = [
            make_file("a.py", "added", 10, 0),
            make_file("b.py", "renamed", 2, 1, previous="old/b.py"),
            make_file("c.py", "copied", 5, 0),
            make_file("d.py", "changed", 1, 1),
        ]
        with client_factory() as client:
            diffs = client.fetch_file_diffs("octo", "repo", "7")
        assert [d.status for d in diffs] == [
            ChangeStatus.ADDED, ChangeStatus.RENAMED, ChangeStatus.ADDED, ChangeStatus.MODIFIED,
        ]
        assert diffs[1].previous_filename == "old/b.py"
        assert diffs[0].previous_filename is None

    def test_commit_files(self, fake_github, client_factory):
        sha = commit_sha(3)
        fake_github.commit_files[sha] = [make_file("x.txt", "removed", 0, 4)]
        with client_factory() as client:
            diffs = client.fetch_file_diffs("octo", "repo", sha, ChangeKind.COMMIT)
        assert len(diffs) == 1
        assert diffs[0].status is ChangeStatus.REMOVED
        assert diffs[0].deletions == 4

    def test_failure_degrades_to_empty(self, fake_github, client_factory):
        fake_github.fail_status["/repos/octo/repo/pulls/9/files"] = 500
        with client_factory() as client:
            assert client.fetch_file_diffs("octo", "repo", "9") == []


class TestOldestChanges:
    """Test jumping to the oldest commits."""

    def test_reads_last_page_then_earlier(self, fake_github, client_factory):
        fake_github.add_commits(7)
        with client_factory(per_page=3) as client:
            commits = client.fetch_oldest_changes("octo", "repo", "main", max_count=4)
        assert [c["sha"] for c in commits] == [commit_sha(i) for i in range(4)]
        pages = [r.url.params["page"] for r in fake_github.requests]
        assert pages == ["1", "3", "2"]

    def test_without_link_header_uses_first_page(self, fake_github, client_factory):
        fake_github.add_commits(5)
        fake_github.link_headers = False
        with client_factory(per_page=3) as client:
            commits = client.fetch_oldest_changes("octo", "repo", "main", max_count=10)
        assert [c["sha"] for c in commits] == [commit_sha(i) for i in (2, 3, 4)]
        assert len(fake_github.requests) == 1

    def test_empty_last_page_recomputed(self, fake_github, client_factory):
        fake_github.add_commits(7)
        fake_github.phantom_last_page = 5
        with client_factory(per_page=3) as client:
            commits = client.fetch_oldest_changes("octo", "repo", "main", max_count=2)
        assert [c["sha"] for c in commits] == [commit_sha(0), commit_sha(1)]
        pages = [r.url.params["page"] for r in fake_github.requests]
        assert pages[:2] == ["1", "5"]
        assert "3" in pages

    def test_zero_history(self, fake_github, client_factory):
        fake_github.phantom_last_page = 2
        with client_factory(per_page=3) as client:
            assert client.fetch_oldest_changes("octo", "repo", "main") == []


class TestCounting:
    """Test one-item probe counts and commit windows."""

    @pytest.mark.parametrize("count", [0, 1, 7])
    def test_count_commits(self, fake_github, client_factory, count):
        fake_github.add_commits(count)
        with client_factory() as client:
            assert client.count_commits("octo", "repo", "main") == count

    def test_commit_window(self, fake_github, client_factory):
        fake_github.add_commits(7)
        with client_factory(per_page=3) as client:
            commits, total = client.fetch_commit_window("octo", "repo", "main", skip_oldest=2, count=3)
        assert total == 7
        assert [c["sha"] for c in commits] == [commit_sha(i) for i in (2, 3, 4)]

    def test_commit_window_clamps_at_newest(self, fake_github, client_factory):
        fake_github.add_commits(7)
        with client_factory(per_page=3) as client:
            commits, _ = client.fetch_commit_window("octo", "repo", "main", skip_oldest=5, count=10)
        assert [c["sha"] for c in commits] == [commit_sha(5), commit_sha(6)]

    def test_commit_window_past_end(self, fake_github, client_factory):
        fake_github.add_commits(4)
        with client_factory(per_page=3) as client:
            commits, total = client.fetch_commit_window("octo", "repo", "main", skip_oldest=4, count=3)
        assert commits == []
        assert total == 4
