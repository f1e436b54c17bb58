"""
Tests for the viewer's edge service client.
"""

import httpx
import pytest

from conftest import added, make_record
from services.timeline import (
    InvalidRequest,
    MalformedResponse,
    NotFoundOrPrivate,
    RateLimited,
    StorageUnavailable,
    UpstreamError,
)
from viewer import EdgeClient

BASE_URL = "http://edge.test"


def edge_client(handler):
    return EdgeClient(BASE_URL, timeout=5, transport=httpx.MockTransport(handler))


class TestGetChanges:
    """Test the main repository endpoint."""

    def test_records_and_headers(self):
        payload = [make_record("1", 1, [added("a.py", 3)]).to_dict()]
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json=payload, headers={
                "X-Cache": "HIT",
                "X-Cache-Age": "42",
                "X-Total-Count": "9",
                "X-Has-More": "true",
            })

        with edge_client(handler) as client:
            page = client.get_changes("octo/repo", offset=0, limit=1, refresh=True)

        assert seen[0].url.path == "/api/repo/octo/repo"
        assert seen[0].url.params["refresh"] == "true"
        assert seen[0].url.params["limit"] == "1"
        assert page.records[0].external_id == "1"
        assert page.records[0].repo_key == "octo/repo"
        assert page.records[0].file_diffs[0].filename == "a.py"
        assert page.cache_hit
        assert page.cache_age == 42
        assert page.total == 9
        assert page.has_more

    def test_miss_without_pagination(self):
        def handler(request):
            return httpx.Response(200, json=[], headers={"X-Cache": "MISS"})

        with edge_client(handler) as client:
            page = client.get_changes("octo/repo")
        assert not page.cache_hit
        assert page.cache_age is None
        assert page.total is None
        assert not page.has_more


class TestErrors:
    """Test error bodies mapped back to exceptions."""

    @pytest.mark.parametrize("status,kind,expected", [
        (404, "not_found", NotFoundOrPrivate),
        (429, "rate_limited", RateLimited),
        (503, "storage_unavailable", StorageUnavailable),
        (502, "upstream_error", UpstreamError),
        (502, "malformed_response", MalformedResponse),
        (400, "invalid_request", InvalidRequest),
    ])
    def test_kinds(self, status, kind, expected):
        def handler(request):
            return httpx.Response(status, json={"error": "boom", "kind": kind, "remaining": 0})

        with edge_client(handler) as client:
            with pytest.raises(expected) as exc_info:
                client.get_changes("octo/repo")
        assert str(exc_info.value) == "boom"

    def test_rate_limit_details(self):
        def handler(request):
            return httpx.Response(429, json={
                "error": "slow down", "kind": "rate_limited", "remaining": 0, "limit": 5000, "reset": 99,
            })

        with edge_client(handler) as client:
            with pytest.raises(RateLimited) as exc_info:
                client.metadata("octo/repo")
        assert exc_info.value.remaining == 0
        assert exc_info.value.reset == 99

    def test_upstream_status_from_body(self):
        def handler(request):
            return httpx.Response(502, json={
                "error": "GitHub API error: 500", "kind": "upstream_error", "upstreamStatus": 500,
            })

        with edge_client(handler) as client:
            with pytest.raises(UpstreamError) as exc_info:
                client.get_changes("octo/repo")
        assert exc_info.value.status_code == 500

    def test_upstream_status_falls_back_to_response(self):
        def handler(request):
            return httpx.Response(502, json={"error": "boom", "kind": "upstream_error"})

        with edge_client(handler) as client:
            with pytest.raises(UpstreamError) as exc_info:
                client.get_changes("octo/repo")
        assert exc_info.value.status_code == 502

    def test_unparseable_error_body(self):
        def handler(request):
            return httpx.Response(500, text="<html>oops</html>")

        with edge_client(handler) as client:
            with pytest.raises(MalformedResponse) as exc_info:
                client.cache_status("octo/repo")
        assert str(exc_info.value) == "Unknown error"

    def test_transport_failure(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        with edge_client(handler) as client:
            with pytest.raises(UpstreamError):
                client.health()


class TestSideEndpoints:
    """Test metadata, summary and fetch-more."""

    def test_fetch_more_defaults(self):
        def handler(request):
            assert request.url.path == "/api/repo/octo/repo/fetch-more"
            return httpx.Response(200, json={})

        with edge_client(handler) as client:
            more = client.fetch_more("octo/repo")
        assert more == {"items": [], "fetchedCount": 0, "totalCached": 0, "totalAvailable": 0, "hasMore": False}

    def test_fetch_more_items(self):
        def handler(request):
            return httpx.Response(200, json={
                "items": [make_record("5", 5).to_dict()],
                "fetchedCount": 1,
                "totalCached": 5,
                "totalAvailable": 8,
                "hasMore": True,
            })

        with edge_client(handler) as client:
            more = client.fetch_more("octo/repo")
        assert more["items"][0].external_id == "5"
        assert more["hasMore"] is True

    def test_summary(self):
        def handler(request):
            return httpx.Response(200, json={"estimatedTotalItems": 150, "hasMoreThanN": True})

        with edge_client(handler) as client:
            assert client.summary("octo/repo")["hasMoreThanN"] is True
