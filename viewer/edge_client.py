"""
HTTP client for the timeline edge service.

Error responses ({"error", "kind"}) are raised as the same exception types
the edge service uses internally. An error body that isn't JSON becomes
MalformedResponse ("Unknown error").
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Optional

import httpx

from services.timeline.models import ChangeRecord
from services.timeline.utils import (
    InvalidRequest,
    MalformedResponse,
    NotFoundOrPrivate,
    RateLimited,
    StorageUnavailable,
    TimelineError,
    UpstreamError,
)

from .config import Config

log = logging.getLogger(__name__)


@dataclass
class EdgePage:
    """One response from the main repository endpoint."""
    records: list[ChangeRecord] = field(default_factory=list)
    cache_hit: bool = False
    cache_age: Optional[int] = None
    total: Optional[int] = None
    has_more: bool = False


def error_from_response(response: httpx.Response) -> TimelineError:
    """Rebuild the edge service's error from an error response."""
    try:
        body = response.json()
        message = body["error"]
    except (ValueError, KeyError, TypeError):
        return MalformedResponse()

    kind = body.get("kind")
    if kind == "not_found":
        return NotFoundOrPrivate(message)
    if kind == "rate_limited":
        return RateLimited(
            message,
            remaining=body.get("remaining"),
            limit=body.get("limit"),
            reset=body.get("reset"),
        )
    if kind == "storage_unavailable":
        return StorageUnavailable(message)
    if kind == "malformed_response":
        return MalformedResponse(message)
    if kind == "invalid_request":
        return InvalidRequest(message)
    return UpstreamError(message, status_code=body.get("upstreamStatus", response.status_code))


class EdgeClient:
    """Synchronous client for one edge service deployment."""

    def __init__(
        self,
        base_url: str = Config.TIMELINE_API_URL,
        timeout: float = Config.EDGE_TIMEOUT,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self._client = httpx.Client(
            base_url=base_url,
            timeout=timeout,
            transport=transport,
            limits=httpx.Limits(max_keepalive_connections=5, max_connections=10),
        )

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> "EdgeClient":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    # ---------------------------------------------------------------------------
    # Endpoints
    # ---------------------------------------------------------------------------

    def get_changes(
        self,
        repo_key: str,
        offset: Optional[int] = None,
        limit: Optional[int] = None,
        refresh: bool = False,
    ) -> EdgePage:
        params: dict[str, Any] = {}
        if offset is not None:
            params["offset"] = offset
        if limit is not None:
            params["limit"] = limit
        if refresh:
            params["refresh"] = "true"

        response = self._get(f"/api/repo/{repo_key}", params)
        records = [ChangeRecord.from_dict(item, repo_key) for item in self._json(response)]

        headers = response.headers
        total = int(headers["X-Total-Count"]) if "X-Total-Count" in headers else None
        return EdgePage(
            records=records,
            cache_hit=headers.get("X-Cache") == "HIT",
            cache_age=int(headers["X-Cache-Age"]) if "X-Cache-Age" in headers else None,
            total=total,
            has_more=headers.get("X-Has-More") == "true",
        )

    def metadata(self, repo_key: str) -> dict[str, Any]:
        return self._json(self._get(f"/api/repo/{repo_key}/metadata"))

    def cache_status(self, repo_key: str) -> dict[str, Any]:
        return self._json(self._get(f"/api/repo/{repo_key}/cache"))

    def summary(self, repo_key: str) -> dict[str, Any]:
        return self._json(self._get(f"/api/repo/{repo_key}/summary"))

    def fetch_more(self, repo_key: str) -> dict[str, Any]:
        data = self._json(self._get(f"/api/repo/{repo_key}/fetch-more")) or {}
        return {
            "items": [ChangeRecord.from_dict(item, repo_key) for item in data.get("items", [])],
            "fetchedCount": data.get("fetchedCount", 0),
            "totalCached": data.get("totalCached", 0),
            "totalAvailable": data.get("totalAvailable", 0),
            "hasMore": data.get("hasMore", False),
        }

    def health(self) -> dict[str, Any]:
        return self._json(self._get("/health"))

    # ---------------------------------------------------------------------------
    # Internal helpers
    # ---------------------------------------------------------------------------

    def _get(self, path: str, params: Optional[dict[str, Any]] = None) -> httpx.Response:
        try:
            response = self._client.get(path, params=params)
        except httpx.HTTPError as e:
            log.warning("Edge request %s failed: %s", path, e)
            raise UpstreamError(f"Edge service unreachable: {e}") from e

        if not response.is_success:
            raise error_from_response(response)
        return response

    def _json(self, response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError as e:
            raise UpstreamError(
                f"Invalid JSON from edge service: {e}", status_code=response.status_code
            ) from e
