"""
Data model for repository timelines.

ChangeRecord and FileDiff are immutable once created. RepoSyncState is the
only record that changes, once per sync cycle.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional


class ChangeStatus(str, Enum):
    """Per-file status inside a change."""
    ADDED = "added"
    MODIFIED = "modified"
    REMOVED = "removed"
    RENAMED = "renamed"

    @classmethod
    def normalize(cls, value: str) -> "ChangeStatus":
        """Map an upstream status string onto the four supported values."""
        if value == "copied":
            return cls.ADDED
        try:
            return cls(value)
        except ValueError:
            return cls.MODIFIED


class ChangeKind(str, Enum):
    """What an external id refers to."""
    PULL_REQUEST = "pull_request"
    COMMIT = "commit"


@dataclass(frozen=True)
class FileDiff:
    """One file's status and line delta within a change."""
    filename: str
    status: ChangeStatus
    additions: int = 0
    deletions: int = 0
    previous_filename: Optional[str] = None

    @classmethod
    def from_github(cls, data: dict[str, Any]) -> "FileDiff":
        status = ChangeStatus.normalize(data.get("status", "modified"))
        previous = data.get("previous_filename") if status is ChangeStatus.RENAMED else None
        return cls(
            filename=data["filename"],
            status=status,
            additions=int(data.get("additions") or 0),
            deletions=int(data.get("deletions") or 0),
            previous_filename=previous,
        )

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "filename": self.filename,
            "status": self.status.value,
            "additions": self.additions,
            "deletions": self.deletions,
        }
        if self.previous_filename is not None:
            data["previousFilename"] = self.previous_filename
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "FileDiff":
        status = ChangeStatus.normalize(data.get("status", "modified"))
        return cls(
            filename=data["filename"],
            status=status,
            additions=int(data.get("additions") or 0),
            deletions=int(data.get("deletions") or 0),
            previous_filename=data.get("previousFilename") if status is ChangeStatus.RENAMED else None,
        )


@dataclass(frozen=True)
class ChangeRecord:
    """One unit of repository history with its file diffs."""
    repo_key: str
    external_id: str
    title: str
    author: str
    occurred_at: datetime
    file_diffs: tuple[FileDiff, ...] = ()
    kind: ChangeKind = ChangeKind.PULL_REQUEST
    id: Optional[int] = None

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the camelCase wire format."""
        return {
            "externalId": self.external_id,
            "kind": self.kind.value,
            "title": self.title,
            "author": self.author,
            "occurredAt": format_instant(self.occurred_at),
            "fileDiffs": [diff.to_dict() for diff in self.file_diffs],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any], repo_key: str = "") -> "ChangeRecord":
        return cls(
            repo_key=repo_key or data.get("repoKey", ""),
            external_id=str(data["externalId"]),
            title=data.get("title") or "",
            author=data.get("author") or "unknown",
            occurred_at=parse_instant(data["occurredAt"]),
            file_diffs=tuple(FileDiff.from_dict(d) for d in data.get("fileDiffs") or []),
            kind=ChangeKind(data.get("kind", ChangeKind.PULL_REQUEST.value)),
            id=data.get("id"),
        )


@dataclass
class RepoSyncState:
    """Sync position for one repository."""
    repo_key: str
    last_synced_at: datetime
    last_external_id: Optional[str] = None
    resume_page: int = 1
    default_branch: str = "main"
    mode: ChangeKind = ChangeKind.PULL_REQUEST


@dataclass
class ChangeListing:
    """Raw upstream items from a change-list walk."""
    items: list[dict[str, Any]] = field(default_factory=list)
    complete: bool = True
    item_pages: list[int] = field(default_factory=list)
    next_page: int = 1


# =============================================================================
# Timestamp helpers
# =============================================================================

def parse_instant(value: str) -> datetime:
    """Parse an ISO-8601 timestamp (with or without a trailing Z) as UTC."""
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def format_instant(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def to_epoch_ms(value: Optional[datetime]) -> Optional[int]:
    if value is None:
        return None
    return int(value.timestamp() * 1000)


def record_from_github(repo_key: str, item: dict[str, Any], kind: ChangeKind,
                       file_diffs: list[FileDiff]) -> ChangeRecord:
    """Build a ChangeRecord from a pull request or commit list item."""
    if kind is ChangeKind.PULL_REQUEST:
        return ChangeRecord(
            repo_key=repo_key,
            external_id=str(item["number"]),
            title=item.get("title") or "",
            author=(item.get("user") or {}).get("login") or "unknown",
            occurred_at=parse_instant(item["merged_at"]),
            file_diffs=tuple(file_diffs),
            kind=kind,
        )

    commit = item.get("commit") or {}
    commit_author = commit.get("author") or {}
    login = (item.get("author") or {}).get("login")
    message = commit.get("message") or ""
    return ChangeRecord(
        repo_key=repo_key,
        external_id=item["sha"],
        title=message.splitlines()[0] if message else "",
        author=login or commit_author.get("name") or "unknown",
        occurred_at=parse_instant(commit_author.get("date") or item.get("date")),
        file_diffs=tuple(file_diffs),
        kind=kind,
    )
