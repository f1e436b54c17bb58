"""
Cumulative file-size state replayed from a stream of file diffs.

Sizes are line counts accumulated from additions minus deletions, floored
at zero after every diff.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable

from services.timeline.models import ChangeStatus, FileDiff

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class FileEntry:
    path: str
    size: int


class FileStateTracker:
    """Maps live file paths to their cumulative size."""

    def __init__(self):
        self._sizes: dict[str, int] = {}

    def apply(self, diffs: Iterable[FileDiff]) -> None:
        """Apply one change's diffs in order."""
        for diff in diffs:
            if diff.status is ChangeStatus.REMOVED:
                self._sizes.pop(diff.filename, None)
            elif diff.status is ChangeStatus.RENAMED and diff.previous_filename:
                old_size = self._sizes.pop(diff.previous_filename, 0)
                self._sizes[diff.filename] = max(0, old_size + diff.additions - diff.deletions)
            else:
                # added, modified, or a rename without its previous name
                current = self._sizes.get(diff.filename, 0)
                self._sizes[diff.filename] = max(0, current + diff.additions - diff.deletions)

    def snapshot(self) -> list[FileEntry]:
        """Current live files. Order is not meaningful."""
        return [FileEntry(path=path, size=size) for path, size in self._sizes.items()]

    def size_of(self, path: str) -> int | None:
        return self._sizes.get(path)

    def clear(self) -> None:
        self._sizes.clear()

    def __len__(self) -> int:
        return len(self._sizes)

    def __contains__(self, path: object) -> bool:
        return path in self._sizes
