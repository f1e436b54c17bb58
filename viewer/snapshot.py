"""
Builds hierarchical file-tree snapshots from flat file state.

Directories are synthesized from path prefixes; a synthetic root (path "")
parents every top-level entry and exists only when at least one file does.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, Iterator, Literal

from services.timeline.models import ChangeRecord

from .file_state import FileEntry, FileStateTracker

log = logging.getLogger(__name__)

ROOT_PATH = ""


@dataclass(frozen=True)
class FileNode:
    path: str
    name: str
    size: int
    kind: Literal["file", "directory"]


@dataclass(frozen=True)
class ParentEdge:
    source: str
    target: str
    type: str = "parent"


@dataclass
class FileTreeSnapshot:
    nodes: list[FileNode] = field(default_factory=list)
    edges: list[ParentEdge] = field(default_factory=list)

    def node(self, path: str) -> FileNode | None:
        return next((n for n in self.nodes if n.path == path), None)


@dataclass
class TimelineSnapshot:
    """The file tree as it stood right after one change."""
    external_id: str
    title: str
    author: str
    timestamp: datetime
    tree: FileTreeSnapshot


def build_snapshot(entries: Iterable[FileEntry]) -> FileTreeSnapshot:
    """
    Turn flat {path, size} entries into nodes plus parent edges.

    Every node except the root gets exactly one edge from its immediate
    parent directory. Directory sizes are 0; file sizes are floored at 0.
    A file whose path is also a prefix of another file becomes a directory.
    """
    snapshot = FileTreeSnapshot()
    index: dict[str, int] = {}

    for entry in sorted(entries, key=lambda e: e.path):
        parts = [p for p in entry.path.split("/") if p]
        if not parts:
            continue

        if not index:
            index[ROOT_PATH] = len(snapshot.nodes)
            snapshot.nodes.append(FileNode(path=ROOT_PATH, name="/", size=0, kind="directory"))

        parent = ROOT_PATH
        for depth, name in enumerate(parts[:-1], start=1):
            dir_path = "/".join(parts[:depth])
            directory = FileNode(path=dir_path, name=name, size=0, kind="directory")
            if dir_path not in index:
                index[dir_path] = len(snapshot.nodes)
                snapshot.nodes.append(directory)
                snapshot.edges.append(ParentEdge(source=parent, target=dir_path))
            elif snapshot.nodes[index[dir_path]].kind == "file":
                log.warning("File %s also has children, treating it as a directory", dir_path)
                snapshot.nodes[index[dir_path]] = directory
            parent = dir_path

        file_path = "/".join(parts)
        if file_path in index:
            log.warning("Duplicate path in file state: %s", file_path)
            continue
        index[file_path] = len(snapshot.nodes)
        snapshot.nodes.append(
            FileNode(path=file_path, name=parts[-1], size=max(0, entry.size), kind="file")
        )
        snapshot.edges.append(ParentEdge(source=parent, target=file_path))

    _check_orphans(snapshot)
    return snapshot


def build_timeline(records: Iterable[ChangeRecord]) -> Iterator[TimelineSnapshot]:
    """Replay records in order, yielding the tree after each one."""
    tracker = FileStateTracker()
    for record in records:
        tracker.apply(record.file_diffs)
        yield TimelineSnapshot(
            external_id=record.external_id,
            title=record.title,
            author=record.author,
            timestamp=record.occurred_at,
            tree=build_snapshot(tracker.snapshot()),
        )


def _check_orphans(snapshot: FileTreeSnapshot) -> None:
    targets = {edge.target for edge in snapshot.edges}
    orphans = [n.path for n in snapshot.nodes if n.path != ROOT_PATH and n.path not in targets]
    if orphans:
        log.warning("Found %d orphaned nodes: %s", len(orphans), orphans[:10])
