"""
Tests for file-tree snapshot building.
"""

import logging
from collections import Counter

from conftest import added, make_record
from services.timeline import ChangeStatus, FileDiff
from viewer import FileEntry, FileNode, FileTreeSnapshot, build_snapshot, build_timeline
from viewer.snapshot import _check_orphans


def paths(snapshot):
    return sorted(node.path for node in snapshot.nodes)


class TestBuildSnapshot:
    """Test node and edge synthesis."""

    def test_empty_has_no_root(self):
        snapshot = build_snapshot([])
        assert snapshot.nodes == []
        assert snapshot.edges == []

    def test_directories_synthesized(self):
        snapshot = build_snapshot([
            FileEntry("src/app/main.py", 10),
            FileEntry("src/util.py", 4),
            FileEntry("README.md", 2),
        ])
        assert paths(snapshot) == ["", "README.md", "src", "src/app", "src/app/main.py", "src/util.py"]

        root = snapshot.node("")
        assert root.name == "/"
        assert root.kind == "directory"
        assert snapshot.node("src/app").kind == "directory"
        assert snapshot.node("src/app").size == 0
        assert snapshot.node("src/app/main.py").size == 10
        assert snapshot.node("src/app/main.py").name == "main.py"

    def test_one_parent_edge_per_node(self):
        snapshot = build_snapshot([
            FileEntry("a/b/c.txt", 1),
            FileEntry("a/b/d.txt", 1),
            FileEntry("a/e.txt", 1),
            FileEntry("f.txt", 1),
        ])
        targets = Counter(edge.target for edge in snapshot.edges)
        non_root = [n.path for n in snapshot.nodes if n.path != ""]
        assert all(targets[path] == 1 for path in non_root)
        assert "" not in targets
        assert len(snapshot.edges) == len(non_root)

        parents = {edge.target: edge.source for edge in snapshot.edges}
        assert parents["a/b/c.txt"] == "a/b"
        assert parents["a/b"] == "a"
        assert parents["a"] == ""
        assert parents["f.txt"] == ""
        assert all(edge.type == "parent" for edge in snapshot.edges)

    def test_deep_path_chain(self):
        snapshot = build_snapshot([FileEntry("a/b/c/d.ts", 7)])
        dirs = [n.path for n in snapshot.nodes if n.kind == "directory" and n.path]
        assert sorted(dirs) == ["a", "a/b", "a/b/c"]
        assert sorted((e.source, e.target) for e in snapshot.edges) == [
            ("", "a"), ("a", "a/b"), ("a/b", "a/b/c"), ("a/b/c", "a/b/c/d.ts"),
        ]

    def test_file_with_children_becomes_directory(self, caplog):
        with caplog.at_level(logging.WARNING, logger="viewer.snapshot"):
            snapshot = build_snapshot([FileEntry("docs", 5), FileEntry("docs/a.md", 3)])

        assert [(n.path, n.kind) for n in snapshot.nodes] == [
            ("", "directory"), ("docs", "directory"), ("docs/a.md", "file"),
        ]
        assert snapshot.node("docs").size == 0
        assert sorted((e.source, e.target) for e in snapshot.edges) == [("", "docs"), ("docs", "docs/a.md")]
        assert "treating it as a directory" in caplog.text

    def test_negative_size_floored(self):
        snapshot = build_snapshot([FileEntry("x", -4)])
        assert snapshot.node("x").size == 0

    def test_input_order_irrelevant(self):
        entries = [FileEntry("b/x", 1), FileEntry("a/y", 2), FileEntry("a/z", 3)]
        assert paths(build_snapshot(entries)) == paths(build_snapshot(list(reversed(entries))))

    def test_orphans_reported(self, caplog):
        snapshot = FileTreeSnapshot(nodes=[FileNode("lost.txt", "lost.txt", 1, "file")])
        with caplog.at_level(logging.WARNING, logger="viewer.snapshot"):
            _check_orphans(snapshot)
        assert "orphaned" in caplog.text


class TestBuildTimeline:
    """Test replaying records into snapshots."""

    def test_one_snapshot_per_record(self):
        records = [
            make_record("1", 1, [added("src/a.py", 10)]),
            make_record("2", 2, [FileDiff("src/a.py", ChangeStatus.MODIFIED, 5, 0), added("b.md", 3)]),
            make_record("3", 3, [FileDiff("b.md", ChangeStatus.REMOVED, 0, 3)]),
        ]
        timeline = list(build_timeline(records))

        assert [s.external_id for s in timeline] == ["1", "2", "3"]
        assert timeline[0].tree.node("src/a.py").size == 10
        assert timeline[1].tree.node("src/a.py").size == 15
        assert timeline[1].tree.node("b.md") is not None
        assert timeline[2].tree.node("b.md") is None
        assert timeline[0].timestamp == records[0].occurred_at

    def test_empty_change_repeats_tree(self):
        timeline = list(build_timeline([make_record("1", 1, [added("a")]), make_record("2", 2)]))
        assert paths(timeline[0].tree) == paths(timeline[1].tree)
