"""
SQLite store for repository timelines on the edge.

Tables:
  - repo_sync_state: repo_key → last_synced_at, last_external_id, resume_page,
    default_branch, mode
  - changes: one row per (repo_key, external_id), never updated after insert
  - file_diffs: change_id → filename, status, additions, deletions, previous_filename

All writes for one sync cycle go through apply_sync_cycle, which commits
them in a single transaction.
"""

from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from loguru import logger

from .models import ChangeKind, ChangeRecord, ChangeStatus, FileDiff, RepoSyncState
from .utils import StorageUnavailable


def _ts(value: datetime) -> str:
    """Fixed-width UTC text so lexical order matches chronological order."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


class TimelineStore:
    """
    SQLite-backed persistent store for change records and sync state.

    Connections are opened per operation via context manager.
    """

    def __init__(self, db_path: str | Path):
        """
        Initialize store database.

        Args:
            db_path: Path to SQLite database file.
        """
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        logger.info(f"Initializing timeline store at {self.db_path}")
        self._init_db()

    @contextmanager
    def _get_connection(self):
        """Get a database connection with row factory."""
        try:
            conn = sqlite3.connect(str(self.db_path), timeout=30.0)
        except sqlite3.Error as e:
            raise StorageUnavailable(f"Cannot open timeline store: {e}") from e
        conn.row_factory = sqlite3.Row
        try:
            conn.execute("PRAGMA foreign_keys = ON")
            yield conn
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            raise StorageUnavailable(f"Timeline store error: {e}") from e
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _init_db(self) -> None:
        """Initialize database schema."""
        with self._get_connection() as conn:
            cursor = conn.cursor()

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS repo_sync_state (
                    repo_key TEXT PRIMARY KEY,
                    last_synced_at TEXT NOT NULL,
                    last_external_id TEXT,
                    resume_page INTEGER NOT NULL DEFAULT 1,
                    default_branch TEXT NOT NULL,
                    mode TEXT NOT NULL
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS changes (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    repo_key TEXT NOT NULL,
                    external_id TEXT NOT NULL,
                    kind TEXT NOT NULL,
                    title TEXT NOT NULL,
                    author TEXT NOT NULL,
                    occurred_at TEXT NOT NULL,
                    UNIQUE(repo_key, external_id)
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS file_diffs (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    change_id INTEGER NOT NULL REFERENCES changes(id) ON DELETE CASCADE,
                    position INTEGER NOT NULL,
                    filename TEXT NOT NULL,
                    status TEXT NOT NULL,
                    additions INTEGER NOT NULL DEFAULT 0,
                    deletions INTEGER NOT NULL DEFAULT 0,
                    previous_filename TEXT
                )
            """)

            cursor.execute("""
                CREATE INDEX IF NOT EXISTS idx_changes_repo_time
                ON changes(repo_key, occurred_at)
            """)

            cursor.execute("""
                CREATE INDEX IF NOT EXISTS idx_file_diffs_change
                ON file_diffs(change_id)
            """)

    # =========================================================================
    # Sync State
    # =========================================================================

    def get_sync_state(self, repo_key: str) -> RepoSyncState | None:
        """Get sync state for a repository."""
        with self._get_connection() as conn:
            row = conn.execute("""
                SELECT repo_key, last_synced_at, last_external_id, resume_page, default_branch, mode
                FROM repo_sync_state
                WHERE repo_key = ?
            """, (repo_key,)).fetchone()
            return self._row_to_state(row) if row else None

    def list_stale_repos(self, older_than: datetime) -> list[RepoSyncState]:
        """Repositories whose last sync finished before ``older_than``."""
        with self._get_connection() as conn:
            rows = conn.execute("""
                SELECT repo_key, last_synced_at, last_external_id, resume_page, default_branch, mode
                FROM repo_sync_state
                WHERE last_synced_at < ?
                ORDER BY last_synced_at ASC
            """, (_ts(older_than),)).fetchall()
            return [self._row_to_state(row) for row in rows]

    def list_repos(self) -> list[RepoSyncState]:
        with self._get_connection() as conn:
            rows = conn.execute("""
                SELECT repo_key, last_synced_at, last_external_id, resume_page, default_branch, mode
                FROM repo_sync_state
                ORDER BY repo_key
            """).fetchall()
            return [self._row_to_state(row) for row in rows]

    # =========================================================================
    # Change Records
    # =========================================================================

    def get_changes(
        self,
        repo_key: str,
        offset: int = 0,
        limit: Optional[int] = None,
    ) -> list[ChangeRecord]:
        """
        Get change records in timeline order, with their file diffs.

        Args:
            repo_key: Repository key.
            offset: Number of records to skip.
            limit: Maximum number of records, None for all.
        """
        sql_limit = -1 if limit is None else limit
        with self._get_connection() as conn:
            rows = conn.execute("""
                SELECT id, repo_key, external_id, kind, title, author, occurred_at
                FROM changes
                WHERE repo_key = ?
                ORDER BY occurred_at ASC, id ASC
                LIMIT ? OFFSET ?
            """, (repo_key, sql_limit, offset)).fetchall()

            if not rows:
                return []

            diffs: dict[int, list[FileDiff]] = {row["id"]: [] for row in rows}
            placeholders = ",".join("?" for _ in diffs)
            diff_rows = conn.execute(f"""
                SELECT change_id, filename, status, additions, deletions, previous_filename
                FROM file_diffs
                WHERE change_id IN ({placeholders})
                ORDER BY change_id, position
            """, tuple(diffs)).fetchall()

            for d in diff_rows:
                diffs[d["change_id"]].append(FileDiff(
                    filename=d["filename"],
                    status=ChangeStatus(d["status"]),
                    additions=d["additions"],
                    deletions=d["deletions"],
                    previous_filename=d["previous_filename"],
                ))

            return [
                ChangeRecord(
                    id=row["id"],
                    repo_key=row["repo_key"],
                    external_id=row["external_id"],
                    kind=ChangeKind(row["kind"]),
                    title=row["title"],
                    author=row["author"],
                    occurred_at=datetime.fromisoformat(row["occurred_at"]),
                    file_diffs=tuple(diffs[row["id"]]),
                )
                for row in rows
            ]

    def count_changes(self, repo_key: str) -> int:
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT COUNT(*) FROM changes WHERE repo_key = ?", (repo_key,)
            ).fetchone()
            return row[0]

    def get_change_bounds(self, repo_key: str) -> tuple[Optional[datetime], Optional[datetime]]:
        """Earliest and latest occurred_at for a repository."""
        with self._get_connection() as conn:
            row = conn.execute("""
                SELECT MIN(occurred_at) AS first, MAX(occurred_at) AS last
                FROM changes
                WHERE repo_key = ?
            """, (repo_key,)).fetchone()
            if row is None or row["first"] is None:
                return None, None
            return datetime.fromisoformat(row["first"]), datetime.fromisoformat(row["last"])

    def apply_sync_cycle(self, state: RepoSyncState, records: list[ChangeRecord]) -> int:
        """
        Persist one sync cycle atomically.

        Records already stored for the same (repo_key, external_id) are left
        untouched, so replaying a cycle is a no-op apart from the sync state.

        Returns:
            Number of newly inserted change records.
        """
        inserted = 0
        with self._get_connection() as conn:
            for record in records:
                cursor = conn.execute("""
                    INSERT INTO changes (repo_key, external_id, kind, title, author, occurred_at)
                    VALUES (?, ?, ?, ?, ?, ?)
                    ON CONFLICT(repo_key, external_id) DO NOTHING
                """, (
                    state.repo_key,
                    record.external_id,
                    record.kind.value,
                    record.title,
                    record.author,
                    _ts(record.occurred_at),
                ))
                if cursor.rowcount != 1:
                    continue

                inserted += 1
                change_id = cursor.lastrowid
                conn.executemany("""
                    INSERT INTO file_diffs
                        (change_id, position, filename, status, additions, deletions, previous_filename)
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                """, [
                    (
                        change_id,
                        position,
                        diff.filename,
                        diff.status.value,
                        diff.additions,
                        diff.deletions,
                        diff.previous_filename,
                    )
                    for position, diff in enumerate(record.file_diffs)
                ])

            conn.execute("""
                INSERT INTO repo_sync_state
                    (repo_key, last_synced_at, last_external_id, resume_page, default_branch, mode)
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT(repo_key) DO UPDATE SET
                    last_synced_at = excluded.last_synced_at,
                    last_external_id = excluded.last_external_id,
                    resume_page = excluded.resume_page,
                    default_branch = excluded.default_branch,
                    mode = excluded.mode
            """, (
                state.repo_key,
                _ts(state.last_synced_at),
                state.last_external_id,
                state.resume_page,
                state.default_branch,
                state.mode.value,
            ))

        logger.debug(f"Stored {inserted}/{len(records)} new changes for {state.repo_key}")
        return inserted

    # =========================================================================
    # Bulk Operations
    # =========================================================================

    def clear_repo(self, repo_key: str) -> bool:
        """Clear all cached data for a repository. Returns True if anything existed."""
        with self._get_connection() as conn:
            conn.execute("""
                DELETE FROM file_diffs
                WHERE change_id IN (SELECT id FROM changes WHERE repo_key = ?)
            """, (repo_key,))
            changes = conn.execute("DELETE FROM changes WHERE repo_key = ?", (repo_key,))
            state = conn.execute("DELETE FROM repo_sync_state WHERE repo_key = ?", (repo_key,))
            return (changes.rowcount + state.rowcount) > 0

    def get_stats(self) -> dict[str, Any]:
        """Get store statistics."""
        with self._get_connection() as conn:
            stats = {}

            cursor = conn.execute("SELECT COUNT(*) FROM repo_sync_state")
            stats["repo_count"] = cursor.fetchone()[0]

            cursor = conn.execute("SELECT COUNT(*) FROM changes")
            stats["change_count"] = cursor.fetchone()[0]

            cursor = conn.execute("SELECT COUNT(*) FROM file_diffs")
            stats["file_diff_count"] = cursor.fetchone()[0]

            cursor = conn.execute("PRAGMA page_count")
            page_count = cursor.fetchone()[0]
            cursor = conn.execute("PRAGMA page_size")
            page_size = cursor.fetchone()[0]
            stats["db_size_bytes"] = page_count * page_size

            return stats

    def _row_to_state(self, row: sqlite3.Row) -> RepoSyncState:
        return RepoSyncState(
            repo_key=row["repo_key"],
            last_synced_at=datetime.fromisoformat(row["last_synced_at"]),
            last_external_id=row["last_external_id"],
            resume_page=row["resume_page"],
            default_branch=row["default_branch"],
            mode=ChangeKind(row["mode"]),
        )
