"""
Client-side timeline cache backed by a local SQLite file.

One envelope per repository: the full record list as JSON plus the time it
was written and the schema version it was written with. Envelopes older than
24 hours or written under another schema version are deleted on read.

The store never raises from save/load/clear: failures are logged and
reported as False/None so a broken cache never breaks loading.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Callable, Optional

from services.timeline.models import ChangeRecord
from services.timeline.utils import StorageUnavailable

log = logging.getLogger(__name__)

SCHEMA_VERSION = 2
EXPIRY_SECONDS = 24 * 60 * 60
SQLITE_FULL = getattr(sqlite3, "SQLITE_FULL", 13)


def _is_quota_error(error: sqlite3.Error) -> bool:
    if getattr(error, "sqlite_errorcode", None) == SQLITE_FULL:
        return True
    return "database or disk is full" in str(error).lower()


class ClientCacheStore:
    """Versioned, time-bounded envelope store with oldest-first eviction."""

    def __init__(
        self,
        db_path: str | Path,
        max_size_mb: Optional[float] = None,
        clock: Callable[[], float] = time.time,
    ):
        """
        Args:
            db_path: SQLite file for the cache.
            max_size_mb: Size cap enforced through PRAGMA max_page_count.
            clock: Source of "now" in epoch seconds.
        """
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.max_size_mb = max_size_mb
        self._clock = clock
        try:
            self._init_db()
        except sqlite3.Error as e:
            raise StorageUnavailable(f"Cannot open client cache at {self.db_path}: {e}") from e

    @contextmanager
    def _get_connection(self):
        conn = sqlite3.connect(str(self.db_path))
        conn.row_factory = sqlite3.Row
        try:
            if self.max_size_mb:
                page_size = conn.execute("PRAGMA page_size").fetchone()[0]
                max_pages = max(1, int(self.max_size_mb * 1024 * 1024 / page_size))
                conn.execute(f"PRAGMA max_page_count = {max_pages}")
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _init_db(self) -> None:
        with self._get_connection() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS envelopes (
                    repo_key TEXT PRIMARY KEY,
                    payload TEXT NOT NULL,
                    record_count INTEGER NOT NULL,
                    last_updated REAL NOT NULL,
                    schema_version INTEGER NOT NULL
                )
            """)
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_envelopes_last_updated
                ON envelopes(last_updated)
            """)

    def save(self, repo_key: str, records: list[ChangeRecord]) -> bool:
        """
        Replace the envelope for ``repo_key``.

        Returns:
            False if the write failed. On a quota failure the oldest envelope
            is evicted first; the write itself is not retried.
        """
        payload = json.dumps([record.to_dict() for record in records])
        try:
            with self._get_connection() as conn:
                conn.execute("""
                    INSERT OR REPLACE INTO envelopes
                        (repo_key, payload, record_count, last_updated, schema_version)
                    VALUES (?, ?, ?, ?, ?)
                """, (repo_key, payload, len(records), self._clock(), SCHEMA_VERSION))
            log.debug("Cached %d records for %s", len(records), repo_key)
            return True
        except sqlite3.Error as e:
            log.error("Failed to save client cache for %s: %s", repo_key, e)
            if _is_quota_error(e):
                self.evict_oldest()
            return False

    def load(self, repo_key: str) -> list[ChangeRecord] | None:
        """Return cached records, or None when absent, outdated or expired."""
        try:
            with self._get_connection() as conn:
                row = conn.execute("""
                    SELECT payload, last_updated, schema_version
                    FROM envelopes
                    WHERE repo_key = ?
                """, (repo_key,)).fetchone()
        except sqlite3.Error as e:
            log.error("Failed to load client cache for %s: %s", repo_key, e)
            return None

        if row is None:
            return None

        if row["schema_version"] != SCHEMA_VERSION:
            log.info("Discarding %s cache written with schema %s", repo_key, row["schema_version"])
            self.clear(repo_key)
            return None

        if self._clock() - row["last_updated"] > EXPIRY_SECONDS:
            log.info("Discarding expired cache for %s", repo_key)
            self.clear(repo_key)
            return None

        try:
            return [ChangeRecord.from_dict(item, repo_key) for item in json.loads(row["payload"])]
        except (ValueError, KeyError, TypeError) as e:
            log.error("Corrupt client cache for %s: %s", repo_key, e)
            self.clear(repo_key)
            return None

    def cache_info(self, repo_key: str) -> dict[str, Any]:
        """Presence, age and size of a valid envelope, without decoding it."""
        try:
            with self._get_connection() as conn:
                row = conn.execute("""
                    SELECT record_count, last_updated, schema_version
                    FROM envelopes
                    WHERE repo_key = ?
                """, (repo_key,)).fetchone()
        except sqlite3.Error as e:
            log.error("Failed to read client cache info for %s: %s", repo_key, e)
            row = None

        age = self._clock() - row["last_updated"] if row else None
        if row is None or row["schema_version"] != SCHEMA_VERSION or age > EXPIRY_SECONDS:
            return {"exists": False, "age_seconds": None, "count": 0}
        return {"exists": True, "age_seconds": age, "count": row["record_count"]}

    def evict_oldest(self) -> Optional[str]:
        """Delete the least recently written envelope. Returns its key."""
        try:
            with self._get_connection() as conn:
                row = conn.execute("""
                    SELECT repo_key FROM envelopes
                    ORDER BY last_updated ASC
                    LIMIT 1
                """).fetchone()
                if row is None:
                    return None
                conn.execute("DELETE FROM envelopes WHERE repo_key = ?", (row["repo_key"],))
            log.warning("Evicted oldest client cache entry: %s", row["repo_key"])
            return row["repo_key"]
        except sqlite3.Error as e:
            log.error("Failed to evict oldest client cache entry: %s", e)
            return None

    def clear(self, repo_key: str) -> None:
        try:
            with self._get_connection() as conn:
                conn.execute("DELETE FROM envelopes WHERE repo_key = ?", (repo_key,))
        except sqlite3.Error as e:
            log.error("Failed to clear client cache for %s: %s", repo_key, e)

    def clear_all(self) -> None:
        try:
            with self._get_connection() as conn:
                conn.execute("DELETE FROM envelopes")
        except sqlite3.Error as e:
            log.error("Failed to clear client caches: %s", e)

    def get_stats(self) -> dict[str, Any]:
        try:
            with self._get_connection() as conn:
                count = conn.execute("SELECT COUNT(*) FROM envelopes").fetchone()[0]
                page_count = conn.execute("PRAGMA page_count").fetchone()[0]
                page_size = conn.execute("PRAGMA page_size").fetchone()[0]
        except sqlite3.Error as e:
            log.error("Failed to read client cache stats: %s", e)
            return {"total_caches": 0, "size_bytes": 0}
        return {"total_caches": count, "size_bytes": page_count * page_size}
