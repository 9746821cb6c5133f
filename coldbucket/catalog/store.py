"""SQLite-backed catalog of staged entries, trees and storage jobs."""

import json
import sqlite3
from collections.abc import Iterator
from contextlib import closing, contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Iterable

from coldbucket.catalog.retry import is_lock_error, with_db_retry
from coldbucket.core.errors import CatalogError
from coldbucket.models import JobState, JobStatus, Tree, TreeEntry, utcnow

_SCHEMA = """
CREATE TABLE IF NOT EXISTS files (
    path TEXT PRIMARY KEY,
    cid TEXT NOT NULL,
    size INTEGER NOT NULL,
    is_dir INTEGER NOT NULL,
    bucket_id TEXT NOT NULL,
    root_cid TEXT NOT NULL,
    updated_at TIMESTAMP NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_files_bucket ON files (bucket_id);
CREATE INDEX IF NOT EXISTS idx_files_root ON files (root_cid);

CREATE TABLE IF NOT EXISTS trees (
    root_cid TEXT PRIMARY KEY,
    buckets TEXT NOT NULL,
    created_at TIMESTAMP NOT NULL,
    updated_at TIMESTAMP NOT NULL
);

CREATE TABLE IF NOT EXISTS jobs (
    job_id TEXT PRIMARY KEY,
    root_cid TEXT NOT NULL,
    bucket_cid TEXT NOT NULL,
    status TEXT NOT NULL,
    last_updated TIMESTAMP NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_jobs_root ON jobs (root_cid);
"""

_UPSERT_ENTRY = """
INSERT INTO files (path, cid, size, is_dir, bucket_id, root_cid, updated_at)
VALUES (?, ?, ?, ?, ?, ?, ?)
ON CONFLICT(path) DO UPDATE SET
    cid = excluded.cid,
    size = excluded.size,
    is_dir = excluded.is_dir,
    bucket_id = excluded.bucket_id,
    root_cid = excluded.root_cid,
    updated_at = excluded.updated_at
"""

_UPSERT_JOB = """
INSERT INTO jobs (job_id, root_cid, bucket_cid, status, last_updated)
VALUES (?, ?, ?, ?, ?)
ON CONFLICT(job_id) DO UPDATE SET
    root_cid = excluded.root_cid,
    bucket_cid = excluded.bucket_cid,
    status = excluded.status,
    last_updated = excluded.last_updated
"""

_ENTRY_COLUMNS = "path, cid, size, is_dir, bucket_id"


class SqliteCatalog:
    """Stores tree entries, trees and job states in a SQLite database.

    Entries are keyed by logical path, trees by root content id and jobs by
    job id. A tree's ``jobs`` map is assembled from the jobs table, so a job
    update never rewrites the tree row.
    """

    def __init__(self, db_path: Path, timeout: float = 5.0):
        """Initialize catalog.

        Args:
            db_path: Path of the SQLite database file
            timeout: Seconds SQLite waits on a locked database per attempt
        """
        self.db_path = Path(db_path)
        self.timeout = timeout

        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_database()

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        """Open a connection, commit on success and always close it."""
        try:
            conn = sqlite3.connect(self.db_path, timeout=self.timeout)
        except sqlite3.Error as e:
            if is_lock_error(e):
                raise
            raise CatalogError(f"Cannot open catalog at {self.db_path}: {e}") from e

        with closing(conn):
            with conn:
                yield conn

    @with_db_retry()
    def _init_database(self) -> None:
        """Create tables and indexes if they do not exist."""
        with self._connect() as conn:
            conn.executescript(_SCHEMA)

    @with_db_retry()
    def upsert_entry(self, entry: TreeEntry) -> None:
        """Insert or replace the entry stored at ``entry.logical_path``."""
        with self._connect() as conn:
            conn.execute(_UPSERT_ENTRY, self._entry_row(entry))

    @with_db_retry()
    def upsert_entries(self, entries: Iterable[TreeEntry]) -> None:
        """Upsert several entries in one transaction."""
        rows = [self._entry_row(entry) for entry in entries]
        with self._connect() as conn:
            conn.executemany(_UPSERT_ENTRY, rows)

    @with_db_retry()
    def find_entry(self, path: str) -> TreeEntry | None:
        """Get the entry stored at a logical path.

        Args:
            path: Logical path, e.g. ``"<root cid>/docs/a.txt"``

        Returns:
            The entry, or None if the path is unknown
        """
        with self._connect() as conn:
            row = conn.execute(
                f"SELECT {_ENTRY_COLUMNS} FROM files WHERE path = ?", (path,)
            ).fetchone()
        return self._entry_from_row(row) if row else None

    @with_db_retry()
    def find_entries_by_bucket(self, bucket_id: str) -> list[TreeEntry]:
        """Get every entry placed in a bucket, ordered by path."""
        with self._connect() as conn:
            rows = conn.execute(
                f"SELECT {_ENTRY_COLUMNS} FROM files WHERE bucket_id = ? ORDER BY path",
                (bucket_id,),
            ).fetchall()
        return [self._entry_from_row(row) for row in rows]

    @with_db_retry()
    def find_entries_by_root(self, root_cid: str) -> list[TreeEntry]:
        """Get every entry of a tree, ordered by path."""
        with self._connect() as conn:
            rows = conn.execute(
                f"SELECT {_ENTRY_COLUMNS} FROM files WHERE root_cid = ? ORDER BY path",
                (root_cid,),
            ).fetchall()
        return [self._entry_from_row(row) for row in rows]

    @with_db_retry()
    def upsert_tree(self, tree: Tree) -> None:
        """Insert or replace a tree together with its jobs map.

        Jobs recorded for the tree but absent from ``tree.jobs`` are removed.
        """
        now = utcnow().isoformat()
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO trees (root_cid, buckets, created_at, updated_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(root_cid) DO UPDATE SET
                    buckets = excluded.buckets,
                    updated_at = excluded.updated_at
                """,
                (tree.root_cid, json.dumps(tree.bucket_ids), now, now),
            )
            conn.execute("DELETE FROM jobs WHERE root_cid = ?", (tree.root_cid,))
            conn.executemany(
                _UPSERT_JOB,
                [self._job_row(tree.root_cid, job) for job in tree.jobs.values()],
            )

    @with_db_retry()
    def find_tree(self, root_cid: str) -> Tree | None:
        """Get a tree and its jobs, or None if it was never staged."""
        with self._connect() as conn:
            row = conn.execute(
                "SELECT buckets FROM trees WHERE root_cid = ?", (root_cid,)
            ).fetchone()
            if row is None:
                return None
            job_rows = conn.execute(
                """
                SELECT job_id, bucket_cid, status, last_updated
                FROM jobs WHERE root_cid = ? ORDER BY rowid
                """,
                (root_cid,),
            ).fetchall()

        jobs = {
            job_id: JobStatus(
                job_id=job_id,
                bucket_cid=bucket_cid,
                state=JobState(status),
                last_updated=datetime.fromisoformat(last_updated),
            )
            for job_id, bucket_cid, status, last_updated in job_rows
        }
        return Tree(root_cid=root_cid, bucket_ids=json.loads(row[0]), jobs=jobs)

    @with_db_retry()
    def update_job(self, root_cid: str, status: JobStatus) -> None:
        """Record the latest state of one job (last write wins)."""
        with self._connect() as conn:
            conn.execute(_UPSERT_JOB, self._job_row(root_cid, status))
            conn.execute(
                "UPDATE trees SET updated_at = ? WHERE root_cid = ?",
                (utcnow().isoformat(), root_cid),
            )

    @with_db_retry()
    def get_statistics(self, root_cid: str | None = None) -> dict[str, Any]:
        """Get counts of stored entries, optionally limited to one tree.

        Returns:
            Dictionary with statistics
        """
        where, params = ("WHERE root_cid = ?", (root_cid,)) if root_cid else ("", ())
        with self._connect() as conn:
            total, directories, archived, file_bytes = conn.execute(
                f"""
                SELECT COUNT(*),
                       COALESCE(SUM(is_dir), 0),
                       COALESCE(SUM(bucket_id != ''), 0),
                       COALESCE(SUM(CASE WHEN is_dir = 0 THEN size ELSE 0 END), 0)
                FROM files {where}
                """,  # nosec B608
                params,
            ).fetchone()
            trees = conn.execute("SELECT COUNT(*) FROM trees").fetchone()[0]

        return {
            "total_entries": total,
            "directories": directories,
            "files": total - directories,
            "archived_entries": archived,
            "unarchived_entries": total - archived,
            "file_bytes": file_bytes,
            "trees": trees,
        }

    def ping(self) -> bool:
        """Check that the catalog database answers queries."""
        try:
            with self._connect() as conn:
                conn.execute("SELECT 1").fetchone()
            return True
        except (CatalogError, sqlite3.Error):
            return False

    @staticmethod
    def _entry_row(entry: TreeEntry) -> tuple[Any, ...]:
        return (
            entry.logical_path,
            entry.content_id,
            entry.byte_size,
            int(entry.is_directory),
            entry.bucket_id,
            entry.root_cid,
            utcnow().isoformat(),
        )

    @staticmethod
    def _entry_from_row(row: tuple[Any, ...]) -> TreeEntry:
        path, cid, size, is_dir, bucket_id = row
        return TreeEntry(
            content_id=cid,
            logical_path=path,
            byte_size=size,
            is_directory=bool(is_dir),
            bucket_id=bucket_id,
        )

    @staticmethod
    def _job_row(root_cid: str, status: JobStatus) -> tuple[Any, ...]:
        return (
            status.job_id,
            root_cid,
            status.bucket_cid,
            status.state.value,
            status.last_updated.isoformat(),
        )
