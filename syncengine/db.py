"""
Database module for the sync engine.
Manages the SQLite store that backs repositories, the job queue,
mirrored files, chunks and rate limit snapshots.
"""

import sqlite3
import logging
from pathlib import Path
from contextlib import contextmanager
from datetime import datetime, timezone
from enum import Enum
from typing import Iterable, Optional, Generator, Union

from syncengine.config import config
from syncengine.errors import JobStateError
from syncengine.models import (
    ACTIVE_EMBED_STATUSES,
    ACTIVE_SYNC_STATUSES,
    EMBED_TRANSITIONS,
    SYNC_TRANSITIONS,
    EmbedConfig,
    EmbedJob,
    EmbedJobStatus,
    FileRecord,
    Repo,
    SyncConfig,
    SyncJob,
    SyncJobStatus,
)

logger = logging.getLogger(__name__)

# Keep IN (...) lists under SQLite's host parameter limit
_DELETE_BATCH = 500

_SYNC_JOB_FIELDS = {"total_files", "processed_files", "skipped_files", "failed_files", "error"}
_EMBED_JOB_FIELDS = {
    "total_files", "processed_files", "chunks_created",
    "embeddings_generated", "failed_files", "error",
}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _ts(value: Optional[datetime] = None) -> str:
    return (value or utcnow()).isoformat()


class Database:
    """SQLite database manager for the sync engine."""

    def __init__(self, db_path: Optional[Path] = None):
        self.db_path = db_path or config.DATABASE_PATH
        self._connection: Optional[sqlite3.Connection] = None

    def connect(self) -> sqlite3.Connection:
        """Get or create database connection."""
        if self._connection is None:
            self._connection = sqlite3.connect(
                str(self.db_path),
                check_same_thread=False,
                timeout=30.0,
            )
            self._connection.row_factory = sqlite3.Row
            # Enable foreign keys
            self._connection.execute("PRAGMA foreign_keys = ON")
            # Several worker processes may share one database file
            self._connection.execute("PRAGMA journal_mode = WAL")
        return self._connection

    def close(self) -> None:
        """Close database connection."""
        if self._connection:
            self._connection.close()
            self._connection = None

    @contextmanager
    def cursor(self) -> Generator[sqlite3.Cursor, None, None]:
        """Context manager for database cursor with auto-commit."""
        conn = self.connect()
        cursor = conn.cursor()
        try:
            yield cursor
            conn.commit()
        except Exception:
            conn.rollback()
            raise

    @contextmanager
    def transaction(self) -> Generator[sqlite3.Cursor, None, None]:
        """
        Write transaction that takes the database lock up front.

        Read-then-write sequences (idempotent job creation, state
        transitions) run inside this so a second process cannot
        interleave between the check and the write.
        """
        conn = self.connect()
        if conn.in_transaction:
            conn.commit()
        cursor = conn.cursor()
        cursor.execute("BEGIN IMMEDIATE")
        try:
            yield cursor
            conn.commit()
        except Exception:
            conn.rollback()
            raise

    def initialize(self) -> None:
        """Create database schema if not exists."""
        logger.info(f"Initializing database at {self.db_path}")

        with self.cursor() as cur:
            cur.execute("""
                CREATE TABLE IF NOT EXISTS repos (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    full_name TEXT UNIQUE NOT NULL,
                    credential_id TEXT NOT NULL,
                    default_branch TEXT,
                    last_commit_sha TEXT,
                    last_indexed_at TEXT,
                    created_at TEXT NOT NULL
                )
            """)

            cur.execute("""
                CREATE TABLE IF NOT EXISTS sync_jobs (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    repo_id INTEGER NOT NULL,
                    status TEXT NOT NULL DEFAULT 'PENDING',
                    total_files INTEGER,
                    processed_files INTEGER NOT NULL DEFAULT 0,
                    skipped_files INTEGER NOT NULL DEFAULT 0,
                    failed_files INTEGER NOT NULL DEFAULT 0,
                    config TEXT,
                    error TEXT,
                    created_at TEXT NOT NULL,
                    started_at TEXT,
                    completed_at TEXT,
                    FOREIGN KEY (repo_id) REFERENCES repos(id) ON DELETE CASCADE
                )
            """)

            cur.execute("""
                CREATE TABLE IF NOT EXISTS embed_jobs (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    repo_id INTEGER NOT NULL,
                    status TEXT NOT NULL DEFAULT 'PENDING',
                    total_files INTEGER,
                    processed_files INTEGER NOT NULL DEFAULT 0,
                    chunks_created INTEGER NOT NULL DEFAULT 0,
                    embeddings_generated INTEGER NOT NULL DEFAULT 0,
                    failed_files INTEGER NOT NULL DEFAULT 0,
                    config TEXT,
                    error TEXT,
                    created_at TEXT NOT NULL,
                    started_at TEXT,
                    completed_at TEXT,
                    FOREIGN KEY (repo_id) REFERENCES repos(id) ON DELETE CASCADE
                )
            """)

            # Files table - mirrored file contents, one row per (repo, path)
            cur.execute("""
                CREATE TABLE IF NOT EXISTS files (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    repo_id INTEGER NOT NULL,
                    path TEXT NOT NULL,
                    content TEXT,
                    sha TEXT NOT NULL,
                    size INTEGER NOT NULL,
                    encoding TEXT,
                    skipped_reason TEXT,
                    language TEXT,
                    loc INTEGER,
                    last_chunked_sha TEXT,
                    updated_at TEXT NOT NULL,
                    UNIQUE (repo_id, path),
                    FOREIGN KEY (repo_id) REFERENCES repos(id) ON DELETE CASCADE
                )
            """)

            cur.execute("""
                CREATE TABLE IF NOT EXISTS chunks (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    file_id INTEGER NOT NULL,
                    content TEXT NOT NULL,
                    start_char INTEGER NOT NULL,
                    end_char INTEGER NOT NULL,
                    chunk_index INTEGER NOT NULL,
                    token_count INTEGER NOT NULL,
                    embedding BLOB,
                    embedding_model TEXT,
                    embedded_at TEXT,
                    created_at TEXT NOT NULL,
                    FOREIGN KEY (file_id) REFERENCES files(id) ON DELETE CASCADE
                )
            """)

            cur.execute("""
                CREATE TABLE IF NOT EXISTS rate_limits (
                    credential_id TEXT PRIMARY KEY,
                    remaining INTEGER NOT NULL,
                    rate_limit INTEGER NOT NULL,
                    reset_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)

            # Metadata table for tracking
            cur.execute("""
                CREATE TABLE IF NOT EXISTS metadata (
                    key TEXT PRIMARY KEY,
                    value TEXT
                )
            """)

            # Create indexes for performance
            cur.execute("CREATE INDEX IF NOT EXISTS idx_sync_jobs_status ON sync_jobs(status, created_at)")
            cur.execute("CREATE INDEX IF NOT EXISTS idx_sync_jobs_repo_id ON sync_jobs(repo_id)")
            cur.execute("CREATE INDEX IF NOT EXISTS idx_embed_jobs_status ON embed_jobs(status, created_at)")
            cur.execute("CREATE INDEX IF NOT EXISTS idx_embed_jobs_repo_id ON embed_jobs(repo_id)")
            cur.execute("CREATE INDEX IF NOT EXISTS idx_files_repo_id ON files(repo_id)")
            cur.execute("CREATE INDEX IF NOT EXISTS idx_chunks_file_id ON chunks(file_id)")
            cur.execute("CREATE INDEX IF NOT EXISTS idx_chunks_embedded_at ON chunks(embedded_at)")

        logger.info("Database initialized successfully")

    # ------------------------------------------------------------------
    # Repositories
    # ------------------------------------------------------------------

    def add_repo(self, full_name: str, credential_id: str, default_branch: Optional[str] = None) -> int:
        """Register a repository (or update its credential). Returns repo ID."""
        with self.cursor() as cur:
            cur.execute("""
                INSERT INTO repos (full_name, credential_id, default_branch, created_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(full_name) DO UPDATE SET
                    credential_id = excluded.credential_id,
                    default_branch = COALESCE(excluded.default_branch, repos.default_branch)
            """, (full_name, str(credential_id), default_branch, _ts()))

            cur.execute("SELECT id FROM repos WHERE full_name = ?", (full_name,))
            return cur.fetchone()["id"]

    def get_repo(self, repo_id: int) -> Optional[Repo]:
        """Get repository by ID."""
        with self.cursor() as cur:
            cur.execute("SELECT * FROM repos WHERE id = ?", (repo_id,))
            row = cur.fetchone()
            return Repo.from_row(row) if row else None

    def get_repo_by_name(self, full_name: str) -> Optional[Repo]:
        """Get repository by its owner/name."""
        with self.cursor() as cur:
            cur.execute("SELECT * FROM repos WHERE full_name = ?", (full_name,))
            row = cur.fetchone()
            return Repo.from_row(row) if row else None

    def list_repos(self) -> list[Repo]:
        with self.cursor() as cur:
            cur.execute("SELECT * FROM repos ORDER BY id")
            return [Repo.from_row(row) for row in cur.fetchall()]

    def update_repo_branch(self, repo_id: int, branch: str) -> None:
        with self.cursor() as cur:
            cur.execute("UPDATE repos SET default_branch = ? WHERE id = ?", (branch, repo_id))

    def mark_repo_indexed(self, repo_id: int, commit_sha: Optional[str]) -> None:
        """Record the commit a sync reached, for the next incremental diff."""
        with self.cursor() as cur:
            cur.execute("""
                UPDATE repos
                SET last_commit_sha = COALESCE(?, last_commit_sha),
                    last_indexed_at = ?
                WHERE id = ?
            """, (commit_sha, _ts(), repo_id))

    # ------------------------------------------------------------------
    # Job queue
    # ------------------------------------------------------------------

    def create_sync_job(self, repo_id: int, job_config: Optional[SyncConfig] = None) -> tuple[int, bool]:
        """
        Create a sync job unless the repo already has an active one.

        Returns:
            Tuple of (job_id, created).
        """
        return self._create_job(
            "sync_jobs", ACTIVE_SYNC_STATUSES, repo_id,
            job_config.to_json() if job_config else None,
        )

    def create_embed_job(self, repo_id: int, job_config: Optional[EmbedConfig] = None) -> tuple[int, bool]:
        """
        Create an embed job unless the repo already has an active one.

        Returns:
            Tuple of (job_id, created).
        """
        return self._create_job(
            "embed_jobs", ACTIVE_EMBED_STATUSES, repo_id,
            job_config.to_json() if job_config else None,
        )

    def _create_job(
        self,
        table: str,
        active: Iterable[Enum],
        repo_id: int,
        raw_config: Optional[str],
    ) -> tuple[int, bool]:
        statuses = [s.value for s in active]
        placeholders = ", ".join("?" for _ in statuses)
        with self.transaction() as cur:
            cur.execute(
                f"SELECT id FROM {table} WHERE repo_id = ? AND status IN ({placeholders}) "
                f"ORDER BY created_at, id LIMIT 1",
                (repo_id, *statuses),
            )
            row = cur.fetchone()
            if row:
                return row["id"], False

            cur.execute(
                f"INSERT INTO {table} (repo_id, status, config, created_at) VALUES (?, 'PENDING', ?, ?)",
                (repo_id, raw_config, _ts()),
            )
            return cur.lastrowid, True

    def get_sync_job(self, job_id: int) -> Optional[SyncJob]:
        with self.cursor() as cur:
            cur.execute("SELECT * FROM sync_jobs WHERE id = ?", (job_id,))
            row = cur.fetchone()
            return SyncJob.from_row(row) if row else None

    def get_embed_job(self, job_id: int) -> Optional[EmbedJob]:
        with self.cursor() as cur:
            cur.execute("SELECT * FROM embed_jobs WHERE id = ?", (job_id,))
            row = cur.fetchone()
            return EmbedJob.from_row(row) if row else None

    def get_next_pending_sync_job(self) -> Optional[SyncJob]:
        """Oldest PENDING sync job."""
        with self.cursor() as cur:
            cur.execute(
                "SELECT * FROM sync_jobs WHERE status = 'PENDING' ORDER BY created_at, id LIMIT 1"
            )
            row = cur.fetchone()
            return SyncJob.from_row(row) if row else None

    def get_next_pending_embed_job(self) -> Optional[EmbedJob]:
        """Oldest PENDING embed job."""
        with self.cursor() as cur:
            cur.execute(
                "SELECT * FROM embed_jobs WHERE status = 'PENDING' ORDER BY created_at, id LIMIT 1"
            )
            row = cur.fetchone()
            return EmbedJob.from_row(row) if row else None

    def claim_sync_job(self, job_id: int) -> bool:
        """
        Move a sync job out of PENDING. Only one caller can win the claim.
        """
        with self.cursor() as cur:
            cur.execute("""
                UPDATE sync_jobs
                SET status = ?, started_at = ?
                WHERE id = ? AND status = 'PENDING'
            """, (SyncJobStatus.FETCHING_TREE.value, _ts(), job_id))
            return cur.rowcount == 1

    def claim_embed_job(self, job_id: int) -> bool:
        """
        Move an embed job out of PENDING. Only one caller can win the claim.
        """
        with self.cursor() as cur:
            cur.execute("""
                UPDATE embed_jobs
                SET status = ?, started_at = ?
                WHERE id = ? AND status = 'PENDING'
            """, (EmbedJobStatus.CHUNKING.value, _ts(), job_id))
            return cur.rowcount == 1

    def transition_sync_job(self, job_id: int, status: SyncJobStatus, **fields) -> None:
        """Move a sync job to a new status, optionally updating counters."""
        self._transition("sync_jobs", SyncJobStatus, SYNC_TRANSITIONS, _SYNC_JOB_FIELDS, job_id, status, fields)

    def transition_embed_job(self, job_id: int, status: EmbedJobStatus, **fields) -> None:
        """Move an embed job to a new status, optionally updating counters."""
        self._transition("embed_jobs", EmbedJobStatus, EMBED_TRANSITIONS, _EMBED_JOB_FIELDS, job_id, status, fields)

    def update_sync_job_progress(self, job_id: int, **fields) -> None:
        """Persist sync counters on a running job."""
        self._update_progress("sync_jobs", SyncJobStatus, _SYNC_JOB_FIELDS, job_id, fields)

    def update_embed_job_progress(self, job_id: int, **fields) -> None:
        """Persist embed counters on a running job."""
        self._update_progress("embed_jobs", EmbedJobStatus, _EMBED_JOB_FIELDS, job_id, fields)

    def _transition(self, table, status_enum, transitions, allowed_fields, job_id, status, fields) -> None:
        unknown = set(fields) - allowed_fields
        if unknown:
            raise ValueError(f"Unknown job fields: {sorted(unknown)}")

        with self.transaction() as cur:
            cur.execute(f"SELECT status FROM {table} WHERE id = ?", (job_id,))
            row = cur.fetchone()
            if row is None:
                raise JobStateError(f"Job {job_id} not found in {table}")

            current = status_enum(row["status"])
            if status not in transitions[current]:
                raise JobStateError(
                    f"Illegal transition for job {job_id}: {current.value} -> {status.value}"
                )

            assignments = ["status = ?"]
            params: list = [status.value]
            for name, value in fields.items():
                assignments.append(f"{name} = ?")
                params.append(value)
            if status.is_terminal:
                assignments.append("completed_at = ?")
                params.append(_ts())

            cur.execute(
                f"UPDATE {table} SET {', '.join(assignments)} WHERE id = ? AND status = ?",
                (*params, job_id, current.value),
            )

    def _update_progress(self, table, status_enum, allowed_fields, job_id, fields) -> None:
        if not fields:
            return
        unknown = set(fields) - allowed_fields
        if unknown:
            raise ValueError(f"Unknown job fields: {sorted(unknown)}")

        terminal = [s.value for s in status_enum if s.is_terminal]
        assignments = ", ".join(f"{name} = ?" for name in fields)
        with self.cursor() as cur:
            cur.execute(
                f"UPDATE {table} SET {assignments} WHERE id = ? AND status NOT IN (?, ?)",
                (*fields.values(), job_id, *terminal),
            )
            if cur.rowcount != 1:
                raise JobStateError(f"Job {job_id} in {table} is missing or already finished")

    def find_sync_jobs(self, statuses: Iterable[SyncJobStatus]) -> list[SyncJob]:
        values = [s.value for s in statuses]
        placeholders = ", ".join("?" for _ in values)
        with self.cursor() as cur:
            cur.execute(
                f"SELECT * FROM sync_jobs WHERE status IN ({placeholders}) ORDER BY created_at, id",
                values,
            )
            return [SyncJob.from_row(row) for row in cur.fetchall()]

    def find_embed_jobs(self, statuses: Iterable[EmbedJobStatus]) -> list[EmbedJob]:
        values = [s.value for s in statuses]
        placeholders = ", ".join("?" for _ in values)
        with self.cursor() as cur:
            cur.execute(
                f"SELECT * FROM embed_jobs WHERE status IN ({placeholders}) ORDER BY created_at, id",
                values,
            )
            return [EmbedJob.from_row(row) for row in cur.fetchall()]

    def list_sync_jobs(
        self,
        status: Optional[SyncJobStatus] = None,
        repo_id: Optional[int] = None,
        limit: int = 20,
    ) -> list[SyncJob]:
        """Most recent sync jobs, newest first."""
        query, params = self._job_filter("sync_jobs", status, repo_id, limit)
        with self.cursor() as cur:
            cur.execute(query, params)
            return [SyncJob.from_row(row) for row in cur.fetchall()]

    def list_embed_jobs(
        self,
        status: Optional[EmbedJobStatus] = None,
        repo_id: Optional[int] = None,
        limit: int = 20,
    ) -> list[EmbedJob]:
        """Most recent embed jobs, newest first."""
        query, params = self._job_filter("embed_jobs", status, repo_id, limit)
        with self.cursor() as cur:
            cur.execute(query, params)
            return [EmbedJob.from_row(row) for row in cur.fetchall()]

    @staticmethod
    def _job_filter(table: str, status: Optional[Enum], repo_id: Optional[int], limit: int) -> tuple[str, list]:
        clauses = []
        params: list = []
        if status is not None:
            clauses.append("status = ?")
            params.append(status.value)
        if repo_id is not None:
            clauses.append("repo_id = ?")
            params.append(repo_id)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        params.append(limit)
        return f"SELECT * FROM {table} {where} ORDER BY created_at DESC, id DESC LIMIT ?", params

    def fail_orphaned_jobs(self, error: str) -> tuple[list[SyncJob], list[EmbedJob]]:
        """
        Mark every in-flight job as FAILED. Used at startup, when no job can
        legitimately be running in this process yet.

        Returns the jobs as they were before the update.
        """
        sync_active = (SyncJobStatus.FETCHING_TREE.value, SyncJobStatus.PROCESSING_FILES.value)
        embed_active = (EmbedJobStatus.CHUNKING.value, EmbedJobStatus.EMBEDDING.value)
        now = _ts()

        with self.transaction() as cur:
            cur.execute("SELECT * FROM sync_jobs WHERE status IN (?, ?) ORDER BY id", sync_active)
            sync_jobs = [SyncJob.from_row(row) for row in cur.fetchall()]
            cur.execute("SELECT * FROM embed_jobs WHERE status IN (?, ?) ORDER BY id", embed_active)
            embed_jobs = [EmbedJob.from_row(row) for row in cur.fetchall()]

            cur.execute(
                "UPDATE sync_jobs SET status = 'FAILED', error = ?, completed_at = ? WHERE status IN (?, ?)",
                (error, now, *sync_active),
            )
            cur.execute(
                "UPDATE embed_jobs SET status = 'FAILED', error = ?, completed_at = ? WHERE status IN (?, ?)",
                (error, now, *embed_active),
            )

        return sync_jobs, embed_jobs

    # ------------------------------------------------------------------
    # Files
    # ------------------------------------------------------------------

    def get_file(self, repo_id: int, path: str) -> Optional[FileRecord]:
        """Get file record by (repo, path)."""
        with self.cursor() as cur:
            cur.execute("SELECT * FROM files WHERE repo_id = ? AND path = ?", (repo_id, path))
            row = cur.fetchone()
            return FileRecord.from_row(row) if row else None

    def get_file_state(self, repo_id: int, path: str) -> Optional[dict]:
        """The sha and skip reason of a tracked file, without its content."""
        with self.cursor() as cur:
            cur.execute(
                "SELECT id, sha, skipped_reason FROM files WHERE repo_id = ? AND path = ?",
                (repo_id, path),
            )
            row = cur.fetchone()
            return dict(row) if row else None

    def upsert_file(
        self,
        repo_id: int,
        path: str,
        sha: str,
        size: int,
        content: Optional[str],
        encoding: Optional[str],
        skipped_reason: Optional[str],
        language: Optional[str],
        loc: Optional[int],
    ) -> int:
        """
        Insert or update a file record keyed by (repo, path). Returns file ID.

        When the sha changes, the file's chunks are dropped and its
        ``last_chunked_sha`` cleared in the same transaction, so a file
        stored without content keeps nothing from its previous version.
        """
        with self.transaction() as cur:
            cur.execute(
                "SELECT id, sha FROM files WHERE repo_id = ? AND path = ?", (repo_id, path)
            )
            existing = cur.fetchone()
            if existing and existing["sha"] != sha:
                cur.execute("DELETE FROM chunks WHERE file_id = ?", (existing["id"],))
                if cur.rowcount:
                    logger.debug(f"Dropped {cur.rowcount} stale chunks of {path}")

            cur.execute("""
                INSERT INTO files (
                    repo_id, path, content, sha, size, encoding,
                    skipped_reason, language, loc, updated_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(repo_id, path) DO UPDATE SET
                    content = excluded.content,
                    last_chunked_sha = CASE
                        WHEN files.sha = excluded.sha THEN files.last_chunked_sha
                        ELSE NULL
                    END,
                    sha = excluded.sha,
                    size = excluded.size,
                    encoding = excluded.encoding,
                    skipped_reason = excluded.skipped_reason,
                    language = excluded.language,
                    loc = excluded.loc,
                    updated_at = excluded.updated_at
            """, (repo_id, path, content, sha, size, encoding, skipped_reason, language, loc, _ts()))

            if existing:
                return existing["id"]
            cur.execute("SELECT id FROM files WHERE repo_id = ? AND path = ?", (repo_id, path))
            return cur.fetchone()["id"]

    def get_repo_file_paths(self, repo_id: int) -> dict[str, int]:
        """Map of path -> file ID for every tracked file in a repo."""
        with self.cursor() as cur:
            cur.execute("SELECT id, path FROM files WHERE repo_id = ?", (repo_id,))
            return {row["path"]: row["id"] for row in cur.fetchall()}

    def delete_files_by_ids(self, file_ids: Iterable[int]) -> int:
        """Delete files (and their chunks) in one transaction."""
        return self._delete_in("DELETE FROM files WHERE id IN ({})", list(file_ids))

    def delete_files_by_paths(self, repo_id: int, paths: Iterable[str]) -> int:
        """Delete files of a repo by path in one transaction."""
        return self._delete_in(
            "DELETE FROM files WHERE repo_id = ? AND path IN ({})", list(paths), prefix=(repo_id,)
        )

    def _delete_in(self, template: str, values: list, prefix: tuple = ()) -> int:
        if not values:
            return 0
        deleted = 0
        with self.transaction() as cur:
            for i in range(0, len(values), _DELETE_BATCH):
                batch = values[i:i + _DELETE_BATCH]
                placeholders = ", ".join("?" for _ in batch)
                cur.execute(template.format(placeholders), (*prefix, *batch))
                deleted += cur.rowcount
        return deleted

    def get_files_with_content(self, repo_id: int) -> list[FileRecord]:
        """Files that have content and were not skipped."""
        with self.cursor() as cur:
            cur.execute("""
                SELECT * FROM files
                WHERE repo_id = ? AND content IS NOT NULL AND skipped_reason IS NULL
                ORDER BY path
            """, (repo_id,))
            return [FileRecord.from_row(row) for row in cur.fetchall()]

    def count_files_needing_chunking(self, repo_id: int) -> int:
        with self.cursor() as cur:
            cur.execute("""
                SELECT COUNT(*) AS count FROM files
                WHERE repo_id = ?
                  AND content IS NOT NULL
                  AND skipped_reason IS NULL
                  AND (last_chunked_sha IS NULL OR last_chunked_sha != sha)
            """, (repo_id,))
            return cur.fetchone()["count"]

    # ------------------------------------------------------------------
    # Chunks
    # ------------------------------------------------------------------

    def replace_file_chunks(self, file_id: int, chunks: list, chunked_sha: str) -> int:
        """
        Swap a file's chunks for a fresh set and stamp the sha they were
        built from. Returns number of chunks inserted.
        """
        now = _ts()
        with self.transaction() as cur:
            cur.execute("DELETE FROM chunks WHERE file_id = ?", (file_id,))
            cur.executemany("""
                INSERT INTO chunks (
                    file_id, content, start_char, end_char, chunk_index, token_count, created_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?)
            """, [
                (file_id, c.content, c.start_char, c.end_char, c.chunk_index, c.token_count, now)
                for c in chunks
            ])
            cur.execute("UPDATE files SET last_chunked_sha = ? WHERE id = ?", (chunked_sha, file_id))
        return len(chunks)

    def get_chunks_by_file(self, file_id: int) -> list[dict]:
        with self.cursor() as cur:
            cur.execute("""
                SELECT id, file_id, content, start_char, end_char, chunk_index,
                       token_count, embedded_at
                FROM chunks WHERE file_id = ? ORDER BY chunk_index
            """, (file_id,))
            return [dict(row) for row in cur.fetchall()]

    def get_chunks_without_embeddings(self, repo_id: int, limit: Optional[int] = None) -> list[dict]:
        """Chunks of a repo that still need an embedding."""
        query = """
            SELECT c.id, c.file_id, c.content, c.chunk_index
            FROM chunks c
            JOIN files f ON f.id = c.file_id
            WHERE f.repo_id = ? AND c.embedded_at IS NULL
            ORDER BY c.id
        """
        params: list = [repo_id]
        if limit is not None:
            query += " LIMIT ?"
            params.append(limit)
        with self.cursor() as cur:
            cur.execute(query, params)
            return [dict(row) for row in cur.fetchall()]

    def count_chunks_without_embeddings(self, repo_id: int) -> int:
        with self.cursor() as cur:
            cur.execute("""
                SELECT COUNT(*) AS count FROM chunks c
                JOIN files f ON f.id = c.file_id
                WHERE f.repo_id = ? AND c.embedded_at IS NULL
            """, (repo_id,))
            return cur.fetchone()["count"]

    def set_chunk_embeddings(self, embeddings: list[tuple[int, bytes]], model: str) -> None:
        """Store a batch of (chunk_id, embedding bytes) in one transaction."""
        now = _ts()
        with self.transaction() as cur:
            cur.executemany(
                "UPDATE chunks SET embedding = ?, embedding_model = ?, embedded_at = ? WHERE id = ?",
                [(blob, model, now, chunk_id) for chunk_id, blob in embeddings],
            )

    def get_chunk_embedding(self, chunk_id: int) -> Optional[bytes]:
        with self.cursor() as cur:
            cur.execute("SELECT embedding FROM chunks WHERE id = ?", (chunk_id,))
            row = cur.fetchone()
            return row["embedding"] if row else None

    # ------------------------------------------------------------------
    # Rate limits
    # ------------------------------------------------------------------

    def get_rate_limit(self, credential_id: str) -> Optional[dict]:
        with self.cursor() as cur:
            cur.execute(
                "SELECT remaining, rate_limit, reset_at FROM rate_limits WHERE credential_id = ?",
                (str(credential_id),),
            )
            row = cur.fetchone()
            if row is None:
                return None
            return {
                "remaining": row["remaining"],
                "limit": row["rate_limit"],
                "reset_at": datetime.fromisoformat(row["reset_at"]),
            }

    def upsert_rate_limit(self, credential_id: str, remaining: int, limit: int, reset_at: datetime) -> None:
        with self.cursor() as cur:
            cur.execute("""
                INSERT INTO rate_limits (credential_id, remaining, rate_limit, reset_at, updated_at)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(credential_id) DO UPDATE SET
                    remaining = excluded.remaining,
                    rate_limit = excluded.rate_limit,
                    reset_at = excluded.reset_at,
                    updated_at = excluded.updated_at
            """, (str(credential_id), remaining, limit, reset_at.isoformat(), _ts()))

    # ------------------------------------------------------------------
    # Metadata & stats
    # ------------------------------------------------------------------

    def set_metadata(self, key: str, value: Union[str, datetime]) -> None:
        if isinstance(value, datetime):
            value = value.isoformat()
        with self.cursor() as cur:
            cur.execute("""
                INSERT INTO metadata (key, value)
                VALUES (?, ?)
                ON CONFLICT(key) DO UPDATE SET value = excluded.value
            """, (key, value))

    def get_metadata(self, key: str) -> Optional[str]:
        with self.cursor() as cur:
            cur.execute("SELECT value FROM metadata WHERE key = ?", (key,))
            row = cur.fetchone()
            return row["value"] if row else None

    def get_stats(self) -> dict:
        """Get database statistics."""
        with self.cursor() as cur:
            cur.execute("SELECT COUNT(*) as count FROM repos")
            repo_count = cur.fetchone()["count"]

            cur.execute("SELECT COUNT(*) as count FROM files")
            file_count = cur.fetchone()["count"]

            cur.execute("SELECT COUNT(*) as count FROM chunks")
            chunk_count = cur.fetchone()["count"]

            cur.execute("SELECT COUNT(*) as count FROM chunks WHERE embedded_at IS NOT NULL")
            embedded_count = cur.fetchone()["count"]

            cur.execute("SELECT status, COUNT(*) as count FROM sync_jobs GROUP BY status")
            sync_jobs = {row["status"]: row["count"] for row in cur.fetchall()}

            cur.execute("SELECT status, COUNT(*) as count FROM embed_jobs GROUP BY status")
            embed_jobs = {row["status"]: row["count"] for row in cur.fetchall()}

            return {
                "repo_count": repo_count,
                "file_count": file_count,
                "chunk_count": chunk_count,
                "embedded_chunk_count": embedded_count,
                "sync_jobs": sync_jobs,
                "embed_jobs": embed_jobs,
                "last_sweep_at": self.get_metadata("last_sweep_at"),
            }

