"""
Domain records for the sync engine: repositories, jobs and tracked files.
"""

import json
from dataclasses import asdict, dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Optional


class SyncJobStatus(str, Enum):
    """Lifecycle of a repository sync job."""
    PENDING = "PENDING"
    FETCHING_TREE = "FETCHING_TREE"
    PROCESSING_FILES = "PROCESSING_FILES"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self in (SyncJobStatus.COMPLETED, SyncJobStatus.FAILED)


class EmbedJobStatus(str, Enum):
    """Lifecycle of a chunk/embed job."""
    PENDING = "PENDING"
    CHUNKING = "CHUNKING"
    EMBEDDING = "EMBEDDING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self in (EmbedJobStatus.COMPLETED, EmbedJobStatus.FAILED)


SYNC_TRANSITIONS: dict[SyncJobStatus, set[SyncJobStatus]] = {
    SyncJobStatus.PENDING: {SyncJobStatus.FETCHING_TREE, SyncJobStatus.FAILED},
    SyncJobStatus.FETCHING_TREE: {SyncJobStatus.PROCESSING_FILES, SyncJobStatus.FAILED},
    SyncJobStatus.PROCESSING_FILES: {SyncJobStatus.COMPLETED, SyncJobStatus.FAILED},
    SyncJobStatus.COMPLETED: set(),
    SyncJobStatus.FAILED: set(),
}

EMBED_TRANSITIONS: dict[EmbedJobStatus, set[EmbedJobStatus]] = {
    EmbedJobStatus.PENDING: {EmbedJobStatus.CHUNKING, EmbedJobStatus.FAILED},
    EmbedJobStatus.CHUNKING: {EmbedJobStatus.EMBEDDING, EmbedJobStatus.FAILED},
    EmbedJobStatus.EMBEDDING: {EmbedJobStatus.COMPLETED, EmbedJobStatus.FAILED},
    EmbedJobStatus.COMPLETED: set(),
    EmbedJobStatus.FAILED: set(),
}

ACTIVE_SYNC_STATUSES = (
    SyncJobStatus.PENDING,
    SyncJobStatus.FETCHING_TREE,
    SyncJobStatus.PROCESSING_FILES,
)
ACTIVE_EMBED_STATUSES = (
    EmbedJobStatus.PENDING,
    EmbedJobStatus.CHUNKING,
    EmbedJobStatus.EMBEDDING,
)


def _parse_dt(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


@dataclass
class SyncConfig:
    """Per-job overrides for a sync run."""
    max_files: Optional[int] = None
    max_content_files: Optional[int] = None
    skip_content: bool = False

    def to_json(self) -> str:
        return json.dumps(asdict(self))

    @classmethod
    def from_json(cls, raw: Optional[str]) -> Optional["SyncConfig"]:
        if not raw:
            return None
        data = json.loads(raw)
        return cls(
            max_files=data.get("max_files"),
            max_content_files=data.get("max_content_files"),
            skip_content=bool(data.get("skip_content", False)),
        )


@dataclass
class EmbedConfig:
    """Per-job overrides for a chunk/embed run."""
    chunk_size: Optional[int] = None
    overlap: Optional[int] = None

    def to_json(self) -> str:
        return json.dumps(asdict(self))

    @classmethod
    def from_json(cls, raw: Optional[str]) -> Optional["EmbedConfig"]:
        if not raw:
            return None
        data = json.loads(raw)
        return cls(chunk_size=data.get("chunk_size"), overlap=data.get("overlap"))


@dataclass
class Repo:
    """A tracked remote repository."""
    id: int
    full_name: str
    credential_id: str
    default_branch: Optional[str] = None
    last_commit_sha: Optional[str] = None
    last_indexed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    @property
    def owner(self) -> str:
        return self.full_name.split("/", 1)[0]

    @property
    def name(self) -> str:
        return self.full_name.split("/", 1)[-1]

    @classmethod
    def from_row(cls, row: Any) -> "Repo":
        return cls(
            id=row["id"],
            full_name=row["full_name"],
            credential_id=row["credential_id"],
            default_branch=row["default_branch"],
            last_commit_sha=row["last_commit_sha"],
            last_indexed_at=_parse_dt(row["last_indexed_at"]),
            created_at=_parse_dt(row["created_at"]),
        )


@dataclass
class SyncJob:
    """One sync attempt for one repository."""
    id: int
    repo_id: int
    status: SyncJobStatus = SyncJobStatus.PENDING
    total_files: Optional[int] = None
    processed_files: int = 0
    skipped_files: int = 0
    failed_files: int = 0
    config: Optional[SyncConfig] = None
    error: Optional[str] = None
    created_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row: Any) -> "SyncJob":
        return cls(
            id=row["id"],
            repo_id=row["repo_id"],
            status=SyncJobStatus(row["status"]),
            total_files=row["total_files"],
            processed_files=row["processed_files"],
            skipped_files=row["skipped_files"],
            failed_files=row["failed_files"],
            config=SyncConfig.from_json(row["config"]),
            error=row["error"],
            created_at=_parse_dt(row["created_at"]),
            started_at=_parse_dt(row["started_at"]),
            completed_at=_parse_dt(row["completed_at"]),
        )


@dataclass
class EmbedJob:
    """One chunk/embed attempt for one repository."""
    id: int
    repo_id: int
    status: EmbedJobStatus = EmbedJobStatus.PENDING
    total_files: Optional[int] = None
    processed_files: int = 0
    chunks_created: int = 0
    embeddings_generated: int = 0
    failed_files: int = 0
    config: Optional[EmbedConfig] = None
    error: Optional[str] = None
    created_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row: Any) -> "EmbedJob":
        return cls(
            id=row["id"],
            repo_id=row["repo_id"],
            status=EmbedJobStatus(row["status"]),
            total_files=row["total_files"],
            processed_files=row["processed_files"],
            chunks_created=row["chunks_created"],
            embeddings_generated=row["embeddings_generated"],
            failed_files=row["failed_files"],
            config=EmbedConfig.from_json(row["config"]),
            error=row["error"],
            created_at=_parse_dt(row["created_at"]),
            started_at=_parse_dt(row["started_at"]),
            completed_at=_parse_dt(row["completed_at"]),
        )


@dataclass
class FileRecord:
    """Local mirror of one file in a repository."""
    id: int
    repo_id: int
    path: str
    sha: str
    size: int
    content: Optional[str] = None
    encoding: Optional[str] = None
    skipped_reason: Optional[str] = None
    language: Optional[str] = None
    loc: Optional[int] = None
    last_chunked_sha: Optional[str] = None
    updated_at: Optional[datetime] = None

    @property
    def needs_chunking(self) -> bool:
        return (
            self.content is not None
            and self.skipped_reason is None
            and self.last_chunked_sha != self.sha
        )

    @classmethod
    def from_row(cls, row: Any) -> "FileRecord":
        return cls(
            id=row["id"],
            repo_id=row["repo_id"],
            path=row["path"],
            sha=row["sha"],
            size=row["size"],
            content=row["content"],
            encoding=row["encoding"],
            skipped_reason=row["skipped_reason"],
            language=row["language"],
            loc=row["loc"],
            last_chunked_sha=row["last_chunked_sha"],
            updated_at=_parse_dt(row["updated_at"]),
        )
