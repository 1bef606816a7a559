"""
File materialization: brings one remote file into the local mirror,
skipping the fetch whenever the stored sha already matches.
"""

import base64
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Optional

from syncengine import file_utils
from syncengine.config import Config
from syncengine.db import Database
from syncengine.errors import GitHubError, GitHubNotFoundError
from syncengine.github import GitHubClient
from syncengine.models import Repo
from syncengine.tree_fetcher import TreeEntry

logger = logging.getLogger(__name__)

UNCHANGED_REASON = "unchanged"
NOT_FOUND_REASON = "not_found"

# Reasons that came from the job rather than the file; a later run
# without the override should fetch the content after all
_OVERRIDE_REASONS = (file_utils.SKIP_CONTENT, file_utils.CONTENT_LIMIT)


class FileSyncOutcome(str, Enum):
    UNCHANGED = "unchanged"
    FETCHED = "fetched"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass
class FileSyncResult:
    """What happened to one file during a sync."""
    outcome: FileSyncOutcome
    skip_reason: Optional[str] = None
    error: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.outcome != FileSyncOutcome.FAILED

    @property
    def skipped(self) -> bool:
        return self.outcome in (FileSyncOutcome.UNCHANGED, FileSyncOutcome.SKIPPED)

    @property
    def content_fetched(self) -> bool:
        return self.outcome == FileSyncOutcome.FETCHED and self.skip_reason is None


def decode_content(data: dict) -> Optional[str]:
    """Decode a contents API payload to text; undecodable bytes are replaced."""
    raw = data.get("content")
    if not isinstance(raw, str):
        return None

    encoding = data.get("encoding") or "base64"
    if encoding == "base64":
        return base64.b64decode(raw).decode("utf-8", errors="replace")
    if encoding == "none":
        # Blobs over 1MB come back without content
        return None
    return raw


class FileMaterializer:
    """Fetch-or-skip for single files plus bulk removal of deleted paths."""

    def __init__(self, database: Database, client: GitHubClient, max_file_size: Optional[int] = None):
        self.database = database
        self.client = client
        self.max_file_size = Config.MAX_FILE_SIZE_BYTES if max_file_size is None else max_file_size

    async def sync_file(
        self,
        repo: Repo,
        entry: TreeEntry,
        skip_content_override: bool = False,
        override_reason: str = file_utils.SKIP_CONTENT,
    ) -> FileSyncResult:
        """
        Bring one file up to date.

        Raises:
            GitHubError: For fetch failures other than 404 or "too large".
        """
        existing = self.database.get_file_state(repo.id, entry.path)
        if existing and existing["sha"] == entry.sha:
            if skip_content_override or existing["skipped_reason"] not in _OVERRIDE_REASONS:
                logger.debug(f"File unchanged, skipping fetch: {entry.path}")
                return FileSyncResult(FileSyncOutcome.UNCHANGED, skip_reason=UNCHANGED_REASON)

        skip_reason = file_utils.check_file(entry.path, entry.size, self.max_file_size)
        if skip_reason is None and skip_content_override:
            skip_reason = override_reason

        size = entry.size
        content = None

        if skip_reason is None:
            try:
                data = await self.client.get_contents(repo.full_name, entry.path)
            except GitHubNotFoundError:
                logger.warning(f"File not found: {repo.full_name}/{entry.path}")
                return FileSyncResult(FileSyncOutcome.SKIPPED, skip_reason=NOT_FOUND_REASON)
            except GitHubError as e:
                if not e.is_too_large:
                    logger.error(f"Error fetching {repo.full_name}/{entry.path}: {e}")
                    raise
                logger.warning(f"File too large for API, keeping metadata only: {entry.path}")
                skip_reason = file_utils.TOO_LARGE
            else:
                if isinstance(data, dict):
                    size = data.get("size", size)
                    content = decode_content(data)
                    if data.get("encoding") == "none" or size > self.max_file_size:
                        content = None
                        skip_reason = file_utils.TOO_LARGE

        try:
            self.database.upsert_file(
                repo_id=repo.id,
                path=entry.path,
                sha=entry.sha,
                size=size,
                content=content,
                encoding="utf-8" if content is not None else None,
                skipped_reason=skip_reason,
                language=file_utils.detect_language(entry.path),
                loc=file_utils.count_lines(content) if content is not None else None,
            )
        except Exception as e:
            logger.error(f"Error upserting file {entry.path}: {e}")
            return FileSyncResult(FileSyncOutcome.FAILED, error=str(e))

        if skip_reason:
            logger.debug(f"File synced without content ({skip_reason}): {entry.path}")
            return FileSyncResult(FileSyncOutcome.SKIPPED, skip_reason=skip_reason)

        logger.debug(f"File synced: {entry.path} ({size} bytes)")
        return FileSyncResult(FileSyncOutcome.FETCHED)

    def delete_removed_files(self, repo_id: int, current_paths: Iterable[str]) -> int:
        """Delete tracked files of a repo whose path is not in ``current_paths``."""
        current = set(current_paths)
        existing = self.database.get_repo_file_paths(repo_id)
        to_delete = [file_id for path, file_id in existing.items() if path not in current]
        if not to_delete:
            return 0

        deleted = self.database.delete_files_by_ids(to_delete)
        logger.info(f"Deleted {deleted} removed files from repo {repo_id}")
        return deleted

    def delete_paths(self, repo_id: int, paths: Iterable[str]) -> int:
        paths = list(paths)
        if not paths:
            return 0
        deleted = self.database.delete_files_by_paths(repo_id, paths)
        logger.info(f"Deleted {deleted} files removed upstream from repo {repo_id}")
        return deleted
