"""
Resolves what a sync has to look at: the full file listing of a branch or
the incremental diff since the last synced commit.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional

from syncengine.errors import GitHubError
from syncengine.file_utils import should_ignore_path
from syncengine.github import GitHubClient

logger = logging.getLogger(__name__)

# Compare answers these when the base commit is gone or unrelated
_BASE_UNRESOLVABLE = (404, 422)


@dataclass
class TreeEntry:
    """A file (blob) in a repository tree."""
    path: str
    sha: str
    size: int
    type: str = "blob"


@dataclass
class TreeListing:
    entries: list[TreeEntry]
    truncated: bool
    tree_sha: str
    commit_sha: str


@dataclass
class CompareResult:
    """Files that changed between two commits."""
    base_commit_sha: str
    head_commit_sha: str
    added: list[TreeEntry] = field(default_factory=list)
    modified: list[TreeEntry] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)

    @property
    def total_changes(self) -> int:
        return len(self.added) + len(self.modified) + len(self.removed)

    @property
    def changed_entries(self) -> list[TreeEntry]:
        return self.added + self.modified


class TreeResolver:
    """Listing and diff operations against the remote host."""

    def __init__(self, client: GitHubClient):
        self.client = client

    async def get_default_branch(self, full_name: str) -> str:
        data = await self.client.get_repo(full_name)
        return data["default_branch"]

    async def fetch_repo_tree(self, full_name: str, branch: str) -> TreeListing:
        """
        List every file of a branch in one recursive tree request.

        Only blobs with a known size are returned; paths inside ignored
        directories are dropped entirely.
        """
        logger.debug(f"Fetching branch reference {full_name}@{branch}")
        branch_data = await self.client.get_branch(full_name, branch)
        commit_sha = branch_data["commit"]["sha"]
        tree_sha = branch_data["commit"]["commit"]["tree"]["sha"]

        logger.debug(f"Fetching tree {tree_sha} for {full_name}")
        tree_data = await self.client.get_tree(full_name, tree_sha, recursive=True)

        entries = []
        for item in tree_data.get("tree", []):
            if item.get("type") != "blob" or item.get("size") is None:
                continue
            path = item.get("path") or ""
            if should_ignore_path(path):
                continue
            entries.append(TreeEntry(path=path, sha=item["sha"], size=item["size"]))

        truncated = bool(tree_data.get("truncated", False))
        if truncated:
            logger.warning(f"Tree listing for {full_name} was truncated by the API")

        logger.info(f"Fetched tree for {full_name}: {len(entries)} files")
        return TreeListing(entries=entries, truncated=truncated, tree_sha=tree_sha, commit_sha=commit_sha)

    async def compare_commits(self, full_name: str, base_sha: str, head_branch: str) -> Optional[CompareResult]:
        """
        Diff ``base_sha`` against the head of ``head_branch``.

        Returns None when the base commit can no longer be resolved, in which
        case callers fall back to a full listing. Other errors propagate.
        """
        try:
            data = await self.client.compare(full_name, base_sha, head_branch)
        except GitHubError as e:
            if e.status in _BASE_UNRESOLVABLE:
                logger.warning(
                    f"Compare {base_sha[:7]}...{head_branch} failed for {full_name} "
                    f"({e.status}), falling back to full sync"
                )
                return None
            raise

        merge_base_sha = (data.get("merge_base_commit") or {}).get("sha", base_sha)

        if data.get("status") == "identical":
            logger.info(f"No changes in {full_name} since {base_sha[:7]}")
            return CompareResult(base_commit_sha=base_sha, head_commit_sha=merge_base_sha)

        result = CompareResult(
            base_commit_sha=base_sha,
            head_commit_sha=merge_base_sha,
        )
        commits = data.get("commits") or []
        if commits:
            result.head_commit_sha = commits[-1]["sha"]

        for item in data.get("files") or []:
            path = item["filename"]
            if should_ignore_path(path):
                continue

            status = item.get("status")
            # Compare doesn't report blob sizes; line changes stand in until the fetch
            entry = TreeEntry(path=path, sha=item.get("sha") or "", size=item.get("changes", 0))

            if status == "added":
                result.added.append(entry)
            elif status in ("modified", "changed"):
                result.modified.append(entry)
            elif status == "removed":
                result.removed.append(path)
            elif status == "renamed":
                previous = item.get("previous_filename")
                if previous:
                    result.removed.append(previous)
                result.added.append(entry)

        logger.info(
            f"Compared {full_name} {base_sha[:7]}...{head_branch}: "
            f"{len(result.added)} added, {len(result.modified)} modified, {len(result.removed)} removed"
        )
        return result
