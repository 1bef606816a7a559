"""
Pytest configuration and shared fixtures for sync engine tests.
"""

import base64
import hashlib
import tempfile
import shutil
from collections import defaultdict
from pathlib import Path
from typing import Generator, Optional

import pytest

from syncengine.db import Database
from syncengine.engine import Engine, build_engine
from syncengine.errors import GitHubNotFoundError
from syncengine.llm import EmbeddingProvider
from syncengine.models import Repo
from syncengine.notifier import JobObserver, JobProgressEvent, Notifier
from syncengine.rate_limiter import RateLimiter


def blob_sha(content: str) -> str:
    return hashlib.sha1(content.encode("utf-8")).hexdigest()


class FakeGitHubClient:
    """
    In-memory stand-in for GitHubClient.

    ``files`` maps path -> text content. Tree entries, shas and sizes are
    derived from it; individual calls can be made to fail.
    """

    def __init__(
        self,
        files: Optional[dict] = None,
        default_branch: str = "main",
        commit_sha: str = "commit-1",
        tree_sha: str = "tree-1",
    ):
        self.files = dict(files or {})
        self.default_branch = default_branch
        self.commit_sha = commit_sha
        self.tree_sha = tree_sha
        self.truncated = False
        self.sizes: dict = {}
        self.compare_response: Optional[dict] = None
        self.compare_error: Optional[Exception] = None
        self.repo_error: Optional[Exception] = None
        self.tree_error: Optional[Exception] = None
        self.content_errors: dict = {}
        self.calls = defaultdict(list)
        self.closed = 0

    async def __aenter__(self) -> "FakeGitHubClient":
        return self

    async def __aexit__(self, *exc) -> None:
        self.closed += 1

    def tree_item(self, path: str) -> dict:
        content = self.files[path]
        return {
            "path": path,
            "type": "blob",
            "sha": blob_sha(content),
            "size": self.sizes.get(path, len(content.encode("utf-8"))),
        }

    async def get_repo(self, full_name: str) -> dict:
        self.calls["get_repo"].append(full_name)
        if self.repo_error:
            raise self.repo_error
        return {"full_name": full_name, "default_branch": self.default_branch}

    async def get_branch(self, full_name: str, branch: str) -> dict:
        self.calls["get_branch"].append((full_name, branch))
        return {"name": branch, "commit": {"sha": self.commit_sha, "commit": {"tree": {"sha": self.tree_sha}}}}

    async def get_tree(self, full_name: str, tree_sha: str, recursive: bool = True) -> dict:
        self.calls["get_tree"].append((full_name, tree_sha))
        if self.tree_error:
            raise self.tree_error
        return {
            "sha": tree_sha,
            "tree": [self.tree_item(path) for path in sorted(self.files)],
            "truncated": self.truncated,
        }

    async def compare(self, full_name: str, base: str, head: str) -> dict:
        self.calls["compare"].append((full_name, base, head))
        if self.compare_error:
            raise self.compare_error
        return self.compare_response or {"status": "identical", "merge_base_commit": {"sha": base}}

    async def get_contents(self, full_name: str, path: str) -> dict:
        self.calls["get_contents"].append(path)
        if path in self.content_errors:
            raise self.content_errors[path]
        if path not in self.files:
            raise GitHubNotFoundError()
        content = self.files[path]
        return {
            "path": path,
            "sha": blob_sha(content),
            "size": self.sizes.get(path, len(content.encode("utf-8"))),
            "encoding": "base64",
            "content": base64.b64encode(content.encode("utf-8")).decode("ascii"),
        }


class FakeEmbeddingProvider(EmbeddingProvider):
    """Deterministic embeddings; selected calls (1-based) raise."""

    model_name = "fake-embedding"

    def __init__(self, fail_on_calls=()):
        self.fail_on_calls = set(fail_on_calls)
        self.calls: list[list[str]] = []
        self.closed = 0

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        self.calls.append(list(texts))
        if len(self.calls) in self.fail_on_calls:
            raise RuntimeError("provider unavailable")
        return [[float(len(text)), 1.0, 0.5] for text in texts]

    async def close(self) -> None:
        self.closed += 1


class RecordingObserver(JobObserver):
    """Collects every event it receives."""

    def __init__(self):
        self.progress: list[JobProgressEvent] = []
        self.completed: list[JobProgressEvent] = []
        self.failed: list[JobProgressEvent] = []

    async def on_progress(self, event: JobProgressEvent) -> None:
        self.progress.append(event)

    async def on_completed(self, event: JobProgressEvent) -> None:
        self.completed.append(event)

    async def on_failed(self, event: JobProgressEvent) -> None:
        self.failed.append(event)


async def no_sleep(seconds: float) -> None:
    return None


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for tests."""
    temp_path = Path(tempfile.mkdtemp())
    yield temp_path
    shutil.rmtree(temp_path, ignore_errors=True)


@pytest.fixture
def temp_db(temp_dir: Path) -> Generator[Database, None, None]:
    """Create a temporary database for tests."""
    db_path = temp_dir / "test.db"
    database = Database(db_path)
    database.initialize()
    yield database
    database.close()


@pytest.fixture
def repo(temp_db: Database) -> Repo:
    """A registered repository."""
    repo_id = temp_db.add_repo("octocat/hello-world", "default", "main")
    return temp_db.get_repo(repo_id)


@pytest.fixture
def fake_github() -> FakeGitHubClient:
    return FakeGitHubClient()


@pytest.fixture
def client_factory(fake_github: FakeGitHubClient):
    """Client factory handing out the shared fake client."""
    def factory(credential_id, rate_limiter):
        return fake_github
    return factory


@pytest.fixture
def fake_provider() -> FakeEmbeddingProvider:
    return FakeEmbeddingProvider()


@pytest.fixture
def rate_limiter(temp_db: Database) -> RateLimiter:
    return RateLimiter(temp_db, sleep=no_sleep)


@pytest.fixture
def observer() -> RecordingObserver:
    return RecordingObserver()


@pytest.fixture
def notifier(observer: RecordingObserver) -> Notifier:
    return Notifier([observer])


@pytest.fixture
def engine(
    temp_db: Database,
    fake_provider: FakeEmbeddingProvider,
    notifier: Notifier,
    client_factory,
) -> Engine:
    """Fully wired engine over the temp database and fake remotes."""
    return build_engine(
        database=temp_db,
        provider=fake_provider,
        notifier=notifier,
        client_factory=client_factory,
        poll_interval_ms=10,
        sweep_interval_seconds=0,
    )
