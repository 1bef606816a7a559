"""
Exception types raised by the sync engine.
"""

from typing import Optional


class EngineError(Exception):
    """Base class for engine errors."""


class GitHubError(EngineError):
    """A request to the GitHub API failed."""

    def __init__(self, status: Optional[int], message: str):
        super().__init__(f"GitHub API error ({status}): {message}" if status else message)
        self.status = status
        self.message = message

    @property
    def is_too_large(self) -> bool:
        """GitHub answers 403 with a 'too large' message for oversized blobs."""
        return self.status == 403 and "too large" in self.message.lower()


class GitHubNotFoundError(GitHubError):
    """The requested GitHub resource does not exist (404)."""

    def __init__(self, message: str = "Not Found"):
        super().__init__(404, message)


class RepoNotFoundError(EngineError):
    """No repository with the given id is registered."""


class JobStateError(EngineError):
    """An illegal job state transition was attempted."""


class EmbeddingError(EngineError):
    """The embedding provider returned an unusable response."""
