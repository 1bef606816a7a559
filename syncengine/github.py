"""
Async GitHub REST client.

Every request waits on the credential's rate limit before it is sent and
records the quota headers of whatever comes back, errors included.
"""

import logging
from typing import Any, Optional
from urllib.parse import quote

import httpx

from syncengine.config import Config
from syncengine.errors import GitHubError, GitHubNotFoundError
from syncengine.rate_limiter import RateLimiter

logger = logging.getLogger(__name__)


def parse_repo_full_name(full_name: str) -> tuple[str, str]:
    """Split ``owner/name``; raises ValueError on anything else."""
    owner, _, repo = full_name.partition("/")
    if not owner or not repo or "/" in repo:
        raise ValueError(f"Invalid repo full name: {full_name}")
    return owner, repo


class GitHubClient:
    """GitHub API access for one credential."""

    def __init__(
        self,
        credential_id: str,
        rate_limiter: RateLimiter,
        token: Optional[str] = None,
        base_url: Optional[str] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.credential_id = str(credential_id)
        self.rate_limiter = rate_limiter

        headers = {
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
            "User-Agent": "syncengine",
        }
        token = Config.get_github_token(self.credential_id) if token is None else token
        if token:
            headers["Authorization"] = f"Bearer {token}"

        self._owns_client = http_client is None
        self.client = http_client or httpx.AsyncClient(
            base_url=base_url or Config.GITHUB_API_URL,
            headers=headers,
            timeout=Config.HTTP_TIMEOUT_SECONDS,
        )
        if http_client is not None:
            self.client.headers.update(headers)

    async def close(self) -> None:
        if self._owns_client:
            await self.client.aclose()

    async def __aenter__(self) -> "GitHubClient":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.close()

    async def _request(self, method: str, path: str, params: Optional[dict] = None) -> Any:
        await self.rate_limiter.acquire(self.credential_id)

        try:
            response = await self.client.request(method, path, params=params)
        except httpx.HTTPError as e:
            raise GitHubError(None, f"{method} {path} failed: {e}") from e

        self.rate_limiter.record_from_headers(self.credential_id, response.headers)

        if response.status_code == 404:
            raise GitHubNotFoundError(self._error_message(response))
        if response.status_code >= 400:
            raise GitHubError(response.status_code, self._error_message(response))

        return response.json()

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        try:
            body = response.json()
        except ValueError:
            return response.text or response.reason_phrase
        if isinstance(body, dict) and body.get("message"):
            return str(body["message"])
        return response.reason_phrase

    async def get_repo(self, full_name: str) -> dict:
        owner, repo = parse_repo_full_name(full_name)
        return await self._request("GET", f"/repos/{owner}/{repo}")

    async def get_branch(self, full_name: str, branch: str) -> dict:
        owner, repo = parse_repo_full_name(full_name)
        return await self._request("GET", f"/repos/{owner}/{repo}/branches/{quote(branch, safe='')}")

    async def get_tree(self, full_name: str, tree_sha: str, recursive: bool = True) -> dict:
        owner, repo = parse_repo_full_name(full_name)
        params = {"recursive": "1"} if recursive else None
        return await self._request("GET", f"/repos/{owner}/{repo}/git/trees/{tree_sha}", params=params)

    async def compare(self, full_name: str, base: str, head: str) -> dict:
        owner, repo = parse_repo_full_name(full_name)
        basehead = f"{quote(base, safe='')}...{quote(head, safe='')}"
        return await self._request("GET", f"/repos/{owner}/{repo}/compare/{basehead}")

    async def get_contents(self, full_name: str, path: str) -> dict:
        owner, repo = parse_repo_full_name(full_name)
        return await self._request("GET", f"/repos/{owner}/{repo}/contents/{quote(path, safe='/')}")


def make_github_client(credential_id: str, rate_limiter: RateLimiter) -> GitHubClient:
    """Build a client for a repo's credential with the configured token."""
    return GitHubClient(credential_id, rate_limiter)
