"""GitHub REST API client.

Read-only access used by the pipelines:
- repository metadata, languages, topics
- commits (time window), pull requests, issues (most recently updated first)
- directory listings and file contents
- workflows and workflow runs

Errors are raised, never swallowed: ``NotFoundError`` for 404,
``RateLimitError`` for exhausted quotas, ``GitHubError`` for anything else
the API rejects. Transport failures propagate as ``httpx`` exceptions.
"""

from __future__ import annotations

import base64
import logging
import re
from datetime import datetime, timezone
from typing import Any

import httpx

from repoagent.config import Settings, get_settings


logger = logging.getLogger(__name__)

GITHUB_URL_PATTERN = re.compile(r"github\.com/([^/]+)/([^/]+)")


# =============================================================================
# Errors
# =============================================================================

class GitHubError(Exception):
    """GitHub API rejected a request."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class NotFoundError(GitHubError):
    """Repository or path does not exist or is not accessible."""


class RateLimitError(GitHubError):
    """API rate limit exhausted."""


# =============================================================================
# Helpers
# =============================================================================

def split_full_name(full_name: str) -> tuple[str, str]:
    """Split ``owner/repo`` into its parts."""
    owner, _, repo = full_name.partition("/")
    if not owner or not repo:
        raise ValueError(f"Invalid repository name: {full_name!r}")
    return owner, repo


def parse_github_url(url: str) -> tuple[str, str] | None:
    """Extract ``(owner, repo)`` from a github.com URL."""
    match = GITHUB_URL_PATTERN.search(url)
    if not match:
        return None
    repo = match.group(2)
    if repo.endswith(".git"):
        repo = repo[: -len(".git")]
    return match.group(1), repo


# =============================================================================
# Client
# =============================================================================

class GitHubClient:
    """Async GitHub REST client authenticated with a bearer token."""

    def __init__(
        self,
        token: str | None = None,
        base_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        settings: Settings | None = None,
    ):
        settings = settings or get_settings()
        self.token = token if token is not None else settings.github_token

        headers = {
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
        }
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"

        self._client = httpx.AsyncClient(
            base_url=base_url or settings.github_api_url,
            headers=headers,
            timeout=timeout or settings.github_timeout_seconds,
            transport=transport,
        )

    async def _get(self, path: str, params: dict[str, Any] | None = None) -> Any:
        response = await self._client.get(path, params=params)

        if response.status_code == 404:
            raise NotFoundError(f"GitHub resource not found: {path}", status_code=404)

        if response.status_code == 429 or (
            response.status_code == 403
            and response.headers.get("x-ratelimit-remaining") == "0"
        ):
            reset = response.headers.get("x-ratelimit-reset")
            message = "GitHub API rate limit exceeded"
            if reset and reset.isdigit():
                reset_at = datetime.fromtimestamp(int(reset), tz=timezone.utc)
                message += f" (resets at {reset_at.isoformat()})"
            raise RateLimitError(message, status_code=response.status_code)

        if response.is_error:
            try:
                detail = response.json().get("message", response.text)
            except ValueError:
                detail = response.text
            raise GitHubError(
                f"GitHub API error {response.status_code} for {path}: {detail}",
                status_code=response.status_code,
            )

        return response.json()

    # -------------------------------------------------------------------------
    # Repository
    # -------------------------------------------------------------------------

    async def get_repository(self, owner: str, repo: str) -> dict[str, Any]:
        return await self._get(f"/repos/{owner}/{repo}")

    async def list_languages(self, owner: str, repo: str) -> dict[str, int]:
        return await self._get(f"/repos/{owner}/{repo}/languages")

    async def list_topics(self, owner: str, repo: str) -> list[str]:
        data = await self._get(f"/repos/{owner}/{repo}/topics")
        return data.get("names", [])

    # -------------------------------------------------------------------------
    # Activity
    # -------------------------------------------------------------------------

    async def list_commits(
        self,
        owner: str,
        repo: str,
        since: datetime | None = None,
        until: datetime | None = None,
        per_page: int = 100,
    ) -> list[dict[str, Any]]:
        params: dict[str, Any] = {"per_page": per_page}
        if since:
            params["since"] = since.isoformat()
        if until:
            params["until"] = until.isoformat()
        return await self._get(f"/repos/{owner}/{repo}/commits", params)

    async def list_pull_requests(
        self,
        owner: str,
        repo: str,
        per_page: int = 50,
    ) -> list[dict[str, Any]]:
        return await self._get(
            f"/repos/{owner}/{repo}/pulls",
            {"state": "all", "sort": "updated", "direction": "desc", "per_page": per_page},
        )

    async def list_issues(
        self,
        owner: str,
        repo: str,
        per_page: int = 50,
    ) -> list[dict[str, Any]]:
        return await self._get(
            f"/repos/{owner}/{repo}/issues",
            {"state": "all", "sort": "updated", "direction": "desc", "per_page": per_page},
        )

    # -------------------------------------------------------------------------
    # Contents
    # -------------------------------------------------------------------------

    async def get_content(self, owner: str, repo: str, path: str = "") -> Any:
        """Directory listing (list) or file object (dict) for ``path``."""
        return await self._get(f"/repos/{owner}/{repo}/contents/{path}")

    async def get_file_text(self, owner: str, repo: str, path: str) -> str | None:
        """Decoded text of a file, or None when the path does not exist."""
        try:
            data = await self.get_content(owner, repo, path)
        except NotFoundError:
            return None
        if not isinstance(data, dict) or not data.get("content"):
            return None
        return base64.b64decode(data["content"]).decode("utf-8", errors="replace")

    async def path_exists(self, owner: str, repo: str, path: str) -> bool:
        try:
            await self.get_content(owner, repo, path)
        except NotFoundError:
            return False
        return True

    async def has_readme(self, owner: str, repo: str) -> bool:
        try:
            await self._get(f"/repos/{owner}/{repo}/readme")
        except NotFoundError:
            return False
        return True

    # -------------------------------------------------------------------------
    # Actions
    # -------------------------------------------------------------------------

    async def list_workflows(self, owner: str, repo: str) -> dict[str, Any]:
        return await self._get(f"/repos/{owner}/{repo}/actions/workflows")

    async def list_workflow_runs(
        self,
        owner: str,
        repo: str,
        per_page: int = 10,
    ) -> list[dict[str, Any]]:
        data = await self._get(f"/repos/{owner}/{repo}/actions/runs", {"per_page": per_page})
        return data.get("workflow_runs", [])

    async def close(self) -> None:
        """Close the HTTP client."""
        await self._client.aclose()
