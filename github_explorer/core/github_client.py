"""Async GitHub REST API client with bounded retry for transient failures."""

import logging
from typing import Any, Callable, Dict, List, Optional

import httpx

from github_explorer.core.config import Settings, settings
from github_explorer.core.retry import TransientError, create_retrying

logger = logging.getLogger(__name__)


class GitHubAPIError(Exception):
    """Non-retryable error response from the GitHub API."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class GitHubRateLimitError(TransientError, GitHubAPIError):
    """Rate limit exhausted (429, or 403 with no remaining quota)."""


class GitHubServerError(TransientError, GitHubAPIError):
    """5xx response from GitHub."""


class GitHubClient:
    """Thin wrapper over the endpoints the pipelines need.

    ``404`` responses are returned as ``None`` so callers can decide how to
    treat entities that no longer exist. Every request goes through
    the tenacity policy from ``create_retrying`` and increments ``requests_made``.
    """

    def __init__(
        self,
        config: Optional[Settings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Optional[Callable[[float], Any]] = None,
    ):
        self.config = config or settings
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None
        self.requests_made = 0
        self._sleep = sleep

    def get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client (lazy initialization)."""
        if self._client is None:
            headers = {
                "Accept": "application/vnd.github+json",
                "X-GitHub-Api-Version": "2022-11-28",
                "User-Agent": self.config.app_name.replace(" ", "-"),
            }
            if self.config.github_token:
                headers["Authorization"] = f"Bearer {self.config.github_token.get_secret_value()}"
            self._client = httpx.AsyncClient(
                base_url=self.config.github_api_url,
                timeout=self.config.github_timeout,
                headers=headers,
                transport=self._transport,
            )
        return self._client

    async def __aenter__(self):
        return self

    async def __aexit__(self, _exc_type, _exc_val, _exc_tb):
        await self.aclose()

    async def aclose(self) -> None:
        if self._client:
            await self._client.aclose()
        self._client = None

    @staticmethod
    def _raise_for_status(response: httpx.Response) -> None:
        status = response.status_code
        if status < 400 or status == 404:
            return
        if status == 429 or (
            status == 403 and response.headers.get("x-ratelimit-remaining") == "0"
        ):
            raise GitHubRateLimitError(f"GitHub rate limit hit ({status})", status_code=status)
        if status >= 500:
            raise GitHubServerError(f"GitHub server error ({status})", status_code=status)
        raise GitHubAPIError(
            f"GitHub request failed ({status}): {response.text[:200]}", status_code=status
        )

    async def request_json(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        """GET ``path`` and return the decoded JSON body, or ``None`` on 404."""
        client = self.get_client()

        async def _do_request():
            self.requests_made += 1
            response = await client.get(path, params=params)
            self._raise_for_status(response)
            if response.status_code == 404:
                return None
            return response.json()

        retrying = create_retrying(self.config, description=f"GET {path}", sleep=self._sleep)
        return await retrying(_do_request)

    async def get_repository(self, full_name: str) -> Optional[Dict[str, Any]]:
        return await self.request_json(f"/repos/{full_name}")

    async def get_user(self, login: str) -> Optional[Dict[str, Any]]:
        return await self.request_json(f"/users/{login}")

    async def get_pull_request(self, full_name: str, number: int) -> Optional[Dict[str, Any]]:
        return await self.request_json(f"/repos/{full_name}/pulls/{number}")

    async def list_pull_request_commits(
        self, full_name: str, number: int, per_page: int = 100
    ) -> List[Dict[str, Any]]:
        commits = await self.request_json(
            f"/repos/{full_name}/pulls/{number}/commits", params={"per_page": per_page}
        )
        return commits or []

    async def get_commit(self, full_name: str, sha: str) -> Optional[Dict[str, Any]]:
        return await self.request_json(f"/repos/{full_name}/commits/{sha}")

    async def list_public_events(self, page: int = 1, per_page: int = 100) -> List[Dict[str, Any]]:
        events = await self.request_json("/events", params={"page": page, "per_page": per_page})
        return events or []
