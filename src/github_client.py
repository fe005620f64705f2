"""
GitHub Repository Client - RepositoryClient backed by the GitHub REST API.
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional

import aiohttp

from errors import TransportError
from repository import RepositoryClient
from webhooks import DesiredWebhook, ExistingWebhook

logger = logging.getLogger(__name__)

DEFAULT_API_BASE_URL = "https://api.github.com"
HOOKS_PER_PAGE = 100


class GitHubRepositoryClient(RepositoryClient):
    """
    Lists and creates repository webhooks through the GitHub REST API.

    A token with ``admin:repo_hook`` scope is required for both calls.
    """

    def __init__(
        self,
        token: Optional[str],
        api_base_url: str = DEFAULT_API_BASE_URL,
        timeout: float = 30,
    ):
        self.token = token
        self.api_base_url = api_base_url.rstrip("/")
        self.timeout = timeout

        if not self.token:
            logger.warning(
                "GitHub token not configured. Set GITHUB_TOKEN environment variable."
            )

    def _get_headers(self) -> Dict[str, str]:
        """Get HTTP headers for GitHub API requests."""
        headers = {
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
        }
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    def _hooks_url(self, owner: str, repo: str) -> str:
        return f"{self.api_base_url}/repos/{owner}/{repo}/hooks"

    async def list_hooks(self, owner: str, repo: str) -> List[ExistingWebhook]:
        """List every webhook on a repository, following pagination."""
        hooks: List[ExistingWebhook] = []
        url: Optional[str] = self._hooks_url(owner, repo)
        params: Optional[Dict[str, Any]] = {"per_page": HOOKS_PER_PAGE}
        timeout = aiohttp.ClientTimeout(total=self.timeout)

        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                while url:
                    async with session.get(
                        url, headers=self._get_headers(), params=params
                    ) as response:
                        if response.status != 200:
                            raise TransportError(
                                f"Failed to list hooks for {owner}/{repo}: "
                                f"{response.status} - {await response.text()}",
                                status=response.status,
                            )
                        data = await response.json()
                        hooks.extend(ExistingWebhook.from_api(item) for item in data)
                        url = self._next_page(response)
                    # The next link already carries the query string
                    params = None
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise TransportError(
                f"Failed to list hooks for {owner}/{repo}: {e}"
            ) from e

        logger.debug(f"Found {len(hooks)} hooks on {owner}/{repo}")
        return hooks

    async def create_hook(
        self, owner: str, repo: str, hook: DesiredWebhook
    ) -> ExistingWebhook:
        """Create a webhook on a repository."""
        timeout = aiohttp.ClientTimeout(total=self.timeout)

        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.post(
                    self._hooks_url(owner, repo),
                    headers=self._get_headers(),
                    json=hook.to_payload(),
                ) as response:
                    if response.status not in (200, 201):
                        raise TransportError(
                            f"Failed to create hook on {owner}/{repo}: "
                            f"{response.status} - {await response.text()}",
                            status=response.status,
                        )
                    data = await response.json()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise TransportError(
                f"Failed to create hook on {owner}/{repo}: {e}"
            ) from e

        return ExistingWebhook.from_api(data)

    @staticmethod
    def _next_page(response: Any) -> Optional[str]:
        """Return the ``rel="next"`` link of a paginated response, if any."""
        link = response.links.get("next")
        if not link:
            return None
        return str(link.get("url")) if link.get("url") else None
