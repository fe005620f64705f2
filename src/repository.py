"""
Repository Client - Abstract interface to the repository host.

The reconciler only needs to list and create hooks. Any host adapter that
implements these two calls can be plugged in.
"""

from abc import ABC, abstractmethod
from typing import List

from webhooks import DesiredWebhook, ExistingWebhook


class RepositoryClient(ABC):
    """Abstract base class for repository host adapters."""

    @abstractmethod
    async def list_hooks(self, owner: str, repo: str) -> List[ExistingWebhook]:
        """
        List all webhooks configured on a repository.

        Args:
            owner: Repository owner (user or organization)
            repo: Repository name

        Returns:
            Every hook on the repository

        Raises:
            TransportError: If the host cannot be reached or rejects the call
        """
        pass

    @abstractmethod
    async def create_hook(
        self, owner: str, repo: str, hook: DesiredWebhook
    ) -> ExistingWebhook:
        """
        Create a webhook on a repository.

        Args:
            owner: Repository owner (user or organization)
            repo: Repository name
            hook: The webhook to create

        Returns:
            The hook as created by the host

        Raises:
            TransportError: If the host cannot be reached or rejects the call
        """
        pass
