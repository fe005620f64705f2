"""
Webhooks - Desired and existing repository webhook values and their comparison.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

CONTENT_TYPE_JSON = "json"


@dataclass(frozen=True)
class DesiredWebhook:
    """The webhook every autoscaled repository should have."""

    url: str
    events: Tuple[str, ...]
    active: bool = True
    content_type: str = CONTENT_TYPE_JSON

    @classmethod
    def create(cls, url: str, events: Sequence[str]) -> "DesiredWebhook":
        return cls(url=url, events=tuple(events))

    def to_payload(self) -> Dict[str, Any]:
        """Request body for the repository host's create-hook call."""
        return {
            "active": self.active,
            "events": list(self.events),
            "config": {
                "url": self.url,
                "content_type": self.content_type,
            },
        }


@dataclass
class ExistingWebhook:
    """A webhook as reported by the repository host."""

    url: str
    events: List[str] = field(default_factory=list)
    id: Optional[int] = None
    active: bool = True
    name: str = ""
    api_url: str = ""

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "ExistingWebhook":
        """
        Build from a GitHub hook object.

        The target URL lives in ``config.url``; the top-level ``url`` is the
        hook's own API address.
        """
        config = data.get("config") or {}
        return cls(
            url=config.get("url", ""),
            events=list(data.get("events") or []),
            id=data.get("id"),
            active=data.get("active", True),
            name=data.get("name", ""),
            api_url=data.get("url", ""),
        )


def webhook_matches(hook: ExistingWebhook, desired: DesiredWebhook) -> bool:
    """
    True if the hook targets the desired URL with the same events.

    Events are compared as ordered sequences: ``["push", "pull_request"]``
    does not match ``["pull_request", "push"]``.
    """
    if hook.url != desired.url:
        return False
    return tuple(hook.events) == desired.events


def find_matching_webhook(
    hooks: Iterable[ExistingWebhook], desired: DesiredWebhook
) -> Optional[ExistingWebhook]:
    for hook in hooks:
        if webhook_matches(hook, desired):
            return hook
    return None


def has_matching_webhook(
    hooks: Iterable[ExistingWebhook], desired: DesiredWebhook
) -> bool:
    return find_matching_webhook(hooks, desired) is not None
