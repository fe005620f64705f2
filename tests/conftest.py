"""Pytest configuration and fixtures."""

import json
from typing import Any, Dict, List, Optional, Tuple

import pytest

from errors import NotFoundError
from repository import RepositoryClient
from resources import HORIZONTAL_RUNNER_AUTOSCALER, RUNNER_DEPLOYMENT, ResourceKind
from webhooks import DesiredWebhook, ExistingWebhook


class FakeClusterStore:
    """In-memory cluster store keyed by (kind, namespace, name)."""

    def __init__(self):
        self.objects: Dict[Tuple[str, str, str], bytes] = {}
        self.calls: List[Tuple[str, str, str]] = []

    def put(self, kind: ResourceKind, obj: Dict[str, Any]) -> None:
        metadata = obj["metadata"]
        key = (kind.kind, metadata["namespace"], metadata["name"])
        self.objects[key] = json.dumps(obj).encode()

    async def get(self, kind: ResourceKind, namespace: str, name: str) -> bytes:
        key = (kind.kind, namespace, name)
        self.calls.append(key)
        if key not in self.objects:
            raise NotFoundError(f"{kind.kind} {namespace}/{name} not found")
        return self.objects[key]


class FakeRepositoryClient(RepositoryClient):
    """Repository host that keeps hooks in memory and records calls."""

    def __init__(self, hooks: Optional[List[ExistingWebhook]] = None):
        self.hooks: List[ExistingWebhook] = list(hooks or [])
        self.list_calls: List[Tuple[str, str]] = []
        self.created: List[Tuple[str, str, DesiredWebhook]] = []

    async def list_hooks(self, owner: str, repo: str) -> List[ExistingWebhook]:
        self.list_calls.append((owner, repo))
        return list(self.hooks)

    async def create_hook(
        self, owner: str, repo: str, hook: DesiredWebhook
    ) -> ExistingWebhook:
        self.created.append((owner, repo, hook))
        existing = ExistingWebhook(
            url=hook.url,
            events=list(hook.events),
            id=len(self.hooks) + 1,
            active=hook.active,
            name="web",
            api_url=f"https://api.github.com/repos/{owner}/{repo}/hooks/"
            f"{len(self.hooks) + 1}",
        )
        self.hooks.append(existing)
        return existing


@pytest.fixture
def sample_autoscaler():
    """Sample HorizontalRunnerAutoscaler with one scale-up trigger."""
    return {
        "apiVersion": "actions.summerwind.dev/v1alpha1",
        "kind": "HorizontalRunnerAutoscaler",
        "metadata": {
            "name": "widgets-autoscaler",
            "namespace": "runners",
            "uid": "5f1c2b9e-1111-4c1d-9a55-0123456789ab",
            "generation": 3,
            "resourceVersion": "1001",
        },
        "spec": {
            "scaleTargetRef": {"kind": "RunnerDeployment", "name": "widgets"},
            "minReplicas": 0,
            "maxReplicas": 5,
            "scaleUpTriggers": [
                {"githubEvent": {"workflowJob": {}}, "amount": 1, "duration": "30m"}
            ],
        },
    }


@pytest.fixture
def sample_runner_deployment():
    """Sample RunnerDeployment for the acme/widgets repository."""
    return {
        "apiVersion": "actions.summerwind.dev/v1alpha1",
        "kind": "RunnerDeployment",
        "metadata": {"name": "widgets", "namespace": "runners", "generation": 1},
        "spec": {
            "template": {
                "spec": {"repository": "acme/widgets", "labels": ["self-hosted"]}
            }
        },
    }


@pytest.fixture
def fake_store(sample_autoscaler, sample_runner_deployment):
    """Cluster store holding the sample autoscaler and its deployment."""
    store = FakeClusterStore()
    store.put(HORIZONTAL_RUNNER_AUTOSCALER, sample_autoscaler)
    store.put(RUNNER_DEPLOYMENT, sample_runner_deployment)
    return store


@pytest.fixture
def fake_repository():
    """Repository host with no hooks."""
    return FakeRepositoryClient()


@pytest.fixture
def desired_webhook():
    return DesiredWebhook.create("https://hooks.example", ["workflow_job"])
