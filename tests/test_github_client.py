"""Unit tests for github_client.py - GitHub webhook REST calls."""

from unittest.mock import AsyncMock, MagicMock, patch

import aiohttp
import pytest

from errors import TransportError
from github_client import GitHubRepositoryClient
from webhooks import DesiredWebhook

HOOK = {
    "id": 1,
    "name": "web",
    "active": True,
    "events": ["workflow_job"],
    "config": {"url": "https://hooks.example", "content_type": "json"},
    "url": "https://api.github.com/repos/acme/widgets/hooks/1",
}


def make_response(status=200, json_data=None, text="", links=None):
    mock_resp = AsyncMock()
    mock_resp.status = status
    mock_resp.json = AsyncMock(return_value=json_data)
    mock_resp.text = AsyncMock(return_value=text)
    mock_resp.links = links or {}
    return mock_resp


def make_session(get_responses=None, post_response=None):
    """Build a ClientSession mock whose get/post work as context managers."""
    mock_session = MagicMock()

    get_contexts = []
    for resp in get_responses or []:
        ctx = AsyncMock()
        ctx.__aenter__.return_value = resp
        get_contexts.append(ctx)
    mock_session.get = MagicMock(side_effect=get_contexts)

    if post_response is not None:
        post_ctx = AsyncMock()
        post_ctx.__aenter__.return_value = post_response
        mock_session.post = MagicMock(return_value=post_ctx)

    session_ctx = AsyncMock()
    session_ctx.__aenter__.return_value = mock_session
    return session_ctx, mock_session


class TestGitHubRepositoryClientInit:
    """Tests for client construction."""

    def test_headers_with_token(self):
        client = GitHubRepositoryClient(token="ghp_test")
        headers = client._get_headers()

        assert headers["Authorization"] == "Bearer ghp_test"
        assert headers["Accept"] == "application/vnd.github+json"
        assert headers["X-GitHub-Api-Version"] == "2022-11-28"

    def test_headers_without_token(self):
        client = GitHubRepositoryClient(token=None)
        assert "Authorization" not in client._get_headers()

    def test_base_url_trailing_slash(self):
        client = GitHubRepositoryClient(
            token="t", api_base_url="https://ghe.example/api/v3/"
        )
        assert client._hooks_url("acme", "widgets") == (
            "https://ghe.example/api/v3/repos/acme/widgets/hooks"
        )


@pytest.mark.asyncio
class TestListHooks:
    """Tests for list_hooks."""

    async def test_single_page(self):
        client = GitHubRepositoryClient(token="t")
        session_ctx, session = make_session([make_response(json_data=[HOOK])])

        with patch(
            "github_client.aiohttp.ClientSession", return_value=session_ctx
        ):
            hooks = await client.list_hooks("acme", "widgets")

        assert len(hooks) == 1
        assert hooks[0].url == "https://hooks.example"
        assert hooks[0].events == ["workflow_job"]
        args, kwargs = session.get.call_args
        assert args[0] == "https://api.github.com/repos/acme/widgets/hooks"
        assert kwargs["params"] == {"per_page": 100}

    async def test_follows_next_link(self):
        client = GitHubRepositoryClient(token="t")
        next_url = "https://api.github.com/repositories/9/hooks?per_page=100&page=2"
        second = dict(HOOK, id=2, events=["push"])
        session_ctx, session = make_session(
            [
                make_response(
                    json_data=[HOOK],
                    links={"next": {"url": next_url}},
                ),
                make_response(json_data=[second]),
            ]
        )

        with patch(
            "github_client.aiohttp.ClientSession", return_value=session_ctx
        ):
            hooks = await client.list_hooks("acme", "widgets")

        assert [h.id for h in hooks] == [1, 2]
        assert session.get.call_count == 2
        args, kwargs = session.get.call_args
        assert args[0] == next_url
        assert kwargs["params"] is None

    async def test_empty_repository(self):
        client = GitHubRepositoryClient(token="t")
        session_ctx, _ = make_session([make_response(json_data=[])])

        with patch(
            "github_client.aiohttp.ClientSession", return_value=session_ctx
        ):
            assert await client.list_hooks("acme", "widgets") == []

    async def test_error_status_raises(self):
        client = GitHubRepositoryClient(token="t")
        session_ctx, _ = make_session([make_response(status=404, text="Not Found")])

        with patch(
            "github_client.aiohttp.ClientSession", return_value=session_ctx
        ):
            with pytest.raises(TransportError) as exc_info:
                await client.list_hooks("acme", "widgets")

        assert exc_info.value.status == 404
        assert "Not Found" in str(exc_info.value)

    async def test_connection_error_raises(self):
        client = GitHubRepositoryClient(token="t")
        session_ctx = AsyncMock()
        session_ctx.__aenter__.side_effect = aiohttp.ClientConnectionError("refused")

        with patch(
            "github_client.aiohttp.ClientSession", return_value=session_ctx
        ):
            with pytest.raises(TransportError, match="refused"):
                await client.list_hooks("acme", "widgets")


@pytest.mark.asyncio
class TestCreateHook:
    """Tests for create_hook."""

    async def test_creates_hook(self):
        client = GitHubRepositoryClient(token="t")
        desired = DesiredWebhook.create("https://hooks.example", ["workflow_job"])
        session_ctx, session = make_session(
            post_response=make_response(status=201, json_data=HOOK)
        )

        with patch(
            "github_client.aiohttp.ClientSession", return_value=session_ctx
        ):
            hook = await client.create_hook("acme", "widgets", desired)

        assert hook.id == 1
        assert hook.api_url == "https://api.github.com/repos/acme/widgets/hooks/1"
        args, kwargs = session.post.call_args
        assert args[0] == "https://api.github.com/repos/acme/widgets/hooks"
        assert kwargs["json"] == {
            "active": True,
            "events": ["workflow_job"],
            "config": {"url": "https://hooks.example", "content_type": "json"},
        }

    async def test_error_status_raises(self):
        client = GitHubRepositoryClient(token="t")
        desired = DesiredWebhook.create("https://hooks.example", ["workflow_job"])
        session_ctx, _ = make_session(
            post_response=make_response(status=422, text="Hook already exists")
        )

        with patch(
            "github_client.aiohttp.ClientSession", return_value=session_ctx
        ):
            with pytest.raises(TransportError) as exc_info:
                await client.create_hook("acme", "widgets", desired)

        assert exc_info.value.status == 422
