import json

import httpx
import pytest

from creditgate.credit.domain.models import ActorRole
from creditgate.credit.domain.scope_config import ScopeConfigProvider
from creditgate.credit.infra.github import GitHubRepositoryActions, GitHubScopeConfigSource, split_action_ref


def client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(base_url="https://api.github.test", transport=httpx.MockTransport(handler))


def test_split_action_ref() -> None:
    assert split_action_ref("octo/widgets#12") == ("octo/widgets", 12)
    with pytest.raises(ValueError):
        split_action_ref("octo/widgets")


@pytest.mark.asyncio
async def test_deny_action_comments_then_closes() -> None:
    calls: list[tuple[str, str, dict]] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append((request.method, request.url.path, json.loads(request.content)))
        return httpx.Response(200, json={})

    async with client(handler) as http:
        await GitHubRepositoryActions(http).deny_action("octo/widgets#12", "closed")

    assert calls == [
        ("POST", "/repos/octo/widgets/issues/12/comments", {"body": "closed"}),
        ("PATCH", "/repos/octo/widgets/pulls/12", {"state": "closed"}),
    ]


@pytest.mark.asyncio
async def test_role_resolution() -> None:
    permissions = {"lead": "admin", "helper": "write", "reader": "read"}

    def handler(request: httpx.Request) -> httpx.Response:
        login = request.url.path.split("/")[-2]
        if login not in permissions:
            return httpx.Response(404, json={"message": "Not Found"})
        return httpx.Response(200, json={"permission": permissions[login]})

    async with client(handler) as http:
        actions = GitHubRepositoryActions(http, privileged_logins=frozenset({"release-bot"}))
        assert await actions.get_role("octo", "octo/widgets") is ActorRole.OWNER
        assert await actions.get_role("lead", "octo/widgets") is ActorRole.MAINTAINER
        assert await actions.get_role("helper", "octo/widgets") is ActorRole.COLLABORATOR
        assert await actions.get_role("reader", "octo/widgets") is ActorRole.CONTRIBUTOR
        assert await actions.get_role("stranger", "octo/widgets") is ActorRole.CONTRIBUTOR
        assert await actions.get_role("Release-Bot", "octo/widgets") is ActorRole.MAINTAINER


@pytest.mark.asyncio
async def test_scope_config_read_from_repository() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/repos/octo/widgets/contents/.creditgate.yml":
            return httpx.Response(200, text="pr_threshold: 30\n")
        return httpx.Response(404)

    async with client(handler) as http:
        provider = ScopeConfigProvider(GitHubScopeConfigSource(http))
        assert (await provider.resolve("octo/widgets")).pr_threshold == 30
        assert (await provider.resolve("octo/gadgets")).pr_threshold == 50
