"""GitHub REST client for repository actions and in-repo scope config."""

from __future__ import annotations

import logging
from dataclasses import dataclass

import httpx

from creditgate.credit.domain.models import ActorRole

logger = logging.getLogger(__name__)

_ROLE_BY_PERMISSION = {
    "admin": ActorRole.MAINTAINER,
    "maintain": ActorRole.MAINTAINER,
    "write": ActorRole.COLLABORATOR,
}


def action_ref(scope: str, number: int) -> str:
    return f"{scope}#{number}"


def split_action_ref(ref: str) -> tuple[str, int]:
    scope, _, number = ref.rpartition("#")
    if not scope or not number.isdigit():
        raise ValueError(f"invalid action ref: {ref}")
    return scope, int(number)


def github_client(token: str | None, *, base_url: str = "https://api.github.com", timeout: float = 10.0) -> httpx.AsyncClient:
    headers = {
        "Accept": "application/vnd.github+json",
        "X-GitHub-Api-Version": "2022-11-28",
        "User-Agent": "creditgate",
    }
    if token:
        headers["Authorization"] = f"Bearer {token}"
    return httpx.AsyncClient(base_url=base_url, headers=headers, timeout=timeout)


@dataclass
class GitHubRepositoryActions:
    """Closes pull requests, posts comments and resolves collaborator roles.

    Action refs look like ``owner/repo#123``. Closing an already closed pull
    request is a no-op on GitHub's side, so ``deny_action`` is safe to repeat.
    """

    http: httpx.AsyncClient
    privileged_logins: frozenset[str] = frozenset()

    async def deny_action(self, action_ref: str, message: str) -> None:
        scope, number = split_action_ref(action_ref)
        await self.post_comment(action_ref, message)
        response = await self.http.patch(f"/repos/{scope}/pulls/{number}", json={"state": "closed"})
        response.raise_for_status()

    async def post_comment(self, action_ref: str, message: str) -> None:
        scope, number = split_action_ref(action_ref)
        response = await self.http.post(f"/repos/{scope}/issues/{number}/comments", json={"body": message})
        response.raise_for_status()

    async def get_role(self, identity: str, scope: str) -> ActorRole:
        if identity.lower() in self.privileged_logins:
            return ActorRole.MAINTAINER
        owner = scope.split("/", 1)[0]
        if identity.lower() == owner.lower():
            return ActorRole.OWNER
        try:
            response = await self.http.get(f"/repos/{scope}/collaborators/{identity}/permission")
        except httpx.HTTPError as exc:
            logger.warning("github_role_lookup_failed", extra={"scope_name": scope, "error": str(exc)})
            return ActorRole.CONTRIBUTOR
        if response.status_code == 404:
            return ActorRole.CONTRIBUTOR
        response.raise_for_status()
        permission = str(response.json().get("permission", "")).lower()
        return _ROLE_BY_PERMISSION.get(permission, ActorRole.CONTRIBUTOR)


@dataclass
class GitHubScopeConfigSource:
    """Reads the scope config file from the repository's default branch."""

    http: httpx.AsyncClient
    path: str = ".creditgate.yml"

    async def fetch(self, scope: str) -> str | None:
        response = await self.http.get(
            f"/repos/{scope}/contents/{self.path}",
            headers={"Accept": "application/vnd.github.raw+json"},
        )
        if response.status_code == 404:
            return None
        response.raise_for_status()
        return response.text
