"""Repository-side effects the engine asks the hosting platform to perform."""

from __future__ import annotations

import logging
from typing import Protocol

from creditgate.credit.domain.models import ActorRole

logger = logging.getLogger(__name__)


class RepositoryActions(Protocol):
    """All three calls are expected to be safe to retry."""

    async def deny_action(self, action_ref: str, message: str) -> None:
        ...

    async def post_comment(self, action_ref: str, message: str) -> None:
        ...

    async def get_role(self, identity: str, scope: str) -> ActorRole:
        ...


class LoggingRepositoryActions:
    """Used when no platform credentials are configured; only logs."""

    def __init__(self, privileged: tuple[str, ...] = ()) -> None:
        self._privileged = frozenset(login.lower() for login in privileged)

    async def deny_action(self, action_ref: str, message: str) -> None:
        logger.info("deny_action_skipped", extra={"action_ref": action_ref})

    async def post_comment(self, action_ref: str, message: str) -> None:
        logger.info("post_comment_skipped", extra={"action_ref": action_ref})

    async def get_role(self, identity: str, scope: str) -> ActorRole:
        if identity.lower() in self._privileged:
            return ActorRole.MAINTAINER
        return ActorRole.CONTRIBUTOR
