"""``/credit`` maintainer commands posted as pull request comments."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from enum import Enum

from creditgate.credit.domain.actions import RepositoryActions
from creditgate.credit.domain.engine import CreditEngine
from creditgate.credit.domain.models import ActorKey, ActorRole

logger = logging.getLogger(__name__)

_CHECK_RE = re.compile(r"^/credit\s+check\s+@([\w-]+)\s*$")
_OVERRIDE_RE = re.compile(r'^/credit\s+override\s+@([\w-]+)\s+([+-]\d+)\s+"([^"]+)"\s*$')
_BLACKLIST_RE = re.compile(r"^/credit\s+(blacklist|unblacklist)\s+@([\w-]+)\s*$")


class CommandKind(str, Enum):
    CHECK = "check"
    OVERRIDE = "override"
    BLACKLIST = "blacklist"
    UNBLACKLIST = "unblacklist"


@dataclass(frozen=True, slots=True)
class CreditCommand:
    kind: CommandKind
    target: str
    delta: int | None = None
    reason: str | None = None


def parse_command(body: str) -> CreditCommand | None:
    """Return the first ``/credit`` command line in a comment body, if any."""

    for raw_line in body.splitlines():
        line = raw_line.strip()
        if not line.startswith("/credit"):
            continue
        match = _CHECK_RE.match(line)
        if match:
            return CreditCommand(CommandKind.CHECK, match.group(1))
        match = _OVERRIDE_RE.match(line)
        if match:
            return CreditCommand(CommandKind.OVERRIDE, match.group(1), int(match.group(2)), match.group(3))
        match = _BLACKLIST_RE.match(line)
        if match:
            return CreditCommand(CommandKind(match.group(1)), match.group(2))
    return None


class CommandHandler:
    def __init__(self, engine: CreditEngine, actions: RepositoryActions) -> None:
        self._engine = engine
        self._actions = actions

    async def handle(
        self,
        command: CreditCommand,
        *,
        scope: str,
        author: str,
        author_role: ActorRole,
        action_ref: str,
    ) -> str | None:
        """Run a command and post the reply; commands from non-maintainers are ignored."""

        if not author_role.is_privileged:
            logger.info("credit_command_ignored", extra={"author": author, "command": command.kind.value})
            return None
        key = ActorKey(identity=command.target, scope=scope)
        reply = await self._run(command, key, author)
        await self._actions.post_comment(action_ref, reply)
        logger.info("credit_command", extra={"author": author, "command": command.kind.value, "target": command.target})
        return reply

    async def _run(self, command: CreditCommand, key: ActorKey, author: str) -> str:
        engine = self._engine
        if command.kind is CommandKind.CHECK:
            actor = await engine.ledger.get(key)
            if actor is None:
                return f"@{command.target} has no credit history in this repository yet."
            return f"@{command.target} has {actor.credit_score} credit."
        if command.kind is CommandKind.OVERRIDE:
            event = await engine.manual_adjust(key, command.delta or 0, command.reason or "", by=author)
            return f"Adjusted @{command.target} by {event.delta:+d}: {event.credit_before} -> {event.credit_after}."
        blacklisted = command.kind is CommandKind.BLACKLIST
        await engine.manual_blacklist(key, blacklisted, by=author, reason=f"/credit {command.kind.value}")
        if blacklisted:
            return f"@{command.target} has been blacklisted."
        return f"@{command.target} has been removed from the blacklist."
