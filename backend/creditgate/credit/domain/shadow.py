"""Delayed, disguised denial of actions.

Every denial goes out after a delay drawn from the same window and carries
the same message, whatever the internal reason. Scheduled denials are
persisted, so a restart delays enforcement but never loses it.
"""

from __future__ import annotations

import logging
import random
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from typing import Callable, Protocol, Sequence

from creditgate.credit.domain.actions import RepositoryActions
from creditgate.credit.domain.ledger import CreditLedger
from creditgate.credit.domain.models import ActorKey, utcnow
from creditgate.credit.domain.policy import DENIAL_MESSAGE, PolicyDecision, decide
from creditgate.credit.domain.scope_config import ScopeConfigProvider
from creditgate.obs import metrics

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ScheduledDenial:
    identity: str
    scope: str
    action_ref: str
    reason: PolicyDecision
    due_at: datetime
    created_at: datetime
    attempts: int = 0

    @property
    def id(self) -> str:
        return f"{self.scope}#{self.identity}#{self.action_ref}"

    @property
    def key(self) -> ActorKey:
        return ActorKey(identity=self.identity, scope=self.scope)

    def to_dict(self) -> dict:
        return {
            "identity": self.identity,
            "scope": self.scope,
            "action_ref": self.action_ref,
            "reason": self.reason.value,
            "due_at": self.due_at.isoformat(),
            "created_at": self.created_at.isoformat(),
            "attempts": self.attempts,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ScheduledDenial":
        return cls(
            identity=str(data["identity"]),
            scope=str(data["scope"]),
            action_ref=str(data["action_ref"]),
            reason=PolicyDecision(str(data["reason"])),
            due_at=datetime.fromisoformat(str(data["due_at"])),
            created_at=datetime.fromisoformat(str(data["created_at"])),
            attempts=int(data.get("attempts", 0)),
        )


class EnforcementRepository(Protocol):
    async def schedule(self, denial: ScheduledDenial) -> ScheduledDenial:
        """Insert unless a denial with the same id exists; return the stored one."""
        ...

    async def reschedule(self, denial: ScheduledDenial) -> None:
        ...

    async def due(self, now: datetime, *, limit: int = 100) -> Sequence[ScheduledDenial]:
        ...

    async def complete(self, denial_id: str) -> None:
        ...

    async def list_pending(self) -> Sequence[ScheduledDenial]:
        ...


class InMemoryEnforcementRepository(EnforcementRepository):
    def __init__(self) -> None:
        self._items: dict[str, ScheduledDenial] = {}

    async def schedule(self, denial: ScheduledDenial) -> ScheduledDenial:
        return self._items.setdefault(denial.id, denial)

    async def reschedule(self, denial: ScheduledDenial) -> None:
        self._items[denial.id] = denial

    async def due(self, now: datetime, *, limit: int = 100) -> Sequence[ScheduledDenial]:
        ready = sorted((item for item in self._items.values() if item.due_at <= now), key=lambda item: item.due_at)
        return ready[:limit]

    async def complete(self, denial_id: str) -> None:
        self._items.pop(denial_id, None)

    async def list_pending(self) -> Sequence[ScheduledDenial]:
        return sorted(self._items.values(), key=lambda item: item.due_at)


class ShadowEnforcer:
    def __init__(
        self,
        repository: EnforcementRepository,
        actions: RepositoryActions,
        ledger: CreditLedger,
        configs: ScopeConfigProvider,
        *,
        delay_window: tuple[float, float] = (30.0, 120.0),
        retry_seconds: float = 60.0,
        rng: random.Random | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        low, high = delay_window
        if low < 0 or high < low:
            raise ValueError("invalid delay window")
        self._repo = repository
        self._actions = actions
        self._ledger = ledger
        self._configs = configs
        self._window = (low, high)
        self._retry = retry_seconds
        self._rng = rng or random.Random()
        self._clock = clock

    async def enforce_if_blacklisted(self, key: ActorKey, action_ref: str) -> ScheduledDenial | None:
        actor = await self._ledger.get(key)
        if actor is None or not actor.is_blacklisted:
            return None
        return await self.schedule_denial(key, action_ref, PolicyDecision.DENY_BLACKLISTED)

    async def schedule_denial(self, key: ActorKey, action_ref: str, reason: PolicyDecision) -> ScheduledDenial:
        if reason.allowed:
            raise ValueError("cannot schedule a denial for an allowed action")
        now = self._clock()
        delay = self._rng.uniform(*self._window)
        denial = ScheduledDenial(
            identity=key.identity,
            scope=key.scope,
            action_ref=action_ref,
            reason=reason,
            due_at=now + timedelta(seconds=delay),
            created_at=now,
        )
        stored = await self._repo.schedule(denial)
        if stored == denial:
            metrics.SHADOW_DENIALS_SCHEDULED_TOTAL.inc()
            logger.info(
                "denial_scheduled",
                extra={"actor_key": str(key), "action_ref": action_ref, "reason": reason.value, "due_at": stored.due_at.isoformat()},
            )
        return stored

    async def run_due(self, *, limit: int = 100) -> int:
        """Execute every denial whose deadline passed; return how many went out."""

        now = self._clock()
        executed = 0
        for denial in await self._repo.due(now, limit=limit):
            if not await self._still_denied(denial):
                await self._repo.complete(denial.id)
                metrics.SHADOW_DENIALS_EXECUTED_TOTAL.labels(outcome="lifted").inc()
                logger.info("denial_lifted", extra={"actor_key": str(denial.key), "action_ref": denial.action_ref})
                continue
            try:
                await self._actions.deny_action(denial.action_ref, DENIAL_MESSAGE)
            except Exception as exc:  # noqa: BLE001 - kept for the next sweep
                await self._repo.reschedule(
                    replace(denial, attempts=denial.attempts + 1, due_at=now + timedelta(seconds=self._retry))
                )
                metrics.SHADOW_DENIALS_EXECUTED_TOTAL.labels(outcome="failed").inc()
                logger.warning(
                    "denial_failed",
                    extra={"action_ref": denial.action_ref, "attempts": denial.attempts + 1, "error": str(exc)},
                )
                continue
            await self._repo.complete(denial.id)
            executed += 1
            metrics.SHADOW_DENIALS_EXECUTED_TOTAL.labels(outcome="executed").inc()
            logger.info("denial_executed", extra={"actor_key": str(denial.key), "action_ref": denial.action_ref})
        return executed

    async def _still_denied(self, denial: ScheduledDenial) -> bool:
        actor = await self._ledger.get(denial.key)
        if actor is None:
            return denial.reason is PolicyDecision.DENY_INSUFFICIENT_CREDIT
        if denial.reason is PolicyDecision.DENY_BLACKLISTED:
            return actor.is_blacklisted
        config = await self._configs.resolve(denial.scope)
        return not decide(actor, config).allowed

    async def pending(self) -> Sequence[ScheduledDenial]:
        return await self._repo.list_pending()
