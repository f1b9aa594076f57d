"""Append-only credit ledger on top of the consistency coordinator."""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Sequence

from creditgate.credit.domain.consistency import ConsistencyCoordinator, Mutation
from creditgate.credit.domain.errors import ActorNotFound
from creditgate.credit.domain.models import (
    Actor,
    ActorKey,
    ActorRole,
    CreditEvent,
    EvaluationPayload,
    OverrideMarker,
    new_id,
    utcnow,
)
from creditgate.credit.domain.scope_config import ScopeConfig
from creditgate.credit.domain.scoring import EventKind
from creditgate.obs import metrics

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class LedgerCommit:
    """Result of one committed ledger mutation."""

    event: CreditEvent
    actor: Actor
    newly_blacklisted: bool = False


@dataclass(frozen=True, slots=True)
class AuditReport:
    key: ActorKey
    credit_score: int
    replayed_score: int | None
    event_count: int
    consistent: bool
    problems: tuple[str, ...] = ()


def _seed(key: ActorKey, config: ScopeConfig, role: ActorRole = ActorRole.CONTRIBUTOR) -> Actor:
    now = utcnow()
    return Actor(
        identity=key.identity,
        scope=key.scope,
        credit_score=config.starting_credit,
        role=role,
        created_at=now,
        updated_at=now,
        starting_credit=config.starting_credit,
    )


class CreditLedger:
    """The only writer of actor credit state.

    Deltas have no floor. The blacklist flag is decided from the snapshot the
    coordinator hands to the mutation function, so the threshold is checked
    against the freshly committed score on every individual commit.
    """

    def __init__(self, coordinator: ConsistencyCoordinator) -> None:
        self._coordinator = coordinator

    async def get(self, key: ActorKey) -> Actor | None:
        return await self._coordinator.reader.get_actor(key)

    async def require(self, key: ActorKey) -> Actor:
        actor = await self.get(key)
        if actor is None:
            raise ActorNotFound(str(key))
        return actor

    async def observe(self, key: ActorKey, config: ScopeConfig, role: ActorRole = ActorRole.CONTRIBUTOR) -> Actor:
        """Return the actor, creating it at ``starting_credit`` on first sight."""

        existing = await self.get(key)
        if existing is not None and existing.role == role:
            return existing

        def _fn(current: Actor | None) -> Mutation:
            if current is None:
                return Mutation(actor=_seed(key, config, role))
            if current.role == role:
                return Mutation(actor=current)
            return Mutation(actor=replace(current, role=role, updated_at=utcnow()))

        mutation = await self._coordinator.mutate(key, _fn)
        return mutation.actor

    async def apply_delta(
        self,
        key: ActorKey,
        config: ScopeConfig,
        event_kind: EventKind,
        delta: int,
        *,
        evaluation: EvaluationPayload | None = None,
        override: OverrideMarker | None = None,
        earn_if_blacklisted: bool = True,
    ) -> LedgerCommit:
        """Commit ``delta`` for the actor together with its CreditEvent.

        With ``earn_if_blacklisted`` false, a blacklisted actor's delta is
        recorded as discarded and the committed delta is 0.
        """

        def _fn(current: Actor | None) -> Mutation:
            actor = current or _seed(key, config)
            applied = delta
            discarded: int | None = None
            if actor.is_blacklisted and not earn_if_blacklisted:
                applied, discarded = 0, delta
            after = actor.credit_score + applied
            trigger = not actor.is_blacklisted and after <= config.blacklist_threshold
            now = utcnow()
            event = CreditEvent(
                id=new_id("cev"),
                identity=key.identity,
                scope=key.scope,
                event_kind=event_kind,
                delta=applied,
                credit_before=actor.credit_score,
                credit_after=after,
                created_at=now,
                evaluation=evaluation,
                override=override,
                blacklist_triggered=trigger,
                discarded_delta=discarded,
            )
            updated = replace(
                actor,
                credit_score=after,
                is_blacklisted=actor.is_blacklisted or trigger,
                updated_at=now,
            )
            return Mutation(actor=updated, events=(event,))

        mutation = await self._coordinator.mutate(key, _fn)
        event = mutation.events[0]
        metrics.LEDGER_COMMITS_TOTAL.labels(event_kind=event_kind.value).inc()
        if event.blacklist_triggered:
            metrics.BLACKLIST_TRANSITIONS_TOTAL.labels(source="threshold").inc()
            logger.info(
                "actor_blacklisted",
                extra={"actor_key": str(key), "credit_after": event.credit_after, "event_id": event.id},
            )
        return LedgerCommit(event=event, actor=mutation.actor, newly_blacklisted=event.blacklist_triggered)

    async def record_discarded(
        self,
        key: ActorKey,
        config: ScopeConfig,
        event_kind: EventKind,
        delta: int,
        *,
        evaluation: EvaluationPayload,
    ) -> LedgerCommit:
        """Commit a zero-delta event that keeps ``delta`` as ``discarded_delta``.

        Used for evaluations of blacklisted actors that are not eligible for
        review, so the evaluation still leaves an audit record.
        """

        def _fn(current: Actor | None) -> Mutation:
            actor = current or _seed(key, config)
            event = CreditEvent(
                id=new_id("cev"),
                identity=key.identity,
                scope=key.scope,
                event_kind=event_kind,
                delta=0,
                credit_before=actor.credit_score,
                credit_after=actor.credit_score,
                created_at=utcnow(),
                evaluation=evaluation,
                discarded_delta=delta,
            )
            return Mutation(actor=actor, events=(event,))

        mutation = await self._coordinator.mutate(key, _fn)
        metrics.LEDGER_COMMITS_TOTAL.labels(event_kind=event_kind.value).inc()
        return LedgerCommit(event=mutation.events[0], actor=mutation.actor)

    async def set_blacklisted(
        self,
        key: ActorKey,
        config: ScopeConfig,
        blacklisted: bool,
        *,
        by: str,
        reason: str = "",
    ) -> LedgerCommit | None:
        """Set or clear the flag with a zero-delta audit event; None when unchanged."""

        def _fn(current: Actor | None) -> Mutation:
            actor = current or _seed(key, config)
            if actor.is_blacklisted == blacklisted:
                return Mutation(actor=actor)
            now = utcnow()
            event = CreditEvent(
                id=new_id("cev"),
                identity=key.identity,
                scope=key.scope,
                event_kind=EventKind.BLACKLIST_SET if blacklisted else EventKind.BLACKLIST_CLEARED,
                delta=0,
                credit_before=actor.credit_score,
                credit_after=actor.credit_score,
                created_at=now,
                override=OverrideMarker(by=by, reason=reason),
                blacklist_triggered=blacklisted,
            )
            return Mutation(actor=replace(actor, is_blacklisted=blacklisted, updated_at=now), events=(event,))

        mutation = await self._coordinator.mutate(key, _fn)
        if not mutation.events:
            return None
        event = mutation.events[0]
        metrics.LEDGER_COMMITS_TOTAL.labels(event_kind=event.event_kind.value).inc()
        metrics.BLACKLIST_TRANSITIONS_TOTAL.labels(source="manual_set" if blacklisted else "manual_clear").inc()
        logger.info(
            "actor_blacklist_manual",
            extra={"actor_key": str(key), "blacklisted": blacklisted, "by": by},
        )
        return LedgerCommit(event=event, actor=mutation.actor, newly_blacklisted=blacklisted)

    async def history(self, key: ActorKey, *, limit: int | None = None, offset: int = 0) -> Sequence[CreditEvent]:
        return await self._coordinator.reader.list_events(key, limit=limit, offset=offset)

    async def list_actors(self, scope: str, *, limit: int = 50, offset: int = 0) -> Sequence[Actor]:
        return await self._coordinator.reader.list_actors(scope, limit=limit, offset=offset)

    async def audit(self, key: ActorKey) -> AuditReport:
        """Replay the event chain from the seed and compare it with the stored score.

        The replay starts at the actor's recorded ``starting_credit``, so
        ``starting_credit + sum(deltas) == credit_score`` is checked end to end.
        """

        actor = await self.require(key)
        events = await self.history(key)
        problems: list[str] = []
        running: int | None = actor.starting_credit
        if running is None and events:
            running = events[0].credit_before
        for index, event in enumerate(events):
            if running is not None and event.credit_before != running:
                source = "starting_credit" if index == 0 else "previous credit_after"
                problems.append(f"{event.id}: credit_before {event.credit_before} != {source} {running}")
            if event.credit_after != event.credit_before + event.delta:
                problems.append(f"{event.id}: credit_after {event.credit_after} != credit_before + delta")
            running = event.credit_after
        if running is not None and running != actor.credit_score:
            problems.append(f"replayed score {running} != credit_score {actor.credit_score}")
        return AuditReport(
            key=key,
            credit_score=actor.credit_score,
            replayed_score=running,
            event_count=len(events),
            consistent=not problems,
            problems=tuple(problems),
        )
