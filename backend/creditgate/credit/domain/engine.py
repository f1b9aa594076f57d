"""Entry points the transport and admin layers call."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from creditgate.credit.domain.errors import StoreUnavailable, TransientStoreError
from creditgate.credit.domain.evaluator import EvalContext
from creditgate.credit.domain.ledger import CreditLedger
from creditgate.credit.domain.models import Actor, ActorKey, ActorRole, CreditEvent, OverrideMarker
from creditgate.credit.domain.pipeline import EvaluationPipeline
from creditgate.credit.domain.policy import PolicyDecision, PolicyGate
from creditgate.credit.domain.review_queue import ReviewQueue
from creditgate.credit.domain.scope_config import ScopeConfig, ScopeConfigProvider
from creditgate.credit.domain.scoring import EventKind
from creditgate.credit.domain.shadow import ShadowEnforcer

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ActionEvent:
    """An authenticated inbound action by an actor."""

    identity: str
    scope: str
    event_kind: EventKind
    content: str
    context: EvalContext
    action_ref: str | None = None
    role: ActorRole = ActorRole.CONTRIBUTOR

    @property
    def key(self) -> ActorKey:
        return ActorKey(identity=self.identity, scope=self.scope)


class CreditEngine:
    def __init__(
        self,
        *,
        ledger: CreditLedger,
        gate: PolicyGate,
        pipeline: EvaluationPipeline,
        shadow: ShadowEnforcer,
        review_queue: ReviewQueue,
        configs: ScopeConfigProvider,
    ) -> None:
        self.ledger = ledger
        self.gate = gate
        self.pipeline = pipeline
        self.shadow = shadow
        self.review_queue = review_queue
        self.configs = configs

    async def handle_action(self, event: ActionEvent, config: ScopeConfig | None = None) -> PolicyDecision:
        """Decide now from committed state; evaluate in the background.

        Gated actions that are denied are handed to the shadow enforcer and
        not evaluated. Everything else is evaluated, including low-stakes
        actions by blacklisted actors, whose deltas the pipeline discards.
        """

        config = config or await self.configs.resolve(event.scope)
        key = event.key
        if config.is_gated(event.event_kind):
            decision = await self.gate.check(key, config, event.role)
        else:
            decision = PolicyDecision.ALLOW
            try:
                await self.ledger.observe(key, config, event.role)
            except (StoreUnavailable, TransientStoreError):
                logger.warning("actor_observe_failed", extra={"actor_key": str(key), "event_kind": event.event_kind.value})

        logger.info(
            "action_decided",
            extra={"actor_key": str(key), "event_kind": event.event_kind.value, "decision": decision.value},
        )
        if decision is PolicyDecision.ALLOW:
            self.pipeline.submit(key, config, event.event_kind, event.content, event.context, action_ref=event.action_ref)
        elif event.action_ref is not None:
            if decision is PolicyDecision.DENY_BLACKLISTED:
                await self.shadow.enforce_if_blacklisted(key, event.action_ref)
            else:
                await self.shadow.schedule_denial(key, event.action_ref, decision)
        return decision

    async def manual_adjust(self, key: ActorKey, delta: int, reason: str, *, by: str) -> CreditEvent:
        config = await self.configs.resolve(key.scope)
        commit = await self.ledger.apply_delta(
            key,
            config,
            EventKind.MANUAL_ADJUSTMENT,
            delta,
            override=OverrideMarker(by=by, reason=reason),
        )
        logger.info("manual_adjust", extra={"actor_key": str(key), "delta": delta, "by": by})
        return commit.event

    async def manual_blacklist(self, key: ActorKey, blacklisted: bool, *, by: str, reason: str = "") -> Actor:
        config = await self.configs.resolve(key.scope)
        commit = await self.ledger.set_blacklisted(key, config, blacklisted, by=by, reason=reason)
        if commit is None:
            return await self.ledger.require(key)
        return commit.actor
