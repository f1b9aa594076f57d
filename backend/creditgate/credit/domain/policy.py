"""Synchronous admission decision."""

from __future__ import annotations

import logging
from enum import Enum

from creditgate.credit.domain.errors import StoreUnavailable, TransientStoreError
from creditgate.credit.domain.ledger import CreditLedger
from creditgate.credit.domain.models import Actor, ActorKey, ActorRole
from creditgate.credit.domain.scope_config import ScopeConfig
from creditgate.obs import metrics

logger = logging.getLogger(__name__)

# Shown for every denial regardless of the internal reason.
DENIAL_MESSAGE = (
    "Thanks for your interest in contributing. This pull request can't be accepted "
    "at the moment, so it has been closed. Please take a look at the contributing "
    "guidelines and keep participating in issues and discussions."
)


class PolicyDecision(str, Enum):
    ALLOW = "allow"
    DENY_INSUFFICIENT_CREDIT = "deny_insufficient_credit"
    DENY_BLACKLISTED = "deny_blacklisted"

    @property
    def allowed(self) -> bool:
        return self is PolicyDecision.ALLOW


def decide(actor: Actor, config: ScopeConfig) -> PolicyDecision:
    """Pure decision from an actor snapshot and a resolved scope config."""

    if actor.role.is_privileged:
        return PolicyDecision.ALLOW
    if actor.is_blacklisted:
        return PolicyDecision.DENY_BLACKLISTED
    if actor.credit_score < config.pr_threshold:
        return PolicyDecision.DENY_INSUFFICIENT_CREDIT
    return PolicyDecision.ALLOW


class PolicyGate:
    """Reads committed state and applies :func:`decide`; fails closed."""

    def __init__(self, ledger: CreditLedger) -> None:
        self._ledger = ledger

    async def check(self, key: ActorKey, config: ScopeConfig, role: ActorRole = ActorRole.CONTRIBUTOR) -> PolicyDecision:
        try:
            actor = await self._ledger.observe(key, config, role)
        except (StoreUnavailable, TransientStoreError):
            if role.is_privileged:
                return self._record(PolicyDecision.ALLOW)
            metrics.GATE_FAIL_CLOSED_TOTAL.inc()
            logger.error("gate_store_unavailable", extra={"actor_key": str(key)})
            return self._record(PolicyDecision.DENY_INSUFFICIENT_CREDIT)
        return self._record(decide(actor, config))

    @staticmethod
    def _record(decision: PolicyDecision) -> PolicyDecision:
        metrics.GATE_DECISIONS_TOTAL.labels(decision=decision.value).inc()
        return decision
