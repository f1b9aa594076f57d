import pytest

from creditgate.credit.domain.consistency import InMemoryTransactionalStore, TransactionalCoordinator
from creditgate.credit.domain.errors import StoreUnavailable
from creditgate.credit.domain.ledger import CreditLedger
from creditgate.credit.domain.models import Actor, ActorKey, ActorRole
from creditgate.credit.domain.policy import PolicyDecision, PolicyGate, decide
from creditgate.credit.domain.scope_config import ScopeConfig

KEY = ActorKey(identity="octocat", scope="octo/widgets")


class UnreachableReader:
    async def get_actor(self, key):
        raise StoreUnavailable("connection refused")


class UnreachableCoordinator:
    backend = "broken"

    @property
    def reader(self):
        return UnreachableReader()

    async def mutate(self, key, fn):
        raise StoreUnavailable("connection refused")


def actor(score: int, *, blacklisted: bool = False, role: ActorRole = ActorRole.CONTRIBUTOR) -> Actor:
    return Actor(identity=KEY.identity, scope=KEY.scope, credit_score=score, role=role, is_blacklisted=blacklisted)


def test_decide_matrix() -> None:
    config = ScopeConfig(pr_threshold=50)
    assert decide(actor(50), config) is PolicyDecision.ALLOW
    assert decide(actor(49), config) is PolicyDecision.DENY_INSUFFICIENT_CREDIT
    assert decide(actor(500, blacklisted=True), config) is PolicyDecision.DENY_BLACKLISTED
    assert decide(actor(-20, blacklisted=True, role=ActorRole.MAINTAINER), config) is PolicyDecision.ALLOW
    assert decide(actor(0, role=ActorRole.COLLABORATOR), config) is PolicyDecision.ALLOW
    assert decide(actor(0, role=ActorRole.OWNER), config) is PolicyDecision.ALLOW


def test_decide_is_deterministic() -> None:
    config = ScopeConfig(pr_threshold=50)
    snapshot = actor(42)
    assert {decide(snapshot, config) for _ in range(20)} == {PolicyDecision.DENY_INSUFFICIENT_CREDIT}


@pytest.mark.asyncio
async def test_gate_admits_new_actor_at_starting_credit() -> None:
    ledger = CreditLedger(TransactionalCoordinator(InMemoryTransactionalStore(), backend="memory"))
    gate = PolicyGate(ledger)

    assert await gate.check(KEY, ScopeConfig(starting_credit=100, pr_threshold=50)) is PolicyDecision.ALLOW
    assert (await ledger.require(KEY)).credit_score == 100


@pytest.mark.asyncio
async def test_gate_denies_new_actor_below_threshold() -> None:
    ledger = CreditLedger(TransactionalCoordinator(InMemoryTransactionalStore(), backend="memory"))
    gate = PolicyGate(ledger)
    decision = await gate.check(KEY, ScopeConfig(starting_credit=20, pr_threshold=50))
    assert decision is PolicyDecision.DENY_INSUFFICIENT_CREDIT


@pytest.mark.asyncio
async def test_gate_fails_closed_when_store_unreachable() -> None:
    gate = PolicyGate(CreditLedger(UnreachableCoordinator()))

    assert await gate.check(KEY, ScopeConfig()) is PolicyDecision.DENY_INSUFFICIENT_CREDIT
    assert await gate.check(KEY, ScopeConfig(), ActorRole.MAINTAINER) is PolicyDecision.ALLOW


def test_denial_reasons_are_not_allowed() -> None:
    assert PolicyDecision.ALLOW.allowed
    assert not PolicyDecision.DENY_BLACKLISTED.allowed
    assert not PolicyDecision.DENY_INSUFFICIENT_CREDIT.allowed
