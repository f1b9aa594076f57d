import asyncio
from contextlib import asynccontextmanager

import pytest

from creditgate.credit.domain.consistency import (
    InMemoryTransactionalStore,
    InMemoryVersionedStore,
    Mutation,
    OptimisticCoordinator,
    TransactionalCoordinator,
)
from creditgate.credit.domain.errors import ConflictExhausted, TransientStoreError
from creditgate.credit.domain.ledger import CreditLedger
from creditgate.credit.domain.models import ActorKey
from creditgate.credit.domain.scope_config import ScopeConfig
from creditgate.credit.domain.scoring import EventKind

KEY = ActorKey(identity="octocat", scope="octo/widgets")


class YieldingVersionedStore(InMemoryVersionedStore):
    """Yields between read and write so concurrent writers race on the version."""

    def __init__(self) -> None:
        super().__init__()
        self.conflicts = 0

    async def read(self, key):
        snapshot = await super().read(key)
        await asyncio.sleep(0)
        return snapshot

    async def write_if_version(self, key, mutation, version):
        ok = await super().write_if_version(key, mutation, version)
        if not ok:
            self.conflicts += 1
        return ok


class AlwaysConflictingStore(InMemoryVersionedStore):
    async def write_if_version(self, key, mutation, version):
        return False


class FlakyTransactionalStore(InMemoryTransactionalStore):
    def __init__(self, failures: int) -> None:
        super().__init__()
        self.failures = failures

    @asynccontextmanager
    async def transaction(self, key):
        if self.failures > 0:
            self.failures -= 1
            raise TransientStoreError("serialization failure")
        async with super().transaction(key) as txn:
            yield txn


async def no_sleep(_: float) -> None:
    await asyncio.sleep(0)


@pytest.mark.asyncio
async def test_concurrent_optimistic_writers_converge() -> None:
    store = YieldingVersionedStore()
    ledger = CreditLedger(OptimisticCoordinator(store, backend="memory", max_retries=20, sleep=no_sleep))
    config = ScopeConfig()
    deltas = [15, -25, 5, 20, -2, 3, 1, -10, 7, 4]

    await asyncio.gather(*(ledger.apply_delta(KEY, config, EventKind.COMMENT, value) for value in deltas))

    actor = await ledger.require(KEY)
    assert actor.credit_score == config.starting_credit + sum(deltas)
    assert sorted(event.delta for event in await ledger.history(KEY)) == sorted(deltas)
    assert (await ledger.audit(KEY)).consistent
    assert store.conflicts > 0


@pytest.mark.asyncio
async def test_threshold_checked_against_fresh_state_after_conflict() -> None:
    store = YieldingVersionedStore()
    ledger = CreditLedger(OptimisticCoordinator(store, backend="memory", max_retries=10, sleep=no_sleep))
    config = ScopeConfig(starting_credit=15)

    commits = await asyncio.gather(*(ledger.apply_delta(KEY, config, EventKind.COMMENT, -10) for _ in range(3)))

    assert sum(commit.newly_blacklisted for commit in commits) == 1
    actor = await ledger.require(KEY)
    assert actor.credit_score == -15
    assert actor.is_blacklisted


@pytest.mark.asyncio
async def test_optimistic_retries_exhaust_with_backoff() -> None:
    waits: list[float] = []

    async def record(seconds: float) -> None:
        waits.append(seconds)

    coordinator = OptimisticCoordinator(
        AlwaysConflictingStore(), backend="memory", max_retries=3, backoff_seconds=0.05, sleep=record
    )
    ledger = CreditLedger(coordinator)

    with pytest.raises(ConflictExhausted) as exc:
        await ledger.apply_delta(KEY, ScopeConfig(), EventKind.COMMENT, 1)

    assert exc.value.attempts == 4
    assert exc.value.actor_key == str(KEY)
    assert waits == pytest.approx([0.05, 0.1, 0.2])
    assert await ledger.get(KEY) is None


@pytest.mark.asyncio
async def test_mutation_function_reruns_on_conflict() -> None:
    store = InMemoryVersionedStore()
    coordinator = OptimisticCoordinator(store, sleep=no_sleep)
    seen: list[int | None] = []
    config = ScopeConfig()
    ledger = CreditLedger(coordinator)
    await ledger.observe(KEY, config)

    original = store.write_if_version
    raced = False

    async def racing_write(key, mutation, version):
        nonlocal raced
        if not raced:
            raced = True
            await ledger.apply_delta(KEY, config, EventKind.COMMENT, 5)
        return await original(key, mutation, version)

    store.write_if_version = racing_write

    def bump(current):
        seen.append(current.credit_score if current else None)
        return Mutation(actor=current)

    await coordinator.mutate(KEY, bump)
    assert seen == [100, 105]


@pytest.mark.asyncio
async def test_transactional_coordinator_retries_transient_errors() -> None:
    store = FlakyTransactionalStore(failures=2)
    ledger = CreditLedger(TransactionalCoordinator(store, backend="memory", max_retries=3, sleep=no_sleep))

    commit = await ledger.apply_delta(KEY, ScopeConfig(), EventKind.COMMENT, 3)

    assert commit.actor.credit_score == 103
    assert store.failures == 0


@pytest.mark.asyncio
async def test_transactional_coordinator_gives_up() -> None:
    store = FlakyTransactionalStore(failures=5)
    ledger = CreditLedger(TransactionalCoordinator(store, backend="memory", max_retries=2, sleep=no_sleep))

    with pytest.raises(TransientStoreError):
        await ledger.apply_delta(KEY, ScopeConfig(), EventKind.COMMENT, 3)
    assert await ledger.get(KEY) is None


@pytest.mark.asyncio
async def test_concurrent_transactional_writers_serialize() -> None:
    ledger = CreditLedger(TransactionalCoordinator(InMemoryTransactionalStore(), backend="memory"))
    config = ScopeConfig()

    await asyncio.gather(*(ledger.apply_delta(KEY, config, EventKind.COMMENT, 1) for _ in range(25)))

    assert (await ledger.require(KEY)).credit_score == 125
    assert (await ledger.audit(KEY)).consistent
