"""Conflict-safe per-actor mutation over transactional or versioned stores.

Every write to actor state goes through :meth:`ConsistencyCoordinator.mutate`.
The mutation function receives the committed actor snapshot (``None`` when the
actor has never been seen) and returns the new actor row plus the credit events
to append with it. Coordinators may call the function more than once (on
conflict or transient failure) but commit its result exactly once.
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Awaitable, Callable, Protocol, Sequence

from creditgate.credit.domain.errors import ConflictExhausted, TransientStoreError
from creditgate.credit.domain.models import Actor, ActorKey, CreditEvent
from creditgate.obs import metrics

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class Mutation:
    actor: Actor
    events: tuple[CreditEvent, ...] = ()


MutationFn = Callable[[Actor | None], Mutation]


class LedgerReader(Protocol):
    """Read-only access to committed ledger state."""

    async def get_actor(self, key: ActorKey) -> Actor | None:
        ...

    async def list_actors(self, scope: str, *, limit: int = 50, offset: int = 0) -> Sequence[Actor]:
        ...

    async def list_events(self, key: ActorKey, *, limit: int | None = None, offset: int = 0) -> Sequence[CreditEvent]:
        """Events for one actor in commit order (oldest first)."""
        ...


class VersionedStateStore(LedgerReader, Protocol):
    """Optimistic backend: snapshot plus version token, conditional write."""

    async def read(self, key: ActorKey) -> tuple[Actor | None, str | None]:
        ...

    async def write_if_version(self, key: ActorKey, mutation: Mutation, version: str | None) -> bool:
        """Commit when the stored version still equals ``version``; False on conflict."""
        ...


class Transaction(Protocol):
    async def read(self) -> Actor | None:
        ...

    async def write(self, mutation: Mutation) -> None:
        ...


class TransactionalStateStore(LedgerReader, Protocol):
    """Backend with native isolation; the context manager commits on clean exit."""

    def transaction(self, key: ActorKey) -> "AsyncContextManagerLike":
        ...


class AsyncContextManagerLike(Protocol):
    async def __aenter__(self) -> Transaction:
        ...

    async def __aexit__(self, exc_type, exc, tb) -> bool | None:
        ...


class ConsistencyCoordinator(Protocol):
    backend: str

    @property
    def reader(self) -> LedgerReader:
        ...

    async def mutate(self, key: ActorKey, fn: MutationFn) -> Mutation:
        ...


Sleeper = Callable[[float], Awaitable[None]]


class OptimisticCoordinator:
    """Read, compute, conditional write; re-read and recompute on conflict."""

    def __init__(
        self,
        store: VersionedStateStore,
        *,
        backend: str = "versioned",
        max_retries: int = 3,
        backoff_seconds: float = 0.05,
        sleep: Sleeper = asyncio.sleep,
    ) -> None:
        self._store = store
        self.backend = backend
        self._max_retries = max_retries
        self._backoff = backoff_seconds
        self._sleep = sleep

    @property
    def reader(self) -> LedgerReader:
        return self._store

    async def mutate(self, key: ActorKey, fn: MutationFn) -> Mutation:
        attempts = self._max_retries + 1
        for attempt in range(attempts):
            current, version = await self._store.read(key)
            mutation = fn(current)
            if await self._store.write_if_version(key, mutation, version):
                return mutation
            metrics.STORE_CONFLICTS_TOTAL.labels(backend=self.backend).inc()
            logger.info(
                "ledger_write_conflict",
                extra={"actor_key": str(key), "attempt": attempt + 1, "backend": self.backend},
            )
            if attempt + 1 < attempts:
                await self._sleep(self._backoff * (2 ** attempt))
        metrics.STORE_CONFLICTS_EXHAUSTED_TOTAL.labels(backend=self.backend).inc()
        raise ConflictExhausted(str(key), attempts)


class TransactionalCoordinator:
    """Read-modify-write inside one backend transaction."""

    def __init__(
        self,
        store: TransactionalStateStore,
        *,
        backend: str = "transactional",
        max_retries: int = 3,
        backoff_seconds: float = 0.05,
        sleep: Sleeper = asyncio.sleep,
    ) -> None:
        self._store = store
        self.backend = backend
        self._max_retries = max_retries
        self._backoff = backoff_seconds
        self._sleep = sleep

    @property
    def reader(self) -> LedgerReader:
        return self._store

    async def mutate(self, key: ActorKey, fn: MutationFn) -> Mutation:
        attempt = 0
        while True:
            try:
                async with self._store.transaction(key) as txn:
                    current = await txn.read()
                    mutation = fn(current)
                    await txn.write(mutation)
                return mutation
            except TransientStoreError:
                attempt += 1
                if attempt > self._max_retries:
                    raise
                logger.info(
                    "ledger_transaction_retry",
                    extra={"actor_key": str(key), "attempt": attempt, "backend": self.backend},
                )
                await self._sleep(self._backoff * (2 ** (attempt - 1)))


class _InMemoryLedger:
    def __init__(self) -> None:
        self.actors: dict[ActorKey, Actor] = {}
        self.events: dict[ActorKey, list[CreditEvent]] = defaultdict(list)

    async def get_actor(self, key: ActorKey) -> Actor | None:
        return self.actors.get(key)

    async def list_actors(self, scope: str, *, limit: int = 50, offset: int = 0) -> Sequence[Actor]:
        matching = sorted(
            (actor for actor in self.actors.values() if actor.scope == scope),
            key=lambda actor: actor.identity,
        )
        return matching[offset : offset + limit]

    async def list_events(self, key: ActorKey, *, limit: int | None = None, offset: int = 0) -> Sequence[CreditEvent]:
        events = self.events.get(key, [])
        end = None if limit is None else offset + limit
        return list(events[offset:end])

    def _commit(self, key: ActorKey, mutation: Mutation) -> None:
        self.actors[key] = mutation.actor
        self.events[key].extend(mutation.events)


class InMemoryTransactionalStore(_InMemoryLedger):
    """Reference transactional store; a per-key lock stands in for row locks."""

    def __init__(self) -> None:
        super().__init__()
        self._locks: dict[ActorKey, asyncio.Lock] = defaultdict(asyncio.Lock)

    @asynccontextmanager
    async def transaction(self, key: ActorKey) -> AsyncIterator["_InMemoryTransaction"]:
        async with self._locks[key]:
            txn = _InMemoryTransaction(self, key)
            yield txn
            if txn.pending is not None:
                self._commit(key, txn.pending)


class _InMemoryTransaction:
    def __init__(self, store: InMemoryTransactionalStore, key: ActorKey) -> None:
        self._store = store
        self._key = key
        self.pending: Mutation | None = None

    async def read(self) -> Actor | None:
        return self._store.actors.get(self._key)

    async def write(self, mutation: Mutation) -> None:
        self.pending = mutation


class InMemoryVersionedStore(_InMemoryLedger):
    """Reference versioned store; each commit bumps a per-key counter."""

    def __init__(self) -> None:
        super().__init__()
        self.versions: dict[ActorKey, int] = {}

    async def read(self, key: ActorKey) -> tuple[Actor | None, str | None]:
        version = self.versions.get(key)
        return self.actors.get(key), (str(version) if version is not None else None)

    async def write_if_version(self, key: ActorKey, mutation: Mutation, version: str | None) -> bool:
        current = self.versions.get(key)
        if (str(current) if current is not None else None) != version:
            return False
        self._commit(key, mutation)
        self.versions[key] = (current or 0) + 1
        return True
