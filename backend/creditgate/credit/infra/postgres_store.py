"""PostgreSQL ledger store: row locks inside one transaction per mutation."""

from __future__ import annotations

import json
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Sequence

import asyncpg

from creditgate.credit.domain.consistency import Mutation
from creditgate.credit.domain.errors import StoreUnavailable, TransientStoreError
from creditgate.credit.domain.models import (
    Actor,
    ActorKey,
    ActorRole,
    CreditEvent,
    EvaluationPayload,
    OverrideMarker,
)
from creditgate.credit.domain.scoring import EventKind

_TRANSIENT_ERRORS = (
    asyncpg.exceptions.SerializationError,
    asyncpg.exceptions.DeadlockDetectedError,
    asyncpg.exceptions.UniqueViolationError,
    asyncpg.exceptions.LockNotAvailableError,
)
_UNAVAILABLE_ERRORS = (
    OSError,
    asyncpg.exceptions.PostgresConnectionError,
    asyncpg.exceptions.InterfaceError,
)

_ACTOR_COLUMNS = "identity, scope, credit_score, role, is_blacklisted, created_at, updated_at, starting_credit"
_EVENT_COLUMNS = (
    "id, identity, scope, event_kind, delta, credit_before, credit_after, created_at, "
    "evaluation, override, blacklist_triggered, discarded_delta"
)


def _json_value(value: Any) -> Any:
    if isinstance(value, str):
        return json.loads(value)
    return value


def _row_to_actor(row: asyncpg.Record) -> Actor:
    return Actor(
        identity=str(row["identity"]),
        scope=str(row["scope"]),
        credit_score=int(row["credit_score"]),
        role=ActorRole(str(row["role"])),
        is_blacklisted=bool(row["is_blacklisted"]),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
        starting_credit=row["starting_credit"],
    )


def _row_to_event(row: asyncpg.Record) -> CreditEvent:
    evaluation = _json_value(row["evaluation"])
    override = _json_value(row["override"])
    return CreditEvent(
        id=str(row["id"]),
        identity=str(row["identity"]),
        scope=str(row["scope"]),
        event_kind=EventKind(str(row["event_kind"])),
        delta=int(row["delta"]),
        credit_before=int(row["credit_before"]),
        credit_after=int(row["credit_after"]),
        created_at=row["created_at"],
        evaluation=EvaluationPayload.from_dict(evaluation) if evaluation else None,
        override=OverrideMarker.from_dict(override) if override else None,
        blacklist_triggered=bool(row["blacklist_triggered"]),
        discarded_delta=row["discarded_delta"],
    )


@asynccontextmanager
async def _guard() -> AsyncIterator[None]:
    try:
        yield
    except _TRANSIENT_ERRORS as exc:
        raise TransientStoreError(str(exc)) from exc
    except _UNAVAILABLE_ERRORS as exc:
        raise StoreUnavailable(str(exc)) from exc


class _PostgresTransaction:
    def __init__(self, conn: asyncpg.Connection, key: ActorKey) -> None:
        self._conn = conn
        self._key = key
        self._existed = False

    async def read(self) -> Actor | None:
        row = await self._conn.fetchrow(
            f"SELECT {_ACTOR_COLUMNS} FROM credit_actors WHERE scope = $1 AND identity = $2 FOR UPDATE",
            self._key.scope,
            self._key.identity,
        )
        self._existed = row is not None
        return _row_to_actor(row) if row is not None else None

    async def write(self, mutation: Mutation) -> None:
        actor = mutation.actor
        if self._existed:
            await self._conn.execute(
                """
                UPDATE credit_actors
                SET credit_score = $3, role = $4, is_blacklisted = $5, updated_at = $6
                WHERE scope = $1 AND identity = $2
                """,
                actor.scope,
                actor.identity,
                actor.credit_score,
                actor.role.value,
                actor.is_blacklisted,
                actor.updated_at,
            )
        else:
            # A concurrent first insert raises UniqueViolation and is retried.
            await self._conn.execute(
                f"INSERT INTO credit_actors ({_ACTOR_COLUMNS}) VALUES ($1, $2, $3, $4, $5, $6, $7, $8)",
                actor.identity,
                actor.scope,
                actor.credit_score,
                actor.role.value,
                actor.is_blacklisted,
                actor.created_at,
                actor.updated_at,
                actor.starting_credit,
            )
        for event in mutation.events:
            await self._conn.execute(
                f"""
                INSERT INTO credit_events ({_EVENT_COLUMNS})
                VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9::jsonb, $10::jsonb, $11, $12)
                """,
                event.id,
                event.identity,
                event.scope,
                event.event_kind.value,
                event.delta,
                event.credit_before,
                event.credit_after,
                event.created_at,
                json.dumps(event.evaluation.to_dict()) if event.evaluation else None,
                json.dumps(event.override.to_dict()) if event.override else None,
                event.blacklist_triggered,
                event.discarded_delta,
            )


class PostgresTransactionalStore:
    """Transactional ledger store using asyncpg and ``SELECT ... FOR UPDATE``."""

    def __init__(self, pool: asyncpg.Pool) -> None:
        self._pool = pool

    @asynccontextmanager
    async def transaction(self, key: ActorKey) -> AsyncIterator[_PostgresTransaction]:
        async with _guard():
            async with self._pool.acquire() as conn:
                async with conn.transaction():
                    yield _PostgresTransaction(conn, key)

    async def get_actor(self, key: ActorKey) -> Actor | None:
        async with _guard():
            row = await self._pool.fetchrow(
                f"SELECT {_ACTOR_COLUMNS} FROM credit_actors WHERE scope = $1 AND identity = $2",
                key.scope,
                key.identity,
            )
        return _row_to_actor(row) if row is not None else None

    async def list_actors(self, scope: str, *, limit: int = 50, offset: int = 0) -> Sequence[Actor]:
        async with _guard():
            rows = await self._pool.fetch(
                f"""
                SELECT {_ACTOR_COLUMNS}
                FROM credit_actors
                WHERE scope = $1
                ORDER BY identity
                OFFSET $2 LIMIT $3
                """,
                scope,
                offset,
                limit,
            )
        return [_row_to_actor(row) for row in rows]

    async def list_events(self, key: ActorKey, *, limit: int | None = None, offset: int = 0) -> Sequence[CreditEvent]:
        async with _guard():
            rows = await self._pool.fetch(
                f"""
                SELECT {_EVENT_COLUMNS}
                FROM credit_events
                WHERE scope = $1 AND identity = $2
                ORDER BY seq
                OFFSET $3 LIMIT $4
                """,
                key.scope,
                key.identity,
                offset,
                limit,
            )
        return [_row_to_event(row) for row in rows]
