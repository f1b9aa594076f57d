"""Durable review queue repositories (PostgreSQL and Redis)."""

from __future__ import annotations

import json
from typing import Sequence

import asyncpg
from redis.asyncio import Redis
from redis.exceptions import WatchError

from creditgate.credit.domain.models import EvaluationStatus, PendingEvaluation
from creditgate.credit.domain.review_queue import ReviewRepository
from creditgate.credit.domain.scoring import EventKind, QualityLevel
from creditgate.infra.redis import RedisProxy

_COLUMNS = (
    "id, identity, scope, event_kind, classification, confidence, proposed_delta, status, "
    "rationale, maintainer_note, final_delta, decided_by, created_at, updated_at"
)


def _row_to_entry(row: asyncpg.Record) -> PendingEvaluation:
    return PendingEvaluation(
        id=str(row["id"]),
        identity=str(row["identity"]),
        scope=str(row["scope"]),
        event_kind=EventKind(str(row["event_kind"])),
        classification=QualityLevel(str(row["classification"])),
        confidence=float(row["confidence"]),
        proposed_delta=int(row["proposed_delta"]),
        status=EvaluationStatus(str(row["status"])),
        rationale=str(row["rationale"] or ""),
        maintainer_note=row["maintainer_note"],
        final_delta=row["final_delta"],
        decided_by=row["decided_by"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


class PostgresReviewRepository(ReviewRepository):
    def __init__(self, pool: asyncpg.Pool) -> None:
        self._pool = pool

    async def insert(self, entry: PendingEvaluation) -> PendingEvaluation:
        row = await self._pool.fetchrow(
            f"""
            INSERT INTO credit_pending_evaluations ({_COLUMNS})
            VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13, $14)
            RETURNING {_COLUMNS}
            """,
            entry.id,
            entry.identity,
            entry.scope,
            entry.event_kind.value,
            entry.classification.value,
            entry.confidence,
            entry.proposed_delta,
            entry.status.value,
            entry.rationale,
            entry.maintainer_note,
            entry.final_delta,
            entry.decided_by,
            entry.created_at,
            entry.updated_at,
        )
        if row is None:  # pragma: no cover - asyncpg always returns a row for RETURNING
            raise RuntimeError("Failed to insert credit_pending_evaluations")
        return _row_to_entry(row)

    async def get(self, evaluation_id: str) -> PendingEvaluation | None:
        row = await self._pool.fetchrow(
            f"SELECT {_COLUMNS} FROM credit_pending_evaluations WHERE id = $1",
            evaluation_id,
        )
        return _row_to_entry(row) if row is not None else None

    async def list(
        self,
        scope: str,
        *,
        status: EvaluationStatus | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> Sequence[PendingEvaluation]:
        rows = await self._pool.fetch(
            f"""
            SELECT {_COLUMNS}
            FROM credit_pending_evaluations
            WHERE scope = $1 AND ($2::text IS NULL OR status = $2)
            ORDER BY created_at, id
            OFFSET $3 LIMIT $4
            """,
            scope,
            status.value if status else None,
            offset,
            limit,
        )
        return [_row_to_entry(row) for row in rows]

    async def transition(self, entry: PendingEvaluation, expected: EvaluationStatus) -> bool:
        result = await self._pool.execute(
            """
            UPDATE credit_pending_evaluations
            SET status = $3, maintainer_note = $4, final_delta = $5, decided_by = $6, updated_at = $7
            WHERE id = $1 AND status = $2
            """,
            entry.id,
            expected.value,
            entry.status.value,
            entry.maintainer_note,
            entry.final_delta,
            entry.decided_by,
            entry.updated_at,
        )
        return result.endswith(" 1")


class RedisReviewRepository(ReviewRepository):
    """Entries as hashes plus a per-scope sorted index and pending set."""

    def __init__(self, redis: Redis | RedisProxy, *, prefix: str = "credit:review") -> None:
        self._redis = redis
        self._prefix = prefix

    def _entry_key(self, evaluation_id: str) -> str:
        return f"{self._prefix}:entry:{evaluation_id}"

    def _scope_key(self, scope: str) -> str:
        return f"{self._prefix}:scope:{scope}"

    def _pending_key(self, scope: str) -> str:
        return f"{self._prefix}:pending:{scope}"

    async def insert(self, entry: PendingEvaluation) -> PendingEvaluation:
        async with self._redis.pipeline(transaction=True) as pipe:
            pipe.hset(
                self._entry_key(entry.id),
                mapping={"payload": json.dumps(entry.to_dict()), "status": entry.status.value},
            )
            pipe.zadd(self._scope_key(entry.scope), {entry.id: entry.created_at.timestamp()})
            if entry.status is EvaluationStatus.PENDING:
                pipe.sadd(self._pending_key(entry.scope), entry.id)
            await pipe.execute()
        return entry

    async def get(self, evaluation_id: str) -> PendingEvaluation | None:
        payload = await self._redis.hget(self._entry_key(evaluation_id), "payload")
        if payload is None:
            return None
        return PendingEvaluation.from_dict(json.loads(payload))

    async def list(
        self,
        scope: str,
        *,
        status: EvaluationStatus | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> Sequence[PendingEvaluation]:
        ids = await self._redis.zrange(self._scope_key(scope), 0, -1)
        if status is EvaluationStatus.PENDING:
            pending = set(await self._redis.smembers(self._pending_key(scope)))
            ids = [entry_id for entry_id in ids if entry_id in pending]
        entries: list[PendingEvaluation] = []
        for entry_id in ids:
            entry = await self.get(entry_id)
            if entry is None:
                continue
            if status is not None and entry.status != status:
                continue
            entries.append(entry)
        return entries[offset : offset + limit]

    async def transition(self, entry: PendingEvaluation, expected: EvaluationStatus) -> bool:
        key = self._entry_key(entry.id)
        async with self._redis.pipeline(transaction=True) as pipe:
            while True:
                try:
                    await pipe.watch(key)
                    current = await pipe.hget(key, "status")
                    if current != expected.value:
                        await pipe.unwatch()
                        return False
                    pipe.multi()
                    pipe.hset(key, mapping={"payload": json.dumps(entry.to_dict()), "status": entry.status.value})
                    if entry.status is EvaluationStatus.PENDING:
                        pipe.sadd(self._pending_key(entry.scope), entry.id)
                    else:
                        pipe.srem(self._pending_key(entry.scope), entry.id)
                    await pipe.execute()
                    return True
                except WatchError:
                    # Someone else touched the entry; re-read its status.
                    continue
