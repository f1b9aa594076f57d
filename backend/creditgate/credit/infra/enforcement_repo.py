"""Redis-backed schedule of delayed denials."""

from __future__ import annotations

import json
from datetime import datetime
from typing import Sequence

from redis.asyncio import Redis

from creditgate.credit.domain.shadow import EnforcementRepository, ScheduledDenial
from creditgate.infra.redis import RedisProxy


class RedisEnforcementRepository(EnforcementRepository):
    """Sorted set scored by due time plus a hash of payloads, keyed by denial id."""

    def __init__(self, redis: Redis | RedisProxy, *, prefix: str = "credit:denials") -> None:
        self._redis = redis
        self._schedule_key = f"{prefix}:due"
        self._payload_key = f"{prefix}:payload"

    async def schedule(self, denial: ScheduledDenial) -> ScheduledDenial:
        async with self._redis.pipeline(transaction=True) as pipe:
            pipe.hsetnx(self._payload_key, denial.id, json.dumps(denial.to_dict()))
            pipe.zadd(self._schedule_key, {denial.id: denial.due_at.timestamp()}, nx=True)
            created, _ = await pipe.execute()
        if created:
            return denial
        existing = await self._redis.hget(self._payload_key, denial.id)
        return ScheduledDenial.from_dict(json.loads(existing)) if existing else denial

    async def reschedule(self, denial: ScheduledDenial) -> None:
        async with self._redis.pipeline(transaction=True) as pipe:
            pipe.hset(self._payload_key, denial.id, json.dumps(denial.to_dict()))
            pipe.zadd(self._schedule_key, {denial.id: denial.due_at.timestamp()})
            await pipe.execute()

    async def due(self, now: datetime, *, limit: int = 100) -> Sequence[ScheduledDenial]:
        ids = await self._redis.zrangebyscore(self._schedule_key, "-inf", now.timestamp(), start=0, num=limit)
        return await self._load(ids)

    async def complete(self, denial_id: str) -> None:
        async with self._redis.pipeline(transaction=True) as pipe:
            pipe.zrem(self._schedule_key, denial_id)
            pipe.hdel(self._payload_key, denial_id)
            await pipe.execute()

    async def list_pending(self) -> Sequence[ScheduledDenial]:
        ids = await self._redis.zrange(self._schedule_key, 0, -1)
        return await self._load(ids)

    async def _load(self, ids: Sequence[str]) -> list[ScheduledDenial]:
        if not ids:
            return []
        payloads = await self._redis.hmget(self._payload_key, list(ids))
        return [ScheduledDenial.from_dict(json.loads(payload)) for payload in payloads if payload]
