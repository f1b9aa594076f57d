"""Redis ledger store with version-checked writes (WATCH/MULTI)."""

from __future__ import annotations

import json
from contextlib import asynccontextmanager
from typing import AsyncIterator, Sequence

from redis.asyncio import Redis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError
from redis.exceptions import WatchError

from creditgate.credit.domain.consistency import Mutation
from creditgate.credit.domain.errors import StoreUnavailable
from creditgate.credit.domain.models import Actor, ActorKey, CreditEvent
from creditgate.infra.redis import RedisProxy


@asynccontextmanager
async def _guard() -> AsyncIterator[None]:
    try:
        yield
    except (RedisConnectionError, RedisTimeoutError, OSError) as exc:
        raise StoreUnavailable(str(exc)) from exc


class RedisVersionedStore:
    """Actor rows as hashes carrying a ``version`` counter; events as lists."""

    def __init__(self, redis: Redis | RedisProxy, *, prefix: str = "credit") -> None:
        self._redis = redis
        self._prefix = prefix

    def _actor_key(self, key: ActorKey) -> str:
        return f"{self._prefix}:actor:{key}"

    def _events_key(self, key: ActorKey) -> str:
        return f"{self._prefix}:events:{key}"

    def _scope_key(self, scope: str) -> str:
        return f"{self._prefix}:actors:{scope}"

    async def read(self, key: ActorKey) -> tuple[Actor | None, str | None]:
        async with _guard():
            payload, version = await self._redis.hmget(self._actor_key(key), ["payload", "version"])
        if payload is None:
            return None, None
        return Actor.from_dict(json.loads(payload)), version

    async def write_if_version(self, key: ActorKey, mutation: Mutation, version: str | None) -> bool:
        actor_key = self._actor_key(key)
        async with _guard():
            async with self._redis.pipeline(transaction=True) as pipe:
                try:
                    await pipe.watch(actor_key)
                    current = await pipe.hget(actor_key, "version")
                    if current != version:
                        await pipe.unwatch()
                        return False
                    pipe.multi()
                    pipe.hset(
                        actor_key,
                        mapping={
                            "payload": json.dumps(mutation.actor.to_dict()),
                            "version": str(int(current or 0) + 1),
                        },
                    )
                    if mutation.events:
                        pipe.rpush(self._events_key(key), *(json.dumps(event.to_dict()) for event in mutation.events))
                    pipe.sadd(self._scope_key(key.scope), key.identity)
                    await pipe.execute()
                except WatchError:
                    return False
        return True

    async def get_actor(self, key: ActorKey) -> Actor | None:
        actor, _version = await self.read(key)
        return actor

    async def list_actors(self, scope: str, *, limit: int = 50, offset: int = 0) -> Sequence[Actor]:
        async with _guard():
            identities = sorted(await self._redis.smembers(self._scope_key(scope)))
        actors: list[Actor] = []
        for identity in identities[offset : offset + limit]:
            actor = await self.get_actor(ActorKey(identity=identity, scope=scope))
            if actor is not None:
                actors.append(actor)
        return actors

    async def list_events(self, key: ActorKey, *, limit: int | None = None, offset: int = 0) -> Sequence[CreditEvent]:
        end = -1 if limit is None else offset + limit - 1
        if limit is not None and limit <= 0:
            return []
        async with _guard():
            rows = await self._redis.lrange(self._events_key(key), offset, end)
        return [CreditEvent.from_dict(json.loads(row)) for row in rows]
