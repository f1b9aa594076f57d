"""Lightweight service container shared by credit modules."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import asyncpg
from redis.asyncio import Redis

from creditgate.credit.domain.actions import LoggingRepositoryActions, RepositoryActions
from creditgate.credit.domain.commands import CommandHandler
from creditgate.credit.domain.consistency import (
    ConsistencyCoordinator,
    InMemoryTransactionalStore,
    OptimisticCoordinator,
    TransactionalCoordinator,
)
from creditgate.credit.domain.engine import CreditEngine
from creditgate.credit.domain.evaluator import Evaluator
from creditgate.credit.domain.ledger import CreditLedger
from creditgate.credit.domain.pipeline import EvaluationPipeline
from creditgate.credit.domain.policy import PolicyGate
from creditgate.credit.domain.review_queue import InMemoryReviewRepository, ReviewQueue, ReviewRepository
from creditgate.credit.domain.scope_config import FileScopeConfigSource, ScopeConfigProvider, ScopeConfigSource
from creditgate.credit.domain.shadow import EnforcementRepository, InMemoryEnforcementRepository, ShadowEnforcer
from creditgate.credit.evaluators.mock import MockEvaluator
from creditgate.credit.infra.enforcement_repo import RedisEnforcementRepository
from creditgate.credit.infra.git_store import GitBranchStateStore
from creditgate.credit.infra.postgres_store import PostgresTransactionalStore
from creditgate.credit.infra.redis_store import RedisVersionedStore
from creditgate.credit.infra.review_repo import PostgresReviewRepository, RedisReviewRepository
from creditgate.infra.redis import RedisProxy
from creditgate.settings import settings


def default_scope_config_source() -> ScopeConfigSource | None:
    if settings.scope_config_file and Path(settings.scope_config_file).exists():
        return FileScopeConfigSource(settings.scope_config_file)
    return None


_coordinator: ConsistencyCoordinator = TransactionalCoordinator(InMemoryTransactionalStore(), backend="memory")
_review_repository: ReviewRepository = InMemoryReviewRepository()
_enforcement_repository: EnforcementRepository = InMemoryEnforcementRepository()
_actions: RepositoryActions = LoggingRepositoryActions(tuple(settings.privileged_logins))
_evaluator: Evaluator = MockEvaluator()
_configs = ScopeConfigProvider(default_scope_config_source(), ttl_seconds=settings.scope_config_ttl_seconds)
_ledger = CreditLedger(_coordinator)
_engine: CreditEngine
_commands: CommandHandler


def _build() -> None:
    global _ledger, _engine, _commands
    _ledger = CreditLedger(_coordinator)
    review_queue = ReviewQueue(_review_repository, _ledger, _configs)
    shadow = ShadowEnforcer(
        _enforcement_repository,
        _actions,
        _ledger,
        _configs,
        delay_window=(settings.shadow_delay_min_seconds, settings.shadow_delay_max_seconds),
    )
    pipeline = EvaluationPipeline(
        _evaluator,
        _ledger,
        review_queue,
        shadow=shadow,
        max_concurrent=settings.max_concurrent_evaluations,
        timeout_seconds=settings.evaluator_timeout_seconds,
        auto_apply_threshold=settings.auto_apply_threshold,
    )
    _engine = CreditEngine(
        ledger=_ledger,
        gate=PolicyGate(_ledger),
        pipeline=pipeline,
        shadow=shadow,
        review_queue=review_queue,
        configs=_configs,
    )
    _commands = CommandHandler(_engine, _actions)


_build()


def configure(
    *,
    coordinator: Optional[ConsistencyCoordinator] = None,
    review_repository: Optional[ReviewRepository] = None,
    enforcement_repository: Optional[EnforcementRepository] = None,
    actions: Optional[RepositoryActions] = None,
    evaluator: Optional[Evaluator] = None,
    configs: Optional[ScopeConfigProvider] = None,
) -> None:
    global _coordinator, _review_repository, _enforcement_repository, _actions, _evaluator, _configs
    if coordinator is not None:
        _coordinator = coordinator
    if review_repository is not None:
        _review_repository = review_repository
    if enforcement_repository is not None:
        _enforcement_repository = enforcement_repository
    if actions is not None:
        _actions = actions
    if evaluator is not None:
        _evaluator = evaluator
    if configs is not None:
        _configs = configs
    _build()


def reset() -> None:
    """Fresh in-memory wiring; used by tests and the memory backend."""

    configure(
        coordinator=TransactionalCoordinator(InMemoryTransactionalStore(), backend="memory"),
        review_repository=InMemoryReviewRepository(),
        enforcement_repository=InMemoryEnforcementRepository(),
    )


def _retry_kwargs() -> dict:
    return {"max_retries": settings.store_max_retries, "backoff_seconds": settings.store_backoff_seconds}


def configure_postgres(pool: asyncpg.Pool, redis_conn: Redis | RedisProxy) -> None:
    configure(
        coordinator=TransactionalCoordinator(PostgresTransactionalStore(pool), backend="postgres", **_retry_kwargs()),
        review_repository=PostgresReviewRepository(pool),
        enforcement_repository=RedisEnforcementRepository(redis_conn),
    )


def configure_redis(redis_conn: Redis | RedisProxy) -> None:
    configure(
        coordinator=OptimisticCoordinator(RedisVersionedStore(redis_conn), backend="redis", **_retry_kwargs()),
        review_repository=RedisReviewRepository(redis_conn),
        enforcement_repository=RedisEnforcementRepository(redis_conn),
    )


def configure_git(store: GitBranchStateStore, redis_conn: Redis | RedisProxy) -> None:
    configure(
        coordinator=OptimisticCoordinator(store, backend="git", **_retry_kwargs()),
        review_repository=RedisReviewRepository(redis_conn),
        enforcement_repository=RedisEnforcementRepository(redis_conn),
    )


def get_engine() -> CreditEngine:
    return _engine


def get_ledger() -> CreditLedger:
    return _ledger


def get_review_queue() -> ReviewQueue:
    return _engine.review_queue


def get_shadow_enforcer() -> ShadowEnforcer:
    return _engine.shadow


def get_pipeline() -> EvaluationPipeline:
    return _engine.pipeline


def get_scope_configs() -> ScopeConfigProvider:
    return _configs


def get_actions() -> RepositoryActions:
    return _actions


def get_command_handler() -> CommandHandler:
    return _commands
