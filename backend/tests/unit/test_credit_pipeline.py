import asyncio

import pytest

from creditgate.credit.domain.actions import LoggingRepositoryActions
from creditgate.credit.domain.consistency import InMemoryTransactionalStore, TransactionalCoordinator
from creditgate.credit.domain.errors import ConflictExhausted, StoreUnavailable
from creditgate.credit.domain.evaluator import ContentType, EvalContext, EvaluationResult
from creditgate.credit.domain.ledger import CreditLedger
from creditgate.credit.domain.models import ActorKey, EvaluationStatus
from creditgate.credit.domain.pipeline import (
    UNAVAILABLE_NOTE,
    EvaluationPipeline,
    EvaluationRequest,
    PipelineOutcome,
)
from creditgate.credit.domain.policy import PolicyDecision
from creditgate.credit.domain.review_queue import InMemoryReviewRepository, ReviewQueue
from creditgate.credit.domain.scope_config import ScopeConfig, ScopeConfigProvider
from creditgate.credit.domain.scoring import EventKind, QualityLevel
from creditgate.credit.domain.shadow import InMemoryEnforcementRepository, ShadowEnforcer

KEY = ActorKey(identity="octocat", scope="octo/widgets")
CONTEXT = EvalContext(ContentType.PULL_REQUEST, title="Add widget")


class StaticEvaluator:
    provider = "static"

    def __init__(self, classification: QualityLevel, confidence: float) -> None:
        self.result = EvaluationResult(classification, confidence, "static")
        self.calls = 0

    async def evaluate(self, content, context):
        self.calls += 1
        return self.result


class FailingEvaluator:
    provider = "failing"

    async def evaluate(self, content, context):
        raise RuntimeError("503 from provider")


class BlockedEvaluator:
    provider = "blocked"

    def __init__(self) -> None:
        self.release = asyncio.Event()
        self.active = 0
        self.peak = 0

    async def evaluate(self, content, context):
        self.active += 1
        self.peak = max(self.peak, self.active)
        try:
            await self.release.wait()
        finally:
            self.active -= 1
        return EvaluationResult(QualityLevel.ACCEPTABLE, 0.9, "ok")


class ConflictingLedger(CreditLedger):
    async def apply_delta(self, key, config, event_kind, delta, **kwargs):
        raise ConflictExhausted(str(key), 4)


class UnreachableLedger(CreditLedger):
    async def apply_delta(self, key, config, event_kind, delta, **kwargs):
        raise StoreUnavailable("db down")


def build(evaluator, *, ledger=None, **kwargs):
    ledger = ledger or CreditLedger(TransactionalCoordinator(InMemoryTransactionalStore(), backend="memory"))
    configs = ScopeConfigProvider()
    queue = ReviewQueue(InMemoryReviewRepository(), ledger, configs)
    shadow = ShadowEnforcer(InMemoryEnforcementRepository(), LoggingRepositoryActions(), ledger, configs)
    pipeline = EvaluationPipeline(evaluator, ledger, queue, shadow=shadow, **kwargs)
    return pipeline, ledger, queue, shadow


def request(config: ScopeConfig | None = None, *, action_ref: str | None = None) -> EvaluationRequest:
    return EvaluationRequest(KEY, config or ScopeConfig(), EventKind.PR_OPENED, "Add widget", CONTEXT, action_ref)


@pytest.mark.asyncio
async def test_high_confidence_applies_exactly_one_event() -> None:
    pipeline, ledger, queue, _ = build(StaticEvaluator(QualityLevel.HIGH, 0.9))

    assert await pipeline.process(request()) is PipelineOutcome.AUTO_APPLIED

    events = await ledger.history(KEY)
    assert len(events) == 1
    assert events[0].delta == 15
    assert events[0].evaluation.status is EvaluationStatus.AUTO_APPLIED
    assert events[0].evaluation.confidence == 0.9
    assert await queue.list(KEY.scope, None) == []


@pytest.mark.asyncio
async def test_threshold_confidence_auto_applies() -> None:
    pipeline, ledger, _, _ = build(StaticEvaluator(QualityLevel.LOW, 0.85))
    assert await pipeline.process(request()) is PipelineOutcome.AUTO_APPLIED
    assert (await ledger.require(KEY)).credit_score == 95


@pytest.mark.asyncio
async def test_low_confidence_queues_without_touching_ledger() -> None:
    pipeline, ledger, queue, _ = build(StaticEvaluator(QualityLevel.SPAM, 0.4))

    assert await pipeline.process(request()) is PipelineOutcome.QUEUED

    entries = await queue.list(KEY.scope)
    assert len(entries) == 1
    assert entries[0].status is EvaluationStatus.PENDING
    assert entries[0].proposed_delta == -25
    assert entries[0].confidence == 0.4
    assert await ledger.history(KEY) == []


@pytest.mark.asyncio
async def test_evaluator_error_becomes_zero_confidence_review() -> None:
    pipeline, ledger, queue, _ = build(FailingEvaluator())

    assert await pipeline.process(request()) is PipelineOutcome.UNAVAILABLE

    (entry,) = await queue.list(KEY.scope)
    assert entry.confidence == 0.0
    assert entry.rationale == UNAVAILABLE_NOTE
    assert entry.classification is QualityLevel.ACCEPTABLE
    assert entry.proposed_delta == 5
    assert await ledger.history(KEY) == []


@pytest.mark.asyncio
async def test_out_of_range_confidence_is_unavailable() -> None:
    pipeline, _, queue, _ = build(StaticEvaluator(QualityLevel.HIGH, 1.5))
    assert await pipeline.process(request()) is PipelineOutcome.UNAVAILABLE
    assert len(await queue.list(KEY.scope)) == 1


@pytest.mark.asyncio
async def test_evaluator_timeout_is_unavailable() -> None:
    evaluator = BlockedEvaluator()
    pipeline, _, queue, _ = build(evaluator, timeout_seconds=0.01)

    assert await pipeline.process(request()) is PipelineOutcome.UNAVAILABLE
    assert (await queue.list(KEY.scope))[0].rationale == UNAVAILABLE_NOTE


@pytest.mark.asyncio
async def test_submit_returns_before_evaluation_completes() -> None:
    evaluator = BlockedEvaluator()
    pipeline, ledger, _, _ = build(evaluator)

    task = pipeline.submit(KEY, ScopeConfig(), EventKind.PR_OPENED, "Add widget", CONTEXT)
    await asyncio.sleep(0)
    assert not task.done()
    assert pipeline.in_flight == 1

    evaluator.release.set()
    await pipeline.drain()
    assert task.result() is PipelineOutcome.AUTO_APPLIED
    assert (await ledger.require(KEY)).credit_score == 105


@pytest.mark.asyncio
async def test_concurrency_is_bounded() -> None:
    evaluator = BlockedEvaluator()
    pipeline, ledger, _, _ = build(evaluator, max_concurrent=3)

    for _ in range(10):
        pipeline.submit(KEY, ScopeConfig(), EventKind.PR_OPENED, "Add widget", CONTEXT)
    for _ in range(5):
        await asyncio.sleep(0)
    assert evaluator.active == 3

    evaluator.release.set()
    await pipeline.drain()
    assert evaluator.peak == 3
    assert (await ledger.require(KEY)).credit_score == 150


@pytest.mark.asyncio
async def test_blacklisted_actor_high_confidence_delta_is_discarded() -> None:
    pipeline, ledger, _, _ = build(StaticEvaluator(QualityLevel.HIGH, 0.95))
    await ledger.set_blacklisted(KEY, ScopeConfig(), True, by="maint")

    assert await pipeline.process(request()) is PipelineOutcome.AUTO_APPLIED

    event = (await ledger.history(KEY))[-1]
    assert event.delta == 0
    assert event.discarded_delta == 15
    assert (await ledger.require(KEY)).credit_score == 100


@pytest.mark.asyncio
async def test_blacklisted_actor_low_confidence_is_recorded_as_discarded() -> None:
    pipeline, ledger, queue, _ = build(StaticEvaluator(QualityLevel.SPAM, 0.5))
    await ledger.set_blacklisted(KEY, ScopeConfig(), True, by="maint")

    assert await pipeline.process(request()) is PipelineOutcome.DISCARDED
    assert await queue.list(KEY.scope, None) == []

    _, event = await ledger.history(KEY)
    assert event.delta == 0
    assert event.discarded_delta == -25
    assert event.evaluation.status is EvaluationStatus.DISCARDED
    assert event.evaluation.confidence == 0.5
    assert (await ledger.require(KEY)).credit_score == 100
    assert (await ledger.audit(KEY)).consistent


@pytest.mark.asyncio
async def test_unavailable_evaluation_for_blacklisted_actor_earns_nothing_on_approve() -> None:
    pipeline, ledger, queue, _ = build(FailingEvaluator())
    await ledger.set_blacklisted(KEY, ScopeConfig(), True, by="maint")
    comment = EvaluationRequest(KEY, ScopeConfig(), EventKind.COMMENT, "thanks", CONTEXT)

    assert await pipeline.process(comment) is PipelineOutcome.UNAVAILABLE
    (entry,) = await queue.list(KEY.scope)
    event = await queue.approve(entry.id, by="maint")

    assert event.delta == 0
    assert event.discarded_delta == 1
    assert (await ledger.require(KEY)).credit_score == 100


@pytest.mark.asyncio
async def test_newly_blacklisted_actor_gets_denial_scheduled() -> None:
    pipeline, ledger, _, shadow = build(StaticEvaluator(QualityLevel.SPAM, 0.93))
    config = ScopeConfig(starting_credit=5)

    await pipeline.process(request(config, action_ref="octo/widgets#7"))

    assert (await ledger.require(KEY)).is_blacklisted
    (denial,) = await shadow.pending()
    assert denial.action_ref == "octo/widgets#7"
    assert denial.reason is PolicyDecision.DENY_BLACKLISTED


@pytest.mark.asyncio
async def test_exhausted_ledger_write_falls_back_to_review() -> None:
    ledger = ConflictingLedger(TransactionalCoordinator(InMemoryTransactionalStore(), backend="memory"))
    pipeline, _, queue, _ = build(StaticEvaluator(QualityLevel.HIGH, 0.99), ledger=ledger)

    await pipeline.process(request())

    (entry,) = await queue.list(KEY.scope)
    assert entry.rationale.startswith("ledger write failed")
    assert entry.proposed_delta == 15


@pytest.mark.asyncio
async def test_unreachable_ledger_falls_back_to_review() -> None:
    ledger = UnreachableLedger(TransactionalCoordinator(InMemoryTransactionalStore(), backend="memory"))
    pipeline, _, queue, _ = build(StaticEvaluator(QualityLevel.HIGH, 0.99), ledger=ledger)

    pipeline.submit(KEY, ScopeConfig(), EventKind.PR_OPENED, "Add widget", CONTEXT)
    await pipeline.drain()

    (entry,) = await queue.list(KEY.scope)
    assert entry.rationale.startswith("ledger write failed")
    assert entry.proposed_delta == 15
    assert entry.confidence == 0.99


@pytest.mark.asyncio
async def test_shutdown_cancels_stragglers_and_refuses_new_work() -> None:
    evaluator = BlockedEvaluator()
    pipeline, _, _, _ = build(evaluator)
    pipeline.submit(KEY, ScopeConfig(), EventKind.PR_OPENED, "Add widget", CONTEXT)
    await asyncio.sleep(0)

    assert await pipeline.shutdown(grace_seconds=0.01) == 1
    assert pipeline.in_flight == 0
    with pytest.raises(RuntimeError):
        pipeline.submit(KEY, ScopeConfig(), EventKind.PR_OPENED, "Add widget", CONTEXT)


def test_concurrency_limit_must_be_positive() -> None:
    with pytest.raises(ValueError):
        build(StaticEvaluator(QualityLevel.HIGH, 0.9), max_concurrent=0)
