"""Background quality evaluation with a process-wide concurrency bound."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

from creditgate.credit.domain.errors import CreditEngineError, EvaluatorUnavailable, StoreUnavailable, TransientStoreError
from creditgate.credit.domain.evaluator import EvalContext, EvaluationResult, Evaluator, check_result
from creditgate.credit.domain.ledger import CreditLedger, LedgerCommit
from creditgate.credit.domain.models import ActorKey, EvaluationPayload, EvaluationStatus, PendingEvaluation, new_id
from creditgate.credit.domain.review_queue import ReviewQueue
from creditgate.credit.domain.scope_config import ScopeConfig
from creditgate.credit.domain.scoring import EventKind, QualityLevel, delta as score_delta
from creditgate.obs import metrics

if TYPE_CHECKING:  # pragma: no cover - type-only imports
    from creditgate.credit.domain.shadow import ShadowEnforcer

logger = logging.getLogger(__name__)

AUTO_APPLY_THRESHOLD = 0.85
UNAVAILABLE_NOTE = "evaluation unavailable"


class PipelineOutcome(str, Enum):
    AUTO_APPLIED = "auto_applied"
    QUEUED = "queued"
    UNAVAILABLE = "unavailable"
    DISCARDED = "discarded"


@dataclass(frozen=True, slots=True)
class EvaluationRequest:
    key: ActorKey
    config: ScopeConfig
    event_kind: EventKind
    content: str
    context: EvalContext
    action_ref: str | None = None


class EvaluationPipeline:
    """Runs evaluator calls off the request path and routes their results.

    ``submit`` never blocks on the evaluator: it spawns a task that waits for
    a concurrency slot. Results at or above the auto-apply threshold go to the
    ledger, the rest to the review queue. Evaluator trouble of any kind is
    converted to a zero-confidence review entry.
    """

    def __init__(
        self,
        evaluator: Evaluator,
        ledger: CreditLedger,
        review_queue: ReviewQueue,
        *,
        shadow: "ShadowEnforcer | None" = None,
        max_concurrent: int = 4,
        timeout_seconds: float = 30.0,
        auto_apply_threshold: float = AUTO_APPLY_THRESHOLD,
        apply_attempts: int = 3,
    ) -> None:
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be positive")
        self._evaluator = evaluator
        self._ledger = ledger
        self._review = review_queue
        self._shadow = shadow
        self._slots = asyncio.Semaphore(max_concurrent)
        self._timeout = timeout_seconds
        self._threshold = auto_apply_threshold
        self._apply_attempts = apply_attempts
        self._tasks: set[asyncio.Task] = set()
        self._closing = False

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    def submit(
        self,
        key: ActorKey,
        config: ScopeConfig,
        event_kind: EventKind,
        content: str,
        context: EvalContext,
        *,
        action_ref: str | None = None,
    ) -> asyncio.Task:
        """Schedule evaluation and return immediately."""

        if self._closing:
            raise RuntimeError("evaluation pipeline is shutting down")
        request = EvaluationRequest(key, config, event_kind, content, context, action_ref)
        task = asyncio.get_running_loop().create_task(self.process(request), name=f"evaluate:{key}")
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("evaluation_task_failed", exc_info=exc)

    async def process(self, request: EvaluationRequest) -> PipelineOutcome:
        metrics.EVALUATIONS_WAITING.inc()
        try:
            await self._slots.acquire()
        finally:
            metrics.EVALUATIONS_WAITING.dec()
        try:
            metrics.EVALUATIONS_IN_FLIGHT.inc()
            try:
                result = await self._evaluate(request)
            finally:
                metrics.EVALUATIONS_IN_FLIGHT.dec()
        finally:
            self._slots.release()

        if result is None:
            outcome = await self._queue_unavailable(request)
        else:
            outcome = await self._route(request, result)
        metrics.EVALUATIONS_TOTAL.labels(outcome=outcome.value).inc()
        return outcome

    async def _evaluate(self, request: EvaluationRequest) -> EvaluationResult | None:
        provider = getattr(self._evaluator, "provider", "unknown")
        started = time.perf_counter()
        try:
            raw = await asyncio.wait_for(self._evaluator.evaluate(request.content, request.context), self._timeout)
            return check_result(raw)
        except asyncio.TimeoutError:
            logger.warning("evaluator_timeout", extra={"actor_key": str(request.key), "provider": provider})
        except EvaluatorUnavailable as exc:
            logger.warning(
                "evaluator_unavailable",
                extra={"actor_key": str(request.key), "provider": provider, "error": str(exc)},
            )
        except Exception:  # noqa: BLE001 - evaluator failures degrade to human review
            logger.exception("evaluator_error", extra={"actor_key": str(request.key), "provider": provider})
        finally:
            metrics.EVALUATOR_LATENCY.labels(provider=provider).observe(time.perf_counter() - started)
        return None

    async def _route(self, request: EvaluationRequest, result: EvaluationResult) -> PipelineOutcome:
        proposed = score_delta(request.config, request.event_kind, result.classification)
        if result.confidence >= self._threshold:
            await self._auto_apply(request, result, proposed)
            return PipelineOutcome.AUTO_APPLIED

        try:
            actor = await self._ledger.get(request.key)
        except CreditEngineError:
            # Approval re-checks the blacklist, so queueing is safe either way.
            actor = None
        if actor is not None and actor.is_blacklisted:
            return await self._record_discarded(request, result, proposed)
        await self._enqueue(request, result.classification, result.confidence, result.rationale, proposed)
        return PipelineOutcome.QUEUED

    async def _auto_apply(self, request: EvaluationRequest, result: EvaluationResult, proposed: int) -> None:
        payload = EvaluationPayload(
            classification=result.classification,
            confidence=result.confidence,
            rationale=result.rationale,
            status=EvaluationStatus.AUTO_APPLIED,
            evaluation_id=new_id("eval"),
        )
        commit: LedgerCommit | None = None
        for attempt in range(1, self._apply_attempts + 1):
            try:
                commit = await self._ledger.apply_delta(
                    request.key,
                    request.config,
                    request.event_kind,
                    proposed,
                    evaluation=payload,
                    earn_if_blacklisted=False,
                )
                break
            except TransientStoreError:
                logger.warning(
                    "evaluation_apply_conflict",
                    extra={"actor_key": str(request.key), "attempt": attempt},
                )
            except StoreUnavailable as exc:
                logger.warning(
                    "evaluation_apply_store_unavailable",
                    extra={"actor_key": str(request.key), "attempt": attempt, "error": str(exc)},
                )
                break
        if commit is None:
            # Keep the signal: a maintainer can still apply it from the queue.
            await self._enqueue(
                request,
                result.classification,
                result.confidence,
                f"ledger write failed: {result.rationale}",
                proposed,
            )
            return

        if commit.newly_blacklisted and request.action_ref and request.config.is_gated(request.event_kind):
            if self._shadow is not None:
                await self._shadow.enforce_if_blacklisted(request.key, request.action_ref)

    async def _record_discarded(
        self, request: EvaluationRequest, result: EvaluationResult, proposed: int
    ) -> PipelineOutcome:
        payload = EvaluationPayload(
            classification=result.classification,
            confidence=result.confidence,
            rationale=result.rationale,
            status=EvaluationStatus.DISCARDED,
            evaluation_id=new_id("eval"),
        )
        try:
            await self._ledger.record_discarded(
                request.key, request.config, request.event_kind, proposed, evaluation=payload
            )
        except CreditEngineError:
            logger.warning("evaluation_discard_record_failed", extra={"actor_key": str(request.key)})
            await self._enqueue(request, result.classification, result.confidence, result.rationale, proposed)
            return PipelineOutcome.QUEUED
        logger.info(
            "evaluation_discarded_blacklisted",
            extra={"actor_key": str(request.key), "proposed_delta": proposed, "confidence": result.confidence},
        )
        return PipelineOutcome.DISCARDED

    async def _queue_unavailable(self, request: EvaluationRequest) -> PipelineOutcome:
        proposed = score_delta(request.config, request.event_kind, QualityLevel.ACCEPTABLE)
        await self._enqueue(request, QualityLevel.ACCEPTABLE, 0.0, UNAVAILABLE_NOTE, proposed)
        return PipelineOutcome.UNAVAILABLE

    async def _enqueue(
        self,
        request: EvaluationRequest,
        classification: QualityLevel,
        confidence: float,
        rationale: str,
        proposed: int,
    ) -> PendingEvaluation:
        entry = PendingEvaluation(
            id=new_id("eval"),
            identity=request.key.identity,
            scope=request.key.scope,
            event_kind=request.event_kind,
            classification=classification,
            confidence=confidence,
            proposed_delta=proposed,
            rationale=rationale,
        )
        return await self._review.enqueue(entry)

    async def drain(self) -> None:
        """Wait for every evaluation submitted so far."""

        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def shutdown(self, grace_seconds: float = 10.0) -> int:
        """Stop accepting work, wait up to ``grace_seconds``, cancel the rest.

        Returns the number of evaluations that were cancelled.
        """

        self._closing = True
        pending = list(self._tasks)
        if not pending:
            return 0
        _done, still_running = await asyncio.wait(pending, timeout=grace_seconds)
        for task in still_running:
            task.cancel()
        if still_running:
            await asyncio.gather(*still_running, return_exceptions=True)
            logger.warning("evaluations_abandoned", extra={"count": len(still_running)})
        return len(still_running)


__all__ = [
    "AUTO_APPLY_THRESHOLD",
    "UNAVAILABLE_NOTE",
    "EvaluationPipeline",
    "EvaluationRequest",
    "PipelineOutcome",
]
