"""Maintainer review of evaluations too uncertain to auto-apply."""

from __future__ import annotations

import logging
from typing import Protocol, Sequence

from creditgate.credit.domain.errors import EvaluationNotFound, InvalidTransition
from creditgate.credit.domain.ledger import CreditLedger
from creditgate.credit.domain.models import (
    CreditEvent,
    EvaluationPayload,
    EvaluationStatus,
    OverrideMarker,
    PendingEvaluation,
)
from creditgate.credit.domain.scope_config import ScopeConfigProvider
from creditgate.obs import metrics

logger = logging.getLogger(__name__)


class ReviewRepository(Protocol):
    async def insert(self, entry: PendingEvaluation) -> PendingEvaluation:
        ...

    async def get(self, evaluation_id: str) -> PendingEvaluation | None:
        ...

    async def list(
        self,
        scope: str,
        *,
        status: EvaluationStatus | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> Sequence[PendingEvaluation]:
        """Entries for a scope, oldest first."""
        ...

    async def transition(self, entry: PendingEvaluation, expected: EvaluationStatus) -> bool:
        """Store ``entry`` only if the stored status still equals ``expected``."""
        ...


class InMemoryReviewRepository(ReviewRepository):
    def __init__(self) -> None:
        self._entries: dict[str, PendingEvaluation] = {}

    async def insert(self, entry: PendingEvaluation) -> PendingEvaluation:
        self._entries[entry.id] = entry
        return entry

    async def get(self, evaluation_id: str) -> PendingEvaluation | None:
        return self._entries.get(evaluation_id)

    async def list(
        self,
        scope: str,
        *,
        status: EvaluationStatus | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> Sequence[PendingEvaluation]:
        rows = [
            entry
            for entry in self._entries.values()
            if entry.scope == scope and (status is None or entry.status == status)
        ]
        rows.sort(key=lambda entry: (entry.created_at, entry.id))
        return rows[offset : offset + limit]

    async def transition(self, entry: PendingEvaluation, expected: EvaluationStatus) -> bool:
        current = self._entries.get(entry.id)
        if current is None or current.status != expected:
            return False
        self._entries[entry.id] = entry
        return True


class ReviewQueue:
    """pending -> approved | overridden; every other move is rejected.

    A decision first claims the entry with a status compare-and-set, then
    applies credit. If the ledger write fails the claim is released so the
    entry can be decided again; a second decision on a claimed entry always
    raises InvalidTransition and never reaches the ledger.

    Approving an entry for an actor who is blacklisted by then commits a
    zero delta and keeps the proposed one as ``discarded_delta``. An
    override is an explicit maintainer amount and applies as given.
    """

    def __init__(self, repository: ReviewRepository, ledger: CreditLedger, configs: ScopeConfigProvider) -> None:
        self._repo = repository
        self._ledger = ledger
        self._configs = configs

    async def enqueue(self, entry: PendingEvaluation) -> PendingEvaluation:
        if entry.status is not EvaluationStatus.PENDING:
            raise InvalidTransition(entry.id, entry.status.value)
        stored = await self._repo.insert(entry)
        metrics.REVIEW_TRANSITIONS_TOTAL.labels(transition="created").inc()
        logger.info(
            "review_enqueued",
            extra={
                "evaluation_id": stored.id,
                "actor_key": str(stored.key),
                "proposed_delta": stored.proposed_delta,
                "confidence": stored.confidence,
            },
        )
        return stored

    async def get(self, evaluation_id: str) -> PendingEvaluation:
        entry = await self._repo.get(evaluation_id)
        if entry is None:
            raise EvaluationNotFound(evaluation_id)
        return entry

    async def list(
        self,
        scope: str,
        status: EvaluationStatus | None = EvaluationStatus.PENDING,
        *,
        limit: int = 50,
        offset: int = 0,
    ) -> Sequence[PendingEvaluation]:
        return await self._repo.list(scope, status=status, limit=limit, offset=offset)

    async def approve(self, evaluation_id: str, *, by: str = "maintainer", note: str | None = None) -> CreditEvent:
        entry = await self.get(evaluation_id)
        decided = entry.approved(by=by, note=note)
        return await self._decide(entry, decided, override=None)

    async def override(self, evaluation_id: str, final_delta: int, reason: str, *, by: str = "maintainer") -> CreditEvent:
        entry = await self.get(evaluation_id)
        decided = entry.overridden(final_delta=final_delta, reason=reason, by=by)
        return await self._decide(entry, decided, override=OverrideMarker(by=by, reason=reason))

    async def _decide(
        self,
        entry: PendingEvaluation,
        decided: PendingEvaluation,
        *,
        override: OverrideMarker | None,
    ) -> CreditEvent:
        if entry.status is not EvaluationStatus.PENDING:
            raise InvalidTransition(entry.id, entry.status.value)
        if not await self._repo.transition(decided, EvaluationStatus.PENDING):
            current = await self._repo.get(entry.id)
            raise InvalidTransition(entry.id, current.status.value if current else "missing")

        config = await self._configs.resolve(entry.scope)
        payload = EvaluationPayload(
            classification=entry.classification,
            confidence=entry.confidence,
            rationale=entry.rationale,
            status=decided.status,
            evaluation_id=entry.id,
        )
        try:
            commit = await self._ledger.apply_delta(
                entry.key,
                config,
                entry.event_kind,
                decided.final_delta if decided.final_delta is not None else entry.proposed_delta,
                evaluation=payload,
                override=override,
                earn_if_blacklisted=override is not None,
            )
        except Exception:
            await self._repo.transition(entry, decided.status)
            logger.warning("review_decision_reverted", extra={"evaluation_id": entry.id})
            raise

        metrics.REVIEW_TRANSITIONS_TOTAL.labels(transition=decided.status.value).inc()
        logger.info(
            "review_decided",
            extra={
                "evaluation_id": entry.id,
                "status": decided.status.value,
                "by": decided.decided_by,
                "delta": commit.event.delta,
            },
        )
        return commit.event
