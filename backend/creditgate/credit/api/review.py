"""Maintainer endpoints for the evaluation review queue."""

from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from creditgate.credit.api.actors import CreditEventOut
from creditgate.credit.api.deps import AdminPrincipal, require_admin, scope_name
from creditgate.credit.domain.container import get_review_queue
from creditgate.credit.domain.errors import EvaluationNotFound
from creditgate.credit.domain.models import EvaluationStatus, PendingEvaluation
from creditgate.credit.domain.review_queue import ReviewQueue

router = APIRouter(prefix="/api/credit/v1/scopes/{owner}/{repo}/evaluations", tags=["credit-review"])


class PendingEvaluationOut(BaseModel):
    id: str
    identity: str
    scope: str
    event_kind: str
    classification: str
    confidence: float
    proposed_delta: int
    status: str
    rationale: str
    maintainer_note: str | None = None
    final_delta: int | None = None
    decided_by: str | None = None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_domain(cls, entry: PendingEvaluation) -> "PendingEvaluationOut":
        return cls(
            id=entry.id,
            identity=entry.identity,
            scope=entry.scope,
            event_kind=entry.event_kind.value,
            classification=entry.classification.value,
            confidence=entry.confidence,
            proposed_delta=entry.proposed_delta,
            status=entry.status.value,
            rationale=entry.rationale,
            maintainer_note=entry.maintainer_note,
            final_delta=entry.final_delta,
            decided_by=entry.decided_by,
            created_at=entry.created_at,
            updated_at=entry.updated_at,
        )


class ApproveIn(BaseModel):
    note: str | None = Field(default=None, max_length=500)


class OverrideIn(BaseModel):
    final_delta: int = Field(..., ge=-1000, le=1000)
    reason: str = Field(..., min_length=1, max_length=500)


async def _entry_in_scope(queue: ReviewQueue, evaluation_id: str, scope: str) -> PendingEvaluation:
    entry = await queue.get(evaluation_id)
    if entry.scope != scope:
        raise EvaluationNotFound(evaluation_id)
    return entry


@router.get("", response_model=list[PendingEvaluationOut])
async def list_evaluations(
    owner: str,
    repo: str,
    *,
    status: EvaluationStatus | None = Query(default=EvaluationStatus.PENDING),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    _: AdminPrincipal = Depends(require_admin),
):
    entries = await get_review_queue().list(scope_name(owner, repo), status, limit=limit, offset=offset)
    return [PendingEvaluationOut.from_domain(entry) for entry in entries]


@router.get("/{evaluation_id}", response_model=PendingEvaluationOut)
async def get_evaluation(owner: str, repo: str, evaluation_id: str, _: AdminPrincipal = Depends(require_admin)):
    entry = await _entry_in_scope(get_review_queue(), evaluation_id, scope_name(owner, repo))
    return PendingEvaluationOut.from_domain(entry)


@router.post("/{evaluation_id}/approve", response_model=CreditEventOut)
async def approve_evaluation(
    owner: str,
    repo: str,
    evaluation_id: str,
    payload: ApproveIn | None = None,
    admin: AdminPrincipal = Depends(require_admin),
):
    queue = get_review_queue()
    await _entry_in_scope(queue, evaluation_id, scope_name(owner, repo))
    event = await queue.approve(evaluation_id, by=admin.login, note=payload.note if payload else None)
    return CreditEventOut.from_domain(event)


@router.post("/{evaluation_id}/override", response_model=CreditEventOut)
async def override_evaluation(
    owner: str,
    repo: str,
    evaluation_id: str,
    payload: OverrideIn,
    admin: AdminPrincipal = Depends(require_admin),
):
    queue = get_review_queue()
    await _entry_in_scope(queue, evaluation_id, scope_name(owner, repo))
    event = await queue.override(evaluation_id, payload.final_delta, payload.reason, by=admin.login)
    return CreditEventOut.from_domain(event)
