"""Maintainer endpoints for actor credit state."""

from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from creditgate.credit.api.deps import AdminPrincipal, require_admin, scope_name
from creditgate.credit.domain.container import get_engine, get_ledger
from creditgate.credit.domain.ledger import AuditReport
from creditgate.credit.domain.models import Actor, ActorKey, CreditEvent

router = APIRouter(prefix="/api/credit/v1/scopes/{owner}/{repo}/actors", tags=["credit-actors"])


class CreditEventOut(BaseModel):
    id: str
    identity: str
    scope: str
    event_kind: str
    delta: int
    credit_before: int
    credit_after: int
    created_at: datetime
    evaluation: dict[str, object] | None = None
    override: dict[str, str] | None = None
    blacklist_triggered: bool = False
    discarded_delta: int | None = None

    @classmethod
    def from_domain(cls, event: CreditEvent) -> "CreditEventOut":
        return cls(
            id=event.id,
            identity=event.identity,
            scope=event.scope,
            event_kind=event.event_kind.value,
            delta=event.delta,
            credit_before=event.credit_before,
            credit_after=event.credit_after,
            created_at=event.created_at,
            evaluation=event.evaluation.to_dict() if event.evaluation else None,
            override=event.override.to_dict() if event.override else None,
            blacklist_triggered=event.blacklist_triggered,
            discarded_delta=event.discarded_delta,
        )


class ActorOut(BaseModel):
    identity: str
    scope: str
    credit_score: int
    role: str
    is_blacklisted: bool
    created_at: datetime
    updated_at: datetime
    starting_credit: int | None = None

    @classmethod
    def from_domain(cls, actor: Actor) -> "ActorOut":
        return cls(
            identity=actor.identity,
            scope=actor.scope,
            credit_score=actor.credit_score,
            role=actor.role.value,
            is_blacklisted=actor.is_blacklisted,
            created_at=actor.created_at,
            updated_at=actor.updated_at,
            starting_credit=actor.starting_credit,
        )


class AuditOut(BaseModel):
    consistent: bool
    event_count: int
    replayed_score: int | None = None
    problems: list[str] = Field(default_factory=list)

    @classmethod
    def from_domain(cls, report: AuditReport) -> "AuditOut":
        return cls(
            consistent=report.consistent,
            event_count=report.event_count,
            replayed_score=report.replayed_score,
            problems=list(report.problems),
        )


class ActorDetailOut(BaseModel):
    actor: ActorOut
    events: list[CreditEventOut]
    audit: AuditOut


class AdjustIn(BaseModel):
    delta: int = Field(..., ge=-1000, le=1000)
    reason: str = Field(..., min_length=1, max_length=500)


class BlacklistIn(BaseModel):
    blacklisted: bool
    reason: str = Field(default="", max_length=500)


@router.get("", response_model=list[ActorOut])
async def list_actors(
    owner: str,
    repo: str,
    *,
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    _: AdminPrincipal = Depends(require_admin),
):
    actors = await get_ledger().list_actors(scope_name(owner, repo), limit=limit, offset=offset)
    return [ActorOut.from_domain(actor) for actor in actors]


@router.get("/{identity}", response_model=ActorDetailOut)
async def get_actor(
    owner: str,
    repo: str,
    identity: str,
    *,
    limit: int = Query(default=20, ge=1, le=200),
    _: AdminPrincipal = Depends(require_admin),
):
    ledger = get_ledger()
    key = ActorKey(identity=identity, scope=scope_name(owner, repo))
    actor = await ledger.require(key)
    events = list(await ledger.history(key))
    report = await ledger.audit(key)
    return ActorDetailOut(
        actor=ActorOut.from_domain(actor),
        events=[CreditEventOut.from_domain(event) for event in reversed(events[-limit:])],
        audit=AuditOut.from_domain(report),
    )


@router.post("/{identity}/adjust", response_model=CreditEventOut)
async def adjust_actor(
    owner: str,
    repo: str,
    identity: str,
    payload: AdjustIn,
    admin: AdminPrincipal = Depends(require_admin),
):
    key = ActorKey(identity=identity, scope=scope_name(owner, repo))
    event = await get_engine().manual_adjust(key, payload.delta, payload.reason, by=admin.login)
    return CreditEventOut.from_domain(event)


@router.post("/{identity}/blacklist", response_model=ActorOut)
async def set_blacklist(
    owner: str,
    repo: str,
    identity: str,
    payload: BlacklistIn,
    admin: AdminPrincipal = Depends(require_admin),
):
    key = ActorKey(identity=identity, scope=scope_name(owner, repo))
    actor = await get_engine().manual_blacklist(key, payload.blacklisted, by=admin.login, reason=payload.reason)
    return ActorOut.from_domain(actor)
