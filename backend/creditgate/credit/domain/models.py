"""Ledger records: actors, credit events, and pending evaluations."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Mapping

import ulid

from creditgate.credit.domain.scoring import EventKind, QualityLevel


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id(prefix: str) -> str:
    return f"{prefix}_{ulid.new().str.lower()}"


class ActorRole(str, Enum):
    OWNER = "owner"
    MAINTAINER = "maintainer"
    COLLABORATOR = "collaborator"
    CONTRIBUTOR = "contributor"

    @property
    def is_privileged(self) -> bool:
        return self is not ActorRole.CONTRIBUTOR


class EvaluationStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    OVERRIDDEN = "overridden"
    AUTO_APPLIED = "auto_applied"
    DISCARDED = "discarded"

    @property
    def is_terminal(self) -> bool:
        return self is not EvaluationStatus.PENDING


@dataclass(frozen=True, slots=True)
class ActorKey:
    """Identity of an actor within one resource scope."""

    identity: str
    scope: str

    def __str__(self) -> str:
        return f"{self.scope}#{self.identity}"

    @classmethod
    def parse(cls, value: str) -> "ActorKey":
        scope, _, identity = value.rpartition("#")
        if not scope or not identity:
            raise ValueError(f"invalid actor key: {value}")
        return cls(identity=identity, scope=scope)


@dataclass(frozen=True, slots=True)
class Actor:
    identity: str
    scope: str
    credit_score: int
    role: ActorRole = ActorRole.CONTRIBUTOR
    is_blacklisted: bool = False
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    starting_credit: int | None = None

    @property
    def key(self) -> ActorKey:
        return ActorKey(identity=self.identity, scope=self.scope)

    def to_dict(self) -> dict[str, Any]:
        return {
            "identity": self.identity,
            "scope": self.scope,
            "credit_score": self.credit_score,
            "role": self.role.value,
            "is_blacklisted": self.is_blacklisted,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "starting_credit": self.starting_credit,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Actor":
        return cls(
            identity=str(data["identity"]),
            scope=str(data["scope"]),
            credit_score=int(data["credit_score"]),
            role=ActorRole(str(data.get("role", ActorRole.CONTRIBUTOR.value))),
            is_blacklisted=bool(data.get("is_blacklisted", False)),
            created_at=datetime.fromisoformat(str(data["created_at"])),
            updated_at=datetime.fromisoformat(str(data["updated_at"])),
            starting_credit=int(data["starting_credit"]) if data.get("starting_credit") is not None else None,
        )


@dataclass(frozen=True, slots=True)
class EvaluationPayload:
    """What the evaluator said about the content behind a credit event."""

    classification: QualityLevel
    confidence: float
    rationale: str
    status: EvaluationStatus
    evaluation_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "classification": self.classification.value,
            "confidence": self.confidence,
            "rationale": self.rationale,
            "status": self.status.value,
            "evaluation_id": self.evaluation_id,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "EvaluationPayload":
        return cls(
            classification=QualityLevel(str(data["classification"])),
            confidence=float(data["confidence"]),
            rationale=str(data.get("rationale", "")),
            status=EvaluationStatus(str(data["status"])),
            evaluation_id=data.get("evaluation_id"),
        )


@dataclass(frozen=True, slots=True)
class OverrideMarker:
    """Maintainer attribution for a manually decided credit change."""

    by: str
    reason: str

    def to_dict(self) -> dict[str, Any]:
        return {"by": self.by, "reason": self.reason}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "OverrideMarker":
        return cls(by=str(data["by"]), reason=str(data.get("reason", "")))


@dataclass(frozen=True, slots=True)
class CreditEvent:
    """Immutable audit record; ``credit_after == credit_before + delta``."""

    id: str
    identity: str
    scope: str
    event_kind: EventKind
    delta: int
    credit_before: int
    credit_after: int
    created_at: datetime
    evaluation: EvaluationPayload | None = None
    override: OverrideMarker | None = None
    blacklist_triggered: bool = False
    discarded_delta: int | None = None

    def __post_init__(self) -> None:
        if self.credit_after != self.credit_before + self.delta:
            raise ValueError("credit_after must equal credit_before + delta")

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "identity": self.identity,
            "scope": self.scope,
            "event_kind": self.event_kind.value,
            "delta": self.delta,
            "credit_before": self.credit_before,
            "credit_after": self.credit_after,
            "created_at": self.created_at.isoformat(),
            "evaluation": self.evaluation.to_dict() if self.evaluation else None,
            "override": self.override.to_dict() if self.override else None,
            "blacklist_triggered": self.blacklist_triggered,
            "discarded_delta": self.discarded_delta,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "CreditEvent":
        evaluation = data.get("evaluation")
        override = data.get("override")
        discarded = data.get("discarded_delta")
        return cls(
            id=str(data["id"]),
            identity=str(data["identity"]),
            scope=str(data["scope"]),
            event_kind=EventKind(str(data["event_kind"])),
            delta=int(data["delta"]),
            credit_before=int(data["credit_before"]),
            credit_after=int(data["credit_after"]),
            created_at=datetime.fromisoformat(str(data["created_at"])),
            evaluation=EvaluationPayload.from_dict(evaluation) if evaluation else None,
            override=OverrideMarker.from_dict(override) if override else None,
            blacklist_triggered=bool(data.get("blacklist_triggered", False)),
            discarded_delta=int(discarded) if discarded is not None else None,
        )


@dataclass(frozen=True, slots=True)
class PendingEvaluation:
    id: str
    identity: str
    scope: str
    event_kind: EventKind
    classification: QualityLevel
    confidence: float
    proposed_delta: int
    status: EvaluationStatus = EvaluationStatus.PENDING
    rationale: str = ""
    maintainer_note: str | None = None
    final_delta: int | None = None
    decided_by: str | None = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    @property
    def key(self) -> ActorKey:
        return ActorKey(identity=self.identity, scope=self.scope)

    def approved(self, *, by: str, note: str | None = None) -> "PendingEvaluation":
        return replace(
            self,
            status=EvaluationStatus.APPROVED,
            final_delta=self.proposed_delta,
            maintainer_note=note,
            decided_by=by,
            updated_at=utcnow(),
        )

    def overridden(self, *, final_delta: int, reason: str, by: str) -> "PendingEvaluation":
        return replace(
            self,
            status=EvaluationStatus.OVERRIDDEN,
            final_delta=final_delta,
            maintainer_note=reason,
            decided_by=by,
            updated_at=utcnow(),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "identity": self.identity,
            "scope": self.scope,
            "event_kind": self.event_kind.value,
            "classification": self.classification.value,
            "confidence": self.confidence,
            "proposed_delta": self.proposed_delta,
            "status": self.status.value,
            "rationale": self.rationale,
            "maintainer_note": self.maintainer_note,
            "final_delta": self.final_delta,
            "decided_by": self.decided_by,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "PendingEvaluation":
        final_delta = data.get("final_delta")
        return cls(
            id=str(data["id"]),
            identity=str(data["identity"]),
            scope=str(data["scope"]),
            event_kind=EventKind(str(data["event_kind"])),
            classification=QualityLevel(str(data["classification"])),
            confidence=float(data["confidence"]),
            proposed_delta=int(data["proposed_delta"]),
            status=EvaluationStatus(str(data["status"])),
            rationale=str(data.get("rationale") or ""),
            maintainer_note=data.get("maintainer_note"),
            final_delta=int(final_delta) if final_delta is not None else None,
            decided_by=data.get("decided_by"),
            created_at=datetime.fromisoformat(str(data["created_at"])),
            updated_at=datetime.fromisoformat(str(data["updated_at"])),
        )
