"""Failure taxonomy for the credit engine."""

from __future__ import annotations

from typing import Sequence


class CreditEngineError(Exception):
    """Base class for credit engine failures."""


class TransientStoreError(CreditEngineError):
    """A store write failed in a way that is safe to retry."""


class StoreUnavailable(CreditEngineError):
    """The ledger store could not be reached at all."""


class ConflictExhausted(TransientStoreError):
    """Optimistic writes kept losing the race for the same actor key."""

    def __init__(self, actor_key: str, attempts: int) -> None:
        super().__init__(f"conflict_exhausted:{actor_key}:{attempts}")
        self.actor_key = actor_key
        self.attempts = attempts


class InvalidTransition(CreditEngineError):
    """A review queue entry was asked to leave a terminal state."""

    def __init__(self, evaluation_id: str, status: str) -> None:
        super().__init__(f"invalid_transition:{evaluation_id}:{status}")
        self.evaluation_id = evaluation_id
        self.status = status


class EvaluationNotFound(CreditEngineError):
    pass


class ActorNotFound(CreditEngineError):
    pass


class EvaluatorUnavailable(CreditEngineError):
    """The evaluator timed out, failed, or returned something unusable."""


class MalformedScopeConfig(CreditEngineError):
    """Scope configuration failed validation."""

    def __init__(self, problems: Sequence[str]) -> None:
        super().__init__("malformed_scope_config: " + "; ".join(problems))
        self.problems = tuple(problems)
