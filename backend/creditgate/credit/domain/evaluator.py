"""Quality evaluator contract consumed by the evaluation pipeline."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping, Protocol

from creditgate.credit.domain.errors import EvaluatorUnavailable
from creditgate.credit.domain.scoring import QualityLevel


class ContentType(str, Enum):
    PULL_REQUEST = "pull_request"
    COMMENT = "comment"
    REVIEW = "review"


@dataclass(frozen=True, slots=True)
class EvalContext:
    """Surrounding information handed to the evaluator with the content."""

    content_type: ContentType
    title: str | None = None
    body: str | None = None
    diff_summary: str | None = None
    thread_context: str | None = None
    extra: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class EvaluationResult:
    classification: QualityLevel
    confidence: float
    rationale: str


class Evaluator(Protocol):
    provider: str

    async def evaluate(self, content: str, context: EvalContext) -> EvaluationResult:
        ...


def parse_result(raw: Mapping[str, Any]) -> EvaluationResult:
    """Validate an evaluator reply; raise EvaluatorUnavailable when unusable."""

    if not isinstance(raw, Mapping):
        raise EvaluatorUnavailable("evaluator reply is not an object")
    try:
        classification = QualityLevel(str(raw["classification"]).strip().lower())
    except (KeyError, ValueError) as exc:
        raise EvaluatorUnavailable(f"invalid classification: {raw.get('classification')!r}") from exc
    confidence = raw.get("confidence")
    if isinstance(confidence, bool) or not isinstance(confidence, (int, float)):
        raise EvaluatorUnavailable("confidence must be a number")
    confidence = float(confidence)
    if math.isnan(confidence) or not 0.0 <= confidence <= 1.0:
        raise EvaluatorUnavailable(f"confidence out of range: {confidence}")
    rationale = raw.get("reasoning", raw.get("rationale", ""))
    return EvaluationResult(classification=classification, confidence=confidence, rationale=str(rationale or ""))


def check_result(result: object) -> EvaluationResult:
    if not isinstance(result, EvaluationResult):
        raise EvaluatorUnavailable(f"unexpected evaluator result: {type(result).__name__}")
    if not isinstance(result.classification, QualityLevel):
        raise EvaluatorUnavailable("classification must be a quality level")
    if math.isnan(result.confidence) or not 0.0 <= result.confidence <= 1.0:
        raise EvaluatorUnavailable(f"confidence out of range: {result.confidence}")
    return result
