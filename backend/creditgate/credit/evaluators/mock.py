"""Keyword-driven evaluator for development and tests."""

from __future__ import annotations

from creditgate.credit.domain.evaluator import EvalContext, EvaluationResult
from creditgate.credit.domain.scoring import QualityLevel

_SPAM_HINTS = ("spam", "buy now", "click here", "free money", "viagra")
_LOW_HINTS = ("low quality", "trivial", "wip", "test commit")
_HIGH_HINTS = ("high quality", "well-structured", "comprehensive", "implements", "fixes #")


class MockEvaluator:
    provider = "mock"

    def __init__(self, fixed: QualityLevel | None = None, *, confidence: float = 0.95) -> None:
        self._fixed = fixed
        self._confidence = confidence

    async def evaluate(self, content: str, context: EvalContext) -> EvaluationResult:  # noqa: ARG002 - interface parity
        if self._fixed is not None:
            return EvaluationResult(self._fixed, self._confidence, f"mock evaluation: {self._fixed.value}")
        lower = content.lower()
        if any(hint in lower for hint in _SPAM_HINTS):
            return EvaluationResult(QualityLevel.SPAM, 0.95, "content contains spam indicators")
        if any(hint in lower for hint in _LOW_HINTS) or len(lower) < 10:
            return EvaluationResult(QualityLevel.LOW, 0.85, "content appears low effort or incomplete")
        if any(hint in lower for hint in _HIGH_HINTS) or ("test" in lower and "documentation" in lower):
            return EvaluationResult(QualityLevel.HIGH, 0.90, "content is thorough and well described")
        return EvaluationResult(QualityLevel.ACCEPTABLE, 0.80, "content meets basic quality standards")
