"""Evaluator implementations selectable by configuration."""

from creditgate.credit.evaluators.factory import build_evaluator

__all__ = ["build_evaluator"]
