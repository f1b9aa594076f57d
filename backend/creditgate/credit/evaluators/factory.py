"""Select an evaluator implementation from settings."""

from __future__ import annotations

import httpx

from creditgate.credit.domain.evaluator import Evaluator
from creditgate.credit.evaluators.anthropic import DEFAULT_MODEL as ANTHROPIC_DEFAULT_MODEL
from creditgate.credit.evaluators.anthropic import AnthropicEvaluator
from creditgate.credit.evaluators.mock import MockEvaluator
from creditgate.credit.evaluators.openai import DEFAULT_MODEL as OPENAI_DEFAULT_MODEL
from creditgate.credit.evaluators.openai import OpenAIEvaluator
from creditgate.settings import Settings


def build_evaluator(config: Settings, *, http: httpx.AsyncClient | None = None) -> Evaluator:
    provider = config.evaluator_provider.lower()
    if provider == "mock":
        return MockEvaluator()
    client = http or httpx.AsyncClient(timeout=config.evaluator_timeout_seconds)
    if provider == "anthropic":
        if not config.anthropic_api_key:
            raise ValueError("ANTHROPIC_API_KEY is required for the anthropic evaluator")
        return AnthropicEvaluator(
            http=client,
            api_key=config.anthropic_api_key,
            model=config.evaluator_model or ANTHROPIC_DEFAULT_MODEL,
        )
    if provider == "openai":
        if not config.openai_api_key:
            raise ValueError("OPENAI_API_KEY is required for the openai evaluator")
        return OpenAIEvaluator(
            http=client,
            api_key=config.openai_api_key,
            model=config.evaluator_model or OPENAI_DEFAULT_MODEL,
            base_url=config.openai_base_url,
        )
    raise ValueError(f"unknown evaluator provider: {config.evaluator_provider}")
