"""Anthropic Messages API evaluator."""

from __future__ import annotations

from dataclasses import dataclass

import httpx

from creditgate.credit.domain.errors import EvaluatorUnavailable
from creditgate.credit.domain.evaluator import EvalContext, EvaluationResult
from creditgate.credit.evaluators.prompt import SYSTEM_PROMPT, build_user_prompt, parse_reply

DEFAULT_MODEL = "claude-3-5-sonnet-20241022"


@dataclass
class AnthropicEvaluator:
    http: httpx.AsyncClient
    api_key: str
    model: str = DEFAULT_MODEL
    url: str = "https://api.anthropic.com/v1/messages"
    max_tokens: int = 1024
    provider: str = "anthropic"

    async def evaluate(self, content: str, context: EvalContext) -> EvaluationResult:
        try:
            response = await self.http.post(
                self.url,
                headers={
                    "x-api-key": self.api_key,
                    "anthropic-version": "2023-06-01",
                    "content-type": "application/json",
                },
                json={
                    "model": self.model,
                    "max_tokens": self.max_tokens,
                    "system": SYSTEM_PROMPT,
                    "messages": [{"role": "user", "content": build_user_prompt(content, context)}],
                },
            )
            response.raise_for_status()
            body = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise EvaluatorUnavailable(f"anthropic request failed: {exc}") from exc
        blocks = body.get("content") or []
        text = "".join(block.get("text", "") for block in blocks if block.get("type") == "text")
        return parse_reply(text)
