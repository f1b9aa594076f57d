"""OpenAI-compatible chat completions evaluator."""

from __future__ import annotations

from dataclasses import dataclass

import httpx

from creditgate.credit.domain.errors import EvaluatorUnavailable
from creditgate.credit.domain.evaluator import EvalContext, EvaluationResult
from creditgate.credit.evaluators.prompt import SYSTEM_PROMPT, build_user_prompt, parse_reply

DEFAULT_MODEL = "gpt-4o"


@dataclass
class OpenAIEvaluator:
    http: httpx.AsyncClient
    api_key: str
    model: str = DEFAULT_MODEL
    base_url: str = "https://api.openai.com/v1"
    temperature: float = 0.3
    provider: str = "openai"

    async def evaluate(self, content: str, context: EvalContext) -> EvaluationResult:
        try:
            response = await self.http.post(
                f"{self.base_url.rstrip('/')}/chat/completions",
                headers={"Authorization": f"Bearer {self.api_key}"},
                json={
                    "model": self.model,
                    "temperature": self.temperature,
                    "response_format": {"type": "json_object"},
                    "messages": [
                        {"role": "system", "content": SYSTEM_PROMPT},
                        {"role": "user", "content": build_user_prompt(content, context)},
                    ],
                },
            )
            response.raise_for_status()
            body = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise EvaluatorUnavailable(f"openai request failed: {exc}") from exc
        try:
            text = body["choices"][0]["message"]["content"] or ""
        except (KeyError, IndexError, TypeError) as exc:
            raise EvaluatorUnavailable("unexpected openai response shape") from exc
        return parse_reply(text)
