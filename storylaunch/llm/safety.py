"""Language-model safety review.

Responsibilities:
- Score text intensity per dimension and compare it with audience limits.
- Rewrite text that exceeds limits, guided by the recorded findings.

Dimensions without an explicit limit use `DEFAULT_INTENSITY_LIMIT`.
"""

from __future__ import annotations

import asyncio
from typing import Any, Mapping

from ..models import ScoreReport
from .openai_client import OpenAIChatClient, OpenAIProviderError, decode_json_reply
from .prompts import INTENSITY_DIMENSIONS, PromptLibrary
from .rate_limiter import RateLimiter

DEFAULT_INTENSITY_LIMIT = 50


def _clamp_score(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int | float):
        return 0
    return int(min(100, max(0, round(value))))


def resolve_limits(policy: Mapping[str, Any]) -> dict[str, int]:
    """Return a limit for every intensity dimension."""

    configured = policy.get("intensity_limits") or {}
    limits = {name: DEFAULT_INTENSITY_LIMIT for name in INTENSITY_DIMENSIONS}
    for name, value in dict(configured).items():
        limits[str(name)] = _clamp_score(value)
    return limits


class OpenAISafetyReviewer:
    """Score and adjust scene text with OpenAI chat-completions."""

    def __init__(
        self,
        model: str = "gpt-4.1-mini",
        api_key: str | None = None,
        rate_limiter: RateLimiter | None = None,
    ) -> None:
        self.model = model
        self.client = OpenAIChatClient(api_key=api_key, rate_limiter=rate_limiter)
        self.prompts = PromptLibrary()

    def analyze_sync(self, text: str, policy: Mapping[str, Any]) -> ScoreReport:
        """Score `text` and record a finding for every limit it breaches."""

        audience = str(policy.get("audience") or "general")
        reply = self.client.chat_completion_text(
            model=self.model,
            system_prompt=self.prompts.json_system_prompt("a children's media content reviewer"),
            user_prompt=self.prompts.analyze_safety_prompt(text, audience),
            temperature=0.0,
            response_format_json=True,
        )
        payload = decode_json_reply(reply)
        raw_scores = payload.get("scores")
        if not isinstance(raw_scores, dict):
            raise OpenAIProviderError("Safety reply field `scores` must be an object.")

        scores = {name: _clamp_score(raw_scores.get(name)) for name in INTENSITY_DIMENSIONS}
        limits = resolve_limits(policy)
        breaches = [
            self.prompts.limit_breach_finding(name, scores[name], limits[name])
            for name in INTENSITY_DIMENSIONS
            if scores[name] > limits[name]
        ]
        reported_issues = payload.get("issues")
        issues = [
            item.strip()
            for item in (reported_issues if isinstance(reported_issues, list) else [])
            if isinstance(item, str) and item.strip()
        ]
        summary = payload.get("summary")
        return ScoreReport(
            scores=scores,
            within_limits=not breaches,
            issues=tuple(breaches + issues),
            summary=summary.strip() if isinstance(summary, str) else "",
        )

    def adjust_sync(self, text: str, report: ScoreReport) -> str:
        """Rewrite `text` to address the findings of `report`."""

        return self.client.chat_completion_text(
            model=self.model,
            system_prompt="You are a careful story editor. Return only the rewritten story.",
            user_prompt=self.prompts.adjust_safety_prompt(text, report.issues),
            temperature=0.2,
        )

    async def analyze(self, text: str, policy: Mapping[str, Any]) -> ScoreReport:
        return await asyncio.to_thread(self.analyze_sync, text, policy)

    async def adjust(self, text: str, report: ScoreReport) -> str:
        return await asyncio.to_thread(self.adjust_sync, text, report)
