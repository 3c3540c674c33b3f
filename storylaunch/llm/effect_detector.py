"""Language-model sound effect detection."""

from __future__ import annotations

import asyncio
import re
from typing import Any, Mapping

from ..models import EffectSpec
from .cache import ResponseCache
from .openai_client import OpenAIChatClient, OpenAIProviderError, decode_json_reply
from .prompts import PromptLibrary
from .rate_limiter import RateLimiter

MAX_DETECTED_EFFECTS = 5
_VALID_TIMINGS = {"beginning", "middle", "end"}
_KEY_PATTERN = re.compile(r"^[a-z0-9_]+(\.[a-z0-9_]+)*$")


def _normalize_key(value: Any) -> str | None:
    if not isinstance(value, str):
        return None
    key = re.sub(r"[\s-]+", "_", value.strip().lower())
    return key if _KEY_PATTERN.match(key) else None


def _effect_from_payload(item: Any) -> EffectSpec | None:
    """Build an effect cue from one reply item, skipping malformed keys."""

    if not isinstance(item, dict):
        return None
    key = _normalize_key(item.get("key"))
    if key is None:
        return None
    timing = item.get("timing")
    volume = item.get("volume")
    description = item.get("description")
    return EffectSpec(
        key=key,
        description=description.strip() if isinstance(description, str) else "",
        timing=timing if timing in _VALID_TIMINGS else "middle",
        volume=(
            min(1.0, max(0.0, float(volume)))
            if isinstance(volume, int | float) and not isinstance(volume, bool)
            else 0.3
        ),
        loop=item.get("loop") is True,
    )


class OpenAIEffectDetector:
    """Detect sound effect cues in scene text with OpenAI chat-completions."""

    def __init__(
        self,
        model: str = "gpt-4.1-mini",
        provider_id: str = "openai",
        api_key: str | None = None,
        response_cache: ResponseCache | None = None,
        rate_limiter: RateLimiter | None = None,
    ) -> None:
        self.model = model
        self.provider_id = provider_id
        self.cache = response_cache if response_cache is not None else ResponseCache()
        self.client = OpenAIChatClient(api_key=api_key, rate_limiter=rate_limiter)
        self.prompts = PromptLibrary()

    def detect_sync(self, text: str, context: Mapping[str, Any]) -> list[EffectSpec]:
        """Return at most `MAX_DETECTED_EFFECTS` unique cues for a scene."""

        cache_key = self.cache.make_key(
            provider=self.provider_id,
            model=self.model,
            operation="detect_effects",
            input_identity={"text": text, "context": dict(context)},
        )
        reply = self.cache.get(cache_key)
        if reply is None:
            reply = self.client.chat_completion_text(
                model=self.model,
                system_prompt=self.prompts.json_system_prompt("a sound designer"),
                user_prompt=self.prompts.detect_effects_prompt(text, context),
                temperature=0.0,
                response_format_json=True,
            )
            self.cache.set(cache_key, reply)

        items = decode_json_reply(reply).get("effects", [])
        if not isinstance(items, list):
            raise OpenAIProviderError("Effect reply field `effects` must be a list.")
        effects: dict[str, EffectSpec] = {}
        for item in items:
            effect = _effect_from_payload(item)
            if effect is not None:
                effects.setdefault(effect.key, effect)
        return list(effects.values())[:MAX_DETECTED_EFFECTS]

    async def detect(self, text: str, context: Mapping[str, Any]) -> list[EffectSpec]:
        return await asyncio.to_thread(self.detect_sync, text, context)
