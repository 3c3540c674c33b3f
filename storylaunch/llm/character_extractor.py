"""Language-model character extraction.

Responsibilities:
- Derive story characters from a synopsis or scene text.
- Reuse cached replies for repeated extraction of the same text.
"""

from __future__ import annotations

import asyncio
from typing import Any

from ..models import Entity
from .cache import ResponseCache
from .openai_client import OpenAIChatClient, OpenAIProviderError, decode_json_reply
from .prompts import PromptLibrary
from .rate_limiter import RateLimiter

_KNOWN_GENDERS = {"female", "male", "neutral"}


def _entity_from_payload(item: Any) -> Entity | None:
    """Build an entity from one reply item, skipping nameless entries."""

    if not isinstance(item, dict):
        return None
    name = item.get("name")
    if not isinstance(name, str) or not name.strip():
        return None
    gender = item.get("gender")
    normalized_gender = gender.strip().lower() if isinstance(gender, str) else None
    role = item.get("role")
    description = item.get("description")
    return Entity(
        name=name.strip(),
        gender=normalized_gender if normalized_gender in _KNOWN_GENDERS else None,
        role=role.strip() if isinstance(role, str) and role.strip() else "character",
        description=description.strip() if isinstance(description, str) else "",
    )


class OpenAICharacterExtractor:
    """OpenAI-backed character extraction with a response cache."""

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

    def extract_sync(self, source_text: str) -> list[Entity]:
        """Extract characters from text, blocking on the provider call."""

        cache_key = self.cache.make_key(
            provider=self.provider_id,
            model=self.model,
            operation="extract_characters",
            input_identity={"source_text": source_text},
        )
        reply = self.cache.get(cache_key)
        if reply is None:
            reply = self.client.chat_completion_text(
                model=self.model,
                system_prompt=self.prompts.json_system_prompt("a story analyst"),
                user_prompt=self.prompts.extract_characters_prompt(source_text),
                temperature=0.0,
                response_format_json=True,
            )
            self.cache.set(cache_key, reply)

        characters = decode_json_reply(reply).get("characters", [])
        if not isinstance(characters, list):
            raise OpenAIProviderError("Character reply field `characters` must be a list.")
        entities: dict[str, Entity] = {}
        for item in characters:
            entity = _entity_from_payload(item)
            if entity is not None and entity.name.lower() != "narrator":
                entities.setdefault(entity.name.lower(), entity)
        return list(entities.values())

    async def extract(self, source_text: str) -> list[Entity]:
        """Extract characters from text in a worker thread."""

        return await asyncio.to_thread(self.extract_sync, source_text)

    @property
    def retry_attempt_count(self) -> int:
        """Return retry attempt count performed by the underlying client."""

        return self.client.retry_attempt_count

