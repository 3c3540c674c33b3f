"""Collaborators that combine scene documents, catalogs, and detectors.

Responsibilities:
- Resolve characters from the scene document or derive them with a language model.
- Serve the provider voice catalog and persist voice assignments per session.
- Pair effect detection with the local effect library.
"""

from __future__ import annotations

import json
from typing import Any, Callable, Mapping, Sequence

from .io.effect_library import EffectLibrary
from .io.storage import DurableStore
from .llm.character_extractor import OpenAICharacterExtractor
from .llm.effect_detector import OpenAIEffectDetector
from .models import EffectSpec, Entity, VoiceAssignment, VoiceResource

ASSIGNMENTS_KEY_PREFIX = "voice-assignments:"


def assignments_key(session_id: str) -> str:
    """Return the record key holding a session's voice assignments."""

    return f"{ASSIGNMENTS_KEY_PREFIX}{session_id}"


class CatalogEntityService:
    """Entity service over declared characters, an extractor, and a voice catalog."""

    def __init__(
        self,
        store: DurableStore,
        extractor: OpenAICharacterExtractor,
        voice_pool: Callable[[], list[VoiceResource]],
        declared_characters: Sequence[Entity] = (),
    ) -> None:
        self._store = store
        self._extractor = extractor
        self._voice_pool = voice_pool
        self._declared = tuple(declared_characters)

    async def resolve_entities(self, session_id: str) -> list[Entity]:
        return list(self._declared)

    async def derive_entities(self, session_id: str, source_text: str) -> list[Entity]:
        return await self._extractor.extract(source_text)

    async def load_voice_pool(self) -> list[VoiceResource]:
        return list(self._voice_pool())

    async def persist_assignments(
        self, session_id: str, assignments: Sequence[VoiceAssignment]
    ) -> None:
        """Overwrite the stored assignments for a session."""

        payload = [assignment.to_dict() for assignment in assignments]
        self._store.put(
            assignments_key(session_id),
            json.dumps(payload, ensure_ascii=False, sort_keys=True).encode("utf-8"),
        )

    def stored_assignments(self, session_id: str) -> list[dict[str, Any]]:
        """Return the persisted assignments for a session, or an empty list."""

        raw = self._store.get(assignments_key(session_id))
        if raw is None:
            return []
        return list(json.loads(raw.decode("utf-8")))


class LibraryEffectService:
    """Effect service pairing model-based detection with the local library."""

    def __init__(self, detector: OpenAIEffectDetector, library: EffectLibrary) -> None:
        self._detector = detector
        self._library = library

    async def detect(self, text: str, context: Mapping[str, Any]) -> list[EffectSpec]:
        return await self._detector.detect(text, context)

    async def is_cached(self, effect_key: str) -> bool:
        return await self._library.is_cached(effect_key)
