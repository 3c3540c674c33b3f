"""Gender-aware voice casting for story characters.

Responsibilities:
- Decide whether a pool voice suits a character's gender.
- Assign voices round-robin within each gender category, preferring unused voices.
- Resolve display names for voice ids with a per-run cache.
"""

from __future__ import annotations

from typing import Sequence

from ..errors import StageError
from ..models import Entity, VoiceAssignment, VoiceResource
from ..models.stages import VOICES

NARRATOR_FALLBACK_NAME = "Narrator"
UNKNOWN_VOICE_NAME = "Voice Actor"

_FEMALE_TOKENS = frozenset({"female", "f"})
_MALE_TOKENS = frozenset({"male", "m"})


def voice_gender_matches(voice_gender: str | None, character_gender: str) -> bool:
    """Return whether a voice suits a character of the given gender.

    Neutral characters accept any voice, and voices without gender data match any
    character.
    """

    character = character_gender.strip().lower()
    if character == "neutral" or not voice_gender:
        return True
    voice = voice_gender.strip().lower()
    if character in _FEMALE_TOKENS:
        return voice in _FEMALE_TOKENS
    if character in _MALE_TOKENS:
        return voice in _MALE_TOKENS
    return True


def sort_voice_pool(pool: Sequence[VoiceResource]) -> list[VoiceResource]:
    """Order voices with gender data first, then by name and id."""

    return sorted(
        pool,
        key=lambda voice: (voice.gender is None, voice.name.lower(), voice.voice_id),
    )


class VoiceNameResolver:
    """Resolve voice display names from a pool, caching lookups for one run."""

    def __init__(self, pool: Sequence[VoiceResource]) -> None:
        self._names = {voice.voice_id: voice.name for voice in pool}
        self._cache: dict[str | None, str] = {}

    def name_for(self, voice_id: str | None) -> str:
        if voice_id in self._cache:
            return self._cache[voice_id]
        if not voice_id:
            name = NARRATOR_FALLBACK_NAME
        else:
            name = self._names.get(voice_id, UNKNOWN_VOICE_NAME)
        self._cache[voice_id] = name
        return name


class RoundRobinCaster:
    """Assign character voices from a deterministic pool.

    The narrator voice is never handed to a character while multi-voice casting is
    active. Each gender category keeps its own round-robin counter.
    """

    def __init__(self, pool: Sequence[VoiceResource], narrator_voice_id: str) -> None:
        self._pool = sort_voice_pool(pool)
        self._narrator_voice_id = narrator_voice_id
        self._used: set[str] = set()
        self._counters: dict[str, int] = {}

    def cast(self, entity: Entity) -> VoiceResource:
        """Return the voice assigned to one character.

        Raises:
            StageError: If the character has no gender or no pool voice matches it.
        """

        gender = (entity.gender or "").strip().lower()
        if not gender:
            raise StageError(
                stage=VOICES,
                detail=f"Character `{entity.name}` has no gender; voice casting requires one.",
                hint="Declare a gender for every character in the scene document.",
            )

        candidates = [
            voice
            for voice in self._pool
            if voice.voice_id != self._narrator_voice_id
            and voice_gender_matches(voice.gender, gender)
        ]
        unused = [voice for voice in candidates if voice.voice_id not in self._used]
        choices = unused or candidates
        if not choices:
            raise StageError(
                stage=VOICES,
                detail=f"No voice available for character `{entity.name}` (gender: {gender}).",
                hint="Add voices of that gender to the pool or disable multi-voice.",
            )

        index = self._counters.get(gender, 0)
        voice = choices[index % len(choices)]
        self._counters[gender] = index + 1
        self._used.add(voice.voice_id)
        return voice


def cast_voices(
    entities: Sequence[Entity],
    pool: Sequence[VoiceResource],
    narrator_voice_id: str,
    *,
    multi_voice: bool,
) -> list[VoiceAssignment]:
    """Build the narrator roster: the narrator first, then one entry per character."""

    resolver = VoiceNameResolver(pool)
    narrator_name = resolver.name_for(narrator_voice_id)
    assignments = [
        VoiceAssignment(
            voice_id=narrator_voice_id,
            voice_name=narrator_name,
            kind="narrator",
        )
    ]

    caster = RoundRobinCaster(pool, narrator_voice_id) if multi_voice and pool else None
    for entity in entities:
        if caster is None:
            assignments.append(
                VoiceAssignment(
                    voice_id=narrator_voice_id,
                    voice_name=narrator_name,
                    kind="character",
                    character=entity.name,
                    role=entity.role,
                    shares_narrator_voice=True,
                )
            )
            continue
        voice = caster.cast(entity)
        assignments.append(
            VoiceAssignment(
                voice_id=voice.voice_id,
                voice_name=resolver.name_for(voice.voice_id),
                kind="character",
                character=entity.name,
                role=entity.role,
            )
        )
    return assignments
