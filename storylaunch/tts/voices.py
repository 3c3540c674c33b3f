"""Voice catalog for OpenAI speech synthesis.

Responsibilities:
- Describe the provider voices available for narration and character casting.
- Convert profiles into the pool records consumed by voice casting.
"""

from __future__ import annotations

from dataclasses import dataclass

from ..models import VoiceResource


@dataclass(frozen=True, slots=True)
class VoiceProfile:
    """Declarative voice profile used by TTS providers.

    Attributes:
        name: Human-readable profile name.
        provider_voice_id: Provider-native voice identifier.
        gender: Perceived voice gender, `None` when neutral.
        speaking_rate: Relative speaking rate multiplier.
    """

    name: str
    provider_voice_id: str
    gender: str | None = None
    speaking_rate: float = 1.0

    def to_resource(self) -> VoiceResource:
        """Return the casting pool record for this profile."""

        return VoiceResource(voice_id=self.provider_voice_id, name=self.name, gender=self.gender)


OPENAI_VOICE_PROFILES: tuple[VoiceProfile, ...] = (
    VoiceProfile(name="Alloy", provider_voice_id="alloy"),
    VoiceProfile(name="Ash", provider_voice_id="ash", gender="male"),
    VoiceProfile(name="Ballad", provider_voice_id="ballad", gender="male"),
    VoiceProfile(name="Coral", provider_voice_id="coral", gender="female"),
    VoiceProfile(name="Echo", provider_voice_id="echo", gender="male"),
    VoiceProfile(name="Fable", provider_voice_id="fable"),
    VoiceProfile(name="Nova", provider_voice_id="nova", gender="female"),
    VoiceProfile(name="Onyx", provider_voice_id="onyx", gender="male"),
    VoiceProfile(name="Sage", provider_voice_id="sage", gender="female"),
    VoiceProfile(name="Shimmer", provider_voice_id="shimmer", gender="female"),
    VoiceProfile(name="Verse", provider_voice_id="verse", gender="male"),
)


def profile_for(voice_id: str) -> VoiceProfile | None:
    """Return the catalog profile for a provider voice id, if known."""

    for profile in OPENAI_VOICE_PROFILES:
        if profile.provider_voice_id == voice_id:
            return profile
    return None


def openai_voice_pool() -> list[VoiceResource]:
    """Return every catalog voice as a casting pool record."""

    return [profile.to_resource() for profile in OPENAI_VOICE_PROFILES]
