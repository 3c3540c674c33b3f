"""Unit tests for gender-aware round-robin voice casting."""

from __future__ import annotations

import pytest

from storylaunch.errors import StageError
from storylaunch.models import Entity, VoiceResource
from storylaunch.pipeline.casting import (
    RoundRobinCaster,
    VoiceNameResolver,
    cast_voices,
    sort_voice_pool,
    voice_gender_matches,
)
from tests.doubles import DEFAULT_POOL


@pytest.mark.parametrize(
    ("voice_gender", "character_gender", "expected"),
    [
        ("female", "female", True),
        ("F", "female", True),
        ("male", "female", False),
        ("m", "male", True),
        ("female", "male", False),
        (None, "male", True),
        ("male", "neutral", True),
        ("female", "nonbinary", True),
    ],
)
def test_voice_gender_matches(
    voice_gender: str | None, character_gender: str, expected: bool
) -> None:
    """Voices match their gender; neutral characters and ungendered voices match all."""

    assert voice_gender_matches(voice_gender, character_gender) is expected


def test_sort_voice_pool_puts_gendered_voices_first() -> None:
    """Pools sort gendered voices by name before voices without gender data."""

    ordered = [voice.voice_id for voice in sort_voice_pool(DEFAULT_POOL)]

    assert ordered == ["coral", "echo", "nova", "onyx", "alloy"]


def test_cast_voices_assigns_distinct_gendered_voices() -> None:
    """Each character gets a matching voice that is never the narrator voice."""

    assignments = cast_voices(
        [Entity("Mira", "female", "hero"), Entity("Tobin", "male", "friend")],
        DEFAULT_POOL,
        "nova",
        multi_voice=True,
    )

    assert [(item.kind, item.character, item.voice_id) for item in assignments] == [
        ("narrator", None, "nova"),
        ("character", "Mira", "coral"),
        ("character", "Tobin", "echo"),
    ]
    assert assignments[0].voice_name == "Nova"
    assert assignments[1].to_dict()["role"] == "hero"
    assert not any(item.shares_narrator_voice for item in assignments)


def test_round_robin_prefers_unused_voices_then_cycles() -> None:
    """Females cycle over matching voices, preferring ones not used yet."""

    caster = RoundRobinCaster(DEFAULT_POOL, "nova")

    picks = [
        caster.cast(Entity(name, "female")).voice_id for name in ("Mira", "Lena", "Ada")
    ]

    assert picks == ["coral", "alloy", "coral"]


def test_casting_is_deterministic_for_shuffled_pools() -> None:
    """The same pool in any order produces the same assignments."""

    characters = [Entity("Mira", "female"), Entity("Tobin", "male"), Entity("Kit", "neutral")]

    first = cast_voices(characters, DEFAULT_POOL, "nova", multi_voice=True)
    second = cast_voices(characters, tuple(reversed(DEFAULT_POOL)), "nova", multi_voice=True)

    assert first == second


def test_single_voice_mode_shares_narrator() -> None:
    """Without multi-voice casting every character reuses the narrator voice."""

    assignments = cast_voices([Entity("Mira", "female")], DEFAULT_POOL, "nova", multi_voice=False)

    assert assignments[1].voice_id == "nova"
    assert assignments[1].shares_narrator_voice is True


def test_casting_requires_character_gender() -> None:
    """Characters without gender cannot be cast."""

    caster = RoundRobinCaster(DEFAULT_POOL, "nova")

    with pytest.raises(StageError, match="has no gender") as exc_info:
        caster.cast(Entity("Mystery"))

    assert exc_info.value.stage == "voices"


def test_casting_fails_when_no_voice_matches() -> None:
    """A pool with only the narrator voice leaves nothing to cast."""

    caster = RoundRobinCaster([VoiceResource("nova", "Nova", "female")], "nova")

    with pytest.raises(StageError, match="No voice available"):
        caster.cast(Entity("Mira", "female"))


def test_name_resolver_falls_back_for_missing_and_unknown_ids() -> None:
    """Missing ids resolve to the narrator label and unknown ids to a generic name."""

    resolver = VoiceNameResolver(DEFAULT_POOL)

    assert resolver.name_for("coral") == "Coral"
    assert resolver.name_for(None) == "Narrator"
    assert resolver.name_for("robot") == "Voice Actor"
