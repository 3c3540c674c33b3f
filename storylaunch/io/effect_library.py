"""Local sound effect library lookup.

An effect key such as `weather.rain_light` is available when the library directory
holds `weather.rain_light.mp3`, `.wav`, or `.ogg`.
"""

from __future__ import annotations

from pathlib import Path

EFFECT_FILE_SUFFIXES = (".mp3", ".wav", ".ogg")


class EffectLibrary:
    """Resolve effect keys to audio files under a library directory."""

    def __init__(self, root: Path | None) -> None:
        """Initialize the library; a `None` root holds no effects."""

        self.root = root

    def path_for(self, effect_key: str) -> Path | None:
        """Return the first existing file for an effect key, if any."""

        if self.root is None or not effect_key or "/" in effect_key or "\\" in effect_key:
            return None
        for suffix in EFFECT_FILE_SUFFIXES:
            candidate = self.root / f"{effect_key}{suffix}"
            if candidate.is_file():
                return candidate
        return None

    async def is_cached(self, effect_key: str) -> bool:
        """Return whether the effect asset exists locally."""

        return self.path_for(effect_key) is not None
