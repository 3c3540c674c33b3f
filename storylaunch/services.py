"""Collaborator contracts consumed by the stage runners.

Every method is asynchronous. Adapters backed by blocking clients run their calls in
worker threads so the event loop driving a run is never blocked.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping, Protocol, Sequence

from .models import EffectSpec, Entity, ScoreReport, SynthesisResult, VoiceAssignment, VoiceResource


class EntityService(Protocol):
    """Character lookup, derivation, voice pool access, and assignment persistence."""

    async def resolve_entities(self, session_id: str) -> list[Entity]:
        """Return characters already known for the session."""

    async def derive_entities(self, session_id: str, source_text: str) -> list[Entity]:
        """Derive characters from a synopsis or scene text."""

    async def load_voice_pool(self) -> list[VoiceResource]:
        """Return voices available for character casting."""

    async def persist_assignments(
        self, session_id: str, assignments: Sequence[VoiceAssignment]
    ) -> None:
        """Store voice assignments, replacing earlier ones."""


class EffectService(Protocol):
    """Sound effect detection and library lookup."""

    async def detect(self, text: str, context: Mapping[str, Any]) -> list[EffectSpec]:
        """Detect sound effect cues in scene text."""

    async def is_cached(self, effect_key: str) -> bool:
        """Return whether an effect asset is already available."""


class AssetService(Protocol):
    """Cover art generation."""

    async def generate(self, prompt: str, style: str) -> str:
        """Generate an image and return its URL."""


class SafetyService(Protocol):
    """Content safety scoring and adjustment."""

    async def analyze(self, text: str, policy: Mapping[str, Any]) -> ScoreReport:
        """Score text against audience intensity limits."""

    async def adjust(self, text: str, report: ScoreReport) -> str:
        """Rewrite text so that it falls within limits."""


class SynthesisService(Protocol):
    """Text-to-speech synthesis."""

    async def synthesize(self, text: str, voice_id: str) -> SynthesisResult:
        """Synthesize speech for text with one voice."""


@dataclass(frozen=True, slots=True)
class StageServices:
    """Bundle of collaborators handed to every stage runner."""

    entities: EntityService
    effects: EffectService
    assets: AssetService
    safety: SafetyService
    synthesis: SynthesisService
