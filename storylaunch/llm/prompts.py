"""Prompt template library for language-model collaborators.

Responsibilities:
- Centralize prompt text for character extraction, effect detection, and safety review.
- Keep every prompt deterministic for a given input so responses can be cached.
"""

from __future__ import annotations

import json
from typing import Any, Mapping, Sequence

INTENSITY_DIMENSIONS = ("violence", "gore", "scary", "romance", "language")

_AUDIENCE_LABELS = {
    "children": "Children (ages 3-10)",
    "mature": "Mature audiences",
}

_SOFTENING_ACTIONS = {
    "violence": "soften physical conflict and reduce descriptions of harm",
    "gore": "remove blood and injury detail, use implication instead",
    "scary": "reduce tension and soften frightening elements",
    "romance": "keep affection age-appropriate",
    "language": "replace strong language with family-friendly alternatives",
}


class PromptLibrary:
    """Build prompt strings for supported language-model tasks."""

    def json_system_prompt(self, role: str) -> str:
        """Return a system prompt that pins the reply to a single JSON object."""

        return f"You are {role}. Reply with one JSON object and no commentary."

    def extract_characters_prompt(self, source_text: str) -> str:
        """Return the character extraction prompt for a synopsis or scene."""

        return (
            "List the named characters who speak or act in the story below.\n"
            "Exclude the narrator. For each character give a gender of `female`, `male`, "
            "or `neutral`, a short narrative role, and a one-sentence description.\n"
            'Return JSON: {"characters": [{"name": "", "gender": "", "role": "", '
            '"description": ""}]}\n\n'
            f"{source_text}"
        )

    def detect_effects_prompt(self, text: str, context: Mapping[str, Any]) -> str:
        """Return the sound effect detection prompt for one scene."""

        return (
            "Identify up to five ambient or event sound effects that would enrich a "
            "narrated reading of the scene below.\n"
            "Use dotted library keys such as `weather.rain_light` or `doors.creak`, where "
            "the first segment is the category.\n"
            "`timing` is one of `beginning`, `middle`, `end`; `volume` is between 0 and 1.\n"
            'Return JSON: {"effects": [{"key": "", "description": "", "timing": "", '
            '"volume": 0.3, "loop": false}]}\n\n'
            f"Context: {json.dumps(dict(context), sort_keys=True, default=str)}\n\n"
            f"{text}"
        )

    def analyze_safety_prompt(self, text: str, audience: str) -> str:
        """Return the intensity scoring prompt."""

        audience_label = _AUDIENCE_LABELS.get(audience, "General/family audience")
        dimensions = ", ".join(f'"{name}": 0' for name in INTENSITY_DIMENSIONS)
        return (
            "Rate the intensity of the story content below from 0 (none) to 100 (extreme) "
            f"for each of: {', '.join(INTENSITY_DIMENSIONS)}.\n"
            f"Audience: {audience_label}.\n"
            f'Return JSON: {{"scores": {{{dimensions}}}, "issues": [""], "summary": ""}}\n\n'
            f"{text}"
        )

    def limit_breach_finding(self, dimension: str, score: int, limit: int) -> str:
        """Return the finding recorded when one dimension exceeds its limit."""

        action = _SOFTENING_ACTIONS.get(dimension, "tone it down")
        return f"{dimension} {score}/100 exceeds limit {limit}/100: {action}"

    def adjust_safety_prompt(self, text: str, findings: Sequence[str]) -> str:
        """Return the rewrite prompt for text that exceeds intensity limits."""

        instructions = "\n".join(f"- {finding}" for finding in findings)
        return (
            "Rewrite the story content below so it addresses every finding listed.\n"
            "Keep the plot, characters, key events, tone, and approximate length. "
            "Only change what a finding names.\n"
            "Preserve bracketed tags exactly.\n"
            f"{instructions}\n"
            "Return only the rewritten text.\n\n"
            f"{text}"
        )
