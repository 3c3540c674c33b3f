"""Stateless stage runners.

Every runner has the signature `async (run, content, services, report, token) -> dict`
and returns the stage result payload. Runners never mutate `run`; the orchestrator
records results and statuses. Fatal problems are raised as `StageError`.
"""

from __future__ import annotations

import asyncio
import base64
import re
import time
from dataclasses import replace
from typing import Any, Awaitable, Callable, Mapping, Sequence

from ..errors import StageError
from ..models import PipelineRun, SceneContent, SessionSettings, SynthesisResult
from ..models.stages import AUDIO, COVER, QA, SFX, VOICES
from ..services import StageServices
from ..telemetry.logger import RunLogger
from .cancellation import CancellationToken
from .casting import cast_voices

ProgressReport = Callable[[float, str], None]
StageRunner = Callable[
    [PipelineRun, SceneContent, StageServices, ProgressReport, CancellationToken],
    Awaitable[dict[str, Any]],
]

SFX_DETECTION_MIN_CHARS = 50
DEFAULT_COVER_TITLE = "Untitled Story"
AUDIO_FORMAT = "mp3"
CHOICE_AUDIO_FORMAT = "audio/mpeg"

_TAG_PATTERN = re.compile(r"\[[^\[\]]*\]")
_WHITESPACE_PATTERN = re.compile(r"\s+")
_CHOICE_ORDINALS = ("First", "Second", "Third", "Fourth", "Fifth")

_run_logger = RunLogger()


def strip_tags(text: str) -> str:
    """Remove bracketed markup such as `[CHAR:Name]` and collapse whitespace."""

    if not text:
        return ""
    return _WHITESPACE_PATTERN.sub(" ", _TAG_PATTERN.sub("", text)).strip()


def build_cover_prompt(settings: SessionSettings, mood: str | None) -> str:
    """Compose the cover art prompt from session metadata."""

    title = settings.title or DEFAULT_COVER_TITLE
    lines = [f'Book cover illustration for a story titled "{title}".']
    if settings.synopsis:
        lines.append(f"Story: {settings.synopsis}")
    if mood:
        lines.append(f"Mood: {mood}.")
    lines.append(f"Art style: {settings.cover_style}.")
    lines.append("Leave room for the title; do not render any other text.")
    return "\n".join(lines)


def build_intro_text(settings: SessionSettings) -> str | None:
    """Return the spoken title and synopsis trailer, or `None` without metadata."""

    if not settings.title and not settings.synopsis:
        return None
    parts: list[str] = []
    if settings.title:
        parts.append(f"{settings.title.rstrip('.')}.")
    if settings.synopsis:
        parts.append(settings.synopsis.strip())
    parts.append("And so... the story begins.")
    return " ".join(parts)


def build_choice_narration(choices: Sequence[str]) -> str:
    """Return the spoken prompt that lists the player's choices."""

    if not choices:
        return ""
    parts = ["What will you do?"]
    for index, choice in enumerate(choices):
        ordinal = (
            _CHOICE_ORDINALS[index] if index < len(_CHOICE_ORDINALS) else f"Option {index + 1}"
        )
        parts.append(f"{ordinal}, {choice.strip().rstrip('.')}.")
    parts.append("Speak your choice, or tap to select.")
    return " ".join(parts)


def narrator_voice_for(run: PipelineRun, content: SceneContent) -> str | None:
    """Return the narrator voice from the voices result, falling back to settings."""

    for narrator in run.stage_result.get(VOICES, {}).get("narrators", ()):
        if narrator.get("type") == "narrator" and narrator.get("id"):
            return str(narrator["id"])
    return content.settings.narrator_voice_id


def _encode_audio(result: SynthesisResult) -> dict[str, Any]:
    """Serialize synthesized audio for stage results."""

    return {
        "audio_b64": base64.b64encode(result.audio_bytes).decode("ascii"),
        "format": AUDIO_FORMAT,
        "size": len(result.audio_bytes),
        "word_timings": [dict(item) for item in result.timing_metadata],
        "cached": result.cached,
    }


async def run_voices(
    run: PipelineRun,
    content: SceneContent,
    services: StageServices,
    report: ProgressReport,
    token: CancellationToken,
) -> dict[str, Any]:
    """Cast the narrator and character voices and persist the assignments."""

    settings = content.settings
    report(0.0, "Resolving characters...")
    token.raise_if_cancelled()
    entities = list(await services.entities.resolve_entities(run.session_id))

    if not entities:
        source_text = settings.synopsis.strip() or content.text.strip()
        if source_text:
            report(0.1, "Deriving characters from the story...")
            token.raise_if_cancelled()
            entities = list(await services.entities.derive_entities(run.session_id, source_text))

    multi_voice = bool(entities) and settings.multi_voice is not False
    pool = []
    if multi_voice:
        report(0.2, "Loading voice pool...")
        token.raise_if_cancelled()
        pool = list(await services.entities.load_voice_pool())

    narrator_voice_id = settings.narrator_voice_id
    if not narrator_voice_id:
        raise StageError(
            stage=VOICES,
            detail="No narrator voice is configured for the session.",
            hint="Set `session.narrator_voice_id` in the scene document.",
            session_id=run.session_id,
        )

    report(0.5, "Assigning character voices...")
    assignments = cast_voices(entities, pool, narrator_voice_id, multi_voice=multi_voice)

    report(0.7, "Saving voice assignments...")
    token.raise_if_cancelled()
    await services.entities.persist_assignments(run.session_id, assignments)

    narrators = [assignment.to_dict() for assignment in assignments]
    unique_voices = {assignment.voice_id for assignment in assignments}
    narrator_name = assignments[0].voice_name
    extra_voices = len(unique_voices) - 1
    report(1.0, "Voice cast ready")
    return {
        "narrators": narrators,
        "narrator_count": len(narrators),
        "unique_voice_count": len(unique_voices),
        "character_count": len(entities),
        "narrator_display": (
            narrator_name if extra_voices <= 0 else f"{narrator_name} + {extra_voices} voices"
        ),
        "multi_voice": multi_voice,
    }


async def run_sfx(
    run: PipelineRun,
    content: SceneContent,
    services: StageServices,
    report: ProgressReport,
    token: CancellationToken,
) -> dict[str, Any]:
    """Collect the scene's sound effects and check which are already in the library."""

    report(0.0, "Collecting sound effects...")
    if not content.settings.sfx_enabled:
        report(1.0, "Sound effects disabled")
        return {
            "skipped": True,
            "reason": "sfx_disabled",
            "sfx_list": [],
            "sfx_count": 0,
            "sfx_categories": [],
            "sfx_names": [],
            "cached_count": 0,
            "missing_count": 0,
            "missing_sfx": [],
        }

    effects = list(content.effects)
    if not effects and len(content.text) >= SFX_DETECTION_MIN_CHARS:
        report(0.2, "Detecting sound effects...")
        token.raise_if_cancelled()
        effects = list(
            await services.effects.detect(
                content.text,
                {
                    "scene_id": content.scene_id,
                    "mood": content.mood,
                    "title": content.settings.title,
                },
            )
        )

    sfx_list: list[dict[str, Any]] = []
    for index, effect in enumerate(effects, start=1):
        token.raise_if_cancelled()
        cached = await services.effects.is_cached(effect.key)
        sfx_list.append({**effect.to_dict(), "cached": cached})
        report(0.5 + 0.5 * index / len(effects), f"Checked {index}/{len(effects)} effects")

    missing = [item["key"] for item in sfx_list if not item["cached"]]
    report(1.0, "Sound effects ready")
    return {
        "sfx_list": sfx_list,
        "sfx_count": len(effects),
        "sfx_categories": list(dict.fromkeys(effect.category for effect in effects)),
        "sfx_names": [effect.display_name for effect in effects],
        "cached_count": len(effects) - len(missing),
        "missing_count": len(missing),
        "missing_sfx": missing,
    }


async def run_cover(
    run: PipelineRun,
    content: SceneContent,
    services: StageServices,
    report: ProgressReport,
    token: CancellationToken,
) -> dict[str, Any]:
    """Reuse the session cover art or generate a new image."""

    settings = content.settings
    report(0.0, "Checking cover art...")
    if settings.cover_url:
        cover_url = settings.cover_url
        generated = False
    else:
        report(0.2, "Generating cover art...")
        token.raise_if_cancelled()
        cover_url = await services.assets.generate(
            build_cover_prompt(settings, content.mood), settings.cover_style
        )
        generated = True

    if not cover_url or not cover_url.strip():
        raise StageError(
            stage=COVER,
            detail="Cover art generation returned no image URL.",
            hint="Retry the cover stage or supply `session.cover_url`.",
            session_id=run.session_id,
        )

    report(1.0, "Cover art ready")
    return {
        "cover_url": cover_url.strip(),
        "title": settings.title or DEFAULT_COVER_TITLE,
        "synopsis": settings.synopsis,
        "cover_generated": generated,
        "style": settings.cover_style,
    }


async def run_qa(
    run: PipelineRun,
    content: SceneContent,
    services: StageServices,
    report: ProgressReport,
    token: CancellationToken,
) -> dict[str, Any]:
    """Score the scene against audience limits and adjust it once when needed."""

    settings = content.settings
    text = content.text.strip()
    if not text:
        raise StageError(
            stage=QA,
            detail="Scene text is empty; nothing to check.",
            session_id=run.session_id,
        )

    policy: Mapping[str, Any] = {
        "audience": settings.audience,
        "intensity_limits": dict(settings.intensity_limits),
    }
    report(0.0, "Running quality checks...")
    report(0.3, "Analyzing content intensity...")
    token.raise_if_cancelled()
    original = await services.safety.analyze(text, policy)

    final_text = text
    adjusted_report = None
    if not original.within_limits:
        report(0.6, "Adjusting content to fit limits...")
        token.raise_if_cancelled()
        adjusted_text = await services.safety.adjust(text, original)
        if not adjusted_text or not adjusted_text.strip():
            raise StageError(
                stage=QA,
                detail="Content adjustment returned empty text.",
                session_id=run.session_id,
            )
        report(0.8, "Re-checking adjusted content...")
        token.raise_if_cancelled()
        adjusted_report = await services.safety.analyze(adjusted_text, policy)
        if not adjusted_report.within_limits:
            raise StageError(
                stage=QA,
                detail="Adjusted content still exceeds intensity limits.",
                hint="Lower the scene intensity or relax `session.intensity_limits`.",
                session_id=run.session_id,
            )
        final_text = adjusted_text.strip()

    issues = list(original.issues)
    if adjusted_report is not None:
        issues.extend(adjusted_report.issues)
    report(1.0, "Quality checks passed")
    return {
        "is_valid": True,
        "errors": [],
        "warnings": list(dict.fromkeys(issues)),
        "was_adjusted": adjusted_report is not None,
        "original_scores": dict(original.scores),
        "adjusted_scores": dict(adjusted_report.scores) if adjusted_report else None,
        "summary": (adjusted_report or original).summary,
        "audience": settings.audience,
        "final_text": final_text,
    }


async def run_audio(
    run: PipelineRun,
    content: SceneContent,
    services: StageServices,
    report: ProgressReport,
    token: CancellationToken,
) -> dict[str, Any]:
    """Synthesize scene narration, plus the story intro for the opening scene."""

    settings = content.settings
    report(0.0, "Preparing audio synthesis...")
    if not settings.audio_enabled:
        report(1.0, "Audio synthesis disabled")
        return {
            "skipped": True,
            "reason": "audio_disabled",
            "intro": None,
            "scene": None,
            "synthesis_seconds": 0.0,
        }

    voice_id = narrator_voice_for(run, content)
    if not voice_id:
        raise StageError(
            stage=AUDIO,
            detail="No narrator voice available for synthesis.",
            session_id=run.session_id,
        )
    text = strip_tags(run.stage_result.get(QA, {}).get("final_text") or content.text)
    if not text:
        raise StageError(
            stage=AUDIO,
            detail="Scene text is empty after removing markup.",
            session_id=run.session_id,
        )
    intro_text = build_intro_text(settings) if content.is_opening_scene else None

    report(0.15, "Starting audio synthesis...")
    token.raise_if_cancelled()
    started = time.perf_counter()

    async def _no_intro() -> None:
        return None

    intro_outcome, scene_outcome = await asyncio.gather(
        services.synthesis.synthesize(intro_text, voice_id) if intro_text else _no_intro(),
        services.synthesis.synthesize(text, voice_id),
        return_exceptions=True,
    )
    if isinstance(scene_outcome, BaseException):
        raise StageError(
            stage=AUDIO,
            detail=f"Scene synthesis failed: {scene_outcome}",
            session_id=run.session_id,
        ) from scene_outcome
    if not scene_outcome.audio_bytes:
        raise StageError(
            stage=AUDIO,
            detail="Scene synthesis returned no audio.",
            session_id=run.session_id,
        )

    intro: dict[str, Any] | None = None
    if isinstance(intro_outcome, BaseException):
        _run_logger.log_warning(
            AUDIO,
            "intro_failed",
            session=run.session_id,
            error_type=type(intro_outcome).__name__,
        )
    elif intro_outcome is not None:
        intro = {
            **_encode_audio(intro_outcome),
            "title": settings.title,
            "synopsis": settings.synopsis,
            "text": intro_text,
        }

    report(0.92, "Finalizing audio...")
    synthesis_seconds = round(time.perf_counter() - started, 3)
    report(1.0, "Audio synthesis complete")
    return {
        "intro": intro,
        "scene": {**_encode_audio(scene_outcome), "voice_id": voice_id},
        "synthesis_seconds": synthesis_seconds,
    }


async def run_choice_narration(
    run: PipelineRun,
    content: SceneContent,
    services: StageServices,
    token: CancellationToken,
) -> dict[str, Any] | None:
    """Synthesize the spoken list of choices.

    Returns `None` when there are no choices or audio synthesis is disabled.
    """

    if not content.settings.audio_enabled:
        return None
    text = build_choice_narration(content.choices)
    if not text:
        return None
    voice_id = narrator_voice_for(run, content)
    if not voice_id:
        raise StageError(stage=AUDIO, detail="No narrator voice for choice narration.")
    token.raise_if_cancelled()
    result = await services.synthesis.synthesize(text, voice_id)
    return {
        "audio_b64": base64.b64encode(result.audio_bytes).decode("ascii"),
        "format": CHOICE_AUDIO_FORMAT,
        "text": text,
        "choice_count": len(content.choices),
        "size": len(result.audio_bytes),
    }


def with_cover_override(content: SceneContent, cover_url: str | None) -> SceneContent:
    """Return content whose settings reuse `cover_url`, or force a new image when `None`."""

    return replace(content, settings=replace(content.settings, cover_url=cover_url))


DEFAULT_RUNNERS: dict[str, StageRunner] = {
    VOICES: run_voices,
    SFX: run_sfx,
    COVER: run_cover,
    QA: run_qa,
    AUDIO: run_audio,
}
