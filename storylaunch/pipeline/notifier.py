"""Terminal ready notification with a single watchdog resend.

Responsibilities:
- Consolidate every stage result into the payload a player needs to start playback.
- Publish `pipeline-ready` and resend it once when the consumer does not acknowledge.
"""

from __future__ import annotations

import asyncio
from typing import Any, Callable

from ..models import PipelineRun, SceneContent
from ..models.stages import AUDIO, COVER, QA, SFX, VOICES
from ..telemetry.logger import RunLogger
from .events import EventChannel, PipelineReady, SequenceIdFactory
from .runners import strip_tags


def _sfx_details(result: dict[str, Any], enabled: bool) -> dict[str, Any]:
    sfx_list = []
    for item in result.get("sfx_list", ()):
        key = str(item.get("key", ""))
        sfx_list.append(
            {
                "key": key,
                "name": item.get("description") or key.rsplit(".", 1)[-1].replace("_", " "),
                "category": key.split(".", 1)[0] or "general",
                "status": "cached" if item.get("cached") else "missing",
                "volume": item.get("volume", 0.3),
                "loop": bool(item.get("loop", False)),
                "timing": item.get("timing", "middle"),
            }
        )
    return {
        "sfx_enabled": enabled,
        "sfx_list": sfx_list,
        "sfx_count": int(result.get("sfx_count") or 0),
        "cached_count": int(result.get("cached_count") or 0),
        "missing_count": int(result.get("missing_count") or 0),
        "degraded": bool(result.get("degraded", False)),
    }


def _voice_details(result: dict[str, Any]) -> dict[str, Any]:
    characters = [
        {
            "name": narrator.get("character") or "Narrator",
            "voice_name": narrator.get("name"),
            "voice_id": narrator.get("id"),
            "is_narrator": narrator.get("type") == "narrator",
            "role": narrator.get("role")
            or ("narrator" if narrator.get("type") == "narrator" else "character"),
            "shares_narrator_voice": bool(narrator.get("shares_narrator_voice", False)),
        }
        for narrator in result.get("narrators", ())
    ]
    return {
        "characters": characters,
        "total_characters": int(result.get("character_count") or 0) + 1,
        "total_voices": int(result.get("unique_voice_count") or 1),
    }


def _safety_details(result: dict[str, Any]) -> dict[str, Any]:
    return {
        "was_adjusted": bool(result.get("was_adjusted", False)),
        "summary": result.get("summary") or "No safety analysis performed",
        "audience": result.get("audience") or "general",
        "original_scores": result.get("original_scores"),
        "adjusted_scores": result.get("adjusted_scores"),
        "warnings": list(result.get("warnings", ())),
    }


def _audio_details(result: dict[str, Any], choice_audio: dict[str, Any] | None) -> dict[str, Any]:
    intro = result.get("intro") or None
    scene = result.get("scene") or None
    intro_size = int(intro["size"]) if intro else 0
    scene_size = int(scene["size"]) if scene else 0
    choice_size = int(choice_audio["size"]) if choice_audio else 0
    return {
        "has_audio": bool(intro or scene),
        "skipped": bool(result.get("skipped", False)),
        "intro": (
            {
                "audio_b64": intro["audio_b64"],
                "title": intro.get("title", ""),
                "synopsis": intro.get("synopsis", ""),
            }
            if intro
            else None
        ),
        "scene": (
            {"audio_b64": scene["audio_b64"], "word_timings": scene.get("word_timings", [])}
            if scene
            else None
        ),
        "choice": (
            {
                "audio_b64": choice_audio["audio_b64"],
                "format": choice_audio["format"],
                "choice_count": choice_audio["choice_count"],
            }
            if choice_audio
            else None
        ),
        "has_choice_audio": choice_audio is not None,
        "intro_size": intro_size,
        "scene_size": scene_size,
        "choice_size": choice_size,
        "total_size": intro_size + scene_size + choice_size,
        "cached": bool(scene.get("cached", False)) if scene else False,
        "synthesis_seconds": float(result.get("synthesis_seconds") or 0.0),
    }


def build_stats(run: PipelineRun) -> dict[str, Any]:
    """Return summary statistics of a completed run."""

    voices = run.stage_result.get(VOICES, {})
    sfx = run.stage_result.get(SFX, {})
    cover = run.stage_result.get(COVER, {})
    qa = run.stage_result.get(QA, {})
    audio = run.stage_result.get(AUDIO, {})
    warnings = run.validation.warnings if run.validation else ()
    return {
        "title": cover.get("title"),
        "cover_url": cover.get("cover_url"),
        "narrator_display": voices.get("narrator_display"),
        "narrator_count": int(voices.get("narrator_count") or 0),
        "unique_voice_count": int(voices.get("unique_voice_count") or 0),
        "character_count": int(voices.get("character_count") or 0),
        "sfx_count": int(sfx.get("sfx_count") or 0),
        "sfx_missing": int(sfx.get("missing_count") or 0),
        "safety_adjusted": bool(qa.get("was_adjusted", False)),
        "audio_ready": bool(audio.get("scene")),
        "warning_count": len(warnings),
    }


def build_ready_payload(
    run: PipelineRun, content: SceneContent, ready_timestamp: float
) -> dict[str, Any]:
    """Consolidate stage results into the payload sent with `pipeline-ready`."""

    return {
        "ready": True,
        "stats": build_stats(run),
        "content": {
            "scene_id": content.scene_id,
            "sequence_index": content.sequence_index,
            "text": strip_tags(run.stage_result.get(QA, {}).get("final_text") or content.text),
            "mood": content.mood,
            "has_choices": content.has_choices,
            "choices": list(content.choices),
            "is_final": content.is_final,
        },
        "all_statuses": run.all_statuses(),
        "stage_result_summaries": {
            "sfx": _sfx_details(run.stage_result.get(SFX, {}), content.settings.sfx_enabled),
            "voice": _voice_details(run.stage_result.get(VOICES, {})),
            "safety": _safety_details(run.stage_result.get(QA, {})),
            "audio": _audio_details(run.stage_result.get(AUDIO, {}), run.choice_audio),
        },
        "warnings": (
            [{"check": item.check, "reason": item.reason} for item in run.validation.warnings]
            if run.validation
            else []
        ),
        "ready_timestamp": ready_timestamp,
    }


class ReadyNotifier:
    """Publish the ready payload and resend it once if it is not acknowledged."""

    def __init__(
        self,
        session_id: str,
        channel: EventChannel,
        sequence_ids: SequenceIdFactory,
        *,
        watchdog_seconds: float,
        clock: Callable[[], float],
        run_logger: RunLogger,
    ) -> None:
        """Initialize notifier dependencies and watchdog timeout."""

        self._session_id = session_id
        self._channel = channel
        self._sequence_ids = sequence_ids
        self._watchdog_seconds = watchdog_seconds
        self._clock = clock
        self._logger = run_logger
        self._timer: asyncio.TimerHandle | None = None
        self.resend_count = 0

    @property
    def watchdog_armed(self) -> bool:
        """Return whether a resend is still scheduled."""

        return self._timer is not None

    def announce(self, run: PipelineRun, content: SceneContent) -> dict[str, Any]:
        """Publish `pipeline-ready` and arm the one-shot watchdog.

        Must be called from a running event loop.
        """

        payload = build_ready_payload(run, content, self._clock())
        self.cancel_watchdog()
        loop = asyncio.get_running_loop()
        # Armed before publishing; subscribers may acknowledge synchronously.
        self._timer = loop.call_later(self._watchdog_seconds, self._on_timeout, run, payload)
        self._publish(payload, is_retry=False)
        return payload

    def cancel_watchdog(self) -> None:
        """Cancel a pending resend."""

        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _on_timeout(self, run: PipelineRun, payload: dict[str, Any]) -> None:
        """Resend the ready payload once when still unacknowledged."""

        self._timer = None
        if run.ready_acked or run.cancelled:
            return
        self._logger.log_warning(
            "ready",
            "notification_timeout",
            session=self._session_id,
            watchdog_seconds=self._watchdog_seconds,
        )
        self.resend_count += 1
        self._publish(payload, is_retry=True)

    def _publish(self, payload: dict[str, Any], *, is_retry: bool) -> None:
        self._channel.publish(
            PipelineReady(
                session_id=self._session_id,
                payload=payload,
                sequence_id=self._sequence_ids.next(self._session_id, "ready"),
                is_retry=is_retry,
            )
        )
