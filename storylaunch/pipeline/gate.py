"""Final cross-stage validation run before a scene may be revealed."""

from __future__ import annotations

from typing import Any, Iterable

from ..models import (
    PipelineRun,
    SessionSettings,
    ValidationFailure,
    ValidationReport,
    ValidationWarning,
)
from ..models.stages import AUDIO, COVER, ERROR, SFX, STAGES, SUCCESS, VOICES, stage_by_id


class ValidationGate:
    """Check every cross-stage invariant and collect all findings.

    The gate never stops at the first failure; the report lists everything that
    blocks playback together with non-fatal warnings.
    """

    def __init__(self, best_effort_stages: Iterable[str] = ()) -> None:
        """Initialize the gate with stages that may degrade instead of fail."""

        self._best_effort = frozenset(best_effort_stages)

    def is_required(self, stage_id: str) -> bool:
        """Return whether a stage must succeed with a real result."""

        return not (stage_by_id(stage_id).degradable and stage_id in self._best_effort)

    def check(self, run: PipelineRun, settings: SessionSettings) -> ValidationReport:
        """Validate a completed run and return the aggregated report."""

        failures: list[ValidationFailure] = []
        warnings: list[ValidationWarning] = []

        for stage in STAGES:
            status = run.stage_status.get(stage.id)
            if status == SUCCESS:
                continue
            reason = f"{stage.display_name} is `{status}`, expected `success`"
            if self.is_required(stage.id):
                failures.append(
                    ValidationFailure(
                        f"stage_status:{stage.id}", reason, retryable=status == ERROR
                    )
                )
            else:
                warnings.append(ValidationWarning(f"stage_status:{stage.id}", reason))

        self._check_cover(run.stage_result.get(COVER, {}), failures, warnings)
        self._check_voices(run.stage_result.get(VOICES, {}), settings, failures, warnings)
        if settings.sfx_enabled:
            self._check_sfx(run.stage_result.get(SFX, {}), warnings)
        if settings.audio_enabled:
            self._check_audio(run.stage_result.get(AUDIO, {}), failures)

        return ValidationReport(failures=tuple(failures), warnings=tuple(warnings))

    def _check_cover(
        self,
        result: dict[str, Any],
        failures: list[ValidationFailure],
        warnings: list[ValidationWarning],
    ) -> None:
        if result.get("cover_url"):
            return
        if self.is_required(COVER):
            failures.append(ValidationFailure("cover_art", "No cover art URL was produced"))
            return
        reason = result.get("reason") or "cover art unavailable"
        warnings.append(ValidationWarning("cover_art", f"Cover art degraded: {reason}"))

    @staticmethod
    def _check_voices(
        result: dict[str, Any],
        settings: SessionSettings,
        failures: list[ValidationFailure],
        warnings: list[ValidationWarning],
    ) -> None:
        narrators = result.get("narrators") or []
        if not narrators:
            failures.append(
                ValidationFailure(
                    "voice_cast", "No narrator voice was assigned", retryable=False
                )
            )
            return
        characters = [item for item in narrators if item.get("type") == "character"]
        multi_voice_requested = settings.multi_voice is True or bool(result.get("multi_voice"))
        if (
            characters
            and multi_voice_requested
            and all(item.get("shares_narrator_voice") for item in characters)
        ):
            warnings.append(
                ValidationWarning(
                    "voice_separation",
                    f"All {len(characters)} characters share the narrator voice",
                )
            )

    @staticmethod
    def _check_sfx(result: dict[str, Any], warnings: list[ValidationWarning]) -> None:
        if result.get("degraded"):
            reason = result.get("reason") or "sound effects unavailable"
            warnings.append(ValidationWarning("sfx_ready", f"Sound effects degraded: {reason}"))
            return
        total = int(result.get("sfx_count") or 0)
        missing = int(result.get("missing_count") or 0)
        if total and missing * 2 > total:
            warnings.append(
                ValidationWarning("sfx_ready", f"{missing} of {total} sound effects are missing")
            )

    @staticmethod
    def _check_audio(result: dict[str, Any], failures: list[ValidationFailure]) -> None:
        if result.get("skipped"):
            return
        scene = result.get("scene") or {}
        if not scene.get("audio_b64"):
            failures.append(
                ValidationFailure("audio_ready", "Scene audio is missing", retryable=False)
            )
