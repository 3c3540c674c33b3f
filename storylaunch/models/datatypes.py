"""Core datatypes shared across storylaunch modules.

Responsibilities:
- Represent records exchanged between the orchestrator, stage runners, and services.
- Hold the mutable per-run state that the orchestrator owns.

Key types:
- `SceneContent`, `SessionSettings`: the target content a run prepares.
- `Entity`, `VoiceResource`, `VoiceAssignment`, `EffectSpec`, `ScoreReport`,
  `SynthesisResult`: collaborator request/result records.
- `PipelineRun`: mutable run state (statuses, results, retry counters).
- `ValidationFailure`, `ValidationWarning`, `ValidationReport`, `DegradedResult`.
- `RunOutcome`, `RetryOutcome`, `SnapshotInfo`.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping

from .stages import IN_PROGRESS, PENDING, STAGE_ORDER, SUCCESS


@dataclass(frozen=True, slots=True)
class Entity:
    """A story character that may receive its own voice.

    Attributes:
        name: Character name.
        gender: `female`, `male`, `neutral`, or `None` when unknown.
        role: Narrative role label.
        description: Short free-text description.
    """

    name: str
    gender: str | None = None
    role: str = "character"
    description: str = ""


@dataclass(frozen=True, slots=True)
class VoiceResource:
    """One synthesizable voice from the provider pool."""

    voice_id: str
    name: str
    gender: str | None = None


@dataclass(frozen=True, slots=True)
class VoiceAssignment:
    """Voice chosen for the narrator or one character.

    Attributes:
        voice_id: Provider voice identifier.
        voice_name: Display name of the voice.
        kind: `narrator` or `character`.
        character: Character name, `None` for the narrator.
        role: Narrative role label.
        shares_narrator_voice: Whether the character fell back to the narrator voice.
    """

    voice_id: str
    voice_name: str
    kind: str
    character: str | None = None
    role: str = "narrator"
    shares_narrator_voice: bool = False

    def to_dict(self) -> dict[str, Any]:
        """Serialize the assignment for stage results and persistence."""

        return {
            "id": self.voice_id,
            "name": self.voice_name,
            "type": self.kind,
            "character": self.character,
            "role": self.role,
            "shares_narrator_voice": self.shares_narrator_voice,
        }


@dataclass(frozen=True, slots=True)
class EffectSpec:
    """A sound effect cue detected or declared for a scene."""

    key: str
    description: str = ""
    timing: str = "middle"
    volume: float = 0.3
    loop: bool = False

    @property
    def category(self) -> str:
        """Return the key prefix before the first dot."""

        return self.key.split(".", 1)[0] or "general"

    @property
    def display_name(self) -> str:
        """Return the description, or a readable form of the last key segment."""

        if self.description:
            return self.description
        return self.key.rsplit(".", 1)[-1].replace("_", " ")

    def to_dict(self) -> dict[str, Any]:
        """Serialize the effect cue."""

        return {
            "key": self.key,
            "description": self.description,
            "timing": self.timing,
            "volume": self.volume,
            "loop": self.loop,
        }


@dataclass(frozen=True, slots=True)
class ScoreReport:
    """Safety analysis scores for one text.

    Attributes:
        scores: Dimension name to 0-100 intensity score.
        within_limits: Whether every score respects the configured limits.
        issues: Human-readable findings.
        summary: One-line summary.
    """

    scores: Mapping[str, int]
    within_limits: bool
    issues: tuple[str, ...] = ()
    summary: str = ""


@dataclass(frozen=True, slots=True)
class SynthesisResult:
    """Synthesized speech and optional word timing metadata."""

    audio_bytes: bytes
    timing_metadata: tuple[dict[str, Any], ...] = ()
    cached: bool = False


@dataclass(frozen=True, slots=True)
class SessionSettings:
    """Session-level story settings consulted by stages and the validation gate.

    Attributes:
        title: Story title.
        synopsis: Story synopsis.
        narrator_voice_id: Provider voice used for narration.
        multi_voice: Explicit multi-voice preference; `None` means automatic.
        sfx_enabled: Whether sound effects were explicitly enabled.
        audio_enabled: Whether speech should be synthesized before reveal.
        cover_url: Existing cover art URL to reuse, if any.
        cover_style: Art style passed to the cover generator.
        audience: Audience label used by safety analysis.
        intensity_limits: Dimension name to maximum allowed intensity.
    """

    title: str = ""
    synopsis: str = ""
    narrator_voice_id: str | None = None
    multi_voice: bool | None = None
    sfx_enabled: bool = False
    audio_enabled: bool = True
    cover_url: str | None = None
    cover_style: str = "storybook"
    audience: str = "general"
    intensity_limits: Mapping[str, int] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class SceneContent:
    """The scene a pipeline run prepares for playback."""

    scene_id: str
    sequence_index: int
    text: str
    settings: SessionSettings = field(default_factory=SessionSettings)
    mood: str | None = None
    choices: tuple[str, ...] = ()
    is_final: bool = False
    effects: tuple[EffectSpec, ...] = ()

    @property
    def has_choices(self) -> bool:
        """Return whether the scene ends with player choices."""

        return len(self.choices) > 0

    @property
    def is_opening_scene(self) -> bool:
        """Return whether this scene opens the story and gets an intro."""

        return self.sequence_index in (0, 1)


@dataclass(frozen=True, slots=True)
class ValidationFailure:
    """A fatal validation gate finding."""

    check: str
    reason: str
    retryable: bool = True


@dataclass(frozen=True, slots=True)
class ValidationWarning:
    """A non-fatal validation gate finding."""

    check: str
    reason: str


@dataclass(frozen=True, slots=True)
class ValidationReport:
    """All findings from one validation gate pass."""

    failures: tuple[ValidationFailure, ...] = ()
    warnings: tuple[ValidationWarning, ...] = ()

    @property
    def passed(self) -> bool:
        """Return whether the gate found no fatal failures."""

        return not self.failures

    def to_dict(self) -> dict[str, Any]:
        """Serialize findings for events and summaries."""

        return {
            "failures": [
                {"check": item.check, "reason": item.reason, "retryable": item.retryable}
                for item in self.failures
            ],
            "warnings": [
                {"check": item.check, "reason": item.reason} for item in self.warnings
            ],
        }


@dataclass(frozen=True, slots=True)
class DegradedResult:
    """A best-effort stage failure recorded instead of failing the run."""

    stage: str
    reason: str

    def to_result(self) -> dict[str, Any]:
        """Return the stage result payload stored for a degraded stage."""

        return {"degraded": True, "reason": self.reason}


@dataclass(slots=True)
class PipelineRun:
    """Mutable state of one pipeline run, owned by the orchestrator.

    Attributes:
        session_id: Story session identifier.
        stage_status: Stage id to status.
        stage_result: Stage id to result payload, only for successful stages.
        retry_count: Stage id to retries consumed.
        start_time: Epoch seconds at run creation, preserved across recovery.
        stage_timestamps: Stage id to status to epoch seconds.
        cancelled: Whether the run was cancelled.
        ready_acked: Whether the consumer confirmed the ready payload.
        choice_audio: Optional choice narration result.
        validation: Report from the latest validation gate pass.
    """

    session_id: str
    stage_status: dict[str, str]
    stage_result: dict[str, dict[str, Any]]
    retry_count: dict[str, int]
    start_time: float
    stage_timestamps: dict[str, dict[str, float]] = field(default_factory=dict)
    cancelled: bool = False
    ready_acked: bool = False
    choice_audio: dict[str, Any] | None = None
    validation: ValidationReport | None = None

    @classmethod
    def fresh(cls, session_id: str, start_time: float) -> PipelineRun:
        """Create a run with every stage pending and no retries consumed."""

        return cls(
            session_id=session_id,
            stage_status={stage_id: PENDING for stage_id in STAGE_ORDER},
            stage_result={},
            retry_count={stage_id: 0 for stage_id in STAGE_ORDER},
            start_time=start_time,
        )

    def all_statuses(self) -> dict[str, str]:
        """Return a copy of stage statuses in execution order."""

        return {stage_id: self.stage_status[stage_id] for stage_id in STAGE_ORDER}

    def first_unfinished_stage(self) -> str | None:
        """Return the first stage that has not succeeded, if any."""

        for stage_id in STAGE_ORDER:
            if self.stage_status[stage_id] != SUCCESS:
                return stage_id
        return None

    def current_stage(self) -> str | None:
        """Return the first stage currently in progress, if any."""

        for stage_id in STAGE_ORDER:
            if self.stage_status[stage_id] == IN_PROGRESS:
                return stage_id
        return None

    def is_complete(self) -> bool:
        """Return whether every stage succeeded."""

        return self.first_unfinished_stage() is None


@dataclass(frozen=True, slots=True)
class RunOutcome:
    """Result of a successful `PipelineManager.run` call."""

    session_id: str
    statuses: dict[str, str]
    stage_results: dict[str, dict[str, Any]]
    stats: dict[str, Any]
    warnings: tuple[ValidationWarning, ...]
    choice_audio: dict[str, Any] | None
    ready_payload: dict[str, Any]
    elapsed_seconds: float
    resumed: bool = False


@dataclass(frozen=True, slots=True)
class RetryOutcome:
    """Result of an out-of-band stage retry or regeneration."""

    stage: str
    status: str
    success: bool
    retryable: bool
    attempt: int
    error: str | None = None


@dataclass(frozen=True, slots=True)
class SnapshotInfo:
    """Operator view of a persisted run snapshot."""

    session_id: str
    schema_version: int
    updated_at: float
    age_minutes: float
    recoverable: bool
    stage_status: dict[str, str]
    retry_count: dict[str, int]
