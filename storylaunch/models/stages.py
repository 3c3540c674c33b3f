"""Static stage graph, status values, and the per-stage state machine.

Responsibilities:
- Define the fixed stage table (ids, display names, dependencies, progress ranges).
- Define stage status values and validate status transitions.

Key types:
- `Stage`: static metadata for one stage.
- `STAGES`: the stage table in execution order.
"""

from __future__ import annotations

from dataclasses import dataclass

from ..errors import InvalidStageTransition


VOICES = "voices"
SFX = "sfx"
COVER = "cover"
QA = "qa"
AUDIO = "audio"

PENDING = "pending"
IN_PROGRESS = "in_progress"
SUCCESS = "success"
ERROR = "error"

STAGE_STATUSES = frozenset({PENDING, IN_PROGRESS, SUCCESS, ERROR})

ASSETS_GROUP = "assets"

_FORWARD_TRANSITIONS: dict[str, frozenset[str]] = {
    PENDING: frozenset({IN_PROGRESS}),
    IN_PROGRESS: frozenset({SUCCESS, ERROR}),
    SUCCESS: frozenset(),
    ERROR: frozenset(),
}
_RESET_SOURCES = frozenset({ERROR, SUCCESS, IN_PROGRESS})


@dataclass(frozen=True, slots=True)
class Stage:
    """Static metadata for one pipeline stage.

    Attributes:
        id: Stable stage identifier.
        display_name: Human-readable stage name.
        depends_on: Stages that must be `success` before this one starts.
        progress_range: Global percent range `(start, end)` covered by the stage.
        parallel_group: Group name for stages that run concurrently, if any.
        degradable: Whether policy may mark the stage best effort.
    """

    id: str
    display_name: str
    depends_on: frozenset[str]
    progress_range: tuple[int, int]
    parallel_group: str | None = None
    degradable: bool = False


STAGES: tuple[Stage, ...] = (
    Stage(VOICES, "Narrator Voices", frozenset(), (55, 57)),
    Stage(SFX, "Sound Effects", frozenset({VOICES}), (57, 60), ASSETS_GROUP, degradable=True),
    Stage(COVER, "Cover Art", frozenset({VOICES}), (60, 68), ASSETS_GROUP, degradable=True),
    Stage(QA, "Quality Checks", frozenset({VOICES, SFX, COVER}), (68, 70)),
    Stage(AUDIO, "Audio Synthesis", frozenset({QA}), (70, 98)),
)

STAGE_ORDER: tuple[str, ...] = tuple(stage.id for stage in STAGES)

DEGRADABLE_STAGES = frozenset(stage.id for stage in STAGES if stage.degradable)

_STAGES_BY_ID = {stage.id: stage for stage in STAGES}


def stage_by_id(stage_id: str) -> Stage:
    """Return stage metadata for an id, raising `ValueError` for unknown stages."""

    stage = _STAGES_BY_ID.get(stage_id)
    if stage is None:
        known = ", ".join(STAGE_ORDER)
        raise ValueError(f"Unknown stage `{stage_id}`. Expected one of: {known}.")
    return stage


def group_members(group: str) -> tuple[str, ...]:
    """Return ids of stages in one parallel group, in execution order."""

    return tuple(stage.id for stage in STAGES if stage.parallel_group == group)


def check_transition(stage_id: str, previous: str, new: str, *, reset: bool = False) -> None:
    """Validate one stage status change.

    Forward moves follow `pending -> in_progress -> {success, error}`. Moving back to
    `pending` is only allowed as an explicit reset (retry, recovery, regeneration).

    Raises:
        InvalidStageTransition: If the change is not allowed.
    """

    if new not in STAGE_STATUSES:
        raise InvalidStageTransition(f"Unknown status `{new}` for stage `{stage_id}`.")
    if reset:
        if new == PENDING and previous in _RESET_SOURCES:
            return
        raise InvalidStageTransition(
            f"Stage `{stage_id}` cannot be reset from `{previous}` to `{new}`."
        )
    if new not in _FORWARD_TRANSITIONS.get(previous, frozenset()):
        raise InvalidStageTransition(
            f"Stage `{stage_id}` cannot move from `{previous}` to `{new}`."
        )
