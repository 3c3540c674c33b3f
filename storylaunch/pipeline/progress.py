"""Map stage-local completion into global progress percentages."""

from __future__ import annotations

from typing import Callable

from ..models.stages import IN_PROGRESS, stage_by_id
from .events import EventChannel, ProgressEvent, SequenceIdFactory


def percent_for(stage_id: str, fraction: float) -> int:
    """Interpolate a clamped stage fraction into the stage's global percent range."""

    start, end = stage_by_id(stage_id).progress_range
    clamped = min(1.0, max(0.0, float(fraction)))
    return int(round(start + (end - start) * clamped))


class ProgressMapper:
    """Publish `stage-progress` events that never move backwards within a stage."""

    def __init__(
        self,
        session_id: str,
        channel: EventChannel,
        sequence_ids: SequenceIdFactory,
        clock: Callable[[], float],
    ) -> None:
        """Initialize mapper state for one session."""

        self._session_id = session_id
        self._channel = channel
        self._sequence_ids = sequence_ids
        self._clock = clock
        self._floors: dict[str, int] = {}

    def percent_for(self, stage_id: str, fraction: float) -> int:
        """Return the interpolated percent without publishing anything."""

        return percent_for(stage_id, fraction)

    def emit_stage_progress(
        self,
        stage_id: str,
        fraction: float,
        message: str = "",
        status: str = IN_PROGRESS,
    ) -> ProgressEvent:
        """Publish progress for one stage and return the published event."""

        percent = max(percent_for(stage_id, fraction), self._floors.get(stage_id, 0))
        self._floors[stage_id] = percent
        event = ProgressEvent(
            session_id=self._session_id,
            stage=stage_id,
            status=status,
            percent=percent,
            message=message,
            timestamp=self._clock(),
            sequence_id=self._sequence_ids.next(self._session_id, "progress"),
        )
        self._channel.publish(event)
        return event

    def reset_stage(self, stage_id: str) -> None:
        """Drop the progress floor of a stage back to its range start."""

        stage_by_id(stage_id)
        self._floors.pop(stage_id, None)

    def reporter(self, stage_id: str) -> Callable[[float, str], None]:
        """Return a progress callback bound to one stage."""

        def _report(fraction: float, message: str = "") -> None:
            self.emit_stage_progress(stage_id, fraction, message)

        return _report
