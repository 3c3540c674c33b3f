"""Stage telemetry helper methods for the pipeline manager.

Responsibilities:
- Provide stage index/total metadata for progress reporting.
- Emit stage start/complete/failure events.
- Wrap asynchronous stage actions with consistent telemetry hooks.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import TypeVar

from ..models.stages import STAGE_ORDER
from ..telemetry.logger import RunLogger

_StageResult = TypeVar("_StageResult")


class PipelineTelemetryMixin:
    """Provide stage-telemetry helper methods."""

    _run_logger: RunLogger | None
    _PHASE_SEQUENCE = STAGE_ORDER

    def _stage_position(self, stage_name: str) -> tuple[int, int] | None:
        """Return 1-based stage index and total stage count for known stages."""

        try:
            index = self._PHASE_SEQUENCE.index(stage_name) + 1
        except ValueError:
            return None
        return index, len(self._PHASE_SEQUENCE)

    def _on_stage_start(self, stage_name: str, **context: object) -> None:
        """Emit a stage-start event with its position in the stage order."""

        if self._run_logger is None:
            return
        position = self._stage_position(stage_name)
        if position is not None:
            context = {**context, "position": f"{position[0]}/{position[1]}"}
        self._run_logger.log_stage_start(stage_name, **context)

    def _on_stage_complete(self, stage_name: str, **context: object) -> None:
        """Emit stage-complete event to the structured logger."""

        if self._run_logger is not None:
            self._run_logger.log_stage_complete(stage_name, **context)

    def _on_stage_failure(self, stage_name: str, exc: BaseException, **context: object) -> None:
        """Emit stage-failure event with sanitized exception metadata."""

        if self._run_logger is not None:
            self._run_logger.log_stage_failure(stage_name, type(exc).__name__, **context)

    async def _run_stage(
        self,
        stage_name: str,
        action: Callable[[], Awaitable[_StageResult]],
        **context: object,
    ) -> _StageResult:
        """Await one named stage and emit start/complete/failure telemetry events."""

        self._on_stage_start(stage_name, **context)
        try:
            result = await action()
        except Exception as exc:
            self._on_stage_failure(stage_name, exc, **context)
            raise
        self._on_stage_complete(stage_name, **context)
        return result
