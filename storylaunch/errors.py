"""Domain exceptions for pipeline orchestration and CLI diagnostics."""

from __future__ import annotations

from typing import TYPE_CHECKING, Sequence

if TYPE_CHECKING:
    from .models.datatypes import ValidationReport


class PipelineError(RuntimeError):
    """Raised when a pipeline run cannot continue."""

    def __init__(
        self,
        *,
        stage: str | None,
        detail: str,
        hint: str | None = None,
    ) -> None:
        """Initialize a stage-scoped pipeline error."""

        super().__init__(detail)
        self.stage = stage
        self.detail = detail
        self.hint = hint


class StageError(PipelineError):
    """Raised when a single stage fails.

    `retryable` reports whether the stage still has retry budget left; once the
    budget is exhausted the caller must restart the run or escalate.
    """

    def __init__(
        self,
        *,
        stage: str,
        detail: str,
        hint: str | None = None,
        retryable: bool = True,
        attempt: int = 1,
        session_id: str | None = None,
    ) -> None:
        """Initialize a stage failure with retry metadata."""

        super().__init__(stage=stage, detail=detail, hint=hint)
        self.retryable = retryable
        self.attempt = attempt
        self.session_id = session_id


class StageGroupError(PipelineError):
    """Raised when one or more branches of a parallel stage group failed."""

    def __init__(self, errors: Sequence[StageError]) -> None:
        """Aggregate branch failures into one error naming every failed stage."""

        self.errors = tuple(errors)
        failed = ", ".join(error.stage for error in self.errors if error.stage)
        detail = "; ".join(f"{error.stage}: {error.detail}" for error in self.errors)
        super().__init__(
            stage=failed,
            detail=f"Parallel stages failed ({detail})",
            hint="Retry each failed stage with `storylaunch retry`.",
        )

    @property
    def failed_stages(self) -> tuple[str, ...]:
        """Return ids of the failed branches in group order."""

        return tuple(error.stage for error in self.errors if error.stage)

    @property
    def retryable(self) -> bool:
        """Return whether every failed branch can still be retried."""

        return all(error.retryable for error in self.errors)


class ValidationGateError(PipelineError):
    """Raised when the final cross-stage validation reports failures."""

    def __init__(self, report: ValidationReport) -> None:
        """Build an aggregated message listing every failed check."""

        self.report = report
        listed = "; ".join(
            f"{failure.check} ({failure.reason})" for failure in report.failures
        )
        super().__init__(
            stage="validation",
            detail=f"Validation gate failed: {listed}",
            hint="Retry the stages behind the failed checks, then run again.",
        )


class SnapshotError(PipelineError):
    """Raised when a persisted run snapshot cannot be interpreted."""

    def __init__(self, detail: str, hint: str | None = None) -> None:
        """Initialize a snapshot error."""

        super().__init__(stage="snapshot", detail=detail, hint=hint)


class InvalidStageTransition(ValueError):
    """Raised when a stage status change breaks the stage state machine."""


class PipelineCancelled(Exception):
    """Raised at a cancellation checkpoint to unwind a cancelled run."""
