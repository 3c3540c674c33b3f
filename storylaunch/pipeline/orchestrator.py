"""Pipeline orchestration for storylaunch.

Responsibilities:
- Own the `PipelineRun` of one session and drive the fixed stage graph.
- Persist a snapshot after every stage or parallel group and recover from it.
- Run the validation gate and announce readiness exactly once (plus one resend).
- Offer out-of-band stage retry and cover regeneration.

Key types:
- `PipelineManager`: orchestration facade for one (session, scene) pair.
"""

from __future__ import annotations

import asyncio
import time
from typing import Callable, Mapping

from ..config import PipelinePolicy
from ..errors import (
    PipelineCancelled,
    PipelineError,
    StageError,
    StageGroupError,
    ValidationGateError,
)
from ..models import DegradedResult, PipelineRun, RetryOutcome, RunOutcome, SceneContent
from ..models.stages import (
    ASSETS_GROUP,
    AUDIO,
    COVER,
    ERROR,
    IN_PROGRESS,
    PENDING,
    QA,
    STAGE_ORDER,
    STAGES,
    SUCCESS,
    VOICES,
    Stage,
    check_transition,
    group_members,
    stage_by_id,
)
from ..services import StageServices
from ..telemetry.logger import RunLogger
from .cancellation import CancellationToken
from .events import (
    CoverRegenerated,
    EventChannel,
    PipelineFailed,
    PipelineResumed,
    PipelineStarted,
    SequenceIdFactory,
    StageUpdate,
    ValidationResultEvent,
)
from .gate import ValidationGate
from .notifier import ReadyNotifier
from .progress import ProgressMapper
from .runners import DEFAULT_RUNNERS, StageRunner, run_choice_narration, with_cover_override
from .snapshot import StateSnapshotStore
from .telemetry import PipelineTelemetryMixin


class PipelineManager(PipelineTelemetryMixin):
    """Coordinate all stages for one story session and scene."""

    def __init__(
        self,
        session_id: str,
        services: StageServices,
        *,
        snapshots: StateSnapshotStore,
        channel: EventChannel,
        policy: PipelinePolicy | None = None,
        run_logger: RunLogger | None = None,
        clock: Callable[[], float] = time.time,
        runners: Mapping[str, StageRunner] | None = None,
        sequence_ids: SequenceIdFactory | None = None,
    ) -> None:
        """Wire collaborators, policy, and event plumbing for one session."""

        self.session_id = session_id
        self._services = services
        self._snapshots = snapshots
        self._channel = channel
        self._policy = policy if policy is not None else PipelinePolicy()
        self._policy.validate()
        self._run_logger = run_logger if run_logger is not None else RunLogger()
        self._clock = clock
        self._runners: dict[str, StageRunner] = {**DEFAULT_RUNNERS, **(runners or {})}
        self._sequence_ids = sequence_ids if sequence_ids is not None else SequenceIdFactory()
        self._progress = ProgressMapper(session_id, channel, self._sequence_ids, clock)
        self._gate = ValidationGate(self._policy.best_effort_stages)
        self._notifier = ReadyNotifier(
            session_id,
            channel,
            self._sequence_ids,
            watchdog_seconds=self._policy.watchdog_seconds,
            clock=clock,
            run_logger=self._run_logger,
        )
        self._token = CancellationToken()
        self._content: SceneContent | None = None
        self._gate_passed = False
        self.run_state: PipelineRun | None = None

    @property
    def policy(self) -> PipelinePolicy:
        """Return the active orchestration policy."""

        return self._policy

    @property
    def notifier(self) -> ReadyNotifier:
        """Return the ready notifier, mainly for watchdog inspection."""

        return self._notifier

    async def run(self, content: SceneContent) -> RunOutcome | None:
        """Execute the pipeline for one scene.

        Returns:
            The run outcome, or `None` when the run was cancelled.

        Raises:
            PipelineError: If a stage, the parallel group, or the validation gate fails.
        """

        self._content = content
        self._gate_passed = False
        run: PipelineRun | None = None
        try:
            self._token.raise_if_cancelled()
            run, resumed = self._start_or_recover()

            await self._execute_single(run, content, VOICES)
            await self._execute_group(run, content, ASSETS_GROUP)
            await self._execute_single(run, content, QA)
            await self._execute_single(run, content, AUDIO)
            if content.has_choices and content.settings.audio_enabled:
                await self._narrate_choices(run, content)

            self._token.raise_if_cancelled()
            report = self._gate.check(run, content.settings)
            run.validation = report
            self._channel.publish(
                ValidationResultEvent(
                    session_id=self.session_id,
                    failures=tuple(report.to_dict()["failures"]),
                    warnings=tuple(report.to_dict()["warnings"]),
                )
            )
            for warning in report.warnings:
                self._run_logger.log_warning(
                    "validation", "warning", session=self.session_id, check=warning.check
                )
            if not report.passed:
                raise ValidationGateError(report)
            self._gate_passed = True

            self._snapshots.clear(self.session_id)
            self._token.raise_if_cancelled()
            payload = self._notifier.announce(run, content)
            self._run_logger.log_event(
                "pipeline", "ready", session=self.session_id, resumed=resumed
            )
            return RunOutcome(
                session_id=self.session_id,
                statuses=run.all_statuses(),
                stage_results=dict(run.stage_result),
                stats=payload["stats"],
                warnings=report.warnings,
                choice_audio=run.choice_audio,
                ready_payload=payload,
                elapsed_seconds=max(0.0, self._clock() - run.start_time),
                resumed=resumed,
            )
        except PipelineCancelled:
            self._notifier.cancel_watchdog()
            self._run_logger.log_event("pipeline", "cancelled", session=self.session_id)
            return None
        except Exception as exc:
            self._notifier.cancel_watchdog()
            failed_stage = exc.stage if isinstance(exc, PipelineError) else None
            if failed_stage is None and run is not None:
                failed_stage = run.current_stage()
            self._channel.publish(
                PipelineFailed(
                    session_id=self.session_id,
                    error=str(exc),
                    failed_stage=failed_stage,
                    statuses=run.all_statuses() if run is not None else {},
                )
            )
            self._run_logger.log_stage_failure(
                failed_stage or "pipeline", type(exc).__name__, session=self.session_id
            )
            raise

    def cancel(self, reason: str = "cancelled") -> None:
        """Request cooperative cancellation of the current run."""

        self._token.cancel(reason)
        if self.run_state is not None:
            self.run_state.cancelled = True
        self._notifier.cancel_watchdog()

    def confirm_ready(self) -> None:
        """Acknowledge the ready payload and stop the watchdog."""

        if self.run_state is not None:
            self.run_state.ready_acked = True
        self._notifier.cancel_watchdog()
        self._run_logger.log_event("ready", "acknowledged", session=self.session_id)

    async def retry_stage(
        self, stage_id: str, content: SceneContent | None = None
    ) -> RetryOutcome:
        """Re-run one failed stage within its retry budget.

        Raises:
            ValueError: If the stage id is unknown.
            PipelineError: If there is no run, no content, or the stage is not retryable
                in its current state.
        """

        stage = stage_by_id(stage_id)
        target = self._require_content(stage_id, content)
        run = self._require_run(stage_id)

        status = run.stage_status[stage_id]
        if status != ERROR:
            raise PipelineError(
                stage=stage_id,
                detail=f"Stage `{stage_id}` is `{status}`; only failed stages can be retried.",
            )
        self._require_dependencies(run, stage)

        used = run.retry_count[stage_id]
        if self._token.cancelled:
            return RetryOutcome(
                stage=stage_id,
                status=status,
                success=False,
                retryable=used < self._policy.max_retries,
                attempt=used,
                error="cancelled",
            )
        if used >= self._policy.max_retries:
            self._run_logger.log_warning(
                stage_id, "retry_exhausted", session=self.session_id, attempts=used
            )
            return RetryOutcome(
                stage=stage_id,
                status=status,
                success=False,
                retryable=False,
                attempt=used,
                error=f"Retry budget exhausted ({used}/{self._policy.max_retries}).",
            )

        run.retry_count[stage_id] = used + 1
        self._set_status(run, stage_id, PENDING, reset=True, message="Retrying...")
        self._progress.reset_stage(stage_id)
        self._run_logger.log_event(
            stage_id, "retry", session=self.session_id, attempt=used + 1
        )
        return await self._rerun(run, target, stage_id, attempt=used + 1, persist=True)

    async def regenerate_cover(
        self,
        content: SceneContent | None = None,
        cover_url: str | None = None,
    ) -> RetryOutcome:
        """Replace the cover art, reusing `cover_url` when given."""

        stage = stage_by_id(COVER)
        target = with_cover_override(self._require_content(COVER, content), cover_url)
        run = self._require_run(COVER)
        self._require_dependencies(run, stage)

        run.retry_count[COVER] = 0
        if run.stage_status[COVER] != PENDING:
            self._set_status(run, COVER, PENDING, reset=True, message="Regenerating cover art...")
        self._progress.reset_stage(COVER)
        outcome = await self._rerun(run, target, COVER, attempt=1, persist=not self._gate_passed)
        if outcome.success and self._gate_passed:
            self._channel.publish(
                CoverRegenerated(
                    session_id=self.session_id,
                    cover_url=run.stage_result.get(COVER, {}).get("cover_url"),
                    all_statuses=run.all_statuses(),
                )
            )
        return outcome

    def _start_or_recover(self) -> tuple[PipelineRun, bool]:
        """Return the recovered run with interrupted stages reset, or a fresh run."""

        recovered = self._snapshots.recover(
            self.session_id, self._policy.recovery_ttl_minutes
        )
        if recovered is None:
            run = PipelineRun.fresh(self.session_id, self._clock())
            self.run_state = run
            self._channel.publish(
                PipelineStarted(
                    session_id=self.session_id,
                    stages=self._stage_table(),
                    all_statuses=run.all_statuses(),
                    start_time=run.start_time,
                )
            )
            self._run_logger.log_event("pipeline", "started", session=self.session_id)
            return run, False

        for stage_id in STAGE_ORDER:
            if recovered.stage_status[stage_id] in (IN_PROGRESS, ERROR):
                check_transition(stage_id, recovered.stage_status[stage_id], PENDING, reset=True)
                recovered.stage_status[stage_id] = PENDING
                recovered.stage_result.pop(stage_id, None)
                recovered.stage_timestamps.setdefault(stage_id, {})[PENDING] = self._clock()
                self._progress.reset_stage(stage_id)
        self.run_state = recovered
        resumed_from = recovered.first_unfinished_stage()
        self._channel.publish(
            PipelineResumed(
                session_id=self.session_id,
                stages=self._stage_table(),
                all_statuses=recovered.all_statuses(),
                resumed_from=resumed_from,
                start_time=recovered.start_time,
            )
        )
        self._run_logger.log_event(
            "pipeline", "resumed", session=self.session_id, resumed_from=resumed_from
        )
        return recovered, True

    async def _execute_single(self, run: PipelineRun, content: SceneContent, stage_id: str) -> None:
        """Run one sequential stage and persist the snapshot afterwards."""

        if run.stage_status[stage_id] == SUCCESS:
            self._run_logger.log_event(stage_id, "skip", session=self.session_id)
            return
        self._require_dependencies(run, stage_by_id(stage_id))
        self._token.raise_if_cancelled()
        try:
            await self._execute_stage(run, content, stage_id)
        except StageError:
            self._snapshots.save(run)
            raise
        self._snapshots.save(run)

    async def _execute_group(self, run: PipelineRun, content: SceneContent, group: str) -> None:
        """Run a parallel group, record every branch outcome, then persist once."""

        members = [
            stage_id for stage_id in group_members(group) if run.stage_status[stage_id] != SUCCESS
        ]
        if not members:
            return
        for stage_id in members:
            self._require_dependencies(run, stage_by_id(stage_id))
        self._token.raise_if_cancelled()

        outcomes = await asyncio.gather(
            *(self._execute_stage(run, content, stage_id) for stage_id in members),
            return_exceptions=True,
        )
        if any(isinstance(outcome, PipelineCancelled) for outcome in outcomes):
            raise PipelineCancelled(self._token.reason or "cancelled")

        self._snapshots.save(run)
        for outcome in outcomes:
            if isinstance(outcome, BaseException) and not isinstance(outcome, StageError):
                raise outcome
        errors = [outcome for outcome in outcomes if isinstance(outcome, StageError)]
        if errors:
            raise StageGroupError(errors)

    async def _execute_stage(self, run: PipelineRun, content: SceneContent, stage_id: str) -> None:
        """Run one stage runner and record success, degradation, or failure."""

        stage = stage_by_id(stage_id)
        runner = self._runners[stage_id]
        attempt = run.retry_count[stage_id] + 1
        report = self._progress.reporter(stage_id)
        self._set_status(run, stage_id, IN_PROGRESS, message=f"{stage.display_name}...")

        try:
            result = await self._run_stage(
                stage_id,
                lambda: runner(run, content, self._services, report, self._token),
                session=self.session_id,
                attempt=attempt,
            )
        except PipelineCancelled:
            raise
        except StageError as exc:
            self._token.raise_if_cancelled()
            exc.attempt = attempt
            exc.session_id = self.session_id
            exc.retryable = run.retry_count[stage_id] < self._policy.max_retries
            if self._degrade(run, stage, exc):
                return
            raise
        except Exception as exc:
            self._token.raise_if_cancelled()
            error = StageError(
                stage=stage_id,
                detail=f"{stage.display_name} failed: {exc}",
                retryable=run.retry_count[stage_id] < self._policy.max_retries,
                attempt=attempt,
                session_id=self.session_id,
            )
            if self._degrade(run, stage, error):
                return
            raise error from exc

        self._token.raise_if_cancelled()
        self._set_status(run, stage_id, SUCCESS, message=f"{stage.display_name} complete")
        run.stage_result[stage_id] = result

    def _degrade(self, run: PipelineRun, stage: Stage, error: StageError) -> bool:
        """Record a failure; best-effort stages succeed with a degraded result instead."""

        if stage.id not in self._policy.best_effort_stages:
            self._set_status(
                run,
                stage.id,
                ERROR,
                message=error.detail,
                can_retry=error.retryable,
            )
            return False
        degraded = DegradedResult(stage.id, error.detail)
        self._run_logger.log_warning(
            stage.id, "degraded", session=self.session_id, attempt=error.attempt
        )
        self._set_status(run, stage.id, SUCCESS, message=f"{stage.display_name} degraded")
        run.stage_result[stage.id] = degraded.to_result()
        return True

    async def _rerun(
        self,
        run: PipelineRun,
        content: SceneContent,
        stage_id: str,
        *,
        attempt: int,
        persist: bool,
    ) -> RetryOutcome:
        """Re-execute one reset stage and report the new status."""

        try:
            await self._execute_stage(run, content, stage_id)
        except PipelineCancelled:
            if run.stage_status[stage_id] == IN_PROGRESS:
                self._set_status(run, stage_id, ERROR, message="Cancelled")
            if persist:
                self._snapshots.save(run)
            return RetryOutcome(
                stage=stage_id,
                status=run.stage_status[stage_id],
                success=False,
                retryable=False,
                attempt=attempt,
                error="cancelled",
            )
        except StageError as exc:
            if persist:
                self._snapshots.save(run)
            return RetryOutcome(
                stage=stage_id,
                status=run.stage_status[stage_id],
                success=False,
                retryable=exc.retryable,
                attempt=attempt,
                error=exc.detail,
            )
        if persist:
            self._snapshots.save(run)
        return RetryOutcome(
            stage=stage_id,
            status=run.stage_status[stage_id],
            success=True,
            retryable=run.retry_count[stage_id] < self._policy.max_retries,
            attempt=attempt,
        )

    async def _narrate_choices(self, run: PipelineRun, content: SceneContent) -> None:
        """Synthesize choice narration; failures leave `choice_audio` empty."""

        self._token.raise_if_cancelled()
        try:
            choice_audio = await run_choice_narration(run, content, self._services, self._token)
        except PipelineCancelled:
            raise
        except Exception as exc:
            self._run_logger.log_warning(
                "choices",
                "narration_failed",
                session=self.session_id,
                error_type=type(exc).__name__,
            )
            run.choice_audio = None
            return
        self._token.raise_if_cancelled()
        run.choice_audio = choice_audio

    def _set_status(
        self,
        run: PipelineRun,
        stage_id: str,
        new: str,
        *,
        reset: bool = False,
        message: str = "",
        can_retry: bool | None = None,
    ) -> None:
        """Apply a validated status change and publish `stage-update`."""

        previous = run.stage_status[stage_id]
        check_transition(stage_id, previous, new, reset=reset)
        run.stage_status[stage_id] = new
        if new != SUCCESS:
            run.stage_result.pop(stage_id, None)
        timestamp = self._clock()
        run.stage_timestamps.setdefault(stage_id, {})[new] = timestamp
        details: dict[str, object] = {
            "retry_attempt": run.retry_count[stage_id],
            "can_retry": (
                can_retry
                if can_retry is not None
                else new == ERROR and run.retry_count[stage_id] < self._policy.max_retries
            ),
        }
        if message:
            details["message"] = message
        self._channel.publish(
            StageUpdate(
                session_id=self.session_id,
                stage=stage_id,
                status=new,
                previous_status=previous,
                all_statuses=run.all_statuses(),
                details=details,
                timestamp=timestamp,
                sequence_id=self._sequence_ids.next(self.session_id, "stage"),
            )
        )

    def _require_dependencies(self, run: PipelineRun, stage: Stage) -> None:
        """Raise when a dependency of `stage` has not succeeded."""

        unmet = sorted(dep for dep in stage.depends_on if run.stage_status[dep] != SUCCESS)
        if unmet:
            raise PipelineError(
                stage=stage.id,
                detail=f"Stage `{stage.id}` requires successful {', '.join(unmet)}.",
                hint="Retry the failed dependencies first.",
            )

    def _require_content(self, stage_id: str, content: SceneContent | None) -> SceneContent:
        """Return explicit content or the content of the last `run` call."""

        target = content if content is not None else self._content
        if target is None:
            raise PipelineError(
                stage=stage_id,
                detail="No scene content is available for this session.",
                hint="Pass the scene content or call `run` first.",
            )
        self._content = target
        return target

    def _require_run(self, stage_id: str) -> PipelineRun:
        """Return the in-memory run or the recovered snapshot."""

        if self.run_state is None:
            self.run_state = self._snapshots.recover(
                self.session_id, self._policy.recovery_ttl_minutes
            )
        if self.run_state is None:
            raise PipelineError(
                stage=stage_id,
                detail=f"No recoverable run found for session `{self.session_id}`.",
                hint="Start the pipeline with `storylaunch run`.",
            )
        return self.run_state

    @staticmethod
    def _stage_table() -> tuple[dict[str, str], ...]:
        """Describe stages for start/resume events."""

        return tuple({"id": stage.id, "name": stage.display_name} for stage in STAGES)
