"""CLI output and error rendering helpers.

This module centralizes user-facing CLI presentation for command diagnostics,
stage status tables, run summaries, and snapshot inspection.
"""

from __future__ import annotations

from typing import Mapping, NoReturn, Sequence

import typer

from .errors import PipelineError
from .models import RetryOutcome, RunOutcome, SnapshotInfo, ValidationWarning


def exit_with_command_error(command_name: str, exc: Exception) -> NoReturn:
    """Print concise diagnostics for command failures and exit with code 1."""

    if isinstance(exc, PipelineError):
        typer.secho(
            f"{command_name} failed at stage `{exc.stage}`: {exc.detail}",
            fg=typer.colors.RED,
            err=True,
        )
        if exc.hint:
            typer.secho(f"Hint: {exc.hint}", fg=typer.colors.YELLOW, err=True)
    else:
        typer.secho(f"{command_name} failed: {exc}", fg=typer.colors.RED, err=True)
    raise typer.Exit(code=1) from exc


def echo_stage_statuses(
    statuses: Mapping[str, str], retries: Mapping[str, int] | None = None
) -> None:
    """Print one `stage: status` row per stage in execution order."""

    for stage_id, status in statuses.items():
        suffix = ""
        if retries and retries.get(stage_id):
            suffix = f" (retries: {retries[stage_id]})"
        typer.echo(f"  {stage_id}: {status}{suffix}")


def echo_warnings(warnings: Sequence[ValidationWarning]) -> None:
    """Print validation warnings, if any."""

    if not warnings:
        return
    typer.echo("Warnings:")
    for warning in warnings:
        typer.secho(f"  {warning.check}: {warning.reason}", fg=typer.colors.YELLOW)


def echo_run_summary(outcome: RunOutcome) -> None:
    """Print the session summary of a completed run."""

    typer.echo(f"Session: {outcome.session_id}")
    typer.echo(f"Resumed: {'yes' if outcome.resumed else 'no'}")
    typer.echo("Stages:")
    echo_stage_statuses(outcome.statuses)
    if outcome.stats.get("title"):
        typer.echo(f"Title: {outcome.stats['title']}")
    if outcome.stats.get("narrator_display"):
        typer.echo(f"Narrators: {outcome.stats['narrator_display']}")
    typer.echo(f"Sound effects: {outcome.stats.get('sfx_count', 0)}")
    typer.echo(f"Choice audio: {'yes' if outcome.choice_audio else 'no'}")
    echo_warnings(outcome.warnings)
    typer.echo(f"Elapsed: {outcome.elapsed_seconds:.1f}s")


def echo_retry_outcome(outcome: RetryOutcome) -> None:
    """Print the result of a stage retry."""

    typer.echo(f"Stage: {outcome.stage}")
    typer.echo(f"Status: {outcome.status}")
    typer.echo(f"Attempt: {outcome.attempt}")
    typer.echo(f"Retryable: {'yes' if outcome.retryable else 'no'}")
    if outcome.error:
        typer.secho(f"Error: {outcome.error}", fg=typer.colors.RED, err=True)


def echo_snapshot_info(info: SnapshotInfo) -> None:
    """Print operator details of a stored snapshot."""

    typer.echo(f"Session: {info.session_id}")
    typer.echo(f"Schema version: {info.schema_version}")
    typer.echo(f"Age: {info.age_minutes:.1f} min")
    typer.echo(f"Recoverable: {'yes' if info.recoverable else 'no'}")
    typer.echo("Stages:")
    echo_stage_statuses(info.stage_status, info.retry_count)
