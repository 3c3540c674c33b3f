"""Unit tests for CLI output and error rendering helpers."""

from __future__ import annotations

import pytest
import typer

from storylaunch.cli_rendering import (
    echo_retry_outcome,
    echo_run_summary,
    echo_snapshot_info,
    exit_with_command_error,
)
from storylaunch.errors import StageError, StageGroupError
from storylaunch.models import RetryOutcome, RunOutcome, SnapshotInfo, ValidationWarning


def test_exit_with_command_error_renders_stage_error_with_hint(
    capsys: pytest.CaptureFixture[str],
) -> None:
    """Renderer should print stage diagnostics and hint before exiting with code 1."""

    error = StageError(
        stage="cover",
        detail="Cover generation failed: image service unavailable.",
        hint="Retry the stage with `storylaunch retry cover`.",
    )

    with pytest.raises(typer.Exit) as exc_info:
        exit_with_command_error("run", error)

    captured = capsys.readouterr()
    assert exc_info.value.exit_code == 1
    assert "run failed at stage `cover`" in captured.err
    assert "Hint: Retry the stage with `storylaunch retry cover`." in captured.err


def test_exit_with_command_error_names_every_failed_group_branch(
    capsys: pytest.CaptureFixture[str],
) -> None:
    """Group failures list each failed branch in the stage label."""

    error = StageGroupError(
        [
            StageError(stage="sfx", detail="library offline"),
            StageError(stage="cover", detail="no image URL"),
        ]
    )

    with pytest.raises(typer.Exit):
        exit_with_command_error("run", error)

    captured = capsys.readouterr()
    assert "run failed at stage `sfx, cover`" in captured.err
    assert "sfx: library offline; cover: no image URL" in captured.err


def test_exit_with_command_error_renders_non_stage_fallback(
    capsys: pytest.CaptureFixture[str],
) -> None:
    """Renderer should print fallback exception text for non-stage failures."""

    error = RuntimeError("unexpected snapshot error")

    with pytest.raises(typer.Exit) as exc_info:
        exit_with_command_error("status", error)

    captured = capsys.readouterr()
    assert exc_info.value.exit_code == 1
    assert "status failed: unexpected snapshot error" in captured.err


def test_echo_run_summary_prints_stats_and_warnings(
    capsys: pytest.CaptureFixture[str],
) -> None:
    """Run summaries print stage rows, stats, and warnings."""

    outcome = RunOutcome(
        session_id="session-1",
        statuses={"voices": "success", "sfx": "success"},
        stage_results={},
        stats={"title": "The Lighthouse", "narrator_display": "Nova + 2 voices", "sfx_count": 3},
        warnings=(ValidationWarning("sfx_ready", "2 of 3 sound effects are missing"),),
        choice_audio=None,
        ready_payload={},
        elapsed_seconds=1.5,
        resumed=True,
    )

    echo_run_summary(outcome)

    output = capsys.readouterr().out
    assert "Session: session-1" in output
    assert "Resumed: yes" in output
    assert "  voices: success" in output
    assert "Narrators: Nova + 2 voices" in output
    assert "Sound effects: 3" in output
    assert "Choice audio: no" in output
    assert "  sfx_ready: 2 of 3 sound effects are missing" in output
    assert "Elapsed: 1.5s" in output


def test_echo_retry_outcome_prints_error_to_stderr(
    capsys: pytest.CaptureFixture[str],
) -> None:
    """A failed retry prints its status and error."""

    echo_retry_outcome(
        RetryOutcome(
            stage="cover", status="error", success=False, retryable=False, attempt=2, error="boom"
        )
    )

    captured = capsys.readouterr()
    assert "Attempt: 2" in captured.out
    assert "Retryable: no" in captured.out
    assert "Error: boom" in captured.err


def test_echo_snapshot_info_shows_retry_counts(capsys: pytest.CaptureFixture[str]) -> None:
    """Snapshot inspection prints age, recoverability, and non-zero retries."""

    echo_snapshot_info(
        SnapshotInfo(
            session_id="session-1",
            schema_version=2,
            updated_at=0.0,
            age_minutes=3.0,
            recoverable=True,
            stage_status={"voices": "success", "cover": "error"},
            retry_count={"voices": 0, "cover": 1},
        )
    )

    output = capsys.readouterr().out
    assert "Schema version: 2" in output
    assert "Age: 3.0 min" in output
    assert "Recoverable: yes" in output
    assert "  voices: success\n" in output
    assert "  cover: error (retries: 1)" in output
