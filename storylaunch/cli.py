"""Command-line interface for storylaunch.

Responsibilities:
- Expose commands that run, retry, inspect, and clear pipeline runs.
- Convert CLI arguments into `LaunchConfig` and wire the pipeline manager.

Key public functions:
- `app`: Typer application instance.
- `main`: invoke the Typer application.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, replace
import os
from pathlib import Path
from typing import Annotated

import typer

from .cli_rendering import (
    echo_retry_outcome,
    echo_run_summary,
    echo_snapshot_info,
    exit_with_command_error,
)
from .config import ConfigLoader, LaunchConfig, RuntimeConfigSources
from .errors import PipelineError
from .io.scene_loader import SceneDocument, load_scene_document
from .io.storage import FileRecordStore, save_json
from .parsing import normalize_optional_string
from .pipeline import PipelineManager, SessionEventBus, StateSnapshotStore
from .pipeline.events import PipelineEvent, PipelineReady, ProgressEvent, StageUpdate
from .provider_factory import ProviderFactory
from .telemetry.logger import RunLogger

app = typer.Typer(
    name="storylaunch",
    no_args_is_help=True,
    help="Prepare interactive story scenes for playback.",
)

RECORDS_DIRNAME = "records"

SceneArgument = Annotated[Path, typer.Argument(help="Path to a YAML scene document.")]
SessionOption = Annotated[
    str | None,
    typer.Option("--session", help="Session id (defaults to the document's `session_id`)."),
]
ConfigOption = Annotated[
    Path | None, typer.Option("--config", help="Path to YAML config file.")
]
StateDirOption = Annotated[
    Path | None,
    typer.Option("--state-dir", help="Directory for snapshots (overrides config value)."),
]
ApiKeyOption = Annotated[
    str | None, typer.Option("--api-key", help="Provider API key override.")
]


class LaunchProgressPrinter:
    """Render `[progress]` lines for pipeline events and acknowledge readiness."""

    def __init__(self, command_name: str) -> None:
        """Initialize printer metadata for a command invocation."""

        self._command_name = command_name
        self._manager: PipelineManager | None = None

    def attach(self, manager: PipelineManager) -> None:
        """Bind the manager whose ready payload should be acknowledged."""

        self._manager = manager

    def __call__(self, event: PipelineEvent) -> None:
        """Print one line per stage update or progress event."""

        if isinstance(event, StageUpdate):
            typer.echo(
                f"[progress] command={self._command_name} stage={event.stage} "
                f"status={event.status}"
            )
        elif isinstance(event, ProgressEvent):
            message = f" {event.message}" if event.message else ""
            typer.echo(
                f"[progress] command={self._command_name} stage={event.stage} "
                f"{event.percent}%{message}"
            )
        elif isinstance(event, PipelineReady) and self._manager is not None:
            self._manager.confirm_ready()


@dataclass(frozen=True, slots=True)
class _CommandContext:
    """Objects shared by commands that operate on one session."""

    config: LaunchConfig
    session_id: str
    snapshots: StateSnapshotStore
    store: FileRecordStore
    run_logger: RunLogger


def _load_config(config_file: Path | None, state_dir: Path | None) -> LaunchConfig:
    """Load YAML or environment config and map failures to pipeline errors."""

    try:
        config = (
            ConfigLoader.from_yaml(config_file)
            if config_file is not None
            else ConfigLoader.from_env()
        )
    except FileNotFoundError as exc:
        raise PipelineError(
            stage="config",
            detail=f"Config file not found: `{config_file}`.",
            hint="Provide an existing path via `--config <path.yaml>`.",
        ) from exc
    except ValueError as exc:
        raise PipelineError(
            stage="config",
            detail=f"Invalid configuration: {exc}",
            hint="Fix config schema/values and rerun.",
        ) from exc
    if state_dir is not None:
        config = replace(config, state_dir=state_dir)
    return config


def _load_document(scene: Path) -> SceneDocument:
    """Load a scene document and map failures to pipeline errors."""

    try:
        return load_scene_document(scene)
    except FileNotFoundError as exc:
        raise PipelineError(
            stage="scene",
            detail=f"Scene document not found: `{scene}`.",
            hint="Pass the path of an existing YAML scene document.",
        ) from exc
    except ValueError as exc:
        raise PipelineError(
            stage="scene",
            detail=str(exc),
            hint="Fix the scene document and rerun.",
        ) from exc


def _build_context(
    config: LaunchConfig, session_id: str, runtime_cli_values: dict[str, str] | None = None
) -> _CommandContext:
    """Attach runtime sources and open the session's record store."""

    config = replace(
        config,
        runtime_sources=RuntimeConfigSources(cli=runtime_cli_values or {}, env=os.environ),
    )
    run_logger = RunLogger()
    store = FileRecordStore(config.state_dir / RECORDS_DIRNAME)
    return _CommandContext(
        config=config,
        session_id=session_id,
        snapshots=StateSnapshotStore(store, run_logger=run_logger),
        store=store,
        run_logger=run_logger,
    )


def _build_manager(
    context: _CommandContext, document: SceneDocument, printer: LaunchProgressPrinter
) -> PipelineManager:
    """Create a manager for the document with a printing event bus."""

    bus = SessionEventBus(keep_history=False)
    bus.subscribe(context.session_id, printer)
    manager = PipelineManager(
        context.session_id,
        ProviderFactory.create_services(context.config, document, context.store),
        snapshots=context.snapshots,
        channel=bus,
        policy=context.config.policy(),
        run_logger=context.run_logger,
    )
    printer.attach(manager)
    return manager


def _runtime_cli_values(api_key: str | None) -> dict[str, str]:
    normalized = normalize_optional_string(api_key)
    return {"api_key": normalized} if normalized is not None else {}


@app.command("run")
def run_command(
    scene: SceneArgument,
    session: SessionOption = None,
    config_file: ConfigOption = None,
    state_dir: StateDirOption = None,
    api_key: ApiKeyOption = None,
    out: Annotated[
        Path | None,
        typer.Option("--out", help="Write the ready payload JSON to this path."),
    ] = None,
) -> None:
    """Run the pipeline for one scene, resuming a recent snapshot when present."""

    try:
        document = _load_document(scene)
        config = _load_config(config_file, state_dir)
        context = _build_context(
            config, session or document.session_id, _runtime_cli_values(api_key)
        )
        printer = LaunchProgressPrinter(command_name="run")
        manager = _build_manager(context, document, printer)
        outcome = asyncio.run(manager.run(document.content))
    except Exception as exc:
        exit_with_command_error("run", exc)

    if outcome is None:
        typer.secho("Run cancelled.", fg=typer.colors.YELLOW)
        raise typer.Exit(code=1)
    echo_run_summary(outcome)
    if out is not None:
        typer.echo(f"Ready payload: {save_json(out, outcome.ready_payload)}")


@app.command("retry")
def retry_command(
    scene: SceneArgument,
    stage: Annotated[str, typer.Argument(help="Failed stage to retry.")],
    session: SessionOption = None,
    config_file: ConfigOption = None,
    state_dir: StateDirOption = None,
    api_key: ApiKeyOption = None,
) -> None:
    """Retry one failed stage of a stored run."""

    try:
        document = _load_document(scene)
        config = _load_config(config_file, state_dir)
        context = _build_context(
            config, session or document.session_id, _runtime_cli_values(api_key)
        )
        manager = _build_manager(context, document, LaunchProgressPrinter(command_name="retry"))
        outcome = asyncio.run(manager.retry_stage(stage.strip().lower(), document.content))
    except Exception as exc:
        exit_with_command_error("retry", exc)

    echo_retry_outcome(outcome)
    if not outcome.success:
        raise typer.Exit(code=1)
    typer.echo("Run `storylaunch run` again to continue the pipeline.")


@app.command("status")
def status_command(
    session: Annotated[str, typer.Argument(help="Session id.")],
    config_file: ConfigOption = None,
    state_dir: StateDirOption = None,
) -> None:
    """Show the stored snapshot of a session."""

    try:
        context = _build_context(_load_config(config_file, state_dir), session)
        info = context.snapshots.inspect(session, context.config.recovery_ttl_minutes)
    except Exception as exc:
        exit_with_command_error("status", exc)

    if info is None:
        typer.echo(f"No snapshot for session `{session}`.")
        return
    echo_snapshot_info(info)


@app.command("clear")
def clear_command(
    session: Annotated[str, typer.Argument(help="Session id.")],
    config_file: ConfigOption = None,
    state_dir: StateDirOption = None,
) -> None:
    """Delete the stored snapshot of a session."""

    try:
        context = _build_context(_load_config(config_file, state_dir), session)
        context.snapshots.clear(session)
    except Exception as exc:
        exit_with_command_error("clear", exc)

    typer.echo(f"Cleared snapshot for session `{session}`.")


def main() -> None:
    """CLI entrypoint for console scripts."""
    app()


if __name__ == "__main__":
    main()
