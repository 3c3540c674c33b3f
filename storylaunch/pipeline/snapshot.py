"""Versioned persistence of pipeline runs for crash recovery.

Responsibilities:
- Serialize the durable part of a `PipelineRun` under `pipeline-run:<session_id>`.
- Recover runs younger than the recovery TTL, migrating older schema versions.
- Expose snapshot metadata for operator tooling.
"""

from __future__ import annotations

import json
import time
from typing import Any, Callable

from ..errors import SnapshotError
from ..io.storage import DurableStore
from ..models import PipelineRun, SnapshotInfo
from ..models.stages import AUDIO, PENDING, STAGE_ORDER, STAGE_STATUSES, SUCCESS
from ..telemetry.logger import RunLogger

SNAPSHOT_SCHEMA_VERSION = 2
SNAPSHOT_KEY_PREFIX = "pipeline-run:"
DEFAULT_RECOVERY_TTL_MINUTES = 10.0


def snapshot_key(session_id: str) -> str:
    """Return the durable store key of one session snapshot."""

    return f"{SNAPSHOT_KEY_PREFIX}{session_id}"


class _UndecodableSnapshot(ValueError):
    """Raised internally when stored bytes do not describe a run."""


def _migrate_v1(run_payload: dict[str, Any]) -> dict[str, Any]:
    """Upgrade the four-stage layout by adding a pending `audio` stage."""

    migrated = dict(run_payload)
    statuses = dict(migrated.get("stage_status") or {})
    statuses.setdefault(AUDIO, PENDING)
    migrated["stage_status"] = statuses
    retries = dict(migrated.get("retry_count") or {})
    retries.setdefault(AUDIO, 0)
    migrated["retry_count"] = retries
    migrated.setdefault("stage_timestamps", {})
    return migrated


_MIGRATIONS: dict[int, Callable[[dict[str, Any]], dict[str, Any]]] = {
    1: _migrate_v1,
}


class StateSnapshotStore:
    """Save, recover, inspect, and clear run snapshots over a `DurableStore`."""

    def __init__(
        self,
        store: DurableStore,
        *,
        clock: Callable[[], float] = time.time,
        run_logger: RunLogger | None = None,
    ) -> None:
        """Initialize the snapshot store with storage, clock, and logger."""

        self._store = store
        self._clock = clock
        self._logger = run_logger or RunLogger()

    def save(self, run: PipelineRun) -> None:
        """Persist the durable fields of a run; the last writer wins."""

        payload = {
            "schema_version": SNAPSHOT_SCHEMA_VERSION,
            "session_id": run.session_id,
            "updated_at": self._clock(),
            "run": {
                "stage_status": run.all_statuses(),
                "stage_result": {
                    stage_id: result
                    for stage_id, result in run.stage_result.items()
                    if run.stage_status.get(stage_id) == SUCCESS
                },
                "retry_count": {
                    stage_id: int(run.retry_count.get(stage_id, 0))
                    for stage_id in STAGE_ORDER
                },
                "start_time": run.start_time,
                "stage_timestamps": run.stage_timestamps,
            },
        }
        data = json.dumps(payload, ensure_ascii=False, sort_keys=True).encode("utf-8")
        self._store.put(snapshot_key(run.session_id), data)

    def recover(
        self,
        session_id: str,
        max_age_minutes: float = DEFAULT_RECOVERY_TTL_MINUTES,
    ) -> PipelineRun | None:
        """Return the persisted run when it exists and is younger than the TTL.

        Raises:
            SnapshotError: If the snapshot was written by a newer schema version.
        """

        payload = self._load(session_id)
        if payload is None:
            return None
        if self._age_minutes(payload) >= max_age_minutes:
            self._logger.log_event(
                "snapshot", "expired", session=session_id, ttl_minutes=max_age_minutes
            )
            return None
        try:
            return self._build_run(session_id, payload["run"])
        except _UndecodableSnapshot as exc:
            self._logger.log_warning(
                "snapshot", "undecodable", session=session_id, reason=str(exc)
            )
            return None

    def clear(self, session_id: str) -> None:
        """Delete the snapshot of a session."""

        self._store.delete(snapshot_key(session_id))

    def inspect(
        self,
        session_id: str,
        max_age_minutes: float = DEFAULT_RECOVERY_TTL_MINUTES,
    ) -> SnapshotInfo | None:
        """Return snapshot metadata, or `None` when nothing readable is stored."""

        payload = self._load(session_id)
        if payload is None:
            return None
        run_payload = payload["run"]
        age_minutes = self._age_minutes(payload)
        return SnapshotInfo(
            session_id=session_id,
            schema_version=int(payload["schema_version"]),
            updated_at=float(payload["updated_at"]),
            age_minutes=age_minutes,
            recoverable=age_minutes < max_age_minutes,
            stage_status={
                stage_id: str(run_payload["stage_status"].get(stage_id, PENDING))
                for stage_id in STAGE_ORDER
            },
            retry_count={
                stage_id: int(run_payload.get("retry_count", {}).get(stage_id, 0))
                for stage_id in STAGE_ORDER
            },
        )

    def _age_minutes(self, payload: dict[str, Any]) -> float:
        """Return snapshot age in minutes according to the injected clock."""

        return max(0.0, self._clock() - float(payload["updated_at"])) / 60.0

    def _load(self, session_id: str) -> dict[str, Any] | None:
        """Read, decode, and migrate a stored snapshot envelope."""

        raw = self._store.get(snapshot_key(session_id))
        if raw is None:
            return None
        try:
            payload = self._decode(raw)
        except _UndecodableSnapshot as exc:
            self._logger.log_warning(
                "snapshot", "undecodable", session=session_id, reason=str(exc)
            )
            return None

        version = payload.get("schema_version", 1)
        if isinstance(version, bool) or not isinstance(version, int) or version < 1:
            self._logger.log_warning(
                "snapshot", "undecodable", session=session_id, reason="schema_version"
            )
            return None
        if version > SNAPSHOT_SCHEMA_VERSION:
            raise SnapshotError(
                f"Snapshot for session `{session_id}` uses schema version {version}; "
                f"this release reads up to {SNAPSHOT_SCHEMA_VERSION}.",
                hint="Upgrade storylaunch or clear the snapshot with `storylaunch clear`.",
            )

        run_payload = payload["run"]
        while version < SNAPSHOT_SCHEMA_VERSION:
            run_payload = _MIGRATIONS[version](run_payload)
            version += 1
            self._logger.log_event(
                "snapshot", "migrated", session=session_id, schema_version=version
            )
        return {**payload, "schema_version": version, "run": run_payload}

    @staticmethod
    def _decode(raw: bytes) -> dict[str, Any]:
        """Parse snapshot bytes into an envelope with the required fields."""

        try:
            payload = json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise _UndecodableSnapshot("invalid_json") from exc
        if not isinstance(payload, dict):
            raise _UndecodableSnapshot("root_not_object")
        if not isinstance(payload.get("run"), dict):
            raise _UndecodableSnapshot("missing_run")
        if not isinstance(payload["run"].get("stage_status"), dict):
            raise _UndecodableSnapshot("missing_stage_status")
        updated_at = payload.get("updated_at")
        if isinstance(updated_at, bool) or not isinstance(updated_at, int | float):
            raise _UndecodableSnapshot("missing_updated_at")
        return payload

    @staticmethod
    def _build_run(session_id: str, run_payload: dict[str, Any]) -> PipelineRun:
        """Rehydrate a `PipelineRun` from a migrated run payload."""

        raw_statuses = run_payload["stage_status"]
        statuses: dict[str, str] = {}
        for stage_id in STAGE_ORDER:
            status = raw_statuses.get(stage_id, PENDING)
            if status not in STAGE_STATUSES:
                raise _UndecodableSnapshot(f"unknown_status_{stage_id}")
            statuses[stage_id] = status

        raw_results = run_payload.get("stage_result") or {}
        if not isinstance(raw_results, dict):
            raise _UndecodableSnapshot("stage_result_not_object")
        results = {
            stage_id: dict(raw_results[stage_id])
            for stage_id in STAGE_ORDER
            if statuses[stage_id] == SUCCESS and isinstance(raw_results.get(stage_id), dict)
        }

        raw_retries = run_payload.get("retry_count") or {}
        try:
            retries = {stage_id: int(raw_retries.get(stage_id, 0)) for stage_id in STAGE_ORDER}
            start_time = float(run_payload.get("start_time", 0.0))
        except (TypeError, ValueError) as exc:
            raise _UndecodableSnapshot("invalid_counters") from exc

        timestamps = run_payload.get("stage_timestamps") or {}
        return PipelineRun(
            session_id=session_id,
            stage_status=statuses,
            stage_result=results,
            retry_count=retries,
            start_time=start_time,
            stage_timestamps={
                stage_id: dict(value)
                for stage_id, value in timestamps.items()
                if isinstance(value, dict)
            },
        )
