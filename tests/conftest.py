"""Shared pytest fixtures for the storylaunch test suite."""

from __future__ import annotations

from dataclasses import replace
from typing import Any, Callable

import pytest

from storylaunch.config import PipelinePolicy
from storylaunch.io.storage import MemoryRecordStore
from storylaunch.models import EffectSpec, SceneContent, SessionSettings
from storylaunch.pipeline import PipelineManager, SessionEventBus, StateSnapshotStore
from tests.doubles import FakeClock, FakeServices

SESSION_ID = "session-1"

SCENE_TEXT = (
    "[CHAR:Mira] Rain drummed on the lighthouse roof while Mira climbed the spiral "
    "stairs, and far below Tobin called her name over the waves."
)


@pytest.fixture
def clock() -> FakeClock:
    """Provide a manually advanced clock."""

    return FakeClock()


@pytest.fixture
def record_store() -> MemoryRecordStore:
    """Provide an empty in-memory durable store."""

    return MemoryRecordStore()


@pytest.fixture
def snapshots(record_store: MemoryRecordStore, clock: FakeClock) -> StateSnapshotStore:
    """Provide a snapshot store sharing the fake clock."""

    return StateSnapshotStore(record_store, clock=clock)


@pytest.fixture
def bus() -> SessionEventBus:
    """Provide an event bus that records history."""

    return SessionEventBus(keep_history=True)


@pytest.fixture
def services() -> FakeServices:
    """Provide fresh collaborator doubles."""

    return FakeServices()


@pytest.fixture
def make_content() -> Callable[..., SceneContent]:
    """Build scene content with overridable scene fields and session settings."""

    def _make(settings: dict[str, Any] | None = None, **scene_fields: Any) -> SceneContent:
        base_settings = SessionSettings(
            title="The Lighthouse",
            synopsis="A keeper's daughter follows a light across the bay.",
            narrator_voice_id="nova",
            sfx_enabled=True,
        )
        base = SceneContent(
            scene_id="scene-1",
            sequence_index=1,
            text=SCENE_TEXT,
            settings=replace(base_settings, **(settings or {})),
            mood="mysterious",
            choices=("Climb to the lamp", "Run to the shore"),
            effects=(EffectSpec("weather.rain_light", "Light rain", "beginning", 0.4, True),),
        )
        return replace(base, **scene_fields)

    return _make


@pytest.fixture
def make_manager(
    services: FakeServices,
    snapshots: StateSnapshotStore,
    bus: SessionEventBus,
    clock: FakeClock,
) -> Callable[..., PipelineManager]:
    """Build a manager over the shared doubles, store, bus, and clock."""

    def _make(policy: PipelinePolicy | None = None, **kwargs: Any) -> PipelineManager:
        return PipelineManager(
            SESSION_ID,
            services.bundle(),
            snapshots=snapshots,
            channel=bus,
            policy=policy if policy is not None else PipelinePolicy(watchdog_seconds=0.05),
            clock=clock,
            **kwargs,
        )

    return _make
