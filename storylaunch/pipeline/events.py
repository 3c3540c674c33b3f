"""Typed pipeline events and the session-scoped event channel.

Responsibilities:
- Define one frozen dataclass per event published by the orchestrator.
- Generate unique sequence ids for client-side de-duplication.
- Provide an in-process session-scoped fan-out bus.

Transport adapters forward published events to remote consumers; core logic only
depends on the `EventChannel` protocol.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import asdict, dataclass, field
from itertools import count
from typing import Any, Callable, ClassVar, Protocol


@dataclass(frozen=True, slots=True)
class PipelineEvent:
    """Base class for events published on a session channel."""

    name: ClassVar[str] = "pipeline-event"

    session_id: str

    def to_payload(self) -> dict[str, Any]:
        """Return the event body without the routing session id."""

        payload = asdict(self)
        payload.pop("session_id", None)
        return payload


@dataclass(frozen=True, slots=True)
class PipelineStarted(PipelineEvent):
    """A fresh run initialized every stage to pending."""

    name: ClassVar[str] = "pipeline-started"

    stages: tuple[dict[str, str], ...] = ()
    all_statuses: dict[str, str] = field(default_factory=dict)
    start_time: float = 0.0


@dataclass(frozen=True, slots=True)
class PipelineResumed(PipelineEvent):
    """A run was rehydrated from a snapshot."""

    name: ClassVar[str] = "pipeline-resumed"

    stages: tuple[dict[str, str], ...] = ()
    all_statuses: dict[str, str] = field(default_factory=dict)
    resumed_from: str | None = None
    start_time: float = 0.0


@dataclass(frozen=True, slots=True)
class StageUpdate(PipelineEvent):
    """One stage changed status."""

    name: ClassVar[str] = "stage-update"

    stage: str = ""
    status: str = ""
    previous_status: str = ""
    all_statuses: dict[str, str] = field(default_factory=dict)
    details: dict[str, Any] = field(default_factory=dict)
    timestamp: float = 0.0
    sequence_id: str = ""


@dataclass(frozen=True, slots=True)
class ProgressEvent(PipelineEvent):
    """Global progress reported by a stage."""

    name: ClassVar[str] = "stage-progress"

    stage: str = ""
    status: str = ""
    percent: int = 0
    message: str = ""
    timestamp: float = 0.0
    sequence_id: str = ""


@dataclass(frozen=True, slots=True)
class ValidationResultEvent(PipelineEvent):
    """Validation gate findings."""

    name: ClassVar[str] = "validation-result"

    failures: tuple[dict[str, Any], ...] = ()
    warnings: tuple[dict[str, Any], ...] = ()


@dataclass(frozen=True, slots=True)
class PipelineReady(PipelineEvent):
    """Consolidated ready payload; resent once by the watchdog when unacknowledged."""

    name: ClassVar[str] = "pipeline-ready"

    payload: dict[str, Any] = field(default_factory=dict)
    sequence_id: str = ""
    is_retry: bool = False


@dataclass(frozen=True, slots=True)
class PipelineFailed(PipelineEvent):
    """The run stopped with an error."""

    name: ClassVar[str] = "pipeline-error"

    error: str = ""
    failed_stage: str | None = None
    statuses: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class CoverRegenerated(PipelineEvent):
    """Cover art was replaced after the run had already passed validation."""

    name: ClassVar[str] = "cover-regenerated"

    cover_url: str | None = None
    all_statuses: dict[str, str] = field(default_factory=dict)


EventCallback = Callable[[PipelineEvent], None]


class EventChannel(Protocol):
    """Destination for typed pipeline events."""

    def publish(self, event: PipelineEvent) -> None:
        """Deliver one event to consumers of its session."""


class SequenceIdFactory:
    """Produce `<session>-<kind>-<n>` ids that never repeat within the factory."""

    def __init__(self) -> None:
        """Initialize the shared counter."""

        self._counter = count(1)

    def next(self, session_id: str, kind: str) -> str:
        """Return the next unique sequence id."""

        return f"{session_id}-{kind}-{next(self._counter)}"


class SessionEventBus:
    """In-process fan-out of events to subscribers of the same session."""

    def __init__(self, keep_history: bool = True) -> None:
        """Initialize subscriber registry and optional event history."""

        self._subscribers: dict[str, list[EventCallback]] = defaultdict(list)
        self._keep_history = keep_history
        self.history: list[PipelineEvent] = []

    def subscribe(self, session_id: str, callback: EventCallback) -> Callable[[], None]:
        """Register a callback for one session and return an unsubscribe function."""

        self._subscribers[session_id].append(callback)

        def _unsubscribe() -> None:
            """Remove the callback when still registered."""

            callbacks = self._subscribers.get(session_id, [])
            if callback in callbacks:
                callbacks.remove(callback)

        return _unsubscribe

    def publish(self, event: PipelineEvent) -> None:
        """Record the event and deliver it to the session's subscribers in order."""

        if self._keep_history:
            self.history.append(event)
        for callback in list(self._subscribers.get(event.session_id, ())):
            callback(event)

    def events_for(self, session_id: str, name: str | None = None) -> list[PipelineEvent]:
        """Return recorded events for a session, optionally filtered by event name."""

        return [
            event
            for event in self.history
            if event.session_id == session_id and (name is None or event.name == name)
        ]
