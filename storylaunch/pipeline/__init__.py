"""storylaunch pipeline package.

This package contains the orchestrator, stage runners, progress mapping,
snapshot persistence, validation gate, and ready notification.
"""

from .cancellation import CancellationToken
from .events import SessionEventBus
from .orchestrator import PipelineManager
from .snapshot import StateSnapshotStore

__all__ = ["CancellationToken", "PipelineManager", "SessionEventBus", "StateSnapshotStore"]
