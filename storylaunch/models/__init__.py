"""Shared typed data models for storylaunch.

This package contains the stage table and the dataclasses used across pipeline,
service, and CLI modules to avoid cross-module coupling and circular imports.
"""

from .datatypes import (
    DegradedResult,
    EffectSpec,
    Entity,
    PipelineRun,
    RetryOutcome,
    RunOutcome,
    SceneContent,
    ScoreReport,
    SessionSettings,
    SnapshotInfo,
    SynthesisResult,
    ValidationFailure,
    ValidationReport,
    ValidationWarning,
    VoiceAssignment,
    VoiceResource,
)
from .stages import STAGE_ORDER, STAGES, Stage, stage_by_id

__all__ = [
    "DegradedResult",
    "EffectSpec",
    "Entity",
    "PipelineRun",
    "RetryOutcome",
    "RunOutcome",
    "SceneContent",
    "ScoreReport",
    "SessionSettings",
    "SnapshotInfo",
    "STAGE_ORDER",
    "STAGES",
    "Stage",
    "SynthesisResult",
    "ValidationFailure",
    "ValidationReport",
    "ValidationWarning",
    "VoiceAssignment",
    "VoiceResource",
    "stage_by_id",
]
