"""Telemetry helpers.

This package emits deterministic run events for operators and tests.
"""

from .logger import RunLogger

__all__ = ["RunLogger"]
