"""Validation, correction and extraction sweeps."""

from lexicon.sweep.cancellation import CancellationToken
from lexicon.sweep.images import ImageFetcher
from lexicon.sweep.orchestrator import (
    SweepAlreadyRunning,
    SweepFailed,
    SweepOrchestrator,
    SweepResult,
    SweepState,
)

__all__ = [
    "CancellationToken",
    "ImageFetcher",
    "SweepAlreadyRunning",
    "SweepFailed",
    "SweepOrchestrator",
    "SweepResult",
    "SweepState",
]
