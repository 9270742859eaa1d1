"""Event system for stagerun.

- events.py: run and stage lifecycle event data classes (just data, no behavior)
"""

from .events import (
    ArtifactsArchived,
    Event,
    RunCompleted,
    RunQueued,
    RunStarted,
    StageCompleted,
    StageFailed,
    StageSkipped,
    StageStarted,
)

# Event taxonomy - grouped event types for observer filtering
RUN_EVENTS = (RunQueued, RunStarted, RunCompleted)
STAGE_EVENTS = (StageStarted, StageCompleted, StageFailed, StageSkipped, ArtifactsArchived)

__all__ = [
    "RUN_EVENTS",
    "STAGE_EVENTS",
    "ArtifactsArchived",
    "Event",
    "RunCompleted",
    "RunQueued",
    "RunStarted",
    "StageCompleted",
    "StageFailed",
    "StageSkipped",
    "StageStarted",
]
