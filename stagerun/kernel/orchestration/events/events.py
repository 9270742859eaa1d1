"""Simple event data classes for the stagerun event system."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime


@dataclass(slots=True)
class Event:
    """Base class for all events - provides timestamp."""

    timestamp: datetime = field(default_factory=datetime.now, init=False)

    def log_message(self) -> str:
        """Get a formatted log message for this event."""
        return f"{self.__class__.__name__} at {self.timestamp.isoformat()}"


# Run events
@dataclass(slots=True)
class RunQueued(Event):
    """A run was accepted by the scheduler and waits for a slot."""

    run_id: str
    job_name: str
    build_number: int
    agent_label: str

    def log_message(self) -> str:
        return f"⏳ {self.job_name}#{self.build_number} queued for '{self.agent_label}'"


@dataclass(slots=True)
class RunStarted(Event):
    """A run left the queue and began executing on a node."""

    run_id: str
    job_name: str
    build_number: int
    node_name: str
    total_stages: int

    def log_message(self) -> str:
        return (
            f"🎬 {self.job_name}#{self.build_number} started on '{self.node_name}' "
            f"({self.total_stages} stages)"
        )


@dataclass(slots=True)
class RunCompleted(Event):
    """A run reached a terminal status (success, failed or aborted).

    Attributes
    ----------
    status : str
        Final ``RunStatus`` value
    reason : str | None
        Error or cancellation reason (None on success)
    """

    run_id: str
    job_name: str
    build_number: int
    status: str
    duration_ms: float
    reason: str | None = None

    def log_message(self) -> str:
        seconds = self.duration_ms / 1000
        if self.status == "success":
            return f"🎉 {self.job_name}#{self.build_number} succeeded in {seconds:.2f}s"
        reason = f": {self.reason}" if self.reason else ""
        run = f"{self.job_name}#{self.build_number}"
        return f"🛑 {run} {self.status} after {seconds:.2f}s{reason}"


# Stage events
@dataclass(slots=True)
class StageStarted(Event):
    path: str
    kind: str

    def log_message(self) -> str:
        return f"🚀 Stage '{self.path}' started"


@dataclass(slots=True)
class StageCompleted(Event):
    path: str
    duration_ms: float

    def log_message(self) -> str:
        return f"✅ Stage '{self.path}' completed in {self.duration_ms / 1000:.2f}s"


@dataclass(slots=True)
class StageFailed(Event):
    """A stage failed, timed out or was aborted."""

    path: str
    status: str
    error: str
    duration_ms: float
    allow_failure: bool = False

    def log_message(self) -> str:
        tolerated = " (tolerated)" if self.allow_failure else ""
        return f"❌ Stage '{self.path}' {self.status}{tolerated}: {self.error}"


@dataclass(slots=True)
class StageSkipped(Event):
    path: str
    reason: str

    def log_message(self) -> str:
        return f"⏭️ Stage '{self.path}' skipped: {self.reason}"


@dataclass(slots=True)
class ArtifactsArchived(Event):
    """Files were copied into the run's artifact archive."""

    path: str
    artifacts: list[str] = field(default_factory=list)

    def log_message(self) -> str:
        return f"📦 Archived {len(self.artifacts)} artifact(s) after '{self.path}'"
