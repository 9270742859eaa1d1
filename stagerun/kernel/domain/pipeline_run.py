"""Domain model for pipeline run tracking.

A :class:`PipelineRun` is created by the scheduler when a run is enqueued and
is mutated by the runner as stages progress. The run store persists it as
JSON via :func:`pipeline_run_to_storage`.
"""

from __future__ import annotations

import time
from dataclasses import asdict, dataclass, field
from enum import StrEnum
from typing import Any


class RunStatus(StrEnum):
    """Lifecycle status of a pipeline run."""

    QUEUED = "queued"
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"
    ABORTED = "aborted"

    @property
    def is_terminal(self) -> bool:
        return self in (RunStatus.SUCCESS, RunStatus.FAILED, RunStatus.ABORTED)


class StageStatus(StrEnum):
    """Outcome of a single stage."""

    PENDING = "pending"
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"
    TIMED_OUT = "timed_out"
    SKIPPED = "skipped"
    ABORTED = "aborted"

    @property
    def is_failure(self) -> bool:
        return self in (StageStatus.FAILED, StageStatus.TIMED_OUT, StageStatus.ABORTED)


@dataclass(slots=True)
class StageResult:
    """Record of one stage (leaf or group) within a run."""

    name: str
    path: str
    status: StageStatus = StageStatus.PENDING
    started_at: float | None = None
    duration_ms: float | None = None
    error: str | None = None
    exit_code: int | None = None
    allow_failure: bool = False

    @property
    def failed(self) -> bool:
        return self.status.is_failure


@dataclass(slots=True)
class PipelineRun:
    """Mutable record of a single pipeline execution."""

    run_id: str
    job_name: str
    build_number: int
    pipeline_name: str
    branch: str | None = None
    parameters: dict[str, str] = field(default_factory=dict)
    agent_label: str = ""
    node_name: str | None = None
    status: RunStatus = RunStatus.QUEUED
    created_at: float = field(default_factory=time.time)
    started_at: float | None = None
    completed_at: float | None = None
    duration_ms: float | None = None
    stages: list[StageResult] = field(default_factory=list)
    artifacts: list[str] = field(default_factory=list)
    error: str | None = None
    workspace: str | None = None
    artifacts_discarded: bool = False

    @property
    def display_name(self) -> str:
        return f"{self.job_name}#{self.build_number}"

    def stage(self, path: str) -> StageResult | None:
        return next((s for s in self.stages if s.path == path), None)


def pipeline_run_to_storage(run: PipelineRun) -> dict[str, Any]:
    """Convert a run into a JSON-serializable dict."""
    data = asdict(run)
    data["status"] = run.status.value
    data["stages"] = [{**asdict(s), "status": s.status.value} for s in run.stages]
    return data


def pipeline_run_from_storage(data: dict[str, Any]) -> PipelineRun:
    """Rebuild a run from :func:`pipeline_run_to_storage` output."""
    payload = dict(data)
    payload["status"] = RunStatus(payload["status"])
    payload["stages"] = [
        StageResult(**{**stage, "status": StageStatus(stage["status"])})
        for stage in payload.get("stages", [])
    ]
    return PipelineRun(**payload)
