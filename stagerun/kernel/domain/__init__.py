"""Domain models: pipeline definitions and run records."""

from stagerun.kernel.domain.pipeline_config import (
    ArchiveStep,
    CleanTreeStep,
    ParameterConfig,
    PipelineConfig,
    PipelineOptions,
    PostConfig,
    ShellStep,
    StageConfig,
    Step,
)
from stagerun.kernel.domain.pipeline_run import (
    PipelineRun,
    RunStatus,
    StageResult,
    StageStatus,
)

__all__ = [
    "ArchiveStep",
    "CleanTreeStep",
    "ParameterConfig",
    "PipelineConfig",
    "PipelineOptions",
    "PipelineRun",
    "PostConfig",
    "RunStatus",
    "ShellStep",
    "StageConfig",
    "StageResult",
    "StageStatus",
    "Step",
]
