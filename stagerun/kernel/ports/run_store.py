"""Port interface for run history (records, console logs, archived artifacts)."""

from __future__ import annotations

from abc import abstractmethod
from pathlib import Path
from typing import Protocol, runtime_checkable

from stagerun.kernel.domain.pipeline_run import PipelineRun


@runtime_checkable
class RunStore(Protocol):
    """Persists :class:`PipelineRun` records per job.

    Build numbers are allocated per job, start at 1 and are never reused,
    even after a build has been discarded.
    """

    @abstractmethod
    async def anext_build_number(self, job_name: str) -> int:
        """Allocate the next build number for ``job_name``."""
        ...

    @abstractmethod
    async def asave(self, run: PipelineRun) -> None:
        """Create or overwrite the record of ``run``."""
        ...

    @abstractmethod
    async def aload(self, job_name: str, build_number: int) -> PipelineRun:
        """Load a run.

        Raises
        ------
        ResourceNotFoundError
            If the build does not exist
        """
        ...

    @abstractmethod
    async def alist(self, job_name: str) -> list[PipelineRun]:
        """List runs of a job, newest first."""
        ...

    @abstractmethod
    async def ajobs(self) -> list[str]:
        """List job names that have at least one stored run."""
        ...

    @abstractmethod
    async def adelete(self, job_name: str, build_number: int) -> None:
        """Delete a run record together with its log and artifacts."""
        ...

    @abstractmethod
    async def adiscard_artifacts(self, job_name: str, build_number: int) -> None:
        """Delete a run's archived artifacts but keep its record and log."""
        ...

    @abstractmethod
    def console_log_path(self, job_name: str, build_number: int) -> Path:
        """Where the console log of a run is written."""
        ...

    @abstractmethod
    def artifacts_dir(self, job_name: str, build_number: int) -> Path:
        """Where archived artifacts of a run are stored."""
        ...
