"""State shared by every stage of a single run."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from stagerun.kernel.domain.pipeline_config import PipelineConfig
    from stagerun.kernel.domain.pipeline_run import PipelineRun
    from stagerun.kernel.orchestration.console import ConsoleLog
    from stagerun.kernel.orchestration.events.events import Event
    from stagerun.kernel.ports.observer_manager import ObserverManager


@dataclass(slots=True)
class RunContext:
    """Everything a stage needs to execute its steps.

    Attributes
    ----------
    run : PipelineRun
        The run record; stage results are updated in place
    workspace : Path
        Working directory commands run in
    env : dict[str, str]
        Complete command environment (process env, builtins, parameters,
        pipeline ``environment`` block)
    archive_dir : Path
        Destination of archived artifacts
    """

    run: PipelineRun
    pipeline: PipelineConfig
    workspace: Path
    env: dict[str, str]
    console: ConsoleLog
    archive_dir: Path
    observer_manager: ObserverManager | None = None

    async def notify(self, event: Event) -> None:
        if self.observer_manager is not None:
            await self.observer_manager.notify(event)
