"""Pipeline runner - executes one queued run from workspace setup to cleanup.

Example
-------
    runner = PipelineRunner(config, store=LocalRunStore(config.state_dir),
                            shell=LocalShell(), artifact_store=LocalArtifactStore())
    run = await runner.run(pipeline, queued_run)
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable
from pathlib import Path
from typing import TYPE_CHECKING

from stagerun.kernel.domain.pipeline_run import (
    PipelineRun,
    RunStatus,
    StageResult,
    StageStatus,
)
from stagerun.kernel.exceptions import PipelineTimeoutError, StageRunError
from stagerun.kernel.logging import get_logger, reset_correlation_id, set_correlation_id
from stagerun.kernel.orchestration.console import ConsoleLog
from stagerun.kernel.orchestration.events import RunCompleted, RunStarted
from stagerun.kernel.orchestration.models import RunContext
from stagerun.kernel.orchestration.stage_executor import StageExecutor, StepRunner
from stagerun.kernel.parameters import build_environment, runtime_builtins
from stagerun.kernel.retention import BuildDiscarder
from stagerun.kernel.utils.timer import Timer
from stagerun.kernel.workspace import Workspace

if TYPE_CHECKING:
    from stagerun.kernel.config.models import StageRunConfig
    from stagerun.kernel.domain.pipeline_config import PipelineConfig
    from stagerun.kernel.ports.artifact_store import ArtifactStore
    from stagerun.kernel.ports.observer_manager import ObserverManager
    from stagerun.kernel.ports.run_store import RunStore
    from stagerun.kernel.ports.shell import Shell

logger = get_logger(__name__)


class PipelineRunner:
    """Runs the stages of a pipeline for one :class:`PipelineRun`.

    The whole run (queue wait included) is bounded by the pipeline's global
    timeout. Whatever the outcome, pipeline ``post`` actions run, the
    workspace is wiped, the record is saved and the build discarder applied.
    """

    def __init__(
        self,
        config: StageRunConfig,
        *,
        store: RunStore,
        shell: Shell,
        artifact_store: ArtifactStore,
        observer_manager: ObserverManager | None = None,
        echo: Callable[[str], None] | None = None,
    ) -> None:
        """Initialize the runner.

        Args
        ----
            config: Runner configuration (state directory)
            store: Where run records, console logs and artifacts are kept
            shell: Shell port used for ``sh`` and ``check_clean`` steps
            artifact_store: Artifact port used for ``archive`` steps
            observer_manager: Receives run and stage events
            echo: Optional callback receiving every console line
        """
        self.config = config
        self.store = store
        self.observer_manager = observer_manager
        self.echo = echo
        self.executor = StageExecutor(StepRunner(shell, artifact_store))

    @staticmethod
    def deadline(pipeline: PipelineConfig, run: PipelineRun) -> float:
        """Loop-time deadline of a run: enqueue time plus the global timeout."""
        elapsed = time.time() - run.created_at
        return asyncio.get_running_loop().time() + pipeline.options.timeout - elapsed

    async def run(
        self,
        pipeline: PipelineConfig,
        run: PipelineRun,
        *,
        deadline: float | None = None,
        source: Path | None = None,
    ) -> PipelineRun:
        """Execute ``run`` and return it in a terminal state.

        Raises
        ------
        asyncio.CancelledError
            Re-raised after the run has been recorded as aborted
        Exception
            Errors outside the stagerun hierarchy are re-raised once the run
            has been recorded as failed and its workspace wiped
        """
        token = set_correlation_id(run.display_name)
        try:
            return await self._run(pipeline, run, deadline, source)
        finally:
            reset_correlation_id(token)

    async def _run(
        self,
        pipeline: PipelineConfig,
        run: PipelineRun,
        deadline: float | None,
        source: Path | None,
    ) -> PipelineRun:
        if deadline is None:
            deadline = self.deadline(pipeline, run)
        node_name = run.node_name or "local"
        workspace = Workspace.for_job(self.config.state_dir, node_name, run.job_name, run.branch)
        run.workspace = str(workspace.path)
        run.status = RunStatus.RUNNING
        run.started_at = time.time()
        run.stages = [
            StageResult(name=stage.name, path=path, allow_failure=stage.allow_failure)
            for path, stage in pipeline.walk()
        ]
        console = ConsoleLog(
            self.store.console_log_path(run.job_name, run.build_number),
            timestamps=pipeline.options.timestamps,
            keep_ansi=pipeline.options.ansi_color is not None,
            echo=self.echo,
        )
        ctx = RunContext(
            run=run,
            pipeline=pipeline,
            workspace=workspace.path,
            env={},
            console=console,
            archive_dir=self.store.artifacts_dir(run.job_name, run.build_number),
            observer_manager=self.observer_manager,
        )
        timer = Timer()
        status, error = RunStatus.SUCCESS, None
        cancelled: asyncio.CancelledError | None = None
        unexpected: Exception | None = None

        with console:
            console.write(f"Running {run.display_name} on '{node_name}' in {workspace.path}")
            await self.store.asave(run)
            await ctx.notify(
                RunStarted(
                    run_id=run.run_id,
                    job_name=run.job_name,
                    build_number=run.build_number,
                    node_name=node_name,
                    total_stages=len(run.stages),
                )
            )

            run_timeout = asyncio.timeout_at(deadline)
            try:
                async with run_timeout:
                    await workspace.prepare(source)
                    ctx.env = self._environment(pipeline, run, workspace, node_name)
                    failed = await self._run_stages(pipeline, ctx)
                if failed is not None:
                    status, error = RunStatus.FAILED, f"stage '{failed}' failed"
            except TimeoutError as e:
                if run_timeout.expired():
                    status = RunStatus.FAILED
                    error = str(PipelineTimeoutError(run.job_name, pipeline.options.timeout))
                else:
                    logger.exception("Unexpected timeout in {}", run.display_name)
                    status, error, unexpected = RunStatus.FAILED, f"unexpected error: {e!r}", e
            except (StageRunError, OSError) as e:
                status, error = RunStatus.FAILED, str(e)
            except asyncio.CancelledError as e:
                status, error, cancelled = RunStatus.ABORTED, "aborted", e
            except Exception as e:
                logger.exception("Unexpected error in {}", run.display_name)
                status, error, unexpected = RunStatus.FAILED, f"unexpected error: {e!r}", e

            if ctx.env:
                try:
                    post_errors = await self.executor.run_post(
                        pipeline.post, pipeline.name, ctx, succeeded=status == RunStatus.SUCCESS
                    )
                except asyncio.CancelledError as e:
                    post_errors = []
                    status, error, cancelled = RunStatus.ABORTED, "aborted", cancelled or e
                if post_errors and status == RunStatus.SUCCESS:
                    status = RunStatus.FAILED
                    error = f"post action failed: {'; '.join(post_errors)}"

            self._sweep(run)
            run.status = status
            run.error = error
            run.completed_at = time.time()
            run.duration_ms = timer.duration_ms
            console.write(f"Finished: {status.value.upper()}" + (f" ({error})" if error else ""))

        if pipeline.cleanup.delete_dirs:
            await workspace.wipe()
        await self.store.asave(run)
        await ctx.notify(
            RunCompleted(
                run_id=run.run_id,
                job_name=run.job_name,
                build_number=run.build_number,
                status=status.value,
                duration_ms=run.duration_ms,
                reason=error,
            )
        )
        await self._apply_retention(pipeline, run)

        if cancelled is not None:
            raise cancelled
        if unexpected is not None:
            raise unexpected
        return run

    async def _run_stages(self, pipeline: PipelineConfig, ctx: RunContext) -> str | None:
        """Run top-level stages in order; returns the path of the first failure."""
        for index, stage in enumerate(pipeline.stages):
            result = await self.executor.execute(stage, stage.name, ctx)
            if result.failed and not result.allow_failure:
                await self.executor.skip(
                    pipeline.stages[index + 1 :], "", ctx, reason=f"'{result.path}' failed"
                )
                return result.path
        return None

    def _environment(
        self, pipeline: PipelineConfig, run: PipelineRun, workspace: Workspace, node_name: str
    ) -> dict[str, str]:
        builtins = runtime_builtins(
            workspace=workspace.path,
            job_name=run.job_name,
            build_number=run.build_number,
            run_id=run.run_id,
            branch=run.branch,
            node_name=node_name,
        )
        env = build_environment(pipeline, run.parameters, builtins)
        if pipeline.options.ansi_color:
            env["TERM"] = pipeline.options.ansi_color
        return env

    @staticmethod
    def _sweep(run: PipelineRun) -> None:
        for result in run.stages:
            if result.status == StageStatus.PENDING:
                result.status = StageStatus.SKIPPED
            elif result.status == StageStatus.RUNNING:
                result.status = StageStatus.ABORTED

    async def record_unstarted(
        self, pipeline: PipelineConfig, run: PipelineRun, status: RunStatus, reason: str
    ) -> PipelineRun:
        """Record a run that ended while still queued (aborted or timed out)."""
        run.status = status
        run.error = reason
        run.completed_at = time.time()
        run.duration_ms = 0.0
        run.stages = [
            StageResult(name=stage.name, path=path, status=StageStatus.SKIPPED)
            for path, stage in pipeline.walk()
        ]
        await self.store.asave(run)
        if self.observer_manager is not None:
            await self.observer_manager.notify(
                RunCompleted(
                    run_id=run.run_id,
                    job_name=run.job_name,
                    build_number=run.build_number,
                    status=status.value,
                    duration_ms=0.0,
                    reason=reason,
                )
            )
        return run

    async def _apply_retention(self, pipeline: PipelineConfig, run: PipelineRun) -> None:
        if pipeline.options.build_discarder is None:
            return
        try:
            await BuildDiscarder(pipeline.options.build_discarder).apply(
                self.store, run.job_name, current=run.build_number
            )
        except (StageRunError, OSError) as e:
            logger.warning("Retention failed for {}: {}", run.job_name, e)
