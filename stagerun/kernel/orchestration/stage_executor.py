"""Stage executor - runs one stage (steps or a group of stages) with timeouts.

Every stage, whatever its outcome, gets its ``post`` actions executed: this is
where logs are tarred and artifacts archived, so they must survive failures,
timeouts and aborts alike.
"""

from __future__ import annotations

import asyncio
import time
from typing import TYPE_CHECKING

from stagerun.kernel.domain.pipeline_config import (
    ArchiveStep,
    CleanTreeStep,
    PostConfig,
    ShellStep,
    StageConfig,
    Step,
)
from stagerun.kernel.domain.pipeline_run import StageResult, StageStatus
from stagerun.kernel.exceptions import (
    CommandFailedError,
    StageRunError,
    StageTimeoutError,
    StepError,
    StepTimeoutError,
    UncommittedChangesError,
)
from stagerun.kernel.logging import get_logger
from stagerun.kernel.orchestration.events import (
    ArtifactsArchived,
    StageCompleted,
    StageFailed,
    StageSkipped,
    StageStarted,
)
from stagerun.kernel.parameters import expand_params
from stagerun.kernel.utils.timer import Timer

if TYPE_CHECKING:
    from stagerun.kernel.orchestration.models import RunContext
    from stagerun.kernel.ports.artifact_store import ArtifactStore
    from stagerun.kernel.ports.shell import CommandResult, Shell

logger = get_logger(__name__)


class StepRunner:
    """Executes individual steps through the shell and artifact store ports."""

    def __init__(self, shell: Shell, artifact_store: ArtifactStore) -> None:
        self.shell = shell
        self.artifact_store = artifact_store

    async def run(self, step: Step, path: str, ctx: RunContext) -> None:
        """Run a single step under its own timeout.

        Raises
        ------
        StepError
            If the step fails or exceeds its timeout
        """
        timeout = asyncio.timeout(step.timeout)
        try:
            async with timeout:
                await self._run(step, path, ctx)
        except TimeoutError as e:
            if step.timeout is not None and timeout.expired():
                raise StepTimeoutError(step.describe(), step.timeout) from e
            raise

    async def _run(self, step: Step, path: str, ctx: RunContext) -> None:
        match step:
            case ShellStep():
                command = expand_params(step.sh, ctx.run.parameters, field=f"{path}: sh")
                result = await self._shell(command, ctx)
                if not result.succeeded:
                    raise CommandFailedError(step.describe(), result.exit_code)
            case ArchiveStep():
                artifacts = await self.artifact_store.aarchive(
                    ctx.workspace, step.archive, ctx.archive_dir
                )
                ctx.run.artifacts = sorted(set(ctx.run.artifacts) | set(artifacts))
                if artifacts:
                    ctx.console.write(f"Archived {len(artifacts)} artifact(s)")
                    await ctx.notify(ArtifactsArchived(path=path, artifacts=artifacts))
            case CleanTreeStep():
                await self._check_clean(step, ctx)

    async def _shell(
        self, command: str, ctx: RunContext, collect: list[str] | None = None
    ) -> CommandResult:
        ctx.console.write(f"+ {command}")

        def on_output(line: str) -> None:
            if collect is not None and line.strip():
                collect.append(line.strip())
            ctx.console.write(line)

        try:
            return await self.shell.arun(
                command, cwd=ctx.workspace, env=ctx.env, on_output=on_output
            )
        except OSError as e:
            raise StepError(f"Cannot run '{command}': {e}") from e

    async def _check_clean(self, step: CleanTreeStep, ctx: RunContext) -> None:
        command = "git diff --name-only"
        if step.check_clean.ignore_submodules:
            command += " --ignore-submodules=all"
        changed: list[str] = []
        result = await self._shell(command, ctx, collect=changed)
        if not result.succeeded:
            raise CommandFailedError(command, result.exit_code)
        if changed:
            raise UncommittedChangesError(changed)


class StageExecutor:
    """Runs stages recursively and records their results on the run.

    Parallel members run concurrently via ``asyncio.gather``; a failing member
    never cancels its siblings. Sequential members stop at the first failure
    and the rest are recorded as skipped.
    """

    def __init__(self, step_runner: StepRunner) -> None:
        self.step_runner = step_runner

    async def execute(self, stage: StageConfig, path: str, ctx: RunContext) -> StageResult:
        """Execute ``stage`` and its post actions.

        Failures are recorded on the returned :class:`StageResult`, not raised.
        ``asyncio.CancelledError`` is re-raised once the stage is recorded as
        aborted and its post actions have run.
        """
        result = self._result(ctx, stage, path)
        result.status = StageStatus.RUNNING
        result.started_at = time.time()
        timer = Timer()
        await ctx.notify(StageStarted(path=path, kind=stage.kind))
        ctx.console.section(f"stage {path}")

        status = StageStatus.SUCCESS
        error: str | None = None
        cancelled: asyncio.CancelledError | None = None
        timeout = asyncio.timeout(stage.timeout)
        try:
            async with timeout:
                failed_children = await self._run_body(stage, path, ctx)
            if failed_children:
                status = StageStatus.FAILED
                error = f"failed stage(s): {', '.join(failed_children)}"
        except TimeoutError as e:
            status = StageStatus.TIMED_OUT
            if stage.timeout is not None and timeout.expired():
                error = str(StageTimeoutError(path, stage.timeout))
            else:
                error = str(e) or "timed out"
        except StepTimeoutError as e:
            status, error = StageStatus.TIMED_OUT, str(e)
        except StageRunError as e:
            status, error = StageStatus.FAILED, str(e)
            if isinstance(e, CommandFailedError):
                result.exit_code = e.exit_code
        except asyncio.CancelledError as e:
            status, error, cancelled = StageStatus.ABORTED, "aborted", e
        except Exception as e:
            logger.exception("Unexpected error in stage '{}'", path)
            status, error = StageStatus.FAILED, f"unexpected error: {e!r}"

        post_errors = await self.run_post(
            stage.post, path, ctx, succeeded=status == StageStatus.SUCCESS
        )
        if post_errors and status == StageStatus.SUCCESS:
            status = StageStatus.FAILED
            error = f"post action failed: {'; '.join(post_errors)}"

        result.status = status
        result.error = error
        result.duration_ms = timer.duration_ms
        if status.is_failure:
            ctx.console.write(f"Stage '{path}' {status.value}: {error}")
            await ctx.notify(
                StageFailed(
                    path=path,
                    status=status.value,
                    error=error or "",
                    duration_ms=result.duration_ms,
                    allow_failure=stage.allow_failure,
                )
            )
        else:
            await ctx.notify(StageCompleted(path=path, duration_ms=result.duration_ms))

        if cancelled is not None:
            raise cancelled
        return result

    async def _run_body(self, stage: StageConfig, path: str, ctx: RunContext) -> list[str]:
        """Run the stage body; returns paths of failed children that are not tolerated."""
        match stage.kind:
            case "steps":
                for step in stage.steps or []:
                    ctx.console.section(step.describe())
                    await self.step_runner.run(step, path, ctx)
                return []
            case "parallel":
                results = await asyncio.gather(
                    *(self.execute(child, f"{path}/{child.name}", ctx) for child in stage.children)
                )
                return [r.path for r in results if r.failed and not r.allow_failure]
            case _:
                children = stage.children
                for index, child in enumerate(children):
                    child_result = await self.execute(child, f"{path}/{child.name}", ctx)
                    if child_result.failed and not child_result.allow_failure:
                        await self.skip(
                            children[index + 1 :],
                            path,
                            ctx,
                            reason=f"'{child_result.path}' failed",
                        )
                        return [child_result.path]
                return []

    async def run_post(
        self, post: PostConfig, path: str, ctx: RunContext, *, succeeded: bool
    ) -> list[str]:
        """Run ``always`` then ``success`` or ``failure`` actions.

        Every action runs even if an earlier one fails.

        Returns
        -------
        list[str]
            Error messages of failed actions
        """
        actions = [*post.always, *(post.success if succeeded else post.failure)]
        errors: list[str] = []
        for step in actions:
            ctx.console.section(f"post {step.describe()}")
            try:
                await self.step_runner.run(step, path, ctx)
            except StageRunError as e:
                logger.warning("Post action '{}' of '{}' failed: {}", step.describe(), path, e)
                ctx.console.write(f"Post action failed: {e}")
                errors.append(str(e))
            except Exception as e:
                logger.exception("Post action '{}' of '{}' crashed", step.describe(), path)
                ctx.console.write(f"Post action failed: {e!r}")
                errors.append(repr(e))
        return errors

    async def skip(
        self, stages: list[StageConfig], prefix: str, ctx: RunContext, *, reason: str
    ) -> None:
        """Record ``stages`` and all their descendants as skipped."""
        for stage in stages:
            path = f"{prefix}/{stage.name}" if prefix else stage.name
            result = self._result(ctx, stage, path)
            result.status = StageStatus.SKIPPED
            await ctx.notify(StageSkipped(path=path, reason=reason))
            await self.skip(stage.children, path, ctx, reason=reason)

    @staticmethod
    def _result(ctx: RunContext, stage: StageConfig, path: str) -> StageResult:
        result = ctx.run.stage(path)
        if result is None:
            result = StageResult(name=stage.name, path=path)
            ctx.run.stages.append(result)
        result.allow_failure = stage.allow_failure
        return result
