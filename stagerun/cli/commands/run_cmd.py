"""Run command for stagerun CLI - schedule a pipeline run and wait for it."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from stagerun.cli.utils import format_duration, load_runtime_config, parse_params, styled_status
from stagerun.compiler.yaml_builder import load_pipeline
from stagerun.drivers.artifact_store.local import LocalArtifactStore
from stagerun.drivers.observer_manager.local import LocalObserverManager, log_event_observer
from stagerun.drivers.run_store.local import LocalRunStore
from stagerun.drivers.shell.local import LocalShell
from stagerun.kernel.config.models import StageRunConfig
from stagerun.kernel.domain.pipeline_config import PipelineConfig
from stagerun.kernel.domain.pipeline_run import PipelineRun, RunStatus
from stagerun.kernel.exceptions import StageRunError
from stagerun.kernel.orchestration.runner import PipelineRunner
from stagerun.kernel.scheduling import RunRequest, RunScheduler

console = Console()


async def execute_run(
    config: StageRunConfig,
    pipeline: PipelineConfig,
    request: RunRequest,
    *,
    show_log: bool = True,
) -> PipelineRun:
    """Wire the local drivers together, submit one run and wait for it."""
    store = LocalRunStore(config.state_dir)
    observers = LocalObserverManager()
    observers.register(log_event_observer, observer_id="log")
    runner = PipelineRunner(
        config,
        store=store,
        shell=LocalShell(),
        artifact_store=LocalArtifactStore(),
        observer_manager=observers,
        echo=(lambda line: console.print(escape(line), highlight=False)) if show_log else None,
    )
    scheduler = RunScheduler(config, runner, store, observers)
    handle = await scheduler.submit(pipeline, request)
    return await handle.wait()


def print_summary(run: PipelineRun) -> None:
    table = Table(title=f"{run.display_name} on {run.node_name}", header_style="bold magenta")
    table.add_column("Stage")
    table.add_column("Status")
    table.add_column("Duration", justify="right")
    table.add_column("Error")
    for stage in run.stages:
        depth = stage.path.count("/")
        table.add_row(
            "  " * depth + stage.name,
            styled_status(stage.status.value),
            format_duration(stage.duration_ms),
            escape(stage.error or ""),
        )
    console.print(table)
    if run.artifacts:
        console.print(f"[bold]Artifacts:[/bold] {', '.join(run.artifacts)}")
    console.print(
        f"[bold]Result:[/bold] {styled_status(run.status.value)} "
        f"in {format_duration(run.duration_ms)}"
    )


def run_pipeline(
    ctx: typer.Context,
    pipeline_path: Annotated[Path, typer.Argument(help="Path to pipeline YAML file")],
    param: Annotated[
        list[str] | None,
        typer.Option("--param", "-p", help="Parameter value as NAME=VALUE (repeatable)"),
    ] = None,
    job: Annotated[
        str | None,
        typer.Option("--job", "-j", help="Job name, e.g. nimbus-eth2/linux/x86_64"),
    ] = None,
    branch: Annotated[str | None, typer.Option("--branch", "-b", help="Branch being built")] = None,
    source: Annotated[
        Path | None,
        typer.Option("--source", "-s", help="Directory copied into the workspace"),
    ] = None,
    config_path: Annotated[
        Path | None, typer.Option("--config", "-c", help="Path to stagerun.toml")
    ] = None,
    show_log: Annotated[
        bool, typer.Option("--log/--no-log", help="Stream the console log")
    ] = True,
) -> None:
    """Run a pipeline; exits 0 on success and 1 otherwise."""
    if source is not None and not source.is_dir():
        console.print(f"[red]Error: Source directory not found: {source}[/red]")
        raise typer.Exit(1)

    try:
        config = load_runtime_config(config_path, ctx)
        pipeline = load_pipeline(pipeline_path)
        request = RunRequest(
            job_name=job, branch=branch, parameters=parse_params(param), source=source
        )
        run = asyncio.run(execute_run(config, pipeline, request, show_log=show_log))
    except StageRunError as e:
        console.print(f"[red]Error: {escape(str(e))}[/red]")
        raise typer.Exit(1) from e

    print_summary(run)
    if run.status != RunStatus.SUCCESS:
        if run.error:
            console.print(f"[red]{escape(run.error)}[/red]")
        raise typer.Exit(1)
