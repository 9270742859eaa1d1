"""Pipeline inspection commands for stagerun CLI: validate, plan, params."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table
from rich.tree import Tree

from stagerun.cli.utils import load_runtime_config, output_format, parse_params, print_output
from stagerun.compiler.yaml_builder import load_pipeline
from stagerun.kernel.agent import AgentPool
from stagerun.kernel.domain.pipeline_config import (
    ArchiveStep,
    CleanTreeStep,
    PipelineConfig,
    PostConfig,
    StageConfig,
    Step,
)
from stagerun.kernel.exceptions import AgentSelectionError, StageRunError
from stagerun.kernel.parameters import (
    build_environment,
    resolve_agent_label,
    resolve_parameters,
    runtime_builtins,
)
from stagerun.kernel.workspace import Workspace

console = Console()


def _load(pipeline_path: Path) -> PipelineConfig:
    if not pipeline_path.exists():
        console.print(f"[red]Error: Pipeline file not found: {pipeline_path}[/red]")
        raise typer.Exit(1)
    try:
        return load_pipeline(pipeline_path)
    except StageRunError as e:
        console.print(f"[red]✗ {escape(str(e))}[/red]")
        raise typer.Exit(1) from e


def validate_pipeline(
    pipeline_path: Annotated[Path, typer.Argument(help="Path to pipeline YAML file")],
) -> None:
    """Validate pipeline file (schema, stage structure, parameter references)."""
    console.print(f"[cyan]Validating pipeline: {pipeline_path}[/cyan]")
    pipeline = _load(pipeline_path)
    stages = list(pipeline.walk())
    console.print("[green]✓ Pipeline validation passed[/green]")
    console.print(f"  Name: {pipeline.name}")
    console.print(f"  Stages: {len(stages)} ({len(pipeline.stages)} top-level)")
    console.print(f"  Parameters: {len(pipeline.parameters)}")


def _fmt_timeout(seconds: float | None) -> str:
    if seconds is None:
        return ""
    for unit, size in (("h", 3600), ("m", 60)):
        if seconds >= size and seconds % size == 0:
            return f"{int(seconds // size)}{unit}"
    return f"{seconds:g}s"


def _step_label(step: Step) -> str:
    match step:
        case ArchiveStep():
            label = f"archive [green]{escape(step.archive.artifacts)}[/green]"
            if step.archive.excludes:
                label += f" excluding [yellow]{escape(step.archive.excludes)}[/yellow]"
            if step.archive.allow_empty:
                label += " [dim](allow empty)[/dim]"
        case CleanTreeStep():
            label = "check_clean"
        case _:
            label = f"sh [white]{escape(step.describe())}[/white]"
    if step.timeout is not None:
        label += f" [dim]timeout {_fmt_timeout(step.timeout)}[/dim]"
    return label


def _add_post(tree: Tree, post: PostConfig) -> None:
    for condition in ("always", "success", "failure"):
        for step in getattr(post, condition):
            tree.add(f"[magenta]post.{condition}[/magenta] {_step_label(step)}")


def _add_stage(tree: Tree, stage: StageConfig) -> None:
    label = f"[bold]{escape(stage.name)}[/bold]"
    if stage.kind != "steps":
        label += f" [cyan]({stage.kind})[/cyan]"
    if stage.timeout is not None:
        label += f" [dim]timeout {_fmt_timeout(stage.timeout)}[/dim]"
    if stage.allow_failure:
        label += " [yellow]allow_failure[/yellow]"
    node = tree.add(label)
    for step in stage.steps or []:
        node.add(_step_label(step))
    for child in stage.children:
        _add_stage(node, child)
    _add_post(node, stage.post)


def plan_pipeline(
    pipeline_path: Annotated[Path, typer.Argument(help="Path to pipeline YAML file")],
) -> None:
    """Show the stage tree with timeouts, post actions and artifacts."""
    pipeline = _load(pipeline_path)
    options = pipeline.options
    tree = Tree(
        f"[bold blue]{pipeline.name}[/bold blue] [dim]timeout {_fmt_timeout(options.timeout)}[/dim]"
    )
    for stage in pipeline.stages:
        _add_stage(tree, stage)
    _add_post(tree, pipeline.post)
    console.print(tree)

    console.print("\n[bold]Options:[/bold]")
    console.print(f"  Agent label: {escape(pipeline.agent.label) or '[dim]any[/dim]'}")
    console.print(f"  Timestamps: {options.timestamps}, ANSI color: {options.ansi_color}")
    if options.throttle.categories:
        console.print(f"  Throttle categories: {', '.join(options.throttle.categories)}")
    console.print(
        f"  Abort previous builds: {options.disable_concurrent_builds.abort_previous}"
    )
    if options.build_discarder is not None:
        discarder = options.build_discarder.model_dump(exclude_none=True)
        console.print(
            "  Build discarder: " + ", ".join(f"{k}={v}" for k, v in discarder.items())
        )
    console.print(f"  Delete workspace after run: {pipeline.cleanup.delete_dirs}")


def show_params(
    ctx: typer.Context,
    pipeline_path: Annotated[Path, typer.Argument(help="Path to pipeline YAML file")],
    param: Annotated[
        list[str] | None,
        typer.Option("--param", "-p", help="Parameter value as NAME=VALUE (repeatable)"),
    ] = None,
    job: Annotated[str | None, typer.Option("--job", "-j", help="Job name")] = None,
    branch: Annotated[str | None, typer.Option("--branch", "-b", help="Branch name")] = None,
    config_path: Annotated[
        Path | None, typer.Option("--config", "-c", help="Path to stagerun.toml")
    ] = None,
) -> None:
    """Show resolved parameters, agent selection and the command environment."""
    pipeline = _load(pipeline_path)
    job_name = job or pipeline.name
    try:
        config = load_runtime_config(config_path, ctx)
        params = resolve_parameters(
            pipeline, parse_params(param), job_name, config.recognized_labels
        )
        label = resolve_agent_label(pipeline, params)
        try:
            agent_name: str | None = AgentPool(config.agents).select(label).name
            agent_error = None
        except AgentSelectionError as e:
            agent_name, agent_error = None, str(e)
        workspace = Workspace.for_job(config.state_dir, agent_name or "local", job_name, branch)
        builtins = runtime_builtins(
            workspace=workspace.path,
            job_name=job_name,
            build_number=0,
            run_id="<run id>",
            branch=branch,
            node_name=agent_name,
        )
        env = build_environment(pipeline, params, builtins, base=os.environ)
    except StageRunError as e:
        console.print(f"[red]Error: {escape(str(e))}[/red]")
        raise typer.Exit(1) from e

    shown_env = {k: env[k] for k in [*builtins, *pipeline.environment]}
    if output_format(ctx) != "pretty":
        print_output(
            {
                "job_name": job_name,
                "parameters": params,
                "agent_label": label,
                "agent": agent_name,
                "environment": shown_env,
            },
            ctx,
        )
    else:
        table = Table(title=f"Parameters for {job_name}", header_style="bold magenta")
        table.add_column("Name", style="cyan")
        table.add_column("Value")
        for name, value in params.items():
            table.add_row(name, escape(value) or "[dim]<empty>[/dim]")
        console.print(table)
        console.print(f"[bold]Agent label:[/bold] {escape(label) or '[dim]<empty>[/dim]'}")
        if agent_name:
            console.print(f"[bold]Agent:[/bold] {agent_name}")

        env_table = Table(title="Environment", header_style="bold magenta")
        env_table.add_column("Variable", style="cyan")
        env_table.add_column("Value")
        for name, value in shown_env.items():
            env_table.add_row(name, escape(value))
        console.print(env_table)

    if agent_error:
        console.print(f"[red]Error: {escape(agent_error)}[/red]")
        raise typer.Exit(1)
