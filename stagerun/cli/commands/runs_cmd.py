"""Runs commands for stagerun CLI - inspect recorded runs."""

from __future__ import annotations

import asyncio
from datetime import datetime
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from stagerun.cli.utils import (
    format_duration,
    load_runtime_config,
    output_format,
    print_output,
    styled_status,
)
from stagerun.drivers.run_store.local import LocalRunStore
from stagerun.kernel.domain.pipeline_run import pipeline_run_to_storage
from stagerun.kernel.exceptions import StageRunError

app = typer.Typer(help="Inspect recorded pipeline runs")
console = Console()

ConfigOption = Annotated[
    Path | None, typer.Option("--config", "-c", help="Path to stagerun.toml")
]


def _when(timestamp: float | None) -> str:
    if timestamp is None:
        return "-"
    return datetime.fromtimestamp(timestamp).strftime("%Y-%m-%d %H:%M:%S")


@app.command("list")
def list_runs(
    ctx: typer.Context,
    job: Annotated[str | None, typer.Argument(help="Job name (omit to list jobs)")] = None,
    limit: Annotated[int, typer.Option("--limit", "-n", help="Maximum runs to show")] = 20,
    config_path: ConfigOption = None,
) -> None:
    """List recorded runs of a job, newest first."""
    try:
        config = load_runtime_config(config_path, ctx)
        store = LocalRunStore(config.state_dir)
        if job is None:
            jobs = asyncio.run(store.ajobs())
            if output_format(ctx) != "pretty":
                print_output(jobs, ctx)
            elif not jobs:
                console.print("[dim]No runs recorded yet[/dim]")
            else:
                for name in jobs:
                    console.print(name)
            return
        runs = asyncio.run(store.alist(job))[:limit]
    except StageRunError as e:
        console.print(f"[red]Error: {escape(str(e))}[/red]")
        raise typer.Exit(1) from e

    if output_format(ctx) != "pretty":
        print_output([pipeline_run_to_storage(r) for r in runs], ctx)
        return
    if not runs:
        console.print(f"[dim]No runs recorded for {escape(job)}[/dim]")
        return

    table = Table(title=job, header_style="bold magenta")
    table.add_column("#", justify="right")
    table.add_column("Status")
    table.add_column("Branch")
    table.add_column("Node")
    table.add_column("Queued")
    table.add_column("Duration", justify="right")
    table.add_column("Artifacts", justify="right")
    for run in runs:
        artifacts = "discarded" if run.artifacts_discarded else str(len(run.artifacts))
        table.add_row(
            str(run.build_number),
            styled_status(run.status.value),
            run.branch or "-",
            run.node_name or "-",
            _when(run.created_at),
            format_duration(run.duration_ms),
            artifacts,
        )
    console.print(table)


@app.command("show")
def show_run(
    ctx: typer.Context,
    job: Annotated[str, typer.Argument(help="Job name")],
    build_number: Annotated[int, typer.Argument(help="Build number")],
    log: Annotated[bool, typer.Option("--log", help="Print the console log")] = False,
    config_path: ConfigOption = None,
) -> None:
    """Show one run: stages, artifacts and optionally its console log."""
    try:
        config = load_runtime_config(config_path, ctx)
        store = LocalRunStore(config.state_dir)
        run = asyncio.run(store.aload(job, build_number))
    except StageRunError as e:
        console.print(f"[red]Error: {escape(str(e))}[/red]")
        raise typer.Exit(1) from e

    if output_format(ctx) != "pretty":
        print_output(pipeline_run_to_storage(run), ctx)
        return

    console.print(f"[bold]{run.display_name}[/bold] {styled_status(run.status.value)}")
    console.print(f"  Pipeline: {run.pipeline_name}  Branch: {run.branch or '-'}")
    console.print(f"  Agent label: {escape(run.agent_label) or '-'}  Node: {run.node_name or '-'}")
    console.print(f"  Queued: {_when(run.created_at)}  Started: {_when(run.started_at)}")
    console.print(f"  Duration: {format_duration(run.duration_ms)}")
    if run.error:
        console.print(f"  [red]Error: {escape(run.error)}[/red]")
    for name, value in run.parameters.items():
        console.print(f"  [cyan]{name}[/cyan]={escape(value)}")

    table = Table(header_style="bold magenta")
    table.add_column("Stage")
    table.add_column("Status")
    table.add_column("Duration", justify="right")
    table.add_column("Error")
    for stage in run.stages:
        table.add_row(
            escape(stage.path),
            styled_status(stage.status.value),
            format_duration(stage.duration_ms),
            escape(stage.error or ""),
        )
    console.print(table)

    if run.artifacts:
        archive = store.artifacts_dir(job, build_number)
        where = "discarded" if run.artifacts_discarded else str(archive)
        console.print(f"[bold]Artifacts[/bold] ({where}):")
        for artifact in run.artifacts:
            console.print(f"  {escape(artifact)}")

    log_path = store.console_log_path(job, build_number)
    if log:
        if log_path.exists():
            console.print(escape(log_path.read_text(encoding="utf-8")), highlight=False)
        else:
            console.print("[dim]No console log recorded[/dim]")
    else:
        console.print(f"[dim]Console log: {log_path}[/dim]")
