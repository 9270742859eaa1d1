"""Configuration management commands."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated, Any

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from stagerun.cli.utils import load_runtime_config, output_format, print_output
from stagerun.kernel.config.models import StageRunConfig
from stagerun.kernel.exceptions import StageRunError

app = typer.Typer(help="Configuration management commands")
console = Console()


def config_to_dict(config: StageRunConfig) -> dict[str, Any]:
    return {
        "state_dir": str(config.state_dir),
        "main_branches": sorted(config.main_branches),
        "recognized_labels": list(config.recognized_labels),
        "agents": [
            {"name": agent.name, "labels": sorted(agent.labels)} for agent in config.agents
        ],
        "throttle": {
            name: {"max_total": t.max_total, "max_per_node": t.max_per_node}
            for name, t in config.throttle.items()
        },
        "logging": {
            "level": config.logging.level,
            "format": config.logging.format,
            "output_file": config.logging.output_file,
        },
    }


@app.command("show")
def show_config(
    ctx: typer.Context,
    config_path: Annotated[
        Path | None, typer.Option("--config", "-c", help="Path to stagerun.toml")
    ] = None,
) -> None:
    """Show the effective configuration (file values merged with defaults)."""
    try:
        config = load_runtime_config(config_path, ctx)
    except StageRunError as e:
        console.print(f"[red]Error: {escape(str(e))}[/red]")
        raise typer.Exit(1) from e

    data = config_to_dict(config)
    if output_format(ctx) != "pretty":
        print_output(data, ctx)
        return

    console.print(f"[bold]State directory:[/bold] {data['state_dir']}")
    console.print(f"[bold]Main branches:[/bold] {', '.join(data['main_branches'])}")
    console.print(f"[bold]Recognized labels:[/bold] {', '.join(data['recognized_labels'])}")

    agents = Table(title="Agents", header_style="bold magenta")
    agents.add_column("Name", style="cyan")
    agents.add_column("Labels")
    for agent in data["agents"]:
        agents.add_row(agent["name"], ", ".join(agent["labels"]))
    console.print(agents)

    if data["throttle"]:
        throttle = Table(title="Throttle categories", header_style="bold magenta")
        throttle.add_column("Category", style="cyan")
        throttle.add_column("Max total", justify="right")
        throttle.add_column("Max per node", justify="right")
        for name, limits in data["throttle"].items():
            throttle.add_row(name, str(limits["max_total"]), str(limits["max_per_node"]))
        console.print(throttle)
    else:
        console.print("[dim]Throttle categories: defaults (9 total, 1 per node)[/dim]")
    console.print(f"[bold]Logging:[/bold] {data['logging']['level']} ({data['logging']['format']})")
