"""stagerun CLI - Main entrypoint."""

import typer
from rich.console import Console

from stagerun import __version__
from stagerun.cli.commands import config_cmd, pipeline_cmd, run_cmd, runs_cmd

# Create the main Typer app
app = typer.Typer(
    name="stagerun",
    help="stagerun - declarative stage-based CI pipeline runner.",
    no_args_is_help=True,
    rich_markup_mode="rich",
    pretty_exceptions_enable=False,
)

console = Console()

# Pipeline commands
app.command("run")(run_cmd.run_pipeline)
app.command("validate")(pipeline_cmd.validate_pipeline)
app.command("plan")(pipeline_cmd.plan_pipeline)
app.command("params")(pipeline_cmd.show_params)

# Subcommands
app.add_typer(runs_cmd.app, name="runs", help="Inspect recorded pipeline runs")
app.add_typer(config_cmd.app, name="config", help="Configuration management")


@app.callback(invoke_without_command=True)
def callback(
    ctx: typer.Context,
    *,
    quiet: bool = typer.Option(False, "-q", "--quiet", help="Only log errors"),
    verbose: bool = typer.Option(False, "-V", "--verbose", help="Enable debug logging"),
    json_out: bool = typer.Option(False, "--json", help="Output machine-readable JSON"),
    yaml_out: bool = typer.Option(False, "--yaml", help="Output machine-readable YAML"),
    log_level: str | None = typer.Option(
        None, "--log-level", help="Log level: debug|info|warning|error"
    ),
    version: bool = typer.Option(False, "--version", "-v", help="Show version and exit"),
) -> None:
    """stagerun CLI - run and inspect CI pipelines.

    Global flags are parsed here and stored on `ctx.obj` for subcommands.
    """
    if version:
        console.print(f"[bold blue]stagerun[/bold blue] version [green]{__version__}[/green]")
        raise typer.Exit()

    if ctx.obj is None:
        ctx.obj = {}

    output_format = "pretty"
    if json_out:
        output_format = "json"
    elif yaml_out:
        output_format = "yaml"

    effective_level = log_level
    if quiet:
        effective_level = "error"
    elif verbose:
        effective_level = "debug"

    ctx.obj.update({"output_format": output_format, "log_level": effective_level})

    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())
        raise typer.Exit()


def main() -> None:
    """Main CLI entrypoint."""
    app()


if __name__ == "__main__":
    main()
