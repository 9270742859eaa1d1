"""CLI helper utilities for stagerun commands."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Protocol

import typer
import yaml
from rich.console import Console

from stagerun.kernel.config.models import StageRunConfig
from stagerun.kernel.domain.pipeline_run import RunStatus, StageStatus


class ContextProtocol(Protocol):
    """Protocol for common interface between Click and Typer contexts."""

    @property
    def obj(self) -> dict[str, Any] | None: ...


console = Console()

STATUS_STYLES: dict[str, str] = {
    RunStatus.QUEUED: "dim",
    RunStatus.RUNNING: "cyan",
    RunStatus.SUCCESS: "green",
    RunStatus.FAILED: "red",
    RunStatus.ABORTED: "yellow",
    StageStatus.PENDING: "dim",
    StageStatus.TIMED_OUT: "red",
    StageStatus.SKIPPED: "dim",
}


def styled_status(status: str) -> str:
    style = STATUS_STYLES.get(status, "white")
    return f"[{style}]{status}[/{style}]"


def output_format(ctx: ContextProtocol | None) -> str:
    obj = getattr(ctx, "obj", None) if ctx is not None else None
    if isinstance(obj, dict):
        return obj.get("output_format", "pretty")
    return "pretty"


def print_output(data: Any, ctx: ContextProtocol | None = None) -> None:
    """Print ``data`` according to ``ctx.obj['output_format']``.

    If ctx is None or no format specified, pretty-print using rich.console.
    """
    fmt = output_format(ctx)
    if fmt == "json":
        typer.echo(json.dumps(data, default=str, indent=2))
    elif fmt == "yaml":
        typer.echo(yaml.safe_dump(data, sort_keys=False))
    elif isinstance(data, str | int | float):
        typer.echo(str(data))
    else:
        console.print(data)


def parse_params(values: list[str] | None) -> dict[str, str]:
    """Parse repeated ``--param NAME=VALUE`` options."""
    params: dict[str, str] = {}
    for item in values or []:
        name, sep, value = item.partition("=")
        if not sep or not name.strip():
            raise typer.BadParameter(f"expected NAME=VALUE, got '{item}'", param_hint="--param")
        params[name.strip()] = value
    return params


def load_runtime_config(
    config_path: Path | None, ctx: ContextProtocol | None = None
) -> StageRunConfig:
    """Load stagerun.toml (or defaults) and apply its logging section.

    A log level given on the command line wins over the configured one.
    """
    from stagerun.compiler.config_loader import load_config
    from stagerun.kernel.logging import configure_logging

    config = load_config(config_path)
    obj = getattr(ctx, "obj", None) if ctx is not None else None
    level = (obj or {}).get("log_level") or config.logging.level
    configure_logging(
        level=level.upper(),
        format=config.logging.format,
        output_file=config.logging.output_file,
        use_color=config.logging.use_color,
        include_timestamp=config.logging.include_timestamp,
    )
    return config


def format_duration(duration_ms: float | None) -> str:
    if duration_ms is None:
        return "-"
    seconds = duration_ms / 1000
    if seconds < 60:
        return f"{seconds:.1f}s"
    minutes, seconds = divmod(int(seconds), 60)
    hours, minutes = divmod(minutes, 60)
    return f"{hours}h{minutes:02d}m{seconds:02d}s" if hours else f"{minutes}m{seconds:02d}s"
