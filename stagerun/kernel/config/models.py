"""Configuration data models for stagerun."""

from __future__ import annotations

import platform
from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal

from stagerun.kernel.exceptions import ValidationError

DEFAULT_MAIN_BRANCHES: tuple[str, ...] = ("stable", "testing", "unstable")
DEFAULT_RECOGNIZED_LABELS: tuple[str, ...] = (
    "linux",
    "macos",
    "windows",
    "x86_64",
    "aarch64",
    "arm64",
)


@dataclass(frozen=True, slots=True)
class LoggingConfig:
    """Logging configuration for stagerun.

    Attributes
    ----------
    level : str, default="INFO"
        Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    format : str, default="structured"
        Output format (console, json, structured, dual, rich)
    output_file : str | None, default=None
        Optional file path to write JSON logs to
    use_color : bool, default=True
        Use ANSI color codes (auto-disabled for non-TTY)
    include_timestamp : bool, default=True
        Include timestamp in log output

    Examples
    --------
    ```toml
    [tool.stagerun.logging]
    level = "DEBUG"
    format = "rich"
    ```

    Environment variable overrides::

        export STAGERUN_LOG_LEVEL=DEBUG
        export STAGERUN_LOG_FORMAT=json
        export STAGERUN_LOG_FILE=/var/log/stagerun/runner.log
    """

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    format: Literal["console", "json", "structured", "dual", "rich"] = "structured"
    output_file: str | None = None
    use_color: bool = True
    include_timestamp: bool = True


@dataclass(frozen=True, slots=True)
class AgentConfig:
    """A named execution host and the labels it advertises."""

    name: str
    labels: frozenset[str]

    def __post_init__(self) -> None:
        if not self.name:
            raise ValidationError("agent.name", "cannot be empty")
        if any(not label or " " in label for label in self.labels):
            raise ValidationError("agent.labels", "labels must be non-empty words", self.labels)


@dataclass(frozen=True, slots=True)
class ThrottleCategoryConfig:
    """Concurrency limits shared by every job tagged with the category.

    A value of 0 disables the corresponding limit.
    """

    name: str
    max_total: int = 9
    max_per_node: int = 1

    def __post_init__(self) -> None:
        if self.max_total < 0:
            raise ValidationError("max_total", "cannot be negative", self.max_total)
        if self.max_per_node < 0:
            raise ValidationError("max_per_node", "cannot be negative", self.max_per_node)


def _host_agent() -> AgentConfig:
    system = platform.system().lower()
    labels = {"macos" if system == "darwin" else system}
    machine = platform.machine().lower()
    if machine in ("amd64", "x86_64"):
        labels.add("x86_64")
    elif machine in ("arm64", "aarch64"):
        labels.update({"aarch64", "arm64"})
    elif machine:
        labels.add(machine)
    return AgentConfig(name="local", labels=frozenset(labels))


@dataclass(slots=True)
class StageRunConfig:
    """Complete stagerun configuration.

    Examples
    --------
    TOML configuration in stagerun.toml:

    ```toml
    state_dir = "/var/lib/stagerun"
    main_branches = ["stable", "testing", "unstable"]

    [[agents]]
    name = "linux-01"
    labels = ["linux", "x86_64"]

    [throttle.nimbus-eth2]
    max_total = 9
    max_per_node = 1
    ```
    """

    state_dir: Path = field(default_factory=lambda: Path(".stagerun"))
    main_branches: frozenset[str] = field(default_factory=lambda: frozenset(DEFAULT_MAIN_BRANCHES))
    recognized_labels: tuple[str, ...] = DEFAULT_RECOGNIZED_LABELS
    agents: tuple[AgentConfig, ...] = field(default_factory=lambda: (_host_agent(),))
    throttle: dict[str, ThrottleCategoryConfig] = field(default_factory=dict)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    def throttle_category(self, name: str) -> ThrottleCategoryConfig:
        """Return the limits of a category, falling back to the defaults."""
        return self.throttle.get(name) or ThrottleCategoryConfig(name=name)
