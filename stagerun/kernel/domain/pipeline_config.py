"""Pipeline definition models for YAML-based CI pipelines.

These Pydantic models are the single source of truth for what a pipeline
document may contain. ``stagerun.compiler.yaml_builder`` parses YAML into
:class:`PipelineConfig`; the runner only ever sees validated models.

A minimal document::

    name: example
    agent:
      label: ${params.AGENT_LABEL}
    stages:
      - name: Build
        timeout: 50m
        steps:
          - sh: make
"""

from __future__ import annotations

import re
from collections.abc import Iterator
from typing import Annotated, Any, Literal, Self

from pydantic import (
    BaseModel,
    BeforeValidator,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)

_DURATION_PATTERN = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*([smhd]?)\s*$")
_DURATION_UNITS = {"": 1, "s": 1, "m": 60, "h": 3600, "d": 86400}


def parse_duration(value: Any) -> Any:
    """Convert ``90``, ``"90s"``, ``"20m"``, ``"24h"`` or ``"1d"`` into seconds.

    Values that are neither numbers nor duration strings are passed through
    so Pydantic reports the type error.
    """
    if isinstance(value, bool):
        return value
    if isinstance(value, int | float):
        return float(value)
    if isinstance(value, str):
        match = _DURATION_PATTERN.match(value.lower())
        if match is None:
            raise ValueError(f"invalid duration {value!r} (expected e.g. 90s, 20m, 24h)")
        return float(match.group(1)) * _DURATION_UNITS[match.group(2)]
    return value


def _stringify(value: Any) -> Any:
    """YAML turns ``0`` and ``true`` into non-strings; parameters are strings."""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int | float):
        return str(value)
    return value


Duration = Annotated[float, BeforeValidator(parse_duration), Field(gt=0)]
StringValue = Annotated[str, BeforeValidator(_stringify)]


# ============================================================================
# Steps
# ============================================================================


class ShellStep(BaseModel):
    """Run a shell command; a non-zero exit status fails the step."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    sh: str = Field(min_length=1, description="Command line passed to /bin/sh -c")
    label: str | None = Field(default=None, description="Display name for logs")
    timeout: Duration | None = Field(default=None, description="Step timeout")

    def describe(self) -> str:
        return self.label or self.sh


class ArchiveSpec(BaseModel):
    """Which workspace files to keep once the stage is over."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    artifacts: str = Field(min_length=1, description="Comma-separated glob patterns")
    excludes: str | None = Field(default=None, description="Comma-separated glob patterns")
    allow_empty: bool = Field(default=False, description="Succeed when nothing matches")

    @staticmethod
    def _split(patterns: str | None) -> list[str]:
        if not patterns:
            return []
        return [p.strip() for p in patterns.split(",") if p.strip()]

    @property
    def include_patterns(self) -> list[str]:
        return self._split(self.artifacts)

    @property
    def exclude_patterns(self) -> list[str]:
        return self._split(self.excludes)


class ArchiveStep(BaseModel):
    """Copy matching workspace files into the run's artifact archive."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    archive: ArchiveSpec
    label: str | None = None
    timeout: Duration | None = None

    def describe(self) -> str:
        return self.label or f"archive {self.archive.artifacts}"


class CleanTreeSpec(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    ignore_submodules: bool = True


class CleanTreeStep(BaseModel):
    """Fail when the build left uncommitted modifications in the working tree."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    check_clean: CleanTreeSpec
    label: str | None = None
    timeout: Duration | None = None

    @field_validator("check_clean", mode="before")
    @classmethod
    def _accept_shorthand(cls, value: Any) -> Any:
        # ``check_clean:`` and ``check_clean: true`` mean "with defaults"
        if value is None or value is True:
            return {}
        return value

    def describe(self) -> str:
        return self.label or "check working tree is clean"


Step = ShellStep | ArchiveStep | CleanTreeStep


class PostConfig(BaseModel):
    """Post-actions attached to a stage, a group or the whole pipeline."""

    model_config = ConfigDict(extra="forbid")

    always: list[Step] = Field(default_factory=list)
    success: list[Step] = Field(default_factory=list)
    failure: list[Step] = Field(default_factory=list)

    def __bool__(self) -> bool:
        return bool(self.always or self.success or self.failure)


# ============================================================================
# Stages
# ============================================================================


StageKind = Literal["steps", "parallel", "stages"]


class StageConfig(BaseModel):
    """A named stage: either a list of steps or a group of child stages."""

    model_config = ConfigDict(extra="forbid")

    name: str = Field(min_length=1)
    timeout: Duration | None = None
    allow_failure: bool = Field(
        default=False, description="Record failure without failing the enclosing group"
    )
    steps: list[Step] | None = None
    parallel: list[StageConfig] | None = None
    stages: list[StageConfig] | None = None
    post: PostConfig = Field(default_factory=PostConfig)

    @field_validator("name")
    @classmethod
    def _check_name(cls, name: str) -> str:
        # "/" separates the segments of a stage path
        if "/" in name:
            raise ValueError(f"stage name '{name}' must not contain '/'")
        return name

    @model_validator(mode="after")
    def _check_body(self) -> Self:
        bodies = [b for b in (self.steps, self.parallel, self.stages) if b is not None]
        if len(bodies) != 1:
            raise ValueError(
                f"stage '{self.name}' must define exactly one of 'steps', 'parallel', 'stages'"
            )
        if not bodies[0]:
            raise ValueError(f"stage '{self.name}' has an empty {self.kind} list")
        _ensure_unique_names(self.children, f"stage '{self.name}'")
        return self

    @property
    def kind(self) -> StageKind:
        if self.parallel is not None:
            return "parallel"
        if self.stages is not None:
            return "stages"
        return "steps"

    @property
    def children(self) -> list[StageConfig]:
        return self.parallel or self.stages or []


def _ensure_unique_names(stages: list[StageConfig], owner: str) -> None:
    seen: set[str] = set()
    for stage in stages:
        if stage.name in seen:
            raise ValueError(f"duplicate stage name '{stage.name}' in {owner}")
        seen.add(stage.name)


# ============================================================================
# Parameters & options
# ============================================================================


class DefaultRule(BaseModel):
    """Use ``value`` as the default when the job name contains ``job_contains``."""

    model_config = ConfigDict(extra="forbid")

    job_contains: str = Field(min_length=1)
    value: StringValue


class ParameterConfig(BaseModel):
    """A build parameter exposed to commands as ``${params.NAME}``."""

    model_config = ConfigDict(extra="forbid")

    name: str = Field(pattern=r"^[A-Za-z_][A-Za-z0-9_]*$")
    type: Literal["string", "choice", "boolean"] = "string"
    description: str = ""
    default: StringValue | None = None
    choices: list[StringValue] | None = None
    derive: Literal["agent_label"] | None = Field(
        default=None, description="Derive the default from the job path"
    )
    default_when: list[DefaultRule] = Field(default_factory=list)

    @model_validator(mode="after")
    def _check_choices(self) -> Self:
        if self.type == "choice":
            if not self.choices:
                raise ValueError(f"choice parameter '{self.name}' needs a non-empty 'choices'")
            if self.default is not None and self.default not in self.choices:
                raise ValueError(
                    f"default {self.default!r} of '{self.name}' is not one of {self.choices}"
                )
        elif self.choices is not None:
            raise ValueError(f"'choices' is only valid for choice parameters ('{self.name}')")
        if self.type == "boolean" and self.default not in (None, "true", "false"):
            raise ValueError(f"boolean parameter '{self.name}' needs a true/false default")
        return self


class BuildDiscarderConfig(BaseModel):
    """How much run history and how many artifacts to keep per job."""

    model_config = ConfigDict(extra="forbid")

    num_to_keep: int | None = Field(default=None, ge=1)
    days_to_keep: int | None = Field(default=None, ge=1)
    artifact_num_to_keep: int | None = Field(default=None, ge=0)
    artifact_days_to_keep: int | None = Field(default=None, ge=1)


class ThrottleOption(BaseModel):
    model_config = ConfigDict(extra="forbid")

    categories: list[str] = Field(default_factory=list)


class ConcurrentBuildsOption(BaseModel):
    """What happens when a run starts while an older one of the same job is active."""

    model_config = ConfigDict(extra="forbid")

    abort_previous: Literal["always", "never", "non_main_branches"] = "non_main_branches"


class PipelineOptions(BaseModel):
    model_config = ConfigDict(extra="forbid")

    timestamps: bool = True
    ansi_color: str | None = Field(
        default=None, description="TERM value for colored output; null strips ANSI codes"
    )
    timeout: Duration = 24 * 3600.0
    build_discarder: BuildDiscarderConfig | None = None
    throttle: ThrottleOption = Field(default_factory=ThrottleOption)
    disable_concurrent_builds: ConcurrentBuildsOption = Field(
        default_factory=ConcurrentBuildsOption
    )


class AgentSpec(BaseModel):
    model_config = ConfigDict(extra="forbid")

    label: StringValue = Field(default="", description="Label expression, may use ${params.X}")


class CleanupConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    delete_dirs: bool = Field(default=True, description="Wipe the workspace when the run ends")


# ============================================================================
# Pipeline
# ============================================================================


class PipelineConfig(BaseModel):
    """A complete pipeline definition."""

    model_config = ConfigDict(extra="forbid")

    name: str = Field(pattern=r"^[A-Za-z0-9_.-]+$")
    description: str = ""
    agent: AgentSpec = Field(default_factory=AgentSpec)
    parameters: list[ParameterConfig] = Field(default_factory=list)
    options: PipelineOptions = Field(default_factory=PipelineOptions)
    environment: dict[str, StringValue] = Field(default_factory=dict)
    stages: list[StageConfig] = Field(min_length=1)
    post: PostConfig = Field(default_factory=PostConfig)
    cleanup: CleanupConfig = Field(default_factory=CleanupConfig)

    @model_validator(mode="after")
    def _check_names(self) -> Self:
        _ensure_unique_names(self.stages, f"pipeline '{self.name}'")
        names = [p.name for p in self.parameters]
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            raise ValueError(f"duplicate parameter(s): {', '.join(duplicates)}")
        invalid_env = [k for k in self.environment if not re.match(r"^[A-Za-z_][A-Za-z0-9_]*$", k)]
        if invalid_env:
            raise ValueError(f"invalid environment variable name(s): {', '.join(invalid_env)}")
        return self

    def parameter(self, name: str) -> ParameterConfig | None:
        return next((p for p in self.parameters if p.name == name), None)

    def walk(self) -> Iterator[tuple[str, StageConfig]]:
        """Yield ``(path, stage)`` for every stage, depth-first in declaration order."""

        def _walk(stages: list[StageConfig], prefix: str) -> Iterator[tuple[str, StageConfig]]:
            for stage in stages:
                path = f"{prefix}{stage.name}"
                yield path, stage
                yield from _walk(stage.children, f"{path}/")

        yield from _walk(self.stages, "")
