"""Run parameters and the environment handed to pipeline commands.

Parameters are resolved once per run (explicit value, derived default,
conditional default, declared default, first choice). The ``environment``
block of a pipeline is then evaluated in order; entries may reference
``${params.NAME}``, ``${env.NAME}`` or ``${NAME}``.

Examples
--------
With ``VERBOSITY=2`` and ``NIM_COMMIT=v2.0.6`` the block::

    environment:
      MAKEFLAGS: "V=${params.VERBOSITY} NIM_COMMIT=${params.NIM_COMMIT} -j${env.NPROC}"

yields ``MAKEFLAGS="V=2 NIM_COMMIT=v2.0.6 -j8"`` on an 8-CPU host.
"""

from __future__ import annotations

import os
import re
from collections.abc import Iterable, Mapping
from pathlib import Path

from stagerun.kernel.agent import derive_agent_label
from stagerun.kernel.domain.pipeline_config import ParameterConfig, PipelineConfig
from stagerun.kernel.exceptions import ConfigurationError, ValidationError

_REFERENCE_PATTERN = re.compile(r"\$\{(?:(params|env)\.)?([A-Za-z_][A-Za-z0-9_]*)\}")
_BOOLEAN_VALUES = {
    "true": "true",
    "yes": "true",
    "1": "true",
    "on": "true",
    "false": "false",
    "no": "false",
    "0": "false",
    "off": "false",
}


def available_processors() -> int:
    """Number of processors commands may use for parallel builds.

    Honours the CPU affinity mask, so containers and pinned agents report only
    the processors they can actually schedule on.
    """
    if hasattr(os, "process_cpu_count"):
        count = os.process_cpu_count()
    elif hasattr(os, "sched_getaffinity"):
        count = len(os.sched_getaffinity(0))
    else:
        count = os.cpu_count()
    return count or 1


def resolve_parameters(
    pipeline: PipelineConfig,
    supplied: Mapping[str, str],
    job_name: str,
    recognized_labels: Iterable[str],
) -> dict[str, str]:
    """Resolve every declared parameter to a string value.

    Raises
    ------
    ValidationError
        If an undeclared parameter is supplied or a value is out of range
    """
    declared = {p.name for p in pipeline.parameters}
    unknown = sorted(set(supplied) - declared)
    if unknown:
        raise ValidationError(
            "parameters",
            f"unknown parameter(s) {', '.join(unknown)}; declared: {', '.join(sorted(declared))}",
        )

    recognized = tuple(recognized_labels)
    return {
        parameter.name: _resolve_one(parameter, supplied.get(parameter.name), job_name, recognized)
        for parameter in pipeline.parameters
    }


def _resolve_one(
    parameter: ParameterConfig,
    supplied: str | None,
    job_name: str,
    recognized_labels: tuple[str, ...],
) -> str:
    # An empty value for a derived parameter means "derive it"
    if supplied is not None and (supplied or parameter.derive is None):
        value = supplied
    elif parameter.derive == "agent_label":
        value = derive_agent_label(job_name, recognized_labels)
    elif rule := next((r for r in parameter.default_when if r.job_contains in job_name), None):
        value = rule.value
    elif parameter.default is not None:
        value = parameter.default
    elif parameter.type == "choice" and parameter.choices:
        value = parameter.choices[0]
    elif parameter.type == "boolean":
        value = "false"
    else:
        value = ""

    if parameter.type == "choice" and parameter.choices and value not in parameter.choices:
        raise ValidationError(
            parameter.name, f"must be one of {', '.join(parameter.choices)}", value
        )
    if parameter.type == "boolean":
        normalized = _BOOLEAN_VALUES.get(value.strip().lower())
        if normalized is None:
            raise ValidationError(parameter.name, "must be a boolean", value)
        value = normalized
    return value


def runtime_builtins(
    *,
    workspace: Path,
    job_name: str,
    build_number: int,
    run_id: str,
    branch: str | None = None,
    node_name: str | None = None,
) -> dict[str, str]:
    """Variables every run exposes to its commands."""
    return {
        "NPROC": str(available_processors()),
        "WORKSPACE": str(workspace),
        "WORKSPACE_TMP": f"{workspace}@tmp",
        "JOB_NAME": job_name,
        "BRANCH_NAME": branch or "",
        "BUILD_NUMBER": str(build_number),
        "BUILD_ID": run_id,
        "NODE_NAME": node_name or "",
    }


def interpolate(
    template: str,
    params: Mapping[str, str],
    env: Mapping[str, str],
    *,
    field: str,
) -> str:
    """Substitute ``${params.X}``, ``${env.X}`` and ``${X}`` references.

    Raises
    ------
    ConfigurationError
        If a reference cannot be resolved
    """

    def replacer(match: re.Match[str]) -> str:
        scope, name = match.group(1), match.group(2)
        if scope == "params":
            if name not in params:
                raise ConfigurationError(field, f"unknown parameter reference '{match.group(0)}'")
            return params[name]
        if name in env:
            return env[name]
        raise ConfigurationError(field, f"unknown variable reference '{match.group(0)}'")

    return _REFERENCE_PATTERN.sub(replacer, template)


def expand_params(command: str, params: Mapping[str, str], *, field: str) -> str:
    """Substitute only ``${params.X}`` references, leaving shell syntax alone.

    Shell commands see every parameter in their environment as well, so
    ``$VERBOSITY`` and ``${params.VERBOSITY}`` are equivalent in ``sh`` steps.
    """

    def replacer(match: re.Match[str]) -> str:
        if match.group(1) != "params":
            return match.group(0)
        if match.group(2) not in params:
            raise ConfigurationError(field, f"unknown parameter reference '{match.group(0)}'")
        return params[match.group(2)]

    return _REFERENCE_PATTERN.sub(replacer, command)


def build_environment(
    pipeline: PipelineConfig,
    params: Mapping[str, str],
    builtins: Mapping[str, str],
    base: Mapping[str, str] | None = None,
) -> dict[str, str]:
    """Compose the full command environment for a run.

    Layering (later wins): ``base`` (the process environment by default),
    builtins, parameters, then the pipeline's ``environment`` entries in
    declaration order.
    """
    env: dict[str, str] = dict(os.environ if base is None else base)
    env.update(builtins)
    env.update(params)
    for name, template in pipeline.environment.items():
        env[name] = interpolate(template, params, env, field=f"environment.{name}")
    return env


def resolve_agent_label(pipeline: PipelineConfig, params: Mapping[str, str]) -> str:
    """Evaluate the pipeline's ``agent.label`` template against the parameters."""
    return interpolate(pipeline.agent.label, params, {}, field="agent.label").strip()
