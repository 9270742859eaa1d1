"""YAML Pipeline Builder - turns a pipeline document into a validated model.

The builder:
1. Parses YAML (``yaml.safe_load``)
2. Validates the document against :class:`PipelineConfig`
3. Checks that every ``${params.X}`` reference names a declared parameter
"""

from __future__ import annotations

import re
from collections.abc import Iterator
from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError as PydanticValidationError

from stagerun.kernel.domain.pipeline_config import PipelineConfig, PostConfig, ShellStep
from stagerun.kernel.exceptions import PipelineDefinitionError
from stagerun.kernel.logging import get_logger

logger = get_logger(__name__)

_PARAM_REFERENCE = re.compile(r"\$\{params\.([A-Za-z_][A-Za-z0-9_]*)\}")


class YamlPipelineBuilder:
    """Build :class:`PipelineConfig` objects from YAML files or strings."""

    def build_from_yaml_file(self, yaml_path: str | Path, use_cache: bool = True) -> PipelineConfig:
        """Build from a YAML file.

        Args
        ----
            yaml_path: Path to the pipeline document
            use_cache: Whether to use cached YAML parsing

        Raises
        ------
        PipelineDefinitionError
            If the file cannot be read or the document is invalid
        """
        path = Path(yaml_path)
        try:
            yaml_content = path.read_text(encoding="utf-8")
        except OSError as e:
            raise PipelineDefinitionError(f"Cannot read pipeline file '{path}': {e}") from e
        return self.build_from_yaml_string(yaml_content, use_cache=use_cache, source=str(path))

    def build_from_yaml_string(
        self, yaml_content: str, use_cache: bool = True, source: str = "<string>"
    ) -> PipelineConfig:
        """Build a pipeline from a YAML string."""
        document = self._parse_yaml(yaml_content, use_cache, source)
        if not isinstance(document, dict):
            raise PipelineDefinitionError(
                f"{source}: pipeline document must be a mapping, got {type(document).__name__}"
            )

        try:
            pipeline = PipelineConfig.model_validate(document)
        except PydanticValidationError as e:
            errors = "\n".join(
                f"  ERROR: {'.'.join(str(p) for p in err['loc']) or '<root>'}: {err['msg']}"
                for err in e.errors()
            )
            raise PipelineDefinitionError(f"{source}: pipeline validation failed:\n{errors}") from e

        self._check_references(pipeline, source)
        logger.debug(
            "Built pipeline '{}' with {} stage(s) and {} parameter(s)",
            pipeline.name,
            sum(1 for _ in pipeline.walk()),
            len(pipeline.parameters),
        )
        return pipeline

    # --- Core Logic ---

    @staticmethod
    def _parse_yaml(yaml_content: str, use_cache: bool, source: str) -> Any:
        try:
            return _parse_yaml_cached(yaml_content) if use_cache else yaml.safe_load(yaml_content)
        except yaml.YAMLError as e:
            raise PipelineDefinitionError(f"{source}: invalid YAML: {e}") from e

    @staticmethod
    def _check_references(pipeline: PipelineConfig, source: str) -> None:
        declared = {p.name for p in pipeline.parameters}
        unknown = sorted(
            {
                f"{where}: ${{params.{name}}}"
                for where, text in _templates(pipeline)
                for name in _PARAM_REFERENCE.findall(text)
                if name not in declared
            }
        )
        if unknown:
            listed = "\n".join(f"  ERROR: {ref}" for ref in unknown)
            raise PipelineDefinitionError(
                f"{source}: reference(s) to undeclared parameters:\n{listed}"
            )


def _templates(pipeline: PipelineConfig) -> Iterator[tuple[str, str]]:
    """Yield ``(location, text)`` for every string that may reference parameters."""
    yield "agent.label", pipeline.agent.label
    for name, value in pipeline.environment.items():
        yield f"environment.{name}", value
    for path, stage in pipeline.walk():
        for step in stage.steps or []:
            if isinstance(step, ShellStep):
                yield path, step.sh
        yield from _post_templates(stage.post, f"{path} post")
    yield from _post_templates(pipeline.post, "post")


def _post_templates(post: PostConfig, where: str) -> Iterator[tuple[str, str]]:
    for step in [*post.always, *post.success, *post.failure]:
        if isinstance(step, ShellStep):
            yield where, step.sh


def load_pipeline(path: str | Path) -> PipelineConfig:
    """Load and validate a pipeline file."""
    return YamlPipelineBuilder().build_from_yaml_file(path)


# ============================================================================
# Utilities
# ============================================================================


@lru_cache(maxsize=32)
def _parse_yaml_cached(yaml_content: str) -> Any:
    """Cached YAML parsing.

    Returns dict[str, Any] in practice, but yaml.safe_load returns Any.
    """
    return yaml.safe_load(yaml_content)
