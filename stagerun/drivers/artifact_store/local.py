"""Filesystem artifact store: copies matching workspace files into the run archive."""

from __future__ import annotations

import asyncio
import shutil
from pathlib import Path, PurePosixPath

from stagerun.kernel.domain.pipeline_config import ArchiveSpec
from stagerun.kernel.exceptions import ArtifactError
from stagerun.kernel.logging import get_logger

logger = get_logger(__name__)


def _check_pattern(pattern: str) -> None:
    path = PurePosixPath(pattern)
    if path.is_absolute() or ".." in path.parts:
        raise ArtifactError(f"Artifact pattern '{pattern}' must stay inside the workspace")


def _match(workspace: Path, patterns: list[str]) -> set[Path]:
    matched: set[Path] = set()
    for pattern in patterns:
        _check_pattern(pattern)
        matched.update(p for p in workspace.glob(pattern) if p.is_file())
    return matched


def collect_artifacts(workspace: Path, spec: ArchiveSpec) -> list[str]:
    """Return workspace-relative paths selected by ``spec``, sorted.

    Raises
    ------
    ArtifactError
        If a pattern is absolute or climbs out of the workspace
    """
    included = _match(workspace, spec.include_patterns)
    excluded = _match(workspace, spec.exclude_patterns)
    return sorted(p.relative_to(workspace).as_posix() for p in included - excluded)


class LocalArtifactStore:
    """Archive artifacts by copying them under the run's archive directory.

    Relative paths are preserved, so ``build/a.tar.gz`` lands at
    ``<destination>/build/a.tar.gz``.
    """

    async def aarchive(self, workspace: Path, spec: ArchiveSpec, destination: Path) -> list[str]:
        artifacts = collect_artifacts(workspace, spec)
        if not artifacts:
            if spec.allow_empty:
                logger.info("No artifacts matched '{}' (allowed)", spec.artifacts)
                return []
            raise ArtifactError(f"No artifacts found that match '{spec.artifacts}'")

        await asyncio.to_thread(self._copy, workspace, artifacts, destination)
        logger.debug("Archived {} file(s) into {}", len(artifacts), destination)
        return artifacts

    @staticmethod
    def _copy(workspace: Path, artifacts: list[str], destination: Path) -> None:
        for relative in artifacts:
            target = destination / relative
            target.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(workspace / relative, target)
