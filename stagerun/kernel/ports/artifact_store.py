"""Port interface for artifact archiving."""

from __future__ import annotations

from abc import abstractmethod
from pathlib import Path
from typing import Protocol, runtime_checkable

from stagerun.kernel.domain.pipeline_config import ArchiveSpec


@runtime_checkable
class ArtifactStore(Protocol):
    """Collects workspace files matching an :class:`ArchiveSpec`."""

    @abstractmethod
    async def aarchive(self, workspace: Path, spec: ArchiveSpec, destination: Path) -> list[str]:
        """Copy matching files from ``workspace`` into ``destination``.

        Returns
        -------
        list[str]
            Archived paths, relative to the workspace, in sorted order

        Raises
        ------
        ArtifactError
            If a pattern escapes the workspace, or nothing matched and
            ``spec.allow_empty`` is false
        """
        ...
