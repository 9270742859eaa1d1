"""Per-run working directories.

Each job gets a workspace under ``<state_dir>/workspace/<node>/<job>`` plus a
sibling ``@tmp`` directory for scratch files. A run starts from a fresh copy
of the source tree and the whole thing is wiped when the run ends.
"""

from __future__ import annotations

import asyncio
import re
import shutil
from dataclasses import dataclass
from pathlib import Path

from stagerun.kernel.logging import get_logger

logger = get_logger(__name__)

_UNSAFE = re.compile(r"[^A-Za-z0-9_.-]+")

# The runner's own state directory never ends up inside a workspace
_COPY_IGNORE = shutil.ignore_patterns(".stagerun")


def _sanitize(name: str) -> str:
    return _UNSAFE.sub("_", name).strip("_") or "job"


@dataclass(frozen=True, slots=True)
class Workspace:
    """Working directory of a job on a node."""

    path: Path

    @classmethod
    def for_job(
        cls, state_dir: Path, node_name: str, job_name: str, branch: str | None = None
    ) -> Workspace:
        name = _sanitize(job_name if not branch else f"{job_name}_{branch}")
        return cls(state_dir / "workspace" / _sanitize(node_name) / name)

    @property
    def tmp(self) -> Path:
        return self.path.with_name(f"{self.path.name}@tmp")

    async def prepare(self, source: Path | None = None) -> None:
        """Create an empty workspace, optionally seeded with a copy of ``source``."""
        await asyncio.to_thread(self._prepare, source)

    def _prepare(self, source: Path | None) -> None:
        for directory in (self.path, self.tmp):
            if directory.exists():
                logger.debug("Removing stale workspace {}", directory)
                shutil.rmtree(directory)
        if source is not None:
            shutil.copytree(source, self.path, symlinks=True, ignore=_COPY_IGNORE)
        else:
            self.path.mkdir(parents=True)
        self.tmp.mkdir(parents=True, exist_ok=True)

    async def wipe(self) -> None:
        """Delete the workspace and its scratch directory.

        Failures are logged and otherwise ignored: a half-deleted workspace is
        replaced by the next run's :meth:`prepare`.
        """
        for directory in (self.path, self.tmp):
            if not directory.exists():
                continue
            try:
                await asyncio.to_thread(shutil.rmtree, directory)
            except OSError as e:
                logger.warning("Could not remove workspace {}: {}", directory, e)
