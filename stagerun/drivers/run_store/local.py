"""Filesystem run store.

Layout under the state directory::

    jobs/<job>/next_build_number
    jobs/<job>/builds/<n>/run.json
    jobs/<job>/builds/<n>/console.log
    jobs/<job>/builds/<n>/archive/...

Job names may contain ``/`` (``nimbus-eth2/linux/x86_64``) and are
percent-encoded into a single directory name.
"""

from __future__ import annotations

import asyncio
import json
import shutil
from pathlib import Path
from urllib.parse import quote, unquote

from stagerun.kernel.domain.pipeline_run import (
    PipelineRun,
    pipeline_run_from_storage,
    pipeline_run_to_storage,
)
from stagerun.kernel.exceptions import ResourceNotFoundError, RunStoreError
from stagerun.kernel.logging import get_logger

logger = get_logger(__name__)

_RUN_FILE = "run.json"
_LOG_FILE = "console.log"
_ARCHIVE_DIR = "archive"
_COUNTER_FILE = "next_build_number"


class LocalRunStore:
    """Store run records as JSON files on local disk."""

    def __init__(self, root: str | Path) -> None:
        """Initialize the store.

        Args
        ----
            root: Directory holding the ``jobs/`` tree; created on demand
        """
        self.root = Path(root)
        self._lock = asyncio.Lock()

    # Paths

    def _job_dir(self, job_name: str) -> Path:
        return self.root / "jobs" / quote(job_name, safe="")

    def _build_dir(self, job_name: str, build_number: int) -> Path:
        return self._job_dir(job_name) / "builds" / str(build_number)

    def console_log_path(self, job_name: str, build_number: int) -> Path:
        return self._build_dir(job_name, build_number) / _LOG_FILE

    def artifacts_dir(self, job_name: str, build_number: int) -> Path:
        return self._build_dir(job_name, build_number) / _ARCHIVE_DIR

    # Operations

    async def anext_build_number(self, job_name: str) -> int:
        async with self._lock:
            return await asyncio.to_thread(self._next_build_number, job_name)

    async def asave(self, run: PipelineRun) -> None:
        payload = json.dumps(pipeline_run_to_storage(run), indent=2)
        async with self._lock:
            await asyncio.to_thread(self._write, run, payload)

    async def aload(self, job_name: str, build_number: int) -> PipelineRun:
        return await asyncio.to_thread(self._load, job_name, build_number)

    async def alist(self, job_name: str) -> list[PipelineRun]:
        return await asyncio.to_thread(self._list, job_name)

    async def ajobs(self) -> list[str]:
        return await asyncio.to_thread(self._jobs)

    async def adelete(self, job_name: str, build_number: int) -> None:
        build_dir = self._build_dir(job_name, build_number)
        if build_dir.exists():
            await asyncio.to_thread(shutil.rmtree, build_dir)
            logger.info("Discarded build {}#{}", job_name, build_number)

    async def adiscard_artifacts(self, job_name: str, build_number: int) -> None:
        archive = self.artifacts_dir(job_name, build_number)
        if archive.exists():
            await asyncio.to_thread(shutil.rmtree, archive)
        run = await self.aload(job_name, build_number)
        if not run.artifacts_discarded:
            run.artifacts_discarded = True
            await self.asave(run)
            logger.info("Discarded artifacts of {}", run.display_name)

    # Helpers (blocking, run in a worker thread)

    def _next_build_number(self, job_name: str) -> int:
        counter = self._job_dir(job_name) / _COUNTER_FILE
        try:
            number = int(counter.read_text().strip()) if counter.exists() else 1
        except ValueError as e:
            raise RunStoreError(f"Corrupt build counter at {counter}") from e
        counter.parent.mkdir(parents=True, exist_ok=True)
        counter.write_text(f"{number + 1}\n")
        self._build_dir(job_name, number).mkdir(parents=True, exist_ok=True)
        return number

    def _write(self, run: PipelineRun, payload: str) -> None:
        build_dir = self._build_dir(run.job_name, run.build_number)
        # Write then rename so readers never see a partial record
        tmp = build_dir / f"{_RUN_FILE}.tmp"
        try:
            build_dir.mkdir(parents=True, exist_ok=True)
            tmp.write_text(payload)
            tmp.replace(build_dir / _RUN_FILE)
        except OSError as e:
            raise RunStoreError(f"Cannot save {run.display_name}: {e}") from e

    def _load(self, job_name: str, build_number: int) -> PipelineRun:
        path = self._build_dir(job_name, build_number) / _RUN_FILE
        if not path.exists():
            available = [str(n) for n in self._build_numbers(job_name)]
            raise ResourceNotFoundError("build", f"{job_name}#{build_number}", available)
        return self._read(path)

    def _list(self, job_name: str) -> list[PipelineRun]:
        return [
            self._read(self._build_dir(job_name, number) / _RUN_FILE)
            for number in sorted(self._build_numbers(job_name), reverse=True)
        ]

    def _jobs(self) -> list[str]:
        jobs_dir = self.root / "jobs"
        if not jobs_dir.is_dir():
            return []
        return sorted(
            unquote(d.name)
            for d in jobs_dir.iterdir()
            if d.is_dir() and self._build_numbers(unquote(d.name))
        )

    def _build_numbers(self, job_name: str) -> list[int]:
        builds = self._job_dir(job_name) / "builds"
        if not builds.is_dir():
            return []
        return [
            int(d.name)
            for d in builds.iterdir()
            if d.name.isdigit() and (d / _RUN_FILE).exists()
        ]

    @staticmethod
    def _read(path: Path) -> PipelineRun:
        try:
            return pipeline_run_from_storage(json.loads(path.read_text()))
        except (OSError, ValueError, KeyError, TypeError) as e:
            raise RunStoreError(f"Cannot read run record {path}: {e}") from e
