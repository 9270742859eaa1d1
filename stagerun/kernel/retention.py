"""Build discarder: bounds the run history and archived artifacts of a job."""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import TYPE_CHECKING

from stagerun.kernel.logging import get_logger

if TYPE_CHECKING:
    from stagerun.kernel.domain.pipeline_config import BuildDiscarderConfig
    from stagerun.kernel.ports.run_store import RunStore

logger = get_logger(__name__)

_DAY = 86400.0


@dataclass(frozen=True, slots=True)
class DiscardReport:
    deleted: tuple[int, ...] = ()
    artifacts_discarded: tuple[int, ...] = ()


class BuildDiscarder:
    """Apply a :class:`BuildDiscarderConfig` to the stored runs of a job.

    Runs are ranked newest first. A run is deleted when its rank is at least
    ``num_to_keep`` or it is older than ``days_to_keep``; otherwise its
    artifacts are deleted when its rank is at least ``artifact_num_to_keep``
    or it is older than ``artifact_days_to_keep``. Runs that have not
    finished, and the build given as ``current``, are never touched.
    """

    def __init__(self, config: BuildDiscarderConfig) -> None:
        self.config = config

    async def apply(
        self, store: RunStore, job_name: str, current: int | None = None, now: float | None = None
    ) -> DiscardReport:
        now = time.time() if now is None else now
        cfg = self.config
        deleted: list[int] = []
        discarded: list[int] = []

        for rank, run in enumerate(await store.alist(job_name)):
            if run.build_number == current or not run.status.is_terminal:
                continue
            age = now - (run.completed_at or run.created_at)
            if _exceeds(rank, age, cfg.num_to_keep, cfg.days_to_keep):
                await store.adelete(job_name, run.build_number)
                deleted.append(run.build_number)
            elif not run.artifacts_discarded and _exceeds(
                rank, age, cfg.artifact_num_to_keep, cfg.artifact_days_to_keep
            ):
                await store.adiscard_artifacts(job_name, run.build_number)
                discarded.append(run.build_number)

        if deleted or discarded:
            logger.info(
                "Retention for {}: deleted builds {}, discarded artifacts of {}",
                job_name,
                deleted,
                discarded,
            )
        return DiscardReport(deleted=tuple(deleted), artifacts_discarded=tuple(discarded))


def _exceeds(rank: int, age: float, keep: int | None, days: int | None) -> bool:
    return (keep is not None and rank >= keep) or (days is not None and age > days * _DAY)
