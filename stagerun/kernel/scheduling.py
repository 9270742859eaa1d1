"""Run scheduling: concurrent-build policy, throttling and queue deadlines.

A submitted run goes through three gates before it executes:

1. Older unfinished runs of the same job and branch are either cancelled
   (``abort_previous``) or waited for; either way the new run starts only
   once they have finished cleaning up.
2. A slot is taken in every throttle category of the pipeline, bounded by
   ``max_total`` across nodes and ``max_per_node`` per node.
3. The global timeout keeps ticking from enqueue time, so a run that waits
   past its deadline is recorded as failed without starting.
"""

from __future__ import annotations

import asyncio
import uuid
from collections import Counter, deque
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING

from stagerun.kernel.agent import AgentPool
from stagerun.kernel.domain.pipeline_run import PipelineRun, RunStatus
from stagerun.kernel.exceptions import PipelineTimeoutError
from stagerun.kernel.logging import get_logger
from stagerun.kernel.orchestration.events import RunQueued
from stagerun.kernel.parameters import resolve_agent_label, resolve_parameters

if TYPE_CHECKING:
    from stagerun.kernel.config.models import StageRunConfig, ThrottleCategoryConfig
    from stagerun.kernel.domain.pipeline_config import PipelineConfig
    from stagerun.kernel.orchestration.runner import PipelineRunner
    from stagerun.kernel.ports.observer_manager import ObserverManager
    from stagerun.kernel.ports.run_store import RunStore

logger = get_logger(__name__)


class ThrottleGate:
    """Counting gate over throttle categories.

    Waiters are served in arrival order; on every release each waiter whose
    categories all have room on one of its candidate nodes is admitted on the
    first such node. A limit of 0 means unlimited.
    """

    def __init__(self, limits: Callable[[str], ThrottleCategoryConfig]) -> None:
        self._limits = limits
        self._totals: Counter[str] = Counter()
        self._per_node: Counter[tuple[str, str]] = Counter()
        self._waiters: deque[tuple[tuple[str, ...], tuple[str, ...], asyncio.Future[str]]] = (
            deque()
        )

    def active(self, category: str) -> int:
        return self._totals[category]

    def active_on(self, category: str, node: str) -> int:
        return self._per_node[(category, node)]

    @property
    def waiting(self) -> int:
        return sum(1 for *_, fut in self._waiters if not fut.done())

    def _fits(self, categories: tuple[str, ...], node: str) -> bool:
        for category in categories:
            limit = self._limits(category)
            if limit.max_total and self._totals[category] >= limit.max_total:
                return False
            if limit.max_per_node and self._per_node[(category, node)] >= limit.max_per_node:
                return False
        return True

    def _place(self, categories: tuple[str, ...], nodes: tuple[str, ...]) -> str | None:
        for node in nodes:
            if self._fits(categories, node):
                for category in categories:
                    self._totals[category] += 1
                    self._per_node[(category, node)] += 1
                return node
        return None

    async def acquire(self, categories: tuple[str, ...], nodes: Sequence[str]) -> str:
        """Wait until every category has room on one of ``nodes`` and take it.

        Returns the node the slot was taken on.
        """
        nodes = tuple(nodes)
        if not nodes:
            raise ValueError("at least one candidate node is required")
        if not categories:
            return nodes[0]
        node = self._place(categories, nodes)
        if node is not None:
            return node

        fut: asyncio.Future[str] = asyncio.get_running_loop().create_future()
        entry = (categories, nodes, fut)
        self._waiters.append(entry)
        try:
            return await fut
        except asyncio.CancelledError:
            if fut.done() and not fut.cancelled():
                # Granted just before the cancellation landed
                self.release(categories, fut.result())
            elif entry in self._waiters:
                self._waiters.remove(entry)
            raise

    def release(self, categories: tuple[str, ...], node: str) -> None:
        for category in categories:
            self._totals[category] -= 1
            self._per_node[(category, node)] -= 1
        self._wake()

    def _wake(self) -> None:
        for entry in list(self._waiters):
            categories, nodes, fut = entry
            if fut.done():
                self._waiters.remove(entry)
                continue
            node = self._place(categories, nodes)
            if node is not None:
                fut.set_result(node)
                self._waiters.remove(entry)


@dataclass(frozen=True, slots=True)
class RunRequest:
    """What to run: job identity, parameter values and the source tree.

    ``job_name`` defaults to the pipeline name. Agent labels are derived from
    its ``/``-separated tokens, e.g. ``nimbus-eth2/linux/x86_64``.
    """

    job_name: str | None = None
    branch: str | None = None
    parameters: Mapping[str, str] = field(default_factory=dict)
    source: Path | None = None


class RunHandle:
    """A submitted run and the task executing it."""

    def __init__(self, run: PipelineRun, task: asyncio.Task[PipelineRun]) -> None:
        self._run = run
        self._task = task

    @property
    def run(self) -> PipelineRun:
        return self._run

    @property
    def task(self) -> asyncio.Task[PipelineRun]:
        return self._task

    def done(self) -> bool:
        return self._task.done()

    def cancel(self) -> bool:
        """Abort the run; returns False if it already finished."""
        return self._task.cancel()

    async def wait(self) -> PipelineRun:
        """Wait for the run to finish and return its final record.

        Cancelling the caller does not cancel the run.
        """
        try:
            return await asyncio.shield(self._task)
        except asyncio.CancelledError:
            if self._task.cancelled():
                return self._run
            raise


class RunScheduler:
    """Accepts runs and starts them once the concurrency rules allow."""

    def __init__(
        self,
        config: StageRunConfig,
        runner: PipelineRunner,
        store: RunStore,
        observer_manager: ObserverManager | None = None,
    ) -> None:
        self.config = config
        self.runner = runner
        self.store = store
        self.observer_manager = observer_manager
        self.pool = AgentPool(config.agents)
        self.gate = ThrottleGate(config.throttle_category)
        self._active: dict[tuple[str, str | None], list[RunHandle]] = {}

    def active(self, job_name: str, branch: str | None = None) -> list[RunHandle]:
        return [h for h in self._active.get((job_name, branch), []) if not h.done()]

    def aborts_previous(self, pipeline: PipelineConfig, branch: str | None) -> bool:
        """Whether a new run on ``branch`` cancels older runs of the same job."""
        match pipeline.options.disable_concurrent_builds.abort_previous:
            case "always":
                return True
            case "never":
                return False
            case _:
                return branch not in self.config.main_branches

    async def submit(
        self, pipeline: PipelineConfig, request: RunRequest | None = None
    ) -> RunHandle:
        """Queue a run of ``pipeline``.

        Parameters are resolved and an agent is selected before anything is
        recorded, so invalid requests fail without consuming a build number.

        Raises
        ------
        ValidationError
            If the supplied parameters are invalid
        AgentSelectionError
            If no configured agent matches the resolved label expression
        """
        request = request or RunRequest()
        job_name = request.job_name or pipeline.name
        params = resolve_parameters(
            pipeline, request.parameters, job_name, self.config.recognized_labels
        )
        label = resolve_agent_label(pipeline, params)
        # A pipeline without an agent label may run anywhere
        agents = self.pool.candidates(label) if pipeline.agent.label else self.pool.agents
        nodes = tuple(agent.name for agent in agents) or ("local",)

        run = PipelineRun(
            run_id=uuid.uuid4().hex,
            job_name=job_name,
            build_number=await self.store.anext_build_number(job_name),
            pipeline_name=pipeline.name,
            branch=request.branch,
            parameters=params,
            agent_label=label,
            node_name=nodes[0],
        )
        await self.store.asave(run)
        if self.observer_manager is not None:
            await self.observer_manager.notify(
                RunQueued(
                    run_id=run.run_id,
                    job_name=job_name,
                    build_number=run.build_number,
                    agent_label=label,
                )
            )

        key = (job_name, request.branch)
        previous = self.active(job_name, request.branch)
        if previous and self.aborts_previous(pipeline, request.branch):
            for handle in previous:
                logger.info(
                    "Aborting {} superseded by {}", handle.run.display_name, run.display_name
                )
                handle.cancel()

        deadline = self.runner.deadline(pipeline, run)
        task = asyncio.create_task(
            self._execute(pipeline, run, nodes, previous, deadline, request.source),
            name=run.display_name,
        )
        handle = RunHandle(run, task)
        self._active.setdefault(key, []).append(handle)
        task.add_done_callback(lambda _: self._forget(key, handle))
        # Let the task reach its first await so a later cancel is always recorded
        await asyncio.sleep(0)
        return handle

    async def _execute(
        self,
        pipeline: PipelineConfig,
        run: PipelineRun,
        nodes: tuple[str, ...],
        previous: list[RunHandle],
        deadline: float,
        source: Path | None,
    ) -> PipelineRun:
        categories = tuple(pipeline.options.throttle.categories)
        queue_timeout = asyncio.timeout_at(deadline)
        try:
            async with queue_timeout:
                if previous:
                    await asyncio.wait([h.task for h in previous])
                node = await self.gate.acquire(categories, nodes)
        except TimeoutError:
            if not queue_timeout.expired():
                raise
            reason = str(PipelineTimeoutError(run.job_name, pipeline.options.timeout))
            logger.warning("{} expired while queued", run.display_name)
            return await self.runner.record_unstarted(pipeline, run, RunStatus.FAILED, reason)
        except asyncio.CancelledError:
            await self.runner.record_unstarted(
                pipeline, run, RunStatus.ABORTED, "aborted while queued"
            )
            raise

        run.node_name = node
        try:
            return await self.runner.run(pipeline, run, deadline=deadline, source=source)
        finally:
            if categories:
                self.gate.release(categories, node)

    def _forget(self, key: tuple[str, str | None], handle: RunHandle) -> None:
        handles = self._active.get(key, [])
        if handle in handles:
            handles.remove(handle)
        if not handles:
            self._active.pop(key, None)
