"""Tests for the pipeline runner: whole runs from workspace setup to cleanup."""

from __future__ import annotations

import asyncio

import pytest

from stagerun.kernel.domain.pipeline_run import PipelineRun, RunStatus, StageStatus
from stagerun.kernel.orchestration.events import RunCompleted, RunStarted
from stagerun.kernel.parameters import available_processors
from stagerun.kernel.workspace import Workspace

JOB = "nimbus-eth2/linux/x86_64"


@pytest.fixture
def events(observer_manager) -> list[object]:
    seen: list[object] = []
    observer_manager.register(seen.append)
    return seen


async def _queued(store, pipeline, *, job: str = JOB, **fields) -> PipelineRun:
    run = PipelineRun(
        run_id="run-id",
        job_name=job,
        build_number=await store.anext_build_number(job),
        pipeline_name=pipeline.name,
        node_name="linux-01",
        **fields,
    )
    await store.asave(run)
    return run


def _workspace(config, run: PipelineRun) -> Workspace:
    return Workspace.for_job(config.state_dir, run.node_name, run.job_name, run.branch)


async def _wait_for_stage(run: PipelineRun, path: str, timeout: float = 5.0) -> None:
    async with asyncio.timeout(timeout):
        while (stage := run.stage(path)) is None or stage.status != StageStatus.RUNNING:
            await asyncio.sleep(0.02)


class TestSuccessfulRun:
    @pytest.mark.asyncio
    async def test_run_succeeds_and_is_recorded(
        self, make_runner, make_pipeline, store, config, events
    ) -> None:
        pipeline = make_pipeline(
            stages=[
                {"name": "Deps", "steps": [{"sh": "echo deps"}]},
                {"name": "Build", "steps": [{"sh": "echo build"}]},
            ]
        )
        run = await _queued(store, pipeline)

        result = await make_runner().run(pipeline, run)

        assert result.status == RunStatus.SUCCESS
        assert result.error is None
        assert [s.status for s in result.stages] == [StageStatus.SUCCESS, StageStatus.SUCCESS]
        assert result.started_at is not None
        assert result.completed_at >= result.started_at
        assert (await store.aload(JOB, run.build_number)).status == RunStatus.SUCCESS

        log = store.console_log_path(JOB, run.build_number).read_text()
        assert "[Pipeline] stage Deps" in log
        assert "build" in log.splitlines()
        assert log.rstrip().endswith("Finished: SUCCESS")

        assert isinstance(events[0], RunStarted)
        assert isinstance(events[-1], RunCompleted)
        assert events[-1].status == "success"

    @pytest.mark.asyncio
    async def test_environment_and_source(
        self, make_runner, make_pipeline, store, tmp_path
    ) -> None:
        source = tmp_path / "src"
        source.mkdir()
        (source / "Makefile").write_text("all:\n")
        out = tmp_path / "env.txt"
        report = f'echo "$MAKEFLAGS|$JOB_NAME|$BUILD_NUMBER|$NODE_NAME|$TERM" > {out}'
        pipeline = make_pipeline(
            parameters=[{"name": "VERBOSITY", "type": "choice", "choices": [0, 1, 2]}],
            environment={"MAKEFLAGS": "V=${params.VERBOSITY} -j${env.NPROC}"},
            options={"timestamps": False, "ansi_color": "xterm"},
            stages=[
                {
                    "name": "Build",
                    "steps": [{"sh": "test -f Makefile"}, {"sh": report}],
                }
            ],
        )
        run = await _queued(store, pipeline, parameters={"VERBOSITY": "2"})

        result = await make_runner().run(pipeline, run, source=source)

        assert result.status == RunStatus.SUCCESS, result.error
        makeflags, job, number, node, term = out.read_text().strip().split("|")
        assert makeflags == f"V=2 -j{available_processors()}"
        assert (job, number, node, term) == (JOB, "1", "linux-01", "xterm")

    @pytest.mark.asyncio
    async def test_workspace_kept_when_cleanup_disabled(
        self, make_runner, make_pipeline, store, config
    ) -> None:
        pipeline = make_pipeline(cleanup={"delete_dirs": False})
        run = await _queued(store, pipeline)

        await make_runner().run(pipeline, run)

        assert _workspace(config, run).path.is_dir()


class TestFailedRun:
    @pytest.mark.asyncio
    async def test_failure_skips_rest_and_wipes_workspace(
        self, make_runner, make_pipeline, store, config, tmp_path
    ) -> None:
        pipeline = make_pipeline(
            stages=[
                {"name": "Build", "steps": [{"sh": "touch built; exit 1"}]},
                {"name": "Tests", "steps": [{"sh": "make test"}]},
            ],
            post={
                "always": [{"sh": f"touch {tmp_path / 'always'}"}],
                "failure": [{"sh": f"touch {tmp_path / 'failure'}"}],
            },
        )
        run = await _queued(store, pipeline)

        result = await make_runner().run(pipeline, run)

        assert result.status == RunStatus.FAILED
        assert result.error == "stage 'Build' failed"
        assert result.stage("Build").status == StageStatus.FAILED
        assert result.stage("Build").exit_code == 1
        assert result.stage("Tests").status == StageStatus.SKIPPED
        assert (tmp_path / "always").exists()
        assert (tmp_path / "failure").exists()
        assert not _workspace(config, run).path.exists()
        assert not _workspace(config, run).tmp.exists()

    @pytest.mark.asyncio
    async def test_allowed_failure_keeps_run_green(
        self, make_runner, make_pipeline, store
    ) -> None:
        pipeline = make_pipeline(
            stages=[
                {"name": "Lint", "allow_failure": True, "steps": [{"sh": "exit 1"}]},
                {"name": "Build", "steps": [{"sh": "true"}]},
            ]
        )
        run = await _queued(store, pipeline)

        result = await make_runner().run(pipeline, run)

        assert result.status == RunStatus.SUCCESS
        assert result.stage("Lint").status == StageStatus.FAILED

    @pytest.mark.asyncio
    async def test_pipeline_post_failure_fails_run(
        self, make_runner, make_pipeline, store
    ) -> None:
        pipeline = make_pipeline(post={"always": [{"archive": {"artifacts": "*.tar.gz"}}]})
        run = await _queued(store, pipeline)

        result = await make_runner().run(pipeline, run)

        assert result.status == RunStatus.FAILED
        assert result.error.startswith("post action failed")

    @pytest.mark.asyncio
    async def test_global_timeout(self, make_runner, make_pipeline, store, config) -> None:
        pipeline = make_pipeline(
            options={"timestamps": False, "timeout": 0.5},
            stages=[
                {"name": "Build", "steps": [{"sh": "sleep 30"}]},
                {"name": "Tests", "steps": [{"sh": "true"}]},
            ],
        )
        run = await _queued(store, pipeline)

        result = await make_runner().run(pipeline, run)

        assert result.status == RunStatus.FAILED
        assert "timed out after 0.5s" in result.error
        assert result.stage("Build").status == StageStatus.ABORTED
        assert result.stage("Tests").status == StageStatus.SKIPPED
        assert not _workspace(config, run).path.exists()


class TestAbortedRun:
    @pytest.mark.asyncio
    async def test_cancel_records_aborted(
        self, make_runner, make_pipeline, store, config, tmp_path
    ) -> None:
        pipeline = make_pipeline(
            stages=[{"name": "Build", "steps": [{"sh": "sleep 30"}]}],
            post={"always": [{"sh": f"touch {tmp_path / 'post-ran'}"}]},
        )
        run = await _queued(store, pipeline)
        task = asyncio.create_task(make_runner().run(pipeline, run))
        await _wait_for_stage(run, "Build")

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert run.status == RunStatus.ABORTED
        assert run.stage("Build").status == StageStatus.ABORTED
        assert (tmp_path / "post-ran").exists()
        assert not _workspace(config, run).path.exists()
        assert (await store.aload(JOB, run.build_number)).status == RunStatus.ABORTED


class TestUnstartedAndRetention:
    @pytest.mark.asyncio
    async def test_record_unstarted(self, make_runner, make_pipeline, store, events) -> None:
        pipeline = make_pipeline()
        run = await _queued(store, pipeline)

        await make_runner().record_unstarted(
            pipeline, run, RunStatus.ABORTED, "aborted while queued"
        )

        saved = await store.aload(JOB, run.build_number)
        assert saved.status == RunStatus.ABORTED
        assert saved.error == "aborted while queued"
        assert [s.status for s in saved.stages] == [StageStatus.SKIPPED]
        assert events[-1].reason == "aborted while queued"

    @pytest.mark.asyncio
    async def test_build_discarder_applied(self, make_runner, make_pipeline, store) -> None:
        pipeline = make_pipeline(
            options={"timestamps": False, "build_discarder": {"num_to_keep": 2}}
        )
        runner = make_runner()
        for _ in range(3):
            await runner.run(pipeline, await _queued(store, pipeline))

        assert [r.build_number for r in await store.alist(JOB)] == [3, 2]


class TestUnexpectedErrors:
    @pytest.mark.asyncio
    async def test_very_long_output_line(
        self, make_runner, make_pipeline, store, config, tmp_path
    ) -> None:
        pipeline = make_pipeline(
            stages=[
                {
                    "name": "Build",
                    "steps": [{"sh": "head -c 5000000 /dev/zero | tr '\\000' a; echo"}],
                    "post": {"always": [{"sh": f"touch {tmp_path / 'post-ran'}"}]},
                }
            ]
        )
        run = await _queued(store, pipeline)

        result = await make_runner().run(pipeline, run)

        assert result.status == RunStatus.SUCCESS, result.error
        assert (tmp_path / "post-ran").exists()
        assert not _workspace(config, run).path.exists()

    @pytest.mark.asyncio
    async def test_unexpected_error_is_recorded_and_cleaned_up(
        self, make_runner, make_pipeline, store, config, events, monkeypatch
    ) -> None:
        pipeline = make_pipeline()
        run = await _queued(store, pipeline)
        runner = make_runner()

        def broken_environment(*args, **kwargs):
            raise RuntimeError("environment bug")

        monkeypatch.setattr(runner, "_environment", broken_environment)

        with pytest.raises(RuntimeError, match="environment bug"):
            await runner.run(pipeline, run)

        saved = await store.aload(JOB, run.build_number)
        assert saved.status == RunStatus.FAILED
        assert "environment bug" in saved.error
        assert saved.stage("Build").status == StageStatus.SKIPPED
        assert not _workspace(config, run).path.exists()
        assert isinstance(events[-1], RunCompleted)
        assert events[-1].status == "failed"
