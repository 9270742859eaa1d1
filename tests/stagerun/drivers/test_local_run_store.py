"""Tests for the filesystem run store."""

from __future__ import annotations

import asyncio
import threading

import pytest

from stagerun.drivers.run_store.local import LocalRunStore
from stagerun.kernel.domain.pipeline_run import PipelineRun, RunStatus
from stagerun.kernel.exceptions import ResourceNotFoundError, RunStoreError
from stagerun.kernel.ports.run_store import RunStore

JOB = "nimbus-eth2/linux/x86_64"


async def _save(store: LocalRunStore, job: str = JOB, **fields) -> PipelineRun:
    number = await store.anext_build_number(job)
    run = PipelineRun(
        run_id=f"id-{number}", job_name=job, build_number=number, pipeline_name="p", **fields
    )
    await store.asave(run)
    return run


class TestLocalRunStore:
    def test_implements_port(self, store) -> None:
        assert isinstance(store, RunStore)

    @pytest.mark.asyncio
    async def test_build_numbers_increase_per_job(self, store) -> None:
        assert await store.anext_build_number(JOB) == 1
        assert await store.anext_build_number(JOB) == 2
        assert await store.anext_build_number("other") == 1

    @pytest.mark.asyncio
    async def test_build_numbers_survive_restart(self, store, config) -> None:
        await store.anext_build_number(JOB)
        reopened = LocalRunStore(config.state_dir)
        assert await reopened.anext_build_number(JOB) == 2

    @pytest.mark.asyncio
    async def test_save_and_load(self, store) -> None:
        run = await _save(store, status=RunStatus.SUCCESS, parameters={"VERBOSITY": "1"})
        loaded = await store.aload(JOB, run.build_number)
        assert loaded == run

    @pytest.mark.asyncio
    async def test_save_overwrites(self, store) -> None:
        run = await _save(store)
        run.status = RunStatus.FAILED
        await store.asave(run)
        assert (await store.aload(JOB, 1)).status == RunStatus.FAILED

    @pytest.mark.asyncio
    async def test_load_missing(self, store) -> None:
        await _save(store)
        with pytest.raises(ResourceNotFoundError, match="Available: 1"):
            await store.aload(JOB, 9)

    @pytest.mark.asyncio
    async def test_list_newest_first(self, store) -> None:
        for _ in range(3):
            await _save(store)
        assert [r.build_number for r in await store.alist(JOB)] == [3, 2, 1]
        assert await store.alist("unknown") == []

    @pytest.mark.asyncio
    async def test_jobs_keep_slashes(self, store) -> None:
        await _save(store)
        await _save(store, job="nimbus-eth2/macos/aarch64")
        await store.anext_build_number("never-saved")
        assert await store.ajobs() == ["nimbus-eth2/linux/x86_64", "nimbus-eth2/macos/aarch64"]

    def test_paths(self, store, config) -> None:
        log = store.console_log_path(JOB, 4)
        assert log.name == "console.log"
        assert log.parent == store.artifacts_dir(JOB, 4).parent
        assert log.is_relative_to(config.state_dir)
        assert log.parent.parent.parent.name == "nimbus-eth2%2Flinux%2Fx86_64"

    @pytest.mark.asyncio
    async def test_delete(self, store) -> None:
        await _save(store)
        await _save(store)
        await store.adelete(JOB, 1)
        assert [r.build_number for r in await store.alist(JOB)] == [2]
        # Deleting a missing build is a no-op
        await store.adelete(JOB, 1)

    @pytest.mark.asyncio
    async def test_discard_artifacts(self, store) -> None:
        run = await _save(store, artifacts=["a.tar.gz"])
        archive = store.artifacts_dir(JOB, run.build_number)
        archive.mkdir()
        (archive / "a.tar.gz").write_text("x")

        await store.adiscard_artifacts(JOB, run.build_number)

        assert not archive.exists()
        loaded = await store.aload(JOB, run.build_number)
        assert loaded.artifacts_discarded
        assert loaded.artifacts == ["a.tar.gz"]

    @pytest.mark.asyncio
    async def test_corrupt_record(self, store) -> None:
        run = await _save(store)
        path = store.console_log_path(JOB, run.build_number).with_name("run.json")
        path.write_text("{not json")
        with pytest.raises(RunStoreError, match="Cannot read run record"):
            await store.aload(JOB, run.build_number)

    @pytest.mark.asyncio
    async def test_concurrent_build_numbers_are_unique(self, store) -> None:
        numbers = await asyncio.gather(*(store.anext_build_number(JOB) for _ in range(20)))
        assert sorted(numbers) == list(range(1, 21))

    @pytest.mark.asyncio
    async def test_record_io_runs_off_the_event_loop(self, store, monkeypatch) -> None:
        run = await _save(store)
        threads = []
        read = LocalRunStore._read

        def tracking_read(path):
            threads.append(threading.get_ident())
            return read(path)

        monkeypatch.setattr(LocalRunStore, "_read", staticmethod(tracking_read))
        await store.aload(JOB, run.build_number)
        await store.alist(JOB)

        assert len(threads) == 2
        assert threading.get_ident() not in threads
