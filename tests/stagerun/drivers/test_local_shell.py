"""Tests for the local shell driver."""

from __future__ import annotations

import asyncio
import os
import time

import pytest

from stagerun.drivers.shell.local import LocalShell
from stagerun.kernel.ports.shell import Shell


@pytest.fixture
def shell() -> LocalShell:
    return LocalShell(kill_grace=2.0)


@pytest.fixture
def env() -> dict[str, str]:
    return {"PATH": os.environ.get("PATH", "/usr/bin:/bin")}


class TestLocalShell:
    def test_implements_port(self, shell) -> None:
        assert isinstance(shell, Shell)

    @pytest.mark.asyncio
    async def test_streams_output_lines(self, shell, env, tmp_path) -> None:
        lines: list[str] = []
        result = await shell.arun(
            "echo one; echo two >&2; echo three", cwd=tmp_path, env=env, on_output=lines.append
        )
        assert result.succeeded
        assert result.exit_code == 0
        assert lines == ["one", "two", "three"]
        assert result.duration_ms >= 0

    @pytest.mark.asyncio
    async def test_exit_code(self, shell, env, tmp_path) -> None:
        result = await shell.arun("exit 3", cwd=tmp_path, env=env)
        assert not result.succeeded
        assert result.exit_code == 3

    @pytest.mark.asyncio
    async def test_stops_at_first_failure(self, shell, env, tmp_path) -> None:
        result = await shell.arun("false; touch reached", cwd=tmp_path, env=env)
        assert result.exit_code == 1
        assert not (tmp_path / "reached").exists()

    @pytest.mark.asyncio
    async def test_cwd_and_exact_environment(self, shell, env, tmp_path) -> None:
        lines: list[str] = []
        await shell.arun(
            'pwd; echo "$VERBOSITY"; echo "${HOME:-unset}"',
            cwd=tmp_path,
            env={**env, "VERBOSITY": "2"},
            on_output=lines.append,
        )
        assert os.path.realpath(lines[0]) == os.path.realpath(tmp_path)
        assert lines[1:] == ["2", "unset"]

    @pytest.mark.asyncio
    async def test_cancel_kills_process_group(self, shell, env, tmp_path) -> None:
        task = asyncio.create_task(
            shell.arun("sleep 30 & sleep 30; wait", cwd=tmp_path, env=env)
        )
        await asyncio.sleep(0.3)

        started = time.monotonic()
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        assert time.monotonic() - started < 5

    @pytest.mark.asyncio
    async def test_missing_cwd_raises_oserror(self, shell, env, tmp_path) -> None:
        with pytest.raises(OSError):
            await shell.arun("true", cwd=tmp_path / "missing", env=env)

    @pytest.mark.asyncio
    async def test_line_longer_than_buffer(self, shell, env, tmp_path) -> None:
        lines: list[str] = []
        result = await shell.arun(
            "head -c 5000000 /dev/zero | tr '\\000' a; echo; echo done",
            cwd=tmp_path,
            env=env,
            on_output=lines.append,
        )
        assert result.succeeded
        assert lines[-1] == "done"
        assert "".join(lines[:-1]) == "a" * 5_000_000
        assert max(len(line) for line in lines) <= 4 * 1024 * 1024

    @pytest.mark.asyncio
    async def test_output_without_trailing_newline(self, shell, env, tmp_path) -> None:
        lines: list[str] = []
        await shell.arun("printf 'a\\r\\nb'", cwd=tmp_path, env=env, on_output=lines.append)
        assert lines == ["a", "b"]

    @pytest.mark.asyncio
    async def test_failing_callback_kills_process_group(self, shell, env, tmp_path) -> None:
        def on_output(line: str) -> None:
            raise RuntimeError("console closed")

        started = time.monotonic()
        with pytest.raises(RuntimeError, match="console closed"):
            await shell.arun(
                "echo start; sleep 30 & sleep 30; wait",
                cwd=tmp_path,
                env=env,
                on_output=on_output,
            )
        assert time.monotonic() - started < 5
