"""Local shell driver: runs commands as subprocesses of the runner.

Each command gets its own process group so a timeout or abort can take down
everything it spawned (``make -j`` children, test nodes, ...).
"""

from __future__ import annotations

import asyncio
import os
import signal
from collections.abc import AsyncIterator, Mapping
from contextlib import suppress
from pathlib import Path

from stagerun.kernel.logging import get_logger
from stagerun.kernel.ports.shell import CommandResult, OutputCallback
from stagerun.kernel.utils.timer import Timer

logger = get_logger(__name__)

DEFAULT_SHELL = "/bin/sh"
DEFAULT_KILL_GRACE = 10.0
_READ_SIZE = 64 * 1024
# Output without a newline is emitted in pieces of this size
_MAX_LINE = 4 * 1024 * 1024


class LocalShell:
    """Run commands with ``/bin/sh -e -c`` on the local host.

    Examples
    --------
    Example usage::

        shell = LocalShell()
        result = await shell.arun("make deps", cwd=workspace, env=env, on_output=print)
        assert result.succeeded
    """

    def __init__(
        self,
        shell: str = DEFAULT_SHELL,
        flags: tuple[str, ...] = ("-e",),
        kill_grace: float = DEFAULT_KILL_GRACE,
    ) -> None:
        """Initialize the local shell.

        Args
        ----
            shell: Shell executable used to interpret command lines
            flags: Flags passed before ``-c`` (``-e`` stops at the first failure)
            kill_grace: Seconds between SIGTERM and SIGKILL when terminating
        """
        self.shell = shell
        self.flags = flags
        self.kill_grace = kill_grace

    async def arun(
        self,
        command: str,
        *,
        cwd: Path,
        env: Mapping[str, str],
        on_output: OutputCallback | None = None,
    ) -> CommandResult:
        timer = Timer()
        process = await asyncio.create_subprocess_exec(
            self.shell,
            *self.flags,
            "-c",
            command,
            cwd=cwd,
            env=dict(env),
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT,
            start_new_session=True,
        )
        logger.debug("Started pid {} for: {}", process.pid, command)

        try:
            if process.stdout is not None:
                async for line in _read_lines(process.stdout):
                    if on_output is not None:
                        on_output(line)
            exit_code = await process.wait()
        except BaseException:
            await self._terminate(process)
            raise

        return CommandResult(command=command, exit_code=exit_code, duration_ms=timer.duration_ms)

    async def _terminate(self, process: asyncio.subprocess.Process) -> None:
        """SIGTERM the process group, then SIGKILL it after the grace period."""
        if process.returncode is not None:
            return
        logger.info("Terminating process group {}", process.pid)
        with suppress(ProcessLookupError):
            os.killpg(process.pid, signal.SIGTERM)
        try:
            async with asyncio.timeout(self.kill_grace):
                await process.wait()
        except TimeoutError:
            logger.warning("Process group {} ignored SIGTERM, killing", process.pid)
            with suppress(ProcessLookupError):
                os.killpg(process.pid, signal.SIGKILL)
            await process.wait()


async def _read_lines(stream: asyncio.StreamReader) -> AsyncIterator[str]:
    """Yield decoded output lines, reading fixed-size chunks.

    A line longer than ``_MAX_LINE`` is yielded in several pieces.
    """
    buffer = bytearray()
    while chunk := await stream.read(_READ_SIZE):
        buffer.extend(chunk)
        while True:
            end = buffer.find(b"\n", 0, _MAX_LINE + 1)
            if end != -1:
                yield _decode(buffer[:end])
                del buffer[: end + 1]
            elif len(buffer) >= _MAX_LINE:
                yield _decode(buffer[:_MAX_LINE])
                del buffer[:_MAX_LINE]
            else:
                break
    if buffer:
        yield _decode(buffer)


def _decode(raw: bytearray) -> str:
    return bytes(raw).decode(errors="replace").rstrip("\r")
