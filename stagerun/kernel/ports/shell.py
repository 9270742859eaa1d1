"""Port interface for running shell commands.

The runner never spawns processes itself; it goes through this port so tests
and alternative hosts can substitute their own implementation.
"""

from __future__ import annotations

from abc import abstractmethod
from collections.abc import Callable, Mapping
from pathlib import Path
from typing import Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict

OutputCallback = Callable[[str], None]


class CommandResult(BaseModel):
    """Outcome of a finished command.

    Attributes
    ----------
    command : str
        The command line that was run
    exit_code : int
        Process exit status (negative for "killed by signal")
    duration_ms : float
        Wall-clock runtime in milliseconds
    """

    model_config = ConfigDict(frozen=True)

    command: str
    exit_code: int
    duration_ms: float = 0.0

    @property
    def succeeded(self) -> bool:
        return self.exit_code == 0


@runtime_checkable
class Shell(Protocol):
    """Runs a command line to completion.

    Implementations must stream every output line to ``on_output`` and, when
    the awaiting task is cancelled (stage/run timeout or abort), terminate the
    whole process tree before re-raising ``asyncio.CancelledError``.
    """

    @abstractmethod
    async def arun(
        self,
        command: str,
        *,
        cwd: Path,
        env: Mapping[str, str],
        on_output: OutputCallback | None = None,
    ) -> CommandResult:
        """Run ``command`` in ``cwd`` with exactly ``env`` as its environment.

        Raises
        ------
        OSError
            If the command cannot be started at all
        """
        ...
