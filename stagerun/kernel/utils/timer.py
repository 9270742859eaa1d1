"""Shared timing helper for stages, steps and runs."""

import time
from collections.abc import Generator
from contextlib import contextmanager


class Timer:
    """Lightweight timer that tracks elapsed milliseconds.

    Examples
    --------
    >>> with stage_timer() as t:
    ...     pass  # do work
    >>> assert t.duration_ms >= 0
    """

    __slots__ = ("_start",)

    def __init__(self) -> None:
        self._start = time.perf_counter()

    @property
    def duration_ms(self) -> float:
        """Elapsed time in milliseconds since the timer started."""
        return (time.perf_counter() - self._start) * 1000

    @property
    def duration_str(self) -> str:
        """Elapsed time in seconds, formatted with 2 decimal places."""
        return f"{self.duration_ms / 1000:.2f}s"


@contextmanager
def stage_timer() -> Generator[Timer, None, None]:
    """Time an operation and provide elapsed milliseconds."""
    yield Timer()
