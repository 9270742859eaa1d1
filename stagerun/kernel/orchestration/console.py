"""Console log of a run: every command's output, in order, in one file."""

from __future__ import annotations

import re
from collections.abc import Callable
from datetime import UTC, datetime
from pathlib import Path
from typing import TextIO

_ANSI_ESCAPE = re.compile(r"\x1b\[[0-?]*[ -/]*[@-~]")


def strip_ansi(text: str) -> str:
    return _ANSI_ESCAPE.sub("", text)


class ConsoleLog:
    """Line-oriented console log writer.

    Args
    ----
        path: File the log is appended to
        timestamps: Prefix each line with ``[<UTC time>]``
        keep_ansi: Keep ANSI escape sequences instead of stripping them
        echo: Optional callback receiving every formatted line
    """

    def __init__(
        self,
        path: Path,
        *,
        timestamps: bool = True,
        keep_ansi: bool = False,
        echo: Callable[[str], None] | None = None,
    ) -> None:
        self.path = path
        self.timestamps = timestamps
        self.keep_ansi = keep_ansi
        self.echo = echo
        self._file: TextIO | None = None

    def open(self) -> ConsoleLog:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._file = self.path.open("a", encoding="utf-8")
        return self

    def close(self) -> None:
        if self._file is not None:
            self._file.close()
            self._file = None

    def __enter__(self) -> ConsoleLog:
        return self.open()

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def write(self, line: str) -> None:
        if not self.keep_ansi:
            line = strip_ansi(line)
        if self.timestamps:
            now = datetime.now(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")
            line = f"[{now}] {line}"
        if self._file is not None:
            self._file.write(line + "\n")
            self._file.flush()
        if self.echo is not None:
            self.echo(line)

    def section(self, title: str) -> None:
        """Write a stage or step marker line."""
        self.write(f"[Pipeline] {title}")
