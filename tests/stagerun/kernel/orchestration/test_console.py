"""Tests for the run console log."""

from __future__ import annotations

import re

from stagerun.kernel.orchestration.console import ConsoleLog, strip_ansi

_TIMESTAMP = re.compile(r"^\[\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}\.\d{3}Z\] ")


def test_strip_ansi() -> None:
    assert strip_ansi("\x1b[31mFAILED\x1b[0m test_x") == "FAILED test_x"
    assert strip_ansi("plain") == "plain"


class TestConsoleLog:
    def test_timestamps(self, tmp_path) -> None:
        path = tmp_path / "build" / "console.log"
        with ConsoleLog(path) as console:
            console.write("make deps")

        line = path.read_text().splitlines()[0]
        assert _TIMESTAMP.match(line)
        assert line.endswith(" make deps")

    def test_ansi_stripped_unless_kept(self, tmp_path) -> None:
        stripped, kept = tmp_path / "a.log", tmp_path / "b.log"
        with ConsoleLog(stripped, timestamps=False) as console:
            console.write("\x1b[32mok\x1b[0m")
        with ConsoleLog(kept, timestamps=False, keep_ansi=True) as console:
            console.write("\x1b[32mok\x1b[0m")

        assert stripped.read_text() == "ok\n"
        assert kept.read_text() == "\x1b[32mok\x1b[0m\n"

    def test_appends_and_echoes(self, tmp_path) -> None:
        path = tmp_path / "console.log"
        echoed: list[str] = []
        with ConsoleLog(path, timestamps=False, echo=echoed.append) as console:
            console.section("stage Build")
        with ConsoleLog(path, timestamps=False) as console:
            console.write("second")

        assert path.read_text().splitlines() == ["[Pipeline] stage Build", "second"]
        assert echoed == ["[Pipeline] stage Build"]

    def test_write_without_file_only_echoes(self, tmp_path) -> None:
        echoed: list[str] = []
        console = ConsoleLog(tmp_path / "never.log", timestamps=False, echo=echoed.append)
        console.write("hello")
        assert echoed == ["hello"]
        assert not (tmp_path / "never.log").exists()
