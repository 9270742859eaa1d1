"""Tests for the filesystem artifact store."""

from __future__ import annotations

import pytest

from stagerun.drivers.artifact_store.local import LocalArtifactStore, collect_artifacts
from stagerun.kernel.domain.pipeline_config import ArchiveSpec
from stagerun.kernel.exceptions import ArtifactError


@pytest.fixture
def workspace(tmp_path):
    root = tmp_path / "ws"
    (root / "resttest0_data").mkdir(parents=True)
    for name in (
        "restapi-test.tar.gz",
        "local-testnet-minimal.tar.gz",
        "nim-1.6.tar.gz",
        "resttest0_data/a.txt",
        "resttest0_data/b.txt",
        "build.log",
    ):
        (root / name).write_text(name)
    (root / "dir.tar.gz").mkdir()
    return root


class TestCollectArtifacts:
    def test_includes_minus_excludes(self, workspace) -> None:
        spec = ArchiveSpec(artifacts="*.tar.gz", excludes="nim-*.tar.gz")
        assert collect_artifacts(workspace, spec) == [
            "local-testnet-minimal.tar.gz",
            "restapi-test.tar.gz",
        ]

    def test_several_patterns_and_subdirectories(self, workspace) -> None:
        spec = ArchiveSpec(artifacts="resttest0_data/*.txt, *.log")
        assert collect_artifacts(workspace, spec) == [
            "build.log",
            "resttest0_data/a.txt",
            "resttest0_data/b.txt",
        ]

    def test_recursive_glob(self, workspace) -> None:
        spec = ArchiveSpec(artifacts="**/*.txt")
        assert collect_artifacts(workspace, spec) == [
            "resttest0_data/a.txt",
            "resttest0_data/b.txt",
        ]

    @pytest.mark.parametrize("pattern", ["/etc/*", "../*.tar.gz", "logs/../../x"])
    def test_patterns_stay_inside_workspace(self, workspace, pattern) -> None:
        with pytest.raises(ArtifactError, match="inside the workspace"):
            collect_artifacts(workspace, ArchiveSpec(artifacts=pattern))


class TestLocalArtifactStore:
    @pytest.mark.asyncio
    async def test_copies_with_relative_paths(self, workspace, tmp_path) -> None:
        destination = tmp_path / "archive"
        archived = await LocalArtifactStore().aarchive(
            workspace, ArchiveSpec(artifacts="resttest0_data/*.txt"), destination
        )
        assert archived == ["resttest0_data/a.txt", "resttest0_data/b.txt"]
        assert (destination / "resttest0_data" / "a.txt").read_text() == "resttest0_data/a.txt"

    @pytest.mark.asyncio
    async def test_nothing_matched(self, workspace, tmp_path) -> None:
        with pytest.raises(ArtifactError, match="No artifacts found"):
            await LocalArtifactStore().aarchive(
                workspace, ArchiveSpec(artifacts="*.zip"), tmp_path / "archive"
            )

    @pytest.mark.asyncio
    async def test_nothing_matched_allowed(self, workspace, tmp_path) -> None:
        archived = await LocalArtifactStore().aarchive(
            workspace, ArchiveSpec(artifacts="*.zip", allow_empty=True), tmp_path / "archive"
        )
        assert archived == []
        assert not (tmp_path / "archive").exists()
