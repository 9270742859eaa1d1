"""Configuration file for pytest containing shared fixtures.

This module provides fixtures that can be used across multiple test files:
- config: a StageRunConfig rooted in a temporary state directory
- store: a LocalRunStore on that state directory
- make_pipeline: build a validated PipelineConfig from keyword arguments
- make_runner: a PipelineRunner wired to the local drivers
- config_file: a stagerun.toml on disk for loader and CLI tests
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import pytest

from stagerun.compiler.config_loader import clear_config_cache
from stagerun.drivers.artifact_store.local import LocalArtifactStore
from stagerun.drivers.observer_manager.local import LocalObserverManager
from stagerun.drivers.run_store.local import LocalRunStore
from stagerun.drivers.shell.local import LocalShell
from stagerun.kernel.config.models import AgentConfig, StageRunConfig
from stagerun.kernel.domain.pipeline_config import PipelineConfig
from stagerun.kernel.orchestration.runner import PipelineRunner


@pytest.fixture(autouse=True)
def _isolated_config(monkeypatch):
    """Keep the developer's environment out of configuration lookups."""
    for name in ("STAGERUN_CONFIG_PATH", "STAGERUN_LOG_LEVEL", "STAGERUN_LOG_FORMAT"):
        monkeypatch.delenv(name, raising=False)
    clear_config_cache()
    yield
    clear_config_cache()


@pytest.fixture
def config(tmp_path) -> StageRunConfig:
    """Runner configuration with two linux nodes and one macOS node."""
    return StageRunConfig(
        state_dir=tmp_path / "state",
        agents=(
            AgentConfig(name="linux-01", labels=frozenset({"linux", "x86_64"})),
            AgentConfig(name="linux-02", labels=frozenset({"linux", "x86_64"})),
            AgentConfig(name="macos-01", labels=frozenset({"macos", "aarch64", "arm64"})),
        ),
    )


@pytest.fixture
def store(config) -> LocalRunStore:
    return LocalRunStore(config.state_dir)


@pytest.fixture
def make_pipeline():
    """Factory building a PipelineConfig; stages default to a single passing step."""

    def _make(**overrides: Any) -> PipelineConfig:
        data: dict[str, Any] = {
            "name": "test-pipeline",
            "options": {"timestamps": False},
            "stages": [{"name": "Build", "steps": [{"sh": "true"}]}],
        }
        data.update(overrides)
        return PipelineConfig.model_validate(data)

    return _make


@pytest.fixture
def observer_manager() -> LocalObserverManager:
    return LocalObserverManager()


@pytest.fixture
def make_runner(config, store, observer_manager):
    """Factory for runners using the local shell with a short kill grace."""

    def _make(**kwargs: Any) -> PipelineRunner:
        kwargs.setdefault("shell", LocalShell(kill_grace=2.0))
        kwargs.setdefault("artifact_store", LocalArtifactStore())
        kwargs.setdefault("observer_manager", observer_manager)
        return PipelineRunner(config, store=store, **kwargs)

    return _make


@pytest.fixture
def nimbus_pipeline_path() -> Path:
    return Path(__file__).parent.parent / "pipelines" / "nimbus-eth2.yaml"


@pytest.fixture
def config_file(tmp_path) -> Path:
    """A stagerun.toml with two linux agents and a state directory under tmp_path."""
    path = tmp_path / "stagerun.toml"
    path.write_text(
        """
state_dir = "state"
main_branches = ["stable", "unstable"]

[[agents]]
name = "linux-01"
labels = ["linux", "x86_64"]

[[agents]]
name = "linux-02"
labels = ["linux", "x86_64"]

[throttle.nimbus-eth2]
max_total = 9
max_per_node = 1
"""
    )
    return path
