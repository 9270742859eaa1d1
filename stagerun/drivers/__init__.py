"""Local implementations of the kernel ports."""

from stagerun.drivers.artifact_store.local import LocalArtifactStore
from stagerun.drivers.observer_manager.local import LocalObserverManager
from stagerun.drivers.run_store.local import LocalRunStore
from stagerun.drivers.shell.local import LocalShell

__all__ = ["LocalArtifactStore", "LocalObserverManager", "LocalRunStore", "LocalShell"]
