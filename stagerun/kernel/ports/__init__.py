"""Port interfaces: the seams between the runner and the host it runs on."""

from stagerun.kernel.ports.artifact_store import ArtifactStore
from stagerun.kernel.ports.observer_manager import Observer, ObserverManager
from stagerun.kernel.ports.run_store import RunStore
from stagerun.kernel.ports.shell import CommandResult, OutputCallback, Shell

__all__ = [
    "ArtifactStore",
    "CommandResult",
    "Observer",
    "ObserverManager",
    "OutputCallback",
    "RunStore",
    "Shell",
]
