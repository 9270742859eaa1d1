"""stagerun - a declarative, stage-based CI pipeline runner.

Pipelines are YAML documents of parameters, options and stages (steps,
parallel groups, sequential groups) with post actions. Runs are scheduled
under per-category throttles, executed with stage and global timeouts, and
recorded with their console logs and archived artifacts.
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("stagerun")
except PackageNotFoundError:
    __version__ = "0.0.0.dev0"  # Fallback for source checkouts

__all__ = ["__version__"]
