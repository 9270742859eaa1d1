"""Configuration loading and management for stagerun."""

from stagerun.kernel.config.models import (
    AgentConfig,
    LoggingConfig,
    StageRunConfig,
    ThrottleCategoryConfig,
)


def __getattr__(name: str) -> object:
    """Lazy imports for loader symbols (they live in stagerun.compiler.config_loader)."""
    _loader_names = {
        "ConfigLoader",
        "clear_config_cache",
        "get_default_config",
        "load_config",
    }
    if name in _loader_names:
        from stagerun.compiler import config_loader

        return getattr(config_loader, name)
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


__all__ = [
    "AgentConfig",
    "LoggingConfig",
    "StageRunConfig",
    "ThrottleCategoryConfig",
]
