"""Compiler modules for stagerun.

This package contains the YAML pipeline builder, which validates declarative
pipeline documents into ``PipelineConfig`` models, plus the configuration
loader.
"""

from .yaml_builder import YamlPipelineBuilder, load_pipeline


def __getattr__(name: str) -> object:
    """Lazy imports for config loader symbols to avoid circular imports."""
    _config_names = {
        "ConfigLoader",
        "clear_config_cache",
        "get_default_config",
        "load_config",
    }
    if name in _config_names:
        from stagerun.compiler import config_loader

        return getattr(config_loader, name)
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


__all__ = ["YamlPipelineBuilder", "load_pipeline"]
