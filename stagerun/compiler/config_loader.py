"""TOML configuration loader for stagerun."""

from __future__ import annotations

import os
import re
import tomllib
from functools import lru_cache
from pathlib import Path
from typing import Any, Literal, cast

from stagerun.kernel.config.models import (
    DEFAULT_MAIN_BRANCHES,
    DEFAULT_RECOGNIZED_LABELS,
    AgentConfig,
    LoggingConfig,
    StageRunConfig,
    ThrottleCategoryConfig,
)
from stagerun.kernel.exceptions import ConfigurationError
from stagerun.kernel.logging import get_logger

# Constants for boolean environment variable parsing
_TRUTHY_VALUES = frozenset({"true", "1", "yes", "on", "enabled"})
_FALSY_VALUES = frozenset({"false", "0", "no", "off", "disabled"})

logger = get_logger(__name__)


def _parse_bool_env(value: str) -> bool:
    """Parse boolean from environment variable value.

    Raises
    ------
    ValueError
        If value is not a recognized boolean string
    """
    normalized = value.lower().strip()
    if normalized in _TRUTHY_VALUES:
        return True
    if normalized in _FALSY_VALUES:
        return False
    expected = _TRUTHY_VALUES | _FALSY_VALUES
    raise ValueError(f"Invalid boolean value: {value!r}. Expected one of: {expected}")


@lru_cache(maxsize=32)
def _load_and_parse_cached(path_str: str) -> StageRunConfig:
    """Cached configuration loader."""
    loader = ConfigLoader()
    return loader._load_and_parse(Path(path_str))


class ConfigLoader:
    """Loads and processes stagerun configuration from TOML files."""

    ENV_VAR_PATTERN = re.compile(r"\$\{([^}:]+)(?::([^}]*))?\}")

    def load_from_toml(self, path: str | Path | None = None) -> StageRunConfig:
        """Load configuration from TOML file.

        Parameters
        ----------
        path : str | Path | None
            Path to TOML file. If None, searches for stagerun.toml or pyproject.toml

        Returns
        -------
        StageRunConfig
            Parsed configuration with environment variables substituted
        """
        config_path = self._find_config_file(path)
        return _load_and_parse_cached(str(config_path.absolute()))

    def _load_and_parse(self, config_path: Path) -> StageRunConfig:
        """Load and parse configuration file."""
        logger.info("Loading configuration from {path}", path=config_path)

        try:
            with config_path.open("rb") as f:
                data = tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            raise ConfigurationError(str(config_path), f"invalid TOML: {e}") from e

        if config_path.name == "pyproject.toml":
            stagerun_data = data.get("tool", {}).get("stagerun", {})
            if not stagerun_data:
                logger.warning("No [tool.stagerun] section found in pyproject.toml, using defaults")
                return get_default_config()
        elif "tool" in data and "stagerun" in data.get("tool", {}):
            stagerun_data = data["tool"]["stagerun"]
        else:
            stagerun_data = data

        stagerun_data = self._substitute_env_vars(stagerun_data)
        config = self._parse_config(stagerun_data)

        # Relative state directories are anchored at the config file
        if not config.state_dir.is_absolute():
            config.state_dir = (config_path.parent / config.state_dir).resolve()
        return config

    def _find_config_file(self, path: str | Path | None) -> Path:
        """Find configuration file.

        Raises
        ------
        FileNotFoundError
            If no configuration file is found
        """
        if path:
            config_path = Path(path)
            if not config_path.exists():
                raise FileNotFoundError(f"Configuration file not found: {config_path}")
            return config_path

        if env_path := os.getenv("STAGERUN_CONFIG_PATH"):
            config_path = Path(env_path)
            if config_path.exists():
                logger.debug("Using config from STAGERUN_CONFIG_PATH: {}", config_path)
                return config_path
            logger.warning("STAGERUN_CONFIG_PATH set but file not found: {}", config_path)

        search_paths = [
            Path("stagerun.toml"),
            Path(".stagerun.toml"),
        ]
        for search_path in search_paths:
            if search_path.exists():
                return search_path

        # Also check parent directories for a pyproject.toml with our section
        current = Path.cwd()
        while current != current.parent:
            pyproject = current / "pyproject.toml"
            if pyproject.exists():
                with pyproject.open("rb") as f:
                    data = tomllib.load(f)
                if "tool" in data and "stagerun" in data["tool"]:
                    return pyproject
            current = current.parent

        raise FileNotFoundError(
            "No configuration file found. Searched for: stagerun.toml, .stagerun.toml, "
            "pyproject.toml"
        )

    def _substitute_env_vars(self, data: Any) -> Any:
        """Recursively substitute ``${VAR}`` and ``${VAR:default}`` placeholders."""
        if isinstance(data, str):

            def replacer(match: re.Match[str]) -> str:
                var_name, default = match.group(1), match.group(2)
                value = os.environ.get(var_name)
                if value is None:
                    if default is not None:
                        return default
                    logger.debug(
                        "Environment variable ${{{}}} not found, keeping placeholder", var_name
                    )
                    return match.group(0)
                return value

            return self.ENV_VAR_PATTERN.sub(replacer, data)

        if isinstance(data, dict):
            return {key: self._substitute_env_vars(value) for key, value in data.items()}

        if isinstance(data, list):
            return [self._substitute_env_vars(item) for item in data]

        return data

    def _parse_config(self, data: dict[str, Any]) -> StageRunConfig:
        """Parse raw TOML data into StageRunConfig."""
        config = StageRunConfig()

        if "state_dir" in data:
            config.state_dir = Path(data["state_dir"])

        if "main_branches" in data:
            config.main_branches = frozenset(self._string_list(data, "main_branches"))

        if "recognized_labels" in data:
            config.recognized_labels = tuple(self._string_list(data, "recognized_labels"))

        if "agents" in data:
            agents_data = data["agents"]
            if not isinstance(agents_data, list) or not agents_data:
                raise ConfigurationError("agents", "must be a non-empty array of tables")
            config.agents = tuple(
                AgentConfig(
                    name=str(entry.get("name", "")),
                    labels=frozenset(entry.get("labels", [])),
                )
                for entry in agents_data
            )
            logger.debug("Loaded {count} agents", count=len(config.agents))

        throttle_data = data.get("throttle", {})
        if not isinstance(throttle_data, dict):
            raise ConfigurationError("throttle", "must be a table of categories")
        config.throttle = {
            name: ThrottleCategoryConfig(
                name=name,
                max_total=int(limits.get("max_total", 9)),
                max_per_node=int(limits.get("max_per_node", 1)),
            )
            for name, limits in throttle_data.items()
        }

        config.logging = self._parse_logging_config(data.get("logging", {}))
        return config

    @staticmethod
    def _string_list(data: dict[str, Any], key: str) -> list[str]:
        value = data[key]
        if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
            raise ConfigurationError(key, "must be an array of strings")
        return value

    def _parse_logging_config(self, logging_data: dict[str, Any]) -> LoggingConfig:
        """Parse logging configuration with environment variable overrides.

        Environment variables take precedence over TOML configuration:
        - STAGERUN_LOG_LEVEL: Log level
        - STAGERUN_LOG_FORMAT: Output format
        - STAGERUN_LOG_FILE: Optional file path for log output
        - STAGERUN_LOG_COLOR: Use color output (true/false)
        """
        level = logging_data.get("level", "INFO")
        format_type = logging_data.get("format", "structured")
        output_file = logging_data.get("output_file")
        use_color = logging_data.get("use_color", True)
        include_timestamp = logging_data.get("include_timestamp", True)

        if env_level := os.getenv("STAGERUN_LOG_LEVEL"):
            level = env_level.upper()
            logger.debug("Overriding log level from env: {}", level)

        if env_format := os.getenv("STAGERUN_LOG_FORMAT"):
            format_type = env_format.lower()
            logger.debug("Overriding log format from env: {}", format_type)

        if env_file := os.getenv("STAGERUN_LOG_FILE"):
            output_file = env_file

        if env_color := os.getenv("STAGERUN_LOG_COLOR"):
            try:
                use_color = _parse_bool_env(env_color)
            except ValueError as e:
                logger.warning("Invalid STAGERUN_LOG_COLOR value: {}", e)

        return LoggingConfig(
            level=cast("Literal['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']", level),
            format=cast("Literal['console', 'json', 'structured', 'dual', 'rich']", format_type),
            output_file=output_file,
            use_color=use_color,
            include_timestamp=include_timestamp,
        )


def get_default_config() -> StageRunConfig:
    """Return the built-in configuration (host agent, default branches and labels)."""
    return StageRunConfig(
        main_branches=frozenset(DEFAULT_MAIN_BRANCHES),
        recognized_labels=DEFAULT_RECOGNIZED_LABELS,
    )


def load_config(path: str | Path | None = None) -> StageRunConfig:
    """Load configuration from a TOML file, or return defaults if none is found."""
    try:
        return ConfigLoader().load_from_toml(path)
    except FileNotFoundError as e:
        if path:
            raise ConfigurationError(str(path), "configuration file not found") from e
        logger.info("No configuration file found, using defaults")
        return get_default_config()


def clear_config_cache() -> None:
    """Clear the configuration cache (tests, or after editing the file)."""
    _load_and_parse_cached.cache_clear()
