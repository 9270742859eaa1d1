"""Tests for the TOML configuration loader."""

from __future__ import annotations

import pytest

from stagerun.compiler.config_loader import _parse_bool_env, load_config
from stagerun.kernel.config.models import DEFAULT_MAIN_BRANCHES
from stagerun.kernel.exceptions import ConfigurationError, ValidationError


class TestLoadConfig:
    def test_agents_and_throttle(self, config_file, tmp_path) -> None:
        config = load_config(config_file)

        assert [agent.name for agent in config.agents] == ["linux-01", "linux-02"]
        assert config.agents[0].labels == frozenset({"linux", "x86_64"})
        assert config.main_branches == frozenset({"stable", "unstable"})
        limits = config.throttle_category("nimbus-eth2")
        assert (limits.max_total, limits.max_per_node) == (9, 1)
        assert config.throttle_category("other").max_total == 9

    def test_relative_state_dir_anchored_at_file(self, config_file, tmp_path) -> None:
        assert load_config(config_file).state_dir == (tmp_path / "state").resolve()

    def test_results_are_cached(self, config_file) -> None:
        assert load_config(config_file) is load_config(config_file)

    def test_env_substitution(self, tmp_path, monkeypatch) -> None:
        path = tmp_path / "stagerun.toml"
        path.write_text(
            'state_dir = "${STAGERUN_TEST_STATE:/srv/ci}"\n'
            'main_branches = ["${STAGERUN_TEST_BRANCH}"]\n'
        )
        monkeypatch.delenv("STAGERUN_TEST_STATE", raising=False)
        monkeypatch.setenv("STAGERUN_TEST_BRANCH", "master")

        config = load_config(path)

        assert str(config.state_dir) == "/srv/ci"
        assert config.main_branches == frozenset({"master"})

    def test_missing_explicit_path(self, tmp_path) -> None:
        with pytest.raises(ConfigurationError, match="not found"):
            load_config(tmp_path / "nope.toml")

    def test_defaults_without_any_file(self, tmp_path, monkeypatch) -> None:
        monkeypatch.chdir(tmp_path)
        config = load_config()
        assert config.main_branches == frozenset(DEFAULT_MAIN_BRANCHES)
        assert len(config.agents) == 1

    def test_found_in_working_directory(self, config_file, monkeypatch) -> None:
        monkeypatch.chdir(config_file.parent)
        assert len(load_config().agents) == 2

    def test_env_config_path(self, config_file, tmp_path, monkeypatch) -> None:
        elsewhere = tmp_path / "elsewhere"
        elsewhere.mkdir()
        monkeypatch.chdir(elsewhere)
        monkeypatch.setenv("STAGERUN_CONFIG_PATH", str(config_file))
        assert len(load_config().agents) == 2

    def test_pyproject_section(self, tmp_path, monkeypatch) -> None:
        (tmp_path / "pyproject.toml").write_text(
            '[project]\nname = "x"\n\n[tool.stagerun]\nmain_branches = ["trunk"]\n'
        )
        nested = tmp_path / "src" / "pkg"
        nested.mkdir(parents=True)
        monkeypatch.chdir(nested)

        config = load_config()

        assert config.main_branches == frozenset({"trunk"})
        assert config.state_dir == (tmp_path / ".stagerun").resolve()

    def test_invalid_toml(self, tmp_path) -> None:
        path = tmp_path / "stagerun.toml"
        path.write_text("state_dir = \n")
        with pytest.raises(ConfigurationError, match="invalid TOML"):
            load_config(path)

    @pytest.mark.parametrize(
        "body",
        ["agents = []\n", 'main_branches = "unstable"\n', 'throttle = "x"\n'],
    )
    def test_malformed_values(self, tmp_path, body) -> None:
        path = tmp_path / "stagerun.toml"
        path.write_text(body)
        with pytest.raises(ConfigurationError):
            load_config(path)

    def test_invalid_agent(self, tmp_path) -> None:
        path = tmp_path / "stagerun.toml"
        path.write_text('[[agents]]\nname = ""\nlabels = ["linux"]\n')
        with pytest.raises(ValidationError):
            load_config(path)


class TestLoggingOverrides:
    def test_from_file(self, tmp_path) -> None:
        path = tmp_path / "stagerun.toml"
        path.write_text('[logging]\nlevel = "DEBUG"\nformat = "json"\n')
        logging = load_config(path).logging
        assert (logging.level, logging.format) == ("DEBUG", "json")

    def test_env_wins(self, tmp_path, monkeypatch) -> None:
        path = tmp_path / "stagerun.toml"
        path.write_text('[logging]\nlevel = "DEBUG"\n')
        monkeypatch.setenv("STAGERUN_LOG_LEVEL", "warning")
        monkeypatch.setenv("STAGERUN_LOG_COLOR", "off")

        logging = load_config(path).logging

        assert logging.level == "WARNING"
        assert logging.use_color is False


class TestParseBoolEnv:
    @pytest.mark.parametrize("value", ["true", "1", "YES", " on ", "enabled"])
    def test_truthy(self, value) -> None:
        assert _parse_bool_env(value) is True

    @pytest.mark.parametrize("value", ["false", "0", "No", "off", "disabled"])
    def test_falsy(self, value) -> None:
        assert _parse_bool_env(value) is False

    def test_invalid(self) -> None:
        with pytest.raises(ValueError, match="Invalid boolean value"):
            _parse_bool_env("maybe")
