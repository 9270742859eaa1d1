"""Tests for label derivation, label expressions and agent selection."""

import pytest

from stagerun.kernel.agent import AgentPool, LabelExpression, derive_agent_label
from stagerun.kernel.config.models import DEFAULT_RECOGNIZED_LABELS, AgentConfig
from stagerun.kernel.exceptions import AgentSelectionError


class TestDeriveAgentLabel:
    def test_platform_and_arch_tokens(self) -> None:
        label = derive_agent_label("nimbus-eth2/linux/x86_64/PR-4242", DEFAULT_RECOGNIZED_LABELS)
        assert label == "linux && x86_64"

    def test_keeps_job_path_order(self) -> None:
        assert derive_agent_label("p/aarch64/macos", DEFAULT_RECOGNIZED_LABELS) == (
            "aarch64 && macos"
        )

    def test_no_recognized_token(self) -> None:
        assert derive_agent_label("nimbus-eth2/PR-1", DEFAULT_RECOGNIZED_LABELS) == ""

    def test_repeated_token_once(self) -> None:
        assert derive_agent_label("linux/x/linux", ["linux"]) == "linux"


class TestLabelExpression:
    @pytest.mark.parametrize(
        ("expression", "labels", "expected"),
        [
            ("linux", {"linux", "x86_64"}, True),
            ("linux && x86_64", {"linux", "x86_64"}, True),
            ("linux && aarch64", {"linux", "x86_64"}, False),
            ("macos || linux", {"linux"}, True),
            ("!macos", {"linux"}, True),
            ("!(macos || windows) && x86_64", {"linux", "x86_64"}, True),
            ("linux && (aarch64 || arm64)", {"linux", "x86_64"}, False),
        ],
    )
    def test_matches(self, expression: str, labels: set[str], expected: bool) -> None:
        assert LabelExpression(expression).matches(labels) is expected

    def test_and_binds_tighter_than_or(self) -> None:
        expression = LabelExpression("macos || linux && aarch64")
        assert expression.matches({"macos"})
        assert not expression.matches({"linux", "x86_64"})

    @pytest.mark.parametrize("expression", ["", "   ", "linux &&", "(linux", "linux )", "a & b"])
    def test_invalid(self, expression: str) -> None:
        with pytest.raises(AgentSelectionError):
            LabelExpression(expression)

    def test_str(self) -> None:
        assert str(LabelExpression("  linux && x86_64 ")) == "linux && x86_64"


class TestAgentPool:
    @pytest.fixture
    def pool(self) -> AgentPool:
        return AgentPool(
            (
                AgentConfig(name="linux-01", labels=frozenset({"linux", "x86_64"})),
                AgentConfig(name="linux-02", labels=frozenset({"linux", "x86_64"})),
                AgentConfig(name="macos-01", labels=frozenset({"macos", "arm64"})),
            )
        )

    def test_candidates_in_pool_order(self, pool: AgentPool) -> None:
        names = [a.name for a in pool.candidates("linux && x86_64")]
        assert names == ["linux-01", "linux-02"]

    def test_select_first_match(self, pool: AgentPool) -> None:
        assert pool.select("macos").name == "macos-01"

    def test_agent_matches_own_name(self, pool: AgentPool) -> None:
        assert pool.select("linux-02").name == "linux-02"

    def test_no_match_lists_agents(self, pool: AgentPool) -> None:
        with pytest.raises(AgentSelectionError, match="no agent matches") as exc_info:
            pool.candidates("windows")
        assert "macos-01 [arm64 macos]" in str(exc_info.value)
        assert exc_info.value.expression == "windows"

    def test_empty_label_is_an_error(self, pool: AgentPool) -> None:
        with pytest.raises(AgentSelectionError, match="empty"):
            pool.select("")
