"""Agent selection: label derivation, label expressions and the agent pool.

Pipelines name the host they need with a label expression such as
``linux && x86_64``. When no label is given explicitly it is derived from the
job path, e.g. job ``nimbus-eth2/linux/x86_64/PR-42`` yields
``linux && x86_64``.
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from dataclasses import dataclass

from stagerun.kernel.config.models import AgentConfig
from stagerun.kernel.exceptions import AgentSelectionError
from stagerun.kernel.logging import get_logger

logger = get_logger(__name__)

_TOKEN_PATTERN = re.compile(r"\s*(&&|\|\||!|\(|\)|[^\s&|!()]+)")


def derive_agent_label(job_name: str, recognized_labels: Iterable[str]) -> str:
    """Build a label expression from the job path tokens that are known labels.

    Tokens keep their job-path order. Returns an empty string when no token
    is a recognized label.

    Examples
    --------
    >>> derive_agent_label("nimbus-eth2/linux/x86_64/PR-1", ["linux", "macos", "x86_64"])
    'linux && x86_64'
    >>> derive_agent_label("nimbus-eth2/PR-1", ["linux"])
    ''
    """
    recognized = set(recognized_labels)
    tokens = [token for token in job_name.split("/") if token in recognized]
    return " && ".join(dict.fromkeys(tokens))


class LabelExpression:
    """Parsed label expression supporting ``&&``, ``||``, ``!`` and parentheses.

    Grammar (lowest to highest precedence)::

        expr   := and ( "||" and )*
        and    := unary ( "&&" unary )*
        unary  := "!" unary | atom
        atom   := LABEL | "(" expr ")"
    """

    def __init__(self, expression: str) -> None:
        self.expression = expression.strip()
        self._tokens = self._tokenize(self.expression)
        self._pos = 0
        if not self._tokens:
            raise AgentSelectionError(expression, "label expression is empty")
        self._tree = self._parse_or()
        if self._pos != len(self._tokens):
            raise AgentSelectionError(
                expression, f"unexpected token '{self._tokens[self._pos]}'"
            )

    def _tokenize(self, expression: str) -> list[str]:
        tokens: list[str] = []
        pos = 0
        while expression[pos:].strip():
            match = _TOKEN_PATTERN.match(expression, pos)
            if match is None:
                raise AgentSelectionError(
                    expression, f"invalid character at position {pos}: {expression[pos:]!r}"
                )
            tokens.append(match.group(1))
            pos = match.end()
        return tokens

    def _peek(self) -> str | None:
        return self._tokens[self._pos] if self._pos < len(self._tokens) else None

    def _take(self) -> str:
        token = self._peek()
        if token is None:
            raise AgentSelectionError(self.expression, "unexpected end of expression")
        self._pos += 1
        return token

    def _parse_or(self) -> tuple:
        node = self._parse_and()
        while self._peek() == "||":
            self._take()
            node = ("or", node, self._parse_and())
        return node

    def _parse_and(self) -> tuple:
        node = self._parse_unary()
        while self._peek() == "&&":
            self._take()
            node = ("and", node, self._parse_unary())
        return node

    def _parse_unary(self) -> tuple:
        token = self._take()
        if token == "!":
            return ("not", self._parse_unary())
        if token == "(":
            node = self._parse_or()
            if self._take() != ")":
                raise AgentSelectionError(self.expression, "missing closing parenthesis")
            return node
        if token in ("&&", "||", ")"):
            raise AgentSelectionError(self.expression, f"unexpected token '{token}'")
        return ("label", token)

    def matches(self, labels: Iterable[str]) -> bool:
        """Return True if an agent advertising ``labels`` satisfies the expression."""
        available = frozenset(labels)

        def evaluate(node: tuple) -> bool:
            match node[0]:
                case "label":
                    return node[1] in available
                case "not":
                    return not evaluate(node[1])
                case "and":
                    return evaluate(node[1]) and evaluate(node[2])
                case _:
                    return evaluate(node[1]) or evaluate(node[2])

        return evaluate(self._tree)

    def __str__(self) -> str:
        return self.expression


@dataclass(frozen=True, slots=True)
class AgentPool:
    """The agents a scheduler may place runs on."""

    agents: tuple[AgentConfig, ...]

    def candidates(self, expression: str) -> list[AgentConfig]:
        """Return every agent whose labels satisfy ``expression``, in pool order.

        Agents also match their own name, so ``linux-01`` pins a run to that
        host.

        Raises
        ------
        AgentSelectionError
            If the expression is empty or invalid, or no agent matches
        """
        parsed = LabelExpression(expression)
        matched = [a for a in self.agents if parsed.matches(a.labels | {a.name})]
        if matched:
            logger.debug(
                "Label '{}' matched agents {}", expression, [a.name for a in matched]
            )
            return matched
        available = ", ".join(
            f"{a.name} [{' '.join(sorted(a.labels))}]" for a in self.agents
        ) or "none"
        raise AgentSelectionError(expression, f"no agent matches (agents: {available})")

    def select(self, expression: str) -> AgentConfig:
        """Return the first agent matching ``expression`` (see :meth:`candidates`)."""
        return self.candidates(expression)[0]
