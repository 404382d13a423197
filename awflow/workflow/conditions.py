"""
conditions.py - Expression trees for job `if:` conditions.

Every binary node parenthesizes both operands, so composing conditions never
depends on operator precedence in the runner's expression language.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Sequence


class ConditionNode:
    """Base class for condition expression nodes."""

    def render(self) -> str:
        raise NotImplementedError

    def __str__(self) -> str:
        return self.render()


@dataclass(frozen=True)
class ExpressionNode(ConditionNode):
    """Raw expression text."""
    expression: str
    description: str = ""

    def render(self) -> str:
        return self.expression


@dataclass(frozen=True)
class PropertyAccessNode(ConditionNode):
    path: str

    def render(self) -> str:
        return self.path


@dataclass(frozen=True)
class StringLiteralNode(ConditionNode):
    value: str

    def render(self) -> str:
        return f"'{self.value}'"


@dataclass(frozen=True)
class ComparisonNode(ConditionNode):
    left: ConditionNode
    operator: str
    right: ConditionNode

    def render(self) -> str:
        return f"{self.left.render()} {self.operator} {self.right.render()}"


@dataclass(frozen=True)
class FunctionCallNode(ConditionNode):
    name: str
    arguments: Sequence[ConditionNode] = ()

    def render(self) -> str:
        args = ", ".join(arg.render() for arg in self.arguments)
        return f"{self.name}({args})"


@dataclass(frozen=True)
class AndNode(ConditionNode):
    left: ConditionNode
    right: ConditionNode

    def render(self) -> str:
        return f"({self.left.render()}) && ({self.right.render()})"


@dataclass(frozen=True)
class OrNode(ConditionNode):
    left: ConditionNode
    right: ConditionNode

    def render(self) -> str:
        return f"({self.left.render()}) || ({self.right.render()})"


@dataclass(frozen=True)
class NotNode(ConditionNode):
    child: ConditionNode

    def render(self) -> str:
        if isinstance(self.child, FunctionCallNode):
            return f"!{self.child.render()}"
        return f"!({self.child.render()})"


@dataclass(frozen=True)
class ParenthesesNode(ConditionNode):
    child: ConditionNode

    def render(self) -> str:
        return f"({self.child.render()})"


@dataclass(frozen=True)
class DisjunctionNode(ConditionNode):
    """Flat `a || b || c`; a single term renders bare."""
    terms: Sequence[ConditionNode] = ()

    def render(self) -> str:
        return " || ".join(term.render() for term in self.terms)


# =============================================================================
# Builders
# =============================================================================


def build_and(*nodes: ConditionNode) -> ConditionNode:
    """Left-nested conjunction: ((a) && (b)) && (c)."""
    if not nodes:
        raise ValueError("build_and requires at least one node")
    result = nodes[0]
    for node in nodes[1:]:
        result = AndNode(result, node)
    return result


def build_not_cancelled() -> ConditionNode:
    return NotNode(FunctionCallNode("cancelled"))


def build_job_not_skipped(job_name: str) -> ConditionNode:
    return ComparisonNode(
        PropertyAccessNode(f"needs.{job_name}.result"), "!=", StringLiteralNode("skipped")
    )


def build_output_type_check(output_type: str, job_name: str = "agent") -> ConditionNode:
    return FunctionCallNode(
        "contains",
        (
            PropertyAccessNode(f"needs.{job_name}.outputs.output_types"),
            StringLiteralNode(output_type),
        ),
    )


def strip_expression_wrapper(condition: str) -> str:
    """Remove a surrounding `${{ }}` from a user condition."""
    text = condition.strip()
    if text.startswith("${{") and text.endswith("}}"):
        text = text[3:-2].strip()
    return text


def build_safe_output_condition(
    output_types: Sequence[str],
    user_condition: Optional[str] = None,
    agent_job: str = "agent",
) -> ConditionNode:
    """Gate for a job that consumes agent output.

    Guards come first and the user condition, when given, is always the last
    conjunct:
        (((!cancelled()) && (needs.agent.result != 'skipped'))
            && (contains(...))) && (user)
    """
    checks: List[ConditionNode] = [
        build_output_type_check(t, agent_job) for t in output_types
    ]
    guards = build_and(build_not_cancelled(), build_job_not_skipped(agent_job))
    if checks:
        type_check = checks[0] if len(checks) == 1 else DisjunctionNode(tuple(checks))
        guards = AndNode(guards, type_check)
    if user_condition and user_condition.strip():
        return AndNode(guards, ExpressionNode(strip_expression_wrapper(user_condition)))
    return guards
