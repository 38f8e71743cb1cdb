"""Optimizer agent: review sizeable changes for performance problems."""

from __future__ import annotations

from typing import Optional

from ..prompts import OPTIMIZER_SYSTEM_PROMPT, render_sections
from ..tools.workspace import Mutation
from .base import Agent, AgentResult, AgentStatus

__all__ = ["MIN_CHANGED_LINES", "OptimizerAgent", "changed_line_count"]

MIN_CHANGED_LINES = 20


def _line_count(text: Optional[str]) -> int:
    return len(text.split("\n")) if text else 0


def changed_line_count(mutations: list[Mutation]) -> int:
    """Sum of absolute line-count deltas across ``mutations``."""
    return sum(abs(_line_count(m.after) - _line_count(m.before)) for m in mutations)


class OptimizerAgent(Agent):
    name = "optimizer"
    description = "Analyzes code for performance bottlenecks and optimization opportunities."

    def _mutations(self) -> list[Mutation]:
        return [m for m in self.context.applied_mutations() if m.action == "write"]

    def precheck(self) -> Optional[AgentResult]:
        mutations = self._mutations()
        if not mutations:
            return self.result(AgentStatus.SKIPPED, "No code changes to optimize.")
        if changed_line_count(mutations) < MIN_CHANGED_LINES:
            return self.result(AgentStatus.SKIPPED, "Changes too small to warrant optimization analysis.")
        return None

    def execute(self) -> AgentResult:
        prompt = render_sections(
            [
                ("USER REQUEST", self.context.request),
                ("IMPLEMENTATION CHANGES", self._changes_summary(self._mutations())),
            ]
        )
        completion = self.complete(OPTIMIZER_SYSTEM_PROMPT, prompt, temperature=0.3, max_output_tokens=2000)
        analysis = completion.content.strip()
        if "critical" in analysis.lower():
            summary = "Critical performance issues found - review recommended"
        else:
            summary = "Code performance analysis complete - minor opportunities identified"
        return self.result(AgentStatus.SUCCESS, summary, details=analysis)

    @staticmethod
    def _changes_summary(mutations: list[Mutation]) -> str:
        parts: list[str] = []
        for mutation in mutations[:5]:
            delta = _line_count(mutation.after) - _line_count(mutation.before)
            parts.append(f"File: {mutation.path} ({'+' if delta >= 0 else ''}{delta} lines)")
            if mutation.after:
                snippet = "\n".join(mutation.after.split("\n")[:30])
                parts.append(f"```\n{snippet}\n...\n```")
        return "\n\n".join(parts)
