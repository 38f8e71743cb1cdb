"""Planner agent: turn the request into a short numbered todo list."""

from __future__ import annotations

import re

from ..prompts import PLANNER_SYSTEM_PROMPT, render_sections
from .base import Agent, AgentResult, AgentStatus

__all__ = ["MAX_PLAN_STEPS", "PlannerAgent", "parse_plan"]

MAX_PLAN_STEPS = 6
DEFAULT_PLAN_STEP = "Complete the requested changes"

_FENCE = re.compile(r"^```(?:\w+)?\s*(.*?)```$", re.DOTALL)
_NUMBERED = re.compile(r"^\d+[.)]\s*(.*)$")
_BULLET = re.compile(r"^[-*]\s+(.*)$")


def parse_plan(raw: str) -> list[str]:
    """Extract up to :data:`MAX_PLAN_STEPS` unique steps from a model reply."""
    cleaned = raw.strip()
    fenced = _FENCE.match(cleaned)
    if fenced:
        cleaned = fenced.group(1).strip()

    steps: list[str] = []
    for line in cleaned.splitlines():
        line = line.strip()
        if not line:
            continue
        match = _NUMBERED.match(line) or _BULLET.match(line)
        if match:
            step = match.group(1).strip()
        elif line.startswith(("#", "**")) or len(line) < 10:
            continue
        else:
            step = line
        if step and step not in steps:
            steps.append(step)
    return steps[:MAX_PLAN_STEPS] or [DEFAULT_PLAN_STEP]


class PlannerAgent(Agent):
    name = "planner"
    description = "Creates an execution plan for the requested change."

    def execute(self) -> AgentResult:
        context = self.context
        prompt = render_sections(
            [
                ("USER REQUEST", context.request),
                ("REFINEMENT FEEDBACK", context.refinement_feedback or ""),
                ("WORKSPACE OVERVIEW", context.workspace_summary or ""),
                ("RELEVANT FILES", context.code_scan.summary if context.code_scan else ""),
                ("CONVERSATION HISTORY", context.render_memory()),
            ]
        )
        prompt += "\n\nGenerate a specific todo list (1-6 concrete steps) for this request:"
        completion = self.complete(PLANNER_SYSTEM_PROMPT, prompt, temperature=0.2, max_output_tokens=500)
        plan = parse_plan(completion.content)
        context.plan[:] = plan
        return self.result(
            AgentStatus.SUCCESS,
            f"Generated plan with {len(plan)} step(s).",
            details=completion.content,
        )
