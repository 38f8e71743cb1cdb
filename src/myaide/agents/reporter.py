"""Reporter agent: summarise every agent result for the user."""

from __future__ import annotations

from typing import Optional

from .base import Agent, AgentResult, AgentStatus

__all__ = ["ReporterAgent", "STATUS_MARKS", "render_report"]

STATUS_MARKS = {
    AgentStatus.SUCCESS: "✔",
    AgentStatus.FAILURE: "✖",
    AgentStatus.SKIPPED: "➖",
}


def render_report(history: list[AgentResult]) -> str:
    lines = ["Execution report:"]
    for entry in history:
        lines.append(f"  {STATUS_MARKS[entry.status]} {entry.agent}: {entry.summary}")
    return "\n".join(lines)


class ReporterAgent(Agent):
    name = "reporter"
    description = "Summarizes agent results for the user."
    requires_client = False

    def precheck(self) -> Optional[AgentResult]:
        if not self.context.history:
            return self.result(AgentStatus.SKIPPED, "No agent history to report.")
        return None

    def execute(self) -> AgentResult:
        history = list(self.context.history)
        report = render_report(history)
        usage = self.context.usage
        if usage.total:
            report += f"\n\nTokens: prompt={usage.prompt} completion={usage.completion}"
        return self.result(AgentStatus.SUCCESS, "Reported execution summary.", details=report)
