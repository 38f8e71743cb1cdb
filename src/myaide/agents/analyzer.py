"""Analyzer agent: ask the model to review the files touched by the implementer."""

from __future__ import annotations

from typing import Optional

from ..prompts import ANALYZER_SYSTEM_PROMPT, render_sections
from ..tools.workspace import FileSystemToolError
from .base import Agent, AgentResult, AgentStatus

__all__ = ["AnalyzerAgent", "changed_paths"]


def changed_paths(agent: Agent) -> list[str]:
    """Return unique paths named by the implementation payload, in order."""
    payload = agent.context.implementation
    if payload is None:
        return []
    paths: list[str] = []
    for action in payload.actions:
        if action.path and action.path not in paths:
            paths.append(action.path)
    return paths


class AnalyzerAgent(Agent):
    name = "analyzer"
    description = "Audits implemented changes for potential risks."

    def precheck(self) -> Optional[AgentResult]:
        if self.context.filesystem is None or self.context.implementation is None:
            return self.result(AgentStatus.SKIPPED, "No implementation output to analyze.")
        if not changed_paths(self):
            return self.result(AgentStatus.SKIPPED, "No changed files detected.")
        return None

    def execute(self) -> AgentResult:
        snapshots = self._collect_snapshots(changed_paths(self))
        plan = "\n".join(f"- {step}" for step in self.context.plan) or "- No plan recorded"
        prompt = render_sections(
            [
                ("User request", self.context.request),
                ("Execution plan", plan),
                ("Recent conversation", self.context.render_memory(limit=4)),
                ("File snapshots", snapshots or "No file snapshots available."),
            ]
        )
        completion = self.complete(ANALYZER_SYSTEM_PROMPT, prompt)
        return self.result(AgentStatus.SUCCESS, "Provided risk analysis.", details=completion.content)

    def _collect_snapshots(self, paths: list[str]) -> str:
        filesystem = self.require_filesystem()
        sections: list[str] = []
        for path in paths:
            try:
                content = filesystem.read(path)
            except FileSystemToolError:
                # deleted by the implementer
                continue
            sections.append(f"## {path}\n\n```\n{content}\n```")
        return "\n\n".join(sections)
