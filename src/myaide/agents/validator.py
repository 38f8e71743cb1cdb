"""Validator agent: run the configured validation command."""

from __future__ import annotations

from typing import Optional

from ..tools.shell import ShellToolError, split_command
from .base import Agent, AgentResult, AgentStatus

__all__ = ["ValidatorAgent"]

_OUTPUT_TAIL = 4000


def _tail(text: str) -> str:
    return text if len(text) <= _OUTPUT_TAIL else "...\n" + text[-_OUTPUT_TAIL:]


class ValidatorAgent(Agent):
    name = "validator"
    description = "Runs automated checks (tests, linting) to validate changes."
    requires_client = False

    def precheck(self) -> Optional[AgentResult]:
        if self.context.shell is None:
            return self.result(AgentStatus.SKIPPED, "Shell tool unavailable.")
        if not (self.context.validation_command or "").strip():
            return self.result(AgentStatus.SKIPPED, "No validation command configured.")
        return None

    def execute(self) -> AgentResult:
        shell = self.require_shell()
        try:
            command, args = split_command(self.context.validation_command or "")
        except ValueError as error:
            return self.result(AgentStatus.FAILURE, f"Invalid validation command: {error}")
        try:
            result = shell.run(command, args, timeout_ms=self.context.settings.validation.timeout_ms)
        except ShellToolError as error:
            details = None
            if error.result is not None:
                details = _tail("\n".join(part for part in (error.result.stdout, error.result.stderr) if part))
            return self.result(AgentStatus.FAILURE, str(error), details=details)
        return self.result(
            AgentStatus.SUCCESS,
            f"Validation succeeded (exit {result.exit_code}).",
            details=_tail(result.stdout),
        )
