"""Implementer agent: request edit actions from the model and apply them."""

from __future__ import annotations

import logging
import re
from typing import Optional

from ..models.llm_client import ChatMessage, LLMClientError
from ..prompts import (
    IMPLEMENTER_SYSTEM_PROMPT,
    JSON_REPAIR_SYSTEM_PROMPT,
    render_plan,
    render_repair_request,
    render_sections,
)
from ..structured import ImplementationPayload, PayloadError, parse_implementation_payload
from ..tools.edits import apply_actions
from ..tools.json_recovery import JsonRecoveryError, recover_json, truncate_for_error
from ..tools.workspace import FileSystemToolError, PathEscapeError
from .base import Agent, AgentResult, AgentStatus

__all__ = ["ImplementerAgent", "MAX_REPAIR_ATTEMPTS"]

LOGGER = logging.getLogger(__name__)

MAX_REPAIR_ATTEMPTS = 2
REPAIR_SNIPPET_CHARS = 5000
REPAIR_MIN_OUTPUT_TOKENS = 4096
CONTEXT_CHAR_BUDGET = 8000
CONTEXT_MAX_LINES = 200

_PATH_TOKEN = re.compile(r"[\w./-]+\.[A-Za-z0-9]+")


class ImplementerAgent(Agent):
    name = "implementer"
    description = "Writes the requested changes into the workspace."

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self._trail: list[str] = []

    def log(self, message: str) -> None:
        LOGGER.debug("implementer: %s", message)
        self._trail.append(message)

    def precheck(self) -> Optional[AgentResult]:
        if self.context.filesystem is None:
            return self.result(AgentStatus.FAILURE, "Filesystem tool unavailable.")
        if not self.context.plan:
            return self.result(AgentStatus.FAILURE, "No plan available to implement.")
        return None

    def execute(self) -> AgentResult:
        self._trail = ["Implementer starting."]
        filesystem = self.require_filesystem()

        self.log("Requesting primary implementation completion.")
        completion = self.complete(IMPLEMENTER_SYSTEM_PROMPT, self._build_prompt())
        self.log(
            f"Primary completion received (prompt tokens: {completion.usage_prompt_tokens or 0}, "
            f"completion tokens: {completion.usage_completion_tokens or 0})."
        )

        payload, error = self._parse(completion.content)
        if payload is None:
            payload = self._repair(completion.content, error)
            if isinstance(payload, AgentResult):
                return payload
        else:
            self.log("Primary completion parsed successfully.")

        self.log(f"Applying {len(payload.actions)} action(s).")
        report = apply_actions(
            filesystem,
            payload.actions,
            log=self.log,
            positional_fallback=self.context.settings.patch.positional_fallback,
        )
        self.context.implementation = payload

        failures = [outcome.describe() for outcome in report.failed]
        details = "\n".join(self._trail)
        if failures:
            details += "\n\nFailed actions:\n" + "\n".join(f"- {line}" for line in failures)

        if not report.succeeded:
            summary = (
                "Implementer returned no actions."
                if not payload.actions
                else f"None of the {len(payload.actions)} action(s) could be applied."
            )
            return self.result(AgentStatus.FAILURE, summary, details=details, mutations=report.mutations)

        summary = payload.notes or "Applied implementation actions."
        if failures:
            summary += f" ({len(failures)} of {len(payload.actions)} action(s) failed)"
        return self.result(
            AgentStatus.SUCCESS,
            summary,
            details=details,
            mutations=report.mutations,
            completed_plan_steps=min(len(report.touched_paths), len(self.context.plan)),
        )

    def _parse(self, raw: str) -> tuple[Optional[ImplementationPayload], Optional[Exception]]:
        try:
            return parse_implementation_payload(recover_json(raw, marker="actions")), None
        except (JsonRecoveryError, PayloadError) as error:
            return None, error

    def _repair(self, raw: str, error: Optional[Exception]) -> ImplementationPayload | AgentResult:
        """Ask the model to repair its own output; return a failure result when it cannot."""
        client = self.require_client()
        self.log(f"Primary JSON parse failed: {error}. Attempting repairs (max {MAX_REPAIR_ATTEMPTS} retries).")
        last_raw = raw
        attempts = 0
        while attempts < MAX_REPAIR_ATTEMPTS:
            attempts += 1
            self.log(f"Repair attempt {attempts}/{MAX_REPAIR_ATTEMPTS}...")
            messages = [
                ChatMessage(role="system", content=JSON_REPAIR_SYSTEM_PROMPT),
                ChatMessage(
                    role="user",
                    content=render_repair_request(
                        attempt=attempts,
                        request=self.context.request,
                        plan=self.context.plan,
                        error=str(error),
                        snippet=truncate_for_error(last_raw, REPAIR_SNIPPET_CHARS),
                    ),
                ),
            ]
            try:
                completion = client.complete(
                    messages,
                    temperature=0.0,
                    max_output_tokens=max(REPAIR_MIN_OUTPUT_TOKENS, client.max_output_tokens),
                    metadata={"agent": self.name, "repair_attempt": attempts},
                )
            except LLMClientError as request_error:
                self.log(f"Repair completion request failed: {request_error}")
                error = request_error
                continue
            self.context.usage.add(completion)
            last_raw = completion.content or last_raw
            payload, error = self._parse(completion.content)
            if payload is not None:
                self.log(f"Repair attempt {attempts} succeeded.")
                return payload
            self.log(f"Repair attempt {attempts} failed: {error}")

        snippet = truncate_for_error(last_raw, 1200)
        summary = (
            f"Failed to parse implementer response as JSON after {attempts} repair attempt(s): {error}"
            f"\n\nLast response snippet:\n{snippet}"
            "\n\nSuggestion: Request the implementation in smaller steps or fewer files at once."
        )
        self.log(f"Failure: {summary}")
        return self.result(AgentStatus.FAILURE, summary, details="\n".join(self._trail))

    def _build_prompt(self) -> str:
        context = self.context
        return render_sections(
            [
                ("User request", context.request),
                ("Plan", render_plan(context.plan)),
                ("Project architecture (from myAIDE.md)", context.project_memory or ""),
                ("Decision", context.decision.render() if context.decision else ""),
                ("Refinement feedback", context.refinement_feedback or ""),
                ("Workspace summary", context.workspace_summary or ""),
                ("Recent conversation", context.render_memory()),
                ("Prior results", context.render_history()),
                ("Existing file context", self._existing_file_context()),
            ]
        )

    def _candidate_paths(self) -> list[str]:
        filesystem = self.require_filesystem()
        candidates: list[str] = []
        if self.context.decision is not None:
            # Files the decision step expects to modify or delete come first.
            for path in self.context.decision.paths_for("modify", "delete"):
                try:
                    if filesystem.resolve(path).is_file() and path not in candidates:
                        candidates.append(path)
                except PathEscapeError:
                    continue
        text = "\n".join([self.context.request, *self.context.plan])
        for token in _PATH_TOKEN.findall(text):
            token = token[2:] if token.startswith("./") else token
            try:
                if filesystem.resolve(token).is_file() and token not in candidates:
                    candidates.append(token)
            except PathEscapeError:
                continue
        if self.context.code_scan is not None:
            for item in self.context.code_scan.items:
                if item.path not in candidates:
                    candidates.append(item.path)
        return candidates

    def _existing_file_context(self) -> str:
        filesystem = self.require_filesystem()
        remaining = CONTEXT_CHAR_BUDGET
        snippets: list[str] = []
        for path in self._candidate_paths():
            if remaining <= 0:
                break
            try:
                content = filesystem.read(path)
            except FileSystemToolError:
                snippets.append(f"--- {path} ---\n<file not found>")
                continue
            lines = content.replace("\r\n", "\n").split("\n")
            preview = "\n".join(lines[:CONTEXT_MAX_LINES])
            suffix = f" (showing {CONTEXT_MAX_LINES} of {len(lines)} lines)" if len(lines) > CONTEXT_MAX_LINES else ""
            snippets.append(f"--- {path}{suffix} ---\n{preview}")
            remaining -= len(preview)
        return "\n\n".join(snippets)
