"""Classify a request's create/modify/delete intent before implementation runs."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, Literal, Mapping, Optional, Sequence

from .models.llm_client import ChatMessage, CompletionResult, LLMClient
from .prompts import DECISION_SYSTEM_PROMPT
from .tools.json_recovery import JsonRecoveryError, recover_json

if TYPE_CHECKING:
    from .agents.base import ConversationTurn

__all__ = [
    "DECISION_AGENT",
    "DecisionEngine",
    "DecisionError",
    "DecisionIntent",
    "DecisionOperation",
    "DecisionOutcome",
    "parse_decision",
]

LOGGER = logging.getLogger(__name__)

DECISION_AGENT = "decision"
DEFAULT_CONFIDENCE = 0.5
MEMORY_TURNS = 4

DecisionIntent = Literal["create", "modify", "delete", "mixed"]
OperationAction = Literal["create", "modify", "delete"]

_INTENTS: tuple[str, ...] = ("create", "modify", "delete", "mixed")
_ACTIONS: tuple[str, ...] = ("create", "modify", "delete")


class DecisionError(RuntimeError):
    """Raised when the decision reply cannot be turned into an outcome."""

    def __init__(self, message: str, *, details: Mapping[str, Any] | None = None) -> None:
        super().__init__(message)
        self.details: dict[str, Any] = dict(details or {})


@dataclass(frozen=True, slots=True)
class DecisionOperation:
    action: OperationAction
    path: Optional[str] = None
    reason: Optional[str] = None

    def describe(self) -> str:
        line = f"{self.action.upper()} {self.path or '(unspecified)'}"
        return f"{line}: {self.reason}" if self.reason else line

    def to_dict(self) -> Dict[str, Any]:
        return {"action": self.action, "path": self.path, "reason": self.reason}


@dataclass(slots=True)
class DecisionOutcome:
    intent: DecisionIntent = "modify"
    confidence: float = DEFAULT_CONFIDENCE
    rationale: str = "No rationale provided."
    operations: list[DecisionOperation] = field(default_factory=list)

    def headline(self) -> str:
        return f"Decision: {self.intent.upper()} (confidence {round(self.confidence * 100)}%)"

    def render(self) -> str:
        lines = [self.headline(), f"Rationale: {self.rationale}"]
        lines.extend(f"- {operation.describe()}" for operation in self.operations)
        return "\n".join(lines)

    def paths_for(self, *actions: str) -> list[str]:
        """Return operation paths whose action is one of ``actions``, first occurrence wins."""
        paths: list[str] = []
        for operation in self.operations:
            if operation.action in actions and operation.path and operation.path not in paths:
                paths.append(operation.path)
        return paths

    def to_dict(self) -> Dict[str, Any]:
        return {
            "intent": self.intent,
            "confidence": self.confidence,
            "rationale": self.rationale,
            "operations": [operation.to_dict() for operation in self.operations],
        }


def _parse_operation(raw: Any) -> Optional[DecisionOperation]:
    if not isinstance(raw, Mapping) or raw.get("action") not in _ACTIONS:
        return None
    path = raw.get("path")
    reason = raw.get("reason")
    return DecisionOperation(
        action=raw["action"],
        path=(path.strip() or None) if isinstance(path, str) else None,
        reason=reason if isinstance(reason, str) else None,
    )


def parse_decision(data: Any) -> DecisionOutcome:
    """Leniently narrow a parsed reply; unknown intents fall back to ``modify``."""
    if not isinstance(data, Mapping):
        raise DecisionError(f"Expected a JSON object, got {type(data).__name__}.")
    intent = data.get("intent") if data.get("intent") in _INTENTS else "modify"
    confidence = data.get("confidence")
    if isinstance(confidence, bool) or not isinstance(confidence, (int, float)):
        confidence = DEFAULT_CONFIDENCE
    rationale = data.get("rationale")
    operations: list[DecisionOperation] = []
    raw_operations = data.get("operations")
    if isinstance(raw_operations, list):
        for entry in raw_operations:
            operation = _parse_operation(entry)
            if operation is not None:
                operations.append(operation)
    return DecisionOutcome(
        intent=intent,
        confidence=max(0.0, min(1.0, float(confidence))),
        rationale=rationale if isinstance(rationale, str) and rationale.strip() else "No rationale provided.",
        operations=operations,
    )


class DecisionEngine:
    """Single model call that labels the operations a request implies."""

    def __init__(self, client: LLMClient, *, max_files: int = 50) -> None:
        self._client = client
        self._max_files = max_files

    def build_prompt(
        self,
        request: str,
        *,
        workspace_summary: str,
        files: Sequence[str],
        memory: Sequence[ConversationTurn] = (),
    ) -> str:
        parts = [f"User request: {request}", f"Workspace summary:\n{workspace_summary}"]
        if files:
            shown = list(files)[: self._max_files]
            parts.append(f"Known files ({len(shown)} shown):\n" + "\n".join(shown))
        else:
            parts.append("No files present in workspace.")
        if memory:
            recent = "\n".join(
                f"{'User' if turn.role == 'user' else 'Assistant'}: {turn.content}"
                for turn in list(memory)[-MEMORY_TURNS:]
            )
            parts.append(f"Recent conversation:\n{recent}")
        return "\n\n".join(parts)

    def decide(
        self,
        request: str,
        *,
        workspace_summary: str,
        files: Sequence[str],
        memory: Sequence[ConversationTurn] = (),
    ) -> tuple[DecisionOutcome, CompletionResult]:
        completion = self._client.complete(
            [
                ChatMessage(role="system", content=DECISION_SYSTEM_PROMPT),
                ChatMessage(
                    role="user",
                    content=self.build_prompt(
                        request, workspace_summary=workspace_summary, files=files, memory=memory
                    ),
                ),
            ],
            temperature=0.0,
            max_output_tokens=400,
            metadata={"agent": DECISION_AGENT},
        )
        try:
            data = recover_json(completion.content, marker="intent")
        except JsonRecoveryError as error:
            raise DecisionError(
                f"Decision engine returned invalid JSON: {error}",
                details={"raw_length": error.raw_length},
            ) from error
        outcome = parse_decision(data)
        LOGGER.debug("%s with %d operation(s)", outcome.headline(), len(outcome.operations))
        return outcome, completion
