"""Shared agent context, results and the base agent contract."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Literal, Mapping, Optional

from ..config import Settings
from ..context import CodeScanResult
from ..decision import DecisionOutcome
from ..models.llm_client import ChatMessage, CompletionResult, LLMClient, LLMClientError
from ..structured import ImplementationPayload
from ..tools.shell import ShellTool
from ..tools.workspace import FileSystemTool, Mutation

__all__ = [
    "Agent",
    "AgentContext",
    "AgentResult",
    "AgentStatus",
    "ConversationTurn",
    "MissingToolError",
    "TokenUsage",
]

LOGGER = logging.getLogger(__name__)


class MissingToolError(RuntimeError):
    """Raised when an agent needs a tool or client the context does not provide."""

    def __init__(self, message: str, *, details: Mapping[str, Any] | None = None) -> None:
        super().__init__(message)
        self.details: dict[str, Any] = dict(details or {})


class AgentStatus(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    SKIPPED = "skipped"


@dataclass(slots=True)
class AgentResult:
    """Outcome reported by a single agent run."""

    agent: str
    status: AgentStatus
    summary: str
    details: Optional[str] = None
    mutations: list[Mutation] = field(default_factory=list)
    completed_plan_steps: Optional[int] = None

    @property
    def ok(self) -> bool:
        return self.status is not AgentStatus.FAILURE

    def to_dict(self) -> Dict[str, Any]:
        return {
            "agent": self.agent,
            "status": self.status.value,
            "summary": self.summary,
            "details": self.details,
            "mutations": [mutation.to_dict() for mutation in self.mutations],
            "completed_plan_steps": self.completed_plan_steps,
        }


@dataclass(slots=True)
class ConversationTurn:
    role: Literal["user", "assistant"]
    content: str


@dataclass(slots=True)
class TokenUsage:
    """Running prompt/completion token totals; safe to update from worker threads."""

    prompt: int = 0
    completion: int = 0
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def add(self, result: CompletionResult) -> None:
        with self._lock:
            self.prompt += result.usage_prompt_tokens or 0
            self.completion += result.usage_completion_tokens or 0

    @property
    def total(self) -> int:
        return self.prompt + self.completion


@dataclass(slots=True)
class AgentContext:
    """State shared by every agent during one orchestrated run."""

    request: str
    workspace: Path
    settings: Settings
    plan: list[str] = field(default_factory=list)
    implementation: Optional[ImplementationPayload] = None
    workspace_summary: Optional[str] = None
    code_scan: Optional[CodeScanResult] = None
    history: list[AgentResult] = field(default_factory=list)
    memory: list[ConversationTurn] = field(default_factory=list)
    usage: TokenUsage = field(default_factory=TokenUsage)
    filesystem: Optional[FileSystemTool] = None
    shell: Optional[ShellTool] = None
    validation_command: Optional[str] = None
    refinement_feedback: Optional[str] = None
    project_memory: Optional[str] = None
    decision: Optional[DecisionOutcome] = None
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def register_result(self, result: AgentResult) -> None:
        with self._lock:
            self.history.append(result)

    def applied_mutations(self) -> list[Mutation]:
        """Return every applied mutation recorded so far, in history order."""
        with self._lock:
            results = list(self.history)
        return [mutation for result in results for mutation in result.mutations if mutation.applied]

    def render_memory(self, limit: int = 6) -> str:
        turns = self.memory[-limit:]
        return "\n".join(
            f"{'User' if turn.role == 'user' else 'Assistant'}: {turn.content}" for turn in turns
        )

    def render_history(self) -> str:
        with self._lock:
            results = list(self.history)
        return "\n".join(f"{result.agent}: {result.status.value} - {result.summary}" for result in results)


class Agent:
    """Base class: subclasses implement :meth:`execute`; :meth:`run` never raises."""

    name: str = "agent"
    description: str = ""
    requires_client: bool = True

    def __init__(self, context: AgentContext, *, client: Optional[LLMClient] = None) -> None:
        self.context = context
        self.client = client

    def run(self) -> AgentResult:
        skipped = self.precheck()
        if skipped is not None:
            return skipped
        if self.requires_client and self.client is None:
            return self.result(AgentStatus.FAILURE, f"Missing OPENAI_API_KEY; {self.name} skipped.")
        try:
            return self.execute()
        except MissingToolError as error:
            LOGGER.warning("%s: %s", self.name, error)
            return self.result(AgentStatus.FAILURE, str(error))
        except LLMClientError as error:
            LOGGER.warning("%s: model call failed: %s", self.name, error)
            return self.result(AgentStatus.FAILURE, f"Model call failed: {error}")
        except Exception as error:  # pragma: no cover - defensive
            LOGGER.exception("%s: unexpected failure", self.name)
            return self.result(AgentStatus.FAILURE, f"{type(error).__name__}: {error}")

    def precheck(self) -> Optional[AgentResult]:
        """Return a result to short-circuit the run, or ``None`` to proceed."""
        return None

    def execute(self) -> AgentResult:
        raise NotImplementedError

    def result(self, status: AgentStatus, summary: str, **kwargs: Any) -> AgentResult:
        return AgentResult(agent=self.name, status=status, summary=summary, **kwargs)

    def complete(self, system_prompt: str, user_prompt: str, **kwargs: Any) -> CompletionResult:
        """Send a system/user pair to the model and record token usage."""
        completion = self.require_client().complete(
            [ChatMessage(role="system", content=system_prompt), ChatMessage(role="user", content=user_prompt)],
            metadata={"agent": self.name},
            **kwargs,
        )
        self.context.usage.add(completion)
        return completion

    def require_client(self) -> LLMClient:
        if self.client is None:
            raise MissingToolError(f"{self.name} needs a model client.", details={"agent": self.name, "tool": "client"})
        return self.client

    def require_filesystem(self) -> FileSystemTool:
        if self.context.filesystem is None:
            raise MissingToolError(
                f"{self.name} needs the workspace filesystem tool.",
                details={"agent": self.name, "tool": "filesystem"},
            )
        return self.context.filesystem

    def require_shell(self) -> ShellTool:
        if self.context.shell is None:
            raise MissingToolError(f"{self.name} needs the shell tool.", details={"agent": self.name, "tool": "shell"})
        return self.context.shell
