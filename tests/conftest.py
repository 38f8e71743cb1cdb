from __future__ import annotations

import sys
import textwrap
import threading
from pathlib import Path
from typing import Any

import pytest

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"

if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from myaide.models.llm_client import CompletionResult, LLMClient  # noqa: E402


@pytest.fixture()
def workspace(tmp_path: Path) -> Path:
    """Create a tiny project used as the assistant's workspace."""

    root = tmp_path / "workspace"
    package = root / "src" / "tiny_app"
    package.mkdir(parents=True)
    (package / "__init__.py").write_text('"""Tiny app."""\n', encoding="utf-8")
    (package / "calculator.py").write_text(
        textwrap.dedent(
            """
            from __future__ import annotations


            def add(left: int, right: int) -> int:
                return left + right
            """
        ).lstrip(),
        encoding="utf-8",
    )
    (root / "pyproject.toml").write_text(
        textwrap.dedent(
            """
            [project]
            name = "tiny-app"
            version = "0.0.1"
            """
        ).lstrip(),
        encoding="utf-8",
    )
    return root


class ScriptedClient(LLMClient):
    """Replays canned replies keyed by the ``agent`` metadata of each request.

    The last reply queued for an agent is repeated once earlier ones are used
    up; agents without a script receive :attr:`default_reply`.
    """

    default_reply = "No issues found."

    def __init__(self, replies: dict[str, list[str]] | None = None) -> None:
        super().__init__(model="scripted", max_attempts=1, retry_delay=0)
        self._replies = {agent: list(queue) for agent, queue in (replies or {}).items()}
        self._lock = threading.Lock()
        self.calls: list[dict[str, Any]] = []

    def _raw_invoke(self, payload: dict[str, Any]) -> CompletionResult:
        agent = payload.get("metadata", {}).get("agent", "")
        with self._lock:
            self.calls.append(payload)
            queue = self._replies.get(agent)
            if not queue:
                text = self.default_reply
            else:
                text = queue.pop(0) if len(queue) > 1 else queue[0]
        return CompletionResult(content=text, usage_prompt_tokens=10, usage_completion_tokens=5)

    def prompts_for(self, agent: str) -> list[str]:
        """Return the user prompts sent on behalf of ``agent``."""
        return [
            call["input"][-1]["content"][0]["text"]
            for call in self.calls
            if call.get("metadata", {}).get("agent") == agent
        ]


@pytest.fixture()
def scripted_client() -> type[ScriptedClient]:
    return ScriptedClient
