"""Maintain ``myAIDE.md``, the project memory file injected into implementer prompts.

The file lives at the workspace root. It is generated from a workspace scan
when missing or when its content looks empty or generic, and it is flagged
as stale when a key manifest (``pyproject.toml``, ``package.json`` ...) was
modified after it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping, Optional

from .context import WorkspaceScanner
from .models.llm_client import ChatMessage, CompletionResult, LLMClient, LLMClientError
from .prompts import PROJECT_MEMORY_SYSTEM_PROMPT, render_sections
from .tools.json_recovery import strip_code_fence
from .tools.workspace import FileSystemTool, FileSystemToolError, Mutation

__all__ = [
    "KEY_CONFIG_FILES",
    "MYAIDE_FILENAME",
    "PROJECT_MEMORY_AGENT",
    "MyAideManager",
    "ProjectMemoryError",
    "ProjectMemoryOutcome",
    "ProjectMemoryStatus",
    "looks_generic",
    "sanitize_markdown",
]

LOGGER = logging.getLogger(__name__)

MYAIDE_FILENAME = "myAIDE.md"
PROJECT_MEMORY_AGENT = "project-memory"
KEY_CONFIG_FILES = ("package.json", "tsconfig.json", "pyproject.toml", "Cargo.toml", "go.mod")
KEY_CONTENT_FILES = (
    "package.json",
    "README.md",
    "tsconfig.json",
    "pyproject.toml",
    "Cargo.toml",
    "requirements.txt",
    "go.mod",
    "pom.xml",
)
MIN_MEANINGFUL_CHARS = 200
GENERIC_MARKERS = ("No significant files found", "empty workspace")
_KEY_FILE_PREVIEW_CHARS = 1000
_TREE_LINE_LIMIT = 100
_SCAN_DEPTH = 3


class ProjectMemoryError(RuntimeError):
    """Raised when myAIDE.md cannot be read or generated."""

    def __init__(self, message: str, *, details: Mapping[str, Any] | None = None) -> None:
        super().__init__(message)
        self.details: dict[str, Any] = dict(details or {})


@dataclass(slots=True)
class ProjectMemoryStatus:
    exists: bool
    path: Path
    content: Optional[str] = None
    modified_at: Optional[float] = None


@dataclass(slots=True)
class ProjectMemoryOutcome:
    """What :meth:`MyAideManager.ensure` did and the content agents should see."""

    content: Optional[str] = None
    generated: bool = False
    needs_update: bool = False
    messages: list[str] = field(default_factory=list)
    completion: Optional[CompletionResult] = None


def looks_generic(content: str) -> bool:
    """Return ``True`` for content too thin to describe a project."""
    stripped = content.strip()
    if len(stripped) < MIN_MEANINGFUL_CHARS:
        return True
    return any(marker in stripped for marker in GENERIC_MARKERS) or "#" not in stripped


def sanitize_markdown(raw: str) -> str:
    """Drop a fence wrapping the whole reply (```markdown ... ```)."""
    return strip_code_fence(raw.strip()).strip()


class MyAideManager:
    """Detect, read, generate and write the workspace's myAIDE.md."""

    def __init__(
        self,
        workspace: Path | str,
        *,
        client: Optional[LLMClient] = None,
        filesystem: Optional[FileSystemTool] = None,
        filename: str = MYAIDE_FILENAME,
    ) -> None:
        self._fs = filesystem or FileSystemTool(workspace)
        self._client = client
        self._filename = filename
        self._status: Optional[ProjectMemoryStatus] = None

    @property
    def root(self) -> Path:
        return self._fs.root

    @property
    def path(self) -> Path:
        return self._fs.resolve(self._filename)

    def status(self) -> ProjectMemoryStatus:
        if self._status is not None:
            return self._status
        target = self.path
        if not target.is_file():
            self._status = ProjectMemoryStatus(exists=False, path=target)
            return self._status
        try:
            content = self._fs.read(self._filename)
            modified_at = target.stat().st_mtime
        except (FileSystemToolError, OSError) as error:
            raise ProjectMemoryError(
                f"Unable to read {self._filename}: {error}", details={"path": self._filename}
            ) from error
        self._status = ProjectMemoryStatus(exists=True, path=target, content=content, modified_at=modified_at)
        return self._status

    def read(self) -> Optional[str]:
        return self.status().content

    def clear_cache(self) -> None:
        self._status = None

    def write(self, content: str) -> Mutation:
        """Write ``content`` through the filesystem tool (dry-run and approval apply)."""
        mutation = self._fs.write(self._filename, content if content.endswith("\n") else content + "\n")
        self.clear_cache()
        return mutation

    def has_changed(self, since: float) -> bool:
        """Return ``True`` when myAIDE.md was modified after the ``since`` timestamp."""
        status = self.status()
        return status.exists and status.modified_at is not None and status.modified_at > since

    def needs_update(self) -> bool:
        """Return ``True`` when the file is missing or a key manifest is newer than it."""
        status = self.status()
        if not status.exists or status.modified_at is None:
            return True
        for name in KEY_CONFIG_FILES:
            try:
                if (self.root / name).stat().st_mtime > status.modified_at:
                    return True
            except OSError:
                continue
        return False

    def collect_key_files(self) -> str:
        sections: list[str] = []
        for name in KEY_CONTENT_FILES:
            try:
                content = (self.root / name).read_text(encoding="utf-8")
            except (OSError, UnicodeDecodeError):
                continue
            if len(content) > _KEY_FILE_PREVIEW_CHARS:
                content = content[:_KEY_FILE_PREVIEW_CHARS] + "\n..."
            sections.append(f"### {name}\n```\n{content}\n```")
        return "\n\n".join(sections)

    def build_prompt(self) -> str:
        scanner = WorkspaceScanner(self.root)
        files = scanner.iter_files(max_depth=_SCAN_DEPTH)
        tree = "\n".join(scanner.render_tree(files).splitlines()[:_TREE_LINE_LIMIT]) if files else ""
        return render_sections(
            [
                ("Workspace", str(self.root)),
                ("Workspace summary", scanner.summary()),
                (f"File tree ({len(files)} files)", tree),
                ("Key files", self.collect_key_files()),
            ]
        )

    def generate(self) -> tuple[str, CompletionResult]:
        """Ask the model for fresh myAIDE.md content; nothing is written."""
        if self._client is None:
            raise ProjectMemoryError(
                f"A model client is required to generate {self._filename}.", details={"path": self._filename}
            )
        completion = self._client.complete(
            [
                ChatMessage(role="system", content=PROJECT_MEMORY_SYSTEM_PROMPT),
                ChatMessage(role="user", content=self.build_prompt()),
            ],
            temperature=0.3,
            max_output_tokens=4096,
            metadata={"agent": PROJECT_MEMORY_AGENT},
        )
        content = sanitize_markdown(completion.content)
        if not content:
            raise ProjectMemoryError("Model returned empty project memory.", details={"path": self._filename})
        return content, completion

    def ensure(self) -> ProjectMemoryOutcome:
        """Run the per-request lifecycle: create, regenerate, or read and check staleness.

        Failures are reported in the outcome's messages; they never abort the run.
        """
        outcome = ProjectMemoryOutcome()
        try:
            status = self.status()
            if not status.exists:
                if self._client is None:
                    outcome.messages.append(f"{self._filename} not found; a model client is needed to create it.")
                    return outcome
                outcome.messages.append(f"{self._filename} not found. Analyzing workspace to create it...")
                return self._regenerate(outcome, "created")

            content = status.content or ""
            if looks_generic(content) and self._client is not None:
                outcome.messages.append(f"{self._filename} appears empty or generic. Regenerating...")
                return self._regenerate(outcome, "regenerated")

            outcome.content = content or None
            outcome.needs_update = self.needs_update()
            if outcome.needs_update:
                outcome.messages.append(
                    f"Workspace configuration changed since {self._filename} was written; "
                    "consider `myaide refresh-memory`."
                )
            else:
                outcome.messages.append(f"{self._filename} is up to date.")
        except (ProjectMemoryError, LLMClientError, FileSystemToolError) as error:
            LOGGER.warning("Project memory handling failed: %s", error)
            outcome.messages.append(f"{self._filename} handling error: {error}")
        return outcome

    def _regenerate(self, outcome: ProjectMemoryOutcome, verb: str) -> ProjectMemoryOutcome:
        content, completion = self.generate()
        self.write(content)
        tokens = (completion.usage_prompt_tokens or 0) + (completion.usage_completion_tokens or 0)
        outcome.content = content
        outcome.generated = True
        outcome.completion = completion
        outcome.messages.append(f"{self._filename} {verb} ({tokens} tokens used).")
        return outcome
