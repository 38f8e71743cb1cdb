"""Workspace summaries and request-relevant file snippets for agent prompts."""

from __future__ import annotations

import os
import re
from collections import Counter
from dataclasses import dataclass, field
from pathlib import Path

__all__ = [
    "CodeScanItem",
    "CodeScanResult",
    "WorkspaceScanner",
    "build_workspace_summary",
    "collect_relevant_code",
]


@dataclass(slots=True)
class CodeScanItem:
    """A file judged relevant to the request, with its leading lines."""

    path: str
    snippet: str
    score: float


@dataclass(slots=True)
class CodeScanResult:
    items: list[CodeScanItem] = field(default_factory=list)
    summary: str = ""


_STOP_WORDS = frozenset(
    {
        "the", "and", "for", "with", "that", "this", "from", "into", "add", "make",
        "create", "update", "please", "should", "would", "could", "file", "files",
        "code", "new", "use", "using", "when", "then", "also", "all", "any", "can",
    }
)
_TOKEN_SPLIT = re.compile(r"[^a-zA-Z0-9_]+")


class WorkspaceScanner:
    """Walk a workspace while skipping VCS, dependency and build directories."""

    _ALWAYS_EXCLUDE_DIRS = frozenset(
        {".git", "node_modules", "__pycache__", ".venv", "venv", "dist", "build", "out", "coverage", ".cache", ".myaide"}
    )
    _IMPORTANT_FILES = (
        "pyproject.toml",
        "requirements.txt",
        "setup.cfg",
        "package.json",
        "tsconfig.json",
        "Cargo.toml",
        "go.mod",
        "pom.xml",
    )
    _TREE_LINE_LIMIT = 200
    _PREVIEW_CHARS = 2000
    _MAX_SCAN_FILES = 500
    _MAX_FILE_BYTES = 200_000
    _SNIPPET_LINES = 120

    def __init__(self, root: Path | str) -> None:
        self.root = Path(root)

    def iter_files(self, *, max_depth: int | None = None) -> list[str]:
        """Return workspace-relative file paths, sorted."""
        files: list[str] = []
        for current_root, dirs, filenames in os.walk(self.root):
            rel_dir = Path(current_root).relative_to(self.root)
            depth = 0 if rel_dir == Path(".") else len(rel_dir.parts)
            dirs[:] = sorted(
                d for d in dirs if d not in self._ALWAYS_EXCLUDE_DIRS and not d.startswith(".")
            )
            if max_depth is not None and depth >= max_depth:
                dirs[:] = []
            for filename in sorted(filenames):
                if filename.startswith("."):
                    continue
                relative = Path(filename) if rel_dir == Path(".") else rel_dir / filename
                files.append(relative.as_posix())
        return files

    def render_tree(self, files: list[str]) -> str:
        tree_root: dict[str, object] = {}
        for path in files:
            node = tree_root
            parts = path.split("/")
            for part in parts[:-1]:
                child = node.setdefault(part, {})
                node = child if isinstance(child, dict) else {}
            node.setdefault(parts[-1], None)

        lines: list[str] = ["."]

        def render(node: dict[str, object], prefix: str) -> None:
            entries = sorted(node.items(), key=lambda entry: (0 if isinstance(entry[1], dict) else 1, entry[0]))
            for position, (name, child) in enumerate(entries):
                if len(lines) >= self._TREE_LINE_LIMIT:
                    return
                is_last = position == len(entries) - 1
                connector = "└── " if is_last else "├── "
                lines.append(f"{prefix}{connector}{name}{'/' if isinstance(child, dict) else ''}")
                if isinstance(child, dict) and child:
                    render(child, prefix + ("    " if is_last else "│   "))

        render(tree_root, "")
        return "\n".join(lines)

    def summary(self) -> str:
        files = self.iter_files(max_depth=3)
        extensions = Counter(Path(path).suffix.lstrip(".").lower() for path in files if Path(path).suffix)
        languages = ", ".join(f"{ext} ({count})" for ext, count in extensions.most_common(5))
        sections = [
            f"Workspace root: {self.root}",
            f"Top languages: {languages or 'unknown'}",
            "Key files:",
            self.render_tree(files) if files else "  (no files discovered)",
        ]
        previews: list[str] = []
        for name in self._IMPORTANT_FILES:
            candidate = self.root / name
            if not candidate.is_file():
                continue
            try:
                content = candidate.read_text(encoding="utf-8")
            except (OSError, UnicodeDecodeError):
                continue
            if len(content) > self._PREVIEW_CHARS:
                content = content[: self._PREVIEW_CHARS] + "\n..."
            previews.append(f"## {name}\n{content}")
        if previews:
            sections.append("\nImportant file excerpts:\n" + "\n\n".join(previews))
        return "\n".join(sections)

    def relevant_code(self, request: str, limit: int = 5) -> CodeScanResult:
        tokens = sorted(
            {
                token
                for token in _TOKEN_SPLIT.split(request.lower())
                if len(token) >= 3 and token not in _STOP_WORDS
            }
        )
        if not tokens:
            return CodeScanResult()

        scored: list[tuple[float, str]] = []
        for path in self.iter_files()[: self._MAX_SCAN_FILES]:
            score = self._score(path, tokens)
            if score > 0:
                scored.append((score, path))
        scored.sort(key=lambda entry: (-entry[0], entry[1]))

        items: list[CodeScanItem] = []
        for score, path in scored[:limit]:
            snippet = self._snippet(path)
            if snippet is not None:
                items.append(CodeScanItem(path=path, snippet=snippet, score=score))
        summary = (
            "\n".join(f"- {item.path} (score {item.score:.2f})" for item in items)
            if items
            else "No relevant files detected"
        )
        return CodeScanResult(items=items, summary=summary)

    def _read(self, path: str) -> str | None:
        target = self.root / path
        try:
            if target.stat().st_size > self._MAX_FILE_BYTES:
                return None
            return target.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError):
            return None

    def _score(self, path: str, tokens: list[str]) -> float:
        lower_path = path.lower()
        score = float(sum(3 for token in tokens if token in lower_path))
        content = self._read(path)
        if content:
            lowered = content.lower()
            score += sum(min(lowered.count(token), 10) * 0.5 for token in tokens)
        return score

    def _snippet(self, path: str) -> str | None:
        content = self._read(path)
        if content is None:
            return None
        lines = content.splitlines()
        snippet = "\n".join(lines[: self._SNIPPET_LINES])
        if len(lines) > self._SNIPPET_LINES:
            snippet += f"\n... ({len(lines) - self._SNIPPET_LINES} more lines)"
        return snippet


def build_workspace_summary(root: Path | str) -> str:
    """Describe the workspace layout and key manifest files."""
    return WorkspaceScanner(root).summary()


def collect_relevant_code(request: str, root: Path | str, limit: int = 5) -> CodeScanResult:
    """Rank workspace files by overlap with words from ``request``."""
    return WorkspaceScanner(root).relevant_code(request, limit=limit)
