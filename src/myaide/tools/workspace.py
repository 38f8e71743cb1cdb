"""Sandboxed filesystem access with before/after mutation snapshots.

Every path handed to :class:`FileSystemTool` is resolved by
:class:`WorkspaceGuard` first, so nothing outside the workspace root is ever
read, written or removed.  Writes and deletes return a :class:`Mutation`
recording the prior content, which is what the rollback protocol replays.
"""

from __future__ import annotations

import logging
import os
import shutil
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Callable, Literal, Mapping, Optional

__all__ = [
    "ApprovalCallback",
    "FileSystemTool",
    "FileSystemToolError",
    "Mutation",
    "MutationAction",
    "PathEscapeError",
    "PREVIEW_CHARS",
    "WorkspaceGuard",
]

LOGGER = logging.getLogger(__name__)

PREVIEW_CHARS = 500

MutationAction = Literal["write", "delete"]
MutationReason = Literal["declined", "dry-run"]


class FileSystemToolError(RuntimeError):
    """Raised when a workspace file operation cannot be completed."""

    def __init__(self, message: str, *, details: Mapping[str, Any] | None = None) -> None:
        super().__init__(message)
        self.details: dict[str, Any] = dict(details or {})


class PathEscapeError(FileSystemToolError):
    """Raised when a path resolves outside of the workspace root."""


@dataclass(frozen=True, slots=True)
class Mutation:
    """Recorded outcome of a single write or delete."""

    action: MutationAction
    path: str
    before: Optional[str] = None
    after: Optional[str] = None
    preview: Optional[str] = None
    applied: bool = False
    reason: Optional[MutationReason] = None

    def to_dict(self) -> dict[str, Any]:
        """Return a JSON-serialisable representation for run logs."""
        return {
            "action": self.action,
            "path": self.path,
            "before": self.before,
            "after": self.after,
            "preview": self.preview,
            "applied": self.applied,
            "reason": self.reason,
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "Mutation":
        """Rebuild a mutation previously produced by :meth:`to_dict`."""
        action = payload.get("action")
        if action not in ("write", "delete"):
            raise ValueError(f"Unknown mutation action: {action!r}")
        path = payload.get("path")
        if not isinstance(path, str) or not path:
            raise ValueError("Mutation entries require a non-empty path.")
        reason = payload.get("reason")
        return cls(
            action=action,
            path=path,
            before=payload.get("before"),
            after=payload.get("after"),
            preview=payload.get("preview"),
            applied=bool(payload.get("applied", False)),
            reason=reason if reason in ("declined", "dry-run") else None,
        )


ApprovalCallback = Callable[[Mutation], bool]


class WorkspaceGuard:
    """Resolve paths against a workspace root and reject escapes."""

    def __init__(self, root: Path | str) -> None:
        self.root = Path(os.path.normpath(Path(root).expanduser().absolute()))

    def resolve(self, path: Path | str) -> Path:
        """Return the absolute path for ``path`` or raise :class:`PathEscapeError`."""
        raw = str(path).strip()
        if not raw:
            raise PathEscapeError("Empty path supplied.", details={"path": raw})
        candidate = Path(raw).expanduser()
        if not candidate.is_absolute():
            candidate = self.root / candidate
        normalised = Path(os.path.normpath(candidate))
        relative = os.path.relpath(normalised, self.root)
        if relative == os.pardir or relative.startswith(os.pardir + os.sep) or os.path.isabs(relative):
            raise PathEscapeError(
                f"Path escapes workspace root: {raw}",
                details={"path": raw, "root": self.root.as_posix()},
            )
        return normalised

    def relative(self, path: Path | str) -> str:
        """Return the workspace-relative POSIX form of ``path``."""
        resolved = self.resolve(path)
        relative = resolved.relative_to(self.root).as_posix()
        return relative or "."


class FileSystemTool:
    """Workspace-scoped file operations honouring dry-run and approvals."""

    def __init__(
        self,
        root: Path | str,
        *,
        dry_run: bool = False,
        approve: ApprovalCallback | None = None,
    ) -> None:
        self.guard = WorkspaceGuard(root)
        self.dry_run = dry_run
        self._approve = approve

    @property
    def root(self) -> Path:
        return self.guard.root

    def resolve(self, path: Path | str) -> Path:
        return self.guard.resolve(path)

    def exists(self, path: Path | str) -> bool:
        return self.guard.resolve(path).exists()

    def read(self, path: Path | str) -> str:
        """Read ``path`` as UTF-8 text, preserving its line endings."""
        target = self.guard.resolve(path)
        try:
            with target.open("r", encoding="utf-8", newline="") as handle:
                return handle.read()
        except (OSError, UnicodeDecodeError) as error:
            relative = self.guard.relative(target)
            raise FileSystemToolError(
                f"Failed to read {relative}: {error}", details={"path": relative}
            ) from error

    def list_dir(self, directory: Path | str = ".") -> list[str]:
        """List directory entries, suffixing sub-directories with ``/``."""
        target = self.guard.resolve(directory)
        try:
            entries = sorted(target.iterdir(), key=lambda entry: entry.name)
        except OSError as error:
            raise FileSystemToolError(f"Failed to list {directory}: {error}") from error
        return [f"{entry.name}/" if entry.is_dir() else entry.name for entry in entries]

    def ensure_dirs(self, *directories: Path | str) -> None:
        if self.dry_run:
            return
        for directory in directories:
            self.guard.resolve(directory).mkdir(parents=True, exist_ok=True)

    def write(self, path: Path | str, content: str) -> Mutation:
        """Write ``content`` to ``path`` and return the recorded mutation."""
        target = self.guard.resolve(path)
        relative = self.guard.relative(target)
        pending = Mutation(
            action="write",
            path=relative,
            before=self._snapshot(target),
            after=content,
            preview=content[:PREVIEW_CHARS],
        )
        gated = self._gate(pending)
        if gated is not None:
            return gated

        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            with target.open("w", encoding="utf-8", newline="") as handle:
                handle.write(content)
        except OSError as error:
            raise FileSystemToolError(
                f"Failed to write {relative}: {error}", details={"path": relative}
            ) from error
        LOGGER.debug("Wrote %s (%d chars)", relative, len(content))
        return replace(pending, applied=True)

    def delete(self, path: Path | str) -> Mutation:
        """Recursively remove ``path``; a missing path is not an error."""
        target = self.guard.resolve(path)
        relative = self.guard.relative(target)
        if target == self.guard.root:
            raise PathEscapeError("Refusing to delete the workspace root.", details={"path": relative})
        pending = Mutation(action="delete", path=relative, before=self._snapshot(target))
        gated = self._gate(pending)
        if gated is not None:
            return gated

        try:
            if target.is_dir() and not target.is_symlink():
                shutil.rmtree(target)
            elif target.exists() or target.is_symlink():
                target.unlink()
        except OSError as error:
            raise FileSystemToolError(
                f"Failed to delete {relative}: {error}", details={"path": relative}
            ) from error
        LOGGER.debug("Deleted %s", relative)
        return replace(pending, applied=True)

    def _gate(self, pending: Mutation) -> Mutation | None:
        """Return a non-applied mutation when dry-run or approval blocks ``pending``."""
        if self.dry_run:
            LOGGER.info("Dry-run: skipped %s of %s", pending.action, pending.path)
            return replace(pending, reason="dry-run")
        if self._approve is not None and not self._approve(pending):
            LOGGER.info("Declined %s of %s", pending.action, pending.path)
            return replace(pending, reason="declined")
        return None

    @staticmethod
    def _snapshot(target: Path) -> str | None:
        if not target.is_file():
            return None
        try:
            with target.open("r", encoding="utf-8", newline="") as handle:
                return handle.read()
        except (OSError, UnicodeDecodeError):
            return None
