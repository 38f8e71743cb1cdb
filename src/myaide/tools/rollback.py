"""Undo applied mutations by replaying their recorded ``before`` snapshots."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from typing import Iterable

from ..telemetry import emit_event
from .workspace import FileSystemTool, FileSystemToolError, Mutation

__all__ = ["RollbackReport", "latest_applied_mutations", "rollback_mutations"]

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class RollbackReport:
    """Paths restored, removed, or left untouched after a failure."""

    restored: list[str] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failed

    def summary(self) -> str:
        parts = [f"restored {len(self.restored)}", f"removed {len(self.removed)}"]
        if self.failed:
            parts.append(f"failed {len(self.failed)}")
        return ", ".join(parts)


def latest_applied_mutations(mutations: Iterable[Mutation]) -> list[Mutation]:
    """Collapse applied mutations to one per path, newest first.

    Each entry is the path's most recent mutation, and its position in the
    replay order is that of the most recent mutation. Its ``before`` is taken
    from the path's earliest applied mutation, which holds the pre-run
    content (``None`` when the path did not exist before the run).
    """
    earliest: dict[str, Mutation] = {}
    latest: dict[str, Mutation] = {}
    for mutation in mutations:
        if not mutation.applied:
            continue
        earliest.setdefault(mutation.path, mutation)
        latest.pop(mutation.path, None)
        latest[mutation.path] = mutation
    return [
        replace(mutation, before=earliest[path].before)
        for path, mutation in reversed(latest.items())
    ]


def rollback_mutations(fs: FileSystemTool, mutations: Iterable[Mutation]) -> RollbackReport:
    """Restore each touched path to its pre-run content.

    A failure on one path is logged and recorded; the remaining paths are
    still processed.
    """
    report = RollbackReport()
    for mutation in latest_applied_mutations(mutations):
        path = mutation.path
        try:
            if mutation.before is not None:
                _restore(fs, path, mutation.before)
                report.restored.append(path)
            elif mutation.action == "write":
                _remove(fs, path)
                report.removed.append(path)
        except (FileSystemToolError, OSError) as error:
            LOGGER.error("Failed to roll back %s: %s", path, error)
            report.failed[path] = str(error)
    emit_event(
        "rollback_completed",
        restored=report.restored,
        removed=report.removed,
        failed=sorted(report.failed),
    )
    return report


def _restore(fs: FileSystemTool, path: str, content: str) -> None:
    target = fs.resolve(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    with target.open("w", encoding="utf-8", newline="") as handle:
        handle.write(content)


def _remove(fs: FileSystemTool, path: str) -> None:
    target = fs.resolve(path)
    if target.is_dir() and not target.is_symlink():
        raise FileSystemToolError(f"Refusing to remove directory {path} during rollback.")
    if target.exists() or target.is_symlink():
        target.unlink()
