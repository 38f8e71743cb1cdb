"""Apply implementer edit actions to the workspace, one strategy at a time."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Mapping, Optional

from ..structured import DeletePathAction, EditAction, ModifyFileAction, WriteFileAction
from ..telemetry import emit_event
from .anchors import AnchorError, apply_anchor_edit
from .patch import PatchError, apply_unified_diff
from .workspace import FileSystemTool, FileSystemToolError, Mutation

__all__ = [
    "ActionOutcome",
    "ApplyReport",
    "EditError",
    "MissingInstructionsError",
    "apply_actions",
]

LOGGER = logging.getLogger(__name__)

ActionLog = Callable[[str], None]


class EditError(RuntimeError):
    """Base error for edit actions that cannot be carried out."""

    def __init__(self, message: str, *, details: Mapping[str, Any] | None = None) -> None:
        super().__init__(message)
        self.details: dict[str, Any] = dict(details or {})


class MissingInstructionsError(EditError):
    """Raised when an action carries no usable edit instructions."""


@dataclass(slots=True)
class ActionOutcome:
    """Result of applying one edit action."""

    action: EditAction
    strategy: Optional[str] = None
    mutation: Optional[Mutation] = None
    error: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def describe(self) -> str:
        label = f"{self.action.type} {self.action.path}"
        if self.error is not None:
            return f"{label}: failed ({self.error})"
        if self.mutation is not None and not self.mutation.applied:
            return f"{label}: skipped ({self.mutation.reason})"
        return f"{label}: ok via {self.strategy}"


@dataclass(slots=True)
class ApplyReport:
    """Aggregated outcomes for one payload."""

    outcomes: list[ActionOutcome] = field(default_factory=list)

    @property
    def succeeded(self) -> list[ActionOutcome]:
        return [outcome for outcome in self.outcomes if outcome.ok]

    @property
    def failed(self) -> list[ActionOutcome]:
        return [outcome for outcome in self.outcomes if not outcome.ok]

    @property
    def mutations(self) -> list[Mutation]:
        return [outcome.mutation for outcome in self.outcomes if outcome.mutation is not None]

    @property
    def touched_paths(self) -> list[str]:
        seen: list[str] = []
        for mutation in self.mutations:
            if mutation.applied and mutation.path not in seen:
                seen.append(mutation.path)
        return seen


def _modify(
    fs: FileSystemTool,
    action: ModifyFileAction,
    log: ActionLog,
    *,
    positional_fallback: bool,
) -> tuple[Mutation, str]:
    """Run the anchor, diff, then full-content strategies for ``action``."""
    if action.has_anchor_edit:
        original = fs.read(action.path)
        try:
            updated = apply_anchor_edit(original, action)
        except AnchorError as anchor_error:
            if not action.patch:
                raise
            log(f"Anchor edit failed for {action.path}: {anchor_error}; trying patch.")
            try:
                updated = apply_unified_diff(
                    original, action.patch, action.path, positional_fallback=positional_fallback
                )
            except PatchError as patch_error:
                log(f"Patch fallback failed for {action.path}: {patch_error}")
                raise anchor_error from patch_error
            return fs.write(action.path, updated), "patch-after-anchor"
        return fs.write(action.path, updated), "anchor"

    if action.patch:
        original = fs.read(action.path)
        updated = apply_unified_diff(original, action.patch, action.path, positional_fallback=positional_fallback)
        return fs.write(action.path, updated), "patch"

    if action.content is not None:
        return fs.write(action.path, action.content), "content"

    raise MissingInstructionsError(
        f"modify_file action for {action.path} is missing patch, anchor info, or content.",
        details={"path": action.path},
    )


def _apply_one(
    fs: FileSystemTool,
    action: EditAction,
    log: ActionLog,
    *,
    positional_fallback: bool,
) -> tuple[Mutation, str]:
    if isinstance(action, WriteFileAction):
        if action.content is None:
            raise MissingInstructionsError(
                f"write_file action for {action.path} is missing content.",
                details={"path": action.path},
            )
        return fs.write(action.path, action.content), "write"
    if isinstance(action, ModifyFileAction):
        return _modify(fs, action, log, positional_fallback=positional_fallback)
    if isinstance(action, DeletePathAction):
        return fs.delete(action.path), "delete"
    raise EditError(f"Unsupported action type: {getattr(action, 'type', type(action).__name__)}")


def apply_actions(
    fs: FileSystemTool,
    actions: Iterable[EditAction],
    *,
    log: ActionLog | None = None,
    positional_fallback: bool = False,
) -> ApplyReport:
    """Apply ``actions`` in order, isolating failures to the action that raised.

    Every write and delete goes through ``fs`` so workspace containment,
    dry-run and approval rules apply uniformly.
    """
    sink: ActionLog = log or LOGGER.debug
    report = ApplyReport()
    for index, action in enumerate(actions, start=1):
        try:
            mutation, strategy = _apply_one(fs, action, sink, positional_fallback=positional_fallback)
        except (AnchorError, PatchError, EditError, FileSystemToolError) as error:
            LOGGER.warning("Action %d (%s %s) failed: %s", index, action.type, action.path, error)
            sink(f"Action {index} ({action.type} {action.path}) failed: {error}")
            report.outcomes.append(ActionOutcome(action=action, error=error))
            emit_event(
                "edit_action_failed",
                index=index,
                type=action.type,
                path=action.path,
                error=type(error).__name__,
            )
            continue
        sink(f"Action {index} ({action.type} {action.path}) applied via {strategy}.")
        report.outcomes.append(ActionOutcome(action=action, strategy=strategy, mutation=mutation))
        emit_event(
            "edit_action_applied",
            index=index,
            type=action.type,
            path=mutation.path,
            strategy=strategy,
            applied=mutation.applied,
            reason=mutation.reason,
        )
    return report
