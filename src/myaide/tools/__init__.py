"""Tool integrations used by the agent pipeline."""

from .anchors import AnchorEditError, AnchorError, AnchorNotFoundError, PostconditionError, apply_anchor_edit, locate_anchor
from .edits import ActionOutcome, ApplyReport, EditError, MissingInstructionsError, apply_actions
from .json_recovery import JsonRecoveryError, recover_json
from .patch import DiffApplyError, PatchError, apply_unified_diff
from .rollback import RollbackReport, rollback_mutations
from .shell import ShellResult, ShellTimeoutError, ShellTool, ShellToolError, ShellValidationError
from .workspace import FileSystemTool, FileSystemToolError, Mutation, PathEscapeError, WorkspaceGuard

__all__ = [
    "ActionOutcome",
    "AnchorEditError",
    "AnchorError",
    "AnchorNotFoundError",
    "ApplyReport",
    "DiffApplyError",
    "EditError",
    "FileSystemTool",
    "FileSystemToolError",
    "JsonRecoveryError",
    "MissingInstructionsError",
    "Mutation",
    "PatchError",
    "PathEscapeError",
    "PostconditionError",
    "RollbackReport",
    "ShellResult",
    "ShellTimeoutError",
    "ShellTool",
    "ShellToolError",
    "ShellValidationError",
    "WorkspaceGuard",
    "apply_actions",
    "apply_anchor_edit",
    "apply_unified_diff",
    "locate_anchor",
    "recover_json",
    "rollback_mutations",
]
