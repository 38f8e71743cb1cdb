"""Locate text anchors in file content and splice edits around them."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any, Mapping

from ..structured import ANCHOR_MODES, AnchorSpec, ModifyFileAction

__all__ = [
    "AnchorEditError",
    "AnchorError",
    "AnchorMatch",
    "AnchorNotFoundError",
    "PostconditionError",
    "apply_anchor_edit",
    "locate_anchor",
    "resolve_mode",
]

LOGGER = logging.getLogger(__name__)


class AnchorError(RuntimeError):
    """Base error for anchor-driven edits that could not be completed."""

    def __init__(self, message: str, *, details: Mapping[str, Any] | None = None) -> None:
        super().__init__(message)
        self.details: dict[str, Any] = dict(details or {})


class AnchorNotFoundError(AnchorError):
    """Raised when no resolution strategy finds the anchor."""


class PostconditionError(AnchorError):
    """Raised when the edited content lacks the required ``ensure`` text."""


class AnchorEditError(AnchorError):
    """Raised when the edit instructions themselves are unusable."""


@dataclass(frozen=True, slots=True)
class AnchorMatch:
    """Half-open ``[start, end)`` span of a located anchor."""

    start: int
    end: int
    strategy: str


def _to_lf(text: str) -> str:
    return text.replace("\r\n", "\n")


def _search_regex(content: str, pattern: str) -> AnchorMatch | None:
    try:
        compiled = re.compile(pattern, re.MULTILINE)
    except re.error as error:
        LOGGER.debug("Ignoring invalid anchor regex %r: %s", pattern, error)
        return None
    for match in compiled.finditer(content):
        if match.end() > match.start():
            return AnchorMatch(match.start(), match.end(), "regex")
    return None


def _loose_pattern(text: str) -> str | None:
    parts = text.split()
    if not parts:
        return None
    return r"\s+".join(re.escape(part) for part in parts)


def locate_anchor(content: str, anchor: AnchorSpec) -> AnchorMatch | None:
    """Return the first span matching ``anchor`` or ``None``.

    Strategies run in order: multiline regex, literal text, trimmed literal
    text, then a case-insensitive pattern tolerant of whitespace drift.
    """
    if anchor.regex:
        found = _search_regex(content, anchor.regex)
        if found is not None:
            return found

    if not anchor.exact:
        return None
    exact = _to_lf(anchor.exact)
    index = content.find(exact)
    if index != -1:
        return AnchorMatch(index, index + len(exact), "exact")

    trimmed = exact.strip()
    if trimmed and trimmed != exact:
        index = content.find(trimmed)
        if index != -1:
            return AnchorMatch(index, index + len(trimmed), "trimmed")

    pattern = _loose_pattern(exact)
    if pattern is None:
        return None
    match = re.search(pattern, content, re.IGNORECASE | re.MULTILINE)
    if match is not None:
        return AnchorMatch(match.start(), match.end(), "loose")
    return None


def resolve_mode(action: ModifyFileAction) -> str:
    """Return the normalised edit mode, defaulting from the supplied text."""
    if action.mode is None or not action.mode.strip():
        return "replace" if action.replacement is not None else "insert_after"
    mode = action.mode.strip().lower().replace("-", "_")
    if mode not in ANCHOR_MODES:
        raise AnchorEditError(
            f"Unsupported anchor mode '{action.mode}' for {action.path}.",
            details={"path": action.path, "mode": action.mode},
        )
    return mode


def apply_anchor_edit(original: str, action: ModifyFileAction) -> str:
    """Apply the anchor edit described by ``action`` to ``original``.

    Matching and splicing happen on LF text; CRLF files are converted back
    before returning.
    """
    if action.anchor is None or not action.anchor.usable:
        raise AnchorEditError(f"Anchor edit for {action.path} has no exact text or regex.")
    mode = resolve_mode(action)
    if mode == "replace":
        if action.replacement is None:
            raise AnchorEditError(f"Replace edit for {action.path} is missing a replacement.")
        text = action.replacement
    else:
        text = action.snippet if action.snippet is not None else action.replacement
        if text is None:
            raise AnchorEditError(f"Insert edit for {action.path} is missing a snippet.")

    uses_crlf = "\r\n" in original
    content = _to_lf(original)
    text = _to_lf(text)

    found = locate_anchor(content, action.anchor)
    if found is None:
        label = action.anchor.description or action.anchor.exact or action.anchor.regex
        raise AnchorNotFoundError(
            f"Anchor not found in {action.path}: {label!r}",
            details={"path": action.path, "exact": action.anchor.exact, "regex": action.anchor.regex},
        )
    LOGGER.debug("Anchor for %s located via %s at %d-%d", action.path, found.strategy, found.start, found.end)

    if mode == "replace":
        result = content[: found.start] + text + content[found.end :]
    elif mode == "insert_after":
        result = content[: found.end] + text + content[found.end :]
    else:
        result = content[: found.start] + text + content[found.start :]

    if action.ensure and _to_lf(action.ensure) not in result:
        raise PostconditionError(
            f"Edit for {action.path} did not produce required text {action.ensure!r}.",
            details={"path": action.path, "ensure": action.ensure},
        )

    if uses_crlf:
        result = result.replace("\n", "\r\n")
    return result
