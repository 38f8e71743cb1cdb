"""Unified diff application with fuzzy placement and manual fallbacks.

Diffs written by models are routinely off by a few lines, lose their ``+``/
``-``/space markers when double-encoded inside JSON, or carry stale hunk
counts.  :func:`apply_unified_diff` therefore walks a ladder of increasingly
tolerant strategies against the in-memory file content and only gives up once
every variant is exhausted, attaching hand-applicable instructions to the
error it raises.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field, replace
from typing import Any, Iterator, Mapping, Sequence

from ..telemetry import emit_event

__all__ = [
    "DiffApplyError",
    "FUZZ_LADDER",
    "FilePatch",
    "Hunk",
    "PatchError",
    "apply_unified_diff",
    "format_patch_instructions",
    "parse_unified_diff",
    "sanitize_patch_artifacts",
]

LOGGER = logging.getLogger(__name__)

FUZZ_LADDER: tuple[int, ...] = (0, 2, 4)

_HUNK_HEADER = re.compile(
    r"^@@ -(?P<old_start>\d+)(?:,(?P<old_count>\d+))? "
    r"\+(?P<new_start>\d+)(?:,(?P<new_count>\d+))? @@"
)
_BARE_HUNK_HEADER = re.compile(r"^@@(?:\s.*)?$")
_APPLY_PATCH_HEADER = re.compile(r"^\*\*\* (Begin|End) Patch", re.MULTILINE)
_HEADER_PREFIXES = (
    "--- ",
    "+++ ",
    "diff --git ",
    "index ",
    "new file mode",
    "deleted file mode",
    "similarity index",
    "rename from",
    "rename to",
    "old mode",
    "new mode",
)
_CONTENT_PREFIXES = ("+", "-", " ", "@", "\\")
_ARTIFACT_CHARS = frozenset("\"'[]{},")


class PatchError(RuntimeError):
    """Raised when a patch fails validation or application."""

    def __init__(self, message: str, *, details: Mapping[str, Any] | None = None) -> None:
        super().__init__(message)
        self.details: dict[str, Any] = dict(details or {})


class DiffApplyError(PatchError):
    """Raised once every diff strategy is exhausted.

    ``instructions`` holds a human-readable description of the intended
    change so it can be applied by hand.
    """

    def __init__(
        self,
        message: str,
        *,
        instructions: str = "",
        details: Mapping[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details=details)
        self.instructions = instructions


@dataclass(slots=True)
class Hunk:
    """One ``@@`` block of a unified diff."""

    old_start: int
    old_count: int
    new_start: int
    new_count: int
    lines: list[tuple[str, str]] = field(default_factory=list)
    position_known: bool = True
    no_newline_old: bool = False
    no_newline_new: bool = False

    @property
    def target_lines(self) -> list[str]:
        return [text for tag, text in self.lines if tag in (" ", "-")]

    @property
    def replacement_lines(self) -> list[str]:
        return [text for tag, text in self.lines if tag in (" ", "+")]

    @property
    def removed_lines(self) -> list[str]:
        return [text for tag, text in self.lines if tag == "-"]

    @property
    def added_lines(self) -> list[str]:
        return [text for tag, text in self.lines if tag == "+"]

    @property
    def context_lines(self) -> list[str]:
        return [text for tag, text in self.lines if tag == " "]

    @property
    def leading_context(self) -> list[str]:
        """Context lines preceding the first change."""
        leading: list[str] = []
        for tag, text in self.lines:
            if tag != " ":
                break
            leading.append(text)
        return leading

    @property
    def expected_index(self) -> int:
        """Zero-based line index the hunk was written against."""
        if not self.position_known:
            return 0
        if not self.target_lines:
            return self.old_start
        return max(self.old_start - 1, 0)


@dataclass(slots=True)
class FilePatch:
    """Hunks targeting a single file."""

    old_path: str | None
    new_path: str | None
    hunks: list[Hunk] = field(default_factory=list)

    @property
    def label(self) -> str:
        return self.new_path or self.old_path or "<unknown>"


def _normalise_line_endings(text: str) -> str:
    """Convert CRLF/CR sequences to LF."""
    return text.replace("\r\n", "\n").replace("\r", "\n")


def _split_content(text: str) -> tuple[list[str], bool]:
    """Split file content into lines and report whether it ends with a newline."""
    if not text:
        return [], True
    trailing = text.endswith("\n")
    body = text[:-1] if trailing else text
    return body.split("\n"), trailing


def _join_content(lines: Sequence[str], trailing: bool) -> str:
    if not lines:
        return ""
    return "\n".join(lines) + ("\n" if trailing else "")


def _strip_path_prefix(entry: str) -> str | None:
    entry = entry.strip().split("\t", 1)[0]
    if entry == "/dev/null" or not entry:
        return None
    if entry.startswith(("a/", "b/")):
        entry = entry[2:]
    return entry or None


def _build_diff_header(operation: str, path: str) -> list[str]:
    """Render unified diff headers for apply_patch add/update/delete blocks."""
    clean_path = path.strip()
    if not clean_path:
        raise PatchError("Patch block missing target path.")
    if operation == "update":
        return [f"--- a/{clean_path}", f"+++ b/{clean_path}"]
    if operation == "add":
        return ["--- /dev/null", f"+++ b/{clean_path}"]
    if operation == "delete":
        return [f"--- a/{clean_path}", "+++ /dev/null"]
    raise PatchError(f"Unknown patch operation: {operation}")


def _convert_apply_patch_format(patch: str) -> str:
    """Translate ``*** Begin Patch`` blocks into unified diff lines."""
    if _APPLY_PATCH_HEADER.search(patch) is None:
        return patch

    converted: list[str] = []
    awaiting_hunk = False
    for line in patch.splitlines():
        for prefix, operation in (
            ("*** Update File: ", "update"),
            ("*** Add File: ", "add"),
            ("*** Delete File: ", "delete"),
        ):
            if line.startswith(prefix):
                converted.extend(_build_diff_header(operation, line[len(prefix) :]))
                awaiting_hunk = True
                break
        else:
            # Body lines only count once a file header has been emitted.
            if not converted or line.startswith("*** "):
                continue
            if awaiting_hunk and not line.startswith("@@"):
                converted.append("@@")
            awaiting_hunk = False
            converted.append(line)

    converted_text = "\n".join(converted)
    if converted_text and not converted_text.endswith("\n"):
        converted_text += "\n"
    return converted_text or patch


def _trim_dangling_hunks(patch: str) -> str:
    """Drop hunk headers that are not followed by any body lines."""
    lines = patch.split("\n")
    keep = [True] * len(lines)
    for idx, line in enumerate(lines):
        if not line.startswith("@@"):
            continue
        has_body = False
        for follower in lines[idx + 1 :]:
            if follower.startswith(("@@", "diff --git ", "--- ", "+++ ")):
                break
            if follower.strip() or follower.startswith(" "):
                has_body = True
                break
        if not has_body:
            keep[idx] = False
    return "\n".join(line for flag, line in zip(keep, lines) if flag)


def _ensure_headers(patch: str, path_label: str) -> str:
    stripped = patch.lstrip("\n")
    if stripped.startswith(("---", "diff --git")):
        return stripped
    return f"--- a/{path_label}\n+++ b/{path_label}\n{stripped}"


def _prepare_diff(diff_text: str, path_label: str) -> str:
    text = _convert_apply_patch_format(diff_text)
    text = _ensure_headers(text, path_label)
    return _trim_dangling_hunks(text)


def sanitize_patch_artifacts(diff: str) -> str:
    """Undo common damage done to diffs that were embedded in JSON strings.

    Drops orphan quote/bracket/comma lines, unquotes quoted diff lines,
    turns blank lines into blank context lines and re-prefixes content lines
    that lost their marker as context.  Returns ``diff`` unchanged when
    nothing needed fixing.
    """
    source = diff.split("\n")
    if source and source[-1] == "":
        source = source[:-1]
    cleaned: list[str] = []
    for line in source:
        stripped = line.strip()
        if stripped and all(char in _ARTIFACT_CHARS for char in stripped):
            continue
        if not line:
            cleaned.append(" ")
            continue
        if line.startswith(_HEADER_PREFIXES) or line.startswith("@@"):
            cleaned.append(line)
            continue
        if stripped[:1] in "\"'" and len(stripped) >= 2:
            quote = stripped[0]
            inner = stripped[1:]
            inner = inner[:-1] if inner.endswith(",") else inner
            if inner.endswith(quote):
                inner = inner[:-1]
                if inner[:1] in _CONTENT_PREFIXES and inner[:1]:
                    cleaned.append(inner.replace(f"\\{quote}", quote))
                    continue
        if line[:1] in _CONTENT_PREFIXES:
            cleaned.append(line)
            continue
        cleaned.append(f" {line}")

    result = "\n".join(cleaned)
    if diff.endswith("\n"):
        result += "\n"
    return diff if result == diff else result


def parse_unified_diff(text: str) -> list[FilePatch]:
    """Parse ``text`` into file patches, recounting hunk sizes from their bodies."""
    lines = text.split("\n")
    while lines and not lines[-1].strip():
        lines.pop()

    patches: list[FilePatch] = []
    current: FilePatch | None = None
    hunk: Hunk | None = None
    adjustments: list[str] = []
    header_counts: tuple[int, int] | None = None

    def close_hunk() -> None:
        nonlocal hunk
        if hunk is None or current is None:
            hunk = None
            return
        if not hunk.lines:
            hunk = None
            return
        removed = len(hunk.target_lines)
        added = len(hunk.replacement_lines)
        if header_counts is not None and header_counts != (removed, added):
            adjustments.append(
                f"{current.label}: adjusted hunk counts "
                f"(-{header_counts[0]}/+{header_counts[1]} -> -{removed}/+{added})"
            )
        hunk.old_count = removed
        hunk.new_count = added
        current.hunks.append(hunk)
        hunk = None

    index = 0
    while index < len(lines):
        line = lines[index]
        following = lines[index + 1] if index + 1 < len(lines) else ""

        if line.startswith("diff --git ") or (line.startswith("--- ") and following.startswith("+++ ")):
            close_hunk()
            if line.startswith("diff --git "):
                index += 1
                continue
            current = FilePatch(
                old_path=_strip_path_prefix(line[4:]),
                new_path=_strip_path_prefix(following[4:]),
            )
            patches.append(current)
            index += 2
            continue

        if line.startswith("@@"):
            close_hunk()
            if current is None:
                current = FilePatch(old_path=None, new_path=None)
                patches.append(current)
            match = _HUNK_HEADER.match(line)
            if match is not None:
                old_count = int(match.group("old_count")) if match.group("old_count") is not None else 1
                new_count = int(match.group("new_count")) if match.group("new_count") is not None else 1
                header_counts = (old_count, new_count)
                hunk = Hunk(
                    old_start=int(match.group("old_start")),
                    old_count=old_count,
                    new_start=int(match.group("new_start")),
                    new_count=new_count,
                )
            elif _BARE_HUNK_HEADER.match(line):
                header_counts = None
                hunk = Hunk(old_start=1, old_count=0, new_start=1, new_count=0, position_known=False)
            else:
                raise PatchError(f"Malformed hunk header: {line}")
            index += 1
            continue

        if hunk is None:
            index += 1
            continue

        if line.startswith("\\"):
            if hunk.lines:
                last_tag = hunk.lines[-1][0]
                if last_tag in (" ", "-"):
                    hunk.no_newline_old = True
                if last_tag in (" ", "+"):
                    hunk.no_newline_new = True
            index += 1
            continue

        tag = line[:1]
        if tag in (" ", "+", "-"):
            hunk.lines.append((tag, line[1:]))
        elif line == "":
            hunk.lines.append((" ", ""))
        else:
            raise PatchError(
                f"Unexpected line in hunk body: {line[:80]!r}",
                details={"line": index + 1},
            )
        index += 1

    close_hunk()
    for message in adjustments:
        LOGGER.debug(message)
    return [patch for patch in patches if patch.hunks]


def _select_file_patches(patches: list[FilePatch], path_label: str) -> list[FilePatch]:
    """Prefer the file sections that name ``path_label``."""
    if len(patches) <= 1:
        return patches
    wanted = path_label.strip().lstrip("./")
    matching = [
        patch
        for patch in patches
        if any(
            candidate and (candidate == wanted or candidate.endswith(f"/{wanted}") or wanted.endswith(f"/{candidate}"))
            for candidate in (patch.new_path, patch.old_path)
        )
    ]
    return matching or patches


def _strip_carriage_returns(patches: list[FilePatch]) -> list[FilePatch]:
    stripped: list[FilePatch] = []
    for patch in patches:
        hunks = [
            replace(hunk, lines=[(tag, text.rstrip("\r")) for tag, text in hunk.lines])
            for hunk in patch.hunks
        ]
        stripped.append(FilePatch(old_path=patch.old_path, new_path=patch.new_path, hunks=hunks))
    return stripped


def _radius_order(center: int, low: int, high: int) -> Iterator[int]:
    """Yield positions in ``[low, high]`` ordered by distance from ``center``."""
    if high < low:
        return
    center = min(max(center, low), high)
    yield center
    distance = 1
    while center + distance <= high or center - distance >= low:
        if center + distance <= high:
            yield center + distance
        if center - distance >= low:
            yield center - distance
        distance += 1


def _mismatch_count(lines: Sequence[str], start: int, target: Sequence[str]) -> int:
    return sum(1 for offset, expected in enumerate(target) if lines[start + offset] != expected)


def _locate_hunk(lines: Sequence[str], hunk: Hunk, expected: int, fuzz: int, floor: int) -> int | None:
    """Find where ``hunk`` applies, honouring the fuzz factor.

    Fuzz 0 demands an exact match at ``expected``.  Higher factors search the
    whole file nearest-first, preferring exact matches, then tolerating up to
    ``fuzz`` differing lines as long as most lines still agree.
    """
    target = hunk.target_lines
    size = len(target)
    total = len(lines)
    if size == 0:
        if fuzz == 0 and hunk.position_known and not floor <= expected <= total:
            return None
        return min(max(expected, floor), total)

    last = total - size
    if last < floor:
        return None
    if fuzz == 0 and hunk.position_known:
        if floor <= expected <= last and _mismatch_count(lines, expected, target) == 0:
            return expected
        return None

    for position in _radius_order(expected, floor, last):
        if _mismatch_count(lines, position, target) == 0:
            return position
    if fuzz == 0:
        return None
    for position in _radius_order(expected, floor, last):
        mismatches = _mismatch_count(lines, position, target)
        if mismatches <= fuzz and size - mismatches > mismatches:
            return position
    return None


def _merge_window(window: Sequence[str], hunk: Hunk) -> list[str]:
    """Apply ``hunk`` to a matched window, keeping the file's own context text."""
    merged: list[str] = []
    cursor = 0
    for tag, text in hunk.lines:
        if tag == " ":
            merged.append(window[cursor] if cursor < len(window) else text)
            cursor += 1
        elif tag == "-":
            cursor += 1
        else:
            merged.append(text)
    return merged


def _trailing_after(hunk: Hunk, trailing: bool) -> bool:
    if hunk.no_newline_new:
        return False
    if hunk.no_newline_old:
        return True
    return trailing


def _apply_whole(content: str, patches: list[FilePatch], fuzz: int) -> str | None:
    """Place every hunk against the untouched content, then splice them all."""
    lines, trailing = _split_content(content)
    for patch in patches:
        placements: list[tuple[int, Hunk]] = []
        drift = 0
        floor = 0
        for hunk in patch.hunks:
            position = _locate_hunk(lines, hunk, hunk.expected_index + drift, fuzz, floor)
            if position is None:
                return None
            placements.append((position, hunk))
            drift = position - hunk.expected_index
            floor = position + len(hunk.target_lines)
        total = len(lines)
        for position, hunk in reversed(placements):
            size = len(hunk.target_lines)
            if position + size >= total:
                trailing = _trailing_after(hunk, trailing)
            lines[position : position + size] = _merge_window(lines[position : position + size], hunk)
    return _join_content(lines, trailing)


def _apply_sequential(content: str, patches: list[FilePatch], fuzz: int) -> str | None:
    """Apply hunks one at a time so later hunks see earlier edits."""
    lines, trailing = _split_content(content)
    for patch in patches:
        delta = 0
        drift = 0
        for hunk in patch.hunks:
            expected = hunk.expected_index + delta + drift
            position = _locate_hunk(lines, hunk, expected, fuzz, 0)
            if position is None:
                return None
            drift = position - (hunk.expected_index + delta)
            size = len(hunk.target_lines)
            if position + size >= len(lines):
                trailing = _trailing_after(hunk, trailing)
            lines[position : position + size] = _merge_window(lines[position : position + size], hunk)
            delta += len(hunk.replacement_lines) - size
    return _join_content(lines, trailing)


def _window_matches_trimmed(lines: Sequence[str], start: int, target: Sequence[str]) -> bool:
    return all(lines[start + offset].strip() == expected.strip() for offset, expected in enumerate(target))


def _window_contains_subsequence(window: Sequence[str], wanted: Sequence[str]) -> bool:
    remaining = iter(line.strip() for line in window)
    return all(any(candidate == expected for candidate in remaining) for expected in wanted)


def _find_best_window(lines: Sequence[str], hunk: Hunk, expected: int) -> tuple[int, str] | None:
    """Locate a hunk's target block using progressively looser heuristics."""
    target = hunk.target_lines
    size = len(target)
    total = len(lines)
    if size == 0:
        return min(max(expected, 0), total), "insert"
    last = total - size

    if last >= 0:
        for position in _radius_order(expected, 0, last):
            if _mismatch_count(lines, position, target) == 0:
                return position, "exact"
        for position in _radius_order(expected, 0, last):
            if _window_matches_trimmed(lines, position, target):
                return position, "trimmed"

    removed = [line.strip() for line in hunk.removed_lines if line.strip()]
    if removed:
        prefix = 0
        for tag, text in hunk.lines:
            if tag == "-":
                break
            if tag == " ":
                prefix += 1
        first = removed[0]
        for position in _radius_order(expected + prefix, 0, total - 1):
            if lines[position].strip() != first:
                continue
            window = lines[position : position + size]
            if _window_contains_subsequence(window, removed):
                return max(position - prefix, 0), "partial-removed"

    leading = [line for line in hunk.leading_context[:3] if line.strip()]
    if leading:
        span = len(leading)
        for position in _radius_order(expected, 0, total - span):
            if _window_matches_trimmed(lines, position, leading):
                return position, "partial-context"
    return None


def _apply_manual(
    content: str,
    patches: list[FilePatch],
    path_label: str,
    *,
    positional_fallback: bool,
) -> str:
    """Splice hunks directly into the line array as a last resort."""
    lines, trailing = _split_content(content)
    for file_index, patch in enumerate(patches, start=1):
        offset = 0
        for hunk_index, hunk in enumerate(patch.hunks, start=1):
            expected = min(max(hunk.expected_index + offset, 0), len(lines))
            found = _find_best_window(lines, hunk, expected)
            if found is None:
                if not positional_fallback:
                    raise DiffApplyError(
                        f"Could not locate hunk {file_index}.{hunk_index} of {path_label} by content.",
                        details={"path": path_label, "hunk": f"{file_index}.{hunk_index}"},
                    )
                LOGGER.warning(
                    "Placing hunk %d.%d of %s at line %d by position only; content was not verified.",
                    file_index,
                    hunk_index,
                    path_label,
                    expected + 1,
                )
                position, strategy = expected, "positional"
            else:
                position, strategy = found
            target = hunk.target_lines
            size = min(len(target), len(lines) - position)
            if position + size >= len(lines):
                trailing = _trailing_after(hunk, trailing)
            lines[position : position + size] = hunk.replacement_lines
            offset += len(hunk.replacement_lines) - len(target)
            emit_event(
                "patch_manual_splice",
                path=path_label,
                hunk=f"{file_index}.{hunk_index}",
                strategy=strategy,
                line=position + 1,
            )
    return _join_content(lines, trailing)


def format_patch_instructions(patches: Sequence[FilePatch], path_label: str | None = None) -> str:
    """Describe each hunk as plain steps someone can apply by hand."""
    sections: list[str] = []
    for file_index, patch in enumerate(patches, start=1):
        lines = [f"File: {path_label or patch.label}"]
        for hunk_index, hunk in enumerate(patch.hunks, start=1):
            location = f"near original line {hunk.old_start}" if hunk.position_known else "at an unspecified location"
            lines.append(f"• Hunk {file_index}.{hunk_index} {location}")
            context = [line for line in hunk.context_lines if line.strip()][:2]
            if context:
                lines.append("  Context:")
                lines.extend(f"    {line}" for line in context)
            if hunk.removed_lines:
                lines.append("  Remove:")
                lines.extend(f"    - {line}" for line in hunk.removed_lines)
            if hunk.added_lines:
                lines.append("  Add:")
                lines.extend(f"    + {line}" for line in hunk.added_lines)
            if hunk.added_lines and not hunk.removed_lines:
                lines.append("  (Insert the added lines after the context above.)")
            elif hunk.removed_lines and not hunk.added_lines:
                lines.append("  (Delete the removed lines; nothing replaces them.)")
        sections.append("\n".join(lines))
    return "\n\n".join(sections)


def apply_unified_diff(
    original: str,
    diff_text: str,
    path_label: str,
    *,
    positional_fallback: bool = False,
) -> str:
    """Apply ``diff_text`` to ``original`` and return the new content.

    Each diff variant (as written, then sanitized) is tried against the
    content with its line endings preserved and LF-normalised: whole-diff
    placement at every fuzz factor, then hunk-by-hunk placement at every fuzz
    factor.  Manual splicing runs last.  Raises :class:`DiffApplyError` with
    manual instructions when nothing applies.
    """
    if not diff_text or not diff_text.strip():
        raise DiffApplyError(f"Empty patch supplied for {path_label}.", details={"path": path_label})

    prepared = _prepare_diff(diff_text, path_label)
    variants: list[tuple[str, str]] = [("original", prepared)]
    sanitized = sanitize_patch_artifacts(prepared)
    if sanitized != prepared:
        variants.append(("sanitized", sanitized))

    uses_crlf = "\r\n" in original
    normalised = _normalise_line_endings(original)

    parsed: list[tuple[str, list[FilePatch]]] = []
    last_error: Exception | None = None
    for variant, text in variants:
        try:
            patches = _select_file_patches(parse_unified_diff(text), path_label)
        except PatchError as error:
            last_error = error
            LOGGER.debug("Skipping %s diff variant for %s: %s", variant, path_label, error)
            continue
        if not patches:
            last_error = PatchError(f"No hunks found in {variant} diff.")
            continue
        parsed.append((variant, patches))

    for variant, patches in parsed:
        sources: list[tuple[str, str, list[FilePatch]]] = [("preserved", original, patches)]
        lf_patches = _strip_carriage_returns(patches)
        if normalised != original or lf_patches != patches:
            sources.append(("lf", normalised, lf_patches))
        for source, content, source_patches in sources:
            for strategy, applier in (("whole", _apply_whole), ("sequential", _apply_sequential)):
                for fuzz in FUZZ_LADDER:
                    result = applier(content, source_patches, fuzz)
                    if result is None:
                        continue
                    if source == "lf" and uses_crlf:
                        result = result.replace("\n", "\r\n")
                    emit_event(
                        "patch_apply_succeeded",
                        path=path_label,
                        variant=variant,
                        source=source,
                        strategy=strategy,
                        fuzz=fuzz,
                    )
                    return result

    for variant, patches in parsed:
        try:
            result = _apply_manual(
                normalised,
                _strip_carriage_returns(patches),
                path_label,
                positional_fallback=positional_fallback,
            )
        except DiffApplyError as error:
            last_error = error
            continue
        if uses_crlf:
            result = result.replace("\n", "\r\n")
        emit_event("patch_apply_succeeded", path=path_label, variant=variant, strategy="manual")
        return result

    if parsed:
        instructions = format_patch_instructions(parsed[-1][1], path_label)
    else:
        instructions = f"Sanitized patch:\n{sanitized}"
    reason = f" Last error: {last_error}." if last_error else ""
    emit_event("patch_apply_failed", path=path_label, reason=str(last_error) if last_error else None)
    raise DiffApplyError(
        f"Failed to apply patch to {path_label} after all strategies.{reason}\n"
        f"Apply the change manually:\n{instructions}",
        instructions=instructions,
        details={"path": path_label, "variants": [variant for variant, _ in variants]},
    )
