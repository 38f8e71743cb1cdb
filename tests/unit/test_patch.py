from __future__ import annotations

import difflib

import pytest

from myaide.tools.patch import (
    DiffApplyError,
    _apply_whole,
    apply_unified_diff,
    parse_unified_diff,
    sanitize_patch_artifacts,
)


def _diff(before: str, after: str, path: str = "module.py") -> str:
    return "".join(
        difflib.unified_diff(
            before.splitlines(keepends=True),
            after.splitlines(keepends=True),
            fromfile=f"a/{path}",
            tofile=f"b/{path}",
        )
    )


def test_generated_diff_applies_exactly() -> None:
    before = "import os\n\n\ndef main():\n    return os.getcwd()\n"
    after = "import os\nimport sys\n\n\ndef main():\n    return sys.argv\n"

    patches = parse_unified_diff(_diff(before, after))

    assert _apply_whole(before, patches, 0) == after
    assert apply_unified_diff(before, _diff(before, after), "module.py") == after


def test_fuzz_relocates_shifted_hunk() -> None:
    original = "x\ny\na\nb\nc\nd\ne\n"
    patches = parse_unified_diff("@@ -2,3 +2,3 @@\n b\n-c\n+C\n d\n")

    assert _apply_whole(original, patches, 0) is None
    assert _apply_whole(original, patches, 2) == "x\ny\na\nb\nC\nd\ne\n"
    assert apply_unified_diff(original, "@@ -2,3 +2,3 @@\n b\n-c\n+C\n d\n", "letters.txt") == "x\ny\na\nb\nC\nd\ne\n"


def test_bare_hunk_header_is_placed_by_content() -> None:
    diff = "@@\n one\n-two\n+TWO\n three\n"

    assert apply_unified_diff("one\ntwo\nthree\n", diff, "numbers.txt") == "one\nTWO\nthree\n"


def test_crlf_content_keeps_its_line_endings() -> None:
    diff = "@@ -1,3 +1,3 @@\n a\n-b\n+B\n c\n"

    assert apply_unified_diff("a\r\nb\r\nc\r\n", diff, "crlf.txt") == "a\r\nB\r\nc\r\n"


def test_sanitize_repairs_json_damaged_lines() -> None:
    damaged = '@@ -1,2 +1,2 @@\n"-old",\n"+new"\n],\ncontext\n'

    assert sanitize_patch_artifacts(damaged) == "@@ -1,2 +1,2 @@\n-old\n+new\n context\n"
    clean = "@@ -1 +1 @@\n-old\n+new\n"
    assert sanitize_patch_artifacts(clean) is clean


def test_manual_splice_matches_whitespace_drift() -> None:
    original = "alpha  \nbeta\ngamma  \n"
    diff = "@@ -1,3 +1,3 @@\n alpha\n-beta\n+BETA\n gamma\n"

    assert apply_unified_diff(original, diff, "drift.txt") == "alpha\nBETA\ngamma\n"


def test_unlocatable_hunk_raises_with_manual_instructions() -> None:
    diff = "@@ -1,2 +1,2 @@\n zzz\n-qqq\n+rrr\n"

    with pytest.raises(DiffApplyError) as excinfo:
        apply_unified_diff("a\nb\n", diff, "lost.txt")

    error = excinfo.value
    assert "File: lost.txt" in error.instructions
    assert "- qqq" in error.instructions
    assert "+ rrr" in error.instructions
    assert "Apply the change manually" in str(error)


def test_positional_fallback_splices_at_declared_line() -> None:
    diff = "@@ -1,2 +1,2 @@\n zzz\n-qqq\n+rrr\n"

    assert apply_unified_diff("a\nb\n", diff, "lost.txt", positional_fallback=True) == "zzz\nrrr\n"


def test_empty_patch_is_rejected() -> None:
    with pytest.raises(DiffApplyError):
        apply_unified_diff("a\n", "  \n", "empty.txt")
