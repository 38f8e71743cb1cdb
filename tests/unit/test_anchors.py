from __future__ import annotations

import pytest

from myaide.structured import AnchorSpec, ModifyFileAction
from myaide.tools.anchors import (
    AnchorEditError,
    AnchorNotFoundError,
    PostconditionError,
    apply_anchor_edit,
    locate_anchor,
    resolve_mode,
)


def _action(**kwargs: object) -> ModifyFileAction:
    return ModifyFileAction(path="file.txt", **kwargs)  # type: ignore[arg-type]


def test_insert_after_exact_anchor() -> None:
    action = _action(anchor=AnchorSpec(exact="foo"), mode="insert_after", snippet="bar")

    assert apply_anchor_edit("foo", action) == "foobar"


def test_replace_mode_splices_located_span() -> None:
    before = "alpha\nbeta\ngamma\n"
    action = _action(anchor=AnchorSpec(exact="beta"), mode="replace", replacement="BETA")
    found = locate_anchor(before, AnchorSpec(exact="beta"))

    assert found is not None and found.strategy == "exact"
    assert apply_anchor_edit(before, action) == before[: found.start] + "BETA" + before[found.end :]


def test_insert_before_defaults_snippet_to_replacement() -> None:
    action = _action(anchor=AnchorSpec(exact="return x"), mode="insert-before", replacement="x += 1\n    ")

    assert apply_anchor_edit("def f(x):\n    return x\n", action) == "def f(x):\n    x += 1\n    return x\n"


def test_locate_prefers_regex_then_falls_back_to_exact() -> None:
    content = "def one():\n    pass\n\ndef two():\n    pass\n"

    by_regex = locate_anchor(content, AnchorSpec(regex=r"^def two\(\):$", exact="def one():"))
    assert by_regex is not None and content[by_regex.start : by_regex.end] == "def two():"

    invalid_regex = locate_anchor(content, AnchorSpec(regex="def (", exact="def one():"))
    assert invalid_regex is not None and invalid_regex.strategy == "exact"


def test_locate_uses_trimmed_and_loose_matching() -> None:
    content = "if ready:\n    launch(  rocket )\n"

    trimmed = locate_anchor(content, AnchorSpec(exact="  if ready:  "))
    assert trimmed is not None and trimmed.strategy == "trimmed"

    loose = locate_anchor(content, AnchorSpec(exact="LAUNCH( rocket )"))
    assert loose is not None and loose.strategy == "loose"
    assert content[loose.start : loose.end] == "launch(  rocket )"


def test_crlf_content_round_trips_line_endings() -> None:
    action = _action(anchor=AnchorSpec(exact="one\n"), mode="insert_after", snippet="two\n")

    assert apply_anchor_edit("one\r\nthree\r\n", action) == "one\r\ntwo\r\nthree\r\n"


def test_missing_anchor_raises_not_found() -> None:
    action = _action(anchor=AnchorSpec(exact="absent"), mode="replace", replacement="x")

    with pytest.raises(AnchorNotFoundError):
        apply_anchor_edit("present", action)


def test_failed_postcondition_raises() -> None:
    action = _action(anchor=AnchorSpec(exact="a"), mode="replace", replacement="b", ensure="c")

    with pytest.raises(PostconditionError):
        apply_anchor_edit("a", action)


def test_resolve_mode_defaults_and_rejects_unknown() -> None:
    assert resolve_mode(_action(replacement="x")) == "replace"
    assert resolve_mode(_action(snippet="x")) == "insert_after"
    with pytest.raises(AnchorEditError):
        resolve_mode(_action(mode="append", snippet="x"))
