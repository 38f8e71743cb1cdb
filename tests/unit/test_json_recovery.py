from __future__ import annotations

import json

import pytest

from myaide.tools.json_recovery import (
    JsonRecoveryError,
    balance_json,
    extract_json_candidates,
    normalize_json_text,
    recover_json,
    repair_json_syntax,
    strip_code_fence,
    truncate_for_error,
)


def test_recover_json_returns_well_formed_payload_unchanged() -> None:
    payload = {
        "actions": [
            {"type": "write_file", "path": "a.txt", "content": "line one\nline \"two\"\n"},
            {"type": "delete_path", "path": "old/"},
        ],
        "notes": "tabs\tand unicode ✓ survive",
    }

    assert recover_json(json.dumps(payload)) == payload
    assert recover_json(json.dumps(payload, indent=2)) == payload


def test_balancer_closes_truncated_payload() -> None:
    raw = '{"actions":[{"type":"write_file","path":"a.txt","content":"x"}'

    assert balance_json(raw) == raw + "]}"
    assert recover_json(raw) == {"actions": [{"type": "write_file", "path": "a.txt", "content": "x"}]}


def test_balancer_recovers_payload_missing_one_closer() -> None:
    original = {"actions": [{"type": "modify_file", "path": "b.py", "anchor": {"exact": "def b():"}}], "notes": ""}
    text = json.dumps(original)
    position = text.index("}}") + 1
    damaged = text[:position] + text[position + 1 :]

    assert recover_json(damaged) == original


TWO_ACTION_PAYLOAD = {
    "actions": [
        {"type": "write_file", "path": "a.py", "content": "x"},
        {"type": "modify_file", "path": "b.py", "anchor": {"exact": "def b():"}},
    ],
    "notes": "n",
}
TWO_ACTION_TEXT = json.dumps(TWO_ACTION_PAYLOAD)


@pytest.mark.parametrize(
    "position",
    [index for index, char in enumerate(TWO_ACTION_TEXT) if char in "}]"],
)
def test_balancer_recovers_payload_missing_any_single_closer(position: int) -> None:
    damaged = TWO_ACTION_TEXT[:position] + TWO_ACTION_TEXT[position + 1 :]

    assert recover_json(damaged) == TWO_ACTION_PAYLOAD


def test_balancer_closes_array_before_following_key() -> None:
    raw = '{"actions": [{"type": "delete_path", "path": "a"}, "notes": "n"}'

    assert balance_json(raw) == '{"actions": [{"type": "delete_path", "path": "a"}], "notes": "n"}'


def test_balancer_closes_object_before_sibling_object() -> None:
    raw = '{"actions": [{"path": "a", {"path": "b"}]}'

    assert balance_json(raw) == '{"actions": [{"path": "a"}, {"path": "b"}]}'


def test_balancer_ignores_brackets_inside_strings() -> None:
    raw = '{"content": "if (x) { return [1, 2"'

    assert json.loads(balance_json(raw)) == {"content": "if (x) { return [1, 2"}


def test_strip_code_fence_only_removes_wrapping_fence() -> None:
    fenced = '```json\n{"actions": []}\n```'

    assert strip_code_fence(fenced) == '{"actions": []}'
    assert strip_code_fence('text ```code``` more') == 'text ```code``` more'


def test_recover_json_handles_prose_and_fences() -> None:
    raw = 'Here is the plan:\n```json\n{"actions": [{"type": "delete_path", "path": "tmp.txt"}]}\n```\nDone!'

    assert recover_json(raw) == {"actions": [{"type": "delete_path", "path": "tmp.txt"}]}


def test_recover_json_repairs_common_syntax_slips() -> None:
    raw = (
        "{actions: [{'type': 'write_file', 'path': 'a.py', 'content': 'print(1)\n',},],"
        " 'notes': None, 'done': True}"
    )

    parsed = recover_json(raw)

    assert parsed["actions"] == [{"type": "write_file", "path": "a.py", "content": "print(1)\n"}]
    assert parsed["notes"] is None
    assert parsed["done"] is True


def test_repair_inserts_missing_commas_and_escapes_newlines() -> None:
    raw = '{"a": "first\nsecond"\n "b": 2\n "c": [1 2]}'

    assert json.loads(repair_json_syntax(raw)) == {"a": "first\nsecond", "b": 2, "c": [1, 2]}


def test_repair_keeps_inner_quotes_in_strings() -> None:
    raw = '{"content": "say "hi" to them"}'

    assert json.loads(repair_json_syntax(raw)) == {"content": 'say "hi" to them'}


def test_normalize_json_text_replaces_smart_quotes() -> None:
    assert normalize_json_text("\u201ckey\u201d: \u2018v\u2019\u200b") == "\"key\": 'v'"


def test_extract_json_candidates_prefers_marker_objects_longest_first() -> None:
    raw = 'noise {"other": 1} then {"actions": []} and {"actions": [{"path": "x"}]}'

    candidates = extract_json_candidates(raw)

    assert candidates == ['{"actions": [{"path": "x"}]}', '{"actions": []}']


def test_recover_json_raises_with_raw_length() -> None:
    with pytest.raises(JsonRecoveryError) as excinfo:
        recover_json("definitely not json")

    assert "Raw response length=19" in str(excinfo.value)
    assert excinfo.value.raw_length == 19


def test_recover_json_rejects_empty_response() -> None:
    with pytest.raises(JsonRecoveryError):
        recover_json("   ")


def test_truncate_for_error_marks_clipped_text() -> None:
    assert truncate_for_error("short") == "short"
    clipped = truncate_for_error("x" * 1300)
    assert clipped.startswith("x" * 1200)
    assert "truncated 100 chars" in clipped


def test_normalize_json_text_maps_tab_to_single_space() -> None:
    assert normalize_json_text("\tkey\t") == " key "
    assert normalize_json_text('{"a":\t1}') == '{"a": 1}'
