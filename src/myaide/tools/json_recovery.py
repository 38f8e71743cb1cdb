"""Best-effort recovery of JSON objects from noisy model output.

Models asked for strict JSON still wrap it in prose or fences, emit smart
quotes, forget commas, leave raw newlines inside strings or simply stop
mid-object when they run out of tokens.  :func:`recover_json` walks an
ordered cascade of extraction and repair strategies and returns the first
candidate that parses to a JSON object.
"""

from __future__ import annotations

import ast
import json
import logging
import re
from typing import Any, Iterator, Mapping

__all__ = [
    "JsonRecoveryError",
    "balance_json",
    "extract_best_effort_json",
    "extract_json_candidates",
    "normalize_json_text",
    "recover_json",
    "repair_json_syntax",
    "sanitize_json",
    "strip_code_fence",
    "truncate_for_error",
]

LOGGER = logging.getLogger(__name__)

_MISSING = object()

_FULL_FENCE = re.compile(r"^```[\w+-]*[ \t]*\n(?P<body>.*?)\n?```\s*$", re.DOTALL)
_TRANSLATION = str.maketrans(
    {
        0x201C: '"',
        0x201D: '"',
        0x201E: '"',
        0x2033: '"',
        0x2018: "'",
        0x2019: "'",
        0x201A: "'",
        0x2032: "'",
        0xFF07: "'",
        0x2014: "-",
        0x2013: "-",
        0x2212: "-",
        0x00A0: " ",
        0x202F: " ",
        0x200B: "",
        0x200C: "",
        0x200D: "",
        0x2060: "",
        0xFEFF: "",
        0x09: " ",
        **{code: "" for code in (*range(0x00, 0x09), 0x0B, 0x0C, *range(0x0E, 0x20), 0x7F)},
    }
)
_VALUE_ENDINGS = frozenset('"}]0123456789el')
_LITERAL_WORDS = {
    "true": "true",
    "false": "false",
    "null": "null",
    "True": "true",
    "False": "false",
    "None": "null",
    "undefined": "null",
}
_NUMBER = re.compile(r"-?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?")
_IDENTIFIER = re.compile(r"[A-Za-z_$][\w$-]*")
_VALID_ESCAPES = frozenset('"\\/bfnrtu')


class JsonRecoveryError(RuntimeError):
    """Raised when no strategy produced a parseable JSON object."""

    def __init__(self, message: str, *, raw_length: int, details: Mapping[str, Any] | None = None) -> None:
        super().__init__(message)
        self.raw_length = raw_length
        self.details: dict[str, Any] = dict(details or {})


def truncate_for_error(text: str, limit: int = 1200) -> str:
    """Clip ``text`` for inclusion in error messages."""
    if len(text) <= limit:
        return text
    return f"{text[:limit]}\n... (truncated {len(text) - limit} chars)"


def strip_code_fence(payload: str) -> str:
    """Remove a Markdown fence when it wraps the entire payload."""
    match = _FULL_FENCE.match(payload.strip())
    if match is None:
        return payload
    return match.group("body").strip()


def normalize_json_text(payload: str) -> str:
    """Replace typographic artifacts that models emit in place of ASCII."""
    if not payload:
        return payload
    return payload.replace("\r\n", "\n").replace("\r", "\n").translate(_TRANSLATION)


def _slice_object(payload: str) -> str:
    if payload.startswith("{"):
        return payload
    start = payload.find("{")
    if start == -1:
        return payload
    end = payload.rfind("}")
    if end < start:
        return payload[start:]
    return payload[start : end + 1]


def sanitize_json(raw: str) -> str:
    """Strip fences, slice to the outermost braces and normalise characters."""
    candidate = strip_code_fence(raw.strip())
    candidate = _slice_object(candidate.strip())
    return normalize_json_text(candidate).strip()


def _close_before_comma(output: list[str], end: int, stack: list[str], closer: str, *, repeat: bool) -> None:
    """Close ``closer`` containers before the comma that precedes ``output[end]``.

    A member that cannot belong to the innermost container means that
    container lost its closer; it belongs right before the separating comma.
    """
    index = end - 1
    while index >= 0 and output[index].isspace():
        index -= 1
    if index < 0 or output[index] != ",":
        return
    closers: list[str] = []
    while stack and stack[-1] == closer:
        closers.append(stack.pop())
        if not repeat:
            break
    output[index:index] = closers


def balance_json(payload: str) -> str:
    """Insert closers for every bracket left open, ignoring string contents."""
    output: list[str] = []
    stack: list[str] = []
    in_string = False
    escaped = False
    string_start = 0
    for index, char in enumerate(payload):
        if in_string:
            output.append(char)
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
                # An object key inside an array: the array was never closed.
                if stack and stack[-1] == "]" and _next_significant(payload, index + 1)[0] == ":":
                    _close_before_comma(output, string_start, stack, "]", repeat=True)
            continue
        if char == '"':
            in_string = True
            string_start = len(output)
        elif char in "{[":
            # A container cannot follow a comma inside an object, so the object is over.
            if stack and stack[-1] == "}":
                _close_before_comma(output, len(output), stack, "}", repeat=False)
            stack.append("}" if char == "{" else "]")
        elif char in "}]":
            if char not in stack:
                continue
            while stack and stack[-1] != char:
                output.append(stack.pop())
            stack.pop()
        output.append(char)

    if in_string:
        if escaped:
            output.pop()
        output.append('"')
    text = "".join(output).rstrip()
    if stack:
        text = re.sub(r"[,:]\s*$", "", text)
    return text + "".join(reversed(stack))


def _next_significant(payload: str, index: int) -> tuple[str, bool]:
    """Return the next non-whitespace char after ``index`` and whether a newline was crossed."""
    crossed_newline = False
    for char in payload[index:]:
        if char == "\n":
            crossed_newline = True
        if not char.isspace():
            return char, crossed_newline
    return "", crossed_newline


def _last_significant(output: list[str]) -> str:
    for chunk in reversed(output):
        stripped = chunk.rstrip()
        if stripped:
            return stripped[-1]
    return ""


def _drop_trailing_comma(output: list[str]) -> None:
    while output and not output[-1].strip():
        output.pop()
    if output and output[-1].rstrip().endswith(","):
        output[-1] = output[-1].rstrip()[:-1]


def _read_string(payload: str, index: int, quote: str) -> tuple[str, int]:
    """Consume a string literal starting at ``index`` and return JSON text."""
    parts = ['"']
    position = index + 1
    length = len(payload)
    while position < length:
        char = payload[position]
        if char == "\\":
            following = payload[position + 1 : position + 2]
            if quote == "'" and following == "'":
                parts.append("'")
            elif following in _VALID_ESCAPES and following:
                parts.append(char + following)
            else:
                parts.append("\\\\")
                position += 1
                continue
            position += 2
            continue
        if char == quote:
            upcoming, crossed = _next_significant(payload, position + 1)
            if upcoming in ("", ",", ":", "}", "]") or (upcoming in "\"'" and crossed):
                parts.append('"')
                return "".join(parts), position + 1
            parts.append("'" if quote == "'" else '\\"')
            position += 1
            continue
        if char == '"':
            parts.append('\\"')
        elif char == "\n":
            parts.append("\\n")
        elif char == "\r":
            parts.append("\\r")
        elif char == "\t":
            parts.append("\\t")
        elif ord(char) < 0x20:
            parts.append(f"\\u{ord(char):04x}")
        else:
            parts.append(char)
        position += 1
    parts.append('"')
    return "".join(parts), position


def repair_json_syntax(payload: str) -> str:
    """Fix common syntax slips: quotes, commas, literals and raw control characters."""
    output: list[str] = []
    index = 0
    length = len(payload)

    def needs_comma() -> bool:
        last = _last_significant(output)
        return bool(last) and last in _VALUE_ENDINGS

    while index < length:
        char = payload[index]
        if char in "\"'":
            if needs_comma():
                output.append(",")
            literal, index = _read_string(payload, index, char)
            output.append(literal)
            continue
        if char in "}]":
            _drop_trailing_comma(output)
            output.append(char)
            index += 1
            continue
        if char in "{[":
            if needs_comma():
                output.append(",")
            output.append(char)
            index += 1
            continue
        if char == ",":
            if _last_significant(output) in ("", ",", "{", "["):
                index += 1
                continue
            output.append(char)
            index += 1
            continue
        number = _NUMBER.match(payload, index) if (char.isdigit() or char in "-.") else None
        if number is not None:
            if needs_comma():
                output.append(",")
            output.append(number.group(0))
            index = number.end()
            continue
        identifier = _IDENTIFIER.match(payload, index)
        if identifier is not None:
            word = identifier.group(0)
            upcoming, _ = _next_significant(payload, identifier.end())
            if needs_comma():
                output.append(",")
            if upcoming == ":":
                output.append(json.dumps(word))
            elif word in _LITERAL_WORDS:
                output.append(_LITERAL_WORDS[word])
            else:
                output.append(json.dumps(word))
            index = identifier.end()
            continue
        output.append(char)
        index += 1

    return balance_json("".join(output))


def _scan_top_level_objects(raw: str) -> Iterator[str]:
    """Yield every top-level ``{...}`` span, including a trailing unclosed one."""
    depth = 0
    start: int | None = None
    in_string = False
    escaped = False
    for index, char in enumerate(raw):
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            if depth > 0:
                in_string = True
        elif char == "{":
            if depth == 0:
                start = index
            depth += 1
        elif char == "}" and depth > 0:
            depth -= 1
            if depth == 0 and start is not None:
                yield raw[start : index + 1]
                start = None
    if depth > 0 and start is not None:
        yield raw[start:]


def extract_json_candidates(raw: str, marker: str = "actions") -> list[str]:
    """Return top-level object spans mentioning ``marker``, longest first."""
    needle = f'"{marker}"'
    unique: list[str] = []
    for span in _scan_top_level_objects(raw):
        if needle in span and span not in unique:
            unique.append(span)
    return sorted(unique, key=len, reverse=True)


def extract_best_effort_json(raw: str) -> str | None:
    """Return the first top-level object span, if any."""
    return next(_scan_top_level_objects(raw), None)


def _coerce_python_literal(candidate: str) -> Any:
    try:
        literal = ast.literal_eval(candidate)
    except (SyntaxError, ValueError, TypeError, MemoryError, RecursionError):
        return _MISSING
    return _normalise_literal(literal)


def _normalise_literal(value: Any) -> Any:
    if isinstance(value, dict):
        return {str(key): _normalise_literal(sub) for key, sub in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [_normalise_literal(item) for item in value]
    if isinstance(value, (str, int, float, bool)) or value is None:
        return value
    return str(value)


def _try_parse(candidate: str) -> Any:
    if not candidate:
        return _MISSING
    try:
        parsed = json.loads(candidate)
    except (json.JSONDecodeError, RecursionError):
        parsed = _coerce_python_literal(candidate)
    if isinstance(parsed, dict):
        return parsed
    return _MISSING


def _cascade(text: str) -> Iterator[tuple[str, str]]:
    """Yield plain, balanced, and repaired variants of ``text``."""
    yield "plain", text
    balanced = balance_json(text)
    yield "balanced", balanced
    yield "repaired", repair_json_syntax(text)
    yield "balanced+repaired", repair_json_syntax(balanced)


def _sources(raw: str, marker: str) -> Iterator[tuple[str, str]]:
    stripped = raw.strip()
    yield "raw-sliced", _slice_object(strip_code_fence(stripped))
    yield "sanitized", sanitize_json(raw)
    yield "raw", stripped
    for index, span in enumerate(extract_json_candidates(raw, marker)):
        yield f"candidate-{index + 1}", span
        yield f"candidate-{index + 1}-normalised", normalize_json_text(span)
    best_effort = extract_best_effort_json(raw)
    if best_effort is not None:
        yield "best-effort", normalize_json_text(best_effort)


def recover_json(raw: str, *, marker: str = "actions") -> dict[str, Any]:
    """Return the first JSON object recoverable from ``raw``.

    Raises :class:`JsonRecoveryError` once every strategy is exhausted.
    """
    text = raw or ""
    if not text.strip():
        raise JsonRecoveryError("Model returned an empty response. Raw response length=0", raw_length=len(text))

    seen: set[str] = set()
    for source, candidate in _sources(text, marker):
        for variant, attempt in _cascade(candidate):
            if attempt in seen:
                continue
            seen.add(attempt)
            parsed = _try_parse(attempt)
            if parsed is not _MISSING:
                if source != "raw-sliced" or variant != "plain":
                    LOGGER.debug("Recovered JSON via %s/%s strategy", source, variant)
                return parsed

    raise JsonRecoveryError(
        f"Failed to parse JSON after exhausting recovery strategies. Raw response length={len(text)}",
        raw_length=len(text),
        details={"attempts": len(seen)},
    )
