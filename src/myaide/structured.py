"""Typed payloads that describe the edits and artifacts emitted by agents."""

from __future__ import annotations

from dataclasses import dataclass, field
from functools import lru_cache
from typing import Any, Literal, Mapping, Optional, Union

from pydantic import ValidationError
from pydantic.type_adapter import TypeAdapter

__all__ = [
    "ANCHOR_MODES",
    "AnchorMode",
    "AnchorSpec",
    "DeletePathAction",
    "EditAction",
    "GeneratedTest",
    "ImplementationPayload",
    "ModifyFileAction",
    "PayloadError",
    "TestGenerationPayload",
    "WriteFileAction",
    "expand_patch_lists",
    "parse_implementation_payload",
    "parse_test_generation_payload",
]


AnchorMode = Literal["replace", "insert_after", "insert_before"]
ANCHOR_MODES: tuple[str, ...] = ("replace", "insert_after", "insert_before")

_ACTION_TYPE_ALIASES = {
    "write_file": "write_file",
    "write-file": "write_file",
    "write": "write_file",
    "create_file": "write_file",
    "modify_file": "modify_file",
    "modify-file": "modify_file",
    "modify": "modify_file",
    "edit_file": "modify_file",
    "delete_path": "delete_path",
    "delete-path": "delete_path",
    "delete": "delete_path",
    "delete_file": "delete_path",
}


class PayloadError(RuntimeError):
    """Raised when parsed JSON does not describe a usable payload."""

    def __init__(self, message: str, *, details: Mapping[str, Any] | None = None) -> None:
        super().__init__(message)
        self.details: dict[str, Any] = dict(details or {})


@dataclass(slots=True)
class AnchorSpec:
    """Literal or regex marker used to find an edit point."""

    exact: Optional[str] = None
    regex: Optional[str] = None
    description: Optional[str] = None

    @property
    def usable(self) -> bool:
        return bool(self.exact) or bool(self.regex)


@dataclass(slots=True)
class WriteFileAction:
    """Create or overwrite a file with complete contents."""

    path: str
    content: Optional[str] = None
    type: Literal["write_file"] = "write_file"


@dataclass(slots=True)
class ModifyFileAction:
    """Change an existing file through an anchor, a diff, or full contents."""

    path: str
    patch: Optional[str] = None
    anchor: Optional[AnchorSpec] = None
    mode: Optional[str] = None
    snippet: Optional[str] = None
    replacement: Optional[str] = None
    content: Optional[str] = None
    ensure: Optional[str] = None
    type: Literal["modify_file"] = "modify_file"

    @property
    def has_anchor_edit(self) -> bool:
        """True when an anchor plus text to splice are both present."""
        if self.anchor is None or not self.anchor.usable:
            return False
        return self.snippet is not None or self.replacement is not None


@dataclass(slots=True)
class DeletePathAction:
    """Remove a file or directory tree."""

    path: str
    type: Literal["delete_path"] = "delete_path"


EditAction = Union[WriteFileAction, ModifyFileAction, DeletePathAction]

_ACTION_CLASSES: dict[str, type[Any]] = {
    "write_file": WriteFileAction,
    "modify_file": ModifyFileAction,
    "delete_path": DeletePathAction,
}


@dataclass(slots=True)
class ImplementationPayload:
    """Edit actions plus free-text notes produced by one implementer run."""

    actions: list[EditAction] = field(default_factory=list)
    notes: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "actions": [_action_to_dict(action) for action in self.actions],
            "notes": self.notes,
        }


@dataclass(slots=True)
class GeneratedTest:
    """Single test file proposed by the test generator."""

    path: str
    content: str
    framework: Optional[str] = None
    coverage: list[str] = field(default_factory=list)


@dataclass(slots=True)
class TestGenerationPayload:
    """Structured response of the test generator agent."""

    __test__ = False

    tests: list[GeneratedTest] = field(default_factory=list)
    summary: str = ""


@lru_cache(maxsize=None)
def _adapter(model: type[Any]) -> TypeAdapter:
    return TypeAdapter(model)


def _action_to_dict(action: EditAction) -> dict[str, Any]:
    payload: dict[str, Any] = {"type": action.type, "path": action.path}
    if isinstance(action, WriteFileAction):
        payload["content"] = action.content
    elif isinstance(action, ModifyFileAction):
        for key in ("patch", "mode", "snippet", "replacement", "content", "ensure"):
            value = getattr(action, key)
            if value is not None:
                payload[key] = value
        if action.anchor is not None:
            payload["anchor"] = {
                key: value
                for key, value in (
                    ("exact", action.anchor.exact),
                    ("regex", action.anchor.regex),
                    ("description", action.anchor.description),
                )
                if value is not None
            }
    return payload


def expand_patch_lists(actions: list[Any]) -> list[Any]:
    """Split entries carrying ``patches: [...]`` into one entry per patch."""
    expanded: list[Any] = []
    for entry in actions:
        patches = entry.get("patches") if isinstance(entry, dict) else None
        if isinstance(patches, list) and patches:
            base = {key: value for key, value in entry.items() if key != "patches"}
            for patch in patches:
                expanded.append({**base, "patch": patch})
            continue
        expanded.append(entry)
    return expanded


def _normalise_action_entry(index: int, entry: Any) -> dict[str, Any]:
    if not isinstance(entry, dict):
        raise PayloadError(
            f"Action #{index + 1} must be an object, got {type(entry).__name__}.",
            details={"index": index},
        )
    data = dict(entry)
    raw_type = data.pop("type", None) or data.pop("kind", None)
    data.pop("kind", None)
    kind = _ACTION_TYPE_ALIASES.get(str(raw_type or "").strip().lower())
    if kind is None:
        raise PayloadError(
            f"Action #{index + 1} has unsupported type {raw_type!r}.",
            details={"index": index, "type": raw_type},
        )
    data["type"] = kind

    path = data.get("path")
    if not isinstance(path, str) or not path.strip():
        raise PayloadError(
            f"Action #{index + 1} ({kind}) is missing a non-empty path.",
            details={"index": index, "type": kind},
        )
    data["path"] = path.strip()

    if "ensure" not in data and "ensurePostcondition" in data:
        data["ensure"] = data.pop("ensurePostcondition")
    anchor = data.get("anchor")
    if isinstance(anchor, str):
        data["anchor"] = {"exact": anchor}
    elif anchor is not None and not isinstance(anchor, dict):
        data["anchor"] = None

    allowed = set(_ACTION_CLASSES[kind].__dataclass_fields__)
    return {key: value for key, value in data.items() if key in allowed}


def parse_implementation_payload(data: Any) -> ImplementationPayload:
    """Narrow a parsed JSON object into an :class:`ImplementationPayload`."""
    if not isinstance(data, dict):
        raise PayloadError(f"Expected a JSON object, got {type(data).__name__}.")
    raw_actions = data.get("actions")
    if not isinstance(raw_actions, list):
        raise PayloadError("Response is missing an 'actions' array.")

    actions: list[EditAction] = []
    for index, entry in enumerate(expand_patch_lists(raw_actions)):
        normalised = _normalise_action_entry(index, entry)
        model = _ACTION_CLASSES[normalised["type"]]
        try:
            actions.append(_adapter(model).validate_python(normalised))
        except ValidationError as error:
            raise PayloadError(
                f"Action #{index + 1} ({normalised['type']}) is malformed: {error}",
                details={"index": index},
            ) from error

    notes = data.get("notes")
    return ImplementationPayload(actions=actions, notes=notes if isinstance(notes, str) else "")


def parse_test_generation_payload(data: Any) -> TestGenerationPayload:
    """Validate the test generator's JSON response."""
    if not isinstance(data, dict):
        raise PayloadError(f"Expected a JSON object, got {type(data).__name__}.")
    entries = data.get("tests")
    if not isinstance(entries, list):
        raise PayloadError("Response is missing a 'tests' array.")
    cleaned = [
        entry
        for entry in entries
        if isinstance(entry, dict) and isinstance(entry.get("path"), str) and entry["path"].strip()
    ]
    try:
        tests = _adapter(list[GeneratedTest]).validate_python(cleaned)
    except ValidationError as error:
        raise PayloadError(f"Test payload is malformed: {error}") from error
    summary = data.get("summary")
    return TestGenerationPayload(tests=tests, summary=summary if isinstance(summary, str) else "")
