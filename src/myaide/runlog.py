"""Persist and reload JSON run logs recording every applied mutation."""

from __future__ import annotations

import hashlib
import json
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Mapping

from .tools.workspace import Mutation

__all__ = ["RUN_LOG_DIR", "RunLog", "load_run_log", "run_slug", "utc_timestamp", "write_run_log"]

RUN_LOG_DIR = Path(".myaide") / "runs"

_SLUG_PATTERN = re.compile(r"[^a-z0-9_.-]+")
_HYPHEN_COLLAPSE = re.compile(r"-{2,}")


def run_slug(request: str, *, max_length: int = 40) -> str:
    """Filesystem-friendly slug for ``request``; long requests keep a short hash suffix."""
    slug = _HYPHEN_COLLAPSE.sub("-", _SLUG_PATTERN.sub("-", request.strip().lower())).strip("-")
    if not slug:
        return "run"
    if len(slug) <= max_length:
        return slug
    digest = hashlib.sha256(slug.encode("utf-8")).hexdigest()[:8]
    return f"{slug[: max_length - len(digest) - 1].rstrip('-')}-{digest}"


@dataclass(slots=True)
class RunLog:
    """Serializable record of one orchestrated run."""

    request: str
    started_at: str
    finished_at: str = ""
    dry_run: bool = False
    iterations: int = 0
    plan: list[str] = field(default_factory=list)
    results: list[dict[str, Any]] = field(default_factory=list)
    mutations: list[Mutation] = field(default_factory=list)
    rolled_back: bool = False
    usage: dict[str, int] = field(default_factory=dict)
    path: Path | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "request": self.request,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            "dry_run": self.dry_run,
            "iterations": self.iterations,
            "plan": list(self.plan),
            "results": list(self.results),
            "mutations": [mutation.to_dict() for mutation in self.mutations],
            "rolled_back": self.rolled_back,
            "usage": dict(self.usage),
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any], *, path: Path | None = None) -> "RunLog":
        return cls(
            request=str(payload.get("request") or ""),
            started_at=str(payload.get("started_at") or ""),
            finished_at=str(payload.get("finished_at") or ""),
            dry_run=bool(payload.get("dry_run")),
            iterations=int(payload.get("iterations") or 0),
            plan=[str(step) for step in payload.get("plan") or []],
            results=[dict(entry) for entry in payload.get("results") or [] if isinstance(entry, Mapping)],
            mutations=[
                Mutation.from_dict(entry) for entry in payload.get("mutations") or [] if isinstance(entry, Mapping)
            ],
            rolled_back=bool(payload.get("rolled_back")),
            usage={str(k): int(v) for k, v in (payload.get("usage") or {}).items()},
            path=path,
        )


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


def write_run_log(workspace: Path, log: RunLog) -> Path:
    """Write ``log`` under ``<workspace>/.myaide/runs`` and return its path."""
    directory = workspace / RUN_LOG_DIR
    directory.mkdir(parents=True, exist_ok=True)
    stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S%fZ")
    path = directory / f"{stamp}-{run_slug(log.request)}.json"
    with path.open("w", encoding="utf-8") as handle:
        json.dump(log.to_dict(), handle, indent=2, ensure_ascii=False)
        handle.write("\n")
    log.path = path
    return path


def load_run_log(path: Path | str) -> RunLog:
    """Load a run log written by :func:`write_run_log`."""
    log_path = Path(path).resolve()
    with log_path.open("r", encoding="utf-8") as handle:
        payload = json.load(handle)
    if not isinstance(payload, Mapping):
        raise ValueError(f"Run log {log_path} must contain a JSON object.")
    return RunLog.from_dict(payload, path=log_path)
