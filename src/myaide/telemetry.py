"""Structured telemetry events emitted by the mutation pipeline.

Every event carries a ``stage`` (the event name's first word, e.g. ``patch``
or ``rollback``) plus whatever fields are bound with :func:`telemetry_scope`,
so all events of one orchestrated run share its ``run_id`` and ``iteration``.
"""

from __future__ import annotations

import json
import logging
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterator, Mapping, Optional

__all__ = ["TELEMETRY_LOGGER", "bound_fields", "emit_event", "serialise_event_value", "telemetry_scope"]


TELEMETRY_LOGGER = logging.getLogger("myaide.telemetry")

_BOUND_FIELDS: ContextVar[Optional[Dict[str, Any]]] = ContextVar("myaide_telemetry_fields", default=None)


def bound_fields() -> Dict[str, Any]:
    """Return a copy of the fields bound in the current context."""
    return dict(_BOUND_FIELDS.get() or {})


@contextmanager
def telemetry_scope(**fields: Any) -> Iterator[None]:
    """Attach ``fields`` to every event emitted inside the block; nested scopes merge."""
    token = _BOUND_FIELDS.set({**bound_fields(), **fields})
    try:
        yield
    finally:
        _BOUND_FIELDS.reset(token)


def serialise_event_value(value: Any) -> Any:
    """Convert telemetry payload values into JSON-friendly representations."""
    if isinstance(value, (str, int, float, bool)) or value is None:
        return value
    if isinstance(value, Path):
        return value.as_posix()
    if isinstance(value, (list, tuple, set)):
        return [serialise_event_value(item) for item in value]
    if isinstance(value, Mapping):
        return {str(key): serialise_event_value(child) for key, child in value.items()}
    to_dict = getattr(value, "to_dict", None)
    if callable(to_dict):
        return serialise_event_value(to_dict())
    return str(value)


def emit_event(event: str, **fields: Any) -> None:
    """Log a compact JSON event on the telemetry logger."""
    if not TELEMETRY_LOGGER.isEnabledFor(logging.INFO):
        return
    payload: dict[str, Any] = {
        "event": event,
        "stage": event.partition("_")[0],
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
    for key, value in {**bound_fields(), **fields}.items():
        payload[key] = serialise_event_value(value)
    try:
        message = json.dumps(payload, separators=(",", ":"), ensure_ascii=True)
    except (TypeError, ValueError):
        fallback = {key: str(value) for key, value in payload.items()}
        message = json.dumps(fallback, separators=(",", ":"), ensure_ascii=True)
    TELEMETRY_LOGGER.info(message)
