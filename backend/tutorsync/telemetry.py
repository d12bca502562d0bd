"""Structured telemetry events for schedule reconciliation and routine logging."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from threading import RLock
from typing import Any, Callable, Dict, List

logger = logging.getLogger("tutorsync.telemetry")


@dataclass(frozen=True)
class TelemetryEvent:
    name: str
    payload: Dict[str, Any]
    emitted_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


Listener = Callable[[TelemetryEvent], None]

_listeners: List[Listener] = []
_lock = RLock()


def register_listener(listener: Listener) -> Callable[[], None]:
    """Register an in-process listener and return a callable that removes it."""
    with _lock:
        _listeners.append(listener)

    def _unregister() -> None:
        with _lock:
            if listener in _listeners:
                _listeners.remove(listener)

    return _unregister


def clear_listeners() -> None:
    with _lock:
        _listeners.clear()


def emit_event(name: str, **fields: Any) -> TelemetryEvent:
    """Fan a structured event out to listeners, then log it as one JSON line."""
    event = TelemetryEvent(name=name, payload=_sanitize(fields))

    with _lock:
        listeners = list(_listeners)

    for listener in listeners:
        try:
            listener(event)
        except Exception:  # noqa: BLE001
            logger.exception("Telemetry listener failed for %s", name)

    structured = {"event": name, **event.payload}
    logger.info("TELEMETRY %s", json.dumps(structured, default=str, sort_keys=True))
    return event


def _sanitize(fields: Dict[str, Any]) -> Dict[str, Any]:
    sanitized: Dict[str, Any] = {}
    for key, value in fields.items():
        if isinstance(value, (datetime, date)):
            sanitized[key] = value.isoformat()
        elif isinstance(value, (set, frozenset, tuple)):
            sanitized[key] = sorted(value) if isinstance(value, (set, frozenset)) else list(value)
        else:
            sanitized[key] = value
    return sanitized


__all__ = [
    "Listener",
    "TelemetryEvent",
    "clear_listeners",
    "emit_event",
    "register_listener",
]
