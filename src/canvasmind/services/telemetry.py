"""In-process telemetry for AI calls and tool executions."""

from __future__ import annotations

import logging
import time
from collections import deque
from dataclasses import dataclass
from threading import Lock
from typing import Any, Callable, Mapping, Protocol

LOGGER = logging.getLogger(__name__)

_EVENT_LISTENERS: dict[str, list[Callable[[dict[str, Any]], None]]] = {}

CALL_STARTED = "ai.call.start"
CALL_COMPLETED = "ai.call.end"
CALL_FAILED = "ai.call.failed"
CALL_CANCELLED = "ai.call.cancelled"
CALL_VALIDATED = "ai.call.validation"
TOOL_STARTED = "ai.tool.start"
TOOL_COMPLETED = "ai.tool.end"

CALL_EVENTS: tuple[str, ...] = (
    CALL_STARTED,
    CALL_COMPLETED,
    CALL_FAILED,
    CALL_CANCELLED,
    CALL_VALIDATED,
    TOOL_STARTED,
    TOOL_COMPLETED,
)


@dataclass(slots=True)
class CallMetricsEvent:
    """One call or tool lifecycle event."""

    event: str
    provider: str
    model: str
    timestamp: float
    tool_name: str | None = None
    input_tokens: int = 0
    output_tokens: int = 0
    completion_time: float = 0.0
    success: bool | None = None
    detail: str | None = None


class TelemetrySink(Protocol):
    """Sink interface used to collect telemetry events."""

    def record(self, event: CallMetricsEvent) -> None:  # pragma: no cover - protocol stub
        ...


class InMemoryTelemetrySink:
    """Simple ring-buffer telemetry sink for local inspection and tests."""

    def __init__(self, capacity: int = 200) -> None:
        self._capacity = max(10, capacity)
        self._buffer: deque[CallMetricsEvent] = deque(maxlen=self._capacity)
        self._lock = Lock()

    @property
    def capacity(self) -> int:
        return self._capacity

    def record(self, event: CallMetricsEvent) -> None:
        with self._lock:
            self._buffer.append(event)

    def tail(self, limit: int | None = None) -> list[CallMetricsEvent]:
        with self._lock:
            events = list(self._buffer)
        if limit is None or limit >= len(events):
            return events
        return events[-limit:]

    def __len__(self) -> int:
        with self._lock:
            return len(self._buffer)


def register_event_listener(event_name: str, callback: Callable[[dict[str, Any]], None]) -> None:
    """Register a callback invoked whenever :func:`emit` fires *event_name*."""

    if not event_name or callback is None:
        return
    listeners = _EVENT_LISTENERS.setdefault(event_name, [])
    if callback not in listeners:
        listeners.append(callback)


def unregister_event_listener(event_name: str, callback: Callable[[dict[str, Any]], None]) -> None:
    listeners = _EVENT_LISTENERS.get(event_name)
    if listeners and callback in listeners:
        listeners.remove(callback)


def emit(event_name: str, payload: Mapping[str, Any] | None = None) -> None:
    """Broadcast a structured telemetry event to in-process listeners."""

    if not event_name:
        return
    event_payload = {"event": event_name}
    if payload:
        event_payload.update(payload)
    listeners = list(_EVENT_LISTENERS.get(event_name, ()))
    for callback in listeners:
        try:
            callback(dict(event_payload))
        except Exception:  # pragma: no cover - listeners must not break emitters
            LOGGER.debug("Telemetry listener %s failed", callback, exc_info=True)
    LOGGER.debug("Telemetry emit %s: %s", event_name, event_payload)


def event_from_payload(payload: Mapping[str, Any]) -> CallMetricsEvent:
    return CallMetricsEvent(
        event=str(payload.get("event") or ""),
        provider=str(payload.get("provider") or ""),
        model=str(payload.get("model") or ""),
        timestamp=float(payload.get("timestamp") or time.time()),
        tool_name=payload.get("tool_name"),
        input_tokens=int(payload.get("input_tokens") or 0),
        output_tokens=int(payload.get("output_tokens") or 0),
        completion_time=float(payload.get("completion_time") or 0.0),
        success=payload.get("success"),
        detail=payload.get("detail"),
    )


def attach_sink(sink: TelemetrySink, events: tuple[str, ...] = CALL_EVENTS) -> Callable[[dict[str, Any]], None]:
    """Route the given call events into *sink*; returns the listener for detaching."""

    def _listener(payload: dict[str, Any]) -> None:
        sink.record(event_from_payload(payload))

    for name in events:
        register_event_listener(name, _listener)
    return _listener


def detach_sink(listener: Callable[[dict[str, Any]], None], events: tuple[str, ...] = CALL_EVENTS) -> None:
    for name in events:
        unregister_event_listener(name, listener)


__all__ = [
    "CALL_CANCELLED",
    "CALL_COMPLETED",
    "CALL_EVENTS",
    "CALL_FAILED",
    "CALL_STARTED",
    "CALL_VALIDATED",
    "TOOL_COMPLETED",
    "TOOL_STARTED",
    "CallMetricsEvent",
    "InMemoryTelemetrySink",
    "TelemetrySink",
    "attach_sink",
    "detach_sink",
    "emit",
    "event_from_payload",
    "register_event_listener",
    "unregister_event_listener",
]
