"""Event bus — decouples the capture engine from consumers (CLI, logs, tests).

* Type-safe event types via ``EventType`` enum.
* Multiple sink pattern: a single bus emits to all registered
  ``EventSink`` implementations (JSONL stream, logger, in-memory list).
* Emission is synchronous so events keep the engine's processing order;
  a failing sink is logged and skipped.
* Snapshot caching so a late consumer can read the latest state.
"""

from __future__ import annotations

import json
import logging
import time
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Protocol, runtime_checkable

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Event types
# ---------------------------------------------------------------------------


class EventType(str, Enum):
    """All event types emitted during a capture run."""

    # Lifecycle
    CAPTURE_STARTED = "capture_started"
    CAPTURE_COMPLETED = "capture_completed"
    CAPTURE_CLOSED = "capture_closed"

    # State machine
    STATE_CHANGED = "state_changed"

    # Signals
    SIGNAL_RECEIVED = "signal_received"
    SIGNAL_DROPPED = "signal_dropped"
    IDENTITY_UPDATED = "identity_updated"
    COOKIE_MISSING = "cookie_missing"
    WAIT_WINDOW_OPENED = "wait_window_opened"

    # Progress / info
    LOG = "log"
    ERROR = "error"


# ---------------------------------------------------------------------------
# Event payload model
# ---------------------------------------------------------------------------


class Event(BaseModel):
    """Structured event emitted by the event bus."""

    event_type: EventType
    timestamp: str = Field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    run_id: str = ""
    data: dict[str, Any] = Field(default_factory=dict)

    def to_jsonl(self) -> str:
        """Serialize to a single JSON line (no trailing newline)."""
        return self.model_dump_json()


# ---------------------------------------------------------------------------
# Sink protocol
# ---------------------------------------------------------------------------


@runtime_checkable
class EventSink(Protocol):
    """Protocol for event consumers."""

    def handle_event(self, event: Event) -> None:
        """Process a single event."""
        ...


# ---------------------------------------------------------------------------
# Built-in sinks
# ---------------------------------------------------------------------------


class LoggingSink:
    """Emit events to the Python logger at DEBUG level."""

    def __init__(self, logger_name: str = "logincapture.events") -> None:
        self._logger = logging.getLogger(logger_name)

    def handle_event(self, event: Event) -> None:
        """Log the event."""
        self._logger.debug(
            "[%s] %s: %s",
            event.run_id or "?",
            event.event_type.value,
            json.dumps(event.data, default=str)[:200],
        )


class InMemorySink:
    """Collect events in a list — useful for testing."""

    def __init__(self) -> None:
        self.events: list[Event] = []

    def handle_event(self, event: Event) -> None:
        self.events.append(event)

    def of_type(self, event_type: EventType) -> list[Event]:
        """Return collected events of one type, in order."""
        return [e for e in self.events if e.event_type == event_type]

    def clear(self) -> None:
        self.events.clear()

    @property
    def count(self) -> int:
        return len(self.events)


class JsonlSink:
    """Write events as JSONL lines to a file-like object.

    Works with ``sys.stdout``, ``sys.stderr``, or an open file handle.
    """

    def __init__(self, stream: Any) -> None:
        self._stream = stream

    def handle_event(self, event: Event) -> None:
        """Write one JSON line to the stream."""
        self._stream.write(event.to_jsonl() + "\n")
        if hasattr(self._stream, "flush"):
            self._stream.flush()


# ---------------------------------------------------------------------------
# Event bus
# ---------------------------------------------------------------------------


class EventBus:
    """Central event dispatcher for engine-to-consumer communication.

    Args:
        run_id: Optional default run ID attached to all events.
    """

    def __init__(self, run_id: str = "") -> None:
        self._run_id = run_id
        self._sinks: list[EventSink] = []

        self._latest_state: str = ""
        self._latest_url: str = ""
        self._signals_seen: int = 0
        self._started_at: float = time.monotonic()

    def add_sink(self, sink: EventSink) -> None:
        """Register an event sink."""
        self._sinks.append(sink)

    def remove_sink(self, sink: EventSink) -> None:
        """Remove a previously registered sink."""
        self._sinks = [s for s in self._sinks if s is not sink]

    @property
    def sink_count(self) -> int:
        return len(self._sinks)

    def emit(self, event_type: EventType | str, data: dict[str, Any] | None = None) -> None:
        """Emit an event to all registered sinks.

        Args:
            event_type: The event type (``EventType`` enum or raw string).
            data: Optional payload data.
        """
        if isinstance(event_type, str):
            try:
                event_type = EventType(event_type)
            except ValueError:
                event_type = EventType.LOG

        payload = data or {}
        self._update_snapshot(event_type, payload)

        event = Event(event_type=event_type, run_id=self._run_id, data=payload)
        for sink in self._sinks:
            try:
                sink.handle_event(event)
            except Exception as exc:
                logger.warning("EventBus sink error (%s): %s", type(sink).__name__, exc)

    def _update_snapshot(self, event_type: EventType, data: dict[str, Any]) -> None:
        if event_type == EventType.STATE_CHANGED:
            self._latest_state = data.get("new_state", "")
        elif event_type == EventType.SIGNAL_RECEIVED:
            self._latest_url = data.get("url", "")
            self._signals_seen += 1
        elif event_type == EventType.CAPTURE_STARTED:
            self._latest_url = data.get("url", "")
            self._latest_state = "IDLE"
            self._signals_seen = 0
            self._started_at = time.monotonic()

    def get_snapshot(self) -> dict[str, Any]:
        """Return the latest known state for late consumers."""
        return {
            "state": self._latest_state,
            "url": self._latest_url,
            "signals_seen": self._signals_seen,
            "uptime_sec": round(time.monotonic() - self._started_at, 1),
        }
