"""Probe-to-host message bridge.

Deserializes ``LOGIN_STATUS`` payloads defensively. Anything that does not
have the ``SessionSignal`` shape is dropped; valid signals go to the state
machine first and the completion guard second, synchronously and in
arrival order.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable
from typing import Any

from pydantic import ValidationError

from logincapture.models.session_signal import SessionSignal
from logincapture.monitoring.event_bus import EventBus, EventType

logger = logging.getLogger(__name__)

SignalHandler = Callable[[SessionSignal], Any]


def parse_signal(raw: str | bytes | dict[str, Any]) -> SessionSignal | None:
    """Decode one wire payload, returning ``None`` if it is malformed."""
    try:
        if isinstance(raw, (str, bytes, bytearray)):
            data = json.loads(raw)
        else:
            data = raw
        if not isinstance(data, dict):
            return None
        return SessionSignal.model_validate(data)
    except (ValueError, TypeError, ValidationError):
        return None


class Bridge:
    """Receives raw probe messages and fans valid signals out.

    Args:
        on_navigation: Called first with each valid signal (state machine).
        on_signal: Called second with each valid signal (completion guard).
        events: Optional event bus for received/dropped notifications.
    """

    def __init__(
        self,
        on_navigation: SignalHandler,
        on_signal: SignalHandler,
        events: EventBus | None = None,
    ) -> None:
        self._on_navigation = on_navigation
        self._on_signal = on_signal
        self._events = events
        self.received = 0
        self.dropped = 0

    def receive(self, raw: str | bytes | dict[str, Any]) -> SessionSignal | None:
        """Handle one message. Never raises; returns the signal if it was forwarded."""
        signal = parse_signal(raw)
        if signal is None:
            self.dropped += 1
            logger.debug("Dropped malformed probe message (%d so far)", self.dropped)
            self._emit(EventType.SIGNAL_DROPPED, {"dropped": self.dropped})
            return None

        self.received += 1
        self._emit(
            EventType.SIGNAL_RECEIVED,
            {"url": signal.url, "has_username": bool(signal.username), "has_user_id": bool(signal.user_id)},
        )
        for handler in (self._on_navigation, self._on_signal):
            try:
                handler(signal)
            except Exception:
                logger.exception("Signal handler %s failed", getattr(handler, "__qualname__", handler))
        return signal

    def _emit(self, event_type: EventType, data: dict[str, Any]) -> None:
        if self._events is not None:
            self._events.emit(event_type, data)
