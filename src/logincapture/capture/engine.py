"""Capture engine — one login capture run, start to finish.

Owns the per-run state (latch, scheduler, accumulator via the guard) and
wires ``Probe -> Bridge -> {CaptureStateMachine, CompletionGuard}``.
Nothing is module-global; two engines never share state.

Usage::

    engine = CaptureEngine(on_complete=save_session)
    engine.start()
    engine.attach(PlaywrightPageSource(page))
    token = await engine.wait(timeout=300)
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Any
from uuid import uuid4

from logincapture.capture.bridge import Bridge
from logincapture.capture.guard import CompletionCallback, CompletionGuard
from logincapture.capture.probe import Probe
from logincapture.capture.scheduler import CompletionLatch, Scheduler
from logincapture.capture.snapshot import PageSource
from logincapture.capture.state_machine import CaptureStateMachine
from logincapture.exceptions import CaptureClosedError, CaptureTimeoutError, LoginCaptureError
from logincapture.models.capture import CompletionToken
from logincapture.models.session_signal import SessionSignal
from logincapture.models.states import CaptureState
from logincapture.monitoring.event_bus import EventBus, EventType
from logincapture.settings.config import CaptureSettings

logger = logging.getLogger(__name__)


def _noop_complete(session_marker: str, csrf_token: str, username: str | None = None) -> None:
    return None


class CaptureEngine:
    """Drives a single capture run on the current event loop.

    Args:
        on_complete: Host callback ``(session_marker, csrf_token, username)``.
        settings: Capture timing knobs. Defaults to ``get_settings().capture``.
        events: Optional event bus; a private one is created if omitted.
    """

    def __init__(
        self,
        on_complete: CompletionCallback | None = None,
        *,
        settings: CaptureSettings | None = None,
        events: EventBus | None = None,
    ) -> None:
        if settings is None:
            from logincapture.settings import get_settings

            settings = get_settings().capture

        self.settings = settings
        self.run_id = uuid4().hex[:12]
        self.events = events or EventBus(run_id=self.run_id)
        self._on_complete = on_complete or _noop_complete

        self.latch: CompletionLatch | None = None
        self.scheduler: Scheduler | None = None
        self.state_machine: CaptureStateMachine | None = None
        self.guard: CompletionGuard | None = None
        self.bridge: Bridge | None = None
        self.probe: Probe | None = None
        self._result: asyncio.Future[CompletionToken] | None = None
        self.closed = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Create the per-run state. Call from inside the event loop."""
        if self.latch is not None:
            raise LoginCaptureError("Capture engine already started")

        s = self.settings
        self.latch = CompletionLatch()
        self.scheduler = Scheduler(self.latch)
        self.state_machine = CaptureStateMachine(s.landing_hosts)
        self.state_machine.add_listener(self._on_state_changed)
        self.guard = CompletionGuard(
            latch=self.latch,
            scheduler=self.scheduler,
            on_complete=self._on_complete,
            request_recheck=self.request_recheck,
            landing_hosts=s.landing_hosts,
            cookie_retry_delay=s.cookie_retry_delay,
            cookie_retry_limit=s.cookie_retry_limit,
            username_wait_timeout=s.username_wait_timeout,
            completion_delay=s.completion_delay,
            on_delivered=self._on_delivered,
            events=self.events,
        )
        self.bridge = Bridge(self._on_navigation_signal, self.guard.handle, events=self.events)
        self._result = asyncio.get_running_loop().create_future()
        self.events.emit(EventType.CAPTURE_STARTED, {"url": s.login_url})
        logger.debug("Capture run %s started", self.run_id)

    def attach(self, source: PageSource) -> Probe:
        """Bind a browsing context and start probing it."""
        self._require_started()
        if self.probe is not None:
            self.probe.stop()
        self.probe = Probe(
            source,
            self.receive,
            self.scheduler,
            landing_hosts=self.settings.landing_hosts,
            poll_interval=self.settings.poll_interval,
            retry_initial_delay=self.settings.retry_initial_delay,
            retry_step=self.settings.retry_step,
            retry_max_attempts=self.settings.retry_max_attempts,
            heartbeat_interval=self.settings.heartbeat_interval,
        )
        self.probe.start()
        return self.probe

    def close(self) -> None:
        """Tear down the run: cancel every timer and abandon the result."""
        if self.scheduler is None or self.closed:
            return
        self.closed = True
        if self.probe is not None:
            self.probe.stop()
        self.scheduler.close()
        if self._result is not None and not self._result.done():
            self._result.cancel()
        self.events.emit(EventType.CAPTURE_CLOSED, {"completed": self.completed})
        logger.debug("Capture run %s closed", self.run_id)

    async def wait(self, timeout: float | None = None) -> CompletionToken:
        """Wait for the host callback to have run and return the token.

        Raises:
            CaptureTimeoutError: If *timeout* elapses first.
            CaptureClosedError: If the run is closed before it completes.
        """
        self._require_started()
        try:
            return await asyncio.wait_for(asyncio.shield(self._result), timeout)
        except asyncio.TimeoutError:
            raise CaptureTimeoutError(timeout or 0) from None
        except asyncio.CancelledError:
            # close() cancels the result; otherwise the caller itself is being cancelled.
            if self._result.cancelled():
                raise CaptureClosedError() from None
            raise

    # ------------------------------------------------------------------
    # Inputs
    # ------------------------------------------------------------------

    def receive(self, raw: str | bytes | dict[str, Any]) -> SessionSignal | None:
        """Feed one raw probe message into the bridge."""
        self._require_started()
        return self.bridge.receive(raw)

    def request_recheck(self) -> None:
        """Ask the attached probe for a fresh signal (no-op when detached)."""
        if self.probe is not None:
            self.probe.recheck()

    def page_loading(self) -> None:
        self._require_started()
        self.state_machine.page_loading()

    def page_loaded(self) -> None:
        self._require_started()
        self.state_machine.page_loaded()

    def observe_navigation(self, url: str) -> None:
        """Navigation event from the browsing context."""
        self._require_started()
        self.state_machine.observe(url)

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def state(self) -> CaptureState:
        return self.state_machine.state if self.state_machine else CaptureState.IDLE

    @property
    def progress_text(self) -> str:
        return self.state_machine.progress_text if self.state_machine else "Log in to X"

    @property
    def completed(self) -> bool:
        return bool(self.latch and self.latch.is_set)

    @property
    def token(self) -> CompletionToken | None:
        return self.guard.token if self.guard else None

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _on_navigation_signal(self, signal: SessionSignal) -> None:
        self.state_machine.observe(signal.url)

    def _on_state_changed(self, old: CaptureState, new: CaptureState) -> None:
        self.events.emit(
            EventType.STATE_CHANGED,
            {"old_state": old.value, "new_state": new.value, "progress": self.state_machine.progress_text},
        )

    def _on_delivered(self, token: CompletionToken) -> None:
        if self._result is not None and not self._result.done():
            self._result.set_result(token)
        if self.probe is not None:
            self.probe.stop()
        self.scheduler.close()

    def _require_started(self) -> None:
        if self.latch is None:
            raise LoginCaptureError("Capture engine not started; call start() first")


def build_engine(
    on_complete: Callable[[str, str, str | None], None] | None = None,
    events: EventBus | None = None,
) -> CaptureEngine:
    """Create an engine configured from the global settings."""
    from logincapture.settings import get_settings

    return CaptureEngine(on_complete, settings=get_settings().capture, events=events)
