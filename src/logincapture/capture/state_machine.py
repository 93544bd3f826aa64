"""Login progress state machine.

Tracks where the user is in the provider's login flow purely from
navigation URLs. The state drives progress text only; it is never the
finalize condition.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable

from logincapture.capture.urls import (
    DEFAULT_LANDING_HOSTS,
    is_credential_entry,
    is_landing_url,
    is_verification_step,
)
from logincapture.models.states import PROGRESS_TEXT, TERMINAL_STATES, CaptureState

logger = logging.getLogger(__name__)

StateListener = Callable[[CaptureState, CaptureState], None]


class CaptureStateMachine:
    """Navigation-driven progress tracker.

    Args:
        landing_hosts: Hosts whose ``/home`` (or root) marks an authenticated session.
    """

    def __init__(self, landing_hosts: Iterable[str] = DEFAULT_LANDING_HOSTS) -> None:
        self._landing_hosts = tuple(landing_hosts)
        self._state = CaptureState.IDLE
        self._listeners: list[StateListener] = []
        self.current_url = ""

    @property
    def state(self) -> CaptureState:
        return self._state

    @property
    def progress_text(self) -> str:
        return PROGRESS_TEXT[self._state]

    def add_listener(self, listener: StateListener) -> None:
        """Register ``listener(old, new)`` for state changes."""
        self._listeners.append(listener)

    # ------------------------------------------------------------------
    # Inputs
    # ------------------------------------------------------------------

    def page_loading(self) -> None:
        """The browsing context started loading its first page."""
        if self._state == CaptureState.IDLE:
            self._transition(CaptureState.PAGE_LOADING)

    def page_loaded(self) -> None:
        """The first page finished loading; the login form is showing."""
        if self._state in (CaptureState.IDLE, CaptureState.PAGE_LOADING):
            self._transition(CaptureState.CREDENTIAL_ENTRY)

    def observe(self, url: str) -> CaptureState:
        """Apply a navigation target and return the (possibly unchanged) state."""
        self.current_url = url
        target = self._classify(url)
        if target is not None:
            self._transition(target)
        return self._state

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _classify(self, url: str) -> CaptureState | None:
        if is_credential_entry(url):
            return CaptureState.CREDENTIAL_ENTRY
        if is_verification_step(url):
            return CaptureState.VERIFYING
        if is_landing_url(url, self._landing_hosts):
            return CaptureState.AUTHENTICATED
        return None

    def _transition(self, new_state: CaptureState) -> None:
        old_state = self._state
        if new_state == old_state or old_state in TERMINAL_STATES:
            return
        self._state = new_state
        logger.info("Login progress: %s → %s", old_state.value, new_state.value)
        for listener in list(self._listeners):
            try:
                listener(old_state, new_state)
            except Exception as exc:
                logger.warning("State listener error (%s): %s", type(listener).__name__, exc)
