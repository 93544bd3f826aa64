"""Completion guard — decides when a login is done and finalizes it once.

Rules applied to every signal, in order:

1. Merge ``username`` / ``user_id`` into the accumulator (first-write-wins).
2. If the signal's URL is the authenticated landing target:

   a. look for the ``ct0`` CSRF cookie;
   b. missing: ask the probe for a fresh signal after a short delay
      (bounded by ``cookie_retry_limit``) and stop here;
   c. present with a username already known: finalize now;
   d. present without a username: open a single wait window. A username
      arriving before it closes finalizes early; otherwise the window
      finalizes without one.

Finalization is gated by the ``CompletionLatch`` and therefore happens at
most once however many qualifying signals arrive.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable

from logincapture.capture.heuristics import csrf_from_cookies
from logincapture.capture.scheduler import CompletionLatch, ScheduledTask, Scheduler
from logincapture.capture.urls import DEFAULT_LANDING_HOSTS, is_landing_url
from logincapture.models.capture import SESSION_MARKER, CompletionToken, IdentityAccumulator
from logincapture.models.session_signal import SessionSignal
from logincapture.monitoring.event_bus import EventBus, EventType

logger = logging.getLogger(__name__)

# on_complete(session_marker, csrf_token, username)
CompletionCallback = Callable[[str, str, str | None], None]


class CompletionGuard:
    """Accumulates identity across signals and fires the host callback once.

    Args:
        latch: The run's completion latch.
        scheduler: The run's scheduler (all timers go through it).
        on_complete: Host callback ``(session_marker, csrf_token, username)``.
        request_recheck: Asks the probe for a fresh signal.
        landing_hosts: Provider hosts for landing-target matching.
        cookie_retry_delay: Seconds before re-requesting a signal when ``ct0`` is missing.
        cookie_retry_limit: Maximum number of such re-requests per run.
        username_wait_timeout: Seconds to wait for a username once ``ct0`` is known.
        completion_delay: Cosmetic delay before the host callback runs.
        on_delivered: Optional hook called with the token after the host callback.
        events: Optional event bus.
    """

    def __init__(
        self,
        *,
        latch: CompletionLatch,
        scheduler: Scheduler,
        on_complete: CompletionCallback,
        request_recheck: Callable[[], None],
        landing_hosts: Iterable[str] = DEFAULT_LANDING_HOSTS,
        cookie_retry_delay: float = 1.0,
        cookie_retry_limit: int = 1,
        username_wait_timeout: float = 6.0,
        completion_delay: float = 1.0,
        on_delivered: Callable[[CompletionToken], None] | None = None,
        events: EventBus | None = None,
    ) -> None:
        self._latch = latch
        self._scheduler = scheduler
        self._on_complete = on_complete
        self._request_recheck = request_recheck
        self._landing_hosts = tuple(landing_hosts)
        self._cookie_retry_delay = cookie_retry_delay
        self._cookie_retry_limit = cookie_retry_limit
        self._username_wait_timeout = username_wait_timeout
        self._completion_delay = completion_delay
        self._on_delivered = on_delivered
        self._events = events

        self.accumulator = IdentityAccumulator()
        self.token: CompletionToken | None = None
        self.delivered = False
        self._csrf_token: str | None = None
        self._cookie_retries = 0
        self._wait_task: ScheduledTask | None = None

    @property
    def completed(self) -> bool:
        return self._latch.is_set

    @property
    def waiting_for_username(self) -> bool:
        return self._wait_task is not None and self._wait_task.active

    # ------------------------------------------------------------------
    # Signal handling
    # ------------------------------------------------------------------

    def handle(self, signal: SessionSignal) -> None:
        """Apply one signal."""
        if self._latch.is_set:
            return

        if self.accumulator.merge(signal.username, signal.user_id):
            self._emit(
                EventType.IDENTITY_UPDATED,
                {"username": self.accumulator.username, "user_id": self.accumulator.user_id},
            )

        if self.waiting_for_username and self.accumulator.username and self._csrf_token:
            logger.info("Username @%s arrived inside the wait window", self.accumulator.username)
            self.finalize(self._csrf_token)
            return

        if not is_landing_url(signal.url, self._landing_hosts):
            return

        csrf_token = csrf_from_cookies(signal.cookies)
        if not csrf_token:
            self._schedule_cookie_recheck()
            return
        self._csrf_token = csrf_token

        if self.accumulator.username:
            self.finalize(csrf_token)
        else:
            self._open_wait_window()

    def _schedule_cookie_recheck(self) -> None:
        self._emit(EventType.COOKIE_MISSING, {"retries": self._cookie_retries})
        if self._scheduler.has_pending("cookie-recheck"):
            return
        if self._cookie_retries >= self._cookie_retry_limit:
            logger.debug("ct0 still missing; waiting for a later signal")
            return
        self._cookie_retries += 1
        logger.debug("ct0 missing on landing page; re-checking in %.1fs", self._cookie_retry_delay)
        self._scheduler.schedule("cookie-recheck", self._cookie_retry_delay, self._request_recheck)

    def _open_wait_window(self) -> None:
        if self.waiting_for_username:
            return
        logger.info("Session cookie found; waiting up to %.1fs for the username", self._username_wait_timeout)
        self._emit(EventType.WAIT_WINDOW_OPENED, {"timeout": self._username_wait_timeout})
        self._wait_task = self._scheduler.schedule(
            "username-wait", self._username_wait_timeout, self._on_wait_expired
        )

    def _on_wait_expired(self) -> None:
        if self._csrf_token is None:
            return
        if not self.accumulator.username:
            logger.warning("Username not resolved before the wait window closed; completing without it")
        self.finalize(self._csrf_token)

    # ------------------------------------------------------------------
    # Finalization
    # ------------------------------------------------------------------

    def finalize(self, csrf_token: str, *, username: str | None = None) -> bool:
        """Complete the capture once.

        Args:
            csrf_token: The ``ct0`` value to hand to the host.
            username: Explicit override; replaces the accumulated username.

        Returns:
            True if this call completed the capture, False if it was already done.
        """
        if not self._latch.set():
            logger.debug("Finalize ignored: capture already completed")
            return False

        self._scheduler.cancel_all()
        if username:
            self.accumulator.force_username(username)

        self.token = CompletionToken(
            session_marker=SESSION_MARKER,
            csrf_token=csrf_token,
            username=self.accumulator.username,
            user_id=self.accumulator.user_id,
        )
        logger.info(
            "Login captured (username=%s, user_id=%s)",
            self.token.username or "?",
            self.token.user_id or "?",
        )
        self._scheduler.schedule("deliver", self._completion_delay, self._deliver, guarded=False)
        return True

    def _deliver(self) -> None:
        token = self.token
        if token is None or self.delivered:
            return
        self.delivered = True
        try:
            self._on_complete(token.session_marker, token.csrf_token, token.username)
        except Exception:
            logger.exception("Host completion callback failed")
        self._emit(EventType.CAPTURE_COMPLETED, token.to_dict() | {"csrf_token": "***"})
        if self._on_delivered is not None:
            self._on_delivered(token)

    def _emit(self, event_type: EventType, data: dict) -> None:
        if self._events is not None:
            self._events.emit(event_type, data)
