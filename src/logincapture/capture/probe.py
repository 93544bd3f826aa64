"""Probe — turns page state into ``LOGIN_STATUS`` messages.

The probe snapshots the page through a ``PageSource``, resolves a
username and user id, and posts the result to the bridge as JSON. The
browsing context gives no change notification, so the probe schedules
its own emissions:

* once when attached;
* whenever the polled URL changes;
* while on the landing page without a username, a bounded retry series
  (delay grows linearly per attempt);
* a heartbeat that stops once a username was sent or the retry series
  ran out;
* on demand via ``recheck()``.

No extraction failure ever escapes the probe.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable

from logincapture.capture.heuristics import resolve_username, user_id_from_cookies
from logincapture.capture.scheduler import Scheduler
from logincapture.capture.snapshot import PageSource, parse_snapshot
from logincapture.capture.urls import DEFAULT_LANDING_HOSTS, is_landing_url
from logincapture.models.session_signal import LOGIN_STATUS, SessionSignal
from logincapture.models.snapshot import PageSnapshot

logger = logging.getLogger(__name__)


class Probe:
    """Emission policy around a ``PageSource``.

    Args:
        source: Where page snapshots come from.
        emit: Receives each serialized ``LOGIN_STATUS`` message.
        scheduler: The run's scheduler.
        landing_hosts: Provider hosts for landing-target matching.
        poll_interval: Seconds between URL polls.
        retry_initial_delay: Seconds before the first username retry.
        retry_step: Retry ``n`` waits ``retry_step * n`` seconds.
        retry_max_attempts: Retries before giving up on the username.
        heartbeat_interval: Seconds between heartbeat emissions.
    """

    def __init__(
        self,
        source: PageSource,
        emit: Callable[[str], object],
        scheduler: Scheduler,
        *,
        landing_hosts: Iterable[str] = DEFAULT_LANDING_HOSTS,
        poll_interval: float = 1.0,
        retry_initial_delay: float = 1.0,
        retry_step: float = 0.5,
        retry_max_attempts: int = 10,
        heartbeat_interval: float = 2.0,
    ) -> None:
        self._source = source
        self._emit = emit
        self._scheduler = scheduler
        self._landing_hosts = tuple(landing_hosts)
        self._poll_interval = poll_interval
        self._retry_initial_delay = retry_initial_delay
        self._retry_step = retry_step
        self._retry_max_attempts = retry_max_attempts
        self._heartbeat_interval = heartbeat_interval

        self.username_sent = False
        self.retries_exhausted = False
        self.emitted = 0
        self._last_url = ""
        self._retrying = False
        self._started = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Emit the initial status and begin polling and heartbeats."""
        if self._started:
            return
        self._started = True
        self._last_url = self._safe_url()
        self._scheduler.schedule("probe-initial", 0, self.send_status)
        if self._on_landing(self._last_url):
            self._start_retries()
        self._scheduler.schedule("probe-poll", self._poll_interval, self._poll)
        self._scheduler.schedule("probe-heartbeat", self._heartbeat_interval, self._heartbeat)

    def stop(self) -> None:
        for name in ("probe-initial", "probe-poll", "probe-heartbeat", "probe-retry", "probe-recheck"):
            self._scheduler.cancel(name)
        self._started = False

    def recheck(self) -> None:
        """Host command: re-run extraction now and emit a fresh signal.

        Fire-and-forget; a re-check that is already queued absorbs this one.
        """
        if self._scheduler.has_pending("probe-recheck"):
            return
        self._scheduler.schedule("probe-recheck", 0, self.send_status)

    # ------------------------------------------------------------------
    # Emission
    # ------------------------------------------------------------------

    async def send_status(self, force_username: str | None = None) -> bool:
        """Snapshot the page and post one ``LOGIN_STATUS`` message.

        Returns True if a message was posted.
        """
        snapshot = await self._take_snapshot()
        if snapshot is None:
            return False
        try:
            username = force_username or resolve_username(snapshot)
            user_id = user_id_from_cookies(snapshot.cookies)
            message = SessionSignal(
                type=LOGIN_STATUS,
                url=snapshot.url or self._safe_url(),
                cookies=snapshot.cookies,
                username=username,
                user_id=user_id,
            ).to_wire()
            if username:
                self.username_sent = True
            self.emitted += 1
            self._emit(message)
        except Exception as exc:
            logger.debug("Probe emission failed: %s", exc)
            return False
        return True

    async def _take_snapshot(self) -> PageSnapshot | None:
        try:
            raw = await self._source.snapshot()
        except Exception as exc:
            logger.debug("Page snapshot failed: %s", exc)
            return None
        return parse_snapshot(raw)

    # ------------------------------------------------------------------
    # Scheduled work
    # ------------------------------------------------------------------

    async def _poll(self) -> None:
        self._scheduler.schedule("probe-poll", self._poll_interval, self._poll)
        current = self._safe_url()
        if not current or current == self._last_url:
            return
        self._last_url = current
        logger.debug("Navigation detected: %s", current)
        await self.send_status()
        if self._on_landing(current) and not self.username_sent:
            self._start_retries()

    async def _heartbeat(self) -> None:
        if self.username_sent or self.retries_exhausted:
            logger.debug("Heartbeat stopped (username_sent=%s)", self.username_sent)
            return
        self._scheduler.schedule("probe-heartbeat", self._heartbeat_interval, self._heartbeat)
        await self.send_status()

    def _start_retries(self) -> None:
        if self._retrying or self.username_sent or self.retries_exhausted:
            return
        self._retrying = True
        self._scheduler.schedule("probe-retry", self._retry_initial_delay, self._retry, 1)

    async def _retry(self, attempt: int) -> None:
        if self.username_sent:
            self._retrying = False
            return
        if attempt > self._retry_max_attempts:
            logger.info("Username not found after %d attempts", self._retry_max_attempts)
            self._retrying = False
            self.retries_exhausted = True
            return

        snapshot = await self._take_snapshot()
        username = None
        if snapshot is not None:
            username = resolve_username(snapshot)
        if username:
            self._retrying = False
            await self.send_status(force_username=username)
            return
        self._scheduler.schedule("probe-retry", self._retry_step * attempt, self._retry, attempt + 1)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _safe_url(self) -> str:
        try:
            return self._source.current_url() or ""
        except Exception:
            return ""

    def _on_landing(self, url: str) -> bool:
        return is_landing_url(url, self._landing_hosts)
