"""Unit tests for the completion guard (finalize-once semantics)."""

from __future__ import annotations

import asyncio

import pytest

from logincapture.capture.guard import CompletionGuard
from logincapture.capture.scheduler import CompletionLatch, Scheduler
from logincapture.models.capture import SESSION_MARKER
from logincapture.models.session_signal import SessionSignal
from logincapture.monitoring.event_bus import EventBus, EventType, InMemorySink

LOGIN = "https://x.com/i/flow/login"
HOME = "https://x.com/home"
NO_CT0 = "guest_id=v1%3A1; twid=u%3A123456789"


class _Harness:
    """A guard wired to a real scheduler with fast timings."""

    def __init__(self, **overrides) -> None:
        self.calls: list[tuple[str, str, str | None]] = []
        self.rechecks = 0
        self.delivered: list = []
        self.sink = InMemorySink()
        bus = EventBus(run_id="test")
        bus.add_sink(self.sink)
        self.latch = CompletionLatch()
        self.scheduler = Scheduler(self.latch)
        kwargs = dict(
            latch=self.latch,
            scheduler=self.scheduler,
            on_complete=self.on_complete,
            request_recheck=self.request_recheck,
            cookie_retry_delay=0.02,
            cookie_retry_limit=1,
            username_wait_timeout=0.1,
            completion_delay=0.01,
            on_delivered=self.delivered.append,
            events=bus,
        )
        kwargs.update(overrides)
        self.guard = CompletionGuard(**kwargs)

    def on_complete(self, session_marker: str, csrf_token: str, username: str | None = None) -> None:
        self.calls.append((session_marker, csrf_token, username))

    def request_recheck(self) -> None:
        self.rechecks += 1


@pytest.fixture()
def signal(make_status):
    def _make(**kwargs) -> SessionSignal:
        return SessionSignal.model_validate(make_status(**kwargs))

    return _make


# ===================================================================
# Immediate finalize
# ===================================================================


class TestImmediateFinalize:
    """Landing + ct0 + known username completes right away."""

    @pytest.mark.anyio
    async def test_complete_signal_finalizes(self, signal) -> None:
        h = _Harness()
        h.guard.handle(signal(url=HOME, username="alice", user_id="123456789"))

        assert h.guard.completed
        assert h.guard.token is not None
        assert h.guard.token.csrf_token == "abc123csrf"
        assert h.guard.token.user_id == "123456789"
        await asyncio.sleep(0.05)

        assert h.calls == [(SESSION_MARKER, "abc123csrf", "alice")]
        assert h.guard.delivered
        assert h.delivered == [h.guard.token]

    @pytest.mark.anyio
    async def test_callback_runs_after_completion_delay(self, signal) -> None:
        """The host callback is deferred by ``completion_delay``."""
        h = _Harness(completion_delay=0.05)
        h.guard.handle(signal(url=HOME, username="alice"))

        assert h.calls == []
        await asyncio.sleep(0.1)
        assert len(h.calls) == 1

    @pytest.mark.anyio
    async def test_replayed_signals_fire_once(self, signal) -> None:
        """Duplicate qualifying signals never produce a second callback."""
        h = _Harness()
        for _ in range(5):
            h.guard.handle(signal(url=HOME, username="alice"))
        await asyncio.sleep(0.05)

        assert len(h.calls) == 1

    @pytest.mark.anyio
    async def test_username_retained_across_null_signal(self, signal) -> None:
        """A username seen before landing survives a later null username."""
        h = _Harness()
        h.guard.handle(signal(url=LOGIN, username="alice"))
        assert not h.guard.completed

        h.guard.handle(signal(url=HOME, username=None))
        await asyncio.sleep(0.05)

        assert h.calls == [(SESSION_MARKER, "abc123csrf", "alice")]

    @pytest.mark.anyio
    async def test_first_username_wins(self, signal) -> None:
        h = _Harness()
        h.guard.handle(signal(url=LOGIN, username="alice"))
        h.guard.handle(signal(url=LOGIN, username="bob"))
        h.guard.handle(signal(url=HOME))
        await asyncio.sleep(0.05)

        assert h.calls[0][2] == "alice"

    @pytest.mark.anyio
    async def test_root_url_is_landing(self, signal) -> None:
        h = _Harness()
        h.guard.handle(signal(url="https://twitter.com/", username="alice"))
        assert h.guard.completed


# ===================================================================
# Username wait window
# ===================================================================


class TestWaitWindow:
    @pytest.mark.anyio
    async def test_expiry_finalizes_without_username(self, signal) -> None:
        """No username within the window: complete with ``None``."""
        h = _Harness()
        h.guard.handle(signal(url=HOME))

        assert h.guard.waiting_for_username
        assert not h.guard.completed
        await asyncio.sleep(0.2)

        assert h.calls == [(SESSION_MARKER, "abc123csrf", None)]

    @pytest.mark.anyio
    async def test_username_inside_window_finalizes_early(self, signal) -> None:
        h = _Harness(username_wait_timeout=0.5)
        h.guard.handle(signal(url=HOME))
        await asyncio.sleep(0.02)

        h.guard.handle(signal(url=HOME, username="carol"))
        assert h.guard.completed
        await asyncio.sleep(0.05)

        assert h.calls == [(SESSION_MARKER, "abc123csrf", "carol")]
        assert not h.guard.waiting_for_username

    @pytest.mark.anyio
    async def test_username_on_other_url_inside_window(self, signal) -> None:
        """Once ct0 is known the username may arrive from any page."""
        h = _Harness(username_wait_timeout=0.5)
        h.guard.handle(signal(url=HOME))
        h.guard.handle(signal(url="https://x.com/carol", username="carol", cookies=""))

        assert h.guard.completed
        assert h.guard.token.username == "carol"

    @pytest.mark.anyio
    async def test_single_window(self, signal) -> None:
        """Repeated username-less landings do not extend or duplicate the window."""
        h = _Harness()
        for _ in range(3):
            h.guard.handle(signal(url=HOME))

        assert [t.name for t in h.scheduler.pending] == ["username-wait"]
        assert len(h.sink.of_type(EventType.WAIT_WINDOW_OPENED)) == 1
        await asyncio.sleep(0.2)
        assert len(h.calls) == 1


# ===================================================================
# Missing CSRF cookie
# ===================================================================


class TestCookieRecheck:
    @pytest.mark.anyio
    async def test_missing_ct0_requests_one_recheck(self, signal) -> None:
        h = _Harness()
        h.guard.handle(signal(url=HOME, cookies=NO_CT0, username="alice"))
        h.guard.handle(signal(url=HOME, cookies=NO_CT0, username="alice"))

        assert not h.guard.completed
        assert h.scheduler.has_pending("cookie-recheck")
        await asyncio.sleep(0.05)
        assert h.rechecks == 1

    @pytest.mark.anyio
    async def test_recheck_limit(self, signal) -> None:
        """After the limit, a missing ct0 waits for a later signal instead."""
        h = _Harness()
        h.guard.handle(signal(url=HOME, cookies=NO_CT0))
        await asyncio.sleep(0.05)
        h.guard.handle(signal(url=HOME, cookies=NO_CT0))
        await asyncio.sleep(0.05)

        assert h.rechecks == 1
        assert len(h.sink.of_type(EventType.COOKIE_MISSING)) == 2

        h.guard.handle(signal(url=HOME, username="dave"))
        assert h.guard.completed

    @pytest.mark.anyio
    async def test_pending_recheck_dropped_on_finalize(self, signal) -> None:
        h = _Harness(cookie_retry_delay=0.05)
        h.guard.handle(signal(url=HOME, cookies=NO_CT0))
        h.guard.handle(signal(url=HOME, username="alice"))
        await asyncio.sleep(0.1)

        assert h.rechecks == 0
        assert len(h.calls) == 1


# ===================================================================
# Non-landing signals and finalize()
# ===================================================================


class TestNonLanding:
    @pytest.mark.anyio
    async def test_credential_page_never_finalizes(self, signal) -> None:
        """ct0 on a non-landing page does not complete the login."""
        h = _Harness()
        h.guard.handle(signal(url=LOGIN, username="alice"))
        h.guard.handle(signal(url="https://x.com/i/flow/login?step=2"))
        await asyncio.sleep(0.05)

        assert not h.guard.completed
        assert h.calls == []
        assert h.guard.accumulator.username == "alice"

    @pytest.mark.anyio
    async def test_identity_events(self, signal) -> None:
        h = _Harness()
        h.guard.handle(signal(url=LOGIN, username="alice", user_id="42"))
        h.guard.handle(signal(url=LOGIN, username="alice", user_id="42"))

        updates = h.sink.of_type(EventType.IDENTITY_UPDATED)
        assert len(updates) == 1
        assert updates[0].data == {"username": "alice", "user_id": "42"}


class TestFinalize:
    @pytest.mark.anyio
    async def test_explicit_username_overrides(self, signal) -> None:
        h = _Harness()
        h.guard.handle(signal(url=LOGIN, username="alice"))

        assert h.guard.finalize("tok", username="forced") is True
        assert h.guard.finalize("tok2") is False
        await asyncio.sleep(0.05)

        assert h.calls == [(SESSION_MARKER, "tok", "forced")]

    @pytest.mark.anyio
    async def test_signals_after_finalize_ignored(self, signal) -> None:
        h = _Harness()
        h.guard.finalize("tok")
        h.guard.handle(signal(url=HOME, username="late"))
        await asyncio.sleep(0.05)

        assert h.guard.accumulator.username is None
        assert h.calls == [(SESSION_MARKER, "tok", None)]

    @pytest.mark.anyio
    async def test_failing_host_callback_still_delivers(self, signal) -> None:
        """A raising host callback is logged; the completed event still goes out."""
        h = _Harness()

        def broken(*_args) -> None:
            raise RuntimeError("host exploded")

        h.guard._on_complete = broken
        h.guard.handle(signal(url=HOME, username="alice"))
        await asyncio.sleep(0.05)

        assert h.guard.delivered
        assert len(h.delivered) == 1
        completed = h.sink.of_type(EventType.CAPTURE_COMPLETED)
        assert len(completed) == 1
        assert completed[0].data["csrf_token"] == "***"
        assert completed[0].data["username"] == "alice"
