"""Login-capture test configuration — shared fixtures for unit tests."""

from __future__ import annotations

from typing import Any

import pytest


def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers."""
    config.addinivalue_line("markers", "integration: marks tests that require a real browser")
    config.addinivalue_line("markers", "slow: marks tests that take more than a few seconds")


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _reset_settings_cache():
    """Clear the settings LRU cache between tests."""
    from logincapture.settings.config import get_settings

    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture()
def anyio_backend() -> str:
    """The engine schedules with ``loop.call_later``; run async tests on asyncio."""
    return "asyncio"


@pytest.fixture()
def fast_capture_settings():
    """Capture settings with millisecond timings so async tests stay quick."""
    from logincapture.settings.config import CaptureSettings

    return CaptureSettings(
        poll_interval=0.01,
        retry_initial_delay=0.01,
        retry_step=0.005,
        retry_max_attempts=3,
        heartbeat_interval=0.02,
        cookie_retry_delay=0.02,
        cookie_retry_limit=1,
        username_wait_timeout=0.1,
        completion_delay=0.01,
        overall_timeout=2.0,
    )


# ---------------------------------------------------------------------------
# Wire helpers
# ---------------------------------------------------------------------------

HOME_URL = "https://x.com/home"
LOGIN_URL = "https://x.com/i/flow/login"
COOKIES_WITH_CT0 = "guest_id=v1%3A1; ct0=abc123csrf; twid=u%3A123456789"


def login_status(
    url: str = HOME_URL,
    cookies: str = COOKIES_WITH_CT0,
    username: str | None = None,
    user_id: str | None = None,
) -> dict[str, Any]:
    """Build a ``LOGIN_STATUS`` payload as the probe would post it."""
    return {"type": "LOGIN_STATUS", "url": url, "cookies": cookies, "username": username, "userId": user_id}


class FakePageSource:
    """Scriptable ``PageSource`` for probe and engine tests."""

    def __init__(self, url: str = LOGIN_URL, **snapshot: Any) -> None:
        self.url = url
        self.snapshot_fields: dict[str, Any] = dict(snapshot)
        self.snapshots_taken = 0
        self.fail = False

    def current_url(self) -> str:
        return self.url

    async def snapshot(self) -> dict[str, Any]:
        self.snapshots_taken += 1
        if self.fail:
            raise RuntimeError("page crashed")
        return {"url": self.url, **self.snapshot_fields}


@pytest.fixture()
def make_status():
    """Factory for ``LOGIN_STATUS`` payload dicts."""
    return login_status


@pytest.fixture()
def make_page_source():
    """Factory for ``FakePageSource`` instances."""
    return FakePageSource
