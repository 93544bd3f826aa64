"""Playwright-hosted login session.

Opens the provider's login page in a Chromium context, feeds navigation
events to the engine's state machine, and binds the probe to the page.
The user types credentials into the real page; nothing here sees them.

Usage::

    from logincapture.browser.session import LoginBrowser

    browser = LoginBrowser()
    token = await browser.run(engine)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any

from logincapture.capture.snapshot import PlaywrightPageSource
from logincapture.models.capture import CompletionToken

if TYPE_CHECKING:
    from playwright.async_api import BrowserContext, Frame, Page

    from logincapture.capture.engine import CaptureEngine
    from logincapture.settings.config import BrowserSettings

logger = logging.getLogger(__name__)


@dataclass
class BrowserProfile:
    """Arguments for ``chromium.launch()`` and ``browser.new_context()``."""

    launch_args: dict[str, Any] = field(default_factory=dict)
    context_args: dict[str, Any] = field(default_factory=dict)
    user_agent: str = ""
    storage_state_path: str = ""


def build_browser_profile(settings: BrowserSettings) -> BrowserProfile:
    """Build launch/context arguments from browser settings.

    Cookies from a previous run are restored when ``persist_cookies`` is on
    and the storage-state file exists.
    """
    profile = BrowserProfile()
    profile.launch_args["headless"] = settings.headless

    ua = settings.effective_user_agent
    if ua:
        profile.context_args["user_agent"] = ua
        profile.user_agent = ua
    if settings.platform in ("ios", "android"):
        profile.context_args["is_mobile"] = True
        profile.context_args["has_touch"] = True
        profile.context_args["viewport"] = {"width": 390, "height": 844}

    if settings.persist_cookies:
        profile.storage_state_path = settings.storage_state_path
        if Path(settings.storage_state_path).is_file():
            profile.context_args["storage_state"] = settings.storage_state_path
            logger.debug("Restoring browser storage from %s", settings.storage_state_path)
    return profile


class LoginBrowser:
    """Runs one capture engine against a real browser page.

    Args:
        settings: Browser settings. Defaults to ``get_settings().browser``.
    """

    def __init__(self, settings: BrowserSettings | None = None) -> None:
        if settings is None:
            from logincapture.settings import get_settings

            settings = get_settings().browser
        self.settings = settings
        self.profile = build_browser_profile(settings)

    async def run(self, engine: CaptureEngine, timeout: float | None = None) -> CompletionToken:
        """Open the login page, wait for completion, and return the token.

        Raises:
            CaptureTimeoutError: If the user does not finish within *timeout*.
            CaptureClosedError: If the login window or browser is closed first.
        """
        from playwright.async_api import async_playwright

        timeout = timeout if timeout is not None else engine.settings.overall_timeout
        try:
            async with async_playwright() as pw:
                browser = await pw.chromium.launch(**self.profile.launch_args)
                try:
                    browser.on("disconnected", lambda _browser: self._on_closed(engine, "browser disconnected"))
                    context = await browser.new_context(**self.profile.context_args)
                    try:
                        page = await context.new_page()
                        page.set_default_timeout(self.settings.timeout_ms)
                        self.bind(page, engine)

                        engine.page_loading()
                        await page.goto(engine.settings.login_url, wait_until="domcontentloaded")
                        engine.attach(PlaywrightPageSource(page))

                        token = await engine.wait(timeout=timeout)
                        await self._persist(context)
                        return token
                    finally:
                        await context.close()
                finally:
                    await browser.close()
        finally:
            engine.close()

    def bind(self, page: Page, engine: CaptureEngine) -> None:
        """Route the page's navigation, load and close events into *engine*."""

        def on_navigated(frame: Frame) -> None:
            if frame == page.main_frame:
                engine.observe_navigation(frame.url)

        def on_load(_page: Any) -> None:
            engine.page_loaded()
            # A full page load replaces the document; re-probe it.
            engine.request_recheck()

        page.on("framenavigated", on_navigated)
        page.on("load", on_load)
        page.on("close", lambda _page: self._on_closed(engine, "login window closed"))

    @staticmethod
    def _on_closed(engine: CaptureEngine, reason: str) -> None:
        if engine.completed:
            return
        logger.info("Capture aborted: %s", reason)
        engine.close()

    async def _persist(self, context: BrowserContext) -> None:
        if not self.profile.storage_state_path:
            return
        path = Path(self.profile.storage_state_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        await context.storage_state(path=str(path))
        logger.info("Browser cookies saved to %s", path)
