"""In-page snapshot collection.

The JavaScript below runs inside the login page and returns a flat object
that maps 1-to-1 to ``PageSnapshot``. It only gathers raw facts; every
username decision is made by ``logincapture.capture.heuristics`` on the
Python side. Each section is wrapped so a broken page yields a partial
snapshot instead of an exception.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Protocol

from pydantic import ValidationError

from logincapture.models.snapshot import PageSnapshot

if TYPE_CHECKING:
    from playwright.async_api import Page

logger = logging.getLogger(__name__)

_SNAPSHOT_JS = """
() => {
    const snap = {
        url: '',
        cookies: '',
        visibleText: '',
        profileLinkHref: '',
        accountSwitcherText: '',
        tablistHrefs: [],
        links: [],
        localStorage: {},
    };

    try { snap.url = window.location.href; } catch (e) {}
    try { snap.cookies = document.cookie || ''; } catch (e) {}
    try { snap.visibleText = (document.body && document.body.innerText || '').substring(0, 20000); } catch (e) {}

    try {
        const profileLink = document.querySelector('a[data-testid="AppTabBar_Profile_Link"]');
        if (profileLink && profileLink.href) snap.profileLinkHref = profileLink.href;
    } catch (e) {}

    try {
        const switcher = document.querySelector('[data-testid="SideNav_AccountSwitcher_Button"]');
        if (switcher) snap.accountSwitcherText = (switcher.innerText || switcher.textContent || '').substring(0, 500);
    } catch (e) {}

    try {
        const tablist = document.querySelector('[role="tablist"]');
        if (tablist) {
            tablist.querySelectorAll('a[href^="/"]').forEach(a => {
                const href = a.getAttribute('href');
                if (href) snap.tablistHrefs.push(href);
            });
        }
    } catch (e) {}

    try {
        const anchors = document.querySelectorAll('a[href^="/"]');
        for (let i = 0; i < anchors.length && snap.links.length < 500; i++) {
            const a = anchors[i];
            const ctx = a.closest('[data-testid]');
            snap.links.push({
                href: a.getAttribute('href') || '',
                ariaLabel: a.getAttribute('aria-label') || '',
                hasProfileImage: !!a.querySelector('img[src*="profile"], img[src*="pbs.twimg"]'),
                contextTestid: ctx ? (ctx.getAttribute('data-testid') || '') : '',
            });
        }
    } catch (e) {}

    try {
        Object.keys(localStorage).forEach(key => {
            const k = key.toLowerCase();
            if (k.includes('user') || k.includes('account')) {
                const value = localStorage.getItem(key);
                if (value) snap.localStorage[key] = value.substring(0, 20000);
            }
        });
    } catch (e) {}

    return snap;
}
"""


class PageSource(Protocol):
    """What the probe needs from a browsing context."""

    def current_url(self) -> str:
        """Return the current top-level URL without touching the page."""
        ...

    async def snapshot(self) -> dict[str, Any]:
        """Collect a raw snapshot dict from the page."""
        ...


class PlaywrightPageSource:
    """``PageSource`` backed by a Playwright async ``Page``."""

    def __init__(self, page: Page) -> None:
        self._page = page

    def current_url(self) -> str:
        return self._page.url

    async def snapshot(self) -> dict[str, Any]:
        return await self._page.evaluate(_SNAPSHOT_JS)


def parse_snapshot(raw: Any) -> PageSnapshot | None:
    """Validate a raw snapshot dict, returning ``None`` if it is unusable."""
    if not isinstance(raw, dict):
        return None
    try:
        return PageSnapshot.model_validate(raw)
    except ValidationError as exc:
        logger.debug("Discarding malformed page snapshot: %s", exc.error_count())
        return None
