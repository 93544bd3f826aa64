"""Identity resolution heuristics.

Each username heuristic is a pure function ``PageSnapshot -> str | None``.
``USERNAME_HEURISTICS`` lists them in priority order and
``resolve_username`` returns the first match. A heuristic that raises is
treated as "no match" and the chain moves on.

The cookie parsers (``user_id_from_cookies``, ``csrf_from_cookies``) work
on a raw ``document.cookie`` string.
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
import re
from collections.abc import Callable, Sequence
from urllib.parse import unquote

from logincapture.models.snapshot import PageSnapshot

logger = logging.getLogger(__name__)

UsernameHeuristic = Callable[[PageSnapshot], str | None]

_HANDLE = r"[A-Za-z0-9_]{1,15}"
_HANDLE_RE = re.compile(rf"^{_HANDLE}$")

# Top-level routes that look like handles but are not accounts.
RESERVED_ROUTES = frozenset({
    "home",
    "explore",
    "search",
    "notifications",
    "messages",
    "i",
    "settings",
    "compose",
    "login",
    "logout",
    "tos",
    "privacy",
})

_FLOW_DATA_RE = re.compile(r"[?&]input_flow_data=([^&#]+)")
_PROFILE_HREF_RE = re.compile(rf"\.com/({_HANDLE})(?:[?/#]|$)")
_AT_HANDLE_RE = re.compile(rf"@({_HANDLE})")
_TEXT_MENTION_RE = re.compile(rf"(?:^|\s)@({_HANDLE})\b")
_RELATIVE_HANDLE_RE = re.compile(rf"^/({_HANDLE})$")
_SCREEN_NAME_RE = re.compile(r'"screen_name"\s*:\s*"([^"]+)"')

_PROFILE_LABEL_WORDS = ("profile", "account")
_PROFILE_CONTEXT_WORDS = ("profile", "account", "sidenav", "user")

_TWID_ENCODED_RE = re.compile(r"twid=u%3[AD]([0-9]+)", re.IGNORECASE)
_TWID_DECODED_RE = re.compile(r"twid=u:([0-9]+)", re.IGNORECASE)
_CT0_RE = re.compile(r"(?:^|;)\s*ct0=([^;]+)")


def is_valid_handle(candidate: str | None) -> bool:
    """True if *candidate* has handle shape and is not a reserved route."""
    if not candidate or not _HANDLE_RE.match(candidate):
        return False
    return candidate.lower() not in RESERVED_ROUTES


def _relative_handle(href: str) -> str | None:
    match = _RELATIVE_HANDLE_RE.match(href or "")
    if match and is_valid_handle(match.group(1)):
        return match.group(1)
    return None


def _b64decode(data: str) -> bytes:
    data = data.strip()
    padded = data + "=" * (-len(data) % 4)
    try:
        return base64.b64decode(padded, validate=True)
    except (binascii.Error, ValueError):
        return base64.urlsafe_b64decode(padded)


# ---------------------------------------------------------------------------
# Username heuristics (priority order)
# ---------------------------------------------------------------------------


def from_flow_url(snapshot: PageSnapshot) -> str | None:
    """Read ``user_identifier`` out of the login flow's ``input_flow_data``.

    The parameter is URL-encoded JSON whose ``requested_variant`` field is
    itself base64-encoded JSON. Identifiers that are not handles (an email
    or phone number typed into the first login step) are ignored.
    """
    match = _FLOW_DATA_RE.search(snapshot.url)
    if not match:
        return None
    flow_data = json.loads(unquote(match.group(1)))
    variant = flow_data.get("requested_variant") if isinstance(flow_data, dict) else None
    if not isinstance(variant, str) or not variant:
        return None
    variant_data = json.loads(_b64decode(variant))
    identifier = variant_data.get("user_identifier") if isinstance(variant_data, dict) else None
    if isinstance(identifier, str):
        identifier = identifier.strip().lstrip("@")
        if is_valid_handle(identifier):
            return identifier
    return None


def from_landmarks(snapshot: PageSnapshot) -> str | None:
    """Profile nav link, account switcher, or mobile tab-bar profile link."""
    if snapshot.profile_link_href:
        match = _PROFILE_HREF_RE.search(snapshot.profile_link_href)
        if match and is_valid_handle(match.group(1)):
            return match.group(1)

    if snapshot.account_switcher_text:
        for match in _AT_HANDLE_RE.finditer(snapshot.account_switcher_text):
            if is_valid_handle(match.group(1)):
                return match.group(1)

    for href in snapshot.tablist_hrefs:
        handle = _relative_handle(href)
        if handle:
            return handle
    return None


def from_visible_text(snapshot: PageSnapshot) -> str | None:
    """First ``@handle`` mention in rendered text that is not a reserved route."""
    for match in _TEXT_MENTION_RE.finditer(snapshot.visible_text):
        if is_valid_handle(match.group(1)):
            return match.group(1)
    return None


def from_profile_links(snapshot: PageSnapshot) -> str | None:
    """Relative ``/handle`` links that carry profile context.

    Labelled profile/account links win; otherwise a link qualifies when it
    wraps a profile image or sits inside a profile/account/user container.
    """
    for link in snapshot.links:
        label = link.aria_label.lower()
        if any(word in label for word in _PROFILE_LABEL_WORDS):
            handle = _relative_handle(link.href)
            if handle:
                return handle

    for link in snapshot.links:
        handle = _relative_handle(link.href)
        if not handle:
            continue
        if link.has_profile_image:
            return handle
        context = link.context_testid.lower()
        if any(word in context for word in _PROFILE_CONTEXT_WORDS):
            return handle
    return None


def from_local_storage(snapshot: PageSnapshot) -> str | None:
    """A ``screen_name`` field inside a user/account storage entry."""
    for key, value in snapshot.local_storage.items():
        lowered = key.lower()
        if "user" not in lowered and "account" not in lowered:
            continue
        match = _SCREEN_NAME_RE.search(value or "")
        if match and is_valid_handle(match.group(1)):
            return match.group(1)
    return None


USERNAME_HEURISTICS: tuple[UsernameHeuristic, ...] = (
    from_flow_url,
    from_landmarks,
    from_visible_text,
    from_profile_links,
    from_local_storage,
)


def resolve_username(
    snapshot: PageSnapshot,
    heuristics: Sequence[UsernameHeuristic] = USERNAME_HEURISTICS,
) -> str | None:
    """Run *heuristics* in order and return the first handle found."""
    for heuristic in heuristics:
        try:
            username = heuristic(snapshot)
        except Exception as exc:
            logger.debug("Heuristic %s failed: %s", heuristic.__name__, exc)
            continue
        if username:
            logger.debug("Username resolved by %s", heuristic.__name__)
            return username
    return None


# ---------------------------------------------------------------------------
# Cookie parsers
# ---------------------------------------------------------------------------


def user_id_from_cookies(cookies: str) -> str | None:
    """Numeric account id from the ``twid`` cookie (encoded or decoded form)."""
    if not cookies:
        return None
    match = _TWID_ENCODED_RE.search(cookies) or _TWID_DECODED_RE.search(cookies)
    return match.group(1) if match else None


def csrf_from_cookies(cookies: str) -> str | None:
    """The script-visible ``ct0`` CSRF cookie, if present."""
    if not cookies:
        return None
    match = _CT0_RE.search(cookies)
    if not match:
        return None
    return match.group(1).strip() or None
