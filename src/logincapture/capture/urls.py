"""URL classification shared by the state machine and completion guard."""

from __future__ import annotations

from collections.abc import Iterable
from urllib.parse import urlsplit

DEFAULT_LANDING_HOSTS = ("x.com", "twitter.com")


def url_path(url: str) -> str:
    """Return the path component of *url*, or ``""`` if it cannot be parsed."""
    try:
        return urlsplit(url).path or ""
    except ValueError:
        return ""


def _host_matches(host: str, landing_hosts: Iterable[str]) -> bool:
    host = host.lower()
    return any(host == h or host.endswith("." + h) for h in landing_hosts)


def is_landing_url(url: str, landing_hosts: Iterable[str] = DEFAULT_LANDING_HOSTS) -> bool:
    """True if *url* is the provider's authenticated landing target.

    That is ``/home`` on a provider host, or the bare provider root.
    """
    try:
        parts = urlsplit(url)
    except ValueError:
        return False
    if not parts.hostname or not _host_matches(parts.hostname, landing_hosts):
        return False
    path = parts.path.rstrip("/")
    return path in ("", "/home")


def is_credential_entry(url: str) -> bool:
    return "/login" in url_path(url)


def is_verification_step(url: str) -> bool:
    path = url_path(url)
    return "/i/flow/" in path or "/oauth" in path
