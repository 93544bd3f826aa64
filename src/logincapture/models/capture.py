"""Identity accumulation and completion artifacts."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any

# The real ``auth_token`` is HttpOnly and stays in the browser's cookie jar.
SESSION_MARKER = "HTTPONLY_IN_WEBVIEW_COOKIE_STORE"


@dataclass
class IdentityAccumulator:
    """Partial identity gathered across signals.

    Fields are first-write-wins: ``merge`` never replaces a value that is
    already set. ``force_username`` is the finalize-time override.
    """

    username: str | None = None
    user_id: str | None = None

    def merge(self, username: str | None = None, user_id: str | None = None) -> bool:
        """Fill empty fields from a signal. Returns True if anything changed."""
        changed = False
        if username and not self.username:
            self.username = username
            changed = True
        if user_id and not self.user_id:
            self.user_id = user_id
            changed = True
        return changed

    def force_username(self, username: str) -> None:
        self.username = username


@dataclass(frozen=True)
class CompletionToken:
    """The single artifact handed to the host once a login completes."""

    session_marker: str
    csrf_token: str
    username: str | None = None
    user_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a JSON-friendly dict."""
        return asdict(self)
