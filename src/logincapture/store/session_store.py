"""Captured-session persistence.

Stores the completion token in a small JSON file so later runs can reuse
the session. Sessions older than ``timeout_days`` are treated as gone and
removed on load.

Usage::

    from logincapture.store.session_store import SessionStore

    store = SessionStore.from_settings()
    store.save(token)
    session = store.load()
"""

from __future__ import annotations

import logging
import re
from datetime import datetime, timedelta, timezone
from pathlib import Path

from pydantic import BaseModel, Field, ValidationError

from logincapture.exceptions import InvalidTokenError, InvalidUsernameError, SessionExpiredError
from logincapture.models.capture import CompletionToken

logger = logging.getLogger(__name__)

_USERNAME_RE = re.compile(r"^[a-z0-9_]{1,15}$")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class StoredSession(BaseModel):
    """A persisted login."""

    auth_token: str
    csrf_token: str
    username: str | None = None
    user_id: str | None = None
    saved_at: datetime = Field(default_factory=_utcnow)

    @property
    def is_authenticated(self) -> bool:
        return bool(self.auth_token and self.csrf_token)


def normalize_username(raw: str) -> str:
    """Clean a manually entered handle: trim, drop a leading ``@``, lower-case.

    Raises:
        InvalidUsernameError: If the result is empty, too long, or not handle-shaped.
    """
    clean = (raw or "").strip().lstrip("@").lower()
    if not _USERNAME_RE.match(clean):
        raise InvalidUsernameError(raw)
    return clean


class SessionStore:
    """JSON-file session store.

    Args:
        path: File holding the session.
        timeout_days: Age after which a stored session is discarded.
    """

    def __init__(self, path: str | Path, timeout_days: int = 7) -> None:
        self.path = Path(path)
        self.timeout = timedelta(days=timeout_days)

    @classmethod
    def from_settings(cls) -> SessionStore:
        from logincapture.settings import get_settings

        s = get_settings().session
        return cls(s.store_path, timeout_days=s.timeout_days)

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def save(self, token: CompletionToken) -> StoredSession:
        """Persist a completion token.

        Raises:
            InvalidTokenError: If the marker or CSRF token is empty.
        """
        if not token.session_marker or not token.csrf_token:
            raise InvalidTokenError("Completion token is missing its session marker or CSRF token")
        session = StoredSession(
            auth_token=token.session_marker,
            csrf_token=token.csrf_token,
            username=token.username,
            user_id=token.user_id,
        )
        self._write(session)
        logger.info("Session saved to %s", self.path)
        return session

    def load(self) -> StoredSession | None:
        """Return the stored session, or ``None`` if absent, unreadable, or expired."""
        try:
            return self.load_strict()
        except SessionExpiredError:
            self.clear()
            return None

    def load_strict(self) -> StoredSession | None:
        """Like ``load`` but raises ``SessionExpiredError`` instead of clearing."""
        if not self.path.is_file():
            return None
        try:
            session = StoredSession.model_validate_json(self.path.read_text())
        except (OSError, ValidationError) as exc:
            logger.warning("Ignoring unreadable session file %s: %s", self.path, exc)
            return None
        if not session.is_authenticated:
            return None
        if _utcnow() - session.saved_at > self.timeout:
            raise SessionExpiredError(f"Session saved at {session.saved_at.isoformat()} has expired")
        return session

    def clear(self) -> None:
        """Remove the stored session."""
        try:
            self.path.unlink()
            logger.info("Session cleared")
        except FileNotFoundError:
            pass

    def is_valid(self) -> bool:
        return self.load() is not None

    def set_username(self, raw: str) -> StoredSession:
        """Attach a manually entered handle to the stored session.

        Raises:
            InvalidUsernameError: If *raw* is not a valid handle.
            SessionExpiredError: If there is no live session to update.
        """
        username = normalize_username(raw)
        session = self.load()
        if session is None:
            raise SessionExpiredError("No stored session to attach a username to")
        session = session.model_copy(update={"username": username})
        self._write(session)
        return session

    def _write(self, session: StoredSession) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp.write_text(session.model_dump_json(indent=2))
        tmp.replace(self.path)
