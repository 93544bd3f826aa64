"""Unit tests for captured-session persistence."""

from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone

import pytest

from logincapture.exceptions import InvalidTokenError, InvalidUsernameError, SessionExpiredError
from logincapture.models.capture import SESSION_MARKER, CompletionToken
from logincapture.store.session_store import SessionStore, StoredSession, normalize_username


@pytest.fixture()
def store(tmp_path) -> SessionStore:
    return SessionStore(tmp_path / "state" / "session.json", timeout_days=7)


@pytest.fixture()
def token() -> CompletionToken:
    return CompletionToken(
        session_marker=SESSION_MARKER,
        csrf_token="abc123csrf",
        username="alice",
        user_id="123456789",
    )


class TestNormalizeUsername:
    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("alice", "alice"),
            ("@Alice", "alice"),
            ("  @Bob_99  ", "bob_99"),
        ],
    )
    def test_valid(self, raw: str, expected: str) -> None:
        assert normalize_username(raw) == expected

    @pytest.mark.parametrize("raw", ["", "@", "has space", "a" * 16, "dash-ed"])
    def test_invalid(self, raw: str) -> None:
        with pytest.raises(InvalidUsernameError) as exc_info:
            normalize_username(raw)
        assert exc_info.value.username == raw


class TestSessionStore:
    def test_save_and_load(self, store: SessionStore, token: CompletionToken) -> None:
        """A saved token round-trips and creates parent directories."""
        saved = store.save(token)
        assert store.path.is_file()

        loaded = store.load()
        assert loaded is not None
        assert loaded.auth_token == SESSION_MARKER
        assert loaded.csrf_token == "abc123csrf"
        assert loaded.username == "alice"
        assert loaded.saved_at == saved.saved_at
        assert store.is_valid()

    def test_save_rejects_incomplete_token(self, store: SessionStore) -> None:
        with pytest.raises(InvalidTokenError):
            store.save(CompletionToken(session_marker=SESSION_MARKER, csrf_token=""))
        assert not store.path.exists()

    def test_load_missing(self, store: SessionStore) -> None:
        assert store.load() is None
        assert not store.is_valid()

    def test_unreadable_file_ignored(self, store: SessionStore) -> None:
        store.path.parent.mkdir(parents=True)
        store.path.write_text("{not json")
        assert store.load() is None

    def test_expired_session_is_cleared(self, store: SessionStore) -> None:
        """A session older than the timeout is removed on load."""
        old = StoredSession(
            auth_token=SESSION_MARKER,
            csrf_token="abc",
            saved_at=datetime.now(timezone.utc) - timedelta(days=8),
        )
        store.path.parent.mkdir(parents=True)
        store.path.write_text(old.model_dump_json())

        with pytest.raises(SessionExpiredError):
            store.load_strict()
        assert store.path.exists()

        assert store.load() is None
        assert not store.path.exists()

    def test_clear_is_idempotent(self, store: SessionStore, token: CompletionToken) -> None:
        store.save(token)
        store.clear()
        store.clear()
        assert store.load() is None

    def test_set_username(self, store: SessionStore) -> None:
        store.save(CompletionToken(session_marker=SESSION_MARKER, csrf_token="abc"))
        updated = store.set_username("@Carol")

        assert updated.username == "carol"
        assert json.loads(store.path.read_text())["username"] == "carol"

    def test_set_username_without_session(self, store: SessionStore) -> None:
        with pytest.raises(SessionExpiredError):
            store.set_username("carol")

    def test_set_username_invalid(self, store: SessionStore, token: CompletionToken) -> None:
        store.save(token)
        with pytest.raises(InvalidUsernameError):
            store.set_username("not a handle")
        assert store.load().username == "alice"

    def test_from_settings(self, tmp_path, monkeypatch) -> None:
        monkeypatch.setenv("LOGINCAPTURE_SESSION__STORE_PATH", str(tmp_path / "s.json"))
        monkeypatch.setenv("LOGINCAPTURE_SESSION__TIMEOUT_DAYS", "3")
        store = SessionStore.from_settings()
        assert store.path == tmp_path / "s.json"
        assert store.timeout == timedelta(days=3)
