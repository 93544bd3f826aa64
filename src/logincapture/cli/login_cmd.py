"""``logincapture login`` — run the embedded-browser login flow."""

from __future__ import annotations

import asyncio
import logging
import sys
import time
from typing import Optional

import typer
from rich.console import Console

from logincapture.exceptions import InvalidUsernameError, LoginCaptureError
from logincapture.models.capture import CompletionToken
from logincapture.monitoring.event_bus import Event, EventBus, EventType, JsonlSink, LoggingSink
from logincapture.store.session_store import SessionStore

logger = logging.getLogger(__name__)
console = Console()


class _ProgressSink:
    """Print progress text whenever the login state changes."""

    def handle_event(self, event: Event) -> None:
        if event.event_type == EventType.STATE_CHANGED:
            console.print(f"[cyan]›[/cyan] {event.data.get('progress', '')}")


def _on_complete(session_marker: str, csrf_token: str, username: str | None = None) -> None:
    who = f"@{username}" if username else "unknown user"
    console.print(f"[green]✓[/green] Authentication successful ({who}).")


def _report_contribution(token: CompletionToken) -> None:
    from logincapture.cache.client import CommunityCache

    cache = CommunityCache.from_settings()
    if not cache.enabled or not token.username:
        cache.close()
        return
    try:
        cache.contribute(
            token.username,
            {"event": "login", "userId": token.user_id, "timestamp": int(time.time())},
        )
    finally:
        cache.close()


def _prompt_for_username(store: SessionStore) -> None:
    raw = typer.prompt(
        "Could not detect your username. Enter your X handle (blank to skip)",
        default="",
        show_default=False,
    )
    if not raw.strip():
        return
    try:
        session = store.set_username(raw)
    except InvalidUsernameError as e:
        console.print(f"[yellow]![/yellow] {e}. Set it later with [bold]logincapture session set-username[/bold].")
        return
    console.print(f"[green]✓[/green] Username set to @{session.username}")


def login(
    headless: Optional[bool] = typer.Option(None, "--headless/--headed", help="Override browser visibility."),
    timeout: Optional[float] = typer.Option(None, "--timeout", "-t", help="Seconds to wait for the login to finish."),
    events: bool = typer.Option(False, "--events", help="Stream capture events as JSONL to stderr."),
    no_prompt: bool = typer.Option(False, "--no-prompt", help="Do not ask for the username if detection fails."),
    log_level: str = typer.Option("INFO", "--log-level", help="Logging level."),
) -> None:
    """Sign in to X in a browser window and store the captured session."""
    from logincapture.browser.session import LoginBrowser
    from logincapture.capture.engine import build_engine
    from logincapture.logging_setup import configure_logging
    from logincapture.settings import get_settings

    configure_logging(log_level)
    settings = get_settings()
    browser_settings = settings.browser
    if headless is not None:
        browser_settings = browser_settings.model_copy(update={"headless": headless})

    bus = EventBus()
    bus.add_sink(LoggingSink())
    bus.add_sink(_ProgressSink())
    if events:
        bus.add_sink(JsonlSink(sys.stderr))

    async def _run() -> CompletionToken:
        engine = build_engine(_on_complete, events=bus)
        engine.start()
        return await LoginBrowser(browser_settings).run(engine, timeout=timeout)

    console.print(f"Opening {settings.capture.login_url} …")
    try:
        token = asyncio.run(_run())
    except LoginCaptureError as e:
        console.print(f"[red]✗[/red] {e}")
        raise typer.Exit(code=1)

    store = SessionStore.from_settings()
    store.save(token)
    console.print(f"Session saved to {store.path}")

    if not token.username and not no_prompt:
        _prompt_for_username(store)

    _report_contribution(token)
