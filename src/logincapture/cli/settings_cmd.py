"""CLI commands for inspecting and validating settings."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING
from urllib.parse import urlsplit

import typer
from rich.console import Console

if TYPE_CHECKING:
    from logincapture.settings.config import CaptureSettings

settings_app = typer.Typer(help="Inspect and validate configuration.")
console = Console()


@settings_app.command("show")
def show_settings() -> None:
    """Display the currently resolved settings."""
    from logincapture.settings import get_settings

    settings = get_settings()
    console.print_json(json.dumps(settings.model_dump(mode="json"), indent=2, default=str))


_POSITIVE_TIMINGS = (
    "poll_interval",
    "retry_initial_delay",
    "retry_step",
    "heartbeat_interval",
    "username_wait_timeout",
    "overall_timeout",
)
_NON_NEGATIVE_TIMINGS = ("cookie_retry_delay", "completion_delay")


def capture_problems(capture: CaptureSettings) -> list[str]:
    """Return human-readable problems with the capture section (empty if fine)."""
    problems: list[str] = []
    if not capture.landing_hosts:
        problems.append("capture.landing_hosts is empty; no page can count as signed in")
    for name in _POSITIVE_TIMINGS:
        if getattr(capture, name) <= 0:
            problems.append(f"capture.{name} must be greater than 0")
    for name in _NON_NEGATIVE_TIMINGS:
        if getattr(capture, name) < 0:
            problems.append(f"capture.{name} must not be negative")
    if capture.retry_max_attempts < 1:
        problems.append("capture.retry_max_attempts must be at least 1")
    if capture.cookie_retry_limit < 0:
        problems.append("capture.cookie_retry_limit must not be negative")

    host = (urlsplit(capture.login_url).hostname or "").lower()
    if not host:
        problems.append(f"capture.login_url is not an absolute URL: {capture.login_url!r}")
    elif capture.landing_hosts and not any(host == h or host.endswith("." + h) for h in capture.landing_hosts):
        problems.append(f"capture.login_url host {host!r} is not one of capture.landing_hosts")
    return problems


@settings_app.command("validate")
def validate_settings() -> None:
    """Validate settings and report any issues."""
    from logincapture.settings import get_settings

    try:
        settings = get_settings()
    except Exception as e:
        console.print(f"[red]✗[/red] Settings validation failed: {e}")
        raise typer.Exit(code=1)

    problems = capture_problems(settings.capture)
    if problems:
        console.print("[red]✗[/red] Settings validation failed:")
        for problem in problems:
            console.print(f"  - {problem}")
        raise typer.Exit(code=1)

    console.print("[green]✓[/green] Settings are valid.")
    console.print(f"  Environment: {settings.env}")
    console.print(f"  Login URL: {settings.capture.login_url}")
    console.print(f"  Landing hosts: {', '.join(settings.capture.landing_hosts)}")
    console.print(f"  Session file: {settings.session.store_path}")
