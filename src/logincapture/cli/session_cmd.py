"""CLI commands for the stored session."""

from __future__ import annotations

import typer
from rich.console import Console
from rich.table import Table

from logincapture.exceptions import LoginCaptureError
from logincapture.store.session_store import SessionStore

session_app = typer.Typer(help="Inspect or change the stored session.")
console = Console()


@session_app.command("show")
def show_session() -> None:
    """Show the stored session (tokens are masked)."""
    session = SessionStore.from_settings().load()
    if session is None:
        console.print("[yellow]No active session.[/yellow] Run [bold]logincapture login[/bold].")
        raise typer.Exit(code=1)

    table = Table(show_header=False)
    table.add_row("Username", f"@{session.username}" if session.username else "[dim]unknown[/dim]")
    table.add_row("User ID", session.user_id or "[dim]unknown[/dim]")
    table.add_row("CSRF token", session.csrf_token[:6] + "…")
    table.add_row("Saved", session.saved_at.isoformat(timespec="seconds"))
    console.print(table)


@session_app.command("clear")
def clear_session() -> None:
    """Forget the stored session."""
    SessionStore.from_settings().clear()
    console.print("[green]Session cleared.[/green]")


@session_app.command("set-username")
def set_username(username: str = typer.Argument(..., help="Your X handle, with or without @.")) -> None:
    """Attach a handle when it could not be detected automatically."""
    try:
        session = SessionStore.from_settings().set_username(username)
    except LoginCaptureError as e:
        console.print(f"[red]✗[/red] {e}")
        raise typer.Exit(code=1)
    console.print(f"[green]✓[/green] Username set to @{session.username}")
