"""CLI commands for the community cache."""

from __future__ import annotations

import typer
from rich.console import Console
from rich.table import Table

from logincapture.cache.client import CommunityCache

cache_app = typer.Typer(help="Community cache statistics and lookups.")
console = Console()


@cache_app.command("stats")
def cache_stats() -> None:
    """Show server-wide cache statistics."""
    cache = CommunityCache.from_settings()
    try:
        server = cache.fetch_server_stats()
    finally:
        cache.close()

    if server is None:
        console.print("[yellow]Cache server unavailable.[/yellow]")
        raise typer.Exit(code=1)

    table = Table(title="Community cache")
    table.add_column("Metric")
    table.add_column("Value", justify="right")
    table.add_row("Entries", f"{server.total_entries:,}")
    table.add_row("Contributions", f"{server.total_contributions:,}")
    console.print(table)


@cache_app.command("lookup")
def cache_lookup(username: str = typer.Argument(..., help="X handle to look up, with or without @.")) -> None:
    """Show the cached entry for one handle."""
    handle = username.strip().lstrip("@").lower()
    cache = CommunityCache.from_settings()
    try:
        entry = cache.lookup_user(username)
    finally:
        cache.close()

    if entry is None:
        console.print(f"[yellow]No cached entry for @{handle}.[/yellow]")
        raise typer.Exit(code=1)

    table = Table(title=f"@{handle}")
    table.add_column("Field")
    table.add_column("Value")
    for key, value in entry.items():
        table.add_row(str(key), str(value))
    console.print(table)
